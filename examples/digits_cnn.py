# examples/digits_cnn.py
"""
Digit Classification using a CNN

Builds and trains a small Convolutional Neural Network on the sklearn digits
dataset (8x8 grayscale images, 10 classes) with clear_sequential.

Main steps:
1. Load the sklearn digits dataset
2. Preprocess the data (reshape to NHWC, normalize, one-hot encode)
3. Define the model: Conv2D -> MaxPooling2D -> Flatten -> Dense(softmax)
4. Train with Adam and categorical cross-entropy
5. Evaluate accuracy on the test split
6. Plot the training loss
"""

import argparse
import logging
import os
import sys

import numpy as np
import matplotlib.pyplot as plt

from clear_sequential import Adam, CategoricalCrossentropy, Sequential
from clear_sequential.preprocessing import accuracy_score, one_hot_encode

# --- Configuration ---
EPOCHS = 15
BATCH_SIZE = 32
LEARNING_RATE = 0.005
NUM_CLASSES = 10
INPUT_HEIGHT = 8
INPUT_WIDTH = 8
INPUT_CHANNELS = 1
SEED = 42
MODEL_SAVE_PATH = 'digits_cnn_weights.npz'


def load_sklearn_digits():
    from sklearn.datasets import load_digits
    from sklearn.model_selection import train_test_split

    print("Loading Scikit-learn digits dataset...")
    digits = load_digits()
    X, y = digits.data, digits.target
    print(f"Dataset loaded. X shape: {X.shape}, y shape: {y.shape}")
    X_train, X_test, y_train, y_test = train_test_split(X, y, test_size=0.2, random_state=SEED, stratify=y)
    print(f"Split into Train: {X_train.shape}, Test: {X_test.shape}")
    return (X_train, y_train), (X_test, y_test)


def preprocess_digits_data(X, y):
    X_reshaped = X.reshape(X.shape[0], INPUT_HEIGHT, INPUT_WIDTH, INPUT_CHANNELS)  # (N, H, W, C)
    X_normalized = X_reshaped.astype(float) / 16.0  # Digits pixel values are 0-16
    return X_normalized, one_hot_encode(y, NUM_CLASSES)


def build_model(learning_rate: float) -> Sequential:
    return (
        Sequential(batch_size=BATCH_SIZE, seed=SEED)
        .add_input(INPUT_HEIGHT, INPUT_WIDTH, INPUT_CHANNELS)
        .add_conv2d(8, (3, 3), padding='same', activation='relu')
        .add_max_pooling2d((2, 2))
        .add_flatten()
        .add_dense(32, activation='relu')
        .add_dense(NUM_CLASSES, activation='softmax')
        .set_optimizer(Adam(learning_rate=learning_rate))
        .set_loss_function(CategoricalCrossentropy())
        .build()
    )


def main():
    parser = argparse.ArgumentParser(description='CNN digit classification with clear_sequential')
    parser.add_argument('--epochs', type=int, default=EPOCHS, help='Number of training epochs')
    parser.add_argument('--learning-rate', type=float, default=LEARNING_RATE, help='Adam learning rate')
    parser.add_argument('--eval-only', action='store_true',
                        help='Load saved weights and evaluate without training')
    parser.add_argument('--no-plot', action='store_true', help='Skip the loss plot')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    # 1-2. Load and preprocess data
    (X_train_raw, y_train_raw), (X_test_raw, y_test_raw) = load_sklearn_digits()
    X_train, y_train = preprocess_digits_data(X_train_raw, y_train_raw)
    X_test, y_test = preprocess_digits_data(X_test_raw, y_test_raw)

    # 3. Define the model
    model = build_model(args.learning_rate)
    print(model.summary())

    # 4. Train (or load)
    if args.eval_only:
        if not os.path.exists(MODEL_SAVE_PATH):
            print(f"No saved weights found at {MODEL_SAVE_PATH}; train first.")
            sys.exit(1)
        model.load_weights(MODEL_SAVE_PATH)
    else:
        model.fit(X_train, y_train, epochs=args.epochs)
        model.save_weights(MODEL_SAVE_PATH)

    # 5. Evaluate
    metrics = model.evaluate(X_test, y_test)
    predictions = model.predict(X_test)
    print("\n--- Final Evaluation ---")
    print(f"Test Loss: {metrics['loss']:.4f}")
    print(f"Test Accuracy: {accuracy_score(y_test, predictions) * 100:.2f}%")
    print("\nExample Predictions (first 10 test samples):")
    print(f"  Predicted: {np.argmax(predictions[:10], axis=1)}")
    print(f"  Actual:    {y_test_raw[:10]}")

    # 6. Plot
    if not args.eval_only and not args.no_plot:
        plt.figure(figsize=(6, 4))
        plt.plot(range(1, len(model.history['loss']) + 1), model.history['loss'], marker='o', label='Training Loss')
        plt.xlabel('Epoch')
        plt.ylabel('Loss')
        plt.title('Training Loss over Epochs')
        plt.legend()
        plt.grid(True)
        plt.tight_layout()
        plt.show()


if __name__ == "__main__":
    main()
