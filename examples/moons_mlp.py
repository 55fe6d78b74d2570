import argparse
import logging
import numpy as np
import matplotlib.pyplot as plt
from sklearn.datasets import make_moons
from sklearn.model_selection import train_test_split

from clear_sequential import Sequential
from clear_sequential.preprocessing import min_max_scale, one_hot_encode

# --- Plotting Function ---

def plot_decision_boundary(X: np.ndarray, y_raw: np.ndarray, model: Sequential):
    """Plots the decision boundary of a trained model.

    Args:
        X: Normalized input features, shape (n_samples, 2).
        y_raw: True integer class labels, shape (n_samples,).
        model: Trained Sequential instance.
    """
    h = 0.02  # Step size in the mesh

    x_min, x_max = X[:, 0].min() - 0.5, X[:, 0].max() + 0.5
    y_min, y_max = X[:, 1].min() - 0.5, X[:, 1].max() + 0.5
    xx, yy = np.meshgrid(np.arange(x_min, x_max, h),
                         np.arange(y_min, y_max, h))

    Z_probs = model.predict(np.c_[xx.ravel(), yy.ravel()], batch_size=1024)
    if Z_probs.shape[1] > 1:
        Z = np.argmax(Z_probs, axis=1)
    else:
        Z = (Z_probs >= 0.5).astype(int).ravel()
    Z = Z.reshape(xx.shape)

    plt.figure(figsize=(10, 8))
    plt.contourf(xx, yy, Z, cmap=plt.cm.Spectral, alpha=0.8)
    plt.scatter(X[:, 0], X[:, 1], c=y_raw, cmap=plt.cm.Spectral, edgecolor='k', s=35)
    plt.xlabel("Feature 1 (Normalized)")
    plt.ylabel("Feature 2 (Normalized)")
    plt.title("Decision Boundary")
    plt.show()


def plot_loss_history(history: dict):
    plt.figure(figsize=(8, 5))
    plt.plot(history['epoch'], history['loss'], label='Training Loss')
    plt.xlabel('Epoch')
    plt.ylabel('Loss')
    plt.title('Training Loss')
    plt.grid(True)
    plt.legend()
    plt.show()


def main():
    parser = argparse.ArgumentParser(description='Two-moons classification with a Dense network')
    parser.add_argument('--loss', choices=['categorical_crossentropy', 'binary_crossentropy'],
                        default='categorical_crossentropy',
                        help='Cross-entropy variant trained on the one-hot softmax output')
    parser.add_argument('--epochs', type=int, default=200)
    parser.add_argument('--batch-size', type=int, default=32)
    parser.add_argument('--learning-rate', type=float, default=0.01)
    parser.add_argument('--no-plot', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    # --- Data ---
    X, y_raw = make_moons(n_samples=500, noise=0.2, random_state=42)
    X = min_max_scale(X)
    X_train, X_test, y_train_raw, y_test_raw = train_test_split(X, y_raw, test_size=0.2, random_state=42)

    y_train, y_test = one_hot_encode(y_train_raw, 2), one_hot_encode(y_test_raw, 2)

    # --- Model ---
    model = (
        Sequential(batch_size=args.batch_size, seed=42)
        .add_input(2)
        .add_dense(16, activation='relu')
        .add_dense(16, activation='relu')
        .add_dense(2, activation='softmax')
        .set_optimizer('adam', learning_rate=args.learning_rate)
        .set_loss_function(args.loss)
        .build()
    )
    print(model.summary())

    history = model.fit(X_train, y_train, epochs=args.epochs, log_every=20)

    metrics = model.evaluate(X_test, y_test)
    print(f"Test loss: {metrics['loss']:.4f}")
    print(f"Test accuracy: {metrics.get('accuracy', float('nan')):.4f}")

    if not args.no_plot:
        plot_loss_history(history)
        plot_decision_boundary(X, y_raw, model)


if __name__ == "__main__":
    main()
