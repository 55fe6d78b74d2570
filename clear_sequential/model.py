import numpy as np
from typing import Dict, List, Optional, Tuple, Union
import logging
import time

from .activations import Activation
from .errors import InvalidConfigurationError, ShapeMismatchError
from .layers import Cache, Conv2D, Dense, Flatten, Input, Layer, MaxPooling2D
from .losses import BinaryCrossentropy, CategoricalCrossentropy, Loss, get_loss
from .optimizers import Optimizer, get_optimizer


class Sequential:
    """
    A linear stack of layers trained with minibatch gradient descent.

    The model is configured with a fluent builder and frozen by `build()`:

        model = (Sequential(batch_size=32, seed=42)
                 .add_input(8, 8, 1)
                 .add_conv2d(8, (3, 3), activation='relu')
                 .add_max_pooling2d()
                 .add_flatten()
                 .add_dense(10, activation='softmax')
                 .set_optimizer(Adam(learning_rate=0.001))
                 .set_loss_function(CategoricalCrossentropy())
                 .build())

    Each layer infers its input shape from the previous layer's output shape.
    `build()` clones the optimizer once per layer (index-aligned with `layers`)
    and initialises the clones attached to trainable layers.
    """

    def __init__(self, batch_size: int = 32, seed: Optional[int] = None):
        if batch_size <= 0:
            raise InvalidConfigurationError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.rng = np.random.default_rng(seed)

        self.layers: List[Layer] = []
        self.optimizers: List[Optimizer] = []
        self.optimizer: Optional[Optimizer] = None  # prototype, cloned per layer in build()
        self.loss: Optional[Loss] = None
        self.built = False

        # Running per-batch losses of the current epoch
        self._epoch_losses: List[float] = []

        # Training history tracking
        self.history: Dict[str, List] = {
            'epoch': [],
            'loss': [],
            'batch_size': [],
            'time_per_epoch': [],
        }

    # --- Builder methods ---

    def _check_not_built(self):
        if self.built:
            raise InvalidConfigurationError("The model is already built; its configuration can no longer change.")

    def _check_built(self):
        if not self.built:
            raise InvalidConfigurationError("The model must be built with build() before training or prediction.")

    def _previous_output_shape(self, layer_name: str, rank: Optional[int] = None) -> Tuple[int, ...]:
        """Output shape of the last layer added so far, checked against the rank the new layer needs."""
        if not self.layers:
            raise InvalidConfigurationError(f"Call add_input() before adding a {layer_name} layer.")
        previous = self.layers[-1]
        shape = previous.output_shape
        if shape is None:
            raise InvalidConfigurationError(
                f"{previous.__class__.__name__} cannot supply an input shape for a {layer_name} layer."
            )
        if rank is not None and len(shape) != rank:
            raise InvalidConfigurationError(
                f"A {layer_name} layer needs a {rank}-D per-sample input, but "
                f"{previous.__class__.__name__} outputs shape {shape}."
            )
        return shape

    def add_input(self, *shape: int) -> 'Sequential':
        self._check_not_built()
        if self.layers:
            raise InvalidConfigurationError("The Input layer must be the first layer of the model.")
        self.layers.append(Input(*shape))
        return self

    def add_dense(self, neurons: int, activation: Union[str, Activation, None] = None) -> 'Sequential':
        self._check_not_built()
        (n_inputs,) = self._previous_output_shape('Dense', rank=1)
        self.layers.append(Dense(n_inputs, neurons, activation=activation, rng=self.rng))
        return self

    def add_conv2d(
        self,
        filters: int,
        kernel_size: Union[int, Tuple[int, int]],
        padding: str = 'valid',
        activation: Union[str, Activation, None] = 'relu',
        strides: Union[int, Tuple[int, int]] = (1, 1),
    ) -> 'Sequential':
        self._check_not_built()
        input_shape = self._previous_output_shape('Conv2D', rank=3)
        self.layers.append(Conv2D(
            input_shape=input_shape,
            filters=filters,
            kernel_size=kernel_size,
            strides=strides,
            padding=padding,
            activation=activation,
            rng=self.rng,
        ))
        return self

    def add_flatten(self) -> 'Sequential':
        self._check_not_built()
        self.layers.append(Flatten(self._previous_output_shape('Flatten')))
        return self

    def add_max_pooling2d(
        self,
        pool_size: Union[int, Tuple[int, int]] = (2, 2),
        strides: Union[int, Tuple[int, int], None] = None,
        padding: str = 'valid',
    ) -> 'Sequential':
        self._check_not_built()
        input_shape = self._previous_output_shape('MaxPooling2D', rank=3)
        self.layers.append(MaxPooling2D(input_shape, pool_size=pool_size, strides=strides, padding=padding))
        return self

    def add(self, layer: Layer) -> 'Sequential':
        """Appends a pre-built layer whose input shape must match the previous layer's output shape."""
        self._check_not_built()
        if isinstance(layer, Input):
            return self.add_input(*layer.input_shape)
        previous_shape = self._previous_output_shape(layer.__class__.__name__)
        if isinstance(layer, Flatten) and layer.input_shape is None:
            layer = Flatten(previous_shape)
        if layer.input_shape is not None and tuple(layer.input_shape) != tuple(previous_shape):
            raise ShapeMismatchError(
                f"{layer.__class__.__name__} expects per-sample input {layer.input_shape}, "
                f"previous layer outputs {previous_shape}"
            )
        self.layers.append(layer)
        return self

    def set_optimizer(self, optimizer: Union[str, Optimizer], **kwargs) -> 'Sequential':
        self._check_not_built()
        self.optimizer = get_optimizer(optimizer, **kwargs)
        return self

    def set_loss_function(self, loss: Union[str, Loss]) -> 'Sequential':
        self._check_not_built()
        self.loss = get_loss(loss)
        return self

    def build(self) -> 'Sequential':
        """Validates the configuration, clones the optimizer per layer and freezes the model."""
        self._check_not_built()
        if not self.layers or not isinstance(self.layers[0], Input):
            raise InvalidConfigurationError("The model needs an Input layer (add_input) as its first layer.")
        if len(self.layers) < 2:
            raise InvalidConfigurationError("The model needs at least one layer after the Input layer.")
        if len(self.layers[-1].output_shape) != 1:
            raise InvalidConfigurationError(
                f"The last layer must produce a 2-D (batch, outputs) tensor, "
                f"got per-sample shape {self.layers[-1].output_shape}; add a Flatten or Dense layer."
            )
        if self.optimizer is None:
            raise InvalidConfigurationError("No optimizer set; call set_optimizer() before build().")
        if self.loss is None:
            raise InvalidConfigurationError("No loss function set; call set_loss_function() before build().")

        self.optimizers = []
        for layer in self.layers:
            optimizer = self.optimizer.copy()
            if layer.trainable:
                optimizer.initialize(layer)
            self.optimizers.append(optimizer)

        self.built = True
        logging.info(f"Built Sequential model with layers: {[l.__class__.__name__ for l in self.layers]}")
        logging.info(f"Optimizer: {self.optimizer!r}, loss: {self.loss!r}")
        return self

    # --- Forward / backward ---

    @property
    def output_activation(self) -> Optional[Activation]:
        return self.layers[-1].activation if self.layers else None

    def forward(self, inputs: np.ndarray) -> Tuple[np.ndarray, List[Cache]]:
        """
        Performs a forward pass through all layers.

        Returns:
            The final (batch_size, outputs) tensor and the list of per-layer
            caches to hand to `backward`.
        """
        current_output = np.asarray(inputs, dtype=float)
        caches: List[Cache] = []
        for i, layer in enumerate(self.layers):
            logging.debug(f"Forward pass - Layer {i} input shape: {current_output.shape}")
            current_output, cache = layer.forward(current_output)
            caches.append(cache)
        return current_output, caches

    def backward(self, dvalues: np.ndarray, caches: List[Cache], fused: bool = False) -> np.ndarray:
        """
        Propagates the loss gradient through the layers in reverse order.

        Args:
            dvalues: Gradient of the loss w.r.t. the model output, or, when `fused`
                     is set, w.r.t. the last layer's pre-activation output.
            caches: Per-layer caches from the matching `forward` call.
            fused: Skip the output activation's backward step.

        Returns:
            Gradient of the loss w.r.t. the model input.
        """
        if len(caches) != len(self.layers):
            raise ShapeMismatchError(f"Expected {len(self.layers)} layer caches, got {len(caches)}")
        current_gradient = dvalues
        last_index = len(self.layers) - 1
        for i in reversed(range(len(self.layers))):
            layer = self.layers[i]
            if isinstance(layer, Input):
                continue
            logging.debug(f"Backward pass - Layer {i} receiving gradient shape: {current_gradient.shape}")
            current_gradient = layer.backward(current_gradient, caches[i], skip_activation=fused and i == last_index)
        return current_gradient

    # --- Training ---

    def train_step(self, X_batch: np.ndarray, y_batch: np.ndarray) -> float:
        """
        Trains the model on a single batch.

        forward -> loss -> loss gradient -> backward -> per-layer optimizer update.
        Parameters only change after every gradient of the step is computed.

        Returns:
            Mean loss of the batch.
        """
        self._check_built()
        outputs, caches = self.forward(X_batch)

        batch_loss = float(np.mean(self.loss.forward(outputs, y_batch)))
        if not np.isfinite(batch_loss):
            logging.warning("NaN or Inf loss detected during training. Check weights/learning rate.")
        self._epoch_losses.append(batch_loss)

        # Cross-entropy after its matching activation uses the simplified combined gradient
        fused = self.loss.is_fused_with(self.output_activation)
        initial_gradient = self.loss.backward(outputs, y_batch, fused=fused)
        self.backward(initial_gradient, caches, fused=fused)

        for layer, optimizer in zip(self.layers, self.optimizers):
            if layer.trainable:
                optimizer.update(layer)
        return batch_loss

    @property
    def running_loss(self) -> float:
        """Mean of the batch losses seen so far in the current epoch."""
        return float(np.mean(self._epoch_losses)) if self._epoch_losses else float('nan')

    def _prepare_targets(self, y: np.ndarray) -> np.ndarray:
        y = np.asarray(y, dtype=float)
        if y.ndim == 1:
            y = y.reshape(-1, 1)
        return y

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        epochs: int = 1,
        batch_size: Optional[int] = None,
        verbose: bool = True,
        log_every: int = 1,
    ) -> Dict[str, List]:
        """
        Trains the model for a number of epochs over contiguous minibatches.

        Args:
            X: Training inputs, (num_samples, features) or (num_samples, H, W, C).
            y: Training targets, (num_samples, outputs); 1-D targets become a column.
            epochs: Number of passes over the data.
            batch_size: Minibatch size; defaults to the model's batch_size. The last batch may be smaller.
            verbose: Print a progress line per epoch.
            log_every: Print progress every `log_every` epochs.

        Returns:
            The training history (per-epoch mean loss, batch size, time).
        """
        self._check_built()
        X = np.asarray(X, dtype=float)
        y = self._prepare_targets(y)
        num_samples = X.shape[0]
        if y.shape[0] != num_samples:
            raise ShapeMismatchError(f"Number of samples in X ({num_samples}) and y ({y.shape[0]}) must match.")
        if epochs < 0:
            raise InvalidConfigurationError(f"epochs must be non-negative, got {epochs}")

        batch_size = batch_size if batch_size is not None else self.batch_size
        if batch_size <= 0:
            raise InvalidConfigurationError(f"batch_size must be positive, got {batch_size}")
        n_batches = -(-num_samples // batch_size)
        logging.info(f"Training on {num_samples} samples, {n_batches} batches of up to {batch_size}.")

        for epoch in range(epochs):
            epoch_start_time = time.time()
            self._epoch_losses = []

            for batch_idx, start_idx in enumerate(range(0, num_samples, batch_size)):
                end_idx = min(start_idx + batch_size, num_samples)
                self.train_step(X[start_idx:end_idx], y[start_idx:end_idx])
                logging.debug(f"Epoch {epoch+1} batch {batch_idx+1}/{n_batches} - running loss: {self.running_loss:.5f}")

            epoch_loss = self.running_loss
            epoch_time = time.time() - epoch_start_time

            self.history['epoch'].append(epoch)
            self.history['loss'].append(epoch_loss)
            self.history['batch_size'].append(batch_size)
            self.history['time_per_epoch'].append(epoch_time)

            msg = f"Epoch {epoch+1}/{epochs} - loss: {epoch_loss:.5f} - time: {epoch_time:.2f}s"
            logging.debug(msg)
            if verbose and (epoch % log_every == 0 or epoch == epochs - 1):
                print(msg)

        logging.info("Training finished.")
        return self.history

    # --- Inference ---

    def predict(self, X: np.ndarray, batch_size: Optional[int] = None) -> np.ndarray:
        """
        Generates predictions batch by batch.

        The result is identical to a single full-batch forward pass.

        Args:
            X: Inputs with a leading batch axis; a single sample without it is also accepted.
            batch_size: Batch size for inference; defaults to the model's batch_size.

        Returns:
            Predictions of shape (num_samples, outputs).
        """
        self._check_built()
        X = np.asarray(X, dtype=float)
        if X.ndim == len(self.layers[0].input_shape):
            # Handle single sample input
            X = X[np.newaxis, ...]

        batch_size = batch_size if batch_size is not None else self.batch_size
        if batch_size <= 0:
            raise InvalidConfigurationError(f"batch_size must be positive, got {batch_size}")

        num_samples = X.shape[0]
        if num_samples == 0:
            return np.zeros((0,) + tuple(self.layers[-1].output_shape))

        batch_predictions = []
        for start_idx in range(0, num_samples, batch_size):
            outputs, _ = self.forward(X[start_idx:start_idx + batch_size])
            batch_predictions.append(outputs)
        return np.concatenate(batch_predictions, axis=0)

    def evaluate(self, X: np.ndarray, y: np.ndarray, batch_size: Optional[int] = None) -> Dict[str, float]:
        """
        Evaluates the model on the given data.

        Returns:
            {'loss': ...} plus 'accuracy' for cross-entropy losses.
        """
        predictions = self.predict(X, batch_size=batch_size)
        y = self._prepare_targets(y)
        eval_metrics = {'loss': self.loss.calculate(predictions, y)}

        if isinstance(self.loss, BinaryCrossentropy) and y.shape[1] == 1:
            eval_metrics['accuracy'] = float(np.mean((predictions > 0.5).astype(int) == y.astype(int)))
        elif isinstance(self.loss, CategoricalCrossentropy):
            eval_metrics['accuracy'] = float(np.mean(np.argmax(predictions, axis=1) == np.argmax(y, axis=1)))
        return eval_metrics

    # --- Persistence ---

    def save_weights(self, filename: str):
        """
        Saves the weights and biases of every trainable layer to a compressed .npz file.

        Args:
            filename: Destination path. '.npz' is appended when missing.
        """
        self._check_built()
        save_dict = {'layer_names': np.array([l.__class__.__name__ for l in self.layers])}
        for i, layer in enumerate(self.layers):
            if layer.trainable:
                save_dict[f'layer_{i}_weights'] = layer.weights
                save_dict[f'layer_{i}_biases'] = layer.biases

        if not filename.endswith('.npz'):
            filename += '.npz'
        np.savez_compressed(filename, **save_dict)
        logging.info(f"Model weights saved to {filename}")

    def load_weights(self, filename: str) -> 'Sequential':
        """
        Loads weights saved by `save_weights` into this (built) model.

        Raises:
            FileNotFoundError: If the file does not exist.
            ShapeMismatchError: If the stored architecture or parameter shapes differ from this model.
        """
        self._check_built()
        try:
            data = np.load(filename, allow_pickle=False)
        except FileNotFoundError:
            logging.error(f"Weight file not found: {filename}")
            raise

        with data:
            layer_names = [str(name) for name in data['layer_names']]
            expected = [l.__class__.__name__ for l in self.layers]
            if layer_names != expected:
                raise ShapeMismatchError(f"Stored architecture {layer_names} does not match model {expected}")

            for i, layer in enumerate(self.layers):
                if not layer.trainable:
                    continue
                for name in ('weights', 'biases'):
                    key = f'layer_{i}_{name}'
                    if key not in data:
                        raise ShapeMismatchError(f"Missing '{key}' in {filename}")
                    stored = data[key]
                    current = getattr(layer, name)
                    if stored.shape != current.shape:
                        raise ShapeMismatchError(
                            f"Layer {i} {name}: stored shape {stored.shape} does not match {current.shape}"
                        )
                    # In place, so the optimizer state stays aligned with the same arrays
                    current[...] = stored

        logging.info(f"Model weights loaded from {filename}")
        return self

    def count_params(self) -> int:
        return sum(layer.count_params() for layer in self.layers)

    def summary(self) -> str:
        """
        Generates a text summary of the model architecture and parameters.

        Returns:
            A string containing the model summary.
        """
        summary_str = "\n" + "=" * 60 + "\n"
        summary_str += "Sequential Model Summary\n"
        summary_str += "=" * 60 + "\n"
        for i, layer in enumerate(self.layers):
            activation = layer.activation.__class__.__name__ if layer.activation is not None else 'None'
            summary_str += f"Layer {i}: {layer.__class__.__name__}\n"
            summary_str += f"  Input Shape: {layer.input_shape}\n"
            summary_str += f"  Output Shape: {layer.output_shape}\n"
            if layer.trainable:
                summary_str += f"  Activation: {activation}\n"
                summary_str += f"  Weight Shape: {layer.weights.shape}\n"
                summary_str += f"  Bias Shape: {layer.biases.shape}\n"
            summary_str += f"  Parameters: {layer.count_params()}\n"
            summary_str += "-" * 60 + "\n"
        summary_str += f"Total Parameters: {self.count_params()}\n"
        summary_str += f"Optimizer: {self.optimizer!r}\n"
        summary_str += f"Loss: {self.loss!r}\n"
        summary_str += "=" * 60 + "\n"
        return summary_str
