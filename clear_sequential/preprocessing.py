import numpy as np
from typing import Optional, Tuple

from .errors import InvalidConfigurationError, ShapeMismatchError


def one_hot_encode(labels: np.ndarray, num_classes: Optional[int] = None) -> np.ndarray:
    """
    Converts integer class labels to one-hot rows.

    Args:
        labels: 1-D array of non-negative integer labels.
        num_classes: Number of columns; defaults to max(labels) + 1.

    Returns:
        Float array of shape (len(labels), num_classes).
    """
    labels = np.asarray(labels)
    if labels.ndim != 1:
        raise ShapeMismatchError(f"Labels must be 1-D, got shape {labels.shape}")
    labels = labels.astype(int)
    if labels.size and labels.min() < 0:
        raise InvalidConfigurationError("Labels must be non-negative integers")
    if num_classes is None:
        num_classes = int(labels.max()) + 1 if labels.size else 0
    if labels.size and labels.max() >= num_classes:
        raise InvalidConfigurationError(f"Label {labels.max()} out of range for {num_classes} classes")
    return np.eye(num_classes)[labels]


def one_hot_decode(one_hot: np.ndarray) -> np.ndarray:
    """Index of the largest entry of each row."""
    one_hot = np.asarray(one_hot)
    if one_hot.ndim != 2:
        raise ShapeMismatchError(f"Expected a 2-D (batch, classes) array, got shape {one_hot.shape}")
    return np.argmax(one_hot, axis=1)


def min_max_scale(
    X: np.ndarray,
    feature_range: Tuple[float, float] = (0.0, 1.0),
    data_min: Optional[np.ndarray] = None,
    data_max: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Rescales every feature (all axes but the first) linearly into feature_range.

    Pass the training set's data_min/data_max to scale a test set consistently.
    Constant features map to the lower bound of the range.
    """
    X = np.asarray(X, dtype=float)
    low, high = feature_range
    if high <= low:
        raise InvalidConfigurationError(f"feature_range must be increasing, got {feature_range}")
    data_min = np.min(X, axis=0) if data_min is None else np.asarray(data_min, dtype=float)
    data_max = np.max(X, axis=0) if data_max is None else np.asarray(data_max, dtype=float)

    span = data_max - data_min
    span = np.where(span == 0, 1.0, span)
    return low + (X - data_min) / span * (high - low)


def accuracy_score(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """
    Fraction of matching labels.

    2-D inputs are treated as one-hot / probability rows and compared by argmax.
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.ndim == 2 and y_true.shape[1] > 1:
        y_true = np.argmax(y_true, axis=1)
    if y_pred.ndim == 2 and y_pred.shape[1] > 1:
        y_pred = np.argmax(y_pred, axis=1)
    y_true = y_true.reshape(-1)
    y_pred = y_pred.reshape(-1)
    if y_true.shape != y_pred.shape:
        raise ShapeMismatchError(f"Label counts differ: {y_true.shape[0]} vs {y_pred.shape[0]}")
    if y_true.size == 0:
        return float('nan')
    return float(np.mean(y_true == y_pred))
