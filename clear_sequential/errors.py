# clear_sequential/errors.py

"""Exceptions raised by the engine.

Every error derives from a built-in exception so callers that already catch
``ValueError`` / ``TypeError`` keep working.
"""


class ClearSequentialError(Exception):
    """Base class for all engine errors."""


class ShapeMismatchError(ClearSequentialError, ValueError):
    """An input's rank or shape fails a layer's, loss's or model's precondition."""


class InvalidConfigurationError(ClearSequentialError, ValueError):
    """Unrecognised option (padding mode, activation name, ...) or misuse of the builder."""


class UnsupportedLayerTypeError(ClearSequentialError, TypeError):
    """An operation was requested on a layer variant that has no rule for it."""
