"""Vector arithmetic used by the centroid aggregator and the query composer.

Vectors are handled as float64 numpy arrays internally and converted back to
plain lists at the storage boundaries.
"""

import numpy as np

from shared.models.errors import DimensionMismatchError


def to_array(vector: list[float] | np.ndarray) -> np.ndarray:
    return np.asarray(vector, dtype=np.float64)


def is_finite(vector: list[float] | np.ndarray) -> bool:
    """True when every component is a finite number (no NaN, no +/-Infinity)."""
    return bool(np.all(np.isfinite(to_array(vector))))


def check_dimension(vector: np.ndarray, expected: int, context: str = "") -> None:
    """Raise DimensionMismatchError unless the vector has the expected length."""
    if vector.shape[0] != expected:
        raise DimensionMismatchError(expected=expected, actual=int(vector.shape[0]), context=context)


def add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    check_dimension(b, a.shape[0])
    return a + b


def subtract(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    check_dimension(b, a.shape[0])
    return a - b


def scale(vector: np.ndarray, factor: float) -> np.ndarray:
    return vector * factor


def normalize(vector: list[float] | np.ndarray) -> np.ndarray:
    """Scale a vector to unit length. The zero vector is returned unchanged."""
    arr = to_array(vector)
    magnitude = np.linalg.norm(arr)
    if magnitude == 0:
        return arr
    return arr / magnitude


def is_zero(vector: np.ndarray) -> bool:
    return not np.any(vector)
