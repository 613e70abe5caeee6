"""Angle wrapping and saturation helpers shared by the dynamics and controller."""

import numpy as np


def normalize_angle(angle):
    """Wrap an angle (or array of angles) into (-pi, pi].

    Args:
        angle: Scalar or array in radians

    Returns:
        Wrapped value(s) of the same shape
    """
    wrapped = np.mod(np.asarray(angle, dtype=np.float64) + np.pi, 2.0 * np.pi) - np.pi
    # -pi belongs to the other end of the interval
    wrapped = np.where(wrapped <= -np.pi, wrapped + 2.0 * np.pi, wrapped)
    if np.ndim(wrapped) == 0:
        return float(wrapped)
    return wrapped


def angle_diff(target, source):
    """Shortest signed angular difference target - source in (-pi, pi]."""
    return normalize_angle(np.asarray(target, dtype=np.float64) - np.asarray(source, dtype=np.float64))


def clamp_magnitude(vec: np.ndarray, max_norm: float) -> np.ndarray:
    """Uniformly rescale a vector so its Euclidean norm does not exceed max_norm."""
    norm = float(np.linalg.norm(vec))
    if norm > max_norm:
        return vec * (max_norm / norm)
    return vec
