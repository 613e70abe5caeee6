"""Utilities for the quadrotor simulator."""

from .state import DroneState
from .normalization import normalize_angle, angle_diff, clamp_magnitude
from . import drone_config

__all__ = ["DroneState", "normalize_angle", "angle_diff", "clamp_magnitude", "drone_config"]
