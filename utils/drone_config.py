"""Central simulator parameters — single source of truth.

All Python modules should import from here instead of hardcoding values.
World frame is Y-up; motor order is [front, right, back, left].
"""

import numpy as np

# ── Base parameters (change these to update everywhere) ──
MASS = 1.0                      # kg
MOTOR_THRUST = 2.5              # N per motor at full speed
ARM_LENGTH = 0.25               # m (centre to motor)
YAW_TORQUE_COEFF = 0.05         # m, reaction-torque lever of a counter-rotating pair
G = 9.81                        # m/s²
DT = 1.0 / 60.0                 # s (fixed physics step, 60 Hz)
LINEAR_DRAG = 0.1               # N·s/m
ANGULAR_DRAG = 0.1              # N·m·s/rad
FLOOR_HEIGHT = 0.1              # m
START_POSITION = (0.0, 2.0, 0.0)
START_MOTOR_SPEED = 0.5

# ── Frame loop ──
MAX_FRAME_DT = 0.1              # s, longest wall-clock frame fed to the accumulator
MAX_ACCUMULATOR = 0.25          # s

# ── Controller limits ──
MAX_INTEGRAL = 10.0             # anti-windup bound per axis
MAX_CONTROL_FORCE = 20.0        # N
MAX_CONTROL_TORQUE = 5.0        # N·m
MAX_TILT = np.pi / 6            # rad (±30°)
THRUST_EPS = 0.1                # N, below this no tilt setpoint is generated
MAX_GAIN = 50.0

GAIN_NAMES = ("kp_pos", "kd_pos", "ki_pos", "kp_rot", "kd_rot", "ki_rot")

# Attitude loop must settle faster than the position loop it serves
DEFAULT_GAINS = {
    "kp_pos": 5.0,
    "kd_pos": 5.0,
    "ki_pos": 0.1,
    "kp_rot": 40.0,
    "kd_rot": 2.0,
    "ki_rot": 0.05,
}

# ── Disturbances ──
GEOMETRY_EPS = 0.01             # m, distances below this contribute no force

DEFAULT_DISTURBANCES = {
    "wind_speed": 0.0,          # m/s
    "wind_direction": 0.0,      # deg, 0 = +X
    "wind_turbulence": 0.2,
    "impulse_frequency": 0.5,   # kicks per second
    "impulse_intensity": 5.0,   # N
    "obstacles_enabled": False,
    "projectiles_enabled": False,
    "projectile_frequency": 0.25,  # spawns per second
}

# ── Advisory (telemetry-only) bounds ──
ADVISORY_GROUND = 0.05          # m
ADVISORY_TILT = np.pi / 3       # rad
ADVISORY_DISTANCE = 20.0        # m, horizontal

# ── Presets ──
DEMO_PRESET = {
    "drone": {"mass": 1.0, "motor_thrust": 3.0, "arm_length": 0.25},
    "disturbances": {
        "wind_speed": 8.0,
        "wind_direction": 45.0,
        "impulse_frequency": 1.5,
        "impulse_intensity": 15.0,
        "obstacles_enabled": False,
    },
    "controller": {
        "kp_pos": 4.0,
        "kd_pos": 4.0,
        "ki_pos": 0.2,
        "kp_rot": 50.0,
        "kd_rot": 3.0,
        "ki_rot": 0.1,
    },
}

TRAINING_DISTURBANCES = {
    "wind_speed": 6.0,
    "wind_direction": 45.0,
    "impulse_frequency": 2.0,
    "impulse_intensity": 12.0,
    "obstacles_enabled": False,
    "projectiles_enabled": False,
}

# ── Caller-side validation ranges (low, high, high_inclusive) ──
PARAMETER_RANGES = {
    "drone": {
        "mass": (0.0, 10.0, True),
        "motor_thrust": (0.0, 20.0, True),
        "arm_length": (0.0, 1.0, True),
    },
    "disturbances": {
        "wind_speed": (0.0, 20.0, True),
        "wind_direction": (0.0, 360.0, False),
        "impulse_frequency": (0.0, 5.0, True),
        "impulse_intensity": (0.0, 50.0, True),
    },
    "controller": {name: (0.0, MAX_GAIN, True) for name in GAIN_NAMES},
}

# Groups whose lower bound is exclusive (physical quantities that must be > 0)
_STRICT_LOWER = {"drone"}

# ── Derived parameters ──
HOVER_MOTOR_SPEED = MASS * G / (4 * MOTOR_THRUST)       # (~0.981 at defaults)


def validate_parameters(group: str, params: dict) -> list[str]:
    """Check a partial parameter dict against the UI-facing ranges.

    The simulation core never calls this; it belongs to whatever layer feeds
    user input into the core.

    Returns:
        List of human-readable violations, empty when everything is in range.
    """
    ranges = PARAMETER_RANGES[group]
    errors = []
    for key, value in params.items():
        if key not in ranges:
            continue
        low, high, high_inclusive = ranges[key]
        too_low = value <= low if group in _STRICT_LOWER else value < low
        too_high = value > high if high_inclusive else value >= high
        if too_low or too_high:
            errors.append(f"{group}.{key}={value} outside [{low}, {high}]")
    return errors
