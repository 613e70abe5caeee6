"""Cascaded PID stabilizer for the quadrotor, monitored by a Lyapunov function.

Architecture:
    Position PID → desired world-frame control force
    Force → desired roll/pitch (tilt-to-accelerate, ±30°)
    Orientation PID → control torque
    Force + torque → four motor speed fractions (inverse of the body's torque model)

The Lyapunov candidate

    V = ½ (‖p* − p‖² + ‖θ* ⊖ θ‖² + ‖v‖² + ‖ω‖²)

is evaluated on every call. It is zero only at the target pose with no motion
and serves both as live telemetry and as the fitness signal for gain search.
"""

import logging

import numpy as np

from utils import DroneState, angle_diff, clamp_magnitude
from utils.drone_config import (
    G, YAW_TORQUE_COEFF, GAIN_NAMES, DEFAULT_GAINS, START_POSITION,
    MAX_INTEGRAL, MAX_CONTROL_FORCE, MAX_CONTROL_TORQUE, MAX_TILT, THRUST_EPS,
)

logger = logging.getLogger(__name__)


class StabilizingController:
    """Cascaded position → attitude → motor controller.

    Gains are a dict keyed by GAIN_NAMES. Integral accumulators are clamped to
    ±max_integral per axis (anti-windup); the D terms act on the measured rates
    (derivative-on-measurement), so setpoint changes cause no derivative kick.
    """

    def __init__(self, gains: dict | None = None):
        g = dict(DEFAULT_GAINS)
        if gains:
            g.update(gains)
        self.kp_pos = g["kp_pos"]
        self.kd_pos = g["kd_pos"]
        self.ki_pos = g["ki_pos"]
        self.kp_rot = g["kp_rot"]
        self.kd_rot = g["kd_rot"]
        self.ki_rot = g["ki_rot"]
        # Limits
        self.max_integral = MAX_INTEGRAL
        self.max_control_force = MAX_CONTROL_FORCE
        self.max_control_torque = MAX_CONTROL_TORQUE
        self.max_tilt = MAX_TILT
        # Targets
        self.target_position = np.array(START_POSITION, dtype=np.float64)
        self.target_rotation = np.zeros(3)
        # Integral states (position xyz, rotation roll/pitch/yaw)
        self.integral_pos_error = np.zeros(3)
        self.integral_rot_error = np.zeros(3)
        self.lyapunov_value = 0.0

    # ── Gains and targets ──

    def update_parameters(self, params: dict):
        """Apply a partial gains dict; unknown keys are ignored."""
        for key, value in params.items():
            if key not in GAIN_NAMES:
                logger.warning("Ignoring unknown controller parameter %r", key)
                continue
            setattr(self, key, float(value))

    def set_gains(self, gains: dict):
        """Replace all six gains. Missing names raise KeyError."""
        values = {name: float(gains[name]) for name in GAIN_NAMES}
        for name, value in values.items():
            setattr(self, name, value)

    def get_gains(self) -> dict:
        return {name: getattr(self, name) for name in GAIN_NAMES}

    def set_target_position(self, x: float, y: float, z: float):
        self.target_position = np.array([x, y, z], dtype=np.float64)

    def set_target_rotation(self, roll: float, pitch: float, yaw: float):
        self.target_rotation = np.array([roll, pitch, yaw], dtype=np.float64)

    def reset(self):
        """Zero the integrators and V. Gains and targets are kept."""
        self.integral_pos_error = np.zeros(3)
        self.integral_rot_error = np.zeros(3)
        self.lyapunov_value = 0.0

    # ── Lyapunov function ──

    def position_error(self, state: DroneState) -> np.ndarray:
        return self.target_position - state.position

    def rotation_error(self, state: DroneState, target_rotation=None) -> np.ndarray:
        target = self.target_rotation if target_rotation is None else target_rotation
        return angle_diff(target, state.rotation)

    def compute_lyapunov(self, state: DroneState) -> float:
        """V(x) = ½(‖pos err‖² + ‖rot err‖² + ‖v‖² + ‖ω‖²); cached in lyapunov_value."""
        pos_err = self.position_error(state)
        rot_err = self.rotation_error(state)
        self.lyapunov_value = 0.5 * float(
            pos_err @ pos_err
            + rot_err @ rot_err
            + state.velocity @ state.velocity
            + state.angular_velocity @ state.angular_velocity
        )
        return self.lyapunov_value

    # ── PID stages ──

    def compute_position_control(self, state: DroneState, dt: float) -> np.ndarray:
        """Position PID → world-frame control force (N), magnitude-capped."""
        error = self.position_error(state)
        self.integral_pos_error = np.clip(
            self.integral_pos_error + error * dt, -self.max_integral, self.max_integral,
        )
        force = (self.kp_pos * error
                 + self.ki_pos * self.integral_pos_error
                 - self.kd_pos * state.velocity)
        return clamp_magnitude(force, self.max_control_force)

    def compute_rotation_control(self, state: DroneState, dt: float, target_rotation) -> np.ndarray:
        """Orientation PID toward an explicit target → torque (x=roll, y=yaw, z=pitch)."""
        error = self.rotation_error(state, target_rotation)
        self.integral_rot_error = np.clip(
            self.integral_rot_error + error * dt, -self.max_integral, self.max_integral,
        )
        # Rates per Euler angle: roll ← ωx, pitch ← ωz, yaw ← ωy
        wx, wy, wz = state.angular_velocity
        rates = np.array([wx, wz, wy])
        command = (self.kp_rot * error
                   + self.ki_rot * self.integral_rot_error
                   - self.kd_rot * rates)
        torque = np.array([command[0], command[2], command[1]])
        return clamp_magnitude(torque, self.max_control_torque)

    def desired_tilt(self, state: DroneState, control_force: np.ndarray) -> tuple[float, float]:
        """Roll/pitch that point the thrust along the requested force."""
        thrust = state.mass * G + control_force[1]
        if thrust <= THRUST_EPS:
            return 0.0, 0.0
        des_pitch = np.clip(np.arctan2(control_force[0], thrust), -self.max_tilt, self.max_tilt)
        # Positive roll pushes toward -Z, so +Z needs negative roll
        des_roll = np.clip(np.arctan2(-control_force[2], thrust), -self.max_tilt, self.max_tilt)
        return float(des_roll), float(des_pitch)

    @staticmethod
    def mix(state: DroneState, control_force: np.ndarray, control_torque: np.ndarray) -> np.ndarray:
        """Map collective force and torques to [front, right, back, left] in [0, 1]."""
        max_thrust = state.motor_thrust
        lever = 2.0 * max_thrust * state.arm_length

        base = state.mass * G / (4.0 * max_thrust)
        vertical = control_force[1] / (4.0 * max_thrust)
        roll_c = control_torque[0] / lever
        pitch_c = control_torque[2] / lever
        yaw_c = control_torque[1] / (4.0 * max_thrust * YAW_TORQUE_COEFF)

        collective = base + vertical
        motors = np.array([
            collective + pitch_c + yaw_c,   # front
            collective + roll_c - yaw_c,    # right
            collective - pitch_c + yaw_c,   # back
            collective - roll_c - yaw_c,    # left
        ])
        return np.clip(motors, 0.0, 1.0)

    def compute_control(self, state: DroneState, dt: float) -> dict:
        """Run one full cascade.

        Args:
            state: Current drone state (not modified)
            dt: Control period (s)

        Returns:
            dict with motor_speeds (4,), control_force (3,), control_torque (3,),
            desired_angles {"roll", "pitch"} and lyapunov (float)
        """
        lyapunov = self.compute_lyapunov(state)

        control_force = self.compute_position_control(state, dt)
        des_roll, des_pitch = self.desired_tilt(state, control_force)

        # Inner loop tracks the tilt setpoint; the stored yaw target is kept
        inner_target = np.array([des_roll, des_pitch, self.target_rotation[2]])
        control_torque = self.compute_rotation_control(state, dt, inner_target)

        motor_speeds = self.mix(state, control_force, control_torque)

        return {
            "motor_speeds": motor_speeds,
            "control_force": control_force,
            "control_torque": control_torque,
            "desired_angles": {"roll": des_roll, "pitch": des_pitch},
            "lyapunov": lyapunov,
        }
