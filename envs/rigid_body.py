import logging

import numpy as np

from utils import DroneState, normalize_angle
from utils.drone_config import (
    MASS, MOTOR_THRUST, ARM_LENGTH, G, YAW_TORQUE_COEFF,
    LINEAR_DRAG, ANGULAR_DRAG, FLOOR_HEIGHT, START_POSITION, START_MOTOR_SPEED,
)

logger = logging.getLogger(__name__)


class RigidBody:
    """Quadrotor rigid body in a Y-up world with a '+' motor layout.

    Motors are ordered [front, right, back, left]; front/back spin one way,
    right/left the other. Thrust acts along the body "up" axis and is projected
    into the world with a small-angle-consistent model.
    """

    def __init__(self, mass: float = MASS, motor_thrust: float = MOTOR_THRUST,
                 arm_length: float = ARM_LENGTH, position=START_POSITION):
        self.gravity = G
        self.drag_coefficient = LINEAR_DRAG
        self.angular_drag = ANGULAR_DRAG
        self._start_position = np.asarray(position, dtype=np.float64).copy()

        self._state = DroneState(mass, motor_thrust, arm_length)
        self._state.position[:] = self._start_position

    # ── Configuration ──

    @property
    def state(self) -> DroneState:
        """Live state (mutable, owned by this body). Use get_state() for a snapshot."""
        return self._state

    @property
    def mass(self) -> float:
        return self._state.mass

    @property
    def motor_thrust(self) -> float:
        return self._state.motor_thrust

    @property
    def arm_length(self) -> float:
        return self._state.arm_length

    @property
    def inertia(self) -> np.ndarray:
        return self._state.inertia

    def update_parameters(self, mass: float | None = None, motor_thrust: float | None = None,
                          arm_length: float | None = None, **unknown):
        """Change physical parameters; inertia follows automatically. Unknown keys are ignored."""
        for key in unknown:
            logger.warning("Ignoring unknown drone parameter %r", key)
        if mass is not None:
            self._state.mass = float(mass)
        if motor_thrust is not None:
            self._state.motor_thrust = float(motor_thrust)
        if arm_length is not None:
            self._state.arm_length = float(arm_length)

    def get_parameters(self) -> dict:
        return {
            "mass": self.mass,
            "motor_thrust": self.motor_thrust,
            "arm_length": self.arm_length,
        }

    # ── Actuation ──

    def set_motor_speeds(self, speeds):
        """Set the four motor fractions, each clamped to [0, 1]."""
        self._state.motor_speeds[:] = np.clip(np.asarray(speeds, dtype=np.float64), 0.0, 1.0)

    def compute_total_force(self, external_force=None) -> np.ndarray:
        """World-frame force from thrust, gravity, drag and an external push."""
        s = self._state
        total_thrust = float(np.sum(s.motor_speeds)) * s.motor_thrust
        roll, pitch = s.roll, s.pitch

        # Positive roll tilts the thrust toward -Z
        thrust = np.array([
            total_thrust * np.sin(pitch),
            total_thrust * np.cos(pitch) * np.cos(roll),
            -total_thrust * np.sin(roll) * np.cos(pitch),
        ])
        gravity = np.array([0.0, -s.mass * self.gravity, 0.0])
        drag = -self.drag_coefficient * s.velocity

        force = thrust + gravity + drag
        if external_force is not None:
            force = force + np.asarray(external_force, dtype=np.float64)
        return force

    def compute_total_torque(self, external_torque=None) -> np.ndarray:
        """Torque vector (x = roll, y = yaw, z = pitch) from motor differentials."""
        s = self._state
        front, right, back, left = s.motor_speeds
        lever = s.motor_thrust * s.arm_length

        torque = np.array([
            (right - left) * lever,
            ((front + back) - (right + left)) * s.motor_thrust * YAW_TORQUE_COEFF,
            (front - back) * lever,
        ])
        torque -= self.angular_drag * s.angular_velocity
        if external_torque is not None:
            torque = torque + np.asarray(external_torque, dtype=np.float64)
        return torque

    # ── Integration ──

    def update(self, dt: float, external_force=None, external_torque=None):
        """Advance the state by one step with semi-implicit Euler.

        Args:
            dt: Time step (s)
            external_force: World-frame force (N), e.g. from the disturbance field
            external_torque: Torque (N·m) in the body's (roll, yaw, pitch) channels
        """
        s = self._state
        force = self.compute_total_force(external_force)
        torque = self.compute_total_torque(external_torque)

        # Linear: velocity first, then position from the new velocity
        s.velocity[:] += force / s.mass * dt
        s.position[:] += s.velocity * dt

        if s.position[1] < FLOOR_HEIGHT:
            s.position[1] = FLOOR_HEIGHT
            s.velocity[1] = max(0.0, s.velocity[1])

        # Angular: same order
        s.angular_velocity[:] += torque / s.inertia * dt
        wx, wy, wz = s.angular_velocity
        s.rotation[0] = normalize_angle(s.rotation[0] + wx * dt)
        s.rotation[1] = normalize_angle(s.rotation[1] + wz * dt)
        s.rotation[2] = normalize_angle(s.rotation[2] + wy * dt)

    # ── State access ──

    def get_state(self) -> DroneState:
        """Immutable-by-convention snapshot (deep copy) of the current state."""
        return self._state.copy()

    def set_pose(self, position=None, velocity=None, rotation=None, angular_velocity=None):
        """Overwrite parts of the kinematic state (used to set up test runs)."""
        s = self._state
        if position is not None:
            s.position[:] = position
        if velocity is not None:
            s.velocity[:] = velocity
        if rotation is not None:
            s.rotation[:] = normalize_angle(np.asarray(rotation, dtype=np.float64))
        if angular_velocity is not None:
            s.angular_velocity[:] = angular_velocity

    def reset(self, position=None):
        """Back to rest at the start position with motors at half speed."""
        s = self._state
        s.state[:] = 0.0
        s.position[:] = self._start_position if position is None else position
        s.motor_speeds[:] = START_MOTOR_SPEED
