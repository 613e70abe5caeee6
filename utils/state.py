"""Quadrotor state container with Euler-to-quaternion export for renderers."""

import numpy as np
from scipy.spatial.transform import Rotation

from .drone_config import MASS, MOTOR_THRUST, ARM_LENGTH, START_MOTOR_SPEED


class DroneState:
    """12D quadrotor state: [x, y, z, roll, pitch, yaw, vx, vy, vz, wx, wy, wz].

    The world frame is Y-up. Besides the kinematic vector the state carries the
    four motor speed fractions and the physical configuration (mass, single
    motor thrust, arm length) the controller needs for gravity compensation
    and mixing.

    State indices:
        0-2: Position (x, y, z)
        3-5: Attitude (roll, pitch, yaw) in radians, each in (-pi, pi]
        6-8: Linear velocity (vx, vy, vz)
        9-11: Angular velocity (wx, wy, wz); roll rides on wx, pitch on wz, yaw on wy
    """

    # Renderer applies (roll, yaw, pitch) about its (X, Y, Z) axes, intrinsic order
    RENDER_SEQ = "XYZ"

    def __init__(self, mass: float = MASS, motor_thrust: float = MOTOR_THRUST,
                 arm_length: float = ARM_LENGTH):
        self.state = np.zeros(12, dtype=np.float64)
        self.motor_speeds = np.full(4, START_MOTOR_SPEED, dtype=np.float64)
        self.mass = float(mass)
        self.motor_thrust = float(motor_thrust)
        self.arm_length = float(arm_length)

    @property
    def inertia(self) -> np.ndarray:
        """Diagonal inertia (Ixx, Iyy, Izz) from a point-mass cross frame.

        Each motor is a point mass of mass/8 at arm_length from the centre.
        Always derived from the current mass and arm length.
        """
        motor_mass = self.mass / 8.0
        arm_sq = self.arm_length ** 2
        return np.array([
            2.0 * motor_mass * arm_sq,
            2.0 * motor_mass * arm_sq,
            4.0 * motor_mass * arm_sq,
        ])

    @property
    def position(self) -> np.ndarray:
        return self.state[0:3]

    @property
    def rotation(self) -> np.ndarray:
        return self.state[3:6]

    @property
    def velocity(self) -> np.ndarray:
        return self.state[6:9]

    @property
    def angular_velocity(self) -> np.ndarray:
        return self.state[9:12]

    @property
    def roll(self) -> float:
        return float(self.state[3])

    @property
    def pitch(self) -> float:
        return float(self.state[4])

    @property
    def yaw(self) -> float:
        return float(self.state[5])

    def vec(self) -> np.ndarray:
        """Return state as a 12D vector."""
        return self.state.copy()

    def copy(self) -> "DroneState":
        """Deep copy; the result shares no arrays with this state."""
        other = DroneState(self.mass, self.motor_thrust, self.arm_length)
        other.state[:] = self.state
        other.motor_speeds[:] = self.motor_speeds
        return other

    def as_dict(self) -> dict:
        """Telemetry snapshot with copied arrays."""
        return {
            "position": self.position.copy(),
            "velocity": self.velocity.copy(),
            "rotation": self.rotation.copy(),
            "angular_velocity": self.angular_velocity.copy(),
            "motor_speeds": self.motor_speeds.copy(),
        }

    def render_quaternion(self) -> np.ndarray:
        """Orientation as a unit quaternion [x, y, z, w] in the renderer's axes."""
        roll, pitch, yaw = self.state[3:6]
        return Rotation.from_euler(self.RENDER_SEQ, [roll, yaw, pitch]).as_quat()

    def __repr__(self) -> str:
        return (
            f"DroneState(pos={self.position}, rot={np.rad2deg(self.rotation)}, "
            f"vel={self.velocity}, ang_vel={self.angular_velocity}, "
            f"motors={self.motor_speeds})"
        )
