"""Simulation environment: rigid-body dynamics, disturbances and the fixed-step loop."""

from .rigid_body import RigidBody
from .disturbances import DisturbanceField, Obstacle, Projectile
from .simulation import SimulationLoop, SimulationMode

__all__ = ["RigidBody", "DisturbanceField", "Obstacle", "Projectile", "SimulationLoop", "SimulationMode"]
