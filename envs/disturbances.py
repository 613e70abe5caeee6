"""External disturbances acting on the drone.

Four independent contributions are summed every physics tick:

    wind        steady horizontal flow + slow vertical gusts + turbulence
    impulse     periodic random kick with a short linear fade
    collision   spring-like repulsion from static spherical obstacles
    projectile  impact of balls thrown at the drone from a sphere around it

Spherical directions (impulse, projectile spawn) are sampled uniformly in
elevation angle rather than in solid angle, so they cluster toward the poles.
"""

import logging
from dataclasses import dataclass, field
from itertools import count

import numpy as np

from utils.drone_config import DEFAULT_DISTURBANCES, G, DT, GEOMETRY_EPS

logger = logging.getLogger(__name__)

# ── Wind ──
WIND_DRAG = 0.3                 # force per (m/s) of relative wind
WIND_GUST_RATE = 0.5            # rad/s of the vertical gust sinusoid
WIND_GUST_AMPLITUDE = 0.3       # fraction of wind speed
WIND_GUST_NOISE = 0.2           # fraction of wind speed
VERTICAL_TURBULENCE_SCALE = 0.8

# ── Impulse ──
IMPULSE_DURATION = 0.1          # s

# ── Obstacles ──
NUM_OBSTACLES = 5
COLLISION_DISTANCE = 0.5        # m of clearance where repulsion starts
COLLISION_STIFFNESS = 50.0      # N/m

# ── Projectiles ──
SPAWN_RADIUS = 15.0             # m from the drone
PROJECTILE_SPEED = 12.0         # m/s
PROJECTILE_HIT_RADIUS = 0.5     # m
RESTITUTION = 0.6
BOUNCE_JITTER = 1.0             # m/s, uniform per axis
BOUNCE_SPIN = 10.0              # rad/s, uniform per axis
IMPACT_FORCE = 25.0             # N
AIR_DECAY = 0.5                 # 1/s, horizontal velocity decay while falling
GROUND_HEIGHT = 0.0             # m
MAX_PROJECTILE_DISTANCE = 50.0  # m from origin
MAX_PROJECTILE_AGE = 20.0       # s
MAX_PROJECTILES = 16


def _direction(azimuth: float, elevation: float) -> np.ndarray:
    """Unit vector from azimuth (around Y, from +X toward +Z) and elevation."""
    horizontal = np.cos(elevation)
    return np.array([
        np.cos(azimuth) * horizontal,
        np.sin(elevation),
        np.sin(azimuth) * horizontal,
    ])


@dataclass
class Obstacle:
    """Static sphere the drone is pushed away from."""
    position: np.ndarray
    radius: float

    def copy(self) -> "Obstacle":
        return Obstacle(self.position.copy(), self.radius)


@dataclass
class Projectile:
    """A thrown ball. `rotation` and `spin` are cosmetic (renderers only)."""
    id: int
    position: np.ndarray
    velocity: np.ndarray
    spawn_time: float
    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    spin: np.ndarray = field(default_factory=lambda: np.zeros(3))
    has_collided: bool = False
    is_falling: bool = False

    def copy(self) -> "Projectile":
        return Projectile(
            id=self.id,
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            spawn_time=self.spawn_time,
            rotation=self.rotation.copy(),
            spin=self.spin.copy(),
            has_collided=self.has_collided,
            is_falling=self.is_falling,
        )


def _zero_forces() -> dict:
    return {key: np.zeros(3) for key in ("wind", "impulse", "collision", "projectile", "total")}


class DisturbanceField:
    """Generates the external force on the drone as a function of time and position.

    Args:
        params: Partial overrides of DEFAULT_DISTURBANCES
        rng: numpy Generator (or seed) driving every random draw, including the
            one-off obstacle layout
    """

    def __init__(self, params: dict | None = None, rng: np.random.Generator | int | None = None):
        self.np_random = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)

        self.wind_speed = DEFAULT_DISTURBANCES["wind_speed"]
        self.wind_direction = DEFAULT_DISTURBANCES["wind_direction"]
        self.wind_turbulence = DEFAULT_DISTURBANCES["wind_turbulence"]
        self.impulse_frequency = DEFAULT_DISTURBANCES["impulse_frequency"]
        self.impulse_intensity = DEFAULT_DISTURBANCES["impulse_intensity"]
        self.obstacles_enabled = DEFAULT_DISTURBANCES["obstacles_enabled"]
        self.projectiles_enabled = DEFAULT_DISTURBANCES["projectiles_enabled"]
        self.projectile_frequency = DEFAULT_DISTURBANCES["projectile_frequency"]
        if params:
            self.update_parameters(params)

        self.impulse_duration = IMPULSE_DURATION
        self.collision_distance = COLLISION_DISTANCE
        self.collision_stiffness = COLLISION_STIFFNESS
        self.obstacles = self._generate_obstacles()

        self._projectile_ids = count()
        self.reset()

    # ── Configuration ──

    def update_parameters(self, params: dict):
        """Apply a partial parameter dict; unknown keys are ignored."""
        for key, value in params.items():
            if key not in DEFAULT_DISTURBANCES:
                logger.warning("Ignoring unknown disturbance parameter %r", key)
                continue
            setattr(self, key, value)

    def get_parameters(self) -> dict:
        return {key: getattr(self, key) for key in DEFAULT_DISTURBANCES}

    def reset(self):
        """Clear time-dependent state. The obstacle layout is kept."""
        self.time = 0.0
        self.last_impulse_time = 0.0
        self.impulse_start_time = -1.0
        self.current_impulse = np.zeros(3)
        self.last_spawn_time = 0.0
        self.projectiles: list[Projectile] = []
        self._last_forces = _zero_forces()

    # ── Wind ──

    def get_wind_force(self) -> np.ndarray:
        if self.wind_speed == 0:
            return np.zeros(3)

        direction = np.deg2rad(self.wind_direction)
        speed = self.wind_speed
        base = np.array([speed * np.cos(direction), 0.0, speed * np.sin(direction)])

        vertical = (np.sin(self.time * WIND_GUST_RATE) * speed * WIND_GUST_AMPLITUDE
                    + (self.np_random.random() - 0.5) * speed * WIND_GUST_NOISE)
        turbulence = (self.np_random.random(3) - 0.5) * speed * self.wind_turbulence
        turbulence[1] *= VERTICAL_TURBULENCE_SCALE

        wind = base + turbulence
        wind[1] += vertical
        return wind * WIND_DRAG

    # ── Impulse ──

    def get_impulse_force(self, current_time: float) -> np.ndarray:
        if self.impulse_frequency > 0:
            interval = 1.0 / self.impulse_frequency
            if current_time - self.last_impulse_time >= interval:
                azimuth = self.np_random.random() * 2.0 * np.pi
                elevation = (self.np_random.random() - 0.5) * np.pi
                self.current_impulse = self.impulse_intensity * _direction(azimuth, elevation)
                self.last_impulse_time = current_time
                self.impulse_start_time = current_time

        elapsed = current_time - self.impulse_start_time
        if self.impulse_start_time >= 0 and elapsed < self.impulse_duration:
            # Linear fade to zero over the impulse duration
            return self.current_impulse * ((self.impulse_duration - elapsed) / self.impulse_duration)
        return np.zeros(3)

    # ── Obstacles ──

    def _generate_obstacles(self) -> list[Obstacle]:
        obstacles = []
        for _ in range(NUM_OBSTACLES):
            position = np.array([
                (self.np_random.random() - 0.5) * 10.0,
                self.np_random.random() * 4.0 + 1.0,
                (self.np_random.random() - 0.5) * 10.0,
            ])
            radius = self.np_random.random() * 0.5 + 0.3
            obstacles.append(Obstacle(position, radius))
        return obstacles

    def get_collision_force(self, drone_position) -> np.ndarray:
        if not self.obstacles_enabled:
            return np.zeros(3)

        drone_position = np.asarray(drone_position, dtype=np.float64)
        total = np.zeros(3)
        for obstacle in self.obstacles:
            offset = drone_position - obstacle.position
            distance = float(np.linalg.norm(offset))
            reach = self.collision_distance + obstacle.radius
            if distance < reach and distance > GEOMETRY_EPS:
                total += offset / distance * self.collision_stiffness * (reach - distance)
        return total

    # ── Projectiles ──

    def spawn_projectile(self, drone_position, current_time: float, direction=None) -> Projectile:
        """Launch a ball from SPAWN_RADIUS around the drone, aimed at it.

        Args:
            drone_position: Current drone position
            current_time: Simulation time of the launch
            direction: Optional vector from the drone to the spawn point;
                sampled at random when omitted or shorter than GEOMETRY_EPS
        """
        drone_position = np.asarray(drone_position, dtype=np.float64)
        if direction is not None:
            direction = np.asarray(direction, dtype=np.float64)
            norm = float(np.linalg.norm(direction))
            direction = direction / norm if norm >= GEOMETRY_EPS else None
        if direction is None:
            azimuth = self.np_random.random() * 2.0 * np.pi
            elevation = (self.np_random.random() - 0.5) * np.pi
            direction = _direction(azimuth, elevation)

        projectile = Projectile(
            id=next(self._projectile_ids),
            position=drone_position + SPAWN_RADIUS * direction,
            velocity=-PROJECTILE_SPEED * direction,
            spawn_time=current_time,
        )
        self.projectiles.append(projectile)
        self.last_spawn_time = current_time
        return projectile

    def _bounce(self, projectile: Projectile, normal: np.ndarray) -> np.ndarray:
        """Reflect off the drone; returns the impact force on the drone."""
        incoming = projectile.velocity.copy()
        reflected = incoming - 2.0 * np.dot(incoming, normal) * normal
        jitter = (self.np_random.random(3) - 0.5) * 2.0 * BOUNCE_JITTER
        projectile.velocity = reflected * RESTITUTION + jitter
        projectile.spin = (self.np_random.random(3) - 0.5) * 2.0 * BOUNCE_SPIN
        projectile.has_collided = True
        projectile.is_falling = True

        speed = float(np.linalg.norm(incoming))
        if speed < GEOMETRY_EPS:
            return np.zeros(3)
        return incoming / speed * IMPACT_FORCE

    def _update_projectiles(self, drone_position: np.ndarray, current_time: float, dt: float) -> np.ndarray:
        if (self.projectiles_enabled and self.projectile_frequency > 0
                and len(self.projectiles) < MAX_PROJECTILES
                and current_time - self.last_spawn_time >= 1.0 / self.projectile_frequency):
            self.spawn_projectile(drone_position, current_time)

        impact = np.zeros(3)
        alive = []
        for p in self.projectiles:
            if not p.has_collided:
                p.position += p.velocity * dt
                offset = p.position - drone_position
                distance = float(np.linalg.norm(offset))
                if distance < PROJECTILE_HIT_RADIUS:
                    if distance > GEOMETRY_EPS:
                        normal = offset / distance
                    else:
                        # Dead centre: bounce straight back along the flight path
                        normal = -p.velocity / max(float(np.linalg.norm(p.velocity)), GEOMETRY_EPS)
                    impact += self._bounce(p, normal)
                    logger.debug("Projectile %d hit the drone at t=%.2f", p.id, current_time)
            else:
                p.velocity[1] -= G * dt
                decay = max(0.0, 1.0 - AIR_DECAY * dt)
                p.velocity[0] *= decay
                p.velocity[2] *= decay
                p.position += p.velocity * dt
            p.rotation += p.spin * dt

            expired = (
                (p.is_falling and p.position[1] < GROUND_HEIGHT)
                or np.linalg.norm(p.position) > MAX_PROJECTILE_DISTANCE
                or current_time - p.spawn_time > MAX_PROJECTILE_AGE
            )
            if not expired:
                alive.append(p)
        self.projectiles = alive
        return impact

    # ── Totals ──

    def get_total_external_forces(self, drone_position, current_time: float, dt: float = DT) -> np.ndarray:
        """Sum of all disturbance forces for this tick (N, world frame)."""
        self.time = current_time
        drone_position = np.asarray(drone_position, dtype=np.float64)

        wind = self.get_wind_force()
        impulse = self.get_impulse_force(current_time)
        collision = self.get_collision_force(drone_position)
        projectile = self._update_projectiles(drone_position, current_time, dt)
        total = wind + impulse + collision + projectile

        self._last_forces = {
            "wind": wind,
            "impulse": impulse,
            "collision": collision,
            "projectile": projectile,
            "total": total,
        }
        return total.copy()

    def get_last_forces(self) -> dict:
        """Decomposed forces of the most recent tick (copies)."""
        return {key: value.copy() for key, value in self._last_forces.items()}

    def get_obstacles(self) -> list[Obstacle]:
        return [obstacle.copy() for obstacle in self.obstacles]

    def get_active_projectiles(self) -> list[Projectile]:
        return [p.copy() for p in self.projectiles]
