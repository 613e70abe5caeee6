"""Fixed-timestep simulation loop tying the body, controller and disturbances together.

Physics and control always advance in fixed steps of 1/60 s. Wall-clock frame
time is fed into an accumulator (each frame capped to 0.1 s, the accumulator to
0.25 s) and drained one step at a time, so results depend only on the sequence
of frame timings and never on how fast frames are rendered.
"""

import copy
import logging
import time
from enum import Enum

import numpy as np

from lyapunov_controller import StabilizingController
from utils.drone_config import (
    DT, MAX_FRAME_DT, MAX_ACCUMULATOR, DEMO_PRESET,
    ADVISORY_GROUND, ADVISORY_TILT, ADVISORY_DISTANCE,
)
from .disturbances import DisturbanceField
from .rigid_body import RigidBody

logger = logging.getLogger(__name__)


class SimulationMode(Enum):
    IDLE = "idle"
    RUNNING = "running"
    TRAINING = "training"


class SimulationLoop:
    """Owns one drone, one controller and one disturbance field.

    The interactive loop (start/advance/run_realtime) and training runs
    (begin_training/end_training) are mutually exclusive: while TRAINING the
    loop refuses to start, and entering TRAINING stops it.
    """

    def __init__(self, drone: RigidBody | None = None, controller: StabilizingController | None = None,
                 disturbances: DisturbanceField | None = None, fixed_dt: float = DT,
                 seed: int | None = None):
        self.drone = drone or RigidBody()
        self.controller = controller or StabilizingController()
        self.disturbances = disturbances or DisturbanceField(rng=seed)

        self.fixed_dt = fixed_dt
        self.max_frame_dt = MAX_FRAME_DT
        self.max_accumulator = MAX_ACCUMULATOR

        self.mode = SimulationMode.IDLE
        self.is_paused = False
        self.is_demo_mode = False
        self._saved_params = None

        self.time = 0.0
        self.accumulator = 0.0
        self.step_count = 0
        self.last_control = None
        self.advisories = {"on_ground": False, "excessive_tilt": False, "out_of_bounds": False}

    @property
    def is_running(self) -> bool:
        return self.mode is SimulationMode.RUNNING

    @property
    def is_training(self) -> bool:
        return self.mode is SimulationMode.TRAINING

    # ── Lifecycle ──

    def start(self) -> bool:
        """Enter RUNNING. Refused (returns False) while a training run owns the loop."""
        if self.mode is SimulationMode.TRAINING:
            logger.warning("Cannot start the interactive loop during training")
            return False
        if self.mode is not SimulationMode.RUNNING:
            self.mode = SimulationMode.RUNNING
            self.is_paused = False
            logger.info("Simulation started")
        return True

    def stop(self):
        if self.mode is SimulationMode.RUNNING:
            self.mode = SimulationMode.IDLE
            self.is_paused = False
            logger.info("Simulation stopped")

    def pause(self) -> bool:
        """Toggle pause; returns the new paused flag."""
        self.is_paused = not self.is_paused
        logger.info("Simulation %s", "paused" if self.is_paused else "resumed")
        return self.is_paused

    def reset(self):
        self.drone.reset()
        self.controller.reset()
        self.disturbances.reset()
        self.time = 0.0
        self.accumulator = 0.0
        self.step_count = 0
        self.last_control = None
        for key in self.advisories:
            self.advisories[key] = False

    def begin_training(self) -> bool:
        """IDLE/RUNNING → TRAINING. Returns whether the interactive loop was running."""
        was_running = self.is_running
        self.stop()
        self.mode = SimulationMode.TRAINING
        logger.info("Training mode entered")
        return was_running

    def end_training(self):
        """TRAINING → IDLE. The interactive loop is not restarted automatically."""
        if self.mode is SimulationMode.TRAINING:
            self.mode = SimulationMode.IDLE
            logger.info("Training mode left")

    # ── Stepping ──

    def step(self, dt: float | None = None) -> dict:
        """One physics tick: control → motors → disturbances → integrate → advance time."""
        dt = self.fixed_dt if dt is None else dt
        control = self.controller.compute_control(self.drone.state, dt)
        self.drone.set_motor_speeds(control["motor_speeds"])
        external_force = self.disturbances.get_total_external_forces(
            self.drone.state.position, self.time, dt,
        )
        self.drone.update(dt, external_force, np.zeros(3))
        self.time += dt
        self.step_count += 1
        self.last_control = control
        self._check_critical_states()
        return control

    def run_steps(self, n_steps: int) -> np.ndarray:
        """Run n fixed steps headless and return the Lyapunov value of each step."""
        trace = np.empty(n_steps)
        for i in range(n_steps):
            trace[i] = self.step()["lyapunov"]
        return trace

    def advance(self, elapsed: float) -> int:
        """Feed one rendered frame's wall-clock time; returns physics steps taken."""
        if not self.is_running or self.is_paused:
            return 0
        self.accumulator = min(self.accumulator + min(elapsed, self.max_frame_dt), self.max_accumulator)
        steps = 0
        while self.accumulator >= self.fixed_dt:
            self.step()
            self.accumulator -= self.fixed_dt
            steps += 1
        return steps

    def run_realtime(self, duration: float | None = None, on_frame=None, frame_interval: float = DT):
        """Frame-driven loop against the wall clock.

        Each frame sleeps for frame_interval, drains the accumulator, then calls
        on_frame(snapshot). Stops when the loop leaves RUNNING or after
        `duration` seconds of simulated time.
        """
        if not self.start():
            return
        last = time.perf_counter()
        start_time = self.time
        while self.is_running:
            time.sleep(frame_interval)
            now = time.perf_counter()
            self.advance(now - last)
            last = now
            if on_frame is not None:
                on_frame(self.get_snapshot())
            if duration is not None and self.time - start_time >= duration:
                self.stop()

    # ── Telemetry ──

    def _check_critical_states(self):
        s = self.drone.state
        current = {
            "on_ground": bool(s.position[1] <= ADVISORY_GROUND),
            "excessive_tilt": bool(abs(s.roll) > ADVISORY_TILT or abs(s.pitch) > ADVISORY_TILT),
            "out_of_bounds": bool(np.hypot(s.position[0], s.position[2]) > ADVISORY_DISTANCE),
        }
        for key, flag in current.items():
            if flag != self.advisories[key]:
                if flag:
                    logger.warning("Advisory raised: %s at t=%.2fs", key, self.time)
                else:
                    logger.info("Advisory cleared: %s at t=%.2fs", key, self.time)
                self.advisories[key] = flag

    def get_snapshot(self) -> dict:
        """Read-only copy of everything a renderer or UI needs."""
        return {
            "time": self.time,
            "state": self.drone.get_state().as_dict(),
            "forces": self.disturbances.get_last_forces(),
            "lyapunov": self.controller.lyapunov_value,
            "target_position": self.controller.target_position.copy(),
            "target_rotation": self.controller.target_rotation.copy(),
            "advisories": dict(self.advisories),
            "mode": self.mode.value,
        }

    # ── Inputs from the UI layer ──

    def set_target_position(self, x: float, y: float, z: float):
        self.controller.set_target_position(x, y, z)

    def set_target_rotation(self, roll: float, pitch: float, yaw: float):
        self.controller.set_target_rotation(roll, pitch, yaw)

    def update_drone_parameters(self, params: dict):
        self.drone.update_parameters(**params)
        logger.info("Drone parameters updated: %s", params)

    def update_disturbance_parameters(self, params: dict):
        self.disturbances.update_parameters(params)
        logger.info("Disturbance parameters updated: %s", params)

    def update_controller_parameters(self, params: dict):
        self.controller.update_parameters(params)
        logger.info("Controller parameters updated: %s", params)

    def get_parameters(self) -> dict:
        return {
            "drone": self.drone.get_parameters(),
            "disturbances": self.disturbances.get_parameters(),
            "controller": self.controller.get_gains(),
        }

    def set_parameters(self, params: dict):
        """Apply any of the groups returned by get_parameters()."""
        if "drone" in params:
            self.drone.update_parameters(**params["drone"])
        if "disturbances" in params:
            self.disturbances.update_parameters(params["disturbances"])
        if "controller" in params:
            self.controller.update_parameters(params["controller"])

    # ── Demo ──

    def start_demo(self) -> bool:
        """Hold (0, 2, 0) against strong wind and frequent kicks with a stiffer controller."""
        if self.is_training:
            return False
        if not self.is_demo_mode:
            self._saved_params = copy.deepcopy(self.get_parameters())
        self.set_parameters(DEMO_PRESET)
        self.set_target_position(0.0, 2.0, 0.0)
        self.set_target_rotation(0.0, 0.0, 0.0)
        self.reset()
        self.is_demo_mode = True
        logger.info("Demo mode on")
        return self.start()

    def exit_demo(self):
        if self.is_demo_mode and self._saved_params is not None:
            self.set_parameters(self._saved_params)
            self.is_demo_mode = False
            self._saved_params = None
            logger.info("Demo mode off, parameters restored")
