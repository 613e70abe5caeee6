"""Tests for the fixed-timestep loop, its mode state machine and telemetry."""

import numpy as np
import pytest

from envs import SimulationLoop, SimulationMode
from utils.drone_config import DT, DEMO_PRESET, DEFAULT_GAINS, START_POSITION


@pytest.fixture
def sim():
    loop = SimulationLoop(seed=0)
    loop.update_disturbance_parameters({"impulse_frequency": 0.0})
    return loop


@pytest.mark.unit
def test_advance_is_noop_unless_running(sim):
    assert sim.advance(0.05) == 0
    assert sim.time == 0.0
    sim.start()
    sim.pause()
    assert sim.advance(0.05) == 0
    sim.pause()
    assert sim.advance(0.04) == 2


@pytest.mark.unit
def test_accumulator_carries_remainder(sim):
    sim.start()
    assert sim.advance(0.04) == 2
    assert sim.accumulator == pytest.approx(0.04 - 2 * DT)
    assert sim.time == pytest.approx(2 * DT)
    assert sim.step_count == 2


@pytest.mark.unit
def test_frame_time_is_capped(sim):
    sim.start()
    steps = sim.advance(5.0)
    # 0.1 s per frame at most → about six ticks
    assert steps in (5, 6)
    assert sim.accumulator < DT


@pytest.mark.unit
def test_accumulator_is_capped(sim):
    sim.max_frame_dt = 10.0
    sim.start()
    steps = sim.advance(10.0)
    assert steps in (14, 15)


@pytest.mark.unit
def test_cadence_depends_only_on_total_time():
    a = SimulationLoop(seed=1)
    b = SimulationLoop(seed=1)
    a.start()
    b.start()
    for _ in range(60):
        a.advance(1.0 / 60.0 + 1e-9)
    for _ in range(30):
        b.advance(2.0 / 60.0 + 2e-9)
    assert a.step_count == b.step_count == 60
    np.testing.assert_array_equal(a.drone.state.vec(), b.drone.state.vec())


@pytest.mark.unit
def test_step_order_and_time(sim):
    control = sim.step()
    assert set(control) == {"motor_speeds", "control_force", "control_torque", "desired_angles", "lyapunov"}
    np.testing.assert_allclose(sim.drone.state.motor_speeds, control["motor_speeds"])
    assert sim.time == pytest.approx(DT)
    trace = sim.run_steps(10)
    assert trace.shape == (10,)
    assert sim.step_count == 11


@pytest.mark.unit
def test_training_state_machine(sim):
    assert sim.mode is SimulationMode.IDLE
    assert sim.start()
    assert sim.is_running

    assert sim.begin_training() is True
    assert sim.mode is SimulationMode.TRAINING
    assert not sim.is_running
    assert sim.start() is False
    assert sim.advance(0.1) == 0

    sim.end_training()
    assert sim.mode is SimulationMode.IDLE
    assert sim.begin_training() is False
    sim.end_training()
    assert sim.start()


@pytest.mark.unit
def test_reset(sim):
    sim.start()
    sim.set_target_position(1.0, 3.0, 0.0)
    sim.advance(0.1)
    sim.reset()
    assert sim.time == 0.0
    assert sim.accumulator == 0.0
    np.testing.assert_array_equal(sim.drone.state.position, START_POSITION)
    np.testing.assert_array_equal(sim.controller.integral_pos_error, np.zeros(3))
    # Targets survive a reset
    np.testing.assert_array_equal(sim.controller.target_position, [1.0, 3.0, 0.0])


@pytest.mark.unit
def test_snapshot_is_a_copy(sim):
    sim.step()
    snap = sim.get_snapshot()
    assert set(snap) >= {"time", "state", "forces", "lyapunov", "target_position",
                         "target_rotation", "advisories"}
    snap["state"]["position"][:] = 42.0
    snap["target_position"][:] = 42.0
    snap["advisories"]["on_ground"] = True
    assert not np.any(sim.drone.state.position == 42.0)
    assert not np.any(sim.controller.target_position == 42.0)
    assert sim.advisories["on_ground"] is False


@pytest.mark.unit
def test_advisories(sim):
    sim.drone.set_pose(rotation=[np.deg2rad(70.0), 0.0, 0.0])
    sim.step()
    assert sim.advisories["excessive_tilt"]

    sim.reset()
    sim.drone.set_pose(position=[25.0, 2.0, 0.0])
    sim.step()
    assert sim.advisories["out_of_bounds"]
    assert not sim.advisories["excessive_tilt"]


@pytest.mark.unit
def test_parameter_roundtrip(sim):
    saved = sim.get_parameters()
    assert saved["controller"] == DEFAULT_GAINS
    sim.update_drone_parameters({"mass": 1.5})
    sim.update_controller_parameters({"kp_pos": 15.0})
    sim.update_disturbance_parameters({"wind_speed": 4.0})
    assert sim.drone.mass == 1.5
    assert sim.controller.kp_pos == 15.0
    assert sim.disturbances.wind_speed == 4.0
    sim.set_parameters(saved)
    assert sim.get_parameters() == saved


@pytest.mark.unit
def test_unknown_drone_parameter_is_ignored(sim):
    sim.update_drone_parameters({"mass": 1.2, "motorDistance": 0.3})
    assert sim.drone.mass == 1.2
    assert "motorDistance" not in sim.get_parameters()["drone"]

    sim.set_parameters({"drone": {"arm_length": 0.3, "color": "red"}})
    assert sim.drone.arm_length == 0.3
    assert sim.drone.mass == 1.2


@pytest.mark.unit
def test_demo_mode_applies_and_restores(sim):
    before = sim.get_parameters()
    assert sim.start_demo()
    assert sim.is_running and sim.is_demo_mode
    assert sim.drone.motor_thrust == DEMO_PRESET["drone"]["motor_thrust"]
    assert sim.disturbances.wind_speed == DEMO_PRESET["disturbances"]["wind_speed"]
    assert sim.controller.get_gains() == DEMO_PRESET["controller"]
    np.testing.assert_array_equal(sim.controller.target_position, [0.0, 2.0, 0.0])

    sim.exit_demo()
    assert not sim.is_demo_mode
    assert sim.get_parameters() == before


@pytest.mark.unit
def test_run_realtime_stops_after_duration(sim):
    frames = []
    sim.run_realtime(duration=0.1, on_frame=frames.append, frame_interval=0.01)
    assert not sim.is_running
    assert sim.time >= 0.1
    assert len(frames) >= 1
    assert frames[-1]["time"] == pytest.approx(sim.time)


@pytest.mark.unit
def test_run_realtime_refused_during_training(sim):
    sim.begin_training()
    sim.run_realtime(duration=0.1)
    assert sim.time == 0.0
