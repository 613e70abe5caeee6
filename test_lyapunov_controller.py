"""Tests for the cascaded stabilizing controller and its Lyapunov monitor."""

import numpy as np
import pytest

from envs import RigidBody, SimulationLoop
from lyapunov_controller import StabilizingController
from utils.drone_config import DT, G, DEFAULT_GAINS, HOVER_MOTOR_SPEED, MAX_INTEGRAL, MAX_TILT


@pytest.mark.unit
def test_lyapunov_zero_and_hover_mix_at_target():
    body = RigidBody()
    controller = StabilizingController()
    control = controller.compute_control(body.state, DT)

    assert control["lyapunov"] == 0.0
    assert controller.lyapunov_value == 0.0
    np.testing.assert_allclose(control["motor_speeds"], [HOVER_MOTOR_SPEED] * 4)
    np.testing.assert_allclose(control["control_torque"], np.zeros(3), atol=1e-12)


@pytest.mark.unit
def test_lyapunov_value():
    body = RigidBody()
    body.set_pose(position=[1.0, 2.0, 0.0], velocity=[0.0, 2.0, 0.0],
                  rotation=[0.5, 0.0, 0.0], angular_velocity=[0.0, 0.0, 1.0])
    controller = StabilizingController()
    expected = 0.5 * (1.0 + 0.25 + 4.0 + 1.0)
    assert controller.compute_lyapunov(body.state) == pytest.approx(expected)


@pytest.mark.unit
def test_lyapunov_uses_wrapped_rotation_error():
    body = RigidBody()
    controller = StabilizingController()
    controller.set_target_rotation(0.0, 0.0, np.pi - 0.1)
    body.set_pose(rotation=[0.0, 0.0, -np.pi + 0.1])
    assert controller.compute_lyapunov(body.state) == pytest.approx(0.5 * 0.2 ** 2)


@pytest.mark.unit
def test_integral_anti_windup():
    body = RigidBody()
    body.set_pose(rotation=[0.0, 0.0, 0.0])
    controller = StabilizingController()
    controller.set_target_position(100.0, 100.0, -100.0)
    controller.set_target_rotation(0.0, 0.0, 3.0)
    for _ in range(5000):
        controller.compute_control(body.state, DT)
    assert np.all(np.abs(controller.integral_pos_error) <= MAX_INTEGRAL)
    assert np.all(np.abs(controller.integral_rot_error) <= MAX_INTEGRAL)
    assert np.abs(controller.integral_pos_error).max() == pytest.approx(MAX_INTEGRAL)


@pytest.mark.unit
def test_control_limits():
    body = RigidBody()
    controller = StabilizingController()
    controller.set_target_position(50.0, 2.0, 50.0)
    control = controller.compute_control(body.state, DT)
    assert np.linalg.norm(control["control_force"]) == pytest.approx(controller.max_control_force)
    assert abs(control["desired_angles"]["roll"]) <= MAX_TILT
    assert abs(control["desired_angles"]["pitch"]) == pytest.approx(MAX_TILT)
    assert np.linalg.norm(control["control_torque"]) <= controller.max_control_torque + 1e-12


@pytest.mark.unit
def test_motor_mix_always_in_unit_range():
    rng = np.random.default_rng(0)
    body = RigidBody()
    for _ in range(2000):
        force = rng.uniform(-30.0, 30.0, 3)
        torque = rng.uniform(-8.0, 8.0, 3)
        motors = StabilizingController.mix(body.state, force, torque)
        assert motors.shape == (4,)
        assert np.all(motors >= 0.0) and np.all(motors <= 1.0)


@pytest.mark.unit
def test_mix_inverts_body_torque_model():
    body = RigidBody()
    force = np.array([0.0, -0.5 * body.mass * G, 0.0])
    torque = np.array([0.1, 0.05, -0.1])
    body.set_motor_speeds(StabilizingController.mix(body.state, force, torque))
    np.testing.assert_allclose(body.compute_total_torque(), torque, atol=1e-12)


@pytest.mark.unit
def test_rotation_rates_use_relabelled_axes():
    body = RigidBody()
    controller = StabilizingController({"kp_rot": 0.0, "ki_rot": 0.0, "kd_rot": 1.0})
    body.set_pose(angular_velocity=[0.0, 0.0, 0.5])      # pure pitch rate
    torque = controller.compute_rotation_control(body.state, DT, np.zeros(3))
    np.testing.assert_allclose(torque, [0.0, 0.0, -0.5])


@pytest.mark.unit
def test_inner_loop_does_not_overwrite_target():
    body = RigidBody()
    controller = StabilizingController()
    controller.set_target_rotation(0.0, 0.0, 0.4)
    controller.set_target_position(5.0, 2.0, 5.0)
    control = controller.compute_control(body.state, DT)
    assert control["desired_angles"]["pitch"] != 0.0
    np.testing.assert_array_equal(controller.target_rotation, [0.0, 0.0, 0.4])


@pytest.mark.unit
def test_no_tilt_setpoint_without_thrust():
    body = RigidBody()
    controller = StabilizingController()
    force = np.array([5.0, -G * body.mass, 5.0])
    assert controller.desired_tilt(body.state, force) == (0.0, 0.0)


@pytest.mark.unit
def test_gain_management():
    controller = StabilizingController()
    assert controller.get_gains() == DEFAULT_GAINS

    controller.update_parameters({"kp_pos": 12.0, "bogus": 1.0})
    assert controller.kp_pos == 12.0
    assert not hasattr(controller, "bogus")

    with pytest.raises(KeyError):
        controller.set_gains({"kp_pos": 1.0})

    new = {name: 1.0 + i for i, name in enumerate(DEFAULT_GAINS)}
    controller.set_gains(new)
    assert controller.get_gains() == new


@pytest.mark.unit
def test_reset_clears_integrals_keeps_targets():
    body = RigidBody()
    controller = StabilizingController()
    controller.set_target_position(1.0, 3.0, 0.0)
    for _ in range(10):
        controller.compute_control(body.state, DT)
    controller.reset()
    np.testing.assert_array_equal(controller.integral_pos_error, np.zeros(3))
    np.testing.assert_array_equal(controller.integral_rot_error, np.zeros(3))
    assert controller.lyapunov_value == 0.0
    np.testing.assert_array_equal(controller.target_position, [1.0, 3.0, 0.0])


@pytest.mark.integration
def test_recovery_reduces_lyapunov_value():
    sim = SimulationLoop(seed=0)
    sim.update_disturbance_parameters({"wind_speed": 0.0, "impulse_frequency": 0.0,
                                       "obstacles_enabled": False, "projectiles_enabled": False})
    sim.drone.set_pose(position=[2.0, 3.0, -1.5])
    sim.set_target_position(0.0, 2.0, 0.0)

    trace = sim.run_steps(600)
    assert np.all(np.isfinite(trace))
    assert np.mean(trace[-100:]) < np.mean(trace[:100])
