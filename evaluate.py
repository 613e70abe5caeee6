"""Headless evaluation of the stabilizing controller.

Flies one episode from a start point to a target under configurable wind and
impulse disturbances and reports the Lyapunov value along the way.

Usage:
    python evaluate.py                                  # hold (0, 2, 0) for 10 s
    python evaluate.py --start 2 3 -1.5 --wind 6        # recovery under wind
    python evaluate.py --demo --plot                    # demo preset, save plots
    python evaluate.py --gains best_gains.json          # gains from gain_search.py
"""

import argparse
import logging
import os

import numpy as np
import matplotlib.pyplot as plt

from envs import SimulationLoop
from gain_search import load_gains, settling_index
from utils.drone_config import DEMO_PRESET, START_POSITION


def run_episode(sim: SimulationLoop, duration: float, record: bool = False) -> dict:
    """Step the loop for `duration` simulated seconds.

    Returns:
        dict of per-step lists: times, positions, attitudes, velocities,
        angular_velocities, motor_speeds, desired_angles, lyapunov, forces
    """
    data = {
        "times": [], "positions": [], "attitudes": [], "velocities": [],
        "angular_velocities": [], "motor_speeds": [], "desired_angles": [],
        "lyapunov": [], "forces": [],
    }
    n_steps = int(round(duration / sim.fixed_dt))

    for step_count in range(1, n_steps + 1):
        control = sim.step()
        s = sim.drone.state
        data["lyapunov"].append(control["lyapunov"])

        if record:
            data["times"].append(sim.time)
            data["positions"].append(s.position.copy())
            data["attitudes"].append(s.rotation.copy())
            data["velocities"].append(s.velocity.copy())
            data["angular_velocities"].append(s.angular_velocity.copy())
            data["motor_speeds"].append(s.motor_speeds.copy())
            des = control["desired_angles"]
            data["desired_angles"].append([des["roll"], des["pitch"]])
            data["forces"].append(sim.disturbances.get_last_forces()["total"])

        if step_count % 100 == 0:
            p = s.position
            err = float(np.linalg.norm(sim.controller.target_position - p))
            print(f"  Step {step_count}: pos=[{p[0]:.2f}, {p[1]:.2f}, {p[2]:.2f}], "
                  f"err={err:.3f}m, V={control['lyapunov']:.3f}")

    return data


def plot_episode(data: dict, target, save_dir: str = "./plots/evaluate"):
    """Generate performance plots for one evaluation episode."""
    os.makedirs(save_dir, exist_ok=True)

    t = np.array(data["times"])
    pos = np.array(data["positions"])
    tgt = np.asarray(target)
    att = np.rad2deg(np.array(data["attitudes"]))
    des_att = np.rad2deg(np.array(data["desired_angles"]))
    motors = np.array(data["motor_speeds"])
    lyap = np.array(data["lyapunov"])
    forces = np.array(data["forces"])

    fig, axes = plt.subplots(3, 2, figsize=(14, 11))
    fig.suptitle("Stabilizing Controller — Evaluation Episode", fontsize=14)

    # Position tracking
    ax = axes[0, 0]
    for i, (label, color) in enumerate(zip(["x", "y", "z"], ["r", "g", "b"])):
        ax.plot(t, pos[:, i], color=color, label=label)
        ax.axhline(tgt[i], color=color, linestyle="--", alpha=0.5)
    ax.set_ylabel("Position (m)")
    ax.set_title("Position (solid=drone, dashed=target)")
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Position error
    ax = axes[0, 1]
    ax.plot(t, np.linalg.norm(pos - tgt, axis=1), color="k")
    ax.set_ylabel("Error (m)")
    ax.set_title("Position Error (Euclidean)")
    ax.grid(True, alpha=0.3)

    # Attitude vs tilt setpoint
    ax = axes[1, 0]
    for i, (label, color) in enumerate(zip(["roll", "pitch", "yaw"], ["r", "g", "b"])):
        ax.plot(t, att[:, i], color=color, label=label)
    ax.plot(t, des_att[:, 0], color="r", linestyle="--", alpha=0.5)
    ax.plot(t, des_att[:, 1], color="g", linestyle="--", alpha=0.5)
    ax.set_ylabel("Angle (deg)")
    ax.set_title("Attitude (solid=actual, dashed=tilt setpoint)")
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Lyapunov value
    ax = axes[1, 1]
    ax.plot(t, lyap, color="C1")
    ax.set_yscale("log")
    ax.set_ylabel("V")
    ax.set_title("Lyapunov Value")
    ax.grid(True, alpha=0.3)

    # Motor speeds
    ax = axes[2, 0]
    for i, label in enumerate(["front", "right", "back", "left"]):
        ax.plot(t, motors[:, i], label=label)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Speed fraction")
    ax.set_title("Motor Speeds")
    ax.set_ylim(-0.05, 1.05)
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Disturbance force
    ax = axes[2, 1]
    for i, (label, color) in enumerate(zip(["x", "y", "z"], ["r", "g", "b"])):
        ax.plot(t, forces[:, i], color=color, label=label, alpha=0.8)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Force (N)")
    ax.set_title("External Disturbance Force")
    ax.legend()
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    filepath = os.path.join(save_dir, "episode.png")
    fig.savefig(filepath, dpi=150)
    plt.close(fig)
    print(f"  Plot saved to {filepath}")


def evaluate(duration: float = 10.0, start=START_POSITION, target=START_POSITION,
             wind: float = 0.0, impulses: float = 0.0, seed: int | None = None,
             gains_file: str | None = None, demo: bool = False, plot: bool = False) -> dict:
    """Evaluate the controller on one headless episode.

    Args:
        duration: Simulated seconds to fly
        start: Initial position (x, y, z)
        target: Target position (x, y, z)
        wind: Wind speed (m/s), blowing at 45°
        impulses: Random kicks per second
        seed: Seed for the disturbance generator
        gains_file: Optional JSON file with controller gains
        demo: Use the demo preset (stronger motors, wind and kicks) instead
        plot: Whether to save performance plots

    Returns:
        Summary dict with mean/final Lyapunov value and settling time
    """
    sim = SimulationLoop(seed=seed)

    if demo:
        sim.set_parameters(DEMO_PRESET)
        print("Using demo preset")
    else:
        sim.update_disturbance_parameters({
            "wind_speed": wind,
            "wind_direction": 45.0,
            "impulse_frequency": impulses,
        })
    if gains_file:
        sim.update_controller_parameters(load_gains(gains_file))
        print(f"Loaded gains from {gains_file}")

    sim.reset()
    sim.drone.set_pose(position=start)
    sim.set_target_position(*target)

    print("\n--- Episode ---")
    print(f"  Start:  [{start[0]:.2f}, {start[1]:.2f}, {start[2]:.2f}]")
    print(f"  Target: [{target[0]:.2f}, {target[1]:.2f}, {target[2]:.2f}]")
    print(f"  Gains:  {', '.join(f'{k}={v:.2f}' for k, v in sim.controller.get_gains().items())}")

    data = run_episode(sim, duration, record=plot)
    lyap = np.array(data["lyapunov"])
    settle = settling_index(lyap)

    summary = {
        "mean_lyapunov": float(np.mean(lyap)),
        "max_lyapunov": float(np.max(lyap)),
        "final_lyapunov": float(np.mean(lyap[-100:])),
        "settling_time": settle * sim.fixed_dt if settle < len(lyap) else None,
        "final_position": sim.drone.state.position.copy(),
        "advisories": dict(sim.advisories),
    }

    print("\n=== Evaluation Summary ===")
    print(f"Duration:    {duration:.1f}s ({len(lyap)} steps)")
    print(f"Mean V:      {summary['mean_lyapunov']:.3f}")
    print(f"Max V:       {summary['max_lyapunov']:.3f}")
    print(f"Final V:     {summary['final_lyapunov']:.3f}")
    if summary["settling_time"] is None:
        print("Settling:    not settled")
    else:
        print(f"Settling:    {summary['settling_time']:.2f}s")
    active = [k for k, v in summary["advisories"].items() if v]
    if active:
        print(f"Advisories:  {', '.join(active)}")

    if plot and data["times"]:
        plot_episode(data, target)

    return summary


def main():
    parser = argparse.ArgumentParser(description="Stabilizing controller evaluation")
    parser.add_argument("--duration", type=float, default=10.0,
                        help="Simulated seconds to fly")
    parser.add_argument("--start", type=float, nargs=3, default=list(START_POSITION),
                        metavar=("X", "Y", "Z"), help="Start position")
    parser.add_argument("--target", type=float, nargs=3, default=list(START_POSITION),
                        metavar=("X", "Y", "Z"), help="Target position")
    parser.add_argument("--wind", type=float, default=0.0,
                        help="Wind speed in m/s")
    parser.add_argument("--impulses", type=float, default=0.0,
                        help="Random impulses per second")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the disturbance generator")
    parser.add_argument("--gains", type=str, default=None,
                        help="Path to a JSON file with controller gains")
    parser.add_argument("--demo", action="store_true",
                        help="Use the demo preset")
    parser.add_argument("--plot", action="store_true",
                        help="Save performance plots to ./plots/evaluate/")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    evaluate(
        duration=args.duration,
        start=args.start,
        target=args.target,
        wind=args.wind,
        impulses=args.impulses,
        seed=args.seed,
        gains_file=args.gains,
        demo=args.demo,
        plot=args.plot,
    )


if __name__ == "__main__":
    main()
