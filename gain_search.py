"""Lyapunov-scored gain search for the stabilizing controller.

Strategy:
1. Trial 0 re-scores the gains currently in the controller
2. Next trials sample uniformly inside each gain's range (exploration)
3. Remaining trials perturb the best gains found so far (local refinement)
4. Every trial flies the same recovery: (2, 3, -1.5) → (0, 2, 0) under
   wind and impulse disturbances, and is scored from its Lyapunov trace
5. Lower score is better; the pre-search parameters are restored at the end

Usage:
    python gain_search.py --iterations 50 --duration 10
    python gain_search.py --seed 0 --save best_gains.json --plot
"""

import argparse
import copy
import json
import logging
import os
import time
from dataclasses import dataclass, field

import numpy as np
import matplotlib.pyplot as plt

from envs import SimulationLoop
from utils.drone_config import GAIN_NAMES, TRAINING_DISTURBANCES

logger = logging.getLogger(__name__)

PARAM_RANGES = {
    "kp_pos": (5.0, 20.0),
    "kd_pos": (2.0, 10.0),
    "ki_pos": (0.05, 0.5),
    "kp_rot": (5.0, 50.0),
    "kd_rot": (2.0, 8.0),
    "ki_rot": (0.01, 0.2),
}

TEST_START = (2.0, 3.0, -1.5)
TEST_TARGET = (0.0, 2.0, 0.0)

SCORE_THRESHOLD = 0.5
SCORE_WINDOW = 100


@dataclass
class TrainingRecord:
    """One evaluated gain set."""
    gains: dict
    score: float
    iteration: int                      # 1-based
    best_score: float = float("inf")    # running best after this trial
    trace: np.ndarray | None = field(default=None, repr=False)


@dataclass
class SearchResult:
    best_gains: dict | None
    best_score: float
    original_gains: dict
    history: list = field(default_factory=list)
    cancelled: bool = False
    best_trace: np.ndarray | None = field(default=None, repr=False)


def settling_index(trace, threshold: float = SCORE_THRESHOLD, window: int = SCORE_WINDOW) -> int:
    """First index where V drops below threshold and stays ≤ 2·threshold for `window` samples.

    Returns len(trace) when the trace never settles.
    """
    trace = np.asarray(trace, dtype=np.float64)
    n = len(trace)
    for i in np.flatnonzero(trace < threshold):
        if np.all(trace[i:min(i + window, n)] <= 2.0 * threshold):
            return int(i)
    return n


def compute_score(trace, threshold: float = SCORE_THRESHOLD, window: int = SCORE_WINDOW) -> float:
    """Composite fitness of a Lyapunov trace (lower is better, always ≥ 0).

    0.4·mean(V) + 0.3·settling/len + 0.2·max(V) + 0.1·mean(last `window` samples)
    """
    trace = np.asarray(trace, dtype=np.float64)
    if trace.size == 0:
        raise ValueError("Cannot score an empty Lyapunov trace")
    n = len(trace)
    return float(
        0.4 * np.mean(trace)
        + 0.3 * settling_index(trace, threshold, window) / n
        + 0.2 * np.max(trace)
        + 0.1 * np.mean(trace[-window:])
    )


class GainSearch:
    """Two-phase random/local search over the six controller gains.

    Drives the given SimulationLoop headlessly in TRAINING mode. The search
    itself never touches the wall clock except for the optional trial_delay
    between trials.
    """

    def __init__(self, simulation: SimulationLoop, iterations: int = 50, test_duration: float = 10.0,
                 random_trials: int = 10, perturbation: float = 0.2, seed: int | None = None,
                 param_ranges: dict = PARAM_RANGES, trial_delay: float = 0.0):
        self.simulation = simulation
        self.iterations = iterations
        self.test_duration = test_duration
        self.random_trials = random_trials
        self.perturbation = perturbation
        self.param_ranges = dict(param_ranges)
        self.trial_delay = trial_delay
        self.np_random = np.random.default_rng(seed)

        self.current_iteration = 0
        self.history: list[TrainingRecord] = []
        self.best_gains = None
        self.best_score = float("inf")
        self.best_trace = None
        self.original_params = None

    @property
    def is_training(self) -> bool:
        return self.simulation.is_training

    # ── Candidate generation ──

    def sample_random(self) -> dict:
        return {name: float(self.np_random.uniform(low, high))
                for name, (low, high) in self.param_ranges.items()}

    def perturb_best(self) -> dict:
        """Best gains plus U(-1, 1)·perturbation·range noise, clamped into range."""
        if self.best_gains is None:
            return self.sample_random()
        gains = {}
        for name, (low, high) in self.param_ranges.items():
            noise = self.np_random.uniform(-1.0, 1.0) * self.perturbation * (high - low)
            gains[name] = float(np.clip(self.best_gains[name] + noise, low, high))
        return gains

    def propose(self, index: int) -> dict:
        """Gains for 0-based trial `index`."""
        if index == 0:
            return self.simulation.controller.get_gains()
        if index < self.random_trials:
            return self.sample_random()
        return self.perturb_best()

    # ── Evaluation ──

    def evaluate(self, gains: dict) -> tuple[float, np.ndarray]:
        """Fly one recovery episode with `gains` and score its Lyapunov trace."""
        sim = self.simulation
        sim.controller.set_gains(gains)
        sim.reset()
        sim.drone.set_pose(position=TEST_START, velocity=np.zeros(3))
        sim.set_target_position(*TEST_TARGET)
        sim.set_target_rotation(0.0, 0.0, 0.0)

        n_steps = max(1, int(round(self.test_duration / sim.fixed_dt)))
        trace = sim.run_steps(n_steps)
        return compute_score(trace), trace

    def run(self, progress_callback=None) -> SearchResult:
        """Run the full search.

        Args:
            progress_callback: Optional callable(record, search) invoked after
                every trial. Calling search.stop() from it cancels the run.

        Returns:
            SearchResult with the best gains, full history and whether the
            run was cancelled before completing all iterations. A run started
            while the loop is already training is refused and comes back
            cancelled with an empty history.
        """
        sim = self.simulation
        if sim.is_training:
            logger.warning("Gain search refused: the simulation is already training")
            return SearchResult(best_gains=None, best_score=float("inf"),
                                original_gains=sim.controller.get_gains(), cancelled=True)

        self.history = []
        self.best_gains = None
        self.best_score = float("inf")
        self.best_trace = None
        self.current_iteration = 0

        self.original_params = copy.deepcopy(sim.get_parameters())
        saved_targets = (sim.controller.target_position.copy(), sim.controller.target_rotation.copy())
        was_running = sim.begin_training()
        cancelled = False
        logger.info("Gain search started: %d trials of %.1fs", self.iterations, self.test_duration)

        try:
            sim.update_disturbance_parameters(TRAINING_DISTURBANCES)
            for i in range(self.iterations):
                if not sim.is_training:
                    logger.info("Gain search cancelled after %d trials", len(self.history))
                    cancelled = True
                    break

                self.current_iteration = i + 1
                gains = self.propose(i)
                score, trace = self.evaluate(gains)

                if score < self.best_score:
                    self.best_score = score
                    self.best_gains = dict(gains)
                    self.best_trace = trace
                    logger.info("New best score %.4f at trial %d", score, i + 1)

                record = TrainingRecord(gains=gains, score=score, iteration=i + 1,
                                        best_score=self.best_score, trace=trace)
                self.history.append(record)

                if progress_callback is not None:
                    progress_callback(record, self)
                if self.trial_delay > 0:
                    time.sleep(self.trial_delay)
        finally:
            sim.set_parameters(self.original_params)
            sim.controller.target_position = saved_targets[0]
            sim.controller.target_rotation = saved_targets[1]
            sim.reset()
            sim.end_training()
            if was_running:
                sim.start()

        logger.info("Gain search finished: %d trials, best score %.4f", len(self.history), self.best_score)
        return SearchResult(
            best_gains=self.best_gains,
            best_score=self.best_score,
            original_gains=dict(self.original_params["controller"]),
            history=list(self.history),
            cancelled=cancelled,
            best_trace=self.best_trace,
        )

    # ── Controls and results ──

    def stop(self):
        """Request cancellation; the current trial finishes first."""
        self.simulation.end_training()

    def apply_best(self) -> bool:
        if self.best_gains is None:
            logger.warning("No best gains to apply")
            return False
        self.simulation.update_controller_parameters(self.best_gains)
        return True

    def restore_original(self) -> bool:
        if self.original_params is None:
            logger.warning("No saved parameters to restore")
            return False
        self.simulation.set_parameters(self.original_params)
        return True

    def results_table(self) -> list[tuple[str, float, float, float]]:
        """Rows of (gain, original, best, change %)."""
        if self.best_gains is None or self.original_params is None:
            return []
        original = self.original_params["controller"]
        rows = []
        for name in GAIN_NAMES:
            before, after = original[name], self.best_gains[name]
            change = (after - before) / before * 100.0 if before != 0 else 0.0
            rows.append((name, before, after, change))
        return rows


def save_gains(path: str, gains: dict, notes: dict | None = None):
    """Write gains as JSON, optionally with a tuning_notes block."""
    data = {name: float(gains[name]) for name in GAIN_NAMES}
    if notes:
        data["tuning_notes"] = notes
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def load_gains(path: str) -> dict:
    """Read a (possibly partial) gains dict written by save_gains."""
    with open(path) as f:
        data = json.load(f)
    return {name: float(data[name]) for name in GAIN_NAMES if name in data}


def plot_search(result: SearchResult, dt: float, save_dir: str = "./plots/gain_search"):
    """Score per trial with the running best, and the best trial's Lyapunov trace."""
    os.makedirs(save_dir, exist_ok=True)

    iters = np.array([r.iteration for r in result.history])
    scores = np.array([r.score for r in result.history])
    bests = np.array([r.best_score for r in result.history])

    fig, axes = plt.subplots(2, 1, figsize=(10, 8))
    fig.suptitle("Gain Search", fontsize=14)

    ax = axes[0]
    ax.plot(iters, scores, "o", color="C0", alpha=0.6, label="trial score")
    ax.plot(iters, bests, color="k", label="best so far")
    ax.set_xlabel("Trial")
    ax.set_ylabel("Score")
    ax.set_yscale("log")
    ax.set_title("Score per Trial (lower is better)")
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    if result.best_trace is not None:
        t = np.arange(len(result.best_trace)) * dt
        ax.plot(t, result.best_trace, color="C1")
        ax.axhline(SCORE_THRESHOLD, color="k", linestyle="--", linewidth=0.8, label="settling threshold")
        ax.legend()
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("V")
    ax.set_title("Lyapunov Value of the Best Trial")
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    filepath = os.path.join(save_dir, "gain_search.png")
    fig.savefig(filepath, dpi=150)
    plt.close(fig)
    print(f"  Plot saved to {filepath}")


def main():
    parser = argparse.ArgumentParser(description="Lyapunov-scored gain search")
    parser.add_argument("--iterations", type=int, default=50,
                        help="Number of trials (default: 50)")
    parser.add_argument("--duration", type=float, default=10.0,
                        help="Simulated seconds per trial (default: 10)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for gain sampling and disturbances")
    parser.add_argument("--gains", type=str, default=None,
                        help="JSON file with starting gains")
    parser.add_argument("--save", type=str, default=None,
                        help="Write the best gains to this JSON file")
    parser.add_argument("--plot", action="store_true",
                        help="Save training plots to ./plots/gain_search/")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    sim = SimulationLoop(seed=args.seed)
    if args.gains:
        sim.update_controller_parameters(load_gains(args.gains))
        print(f"Loaded gains from {args.gains}")

    search = GainSearch(sim, iterations=args.iterations, test_duration=args.duration, seed=args.seed)

    print("=" * 50)
    print("GAIN SEARCH")
    print("=" * 50)
    print(f"Trials: {args.iterations} ({search.random_trials} random, rest local)")
    print(f"Episode: {TEST_START} → {TEST_TARGET}, {args.duration:.1f}s\n")

    def report(record, s):
        marker = "  ✓ NEW BEST" if record.score == record.best_score else ""
        print(f"  Trial {record.iteration:3d}/{s.iterations}: score={record.score:.4f} "
              f"best={record.best_score:.4f}{marker}")

    try:
        result = search.run(progress_callback=report)
    except KeyboardInterrupt:
        print("\nStopped by user")
        return

    print(f"\n{'=' * 50}")
    print("SEARCH COMPLETE" if not result.cancelled else "SEARCH CANCELLED")
    print(f"{'=' * 50}")
    print(f"Trials run: {len(result.history)}")
    print(f"Best score: {result.best_score:.4f}\n")
    print(f"{'gain':<8} {'original':>10} {'best':>10} {'change':>9}")
    for name, before, after, change in search.results_table():
        print(f"{name:<8} {before:>10.3f} {after:>10.3f} {change:>+8.1f}%")

    if args.save and result.best_gains is not None:
        save_gains(args.save, result.best_gains, notes={
            "score": result.best_score,
            "trials": len(result.history),
            "seed": args.seed,
        })
        print(f"\nBest gains saved to {args.save}")

    if args.plot and result.history:
        plot_search(result, sim.fixed_dt)


if __name__ == "__main__":
    main()
