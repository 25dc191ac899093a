#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Unscented estimator demo
------------------------
• helix trajectory with constant body rates
• absolute variant : odometry every step + pose fix every 5 steps
• attitude variant : IMU (gyro + accelerometer) every step
"""

from __future__ import annotations
import argparse, logging, sys
from typing import Any, Dict, List, Optional

import numpy as np
import matplotlib.pyplot as plt

# ─── external modules ──────────────────────────────────────
from algorithm.backend.diagnostics import NUMERIC_DIVERGENCE, MemorySink
from algorithm.backend.estimator import make_estimator
from algorithm.frontend.sensors import ImuSensor, OdometrySensor, PoseSensor
from sim.measurement import SensorFeed, SimClock
from sim.world import attitude_error, simulate_trajectory
from utils.cfg_loader import load_estimator_config

log = logging.getLogger("DEMO")


def build_feed(variant: str, trajectory, seed: int) -> SensorFeed:
    feed = SensorFeed(trajectory, seed=seed)
    if variant == "absolute":
        feed.add(OdometrySensor("odom"), sigma_v=0.05, sigma_w=0.01)
        feed.add(PoseSensor("pose"), every=5, sigma_p=0.10, sigma_rpy=0.02)
    else:
        feed.add(ImuSensor("imu"), sigma_w=0.01, sigma_a=0.05)
    return feed


def run(variant: str = "absolute", steps: int = 200, dt: Optional[float] = None,
        seed: int = 0, config_path: Optional[str] = None) -> Dict[str, Any]:
    """Run one simulated experiment; returns per-step errors and estimates."""
    cfg = load_estimator_config(variant, config_path)
    dt = dt or cfg.expected_interval or 0.05

    trj = simulate_trajectory(steps=steps, dt=dt)
    feed = build_feed(variant, trj, seed)
    clock = SimClock()
    sink = MemorySink(min_severity=logging.WARNING)
    est = make_estimator(variant, config=cfg, sensors=feed.sensors,
                         clock=clock, sink=sink)

    pos_err: List[float] = []
    att_err: List[float] = []
    estimates = []
    for k in range(steps):
        clock.now = trj.times[k]
        feed.deliver(k)
        est.predict_and_update()

        snap = est.snapshot()
        estimates.append(snap)
        att_err.append(attitude_error(snap.orientation, trj.orientations[k]))
        if snap.position is not None:
            pos_err.append(float(np.linalg.norm(snap.position - trj.positions[k])))

    result = {
        "trajectory": trj,
        "estimates": estimates,
        "position_error": np.asarray(pos_err),
        "attitude_error": np.asarray(att_err),
        "diverged": est.diverged,
        "divergence_events": len(sink.of(NUMERIC_DIVERGENCE)),
    }
    log.info("%s | steps=%d dt=%.3f | final attitude err %.4f rad%s | diverged=%s",
             variant, steps, dt, att_err[-1],
             f" | final position err {pos_err[-1]:.3f} m" if pos_err else "",
             est.diverged)
    return result


def plot(result: Dict[str, Any]) -> None:
    trj = result["trajectory"]
    fig, axes = plt.subplots(1, 2, figsize=(11, 4.5))
    if result["position_error"].size:
        est_xy = np.array([s.position[:2] for s in result["estimates"]])
        axes[0].plot(trj.positions[:, 0], trj.positions[:, 1], "k-", label="GT traj")
        axes[0].plot(est_xy[:, 0], est_xy[:, 1], "r--", label="Est traj")
        axes[0].axis("equal"); axes[0].legend(); axes[0].grid(True)
        axes[0].set_title("XY track")
    axes[1].plot(trj.times, result["attitude_error"], label="attitude err [rad]")
    if result["position_error"].size:
        axes[1].plot(trj.times, result["position_error"], label="position err [m]")
    axes[1].legend(); axes[1].grid(True); axes[1].set_xlabel("t [s]")
    plt.tight_layout()
    plt.show()


# ─── main ─────────────────────────────────────────────────
def main(argv=None):
    ap = argparse.ArgumentParser(description=__doc__,
                                 formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--variant", choices=["absolute", "attitude"], default="absolute")
    ap.add_argument("--steps", type=int, default=200, help="trajectory length")
    ap.add_argument("--dt", type=float, default=None,
                    help="tick length [s] (default: expected_interval from config)")
    ap.add_argument("--seed", type=int, default=0)
    ap.add_argument("--config", default=None, help="YAML file overriding the variant config")
    ap.add_argument("--plot", action="store_true")
    ap.add_argument("--log-file", default=None)
    args = ap.parse_args(argv)

    handlers = [logging.StreamHandler(sys.stdout)]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file, mode="w", encoding="utf-8"))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)5s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )

    result = run(args.variant, args.steps, args.dt, args.seed, args.config)
    if args.plot:
        plot(result)
    return 1 if result["diverged"] else 0

# entry-point ---------------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
