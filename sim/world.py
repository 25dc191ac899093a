"""
Ground-truth rigid-body motion for estimator experiments.

The body moves with constant body-frame linear velocity and angular rate,
which traces a helix. Orientation is integrated by composing exact
rotation-vector increments and kept sign-continuous so it can be compared
directly with an estimate.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Sequence
import logging

from scipy.spatial.transform import Rotation

logger = logging.getLogger("WorldGen")

def attitude_error(q_a_xyzw: np.ndarray, q_b_xyzw: np.ndarray) -> float:
    """Smallest rotation angle (rad) between two (x, y, z, w) quaternions."""
    delta = Rotation.from_quat(q_a_xyzw).inv() * Rotation.from_quat(q_b_xyzw)
    return float(delta.magnitude())

def continuous_quat(q_xyzw: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Pick the sign of q that lies on the same hemisphere as reference."""
    q = np.asarray(q_xyzw, dtype=float)
    return -q if q @ reference < 0.0 else q


@dataclass
class Trajectory:
    times:            np.ndarray      # (T,)
    positions:        np.ndarray      # (T, 3) world frame
    orientations:     np.ndarray      # (T, 4) (x, y, z, w)
    linear_velocity:  np.ndarray      # (3,)  body frame, constant
    angular_velocity: np.ndarray      # (3,)  body frame, constant

    def __len__(self):
        return self.times.size


def simulate_trajectory(
    steps: int = 200,
    dt: float = 0.05,
    linear_velocity: Sequence[float] = (1.0, 0.0, 0.05),
    angular_velocity: Sequence[float] = (0.05, -0.02, 0.3),
    substeps: int = 10,
    start_position: Optional[Sequence[float]] = None,
) -> Trajectory:
    """
    Integrate the helix for `steps` samples spaced `dt` apart.

    Position uses `substeps` midpoint-orientation sub-intervals per sample.
    """
    if steps <= 0:
        raise ValueError("Number of steps must be positive")
    if dt <= 0:
        raise ValueError(f"dt must be positive, got {dt}")

    v = np.asarray(linear_velocity, dtype=float)
    w = np.asarray(angular_velocity, dtype=float)
    h = dt / substeps
    # body-frame rates compose on the right
    half_step = Rotation.from_rotvec(w * h / 2)
    full_step = Rotation.from_rotvec(w * h)

    rot = Rotation.identity()
    p = np.zeros(3) if start_position is None else np.asarray(start_position, dtype=float)

    positions = np.zeros((steps, 3))
    orientations = np.zeros((steps, 4))
    prev = np.array([0.0, 0.0, 0.0, 1.0])
    for k in range(steps):
        positions[k] = p
        orientations[k] = prev = continuous_quat(rot.as_quat(), prev)
        for _ in range(substeps):
            p = p + (rot * half_step).apply(v) * h
            rot = rot * full_step

    logger.info("Simulated %d samples, dt=%.3f, travelled %.2f m",
                steps, dt, float(np.linalg.norm(positions[-1] - positions[0])))
    return Trajectory(np.arange(steps) * dt, positions, orientations, v, w)
