"""State layouts and the snapshot output surface for both estimator variants."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from algorithm.math.quaternion import from_xyzw, to_xyzw, unit_quaternion


@dataclass(frozen=True)
class StateLayout:
    """Where each block lives inside an N-dimensional state vector."""
    name: str
    dim: int
    orientation: slice                    # scalar-first quaternion
    angular_velocity: slice
    position: Optional[slice] = None
    linear_velocity: Optional[slice] = None

    def initial_state(self) -> np.ndarray:
        x = np.zeros(self.dim)
        x[self.orientation.start] = 1.0   # w
        return x

    def snapshot(self, state: np.ndarray,
                 covariance: Optional[np.ndarray] = None,
                 normalize: bool = False) -> "StateSnapshot":
        q = state[self.orientation]
        if normalize:
            q = unit_quaternion(q)
        return StateSnapshot(
            orientation=to_xyzw(q),
            angular_velocity=np.array(state[self.angular_velocity], dtype=float),
            position=None if self.position is None
            else np.array(state[self.position], dtype=float),
            linear_velocity=None if self.linear_velocity is None
            else np.array(state[self.linear_velocity], dtype=float),
            covariance=None if covariance is None
            else np.array(covariance, dtype=float).reshape(-1),
        )

    def vector(self, snap: "StateSnapshot") -> np.ndarray:
        """Inverse of snapshot(): rebuild the state vector."""
        x = np.zeros(self.dim)
        x[self.orientation] = from_xyzw(snap.orientation)
        x[self.angular_velocity] = snap.angular_velocity
        if self.position is not None:
            x[self.position] = snap.position
        if self.linear_velocity is not None:
            x[self.linear_velocity] = snap.linear_velocity
        return x


ABSOLUTE_LAYOUT = StateLayout(
    name="absolute", dim=13,
    position=slice(0, 3), orientation=slice(3, 7),
    linear_velocity=slice(7, 10), angular_velocity=slice(10, 13),
)

ATTITUDE_LAYOUT = StateLayout(
    name="attitude", dim=7,
    orientation=slice(0, 4), angular_velocity=slice(4, 7),
)


@dataclass
class StateSnapshot:
    """
    Read-only view of an estimate (or of a hypothesised σ-point).

    orientation is (x, y, z, w). position / linear_velocity are None for
    the attitude-only variant. covariance is the row-major flattened N×N
    matrix, or None for hypothesised states.
    """
    orientation: np.ndarray
    angular_velocity: np.ndarray
    position: Optional[np.ndarray] = None
    linear_velocity: Optional[np.ndarray] = None
    covariance: Optional[np.ndarray] = field(default=None, repr=False)

    def covariance_matrix(self) -> np.ndarray:
        n = int(round(np.sqrt(self.covariance.size)))
        return self.covariance.reshape(n, n)


def matrix_from_config(values: Sequence[float], n: int) -> Optional[np.ndarray]:
    """
    N² values → row-major full matrix, N values → diagonal.
    Any other size returns None and the caller applies its fallback.
    """
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.size == n * n:
        return arr.reshape(n, n).copy()
    if arr.size == n:
        return np.diag(arr)
    return None
