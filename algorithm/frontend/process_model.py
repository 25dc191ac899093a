"""
Process models: advance a state vector by dt with rigid-body quaternion
kinematics. Rates and velocities are random walks (carried unchanged).
"""
from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from algorithm.frontend.state import ABSOLUTE_LAYOUT, ATTITUDE_LAYOUT, StateLayout
from algorithm.math.quaternion import rotate_vector, updated_quaternion


class ProcessModel(ABC):
    layout: StateLayout

    @property
    def dim(self) -> int:
        return self.layout.dim

    @abstractmethod
    def advance(self, state: np.ndarray, dt: float) -> np.ndarray:
        ...

    def propagate(self, points: np.ndarray, dt: float) -> np.ndarray:
        """Apply advance() to every row of a σ-point set."""
        return np.stack([self.advance(p, dt) for p in points])

    def _rotate(self, state: np.ndarray, dt: float) -> np.ndarray:
        q = state[self.layout.orientation]
        wx, wy, wz = state[self.layout.angular_velocity]
        return updated_quaternion(q, wx, wy, wz, dt)


class AbsoluteProcessModel(ProcessModel):
    """13-D: position, orientation, body linear velocity, body angular rate."""
    layout = ABSOLUTE_LAYOUT

    def advance(self, state: np.ndarray, dt: float) -> np.ndarray:
        lay = self.layout
        out = np.array(state, dtype=float)
        # rotate with the pre-update orientation
        v_world = rotate_vector(state[lay.orientation], state[lay.linear_velocity])
        out[lay.position] = state[lay.position] + v_world * dt
        out[lay.orientation] = self._rotate(state, dt)
        return out


class AttitudeProcessModel(ProcessModel):
    """7-D: orientation and body angular rate."""
    layout = ATTITUDE_LAYOUT

    def advance(self, state: np.ndarray, dt: float) -> np.ndarray:
        out = np.array(state, dtype=float)
        out[self.layout.orientation] = self._rotate(state, dt)
        return out
