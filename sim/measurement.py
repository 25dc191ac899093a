"""
Simulated sensor delivery
- SimClock    : manually driven clock for the estimator
- SensorFeed  : turns ground truth into noisy samples and delivers them
                into reference sensors at per-sensor rates
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List
import logging

from scipy.spatial.transform import Rotation

from algorithm.frontend.measurement import MeasurementSample, Sensor
from algorithm.frontend.sensors import ImuSensor, OdometrySensor, PoseSensor
from algorithm.frontend.state import StateSnapshot
from sim.world import Trajectory, continuous_quat

logger = logging.getLogger("MeasurementGen")


class SimClock:
    """Callable clock; the simulation sets the time explicitly."""

    def __init__(self, start: float = 0.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> float:
        self.now += dt
        return self.now


@dataclass
class FeedEntry:
    sensor: Sensor
    every: int = 1                    # deliver on steps where k % every == 0
    noise: Dict[str, float] = field(default_factory=dict)   # standard deviations
    delivered: int = 0


class SensorFeed:

    def __init__(self, trajectory: Trajectory, seed: int = 0):
        self.trajectory = trajectory
        self.rng = np.random.default_rng(seed)
        self.entries: List[FeedEntry] = []

    def add(self, sensor: Sensor, every: int = 1, **noise: float) -> "SensorFeed":
        if every <= 0:
            raise ValueError(f"every must be positive, got {every}")
        self.entries.append(FeedEntry(sensor, every, dict(noise)))
        logger.debug("Feeding %r every %d step(s), noise=%s", sensor, every, noise)
        return self

    @property
    def sensors(self) -> List[Sensor]:
        return [e.sensor for e in self.entries]

    def deliver(self, k: int) -> List[MeasurementSample]:
        out = []
        for entry in self.entries:
            if k % entry.every:
                continue
            out.append(self._sample(entry, k))
            entry.delivered += 1
        return out

    # ------------------------------------------------------------------
    def _noisy(self, value: np.ndarray, sigma: float) -> np.ndarray:
        return value + self.rng.normal(0.0, sigma, size=np.shape(value))

    def _sample(self, entry: FeedEntry, k: int) -> MeasurementSample:
        trj, s, n = self.trajectory, entry.sensor, entry.noise
        q_xyzw = trj.orientations[k]

        if isinstance(s, OdometrySensor):
            sv, sw = n.get("sigma_v", 0.05), n.get("sigma_w", 0.01)
            return s.report(self._noisy(trj.linear_velocity, sv),
                            self._noisy(trj.angular_velocity, sw),
                            sv**2, sw**2)

        if isinstance(s, PoseSensor):
            sp, sr = n.get("sigma_p", 0.1), n.get("sigma_rpy", 0.02)
            jitter = Rotation.from_rotvec(self.rng.normal(0.0, sr, 3))
            q_noisy = (Rotation.from_quat(q_xyzw) * jitter).as_quat()
            return s.report(self._noisy(trj.positions[k], sp),
                            continuous_quat(q_noisy, q_xyzw),
                            sp**2, sr**2)

        if isinstance(s, ImuSensor):
            sw, sa = n.get("sigma_w", 0.01), n.get("sigma_a", 0.05)
            truth = s.predict(_truth_snapshot(trj, k))
            return s.report(self._noisy(trj.angular_velocity, sw),
                            self._noisy(truth.acceleration, sa),
                            sw**2, sa**2)

        raise ValueError(f"No simulated source for {s!r}")


def _truth_snapshot(trj: Trajectory, k: int) -> StateSnapshot:
    return StateSnapshot(orientation=trj.orientations[k],
                         angular_velocity=trj.angular_velocity,
                         position=trj.positions[k],
                         linear_velocity=trj.linear_velocity)
