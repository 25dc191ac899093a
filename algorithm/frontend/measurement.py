"""
Heterogeneous measurement aggregation
------------------------------------
Every cycle the estimator asks each sensor for its pending sample and for
its prediction of that sample at every σ-point. Active channels (variance
above ACTIVE_THRESHOLD) are written into one pre-sized buffer:

    z      : (M,)            actual measurement
    noise  : (M, M)          diagonal measurement noise
    pred   : (2N+1, M)       predicted measurement per σ-point

M varies cycle to cycle and may be 0.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from algorithm.backend.diagnostics import (
    ORIENTATION_DROPPED, DiagnosticSink, LoggingSink,
)
from algorithm.frontend.state import (
    ABSOLUTE_LAYOUT, ATTITUDE_LAYOUT, StateLayout, StateSnapshot,
)
from algorithm.math.quaternion import normalized, quaternion_cov_from_euler

ACTIVE_THRESHOLD = 1.0e-20


def _vec(n: int):
    return field(default_factory=lambda: np.zeros(n))


def _unit_xyzw():
    return field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))


# =====================================================================
# Sample + sensor contract
# =====================================================================
@dataclass
class MeasurementSample:
    """
    One sensor reading (or a prediction of one). A field whose variance is
    at or below ACTIVE_THRESHOLD is ignored.

    orientation is (x, y, z, w); its variances are roll / pitch / yaw.
    acceleration_variance is the diagonal of the 3×3 covariance.
    """
    position:                 np.ndarray = _vec(3)
    position_variance:        np.ndarray = _vec(3)
    orientation:              np.ndarray = _unit_xyzw()
    orientation_variance:     np.ndarray = _vec(3)
    linear_velocity:          np.ndarray = _vec(3)
    linear_velocity_variance: np.ndarray = _vec(3)
    angular_velocity:         np.ndarray = _vec(3)
    angular_velocity_variance: np.ndarray = _vec(3)
    acceleration:             np.ndarray = _vec(3)
    acceleration_variance:    np.ndarray = _vec(3)

    def __post_init__(self):
        for name in self.__dataclass_fields__:
            setattr(self, name, np.asarray(getattr(self, name), dtype=float))

    def as_dict(self) -> Dict[str, List[float]]:
        return {name: getattr(self, name).tolist()
                for name in self.__dataclass_fields__}


class Sensor(ABC):
    """
    A single pending-sample slot plus a measurement model.

    The delivery side calls deliver(); the estimator calls sample(),
    predict() and finally consume(). Access to the slot must be serialised
    by the caller.
    """

    def __init__(self, name: str):
        self.name = name
        self._pending: Optional[MeasurementSample] = None

    def sample(self) -> Optional[MeasurementSample]:
        return self._pending

    def deliver(self, sample: MeasurementSample) -> None:
        self._pending = sample

    def consume(self) -> None:
        self._pending = None

    @abstractmethod
    def predict(self, state: StateSnapshot) -> MeasurementSample:
        """Expected sample for a hypothesised state. Must be side-effect free."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


def consume_all(sensors: Sequence[Optional[Sensor]]) -> None:
    for sensor in sensors:
        if sensor is not None:
            sensor.consume()


class Aggregate(NamedTuple):
    z: np.ndarray
    noise: np.ndarray
    predicted: np.ndarray
    contributors: List[Tuple[str, MeasurementSample]]

    @property
    def size(self) -> int:
        return self.z.size


# =====================================================================
# Aggregators
# =====================================================================
class MeasurementModel(ABC):
    layout: StateLayout
    channels_per_sensor: int
    normalize_hypotheses: bool = False

    def __init__(self, sink: Optional[DiagnosticSink] = None):
        self.sink = sink or LoggingSink()
        self._z = np.zeros(0)
        self._r = np.zeros(0)
        self._pred = np.zeros((0, 0))

    def _reserve(self, n_sensors: int, n_points: int) -> None:
        cap = self.channels_per_sensor * n_sensors
        if self._pred.shape != (n_points, cap):
            self._z = np.zeros(cap)
            self._r = np.zeros(cap)
            self._pred = np.zeros((n_points, cap))

    def _put(self, m: int, value: float, variance: float,
             predicted: np.ndarray) -> int:
        self._z[m] = value
        self._r[m] = variance
        self._pred[:, m] = predicted
        return m + 1

    def _put_axes(self, m: int, values: np.ndarray, variances: np.ndarray,
                  predicted: np.ndarray) -> int:
        """Independent scalar channels, one per active axis."""
        for axis in range(values.size):
            if variances[axis] > ACTIVE_THRESHOLD:
                m = self._put(m, values[axis], variances[axis], predicted[:, axis])
        return m

    def aggregate(self, sensors: Sequence[Optional[Sensor]],
                  sigma_points: np.ndarray) -> Aggregate:
        self._reserve(len(sensors), sigma_points.shape[0])
        hypotheses = [self.layout.snapshot(p, normalize=self.normalize_hypotheses)
                      for p in sigma_points]

        m = 0
        contributors: List[Tuple[str, MeasurementSample]] = []
        for sensor in sensors:
            if sensor is None:
                continue
            meas = sensor.sample()
            if meas is None:
                continue
            contributors.append((sensor.name, meas))
            predicted = [sensor.predict(h) for h in hypotheses]
            m = self._fill(sensor, meas, predicted, m)

        return Aggregate(
            z=self._z[:m].copy(),
            noise=np.diag(self._r[:m]),
            predicted=self._pred[:, :m].copy(),
            contributors=contributors,
        )

    @abstractmethod
    def _fill(self, sensor: Sensor, meas: MeasurementSample,
              predicted: List[MeasurementSample], m: int) -> int:
        """Write this sensor's active channels starting at m; return new m."""


def _stack(predicted: List[MeasurementSample], attr: str) -> np.ndarray:
    return np.array([getattr(p, attr) for p in predicted], dtype=float)


class AbsoluteMeasurementModel(MeasurementModel):
    """Position, orientation block, linear velocity, angular velocity."""
    layout = ABSOLUTE_LAYOUT
    channels_per_sensor = 3 + 4 + 3 + 3
    normalize_hypotheses = True

    def _fill(self, sensor, meas, predicted, m):
        m = self._put_axes(m, meas.position, meas.position_variance,
                           _stack(predicted, "position"))
        m = self._put_orientation(sensor, meas, predicted, m)
        m = self._put_axes(m, meas.linear_velocity, meas.linear_velocity_variance,
                           _stack(predicted, "linear_velocity"))
        m = self._put_axes(m, meas.angular_velocity, meas.angular_velocity_variance,
                           _stack(predicted, "angular_velocity"))
        return m

    def _put_orientation(self, sensor, meas, predicted, m):
        euler_var = meas.orientation_variance
        if not np.any(euler_var > ACTIVE_THRESHOLD):
            return m
        quat_var = quaternion_cov_from_euler(*euler_var, *meas.orientation)
        if not np.all(np.isfinite(quat_var)):
            self.sink.record(logging.ERROR, ORIENTATION_DROPPED, {
                "sensor": sensor.name,
                "orientation": meas.orientation.tolist(),
                "rpy_variance": euler_var.tolist(),
                "quaternion_variance": quat_var.tolist(),
            })
            return m
        pred = _stack(predicted, "orientation")
        for k in range(4):
            m = self._put(m, meas.orientation[k], quat_var[k], pred[:, k])
        return m


class AttitudeMeasurementModel(MeasurementModel):
    """Angular velocity and gravity direction."""
    layout = ATTITUDE_LAYOUT
    channels_per_sensor = 3 + 3

    def _fill(self, sensor, meas, predicted, m):
        m = self._put_axes(m, meas.angular_velocity, meas.angular_velocity_variance,
                           _stack(predicted, "angular_velocity"))

        accel_var = meas.acceleration_variance
        if np.all(accel_var > ACTIVE_THRESHOLD):
            actual = normalized(meas.acceleration)
            pred = np.array([normalized(p.acceleration) for p in predicted])
            for k in range(3):
                m = self._put(m, actual[k], accel_var[k], pred[:, k])
        return m


def describe_contributors(
        contributors: List[Tuple[str, MeasurementSample]]) -> List[Dict[str, Any]]:
    return [{"sensor": name, "sample": sample.as_dict()}
            for name, sample in contributors]
