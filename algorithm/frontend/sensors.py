"""
Reference sensors
-----------------
Measurement models for the common sources: wheel/visual odometry, absolute
pose fixes and IMUs. Each one predicts only the fields it measures and
offers a `report()` shortcut that builds a sample and delivers it.
"""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from algorithm.frontend.measurement import MeasurementSample, Sensor
from algorithm.frontend.state import StateSnapshot

STANDARD_GRAVITY = 9.80665


def _as3(v: Optional[Sequence[float]]) -> np.ndarray:
    return np.zeros(3) if v is None else np.asarray(v, dtype=float)


def _variance(var, size: int = 3) -> np.ndarray:
    """Scalar → broadcast, sequence → as-is."""
    return np.broadcast_to(np.asarray(var, dtype=float), (size,)).copy()


class OdometrySensor(Sensor):
    """Body-frame linear and angular velocity."""

    def predict(self, state: StateSnapshot) -> MeasurementSample:
        return MeasurementSample(
            linear_velocity=_as3(state.linear_velocity),
            angular_velocity=state.angular_velocity,
        )

    def report(self, linear_velocity, angular_velocity,
               linear_variance=0.0, angular_variance=0.0) -> MeasurementSample:
        sample = MeasurementSample(
            linear_velocity=linear_velocity,
            linear_velocity_variance=_variance(linear_variance),
            angular_velocity=angular_velocity,
            angular_velocity_variance=_variance(angular_variance),
        )
        self.deliver(sample)
        return sample


class PoseSensor(Sensor):
    """World-frame position and orientation (e.g. GPS + compass, mocap)."""

    def predict(self, state: StateSnapshot) -> MeasurementSample:
        return MeasurementSample(
            position=_as3(state.position),
            orientation=state.orientation,
        )

    def report(self, position, orientation,
               position_variance=0.0, rpy_variance=0.0) -> MeasurementSample:
        sample = MeasurementSample(
            position=_as3(position),
            position_variance=_variance(position_variance),
            orientation=orientation,
            orientation_variance=_variance(rpy_variance),
        )
        self.deliver(sample)
        return sample


class ImuSensor(Sensor):
    """
    Gyro rates plus the accelerometer reading of a body at rest, i.e. the
    reaction to gravity expressed in the body frame.
    """

    def __init__(self, name: str, gravity: float = STANDARD_GRAVITY):
        super().__init__(name)
        self.gravity = gravity

    def predict(self, state: StateSnapshot) -> MeasurementSample:
        body_to_world = Rotation.from_quat(state.orientation)      # (x, y, z, w)
        return MeasurementSample(
            angular_velocity=state.angular_velocity,
            acceleration=body_to_world.inv().apply([0.0, 0.0, self.gravity]),
        )

    def report(self, angular_velocity, acceleration,
               angular_variance=0.0, accel_variance=0.0) -> MeasurementSample:
        sample = MeasurementSample(
            angular_velocity=angular_velocity,
            angular_velocity_variance=_variance(angular_variance),
            acceleration=acceleration,
            acceleration_variance=_variance(accel_variance),
        )
        self.deliver(sample)
        return sample
