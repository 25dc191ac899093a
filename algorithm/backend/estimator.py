"""
Unscented Kalman estimator engine
================================
One generic engine for both variants:

    * absolute  (N = 13): position, orientation, linear velocity, angular rate
    * attitude  (N = 7) : orientation, angular rate

The variant is fixed by the injected ProcessModel / MeasurementModel pair.
Each call to `predict_and_update()` runs one cycle:

    predict → re-sigma → aggregate → correct → divergence check → consume

Nothing in the cycle raises for numeric reasons. Skips, fallbacks and
divergence are reported to the DiagnosticSink.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import scipy.linalg

from algorithm.backend.diagnostics import (
    CONFIGURATION_ERROR, NO_MEASUREMENTS, NUMERIC_DIVERGENCE, PRIMING,
    SMALL_QUATERNION, DiagnosticSink, LoggingSink,
)
from algorithm.frontend.measurement import (
    AbsoluteMeasurementModel, AttitudeMeasurementModel, MeasurementModel,
    Sensor, consume_all, describe_contributors,
)
from algorithm.frontend.process_model import (
    AbsoluteProcessModel, AttitudeProcessModel, ProcessModel,
)
from algorithm.frontend.state import StateSnapshot, matrix_from_config
from algorithm.math.quaternion import unit_quaternion
from algorithm.math.sigma import (
    UTParam, covariance_from_sigma_points, cross_covariance,
    generate_sigma_points, mean_from_sigma_points,
)

# fallback scale for malformed covariance / process-noise parameters
_FALLBACK_SCALE = 0.1
# below this magnitude renormalising the quaternion is unreliable
_SMALL_QUATERNION = 0.1


@dataclass
class EstimatorConfig:
    """Tuning consumed at construction or via configure()."""
    initial_covariance: Optional[List[float]] = None   # N² row-major or N diagonal
    process_noise:      Optional[List[float]] = None   # N² row-major or N diagonal
    alpha: float = 1e-3
    beta:  float = 2.0
    kappa: float = 0.0
    expected_interval: Optional[float] = 0.1           # seconds, None → no clamp


class UnscentedEstimator:

    def __init__(self,
                 process_model: ProcessModel,
                 measurement_model: MeasurementModel,
                 sensors: Optional[Sequence[Optional[Sensor]]] = None,
                 config: Optional[EstimatorConfig] = None,
                 clock: Optional[Callable[[], float]] = None,
                 sink: Optional[DiagnosticSink] = None):
        if process_model.layout.dim != measurement_model.layout.dim:
            raise ValueError(
                f"Process model is {process_model.layout.name} "
                f"but measurement model is {measurement_model.layout.name}")

        self.process_model = process_model
        self.measurement_model = measurement_model
        self.layout = process_model.layout
        self.clock = clock or time.monotonic
        self.sink = sink or LoggingSink()

        n = self.layout.dim
        self._state = self.layout.initial_state()
        self._covariance = np.eye(n)
        self._process_noise = np.zeros((n, n))
        self._ut = UTParam()
        self._expected_interval: Optional[float] = 0.1
        self._last_update_time: Optional[float] = None
        self._diverged = False
        self._sensors: List[Optional[Sensor]] = list(sensors or [])

        if config is not None:
            self.configure(config)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def configure(self, config: EstimatorConfig) -> None:
        self.set_alpha(config.alpha)
        self.set_beta(config.beta)
        self.set_kappa(config.kappa)
        self.expected_interval = config.expected_interval
        if config.initial_covariance is not None:
            self.set_initial_covariance(config.initial_covariance)
        if config.process_noise is not None:
            self.set_process_noise(config.process_noise)

    def _matrix_param(self, name: str, values: Sequence[float]) -> np.ndarray:
        n = self.layout.dim
        mat = matrix_from_config(values, n)
        if mat is None:
            self.sink.record(logging.WARNING, CONFIGURATION_ERROR, {
                "parameter": name,
                "size": int(np.asarray(values).size),
                "expected": f"{n * n} or {n}",
                "fallback": f"{_FALLBACK_SCALE}*identity",
            })
            mat = _FALLBACK_SCALE * np.eye(n)
        return mat

    def set_initial_covariance(self, values: Sequence[float]) -> None:
        self._covariance = self._matrix_param("initial_covariance", values)

    def set_process_noise(self, values: Sequence[float]) -> None:
        self._process_noise = self._matrix_param("process_noise", values)

    def set_alpha(self, alpha: float) -> None:
        self._ut.alpha = float(alpha)

    def set_beta(self, beta: float) -> None:
        self._ut.beta = float(beta)

    def set_kappa(self, kappa: float) -> None:
        self._ut.kappa = float(kappa)

    @property
    def expected_interval(self) -> Optional[float]:
        return self._expected_interval

    @expected_interval.setter
    def expected_interval(self, value: Optional[float]) -> None:
        if value is not None and value <= 0:
            raise ValueError(f"expected_interval must be positive, got {value}")
        self._expected_interval = value

    def set_sensors(self, sensors: Sequence[Optional[Sensor]]) -> None:
        self._sensors = list(sensors)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------
    @property
    def sensors(self) -> List[Optional[Sensor]]:
        return list(self._sensors)

    @property
    def state(self) -> np.ndarray:
        return self._state.copy()

    @property
    def covariance(self) -> np.ndarray:
        return self._covariance.copy()

    @property
    def process_noise(self) -> np.ndarray:
        return self._process_noise.copy()

    @property
    def ut_param(self) -> UTParam:
        return UTParam(self._ut.alpha, self._ut.beta, self._ut.kappa)

    @property
    def diverged(self) -> bool:
        return self._diverged

    @property
    def last_update_time(self) -> Optional[float]:
        return self._last_update_time

    def set_state(self, state: Union[np.ndarray, StateSnapshot]) -> None:
        if isinstance(state, StateSnapshot):
            state = self.layout.vector(state)
        state = np.asarray(state, dtype=float)
        if state.shape != (self.layout.dim,):
            raise ValueError(f"State must have shape ({self.layout.dim},), got {state.shape}")
        self._state = state.copy()

    def set_covariance(self, covariance: np.ndarray) -> None:
        n = self.layout.dim
        covariance = np.asarray(covariance, dtype=float)
        if covariance.shape != (n, n):
            raise ValueError(f"Covariance must be {n}x{n}, got {covariance.shape}")
        self._covariance = covariance.copy()

    def snapshot(self) -> StateSnapshot:
        return self.layout.snapshot(self._state, self._covariance)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def predict_and_update(self) -> float:
        """
        Run one estimation cycle and return the dt used, or 0.0 when the
        cycle was skipped (no sensors, diverged, priming, no measurements).
        """
        if not self._sensors or self._sensors[0] is None:
            return 0.0
        if self._diverged:
            return 0.0

        now = self.clock()
        if self._last_update_time is None:
            self._last_update_time = now
            self.sink.record(logging.INFO, PRIMING, {"time": now})
            return 0.0
        dt = now - self._last_update_time
        if self._expected_interval is not None and dt > 2.0 * self._expected_interval:
            dt = 2.0 * self._expected_interval
        self._last_update_time = now

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            return self._step(dt)

    def _step(self, dt: float) -> float:
        n = self.layout.dim
        ut = self._ut
        lam = ut.lambda_(n)

        # ---- predict ----
        prior_pts = generate_sigma_points(self._state, self._covariance, lam)
        pred_pts = self.process_model.propagate(prior_pts, dt)
        x_pred = mean_from_sigma_points(pred_pts, n, lam)
        P_pred = covariance_from_sigma_points(
            pred_pts, x_pred, self._process_noise, n, ut.alpha, ut.beta, lam)

        # ---- observe around a fresh linearisation point ----
        obs_pts = generate_sigma_points(x_pred, P_pred, lam)
        agg = self.measurement_model.aggregate(self._sensors, obs_pts)
        if agg.size == 0:
            # prediction is discarded, estimate stays at the previous cycle
            self.sink.record(logging.DEBUG, NO_MEASUREMENTS, {"dt": dt})
            consume_all(self._sensors)
            return 0.0

        z_pred = mean_from_sigma_points(agg.predicted, n, lam)
        P_zz = covariance_from_sigma_points(
            agg.predicted, z_pred, agg.noise, n, ut.alpha, ut.beta, lam)
        P_xz = cross_covariance(obs_pts, x_pred, agg.predicted, z_pred,
                                ut.alpha, ut.beta, lam)

        # ---- correct ----
        K = self._gain(P_xz, P_zz)
        state = x_pred + K @ (agg.z - z_pred)
        q = state[self.layout.orientation]
        q_mag = float(np.sqrt(q @ q))
        if q_mag < _SMALL_QUATERNION:
            self.sink.record(logging.WARNING, SMALL_QUATERNION, {"magnitude": q_mag})
        state[self.layout.orientation] = unit_quaternion(q)
        self._state = state
        self._covariance = P_pred - K @ P_zz @ K.T

        if not np.all(np.isfinite(self._covariance)):
            self._diverged = True
            self.sink.record(logging.ERROR, NUMERIC_DIVERGENCE, {
                "offending": describe_contributors(agg.contributors),
            })

        consume_all(self._sensors)
        return dt

    @staticmethod
    def _gain(P_xz: np.ndarray, P_zz: np.ndarray) -> np.ndarray:
        """K = P_xz · P_zz⁻¹ via LU with partial pivoting (solves P_zzᵗ·Kᵗ = P_xzᵗ)."""
        lu_piv = scipy.linalg.lu_factor(P_zz, check_finite=False)
        return scipy.linalg.lu_solve(lu_piv, P_xz.T, trans=1, check_finite=False).T


# =====================================================================
# Variant factories
# =====================================================================
def make_absolute_estimator(config: Optional[EstimatorConfig] = None,
                            sensors: Optional[Sequence[Optional[Sensor]]] = None,
                            clock: Optional[Callable[[], float]] = None,
                            sink: Optional[DiagnosticSink] = None) -> UnscentedEstimator:
    sink = sink or LoggingSink()
    return UnscentedEstimator(AbsoluteProcessModel(), AbsoluteMeasurementModel(sink),
                              sensors, config, clock, sink)


def make_attitude_estimator(config: Optional[EstimatorConfig] = None,
                            sensors: Optional[Sequence[Optional[Sensor]]] = None,
                            clock: Optional[Callable[[], float]] = None,
                            sink: Optional[DiagnosticSink] = None) -> UnscentedEstimator:
    sink = sink or LoggingSink()
    return UnscentedEstimator(AttitudeProcessModel(), AttitudeMeasurementModel(sink),
                              sensors, config, clock, sink)


VARIANTS = {
    "absolute": make_absolute_estimator,
    "attitude": make_attitude_estimator,
}


def make_estimator(variant: str, **kwargs) -> UnscentedEstimator:
    try:
        factory = VARIANTS[variant]
    except KeyError:
        raise ValueError(f"Unknown variant: {variant}, must be one of {sorted(VARIANTS)}") from None
    return factory(**kwargs)
