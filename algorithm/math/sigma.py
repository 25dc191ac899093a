"""
Unscented transform helpers
---------------------------
• UTParam                      : alpha / beta / kappa, lambda and weights
• matrix_sqrt                  : lower-triangular S with S·Sᵗ = P
• generate_sigma_points        : 2n+1 σ-points around (mean, cov)
• mean_from_sigma_points       : weighted mean
• covariance_from_sigma_points : weighted covariance + additive noise
• cross_covariance             : state-to-measurement cross-cov

All functions are stateless. Nothing here raises on bad numerics: an
indefinite covariance yields NaN points and the caller decides what to do.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import scipy.linalg

# relative tolerance for treating a Cholesky pivot as exactly zero
_PIVOT_RTOL = 1.0e-12


@dataclass
class UTParam:
    alpha: float = 1e-3
    beta:  float = 2.0
    kappa: float = 0.0

    def lambda_(self, n: int) -> float:
        return self.alpha**2 * (n + self.kappa) - n

    def weights(self, n: int) -> Tuple[np.ndarray, np.ndarray]:
        """Mean and covariance weights for 2n+1 points."""
        return ut_weights(n, self.alpha, self.beta, self.lambda_(n))


def ut_weights(n: int, alpha: float, beta: float,
               lambda_: float) -> Tuple[np.ndarray, np.ndarray]:
    denom = n + lambda_
    wm = np.full(2 * n + 1, 1.0 / (2.0 * denom))
    wc = wm.copy()
    wm[0] = lambda_ / denom
    wc[0] = wm[0] + (1.0 - alpha**2 + beta)
    return wm, wc


# =========================================================
# 1. Matrix square root
# =========================================================
def _semidefinite_cholesky(cov: np.ndarray) -> np.ndarray:
    """
    Row-by-row LLᵗ that tolerates zero pivots.

    A pivot in [0, tol] zeroes the rest of its column (semi-definite input).
    Any negative pivot gives NaN, however small, which then spreads through
    the column.
    """
    n = cov.shape[0]
    L = np.zeros((n, n))
    scale = max(1.0, float(np.max(np.abs(np.diag(cov))))) if n else 1.0
    tol = _PIVOT_RTOL * scale
    for j in range(n):
        pivot = cov[j, j] - L[j, :j] @ L[j, :j]
        if 0.0 <= pivot <= tol:
            continue
        L[j, j] = np.sqrt(pivot) if pivot > 0 else np.nan
        for i in range(j + 1, n):
            L[i, j] = (cov[i, j] - L[i, :j] @ L[j, :j]) / L[j, j]
    return L


def matrix_sqrt(cov: np.ndarray) -> np.ndarray:
    """Lower-triangular square root via Cholesky, pivot-tolerant fallback."""
    cov = np.asarray(cov, dtype=float)
    try:
        return scipy.linalg.cholesky(cov, lower=True, check_finite=False)
    except np.linalg.LinAlgError:
        return _semidefinite_cholesky(cov)


# =========================================================
# 2. σ-points and recombination
# =========================================================
def generate_sigma_points(mean: np.ndarray, cov: np.ndarray,
                          lambda_: float) -> np.ndarray:
    """
    Returns a (2n+1, n) array: row 0 is the mean, rows 1..n are
    mean + γ·S[:, i] and rows n+1..2n the matching reflections.
    """
    mean = np.asarray(mean, dtype=float)
    n = mean.size
    if cov.shape != (n, n):
        raise ValueError(f"Dimension mismatch: mean={mean.shape}, cov={cov.shape}")

    gamma = math.sqrt(n + lambda_)
    offsets = gamma * matrix_sqrt(cov).T            # row i = γ·column i

    pts = np.empty((2 * n + 1, n))
    pts[0] = mean
    pts[1:n + 1] = mean + offsets
    pts[n + 1:] = mean - offsets
    return pts


def mean_from_sigma_points(points: np.ndarray, n: int,
                           lambda_: float) -> np.ndarray:
    w0 = lambda_ / (n + lambda_)
    wi = 1.0 / (2.0 * (n + lambda_))
    return w0 * points[0] + wi * points[1:2 * n + 1].sum(axis=0)


def covariance_from_sigma_points(points: np.ndarray, mean: np.ndarray,
                                 noise: np.ndarray, n: int, alpha: float,
                                 beta: float, lambda_: float) -> np.ndarray:
    _, wc = ut_weights(n, alpha, beta, lambda_)
    diff = points - mean                             # (2n+1, m)
    return diff.T @ (wc[:, None] * diff) + noise


def cross_covariance(points: np.ndarray, mean: np.ndarray,
                     meas_points: np.ndarray, meas_mean: np.ndarray,
                     alpha: float, beta: float, lambda_: float) -> np.ndarray:
    n = points.shape[1]
    _, wc = ut_weights(n, alpha, beta, lambda_)
    diff_x = points - mean                           # (2n+1, n)
    diff_z = meas_points - meas_mean                 # (2n+1, m)
    return diff_x.T @ (wc[:, None] * diff_z)         # (n, m)
