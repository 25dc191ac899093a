"""
Quaternion / rotation helpers shared by the process and measurement models.

Two orderings are in play:
    * state vectors keep the quaternion scalar-first  (w, x, y, z)
    * snapshots, sensor samples and measurement channels use (x, y, z, w)
Functions below say which one they take.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np

# ─── Conversions ───────────────────────────────────────────
def to_xyzw(q_wxyz: np.ndarray) -> np.ndarray:
    return np.array([q_wxyz[1], q_wxyz[2], q_wxyz[3], q_wxyz[0]], dtype=float)


def from_xyzw(q_xyzw: np.ndarray) -> np.ndarray:
    return np.array([q_xyzw[3], q_xyzw[0], q_xyzw[1], q_xyzw[2]], dtype=float)


def unit_quaternion(q: np.ndarray) -> np.ndarray:
    """Scale q to unit norm (ordering agnostic)."""
    q = np.asarray(q, dtype=float)
    return q / np.sqrt(q @ q)


def normalized(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=float)
    return v / np.sqrt(v @ v)


# ─── Kinematics ────────────────────────────────────────────
def quaternion_update_matrix(wx: float, wy: float, wz: float) -> np.ndarray:
    """Ω(ω) acting on a scalar-first quaternion with body-frame rates."""
    return np.array([
        [  0.0,  wx,  wy,  wz],
        [-wx,   0.0, -wz,  wy],
        [-wy,   wz,  0.0, -wx],
        [-wz,  -wy,  wx,  0.0],
    ])


def updated_quaternion(q: np.ndarray, wx: float, wy: float, wz: float,
                       dt: float) -> np.ndarray:
    """
    Advance scalar-first q by dt under constant body rates.

    Uses the 4th-order truncations of cos(s) and sin(s)/s, s = |ω|·dt/2.
    The result is not renormalised.
    """
    s = 0.5 * np.sqrt(dt * dt * (wx * wx + wy * wy + wz * wz))
    s2 = s * s
    correction = (1.0 - s2 / 2.0 + s2 * s2 / 24.0) * np.eye(4)
    update = 0.5 * dt * (1.0 - s2 / 6.0 + s2 * s2 / 120.0) \
        * quaternion_update_matrix(wx, wy, wz)
    return (correction - update) @ np.asarray(q, dtype=float)


def rotation_matrix(q: np.ndarray) -> np.ndarray:
    """Body→world rotation of a unit scalar-first quaternion."""
    w, x, y, z = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z),     2 * (x * z + w * y)],
        [2 * (x * y + w * z),     1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y),     2 * (y * z + w * x),     1 - 2 * (x * x + y * y)],
    ])


def rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate body-frame v into the world frame; q is normalised first."""
    return rotation_matrix(unit_quaternion(q)) @ np.asarray(v, dtype=float)


# ─── Euler → quaternion covariance ─────────────────────────
def euler_from_quaternion(x: float, y: float, z: float,
                          w: float) -> Tuple[float, float, float]:
    """
    (roll, pitch, yaw) recovered with the half-angle arctangent form used
    for the covariance Jacobian. Degenerate quaternions give NaN.
    """
    q1, q2, q3, q4 = (np.float64(c) for c in (x, y, z, w))
    with np.errstate(divide="ignore", invalid="ignore"):
        a = np.arctan((q3 + q2) / (q4 + q1))
        yaw = a + np.arctan((q3 - q1) / (q4 - q1))
        pitch = np.arcsin(2.0 * (q2 * q3 + q1 * q4))
        roll = a - np.arctan((q3 - q2) / (q4 - q1))
    return float(roll), float(pitch), float(yaw)


def quaternion_cov_from_euler(roll_var: float, pitch_var: float, yaw_var: float,
                              x: float, y: float, z: float,
                              w: float) -> np.ndarray:
    """
    Diagonal of G·Σ·Gᵗ where Σ = diag(roll, pitch, yaw) variances and G is
    the Euler→quaternion Jacobian at the given orientation.

    Returns (x, y, z, w) variances. Off-diagonal terms are discarded.
    Entries may be non-finite for degenerate orientations.
    """
    euler_cov = np.diag([roll_var, pitch_var, yaw_var]).astype(float)
    roll, pitch, yaw = euler_from_quaternion(x, y, z, w)

    with np.errstate(invalid="ignore"):
        sy, cy = np.sin(yaw / 2), np.cos(yaw / 2)
        sr, cr = np.sin(roll / 2), np.cos(roll / 2)
        sp, cp = np.sin(pitch / 2), np.cos(pitch / 2)

        sss = sy * sr * sp / 2
        ssc = sy * sr * cp / 2
        scs = sy * cr * sp / 2
        scc = sy * cr * cp / 2
        ccc = cy * cr * cp / 2
        ccs = cy * cr * sp / 2
        csc = cy * sr * cp / 2
        css = cy * sr * sp / 2

        G = np.array([
            [-scs - csc,  ccc + sss, -css - scc],
            [ ccs - ssc,  ssc - css, -sss + ccc],
            [ ccc - sss, -scs + csc, -ssc + ccs],
            [-scc - css, -ccs - ssc, -csc - scs],
        ])
        return np.diag(G @ euler_cov @ G.T).copy()
