import numpy as np
import pytest

from algorithm.math.sigma import (
    UTParam, covariance_from_sigma_points, cross_covariance,
    generate_sigma_points, matrix_sqrt, mean_from_sigma_points,
)


def _random_spd(n, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n, n))
    return A @ A.T + n * np.eye(n)


@pytest.mark.parametrize("n", [1, 7, 13])
def test_sigma_points_count_and_reflection(n):
    rng = np.random.default_rng(n)
    mean = rng.normal(size=n)
    cov = _random_spd(n, seed=n)
    lam = UTParam().lambda_(n)

    pts = generate_sigma_points(mean, cov, lam)

    assert pts.shape == (2 * n + 1, n)
    assert np.array_equal(pts[0], mean)
    for i in range(1, n + 1):
        np.testing.assert_allclose(pts[i] + pts[i + n], 2 * mean, atol=1e-12)


def test_sigma_offsets_are_scaled_cholesky_columns():
    cov = _random_spd(4)
    lam = UTParam(alpha=0.5).lambda_(4)
    pts = generate_sigma_points(np.zeros(4), cov, lam)
    S = np.linalg.cholesky(cov)
    gamma = np.sqrt(4 + lam)
    np.testing.assert_allclose(pts[1:5].T, gamma * S, atol=1e-12)


def test_zero_covariance_recovers_mean():
    mean = np.array([1.0, -2.0, 0.5, 3.0, 0.0, 7.0, -1.0])
    lam = UTParam().lambda_(7)
    pts = generate_sigma_points(mean, np.zeros((7, 7)), lam)

    assert np.all(np.isfinite(pts))
    np.testing.assert_allclose(mean_from_sigma_points(pts, 7, lam), mean, atol=1e-9)


def test_semidefinite_covariance_keeps_points_finite():
    cov = np.diag([1.0, 0.0, 2.0])
    pts = generate_sigma_points(np.zeros(3), cov, UTParam(alpha=0.5).lambda_(3))
    assert np.all(np.isfinite(pts))
    np.testing.assert_allclose(pts[:, 1], 0.0)


def test_indefinite_covariance_propagates_nan():
    cov = np.diag([1.0, -1.0, 1.0])
    S = matrix_sqrt(cov)
    assert np.isnan(S[1, 1])
    pts = generate_sigma_points(np.zeros(3), cov, UTParam().lambda_(3))
    assert not np.all(np.isfinite(pts))


def test_weights_sum_to_one():
    p = UTParam(alpha=1e-3, beta=2.0, kappa=0.0)
    wm, wc = p.weights(13)
    assert wm.sum() == pytest.approx(1.0, abs=1e-6)
    assert wc[0] == pytest.approx(wm[0] + 1 - p.alpha**2 + p.beta)
    np.testing.assert_array_equal(wc[1:], wm[1:])


def test_linear_map_recovers_mean_and_covariance():
    p = UTParam(alpha=0.5, beta=2.0, kappa=0.0)
    n = 5
    mean = np.arange(n, dtype=float)
    cov = _random_spd(n, seed=3)
    lam = p.lambda_(n)
    pts = generate_sigma_points(mean, cov, lam)

    m = mean_from_sigma_points(pts, n, lam)
    P = covariance_from_sigma_points(pts, m, np.zeros((n, n)), n, p.alpha, p.beta, lam)

    np.testing.assert_allclose(m, mean, atol=1e-10)
    np.testing.assert_allclose(P, cov, atol=1e-9)


def test_noise_added_once():
    p = UTParam(alpha=0.5)
    n = 3
    lam = p.lambda_(n)
    pts = generate_sigma_points(np.zeros(n), np.eye(n), lam)
    noise = np.diag([0.1, 0.2, 0.3])
    P0 = covariance_from_sigma_points(pts, np.zeros(n), np.zeros((n, n)), n, p.alpha, p.beta, lam)
    P1 = covariance_from_sigma_points(pts, np.zeros(n), noise, n, p.alpha, p.beta, lam)
    np.testing.assert_allclose(P1 - P0, noise, atol=1e-12)


def test_cross_covariance_of_projection():
    p = UTParam(alpha=0.5)
    n = 4
    cov = _random_spd(n, seed=7)
    lam = p.lambda_(n)
    pts = generate_sigma_points(np.zeros(n), cov, lam)
    meas = pts[:, [0, 2]]                       # observe two components

    Pxz = cross_covariance(pts, np.zeros(n), meas, np.zeros(2), p.alpha, p.beta, lam)

    assert Pxz.shape == (n, 2)
    np.testing.assert_allclose(Pxz, cov[:, [0, 2]], atol=1e-9)


def test_dimension_mismatch_raises():
    with pytest.raises(ValueError):
        generate_sigma_points(np.zeros(3), np.eye(4), 0.0)


def test_tiny_negative_pivot_is_not_treated_as_zero():
    cov = np.diag([1.0, -1e-13, 1.0])
    S = matrix_sqrt(cov)
    assert np.isnan(S[1, 1])
    assert np.all(np.isfinite(S[:, 0]))


def test_rank_deficient_coupled_covariance_stays_finite():
    cov = np.array([[1.0, 1.0, 0.0],
                    [1.0, 1.0, 0.0],
                    [0.0, 0.0, 2.0]])
    S = matrix_sqrt(cov)
    assert np.all(np.isfinite(S))
    assert S[1, 1] == 0.0
    np.testing.assert_allclose(S @ S.T, cov, atol=1e-12)
