from __future__ import annotations

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from pcfeat.kernels import (
    compute_centroid,
    compute_covariance,
    compute_mean_and_covariance,
    compute_pair_features,
    compute_point_normal,
    flip_normal_towards_viewpoint,
    pair_features_batch,
    rgb_to_cielab,
    solve_plane_parameters,
    tangent_basis,
)


@pytest.fixture
def rng():
    return np.random.default_rng(3)


def test_centroid_and_covariance(rng):
    pts = rng.normal(size=(50, 3))
    mu = compute_centroid(pts)
    assert np.allclose(mu, pts.mean(axis=0))
    raw = compute_covariance(pts, mu, normalize=False)
    norm = compute_covariance(pts, mu)
    assert np.allclose(raw, 50.0 * norm)
    assert np.allclose(norm, np.cov(pts.T, bias=True))
    mu2, cov2 = compute_mean_and_covariance(pts)
    assert np.allclose(mu2, mu) and np.allclose(cov2, norm)


def test_centroid_of_nothing_is_nan():
    assert np.isnan(compute_centroid(np.empty((0, 3)))).all()


def test_plane_normal_and_offset(rng):
    pts = np.column_stack([rng.uniform(size=(30, 2)), np.full(30, 2.0)])
    plane, curvature = compute_point_normal(pts)
    assert abs(abs(plane[2]) - 1.0) < 1e-12
    assert abs(plane[3] + plane[2] * 2.0) < 1e-9
    assert 0.0 <= curvature < 1e-12


def test_too_few_points_give_nan():
    plane, curvature = compute_point_normal(np.zeros((2, 3)))
    assert np.isnan(plane).all() and np.isnan(curvature)


def test_zero_covariance_gives_zero_curvature():
    _, curvature = solve_plane_parameters(np.zeros((3, 3)))
    assert curvature == 0.0


def test_curvature_is_bounded(rng):
    for _ in range(20):
        _, c = compute_point_normal(rng.normal(size=(12, 3)))
        assert 0.0 <= c <= 1.0 / 3.0 + 1e-12


def test_flip_negates_normal_and_offset_only():
    plane = np.array([0.0, 0.0, -1.0, 2.0])
    flipped = flip_normal_towards_viewpoint(np.zeros(3), (0.0, 0.0, 10.0), plane)
    assert np.array_equal(flipped, [0.0, 0.0, 1.0, -2.0])
    kept = flip_normal_towards_viewpoint(np.zeros(3), (0.0, 0.0, 10.0), -plane)
    assert np.array_equal(kept, -plane)
    n3 = flip_normal_towards_viewpoint(np.zeros(3), (0.0, 0.0, -1.0), np.array([0.0, 0.0, 1.0]))
    assert np.array_equal(n3, [0.0, 0.0, -1.0])


@pytest.mark.parametrize(
    "n", [(0.0, 0.0, 1.0), (1.0, 0.0, 0.0), (0.0, -1.0, 0.0), (0.3, 0.4, 0.866)]
)
def test_tangent_basis_is_orthonormal(n):
    n = np.asarray(n) / np.linalg.norm(n)
    u, v = tangent_basis(n)
    B = np.stack([u, v, n])
    assert np.allclose(B @ B.T, np.eye(3), atol=1e-12)


def test_pair_features_simple_case():
    z = np.array([0.0, 0.0, 1.0])
    f = compute_pair_features(np.zeros(3), z, np.array([1.0, 0.0, 0.0]), z)
    assert np.allclose(f, (0.0, 0.0, 0.0, 1.0))


def test_pair_features_degenerate():
    z = np.array([0.0, 0.0, 1.0])
    assert compute_pair_features(np.zeros(3), z, np.zeros(3), z) is None
    assert compute_pair_features(np.zeros(3), z, np.array([0.0, 0.0, 2.0]), z) is None


def _unit(rng, m):
    v = rng.normal(size=(m, 3))
    return v / np.linalg.norm(v, axis=1, keepdims=True)


def test_pair_features_rotation_invariant(rng):
    R = Rotation.from_euler("xyz", [0.3, -1.1, 2.0]).as_matrix()
    p1, p2 = rng.normal(size=(2, 3))
    n1, n2 = _unit(rng, 2)
    a = compute_pair_features(p1, n1, p2, n2)
    b = compute_pair_features(R @ p1, R @ n1, R @ p2, R @ n2)
    assert np.allclose(a, b, atol=1e-9)


def test_pair_features_ranges_and_batch(rng):
    m = 100
    p1, p2 = rng.normal(size=(m, 3)), rng.normal(size=(m, 3))
    n1, n2 = _unit(rng, m), _unit(rng, m)
    F, valid = pair_features_batch(p1, n1, p2, n2)
    assert valid.all()
    assert np.all(np.abs(F[:, 0]) <= np.pi)
    assert np.all(np.abs(F[:, 1:3]) <= 1.0 + 1e-12)
    assert np.allclose(F[:, 3], np.linalg.norm(p2 - p1, axis=1))
    for i in range(0, m, 17):
        assert np.allclose(compute_pair_features(p1[i], n1[i], p2[i], n2[i]), F[i])


def test_cielab_white_and_black():
    lab = rgb_to_cielab(np.array([[255.0, 255.0, 255.0], [0.0, 0.0, 0.0]]))
    assert np.allclose(lab[0], [100.0, 0.0, 0.0], atol=0.05)
    assert np.allclose(lab[1], [0.0, 0.0, 0.0], atol=1e-9)
