from __future__ import annotations

import numpy as np
import pytest

from pcfeat.cloud import PointCloud
from pcfeat.config import FPFHCfg, PFHCfg, SHOTCfg, SpinImageCfg
from pcfeat.pfh import FPFHEstimation, PFHEstimation, angle_bins, cosine_bins, pfh_histogram
from pcfeat.search import KdTreeSearch
from pcfeat.shot import SHOTColorEstimation, SHOTEstimation, local_reference_frame
from pcfeat.spin import SpinImageEstimation

RADIUS = 0.4


def _run(est, cloud, normals):
    return est.set_input_cloud(cloud).set_input_normals(normals).compute()


# ============================== PFH / FPFH ===================================


def test_bins_are_clamped():
    assert list(angle_bins(np.array([-np.pi, 0.0, np.pi]), 5)) == [0, 2, 4]
    assert list(cosine_bins(np.array([-1.0, 0.0, 1.0]), 5)) == [0, 2, 4]


def test_pfh_sums_to_100(sphere_cloud, sphere_normals):
    out = _run(PFHEstimation(k=10, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    h = out["histogram"]
    assert h.shape == (len(sphere_cloud), 125)
    assert np.allclose(h.sum(axis=1), 100.0, atol=1e-2)


def test_pfh_subdivisions(sphere_cloud, sphere_normals):
    est = PFHEstimation(PFHCfg(nr_subdiv=3), k=8, search=KdTreeSearch())
    h = _run(est, sphere_cloud, sphere_normals)["histogram"]
    assert h.shape[1] == 27
    assert np.allclose(h.sum(axis=1), 100.0, atol=1e-2)


def test_pfh_needs_two_neighbors(sphere_cloud, sphere_normals):
    out = _run(PFHEstimation(k=1, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    assert np.isnan(out.data).all()


def test_pfh_without_valid_pairs():
    z = np.tile([0.0, 0.0, 1.0], (3, 1))
    assert pfh_histogram(np.zeros((3, 3)), z, 5) is None


def test_fpfh_blocks_sum_to_100(sphere_cloud, sphere_normals):
    out = _run(FPFHEstimation(k=10, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    h = out["histogram"]
    assert h.shape == (len(sphere_cloud), 33)
    for s in (slice(0, 11), slice(11, 22), slice(22, 33)):
        assert np.allclose(h[:, s].sum(axis=1), 100.0, atol=1e-6)


def test_fpfh_custom_bins(sphere_cloud, sphere_normals):
    cfg = FPFHCfg(nr_bins_f1=5, nr_bins_f2=6, nr_bins_f3=7)
    h = _run(FPFHEstimation(cfg, k=10, search=KdTreeSearch()), sphere_cloud, sphere_normals)["histogram"]
    assert h.shape[1] == 18
    assert np.allclose(h[:, 5:11].sum(axis=1), 100.0)


# ============================== SHOT =========================================


def test_lrf_is_right_handed(sphere_cloud):
    xyz = sphere_cloud.xyz
    center = xyz[0]
    d = np.linalg.norm(xyz - center, axis=1)
    near = d <= RADIUS
    rf = local_reference_frame(center, xyz[near], d[near], RADIUS)
    assert np.allclose(rf @ rf.T, np.eye(3), atol=1e-9)
    assert np.isclose(np.linalg.det(rf), 1.0)


def test_lrf_needs_five_points():
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0, 0], [0, 1.0, 0], [0, 0, 1.0], [1.0, 1.0, 0]])
    d = np.linalg.norm(pts, axis=1)
    assert local_reference_frame(np.zeros(3), pts, d, 2.0) is None


def test_shot_shape_is_unit_norm(sphere_cloud, sphere_normals):
    out = _run(SHOTEstimation(radius=RADIUS, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    desc = out["descriptor"]
    assert desc.shape == (len(sphere_cloud), 352)
    valid = out.valid_mask()
    assert valid.all()
    assert np.allclose(np.linalg.norm(desc, axis=1), 1.0)
    rf = out["rf"].reshape(-1, 3, 3)
    assert np.allclose(np.einsum("nij,nkj->nik", rf, rf), np.eye(3), atol=1e-9)


def test_shot_color_layout(sphere_cloud, sphere_normals):
    out = _run(SHOTColorEstimation(radius=RADIUS, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    assert out["descriptor"].shape[1] == 1344
    assert np.allclose(np.linalg.norm(out["descriptor"], axis=1), 1.0)
    color = out["descriptor"][:, 352:]
    assert np.any(color > 0.0)


def test_shot_color_needs_rgb(sphere_normals, sphere_cloud):
    from pcfeat.utils.error_tracker import ConfigurationError

    bare = PointCloud(sphere_cloud.xyz)
    with pytest.raises(ConfigurationError):
        _run(SHOTColorEstimation(radius=RADIUS, search=KdTreeSearch()), bare, sphere_normals)


def test_shot_small_support_is_nan(sphere_cloud, sphere_normals):
    out = _run(SHOTEstimation(radius=0.05, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    assert np.isnan(out.data).all()


def test_shot_k_search_ignores_neighbors_outside_radius(sphere_cloud, sphere_normals):
    by_k = _run(SHOTEstimation(k=60, radius=0.2, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    by_radius = _run(SHOTEstimation(radius=0.2, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    valid = by_k.valid_mask()
    assert valid.any()
    assert np.all(by_k["descriptor"][valid] >= 0.0)
    assert np.array_equal(by_k.data, by_radius.data, equal_nan=True)


def test_shot_bin_count(sphere_cloud, sphere_normals):
    cfg = SHOTCfg(nr_shape_bins=5)
    out = _run(SHOTEstimation(cfg, radius=RADIUS, search=KdTreeSearch()), sphere_cloud, sphere_normals)
    assert out["descriptor"].shape[1] == 32 * 6


# ============================== SPIN IMAGES ==================================


@pytest.mark.parametrize("radial", [False, True])
def test_spin_image_is_normalized(sphere_cloud, sphere_normals, radial):
    est = SpinImageEstimation(SpinImageCfg(radial=radial), radius=RADIUS, search=KdTreeSearch())
    h = _run(est, sphere_cloud, sphere_normals)["histogram"]
    assert h.shape == (len(sphere_cloud), 153)
    assert np.all(h >= 0.0)
    assert np.allclose(h.sum(axis=1), 1.0)


def test_angular_spin_image_range(sphere_cloud, sphere_normals):
    est = SpinImageEstimation(SpinImageCfg(angular=True), radius=RADIUS, search=KdTreeSearch())
    h = _run(est, sphere_cloud, sphere_normals)["histogram"]
    assert np.all(np.isfinite(h))
    assert np.all((h >= 0.0) & (h <= np.pi / 2 + 1e-6))
    assert np.any(h > 0.0)


def test_spin_image_min_points(sphere_cloud, sphere_normals):
    est = SpinImageEstimation(SpinImageCfg(min_pts_neighb=10_000), radius=RADIUS, search=KdTreeSearch())
    assert np.isnan(_run(est, sphere_cloud, sphere_normals).data).all()


def test_spin_image_width(sphere_cloud, sphere_normals):
    est = SpinImageEstimation(SpinImageCfg(image_width=4), radius=RADIUS, search=KdTreeSearch())
    assert _run(est, sphere_cloud, sphere_normals).data.shape[1] == 5 * 9
