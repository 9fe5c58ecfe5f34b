"""
The neighbor domain is the search surface, never the index subset: the
same query point must get the same row however the work is split.
"""

from __future__ import annotations

import numpy as np
import pytest

from pcfeat.boundary import BoundaryEstimation
from pcfeat.config import SHOTCfg, ShapeContextCfg, SpinImageCfg, UniqueShapeContextCfg
from pcfeat.curvatures import PrincipalCurvaturesEstimation
from pcfeat.intensity import (
    IntensityGradientEstimation,
    IntensitySpinEstimation,
    RIFTEstimation,
)
from pcfeat.moments import MomentInvariantsEstimation
from pcfeat.normals import NormalEstimation
from pcfeat.pfh import FPFHEstimation, PFHEstimation
from pcfeat.ppf import PPFEstimation
from pcfeat.rsd import RSDEstimation
from pcfeat.search import KdTreeSearch
from pcfeat.shape_context import ShapeContext3DEstimation, UniqueShapeContextEstimation
from pcfeat.shot import SHOTColorEstimation, SHOTEstimation
from pcfeat.spin import SpinImageEstimation
from pcfeat.vfh import VFHEstimation

RADIUS = 0.35

ESTIMATORS = {
    "normal": lambda: NormalEstimation(k=10),
    "boundary": lambda: BoundaryEstimation(k=10),
    "moment": lambda: MomentInvariantsEstimation(radius=RADIUS),
    "curvature": lambda: PrincipalCurvaturesEstimation(k=10),
    "pfh": lambda: PFHEstimation(k=10),
    "fpfh": lambda: FPFHEstimation(radius=RADIUS),
    "shot": lambda: SHOTEstimation(radius=RADIUS),
    "shot_lrf": lambda: SHOTEstimation(SHOTCfg(lrf_radius=0.5), radius=RADIUS),
    "shot_color": lambda: SHOTColorEstimation(radius=RADIUS),
    "spin": lambda: SpinImageEstimation(SpinImageCfg(image_width=5), radius=RADIUS),
    "intensity_gradient": lambda: IntensityGradientEstimation(k=10),
    "intensity_spin": lambda: IntensitySpinEstimation(radius=RADIUS),
    "rift": lambda: RIFTEstimation(radius=RADIUS),
    "rsd": lambda: RSDEstimation(radius=RADIUS),
    "shape_context_3d": lambda: ShapeContext3DEstimation(
        ShapeContextCfg(4, 4, 4, min_radius=0.035, point_density_radius=0.07), radius=RADIUS
    ),
    "unique_shape_context": lambda: UniqueShapeContextEstimation(
        UniqueShapeContextCfg(4, 4, 4, min_radius=0.035, point_density_radius=0.07), radius=RADIUS
    ),
}


def _run(name, cloud, normals, gradients, *, indices=None, surface=None, query_normals=None):
    est = ESTIMATORS[name]()
    est.set_search_method(KdTreeSearch()).set_input_cloud(cloud)
    if indices is not None:
        est.set_indices(indices)
    if surface is not None:
        est.set_search_surface(surface)
    est.set_input_normals(normals)
    if query_normals is not None:
        est.set_query_normals(query_normals)
    if name == "rift":
        est.set_input_gradient(gradients)
    return est.compute()


@pytest.mark.parametrize("name", sorted(ESTIMATORS))
def test_three_way_equivalence(name, sphere_cloud, sphere_normals, sphere_gradients):
    idx = np.arange(0, len(sphere_cloud), 3)

    full = _run(name, sphere_cloud, sphere_normals, sphere_gradients)
    indexed = _run(name, sphere_cloud, sphere_normals, sphere_gradients, indices=idx)
    copied = _run(
        name,
        sphere_cloud.select(idx),
        sphere_normals,
        sphere_gradients,
        surface=sphere_cloud,
        query_normals=sphere_normals[idx],
    )

    assert full.data.shape[0] == len(sphere_cloud)
    assert indexed.data.shape == copied.data.shape == (len(idx), full.data.shape[1])
    assert np.array_equal(full.data[idx], indexed.data, equal_nan=True)
    assert np.array_equal(indexed.data, copied.data, equal_nan=True)
    assert list(indexed.indices) == list(idx)
    assert full.valid_mask()[idx].any()


@pytest.mark.parametrize("name", ["normal", "fpfh", "shot", "rsd"])
def test_half_subset_on_separate_surface(name, sphere_cloud, sphere_normals, sphere_gradients):
    half = np.arange(len(sphere_cloud) // 2)
    full = _run(name, sphere_cloud, sphere_normals, sphere_gradients)
    part = _run(
        name,
        sphere_cloud,
        sphere_normals,
        sphere_gradients,
        indices=half,
        surface=sphere_cloud.copy(),
        query_normals=sphere_normals,
    )
    assert np.array_equal(full.select(half).data, part.data, equal_nan=True)


def test_ppf_indexed_matches_copied_input(sphere_cloud, sphere_normals):
    idx = np.array([4, 40, 400])
    indexed = PPFEstimation().set_input_cloud(sphere_cloud).set_indices(idx)
    indexed.set_input_normals(sphere_normals)
    copied = PPFEstimation().set_input_cloud(sphere_cloud.select(idx))
    copied.set_search_surface(sphere_cloud).set_input_normals(sphere_normals)
    copied.set_query_normals(sphere_normals[idx])
    assert np.array_equal(indexed.compute().data, copied.compute().data, equal_nan=True)


def test_vfh_indexed_matches_copied_input(sphere_cloud, sphere_normals):
    idx = np.arange(0, len(sphere_cloud), 4)
    indexed = VFHEstimation().set_input_cloud(sphere_cloud).set_indices(idx)
    indexed.set_input_normals(sphere_normals)
    copied = VFHEstimation().set_input_cloud(sphere_cloud.select(idx))
    copied.set_input_normals(sphere_normals[idx])
    a, b = indexed.compute(), copied.compute()
    assert a.data.shape == (1, 308)
    assert np.array_equal(a.data, b.data)
