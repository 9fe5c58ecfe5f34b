from __future__ import annotations

import numpy as np
import pytest

from pcfeat.cloud import PointCloud
from pcfeat.intensity import IntensityGradientEstimation
from pcfeat.normals import NormalEstimation
from pcfeat.search import KdTreeSearch


def fibonacci_sphere(n: int, radius: float = 1.0) -> np.ndarray:
    i = np.arange(n) + 0.5
    phi = np.arccos(1.0 - 2.0 * i / n)
    theta = np.pi * (1.0 + 5.0**0.5) * i
    return radius * np.column_stack(
        [np.cos(theta) * np.sin(phi), np.sin(theta) * np.sin(phi), np.cos(phi)]
    )


def grid_plane(n: int, step: float) -> np.ndarray:
    """n x n grid on z = 0 centered at the origin."""
    ax = (np.arange(n) - (n - 1) / 2.0) * step
    x, y = np.meshgrid(ax, ax, indexing="ij")
    return np.column_stack([x.ravel(), y.ravel(), np.zeros(n * n)])


@pytest.fixture(scope="session")
def sphere_cloud() -> PointCloud:
    xyz = fibonacci_sphere(500)
    rgb = np.column_stack(
        [
            127.5 * (1.0 + xyz[:, 0]),
            127.5 * (1.0 + xyz[:, 1]),
            127.5 * (1.0 - xyz[:, 2]),
        ]
    )
    intensity = 0.5 * xyz[:, 0] + 0.25 * xyz[:, 1] ** 2 + xyz[:, 2]
    return PointCloud(xyz, intensity=intensity, rgb=rgb)


@pytest.fixture(scope="session")
def sphere_normals(sphere_cloud) -> np.ndarray:
    est = NormalEstimation(k=10, search=KdTreeSearch())
    est.set_input_cloud(sphere_cloud)
    return est.compute()["normal"].copy()


@pytest.fixture(scope="session")
def sphere_gradients(sphere_cloud, sphere_normals) -> np.ndarray:
    est = IntensityGradientEstimation(k=10, search=KdTreeSearch())
    est.set_input_cloud(sphere_cloud).set_input_normals(sphere_normals)
    return est.compute()["gradient"].copy()


@pytest.fixture
def plane_cloud() -> PointCloud:
    return PointCloud(grid_plane(11, 1.0))


@pytest.fixture
def search() -> KdTreeSearch:
    return KdTreeSearch()
