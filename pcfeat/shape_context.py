# pcfeat/shape_context.py
"""
3D shape context (3DSC) and unique shape context (USC).

The support sphere is split into azimuth x elevation x radial bins, with
radial shells spaced logarithmically from ``min_radius`` to the search
radius. Each neighbor votes ``1 / (density * cbrt(bin volume))`` into its
bin, ``density`` being the number of surface points within
``point_density_radius`` of that neighbor.

3DSC takes the elevation axis from the normal of the nearest surface point
and a fixed tangent direction as azimuth origin. USC replaces both with
the SHOT local reference frame, which it also reports in ``rf``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from pcfeat.config import ShapeContextCfg, UniqueShapeContextCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, Mapper, register_kernel
from pcfeat.kernels import tangent_basis
from pcfeat.shot import MIN_NEIGHBORS, support_frame
from pcfeat.utils.error_tracker import ConfigurationError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("sc")

TWO_PI = 2.0 * np.pi


# ============================== GRID =========================================


@dataclass(frozen=True)
class BinGrid:
    radii: np.ndarray  # R+1 shell edges, min_radius .. radius
    theta: np.ndarray  # E+1 elevation edges over [0, pi]
    phi: np.ndarray  # A+1 azimuth edges over [0, 2pi]
    weights: np.ndarray  # (E, R) inverse cube root of the bin volume


def bin_grid(cfg: Any, radius: float) -> BinGrid:
    """Bin edges and volume weights; the volume does not depend on azimuth."""
    A, E, R = cfg.azimuth_bins, cfg.elevation_bins, cfg.radius_bins
    log_min = np.log(cfg.min_radius)
    radii = np.exp(log_min + np.arange(R + 1) / R * (np.log(radius) - log_min))
    theta = np.arange(E + 1) * (np.pi / E)
    phi = np.arange(A + 1) * (TWO_PI / A)
    d_cos = np.cos(theta[:-1]) - np.cos(theta[1:])
    d_r3 = (radii[1:] ** 3 - radii[:-1] ** 3) / 3.0
    volume = (TWO_PI / A) * d_cos[:, None] * d_r3[None, :]
    return BinGrid(radii, theta, phi, volume ** (-1.0 / 3.0))


def bin_index(edges: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Bin whose upper edge is the first one >= value, clamped to the grid."""
    idx = np.searchsorted(edges[1:], values, side="left")
    return np.clip(idx, 0, len(edges) - 2)


def shape_context(
    origin: np.ndarray,
    x_axis: np.ndarray,
    normal: np.ndarray,
    points: np.ndarray,
    sqd: np.ndarray,
    density: np.ndarray,
    grid: BinGrid,
    radius: float,
) -> np.ndarray:
    """
    Flattened histogram indexed ``(azimuth * E + elevation) * R + shell``.

    Neighbors at the origin, beyond ``radius`` or with zero density do not
    vote.
    """
    A, E, R = len(grid.phi) - 1, len(grid.theta) - 1, len(grid.radii) - 1
    desc = np.zeros(A * E * R)
    keep = (sqd > 0.0) & (sqd <= radius * radius) & (density > 0)
    if not keep.any():
        return desc
    v = points[keep] - origin
    r = np.sqrt(sqd[keep])

    height = v @ normal
    proj = v - np.outer(height, normal)
    p_norm = np.linalg.norm(proj, axis=1)
    proj /= np.where(p_norm > 0.0, p_norm, 1.0)[:, None]
    cross = np.cross(x_axis, proj)
    phi = np.arctan2(np.linalg.norm(cross, axis=1), proj @ x_axis)
    phi = np.where(cross @ normal < 0.0, TWO_PI - phi, phi)
    theta = np.arccos(np.clip(height / r, -1.0, 1.0))

    shell = bin_index(grid.radii, r)
    elev = bin_index(grid.theta, theta)
    azim = bin_index(grid.phi, phi)
    np.add.at(
        desc, (azim * E + elev) * R + shell, grid.weights[elev, shell] / density[keep]
    )
    return desc


def _densities(setup: FeatureSetup, nbr: np.ndarray, r: float) -> np.ndarray:
    xyz = setup.surface.xyz
    return np.array([len(setup.search.radius(xyz[i], r)[0]) for i in nbr], dtype=np.float64)


# ============================== KERNELS ======================================


def _grid_prepare(setup: FeatureSetup, mapper: Mapper) -> BinGrid:
    grid = bin_grid(setup.cfg, setup.radius)
    LOG.debug(
        f"[SC] {len(grid.phi) - 1}x{len(grid.theta) - 1}x{len(grid.radii) - 1} bins, "
        f"shells {grid.radii[0]:g}..{grid.radii[-1]:g}"
    )
    return grid


def _sc_fields(cfg: Any):
    return (("descriptor", cfg.size), ("rf", 9))


@register_kernel(
    "shape_context_3d",
    _sc_fields,
    prepare=_grid_prepare,
    needs_normals=True,
    needs_radius=True,
)
def _sc3d_kernel(
    setup: FeatureSetup, ctx: BinGrid, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    cfg: ShapeContextCfg = setup.cfg
    normal = setup.normals[nbr[0]]
    if not np.isfinite(normal).all():
        return None
    x_axis, _ = tangent_basis(normal)
    density = _densities(setup, nbr, cfg.point_density_radius)
    desc = shape_context(
        setup.query_point(pos), x_axis, normal, setup.surface.xyz[nbr],
        sqd, density, ctx, setup.radius,
    )
    return np.concatenate([desc, np.zeros(9)])


@register_kernel(
    "unique_shape_context",
    _sc_fields,
    prepare=_grid_prepare,
    min_neighbors=MIN_NEIGHBORS,
    needs_radius=True,
)
def _usc_kernel(
    setup: FeatureSetup, ctx: BinGrid, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    cfg: UniqueShapeContextCfg = setup.cfg
    rf = support_frame(setup, pos, nbr, sqd, cfg.lrf_radius)
    if rf is None:
        return None
    density = _densities(setup, nbr, cfg.point_density_radius)
    desc = shape_context(
        setup.query_point(pos), rf[0], rf[2], setup.surface.xyz[nbr],
        sqd, density, ctx, setup.radius,
    )
    return np.concatenate([desc, rf.reshape(-1)])


# ============================== ESTIMATORS ===================================


class _ShapeContextBase(FeatureEstimator):
    def _setup(self) -> FeatureSetup:
        name = type(self).__name__
        cfg = self.cfg
        if min(cfg.azimuth_bins, cfg.elevation_bins, cfg.radius_bins) <= 0:
            raise ConfigurationError(f"{name}: bin counts must be positive")
        if cfg.point_density_radius <= 0.0:
            raise ConfigurationError(f"{name}: point_density_radius must be positive")
        if self.radius > 0.0 and not 0.0 < cfg.min_radius < self.radius:
            raise ConfigurationError(
                f"{name}: min_radius {cfg.min_radius:g} outside (0, {self.radius:g})"
            )
        return super()._setup()


class ShapeContext3DEstimation(_ShapeContextBase):
    """3DSC (1980 values with default bins); ``rf`` is left at zero."""

    kind = "shape_context_3d"
    cfg_type = ShapeContextCfg
    tag = "3DSC"


class UniqueShapeContextEstimation(_ShapeContextBase):
    """USC (1960 values with default bins) and the LRF it was built in."""

    kind = "unique_shape_context"
    cfg_type = UniqueShapeContextCfg
    tag = "USC"
