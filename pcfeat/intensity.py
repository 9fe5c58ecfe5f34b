# pcfeat/intensity.py
"""Intensity based descriptors: surface gradient, intensity spin image and RIFT."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import IntensityGradientCfg, IntensitySpinCfg, RIFTCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import compute_centroid, tangent_projector

F32_EPS = float(np.finfo(np.float32).eps)


# ============================== GRADIENT =====================================


def intensity_gradient(
    points: np.ndarray, intensity: np.ndarray, normal: np.ndarray
) -> np.ndarray:
    """
    Least-squares fit of ``intensity ~ g . (p - centroid)`` projected on the
    tangent plane of ``normal``.
    """
    d = points - compute_centroid(points)
    di = intensity - intensity.mean()
    A = d.T @ d
    b = d.T @ di
    g, *_ = np.linalg.lstsq(A, b, rcond=None)
    return tangent_projector(normal) @ g


def _gradient_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    if len(nbr) < setup.cfg.min_neighbors:
        return None
    n = setup.query_normal(pos)
    if not np.isfinite(n).all():
        return None
    return intensity_gradient(setup.surface.xyz[nbr], setup.surface.intensity[nbr], n)


register_kernel(
    "intensity_gradient",
    (("gradient", 3),),
    min_neighbors=3,
    needs_normals=True,
    needs_query_normal=True,
    needs_fields=("intensity",),
)(_gradient_kernel)


class IntensityGradientEstimation(FeatureEstimator):
    """Tangent-plane intensity gradient per point."""

    kind = "intensity_gradient"
    cfg_type = IntensityGradientCfg
    tag = "IGRAD"


# ============================== INTENSITY SPIN ===============================


def intensity_spin_image(
    dists: np.ndarray, intensity: np.ndarray, radius: float, cfg: IntensitySpinCfg
) -> np.ndarray:
    """(intensity bins, distance bins) histogram, Gaussian smoothed unless sigma == 0."""
    nd, ni, sigma = cfg.nr_distance_bins, cfg.nr_intensity_bins, cfg.sigma
    lo, hi = float(intensity.min()), float(intensity.max())
    d = nd * dists / (radius + F32_EPS)
    i = ni * (intensity - lo) / (hi - lo + F32_EPS)
    img = np.zeros((ni, nd))

    if sigma == 0.0:
        d_idx = np.clip(d.astype(np.int64), 0, nd - 1)
        i_idx = np.clip(i.astype(np.int64), 0, ni - 1)
        np.add.at(img, (i_idx, d_idx), 1.0)
        return img

    const = 1.0 / (2.0 * sigma * sigma)
    for dk, ik in zip(d, i):
        d0 = max(int(np.floor(dk - 3 * sigma)), 0)
        d1 = min(int(np.ceil(dk + 3 * sigma)), nd - 1)
        i0 = max(int(np.floor(ik - 3 * sigma)), 0)
        i1 = min(int(np.ceil(ik + 3 * sigma)), ni - 1)
        if d0 > d1 or i0 > i1:
            continue
        dd = (dk - np.arange(d0, d1 + 1)) ** 2
        ii = (ik - np.arange(i0, i1 + 1)) ** 2
        img[i0 : i1 + 1, d0 : d1 + 1] += np.exp(-ii[:, None] * const - dd[None, :] * const)
    return img


def _ispin_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    img = intensity_spin_image(
        np.sqrt(sqd), setup.surface.intensity[nbr], setup.radius, setup.cfg
    )
    # distance-major layout
    return img.T.reshape(-1)


register_kernel(
    "intensity_spin",
    lambda cfg: (("histogram", cfg.size),),
    needs_radius=True,
    needs_fields=("intensity",),
)(_ispin_kernel)


class IntensitySpinEstimation(FeatureEstimator):
    """Distance x intensity histogram of the neighborhood."""

    kind = "intensity_spin"
    cfg_type = IntensitySpinCfg
    tag = "ISPIN"


# ============================== RIFT =========================================


def rift_descriptor(
    p0: np.ndarray,
    points: np.ndarray,
    dists: np.ndarray,
    gradients: np.ndarray,
    radius: float,
    cfg: RIFTCfg,
) -> np.ndarray:
    """
    (distance bins, gradient bins) histogram of the angle between each
    neighbor gradient and the outward radial direction, weighted by the
    gradient magnitude, L2 normalized.
    """
    nd, ng = cfg.nr_distance_bins, cfg.nr_gradient_bins
    desc = np.zeros((nd, ng))
    radial = points - p0
    rnorm = np.linalg.norm(radial, axis=1)
    gmag = np.linalg.norm(gradients, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        unit = radial / rnorm[:, None]
        cos = np.einsum("ij,ij->i", gradients, unit) / gmag
        angle = np.arccos(cos)
    angle = np.where(np.isfinite(angle), angle, 0.0)

    d = nd * dists / (radius + F32_EPS)
    g = ng * angle / (np.pi + F32_EPS)
    for dk, gk, mk in zip(d, g, gmag):
        if not np.isfinite(mk):
            continue
        d0 = max(int(np.ceil(dk - 1)), 0)
        d1 = min(int(np.floor(dk + 1)), nd - 1)
        for gi in range(int(np.ceil(gk - 1)), int(np.floor(gk + 1)) + 1):
            gw = (gi + ng) % ng
            for di in range(d0, d1 + 1):
                w = (1.0 - abs(dk - di)) * (1.0 - abs(gk - gi))
                desc[di, gw] += w * mk

    norm = float(np.linalg.norm(desc))
    if norm > 0.0:
        desc /= norm
    return desc


def _rift_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    desc = rift_descriptor(
        setup.query_point(pos),
        setup.surface.xyz[nbr],
        np.sqrt(sqd),
        setup.gradients[nbr],
        setup.radius,
        setup.cfg,
    )
    # gradient-major layout
    return desc.T.reshape(-1)


register_kernel(
    "rift",
    lambda cfg: (("histogram", cfg.size),),
    needs_radius=True,
    needs_gradients=True,
)(_rift_kernel)


class RIFTEstimation(FeatureEstimator):
    """Rotation invariant feature transform over a precomputed gradient field."""

    kind = "rift"
    cfg_type = RIFTCfg
    tag = "RIFT"

    def set_input_gradient(self, gradients: Any) -> "RIFTEstimation":
        """Gradients aligned with the search surface (array or gradient Features)."""
        self.gradients = gradients
        return self
