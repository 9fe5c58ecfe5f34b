# pcfeat/boundary.py
"""Boundary points: a large angular gap between neighbors in the tangent plane."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import BoundaryCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import tangent_basis


def max_angular_gap(deltas: np.ndarray, u: np.ndarray, v: np.ndarray) -> float:
    """Largest gap between consecutive directions in the (u, v) plane, wrapping at 2pi."""
    keep = np.any(deltas != 0.0, axis=1)
    d = deltas[keep]
    if len(d) == 0:
        return 0.0
    angles = np.sort(np.arctan2(d @ v, d @ u))
    gaps = np.diff(angles)
    wrap = 2.0 * np.pi - angles[-1] + angles[0]
    return float(max(gaps.max(initial=0.0), wrap))


@register_kernel(
    "boundary",
    (("boundary", 1),),
    min_neighbors=3,
    needs_normals=True,
    needs_query_normal=True,
    invalid=0.0,
)
def _boundary_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    n = setup.query_normal(pos)
    if not np.isfinite(n).all():
        return np.zeros(1)
    u, v = tangent_basis(n)
    gap = max_angular_gap(setup.surface.xyz[nbr] - setup.query_point(pos), u, v)
    return np.array([1.0 if gap > setup.cfg.angle_threshold else 0.0])


class BoundaryEstimation(FeatureEstimator):
    """Flags points whose neighbors leave an angular gap above the threshold."""

    kind = "boundary"
    cfg_type = BoundaryCfg
    tag = "BND"
