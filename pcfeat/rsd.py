# pcfeat/rsd.py
"""Radius-based Surface Descriptor: min/max local radii from normal angles vs distance."""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np

from pcfeat.config import RSDCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel

# systematic error correction, tuned for nr_subdiv == 5
R_MIN_GAIN = 1.1
R_MAX_GAIN = 0.9


def principal_radii(
    p: np.ndarray,
    n: np.ndarray,
    points: np.ndarray,
    normals: np.ndarray,
    max_dist: float,
    cfg: RSDCfg,
) -> Tuple[float, float, np.ndarray]:
    """
    (r_min, r_max, histogram) of one neighborhood.

    Orientation is ignored: angles between normals are folded into
    [0, pi/2]. Each distance bin keeps its smallest and largest angle, and
    the radius is the least-squares slope of distance over angle.
    """
    nr = cfg.nr_subdiv
    hist = np.zeros((nr, nr))
    if len(points) < 2:
        return 0.0, 0.0, hist
    diff = points - p
    dist = np.sqrt(np.einsum("ij,ij->i", diff, diff))
    keep = (dist > 0.0) & (dist <= max_dist)

    cos = np.clip(normals[keep] @ n, -1.0, 1.0)
    angle = np.arccos(cos)
    angle = np.where(angle > np.pi / 2.0, np.pi - angle, angle)
    bin_d = np.minimum(np.floor(nr * dist[keep] / max_dist).astype(np.int64), nr - 1)
    if cfg.save_histograms:
        bin_a = np.minimum(np.floor(nr * angle / (np.pi / 2.0)).astype(np.int64), nr - 1)
        np.add.at(hist, (bin_a, bin_d), 1.0)

    lo = np.full(nr, np.inf)
    hi = np.full(nr, -np.inf)
    lo[0] = hi[0] = 0.0
    np.minimum.at(lo, bin_d, angle)
    np.maximum.at(hi, bin_d, angle)

    used = hi >= 0.0
    f = (np.arange(nr)[used] + 0.5) * max_dist / nr
    a_min, a_max = lo[used], hi[used]
    mm, md = float(a_min @ a_min), float(a_min @ f)
    xx, xd = float(a_max @ a_max), float(a_max @ f)
    r_min = cfg.plane_radius if mm == 0.0 else min(md / mm, cfg.plane_radius)
    r_max = cfg.plane_radius if xx == 0.0 else min(xd / xx, cfg.plane_radius)
    r_min *= R_MIN_GAIN
    r_max *= R_MAX_GAIN
    if r_min > r_max:
        r_min, r_max = r_max, r_min
    return r_min, r_max, hist


def _rsd_fields(cfg: RSDCfg):
    fields = (("r_min", 1), ("r_max", 1))
    if cfg.save_histograms:
        fields += (("histogram", cfg.nr_subdiv * cfg.nr_subdiv),)
    return fields


@register_kernel(
    "rsd",
    _rsd_fields,
    needs_normals=True,
    needs_query_normal=True,
    needs_radius=True,
)
def _rsd_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    cfg: RSDCfg = setup.cfg
    n = setup.query_normal(pos)
    if not np.isfinite(n).all():
        return None
    r_min, r_max, hist = principal_radii(
        setup.query_point(pos),
        n,
        setup.surface.xyz[nbr],
        setup.normals[nbr],
        setup.radius,
        cfg,
    )
    row = [r_min, r_max]
    if cfg.save_histograms:
        return np.concatenate([row, hist.reshape(-1)])
    return np.array(row)


class RSDEstimation(FeatureEstimator):
    """Principal radii (r_min <= r_max) per point, with optional 2-D histograms."""

    kind = "rsd"
    cfg_type = RSDCfg
    tag = "RSD"

    def histograms(self, out) -> np.ndarray:
        """(n, nr_subdiv, nr_subdiv) angle x distance histograms of a result."""
        nr = self.cfg.nr_subdiv
        return out["histogram"].reshape(-1, nr, nr)
