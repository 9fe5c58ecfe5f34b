# pcfeat/vfh.py
"""
Viewpoint Feature Histogram (VFH).

One global signature per cluster: f1..f4 of the pair (centroid, mean
normal) with every point, plus a histogram of the angle between each
normal and the direction from the centroid to the viewpoint.
"""

from __future__ import annotations

import time

import numpy as np

from pcfeat.config import VFHCfg
from pcfeat.estimator import FeatureEstimator, Features
from pcfeat.kernels import pair_features_batch
from pcfeat.pfh import angle_bins, cosine_bins
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("vfh")


def _counts(idx: np.ndarray, nbins: int) -> np.ndarray:
    return np.bincount(idx, minlength=nbins).astype(np.float64)


def vfh_signature(xyz: np.ndarray, normals: np.ndarray, cfg: VFHCfg) -> np.ndarray:
    """
    Blocks f1 | f2 | f3 | f4 | viewpoint of a cluster with finite points and
    normals. Each vote adds ``100 / (n - 1)`` with ``normalize_bins``, 1
    otherwise.
    """
    n = len(xyz)
    centroid = np.asarray(cfg.centroid, float) if cfg.centroid is not None else xyz.mean(axis=0)
    mean_normal = np.asarray(cfg.normal, float) if cfg.normal is not None else normals.mean(axis=0)
    incr = 100.0 / (n - 1) if cfg.normalize_bins else 1.0

    F, valid = pair_features_batch(
        np.broadcast_to(centroid, (n, 3)), np.broadcast_to(mean_normal, (n, 3)), xyz, normals
    )
    F = F[valid]
    blocks = [
        _counts(angle_bins(F[:, 0], cfg.nr_bins_f1), cfg.nr_bins_f1),
        _counts(cosine_bins(F[:, 1], cfg.nr_bins_f2), cfg.nr_bins_f2),
        _counts(cosine_bins(F[:, 2], cfg.nr_bins_f3), cfg.nr_bins_f3),
    ]

    f4 = np.zeros(cfg.nr_bins_f4)
    if cfg.size_component:
        if cfg.normalize_distances:
            diag = float(np.linalg.norm(xyz.max(axis=0) - xyz.min(axis=0)))
            idx = np.floor(cfg.nr_bins_f4 * F[:, 3] / (diag if diag > 0.0 else 1.0))
        else:
            # centimeters
            idx = np.floor(F[:, 3] * 100.0 + 0.5)
        f4 = _counts(np.clip(idx.astype(np.int64), 0, cfg.nr_bins_f4 - 1), cfg.nr_bins_f4)
    blocks.append(f4)

    d_vp = np.asarray(cfg.viewpoint, float) - centroid
    d_norm = float(np.linalg.norm(d_vp))
    if d_norm > 0.0:
        d_vp /= d_norm
    alpha = (normals @ d_vp + 1.0) * 0.5
    vp = np.clip(np.floor(alpha * cfg.nr_bins_vp).astype(np.int64), 0, cfg.nr_bins_vp - 1)
    blocks.append(_counts(vp, cfg.nr_bins_vp))
    return np.concatenate(blocks) * incr


class VFHEstimation(FeatureEstimator):
    """One VFH row for the indexed cluster; normals must be input-aligned."""

    kind = "vfh"
    cfg_type = VFHCfg
    tag = "VFH"
    needs_search = False

    def compute(self) -> Features:
        setup = self._setup()
        cfg: VFHCfg = self.cfg
        normals, query_normals = self._resolve_normals(
            type(self).__name__, setup.surface, True
        )
        source = query_normals if query_normals is not None else normals
        xyz = setup.input.xyz[setup.indices]
        nrm = source[setup.indices]
        finite = np.isfinite(xyz).all(axis=1) & np.isfinite(nrm).all(axis=1)
        t0 = time.perf_counter()
        if finite.sum() < 2:
            LOG.warning(f"[{self.tag}] {int(finite.sum())} usable points, signature undefined")
            hist = np.full(cfg.size, np.nan)
        else:
            hist = vfh_signature(xyz[finite], nrm[finite], cfg)
        LOG.info(
            f"[{self.tag}] {int(finite.sum())}/{len(setup)} points, "
            f"{time.perf_counter() - t0:.3f}s"
        )
        return Features(
            hist.reshape(1, -1), (("histogram", cfg.size),), np.zeros(1, dtype=np.int64)
        )
