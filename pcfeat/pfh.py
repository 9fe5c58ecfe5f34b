# pcfeat/pfh.py
"""Point Feature Histograms (PFH) and their fast variant (FPFH)."""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

import numpy as np

from pcfeat.config import FPFHCfg, PFHCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, Mapper, register_kernel
from pcfeat.kernels import pair_features_batch
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("pfh")

SPFH_CHUNK = 256


# ============================== BINNING ======================================


def angle_bins(f1: np.ndarray, nbins: int) -> np.ndarray:
    """theta in [-pi, pi] to bins 0..nbins-1."""
    idx = np.floor(nbins * ((f1 + np.pi) / (2.0 * np.pi))).astype(np.int64)
    return np.clip(idx, 0, nbins - 1)


def cosine_bins(f: np.ndarray, nbins: int) -> np.ndarray:
    """Values in [-1, 1] to bins 0..nbins-1."""
    idx = np.floor(nbins * ((f + 1.0) * 0.5)).astype(np.int64)
    return np.clip(idx, 0, nbins - 1)


# ============================== PFH ==========================================


def pfh_histogram(points: np.ndarray, normals: np.ndarray, nr_subdiv: int) -> Optional[np.ndarray]:
    """Joint f1/f2/f3 histogram over all unordered pairs, summing to 100."""
    i, j = np.tril_indices(len(points), k=-1)
    F, valid = pair_features_batch(points[i], normals[i], points[j], normals[j])
    n_valid = int(valid.sum())
    if n_valid == 0:
        return None
    F = F[valid]
    N = nr_subdiv
    h = (
        angle_bins(F[:, 0], N)
        + N * cosine_bins(F[:, 1], N)
        + N * N * cosine_bins(F[:, 2], N)
    )
    return np.bincount(h, minlength=N**3).astype(np.float64) * (100.0 / n_valid)


@register_kernel(
    "pfh",
    lambda cfg: (("histogram", cfg.size),),
    min_neighbors=2,
    needs_normals=True,
)
def _pfh_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    return pfh_histogram(setup.surface.xyz[nbr], setup.normals[nbr], setup.cfg.nr_subdiv)


class PFHEstimation(FeatureEstimator):
    """All-pairs Darboux features of the neighborhood, binned jointly."""

    kind = "pfh"
    cfg_type = PFHCfg
    tag = "PFH"


# ============================== FPFH =========================================


def spfh(
    p: np.ndarray,
    n: np.ndarray,
    points: np.ndarray,
    normals: np.ndarray,
    cfg: FPFHCfg,
) -> np.ndarray:
    """
    Simplified PFH of ``p`` against ``points``: three 1-D histograms,
    each summing to 100 (all zeros when no pair is valid).
    """
    m = len(points)
    F, valid = pair_features_batch(
        np.broadcast_to(p, (m, 3)), np.broadcast_to(n, (m, 3)), points, normals
    )
    out = np.zeros(cfg.size)
    n_valid = int(valid.sum())
    if n_valid == 0:
        return out
    F = F[valid]
    incr = 100.0 / n_valid
    b1, b2 = cfg.nr_bins_f1, cfg.nr_bins_f1 + cfg.nr_bins_f2
    out[:b1] = np.bincount(angle_bins(F[:, 0], cfg.nr_bins_f1), minlength=cfg.nr_bins_f1) * incr
    out[b1:b2] = np.bincount(cosine_bins(F[:, 1], cfg.nr_bins_f2), minlength=cfg.nr_bins_f2) * incr
    out[b2:] = np.bincount(cosine_bins(F[:, 2], cfg.nr_bins_f3), minlength=cfg.nr_bins_f3) * incr
    return out


def _blocks(cfg: FPFHCfg) -> List[slice]:
    b1, b2 = cfg.nr_bins_f1, cfg.nr_bins_f1 + cfg.nr_bins_f2
    return [slice(0, b1), slice(b1, b2), slice(b2, cfg.size)]


def _chunks(items: np.ndarray, size: int = SPFH_CHUNK) -> List[np.ndarray]:
    return [items[s : s + size] for s in range(0, len(items), size)]


def _spfh_prepare(setup: FeatureSetup, mapper: Mapper) -> Tuple[np.ndarray, np.ndarray]:
    """SPFH of every surface point that some query will weight in."""
    xyz, normals = setup.surface.xyz, setup.normals

    def used(chunk: np.ndarray) -> np.ndarray:
        found = [np.empty(0, np.int64)]
        for pos in chunk:
            if np.isfinite(setup.query_point(pos)).all():
                found.append(setup.neighbors(int(pos))[0])
        return np.unique(np.concatenate(found))

    def rows(chunk: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        out = np.zeros((len(chunk), setup.cfg.size))
        for r, u in enumerate(chunk):
            nbr, _ = setup.search_point(xyz[u])
            nbr = nbr[nbr != u]
            out[r] = spfh(xyz[u], normals[u], xyz[nbr], normals[nbr], setup.cfg)
        return chunk, out

    positions = np.arange(len(setup), dtype=np.int64)
    parts = list(mapper(used, _chunks(positions)))
    ids = np.unique(np.concatenate(parts)) if parts else np.empty(0, np.int64)
    table = np.zeros((len(xyz), setup.cfg.size))
    for chunk, out in mapper(rows, _chunks(ids)):
        table[chunk] = out
    LOG.debug(f"[FPFH] SPFH table: {len(ids)} surface points")
    return table, ids


@register_kernel(
    "fpfh",
    lambda cfg: (("histogram", cfg.size),),
    prepare=_spfh_prepare,
    min_neighbors=2,
    needs_normals=True,
    needs_query_normal=True,
)
def _fpfh_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    table, _ = ctx
    cfg: FPFHCfg = setup.cfg
    p, n = setup.query_point(pos), setup.query_normal(pos)
    xyz, normals = setup.surface.xyz, setup.normals

    own = spfh(p, n, xyz[nbr], normals[nbr], cfg)
    dist = np.sqrt(sqd)
    far = dist > 0.0
    acc = np.zeros(cfg.size)
    if far.any():
        w = 1.0 / dist[far]
        acc = (w[:, None] * table[nbr[far]]).sum(axis=0) / int(far.sum())
    hist = own + acc
    for sl in _blocks(cfg):
        total = hist[sl].sum()
        if total <= 0.0:
            return None
        hist[sl] *= 100.0 / total
    return hist


class FPFHEstimation(FeatureEstimator):
    """Own SPFH plus the distance weighted SPFH of each neighbor."""

    kind = "fpfh"
    cfg_type = FPFHCfg
    tag = "FPFH"
