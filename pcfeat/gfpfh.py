# pcfeat/gfpfh.py
"""Global label-transition histogram over an occupancy octree."""

from __future__ import annotations

import time
from itertools import product
from typing import Any, Optional, Tuple

import numpy as np

from pcfeat.config import GFPFHCfg
from pcfeat.estimator import FeatureEstimator, Features
from pcfeat.cloud import PointCloud
from pcfeat.utils.error_tracker import ConfigurationError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("gfpfh")

NEIGHBOR_OFFSETS = np.array(
    [o for o in product((-1, 0, 1), repeat=3) if o != (0, 0, 0)], dtype=np.int64
)


def occupied_leaves(
    xyz: np.ndarray, labels: np.ndarray, leaf_size: float, num_classes: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Leaf keys (L,3) of a regular grid anchored at the cloud minimum and the
    dominant label of each leaf. Labels outside 1..num_classes are ignored;
    ties go to the smallest label.
    """
    keep = np.isfinite(xyz).all(axis=1) & (labels >= 1) & (labels <= num_classes)
    xyz, labels = xyz[keep], labels[keep]
    if len(xyz) == 0:
        return np.empty((0, 3), np.int64), np.empty(0, np.int64)
    keys = np.floor((xyz - xyz.min(axis=0)) / leaf_size).astype(np.int64)
    leaves, inv = np.unique(keys, axis=0, return_inverse=True)
    counts = np.zeros((len(leaves), num_classes), dtype=np.int64)
    np.add.at(counts, (inv.reshape(-1), labels - 1), 1)
    return leaves, counts.argmax(axis=1) + 1


def _encode(keys: np.ndarray, dims: np.ndarray) -> np.ndarray:
    # keys are shifted by one so that -1 neighbors stay non-negative
    k = keys + 1
    return (k[:, 0] * dims[1] + k[:, 1]) * dims[2] + k[:, 2]


def transition_histogram(leaves: np.ndarray, dominant: np.ndarray, num_classes: int) -> np.ndarray:
    """Symmetric (classes x classes) counts over 26-connected occupied leaves."""
    hist = np.zeros((num_classes, num_classes), dtype=np.float64)
    if len(leaves) == 0:
        return hist
    dims = leaves.max(axis=0) + 3
    codes = _encode(leaves, dims)
    order = np.argsort(codes)
    sorted_codes = codes[order]
    for off in NEIGHBOR_OFFSETS:
        nc = _encode(leaves + off, dims)
        at = np.searchsorted(sorted_codes, nc)
        at = np.minimum(at, len(sorted_codes) - 1)
        hit = sorted_codes[at] == nc
        la = dominant[hit] - 1
        lb = dominant[order[at[hit]]] - 1
        np.add.at(hist, (la, lb), 1.0)
    return hist


class GFPFHEstimation(FeatureEstimator):
    """One descriptor per labeled cloud; no neighbor search involved."""

    kind = "gfpfh"
    cfg_type = GFPFHCfg
    tag = "GFPFH"
    needs_search = False

    def __init__(self, cfg: Optional[GFPFHCfg] = None, **kw: Any) -> None:
        super().__init__(cfg, **kw)
        self.labels: Any = None

    def set_input_labels(self, labels: Any) -> "GFPFHEstimation":
        """Per-point labels (array or a labeled cloud) aligned with the input."""
        self.labels = labels
        return self

    def _labels(self) -> np.ndarray:
        src = self.labels if self.labels is not None else self.input
        if isinstance(src, PointCloud):
            src = src.label
        if src is None:
            raise ConfigurationError(f"{type(self).__name__}: no labels were given")
        labels = np.asarray(src, dtype=np.int64).reshape(-1)
        if len(labels) != len(self.input):
            raise ConfigurationError(
                f"{type(self).__name__}: {len(labels)} labels for {len(self.input)} points"
            )
        return labels

    def compute(self) -> Features:
        setup = self._setup()
        cfg: GFPFHCfg = self.cfg
        if cfg.leaf_size <= 0.0 or cfg.num_classes <= 0:
            raise ConfigurationError(
                f"{type(self).__name__}: leaf_size and num_classes must be positive"
            )
        labels = self._labels()[setup.indices]
        t0 = time.perf_counter()
        leaves, dominant = occupied_leaves(
            setup.input.xyz[setup.indices], labels, cfg.leaf_size, cfg.num_classes
        )
        hist = transition_histogram(leaves, dominant, cfg.num_classes)
        LOG.info(
            f"[{self.tag}] {len(setup.indices)} points, {len(leaves)} leaves, "
            f"{time.perf_counter() - t0:.3f}s"
        )
        return Features(
            hist.reshape(1, -1), (("histogram", cfg.size),), np.zeros(1, dtype=np.int64)
        )
