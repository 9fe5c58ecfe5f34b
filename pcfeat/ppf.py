# pcfeat/ppf.py
"""Point Pair Features between every indexed point and every surface point."""

from __future__ import annotations

import time

import numpy as np
from scipy.spatial.transform import Rotation

from pcfeat.config import PPFCfg
from pcfeat.estimator import FeatureEstimator, Features
from pcfeat.kernels import pair_features_batch
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("ppf")

PPF_FIELDS = (("f1", 1), ("f2", 1), ("f3", 1), ("f4", 1), ("alpha_m", 1))
UNIT_X = np.array([1.0, 0.0, 0.0])
UNIT_Y = np.array([0.0, 1.0, 0.0])


def alignment_rotation(n_ref: np.ndarray) -> Rotation:
    """Rotation taking the reference normal onto the X axis."""
    angle = float(np.arccos(np.clip(n_ref @ UNIT_X, -1.0, 1.0)))
    if n_ref[1] == 0.0 and n_ref[2] == 0.0:
        axis = UNIT_Y
    else:
        axis = np.cross(n_ref, UNIT_X)
        axis /= np.linalg.norm(axis)
    return Rotation.from_rotvec(angle * axis)


def alpha_m(p_ref: np.ndarray, n_ref: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Angle of each model point around the X axis after aligning the reference."""
    t = alignment_rotation(n_ref).apply(points - p_ref)
    angle = np.arctan2(-t[:, 2], t[:, 1])
    angle = np.where(np.sin(angle) * t[:, 2] < 0.0, -angle, angle)
    return -angle


def ppf_rows(
    p: np.ndarray, n: np.ndarray, points: np.ndarray, normals: np.ndarray
) -> np.ndarray:
    """(m, 5) rows of f1..f4 and alpha_m, NaN where the pair is undefined."""
    m = len(points)
    F, valid = pair_features_batch(
        np.broadcast_to(p, (m, 3)), np.broadcast_to(n, (m, 3)), points, normals
    )
    rows = np.full((m, 5), np.nan)
    if valid.any() and np.isfinite(n).all():
        rows[valid, :4] = F[valid]
        rows[valid, 4] = alpha_m(p, n, points[valid])
    return rows


class PPFEstimation(FeatureEstimator):
    """
    Pairwise output: row ``i * len(surface) + j`` pairs ``indices[i]`` with
    surface point ``j``. The pair of a point with itself is NaN.
    """

    kind = "ppf"
    cfg_type = PPFCfg
    tag = "PPF"
    needs_search = False

    def compute(self) -> Features:
        setup = self._setup()
        normals, query_normals = self._resolve_normals(
            type(self).__name__, setup.surface, True
        )
        m = len(setup.surface)
        t0 = time.perf_counter()
        out = np.empty((len(setup) * m, 5))
        for pos, idx in enumerate(setup.indices):
            p = setup.input.xyz[idx]
            n = query_normals[idx] if query_normals is not None else normals[idx]
            rows = ppf_rows(p, n, setup.surface.xyz, normals)
            if setup.surface_is_input:
                rows[idx] = np.nan
            out[pos * m : (pos + 1) * m] = rows
        LOG.info(
            f"[{self.tag}] {len(setup)} x {m} pairs, {time.perf_counter() - t0:.3f}s"
        )
        return Features(out, PPF_FIELDS, np.repeat(setup.indices, m))
