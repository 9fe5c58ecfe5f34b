# pcfeat/moments.py
"""Rotation invariant combinations of second order central moments."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import MomentCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import compute_centroid


def moment_invariants(points: np.ndarray) -> np.ndarray:
    """
    j1, j2, j3 of a point set.

    Uses the raw (unnormalized) centered moments mu200..mu011; coincident
    points give all zeros.
    """
    X = points - compute_centroid(points)
    x, y, z = X[:, 0], X[:, 1], X[:, 2]
    mu200, mu020, mu002 = x @ x, y @ y, z @ z
    mu110, mu101, mu011 = x @ y, x @ z, y @ z

    j1 = mu200 + mu020 + mu002
    j2 = (
        mu200 * mu020
        + mu200 * mu002
        + mu020 * mu002
        - mu110 * mu110
        - mu101 * mu101
        - mu011 * mu011
    )
    j3 = (
        mu200 * mu020 * mu002
        + 2.0 * mu110 * mu101 * mu011
        - mu002 * mu110 * mu110
        - mu020 * mu101 * mu101
        - mu200 * mu011 * mu011
    )
    return np.array([j1, j2, j3])


@register_kernel("moment", (("j1", 1), ("j2", 1), ("j3", 1)))
def _moment_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    return moment_invariants(setup.surface.xyz[nbr])


class MomentInvariantsEstimation(FeatureEstimator):
    kind = "moment"
    cfg_type = MomentCfg
    tag = "MOM"
