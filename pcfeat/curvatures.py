# pcfeat/curvatures.py
"""Principal curvatures from the spread of neighbor normals in the tangent plane."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import CurvatureCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import compute_covariance, tangent_projector


def principal_curvatures(normal: np.ndarray, nbr_normals: np.ndarray) -> np.ndarray:
    """[dir_x, dir_y, dir_z, pc1, pc2] with pc1 >= pc2."""
    proj = nbr_normals @ tangent_projector(normal).T
    C = compute_covariance(proj, proj.mean(axis=0), normalize=False)
    w, V = np.linalg.eigh(C)
    inv_n = 1.0 / len(nbr_normals)
    d = V[:, 2]
    return np.array([d[0], d[1], d[2], w[2] * inv_n, w[1] * inv_n])


@register_kernel(
    "principal_curvature",
    (("principal_direction", 3), ("pc1", 1), ("pc2", 1)),
    needs_normals=True,
    needs_query_normal=True,
)
def _curvature_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    n = setup.query_normal(pos)
    nn = setup.normals[nbr]
    if not np.isfinite(n).all() or not np.isfinite(nn).all():
        return None
    return principal_curvatures(n, nn)


class PrincipalCurvaturesEstimation(FeatureEstimator):
    kind = "principal_curvature"
    cfg_type = CurvatureCfg
    tag = "PCV"
