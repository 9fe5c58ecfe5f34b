# pcfeat/normals.py
"""Surface normal and curvature from the local covariance."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import NormalCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import compute_point_normal, flip_normal_towards_viewpoint


@register_kernel("normal", (("normal", 3), ("curvature", 1)), min_neighbors=3)
def _normal_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    cfg: NormalCfg = setup.cfg
    plane, curvature = compute_point_normal(
        setup.surface.xyz[nbr], normalize=cfg.normalize_covariance
    )
    if not np.isfinite(plane).all():
        return None
    if cfg.flip_towards_viewpoint:
        plane = flip_normal_towards_viewpoint(setup.query_point(pos), cfg.viewpoint, plane)
    return np.array([plane[0], plane[1], plane[2], curvature])


class NormalEstimation(FeatureEstimator):
    """Least-variance direction of each neighborhood, oriented to the viewpoint."""

    kind = "normal"
    cfg_type = NormalCfg
    tag = "NRM"
