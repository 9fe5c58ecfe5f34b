# pcfeat/spin.py
"""Spin images: neighbor density (or normal deviation) around the normal axis."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from pcfeat.config import SpinImageCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel

DIR_EPS = 10.0 * np.finfo(np.float64).eps
ANGLE_EPS = np.finfo(np.float64).eps


def spin_image(
    origin: np.ndarray,
    axis: np.ndarray,
    points: np.ndarray,
    normals: Optional[np.ndarray],
    radius: float,
    cfg: SpinImageCfg,
) -> np.ndarray:
    """
    (image_width+1) x (2*image_width+1) matrix, rows along the distance from
    the axis (alpha), columns along the elevation (beta).

    Rectangular images use (height along axis, distance from axis) inside a
    cylinder; radial images use (asin of the elevation angle, distance).
    Every sample is spread bilinearly over the 4 surrounding cells.
    """
    w = cfg.image_width
    M = np.zeros((w + 1, 2 * w + 1))
    angles = np.zeros_like(M)
    bin_size = radius / w if cfg.radial else radius / w / np.sqrt(2.0)
    beta_bin_size = np.pi / 2.0 / w if cfg.radial else bin_size
    use_normals = cfg.support_angle_cos > 0.0 or cfg.angular

    for i in range(len(points)):
        cos_normals = 1.0
        if use_normals:
            cos_normals = float(np.clip(axis @ normals[i], -1.0, 1.0))
            # counter-directed normals are accepted
            if abs(cos_normals) < cfg.support_angle_cos:
                continue
            cos_normals = abs(cos_normals)

        direction = points[i] - origin
        dnorm = float(np.linalg.norm(direction))
        if dnorm < DIR_EPS:
            continue
        cos_dir = float(np.clip(direction @ axis / dnorm, -1.0, 1.0))

        if cfg.radial:
            beta = float(np.arcsin(cos_dir))
            alpha = dnorm
        else:
            beta = dnorm * cos_dir
            alpha = dnorm * np.sqrt(1.0 - cos_dir * cos_dir)
            if abs(beta) >= bin_size * w or alpha >= bin_size * w:
                continue

        beta_bin = int(np.floor(beta / beta_bin_size)) + w
        alpha_bin = int(np.floor(alpha / bin_size))
        if alpha_bin == w:
            alpha_bin -= 1
            alpha = bin_size * (alpha_bin + 1)
        if beta_bin == 2 * w:
            beta_bin -= 1
            beta = beta_bin_size * (beta_bin - w + 1)
        # only reachable when the neighbors come from a K search beyond the radius
        if not (0 <= alpha_bin < w and 0 <= beta_bin < 2 * w):
            continue

        a = alpha / bin_size - alpha_bin
        b = beta / beta_bin_size - (beta_bin - w)
        cell = np.array([(1 - a) * (1 - b), (1 - a) * b, a * (1 - b), a * b]).reshape(2, 2)
        M[alpha_bin : alpha_bin + 2, beta_bin : beta_bin + 2] += cell
        if cfg.angular:
            angles[alpha_bin : alpha_bin + 2, beta_bin : beta_bin + 2] += cell * np.arccos(cos_normals)

    if cfg.angular:
        return angles / (M + ANGLE_EPS)
    total = M.sum()
    if len(points) > 1 and total > 0.0:
        M /= total
    return M


@register_kernel(
    "spin_image",
    lambda cfg: (("histogram", cfg.size),),
    needs_normals=True,
    needs_query_normal=True,
    needs_radius=True,
)
def _spin_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    cfg: SpinImageCfg = setup.cfg
    if len(nbr) < cfg.min_pts_neighb:
        return None
    axis = setup.query_normal(pos)
    if not np.isfinite(axis).all():
        return None
    img = spin_image(
        setup.query_point(pos),
        axis,
        setup.surface.xyz[nbr],
        setup.normals[nbr],
        setup.radius,
        cfg,
    )
    return img.reshape(-1)


class SpinImageEstimation(FeatureEstimator):
    """Spin image around each point's normal, flattened row-major."""

    kind = "spin_image"
    cfg_type = SpinImageCfg
    tag = "SPIN"
