# pcfeat/shot.py
"""
SHOT: Signature of Histograms of OrienTations.

A repeatable local reference frame (LRF) is taken from a distance weighted
covariance of the neighborhood. The support sphere is split into 32
sectors (8 azimuth x 2 elevation x 2 radial) and each sector holds a
histogram of the cosine between the neighbor normal and the LRF z axis.
Votes are spread with quadrilinear interpolation over the cosine,
distance, inclination and azimuth. The optional color block histograms a
CIELab distance to the query color with the same spatial interpolation.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

import numpy as np

from pcfeat.config import SHOTCfg
from pcfeat.estimator import FeatureEstimator, FeatureSetup, register_kernel
from pcfeat.kernels import rgb_to_cielab
from pcfeat.utils.error_tracker import ConfigurationError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("shot")

NR_GRID_SECTORS = 32
MAX_ANGULAR_SECTORS = 32
MIN_NEIGHBORS = 5

RAD_45 = np.pi / 4.0
RAD_90 = np.pi / 2.0
RAD_135 = 3.0 * np.pi / 4.0
RAD_PI_7_8 = 7.0 * np.pi / 8.0

ZERO_DIST = 1e-8
TINY = 1e-30

# (bin distances, number of bins, offset of the block in the descriptor)
Channel = Tuple[np.ndarray, int, int]


# ============================== LRF ==========================================


def _disambiguate(vij: np.ndarray, axis: np.ndarray) -> np.ndarray:
    """Point ``axis`` to the side holding most neighbors, median rows on ties."""
    n_valid = len(vij)
    plus = 2 * int(np.count_nonzero(vij @ axis >= 0.0)) - n_valid
    if plus == 0:
        points = 5
        median = n_valid // 2
        rows = vij[median - points // 2 : median + points // 2 + 1]
        plus = int(np.count_nonzero(rows @ axis > 0.0))
        if plus < points // 2 + 1:
            return -axis
    elif plus < 0:
        return -axis
    return axis


def local_reference_frame(
    center: np.ndarray, points: np.ndarray, dists: np.ndarray, radius: float
) -> Optional[np.ndarray]:
    """
    3x3 LRF with rows x, y, z, or None with fewer than 5 distinct neighbors.

    Neighbors are weighted by ``radius - distance``; x is the largest and z
    the smallest principal axis, each oriented towards the majority of
    neighbors, and y = z cross x.
    """
    distinct = np.any(points != center, axis=1)
    vij = points[distinct] - center
    if len(vij) < MIN_NEIGHBORS:
        return None
    w = radius - dists[distinct]
    C = (vij * w[:, None]).T @ vij
    total = float(w.sum())
    if total != 0.0:
        C /= total
    _, V = np.linalg.eigh(C)
    x = _disambiguate(vij, V[:, 2])
    z = _disambiguate(vij, V[:, 0])
    y = np.cross(z, x)
    return np.stack([x, y, z])


# ============================== HISTOGRAM ====================================


def _sector(xf: float, yf: float, zf: float, dist: float, half_r: float) -> int:
    bit4 = 1 if (yf > 0.0 or (yf == 0.0 and xf < 0.0)) else 0
    if xf > 0.0 or (xf == 0.0 and yf > 0.0):
        bit3 = 1 - bit4
    else:
        bit3 = bit4
    idx = ((bit4 << 3) + (bit3 << 2)) << 1
    if xf * yf > 0.0 or xf == 0.0:
        idx += 0 if abs(xf) >= abs(yf) else 4
    else:
        idx += 4 if abs(xf) > abs(yf) else 0
    idx += 1 if zf > 0.0 else 0
    idx += 2 if dist > half_r else 0
    return idx


def interpolate(
    desc: np.ndarray,
    local: np.ndarray,
    dists: np.ndarray,
    radius: float,
    channels: List[Channel],
) -> None:
    """Accumulate interpolated votes of every neighbor into ``desc``."""
    r_1_4, r_1_2, r_3_4 = radius / 4.0, radius / 2.0, 3.0 * radius / 4.0

    for i in range(len(local)):
        dist = float(dists[i])
        # K neighbors may lie outside the support sphere
        if abs(dist) < ZERO_DIST or dist > radius:
            continue
        if not all(np.isfinite(bd[i]) for bd, _, _ in channels):
            continue
        xf, yf, zf = (0.0 if abs(c) < TINY else float(c) for c in local[i])

        desc_index = _sector(xf, yf, zf, dist, r_1_2)

        # spatial votes are shared by all channels: (sector, weight)
        spatial: List[Tuple[int, float]] = []
        base = 0.0

        if dist > r_1_2:
            rd = (dist - r_3_4) / r_1_2
            if dist > r_3_4:
                base += 1.0 - rd
            else:
                base += 1.0 + rd
                spatial.append((desc_index - 2, -rd))
        else:
            rd = (dist - r_1_4) / r_1_2
            if dist < r_1_4:
                base += 1.0 + rd
            else:
                base += 1.0 - rd
                spatial.append((desc_index + 2, rd))

        incl = float(np.arccos(np.clip(zf / dist, -1.0, 1.0)))
        if incl > RAD_90 or (abs(incl - RAD_90) < TINY and zf <= 0.0):
            idist = (incl - RAD_135) / RAD_90
            if incl > RAD_135:
                base += 1.0 - idist
            else:
                base += 1.0 + idist
                spatial.append((desc_index + 1, -idist))
        else:
            idist = (incl - RAD_45) / RAD_90
            if incl < RAD_45:
                base += 1.0 + idist
            else:
                base += 1.0 - idist
                spatial.append((desc_index - 1, idist))

        if yf != 0.0 or xf != 0.0:
            azimuth = float(np.arctan2(yf, xf))
            sel = desc_index >> 2
            adist = (azimuth - (-RAD_PI_7_8 + RAD_45 * sel)) / RAD_45
            adist = max(-0.5, min(adist, 0.5))
            if adist > 0.0:
                base += 1.0 - adist
                spatial.append(((desc_index + 4) % MAX_ANGULAR_SECTORS, adist))
            else:
                base += 1.0 + adist
                spatial.append(
                    ((desc_index - 4 + MAX_ANGULAR_SECTORS) % MAX_ANGULAR_SECTORS, -adist)
                )

        for bd_all, nbins, offset in channels:
            bd = float(bd_all[i])
            step = int(np.floor(bd + 0.5))
            volume = offset + desc_index * (nbins + 1)
            bd -= step
            weight = base + 1.0 - abs(bd)
            if bd > 0.0:
                desc[volume + (step + 1) % nbins] += bd
            else:
                desc[volume + (step - 1 + nbins) % nbins] += -bd
            for sector, w in spatial:
                desc[offset + sector * (nbins + 1) + step] += w
            desc[volume + step] += weight


def _lab(rgb: np.ndarray) -> np.ndarray:
    return rgb_to_cielab(rgb) / np.array([100.0, 120.0, 120.0])


def shot_descriptor(
    setup: FeatureSetup,
    pos: int,
    nbr: np.ndarray,
    sqd: np.ndarray,
    rf: np.ndarray,
) -> np.ndarray:
    cfg: SHOTCfg = setup.cfg
    center = setup.query_point(pos)
    local = (setup.surface.xyz[nbr] - center) @ rf.T
    dists = np.sqrt(sqd)

    channels: List[Channel] = []
    offset = 0
    if cfg.describe_shape:
        cos = np.clip(setup.normals[nbr] @ rf[2], -1.0, 1.0)
        channels.append(((1.0 + cos) * cfg.nr_shape_bins / 2.0, cfg.nr_shape_bins, offset))
        offset += NR_GRID_SECTORS * (cfg.nr_shape_bins + 1)
    if cfg.describe_color:
        ref = _lab(setup.input.rgb[setup.query_index(pos)])
        lab = _lab(setup.surface.rgb[nbr])
        d = np.abs(lab - ref)
        color = np.clip((d[:, 0] + (d[:, 1] + d[:, 2]) / 2.0) / 3.0, 0.0, 1.0)
        channels.append((color * cfg.nr_color_bins, cfg.nr_color_bins, offset))

    desc = np.zeros(cfg.size)
    interpolate(desc, local, dists, setup.radius, channels)
    norm = float(np.sqrt(desc @ desc))
    if norm > 0.0:
        desc /= norm
    return desc


def support_frame(
    setup: FeatureSetup,
    pos: int,
    nbr: np.ndarray,
    sqd: np.ndarray,
    lrf_radius: float,
) -> Optional[np.ndarray]:
    """LRF of query ``pos`` over ``lrf_radius`` (the search radius when <= 0)."""
    center = setup.query_point(pos)
    lrf_r = lrf_radius if lrf_radius > 0.0 else setup.radius
    if setup.k <= 0 and lrf_r == setup.radius:
        lrf_nbr, lrf_sqd = nbr, sqd
    else:
        lrf_nbr, lrf_sqd = setup.search.radius(center, lrf_r)
    rf = local_reference_frame(
        center, setup.surface.xyz[lrf_nbr], np.sqrt(lrf_sqd), lrf_r
    )
    if rf is None or not np.isfinite(rf).all():
        return None
    return rf


def _shot_kernel(
    setup: FeatureSetup, ctx: Any, pos: int, nbr: np.ndarray, sqd: np.ndarray
) -> Optional[np.ndarray]:
    rf = support_frame(setup, pos, nbr, sqd, setup.cfg.lrf_radius)
    if rf is None:
        return None
    return np.concatenate([shot_descriptor(setup, pos, nbr, sqd, rf), rf.reshape(-1)])


def _shot_fields(cfg: SHOTCfg):
    return (("descriptor", cfg.size), ("rf", 9))


register_kernel(
    "shot",
    _shot_fields,
    min_neighbors=MIN_NEIGHBORS,
    needs_normals=True,
    needs_radius=True,
)(_shot_kernel)

register_kernel(
    "shot_color",
    _shot_fields,
    min_neighbors=MIN_NEIGHBORS,
    needs_normals=True,
    needs_radius=True,
    needs_fields=("rgb",),
)(_shot_kernel)


class SHOTEstimation(FeatureEstimator):
    """SHOT shape descriptor (352 values with default bins) and its LRF."""

    cfg_type = SHOTCfg
    tag = "SHOT"

    @property
    def kind(self) -> str:
        return "shot_color" if self.cfg.describe_color else "shot"

    def _setup(self) -> FeatureSetup:
        if not (self.cfg.describe_shape or self.cfg.describe_color):
            raise ConfigurationError(f"{type(self).__name__}: nothing to describe")
        return super()._setup()


class SHOTColorEstimation(SHOTEstimation):
    """Shape plus CIELab color histograms (1344 values with default bins)."""

    tag = "SHOTC"

    def __init__(self, cfg: Optional[SHOTCfg] = None, **kw: Any) -> None:
        super().__init__(cfg if cfg is not None else SHOTCfg(describe_color=True), **kw)
