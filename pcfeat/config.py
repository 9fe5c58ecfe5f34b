# pcfeat/config.py
"""Descriptor parameters as frozen dataclasses, plus library defaults."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


# ============================== DEFAULTS =====================================

DEFAULT_VIEWPOINT: Tuple[float, float, float] = (0.0, 0.0, 0.0)

# progress bars are only drawn for loops at least this long
PROGRESS_MIN_POINTS: int = 5_000

EPS: float = 1e-12


# ============================== SURFACE ======================================


@dataclass(frozen=True)
class NormalCfg:
    viewpoint: Tuple[float, float, float] = DEFAULT_VIEWPOINT
    # orient every normal towards the viewpoint
    flip_towards_viewpoint: bool = True
    # covariance normalized by neighbor count (curvature is scale free either way)
    normalize_covariance: bool = True


@dataclass(frozen=True)
class BoundaryCfg:
    angle_threshold: float = np.pi / 2.0


@dataclass(frozen=True)
class MomentCfg:
    pass


@dataclass(frozen=True)
class CurvatureCfg:
    pass


# ============================== HISTOGRAMS ===================================


@dataclass(frozen=True)
class PFHCfg:
    nr_subdiv: int = 5

    @property
    def size(self) -> int:
        return self.nr_subdiv**3


@dataclass(frozen=True)
class FPFHCfg:
    nr_bins_f1: int = 11
    nr_bins_f2: int = 11
    nr_bins_f3: int = 11

    @property
    def size(self) -> int:
        return self.nr_bins_f1 + self.nr_bins_f2 + self.nr_bins_f3


@dataclass(frozen=True)
class SHOTCfg:
    """SHOT layout: 32 spatial sectors x (shape bins + 1) [+ color block]."""

    nr_shape_bins: int = 10
    nr_color_bins: int = 30
    describe_shape: bool = True
    describe_color: bool = False
    # radius of the local reference frame support (defaults to search radius)
    lrf_radius: float = 0.0

    @property
    def size(self) -> int:
        nr_grid = 32
        size = 0
        if self.describe_shape:
            size += nr_grid * (self.nr_shape_bins + 1)
        if self.describe_color:
            size += nr_grid * (self.nr_color_bins + 1)
        return size


@dataclass(frozen=True)
class SpinImageCfg:
    image_width: int = 8
    # cos of the maximal angle between query and neighbor normals, 0 = any
    support_angle_cos: float = 0.0
    min_pts_neighb: int = 0
    angular: bool = False
    radial: bool = False

    @property
    def size(self) -> int:
        return (self.image_width + 1) * (2 * self.image_width + 1)


@dataclass(frozen=True)
class ShapeContextCfg:
    """3D shape context: azimuth x elevation x log-radial bins."""

    azimuth_bins: int = 12
    elevation_bins: int = 11
    radius_bins: int = 15
    # inner edge of the first radial shell; must stay below the search radius
    min_radius: float = 0.1
    # neighbor votes are divided by the point count within this radius
    point_density_radius: float = 0.2

    @property
    def size(self) -> int:
        return self.azimuth_bins * self.elevation_bins * self.radius_bins


@dataclass(frozen=True)
class UniqueShapeContextCfg:
    azimuth_bins: int = 14
    elevation_bins: int = 14
    radius_bins: int = 10
    min_radius: float = 0.1
    point_density_radius: float = 0.1
    # support of the local reference frame (defaults to search radius)
    lrf_radius: float = 0.0

    @property
    def size(self) -> int:
        return self.azimuth_bins * self.elevation_bins * self.radius_bins


@dataclass(frozen=True)
class IntensityGradientCfg:
    min_neighbors: int = 3


@dataclass(frozen=True)
class IntensitySpinCfg:
    nr_distance_bins: int = 4
    nr_intensity_bins: int = 16
    sigma: float = 1.0

    @property
    def size(self) -> int:
        return self.nr_distance_bins * self.nr_intensity_bins


@dataclass(frozen=True)
class RIFTCfg:
    nr_distance_bins: int = 4
    nr_gradient_bins: int = 8

    @property
    def size(self) -> int:
        return self.nr_distance_bins * self.nr_gradient_bins


# ============================== GLOBAL / PAIRWISE ============================


@dataclass(frozen=True)
class GFPFHCfg:
    leaf_size: float = 1.0
    num_classes: int = 16

    @property
    def size(self) -> int:
        return self.num_classes * self.num_classes


@dataclass(frozen=True)
class VFHCfg:
    """Viewpoint Feature Histogram: f1..f4 of centroid pairs plus viewpoint bins."""

    nr_bins_f1: int = 45
    nr_bins_f2: int = 45
    nr_bins_f3: int = 45
    nr_bins_f4: int = 45
    nr_bins_vp: int = 128
    viewpoint: Tuple[float, float, float] = DEFAULT_VIEWPOINT
    # bins hold percentages of the cluster size instead of raw counts
    normalize_bins: bool = True
    # f4 binned against the bounding box diagonal instead of centimeters
    normalize_distances: bool = False
    # fill the f4 (size) block; it stays zero otherwise
    size_component: bool = False
    # fixed centroid / mean normal instead of the ones of the cluster
    centroid: Optional[Tuple[float, float, float]] = None
    normal: Optional[Tuple[float, float, float]] = None

    @property
    def size(self) -> int:
        return (
            self.nr_bins_f1 + self.nr_bins_f2 + self.nr_bins_f3 + self.nr_bins_f4 + self.nr_bins_vp
        )


@dataclass(frozen=True)
class RSDCfg:
    nr_subdiv: int = 5
    # radii above this are reported as this value (planar patches)
    plane_radius: float = 0.2
    save_histograms: bool = False


@dataclass(frozen=True)
class PPFCfg:
    pass


# ============================== EXECUTION ====================================


@dataclass(frozen=True)
class ParallelCfg:
    # <= 0 means one worker per hardware thread
    n_jobs: int = 0
    # positions per submitted chunk, 0 = split evenly across workers
    chunk_size: int = 0
