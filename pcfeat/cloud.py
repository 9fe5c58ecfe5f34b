# pcfeat/cloud.py
"""Point container: positions plus optional intensity, color and label fields."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import open3d as o3d

from pcfeat.utils.error_tracker import CloudError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("cloud")

_OPTIONAL = ("intensity", "rgb", "label")


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


def _as_field(values, n: int, name: str, width: int, dtype) -> np.ndarray:
    arr = np.array(values, dtype=dtype, copy=True)
    shape = (n,) if width == 1 else (n, width)
    if arr.shape != shape:
        raise CloudError(f"{name}: expected shape {shape}, got {arr.shape}")
    return _frozen(arr)


@dataclass(eq=False)
class PointCloud:
    """
    Ordered point records.

    ``width*height == size``; unorganized clouds have ``height == 1``.
    ``is_dense`` is a claim made by the producer (no NaN/Inf entries); it is
    kept as given and only derived from data by ``recompute_is_dense``.
    """

    xyz: np.ndarray
    intensity: Optional[np.ndarray] = None
    rgb: Optional[np.ndarray] = None
    label: Optional[np.ndarray] = None
    width: int = 0
    height: int = 1
    is_dense: bool = True

    def __post_init__(self) -> None:
        xyz = np.array(self.xyz, dtype=np.float64, copy=True)
        if xyz.ndim == 1 and xyz.size == 0:
            xyz = xyz.reshape(0, 3)
        if xyz.ndim != 2 or xyz.shape[1] != 3:
            raise CloudError(f"xyz must be (N,3), got {xyz.shape}")
        n = len(xyz)
        self.xyz = _frozen(xyz)
        if self.intensity is not None:
            self.intensity = _as_field(self.intensity, n, "intensity", 1, np.float64)
        if self.rgb is not None:
            self.rgb = _as_field(self.rgb, n, "rgb", 3, np.float64)
        if self.label is not None:
            self.label = _as_field(self.label, n, "label", 1, np.int64)
        if self.width <= 0:
            self.width, self.height = n, 1
        if self.width * self.height != n:
            raise CloudError(
                f"organization {self.width}x{self.height} != {n} points"
            )

    # ------------------------------------------------------------------ props
    def __len__(self) -> int:
        return len(self.xyz)

    @property
    def size(self) -> int:
        return len(self.xyz)

    @property
    def is_organized(self) -> bool:
        return self.height > 1

    @property
    def has_intensity(self) -> bool:
        return self.intensity is not None

    @property
    def has_rgb(self) -> bool:
        return self.rgb is not None

    @property
    def has_label(self) -> bool:
        return self.label is not None

    def finite_mask(self) -> np.ndarray:
        return np.isfinite(self.xyz).all(axis=1)

    def recompute_is_dense(self) -> bool:
        """Derive ``is_dense`` from the positions and store it."""
        self.is_dense = bool(self.finite_mask().all())
        return self.is_dense

    # --------------------------------------------------------------- mutation
    def set_point(
        self,
        i: int,
        xyz: Optional[Sequence[float]] = None,
        intensity: Optional[float] = None,
        rgb: Optional[Sequence[float]] = None,
        label: Optional[int] = None,
    ) -> None:
        """Overwrite fields of point ``i``. ``is_dense`` is left untouched."""
        updates = {"xyz": xyz, "intensity": intensity, "rgb": rgb, "label": label}
        for name, value in updates.items():
            if value is None:
                continue
            arr = getattr(self, name)
            if arr is None:
                raise CloudError(f"cloud has no '{name}' field")
            arr = arr.copy()
            arr[i] = value
            setattr(self, name, _frozen(arr))

    # ------------------------------------------------------------------ copies
    def select(self, indices: Sequence[int]) -> "PointCloud":
        """Copy the given points into a new unorganized cloud."""
        idx = np.asarray(indices, dtype=np.int64)
        kw = {
            name: getattr(self, name)[idx]
            for name in _OPTIONAL
            if getattr(self, name) is not None
        }
        return PointCloud(self.xyz[idx], is_dense=self.is_dense, **kw)

    def copy(self) -> "PointCloud":
        kw = {name: getattr(self, name) for name in _OPTIONAL}
        return PointCloud(
            self.xyz, width=self.width, height=self.height, is_dense=self.is_dense, **kw
        )

    # ----------------------------------------------------------------- open3d
    @classmethod
    def from_o3d(cls, pcd: o3d.geometry.PointCloud) -> "PointCloud":
        """Positions (and colors as 0..255) from an Open3D cloud."""
        xyz = np.asarray(pcd.points, dtype=np.float64)
        rgb = None
        if pcd.has_colors():
            rgb = np.asarray(pcd.colors, dtype=np.float64) * 255.0
        cloud = cls(xyz, rgb=rgb, is_dense=False)
        cloud.recompute_is_dense()
        return cloud

    def to_o3d(self) -> o3d.geometry.PointCloud:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(np.ascontiguousarray(self.xyz))
        if self.rgb is not None:
            pcd.colors = o3d.utility.Vector3dVector(
                np.clip(self.rgb / 255.0, 0.0, 1.0)
            )
        return pcd


def concatenate(a: PointCloud, b: PointCloud) -> PointCloud:
    """Join two clouds; a field survives only if both carry it."""
    kw = {}
    for name in _OPTIONAL:
        fa, fb = getattr(a, name), getattr(b, name)
        if fa is not None and fb is not None:
            kw[name] = np.concatenate([fa, fb])
        elif fa is not None or fb is not None:
            LOG.warning(f"[CAT] dropping '{name}': present in one cloud only")
    return PointCloud(
        np.vstack([a.xyz, b.xyz]), is_dense=a.is_dense and b.is_dense, **kw
    )
