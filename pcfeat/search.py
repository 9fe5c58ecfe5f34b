# pcfeat/search.py
"""Neighbor query services bound to a reference cloud."""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import open3d as o3d
from scipy.spatial import cKDTree

from pcfeat.utils.error_tracker import SearchError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("search")

Neighbors = Tuple[np.ndarray, np.ndarray]


def _empty() -> Neighbors:
    return np.empty(0, np.int64), np.empty(0, np.float64)


class NeighborSearch:
    """
    Query contract shared by all backends.

    ``knn`` and ``radius`` return ``(indices, squared_distances)`` into the
    cloud passed to ``build``, sorted by distance with ties broken by index.
    Non-finite reference points are never returned.
    """

    backend = "base"

    def __init__(self) -> None:
        self.points: Optional[np.ndarray] = None
        self._pts: np.ndarray = np.empty((0, 3), np.float64)
        self._ids: np.ndarray = np.empty(0, np.int64)

    # ------------------------------------------------------------- lifecycle
    def build(self, points: np.ndarray) -> "NeighborSearch":
        pts = np.asarray(points, dtype=np.float64)
        finite = np.isfinite(pts).all(axis=1)
        self._ids = np.flatnonzero(finite).astype(np.int64)
        self._build(pts[finite])
        self.points = points
        self._pts = pts
        LOG.debug(
            f"[{self.backend.upper()}] built on {len(self._ids)}/{len(pts)} finite points"
        )
        return self

    def is_bound_to(self, points: np.ndarray) -> bool:
        return self.points is points

    def _require(self) -> None:
        if self.points is None:
            raise SearchError(f"{type(self).__name__}: build() was not called")

    def _finish(self, local: np.ndarray, query: np.ndarray) -> Neighbors:
        idx = self._ids[np.asarray(local, dtype=np.int64)]
        diff = self._pts[idx] - query
        sqd = np.einsum("ij,ij->i", diff, diff)
        order = np.lexsort((idx, sqd))
        return idx[order], sqd[order]

    # ---------------------------------------------------------------- queries
    def knn(self, point: np.ndarray, k: int) -> Neighbors:
        self._require()
        k = min(int(k), len(self._ids))
        if k <= 0:
            return _empty()
        q = np.asarray(point, dtype=np.float64)
        return self._finish(self._knn(q, k), q)

    def radius(self, point: np.ndarray, r: float) -> Neighbors:
        self._require()
        if r <= 0 or len(self._ids) == 0:
            return _empty()
        q = np.asarray(point, dtype=np.float64)
        idx, sqd = self._finish(self._radius(q, float(r)), q)
        keep = sqd <= r * r
        return idx[keep], sqd[keep]

    # -------------------------------------------------------------- backends
    def _build(self, pts: np.ndarray) -> None:
        raise NotImplementedError

    def _knn(self, q: np.ndarray, k: int) -> np.ndarray:
        raise NotImplementedError

    def _radius(self, q: np.ndarray, r: float) -> np.ndarray:
        raise NotImplementedError


class KdTreeSearch(NeighborSearch):
    """scipy cKDTree backend (default)."""

    backend = "ckdtree"

    def __init__(self, leafsize: int = 16) -> None:
        super().__init__()
        self.leafsize = leafsize
        self._tree: Optional[cKDTree] = None

    def _build(self, pts: np.ndarray) -> None:
        self._tree = cKDTree(pts, leafsize=self.leafsize)

    def _knn(self, q: np.ndarray, k: int) -> np.ndarray:
        _, j = self._tree.query(q, k=k)
        return np.atleast_1d(j)

    def _radius(self, q: np.ndarray, r: float) -> np.ndarray:
        return np.asarray(self._tree.query_ball_point(q, r), dtype=np.int64)


class Open3DSearch(NeighborSearch):
    """Open3D KDTreeFlann backend."""

    backend = "o3d"

    def __init__(self) -> None:
        super().__init__()
        self._tree: Optional[o3d.geometry.KDTreeFlann] = None

    def _build(self, pts: np.ndarray) -> None:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(np.ascontiguousarray(pts))
        self._tree = o3d.geometry.KDTreeFlann(pcd)

    def _knn(self, q: np.ndarray, k: int) -> np.ndarray:
        _, j, _ = self._tree.search_knn_vector_3d(q, k)
        return np.asarray(j, dtype=np.int64)

    def _radius(self, q: np.ndarray, r: float) -> np.ndarray:
        _, j, _ = self._tree.search_radius_vector_3d(q, r)
        return np.asarray(j, dtype=np.int64)


BACKENDS = {
    KdTreeSearch.backend: KdTreeSearch,
    Open3DSearch.backend: Open3DSearch,
}


def make_search(backend: str = "ckdtree") -> NeighborSearch:
    try:
        return BACKENDS[backend]()
    except KeyError:
        raise SearchError(
            f"unknown search backend '{backend}', choose from {sorted(BACKENDS)}"
        ) from None
