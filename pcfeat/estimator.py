# pcfeat/estimator.py
"""
Feature estimator skeleton.

An estimator collects its inputs (cloud, index subset, search surface,
search method, K or radius, side inputs such as normals) and on every
``compute()`` freezes them into a ``FeatureSetup``. A single orchestration
function walks the index subset and calls one registered ``Kernel`` per
point; descriptor modules only contribute kernels.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from pcfeat.cloud import PointCloud
from pcfeat.config import PROGRESS_MIN_POINTS
from pcfeat.search import NeighborSearch, Neighbors
from pcfeat.utils.error_tracker import ConfigurationError
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("estim")

Fields = Tuple[Tuple[str, int], ...]
Mapper = Callable[[Callable[[Any], Any], Iterable[Any]], Iterable[Any]]


# ============================== SETUP ========================================


@dataclass(frozen=True)
class FeatureSetup:
    """Immutable snapshot of an estimator's configuration for one compute()."""

    input: PointCloud
    indices: np.ndarray
    surface: PointCloud
    search: Optional[NeighborSearch]
    k: int
    radius: float
    cfg: Any
    normals: Optional[np.ndarray] = None
    query_normals: Optional[np.ndarray] = None
    gradients: Optional[np.ndarray] = None

    @property
    def surface_is_input(self) -> bool:
        return self.surface is self.input

    def __len__(self) -> int:
        return len(self.indices)

    def query_index(self, pos: int) -> int:
        return int(self.indices[pos])

    def query_point(self, pos: int) -> np.ndarray:
        return self.input.xyz[self.indices[pos]]

    def query_normal(self, pos: int) -> np.ndarray:
        """Normal of the query point itself (input-aligned)."""
        if self.query_normals is not None:
            return self.query_normals[self.indices[pos]]
        return self.normals[self.indices[pos]]

    def search_point(self, point: np.ndarray) -> Neighbors:
        """K nearest if K is set, otherwise every surface point within radius."""
        if self.k > 0:
            return self.search.knn(point, self.k)
        return self.search.radius(point, self.radius)

    def neighbors(self, pos: int) -> Neighbors:
        return self.search_point(self.query_point(pos))


# ============================== KERNELS ======================================

KernelFn = Callable[[FeatureSetup, Any, int, np.ndarray, np.ndarray], Optional[np.ndarray]]
PrepareFn = Callable[[FeatureSetup, Mapper], Any]


@dataclass(frozen=True)
class Kernel:
    """One descriptor algorithm: output layout plus per-point function."""

    name: str
    fields: Union[Fields, Callable[[Any], Fields]]
    fn: KernelFn
    prepare: Optional[PrepareFn] = None
    min_neighbors: int = 1
    needs_normals: bool = False
    needs_query_normal: bool = False
    needs_radius: bool = False
    needs_fields: Tuple[str, ...] = ()
    needs_gradients: bool = False
    invalid: float = float("nan")

    def layout(self, cfg: Any) -> Fields:
        """Output fields; some descriptors size them from their config."""
        return tuple(self.fields(cfg)) if callable(self.fields) else self.fields


KERNELS: Dict[str, Kernel] = {}


def register_kernel(
    name: str, fields: Union[Fields, Callable[[Any], Fields]], **opts: Any
) -> Callable[[KernelFn], KernelFn]:
    """Decorator adding ``fn`` to the kernel table under ``name``."""

    def deco(fn: KernelFn) -> KernelFn:
        if name in KERNELS:
            raise ValueError(f"kernel '{name}' registered twice")
        KERNELS[name] = Kernel(name=name, fields=fields, fn=fn, **opts)
        return fn

    return deco


def eval_point(setup: FeatureSetup, kernel: Kernel, ctx: Any, pos: int) -> Optional[np.ndarray]:
    """Descriptor row for one position, or None when it is undefined."""
    p = setup.query_point(pos)
    if not np.isfinite(p).all():
        return None
    nbr, sqd = setup.neighbors(pos)
    if len(nbr) < kernel.min_neighbors:
        return None
    return kernel.fn(setup, ctx, pos, nbr, sqd)


def run_kernel(
    setup: FeatureSetup,
    kernel: Kernel,
    ctx: Any,
    positions: Iterable[int],
    out: np.ndarray,
) -> int:
    """Fill ``out[pos]`` for every position; returns the number of invalid rows."""
    invalid = 0
    for pos in positions:
        row = eval_point(setup, kernel, ctx, pos)
        if row is None:
            out[pos] = kernel.invalid
            invalid += 1
        else:
            out[pos] = row
    return invalid


# ============================== OUTPUT =======================================


@dataclass(eq=False)
class Features:
    """
    Per-index descriptor rows with named column groups.

    ``out["normal"]`` gives the (n, 3) block, single-width fields come back
    as (n,) vectors. Row ``j`` belongs to ``indices[j]``.
    """

    data: np.ndarray
    fields: Fields
    indices: np.ndarray

    def __len__(self) -> int:
        return len(self.data)

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.fields]

    def _slice(self, name: str) -> Tuple[slice, int]:
        start = 0
        for fname, width in self.fields:
            if fname == name:
                return slice(start, start + width), width
            start += width
        raise KeyError(f"no field '{name}', have {self.names}")

    def __getitem__(self, name: str) -> np.ndarray:
        sl, width = self._slice(name)
        block = self.data[:, sl]
        return block[:, 0] if width == 1 else block

    def valid_mask(self) -> np.ndarray:
        return np.isfinite(self.data).all(axis=1)

    def select(self, positions: Sequence[int]) -> "Features":
        pos = np.asarray(positions, dtype=np.int64)
        return Features(self.data[pos], self.fields, self.indices[pos])


def _as_vectors(values: Any, what: str) -> np.ndarray:
    if isinstance(values, Features):
        values = values[what]
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ConfigurationError(f"{what} must be (N,3), got {arr.shape}")
    return arr


# ============================== ESTIMATOR ====================================


class FeatureEstimator:
    """
    Front-end shared by every descriptor.

    Subclasses set ``kind`` (kernel table key), ``cfg_type`` and ``tag``.
    """

    kind: str = ""
    cfg_type: type = type(None)
    tag: str = "FEAT"
    needs_search: bool = True

    def __init__(
        self,
        cfg: Any = None,
        *,
        k: int = 0,
        radius: float = 0.0,
        search: Optional[NeighborSearch] = None,
        progress: bool = False,
    ) -> None:
        self.cfg = cfg if cfg is not None else self.cfg_type()
        self.input: Optional[PointCloud] = None
        self.indices: Optional[Sequence[int]] = None
        self.surface: Optional[PointCloud] = None
        self.search = search
        self.k = int(k)
        self.radius = float(radius)
        self.normals: Any = None
        self.query_normals: Any = None
        self.gradients: Any = None
        self.progress = progress

    # ---------------------------------------------------------------- setters
    def set_input_cloud(self, cloud: PointCloud) -> "FeatureEstimator":
        self.input = cloud
        return self

    def set_indices(self, indices: Optional[Sequence[int]]) -> "FeatureEstimator":
        """Keep a reference; the sequence is read when compute() runs."""
        self.indices = indices
        return self

    def set_search_surface(self, surface: Optional[PointCloud]) -> "FeatureEstimator":
        self.surface = surface
        return self

    def set_search_method(self, search: NeighborSearch) -> "FeatureEstimator":
        self.search = search
        return self

    def set_k_search(self, k: int) -> "FeatureEstimator":
        self.k = int(k)
        return self

    def set_radius_search(self, radius: float) -> "FeatureEstimator":
        self.radius = float(radius)
        return self

    def set_input_normals(self, normals: Any) -> "FeatureEstimator":
        """Normals aligned with the search surface."""
        self.normals = normals
        return self

    def set_query_normals(self, normals: Any) -> "FeatureEstimator":
        """Normals aligned with the input cloud (needed with a separate surface)."""
        self.query_normals = normals
        return self

    # ------------------------------------------------------------- validation
    @property
    def kernel(self) -> Kernel:
        return KERNELS[self.kind]

    def _setup(self) -> FeatureSetup:
        name = type(self).__name__
        if self.input is None:
            raise ConfigurationError(f"{name}: no input cloud was given")
        surface = self.surface if self.surface is not None else self.input
        if self.indices is None:
            indices = np.arange(len(self.input), dtype=np.int64)
        else:
            indices = np.array(self.indices, dtype=np.int64).reshape(-1)
            if len(indices) and (indices.min() < 0 or indices.max() >= len(self.input)):
                raise ConfigurationError(f"{name}: index out of range of the input cloud")

        search = self.search
        if self.needs_search:
            if search is None:
                raise ConfigurationError(f"{name}: no search method was given")
            if self.k <= 0 and self.radius <= 0.0:
                raise ConfigurationError(f"{name}: neither K nor radius was set")

        kernel = KERNELS.get(self.kind)
        normals = query_normals = gradients = None
        if kernel is not None:
            if kernel.needs_radius and self.radius <= 0.0:
                raise ConfigurationError(f"{name}: a search radius is required")
            for fname in kernel.needs_fields:
                for role, cloud in (("input", self.input), ("surface", surface)):
                    if getattr(cloud, fname) is None:
                        raise ConfigurationError(f"{name}: {role} cloud has no '{fname}'")
            if kernel.needs_normals or kernel.needs_query_normal:
                normals, query_normals = self._resolve_normals(
                    name, surface, kernel.needs_query_normal
                )
            if kernel.needs_gradients:
                if self.gradients is None:
                    raise ConfigurationError(f"{name}: no gradient field was given")
                gradients = _as_vectors(self.gradients, "gradient")
                if len(gradients) != len(surface):
                    raise ConfigurationError(
                        f"{name}: {len(gradients)} gradients for {len(surface)} surface points"
                    )

        # built last: a rejected configuration leaves the search untouched
        if self.needs_search and not search.is_bound_to(surface.xyz):
            search.build(surface.xyz)

        return FeatureSetup(
            input=self.input,
            indices=indices,
            surface=surface,
            search=search,
            k=self.k,
            radius=self.radius,
            cfg=self.cfg,
            normals=normals,
            query_normals=query_normals,
            gradients=gradients,
        )

    def _resolve_normals(
        self, name: str, surface: PointCloud, needs_query_normal: bool
    ) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        if self.normals is None:
            raise ConfigurationError(f"{name}: no input normals were given")
        normals = _as_vectors(self.normals, "normal")
        if len(normals) != len(surface):
            raise ConfigurationError(
                f"{name}: {len(normals)} normals for {len(surface)} surface points"
            )
        query_normals = None
        if self.query_normals is not None:
            query_normals = _as_vectors(self.query_normals, "normal")
            if len(query_normals) != len(self.input):
                raise ConfigurationError(
                    f"{name}: {len(query_normals)} query normals for {len(self.input)} input points"
                )
        elif needs_query_normal and surface is not self.input:
            raise ConfigurationError(
                f"{name}: search surface differs from input, query normals are required"
            )
        return normals, query_normals

    # ---------------------------------------------------------------- compute
    def _mapper(self) -> Mapper:
        return map

    def _execute(self, setup: FeatureSetup, kernel: Kernel, ctx: Any, out: np.ndarray) -> int:
        n = len(setup)
        positions = Logger.progress(
            range(n),
            desc=kernel.name,
            total=n,
            enabled=self.progress and n >= PROGRESS_MIN_POINTS,
        )
        return run_kernel(setup, kernel, ctx, positions, out)

    def _prepare(self, setup: FeatureSetup, kernel: Kernel) -> Any:
        if kernel.prepare is None:
            return None
        return kernel.prepare(setup, self._mapper())

    def compute(self) -> Features:
        """Descriptor rows for every index, NaN where a point is undefined."""
        setup = self._setup()
        kernel = self.kernel
        n = len(setup)
        LOG.debug(
            f"[{self.tag}] compute: {n} indices, surface={len(setup.surface)} "
            f"k={setup.k} r={setup.radius:g} cfg={self.cfg}"
        )
        t0 = time.perf_counter()
        ctx = self._prepare(setup, kernel)
        fields = kernel.layout(self.cfg)
        out = np.empty((n, sum(w for _, w in fields)), dtype=np.float64)
        invalid = self._execute(setup, kernel, ctx, out)
        dt = time.perf_counter() - t0
        LOG.info(f"[{self.tag}] {n} points, {invalid} invalid, {dt:.3f}s")
        return Features(out, fields, setup.indices.copy())


