# pcfeat/parallel.py
"""Thread fan-out of the per-point loop over contiguous index chunks."""

from __future__ import annotations

import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any, List, Optional

import numpy as np

from pcfeat.boundary import BoundaryEstimation
from pcfeat.config import ParallelCfg
from pcfeat.curvatures import PrincipalCurvaturesEstimation
from pcfeat.estimator import FeatureSetup, Features, Kernel, Mapper, run_kernel
from pcfeat.intensity import (
    IntensityGradientEstimation,
    IntensitySpinEstimation,
    RIFTEstimation,
)
from pcfeat.moments import MomentInvariantsEstimation
from pcfeat.normals import NormalEstimation
from pcfeat.pfh import FPFHEstimation, PFHEstimation
from pcfeat.rsd import RSDEstimation
from pcfeat.shape_context import ShapeContext3DEstimation, UniqueShapeContextEstimation
from pcfeat.shot import SHOTColorEstimation, SHOTEstimation
from pcfeat.spin import SpinImageEstimation
from pcfeat.utils.error_tracker import ErrorTracker
from pcfeat.utils.logger import Logger

LOG = Logger.get_logger("par")


def resolve_workers(n_jobs: int) -> int:
    """``n_jobs <= 0`` means one worker per hardware thread."""
    if n_jobs > 0:
        return n_jobs
    return max(1, os.cpu_count() or 1)


def split_positions(n: int, workers: int, chunk_size: int = 0) -> List[np.ndarray]:
    """Contiguous, disjoint position ranges covering 0..n-1."""
    positions = np.arange(n, dtype=np.int64)
    if n == 0:
        return []
    if chunk_size > 0:
        return [positions[s : s + chunk_size] for s in range(0, n, chunk_size)]
    return [c for c in np.array_split(positions, min(workers, n)) if len(c)]


class ParallelEstimation:
    """
    Mixin running an estimator's per-point loop on a thread pool.

    The search structure is bound before any worker starts and is only
    queried afterwards; every chunk writes its own rows of the output.
    """

    def __init__(self, cfg: Any = None, *, n_jobs: int = 0, chunk_size: int = 0, **kw: Any) -> None:
        super().__init__(cfg, **kw)
        self.parallel = ParallelCfg(n_jobs=n_jobs, chunk_size=chunk_size)
        self._pool: Optional[ThreadPoolExecutor] = None

    @property
    def workers(self) -> int:
        return resolve_workers(self.parallel.n_jobs)

    def set_number_of_threads(self, n_jobs: int = 0) -> "ParallelEstimation":
        self.parallel = ParallelCfg(n_jobs=n_jobs, chunk_size=self.parallel.chunk_size)
        return self

    def _mapper(self) -> Mapper:
        return self._pool.map

    def _execute(self, setup: FeatureSetup, kernel: Kernel, ctx: Any, out: np.ndarray) -> int:
        chunks = split_positions(len(setup), self.workers, self.parallel.chunk_size)
        LOG.debug(f"[{self.tag}] {len(chunks)} chunks on {self.workers} threads")
        futures: List[Future] = [
            self._pool.submit(run_kernel, setup, kernel, ctx, chunk, out) for chunk in chunks
        ]
        invalid = 0
        done = Logger.progress(
            as_completed(futures), desc=kernel.name, total=len(futures), enabled=self.progress
        )
        for fut in done:
            try:
                invalid += fut.result()
            except Exception as exc:
                ErrorTracker.report(exc, context=self.tag)
                for other in futures:
                    other.cancel()
                raise
        return invalid

    def compute(self) -> Features:
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            self._pool = pool
            try:
                return super().compute()
            finally:
                self._pool = None


# ============================== VARIANTS =====================================


class NormalEstimationMT(ParallelEstimation, NormalEstimation):
    tag = "NRM-MT"


class BoundaryEstimationMT(ParallelEstimation, BoundaryEstimation):
    tag = "BND-MT"


class MomentInvariantsEstimationMT(ParallelEstimation, MomentInvariantsEstimation):
    tag = "MOM-MT"


class PrincipalCurvaturesEstimationMT(ParallelEstimation, PrincipalCurvaturesEstimation):
    tag = "PCV-MT"


class PFHEstimationMT(ParallelEstimation, PFHEstimation):
    tag = "PFH-MT"


class FPFHEstimationMT(ParallelEstimation, FPFHEstimation):
    tag = "FPFH-MT"


class SHOTEstimationMT(ParallelEstimation, SHOTEstimation):
    tag = "SHOT-MT"


class SHOTColorEstimationMT(ParallelEstimation, SHOTColorEstimation):
    tag = "SHOTC-MT"


class SpinImageEstimationMT(ParallelEstimation, SpinImageEstimation):
    tag = "SPIN-MT"


class IntensityGradientEstimationMT(ParallelEstimation, IntensityGradientEstimation):
    tag = "IGRAD-MT"


class IntensitySpinEstimationMT(ParallelEstimation, IntensitySpinEstimation):
    tag = "ISPIN-MT"


class RIFTEstimationMT(ParallelEstimation, RIFTEstimation):
    tag = "RIFT-MT"


class RSDEstimationMT(ParallelEstimation, RSDEstimation):
    tag = "RSD-MT"


class ShapeContext3DEstimationMT(ParallelEstimation, ShapeContext3DEstimation):
    tag = "3DSC-MT"


class UniqueShapeContextEstimationMT(ParallelEstimation, UniqueShapeContextEstimation):
    tag = "USC-MT"
