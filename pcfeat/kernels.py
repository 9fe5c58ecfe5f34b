# pcfeat/kernels.py
"""Small-matrix geometry shared by the descriptors."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from pcfeat.config import EPS

NAN3 = np.full(3, np.nan)

PairFeatures = Tuple[float, float, float, float]


# ============================== MOMENTS ======================================


def compute_centroid(points: np.ndarray) -> np.ndarray:
    """Mean position, NaN for an empty set."""
    if len(points) == 0:
        return NAN3.copy()
    return points.mean(axis=0)


def compute_covariance(
    points: np.ndarray, centroid: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """3x3 scatter of ``points`` about ``centroid`` (divided by count if normalize)."""
    X = points - centroid
    C = X.T @ X
    if normalize and len(points) > 0:
        C /= len(points)
    return C


def compute_mean_and_covariance(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    mu = compute_centroid(points)
    return mu, compute_covariance(points, mu, normalize=True)


# ============================== PLANE FIT ====================================


def solve_plane_parameters(
    cov: np.ndarray, centroid: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, float]:
    """
    Plane through ``centroid`` with the least-variance direction as normal.

    Returns ``([nx, ny, nz, d], curvature)`` where ``d = -n . centroid``
    (0 when no centroid) and ``curvature = l0 / (l0 + l1 + l2)``.
    """
    if not np.isfinite(cov).all():
        return np.full(4, np.nan), float("nan")
    w, V = np.linalg.eigh(cov)
    n = V[:, 0]
    total = float(w.sum())
    curvature = float(np.clip(w[0] / total, 0.0, 1.0)) if total != 0.0 else 0.0
    d = 0.0 if centroid is None else -float(n @ centroid)
    return np.array([n[0], n[1], n[2], d]), curvature


def compute_point_normal(
    points: np.ndarray, normalize: bool = True
) -> Tuple[np.ndarray, float]:
    """Plane (4) and curvature of a neighborhood; NaN below 3 points."""
    if len(points) < 3:
        return np.full(4, np.nan), float("nan")
    mu = compute_centroid(points)
    return solve_plane_parameters(compute_covariance(points, mu, normalize), mu)


def flip_normal_towards_viewpoint(
    point: np.ndarray, viewpoint: Sequence[float], normal: np.ndarray
) -> np.ndarray:
    """
    Orient ``normal`` so that it faces ``viewpoint``.

    ``normal`` is either a 3-vector or a plane ``[nx, ny, nz, d]``; in the
    latter case the offset is negated together with the direction.
    """
    normal = np.asarray(normal, dtype=np.float64)
    vp = np.asarray(viewpoint, dtype=np.float64) - point
    if float(vp @ normal[:3]) < 0.0:
        return -normal
    return normal.copy()


def tangent_basis(n: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Orthonormal (u, v) spanning the plane orthogonal to unit ``n``."""
    ref = np.array([0.0, 0.0, 1.0]) if abs(n[2]) < 0.9 else np.array([1.0, 0.0, 0.0])
    u = np.cross(n, ref)
    u /= np.linalg.norm(u) + EPS
    v = np.cross(n, u)
    return u, v


def tangent_projector(n: np.ndarray) -> np.ndarray:
    """I - n n^T."""
    return np.eye(3) - np.outer(n, n)


# ============================== PAIR FEATURES ================================


def pair_features_batch(
    p1: np.ndarray, n1: np.ndarray, p2: np.ndarray, n2: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Row-wise ``compute_pair_features``.

    Returns ``(F, valid)`` with ``F`` of shape (m, 4); rows where ``valid`` is
    False hold unspecified values.
    """
    dp = p2 - p1
    f4 = np.linalg.norm(dp, axis=1)
    valid = (f4 > 0.0) & np.isfinite(n1).all(axis=1) & np.isfinite(n2).all(axis=1)
    safe = np.where(valid, f4, 1.0)
    a1 = np.einsum("ij,ij->i", n1, dp) / safe
    a2 = np.einsum("ij,ij->i", n2, dp) / safe

    swap = np.arccos(np.minimum(np.abs(a1), 1.0)) > np.arccos(np.minimum(np.abs(a2), 1.0))
    s1 = np.where(swap[:, None], n2, n1)
    s2 = np.where(swap[:, None], n1, n2)
    dp = np.where(swap[:, None], -dp, dp)
    f3 = np.where(swap, -a2, a1)

    v = np.cross(dp, s1)
    v_norm = np.linalg.norm(v, axis=1)
    valid &= v_norm > 0.0
    v /= np.where(v_norm > 0.0, v_norm, 1.0)[:, None]
    w = np.cross(s1, v)

    f2 = np.einsum("ij,ij->i", v, s2)
    f1 = np.arctan2(np.einsum("ij,ij->i", w, s2), np.einsum("ij,ij->i", s1, s2))
    return np.stack([f1, f2, f3, f4], axis=1), valid


def compute_pair_features(
    p1: np.ndarray, n1: np.ndarray, p2: np.ndarray, n2: np.ndarray
) -> Optional[PairFeatures]:
    """
    Darboux-frame features of an oriented point pair.

    Returns ``(f1, f2, f3, f4)``: f1 = theta in [-pi, pi], f2 = alpha and
    f3 = phi in [-1, 1], f4 = distance. ``None`` when the points coincide or
    the frame is undefined (normal parallel to the connecting line).
    """
    F, valid = pair_features_batch(
        np.atleast_2d(p1), np.atleast_2d(n1), np.atleast_2d(p2), np.atleast_2d(n2)
    )
    if not valid[0]:
        return None
    f1, f2, f3, f4 = (float(x) for x in F[0])
    return f1, f2, f3, f4


# ============================== COLOR ========================================

_RGB2XYZ = np.array(
    [
        [0.4124, 0.3576, 0.1805],
        [0.2126, 0.7152, 0.0722],
        [0.0193, 0.1192, 0.9505],
    ]
)
_WHITE_D65 = np.array([0.95047, 1.0, 1.08883])


def rgb_to_cielab(rgb: np.ndarray) -> np.ndarray:
    """sRGB 0..255 rows to CIE L*a*b* (L in [0, 100], D65 white)."""
    c = np.asarray(rgb, dtype=np.float64) / 255.0
    c = np.where(c > 0.04045, ((c + 0.055) / 1.055) ** 2.4, c / 12.92)
    xyz = c @ _RGB2XYZ.T / _WHITE_D65
    f = np.where(xyz > 0.008856, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)
    L = 116.0 * f[..., 1] - 16.0
    a = 500.0 * (f[..., 0] - f[..., 1])
    b = 200.0 * (f[..., 1] - f[..., 2])
    return np.stack([L, a, b], axis=-1)