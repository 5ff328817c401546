"""Planar homography utilities for marker-based rectification."""

from typing import Sequence, Tuple

import numpy as np

from .errors import DegenerateConfiguration, SingularMatrix
from .ip_types import Point

PIVOT_EPS = 1e-12
DET_EPS = 1e-12
W_EPS = 1e-12


def _as_points(points, name: str) -> np.ndarray:
    pts = np.asarray(
        [p.as_tuple() if isinstance(p, Point) else p for p in points], dtype=np.float64
    )
    if pts.shape != (4, 2):
        raise ValueError(f"Homography requires 4 {name} points, got shape {pts.shape}")
    return pts


def _as_matrix(m) -> np.ndarray:
    arr = np.asarray(m, dtype=np.float64)
    if arr.size != 9:
        raise ValueError(f"Expected a 3x3 matrix (9 values), got {arr.size}")
    return arr.reshape(3, 3)


def _gaussian_elimination(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Gauss-Jordan elimination with partial pivoting on copies of a, b."""
    a = a.copy()
    b = b.copy()
    n = b.shape[0]
    for i in range(n):
        max_row = i + int(np.argmax(np.abs(a[i:, i])))
        if max_row != i:
            a[[i, max_row]] = a[[max_row, i]]
            b[[i, max_row]] = b[[max_row, i]]

        pivot = a[i, i]
        if abs(pivot) <= PIVOT_EPS:
            raise DegenerateConfiguration(
                "Cannot solve homography; degenerate point configuration"
            )

        a[i, i:] /= pivot
        b[i] /= pivot

        for r in range(n):
            if r == i:
                continue
            factor = a[r, i]
            if factor != 0.0:
                a[r, i:] -= factor * a[i, i:]
                b[r] -= factor * b[i]
    return b


def solve_homography(src: Sequence, dst: Sequence) -> np.ndarray:
    """
    Solve the 3x3 homography mapping four source points onto four destination points.

    Each correspondence contributes two rows of the standard 8x8 system with
    h33 fixed at 1.

    Args:
        src: 4 source points (x, y), ordered TL, TR, BR, BL
        dst: 4 destination points in the same order

    Returns:
        3x3 float64 matrix with H[2, 2] == 1.0

    Raises:
        ValueError: if either side does not hold exactly 4 points
        DegenerateConfiguration: if a pivot falls below 1e-12
    """
    s = _as_points(src, "source")
    d = _as_points(dst, "destination")

    a = np.zeros((8, 8), dtype=np.float64)
    b = np.zeros(8, dtype=np.float64)
    for i in range(4):
        x, y = s[i]
        u, v = d[i]
        r1 = 2 * i
        r2 = r1 + 1
        a[r1] = [x, y, 1.0, 0.0, 0.0, 0.0, -u * x, -u * y]
        b[r1] = u
        a[r2] = [0.0, 0.0, 0.0, x, y, 1.0, -v * x, -v * y]
        b[r2] = v

    h = _gaussian_elimination(a, b)
    return np.append(h, 1.0).reshape(3, 3)


def invert_3x3(m) -> np.ndarray:
    """
    Invert a 3x3 matrix using the closed-form cofactor expansion.

    Raises:
        SingularMatrix: if |det| <= 1e-12
    """
    (a, b, c), (d, e, f), (g, h, i) = _as_matrix(m)

    det = a * (e * i - f * h) - b * (d * i - f * g) + c * (d * h - e * g)
    if abs(det) <= DET_EPS:
        raise SingularMatrix("Homography matrix is singular")

    inv_det = 1.0 / det
    return np.array(
        [
            [(e * i - f * h), (c * h - b * i), (b * f - c * e)],
            [(f * g - d * i), (a * i - c * g), (c * d - a * f)],
            [(d * h - e * g), (b * g - a * h), (a * e - b * d)],
        ],
        dtype=np.float64,
    ) * inv_det


def map_point(h, x: float, y: float) -> Tuple[float, float]:
    """Map (x, y) through h; a vanishing homogeneous weight maps to the origin."""
    m = _as_matrix(h)
    w = m[2, 0] * x + m[2, 1] * y + m[2, 2]
    if abs(w) < W_EPS:
        return 0.0, 0.0
    nx = (m[0, 0] * x + m[0, 1] * y + m[0, 2]) / w
    ny = (m[1, 0] * x + m[1, 1] * y + m[1, 2]) / w
    return float(nx), float(ny)


def apply_homography(h, points) -> np.ndarray:
    """
    Vectorized map_point over an (N, 2) array of points.

    Returns:
        (N, 2) float64 array of mapped points
    """
    m = _as_matrix(h)
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    ones = np.ones((pts.shape[0], 1), dtype=np.float64)
    mapped = np.hstack([pts, ones]) @ m.T
    w = mapped[:, 2]
    out = np.zeros((pts.shape[0], 2), dtype=np.float64)
    ok = np.abs(w) >= W_EPS
    out[ok] = mapped[ok, :2] / w[ok, None]
    return out
