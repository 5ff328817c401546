"""
Marker-based rectification.

Warps a captured photo through the homography defined by four tapped
marker corners so the marker plane is seen top-down, and derives the
linear calibration factor (cm per pixel) from the marker's known size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .geometry import W_EPS, _as_matrix, invert_3x3, solve_homography
from .ip_types import Point

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_SIZE = 1000


@dataclass
class MarkerRectification:
    homography: np.ndarray
    rectified: np.ndarray
    calibration_factor: Optional[float]


def warp_image(
    source: np.ndarray,
    homography,
    out_width: int,
    out_height: int,
    inverse=None,
) -> np.ndarray:
    """
    Warp source through a source->destination homography by inverse mapping.

    Every destination pixel is mapped back into the source, floored to a
    pixel index and copied (nearest neighbour). Pixels that land outside the
    source stay zero. A vanishing homogeneous weight maps to source (0, 0)
    instead of aborting the warp.

    Args:
        source: (H, W) or (H, W, C) image
        homography: 3x3 source->destination matrix (or 9 values)
        out_width: destination width in pixels
        out_height: destination height in pixels
        inverse: optional precomputed destination->source matrix

    Returns:
        (out_height, out_width[, C]) array with the dtype of source
    """
    src = np.asarray(source)
    if src.ndim not in (2, 3):
        raise ValueError(f"Expected a 2-D or 3-D image, got shape {src.shape}")

    out_width = max(0, int(out_width))
    out_height = max(0, int(out_height))
    out_shape = (out_height, out_width) + src.shape[2:]
    out = np.zeros(out_shape, dtype=src.dtype)
    if out_width == 0 or out_height == 0 or src.shape[0] == 0 or src.shape[1] == 0:
        return out

    inv = _as_matrix(inverse) if inverse is not None else invert_3x3(homography)

    ys, xs = np.mgrid[0:out_height, 0:out_width]
    xs = xs.astype(np.float64)
    ys = ys.astype(np.float64)

    w = inv[2, 0] * xs + inv[2, 1] * ys + inv[2, 2]
    degenerate = np.abs(w) < W_EPS
    safe_w = np.where(degenerate, 1.0, w)
    sx = (inv[0, 0] * xs + inv[0, 1] * ys + inv[0, 2]) / safe_w
    sy = (inv[1, 0] * xs + inv[1, 1] * ys + inv[1, 2]) / safe_w
    sx = np.where(degenerate, 0.0, sx)
    sy = np.where(degenerate, 0.0, sy)

    ix = np.floor(sx)
    iy = np.floor(sy)
    src_h, src_w = src.shape[:2]
    inside = (ix >= 0) & (ix < src_w) & (iy >= 0) & (iy < src_h)

    out[inside] = src[iy[inside].astype(np.intp), ix[inside].astype(np.intp)]

    logger.debug(
        "warped %dx%d -> %dx%d, %d/%d pixels mapped inside source",
        src_w, src_h, out_width, out_height, int(inside.sum()), inside.size,
    )
    return out


def marker_destination_corners(size: int = DEFAULT_OUTPUT_SIZE) -> np.ndarray:
    last = float(size - 1)
    return np.array(
        [
            [0.0, 0.0],  # TL
            [last, 0.0],  # TR
            [last, last],  # BR
            [0.0, last],  # BL
        ],
        dtype=np.float64,
    )


def derive_calibration_factor(points: Sequence, marker_size_cm: float) -> Optional[float]:
    """
    Linear calibration factor (cm per pixel) from the four marker corners.

    Uses the mean of the top (TL->TR) and bottom (BL->BR) edges, so the
    marker's known width is what gets divided.
    """
    if points is None or len(points) != 4 or marker_size_cm <= 0.0:
        return None
    pts = np.asarray(
        [p.as_tuple() if isinstance(p, Point) else p for p in points], dtype=np.float64
    )
    top = float(np.linalg.norm(pts[1] - pts[0]))
    bottom = float(np.linalg.norm(pts[2] - pts[3]))
    avg = (top + bottom) / 2.0
    if avg <= 0.0:
        return None
    return marker_size_cm / avg


def rectify_marker(
    image: np.ndarray,
    points: Sequence,
    marker_size_cm: float,
    output_size: int = DEFAULT_OUTPUT_SIZE,
) -> MarkerRectification:
    """
    Solve the marker homography and warp image into an output_size square.

    Raises:
        ValueError: if points does not hold exactly 4 corners
        DegenerateConfiguration: if the corners are collinear or coincident
        SingularMatrix: if the solved homography cannot be inverted
    """
    if len(points) != 4:
        raise ValueError("Select all 4 marker corners in order first")

    homography = solve_homography(points, marker_destination_corners(output_size))
    rectified = warp_image(image, homography, output_size, output_size)
    factor = derive_calibration_factor(points, marker_size_cm)

    logger.info(
        "rectified marker to %dx%d, calibration factor=%s cm/px",
        output_size, output_size, f"{factor:.6f}" if factor is not None else "-",
    )
    return MarkerRectification(homography, rectified, factor)
