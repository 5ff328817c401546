"""
Capture quality gate for the live preview stream.

Scores one luminance plane plus device pitch/roll for:
1. Tilt (device held level over the wound)
2. Light (mean luma in a usable band)
3. Glare (fraction of near-saturated pixels)
4. Blur (variance of Laplacian on a small downsampled grid)

Scoring is stateless; a bad frame yields a worst-case result, never an
exception, so capture gating cannot crash the preview loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np

from .ip_types import QcResult

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_STRIDE = 4
BLUR_TARGET_WIDTH = 64
BLUR_MIN_DIMENSION = 32

GLARE_LUMA = 250
MAX_TILT_DEGREES = 10.0
MIN_LIGHT_LUMA = 60.0
MAX_LIGHT_LUMA = 200.0
MAX_GLARE_FRACTION = 0.03
MIN_BLUR_SCORE = 18.0


@dataclass
class LumaPlane:
    """Y plane of a camera frame with its memory layout."""

    buffer: Any  # bytes, bytearray, memoryview or uint8 ndarray
    width: int
    height: int
    row_stride: Optional[int] = None
    pixel_stride: int = 1

    @classmethod
    def from_array(cls, luma: np.ndarray) -> "LumaPlane":
        arr = np.ascontiguousarray(luma, dtype=np.uint8)
        if arr.ndim != 2:
            raise ValueError(f"Expected a 2-D luma array, got shape {arr.shape}")
        h, w = arr.shape
        return cls(arr.reshape(-1), w, h, row_stride=w, pixel_stride=1)

    def to_array(self) -> Optional[np.ndarray]:
        """Read-only (height, width) uint8 view of the plane, or None if the layout is unreadable."""
        return read_plane(self.buffer, self.width, self.height, self.row_stride, self.pixel_stride)


def read_plane(
    buffer: Any,
    width: int,
    height: int,
    row_stride: Optional[int] = None,
    pixel_stride: int = 1,
) -> Optional[np.ndarray]:
    """
    Zero-copy (height, width) view over a strided byte plane.

    The view shares memory with buffer and is read-only; callers that need
    to keep the pixels past the buffer's lifetime must copy.
    """
    if buffer is None or width <= 0 or height <= 0 or pixel_stride < 1:
        return None
    if row_stride is None:
        row_stride = width * pixel_stride
    if row_stride < (width - 1) * pixel_stride + 1:
        return None
    try:
        data = np.frombuffer(buffer, dtype=np.uint8)
    except (TypeError, ValueError):
        return None
    needed = (height - 1) * row_stride + (width - 1) * pixel_stride + 1
    if data.size < needed:
        return None
    return np.lib.stride_tricks.as_strided(
        data, shape=(height, width), strides=(row_stride, pixel_stride), writeable=False
    )


def _downsample_grid(luma: np.ndarray) -> np.ndarray:
    h, w = luma.shape
    scale = max(1, w // BLUR_TARGET_WIDTH)
    down_w = max(w // scale, BLUR_MIN_DIMENSION)
    down_h = max(h // scale, BLUR_MIN_DIMENSION)
    xs = (np.arange(down_w) * w) // down_w
    ys = (np.arange(down_h) * h) // down_h
    return luma[ys[:, None], xs[None, :]]


def laplacian_variance(gray: np.ndarray) -> float:
    """Population variance of the 4-neighbour Laplacian over interior pixels."""
    g = np.asarray(gray, dtype=np.float64)
    if g.ndim != 2 or g.shape[0] < 3 or g.shape[1] < 3:
        return 0.0
    lap = (
        -4.0 * g[1:-1, 1:-1]
        + g[:-2, 1:-1]
        + g[2:, 1:-1]
        + g[1:-1, :-2]
        + g[1:-1, 2:]
    )
    return float(lap.var())


class QualityGateEvaluator:
    def __init__(self, sample_stride: int = DEFAULT_SAMPLE_STRIDE):
        if sample_stride < 1:
            raise ValueError("sample_stride must be at least 1")
        self.sample_stride = sample_stride

    def evaluate(
        self,
        pitch_deg: float,
        roll_deg: float,
        plane: Union[LumaPlane, np.ndarray, None],
    ) -> QcResult:
        if plane is None:
            logger.debug("QC: no luma plane, returning worst-case result")
            return QcResult.empty(pitch_deg, roll_deg)
        if isinstance(plane, np.ndarray):
            if plane.ndim != 2 or plane.size == 0:
                return QcResult.empty(pitch_deg, roll_deg)
            luma = plane
        else:
            luma = plane.to_array()
        if luma is None:
            logger.debug(
                "QC: unreadable plane %dx%d (row_stride=%s, pixel_stride=%s)",
                plane.width, plane.height, plane.row_stride, plane.pixel_stride,
            )
            return QcResult.empty(pitch_deg, roll_deg)

        sampled = luma[:: self.sample_stride, :: self.sample_stride]
        mean_luma = float(sampled.mean())
        glare_fraction = float(np.count_nonzero(sampled >= GLARE_LUMA)) / sampled.size

        blur_score = laplacian_variance(_downsample_grid(luma))

        tilt_pass = abs(pitch_deg) <= MAX_TILT_DEGREES and abs(roll_deg) <= MAX_TILT_DEGREES
        light_pass = MIN_LIGHT_LUMA <= mean_luma <= MAX_LIGHT_LUMA
        glare_pass = glare_fraction <= MAX_GLARE_FRACTION
        blur_pass = blur_score >= MIN_BLUR_SCORE

        return QcResult(
            pitch_deg=pitch_deg,
            roll_deg=roll_deg,
            mean_luma=mean_luma,
            glare_fraction=glare_fraction,
            blur_score=blur_score,
            tilt_pass=tilt_pass,
            light_pass=light_pass,
            glare_pass=glare_pass,
            blur_pass=blur_pass,
            overall_pass=tilt_pass and light_pass and glare_pass and blur_pass,
        )


_default_evaluator = QualityGateEvaluator()


def evaluate_frame(pitch_deg: float, roll_deg: float, plane) -> QcResult:
    return _default_evaluator.evaluate(pitch_deg, roll_deg, plane)
