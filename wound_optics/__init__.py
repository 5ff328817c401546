"""Optical measurement core for wound photography."""

from .calibration import CalibrationGeometryResolver, resolve_calibration
from .capture import StereoCaptureSession
from .config import OpticsConfig, load_config
from .geometry import invert_3x3, solve_homography
from .pairing import StereoFramePairer
from .polygon import area_pixels, to_physical_area, to_physical_area_linear
from .quality import QualityGateEvaluator, evaluate_frame
from .rectify import rectify_marker, warp_image

__all__ = [
    "CalibrationGeometryResolver",
    "OpticsConfig",
    "QualityGateEvaluator",
    "StereoCaptureSession",
    "StereoFramePairer",
    "area_pixels",
    "evaluate_frame",
    "invert_3x3",
    "load_config",
    "rectify_marker",
    "resolve_calibration",
    "solve_homography",
    "to_physical_area",
    "to_physical_area_linear",
    "warp_image",
]
