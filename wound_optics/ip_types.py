from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class CameraRole(Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def opposite(self) -> "CameraRole":
        return CameraRole.SECONDARY if self is CameraRole.PRIMARY else CameraRole.PRIMARY


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class SizeMm:
    width: float
    height: float


@dataclass(frozen=True)
class RawFrame:
    timestamp_ns: int
    data: bytes  # packed I420: Y plane, then U, then V
    width: int
    height: int
    role: CameraRole


@dataclass(frozen=True)
class FramePair:
    primary: RawFrame
    secondary: RawFrame
    timestamp_ns: int

    @property
    def width(self) -> int:
        return self.primary.width

    @property
    def height(self) -> int:
        return self.primary.height


@dataclass
class CalibrationRecord:
    logical_camera_id: str
    main_camera_id: str
    ultra_wide_camera_id: str
    main_focal_lengths_mm: tuple[float, ...]
    ultra_focal_lengths_mm: tuple[float, ...]
    main_sensor_size_mm: SizeMm
    ultra_sensor_size_mm: SizeMm
    main_intrinsic: Optional[tuple[float, ...]] = None
    ultra_intrinsic: Optional[tuple[float, ...]] = None
    main_distortion: Optional[tuple[float, ...]] = None
    ultra_distortion: Optional[tuple[float, ...]] = None
    baseline_translation: Optional[tuple[float, float, float]] = None
    baseline_mm: Optional[float] = None
    fx_pixels_main: Optional[float] = None
    fy_pixels_main: Optional[float] = None
    fx_pixels_ultra: Optional[float] = None
    fy_pixels_ultra: Optional[float] = None

    @property
    def has_stereo_depth(self) -> bool:
        """False means callers fall back to the marker-based path."""
        return self.baseline_mm is not None


@dataclass(frozen=True)
class QcResult:
    pitch_deg: float
    roll_deg: float
    mean_luma: float
    glare_fraction: float
    blur_score: float
    tilt_pass: bool
    light_pass: bool
    glare_pass: bool
    blur_pass: bool
    overall_pass: bool

    @classmethod
    def empty(cls, pitch_deg: float = 0.0, roll_deg: float = 0.0) -> "QcResult":
        return cls(
            pitch_deg=pitch_deg,
            roll_deg=roll_deg,
            mean_luma=0.0,
            glare_fraction=1.0,
            blur_score=0.0,
            tilt_pass=False,
            light_pass=False,
            glare_pass=False,
            blur_pass=False,
            overall_pass=False,
        )

    def as_dict(self, timestamp_ms: Optional[int] = None, status: Optional[str] = None) -> dict[str, Any]:
        out: dict[str, Any] = {
            "pitchDeg": round(float(self.pitch_deg), 2),
            "rollDeg": round(float(self.roll_deg), 2),
            "meanLuma": round(float(self.mean_luma), 2),
            "glarePct": round(float(self.glare_fraction), 6),
            "blurScore": round(float(self.blur_score), 2),
            "tiltPass": self.tilt_pass,
            "lightPass": self.light_pass,
            "glarePass": self.glare_pass,
            "blurPass": self.blur_pass,
            "overallPass": self.overall_pass,
        }
        if timestamp_ms is not None:
            out["timestampMillis"] = int(timestamp_ms)
        if status is not None:
            out["qcStatus"] = status
        return out


@dataclass
class PairingStats:
    pairs_emitted: int = 0
    frames_evicted: int = 0
    pairs_dropped: int = 0
