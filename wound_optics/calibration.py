"""
Stereo calibration geometry from device camera capabilities.

The capability source is injected: the resolver is a pure function from a
bag of optional per-camera fields to a CalibrationRecord, so it runs the
same against a real camera binding, a JSON/YAML dump or a test fixture.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from .errors import (
    AmbiguousCameraRoles,
    InsufficientPhysicalCameras,
    MissingIntrinsics,
    NoMultiCameraSupport,
)
from .ip_types import CalibrationRecord, SizeMm

logger = logging.getLogger(__name__)

LOGICAL_MULTI_CAMERA = "LOGICAL_MULTI_CAMERA"
METERS_MAGNITUDE_LIMIT = 0.5

PREFERRED_CAPTURE_SIZE = (1280, 720)
MAX_CAPTURE_SIZE = (1920, 1080)


@dataclass
class CameraCapabilities:
    """Raw capability fields for one camera id; every field may be missing."""

    capabilities: set[str] = field(default_factory=set)
    physical_ids: tuple[str, ...] = ()
    focal_lengths_mm: Optional[tuple[float, ...]] = None
    sensor_size_mm: Optional[SizeMm] = None
    intrinsic: Optional[tuple[float, ...]] = None
    distortion: Optional[tuple[float, ...]] = None
    pose_translation: Optional[tuple[float, ...]] = None
    yuv_output_sizes: tuple[tuple[int, int], ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CameraCapabilities":
        def _floats(key: str) -> Optional[tuple[float, ...]]:
            value = raw.get(key)
            if value is None:
                return None
            return tuple(float(v) for v in value)

        sensor = raw.get("sensor_size_mm")
        if sensor is not None:
            if isinstance(sensor, Mapping):
                sensor = SizeMm(float(sensor["width"]), float(sensor["height"]))
            else:
                sensor = SizeMm(float(sensor[0]), float(sensor[1]))

        return cls(
            capabilities={str(c) for c in raw.get("capabilities", ())},
            physical_ids=tuple(str(p) for p in raw.get("physical_ids", ())),
            focal_lengths_mm=_floats("focal_lengths_mm"),
            sensor_size_mm=sensor,
            intrinsic=_floats("intrinsic"),
            distortion=_floats("distortion"),
            pose_translation=_floats("pose_translation"),
            yuv_output_sizes=tuple(
                (int(s[0]), int(s[1])) for s in raw.get("yuv_output_sizes", ())
            ),
        )


class CapabilitySource(Protocol):
    def camera_ids(self) -> Sequence[str]: ...

    def characteristics(self, camera_id: str) -> CameraCapabilities: ...


class DictCapabilitySource:
    def __init__(self, cameras: Mapping[str, CameraCapabilities]):
        self._cameras = dict(cameras)

    def camera_ids(self) -> Sequence[str]:
        return list(self._cameras)

    def characteristics(self, camera_id: str) -> CameraCapabilities:
        try:
            return self._cameras[camera_id]
        except KeyError:
            # physical sensors that were never described expose nothing
            return CameraCapabilities()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "DictCapabilitySource":
        cameras = raw.get("cameras", raw)
        if not isinstance(cameras, Mapping):
            raise ValueError("capability dump must map camera id -> fields")
        return cls({str(k): CameraCapabilities.from_dict(v or {}) for k, v in cameras.items()})

    @classmethod
    def from_file(cls, path: str | Path) -> "DictCapabilitySource":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Capability dump not found: {p}")
        if p.suffix.lower() in {".yaml", ".yml"}:
            from .config import _load_yaml

            raw = _load_yaml(p)
        else:
            with p.open("r", encoding="utf-8") as fp:
                raw = json.load(fp)
        if not isinstance(raw, dict):
            raise ValueError("Capability dump root must be a JSON/YAML object")
        return cls.from_mapping(raw)


@dataclass
class _PhysicalCamera:
    camera_id: str
    focal_lengths_mm: tuple[float, ...]
    sensor_size_mm: SizeMm
    intrinsic: Optional[tuple[float, ...]]
    distortion: Optional[tuple[float, ...]]
    pose_translation: Optional[tuple[float, ...]]

    @property
    def max_focal_length_mm(self) -> float:
        return max(self.focal_lengths_mm, default=-math.inf)

    @property
    def min_focal_length_mm(self) -> float:
        return min(self.focal_lengths_mm, default=math.inf)


def compute_baseline_translation(
    main_translation: Optional[Sequence[float]],
    ultra_translation: Optional[Sequence[float]],
) -> Optional[tuple[float, float, float]]:
    main_ok = main_translation is not None and len(main_translation) >= 3
    ultra_ok = ultra_translation is not None and len(ultra_translation) >= 3
    if main_ok and ultra_ok:
        return (
            float(main_translation[0]) - float(ultra_translation[0]),
            float(main_translation[1]) - float(ultra_translation[1]),
            float(main_translation[2]) - float(ultra_translation[2]),
        )
    if main_ok:
        return tuple(float(v) for v in main_translation[:3])
    if ultra_ok:
        return tuple(float(v) for v in ultra_translation[:3])
    return None


def baseline_to_millimeters(translation: Sequence[float]) -> float:
    """
    Euclidean baseline length in millimeters.

    Pose translations are nominally meters but some vendors report
    millimeters. Magnitudes in [0, 0.5] are taken as meters and scaled
    by 1000; anything larger is assumed to be millimeters already.
    """
    magnitude = math.sqrt(sum(float(v) * float(v) for v in translation[:3]))
    if 0.0 <= magnitude <= METERS_MAGNITUDE_LIMIT:
        return magnitude * 1000.0
    return magnitude


def select_capture_size(sizes: Iterable[tuple[int, int]]) -> Optional[tuple[int, int]]:
    candidates = [(int(w), int(h)) for w, h in sizes]
    if not candidates:
        return None
    if PREFERRED_CAPTURE_SIZE in candidates:
        return PREFERRED_CAPTURE_SIZE
    max_w, max_h = MAX_CAPTURE_SIZE
    bounded = [s for s in candidates if s[0] <= max_w and s[1] <= max_h]
    if bounded:
        return max(bounded, key=lambda s: (s[0] * s[1], s[0]))
    return min(candidates, key=lambda s: s[0] * s[1])


def _index(values: Optional[Sequence[float]], i: int) -> Optional[float]:
    if values is None or len(values) <= i:
        return None
    return float(values[i])


class CalibrationGeometryResolver:
    def __init__(self, source: CapabilitySource):
        self.source = source

    def find_logical_camera(self) -> Optional[str]:
        for camera_id in self.source.camera_ids():
            if LOGICAL_MULTI_CAMERA in self.source.characteristics(camera_id).capabilities:
                return camera_id
        return None

    def _physical_camera(self, camera_id: str) -> _PhysicalCamera:
        caps = self.source.characteristics(camera_id)
        if not caps.focal_lengths_mm:
            raise MissingIntrinsics(f"Missing focal lengths for physical camera {camera_id}")
        if caps.sensor_size_mm is None:
            raise MissingIntrinsics(f"Missing sensor physical size for physical camera {camera_id}")
        return _PhysicalCamera(
            camera_id=camera_id,
            focal_lengths_mm=tuple(caps.focal_lengths_mm),
            sensor_size_mm=caps.sensor_size_mm,
            intrinsic=caps.intrinsic,
            distortion=caps.distortion,
            pose_translation=caps.pose_translation,
        )

    def resolve(self) -> CalibrationRecord:
        logical_id = self.find_logical_camera()
        if logical_id is None:
            raise NoMultiCameraSupport(
                f"No logical multi-camera found (missing {LOGICAL_MULTI_CAMERA} capability)"
            )

        physical_ids = list(dict.fromkeys(self.source.characteristics(logical_id).physical_ids))
        if len(physical_ids) < 2:
            raise InsufficientPhysicalCameras(
                f"Not enough physical cameras for logical camera {logical_id} "
                f"(found {len(physical_ids)})"
            )

        physical = [self._physical_camera(pid) for pid in physical_ids]
        main = max(physical, key=lambda c: c.max_focal_length_mm)
        ultra = min(physical, key=lambda c: c.min_focal_length_mm)
        if main.camera_id == ultra.camera_id:
            raise AmbiguousCameraRoles(
                "Cannot determine distinct main and ultra-wide physical cameras"
            )

        translation = compute_baseline_translation(main.pose_translation, ultra.pose_translation)
        baseline_mm = baseline_to_millimeters(translation) if translation is not None else None

        record = CalibrationRecord(
            logical_camera_id=logical_id,
            main_camera_id=main.camera_id,
            ultra_wide_camera_id=ultra.camera_id,
            main_focal_lengths_mm=main.focal_lengths_mm,
            ultra_focal_lengths_mm=ultra.focal_lengths_mm,
            main_sensor_size_mm=main.sensor_size_mm,
            ultra_sensor_size_mm=ultra.sensor_size_mm,
            main_intrinsic=main.intrinsic,
            ultra_intrinsic=ultra.intrinsic,
            main_distortion=main.distortion,
            ultra_distortion=ultra.distortion,
            baseline_translation=translation,
            baseline_mm=baseline_mm,
            fx_pixels_main=_index(main.intrinsic, 0),
            fy_pixels_main=_index(main.intrinsic, 1),
            fx_pixels_ultra=_index(ultra.intrinsic, 0),
            fy_pixels_ultra=_index(ultra.intrinsic, 1),
        )

        if record.has_stereo_depth:
            logger.info(
                "calibration resolved: logical=%s main=%s ultra=%s baseline=%.2fmm",
                logical_id, main.camera_id, ultra.camera_id, baseline_mm,
            )
        else:
            logger.info(
                "calibration resolved without baseline (logical=%s main=%s ultra=%s); "
                "stereo depth unavailable",
                logical_id, main.camera_id, ultra.camera_id,
            )
        return record

    def capture_size(self, logical_id: str) -> Optional[tuple[int, int]]:
        return select_capture_size(self.source.characteristics(logical_id).yuv_output_sizes)


def resolve_calibration(source: CapabilitySource) -> CalibrationRecord:
    return CalibrationGeometryResolver(source).resolve()
