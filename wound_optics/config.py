from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional


@dataclass
class PairingConfig:
    tolerance_ns: int = 10_000_000  # 10 ms
    max_buffered_frames: int = 5
    subscriber_queue_size: int = 8

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QualityConfig:
    sample_stride: int = 4

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RectifyConfig:
    output_size: int = 1000
    marker_size_cm: float = 5.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OpticsConfig:
    name: str = "optics"
    log_level: str = "INFO"
    log_path: Optional[str] = None
    capture_fps: int = 30
    capture_width: int = 1280
    capture_height: int = 720
    pairing: PairingConfig = field(default_factory=PairingConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    rectify: RectifyConfig = field(default_factory=RectifyConfig)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "OpticsConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _section(raw: dict[str, Any], key: str) -> Optional[dict[str, Any]]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


def load_config(path: str | Path) -> OpticsConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = OpticsConfig()
    cfg.name = str(raw.get("name", cfg.name))
    cfg.log_level = str(raw.get("log_level", cfg.log_level)).upper()
    cfg.log_path = raw.get("log_path", cfg.log_path)
    if cfg.log_path is not None:
        cfg.log_path = str(cfg.log_path)
    cfg.capture_fps = int(raw.get("capture_fps", cfg.capture_fps))
    cfg.capture_width = int(raw.get("capture_width", cfg.capture_width))
    cfg.capture_height = int(raw.get("capture_height", cfg.capture_height))

    pr = _section(raw, "pairing")
    if pr is not None:
        pc = cfg.pairing
        pc.tolerance_ns = int(pr.get("tolerance_ns", pc.tolerance_ns))
        pc.max_buffered_frames = int(pr.get("max_buffered_frames", pc.max_buffered_frames))
        pc.subscriber_queue_size = int(pr.get("subscriber_queue_size", pc.subscriber_queue_size))
        if pc.tolerance_ns < 0:
            raise ValueError("pairing.tolerance_ns cannot be negative")
        if pc.max_buffered_frames < 1:
            raise ValueError("pairing.max_buffered_frames must be at least 1")

    qr = _section(raw, "quality")
    if qr is not None:
        cfg.quality.sample_stride = int(qr.get("sample_stride", cfg.quality.sample_stride))
        if cfg.quality.sample_stride < 1:
            raise ValueError("quality.sample_stride must be at least 1")

    rr = _section(raw, "rectify")
    if rr is not None:
        rc = cfg.rectify
        rc.output_size = int(rr.get("output_size", rc.output_size))
        rc.marker_size_cm = float(rr.get("marker_size_cm", rc.marker_size_cm))
        if rc.output_size < 2:
            raise ValueError("rectify.output_size must be at least 2")

    return cfg
