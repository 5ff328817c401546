import argparse
import json
import logging
import queue
import signal
import sys
import threading
import time
from typing import Optional

import cv2

from .calibration import DictCapabilitySource
from .capture import DeviceCameraSource, FrameSource, StereoCaptureSession, SyntheticFrameSource
from .config import OpticsConfig, load_config
from .errors import OpticsError
from .ip_types import CameraRole
from .logging_utils import add_file_handler, setup_logger
from .polygon import area_pixels, outline_from_json, to_physical_area, to_physical_area_linear
from .quality import QualityGateEvaluator
from .rectify import rectify_marker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Wound optical measurement tools")
    ap.add_argument("--config", help="Path to JSON/YAML config")
    ap.add_argument("--log-level")
    ap.add_argument("--log-path")
    sub = ap.add_subparsers(dest="command", required=True)

    rp = sub.add_parser("rectify", help="Rectify a photo from four marker corners")
    rp.add_argument("--image", required=True)
    rp.add_argument("--points", nargs=8, type=float, required=True,
                    metavar=("TLX", "TLY", "TRX", "TRY", "BRX", "BRY", "BLX", "BLY"))
    rp.add_argument("--marker-size-cm", type=float)
    rp.add_argument("--size", type=int)
    rp.add_argument("--out", required=True)

    ap_area = sub.add_parser("area", help="Polygon area from an outline")
    ap_area.add_argument("--outline", required=True, help="Outline JSON text or path to a .json file")
    ap_area.add_argument("--factor", type=float, help="Calibration factor (length per pixel)")
    ap_area.add_argument("--areal", action="store_true", help="Factor is already area per pixel")

    qp = sub.add_parser("qc", help="Score a photo with the capture quality gate")
    qp.add_argument("--image", required=True)
    qp.add_argument("--pitch", type=float, default=0.0)
    qp.add_argument("--roll", type=float, default=0.0)

    pp = sub.add_parser("pair", help="Run a stereo pairing session on synthetic or device cameras")
    pp.add_argument("--capabilities", help="Camera capability dump (JSON/YAML)")
    pp.add_argument("--duration", type=float, default=1.0)
    pp.add_argument("--fps", type=int)
    pp.add_argument("--offset-ms", type=float, default=2.0,
                    help="Clock skew of the secondary camera")
    pp.add_argument("--primary-device", help="Camera index or path; synthetic frames when omitted")
    pp.add_argument("--secondary-device", help="Camera index or path; synthetic frames when omitted")

    return ap


def _read_outline(value: str):
    if value.endswith(".json"):
        with open(value, "r", encoding="utf-8") as fp:
            return outline_from_json(fp.read())
    return outline_from_json(value)


def _cmd_rectify(cfg: OpticsConfig, args, log: logging.Logger) -> int:
    image = cv2.imread(args.image, cv2.IMREAD_UNCHANGED)
    if image is None:
        log.error("Unable to decode image: %s", args.image)
        return 2
    pts = [(args.points[i], args.points[i + 1]) for i in range(0, 8, 2)]
    size = args.size or cfg.rectify.output_size
    marker_cm = args.marker_size_cm if args.marker_size_cm is not None else cfg.rectify.marker_size_cm

    result = rectify_marker(image, pts, marker_cm, output_size=size)
    if not cv2.imwrite(args.out, result.rectified):
        log.error("Unable to write %s", args.out)
        return 2
    print(json.dumps({
        "out": args.out,
        "homography": [float(v) for v in result.homography.reshape(-1)],
        "calibrationFactor": result.calibration_factor,
    }))
    return 0


def _cmd_area(cfg: OpticsConfig, args, log: logging.Logger) -> int:
    outline = _read_outline(args.outline)
    px = area_pixels(outline)
    out = {"points": len(outline), "areaPixels": px}
    if args.factor is not None:
        if args.areal:
            out["areaPhysical"] = to_physical_area_linear(px, args.factor)
        else:
            out["areaPhysical"] = to_physical_area(px, args.factor)
    print(json.dumps(out))
    return 0


def _cmd_qc(cfg: OpticsConfig, args, log: logging.Logger) -> int:
    gray = cv2.imread(args.image, cv2.IMREAD_GRAYSCALE)
    if gray is None:
        log.error("Unable to decode image: %s", args.image)
        return 2
    result = QualityGateEvaluator(cfg.quality.sample_stride).evaluate(args.pitch, args.roll, gray)
    status = "PASS" if result.overall_pass else "FAIL"
    print(json.dumps(result.as_dict(timestamp_ms=int(time.time() * 1000), status=status)))
    return 0 if result.overall_pass else 1


def _frame_source(
    cfg: OpticsConfig, role: CameraRole, device: Optional[str], fps: int, offset_ns: int
) -> FrameSource:
    if device is None:
        return SyntheticFrameSource(role, fps=fps, clock_offset_ns=offset_ns)
    dev: int | str = int(device) if device.isdigit() else device
    return DeviceCameraSource(role, dev, fps, cfg.capture_width, cfg.capture_height)


def _cmd_pair(cfg: OpticsConfig, args, log: logging.Logger) -> int:
    fps = args.fps or cfg.capture_fps
    if (args.primary_device is None) != (args.secondary_device is None):
        log.error("--primary-device and --secondary-device must be given together")
        return 2
    primary = _frame_source(cfg, CameraRole.PRIMARY, args.primary_device, fps, 0)
    secondary = _frame_source(
        cfg, CameraRole.SECONDARY, args.secondary_device, fps, int(args.offset_ms * 1_000_000)
    )
    caps = DictCapabilitySource.from_file(args.capabilities) if args.capabilities else None
    session = StereoCaptureSession(primary, secondary, capability_source=caps, config=cfg)
    pairs = session.frame_pairs(maxsize=0)

    interrupted = threading.Event()

    def _handle_signal(_sig, _frame):
        interrupted.set()

    previous = {signal.SIGINT: signal.signal(signal.SIGINT, _handle_signal)}
    if hasattr(signal, "SIGTERM"):
        previous[signal.SIGTERM] = signal.signal(signal.SIGTERM, _handle_signal)

    received = 0
    try:
        calibration = session.start().result(timeout=10.0)
        if calibration is not None:
            log.info("baseline: %s mm", calibration.baseline_mm)

        deadline = time.monotonic() + args.duration
        while time.monotonic() < deadline and not interrupted.is_set():
            try:
                pairs.get(timeout=0.05)
            except queue.Empty:
                continue
            received += 1
    finally:
        session.stop()
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(json.dumps({
        "pairs": received,
        "primaryFrames": session.frames_read[CameraRole.PRIMARY],
        "secondaryFrames": session.frames_read[CameraRole.SECONDARY],
        "evicted": session.pairer.stats.frames_evicted,
        "dropped": session.pairer.stats.pairs_dropped,
    }))
    return 0


COMMANDS = {
    "rectify": _cmd_rectify,
    "area": _cmd_area,
    "qc": _cmd_qc,
    "pair": _cmd_pair,
}


def main(argv: Optional[list[str]] = None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config) if args.config else OpticsConfig()
    cfg.apply_overrides(log_level=args.log_level, log_path=args.log_path)

    log = setup_logger(args.command, cfg.log_level.upper())
    file_handler = add_file_handler(log, args.command, cfg.log_path) if cfg.log_path else None

    try:
        return COMMANDS[args.command](cfg, args, log)
    except OpticsError as e:
        log.error("%s failed: %s", args.command, e)
        return 3
    finally:
        if file_handler is not None:
            log.removeHandler(file_handler)
            file_handler.close()


if __name__ == "__main__":
    sys.exit(main())
