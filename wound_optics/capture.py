"""Stereo frame ingestion: frame sources and the capture session lifecycle.

A session resolves calibration, starts one frame source per physical
camera and runs one producer thread per source feeding a shared
StereoFramePairer. Matched pairs are read from a subscriber queue.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import cv2
import numpy as np

from .calibration import CalibrationGeometryResolver, CapabilitySource
from .config import OpticsConfig
from .errors import CaptureStartError, OpticsError
from .ip_types import CalibrationRecord, CameraRole, RawFrame
from .pairing import StereoFramePairer
from .quality import read_plane

logger = logging.getLogger(__name__)


@dataclass
class PlaneBuffer:
    buffer: Any
    row_stride: int
    pixel_stride: int = 1


def pack_yuv420(y: PlaneBuffer, u: PlaneBuffer, v: PlaneBuffer, width: int, height: int) -> bytes:
    """
    Pack three strided YUV 4:2:0 planes into one contiguous I420 buffer.

    Chroma planes are read at half resolution. Interleaved (semi-planar)
    layouts are handled through pixel_stride.

    Raises:
        ValueError: if a plane buffer is too short for its declared layout
    """
    cw, ch = width // 2, height // 2
    out = []
    for name, plane, w, h in (("Y", y, width, height), ("U", u, cw, ch), ("V", v, cw, ch)):
        arr = read_plane(plane.buffer, w, h, plane.row_stride, plane.pixel_stride)
        if arr is None:
            raise ValueError(
                f"{name} plane unreadable for {w}x{h} "
                f"(row_stride={plane.row_stride}, pixel_stride={plane.pixel_stride})"
            )
        out.append(arr.tobytes())
    return b"".join(out)


def luma_of(frame: RawFrame) -> np.ndarray:
    """(height, width) view of the Y plane of a packed I420 frame."""
    y = np.frombuffer(frame.data, dtype=np.uint8, count=frame.width * frame.height)
    return y.reshape(frame.height, frame.width)


class FrameSource(ABC):
    """One physical camera's frame stream."""

    role: CameraRole

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def read(self) -> RawFrame | None: ...

    @abstractmethod
    def stop(self) -> None: ...


class DeviceCameraSource(FrameSource):
    """OpenCV camera converted to packed I420 and stamped with the monotonic clock."""

    def __init__(self, role: CameraRole, device: int | str, fps: int, width: int, height: int):
        self.role = role
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device)
        else:
            match = re.match(r"^/dev/video(\d+)$", str(self.device))
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)))
            else:
                self.cap = cv2.VideoCapture(str(self.device))

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {self.device}")

    def read(self) -> RawFrame | None:
        if self.cap is None:
            return None
        ok, img = self.cap.read()
        if not ok:
            return None
        ts = time.monotonic_ns()
        h, w = img.shape[:2]
        # I420 needs even dimensions
        img = np.ascontiguousarray(img[: h - h % 2, : w - w % 2])
        h, w = img.shape[:2]
        i420 = cv2.cvtColor(img, cv2.COLOR_BGR2YUV_I420)
        return RawFrame(ts, i420.tobytes(), w, h, self.role)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticFrameSource(FrameSource):
    """Flat gray frames at a fixed rate; clock_offset_ns skews this camera's clock."""

    def __init__(
        self,
        role: CameraRole,
        fps: int = 30,
        width: int = 64,
        height: int = 48,
        luma: int = 128,
        clock_offset_ns: int = 0,
        max_frames: Optional[int] = None,
        clock: Callable[[], int] = time.monotonic_ns,
    ):
        self.role = role
        self.fps = fps
        self.width = width
        self.height = height
        self.clock_offset_ns = clock_offset_ns
        self.max_frames = max_frames
        self.clock = clock
        self.idx = 0
        self._last = 0.0
        y = np.full(width * height, luma, dtype=np.uint8)
        uv = np.full((width // 2) * (height // 2) * 2, 128, dtype=np.uint8)
        self._data = y.tobytes() + uv.tobytes()

    def start(self) -> None:
        self.idx = 0
        self._last = time.monotonic()

    def read(self) -> RawFrame | None:
        if self.max_frames is not None and self.idx >= self.max_frames:
            return None
        if self.fps > 0:
            wait = max(0.0, (1.0 / self.fps) - (time.monotonic() - self._last))
            if wait > 0:
                time.sleep(wait)
        self._last = time.monotonic()
        self.idx += 1
        ts = int(self.clock()) + self.clock_offset_ns
        return RawFrame(ts, self._data, self.width, self.height, self.role)

    def stop(self) -> None:
        return None


@dataclass
class _CaptureRun:
    """State owned by one start() call; a stale opener only ever sees its own run."""

    stop_event: threading.Event = field(default_factory=threading.Event)
    sources: list[FrameSource] = field(default_factory=list)
    producers: list[threading.Thread] = field(default_factory=list)
    failure: Optional[BaseException] = None


class StereoCaptureSession:
    OPEN_JOIN_TIMEOUT = 5.0
    PRODUCER_JOIN_TIMEOUT = 2.0

    def __init__(
        self,
        primary: FrameSource,
        secondary: FrameSource,
        capability_source: Optional[CapabilitySource] = None,
        pairer: Optional[StereoFramePairer] = None,
        config: Optional[OpticsConfig] = None,
    ):
        self.config = config or OpticsConfig()
        self.sources = {CameraRole.PRIMARY: primary, CameraRole.SECONDARY: secondary}
        self.capability_source = capability_source
        pc = self.config.pairing
        self.pairer = pairer or StereoFramePairer(
            tolerance_ns=pc.tolerance_ns,
            max_buffered=pc.max_buffered_frames,
            queue_size=pc.subscriber_queue_size,
        )
        self.calibration: Optional[CalibrationRecord] = None
        # each counter is only written by its own role's producer thread
        self.frames_read = {CameraRole.PRIMARY: 0, CameraRole.SECONDARY: 0}
        self.read_errors = {CameraRole.PRIMARY: 0, CameraRole.SECONDARY: 0}

        self._lock = threading.Lock()
        self._run: Optional[_CaptureRun] = None
        self._start_future: Optional[Future] = None
        self._opener: Optional[threading.Thread] = None

    @property
    def failure(self) -> Optional[BaseException]:
        """Exception that stopped a producer of the current run, if any."""
        run = self._run
        return run.failure if run is not None else None

    @property
    def is_running(self) -> bool:
        run, f = self._run, self._start_future
        return (
            run is not None
            and f is not None
            and f.done()
            and f.exception() is None
            and run.failure is None
            and not run.stop_event.is_set()
        )

    def frame_pairs(self, maxsize: Optional[int] = None):
        return self.pairer.subscribe(maxsize)

    def start(self) -> Future:
        """Open the session asynchronously; the future completes once with the calibration or an error."""
        with self._lock:
            if self._start_future is not None:
                return self._start_future
            run = _CaptureRun()
            future: Future = Future()
            future.set_running_or_notify_cancel()
            self._run = run
            self._start_future = future
            self._opener = threading.Thread(
                target=self._open, args=(run, future), name="stereo-session-open", daemon=True
            )
            self._opener.start()
            return future

    def _open(self, run: _CaptureRun, future: Future) -> None:
        try:
            try:
                calibration = None
                if self.capability_source is not None:
                    resolver = CalibrationGeometryResolver(self.capability_source)
                    calibration = resolver.resolve()
                    size = resolver.capture_size(calibration.logical_camera_id)
                    if size is not None:
                        logger.info("capture size for %s: %dx%d", calibration.logical_camera_id, *size)

                for source in self.sources.values():
                    if run.stop_event.is_set():
                        raise CaptureStartError("Session stopped while starting")
                    source.start()
                    with self._lock:
                        run.sources.append(source)
                        stopped = run.stop_event.is_set()
                    if stopped:
                        # stop() gave up waiting while this source was opening
                        raise CaptureStartError("Session stopped while starting")

                with self._lock:
                    if run.stop_event.is_set():
                        raise CaptureStartError("Session stopped while starting")
                    for role, source in self.sources.items():
                        t = threading.Thread(
                            target=self._produce,
                            args=(run, role, source),
                            name=f"stereo-producer-{role.value}",
                            daemon=True,
                        )
                        run.producers.append(t)
                        t.start()
            except OpticsError:
                raise
            except Exception as exc:
                raise CaptureStartError(f"Unable to start stereo capture: {exc}") from exc
        except Exception as exc:
            logger.warning("stereo capture failed to start: %s", exc)
            self._release(run)
            future.set_exception(exc)
            return

        self.calibration = calibration
        logger.info("stereo capture started")
        future.set_result(calibration)

    def _produce(self, run: _CaptureRun, role: CameraRole, source: FrameSource) -> None:
        try:
            while not run.stop_event.is_set():
                frame = source.read()
                if frame is None:
                    self.read_errors[role] += 1
                    run.stop_event.wait(0.001)
                    continue
                self.frames_read[role] += 1
                self.pairer.submit(role, frame)
        except Exception as exc:
            self.read_errors[role] += 1
            run.failure = exc
            logger.exception("%s producer stopped: frame source failed", role.value)

    def _release(self, run: _CaptureRun) -> None:
        run.stop_event.set()
        with self._lock:
            producers, run.producers = run.producers, []
            sources, run.sources = run.sources, []

        current = threading.current_thread()
        for t in producers:
            if t is not current:
                t.join(timeout=self.PRODUCER_JOIN_TIMEOUT)

        for source in sources:
            try:
                source.stop()
            except Exception as e:
                logger.warning("failed to stop %s source: %s", source.role.value, e)
        with self._lock:
            # a newer start() owns the pairer now
            if self._run is not None and self._run is not run:
                return
        self.pairer.clear()

    def stop(self) -> None:
        """Tear the session down; safe to call repeatedly or before start()."""
        with self._lock:
            run, opener = self._run, self._opener
            if run is None:
                return
            run.stop_event.set()
            self._run = None
            self._start_future = None
            self._opener = None

        if opener is not None and opener is not threading.current_thread():
            opener.join(timeout=self.OPEN_JOIN_TIMEOUT)
            if opener.is_alive():
                logger.warning("session opener still busy; it will release its own sources")

        self._release(run)
        logger.info(
            "stereo capture stopped: primary=%d secondary=%d pairs=%d errors=%d",
            self.frames_read[CameraRole.PRIMARY],
            self.frames_read[CameraRole.SECONDARY],
            self.pairer.stats.pairs_emitted,
            sum(self.read_errors.values()),
        )
