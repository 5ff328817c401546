from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from typing import Optional

from .ip_types import CameraRole, FramePair, PairingStats, RawFrame

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_NS = 10_000_000
DEFAULT_MAX_BUFFERED = 5
DEFAULT_QUEUE_SIZE = 8


class StereoFramePairer:
    """
    Pairs frames from two cameras whose capture timestamps lie within a tolerance.

    Each role keeps a small buffer keyed by timestamp. A submitted frame is
    matched against the closest frame of the opposite role; on a match both
    leave their buffers and one FramePair is published to every subscriber
    queue. Frames that never find a partner are evicted oldest-first once a
    buffer holds more than max_buffered entries, favouring recency over
    completeness.

    All buffer mutation and publishing happens under one lock. Publishing
    never blocks: a full subscriber queue drops the pair for that subscriber.
    """

    def __init__(
        self,
        tolerance_ns: int = DEFAULT_TOLERANCE_NS,
        max_buffered: int = DEFAULT_MAX_BUFFERED,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        if tolerance_ns < 0:
            raise ValueError("tolerance_ns cannot be negative")
        if max_buffered < 1:
            raise ValueError("max_buffered must be at least 1")
        self.tolerance_ns = int(tolerance_ns)
        self.max_buffered = int(max_buffered)
        self.queue_size = int(queue_size)
        self.stats = PairingStats()

        self._lock = threading.Lock()
        self._buffers: dict[CameraRole, dict[int, RawFrame]] = {
            CameraRole.PRIMARY: {},
            CameraRole.SECONDARY: {},
        }
        self._subscribers: list[queue.Queue] = []
        self._closed = False

    def subscribe(self, maxsize: Optional[int] = None) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.queue_size if maxsize is None else maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def pending_count(self, role: CameraRole) -> int:
        with self._lock:
            return len(self._buffers[role])

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, role: CameraRole, frame: RawFrame) -> None:
        if frame.role is not role:
            frame = dataclasses.replace(frame, role=role)

        with self._lock:
            if self._closed:
                logger.debug("pairer closed, dropping %s frame t=%d", role.value, frame.timestamp_ns)
                return

            own = self._buffers[role]
            opposite = self._buffers[role.opposite]

            own[frame.timestamp_ns] = frame
            self._prune(own, role)

            match = self._closest(opposite, frame.timestamp_ns)
            if match is not None and abs(match.timestamp_ns - frame.timestamp_ns) <= self.tolerance_ns:
                del opposite[match.timestamp_ns]
                own.pop(frame.timestamp_ns, None)

                if role is CameraRole.PRIMARY:
                    primary, secondary = frame, match
                else:
                    primary, secondary = match, frame
                pair = FramePair(
                    primary=primary,
                    secondary=secondary,
                    timestamp_ns=max(primary.timestamp_ns, secondary.timestamp_ns),
                )
                self._publish(pair)

            self._prune(opposite, role.opposite)

    def clear(self) -> None:
        with self._lock:
            for buf in self._buffers.values():
                buf.clear()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for buf in self._buffers.values():
                buf.clear()
        logger.info(
            "pairer closed: pairs=%d evicted=%d dropped=%d",
            self.stats.pairs_emitted,
            self.stats.frames_evicted,
            self.stats.pairs_dropped,
        )

    @staticmethod
    def _closest(buf: dict[int, RawFrame], timestamp_ns: int) -> Optional[RawFrame]:
        best: Optional[RawFrame] = None
        best_delta = 0
        # oldest first, so the earliest candidate wins on equal deltas
        for ts in sorted(buf):
            delta = abs(ts - timestamp_ns)
            if best is None or delta < best_delta:
                best = buf[ts]
                best_delta = delta
        return best

    def _prune(self, buf: dict[int, RawFrame], role: CameraRole) -> None:
        while len(buf) > self.max_buffered:
            oldest = min(buf)
            del buf[oldest]
            self.stats.frames_evicted += 1
            logger.debug("evicted unpaired %s frame t=%d", role.value, oldest)

    def _publish(self, pair: FramePair) -> None:
        self.stats.pairs_emitted += 1
        for q in self._subscribers:
            try:
                q.put_nowait(pair)
            except queue.Full:
                self.stats.pairs_dropped += 1
                logger.debug("subscriber queue full, dropped pair t=%d", pair.timestamp_ns)
