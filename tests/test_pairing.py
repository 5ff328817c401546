import queue
import threading

import pytest

from wound_optics.ip_types import CameraRole
from wound_optics.pairing import StereoFramePairer

MS = 1_000_000
P = CameraRole.PRIMARY
S = CameraRole.SECONDARY


def _drain(q: queue.Queue) -> list:
    out = []
    while True:
        try:
            out.append(q.get_nowait())
        except queue.Empty:
            return out


@pytest.fixture
def pairer():
    return StereoFramePairer()


class TestMatching:
    def test_frames_within_tolerance_pair(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(5 * MS, S))

        pairs = _drain(q)
        assert len(pairs) == 1
        pair = pairs[0]
        assert pair.primary.timestamp_ns == 0
        assert pair.secondary.timestamp_ns == 5 * MS
        assert pair.timestamp_ns == 5 * MS
        assert pairer.pending_count(P) == 0
        assert pairer.pending_count(S) == 0

    def test_exact_tolerance_is_inclusive(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(S, make_frame(100 * MS, S))
        pairer.submit(P, make_frame(110 * MS, P))
        assert len(_drain(q)) == 1

    def test_frames_outside_tolerance_stay_buffered(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(50 * MS, S))

        assert _drain(q) == []
        assert pairer.pending_count(P) == 1
        assert pairer.pending_count(S) == 1

    def test_roles_are_assigned_by_submitting_side(self, pairer, make_frame):
        """A frame submitted as SECONDARY ends up in pair.secondary even if built as PRIMARY."""
        q = pairer.subscribe()
        pairer.submit(S, make_frame(3 * MS, P))
        pairer.submit(P, make_frame(1 * MS, P))

        (pair,) = _drain(q)
        assert pair.primary.role is P
        assert pair.secondary.role is S
        assert pair.secondary.timestamp_ns == 3 * MS
        assert pair.timestamp_ns == 3 * MS

    def test_equal_deltas_pick_oldest_candidate(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.submit(P, make_frame(10 * MS, P))
        pairer.submit(S, make_frame(5 * MS, S))

        (pair,) = _drain(q)
        assert pair.primary.timestamp_ns == 0
        assert pairer.pending_count(P) == 1

    def test_closest_candidate_wins(self, pairer, make_frame):
        q = pairer.subscribe()
        for ts in (0, 4 * MS, 8 * MS):
            pairer.submit(S, make_frame(ts, S))
        pairer.submit(P, make_frame(7 * MS, P))

        (pair,) = _drain(q)
        assert pair.secondary.timestamp_ns == 8 * MS

    def test_each_frame_is_used_at_most_once(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(1 * MS, S))
        pairer.submit(S, make_frame(2 * MS, S))

        assert len(_drain(q)) == 1
        assert pairer.pending_count(S) == 1


class TestEviction:
    def test_unmatched_frame_is_evicted_after_newer_frames(self, pairer, make_frame):
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(50 * MS, S))

        # five newer primaries far from any secondary push the first one out
        for i in range(1, 6):
            pairer.submit(P, make_frame(i * 1000 * MS, P))

        assert pairer.pending_count(P) == 5
        assert pairer.stats.frames_evicted == 1

        q = pairer.subscribe()
        pairer.submit(S, make_frame(1 * MS, S))
        assert _drain(q) == []

    def test_unmatched_secondary_is_evicted_after_newer_secondaries(self, pairer, make_frame):
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(50 * MS, S))

        for i in range(1, 6):
            pairer.submit(S, make_frame(i * 1000 * MS, S))

        assert pairer.pending_count(S) == 5
        assert pairer.stats.frames_evicted == 1

        q = pairer.subscribe()
        pairer.submit(P, make_frame(50 * MS, P))
        assert _drain(q) == []

    def test_buffers_never_exceed_capacity(self, make_frame):
        pairer = StereoFramePairer(max_buffered=3)
        for i in range(20):
            pairer.submit(P, make_frame(i * 100 * MS, P))
            pairer.submit(S, make_frame(i * 100 * MS + 50 * MS, S))
            assert pairer.pending_count(P) <= 3
            assert pairer.pending_count(S) <= 3

    def test_duplicate_timestamp_replaces_buffered_frame(self, pairer, make_frame):
        pairer.submit(P, make_frame(0, P, width=4))
        pairer.submit(P, make_frame(0, P, width=8))
        assert pairer.pending_count(P) == 1

        q = pairer.subscribe()
        pairer.submit(S, make_frame(0, S))
        (pair,) = _drain(q)
        assert pair.primary.width == 8


class TestSubscribers:
    def test_every_subscriber_receives_each_pair(self, pairer, make_frame):
        a, b = pairer.subscribe(), pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(0, S))
        assert len(_drain(a)) == 1
        assert len(_drain(b)) == 1

    def test_full_queue_drops_without_blocking(self, pairer, make_frame):
        slow = pairer.subscribe(maxsize=1)
        fast = pairer.subscribe(maxsize=0)
        for i in range(3):
            pairer.submit(P, make_frame(i * 100 * MS, P))
            pairer.submit(S, make_frame(i * 100 * MS, S))

        assert len(_drain(slow)) == 1
        assert len(_drain(fast)) == 3
        assert pairer.stats.pairs_emitted == 3
        assert pairer.stats.pairs_dropped == 2

    def test_unsubscribed_queue_receives_nothing(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.unsubscribe(q)
        pairer.unsubscribe(q)
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(0, S))
        assert _drain(q) == []
        assert pairer.stats.pairs_emitted == 1


class TestLifecycle:
    def test_clear_empties_buffers(self, pairer, make_frame):
        pairer.submit(P, make_frame(0, P))
        pairer.submit(S, make_frame(90 * MS, S))
        pairer.clear()
        assert pairer.pending_count(P) == 0
        assert pairer.pending_count(S) == 0

    def test_close_is_idempotent_and_ignores_later_frames(self, pairer, make_frame):
        q = pairer.subscribe()
        pairer.submit(P, make_frame(0, P))
        pairer.close()
        pairer.close()

        pairer.submit(S, make_frame(0, S))
        assert pairer.closed
        assert _drain(q) == []
        assert pairer.pending_count(S) == 0

    @pytest.mark.parametrize(
        "kwargs", [{"tolerance_ns": -1}, {"max_buffered": 0}]
    )
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            StereoFramePairer(**kwargs)


def test_concurrent_producers_pair_every_frame_once(make_frame):
    """Two producer threads at ~30fps with a 1ms offset pair every frame exactly once."""
    n = 300
    pairer = StereoFramePairer(max_buffered=n)
    q = pairer.subscribe(maxsize=0)
    start = threading.Barrier(2)

    def produce(role, offset_ns):
        start.wait()
        for i in range(n):
            pairer.submit(role, make_frame(i * 33 * MS + offset_ns, role))

    threads = [
        threading.Thread(target=produce, args=(P, 0)),
        threading.Thread(target=produce, args=(S, 1 * MS)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    pairs = _drain(q)
    assert len(pairs) == n
    primaries = {p.primary.timestamp_ns for p in pairs}
    secondaries = {p.secondary.timestamp_ns for p in pairs}
    assert len(primaries) == n
    assert len(secondaries) == n
    for p in pairs:
        assert p.secondary.timestamp_ns - p.primary.timestamp_ns == 1 * MS
