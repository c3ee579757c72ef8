from dockwatch.errors import ActionFailed, TransientGatewayError
from dockwatch.model import ContainerStatus, FullList, LogLine
from dockwatch.workers import ListWorker, LogStreamer, LogTail, StatsWorker

from conftest import FakeGateway, make_container, make_sample, wait_for

A = make_container("aaaaaaaaaaaa0001", "alpha")
B = make_container("bbbbbbbbbbbb0002", "beta")
C = make_container("cccccccccccc0003", "gamma", status=ContainerStatus.EXITED)


def drained(store):
    store.apply_pending()
    return True


# --- ListWorker ---

def test_list_worker_publishes_full_list(store):
    gateway = FakeGateway([A, B])
    worker = ListWorker(store, gateway)
    assert worker.poll_once() is True
    store.apply_pending()
    assert len(store) == 2
    assert store.snapshot().last_refresh is not None


def test_list_worker_reports_once_per_outage(store):
    gateway = FakeGateway([A])
    gateway.list_error = TransientGatewayError("connection refused")
    worker = ListWorker(store, gateway, failure_threshold=3)

    for _ in range(6):
        assert worker.poll_once() is False
    assert store.apply_pending() == 1
    error = store.snapshot().error
    assert error.seq == 1
    assert "connection refused" in error.message


def test_list_worker_counter_resets_on_success(store):
    gateway = FakeGateway([A])
    gateway.list_error = TransientGatewayError("down")
    worker = ListWorker(store, gateway, failure_threshold=3)
    worker.poll_once()
    worker.poll_once()
    gateway.list_error = None
    worker.poll_once()
    assert worker.failures == 0

    gateway.list_error = TransientGatewayError("down")
    worker.poll_once()
    worker.poll_once()
    store.apply_pending()
    # Two failures after recovery stay below the threshold
    assert store.snapshot().error is None


def test_list_worker_thread_stops(store):
    gateway = FakeGateway([A])
    worker = ListWorker(store, gateway, interval=0.01)
    worker.start()
    assert wait_for(lambda: drained(store) and len(store) == 1)
    worker.stop()
    worker.join(timeout=1.0)
    assert not worker.is_alive()


def test_force_refresh_wakes_the_worker(store):
    gateway = FakeGateway([A])
    worker = ListWorker(store, gateway, interval=60.0)
    worker.start()
    try:
        assert wait_for(lambda: len(gateway.calls) >= 1)
        worker.force_refresh()
        assert wait_for(lambda: len(gateway.calls) >= 2)
    finally:
        worker.stop()
        worker.join(timeout=1.0)


# --- StatsWorker ---

def test_stats_worker_samples_running_containers_only(store):
    gateway = FakeGateway([A, B, C])
    gateway.samples = {A.id: make_sample(cpu=10.0), B.id: make_sample(cpu=20.0),
                       C.id: make_sample(cpu=99.0)}
    store.apply(FullList((A, B, C)))
    worker = StatsWorker(store, gateway)
    try:
        assert worker.poll_once() == 2
    finally:
        worker.stop()
    store.apply_pending()
    snap = store.snapshot()
    assert snap.find(A.id).latest.cpu_percent == 10.0
    assert snap.find(B.id).latest.cpu_percent == 20.0
    assert snap.find(C.id).latest is None


def test_stats_failure_for_one_container_does_not_block_others(store):
    gateway = FakeGateway([A, B])
    gateway.samples = {A.id: make_sample(cpu=5.0)}  # B raises
    store.apply(FullList((A, B)))
    worker = StatsWorker(store, gateway)
    try:
        assert worker.poll_once() == 1
    finally:
        worker.stop()
    store.apply_pending()
    assert store.snapshot().find(A.id).latest.cpu_percent == 5.0


def test_stats_worker_with_nothing_running(store):
    worker = StatsWorker(store, FakeGateway())
    try:
        assert worker.poll_once() == 0
    finally:
        worker.stop()


# --- LogStreamer ---

def test_log_streamer_publishes_lines_for_focus(store):
    gateway = FakeGateway([A])
    store.apply(FullList((A,)))
    streamer = LogStreamer(store, gateway, retry_delay=0.01)
    try:
        assert streamer.focus(A.id) is True
        assert wait_for(lambda: gateway.latest_stream(A.id) is not None)
        gateway.latest_stream(A.id).push(LogLine(1.0, "hello"))
        assert wait_for(lambda: drained(store) and len(store.snapshot().logs) == 1)
        snap = store.snapshot()
        assert snap.log_focus == A.id
        assert snap.logs[0].text == "hello"
    finally:
        streamer.stop()


def test_refocus_cancels_previous_tail(store):
    gateway = FakeGateway([A, B])
    store.apply(FullList((A, B)))
    streamer = LogStreamer(store, gateway, retry_delay=0.01)
    try:
        streamer.focus(A.id)
        assert wait_for(lambda: gateway.latest_stream(A.id) is not None)
        old_tail = streamer.tail
        stream_a = gateway.latest_stream(A.id)

        streamer.focus(B.id)
        assert old_tail.cancelled
        assert wait_for(lambda: stream_a.closed)
        assert streamer.generation == 2
        # A cancelled tail never publishes again
        assert old_tail.emit(LogLine(2.0, "late")) is False

        assert wait_for(lambda: gateway.latest_stream(B.id) is not None)
        gateway.latest_stream(B.id).push(LogLine(3.0, "from b"))
        assert wait_for(lambda: drained(store) and len(store.snapshot().logs) == 1)
        assert [line.text for line in store.snapshot().logs] == ["from b"]
        old_tail.join(timeout=1.0)
        assert not old_tail.is_alive()
    finally:
        streamer.stop()


def test_focus_same_container_is_noop(store):
    gateway = FakeGateway([A])
    streamer = LogStreamer(store, gateway)
    try:
        assert streamer.focus(A.id) is True
        assert streamer.focus(A.id) is False
        assert streamer.generation == 1
    finally:
        streamer.stop()


def test_focus_none_stops_tailing(store):
    gateway = FakeGateway([A])
    streamer = LogStreamer(store, gateway)
    streamer.focus(A.id)
    tail = streamer.tail
    streamer.focus(None)
    assert tail.cancelled
    assert streamer.tail is None
    assert streamer.focus_id is None


def test_tail_reopens_after_stream_ends(store):
    gateway = FakeGateway([A])
    store.apply(FullList((A,)))
    tail = LogTail(store, gateway, A.id, generation=0, retry_delay=0.01, since=0.0)
    tail.start()
    try:
        assert wait_for(lambda: gateway.latest_stream(A.id) is not None)
        first = gateway.latest_stream(A.id)
        first.push(LogLine(5.0, "one"))
        first.end()
        assert wait_for(lambda: len(gateway.streams[A.id]) >= 2)
        # Resumes just after the last line seen
        assert tail.since > 5.0
    finally:
        tail.cancel()
        tail.join(timeout=1.0)


class _FailingGateway(FakeGateway):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.attempts = 0

    def stream_logs(self, container_id, since=None):
        self.attempts += 1
        if self.attempts == 1:
            raise ActionFailed("no such container")
        return super().stream_logs(container_id, since)


def test_tail_retries_after_gateway_error(store):
    gateway = _FailingGateway([A])
    tail = LogTail(store, gateway, A.id, generation=1, retry_delay=0.01)
    tail.start()
    try:
        assert wait_for(lambda: gateway.latest_stream(A.id) is not None)
        assert gateway.attempts >= 2
    finally:
        tail.cancel()
        tail.join(timeout=1.0)
