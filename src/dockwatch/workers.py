"""
Background synchronizers that keep the state store current.

Architecture:
  - ListWorker: polls the container list (1s default) and publishes FullList
  - StatsWorker: samples CPU/RAM of running containers (2s default), in
    parallel on a small thread pool, and publishes StatsSample
  - LogStreamer / LogTail: follows the logs of the one container in focus and
    publishes LogAppend per line; refocusing cancels the old tail first

Thread Safety:
  - Workers never touch the terminal and never write to the store; they only
    call store.publish(), which enqueues
  - Each worker fails independently: a failed call is logged and the next
    cycle retries

Worker Lifecycle:
  - Start with start(), stop with stop() (sets an Event, so sleeping workers
    wake up immediately), join() on shutdown
  - poll_once() runs a single cycle synchronously (used by tests)
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from .backend import RuntimeGateway
from .errors import GatewayError, StreamClosed
from .model import ErrorReport, FullList, LogAppend, LogFocus, LogLine, StatsSample
from .state import ContainerStateStore

logger = logging.getLogger(__name__)


class ListWorker(threading.Thread):
    def __init__(self, store: ContainerStateStore, gateway: RuntimeGateway,
                 interval: float = 1.0, failure_threshold: int = 3):
        super().__init__(daemon=True, name="list-worker")
        self.store = store
        self.gateway = gateway
        self.interval = interval
        self.failure_threshold = failure_threshold
        self.failures = 0
        self._stop_event = threading.Event()
        self._wake = threading.Event()

    def force_refresh(self) -> None:
        """Poll again now instead of waiting out the interval."""
        self._wake.set()

    def poll_once(self) -> bool:
        try:
            containers = self.gateway.list_containers()
        except GatewayError as e:
            self.failures += 1
            logger.warning(f"Container list failed ({self.failures} in a row): {e}")
            # Report once per outage, not on every failed poll
            if self.failures == self.failure_threshold:
                self.store.publish(ErrorReport(f"Docker daemon unreachable: {e}"))
            return False
        if self.failures >= self.failure_threshold:
            logger.info("Container list recovered")
        self.failures = 0
        self.store.publish(FullList(tuple(containers), received_at=time.time()))
        return True

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Unexpected error in list worker")
            self._wake.wait(self.interval)
            self._wake.clear()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake.set()


class StatsWorker(threading.Thread):
    def __init__(self, store: ContainerStateStore, gateway: RuntimeGateway,
                 interval: float = 2.0, max_workers: int = 4):
        super().__init__(daemon=True, name="stats-worker")
        self.store = store
        self.gateway = gateway
        self.interval = interval
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stats")
        self._stop_event = threading.Event()

    def poll_once(self) -> int:
        """Request one sample per running container; returns how many arrived."""
        running = self.store.running_ids()
        if not running:
            return 0
        futures = {self._executor.submit(self.gateway.stats, cid): cid for cid in running}
        published = 0
        for future in as_completed(futures):
            container_id = futures[future]
            try:
                sample = future.result()
            except GatewayError as e:
                logger.debug(f"Stats for {container_id[:12]} failed: {e}")
                continue
            self.store.publish(StatsSample(container_id, sample))
            published += 1
        return published

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    self.poll_once()
                except Exception:
                    logger.exception("Unexpected error in stats worker")
                self._stop_event.wait(self.interval)
        finally:
            self._executor.shutdown(wait=False)

    def stop(self) -> None:
        self._stop_event.set()
        if not self.is_alive():
            self._executor.shutdown(wait=False)


class LogTail(threading.Thread):
    """Follows one container's logs until cancelled.

    A stream that ends or fails is reopened after a backoff, resuming just
    after the last line seen.
    """

    def __init__(self, store: ContainerStateStore, gateway: RuntimeGateway,
                 container_id: str, generation: int, retry_delay: float = 1.0,
                 max_retry_delay: float = 10.0, since: Optional[float] = None):
        super().__init__(daemon=True, name=f"log-tail-{container_id[:12]}")
        self.store = store
        self.gateway = gateway
        self.container_id = container_id
        self.generation = generation
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.since = since if since is not None else time.time()
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._stream = None
        self._received = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            stream = self._stream
        if stream is not None:
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Closing log stream for {self.container_id[:12]} failed: {e}")

    def emit(self, line: LogLine) -> bool:
        """Publish a line unless this tail has been cancelled."""
        if self._cancelled.is_set():
            return False
        self.store.publish(LogAppend(self.container_id, line, self.generation))
        return True

    def _follow_once(self) -> None:
        stream = self.gateway.stream_logs(self.container_id, self.since)
        with self._lock:
            self._stream = stream
        try:
            if self._cancelled.is_set():
                return
            for line in stream:
                if not self.emit(line):
                    break
                self._received += 1
                self.since = line.timestamp + 0.000001
            else:
                if not self._cancelled.is_set():
                    raise StreamClosed(f"log stream for {self.container_id[:12]} ended")
        finally:
            with self._lock:
                self._stream = None
            stream.close()

    def run(self) -> None:
        delay = self.retry_delay
        while not self._cancelled.is_set():
            self._received = 0
            try:
                self._follow_once()
            except StreamClosed as e:
                logger.debug(f"{e}; reopening")
            except GatewayError as e:
                logger.info(f"Log stream for {self.container_id[:12]} failed: {e}")
            except Exception:
                logger.exception(f"Unexpected error tailing {self.container_id[:12]}")
            if self._received:
                delay = self.retry_delay
            self._cancelled.wait(delay)
            if not self._received:
                delay = min(delay * 2, self.max_retry_delay)


class LogStreamer:
    """Owns the single active LogTail and the focus generation counter."""

    def __init__(self, store: ContainerStateStore, gateway: RuntimeGateway,
                 retry_delay: float = 1.0):
        self.store = store
        self.gateway = gateway
        self.retry_delay = retry_delay
        self._lock = threading.Lock()
        self._tail: Optional[LogTail] = None
        self._focus: Optional[str] = None
        self._generation = 0

    @property
    def focus_id(self) -> Optional[str]:
        return self._focus

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def tail(self) -> Optional[LogTail]:
        return self._tail

    def focus(self, container_id: Optional[str]) -> bool:
        """Point the log stream at a container; returns False if unchanged."""
        with self._lock:
            if container_id == self._focus:
                return False
            if self._tail is not None:
                self._tail.cancel()
            self._generation += 1
            self._focus = container_id
            self.store.publish(LogFocus(container_id, self._generation))
            if container_id is None:
                self._tail = None
            else:
                self._tail = LogTail(self.store, self.gateway, container_id,
                                     self._generation, retry_delay=self.retry_delay)
                self._tail.start()
            logger.debug(f"Log focus -> {container_id} (generation {self._generation})")
            return True

    def stop(self, timeout: float = 1.0) -> None:
        with self._lock:
            tail, self._tail = self._tail, None
            self._focus = None
        if tail is not None:
            tail.cancel()
            tail.join(timeout)
