"""Shared test fixtures for dockwatch."""

import queue
import threading
import time
from collections import deque
from typing import Dict, List, Optional

import pytest

from dockwatch.backend import LogStream, RuntimeGateway
from dockwatch.errors import TransientGatewayError
from dockwatch.model import Action, Container, ContainerStatus, LogLine, MetricsSample
from dockwatch.state import ContainerStateStore
from dockwatch.terminal import KeyEvent, MouseEvent, Terminal


def make_container(cid: str = "aaaaaaaaaaaa0001", name: str = "web",
                   status: ContainerStatus = ContainerStatus.RUNNING,
                   image: str = "nginx:latest", project: str = "standalone") -> Container:
    return Container(id=cid, name=name, image=image, status=status, created=0.0, project=project)


def make_sample(cpu: float = 1.0, memory: int = 1000, limit: int = 10000,
                timestamp: Optional[float] = None) -> MetricsSample:
    return MetricsSample(
        timestamp=timestamp if timestamp is not None else time.time(),
        cpu_percent=cpu,
        memory_bytes=memory,
        memory_limit_bytes=limit,
    )


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll until predicate() is truthy; used for tests with real threads."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class FakeLogStream(LogStream):
    _END = object()

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self.closed = False

    def push(self, line: LogLine) -> None:
        self._queue.put(line)

    def end(self) -> None:
        self._queue.put(self._END)

    def __next__(self) -> LogLine:
        item = self._queue.get()
        if item is self._END or self.closed:
            raise StopIteration
        return item

    def close(self) -> None:
        self.closed = True
        self._queue.put(self._END)


class FakeGateway(RuntimeGateway):
    """In-memory daemon: lifecycle calls change the listed status."""

    def __init__(self, containers: Optional[List[Container]] = None):
        self.containers: List[Container] = list(containers or [])
        self.samples: Dict[str, MetricsSample] = {}
        self.list_error: Optional[Exception] = None
        self.stats_error: Optional[Exception] = None
        self.lifecycle_error: Optional[Exception] = None
        self.exec_error: Optional[Exception] = None
        self.exec_code = 0
        self.calls: List[tuple] = []
        self.streams: Dict[str, List[FakeLogStream]] = {}
        self._lock = threading.Lock()

    def ping(self) -> None:
        self.calls.append(("ping",))

    def list_containers(self) -> List[Container]:
        self.calls.append(("list",))
        if self.list_error is not None:
            raise self.list_error
        return list(self.containers)

    def stats(self, container_id: str) -> MetricsSample:
        if self.stats_error is not None:
            raise self.stats_error
        if container_id not in self.samples:
            raise TransientGatewayError(f"no stats for {container_id}")
        return self.samples[container_id]

    def stream_logs(self, container_id: str, since: Optional[float] = None) -> LogStream:
        stream = FakeLogStream()
        with self._lock:
            self.streams.setdefault(container_id, []).append(stream)
        return stream

    def latest_stream(self, container_id: str) -> Optional[FakeLogStream]:
        with self._lock:
            streams = self.streams.get(container_id) or []
            return streams[-1] if streams else None

    def lifecycle(self, container_id: str, action: Action) -> None:
        self.calls.append((action.value, container_id))
        if self.lifecycle_error is not None:
            raise self.lifecycle_error
        new_status = {
            Action.START: ContainerStatus.RUNNING,
            Action.STOP: ContainerStatus.EXITED,
            Action.RESTART: ContainerStatus.RUNNING,
            Action.PAUSE: ContainerStatus.PAUSED,
            Action.UNPAUSE: ContainerStatus.RUNNING,
        }
        if action is Action.DELETE:
            self.containers = [c for c in self.containers if c.id != container_id]
            return
        self.containers = [
            Container(c.id, c.name, c.image, new_status[action], c.created, c.project)
            if c.id == container_id else c
            for c in self.containers
        ]

    def exec(self, container_id: str) -> int:
        self.calls.append(("exec", container_id))
        if self.exec_error is not None:
            raise self.exec_error
        return self.exec_code


class FakeTerminal(Terminal):
    """Scripted key events; records every draw and exec handoff in order."""

    def __init__(self, width: int = 100, height: int = 30):
        self.width = width
        self.height = height
        self.events = deque()
        self.frames = []
        self.log: List[str] = []
        self.mouse_capture = False
        self.refuse_mouse = False

    def press(self, *keys: str) -> None:
        for key in keys:
            self.events.append(KeyEvent(key))

    def click(self, x: int, y: int, kind: str = "click") -> None:
        self.events.append(MouseEvent(x, y, kind))

    def poll_event(self, timeout: float):
        if self.events:
            return self.events.popleft()
        return None

    def draw(self, frame) -> None:
        self.frames.append(frame)
        self.log.append("draw")

    def size(self):
        return self.width, self.height

    def set_mouse_capture(self, enabled: bool) -> bool:
        if self.refuse_mouse:
            return False
        self.mouse_capture = enabled
        return True

    def enter_exec_mode(self) -> None:
        self.log.append("enter_exec")

    def leave_exec_mode(self) -> None:
        self.log.append("leave_exec")

    @property
    def last_text(self) -> str:
        return self.frames[-1].text() if self.frames else ""


@pytest.fixture
def store() -> ContainerStateStore:
    return ContainerStateStore(metrics_capacity=5, log_capacity=10)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def terminal() -> FakeTerminal:
    return FakeTerminal()
