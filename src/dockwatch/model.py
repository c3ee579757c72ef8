"""
Data models and structures for dockwatch application state.

This module defines the dataclasses shared by the store, the background
workers, the dispatcher and the renderer:
  - Container / MetricsSample / LogLine: what the daemon tells us
  - Update messages: what workers and the dispatcher publish to the store
  - Snapshot / ContainerView: what the render loop reads once per frame
  - UI modes / UIState: what the render loop owns

Key Points:
  - Everything crossing a thread boundary is frozen (frozen=True) and uses
    tuples, so a snapshot can be handed to the renderer without copying again
  - UIState is the one mutable structure; only the render loop touches it
  - UI modes are separate classes so "confirming delete while in exec" cannot
    be expressed
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


class ContainerStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ContainerStatus":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def order(self) -> int:
        """Sort rank, live containers first."""
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [
    ContainerStatus.RUNNING,
    ContainerStatus.PAUSED,
    ContainerStatus.RESTARTING,
    ContainerStatus.CREATED,
    ContainerStatus.REMOVING,
    ContainerStatus.EXITED,
    ContainerStatus.DEAD,
    ContainerStatus.UNKNOWN,
]


class Action(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    DELETE = "delete"
    EXEC = "exec"


@dataclass(frozen=True)
class Container:
    id: str
    name: str
    image: str
    status: ContainerStatus
    created: float = 0.0
    project: str = "standalone"

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def is_running(self) -> bool:
        return self.status is ContainerStatus.RUNNING


@dataclass(frozen=True)
class MetricsSample:
    timestamp: float
    cpu_percent: float
    memory_bytes: int
    memory_limit_bytes: int
    rx_bytes: int = 0
    tx_bytes: int = 0

    @property
    def memory_percent(self) -> float:
        if self.memory_limit_bytes <= 0:
            return 0.0
        return self.memory_bytes / self.memory_limit_bytes * 100.0


@dataclass(frozen=True)
class LogLine:
    timestamp: float
    text: str
    stream: str = "stdout"  # stdout or stderr


# --- Store updates ---

@dataclass(frozen=True)
class FullList:
    containers: Tuple[Container, ...]
    received_at: float = 0.0


@dataclass(frozen=True)
class StatsSample:
    container_id: str
    sample: MetricsSample


@dataclass(frozen=True)
class LogAppend:
    container_id: str
    line: LogLine
    generation: int


@dataclass(frozen=True)
class LogFocus:
    container_id: Optional[str]
    generation: int


@dataclass(frozen=True)
class ActionPending:
    container_id: str
    action: Action


@dataclass(frozen=True)
class ActionOutcome:
    action: Action
    ok: bool
    reason: str = ""


@dataclass(frozen=True)
class ActionResult:
    container_id: str
    outcome: ActionOutcome


@dataclass(frozen=True)
class ErrorReport:
    message: str


Update = Union[FullList, StatsSample, LogAppend, LogFocus, ActionPending, ActionResult, ErrorReport]


# --- Snapshot ---

@dataclass(frozen=True)
class ErrorInfo:
    seq: int
    message: str


@dataclass(frozen=True)
class ContainerView:
    container: Container
    metrics: Tuple[MetricsSample, ...] = ()
    pending: Optional[Action] = None

    @property
    def latest(self) -> Optional[MetricsSample]:
        return self.metrics[-1] if self.metrics else None


@dataclass(frozen=True)
class Snapshot:
    containers: Tuple[ContainerView, ...] = ()
    logs: Tuple[LogLine, ...] = ()
    log_focus: Optional[str] = None
    error: Optional[ErrorInfo] = None
    last_refresh: Optional[float] = None  # wall clock of last successful list
    version: int = 0

    def find(self, container_id: Optional[str]) -> Optional[ContainerView]:
        for view in self.containers:
            if view.container.id == container_id:
                return view
        return None


# --- UI state ---

@dataclass(frozen=True)
class NormalMode:
    pass


@dataclass(frozen=True)
class ConfirmDeleteMode:
    container_id: str
    name: str


@dataclass(frozen=True)
class ErrorMode:
    message: str


@dataclass(frozen=True)
class HelpMode:
    pass


@dataclass(frozen=True)
class ExecMode:
    container_id: str


UIMode = Union[NormalMode, ConfirmDeleteMode, ErrorMode, HelpMode, ExecMode]

SORT_KEYS = ("name", "status", "cpu", "memory", "image", "id", "rx", "tx")


@dataclass
class UIState:
    mode: UIMode = field(default_factory=NormalMode)
    selected_index: int = 0
    selected_id: Optional[str] = None
    sort_key: str = "name"  # one of SORT_KEYS
    sort_ascending: bool = True
    filter_text: str = ""
    is_filtering: bool = False
    focused_pane: str = "list"  # "list" or "logs"
    logs_scroll_offset: Optional[int] = None  # None follows the tail
    seen_error_seq: int = 0
    scroll_offset: int = 0
    mouse_capture: bool = False
    info: Optional[str] = None  # transient footer notice
    info_until: float = 0.0
