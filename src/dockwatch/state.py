"""
Container state store and its update channel.

This module holds the authoritative in-memory model of the daemon's containers
and the single channel every background task publishes into.

Architecture:
  - Workers and the dispatcher call publish(update); it only enqueues
  - The render loop calls apply_pending() once per iteration, so exactly one
    thread ever mutates the store
  - snapshot() copies everything a frame needs under the lock and returns
    frozen dataclasses, so a frame never sees a half-applied update

Reconciliation (FullList):
  - Known ids are updated in place, new ids inserted
  - Ids missing from a poll collect a strike; at purge_strikes they are purged
    together with their metrics and log buffers
  - Ids with an action in flight are not struck; a confirmed delete purges the
    id as soon as a poll omits it, or reports an error once delete_timeout
    has passed; that deadline is checked on every apply_pending() call

Stale data (stats or log lines for a purged id, log lines from a cancelled
tail) is dropped silently. A failed action result is always reported, even
when its container has been purged meanwhile.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .buffers import HistoryBuffer
from .model import (
    Action, ActionPending, ActionResult, Container, ContainerStatus, ContainerView,
    ErrorInfo, ErrorReport, FullList, LogAppend, LogFocus, Snapshot, StatsSample, Update,
)

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    container: Container
    unseen: int = 0


@dataclass
class _Pending:
    action: Action
    deadline: Optional[float] = None  # set once a delete has been acknowledged


class ContainerStateStore:
    """Single-writer container table fed through a queue."""

    def __init__(self, metrics_capacity: int = 60, log_capacity: int = 1000,
                 purge_strikes: int = 2, delete_timeout: float = 10.0,
                 clock: Callable[[], float] = time.monotonic):
        if purge_strikes < 1:
            raise ValueError("purge_strikes must be at least 1")
        self._lock = threading.RLock()
        self._channel: "queue.Queue[Update]" = queue.Queue()
        self._entries: Dict[str, _Entry] = {}
        self._metrics = HistoryBuffer(metrics_capacity)
        self._logs = HistoryBuffer(log_capacity)
        self._pending: Dict[str, _Pending] = {}
        self._purge_strikes = purge_strikes
        self._delete_timeout = delete_timeout
        self._clock = clock
        self._log_focus: Optional[str] = None
        self._log_generation = 0
        self._error: Optional[ErrorInfo] = None
        self._error_seq = 0
        self._last_refresh: Optional[float] = None
        self._version = 0

    # --- channel ---

    def publish(self, update: Update) -> None:
        """Enqueue an update. Safe to call from any thread."""
        self._channel.put(update)

    def apply_pending(self, limit: Optional[int] = None) -> int:
        """Apply queued updates in FIFO order without blocking."""
        applied = 0
        while limit is None or applied < limit:
            try:
                update = self._channel.get_nowait()
            except queue.Empty:
                break
            self.apply(update)
            applied += 1
        with self._lock:
            if self._expire_deletes():
                self._version += 1
        return applied

    # --- writes ---

    def apply(self, update: Update) -> None:
        with self._lock:
            if isinstance(update, FullList):
                changed = self._apply_full_list(update)
            elif isinstance(update, StatsSample):
                changed = self._apply_stats(update)
            elif isinstance(update, LogAppend):
                changed = self._apply_log(update)
            elif isinstance(update, LogFocus):
                changed = self._apply_log_focus(update)
            elif isinstance(update, ActionPending):
                changed = self._apply_action_pending(update)
            elif isinstance(update, ActionResult):
                changed = self._apply_action_result(update)
            elif isinstance(update, ErrorReport):
                self._set_error(update.message)
                changed = True
            else:
                raise TypeError(f"Unsupported update: {update!r}")
            if changed:
                self._version += 1

    def _apply_full_list(self, update: FullList) -> bool:
        seen = set()
        for container in update.containers:
            seen.add(container.id)
            entry = self._entries.get(container.id)
            if entry is None:
                self._entries[container.id] = _Entry(container)
            else:
                entry.container = container
                entry.unseen = 0

        for container_id in list(self._entries):
            if container_id in seen:
                continue
            pending = self._pending.get(container_id)
            if pending is not None and pending.action is Action.DELETE:
                logger.debug(f"Container {container_id} removed after delete")
                self._purge(container_id)
                continue
            if pending is not None:
                continue
            entry = self._entries[container_id]
            entry.unseen += 1
            if entry.unseen >= self._purge_strikes:
                logger.debug(f"Purging {container_id} after {entry.unseen} missed polls")
                self._purge(container_id)

        self._last_refresh = update.received_at or time.time()
        return True

    def _expire_deletes(self) -> bool:
        # Assumes lock is held
        now = self._clock()
        expired = [cid for cid, pending in self._pending.items()
                   if pending.deadline is not None and now >= pending.deadline]
        for container_id in expired:
            del self._pending[container_id]
            container = self._entries[container_id].container
            self._set_error(f"Delete of {container.name} ({container.short_id}) timed out")
        return bool(expired)

    def _apply_stats(self, update: StatsSample) -> bool:
        if update.container_id not in self._entries:
            return False
        self._metrics.push(update.container_id, update.sample)
        return True

    def _apply_log(self, update: LogAppend) -> bool:
        if update.generation != self._log_generation or update.container_id != self._log_focus:
            return False
        if update.container_id not in self._entries:
            return False
        self._logs.push(update.container_id, update.line)
        return True

    def _apply_log_focus(self, update: LogFocus) -> bool:
        if update.generation < self._log_generation:
            return False
        if self._log_focus is not None:
            self._logs.discard(self._log_focus)
        self._log_focus = update.container_id
        self._log_generation = update.generation
        if update.container_id is not None:
            self._logs.clear(update.container_id)
        return True

    def _apply_action_pending(self, update: ActionPending) -> bool:
        if update.container_id not in self._entries:
            return False
        self._pending[update.container_id] = _Pending(update.action)
        return True

    def _apply_action_result(self, update: ActionResult) -> bool:
        entry = self._entries.get(update.container_id)
        outcome = update.outcome
        if not outcome.ok:
            self._pending.pop(update.container_id, None)
            short_id = update.container_id[:12]
            target = f"{entry.container.name} ({short_id})" if entry else short_id
            self._set_error(f"{outcome.action.value.capitalize()} {target} failed: {outcome.reason}")
            return True
        if entry is None:
            return False
        if outcome.action is Action.DELETE:
            self._pending[update.container_id] = _Pending(
                Action.DELETE, deadline=self._clock() + self._delete_timeout
            )
        else:
            self._pending.pop(update.container_id, None)
        return True

    def _set_error(self, message: str) -> None:
        # Assumes lock is held
        self._error_seq += 1
        self._error = ErrorInfo(self._error_seq, message)
        logger.warning(message)

    def _purge(self, container_id: str) -> None:
        self._entries.pop(container_id, None)
        self._pending.pop(container_id, None)
        self._metrics.discard(container_id)
        self._logs.discard(container_id)

    # --- reads ---

    def snapshot(self) -> Snapshot:
        with self._lock:
            views = tuple(
                ContainerView(
                    container=entry.container,
                    metrics=tuple(self._metrics.read(container_id)),
                    pending=self._pending[container_id].action if container_id in self._pending else None,
                )
                for container_id, entry in self._entries.items()
            )
            logs = tuple(self._logs.read(self._log_focus)) if self._log_focus else ()
            return Snapshot(
                containers=views,
                logs=logs,
                log_focus=self._log_focus,
                error=self._error,
                last_refresh=self._last_refresh,
                version=self._version,
            )

    def get(self, container_id: str) -> Optional[Container]:
        with self._lock:
            entry = self._entries.get(container_id)
            return entry.container if entry else None

    def running_ids(self) -> List[str]:
        with self._lock:
            return [cid for cid, entry in self._entries.items()
                    if entry.container.status is ContainerStatus.RUNNING]

    def pending_action(self, container_id: str) -> Optional[Action]:
        with self._lock:
            pending = self._pending.get(container_id)
            return pending.action if pending else None

    def get_version(self) -> int:
        with self._lock:
            return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, container_id: str) -> bool:
        with self._lock:
            return container_id in self._entries
