"""
Action dispatcher: validates lifecycle commands and runs them off the render
thread.

Flow for start/stop/restart/pause/unpause/delete:
  1. validate() against the container's last known status (raises ActionRejected)
  2. publish ActionPending so the row shows the action in flight
  3. the gateway call runs on a small thread pool
  4. publish ActionResult; a failure becomes the error banner in the store

Exec is different: it needs the real terminal, so dispatch() only validates
it and the render loop calls run_exec() itself with drawing suspended.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, FrozenSet, Optional, Set

from .backend import RuntimeGateway
from .errors import ActionRejected, GatewayError
from .model import Action, ActionOutcome, ActionPending, ActionResult, Container, ContainerStatus
from .state import ContainerStateStore
from .terminal import Terminal

logger = logging.getLogger(__name__)

S = ContainerStatus

ALLOWED_STATUSES: Dict[Action, FrozenSet[ContainerStatus]] = {
    Action.START: frozenset({S.CREATED, S.EXITED}),
    Action.STOP: frozenset({S.RUNNING, S.PAUSED, S.RESTARTING}),
    Action.RESTART: frozenset({S.RUNNING, S.PAUSED, S.EXITED, S.CREATED}),
    Action.PAUSE: frozenset({S.RUNNING}),
    Action.UNPAUSE: frozenset({S.PAUSED}),
    Action.DELETE: frozenset(set(S) - {S.REMOVING}),
    Action.EXEC: frozenset({S.RUNNING}),
}


def validate(container: Optional[Container], action: Action, confirmed: bool = False) -> None:
    """Raise ActionRejected unless `action` makes sense for `container` now."""
    if container is None:
        raise ActionRejected(f"Cannot {action.value}: container no longer exists")
    if container.status not in ALLOWED_STATUSES[action]:
        raise ActionRejected(
            f"Cannot {action.value} {container.name}: container is {container.status.value}"
        )
    if action is Action.DELETE and not confirmed:
        raise ActionRejected(f"Delete of {container.name} needs confirmation")


class ActionDispatcher:
    def __init__(self, gateway: RuntimeGateway, store: ContainerStateStore,
                 max_workers: int = 4, on_complete: Optional[Callable[[], None]] = None):
        self.gateway = gateway
        self.store = store
        self.on_complete = on_complete
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="action")
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def is_in_flight(self, container_id: str) -> bool:
        with self._lock:
            return container_id in self._in_flight

    def dispatch(self, container_id: str, action: Action, confirmed: bool = False) -> Optional[Future]:
        """
        Validate and issue an action.

        Returns:
            Future resolving to the ActionOutcome, or None for EXEC (the
            caller runs run_exec() once the terminal is released)

        Raises:
            ActionRejected: unknown container, wrong status, unconfirmed
                delete, or another action already in flight for it
        """
        container = self.store.get(container_id)
        validate(container, action, confirmed)
        if action is Action.EXEC:
            return None
        with self._lock:
            if container_id in self._in_flight or self.store.pending_action(container_id):
                raise ActionRejected(f"{container.name} already has an action in progress")
            self._in_flight.add(container_id)
        logger.info(f"Dispatching {action.value} for {container.name} ({container.short_id})")
        self.store.publish(ActionPending(container_id, action))
        return self._executor.submit(self._run, container_id, action)

    def _run(self, container_id: str, action: Action) -> ActionOutcome:
        try:
            self.gateway.lifecycle(container_id, action)
            outcome = ActionOutcome(action, ok=True)
        except GatewayError as e:
            logger.error(f"{action.value} for {container_id[:12]} failed: {e}")
            outcome = ActionOutcome(action, ok=False, reason=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error during {action.value} for {container_id[:12]}")
            outcome = ActionOutcome(action, ok=False, reason=f"unexpected error: {e}")
        finally:
            with self._lock:
                self._in_flight.discard(container_id)
        self.store.publish(ActionResult(container_id, outcome))
        if outcome.ok and self.on_complete is not None:
            self.on_complete()
        return outcome

    def run_exec(self, container_id: str, terminal: Terminal) -> bool:
        """Hand the terminal to an interactive shell and take it back afterwards."""
        container = self.store.get(container_id)
        validate(container, Action.EXEC)
        terminal.enter_exec_mode()
        try:
            code = self.gateway.exec(container_id)
            logger.info(f"Exec session in {container.name} exited with {code}")
            return True
        except GatewayError as e:
            self.store.publish(ActionResult(container_id, ActionOutcome(Action.EXEC, ok=False, reason=str(e))))
            return False
        finally:
            terminal.leave_exec_mode()

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
