"""
Render loop and input handling for dockwatch.

This module contains the App that coordinates between:
  - the terminal (key and mouse events in, frames out)
  - the state store (drained once per iteration, then read as one snapshot)
  - background workers (ListWorker, StatsWorker, LogStreamer)
  - the action dispatcher (lifecycle commands, exec handoff)

Architecture:
  1. start() turns on mouse capture (if configured) and spawns the list and
     stats workers
  2. step(), repeated by run():
     - wait for input at most refresh_interval, then drain queued events
     - apply pending store updates and take one snapshot
     - apply key and mouse events to UIState (navigation, filter, sort,
       actions, modals)
     - raise the banner for a new store error, unless an exec is about to
       start; then it waits until the shell exits
     - keep the selection on the same container, point log focus at it
     - hand the terminal to an exec shell when in ExecMode
     - draw only when the snapshot, the UI state, the terminal size or the
       one-second "refreshed" tick changed
  3. shutdown() stops everything; run() always calls it

Thread Safety:
  - Only this thread mutates the store (apply_pending) and UIState
  - No curses calls from worker threads
"""

import dataclasses
import logging
import time
from typing import Callable, List, Optional

from .actions import ActionDispatcher, validate
from .backend import RuntimeGateway
from .config import AppConfig
from .errors import ActionRejected
from .model import (
    SORT_KEYS, Action, ConfirmDeleteMode, ContainerStatus, ErrorMode, ExecMode, HelpMode,
    NormalMode, Snapshot, UIState,
)
from .state import ContainerStateStore
from .terminal import CursesTerminal, Event, KeyEvent, MouseEvent, ResizeEvent, Terminal
from .ui import (
    HEADER_ROW, clamp_scroll, confirm_button_at, header_column_at, list_page_height,
    log_page_height, move_selection, reconcile_selection, render_frame, row_at, split_row,
    visible_containers,
)
from .workers import ListWorker, LogStreamer, StatsWorker

logger = logging.getLogger(__name__)

# Upper bound on events handled per iteration so a key flood cannot starve drawing
MAX_EVENTS_PER_STEP = 64

# How long the mouse toggle notice stays in the footer
INFO_SECONDS = 4.0

_NAV_ACTIONS = ("up", "down", "page_up", "page_down", "home", "end")


class App:
    def __init__(self, gateway: RuntimeGateway, terminal: Terminal,
                 config: Optional[AppConfig] = None,
                 store: Optional[ContainerStateStore] = None,
                 clock: Callable[[], float] = time.time):
        self.gateway = gateway
        self.terminal = terminal
        self.config = config or AppConfig()
        self.clock = clock
        sync = self.config.sync
        self.store = store or ContainerStateStore(
            metrics_capacity=sync.metrics_capacity,
            log_capacity=sync.log_capacity,
            purge_strikes=sync.purge_strikes,
            delete_timeout=sync.delete_timeout,
        )
        self.list_worker = ListWorker(self.store, gateway, sync.poll_interval, sync.failure_threshold)
        self.stats_worker = StatsWorker(self.store, gateway, sync.stats_interval, sync.stats_workers)
        self.log_streamer = LogStreamer(self.store, gateway, sync.log_retry_delay)
        self.dispatcher = ActionDispatcher(gateway, self.store,
                                           on_complete=self.list_worker.force_refresh)
        self.ui = UIState()
        self.running = True
        self.frames_drawn = 0
        self._force_redraw = True
        self._last_drawn = None
        self._last_ui: Optional[UIState] = None

    # --- lifecycle ---

    def start(self) -> None:
        if self.config.ui.mouse_capture:
            self.ui.mouse_capture = self.terminal.set_mouse_capture(True)
            if not self.ui.mouse_capture:
                logger.warning("Terminal refused mouse capture")
        self.list_worker.start()
        self.stats_worker.start()
        logger.info("Workers started")

    def shutdown(self) -> None:
        logger.info("Shutting down")
        self.list_worker.stop()
        self.stats_worker.stop()
        self.log_streamer.stop()
        self.dispatcher.shutdown()
        for worker in (self.list_worker, self.stats_worker):
            if worker.is_alive():
                worker.join(timeout=1.0)

    def run(self) -> None:
        try:
            self.start()
            while self.step():
                pass
        finally:
            self.shutdown()

    # --- one iteration ---

    def _collect_events(self) -> List[Event]:
        events = []
        event = self.terminal.poll_event(self.config.ui.refresh_interval / 1000.0)
        while event is not None:
            events.append(event)
            if len(events) >= MAX_EVENTS_PER_STEP:
                break
            event = self.terminal.poll_event(0)
        return events

    def step(self) -> bool:
        """Run one loop iteration; returns False once the user quit."""
        try:
            events = self._collect_events()
            self.store.apply_pending()
            snapshot = self.store.snapshot()

            reconcile_selection(self.ui, visible_containers(snapshot, self.ui))
            for event in events:
                if isinstance(event, ResizeEvent):
                    self._force_redraw = True
                elif isinstance(event, KeyEvent):
                    self.handle_key(event.key, snapshot)
                elif isinstance(event, MouseEvent):
                    self.handle_mouse(event, snapshot)
                if not self.running:
                    return False

            self._check_error(snapshot)
            if self.ui.info and self.clock() >= self.ui.info_until:
                self.ui.info = None
            views = visible_containers(snapshot, self.ui)
            reconcile_selection(self.ui, views)
            width, height = self.terminal.size()
            clamp_scroll(self.ui, list_page_height(height))
            self.log_streamer.focus(self.ui.selected_id)

            if isinstance(self.ui.mode, ExecMode):
                self._run_exec(self.ui.mode.container_id)
                return self.running

            self._draw_if_changed(snapshot, width, height)
        except Exception as e:
            logger.exception("Error in render loop")
            self.ui.mode = ErrorMode(f"Internal error: {e}")
            self._force_redraw = True
        return self.running

    def _check_error(self, snapshot: Snapshot) -> None:
        error = snapshot.error
        if error is None or error.seq <= self.ui.seen_error_seq:
            return
        if isinstance(self.ui.mode, ExecMode):
            # Raised on the iteration after the shell exits
            return
        self.ui.seen_error_seq = error.seq
        # Most recent error replaces whatever banner is showing
        self.ui.mode = ErrorMode(error.message)

    def _run_exec(self, container_id: str) -> None:
        self.ui.mode = NormalMode()
        try:
            self.dispatcher.run_exec(container_id, self.terminal)
        except ActionRejected as e:
            self.ui.mode = ErrorMode(str(e))
        self._force_redraw = True

    def _draw_if_changed(self, snapshot: Snapshot, width: int, height: int) -> None:
        key = (snapshot.version, int(self.clock()), width, height)
        if not self._force_redraw and key == self._last_drawn and self.ui == self._last_ui:
            return
        frame = render_frame(snapshot, self.ui, width, height, now=self.clock(),
                             dismiss_keys=self.config.keybindings.dismiss_error)
        self.terminal.draw(frame)
        self.frames_drawn += 1
        self._force_redraw = False
        self._last_drawn = key
        self._last_ui = dataclasses.replace(self.ui)

    # --- input ---

    def _is(self, key: str, action: str) -> bool:
        return key in getattr(self.config.keybindings, action, ())

    def handle_key(self, key: str, snapshot: Snapshot) -> None:
        mode = self.ui.mode
        if isinstance(mode, HelpMode):
            self.ui.mode = NormalMode()
            return
        if isinstance(mode, ErrorMode):
            if self._is(key, "dismiss_error"):
                self.ui.mode = NormalMode()
            elif key == "ctrl-c":
                self.running = False
            return
        if isinstance(mode, ConfirmDeleteMode):
            if key in ("y", "enter"):
                self._confirm_delete(mode, True)
            elif key in ("n", "esc"):
                self._confirm_delete(mode, False)
            return
        if self.ui.is_filtering:
            self._handle_filter_key(key)
            return
        self._handle_normal_key(key, snapshot)

    def handle_mouse(self, event: MouseEvent, snapshot: Snapshot) -> None:
        mode = self.ui.mode
        width, height = self.terminal.size()
        if isinstance(mode, ConfirmDeleteMode):
            if event.kind == "click":
                button = confirm_button_at(event.x, event.y, mode.name, width, height)
                if button is not None:
                    self._confirm_delete(mode, button == "yes")
            return
        if not isinstance(mode, NormalMode):
            return
        if event.kind == "scroll_up":
            self._navigate("up", snapshot)
        elif event.kind == "scroll_down":
            self._navigate("down", snapshot)
        elif event.kind == "click":
            self._click(event.x, event.y, snapshot, width, height)

    def _click(self, x: int, y: int, snapshot: Snapshot, width: int, height: int) -> None:
        if y == HEADER_ROW:
            column = header_column_at(x, width)
            if column is not None:
                self._sort_by(column)
            return
        index = row_at(y, self.ui, height)
        if index is not None:
            views = visible_containers(snapshot, self.ui)
            if index < len(views):
                self.ui.selected_index = index
                self.ui.selected_id = views[index].container.id
            self.ui.focused_pane = "list"
        elif split_row(height) <= y < height - 1:
            self.ui.focused_pane = "logs"

    def _confirm_delete(self, mode: ConfirmDeleteMode, confirmed: bool) -> None:
        self.ui.mode = NormalMode()
        if confirmed:
            self._dispatch(mode.container_id, Action.DELETE, confirmed=True)

    def _handle_filter_key(self, key: str) -> None:
        if key == "enter":
            self.ui.is_filtering = False
        elif key == "esc":
            self.ui.is_filtering = False
            self.ui.filter_text = ""
        elif key == "backspace":
            self.ui.filter_text = self.ui.filter_text[:-1]
        elif key == "space":
            self.ui.filter_text += " "
        elif len(key) == 1:
            self.ui.filter_text += key
        else:
            return
        self.ui.scroll_offset = 0

    def _handle_normal_key(self, key: str, snapshot: Snapshot) -> None:
        ui = self.ui
        nav = next((action for action in _NAV_ACTIONS if self._is(key, action)), None)
        if self._is(key, "quit"):
            self.running = False
        elif key == "esc":
            ui.filter_text = ""
        elif self._is(key, "help"):
            ui.mode = HelpMode()
        elif self._is(key, "filter"):
            ui.is_filtering = True
        elif self._is(key, "tab_focus"):
            ui.focused_pane = "logs" if ui.focused_pane == "list" else "list"
        elif nav is not None:
            self._navigate(nav, snapshot)
        elif self._is(key, "sort_cycle"):
            idx = SORT_KEYS.index(ui.sort_key) if ui.sort_key in SORT_KEYS else -1
            ui.sort_key = SORT_KEYS[(idx + 1) % len(SORT_KEYS)]
            ui.sort_ascending = True
        elif key == "0":
            ui.sort_key = "name"
            ui.sort_ascending = True
        elif key.isdigit() and 1 <= int(key) <= len(SORT_KEYS):
            self._sort_by(SORT_KEYS[int(key) - 1])
        elif self._is(key, "mouse_toggle"):
            self._toggle_mouse()
        elif ui.selected_id is not None:
            self._handle_action_key(key, snapshot)

    def _sort_by(self, column: str) -> None:
        if self.ui.sort_key == column:
            self.ui.sort_ascending = not self.ui.sort_ascending
        else:
            self.ui.sort_key = column
            self.ui.sort_ascending = True

    def _toggle_mouse(self) -> None:
        enabled = not self.ui.mouse_capture
        if not self.terminal.set_mouse_capture(enabled):
            self.ui.mode = ErrorMode(f"Unable to {'enable' if enabled else 'disable'} mouse capture")
            return
        self.ui.mouse_capture = enabled
        self.ui.info = "✓ mouse capture enabled" if enabled else "✖ mouse capture disabled"
        self.ui.info_until = self.clock() + INFO_SECONDS

    def _navigate(self, action: str, snapshot: Snapshot) -> None:
        if self.ui.focused_pane == "logs":
            self._scroll_logs(action, snapshot)
            return
        views = visible_containers(snapshot, self.ui)
        page = list_page_height(self.terminal.size()[1])
        delta = {
            "up": -1,
            "down": 1,
            "page_up": -page,
            "page_down": page,
            "home": -len(views),
            "end": len(views),
        }[action]
        move_selection(self.ui, views, delta)

    def _scroll_logs(self, action: str, snapshot: Snapshot) -> None:
        total = len(snapshot.logs)
        page = log_page_height(self.terminal.size()[1])
        bottom = max(0, total - page)
        current = bottom if self.ui.logs_scroll_offset is None else self.ui.logs_scroll_offset
        target = {
            "up": current - 1,
            "down": current + 1,
            "page_up": current - page,
            "page_down": current + page,
            "home": 0,
            "end": bottom,
        }[action]
        target = max(0, target)
        # Scrolling back to the bottom resumes following new lines
        self.ui.logs_scroll_offset = None if target >= bottom else target

    def _handle_action_key(self, key: str, snapshot: Snapshot) -> None:
        view = snapshot.find(self.ui.selected_id)
        if view is None:
            return
        container = view.container
        if self._is(key, "start"):
            self._dispatch(container.id, Action.START)
        elif self._is(key, "stop"):
            self._dispatch(container.id, Action.STOP)
        elif self._is(key, "restart"):
            self._dispatch(container.id, Action.RESTART)
        elif self._is(key, "pause_toggle"):
            action = Action.UNPAUSE if container.status is ContainerStatus.PAUSED else Action.PAUSE
            self._dispatch(container.id, action)
        elif self._is(key, "delete"):
            try:
                validate(container, Action.DELETE, confirmed=True)
            except ActionRejected as e:
                self.ui.mode = ErrorMode(str(e))
                return
            self.ui.mode = ConfirmDeleteMode(container.id, container.name)
        elif self._is(key, "exec"):
            if self._dispatch(container.id, Action.EXEC):
                self.ui.mode = ExecMode(container.id)

    def _dispatch(self, container_id: str, action: Action, confirmed: bool = False) -> bool:
        try:
            self.dispatcher.dispatch(container_id, action, confirmed=confirmed)
        except ActionRejected as e:
            logger.info(f"Rejected {action.value}: {e}")
            self.ui.mode = ErrorMode(str(e))
            return False
        return True


def main(stdscr, gateway: RuntimeGateway, config: Optional[AppConfig] = None) -> None:
    """Entry point for curses.wrapper()."""
    logging.info("Main started")
    terminal = CursesTerminal(stdscr)
    app = App(gateway, terminal, config)
    app.run()
