"""
Terminal backend for dockwatch.

The render loop needs a few things from a terminal: wait (boundedly) for a
key, mouse or resize event, draw a frame, switch mouse reporting on and off,
and get out of the way while an exec shell owns the tty. Terminal is that surface; CursesTerminal implements it on a
curses stdscr.

Frames are rows of styled Segments. Style names map to curses colour pairs
set up in init_colors():
  default, running, error, accent, project, warning, selected, title, dim, bold

Limitations:
  - curses not available on Windows (use WSL)
  - Mouse events cover left click and the scroll wheel only
"""

import abc
import curses
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    text: str
    style: str = "default"


@dataclass
class Frame:
    width: int
    height: int
    rows: List[List[Segment]] = field(default_factory=list)

    def row_text(self, y: int) -> str:
        if y >= len(self.rows):
            return ""
        return "".join(seg.text for seg in self.rows[y])

    def text(self) -> str:
        return "\n".join(self.row_text(y) for y in range(len(self.rows)))


@dataclass(frozen=True)
class KeyEvent:
    key: str


@dataclass(frozen=True)
class MouseEvent:
    x: int
    y: int
    kind: str  # "click", "scroll_up" or "scroll_down"


@dataclass(frozen=True)
class ResizeEvent:
    width: int
    height: int


Event = Union[KeyEvent, MouseEvent, ResizeEvent]


class Terminal(abc.ABC):
    @abc.abstractmethod
    def poll_event(self, timeout: float) -> Optional[Event]:
        """Wait at most `timeout` seconds for one event."""

    @abc.abstractmethod
    def draw(self, frame: Frame) -> None:
        ...

    @abc.abstractmethod
    def size(self) -> Tuple[int, int]:
        """Return (width, height)."""

    @abc.abstractmethod
    def set_mouse_capture(self, enabled: bool) -> bool:
        """Turn mouse reporting on or off; False if the terminal refused."""

    @abc.abstractmethod
    def enter_exec_mode(self) -> None:
        """Hand the tty back to a child process."""

    @abc.abstractmethod
    def leave_exec_mode(self) -> None:
        """Take the tty back and force a full redraw on the next frame."""


_KEY_NAMES = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_PPAGE: "pgup",
    curses.KEY_NPAGE: "pgdn",
    curses.KEY_HOME: "home",
    curses.KEY_END: "end",
    curses.KEY_BACKSPACE: "backspace",
    curses.KEY_ENTER: "enter",
    127: "backspace",
    8: "backspace",
    10: "enter",
    13: "enter",
    27: "esc",
    9: "tab",
    3: "ctrl-c",
    32: "space",
}


def translate_key(code: int) -> Optional[str]:
    """Map a curses key code to dockwatch's key names."""
    if code in _KEY_NAMES:
        return _KEY_NAMES[code]
    if 32 < code <= 126:
        return chr(code)
    return None


# Scroll down is reported as BUTTON5_PRESSED, whose value varies by system
_SCROLL_DOWN_MASK = 0x8000000 | 0x200000
_CLICK_MASK = curses.BUTTON1_PRESSED | curses.BUTTON1_CLICKED


def translate_mouse(x: int, y: int, bstate: int) -> Optional[MouseEvent]:
    """Map a curses mouse report to a MouseEvent, or None for ignored buttons."""
    if bstate & curses.BUTTON4_PRESSED:
        return MouseEvent(x, y, "scroll_up")
    if bstate & _SCROLL_DOWN_MASK:
        return MouseEvent(x, y, "scroll_down")
    if bstate & _CLICK_MASK:
        return MouseEvent(x, y, "click")
    return None


def init_colors():
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(1, curses.COLOR_WHITE, -1)    # Default
    curses.init_pair(2, curses.COLOR_GREEN, -1)    # Running
    curses.init_pair(3, curses.COLOR_RED, -1)      # Error / Stopped
    curses.init_pair(4, curses.COLOR_CYAN, -1)     # Accent
    curses.init_pair(5, curses.COLOR_MAGENTA, -1)  # Project / Headers
    curses.init_pair(6, curses.COLOR_YELLOW, -1)   # Warning / Paused
    curses.init_pair(7, curses.COLOR_BLACK, curses.COLOR_CYAN)  # Selected


def style_attr(style: str) -> int:
    if style == "running":
        return curses.color_pair(2)
    if style == "error":
        return curses.color_pair(3) | curses.A_BOLD
    if style == "accent":
        return curses.color_pair(4) | curses.A_BOLD
    if style == "project":
        return curses.color_pair(5)
    if style == "warning":
        return curses.color_pair(6)
    if style == "selected":
        return curses.color_pair(7)
    if style == "title":
        return curses.color_pair(7) | curses.A_BOLD
    if style == "dim":
        return curses.A_DIM
    if style == "bold":
        return curses.A_BOLD
    return curses.color_pair(1)


class CursesTerminal(Terminal):
    def __init__(self, stdscr):
        self.stdscr = stdscr
        self._force_clear = True
        curses.curs_set(0)
        self.stdscr.keypad(True)
        self.stdscr.nodelay(False)
        init_colors()
        # Deliver button presses at once instead of waiting to detect clicks
        curses.mouseinterval(0)

    def size(self) -> Tuple[int, int]:
        h, w = self.stdscr.getmaxyx()
        return w, h

    def poll_event(self, timeout: float) -> Optional[Event]:
        self.stdscr.timeout(max(0, int(timeout * 1000)))
        code = self.stdscr.getch()
        if code == curses.ERR:
            return None
        if code == curses.KEY_RESIZE:
            curses.update_lines_cols()
            w, h = self.size()
            self._force_clear = True
            return ResizeEvent(w, h)
        if code == curses.KEY_MOUSE:
            try:
                _, x, y, _, bstate = curses.getmouse()
            except curses.error:
                return None
            return translate_mouse(x, y, bstate)
        name = translate_key(code)
        if name is None:
            logger.debug(f"Ignoring key code {code}")
            return None
        return KeyEvent(name)

    def draw(self, frame: Frame) -> None:
        if self._force_clear:
            self.stdscr.clear()
            self._force_clear = False
        else:
            self.stdscr.erase()
        h, w = self.stdscr.getmaxyx()
        for y, row in enumerate(frame.rows[:h]):
            x = 0
            for seg in row:
                if x >= w:
                    break
                # Writing the bottom-right cell raises in curses
                avail = w - x - (1 if y == h - 1 else 0)
                text = seg.text[:avail]
                if not text:
                    continue
                try:
                    self.stdscr.addstr(y, x, text, style_attr(seg.style))
                except curses.error:
                    pass
                x += len(text)
        self.stdscr.noutrefresh()
        curses.doupdate()

    def set_mouse_capture(self, enabled: bool) -> bool:
        try:
            available, _ = curses.mousemask(curses.ALL_MOUSE_EVENTS if enabled else 0)
        except curses.error as e:
            logger.warning(f"mousemask failed: {e}")
            return False
        return bool(available) or not enabled

    def enter_exec_mode(self) -> None:
        curses.def_prog_mode()
        curses.endwin()

    def leave_exec_mode(self) -> None:
        curses.reset_prog_mode()
        curses.curs_set(0)
        self.stdscr.keypad(True)
        self.stdscr.clearok(True)
        self._force_clear = True
        self.stdscr.refresh()
