"""
Frame rendering for dockwatch.

Turns one Snapshot plus the UIState into a Frame (rows of styled segments)
that a Terminal draws. Nothing here touches curses or the daemon, which keeps
every function pure and cheap enough to call on each loop iteration.

Layout:
  - Row 0: title bar
  - Row 1: summary (counts, totals, last refresh, sort order)
  - Container table: top 60% of the screen
  - Detail pane: selected container, CPU/memory sparklines, logs
  - Last row: footer (filter prompt, notices or key hints)
  - Modal overlays for help, delete confirmation and errors

Key Functions:
  - visible_containers(): filter + sort the snapshot for display
  - reconcile_selection(): keep the cursor on the same container across polls
  - render_frame(): build the whole Frame
  - header_column_at() / row_at() / confirm_button_at(): map mouse clicks
    back onto what render_frame() drew there
"""

import time
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .model import (
    ConfirmDeleteMode, ContainerStatus, ContainerView, ErrorMode, HelpMode, LogLine,
    Snapshot, UIState,
)
from .stats import ChartRenderer, cpu_series, format_bytes, memory_series, summarize
from .terminal import Frame, Segment

# --- COLUMN LAYOUT CONSTANTS ---
COL_STATUS = 12
COL_CPU = 8
COL_MEMORY = 11
COL_NET = 9
COL_ID = 13
COL_PROJECT = 12

MIN_HEIGHT = 10
MIN_WIDTH = 20

HEADER_ROW = 2
TABLE_TOP = 3
MARKER_WIDTH = 3

HELP_LINES = [
    " dockwatch HELP ",
    "------------------",
    " Navigation:",
    "  Up/Down j/k : Select container",
    "  PgUp/PgDn   : Page",
    "  Home/End    : First/last",
    "  TAB         : Toggle list/log focus",
    "  /           : Filter by name or image",
    "  S, 0-8      : Sort (repeat to reverse)",
    "  m           : Toggle mouse capture",
    "  q           : Quit",
    "",
    " Container Actions:",
    "  s/t/r       : Start/Stop/Restart",
    "  z           : Pause/Unpause",
    "  x           : Exec shell",
    "  d           : Delete (confirm)",
    "",
    " Press any key to close ",
]

_STATUS_STYLES = {
    ContainerStatus.RUNNING: "running",
    ContainerStatus.PAUSED: "warning",
    ContainerStatus.RESTARTING: "warning",
    ContainerStatus.CREATED: "dim",
}


def _sort_value(view: ContainerView, key: str):
    c = view.container
    latest = view.latest
    if key == "status":
        return (c.status.order, c.name.lower())
    if key == "cpu":
        return (latest.cpu_percent if latest else -1.0, c.name.lower())
    if key == "memory":
        return (latest.memory_bytes if latest else -1, c.name.lower())
    if key == "image":
        return (c.image.lower(), c.name.lower())
    if key == "rx":
        return (latest.rx_bytes if latest else -1, c.name.lower())
    if key == "tx":
        return (latest.tx_bytes if latest else -1, c.name.lower())
    if key == "id":
        return (c.id,)
    return (c.name.lower(), c.id)


def visible_containers(snapshot: Snapshot, ui: UIState) -> List[ContainerView]:
    items = list(snapshot.containers)
    if ui.filter_text:
        ft = ui.filter_text.lower()
        items = [v for v in items
                 if ft in v.container.name.lower() or ft in v.container.image.lower()]
    items.sort(key=lambda v: _sort_value(v, ui.sort_key), reverse=not ui.sort_ascending)
    return items


def reconcile_selection(ui: UIState, views: Sequence[ContainerView]) -> None:
    """Follow the selected container by id; clamp the index if it vanished."""
    if not views:
        ui.selected_index = 0
        ui.selected_id = None
        return
    if ui.selected_id is not None:
        for i, view in enumerate(views):
            if view.container.id == ui.selected_id:
                ui.selected_index = i
                return
    ui.selected_index = max(0, min(ui.selected_index, len(views) - 1))
    ui.selected_id = views[ui.selected_index].container.id


def move_selection(ui: UIState, views: Sequence[ContainerView], delta: int) -> None:
    if not views:
        return
    ui.selected_index = max(0, min(ui.selected_index + delta, len(views) - 1))
    ui.selected_id = views[ui.selected_index].container.id


def split_row(height: int) -> int:
    return int(height * 0.6)


def list_page_height(height: int) -> int:
    # title, summary, table header
    return max(1, split_row(height) - 3)


def log_page_height(height: int) -> int:
    # detail header lines, sparklines, separator, footer
    return max(1, height - split_row(height) - 7)


def clamp_scroll(ui: UIState, page_height: int) -> None:
    if ui.selected_index < ui.scroll_offset:
        ui.scroll_offset = ui.selected_index
    elif ui.selected_index >= ui.scroll_offset + page_height:
        ui.scroll_offset = ui.selected_index - page_height + 1
    ui.scroll_offset = max(0, ui.scroll_offset)


def _fit(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) > width:
        return text[:max(0, width - 1)] + "…" if width > 1 else text[:width]
    return text.ljust(width)


def _elapsed(last_refresh: Optional[float], now: float) -> str:
    if last_refresh is None:
        return "waiting for daemon"
    seconds = max(0, int(now - last_refresh))
    return f"refreshed {seconds}s ago"


def _name_image_widths(width: int) -> Tuple[int, int]:
    fixed = MARKER_WIDTH + COL_STATUS + COL_CPU + COL_MEMORY + 2 * COL_NET + COL_ID + COL_PROJECT
    rem = max(10, width - fixed)
    w_name = max(8, int(rem * 0.45))
    w_image = max(4, rem - w_name)
    return w_name, w_image


def table_columns(width: int) -> List[Tuple[str, Optional[str], int]]:
    """(label, sort key or None, width) for each table column after the marker."""
    w_name, w_image = _name_image_widths(width)
    return [
        ("NAME", "name", w_name),
        ("STATUS", "status", COL_STATUS),
        ("CPU", "cpu", COL_CPU),
        ("MEM", "memory", COL_MEMORY),
        ("RX", "rx", COL_NET),
        ("TX", "tx", COL_NET),
        ("ID", "id", COL_ID),
        ("PROJECT", None, COL_PROJECT),
        ("IMAGE", "image", w_image),
    ]


def _header_row(width: int, ui: UIState) -> List[Segment]:
    arrow = "▲" if ui.sort_ascending else "▼"
    text = " " * MARKER_WIDTH
    for label, key, w in table_columns(width):
        if key is not None and key == ui.sort_key:
            label += arrow
        text += _fit(label, w)
    return [Segment(_fit(text, width), "project")]


def header_column_at(x: int, width: int) -> Optional[str]:
    """Sort key of the header cell under column x, if it has one."""
    left = MARKER_WIDTH
    for _, key, w in table_columns(width):
        if left <= x < left + w:
            return key
        left += w
    return None


def row_at(y: int, ui: UIState, height: int) -> Optional[int]:
    """Index into visible_containers() of the table row drawn at line y."""
    if not TABLE_TOP <= y < TABLE_TOP + list_page_height(height):
        return None
    return ui.scroll_offset + y - TABLE_TOP


def _container_row(view: ContainerView, width: int, selected: bool) -> List[Segment]:
    c = view.container
    w_name, w_image = _name_image_widths(width)
    latest = view.latest
    live = latest is not None and c.is_running
    cpu = f"{latest.cpu_percent:.1f}%" if live else "--"
    mem = format_bytes(latest.memory_bytes) if live else "--"
    rx = format_bytes(latest.rx_bytes) if live else "--"
    tx = format_bytes(latest.tx_bytes) if live else "--"
    status_style = _STATUS_STYLES.get(c.status, "error")
    status = c.status.value
    if view.pending is not None:
        status = f"{view.pending.value}…"
        status_style = "warning"
    row_style = "selected" if selected else "default"
    marker = " ● " if c.is_running else " ○ "
    return [
        Segment(marker, status_style),
        Segment(_fit(c.name, w_name), row_style),
        Segment(_fit(status, COL_STATUS), "selected" if selected else status_style),
        Segment(_fit(cpu, COL_CPU) + _fit(mem, COL_MEMORY) + _fit(rx, COL_NET) + _fit(tx, COL_NET)
                + _fit(c.short_id, COL_ID)
                + _fit(c.project, COL_PROJECT) + _fit(c.image, w_image), row_style),
    ]


def _log_row(line: LogLine, width: int) -> List[Segment]:
    stamp = datetime.fromtimestamp(line.timestamp).strftime("%H:%M:%S")
    style = "warning" if line.stream == "stderr" else "default"
    return [Segment(f" {stamp} ", "dim"), Segment(_fit(line.text, width - 10), style)]


def _detail_rows(snapshot: Snapshot, ui: UIState, view: Optional[ContainerView],
                 width: int, height: int) -> List[List[Segment]]:
    focused = ui.focused_pane == "logs"
    title = " LOGS (focused) " if focused else " DETAILS / LOGS "
    rows = [[Segment(_fit("─" * 2 + title + "─" * width, width), "accent" if focused else "dim")]]
    if view is None:
        rows.append([Segment(_fit("  No container selected", width), "dim")])
        return rows[:height]

    c = view.container
    latest = view.latest
    spark_w = max(10, min(60, width - 30))
    created = datetime.fromtimestamp(c.created).strftime("%Y-%m-%d %H:%M") if c.created else "--"
    rows.append([Segment(_fit(f"  {c.name}  {c.short_id}  {c.image}  created {created}", width), "bold")])
    if latest is not None and c.is_running:
        cpu_line = f"  CPU {latest.cpu_percent:6.1f}% "
        mem_line = (f"  MEM {format_bytes(latest.memory_bytes):>9} / "
                    f"{format_bytes(latest.memory_limit_bytes)} ")
        rows.append([Segment(cpu_line, "default"),
                     Segment(ChartRenderer.sparkline(cpu_series(view), spark_w), "running")])
        rows.append([Segment(mem_line, "default"),
                     Segment(ChartRenderer.sparkline(memory_series(view), spark_w), "accent")])
        rows.append([Segment(_fit(f"  NET rx {format_bytes(latest.rx_bytes)}  tx {format_bytes(latest.tx_bytes)}",
                                  width), "dim")])
    else:
        rows.append([Segment(_fit("  no stats (container not running)", width), "dim")])
        rows.append([])
        rows.append([])
    rows.append([Segment(_fit(" " + "─" * (width - 2), width), "dim")])

    avail = height - len(rows)
    if avail <= 0:
        return rows[:height]
    if snapshot.log_focus != c.id:
        rows.append([Segment(_fit("  Loading logs...", width), "dim")])
        return rows[:height]
    logs = snapshot.logs
    if not logs:
        rows.append([Segment(_fit("  (no output since opening)", width), "dim")])
        return rows[:height]
    if ui.logs_scroll_offset is None:
        start = max(0, len(logs) - avail)
    else:
        start = max(0, min(ui.logs_scroll_offset, len(logs) - 1))
    for line in logs[start:start + avail]:
        rows.append(_log_row(line, width))
    return rows[:height]


def _footer_row(ui: UIState, width: int) -> List[Segment]:
    if ui.is_filtering:
        label = " FILTER: "
        return [Segment(label, "title"), Segment(_fit(f" {ui.filter_text}▏", width - len(label)), "bold")]
    hints = "s:start t:stop r:restart z:pause x:exec d:delete /:filter S:sort TAB:focus m:mouse ?:help q:quit"
    if ui.info:
        notice = f" {ui.info} "
        return [Segment(notice, "accent"), Segment(_fit(hints, width - len(notice)), "dim")]
    if ui.filter_text:
        return [Segment(f" [filter: {ui.filter_text}] ", "accent"), Segment(_fit(hints, width), "dim")]
    return [Segment(_fit(" " + hints, width), "dim")]


def _cells(row: List[Segment], width: int) -> List[Tuple[str, str]]:
    cells = [(ch, seg.style) for seg in row for ch in seg.text]
    cells = cells[:width]
    cells.extend([(" ", "default")] * (width - len(cells)))
    return cells


def _segments(cells: List[Tuple[str, str]]) -> List[Segment]:
    out: List[Segment] = []
    for ch, style in cells:
        if out and out[-1].style == style:
            out[-1] = Segment(out[-1].text + ch, style)
        else:
            out.append(Segment(ch, style))
    return out


def _overlay_box(width: int, height: int, lines: List[str]) -> Tuple[int, int, int, int]:
    """(top, left, inner width, box height) of a box centred on the screen."""
    inner = min(max(len(line) for line in lines) + 2, width - 4)
    box_h = min(len(lines) + 2, height - 2)
    top = max(0, (height - box_h) // 2)
    left = max(0, (width - inner - 2) // 2)
    return top, left, inner, box_h


def _overlay(frame: Frame, lines: List[str], style: str) -> None:
    """Draw a centred box over the frame rows."""
    top, left, inner, box_h = _overlay_box(frame.width, frame.height, lines)
    body = ["┌" + "─" * inner + "┐"]
    for line in lines[:box_h - 2]:
        body.append("│" + _fit(" " + line, inner) + "│")
    body.append("└" + "─" * inner + "┘")
    for i, text in enumerate(body):
        y = top + i
        while len(frame.rows) <= y:
            frame.rows.append([])
        cells = _cells(frame.rows[y], frame.width)
        for j, ch in enumerate(text):
            if left + j < frame.width:
                cells[left + j] = (ch, style)
        frame.rows[y] = _segments(cells)


CONFIRM_BUTTONS = (("[y] yes", "yes"), ("[n] no", "no"))
_CONFIRM_BUTTON_LINE = 3


def confirm_lines(name: str) -> List[str]:
    buttons = "    ".join(label for label, _ in CONFIRM_BUTTONS)
    return ["", f"Delete container {name}?", "", buttons, ""]


def confirm_button_at(x: int, y: int, name: str, width: int, height: int) -> Optional[str]:
    """Return "yes" or "no" when (x, y) hits a button of the delete dialog."""
    lines = confirm_lines(name)
    top, left, _, _ = _overlay_box(width, height, lines)
    if y != top + 1 + _CONFIRM_BUTTON_LINE:
        return None
    # Box border plus the leading space of each line
    col = x - left - 2
    text = lines[_CONFIRM_BUTTON_LINE]
    for label, value in CONFIRM_BUTTONS:
        start = text.index(label)
        if start <= col < start + len(label):
            return value
    return None


def render_frame(snapshot: Snapshot, ui: UIState, width: int, height: int,
                 now: Optional[float] = None, dismiss_keys: Sequence[str] = ("c",)) -> Frame:
    now = time.time() if now is None else now
    frame = Frame(width, height)
    if height < MIN_HEIGHT or width < MIN_WIDTH:
        frame.rows.append([Segment("Terminal too small!"[:width], "error")])
        return frame

    views = visible_containers(snapshot, ui)
    summary = summarize(snapshot.containers)
    frame.rows.append([Segment(" dockwatch ".center(width), "title")])
    info = (f" {summary['total']} containers | {summary['running']} running | "
            f"{summary['paused']} paused | {summary['stopped']} stopped | "
            f"CPU {summary['total_cpu']:.1f}% | MEM {format_bytes(summary['total_memory'])} | "
            f"{_elapsed(snapshot.last_refresh, now)}")
    frame.rows.append([Segment(_fit(info, width), "accent")])
    frame.rows.append(_header_row(width, ui))

    page = list_page_height(height)
    for i in range(page):
        idx = ui.scroll_offset + i
        if idx < len(views):
            frame.rows.append(_container_row(views[idx], width, idx == ui.selected_index))
        elif i == 0 and not views:
            text = "  no containers match filter" if ui.filter_text else "  no containers"
            frame.rows.append([Segment(_fit(text, width), "dim")])
        else:
            frame.rows.append([])

    selected = views[ui.selected_index] if views and ui.selected_index < len(views) else None
    detail_h = height - len(frame.rows) - 1
    frame.rows.extend(_detail_rows(snapshot, ui, selected, width, detail_h))
    while len(frame.rows) < height - 1:
        frame.rows.append([])
    frame.rows.append(_footer_row(ui, width))

    mode = ui.mode
    if isinstance(mode, HelpMode):
        _overlay(frame, HELP_LINES, "accent")
    elif isinstance(mode, ConfirmDeleteMode):
        _overlay(frame, confirm_lines(mode.name), "error")
    elif isinstance(mode, ErrorMode):
        hint = f"press {' or '.join(dismiss_keys)} to dismiss"
        _overlay(frame, [" ERROR ", "", mode.message, "", hint], "error")
    return frame
