from dockwatch.model import (
    Action, ConfirmDeleteMode, ContainerStatus, ContainerView, ErrorInfo, ErrorMode, HelpMode,
    LogLine, MetricsSample, Snapshot, UIState,
)
from dockwatch.ui import (
    HEADER_ROW, TABLE_TOP, clamp_scroll, confirm_button_at, header_column_at, move_selection,
    reconcile_selection, render_frame, row_at, visible_containers,
)

from conftest import make_container, make_sample

WEB = make_container("aaaaaaaaaaaa0001", "web", image="nginx:latest")
DB = make_container("bbbbbbbbbbbb0002", "db", image="postgres:16")
JOB = make_container("cccccccccccc0003", "job", status=ContainerStatus.EXITED, image="busybox")


def snapshot(*views, **kwargs):
    return Snapshot(containers=tuple(views), **kwargs)


def view(container, cpu=None, memory=0, pending=None):
    metrics = (make_sample(cpu=cpu, memory=memory),) if cpu is not None else ()
    return ContainerView(container=container, metrics=metrics, pending=pending)


def test_visible_containers_sorted_by_name_by_default():
    snap = snapshot(view(WEB), view(DB), view(JOB))
    assert [v.container.name for v in visible_containers(snap, UIState())] == ["db", "job", "web"]


def test_visible_containers_sort_by_cpu_descending():
    snap = snapshot(view(WEB, cpu=5.0), view(DB, cpu=50.0), view(JOB))
    ui = UIState(sort_key="cpu", sort_ascending=False)
    assert [v.container.name for v in visible_containers(snap, ui)] == ["db", "web", "job"]


def test_visible_containers_sort_by_status_puts_running_first():
    snap = snapshot(view(JOB), view(WEB))
    ui = UIState(sort_key="status")
    assert [v.container.name for v in visible_containers(snap, ui)] == ["web", "job"]


def test_filter_matches_name_or_image_case_insensitive():
    snap = snapshot(view(WEB), view(DB), view(JOB))
    assert [v.container.name for v in visible_containers(snap, UIState(filter_text="POST"))] == ["db"]
    assert [v.container.name for v in visible_containers(snap, UIState(filter_text="we"))] == ["web"]


def test_reconcile_selection_follows_id_then_clamps():
    views = visible_containers(snapshot(view(WEB), view(DB), view(JOB)), UIState())
    ui = UIState(selected_index=0, selected_id=WEB.id)
    reconcile_selection(ui, views)
    assert ui.selected_index == 2

    remaining = [v for v in views if v.container.id != WEB.id]
    reconcile_selection(ui, remaining)
    ui.selected_id = "gone"
    reconcile_selection(ui, remaining)
    assert ui.selected_index == 1
    assert ui.selected_id == JOB.id

    reconcile_selection(ui, [])
    assert ui.selected_id is None


def test_move_selection_clamps():
    views = visible_containers(snapshot(view(WEB), view(DB)), UIState())
    ui = UIState()
    move_selection(ui, views, 10)
    assert ui.selected_index == 1
    move_selection(ui, views, -10)
    assert ui.selected_index == 0
    assert ui.selected_id == DB.id


def test_clamp_scroll_keeps_selection_visible():
    ui = UIState(selected_index=12, scroll_offset=0)
    clamp_scroll(ui, 5)
    assert ui.scroll_offset == 8
    ui.selected_index = 3
    clamp_scroll(ui, 5)
    assert ui.scroll_offset == 3


def test_too_small_terminal():
    frame = render_frame(snapshot(), UIState(), 15, 5, now=0.0)
    assert frame.row_text(0) == "Terminal too small!"[:15]


def test_frame_contains_table_rows_and_footer():
    snap = snapshot(view(WEB, cpu=12.5, memory=2_500_000), view(JOB), last_refresh=95.0)
    ui = UIState(selected_id=JOB.id)
    frame = render_frame(snap, ui, 120, 30, now=100.0)
    text = frame.text()
    assert len(frame.rows) == 30
    assert "dockwatch" in frame.row_text(0)
    assert "2 containers" in frame.row_text(1)
    assert "refreshed 5s ago" in frame.row_text(1)
    assert "NAME▲" in frame.row_text(2)
    assert "12.5%" in text
    assert "2.50 MB" in text
    assert "exited" in text
    assert "q:quit" in frame.row_text(29)


def test_waiting_for_daemon_before_first_list():
    frame = render_frame(snapshot(), UIState(), 120, 24, now=0.0)
    assert "waiting for daemon" in frame.row_text(1)
    assert "no containers" in frame.text()


def test_pending_action_marker():
    frame = render_frame(snapshot(view(WEB, pending=Action.STOP)), UIState(), 100, 24, now=0.0)
    assert "stop…" in frame.text()


def test_logs_loading_until_focus_matches():
    ui = UIState(selected_id=WEB.id)
    frame = render_frame(snapshot(view(WEB)), ui, 100, 30, now=0.0)
    assert "Loading logs..." in frame.text()

    logs = tuple(LogLine(float(i), f"line {i}") for i in range(3))
    frame = render_frame(snapshot(view(WEB), logs=logs, log_focus=WEB.id), ui, 100, 30, now=0.0)
    text = frame.text()
    assert "Loading logs..." not in text
    assert "line 2" in text


def test_log_tail_shows_newest_lines():
    ui = UIState(selected_id=WEB.id)
    logs = tuple(LogLine(float(i), f"entry-{i:03d}") for i in range(200))
    frame = render_frame(snapshot(view(WEB), logs=logs, log_focus=WEB.id), ui, 100, 30, now=0.0)
    text = frame.text()
    assert "entry-199" in text
    assert "entry-000" not in text

    ui.logs_scroll_offset = 0
    frame = render_frame(snapshot(view(WEB), logs=logs, log_focus=WEB.id), ui, 100, 30, now=0.0)
    assert "entry-000" in frame.text()


def test_filter_prompt_in_footer():
    ui = UIState(is_filtering=True, filter_text="ng")
    frame = render_frame(snapshot(view(WEB)), ui, 80, 24, now=0.0)
    assert "FILTER:" in frame.row_text(23)
    assert "ng" in frame.row_text(23)


def test_overlays():
    snap = snapshot(view(WEB), error=ErrorInfo(1, "Stop web failed: conflict"))
    assert "HELP" in render_frame(snap, UIState(mode=HelpMode()), 100, 30, now=0.0).text()
    confirm = render_frame(snap, UIState(mode=ConfirmDeleteMode(WEB.id, "web")), 100, 30, now=0.0)
    assert "Delete container web?" in confirm.text()
    error = render_frame(snap, UIState(mode=ErrorMode("Stop web failed: conflict")), 100, 30, now=0.0)
    assert "Stop web failed: conflict" in error.text()
    assert "press c to dismiss" in error.text()


def test_error_overlay_names_configured_dismiss_keys():
    ui = UIState(mode=ErrorMode("boom"))
    frame = render_frame(snapshot(view(WEB)), ui, 100, 30, now=0.0, dismiss_keys=["x", "esc"])
    assert "press x or esc to dismiss" in frame.text()


def net_view(container, rx, tx):
    sample = MetricsSample(timestamp=0.0, cpu_percent=1.0, memory_bytes=0,
                           memory_limit_bytes=0, rx_bytes=rx, tx_bytes=tx)
    return ContainerView(container=container, metrics=(sample,))


def test_network_columns_and_sorting():
    snap = snapshot(net_view(WEB, rx=5_000, tx=9_000_000), net_view(DB, rx=2_000_000, tx=1_000))
    frame = render_frame(snap, UIState(), 120, 30, now=0.0)
    header = frame.row_text(HEADER_ROW)
    assert header.index("MEM") < header.index("RX") < header.index("TX") < header.index("ID")
    assert "9.00 MB" in frame.text()

    by_rx = visible_containers(snap, UIState(sort_key="rx", sort_ascending=False))
    assert [v.container.name for v in by_rx] == ["db", "web"]
    by_tx = visible_containers(snap, UIState(sort_key="tx", sort_ascending=False))
    assert [v.container.name for v in by_tx] == ["web", "db"]


def test_header_column_at_matches_drawn_labels():
    frame = render_frame(snapshot(view(WEB)), UIState(), 120, 30, now=0.0)
    header = frame.row_text(HEADER_ROW)
    for label, key in [("NAME", "name"), ("STATUS", "status"), ("CPU", "cpu"), ("MEM", "memory"),
                       ("RX", "rx"), ("TX", "tx"), ("ID", "id"), ("IMAGE", "image")]:
        assert header_column_at(header.index(label), 120) == key
    assert header_column_at(header.index("PROJECT"), 120) is None
    assert header_column_at(0, 120) is None


def test_row_at_accounts_for_scroll():
    ui = UIState(scroll_offset=4)
    assert row_at(TABLE_TOP, ui, 30) == 4
    assert row_at(TABLE_TOP + 2, ui, 30) == 6
    assert row_at(TABLE_TOP - 1, ui, 30) is None
    assert row_at(25, ui, 30) is None


def test_confirm_button_at_matches_drawn_dialog():
    ui = UIState(mode=ConfirmDeleteMode(WEB.id, "web"))
    frame = render_frame(snapshot(view(WEB)), ui, 100, 30, now=0.0)
    y = next(i for i in range(30) if "[y] yes" in frame.row_text(i))
    row = frame.row_text(y)
    assert confirm_button_at(row.index("[y] yes"), y, "web", 100, 30) == "yes"
    assert confirm_button_at(row.index("[n] no") + 5, y, "web", 100, 30) == "no"
    assert confirm_button_at(row.index("[y] yes") + 8, y, "web", 100, 30) is None
    assert confirm_button_at(row.index("[y] yes"), y - 1, "web", 100, 30) is None


def test_footer_shows_notice():
    ui = UIState(info="✓ mouse capture enabled")
    frame = render_frame(snapshot(view(WEB)), ui, 100, 24, now=0.0)
    assert "✓ mouse capture enabled" in frame.row_text(23)
