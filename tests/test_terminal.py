"""Tests for curses input translation (no screen needed)."""

import curses

import pytest

from dockwatch.terminal import Frame, MouseEvent, Segment, translate_key, translate_mouse


@pytest.mark.parametrize("code,name", [
    (curses.KEY_UP, "up"),
    (curses.KEY_NPAGE, "pgdn"),
    (27, "esc"),
    (9, "tab"),
    (3, "ctrl-c"),
    (ord("x"), "x"),
    (ord("?"), "?"),
])
def test_translate_key(code, name):
    assert translate_key(code) == name


def test_unmapped_key_is_ignored():
    assert translate_key(curses.KEY_F12) is None


def test_translate_mouse():
    assert translate_mouse(4, 7, curses.BUTTON1_PRESSED) == MouseEvent(4, 7, "click")
    assert translate_mouse(4, 7, curses.BUTTON1_CLICKED) == MouseEvent(4, 7, "click")
    assert translate_mouse(0, 0, curses.BUTTON4_PRESSED) == MouseEvent(0, 0, "scroll_up")
    assert translate_mouse(0, 0, 0x200000) == MouseEvent(0, 0, "scroll_down")
    assert translate_mouse(0, 0, curses.BUTTON1_RELEASED) is None


def test_frame_text():
    frame = Frame(10, 2, rows=[[Segment("ab"), Segment("cd", "bold")]])
    assert frame.row_text(0) == "abcd"
    assert frame.row_text(1) == ""
    assert frame.text() == "abcd"
