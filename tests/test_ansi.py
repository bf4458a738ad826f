from __future__ import annotations

import pytest

from bridge_mcp.pty import has_ansi, strip_ansi


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("\x1b[31mred\x1b[0m", "red"),
        ("\x1b[1;32;40mbold green\x1b[m", "bold green"),
        ("\x1b[?25lhidden cursor\x1b[?25h", "hidden cursor"),
        ("\x1b[2J\x1b[Hcleared", "cleared"),
        ("\x1b]0;window title\x07body", "body"),
        ("\x1b]8;;https://example.com\x1b\\link\x1b]8;;\x1b\\", "link"),
        ("\x1bPpayload\x1b\\after", "after"),
        ("\x1b(Bascii", "ascii"),
        ("\x1b7saved\x1b8", "saved"),
        ("\x9b1mc1 csi", "c1 csi"),
    ],
)
def test_strip_ansi_removes_control_sequences(raw: str, expected: str) -> None:
    assert strip_ansi(raw) == expected


def test_strip_ansi_leaves_plain_text_untouched() -> None:
    text = "Do you want to proceed? [y/N]\nline two\ttabbed"
    assert strip_ansi(text) == text
    assert strip_ansi("") == ""


def test_strip_ansi_removes_sequences_formed_by_removal() -> None:
    assert strip_ansi("\x1b\x1b[31m[0mok") == "ok"


def test_strip_ansi_keeps_unicode() -> None:
    assert strip_ansi("\x1b[33m✓ done · ok\x1b[0m") == "✓ done · ok"


def test_has_ansi() -> None:
    assert has_ansi("\x1b[0m")
    assert has_ansi("\x9b0m")
    assert not has_ansi("plain [0m text")
