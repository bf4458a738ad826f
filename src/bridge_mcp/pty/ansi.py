"""Terminal escape sequence filtering."""

from __future__ import annotations

import re

ANSI_RE = re.compile(
    r"(?:\x1b\[|\x9b)[\x30-\x3f]*[\x20-\x2f]*[\x40-\x7e]"  # CSI, including ?-prefixed private modes
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC terminated by BEL or ST
    r"|\x1b[PX^_][^\x1b]*\x1b\\"  # DCS / SOS / PM / APC strings
    r"|\x1b[()*+][A-Za-z0-9]"  # character set selection
    r"|\x1b[\x20-\x2f]*[\x30-\x7e]"  # remaining two-character escapes
)


def strip_ansi(text: str) -> str:
    """Remove terminal control sequences (colors, cursor movement, titles) from ``text``."""

    previous = None
    # Removing one sequence can join its neighbours into a new one.
    while previous != text and has_ansi(text):
        previous, text = text, ANSI_RE.sub("", text)
    return text


def has_ansi(text: str) -> bool:
    return "\x1b" in text or "\x9b" in text


__all__ = ["ANSI_RE", "has_ansi", "strip_ansi"]
