"""Deterministic sanitizers for operator-supplied text."""

from __future__ import annotations


def sanitize_text(value: str | None, max_len: int = 5000) -> str:
    """Strip NUL bytes and surrounding whitespace, then truncate."""
    if value is None:
        return ""
    cleaned = str(value).replace("\x00", "").strip()
    return cleaned[:max_len]


def optional_text(value: str | None, max_len: int = 5000) -> str | None:
    """``sanitize_text`` that keeps ``None`` for blank input."""
    cleaned = sanitize_text(value, max_len=max_len)
    return cleaned or None
