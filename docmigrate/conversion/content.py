"""Content preparation for the note pipeline.

Note wrappers store rich text, so plain legacy note bodies are HTML-escaped
and their line breaks turned into ``<br>`` before they are handed over.
"""
from __future__ import annotations

import html
import re

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def escape_note_content(body: str | None) -> str:
    if not body:
        return ""
    return _LINE_BREAK.sub("<br>", html.escape(body, quote=True))


def attachment_content(payload: bytes | str | None) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)
