"""Typed records parsed from the subprocess's NDJSON output.

Each non-empty stdout line is a JSON object with a ``type``
discriminator. parse_record() maps it onto one of the record classes
below; unrecognised types become UnknownRecord instead of being
dropped, so callers always see everything the tool emitted.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .errors import MalformedOutputError

CONTENT_TYPES = frozenset({"assistant", "user", "message", "content", "stream_event"})


@dataclass
class OutputRecord:
    """Base record. ``raw`` is the decoded JSON object, untouched."""
    kind: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return str(self.raw.get("type", ""))


@dataclass
class SessionInit(OutputRecord):
    kind: str = "session_init"
    session_id: str = ""


@dataclass
class Content(OutputRecord):
    """Conversation content, forwarded opaquely."""
    kind: str = "content"

    @property
    def payload(self) -> dict[str, Any]:
        return self.raw


@dataclass
class TurnResult(OutputRecord):
    """Marks the end of a turn. Usage and cost fields stay in ``raw``."""
    kind: str = "turn_result"

    @property
    def metadata(self) -> dict[str, Any]:
        return {k: v for k, v in self.raw.items() if k != "type"}

    @property
    def is_error(self) -> bool:
        return bool(self.raw.get("is_error", False))


@dataclass
class UpstreamErrorRecord(OutputRecord):
    kind: str = "upstream_error"
    message: str = ""
    code: str | None = None


@dataclass
class UnknownRecord(OutputRecord):
    kind: str = "unknown"
    line: str = ""


def _find_session_id(data: dict[str, Any]) -> str:
    for source in (data, data.get("data"), data.get("message")):
        if not isinstance(source, dict):
            continue
        for key in ("session_id", "sessionId"):
            value = source.get(key)
            if isinstance(value, str) and value:
                return value
    return ""


def _error_fields(data: dict[str, Any]) -> tuple[str, str | None]:
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or data.get("message") or "unknown error"
        code = error.get("code")
    else:
        message = error if isinstance(error, str) and error else (
            data.get("message") or "unknown error"
        )
        code = data.get("code")
    return str(message), (str(code) if code is not None else None)


def classify(data: dict[str, Any], line: str = "") -> OutputRecord:
    """Map a decoded JSON object onto its record class."""
    record_type = data.get("type")

    if record_type == "init" or (
        record_type == "system" and data.get("subtype") == "init"
    ):
        session_id = _find_session_id(data)
        if session_id:
            return SessionInit(raw=data, session_id=session_id)
        return UnknownRecord(raw=data, line=line)

    if record_type == "result":
        return TurnResult(raw=data)

    if record_type == "error":
        message, code = _error_fields(data)
        return UpstreamErrorRecord(raw=data, message=message, code=code)

    if record_type in CONTENT_TYPES:
        return Content(raw=data)

    return UnknownRecord(raw=data, line=line)


def parse_record(line: str) -> OutputRecord:
    """Parse one stdout line. Raises MalformedOutputError."""
    text = line.strip()
    if not text:
        raise MalformedOutputError(line, "empty line")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(text, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedOutputError(text, f"expected object, got {type(data).__name__}")
    return classify(data, text)
