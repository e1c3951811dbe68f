"""Decode one stream-json line into a typed event.

``decode_line`` never raises: every malformed input becomes a
``DecodeFailure`` carrying the reason and the raw line, so the caller
can skip it and keep streaming.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from planbridge.stream.events import EVENT_ADAPTER, Event, UnknownEvent

EMPTY_LINE = "Empty line"
NOT_AN_OBJECT = "Parsed value is not an object"
MISSING_TYPE = "Missing or invalid type field"


@dataclass(frozen=True)
class DecodeSuccess:
    """A line that decoded to an event; ``raw`` is the JSON object as sent.

    ``note`` is set when a recognised event was unusable and decoded as
    ``UnknownEvent`` instead.
    """

    event: Event
    raw: dict[str, Any] = field(repr=False)
    note: str | None = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DecodeFailure:
    """A line that could not be decoded."""

    error: str
    raw_line: str

    @property
    def ok(self) -> bool:
        return False


DecodeResult = DecodeSuccess | DecodeFailure


def decode_line(line: str) -> DecodeResult:
    """Parse a single line of CLI stdout."""
    trimmed = line.strip()
    if not trimmed:
        return DecodeFailure(EMPTY_LINE, line)

    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError as exc:
        return DecodeFailure(str(exc), line)
    except RecursionError:
        return DecodeFailure("JSON nesting too deep", line)

    if not isinstance(data, dict):
        return DecodeFailure(NOT_AN_OBJECT, line)

    if not isinstance(data.get("type"), str):
        return DecodeFailure(MISSING_TYPE, line)

    try:
        event = EVENT_ADAPTER.validate_python(data)
    except ValidationError as exc:
        # Still forwarded; the reducer ignores it.
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first["loc"]) or "event"
        note = f"Unusable {data['type']} event: {loc}: {first['msg']}"
        return DecodeSuccess(UnknownEvent(type=data["type"]), data, note=note)

    return DecodeSuccess(event, data)


def decode_output(text: str) -> list[DecodeResult]:
    """Decode multi-line CLI output, skipping blank lines."""
    results: list[DecodeResult] = []
    for line in text.split("\n"):
        result = decode_line(line)
        if isinstance(result, DecodeFailure) and result.error == EMPTY_LINE:
            continue
        results.append(result)
    return results
