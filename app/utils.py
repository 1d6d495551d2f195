"""Utility helpers for the MovieStream service."""

from __future__ import annotations

import json
from typing import Any, Hashable, Iterable, TypeVar

T = TypeVar("T", bound=Hashable)


def extract_year(value: object) -> int | None:
    """Return the year prefix of an ISO date string, if any."""

    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None


def round_rating(value: object) -> float:
    """Parse an upstream rating and round it to one decimal place."""

    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        return round(float(value), 1)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def ordered_unique(values: Iterable[T]) -> list[T]:
    """Drop repeated values while keeping first-seen order."""

    seen: set[T] = set()
    result: list[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def format_sse(event: str, payload: dict[str, Any]) -> str:
    """Encode a payload as a single Server-Sent Events frame."""

    data = json.dumps(payload, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"
