"""UTC timestamp helpers. Wire timestamps are second precision with a ``Z`` suffix."""

from __future__ import annotations

from datetime import UTC, datetime

_WIRE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

__all__ = ["format_utc", "parse_utc", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def format_utc(value: datetime) -> str:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(UTC).strftime(_WIRE_FORMAT)


def parse_utc(value: object) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are rejected."""

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"expected ISO-8601 string, got {value!r}")
    text = value.strip()
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"invalid ISO-8601 datetime: {value!r}") from exc
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"datetime must be timezone-aware: {value!r}")
    return parsed.astimezone(UTC)
