"""Shared utility functions used by services and blueprints.

utcnow / as_utc:     timezone handling (SQLite returns naive datetimes)
parse_datetime:      ISO / DD.MM.YYYY input parsing, raises ValueError
parse_id_list:       normalise collaborator id lists from JSON bodies
"""
from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` as an aware UTC datetime.

    Naive values are taken to be UTC already; every timestamp written by the
    platform is UTC, and SQLite drops the offset on the way back.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def parse_datetime(value):
    """Parse a datetime string, raising ValueError on bad input.

    Supports:
    - YYYY-MM-DDTHH:MM:SS[.ffffff][+HH:MM|Z]
    - YYYY-MM-DD (midnight UTC)
    - DD.MM.YYYY (midnight UTC)
    - datetime / date objects

    Returns None for empty input. Result is always an aware UTC datetime.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        try:
            parsed = datetime.strptime(text, "%d.%m.%Y")
        except ValueError as exc:
            raise ValueError(
                f"Invalid datetime {value!r}. Use ISO 8601 or DD.MM.YYYY."
            ) from exc
        return parsed.replace(tzinfo=timezone.utc)


def parse_id_list(values) -> list[int]:
    """Coerce a list of ids to ints, dropping duplicates but keeping order.

    Raises ValueError when ``values`` is not a list or holds a non-integer.
    """
    if values is None:
        return []
    if not isinstance(values, (list, tuple)):
        raise ValueError("Expected a list of ids")
    seen: set[int] = set()
    result: list[int] = []
    for raw in values:
        if isinstance(raw, bool):
            raise ValueError(f"Invalid id {raw!r}")
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid id {raw!r}") from exc
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result

