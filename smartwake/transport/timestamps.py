from __future__ import annotations

from datetime import datetime, timezone

from smartwake.domain.errors import DecodingError

# Tried in order. %z accepts both "Z" and "+00:00"; the naive variants are
# assumed to be UTC.
_AWARE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)
_NAIVE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
)


def parse_service_timestamp(value: str) -> datetime:
    """
    Parse a timestamp emitted by the calculation service.

    Accepted variants include ``2025-06-10T06:42:00.123Z``,
    ``2025-06-10T06:42:00Z`` and ``2025-06-10T06:42:00+00:00`` (with or
    without fractional seconds). Strings without an offset are taken as UTC.

    Returns
    -------
    datetime
        Timezone-aware datetime.

    Raises
    ------
    DecodingError
        If no accepted variant matches.
    """
    if not isinstance(value, str) or not value.strip():
        raise DecodingError(f"Invalid date format: {value!r}")

    text = value.strip()
    normalized = text[:-1] + "+00:00" if text.endswith("Z") else text

    for fmt in _AWARE_FORMATS:
        try:
            return datetime.strptime(normalized, fmt)
        except ValueError:
            continue

    for fmt in _NAIVE_FORMATS:
        try:
            return datetime.strptime(normalized, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    raise DecodingError(f"Invalid date format: {value}")


def format_service_timestamp(dt: datetime) -> str:
    """Render ``dt`` as UTC ISO-8601 with a ``Z`` suffix and whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
