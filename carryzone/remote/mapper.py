"""Wire mapping between Pin objects and remote pin rows.

Handles:
- Field naming (snake_case columns)
- Timestamp formats (ISO 8601 <-> epoch milliseconds)
- Status codes (int <-> PinStatus)
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Union

from carryzone.types import (
    Location,
    Pin,
    PinMetadata,
    PinStatus,
    RestrictionTag,
    datetime_to_ms,
    ms_to_datetime,
    now_ms,
)

logger = logging.getLogger(__name__)

# Fractional seconds of any length; normalized to microseconds before parsing
_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Union[str, int, float, None]) -> int:
    """Parse an ISO 8601 timestamp (or epoch ms number) to epoch milliseconds.

    Example: "2023-10-15T12:30:45.123456Z" -> 1697373045123

    Unparseable values fall back to the current time with a warning.
    """
    if isinstance(value, bool):
        value = None
    if isinstance(value, (int, float)):
        return int(value)
    if not value:
        logger.warning("Missing timestamp, using current time")
        return now_ms()
    try:
        text = value.strip().replace("Z", "+00:00").replace(" ", "T", 1)
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return datetime_to_ms(dt)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse timestamp {value!r}: {e}")
        return now_ms()


def format_timestamp(epoch_ms: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC string.

    Example: 1697373045123 -> "2023-10-15T12:30:45.123Z"
    """
    dt = ms_to_datetime(epoch_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def row_to_pin(row: Dict[str, Any]) -> Pin:
    """Convert a remote row to a Pin.

    Raises KeyError/ValueError for rows missing coordinates or holding
    out-of-range ones.
    """
    return Pin(
        id=str(row["id"]),
        name=row.get("name") or "",
        location=Location.from_lng_lat(float(row["longitude"]), float(row["latitude"])),
        status=PinStatus.from_code(row.get("status")),
        metadata=PinMetadata(
            photo_uri=row.get("photo_uri"),
            notes=row.get("notes"),
            votes=row.get("votes") or 0,
            created_by=row.get("created_by"),
            created_at=parse_timestamp(row.get("created_at")),
            last_modified=parse_timestamp(row.get("last_modified")),
            restriction_tag=RestrictionTag.from_string(row.get("restriction_tag")),
            has_security_screening=bool(row.get("has_security_screening", False)),
            has_posted_signage=bool(row.get("has_posted_signage", False)),
        ),
    )


def pin_to_row(pin: Pin) -> Dict[str, Any]:
    """Convert a Pin to a remote row."""
    meta = pin.metadata
    return {
        "id": pin.id,
        "name": pin.name,
        "longitude": pin.location.longitude,
        "latitude": pin.location.latitude,
        "status": pin.status.code,
        "photo_uri": meta.photo_uri,
        "notes": meta.notes,
        "votes": meta.votes,
        "created_by": meta.created_by,
        "created_at": format_timestamp(meta.created_at),
        "last_modified": format_timestamp(meta.last_modified),
        "restriction_tag": meta.restriction_tag.value if meta.restriction_tag else None,
        "has_security_screening": meta.has_security_screening,
        "has_posted_signage": meta.has_posted_signage,
    }


def rows_to_pins(rows: Iterable[Dict[str, Any]]) -> List[Pin]:
    """Convert rows, skipping (and logging) any that cannot be mapped."""
    pins = []
    for row in rows:
        try:
            pins.append(row_to_pin(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed remote pin {row.get('id', '?')}: {e}")
    return pins
