"""
Shared types for carryzone.

Pins and their metadata, the sync queue vocabulary, and the tagged unions
the sync engine publishes (sync status, remote change events). These are
the contract between the local store, the remote data source, and the
sync engine.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from carryzone.errors import UploadPartialFailure

# === Shared Utility Functions ===

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    """Get current time as epoch milliseconds."""
    return datetime_to_ms(datetime.now(timezone.utc))


def datetime_to_ms(dt: datetime) -> int:
    """Convert an aware (or UTC-naive) datetime to epoch milliseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def ms_to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=ms)


def new_pin_id() -> str:
    return str(uuid.uuid4())


# === Enums ===


class PinStatus(str, Enum):
    """Carry-zone status of a pin.

    The integer code is what the remote backend stores; the cycle order is
    ALLOWED -> UNCERTAIN -> NO_GUN -> ALLOWED.
    """

    ALLOWED = "ALLOWED"  # Green
    UNCERTAIN = "UNCERTAIN"  # Yellow
    NO_GUN = "NO_GUN"  # Red

    @property
    def code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY_NAMES[self]

    def next(self) -> "PinStatus":
        """Return the next status in the cycle."""
        return _STATUS_CYCLE[self]

    @classmethod
    def from_code(cls, code: Optional[int]) -> "PinStatus":
        """Convert an integer status code, falling back to ALLOWED."""
        for status, status_code in _STATUS_CODES.items():
            if status_code == code:
                return status
        return cls.ALLOWED


_STATUS_CODES = {
    PinStatus.ALLOWED: 0,
    PinStatus.UNCERTAIN: 1,
    PinStatus.NO_GUN: 2,
}

_STATUS_DISPLAY_NAMES = {
    PinStatus.ALLOWED: "Allowed",
    PinStatus.UNCERTAIN: "Uncertain",
    PinStatus.NO_GUN: "No Guns",
}

_STATUS_CYCLE = {
    PinStatus.ALLOWED: PinStatus.UNCERTAIN,
    PinStatus.UNCERTAIN: PinStatus.NO_GUN,
    PinStatus.NO_GUN: PinStatus.ALLOWED,
}


class RestrictionTag(str, Enum):
    """Reason carry is restricted at a location (meaningful for NO_GUN pins)."""

    FEDERAL_PROPERTY = "FEDERAL_PROPERTY"
    AIRPORT_SECURE = "AIRPORT_SECURE"
    STATE_LOCAL_GOVT = "STATE_LOCAL_GOVT"
    SCHOOL_K12 = "SCHOOL_K12"
    COLLEGE_UNIVERSITY = "COLLEGE_UNIVERSITY"
    BAR_ALCOHOL = "BAR_ALCOHOL"
    HEALTHCARE = "HEALTHCARE"
    PLACE_OF_WORSHIP = "PLACE_OF_WORSHIP"
    SPORTS_ENTERTAINMENT = "SPORTS_ENTERTAINMENT"
    PRIVATE_PROPERTY = "PRIVATE_PROPERTY"

    @property
    def display_name(self) -> str:
        return _RESTRICTION_TAG_INFO[self][0]

    @property
    def description(self) -> str:
        return _RESTRICTION_TAG_INFO[self][1]

    @classmethod
    def from_string(cls, name: Optional[str]) -> Optional["RestrictionTag"]:
        """Look up a tag by name. Unknown or missing names give None."""
        if name is None:
            return None
        try:
            return cls(name)
        except ValueError:
            return None


_RESTRICTION_TAG_INFO: Dict[RestrictionTag, tuple] = {
    RestrictionTag.FEDERAL_PROPERTY: (
        "Federal Government Property",
        "Federal building, post office, military base, VA facility, courthouse, or tribal land",
    ),
    RestrictionTag.AIRPORT_SECURE: ("Airport Secure Area", "Past TSA security checkpoint"),
    RestrictionTag.STATE_LOCAL_GOVT: (
        "State/Local Government Property",
        "State/local government building, courthouse, or polling place",
    ),
    RestrictionTag.SCHOOL_K12: ("School (K-12)", "Elementary, middle, or high school campus"),
    RestrictionTag.COLLEGE_UNIVERSITY: ("College/University", "College or university campus"),
    RestrictionTag.BAR_ALCOHOL: (
        "Bar/Alcohol Establishment",
        "Bar, restaurant, or venue with alcohol restrictions",
    ),
    RestrictionTag.HEALTHCARE: (
        "Healthcare Facility",
        "Hospital, medical clinic, or childcare facility",
    ),
    RestrictionTag.PLACE_OF_WORSHIP: (
        "Place of Worship",
        "Church, mosque, temple, or religious facility",
    ),
    RestrictionTag.SPORTS_ENTERTAINMENT: (
        "Sports/Entertainment Venue",
        "Sports stadium, arena, concert hall, or amusement park",
    ),
    RestrictionTag.PRIVATE_PROPERTY: (
        "Private Property",
        "Private business, workplace, or property restricting carry",
    ),
}


class SyncOperation(str, Enum):
    """Kind of mutation waiting in the sync queue."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncState(str, Enum):
    """Discriminator for SyncStatus."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class ChangeType(str, Enum):
    """Discriminator for PinChangeEvent."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# === Pin Types ===


@dataclass(frozen=True)
class Location:
    """A geographic coordinate in decimal degrees.

    Construction fails with ValueError when latitude is outside [-90, 90]
    or longitude is outside [-180, 180].
    """

    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError("Latitude must be between -90 and 90")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError("Longitude must be between -180 and 180")

    @classmethod
    def from_lng_lat(cls, longitude: float, latitude: float) -> "Location":
        """Create a Location from longitude first (map library convention)."""
        return cls(latitude=latitude, longitude=longitude)


@dataclass(frozen=True)
class PinMetadata:
    """Additional information attached to a pin."""

    photo_uri: Optional[str] = None
    notes: Optional[str] = None
    votes: int = 0
    created_by: Optional[str] = None  # User ID of the creator
    created_at: int = field(default_factory=now_ms)  # Epoch milliseconds
    last_modified: int = field(default_factory=now_ms)  # Epoch milliseconds
    restriction_tag: Optional[RestrictionTag] = None
    has_security_screening: bool = False
    has_posted_signage: bool = False


@dataclass(frozen=True)
class Pin:
    """A user-created map annotation recording carry-zone status at a location."""

    location: Location
    name: str = ""
    status: PinStatus = PinStatus.ALLOWED
    metadata: PinMetadata = field(default_factory=PinMetadata)
    id: str = field(default_factory=new_pin_id)

    @property
    def last_modified(self) -> int:
        return self.metadata.last_modified

    def _touched(self, metadata: PinMetadata) -> PinMetadata:
        # last_modified never moves backwards, even if the wall clock does
        return replace(metadata, last_modified=max(now_ms(), self.metadata.last_modified))

    def with_status(self, status: PinStatus) -> "Pin":
        """Return a copy with a new status and a bumped last_modified."""
        return replace(self, status=status, metadata=self._touched(self.metadata))

    def with_next_status(self) -> "Pin":
        """Return a copy with the next status in the cycle."""
        return self.with_status(self.status.next())

    def with_metadata(self, metadata: PinMetadata) -> "Pin":
        """Return a copy with new metadata and a bumped last_modified."""
        return replace(self, metadata=self._touched(metadata))

    @classmethod
    def from_lng_lat(
        cls,
        longitude: float,
        latitude: float,
        status: PinStatus = PinStatus.ALLOWED,
        name: str = "",
    ) -> "Pin":
        return cls(location=Location.from_lng_lat(longitude, latitude), status=status, name=name)


# === Sync Types ===


@dataclass
class QueuedOperation:
    """A pending mutation awaiting propagation to the remote store."""

    id: int
    pin_id: str
    operation: SyncOperation
    timestamp: int  # Epoch milliseconds when queued
    # Retry tracking
    retry_count: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SyncStatus:
    """Current state of synchronization.

    A tagged union: ``state`` selects which payload fields are meaningful.
    Build values through the constructors rather than directly.
    """

    state: SyncState
    pending_count: int = 0
    uploaded_count: int = 0
    downloaded_count: int = 0
    message: Optional[str] = None
    retryable: bool = True

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(SyncState.IDLE)

    @classmethod
    def syncing(cls, pending_count: int) -> "SyncStatus":
        return cls(SyncState.SYNCING, pending_count=pending_count)

    @classmethod
    def success(cls, uploaded_count: int, downloaded_count: int) -> "SyncStatus":
        return cls(
            SyncState.SUCCESS, uploaded_count=uploaded_count, downloaded_count=downloaded_count
        )

    @classmethod
    def error(cls, message: str, retryable: bool = True) -> "SyncStatus":
        return cls(SyncState.ERROR, message=message, retryable=retryable)

    def __str__(self) -> str:
        if self.state == SyncState.SYNCING:
            return f"Syncing({self.pending_count})"
        if self.state == SyncState.SUCCESS:
            return f"Success(uploaded={self.uploaded_count}, downloaded={self.downloaded_count})"
        if self.state == SyncState.ERROR:
            return f"Error({self.message!r}, retryable={self.retryable})"
        return "Idle"


@dataclass(frozen=True)
class PinChangeEvent:
    """A change pushed by the remote change feed.

    INSERT and UPDATE carry the pin; DELETE carries only ``pin_id``.
    """

    change: ChangeType
    pin_id: str
    pin: Optional[Pin] = None

    @classmethod
    def insert(cls, pin: Pin) -> "PinChangeEvent":
        return cls(ChangeType.INSERT, pin.id, pin)

    @classmethod
    def update(cls, pin: Pin) -> "PinChangeEvent":
        return cls(ChangeType.UPDATE, pin.id, pin)

    @classmethod
    def delete(cls, pin_id: str) -> "PinChangeEvent":
        return cls(ChangeType.DELETE, pin_id)


@dataclass
class SyncResult:
    """Result of a sync pass."""

    uploaded: int = 0  # Queue entries pushed to remote
    downloaded: int = 0  # Remote pins inserted or overwritten locally
    discarded: int = 0  # Entries dropped (orphaned or retry ceiling reached)
    still_queued: int = 0  # Entries that failed and remain for the next pass
    error: Optional[Exception] = None  # Hard failure that ended the pass
    errors: List[str] = field(default_factory=list)  # Per-entry and per-pin messages

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def partial_failure(self) -> bool:
        """Whether some entries stayed queued after failing this pass."""
        return self.still_queued > 0

    @property
    def upload_failure(self) -> Optional[UploadPartialFailure]:
        """Informational error describing entries left queued, if any."""
        if self.still_queued:
            return UploadPartialFailure(self.still_queued)
        return None
