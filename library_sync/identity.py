"""
Identity Correlation Model

Shared vocabulary for records that live partly in PostgreSQL (authoritative
transactional facts) and partly in ScyllaDB (rich content, counters,
telemetry), and for the correlation keys that link them.

Two ID authorities exist:
- Books: PostgreSQL generates ``book_id``; the document borrows it as
  ``mysql_book_id``.
- Members: the client generates a UUID up front; PostgreSQL stores it as
  ``profile_ref`` and the profile document uses it as its own ``id``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

# Document-store collections (CQL tables)
BOOK_CONTENT = "book_content"
BOOK_ANALYTICS = "book_analytics"
BOOK_ANALYTICS_COUNTERS = "book_analytics_counters"
MEMBER_PROFILES = "member_profiles"
TELEMETRY_EVENTS = "telemetry_events"

# Placeholders used when a companion document is missing or a field is unset
DEFAULT_SYNOPSIS = "No synopsis available."
DEFAULT_COVER_IMAGE_URL = "/assets/default-cover.png"
DEFAULT_TOTAL_COPIES = 1

# Telemetry session used when the caller has none
ANONYMOUS_SESSION = "anonymous-session"

COUNTER_FIELDS = ("total_views", "total_borrows", "total_returns")


class EventType:
    """Telemetry event types."""

    PAGE_VIEW = "PAGE_VIEW"
    SEARCH_EXECUTED = "SEARCH_EXECUTED"
    UI_CLICK = "UI_CLICK"
    BOOK_HOVER = "BOOK_HOVER"


def new_document_id() -> uuid.UUID:
    """Generate a document identifier entirely client-side."""
    return uuid.uuid4()


def as_book_key(value: Any) -> int:
    """Normalize a book correlation key to ``int``."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid book key: {value!r}")
    return int(value)


def as_profile_key(value: Any) -> str:
    """Normalize a profile correlation key to its canonical UUID string."""
    if value is None:
        raise ValueError("Profile key cannot be NULL")
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(uuid.UUID(str(value)))


def as_copy_count(value: Any) -> int:
    """Normalize an inventory copy count; zero is a valid count."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid copy count: {value!r}")
    count = int(value)
    if count < 0:
        raise ValueError(f"Copy count cannot be negative: {count}")
    return count


@dataclass(frozen=True)
class CorrelationLink:
    """
    Describes one cross-store correlation.

    Attributes:
        entity: Logical entity name ("book", "member")
        relational_table: Table holding the authoritative row
        relational_id: Relational primary key column
        relational_key: Relational column holding the correlation key
        document_collection: Collection holding the companion document
        document_key: Document field holding the correlation key
        normalize: Converts raw key values from either side to one comparable type
    """

    entity: str
    relational_table: str
    relational_id: str
    relational_key: str
    document_collection: str
    document_key: str
    normalize: Callable[[Any], Any]


BOOK_LINK = CorrelationLink(
    entity="book",
    relational_table="books",
    relational_id="book_id",
    relational_key="book_id",
    document_collection=BOOK_CONTENT,
    document_key="mysql_book_id",
    normalize=as_book_key,
)

MEMBER_LINK = CorrelationLink(
    entity="member",
    relational_table="members",
    relational_id="member_id",
    relational_key="profile_ref",
    document_collection=MEMBER_PROFILES,
    document_key="id",
    normalize=as_profile_key,
)


@dataclass
class DocumentBookRecord:
    """Rich content for a book, keyed by the relational ``book_id``."""

    id: uuid.UUID
    mysql_book_id: int
    synopsis: Optional[str] = None
    cover_image_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    total_copies: int = DEFAULT_TOTAL_COPIES
    available_copies: int = DEFAULT_TOTAL_COPIES
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def placeholder(cls, book_id: int, document_id: Optional[uuid.UUID] = None, **content) -> "DocumentBookRecord":
        """
        Build a companion document, filling unset content with placeholders.

        Args:
            book_id: Relational book id (the correlation key)
            document_id: Preset document id (generated when omitted)
            **content: synopsis, cover_image_url, tags, total_copies

        Returns:
            DocumentBookRecord ready to be written

        Raises:
            ValueError: If total_copies is negative or not an integer
        """
        copies = content.get("total_copies")
        copies = DEFAULT_TOTAL_COPIES if copies is None else as_copy_count(copies)
        return cls(
            id=document_id or new_document_id(),
            mysql_book_id=as_book_key(book_id),
            synopsis=content.get("synopsis") or DEFAULT_SYNOPSIS,
            cover_image_url=content.get("cover_image_url") or DEFAULT_COVER_IMAGE_URL,
            tags=list(content.get("tags") or []),
            total_copies=copies,
            available_copies=copies,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "mysql_book_id": self.mysql_book_id,
            "synopsis": self.synopsis,
            "cover_image_url": self.cover_image_url,
            "tags": list(self.tags),
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class AnalyticsCounterDocument:
    """
    Behavioral counters for one book content document.

    Counters only ever grow; ``return_durations`` is append-only.
    """

    book_mongo_id: uuid.UUID
    total_views: int = 0
    total_borrows: int = 0
    total_returns: int = 0
    return_durations: List[int] = field(default_factory=list)

    @property
    def conversion_rate(self) -> float:
        if self.total_views <= 0:
            return 0.0
        return round(self.total_borrows / self.total_views, 4)

    @property
    def avg_return_time_days(self) -> float:
        if not self.return_durations:
            return 0.0
        return round(sum(self.return_durations) / len(self.return_durations), 2)

    @classmethod
    def from_documents(
        cls,
        book_mongo_id: uuid.UUID,
        counters: Optional[Dict[str, Any]],
        sequence: Optional[Dict[str, Any]]
    ) -> "AnalyticsCounterDocument":
        counters = counters or {}
        sequence = sequence or {}
        return cls(
            book_mongo_id=book_mongo_id,
            total_views=counters.get("total_views") or 0,
            total_borrows=counters.get("total_borrows") or 0,
            total_returns=counters.get("total_returns") or 0,
            return_durations=list(sequence.get("return_durations") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_mongo_id": str(self.book_mongo_id),
            "total_views": self.total_views,
            "total_borrows": self.total_borrows,
            "total_returns": self.total_returns,
            "return_durations": list(self.return_durations),
            "conversion_rate": self.conversion_rate,
            "avg_return_time_days": self.avg_return_time_days,
        }


@dataclass
class DocumentMemberProfile:
    """Member preferences; ``id`` must equal the relational ``profile_ref``."""

    id: uuid.UUID
    ui_theme: str = "light"
    reading_preferences: List[str] = field(default_factory=list)
    email_alerts: bool = True
    sms_alerts: bool = False
    created_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ui_theme": self.ui_theme,
            "reading_preferences": list(self.reading_preferences),
            "email_alerts": self.email_alerts,
            "sms_alerts": self.sms_alerts,
            "created_at": self.created_at,
        }


@dataclass
class TelemetryEventRecord:
    """Append-only telemetry entry. Never correlated, never repaired."""

    event_type: str
    session_id: str
    payload: Dict[str, str] = field(default_factory=dict)
    member_profile_id: Optional[uuid.UUID] = None
    occurred_at: Optional[datetime] = None
    event_id: uuid.UUID = field(default_factory=uuid.uuid1)

    def to_document(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "session_id": self.session_id,
            "member_profile_id": self.member_profile_id,
            "payload": {str(k): str(v) for k, v in self.payload.items()},
            "occurred_at": self.occurred_at,
        }


@dataclass(frozen=True)
class BookIngestResult:
    book_id: int
    document_id: uuid.UUID

    def to_dict(self) -> Dict[str, Any]:
        return {"book_id": self.book_id, "document_id": str(self.document_id)}


@dataclass(frozen=True)
class MemberRegistrationResult:
    member_id: int
    profile_id: uuid.UUID

    def to_dict(self) -> Dict[str, Any]:
        return {"member_id": self.member_id, "profile_id": str(self.profile_id)}
