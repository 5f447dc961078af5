"""
Memory domain models.

These models define the durable memory record, the transient processing
result returned by the server, and the request body sent to it.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

__all__ = [
    "Memory",
    "ProcessingResult",
    "ProcessMemoryRequest",
    "sort_memories",
    "format_time_ago",
    "DEFAULT_TITLE",
    "DEFAULT_CATEGORY",
    "DEFAULT_MOOD",
]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DEFAULT_TITLE = "Untitled Memory"
DEFAULT_CATEGORY = "Other"
DEFAULT_MOOD = "neutral"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessMemoryRequest(BaseModel):
    """Body of a POST /api/process-memory request."""

    audio: str = Field(..., description="Base64 encoded audio payload")


class ProcessingResult(BaseModel):
    """Structured fields extracted from one voice memo."""

    transcript: str
    title: str
    category: str
    action_items: List[str]
    mood: str


class Memory(BaseModel):
    """One captured and structured voice note.

    ``created_at`` is held as an aware datetime in memory and travels as
    epoch milliseconds under the ``createdAt`` key.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    category: str = DEFAULT_CATEGORY
    action_items: List[str] = Field(default_factory=list)
    completed_items: List[int] = Field(default_factory=list)
    mood: str = DEFAULT_MOOD
    transcript: str = ""
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    pinned: bool = False

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, value: Any) -> Any:
        """Accept epoch milliseconds as well as datetimes."""
        if isinstance(value, bool):
            raise ValueError("createdAt must be a number of milliseconds")
        if isinstance(value, (int, float)):
            return EPOCH + timedelta(milliseconds=value)
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> int:
        return round((value - EPOCH) / timedelta(milliseconds=1))

    @classmethod
    def from_processing_result(
        cls, result: ProcessingResult, created_at: Optional[datetime] = None
    ) -> "Memory":
        """Build a fresh, unpinned memory from a processing result."""
        return cls(
            title=result.title,
            category=result.category,
            action_items=list(result.action_items),
            completed_items=[],
            mood=result.mood,
            transcript=result.transcript,
            created_at=created_at or _utcnow(),
            pinned=False,
        )

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Memory":
        return cls.model_validate(record)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def share_text(self) -> str:
        """Plain-text rendering used when sharing a memory."""
        if self.action_items:
            lines = "\n".join(f"  - {item}" for item in self.action_items)
            action_block = f"Action Items:\n{lines}"
        else:
            action_block = "Action Items:\n  - None"

        return "\n\n".join(
            [
                self.title,
                f"Category: {self.category}\nMood: {self.mood}",
                action_block,
                f'"{self.transcript}"',
            ]
        )


def sort_memories(memories: List[Memory]) -> List[Memory]:
    """Pinned first, then newest first within each pin group.

    Both passes are stable, so memories with equal keys keep their
    incoming relative order.
    """
    by_age = sorted(memories, key=lambda m: m.created_at, reverse=True)
    return sorted(by_age, key=lambda m: not m.pinned)


def format_time_ago(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Short relative age label such as ``5m ago`` or ``Jan 5``."""
    now = now or _utcnow()
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    diff = max(0.0, (now - created_at).total_seconds())
    minutes = int(diff // 60)
    hours = int(diff // 3600)
    days = int(diff // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return f"{created_at.strftime('%b')} {created_at.day}"
