"""Request/record schemas shared by the gateway, the ledger and the client outbox."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, field_validator

NOTE_MAX_CHARS = 2000
POST_MIN_CHARS = 3


class Category(str, Enum):
    DATING = "dating"
    JOB = "job"
    SOCIAL = "social"
    ACADEMIC = "academic"
    OTHER = "other"


# Community posts predate the academic category.
POST_CATEGORIES = frozenset({Category.DATING, Category.JOB, Category.SOCIAL, Category.OTHER})


class Reaction(str, Enum):
    SUPPORT = "💪"
    RELATE = "😔"
    CELEBRATE = "🎉"
    HUG = "🫂"


def sanitize_text(value: str) -> str:
    """Trim, drop angle brackets and cap at 2000 characters."""

    return value.strip().replace("<", "").replace(">", "")[:NOTE_MAX_CHARS]


class EntryCreate(BaseModel):
    """One logged entry as produced on the device; `id` is stable across retries."""

    id: UUID
    category: Category
    impact: float = Field(ge=0, le=10)
    note: str | None = None
    image_path: str | None = None
    timestamp: AwareDatetime

    @field_validator("note")
    @classmethod
    def _clean_note(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = sanitize_text(value)
        return cleaned or None

    @property
    def local_day(self) -> str:
        """Calendar day in the device's own UTC offset."""

        return self.timestamp.date().isoformat()


class EntryRecord(BaseModel):
    """Entry as stored by the ledger."""

    id: str
    owner_id: str
    category: Category
    impact: float
    note: str | None = None
    image_path: str | None = None
    timestamp: datetime
    local_day: str


class EntryWriteResponse(BaseModel):
    entry: EntryRecord
    created: bool


class PostCreate(BaseModel):
    category: Category
    content: str

    @field_validator("category")
    @classmethod
    def _post_category(cls, value: Category) -> Category:
        if value not in POST_CATEGORIES:
            raise ValueError("Invalid type")
        return value

    @field_validator("content")
    @classmethod
    def _clean_content(cls, value: str) -> str:
        cleaned = sanitize_text(value)
        if len(cleaned) < POST_MIN_CHARS:
            raise ValueError("Content too short")
        return cleaned


class ReactionCreate(BaseModel):
    reaction: Reaction


class RecoveryPlanRequest(BaseModel):
    category: Category
    impact: int = Field(ge=0, le=10)
    note: str | None = None
    tone: str = "gentle"

    @field_validator("note")
    @classmethod
    def _clean_note(cls, value: str | None) -> str | None:
        return sanitize_text(value) if value else None


class RecoveryPlanStep(BaseModel):
    title: str
    detail: str


class RecoveryTemplate(BaseModel):
    label: str
    text: str


class RecoveryPlan(BaseModel):
    steps: list[RecoveryPlanStep]
    affirmations: list[str]
    templates: list[RecoveryTemplate]
