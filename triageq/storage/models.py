"""
Domain models (Pydantic v2) for watcher configuration, audit records, and
persisted mailbox state.

Audit records (ActivityEntry, EmailActivityEntry, EmailMatch) are frozen.
Message subjects, senders, and bodies are hashed in repr so models can be
logged safely.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from hashlib import sha256
from pathlib import Path
from typing import Any, ClassVar, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from triageq.config import ACTIVITY_LOG_FILENAME, MAIL_MAX_PROCESSED_IDS, MAIL_MIN_INTERVAL_SECONDS


def utcnow() -> datetime:
    return datetime.now(UTC)


def _hash_value(value: str) -> str:
    digest = sha256(value.encode("utf-8")).hexdigest()
    return f"hash:{digest[:12]}"


class RedactedModel(BaseModel):
    """Base model that redacts sensitive fields in repr."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)
    _redact_fields: ClassVar[set[str]] = {"subject", "sender", "body", "snippet"}

    def redacted(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        for name in self._redact_fields:
            if isinstance(data.get(name), str) and data[name]:
                data[name] = _hash_value(data[name])
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.redacted()})"


# ============================================================================
# Folder watcher
# ============================================================================


class Rule(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex[:8])
    text: str = Field(min_length=1)
    enabled: bool = True
    order: int = 0


def ordered_enabled_rules(rules: list[Rule]) -> list[Rule]:
    """Enabled rules in priority order; ties keep list order."""
    return sorted((r for r in rules if r.enabled), key=lambda r: r.order)


class FolderWatcherConfig(BaseModel):
    folder_path: str
    rules: list[Rule] = Field(default_factory=list)
    enable_activity_log: bool = True
    log_path: str | None = None

    @property
    def folder(self) -> Path:
        return Path(self.folder_path).expanduser()

    def resolved_log_path(self) -> Path:
        if self.log_path:
            return Path(self.log_path).expanduser()
        return self.folder / ACTIVITY_LOG_FILENAME


class ActivityAction(str, Enum):
    MOVED = "moved"
    RENAMED = "renamed"
    SKIPPED = "skipped"
    ERROR = "error"


class ActivityEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=utcnow)
    original_name: str
    action: ActivityAction
    destination: str | None = None
    new_name: str | None = None
    matched_rule: int | None = None
    used_ai: bool = False
    used_vision: bool = False
    confidence: float | None = None
    reasoning: str | None = None
    error: str | None = None


# ============================================================================
# Mailbox watcher
# ============================================================================


class EmailCategory(str, Enum):
    JOB = "job"
    RECEIPT = "receipt"
    IMPORTANT = "important"
    SPAM = "spam"
    OTHER = "other"


StaticAction = Literal["notify", "star", "archive", "mark_read", "apply_label"]

_STATIC_ACTION_ALIASES = {"markRead": "mark_read", "applyLabel": "apply_label"}


class MailWatcherConfig(BaseModel):
    id: str = Field(default_factory=lambda: f"watcher_{uuid4().hex[:10]}")
    name: str
    interval_seconds: int = 300
    rules: list[str] = Field(default_factory=list)
    categories: list[EmailCategory] = Field(default_factory=list)
    actions: dict[EmailCategory, list[StaticAction]] = Field(default_factory=dict)
    custom_labels: dict[EmailCategory, str] = Field(default_factory=dict)
    output_folder: str | None = None
    linked_log_files: list[str] = Field(default_factory=list)
    processed_ids: list[str] = Field(default_factory=list)
    max_processed_ids: int = Field(default=MAIL_MAX_PROCESSED_IDS, ge=1)
    last_checked: datetime | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("interval_seconds")
    @classmethod
    def _clamp_interval(cls, value: int) -> int:
        return max(int(value), MAIL_MIN_INTERVAL_SECONDS)

    @field_validator("actions", mode="before")
    @classmethod
    def _normalize_action_names(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            category: [_STATIC_ACTION_ALIASES.get(name, name) for name in names]
            for category, names in value.items()
        }

    @model_validator(mode="after")
    def _trim_processed_ids(self) -> MailWatcherConfig:
        self._evict_oldest()
        return self

    def _evict_oldest(self) -> None:
        # the window is oldest-first
        overflow = len(self.processed_ids) - self.max_processed_ids
        if overflow > 0:
            del self.processed_ids[:overflow]

    def has_processed(self, message_id: str) -> bool:
        return message_id in self.processed_ids

    def remember(self, message_id: str) -> None:
        """Append to the processed-ID window, evicting the oldest ids past the cap."""
        self.processed_ids.append(message_id)
        self._evict_oldest()

    def label_for(self, category: EmailCategory) -> str:
        return self.custom_labels.get(category) or category.value.capitalize()


class WatcherStats(BaseModel):
    emails_checked: int = 0
    matches_found: int = 0
    actions_performed: int = 0
    last_check_time: datetime | None = None
    errors: int = 0


class EmailDetail(RedactedModel):
    id: str
    thread_id: str = ""
    subject: str = ""
    sender: str = Field(default="", alias="from")
    date: str = ""
    snippet: str = ""
    body: str = ""
    labels: list[str] = Field(default_factory=list)


class EmailMatch(RedactedModel):
    id: str
    subject: str
    sender: str
    date: str = ""
    snippet: str = ""
    category: EmailCategory
    confidence: float
    actions_performed: list[str] = Field(default_factory=list)
    matched_rule: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class EmailActivityEntry(RedactedModel):
    timestamp: datetime = Field(default_factory=utcnow)
    email_id: str
    subject: str = ""
    sender: str = ""
    category: EmailCategory = EmailCategory.OTHER
    action: str
    confidence: float = 0.0
    matched_rule: str | None = None
    error: str | None = None


class PersistedWatcherState(BaseModel):
    """What one encrypted row of the mail_watchers table holds."""

    config: MailWatcherConfig
    stats: WatcherStats = Field(default_factory=WatcherStats)
    matches: list[EmailMatch] = Field(default_factory=list)
    activity: list[EmailActivityEntry] = Field(default_factory=list)
