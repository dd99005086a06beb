"""
75 Hard Tracker — Data Models.

Plain records shared by the API client, the local cache and the sync
service. The remote store owns the canonical rows; these dataclasses are the
client-side view of them (snake_case, matching the REST payloads).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

CHALLENGE_DURATION = 75  # days

TEMP_ID_PREFIX = "temp_"


def is_temp_id(record_id: str) -> bool:
    """True for ids fabricated locally while offline."""
    return str(record_id).startswith(TEMP_ID_PREFIX)


@dataclass
class UserProfile:
    """The signed-in user. Created on first setup, edited from settings."""

    id: str
    name: str
    email: str | None = None
    google_id: str | None = None
    avatar_url: str | None = None
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> UserProfile:
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            email=data.get("email"),
            google_id=data.get("google_id"),
            avatar_url=data.get("avatar_url"),
            created_at=data.get("created_at", ""),
        )


@dataclass
class Challenge:
    """One 75-day run. Only one is active per user; restarting supersedes it."""

    id: str
    start_date: str                   # YYYY-MM-DD
    end_date: str                     # start_date + 74 days
    is_active: bool = True
    current_day: int = 1              # 1..75
    user_id: str = ""
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Challenge:
        return cls(
            id=str(data.get("id", "")),
            start_date=data.get("start_date", ""),
            end_date=data.get("end_date", ""),
            is_active=bool(data.get("is_active", False)),
            current_day=int(data.get("current_day") or 1),
            user_id=str(data.get("user_id", "")),
            created_at=data.get("created_at", ""),
        )


@dataclass
class CustomTask:
    """A daily rule the user has to complete, e.g. "Read 10 pages"."""

    id: str
    task_text: str
    is_default: bool = False
    order_index: int = 0              # stable sort key, never renumbered
    user_id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)

    @classmethod
    def from_dict(cls, data: dict) -> CustomTask:
        return cls(
            id=str(data.get("id", "")),
            task_text=data.get("task_text", ""),
            is_default=bool(data.get("is_default", False)),
            order_index=int(data.get("order_index") or 0),
            user_id=str(data.get("user_id", "")),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class TaskCompletion:
    """Completion state of one task on one date. (task_id, date) is the key."""

    task_id: str
    date: str
    completed: bool
    completed_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> TaskCompletion:
        return cls(
            task_id=str(data.get("task_id", "")),
            date=data.get("date", ""),
            completed=bool(data.get("completed", False)),
            completed_at=data.get("completed_at"),
        )


@dataclass
class DayProgress:
    """Derived view of one calendar day: tasks x completions."""

    date: str
    day_number: int | None = None
    completions: dict[str, TaskCompletion] = field(default_factory=dict)
    completed_count: int = 0
    total_tasks: int = 0
    all_completed: bool = False


class ChangeType(Enum):
    CREATE_PROFILE = "create_profile"
    UPDATE_PROFILE = "update_profile"
    CREATE_CHALLENGE = "create_challenge"
    UPDATE_CHALLENGE = "update_challenge"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    COMPLETE_TASK = "complete_task"
    INITIALIZE_DEFAULT_TASKS = "initialize_default_tasks"


@dataclass
class PendingChange:
    """A mutation waiting to be replayed against the remote API."""

    type: ChangeType
    data: dict
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    temp_id: str | None = None        # provisional record created offline
    temp_ids: list[str] = field(default_factory=list)  # for batch creations

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "temp_id": self.temp_id,
            "temp_ids": list(self.temp_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingChange:
        return cls(
            type=ChangeType(data["type"]),
            data=dict(data.get("data") or {}),
            timestamp=data.get("timestamp", ""),
            temp_id=data.get("temp_id"),
            temp_ids=list(data.get("temp_ids") or []),
        )


@dataclass
class SyncStatus:
    """Snapshot pushed to subscribers after each drain."""

    is_online: bool
    pending_changes: int
    last_sync: datetime | None = None
    has_conflicts: bool = False       # conflict detection is not implemented


@dataclass
class WeekSummary:
    """Completion counts for one 7-day block of the challenge."""

    week: int                         # 1-based
    start_date: str
    days_tracked: int
    perfect_days: int
    tasks_completed: int
    completion_rate: int              # percent of tracked days that were perfect


@dataclass
class ChallengeStats:
    """Aggregates shown on the stats screen."""

    current_day: int
    days_remaining: int
    challenge_progress: int           # percent of the 75 days elapsed
    total_days: int = 0               # days actually examined
    completed_days: int = 0
    perfect_days: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    completion_rate: float = 0.0
    total_tasks_completed: int = 0
    average_tasks_per_day: float = 0.0
    weekly_average: float = 0.0
    weeks: list[WeekSummary] = field(default_factory=list)
