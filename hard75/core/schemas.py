"""
75 Hard Tracker — Request schemas.

One pydantic model per request body of the REST contract. The API client
validates every request against these before it touches the network, so a
malformed call fails fast with a validation error. ExportDocument guards
imports the same way.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from pydantic import BaseModel, Field, StrictBool, field_validator

from hard75.data.models import CHALLENGE_DURATION

MAX_NAME_LENGTH = 255
MAX_TASK_TEXT_LENGTH = 500

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _check_date(v: str) -> str:
    if not _DATE_RE.match(v):
        raise ValueError("Invalid date format. Use YYYY-MM-DD")
    date.fromisoformat(v)  # rejects 2024-02-30
    return v


def _check_required(v: str) -> str:
    if not v.strip():
        raise ValueError("must not be blank")
    return v


class RequestModel(BaseModel):
    def body(self) -> dict:
        """JSON body with unset optional fields left out."""
        return self.model_dump(exclude_none=True)


class CreateProfileRequest(RequestModel):
    name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    google_id: str | None = None
    avatar_url: str | None = None

    @field_validator("name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _check_required(v)


class UpdateProfileRequest(RequestModel):
    name: str | None = Field(default=None, min_length=1, max_length=MAX_NAME_LENGTH)
    avatar_url: str | None = None


class CreateChallengeRequest(RequestModel):
    """
    JSON example:
    {"start_date": "2024-01-01"}
    """
    start_date: str

    @field_validator("start_date")
    @classmethod
    def valid_date(cls, v: str) -> str:
        return _check_date(v)


class UpdateChallengeRequest(RequestModel):
    challenge_id: str = Field(min_length=1)
    current_day: int | None = Field(default=None, ge=1, le=CHALLENGE_DURATION)
    is_active: StrictBool | None = None


class CreateTaskRequest(RequestModel):
    """
    JSON example:
    {"task_text": "Read 10 pages", "is_default": false, "order_index": 3}

    order_index may be omitted; the server then appends the task at the end.
    """
    task_text: str = Field(min_length=1, max_length=MAX_TASK_TEXT_LENGTH)
    is_default: bool = False
    order_index: int | None = Field(default=None, ge=0)

    @field_validator("task_text")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _check_required(v)


class UpdateTaskRequest(RequestModel):
    task_id: str = Field(min_length=1)
    task_text: str | None = Field(default=None, min_length=1, max_length=MAX_TASK_TEXT_LENGTH)
    order_index: int | None = Field(default=None, ge=0)


class DeleteTaskRequest(RequestModel):
    task_id: str = Field(min_length=1)


class CompleteTaskRequest(RequestModel):
    """
    JSON example:
    {"task_id": "abc", "completed": true, "date": "2024-01-05"}
    """
    task_id: str = Field(min_length=1)
    completed: StrictBool
    date: str | None = None

    @field_validator("date")
    @classmethod
    def valid_date(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_date(v)


class CompletionsQuery(RequestModel):
    date: str

    @field_validator("date")
    @classmethod
    def valid_date(cls, v: str) -> str:
        return _check_date(v)


class ExportDocument(BaseModel):
    """Shape of an export file, checked before an import writes anything.

    Unknown top-level keys such as version are ignored.
    """
    exported_at: str | None = None
    user_profile: dict[str, Any] | None = None
    challenges: list[dict[str, Any]] | None = None
    custom_tasks: list[dict[str, Any]] | None = None
    task_completions: dict[str, dict[str, dict[str, Any]]] = Field(default_factory=dict)
    pending_changes: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("task_completions")
    @classmethod
    def valid_dates(cls, v: dict[str, dict[str, dict[str, Any]]]) -> dict[str, dict[str, dict[str, Any]]]:
        for day in v:
            _check_date(day)
        return v

    @field_validator("pending_changes", mode="before")
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v
