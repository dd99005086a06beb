"""Remote API port — abstract interface for the challenge backend.

The sync service depends on this protocol, never on a specific transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from hard75.core.errors import AppError


@dataclass
class ApiResult:
    """Uniform outcome of every remote call. Never raised, always returned."""

    success: bool
    data: Any = None
    error: AppError | None = None


@dataclass
class ItemResult:
    """Outcome of one element of a batch operation."""

    index: int
    success: bool
    data: Any = None
    error: AppError | None = None


@dataclass
class BatchResult(ApiResult):
    items: list[ItemResult] = field(default_factory=list)


class ApiPort(Protocol):
    """Abstract backend interface used by the sync service."""

    async def get_profile(self) -> ApiResult: ...

    async def create_profile(
        self, name: str, google_id: str | None = None, avatar_url: str | None = None,
    ) -> ApiResult: ...

    async def update_profile(
        self, name: str | None = None, avatar_url: str | None = None,
    ) -> ApiResult: ...

    async def get_challenges(self) -> ApiResult: ...

    async def create_challenge(self, start_date: str) -> ApiResult: ...

    async def update_challenge(
        self,
        challenge_id: str,
        current_day: int | None = None,
        is_active: bool | None = None,
    ) -> ApiResult: ...

    async def get_tasks(self) -> ApiResult: ...

    async def create_task(
        self, task_text: str, is_default: bool = False, order_index: int | None = None,
    ) -> ApiResult: ...

    async def update_task(
        self, task_id: str, task_text: str | None = None, order_index: int | None = None,
    ) -> ApiResult: ...

    async def delete_task(self, task_id: str) -> ApiResult: ...

    async def initialize_default_tasks(self, tasks: list[str]) -> BatchResult: ...

    async def complete_task(
        self, task_id: str, completed: bool, date: str | None = None,
    ) -> ApiResult: ...

    async def get_task_completions(self, date: str) -> ApiResult: ...

    async def health_check(self) -> ApiResult: ...
