"""Challenge backend REST client.

Translates typed method calls into requests against the fixed endpoint set
(/users/profile, /challenges, /tasks/custom, /tasks/complete,
/tasks/completions, /health) and normalizes every outcome into an ApiResult.

Never raises: validation problems, HTTP error statuses and transport
failures all come back as a classified AppError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

import httpx
from pydantic import ValidationError

from hard75.core.errors import (
    ErrorHandler,
    ExceptionSource,
    HttpErrorSource,
    MessageSource,
)
from hard75.core.schemas import (
    CompleteTaskRequest,
    CompletionsQuery,
    CreateChallengeRequest,
    CreateProfileRequest,
    CreateTaskRequest,
    DeleteTaskRequest,
    RequestModel,
    UpdateChallengeRequest,
    UpdateProfileRequest,
    UpdateTaskRequest,
)
from hard75.ports.api_port import ApiResult, BatchResult, ItemResult

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 10


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Request validation failed - " + "; ".join(parts)


class ApiClient:
    """httpx implementation of ApiPort."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        error_handler: ErrorHandler | None = None,
        default_task_concurrency: int | None = None,
    ) -> None:
        if base_url is None or token is None or timeout is None or default_task_concurrency is None:
            from hard75.config import settings

            base_url = settings.API_BASE_URL if base_url is None else base_url
            token = settings.API_TOKEN if token is None else token
            timeout = settings.API_TIMEOUT_SECONDS if timeout is None else timeout
            if default_task_concurrency is None:
                default_task_concurrency = settings.DEFAULT_TASK_CONCURRENCY

        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout or _DEFAULT_TIMEOUT_SECONDS
        self._errors = error_handler or ErrorHandler()
        self._concurrency = max(1, default_task_concurrency)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        body: dict | None = None,
        params: dict | None = None,
    ) -> ApiResult:
        """Send one request and turn the response into an ApiResult."""
        url = f"{self._base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(
                    method,
                    url,
                    json=body,
                    params=params,
                    headers=self._headers(),
                )
        except Exception as exc:
            logger.warning("API request failed: %s %s: %s", method, endpoint, exc)
            return ApiResult(success=False, error=self._errors.handle_api_error(ExceptionSource(exc)))

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        if resp.is_success:
            if not isinstance(payload, dict):
                error = self._errors.handle_api_error(
                    MessageSource(f"Malformed response from {endpoint}")
                )
                return ApiResult(success=False, error=error)
            return ApiResult(success=True, data=payload)

        if isinstance(payload, dict) and payload.get("error"):
            message = str(payload["error"])
        else:
            message = f"HTTP error! status: {resp.status_code}"
        error = self._errors.handle_api_error(
            HttpErrorSource(resp.status_code, message, payload)
        )
        logger.info("API %s %s returned %d: %s", method, endpoint, resp.status_code, message)
        return ApiResult(success=False, error=error)

    def _validate(self, schema: type[RequestModel], **fields: Any) -> RequestModel | ApiResult:
        """Build a request model, or an ApiResult carrying the validation error."""
        try:
            return schema(**fields)
        except ValidationError as exc:
            error = self._errors.handle_validation_error(MessageSource(_validation_message(exc)))
            return ApiResult(success=False, error=error)

    async def _send(
        self,
        method: str,
        endpoint: str,
        schema: type[RequestModel],
        unwrap: str | None = None,
        **fields: Any,
    ) -> ApiResult:
        request = self._validate(schema, **fields)
        if isinstance(request, ApiResult):
            return request
        result = await self._request(method, endpoint, body=request.body())
        if result.success and unwrap is not None:
            result.data = result.data.get(unwrap)
        return result

    async def _get(self, endpoint: str, unwrap: str | None = None, params: dict | None = None) -> ApiResult:
        result = await self._request("GET", endpoint, params=params)
        if result.success and unwrap is not None:
            result.data = result.data.get(unwrap)
        return result

    # ------------------------------------------------------------------
    # Batch helper
    # ------------------------------------------------------------------

    async def batch(self, calls: list[Awaitable[ApiResult]]) -> BatchResult:
        """Run independent requests concurrently.

        Fails only if every request failed; otherwise returns the data of
        the successful ones (in call order) and per-item outcomes.
        """
        if not calls:
            return BatchResult(success=True, data=[])

        results = await asyncio.gather(*calls)
        items = [
            ItemResult(index=i, success=r.success, data=r.data, error=r.error)
            for i, r in enumerate(results)
        ]
        successes = [it.data for it in items if it.success]
        if not successes:
            return BatchResult(success=False, error=items[0].error, items=items)
        if len(successes) < len(items):
            logger.warning("Batch partially failed: %d/%d succeeded", len(successes), len(items))
        return BatchResult(success=True, data=successes, items=items)

    # ------------------------------------------------------------------
    # User profile
    # ------------------------------------------------------------------

    async def get_profile(self) -> ApiResult:
        return await self._get("/users/profile", unwrap="user")

    async def create_profile(
        self, name: str, google_id: str | None = None, avatar_url: str | None = None,
    ) -> ApiResult:
        return await self._send(
            "POST", "/users/profile", CreateProfileRequest, unwrap="user",
            name=name, google_id=google_id, avatar_url=avatar_url,
        )

    async def update_profile(
        self, name: str | None = None, avatar_url: str | None = None,
    ) -> ApiResult:
        return await self._send(
            "PUT", "/users/profile", UpdateProfileRequest, unwrap="user",
            name=name, avatar_url=avatar_url,
        )

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    async def get_challenges(self) -> ApiResult:
        return await self._get("/challenges", unwrap="challenges")

    async def create_challenge(self, start_date: str) -> ApiResult:
        return await self._send(
            "POST", "/challenges", CreateChallengeRequest, unwrap="challenge",
            start_date=start_date,
        )

    async def update_challenge(
        self,
        challenge_id: str,
        current_day: int | None = None,
        is_active: bool | None = None,
    ) -> ApiResult:
        return await self._send(
            "PUT", "/challenges", UpdateChallengeRequest, unwrap="challenge",
            challenge_id=challenge_id, current_day=current_day, is_active=is_active,
        )

    # ------------------------------------------------------------------
    # Custom tasks
    # ------------------------------------------------------------------

    async def get_tasks(self) -> ApiResult:
        return await self._get("/tasks/custom", unwrap="tasks")

    async def create_task(
        self, task_text: str, is_default: bool = False, order_index: int | None = None,
    ) -> ApiResult:
        return await self._send(
            "POST", "/tasks/custom", CreateTaskRequest, unwrap="task",
            task_text=task_text, is_default=is_default, order_index=order_index,
        )

    async def update_task(
        self, task_id: str, task_text: str | None = None, order_index: int | None = None,
    ) -> ApiResult:
        return await self._send(
            "PUT", "/tasks/custom", UpdateTaskRequest, unwrap="task",
            task_id=task_id, task_text=task_text, order_index=order_index,
        )

    async def delete_task(self, task_id: str) -> ApiResult:
        return await self._send(
            "DELETE", "/tasks/custom", DeleteTaskRequest, unwrap="message",
            task_id=task_id,
        )

    async def initialize_default_tasks(self, tasks: list[str]) -> BatchResult:
        """Create the starter task list, a few requests at a time.

        Each task keeps its list position as order_index. Returns one
        ItemResult per task; the call only fails when nothing was created.
        """
        if not tasks:
            return BatchResult(success=True, data=[])

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _create(index: int, text: str) -> ApiResult:
            async with semaphore:
                return await self.create_task(text, is_default=True, order_index=index)

        results = await asyncio.gather(*(_create(i, t) for i, t in enumerate(tasks)))
        items = [
            ItemResult(index=i, success=r.success, data=r.data, error=r.error)
            for i, r in enumerate(results)
        ]
        created = [it.data for it in items if it.success]

        if not created:
            logger.error("Default task initialization failed: none of %d created", len(tasks))
            return BatchResult(success=False, error=items[0].error, items=items)

        if len(created) < len(tasks):
            failed = [tasks[it.index] for it in items if not it.success]
            logger.warning("Default tasks partially created; failed: %s", failed)
        else:
            logger.info("Initialized %d default tasks", len(created))
        return BatchResult(success=True, data=created, items=items)

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    async def complete_task(
        self, task_id: str, completed: bool, date: str | None = None,
    ) -> ApiResult:
        return await self._send(
            "POST", "/tasks/complete", CompleteTaskRequest,
            task_id=task_id, completed=completed, date=date,
        )

    async def get_task_completions(self, date: str) -> ApiResult:
        query = self._validate(CompletionsQuery, date=date)
        if isinstance(query, ApiResult):
            return query
        return await self._get("/tasks/completions", params=query.body())

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self) -> ApiResult:
        result = await self._get("/health")
        if result.success:
            connected = bool((result.data.get("database") or {}).get("connected"))
            logger.debug("Health check: status=%s db_connected=%s", result.data.get("status"), connected)
        return result
