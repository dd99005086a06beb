"""
75 Hard Tracker — Offline-aware Storage & Sync Service.

The single entry point the UI uses for every read and write. Decides between
the remote API and the local cache, parks failed or offline writes in a
pending-change queue, and replays that queue when connectivity returns or
the periodic timer fires.

Reads: remote first, refresh the cache, fall back to the cache on failure.
Writes: remote first, patch the cache on success, queue on transient
failure or while offline. Task creation/deletion and completion toggles are
applied to the cache immediately so the UI can render without waiting.

This is best-effort, at-least-once sync: no merge logic, no conflict
detection. The service never raises to its caller.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from hard75.core import progress
from hard75.core.errors import (
    QUEUED_FOR_SYNC,
    AppError,
    ErrorCategory,
    ErrorHandler,
    ExceptionSource,
    MessageSource,
    is_transient,
)
from hard75.core.schemas import (
    CompleteTaskRequest,
    CreateChallengeRequest,
    CreateProfileRequest,
    CreateTaskRequest,
    DeleteTaskRequest,
    ExportDocument,
    RequestModel,
    UpdateChallengeRequest,
    UpdateProfileRequest,
    UpdateTaskRequest,
)
from hard75.data import cache as keys
from hard75.data.models import (
    TEMP_ID_PREFIX,
    Challenge,
    ChangeType,
    CustomTask,
    DayProgress,
    PendingChange,
    SyncStatus,
    TaskCompletion,
    UserProfile,
    is_temp_id,
)

if TYPE_CHECKING:
    from hard75.data.cache import LocalCache
    from hard75.ports.api_port import ApiPort, ApiResult, ItemResult

logger = logging.getLogger(__name__)

# The five rules of the program, split into six daily checkboxes.
DEFAULT_TASKS = [
    "Follow a diet (no cheat meals or alcohol)",
    "45-minute workout",
    "45-minute outdoor workout",
    "Drink 1 gallon of water",
    "Read 10 pages of non-fiction",
    "Take a progress photo",
]

_EXPORT_VERSION = 1

# Request schema per queued change type, used to reject bad writes up front.
_CHANGE_SCHEMAS: dict[ChangeType, type[RequestModel]] = {
    ChangeType.CREATE_PROFILE: CreateProfileRequest,
    ChangeType.UPDATE_PROFILE: UpdateProfileRequest,
    ChangeType.CREATE_CHALLENGE: CreateChallengeRequest,
    ChangeType.UPDATE_CHALLENGE: UpdateChallengeRequest,
    ChangeType.CREATE_TASK: CreateTaskRequest,
    ChangeType.UPDATE_TASK: UpdateTaskRequest,
    ChangeType.DELETE_TASK: DeleteTaskRequest,
    ChangeType.COMPLETE_TASK: CompleteTaskRequest,
}


class MutationStatus(Enum):
    APPLIED_REMOTE = "applied_remote"    # the server accepted the write
    PENDING_SYNC = "pending_sync"        # applied locally and/or queued for replay
    REJECTED = "rejected"                # invalid or refused; nothing queued


@dataclass
class StorageResult:
    """Outcome of a service call. Reads leave status as None."""

    success: bool
    data: Any = None
    error: AppError | None = None
    from_cache: bool = False
    status: MutationStatus | None = None
    items: list[ItemResult] = field(default_factory=list)

    @property
    def queued(self) -> bool:
        return self.status is MutationStatus.PENDING_SYNC


SyncCallback = Callable[[SyncStatus], None]


def _today() -> str:
    return date.today().isoformat()


def _now_iso() -> str:
    return datetime.now().isoformat()


def _new_temp_id(suffix: str | int | None = None) -> str:
    temp_id = f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
    if suffix is not None:
        temp_id += f"_{suffix}"
    return temp_id


def _sorted_tasks(raw: list[dict]) -> list[CustomTask]:
    return sorted((CustomTask.from_dict(t) for t in raw), key=lambda t: t.order_index)


def _completions_from_cache(raw: dict | None) -> dict[str, TaskCompletion]:
    return {tid: TaskCompletion.from_dict(c) for tid, c in (raw or {}).items()}


class SyncService:
    """Storage façade with offline fallback and a replay queue.

    Build one at start-up and hand it to whoever needs data; tests create a
    fresh instance per case.
    """

    def __init__(
        self,
        api: ApiPort,
        cache: LocalCache,
        error_handler: ErrorHandler | None = None,
        online: bool = True,
        sync_interval: float | None = None,
        persist_pending: bool | None = None,
    ) -> None:
        if sync_interval is None or persist_pending is None:
            from hard75.config import settings

            if sync_interval is None:
                sync_interval = settings.SYNC_INTERVAL_SECONDS
            if persist_pending is None:
                persist_pending = settings.PERSIST_PENDING_CHANGES

        self._api = api
        self._cache = cache
        self._errors = error_handler or ErrorHandler()
        self._is_online = online
        self._sync_interval = sync_interval
        self._persist_pending = persist_pending

        self._pending: list[PendingChange] = []
        self._in_flight: list[PendingChange] = []   # unreplayed part of the current drain
        self._sync_in_progress = False
        self._callbacks: list[SyncCallback] = []
        self._last_sync: datetime | None = None
        self._temp_ids: dict[str, str] = {}
        self._periodic_task: asyncio.Task | None = None

        if self._persist_pending:
            self._load_queue()

    # ------------------------------------------------------------------
    # Queue persistence
    # ------------------------------------------------------------------

    def _load_queue(self) -> None:
        raw = self._cache.get(keys.PENDING_CHANGES, [])
        restored: list[PendingChange] = []
        for entry in raw:
            try:
                restored.append(PendingChange.from_dict(entry))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Dropping unreadable pending change %r: %s", entry, exc)
        self._pending = restored
        if restored:
            logger.info("Restored %d pending changes from cache", len(restored))

    def _save_queue(self) -> None:
        if self._persist_pending:
            queue = [*self._in_flight, *self._pending]
            self._cache.set(keys.PENDING_CHANGES, [c.to_dict() for c in queue])

    def _enqueue(self, change: PendingChange) -> None:
        self._pending.append(change)
        self._save_queue()
        logger.info(
            "Queued %s for sync (%d pending)", change.type.value, len(self._pending),
        )

    @property
    def pending_changes(self) -> list[PendingChange]:
        return list(self._pending)

    # ------------------------------------------------------------------
    # Connectivity, timer, subscriptions
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self._is_online

    async def set_online(self, online: bool) -> None:
        """Connectivity changed. Going online triggers a drain."""
        if online == self._is_online:
            return
        self._is_online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        self._notify()
        if online:
            await self.sync_pending_changes()

    async def refresh_connectivity(self) -> bool:
        """Probe the health endpoint and update the online flag from it."""
        result = await self._api.health_check()
        await self.set_online(result.success)
        return result.success

    def start(self) -> None:
        """Start the periodic sync timer on the running event loop."""
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.get_running_loop().create_task(self._periodic_sync())
            logger.info("Periodic sync every %ss", self._sync_interval)

    async def stop(self) -> None:
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _periodic_sync(self) -> None:
        while True:
            await asyncio.sleep(self._sync_interval)
            await self.tick()

    async def tick(self) -> None:
        """One timer firing: look for the network when offline, else drain."""
        try:
            if not self._is_online:
                await self.refresh_connectivity()
            elif not self._sync_in_progress:
                await self.sync_pending_changes()
        except Exception as exc:
            logger.error("Periodic sync failed: %s", exc)

    def subscribe(self, callback: SyncCallback) -> Callable[[], None]:
        """Register for SyncStatus updates. Returns the unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self._is_online,
            pending_changes=len(self._pending),
            last_sync=self._last_sync,
            has_conflicts=False,
        )

    def _notify(self) -> None:
        status = self.get_sync_status()
        for callback in list(self._callbacks):
            try:
                callback(status)
            except Exception as exc:
                logger.error("Sync status subscriber failed: %s", exc)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _queued_error(self) -> AppError:
        return self._errors.handle(
            MessageSource(QUEUED_FOR_SYNC), ErrorCategory.NETWORK, log=False,
        )

    def _precheck(self, change_type: ChangeType, payload: dict) -> AppError | None:
        """Validate a write before it is queued; queued junk would never sync."""
        schema = _CHANGE_SCHEMAS.get(change_type)
        if schema is None:
            return None
        try:
            schema(**payload)
        except ValidationError as exc:
            return self._errors.handle_validation_error(
                MessageSource(f"Request validation failed - {exc.error_count()} invalid field(s)")
            )
        return None

    async def _read(self, cache_key: str, fetch: Callable, label: str) -> StorageResult:
        """Remote first, then cache. Successful remote data refreshes the cache."""
        if self._is_online:
            try:
                result = await fetch()
            except Exception as exc:
                result = None
                error = self._errors.handle_api_error(ExceptionSource(exc))
            else:
                error = result.error

            if result is not None and result.success and result.data is not None:
                self._cache.set(cache_key, result.data)
                return StorageResult(success=True, data=result.data)

            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.info("Serving cached %s after remote failure", label)
                return StorageResult(success=True, data=cached, from_cache=True)

            if error is None:
                error = self._errors.handle_validation_error(MessageSource(f"No {label} found"))
            return StorageResult(success=False, error=error)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return StorageResult(success=True, data=cached, from_cache=True)
        return StorageResult(
            success=False,
            error=self._errors.handle_api_error(MessageSource(f"No cached {label} found")),
        )

    async def _write(
        self,
        change_type: ChangeType,
        payload: dict,
        call: Callable,
        on_success: Callable[[Any], Any],
    ) -> StorageResult:
        """Standard write path: remote, then queue on transient failure/offline."""
        invalid = self._precheck(change_type, payload)
        if invalid is not None:
            return StorageResult(success=False, error=invalid, status=MutationStatus.REJECTED)

        if not self._is_online:
            self._enqueue(PendingChange(type=change_type, data=payload))
            return StorageResult(
                success=False, error=self._queued_error(), status=MutationStatus.PENDING_SYNC,
            )

        try:
            result = await call()
        except Exception as exc:
            error = self._errors.handle_api_error(ExceptionSource(exc))
            self._enqueue(PendingChange(type=change_type, data=payload))
            return StorageResult(success=False, error=error, status=MutationStatus.PENDING_SYNC)

        if result.success:
            data = on_success(result.data)
            return StorageResult(success=True, data=data, status=MutationStatus.APPLIED_REMOTE)

        if result.error is not None and is_transient(result.error):
            self._enqueue(PendingChange(type=change_type, data=payload))
            return StorageResult(
                success=False, error=result.error, status=MutationStatus.PENDING_SYNC,
            )
        return StorageResult(success=False, error=result.error, status=MutationStatus.REJECTED)

    def _cached_tasks(self) -> list[dict]:
        return list(self._cache.get(keys.CUSTOM_TASKS, []))

    # ------------------------------------------------------------------
    # User profile
    # ------------------------------------------------------------------

    async def get_user_profile(self) -> StorageResult:
        result = await self._read(keys.USER_PROFILE, self._api.get_profile, "profile")
        if result.success:
            result.data = UserProfile.from_dict(result.data)
        return result

    async def create_user_profile(
        self, name: str, google_id: str | None = None, avatar_url: str | None = None,
    ) -> StorageResult:
        payload = {"name": name, "google_id": google_id, "avatar_url": avatar_url}

        def on_success(user: dict) -> UserProfile:
            self._cache.set(keys.USER_PROFILE, user)
            return UserProfile.from_dict(user)

        return await self._write(
            ChangeType.CREATE_PROFILE, payload,
            lambda: self._api.create_profile(**payload), on_success,
        )

    async def update_user_profile(
        self, name: str | None = None, avatar_url: str | None = None,
    ) -> StorageResult:
        payload = {"name": name, "avatar_url": avatar_url}

        def on_success(user: dict) -> UserProfile:
            self._cache.set(keys.USER_PROFILE, user)
            return UserProfile.from_dict(user)

        return await self._write(
            ChangeType.UPDATE_PROFILE, payload,
            lambda: self._api.update_profile(**payload), on_success,
        )

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    async def get_challenges(self) -> StorageResult:
        result = await self._read(keys.CHALLENGES, self._api.get_challenges, "challenges")
        if result.success:
            result.data = [Challenge.from_dict(c) for c in result.data]
        return result

    async def get_active_challenge(self) -> StorageResult:
        """The active challenge, or data=None when the user has not started one."""
        result = await self.get_challenges()
        if result.success:
            result.data = next((c for c in result.data if c.is_active), None)
        return result

    async def create_challenge(self, start_date: str | None = None) -> StorageResult:
        """Start a new 75-day run; the server deactivates the previous one."""
        payload = {"start_date": start_date or _today()}

        def on_success(challenge: dict) -> Challenge:
            cached = [
                {**c, "is_active": False} if c.get("is_active") else c
                for c in self._cache.get(keys.CHALLENGES, [])
            ]
            cached.insert(0, challenge)
            self._cache.set(keys.CHALLENGES, cached)
            logger.info("Challenge started on %s", challenge.get("start_date"))
            return Challenge.from_dict(challenge)

        return await self._write(
            ChangeType.CREATE_CHALLENGE, payload,
            lambda: self._api.create_challenge(**payload), on_success,
        )

    async def restart_challenge(self, start_date: str | None = None) -> StorageResult:
        """Missed a rule: start over from day 1."""
        logger.info("Restarting challenge")
        return await self.create_challenge(start_date)

    async def update_challenge(
        self,
        challenge_id: str,
        current_day: int | None = None,
        is_active: bool | None = None,
    ) -> StorageResult:
        payload = {"challenge_id": challenge_id, "current_day": current_day, "is_active": is_active}

        def on_success(challenge: dict) -> Challenge:
            cached = [
                challenge if str(c.get("id")) == str(challenge.get("id")) else c
                for c in self._cache.get(keys.CHALLENGES, [])
            ]
            self._cache.set(keys.CHALLENGES, cached)
            return Challenge.from_dict(challenge)

        return await self._write(
            ChangeType.UPDATE_CHALLENGE, payload,
            lambda: self._api.update_challenge(**payload), on_success,
        )

    async def refresh_current_day(self, today: str | None = None) -> StorageResult:
        """Move the active challenge's stored day number up to the calendar."""
        active = await self.get_active_challenge()
        if not active.success or active.data is None:
            return active
        challenge: Challenge = active.data
        day = progress.current_day(challenge.start_date, today)
        if day == challenge.current_day:
            return StorageResult(success=True, data=challenge, from_cache=active.from_cache)
        return await self.update_challenge(challenge.id, current_day=day)

    # ------------------------------------------------------------------
    # Custom tasks
    # ------------------------------------------------------------------

    async def get_tasks(self) -> StorageResult:
        result = await self._read(keys.CUSTOM_TASKS, self._api.get_tasks, "tasks")
        if result.success:
            result.data = _sorted_tasks(result.data)
        return result

    async def create_task(
        self, task_text: str, is_default: bool = False, order_index: int | None = None,
    ) -> StorageResult:
        payload = {"task_text": task_text, "is_default": is_default, "order_index": order_index}

        if self._is_online:
            def on_success(task: dict) -> CustomTask:
                cached = self._cached_tasks()
                cached.append(task)
                self._cache.set(keys.CUSTOM_TASKS, cached)
                return CustomTask.from_dict(task)

            return await self._write(
                ChangeType.CREATE_TASK, payload,
                lambda: self._api.create_task(**payload), on_success,
            )

        invalid = self._precheck(ChangeType.CREATE_TASK, payload)
        if invalid is not None:
            return StorageResult(success=False, error=invalid, status=MutationStatus.REJECTED)

        cached = self._cached_tasks()
        if order_index is None:
            order_index = max((int(t.get("order_index") or 0) for t in cached), default=-1) + 1
        now = _now_iso()
        temp_task = {
            "id": _new_temp_id(),
            "user_id": "temp",
            "task_text": task_text,
            "is_default": is_default,
            "order_index": order_index,
            "created_at": now,
            "updated_at": now,
        }
        cached.append(temp_task)
        self._cache.set(keys.CUSTOM_TASKS, cached)
        self._enqueue(PendingChange(
            type=ChangeType.CREATE_TASK,
            data={**payload, "order_index": order_index},
            temp_id=temp_task["id"],
        ))
        return StorageResult(
            success=True,
            data=CustomTask.from_dict(temp_task),
            from_cache=True,
            status=MutationStatus.PENDING_SYNC,
        )

    async def update_task(
        self, task_id: str, task_text: str | None = None, order_index: int | None = None,
    ) -> StorageResult:
        payload = {"task_id": task_id, "task_text": task_text, "order_index": order_index}

        def on_success(task: dict) -> CustomTask:
            cached = [
                task if str(t.get("id")) == str(task.get("id")) else t
                for t in self._cached_tasks()
            ]
            self._cache.set(keys.CUSTOM_TASKS, cached)
            return CustomTask.from_dict(task)

        return await self._write(
            ChangeType.UPDATE_TASK, payload,
            lambda: self._api.update_task(**payload), on_success,
        )

    def _remove_cached_task(self, task_id: str) -> None:
        remaining = [t for t in self._cached_tasks() if str(t.get("id")) != task_id]
        self._cache.set(keys.CUSTOM_TASKS, remaining)

    async def delete_task(self, task_id: str) -> StorageResult:
        """Delete a task. order_index of the remaining tasks is left untouched."""
        payload = {"task_id": task_id}

        if self._is_online and not is_temp_id(task_id):
            def on_success(_message: Any) -> bool:
                self._remove_cached_task(task_id)
                return True

            return await self._write(
                ChangeType.DELETE_TASK, payload,
                lambda: self._api.delete_task(task_id), on_success,
            )

        invalid = self._precheck(ChangeType.DELETE_TASK, payload)
        if invalid is not None:
            return StorageResult(success=False, error=invalid, status=MutationStatus.REJECTED)

        self._remove_cached_task(task_id)
        if is_temp_id(task_id) and self._cancel_temp_creation(task_id):
            logger.info("Deleted task %s before it was ever synced", task_id)
        else:
            self._enqueue(PendingChange(type=ChangeType.DELETE_TASK, data=payload))
        return StorageResult(
            success=True, data=True, from_cache=True, status=MutationStatus.PENDING_SYNC,
        )

    def _cancel_temp_creation(self, temp_id: str) -> bool:
        """Drop a still-queued creation of temp_id and every change touching it."""
        created = False
        kept: list[PendingChange] = []
        for change in self._pending:
            if change.temp_id == temp_id:
                created = True
                continue
            if change.data.get("task_id") == temp_id:
                continue
            if temp_id in change.temp_ids:
                # One task of a default batch: keep the batch, skip this entry.
                idx = change.temp_ids.index(temp_id)
                change.data = {**change.data, "skip": sorted(set(change.data.get("skip", [])) | {idx})}
                created = True
            kept.append(change)
        self._pending = kept
        self._save_queue()
        return created

    async def initialize_default_tasks(self, tasks: list[str] | None = None) -> StorageResult:
        """Create the starter task list (defaults to the six 75 Hard rules)."""
        tasks = list(DEFAULT_TASKS if tasks is None else tasks)
        for text in tasks:
            invalid = self._precheck(ChangeType.CREATE_TASK, {"task_text": text})
            if invalid is not None:
                return StorageResult(success=False, error=invalid, status=MutationStatus.REJECTED)

        if not self._is_online:
            return self._initialize_default_tasks_offline(tasks)

        try:
            result = await self._api.initialize_default_tasks(tasks)
        except Exception as exc:
            error = self._errors.handle_api_error(ExceptionSource(exc))
            self._enqueue(PendingChange(type=ChangeType.INITIALIZE_DEFAULT_TASKS, data={"tasks": tasks}))
            return StorageResult(success=False, error=error, status=MutationStatus.PENDING_SYNC)

        if not result.success:
            if result.error is not None and is_transient(result.error):
                self._enqueue(PendingChange(
                    type=ChangeType.INITIALIZE_DEFAULT_TASKS, data={"tasks": tasks},
                ))
                return StorageResult(
                    success=False, error=result.error,
                    status=MutationStatus.PENDING_SYNC, items=result.items,
                )
            return StorageResult(
                success=False, error=result.error,
                status=MutationStatus.REJECTED, items=result.items,
            )

        self._cache.set(keys.CUSTOM_TASKS, list(result.data))
        status = MutationStatus.APPLIED_REMOTE
        for item in result.items:
            if not item.success and item.error is not None and is_transient(item.error):
                self._enqueue(PendingChange(
                    type=ChangeType.CREATE_TASK,
                    data={"task_text": tasks[item.index], "is_default": True, "order_index": item.index},
                ))
                status = MutationStatus.PENDING_SYNC
        return StorageResult(
            success=True, data=_sorted_tasks(result.data), status=status, items=result.items,
        )

    def _initialize_default_tasks_offline(self, tasks: list[str]) -> StorageResult:
        now = _now_iso()
        temp_tasks = [
            {
                "id": _new_temp_id(index),
                "user_id": "temp",
                "task_text": text,
                "is_default": True,
                "order_index": index,
                "created_at": now,
                "updated_at": now,
            }
            for index, text in enumerate(tasks)
        ]
        self._cache.set(keys.CUSTOM_TASKS, temp_tasks)
        self._enqueue(PendingChange(
            type=ChangeType.INITIALIZE_DEFAULT_TASKS,
            data={"tasks": tasks},
            temp_ids=[t["id"] for t in temp_tasks],
        ))
        return StorageResult(
            success=True,
            data=_sorted_tasks(temp_tasks),
            from_cache=True,
            status=MutationStatus.PENDING_SYNC,
        )

    # ------------------------------------------------------------------
    # Task completions
    # ------------------------------------------------------------------

    def _day_number_for(self, target_date: str) -> int | None:
        active = next(
            (c for c in self._cache.get(keys.CHALLENGES, []) if c.get("is_active")), None,
        )
        if not active or not active.get("start_date"):
            return None
        return progress.current_day(active["start_date"], target_date)

    def _day_progress(self, target_date: str, completions: dict[str, TaskCompletion], day: int | None = None) -> DayProgress:
        tasks = _sorted_tasks(self._cached_tasks())
        if day is None:
            day = self._day_number_for(target_date)
        return progress.build_day_progress(target_date, tasks, completions, day)

    async def get_task_completions(self, target_date: str | None = None) -> StorageResult:
        """Completion state of every task on a date, as a DayProgress.

        Never fails for lack of data: an unknown day is simply empty.
        """
        target_date = target_date or _today()
        cache_key = keys.completions_key(target_date)

        if self._is_online:
            try:
                result = await self._api.get_task_completions(target_date)
            except Exception as exc:
                self._errors.handle_api_error(ExceptionSource(exc))
                result = None

            if result is not None and result.success:
                completions = {
                    str(row["custom_task_id"]): {
                        "task_id": str(row["custom_task_id"]),
                        "date": target_date,
                        "completed": bool(row.get("completed")),
                        "completed_at": row.get("completed_at"),
                    }
                    for row in result.data.get("completions") or []
                    if isinstance(row, dict) and row.get("custom_task_id") is not None
                }
                self._cache.set(cache_key, completions)
                daily = result.data.get("daily_progress") or {}
                return StorageResult(
                    success=True,
                    data=self._day_progress(
                        target_date, _completions_from_cache(completions), daily.get("day_number"),
                    ),
                )

        cached = self._cache.get(cache_key)
        return StorageResult(
            success=True,
            data=self._day_progress(target_date, _completions_from_cache(cached)),
            from_cache=True,
        )

    async def complete_task(
        self, task_id: str, completed: bool, target_date: str | None = None,
    ) -> StorageResult:
        """Toggle one task for a date.

        The cache is written first so the UI reflects the change at once; a
        failed remote call queues a retry and does not roll the cache back.
        """
        target_date = target_date or _today()
        payload = {"task_id": task_id, "completed": completed, "date": target_date}

        invalid = self._precheck(ChangeType.COMPLETE_TASK, payload)
        if invalid is not None:
            return StorageResult(success=False, error=invalid, status=MutationStatus.REJECTED)

        cache_key = keys.completions_key(target_date)
        cached = dict(self._cache.get(cache_key, {}))
        cached[task_id] = asdict(TaskCompletion(
            task_id=task_id,
            date=target_date,
            completed=completed,
            completed_at=_now_iso() if completed else None,
        ))
        self._cache.set(cache_key, cached)
        day = self._day_progress(target_date, _completions_from_cache(cached))

        if not self._is_online or is_temp_id(task_id):
            self._enqueue(PendingChange(type=ChangeType.COMPLETE_TASK, data=payload))
            return StorageResult(
                success=True, data=day, from_cache=True, status=MutationStatus.PENDING_SYNC,
            )

        try:
            result = await self._api.complete_task(task_id, completed, target_date)
        except Exception as exc:
            error = self._errors.handle_api_error(ExceptionSource(exc))
            self._enqueue(PendingChange(type=ChangeType.COMPLETE_TASK, data=payload))
            return StorageResult(
                success=False, data=day, error=error, status=MutationStatus.PENDING_SYNC,
            )

        if result.success:
            day.day_number = result.data.get("day_number", day.day_number)
            return StorageResult(success=True, data=day, status=MutationStatus.APPLIED_REMOTE)

        if result.error is not None and result.error.category is ErrorCategory.VALIDATION:
            return StorageResult(
                success=False, data=day, error=result.error, status=MutationStatus.REJECTED,
            )
        self._enqueue(PendingChange(type=ChangeType.COMPLETE_TASK, data=payload))
        return StorageResult(
            success=False, data=day, error=result.error, status=MutationStatus.PENDING_SYNC,
        )

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_stats(self, today: str | None = None) -> StorageResult:
        """Streaks, completion rates and weekly breakdown of the active challenge."""
        active = await self.get_active_challenge()
        if not active.success:
            return active
        if active.data is None:
            return StorageResult(
                success=False,
                error=self._errors.handle_validation_error(MessageSource("No active challenge found")),
            )
        challenge: Challenge = active.data

        tasks_result = await self.get_tasks()
        tasks = tasks_result.data if tasks_result.success else []

        window = progress.stats_window(challenge.start_date, today)
        day_results = await asyncio.gather(*(self.get_task_completions(d) for d in window))
        days = {d: r.data.completions for d, r in zip(window, day_results) if r.success}

        stats = progress.compute_stats(challenge.start_date, tasks, days, today)
        return StorageResult(
            success=True,
            data=stats,
            from_cache=active.from_cache or any(r.from_cache for r in day_results),
        )

    # ------------------------------------------------------------------
    # Queue drain
    # ------------------------------------------------------------------

    async def sync_pending_changes(self) -> None:
        """Replay every queued change once, in FIFO order.

        Items that fail transiently are re-queued for the next drain; items
        the server rejects as invalid are dropped. A drain requested while
        one is running does nothing.
        """
        if not self._is_online or self._sync_in_progress or not self._pending:
            return

        self._sync_in_progress = True
        try:
            snapshot, self._pending = self._pending, []
            logger.info("Syncing %d pending changes", len(snapshot))
            for position, change in enumerate(snapshot):
                self._in_flight = snapshot[position:]
                remaining = snapshot[position + 1:]
                try:
                    outcome = await self._replay(change, remaining)
                except Exception as exc:
                    logger.warning("Failed to sync %s: %s", change.type.value, exc)
                    outcome = "retry"

                if outcome == "retry":
                    self._pending.append(change)
                elif outcome == "drop":
                    logger.warning("Dropping unsyncable change %s: %r", change.type.value, change.data)
                    for temp_id in [change.temp_id, *change.temp_ids]:
                        if temp_id:
                            self._remove_cached_task(temp_id)

            self._in_flight = []
            self._last_sync = datetime.now()
            self._save_queue()
            self._notify()
            logger.info("Sync finished, %d changes still pending", len(self._pending))
        finally:
            self._in_flight = []
            self._sync_in_progress = False

    async def force_sync(self) -> None:
        await self.sync_pending_changes()

    def _temp_still_queued(self, temp_id: str, remaining: list[PendingChange]) -> bool:
        for change in [*remaining, *self._pending]:
            if change.temp_id == temp_id or temp_id in change.temp_ids:
                return True
        return False

    async def _replay(self, change: PendingChange, remaining: list[PendingChange]) -> str:
        """Send one queued change. Returns "done", "retry" or "drop"."""
        data = dict(change.data)

        task_id = data.get("task_id")
        if task_id is not None and is_temp_id(task_id):
            if task_id in self._temp_ids:
                data["task_id"] = self._temp_ids[task_id]
                change.data = data
            elif self._temp_still_queued(task_id, remaining):
                return "retry"
            else:
                return "drop"

        if change.type is ChangeType.INITIALIZE_DEFAULT_TASKS:
            return await self._replay_default_tasks(change)

        call = {
            ChangeType.CREATE_PROFILE: self._api.create_profile,
            ChangeType.UPDATE_PROFILE: self._api.update_profile,
            ChangeType.CREATE_CHALLENGE: self._api.create_challenge,
            ChangeType.UPDATE_CHALLENGE: self._api.update_challenge,
            ChangeType.CREATE_TASK: self._api.create_task,
            ChangeType.UPDATE_TASK: self._api.update_task,
            ChangeType.DELETE_TASK: self._api.delete_task,
            ChangeType.COMPLETE_TASK: self._api.complete_task,
        }[change.type]
        result: ApiResult = await call(**data)

        if not result.success:
            return self._failure_outcome(result.error)

        if change.type is ChangeType.CREATE_TASK:
            self._adopt_server_task(change.temp_id, result.data)
        elif change.type is ChangeType.DELETE_TASK:
            self._remove_cached_task(str(data["task_id"]))
        elif change.type in (ChangeType.CREATE_PROFILE, ChangeType.UPDATE_PROFILE):
            self._cache.set(keys.USER_PROFILE, result.data)
        return "done"

    async def _replay_default_tasks(self, change: PendingChange) -> str:
        skip = set(change.data.get("skip", []))
        tasks: list[str] = change.data["tasks"]
        wanted = [i for i in range(len(tasks)) if i not in skip]
        if not wanted:
            return "done"

        result = await self._api.initialize_default_tasks([tasks[i] for i in wanted])
        if not result.success:
            return self._failure_outcome(result.error)

        for item in result.items:
            original_index = wanted[item.index]
            temp_id = change.temp_ids[original_index] if original_index < len(change.temp_ids) else None
            if item.success:
                self._adopt_server_task(temp_id, item.data)
            elif item.error is not None and is_transient(item.error):
                self._pending.append(PendingChange(
                    type=ChangeType.CREATE_TASK,
                    data={"task_text": tasks[original_index], "is_default": True, "order_index": original_index},
                    temp_id=temp_id,
                ))
            elif temp_id:
                self._remove_cached_task(temp_id)
        return "done"

    @staticmethod
    def _failure_outcome(error: AppError | None) -> str:
        if error is None or is_transient(error) or error.category is ErrorCategory.AUTH:
            return "retry"
        return "drop"

    def _delete_queued(self, task_id: str) -> bool:
        return any(
            change.type is ChangeType.DELETE_TASK and change.data.get("task_id") == task_id
            for change in [*self._in_flight, *self._pending]
        )

    def _adopt_server_task(self, temp_id: str | None, task: dict) -> None:
        """Put a task created by a replay into the cache.

        With a temp_id, the provisional record and its completions are
        re-keyed to the server id and later queued changes will follow.
        """
        server_id = str(task.get("id"))
        tasks = self._cached_tasks()
        if temp_id is None:
            tasks.append(task)
            self._cache.set(keys.CUSTOM_TASKS, tasks)
            return

        self._temp_ids[temp_id] = server_id
        if any(str(t.get("id")) == temp_id for t in tasks):
            tasks = [task if str(t.get("id")) == temp_id else t for t in tasks]
            self._cache.set(keys.CUSTOM_TASKS, tasks)
        elif not self._delete_queued(temp_id):
            tasks.append(task)
            self._cache.set(keys.CUSTOM_TASKS, tasks)

        for key in self._cache.keys(keys.COMPLETIONS_PREFIX):
            day = self._cache.get(key, {})
            if temp_id in day:
                entry = day.pop(temp_id)
                entry["task_id"] = server_id
                day[server_id] = entry
                self._cache.set(key, day)

        logger.info("Task %s synced as %s", temp_id, server_id)

    # ------------------------------------------------------------------
    # Cache maintenance, export/import
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Forget cached resources. Unsynced changes stay queued."""
        for key in (keys.USER_PROFILE, keys.CHALLENGES, keys.CUSTOM_TASKS):
            self._cache.remove(key)
        for key in self._cache.keys(keys.COMPLETIONS_PREFIX):
            self._cache.remove(key)
        logger.info("Cached resources cleared, %d changes still pending", len(self._pending))

    def clear_all_data(self) -> None:
        """Wipe the device: cache, pending changes and temp-id mappings."""
        self._cache.clear()
        self._pending = []
        self._temp_ids.clear()
        self._notify()
        logger.info("All local data cleared")

    def export_data(self) -> str:
        """Serialize everything the device knows into a JSON document."""
        completions = {
            key[len(keys.COMPLETIONS_PREFIX):]: self._cache.get(key, {})
            for key in self._cache.keys(keys.COMPLETIONS_PREFIX)
        }
        data = {
            "version": _EXPORT_VERSION,
            "exported_at": _now_iso(),
            "user_profile": self._cache.get(keys.USER_PROFILE),
            "challenges": self._cache.get(keys.CHALLENGES, []),
            "custom_tasks": self._cache.get(keys.CUSTOM_TASKS, []),
            "task_completions": completions,
            "pending_changes": [c.to_dict() for c in self._pending],
        }
        return json.dumps(data, indent=2)

    def import_data(self, json_data: str) -> bool:
        """Load a document produced by export_data. Returns False if unreadable.

        The whole document is checked before the cache is touched, so a
        refused import leaves the device as it was.
        """
        try:
            doc = ExportDocument.model_validate(json.loads(json_data))
            pending = [PendingChange.from_dict(c) for c in doc.pending_changes]
            if doc.user_profile is not None:
                UserProfile.from_dict(doc.user_profile)
            for challenge in doc.challenges or []:
                Challenge.from_dict(challenge)
            for task in doc.custom_tasks or []:
                CustomTask.from_dict(task)
            for day in doc.task_completions.values():
                for completion in day.values():
                    TaskCompletion.from_dict(completion)
        except (ValueError, KeyError, TypeError) as exc:
            self._errors.handle_validation_error(MessageSource(f"Import failed validation: {exc}"))
            return False

        if doc.user_profile:
            self._cache.set(keys.USER_PROFILE, doc.user_profile)
        if doc.challenges is not None:
            self._cache.set(keys.CHALLENGES, doc.challenges)
        if doc.custom_tasks is not None:
            self._cache.set(keys.CUSTOM_TASKS, doc.custom_tasks)
        for day, completions in doc.task_completions.items():
            self._cache.set(keys.completions_key(day), completions)
        if pending:
            self._pending.extend(pending)
            self._save_queue()

        logger.info("Imported data exported at %s", doc.exported_at or "unknown")
        return True
