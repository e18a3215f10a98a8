"""
Queue Manager

Single source of truth for upload task state.
The only component that changes a task's state.

Responsibilities:
- Accept, cancel, retry and remove tasks on behalf of their owner
- Admit pending tasks FIFO under one global concurrency limit
- Run each attempt through an UploadTaskExecutor
- Consult the RetryPolicy on failure and schedule automatic retries
- Persist every state change and publish typed events

Everything runs on one asyncio loop. Each mutation happens synchronously
within one turn of the loop; awaits only occur afterwards, for persistence.
"""

import asyncio
import inspect
import json
import logging
from datetime import datetime, timedelta
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from core.event_bus import EventBus, Subscription
from storage.interfaces.kv_store_interface import KeyValueStore
from upload.config import QueueConfig
from upload.constants import OutcomeKind, TaskState
from upload.controllers.owner_queue import OwnerUploadQueue
from upload.errors import (
    FileTooLarge,
    InvalidSource,
    InvalidTaskState,
    QueueFull,
    TaskNotFound,
)
from upload.events import (
    ProgressUpdated,
    QueueChanged,
    TaskCancelled,
    TaskFailed,
    TaskRetryScheduled,
    TaskStarted,
    TaskSucceeded,
)
from upload.executor import ExecutionOutcome, UploadTaskExecutor
from upload.interfaces.transport_interface import UploadTransport
from upload.lifecycle import create_task_state_machine
from upload.managers.queue_persistence import QueuePersistence
from upload.models.upload_task import (
    QueueSnapshot,
    QueueStats,
    SourceRef,
    UploadTask,
    new_task_id,
)
from upload.progress_throttler import ProgressThrottler
from upload.retry_policy import RetryPolicy

CredentialsRefresher = Callable[[str], Union[Awaitable[None], None]]


class QueueManager:
    """
    Background upload queue orchestrator.

    Usage:
        manager = QueueManager(store, transport)
        await manager.start()                 # restore + scheduler loop

        task_id = await manager.enqueue("u1", SourceRef("/videos/a.mp4", 10_000_000))
        manager.on_progress("u1", task_id, lambda event: print(event.fraction))

        snapshot = manager.get_snapshot("u1")
        await manager.shutdown()

    Tests can skip start() and drive the scheduler with tick().
    """

    def __init__(
        self,
        store: KeyValueStore,
        transport: UploadTransport,
        config: Optional[QueueConfig] = None,
        event_bus: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None,
        throttler: Optional[ProgressThrottler] = None,
        credentials_refresher: Optional[CredentialsRefresher] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize queue manager.

        Args:
            store: Durable key-value store for queue state
            transport: Upload transport used for every attempt
            config: QueueConfig, or None for defaults from settings
            event_bus: Shared EventBus, or None to create one
            retry_policy: Override the policy built from config
            throttler: Override the throttler built from config
            credentials_refresher: Called with owner_id before the single
                retry granted for an Unauthorized failure
            now: Wall-clock source (injectable for tests)
        """
        self.logger = logging.getLogger(__name__)

        self.config = config or QueueConfig()
        self.transport = transport
        self.event_bus = event_bus or EventBus()
        self.retry_policy = retry_policy or RetryPolicy(
            base_delay_seconds=self.config.retry_base_delay_seconds,
            max_delay_seconds=self.config.retry_max_delay_seconds,
            max_retries=self.config.max_upload_retries,
            jitter_ratio=self.config.retry_jitter_ratio,
        )
        self.throttler = throttler or ProgressThrottler(
            min_delta=self.config.progress_min_delta,
            min_interval_seconds=self.config.progress_min_interval_seconds,
        )
        self.persistence = QueuePersistence(
            store,
            key_prefix=self.config.key_prefix,
            max_queue_size=self.config.max_queue_size,
            max_completed_history=self.config.max_completed_history,
            now=now,
        )
        self.state_machine = create_task_state_machine()
        self._credentials_refresher = credentials_refresher
        self._now = now

        # Task set across all owners, by id
        self._tasks: Dict[str, UploadTask] = {}
        self._sequence = 0

        # In-flight attempts
        self._executors: Dict[str, UploadTaskExecutor] = {}
        self._runners: Dict[str, asyncio.Task] = {}

        # Automatic retries
        self._retry_timers: Dict[str, asyncio.TimerHandle] = {}
        self._due_retries: Set[str] = set()

        # Scheduler loop
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self._restored = False

        if not self.transport.is_available():
            self.logger.warning(
                "Upload transport not available. Tasks will fail until it is.",
            )

        self.logger.info(
            f"Queue Manager initialized "
            f"(concurrency: {self.config.max_concurrent_uploads}, "
            f"queue limit: {self.config.max_queue_size}, "
            f"retries: {self.retry_policy.max_retries})",
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Restore persisted tasks and start the scheduler loop"""
        if self._running:
            return

        await self.restore()
        self._running = True
        self._loop_task = asyncio.get_running_loop().create_task(
            self._scheduler_loop(),
        )
        self.logger.info("Upload scheduler started")

    async def restore(self) -> int:
        """
        Load every owner's persisted tasks into memory.

        Safe to call once before start(); tasks already in memory win over
        persisted copies with the same id.

        Returns:
            Number of tasks restored
        """
        if self._restored:
            return 0
        self._restored = True

        restored = 0
        partitions = await self.persistence.load_all()
        for owner_id, tasks in partitions.items():
            for task in tasks:
                if task.id in self._tasks:
                    continue
                self._tasks[task.id] = task
                self._sequence = max(self._sequence, task.sequence + 1)
                if task.awaiting_retry:
                    self._restore_retry_timer(task)
                restored += 1
            if tasks:
                self._queue_changed(owner_id)

        self._refresh_idle()
        self.logger.info(
            f"Restored {restored} upload tasks for {len(partitions)} owners",
        )
        return restored

    async def shutdown(self) -> None:
        """
        Stop the scheduler and interrupt in-flight uploads.

        Interrupted tasks stay persisted as uploading and come back as
        pending on the next restore.
        """
        self._running = False
        self._wakeup.set()

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for handle in self._retry_timers.values():
            handle.cancel()
        self._retry_timers.clear()

        runners = list(self._runners.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
            self.logger.info(f"Interrupted {len(runners)} in-flight uploads")

        self.logger.info("Upload scheduler stopped")

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until no task is pending, uploading or awaiting a retry.

        Needs the scheduler loop (start()) to make progress.

        Returns:
            True if idle, False if the timeout expired first
        """
        self._refresh_idle()
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _wake(self) -> None:
        self._wakeup.set()

    async def _scheduler_loop(self) -> None:
        tick_seconds = self.config.scheduler_tick_seconds
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Scheduler pass failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=tick_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    # =========================================================================
    # SCHEDULER
    # =========================================================================

    async def tick(self) -> List[str]:
        """
        Run one scheduler pass.

        Promotes due retries, archives expired succeeded tasks and admits
        pending tasks FIFO while the global limit allows.

        Returns:
            Ids of the tasks admitted into uploading
        """
        now = self._now()
        changed: Set[str] = set()

        for task in self._promote_due_retries(now):
            changed.add(task.owner_id)

        expired = self._purge_expired(now)
        for owner_id in expired:
            changed.add(owner_id)

        admitted = self._admit(now)
        for task in admitted:
            changed.add(task.owner_id)

        for owner_id in sorted(changed):
            self._queue_changed(owner_id)

        for owner_id in sorted(changed):
            await self._persist(owner_id)
        for owner_id, tasks in expired.items():
            await self.persistence.append_history(owner_id, tasks)

        return [task.id for task in admitted]

    def _promote_due_retries(self, now: datetime) -> List[UploadTask]:
        promoted = []
        for task in list(self._tasks.values()):
            if not task.awaiting_retry or task.next_retry_at is None:
                continue
            if task.id not in self._due_retries and task.next_retry_at > now:
                continue
            self._transition(task, TaskState.PENDING, "automatic retry", now)
            task.next_retry_at = None
            task.last_error = None
            self._cancel_retry_timer(task.id)
            promoted.append(task)
        self._due_retries.clear()
        return promoted

    def _purge_expired(self, now: datetime) -> Dict[str, List[UploadTask]]:
        cutoff = now - timedelta(seconds=self.config.succeeded_retention_seconds)
        expired: Dict[str, List[UploadTask]] = {}
        for task in list(self._tasks.values()):
            if task.state != TaskState.SUCCEEDED:
                continue
            if (task.completed_at or task.updated_at) > cutoff:
                continue
            del self._tasks[task.id]
            expired.setdefault(task.owner_id, []).append(task)

        for owner_id, tasks in expired.items():
            self.logger.info(
                f"Archived {len(tasks)} succeeded uploads for {owner_id} "
                f"after retention window",
            )
        return expired

    def _admit(self, now: datetime) -> List[UploadTask]:
        uploading = sum(
            1 for task in self._tasks.values() if task.state == TaskState.UPLOADING
        )
        slots = self.config.max_concurrent_uploads - uploading
        if slots <= 0:
            return []

        pending = sorted(
            (task for task in self._tasks.values() if task.state == TaskState.PENDING),
            key=lambda task: task.order_key,
        )

        admitted = []
        for task in pending[:slots]:
            task.attempt += 1
            self._transition(
                task,
                TaskState.UPLOADING,
                f"attempt {task.attempt}",
                now,
            )
            task.started_at = now
            task.completed_at = None
            task.progress_fraction = 0.0
            task.cancel_requested = False
            self.throttler.begin(task.id)

            executor = UploadTaskExecutor(
                self.transport,
                timeout_seconds=self.config.upload_timeout_seconds,
                task_id=task.id,
            )
            self._executors[task.id] = executor
            self.event_bus.publish(
                TaskStarted(owner_id=task.owner_id, task_id=task.id, attempt=task.attempt),
            )
            self._runners[task.id] = asyncio.get_running_loop().create_task(
                self._run_attempt(task.id, task.attempt, executor),
            )
            admitted.append(task)

        return admitted

    # =========================================================================
    # ATTEMPT EXECUTION
    # =========================================================================

    async def _run_attempt(
        self,
        task_id: str,
        attempt: int,
        executor: UploadTaskExecutor,
    ) -> None:
        task = self._tasks[task_id]
        try:
            outcome = await executor.run(
                task.source_ref,
                dict(task.metadata),
                on_progress=partial(self._handle_progress, task_id, attempt),
            )
        except asyncio.CancelledError:
            self.logger.info(f"Upload {task_id} interrupted (attempt {attempt})")
            raise
        finally:
            self._executors.pop(task_id, None)
            self._runners.pop(task_id, None)

        try:
            await self._apply_outcome(task_id, attempt, outcome)
        except Exception as e:
            self.logger.error(
                f"Failed to record outcome for upload {task_id}: {e}",
                exc_info=True,
            )
        finally:
            self._refresh_idle()
            self._wake()

    def _handle_progress(self, task_id: str, attempt: int, fraction: float) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.state != TaskState.UPLOADING:
            return
        if task.attempt != attempt or task.cancel_requested:
            return

        emitted = self.throttler.offer(task_id, fraction)
        if emitted is None:
            return

        task.progress_fraction = emitted
        self.logger.debug(f"Upload {task_id} progress: {emitted:.1%}")
        self.event_bus.publish(
            ProgressUpdated(
                owner_id=task.owner_id,
                task_id=task_id,
                fraction=emitted,
                attempt=attempt,
            ),
        )

    async def _apply_outcome(
        self,
        task_id: str,
        attempt: int,
        outcome: ExecutionOutcome,
    ) -> None:
        task = self._tasks.get(task_id)
        if task is None or task.state != TaskState.UPLOADING or task.attempt != attempt:
            self.logger.warning(f"Ignoring stale outcome for upload {task_id}")
            return

        now = self._now()
        if outcome.kind == OutcomeKind.SUCCEEDED:
            self._finish_succeeded(task, outcome, now)
        elif outcome.kind == OutcomeKind.CANCELLED or task.cancel_requested:
            # A failure that lands after a cancel request is still a cancel
            self.throttler.finish(task_id, completed=False)
            self._finish_cancelled(task, now)
        else:
            await self._finish_failed(task, outcome, now)
            return
        await self._persist(task.owner_id)

    def _finish_succeeded(
        self,
        task: UploadTask,
        outcome: ExecutionOutcome,
        now: datetime,
    ) -> None:
        final = self.throttler.finish(task.id, completed=True)
        if final is not None:
            task.progress_fraction = final
            self.event_bus.publish(
                ProgressUpdated(
                    owner_id=task.owner_id,
                    task_id=task.id,
                    fraction=final,
                    attempt=task.attempt,
                ),
            )

        self._transition(task, TaskState.SUCCEEDED, "upload complete", now)
        task.result_ref = outcome.result_ref
        task.last_error = None
        task.cancel_requested = False
        task.completed_at = now

        self.logger.info(f"✅ Upload {task.id} succeeded on attempt {task.attempt}")
        self.event_bus.publish(
            TaskSucceeded(
                owner_id=task.owner_id,
                task_id=task.id,
                attempt=task.attempt,
                result_ref=task.result_ref,
            ),
        )
        self._queue_changed(task.owner_id)

    async def _finish_failed(
        self,
        task: UploadTask,
        outcome: ExecutionOutcome,
        now: datetime,
    ) -> None:
        self.throttler.finish(task.id, completed=False)
        error = outcome.error
        decision = self.retry_policy.decide(
            task.attempt,
            error.error_class,
            auth_refreshed=task.auth_refreshed,
        )

        self._transition(task, TaskState.FAILED, error.error_class.value, now)
        task.last_error = error
        task.next_retry_at = None
        task.retries_exhausted = decision.terminal
        if decision.terminal:
            task.completed_at = now
        if decision.refresh_credentials:
            task.auth_refreshed = True

        self.event_bus.publish(
            TaskFailed(
                owner_id=task.owner_id,
                task_id=task.id,
                attempt=task.attempt,
                error=error,
                terminal=decision.terminal,
            ),
        )

        if decision.terminal:
            self.logger.error(
                f"❌ Upload {task.id} failed after {task.attempt} attempts: "
                f"{error.message} ({error.error_class.value})",
            )
            self._queue_changed(task.owner_id)
            await self._persist(task.owner_id)
            return

        self.logger.warning(
            f"Upload {task.id} failed on attempt {task.attempt}: "
            f"{error.message} ({error.error_class.value}), "
            f"retrying in {decision.delay_seconds:.1f}s",
        )
        self._queue_changed(task.owner_id)
        await self._persist(task.owner_id)

        if decision.refresh_credentials:
            await self._refresh_credentials(task.owner_id)

        # Cancel, retry_now or remove may have happened during the awaits
        if not task.awaiting_retry or task.id not in self._tasks:
            return

        task.next_retry_at = self._now() + timedelta(seconds=decision.delay_seconds)
        self._schedule_retry_timer(task.id, decision.delay_seconds)
        self.event_bus.publish(
            TaskRetryScheduled(
                owner_id=task.owner_id,
                task_id=task.id,
                attempt=task.attempt,
                delay_seconds=decision.delay_seconds,
            ),
        )
        self._queue_changed(task.owner_id)
        await self._persist(task.owner_id)

    def _finish_cancelled(self, task: UploadTask, now: datetime) -> None:
        self._transition(task, TaskState.CANCELLED, "cancelled by owner", now)
        task.completed_at = now
        task.next_retry_at = None
        self._cancel_retry_timer(task.id)

        self.event_bus.publish(TaskCancelled(owner_id=task.owner_id, task_id=task.id))
        self._queue_changed(task.owner_id)

    async def _refresh_credentials(self, owner_id: str) -> None:
        if self._credentials_refresher is None:
            return
        try:
            result = self._credentials_refresher(owner_id)
            if inspect.isawaitable(result):
                await result
            self.logger.info(f"Refreshed upload credentials for {owner_id}")
        except Exception as e:
            self.logger.error(f"Credential refresh failed for {owner_id}: {e}")

    # =========================================================================
    # RETRY TIMERS
    # =========================================================================

    def _schedule_retry_timer(self, task_id: str, delay_seconds: float) -> None:
        self._cancel_retry_timer(task_id)
        loop = asyncio.get_running_loop()
        self._retry_timers[task_id] = loop.call_later(
            max(0.0, delay_seconds),
            self._retry_due,
            task_id,
        )

    def _restore_retry_timer(self, task: UploadTask) -> None:
        if task.next_retry_at is None:
            task.next_retry_at = self._now()
        remaining = (task.next_retry_at - self._now()).total_seconds()
        self._schedule_retry_timer(task.id, remaining)

    def _retry_due(self, task_id: str) -> None:
        self._retry_timers.pop(task_id, None)
        self._due_retries.add(task_id)
        self._wake()

    def _cancel_retry_timer(self, task_id: str) -> None:
        handle = self._retry_timers.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        self._due_retries.discard(task_id)

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    async def enqueue(
        self,
        owner_id: str,
        source_ref: SourceRef,
        metadata: Optional[dict] = None,
    ) -> str:
        """
        Queue a file for upload.

        Returns immediately after persisting; the upload itself runs in the
        background.

        Args:
            owner_id: User the task belongs to
            source_ref: Local media file and its size
            metadata: Opaque data passed to the transport

        Returns:
            New task id

        Raises:
            ValueError: If owner_id is empty
            InvalidSource: If the source reference is malformed
                or the metadata cannot be persisted
            FileTooLarge: If the file exceeds max_file_size_bytes
            QueueFull: If the owner's queue is full of active tasks
        """
        self._require_owner(owner_id)
        if not source_ref.uri:
            raise InvalidSource("Source uri is empty")
        if source_ref.size_bytes < 0:
            raise InvalidSource(f"Invalid source size: {source_ref.size_bytes}")
        if source_ref.size_bytes > self.config.max_file_size_bytes:
            raise FileTooLarge(source_ref.size_bytes, self.config.max_file_size_bytes)
        metadata = dict(metadata or {})
        try:
            json.dumps(metadata)
        except (TypeError, ValueError) as e:
            raise InvalidSource(f"Metadata is not JSON serializable: {e}") from e

        evicted = self._make_room(owner_id)

        now = self._now()
        task = UploadTask(
            id=new_task_id(),
            owner_id=owner_id,
            source_ref=source_ref,
            created_at=now,
            updated_at=now,
            sequence=self._next_sequence(),
            metadata=metadata,
        )
        self._tasks[task.id] = task

        self.logger.info(
            f"Queued upload {task.id} for {owner_id}: {source_ref.uri} "
            f"({source_ref.size_bytes / (1024 * 1024):.1f} MB)",
        )

        await self._persist(owner_id)
        archived = [t for t in evicted if t.state == TaskState.SUCCEEDED]
        await self.persistence.append_history(owner_id, archived)

        self._queue_changed(owner_id)
        self._wake()
        return task.id

    async def cancel(self, owner_id: str, task_id: str) -> None:
        """
        Cancel a task.

        Pending and retry-scheduled tasks are cancelled at once. An uploading
        task is marked cancel_requested and becomes cancelled when the
        transfer acknowledges. Terminal tasks are left alone.

        Raises:
            TaskNotFound: If the owner has no such task
        """
        task = self._get_owned(owner_id, task_id)

        if task.is_terminal:
            self.logger.debug(f"Cancel ignored for terminal upload {task_id}")
            return

        if task.state == TaskState.UPLOADING:
            if task.cancel_requested:
                return
            task.cancel_requested = True
            task.updated_at = self._now()
            self.logger.info(f"Cancellation requested for uploading task {task_id}")

            executor = self._executors.get(task_id)
            if executor is not None:
                self._queue_changed(owner_id)
                executor.request_cancel()
            else:
                # Nothing in flight (e.g. after shutdown), nothing to wait for
                self._finish_cancelled(task, self._now())
        else:
            self._finish_cancelled(task, self._now())

        await self._persist(owner_id)

    async def retry_now(self, owner_id: str, task_id: str) -> None:
        """
        Move a failed task back to pending without waiting for its backoff.

        Works for retry-scheduled and exhausted tasks alike. The attempt
        count is cumulative, so an exhausted task gets exactly one more
        attempt before failing terminally again.

        Raises:
            TaskNotFound: If the owner has no such task
            InvalidTaskState: If the task is not failed
        """
        task = self._get_owned(owner_id, task_id)
        if task.state != TaskState.FAILED:
            raise InvalidTaskState(task_id, task.state.value, "retry")

        self._cancel_retry_timer(task_id)
        self._transition(task, TaskState.PENDING, "manual retry", self._now())
        task.next_retry_at = None
        task.retries_exhausted = False
        task.completed_at = None
        task.last_error = None

        self._queue_changed(owner_id)
        await self._persist(owner_id)
        self._wake()

    async def remove(self, owner_id: str, task_id: str) -> None:
        """
        Delete a task from the queue.

        Pending or retry-scheduled tasks are cancelled first.

        Raises:
            TaskNotFound: If the owner has no such task
            InvalidTaskState: If the task is uploading (cancel it first)
        """
        task = self._get_owned(owner_id, task_id)
        if task.state == TaskState.UPLOADING:
            raise InvalidTaskState(task_id, task.state.value, "remove")

        if not task.is_terminal:
            self._finish_cancelled(task, self._now())

        del self._tasks[task_id]
        self._cancel_retry_timer(task_id)
        self.throttler.reset(task_id)
        self.logger.info(f"Removed upload {task_id} for {owner_id}")

        self._queue_changed(owner_id)
        await self._persist(owner_id)

    async def clear_terminal(self, owner_id: str) -> int:
        """
        Remove every terminal task of an owner.

        Succeeded tasks are moved into the completed history.

        Returns:
            Number of tasks removed
        """
        self._require_owner(owner_id)
        removed = [task for task in self._owner_tasks(owner_id) if task.is_terminal]
        if not removed:
            return 0

        for task in removed:
            del self._tasks[task.id]
        self.logger.info(f"Cleared {len(removed)} finished uploads for {owner_id}")

        self._queue_changed(owner_id)
        await self._persist(owner_id)
        await self.persistence.append_history(
            owner_id,
            [task for task in removed if task.state == TaskState.SUCCEEDED],
        )
        return len(removed)

    async def drop_owner(self, owner_id: str) -> int:
        """
        Forget everything stored for an owner (tasks and history).

        Raises:
            InvalidTaskState: If one of the owner's tasks is uploading

        Returns:
            Number of tasks dropped
        """
        self._require_owner(owner_id)
        tasks = self._owner_tasks(owner_id)
        for task in tasks:
            if task.state == TaskState.UPLOADING:
                raise InvalidTaskState(task.id, task.state.value, "drop")

        for task in tasks:
            del self._tasks[task.id]
            self._cancel_retry_timer(task.id)
            self.throttler.reset(task.id)

        await self.persistence.drop_owner(owner_id)
        self._queue_changed(owner_id)
        return len(tasks)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_snapshot(self, owner_id: str) -> QueueSnapshot:
        """Owner's tasks (copies), oldest first"""
        return QueueSnapshot(
            owner_id=owner_id,
            tasks=tuple(task.copy() for task in self._owner_tasks(owner_id)),
        )

    def get_task(self, owner_id: str, task_id: str) -> UploadTask:
        """
        Raises:
            TaskNotFound: If the owner has no such task
        """
        return self._get_owned(owner_id, task_id).copy()

    def get_stats(self, owner_id: Optional[str] = None) -> QueueStats:
        """Task counts per state, for one owner or across all of them"""
        tasks = (
            self._owner_tasks(owner_id)
            if owner_id is not None
            else list(self._tasks.values())
        )
        stats = QueueStats()
        for task in tasks:
            if task.state == TaskState.PENDING:
                stats.pending_count += 1
            elif task.state == TaskState.UPLOADING:
                stats.uploading_count += 1
            elif task.state == TaskState.SUCCEEDED:
                stats.succeeded_count += 1
            elif task.state == TaskState.FAILED:
                stats.failed_count += 1
            elif task.state == TaskState.CANCELLED:
                stats.cancelled_count += 1
        return stats

    def has_active_uploads(self, owner_id: str) -> bool:
        """True if the owner has pending, uploading or retry-scheduled tasks"""
        return any(
            task.is_active or task.awaiting_retry
            for task in self._owner_tasks(owner_id)
        )

    async def get_completed_history(self, owner_id: str) -> List[UploadTask]:
        """Recently archived successful uploads, newest first"""
        self._require_owner(owner_id)
        return await self.persistence.load_history(owner_id)

    async def clear_completed_history(self, owner_id: str) -> None:
        self._require_owner(owner_id)
        await self.persistence.clear_history(owner_id)
        self.logger.info(f"Cleared completed upload history for {owner_id}")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def for_owner(self, owner_id: str) -> OwnerUploadQueue:
        """Owner-bound view of this manager"""
        return OwnerUploadQueue(self, owner_id)

    def on_queue_changed(self, owner_id: str, callback: Callable) -> Subscription:
        """callback(QueueChanged) for every change to the owner's queue"""
        self._require_owner(owner_id)
        return self.event_bus.subscribe(QueueChanged, callback, owner_id=owner_id)

    def on_progress(self, owner_id: str, task_id: str, callback: Callable) -> Subscription:
        """callback(ProgressUpdated) for one of the owner's tasks"""
        self._get_owned(owner_id, task_id)
        return self.event_bus.subscribe(
            ProgressUpdated,
            callback,
            owner_id=owner_id,
            task_id=task_id,
        )

    def on_succeeded(
        self,
        owner_id: str,
        task_id: str,
        callback: Callable,
    ) -> Subscription:
        self._get_owned(owner_id, task_id)
        return self.event_bus.subscribe(
            TaskSucceeded,
            callback,
            owner_id=owner_id,
            task_id=task_id,
        )

    def on_failed(self, owner_id: str, task_id: str, callback: Callable) -> Subscription:
        """
        callback(TaskFailed) once the task fails with no automatic retry left.

        Intermediate failures are reported through on_retry_scheduled.
        """
        self._get_owned(owner_id, task_id)
        return self.event_bus.subscribe(
            TaskFailed,
            callback,
            owner_id=owner_id,
            task_id=task_id,
            terminal=True,
        )

    def on_retry_scheduled(self, owner_id: str, callback: Callable) -> Subscription:
        self._require_owner(owner_id)
        return self.event_bus.subscribe(TaskRetryScheduled, callback, owner_id=owner_id)

    def on_cancelled(self, owner_id: str, callback: Callable) -> Subscription:
        self._require_owner(owner_id)
        return self.event_bus.subscribe(TaskCancelled, callback, owner_id=owner_id)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @staticmethod
    def _require_owner(owner_id: str) -> None:
        if not owner_id:
            raise ValueError("owner_id is required")

    def _get_owned(self, owner_id: str, task_id: str) -> UploadTask:
        self._require_owner(owner_id)
        task = self._tasks.get(task_id)
        # Foreign tasks look exactly like missing ones
        if task is None or task.owner_id != owner_id:
            raise TaskNotFound(task_id, owner_id)
        return task

    def _owner_tasks(self, owner_id: str) -> List[UploadTask]:
        return sorted(
            (task for task in self._tasks.values() if task.owner_id == owner_id),
            key=lambda task: task.order_key,
        )

    def _next_sequence(self) -> int:
        sequence = self._sequence
        self._sequence += 1
        return sequence

    def _make_room(self, owner_id: str) -> List[UploadTask]:
        tasks = self._owner_tasks(owner_id)
        excess = len(tasks) - self.config.max_queue_size + 1
        if excess <= 0:
            return []

        terminal = [task for task in tasks if task.is_terminal]
        if len(terminal) < excess:
            raise QueueFull(owner_id, self.config.max_queue_size)

        evicted = terminal[:excess]
        for task in evicted:
            del self._tasks[task.id]
            self.logger.info(
                f"Evicted {task.state.value} upload {task.id} for {owner_id} "
                f"(queue limit {self.config.max_queue_size})",
            )
        return evicted

    def _transition(
        self,
        task: UploadTask,
        new_state: TaskState,
        reason: str,
        now: datetime,
    ) -> None:
        self.state_machine.validate(task.id, task.state, new_state, reason)
        task.state = new_state
        task.updated_at = now

    def _queue_changed(self, owner_id: str) -> None:
        self._refresh_idle()
        self.event_bus.publish(
            QueueChanged(owner_id=owner_id, snapshot=self.get_snapshot(owner_id)),
        )

    def _refresh_idle(self) -> None:
        busy = self._runners or any(
            task.is_active or task.awaiting_retry for task in self._tasks.values()
        )
        if busy:
            self._idle.clear()
        else:
            self._idle.set()

    async def _persist(self, owner_id: str) -> None:
        await self.persistence.save_owner(owner_id, self._owner_tasks(owner_id))

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (
            f"QueueManager(tasks={stats.total}, uploading={stats.uploading_count}, "
            f"running={self._running})"
        )
