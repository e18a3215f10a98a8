"""
Upload Task Executor

Runs ONE attempt of one task against the transport:
- bridges the handle's callbacks into a single awaited outcome
- forwards raw progress samples
- enforces the per-attempt timeout (reported as a NETWORK failure)
- cooperative cancellation: request_cancel() asks the handle to stop at its
  next checkpoint and the outcome becomes CANCELLED once it has
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config.settings import UPLOAD_TIMEOUT_SECONDS
from upload.constants import ErrorClass, OutcomeKind, TransportEvent
from upload.interfaces.transport_interface import (
    TransportError,
    UploadHandle,
    UploadTransport,
)
from upload.models.upload_task import ResultRef, SourceRef, TaskError

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class ExecutionOutcome:
    """How an attempt ended"""

    kind: OutcomeKind
    result_ref: Optional[ResultRef] = None
    error: Optional[TaskError] = None

    @classmethod
    def succeeded(cls, result_ref: Optional[ResultRef]) -> "ExecutionOutcome":
        return cls(OutcomeKind.SUCCEEDED, result_ref=result_ref)

    @classmethod
    def failed(cls, error_class: ErrorClass, message: str) -> "ExecutionOutcome":
        return cls(OutcomeKind.FAILED, error=TaskError(error_class, message))

    @classmethod
    def cancelled(cls) -> "ExecutionOutcome":
        return cls(OutcomeKind.CANCELLED)


class UploadTaskExecutor:
    """
    Single-attempt executor.

    Usage:
        executor = UploadTaskExecutor(transport, timeout_seconds=600)
        outcome = await executor.run(task.source_ref, task.metadata, on_progress)

        # from elsewhere on the loop
        executor.request_cancel()
    """

    def __init__(
        self,
        transport: UploadTransport,
        timeout_seconds: float = UPLOAD_TIMEOUT_SECONDS,
        task_id: str = "",
    ):
        self.logger = logging.getLogger(__name__)
        self.transport = transport
        self.timeout_seconds = timeout_seconds
        self.task_id = task_id

        self._handle: Optional[UploadHandle] = None
        self._outcome: Optional[asyncio.Future] = None
        self._on_progress: Optional[ProgressCallback] = None
        self._cancel_requested = False
        self._cancel_task: Optional[asyncio.Task] = None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def run(
        self,
        source_ref: SourceRef,
        metadata: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExecutionOutcome:
        """
        Execute the transfer and wait for it to finish.

        Never raises for transport problems; every failure is returned as a
        classified ExecutionOutcome. Only asyncio cancellation propagates.
        """
        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._on_progress = on_progress

        try:
            handle = await self.transport.begin_upload(source_ref, metadata)
        except TransportError as e:
            self.logger.warning(f"Upload {self.task_id} rejected by transport: {e}")
            return ExecutionOutcome.failed(e.error_class, str(e))
        except (FileNotFoundError, IsADirectoryError, PermissionError) as e:
            self.logger.warning(f"Upload {self.task_id} source unreadable: {e}")
            return ExecutionOutcome.failed(ErrorClass.INVALID_INPUT, str(e))
        except Exception as e:
            self.logger.error(
                f"Unexpected error starting upload {self.task_id}: {e}",
                exc_info=True,
            )
            return ExecutionOutcome.failed(ErrorClass.SERVER_ERROR, str(e))

        self._handle = handle
        handle.on(TransportEvent.PROGRESS, self._handle_progress)
        handle.on(TransportEvent.DONE, self._handle_done)
        handle.on(TransportEvent.ERROR, self._handle_error)

        if self._cancel_requested:
            # Cancel arrived while the transfer was being set up
            await self._stop_transfer()
            return ExecutionOutcome.cancelled()

        try:
            return await asyncio.wait_for(
                asyncio.shield(self._outcome),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Upload {self.task_id} timed out after {self.timeout_seconds}s",
            )
            await self._stop_transfer()
            if self._outcome.done():
                return self._outcome.result()
            return ExecutionOutcome.failed(
                ErrorClass.NETWORK,
                f"Upload timed out after {self.timeout_seconds}s",
            )
        except asyncio.CancelledError:
            self._cancel_requested = True
            await self._stop_transfer()
            raise

    def request_cancel(self) -> None:
        """
        Ask the running transfer to stop.

        Returns immediately; run() resolves to CANCELLED once the handle
        acknowledges. A transfer that already completed keeps its outcome.
        """
        if self._cancel_requested:
            return
        self._cancel_requested = True
        self.logger.info(f"Cancellation requested for upload {self.task_id}")

        if self._handle is not None and self._cancel_task is None:
            self._cancel_task = asyncio.get_running_loop().create_task(
                self._cancel_in_flight(),
            )

    async def _cancel_in_flight(self) -> None:
        await self._stop_transfer()
        self._resolve(ExecutionOutcome.cancelled())

    async def _stop_transfer(self) -> None:
        if self._handle is None:
            return
        try:
            await self._handle.cancel()
        except Exception as e:
            self.logger.warning(f"Error cancelling upload {self.task_id}: {e}")

    def _resolve(self, outcome: ExecutionOutcome) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(outcome)

    def _handle_progress(self, fraction: float) -> None:
        if self._cancel_requested or self._outcome is None or self._outcome.done():
            return
        if self._on_progress is None:
            return
        try:
            self._on_progress(fraction)
        except Exception as e:
            self.logger.error(f"Error in progress callback for {self.task_id}: {e}")

    def _handle_done(self, result_ref: Optional[ResultRef]) -> None:
        self._resolve(ExecutionOutcome.succeeded(result_ref))

    def _handle_error(self, error: Any) -> None:
        if isinstance(error, TransportError):
            error_class = error.error_class
        elif isinstance(error, ErrorClass):
            error_class = error
        else:
            error_class = ErrorClass.SERVER_ERROR

        if error_class == ErrorClass.CANCELLED and self._cancel_requested:
            self._resolve(ExecutionOutcome.cancelled())
            return
        self._resolve(ExecutionOutcome.failed(error_class, str(error)))
