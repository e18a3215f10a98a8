"""
Mock Transport Implementation

Simulated upload transport for testing without a storage backend.
Similar to MockUploader: scripted, fast, and records what it was asked to do.
"""

import asyncio
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from upload.constants import ErrorClass, TransportEvent
from upload.interfaces.transport_interface import (
    TransportError,
    UploadHandle,
    UploadTransport,
)
from upload.models.upload_task import ResultRef, SourceRef

SUCCESS = "success"

# One scripted attempt: "success", an ErrorClass reported through the
# ERROR event after the progress script, or an exception raised by
# begin_upload() itself.
Outcome = Union[str, ErrorClass, Exception]

DEFAULT_FRACTION_SCRIPT = (0.25, 0.5, 0.75, 1.0)


class MockUploadHandle(UploadHandle):
    """In-flight simulated transfer driven by an asyncio task"""

    def __init__(
        self,
        transport: "MockTransport",
        source_ref: SourceRef,
        outcome: Outcome,
        record: Dict[str, Any],
    ):
        self.logger = logging.getLogger(__name__)
        self._transport = transport
        self.source_ref = source_ref
        self.outcome = outcome
        self.record = record

        self._listeners: Dict[TransportEvent, List[Callable[[Any], None]]] = {
            event: [] for event in TransportEvent
        }
        self._cancel_requested = False
        self._released = asyncio.Event()
        self.finished = False
        self.cancelled = False

        self._task = asyncio.get_running_loop().create_task(self._transfer())

    def on(self, event: TransportEvent, callback: Callable[[Any], None]) -> None:
        self._listeners[event].append(callback)

    def release(self) -> None:
        """Let a held transfer finish"""
        self._released.set()

    async def cancel(self) -> None:
        self._cancel_requested = True
        self._released.set()
        if not self._task.done():
            await self._task

    def _emit(self, event: TransportEvent, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            callback(payload)

    def _acknowledge_cancel(self) -> None:
        self.cancelled = True
        self.record["status"] = "cancelled"
        self.logger.info(f"[MOCK] Transfer cancelled: {self.source_ref.uri}")

    async def _transfer(self) -> None:
        transport = self._transport
        transport._enter_flight()
        try:
            # Give the caller a chance to register listeners
            await asyncio.sleep(0)

            for fraction in transport.fraction_script:
                await asyncio.sleep(transport.step_delay)
                # Chunk boundary: cooperative cancellation checkpoint
                if self._cancel_requested:
                    self._acknowledge_cancel()
                    return
                self._emit(TransportEvent.PROGRESS, fraction)

            if transport.hold:
                await self._released.wait()

            if self._cancel_requested:
                self._acknowledge_cancel()
                return

            if self.outcome == SUCCESS:
                result = ResultRef(
                    media_url=f"mock://media/{self.record['upload_id']}",
                    record_id=self.record["upload_id"],
                )
                self.record["status"] = "succeeded"
                self._emit(TransportEvent.DONE, result)
            else:
                error_class = (
                    self.outcome
                    if isinstance(self.outcome, ErrorClass)
                    else ErrorClass.SERVER_ERROR
                )
                self.record["status"] = error_class.value
                self._emit(
                    TransportEvent.ERROR,
                    TransportError(
                        f"Simulated {error_class.value} failure",
                        error_class=error_class,
                    ),
                )
        finally:
            self.finished = True
            transport._leave_flight()


class MockTransport(UploadTransport):
    """
    Mock upload transport for testing.

    Useful for:
    - Unit tests of the queue manager
    - Development without backend credentials
    - Concurrency and cancellation scenarios (hold=True)

    Usage:
        # Always succeeds, instantly
        transport = MockTransport()

        # Network failure twice, then success
        transport = MockTransport(outcomes=[ErrorClass.NETWORK, ErrorClass.NETWORK])

        # Keep transfers in flight until released
        transport = MockTransport(hold=True)
        ...
        transport.release_all()
    """

    def __init__(
        self,
        fraction_script: Optional[Sequence[float]] = None,
        step_delay: float = 0.0,
        outcomes: Optional[Sequence[Outcome]] = None,
        hold: bool = False,
        check_files: bool = False,
    ):
        """
        Initialize mock transport.

        Args:
            fraction_script: Raw progress values reported by every transfer
            step_delay: Seconds between progress reports
            outcomes: One entry per begin_upload() call; success once exhausted
            hold: Keep transfers open after the script until released
            check_files: Report INVALID_INPUT when the source file is missing
        """
        self.logger = logging.getLogger(__name__)
        self.fraction_script = tuple(
            DEFAULT_FRACTION_SCRIPT if fraction_script is None else fraction_script
        )
        self.step_delay = step_delay
        self.hold = hold
        self.check_files = check_files
        self._outcomes: List[Outcome] = list(outcomes or [])

        # Track activity for test verification
        self.upload_history: List[Dict[str, Any]] = []
        self.handles: List[MockUploadHandle] = []
        self.in_flight = 0
        self.max_in_flight = 0

        self.logger.info(
            f"Mock Transport initialized "
            f"(steps: {len(self.fraction_script)}, hold: {hold})",
        )

    def queue_outcomes(self, *outcomes: Outcome) -> None:
        """Append scripted outcomes for upcoming attempts"""
        self._outcomes.extend(outcomes)

    async def begin_upload(
        self,
        source_ref: SourceRef,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MockUploadHandle:
        outcome: Outcome = self._outcomes.pop(0) if self._outcomes else SUCCESS

        record = {
            "upload_id": f"mock_{uuid4().hex[:11]}",
            "uri": source_ref.uri,
            "size_bytes": source_ref.size_bytes,
            "metadata": dict(metadata or {}),
            "timestamp": time.time(),
            "status": "started",
        }
        self.upload_history.append(record)

        if isinstance(outcome, Exception):
            record["status"] = "rejected"
            self.logger.info(f"[MOCK] Rejecting upload: {outcome}")
            raise outcome

        if self.check_files and not os.path.exists(source_ref.uri):
            record["status"] = "rejected"
            raise TransportError(
                f"Source file not found: {source_ref.uri}",
                error_class=ErrorClass.INVALID_INPUT,
            )

        self.logger.info(f"[MOCK] Starting upload: {source_ref.uri}")
        handle = MockUploadHandle(self, source_ref, outcome, record)
        self.handles.append(handle)
        return handle

    def release_all(self) -> None:
        """Let every held transfer finish"""
        for handle in self.handles:
            handle.release()

    def _enter_flight(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _leave_flight(self) -> None:
        self.in_flight -= 1
