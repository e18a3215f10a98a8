"""
Upload Transport Interface

Abstract boundary to the object-storage upload transport.
Follows Dependency Inversion Principle - the queue depends on this
abstraction, never on a concrete wire protocol.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from upload.constants import ErrorClass, TransportEvent
from upload.models.upload_task import SourceRef


class UploadHandle(ABC):
    """
    One in-flight transfer.

    The handle reports back through callbacks registered with on():
    - TransportEvent.PROGRESS: callback(fraction: float)
    - TransportEvent.DONE: callback(result_ref: ResultRef)
    - TransportEvent.ERROR: callback(error: TransportError)
    """

    @abstractmethod
    def on(self, event: TransportEvent, callback: Callable[[Any], None]) -> None:
        """
        Register a callback for a transport event.

        Callbacks registered before the transfer makes progress must not
        miss any event.
        """

    @abstractmethod
    async def cancel(self) -> None:
        """
        Request cooperative cancellation.

        The transfer stops at its next I/O checkpoint (e.g. after a chunk).
        Returns once the transfer has stopped and released its resources.
        Calling it on a finished transfer is a no-op.
        """


class UploadTransport(ABC):
    """
    Abstract base class for upload transports.

    Any transport (presigned PUT, multipart, mock) must implement these.
    """

    @abstractmethod
    async def begin_upload(
        self,
        source_ref: SourceRef,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UploadHandle:
        """
        Start transferring a media file.

        Args:
            source_ref: Local file reference
            metadata: Opaque upload metadata

        Returns:
            Handle for the running transfer

        Raises:
            TransportError: If the transfer cannot start
        """

    def is_available(self) -> bool:
        """Check if the transport is ready to accept uploads"""
        return True


class TransportError(Exception):
    """
    Exception raised for transport failures.

    Examples:
    - Connection lost (NETWORK)
    - Backend returned 5xx (SERVER_ERROR)
    - Credentials rejected (UNAUTHORIZED)
    - Source file missing (INVALID_INPUT)
    """

    def __init__(self, message: str, error_class: ErrorClass = ErrorClass.NETWORK):
        super().__init__(message)
        self.error_class = error_class
