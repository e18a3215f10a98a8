"""
Upload Factory

Factory pattern for wiring a QueueManager from configuration.
Follows the same pattern as storage/factory.py.

Only the mock transport ships with this project; real transports are
passed in by the host application.
"""

import logging
from pathlib import Path
from typing import Literal, Optional

from core.event_bus import EventBus
from storage.factory import StoreFactory
from storage.interfaces.kv_store_interface import KeyValueStore
from upload.config import QueueConfig
from upload.controllers.queue_manager import CredentialsRefresher, QueueManager
from upload.implementations.mock_transport import MockTransport
from upload.interfaces.transport_interface import UploadTransport

# Type alias
TransportMode = Literal["auto", "mock"]


class QueueManagerFactory:
    """
    Factory for creating queue managers.

    Usage:
        # Host app with its own transport
        manager = QueueManagerFactory.create_manager(transport=my_transport)

        # Development / tests
        manager = QueueManagerFactory.create_manager(mode="mock", store_mode="memory")
    """

    _logger = logging.getLogger(__name__)

    @classmethod
    def create_transport(
        cls,
        mode: TransportMode = "auto",
        transport: Optional[UploadTransport] = None,
    ) -> UploadTransport:
        """
        Pick the upload transport.

        Args:
            mode: "auto" (given transport, else mock), "mock" (force mock)
            transport: Host-provided transport

        Returns:
            UploadTransport implementation
        """
        if mode == "mock":
            cls._logger.info("Creating Mock Transport (forced)")
            return MockTransport()

        if transport is not None:
            if not transport.is_available():
                cls._logger.warning(
                    "Provided transport reports unavailable. "
                    "Uploads will fail until it recovers.",
                )
            return transport

        cls._logger.warning("No upload transport provided, using Mock Transport")
        return MockTransport()

    @classmethod
    def create_manager(
        cls,
        mode: TransportMode = "auto",
        transport: Optional[UploadTransport] = None,
        store: Optional[KeyValueStore] = None,
        store_mode: Literal["auto", "file", "memory"] = "auto",
        config: Optional[QueueConfig] = None,
        config_path: Optional[Path] = None,
        event_bus: Optional[EventBus] = None,
        credentials_refresher: Optional[CredentialsRefresher] = None,
    ) -> QueueManager:
        """
        Create a fully wired QueueManager.

        Args:
            mode: Transport selection (see create_transport)
            transport: Host-provided transport
            store: Explicit store (skips store_mode)
            store_mode: "auto", "file" or "memory"
            config: QueueConfig (None = load from config_path / defaults)
            config_path: YAML config file
            event_bus: Shared event bus
            credentials_refresher: Hook for Unauthorized retries

        Returns:
            QueueManager (not started; call await manager.start())
        """
        config = config or QueueConfig(config_path)
        store = store or StoreFactory.create_store(
            mode=store_mode,
            base_dir=config.store_path,
        )
        return QueueManager(
            store=store,
            transport=cls.create_transport(mode, transport),
            config=config,
            event_bus=event_bus,
            credentials_refresher=credentials_refresher,
        )


# Convenience function for quick creation
def create_queue_manager(
    transport: Optional[UploadTransport] = None,
    force_mock: bool = False,
    config: Optional[QueueConfig] = None,
) -> QueueManager:
    """
    Quick manager creation with simple mock override.

    Args:
        transport: Host-provided transport
        force_mock: If True, mock transport and in-memory store

    Example:
        # Normal usage
        manager = create_queue_manager(transport=my_transport)

        # Testing
        manager = create_queue_manager(force_mock=True)
    """
    if force_mock:
        return QueueManagerFactory.create_manager(
            mode="mock",
            store_mode="memory",
            config=config,
        )
    return QueueManagerFactory.create_manager(transport=transport, config=config)
