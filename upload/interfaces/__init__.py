"""
Interfaces Package

Abstract interfaces for upload transports.
"""

from upload.interfaces.transport_interface import (
    TransportError,
    UploadHandle,
    UploadTransport,
)

__all__ = [
    "TransportError",
    "UploadHandle",
    "UploadTransport",
]
