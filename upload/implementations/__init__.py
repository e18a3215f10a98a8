"""
Implementations Package

Concrete upload transport implementations.
"""

from upload.implementations.mock_transport import MockTransport, MockUploadHandle

__all__ = [
    "MockTransport",
    "MockUploadHandle",
]
