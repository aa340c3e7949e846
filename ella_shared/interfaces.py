"""
Core interfaces for the ELLA API client.

This module defines the abstract interfaces that pluggable components
(transports, credential backends) must implement.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import RequestDescriptor, TransportResponse


class ITransport(ABC):
    """Sends one HTTP request and returns the raw outcome."""

    @abstractmethod
    async def send(self, request: RequestDescriptor, timeout: Optional[float] = None) -> TransportResponse:
        """
        Send a request.

        Error statuses are returned as responses. Transport failures raise
        TransportTimeoutError or TransportConnectionError.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass


class ICredentialBackend(ABC):
    """Durable key-value substrate for credential strings. Methods may raise."""

    @abstractmethod
    def read(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def write(self, key: str, value: str) -> None:
        """Store a value, overwriting any previous one."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a value; deleting a missing key is not an error."""
        pass
