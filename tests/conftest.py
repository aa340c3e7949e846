"""
Shared fixtures for the ELLA API client tests.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest

from ella_shared.interfaces import ITransport
from ella_shared.models import RequestDescriptor, TransportResponse

from ella_client.auth.events import UnauthorizedNotifier
from ella_client.auth.token_storage import CredentialStore, InMemoryCredentialBackend
from ella_client.request_executor import AuthenticatedRequestExecutor


def json_response(status: int, payload: Any = None) -> TransportResponse:
    """Build a response with a JSON body."""
    body = b"" if payload is None else json.dumps(payload).encode()
    return TransportResponse(status=status, headers={'Content-Type': 'application/json'}, body=body)


@dataclass
class RecordedCall:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None

    @property
    def bearer(self) -> Optional[str]:
        value = self.headers.get('Authorization', '')
        return value[len('Bearer '):] if value.startswith('Bearer ') else None


class FakeTransport(ITransport):
    """
    Transport whose responses come from a handler.

    The handler receives each request and returns a TransportResponse (or an
    awaitable of one), or raises to simulate a transport failure. Every call
    is recorded with a copy of the headers as sent.
    """

    def __init__(self, handler: Optional[Callable[[RequestDescriptor], Any]] = None):
        self.handler = handler or (lambda request: json_response(200, {'ok': True}))
        self.calls: List[RecordedCall] = []
        self.closed = False

    async def send(self, request: RequestDescriptor, timeout: Optional[float] = None) -> TransportResponse:
        self.calls.append(RecordedCall(request.method, request.path, dict(request.headers), timeout))
        # Yield so concurrent requests interleave like real network calls
        await asyncio.sleep(0)

        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def close(self) -> None:
        self.closed = True

    def calls_to(self, path: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.path == path]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return CredentialStore(InMemoryCredentialBackend())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier(clock):
    return UnauthorizedNotifier(min_interval=1.0, clock=clock)


@pytest.fixture
def events(notifier):
    """Events delivered by the notifier, in order."""
    received = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def executor(transport, store, notifier):
    return AuthenticatedRequestExecutor(
        transport=transport,
        credential_store=store,
        notifier=notifier,
        default_timeout=5.0,
        refresh_timeout=1.0
    )
