"""
Core data models for the ELLA API client.

This module defines the data structures exchanged between the credential store,
the transport, and the authenticated request executor.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlsplit


@dataclass
class CredentialPair:
    """Access token plus the optional refresh token."""
    access_token: str
    refresh_token: Optional[str] = None

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("Access token cannot be empty")

    def __repr__(self) -> str:
        # Token values stay out of reprs and log lines
        return (
            f"CredentialPair(access_token=<{len(self.access_token)} chars>, "
            f"refresh_token={'<set>' if self.refresh_token else None})"
        )


@dataclass
class RequestDescriptor:
    """
    An outbound request.

    ``retried`` is flipped by the executor when the request is re-dispatched
    after a session refresh; a descriptor is never retried twice.
    """
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    params: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None
    retried: bool = False

    def __post_init__(self):
        if not self.url:
            raise ValueError("Request URL cannot be empty")
        self.method = self.method.upper()

    @property
    def path(self) -> str:
        """URL path, used to match exempt endpoints."""
        return urlsplit(self.url).path or self.url

    def set_bearer(self, token: str) -> None:
        self.headers['Authorization'] = f'Bearer {token}'

    def sent_bearer(self) -> Optional[str]:
        """Token carried in the Authorization header, if any."""
        value = self.headers.get('Authorization', '')
        if value.startswith('Bearer '):
            return value[len('Bearer '):]
        return None


@dataclass
class TransportResponse:
    """Status, headers and raw body of a completed HTTP exchange."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return self.status < 400

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def json(self) -> Any:
        """
        Decode the body.

        Returns None for an empty body and the plain text when the body is
        not valid JSON.
        """
        text = self.text()
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def error_message(self) -> str:
        """Server-provided error message, or an empty string."""
        payload = self.json()
        if isinstance(payload, dict):
            message = payload.get('message') or payload.get('error')
            return str(message) if message else ""
        if isinstance(payload, str):
            return payload
        return ""


@dataclass
class RefreshConfig:
    """How to authenticate one refresh attempt."""
    prefer_cookie: bool = True
    refresh_token: Optional[str] = None

    @property
    def has_refresh_path(self) -> bool:
        return self.prefer_cookie or bool(self.refresh_token)


@dataclass
class UnauthorizedEvent:
    """Payload delivered to unauthenticated-notification listeners."""
    name: str
    reason: str
    emitted_at: datetime = field(default_factory=datetime.now)


def unwrap_envelope(payload: Any) -> Any:
    """Return ``payload['data']`` when the server wrapped its response, else the payload."""
    if isinstance(payload, dict) and payload.get('data') is not None:
        return payload['data']
    return payload
