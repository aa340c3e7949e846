"""
HTTP API Client for the ELLA REST API.

This module is the request surface used by the rest of the client: verb
helpers that send JSON through the authenticated executor and unwrap the
server's ``{"data": ...}`` response envelope.
"""

import logging
from typing import Optional, Dict, Any

from ella_shared.interfaces import ITransport
from ella_shared.models import RequestDescriptor, TransportResponse, unwrap_envelope

from ella_client.auth.events import UnauthorizedNotifier, unauthorized_events
from ella_client.auth.token_storage import CredentialStore, create_credential_backend
from ella_client.config import ClientConfiguration
from ella_client.request_executor import AuthenticatedRequestExecutor
from ella_client.transport import AiohttpTransport

logger = logging.getLogger(__name__)


class EllaAPIClient:
    """
    HTTP API client for the ELLA server.

    Every call goes through an AuthenticatedRequestExecutor, so the stored
    access token is attached and expired sessions are refreshed transparently.
    """

    def __init__(
        self,
        transport: ITransport,
        credential_store: CredentialStore,
        executor: Optional[AuthenticatedRequestExecutor] = None,
        notifier: Optional[UnauthorizedNotifier] = None
    ):
        self.transport = transport
        self.credential_store = credential_store
        self.notifier = notifier if notifier is not None else unauthorized_events
        self.executor = executor or AuthenticatedRequestExecutor(
            transport=transport,
            credential_store=credential_store,
            notifier=self.notifier
        )

    @classmethod
    def from_config(
        cls,
        config: ClientConfiguration,
        notifier: Optional[UnauthorizedNotifier] = None
    ) -> "EllaAPIClient":
        """
        Build a client and everything it owns from configuration.

        Args:
            config: Client configuration
            notifier: Notifier to emit on; defaults to the process-wide one

        Returns:
            Configured API client
        """
        base_url = config.get_api_base_url()

        transport = AiohttpTransport(
            base_url=base_url,
            timeout=config.get_server_timeout(),
            user_agent=config.get_user_agent()
        )
        backend = create_credential_backend(
            kind=config.get_storage_backend(),
            service_name=config.get_service_name(),
            storage_path=config.get_storage_path()
        )
        store = CredentialStore(
            backend=backend,
            access_token_key=config.get_access_token_key(),
            refresh_token_key=config.get_refresh_token_key()
        )

        if notifier is None:
            notifier = unauthorized_events
        notifier.min_interval = config.get_unauthorized_min_interval()

        executor = AuthenticatedRequestExecutor(
            transport=transport,
            credential_store=store,
            notifier=notifier,
            exempt_paths=config.get_exempt_paths(),
            prefer_cookie=config.get_prefer_cookie(),
            default_timeout=config.get_server_timeout(),
            refresh_timeout=config.get_refresh_timeout()
        )

        logger.info(f"API client initialized for server: {base_url}")
        return cls(transport, store, executor=executor, notifier=notifier)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        """Close the underlying transport."""
        await self.transport.close()

    async def send(self, request: RequestDescriptor) -> TransportResponse:
        """Send a prepared request through the authenticated executor."""
        return await self.executor.send(request)

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        unwrap: bool = True
    ) -> Any:
        """
        Make an authenticated API call.

        Args:
            method: HTTP method
            path: Path relative to the API base URL, or an absolute URL
            json: JSON body
            data: Raw body, used when no JSON body is given
            params: Query parameters
            headers: Extra request headers
            timeout: Per-request timeout in seconds
            unwrap: Return the contents of a ``data`` envelope

        Returns:
            Decoded response body (None for an empty body)
        """
        request_headers = dict(headers or {})
        if json is not None:
            request_headers.setdefault('Content-Type', 'application/json')

        request = RequestDescriptor(
            method=method,
            url=path,
            headers=request_headers,
            json=json,
            data=data,
            params=params,
            timeout=timeout
        )

        response = await self.executor.send(request)
        payload = response.json()
        return unwrap_envelope(payload) if unwrap else payload

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request('GET', path, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request('POST', path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request('PUT', path, json=json, **kwargs)

    async def patch(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request('PATCH', path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request('DELETE', path, **kwargs)
