"""
Authenticated request execution for the ELLA API client.

The executor sends requests as the logged-in user. When the server rejects the
access token it refreshes the session once, shared by every request that is
waiting on it, retries each rejected request once with the new token, and tears
the session down (credentials cleared, unauthenticated notification emitted)
when the session cannot be recovered.
"""

import asyncio
import logging
from typing import Optional, Sequence, Tuple

from ella_shared.exceptions import (
    AuthError, ErrorCode, NetworkError, RequestError, RequestTimeoutError, ServerError
)
from ella_shared.interfaces import ITransport
from ella_shared.logging_config import AuditLogger, log_structured_error
from ella_shared.models import RefreshConfig, RequestDescriptor, TransportResponse

from ella_client.auth.events import UnauthorizedNotifier, unauthorized_events
from ella_client.auth.token_storage import CredentialStore
from ella_client.transport import TransportError, TransportTimeoutError

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh"
DEFAULT_EXEMPT_PATHS: Tuple[str, ...] = (
    "/auth/login",
    "/auth/register",
    "/auth/refresh",
    "/auth/logout",
    "/auth/forgot-password",
    "/auth/reset-password",
)


class RefreshFailedError(Exception):
    """The refresh endpoint did not produce a new access token."""
    pass


class AuthenticatedRequestExecutor:
    """
    Sends requests with the stored bearer credential and recovers expired sessions.

    The in-flight refresh is a single task held in ``_refresh_task``. It is
    installed in the same synchronous turn as the check for an existing one, so
    concurrent 401s never start a second refresh call, and it is released as
    soon as it finishes so a later 401 can start a new cycle.
    """

    def __init__(
        self,
        transport: ITransport,
        credential_store: CredentialStore,
        notifier: Optional[UnauthorizedNotifier] = None,
        exempt_paths: Sequence[str] = DEFAULT_EXEMPT_PATHS,
        refresh_path: str = REFRESH_PATH,
        prefer_cookie: bool = True,
        default_timeout: float = 30.0,
        refresh_timeout: float = 15.0,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.transport = transport
        self.credential_store = credential_store
        self.notifier = notifier if notifier is not None else unauthorized_events
        self.exempt_paths = tuple(exempt_paths)
        self.refresh_path = refresh_path
        self.prefer_cookie = prefer_cookie
        self.default_timeout = default_timeout
        self.refresh_timeout = refresh_timeout
        self.audit = audit_logger or AuditLogger()

        self._refresh_task: Optional[asyncio.Task] = None

    def is_exempt(self, request: RequestDescriptor) -> bool:
        """Login, register, refresh and logout calls are never decorated or refreshed."""
        path = request.path
        return any(exempt in path for exempt in self.exempt_paths)

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    async def send(self, request: RequestDescriptor) -> TransportResponse:
        """
        Send a request as the authenticated user.

        Args:
            request: Request to send; its ``retried`` marker is updated in place

        Returns:
            The successful response

        Raises:
            AuthError: The session could not be recovered
            RequestTimeoutError: The transport timed out
            NetworkError: No response was received
            ServerError: The server answered 5xx
            RequestError: The server answered 4xx (other than 401)
        """
        exempt = self.is_exempt(request)
        if not exempt:
            self._attach_credential(request)

        response = await self._dispatch(request)
        if response.status != 401:
            return self._classify(response)

        if exempt or request.retried:
            reason = "exempt_endpoint_unauthorized" if exempt else "retry_unauthorized"
            raise self._fail_unauthorized(request, response, reason)

        logger.info(f"{request.method} {request.path} was rejected with 401, recovering session")
        new_token = await self._recover_session(request, response)

        request.retried = True
        request.set_bearer(new_token)
        response = await self._dispatch(request)

        if response.status == 401:
            raise self._fail_unauthorized(request, response, "retry_unauthorized")
        return self._classify(response)

    async def refresh_session(self) -> str:
        """
        Join the in-flight refresh, or start one.

        Returns:
            The new access token

        Raises:
            AuthError: The refresh failed; the session has already been torn down
        """
        if self._refresh_task is None:
            task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task = task
            task.add_done_callback(self._release_refresh_task)
        else:
            logger.debug("Joining in-flight session refresh")

        # Shielded so a cancelled waiter never cancels the refresh for the others
        return await asyncio.shield(self._refresh_task)

    def _attach_credential(self, request: RequestDescriptor) -> None:
        token = self.credential_store.get_access_token()
        if token:
            request.set_bearer(token)

    async def _dispatch(self, request: RequestDescriptor) -> TransportResponse:
        timeout = request.timeout if request.timeout is not None else self.default_timeout
        context = {'method': request.method, 'path': request.path}

        try:
            return await self.transport.send(request, timeout=timeout)
        except (TransportTimeoutError, asyncio.TimeoutError) as e:
            raise RequestTimeoutError(f"{request.method} {request.path} timed out", context=context, cause=e) from e
        except TransportError as e:
            raise NetworkError(f"{request.method} {request.path} failed: {e}", context=context, cause=e) from e
        except Exception as e:
            logger.error(f"Unexpected transport error on {request.method} {request.path}: {e}")
            raise NetworkError(f"{request.method} {request.path} failed: {e}", context=context, cause=e) from e

    def _classify(self, response: TransportResponse) -> TransportResponse:
        if response.ok:
            return response

        status = response.status
        message = response.error_message()

        if status >= 500:
            raise ServerError(
                f"Server error ({status}): {message or 'Internal server error'}",
                status=status
            )

        raise RequestError(message or f"HTTP error {status}", status=status, payload=response.json())

    async def _recover_session(self, request: RequestDescriptor, response: TransportResponse) -> str:
        sent_token = request.sent_bearer()
        current_token = self.credential_store.get_access_token()

        if sent_token and current_token != sent_token:
            if not current_token:
                # The session was torn down while this request was in flight
                raise self._fail_unauthorized(request, response, "session_ended")

            # A refresh finished while this request was in flight
            logger.debug("Stored access token changed since dispatch, retrying without a new refresh")
            return current_token

        return await self.refresh_session()

    def _resolve_refresh_config(self) -> RefreshConfig:
        return RefreshConfig(
            prefer_cookie=self.prefer_cookie,
            refresh_token=self.credential_store.get_refresh_token()
        )

    async def _run_refresh(self) -> str:
        config = self._resolve_refresh_config()

        try:
            if not config.has_refresh_path:
                raise RefreshFailedError("No refresh credential available")
            access_token, refresh_token = await asyncio.wait_for(
                self._call_refresh_endpoint(config),
                timeout=self.refresh_timeout
            )
        except Exception as e:
            reason = "refresh timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.warning(f"Session refresh failed: {reason}")
            self.audit.log_token_refresh(False, failure_reason=reason)
            self._teardown("refresh_failed")
            raise AuthError(
                f"Session refresh failed: {reason}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            ) from e

        self.credential_store.store_credentials(access_token, refresh_token)
        self.audit.log_token_refresh(True, rotated_refresh_token=bool(refresh_token))
        logger.info("Session refreshed")
        return access_token

    async def _call_refresh_endpoint(self, config: RefreshConfig) -> Tuple[str, Optional[str]]:
        # Goes straight to the transport so the refresh call can never recurse
        request = RequestDescriptor(method='POST', url=self.refresh_path)
        if config.refresh_token:
            request.set_bearer(config.refresh_token)

        try:
            response = await self.transport.send(request, timeout=self.refresh_timeout)
        except TransportError as e:
            raise RefreshFailedError(f"Refresh request failed: {e}") from e

        if not response.ok:
            raise RefreshFailedError(f"Refresh endpoint returned {response.status}")

        body = response.json()
        for payload in (body, body.get('data') if isinstance(body, dict) else None):
            if isinstance(payload, dict) and payload.get('token'):
                return payload['token'], payload.get('refreshToken')

        raise RefreshFailedError("Refresh response did not contain a token")

    def _release_refresh_task(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the outcome as retrieved even if every waiter went away
        if not task.cancelled():
            task.exception()

    def _teardown(self, reason: str) -> None:
        self.credential_store.clear_all()
        notified = self.notifier.emit(reason)
        self.audit.log_session_teardown(reason, notified)

    def _session_superseded(self, request: RequestDescriptor) -> bool:
        sent_token = request.sent_bearer()
        return bool(sent_token) and self.credential_store.get_access_token() != sent_token

    def _fail_unauthorized(self, request: RequestDescriptor, response: TransportResponse, reason: str) -> AuthError:
        # Only the session the request was sent with is torn down
        if self._session_superseded(request):
            logger.debug(f"{request.method} {request.path} was sent with a session that has since ended")
        else:
            self._teardown(reason)

        error = AuthError(
            f"{request.method} {request.path} unauthorized ({reason})",
            context={
                'status': response.status,
                'path': request.path,
                'server_message': response.error_message(),
            }
        )
        log_structured_error(logger, error, level=logging.WARNING)
        return error
