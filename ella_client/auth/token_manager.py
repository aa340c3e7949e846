"""
Session Manager for the ELLA API client.

This module provides login, registration, logout and current-user lookup on
top of the authenticated API client, plus inspection of the stored access
token's JWT claims.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, List

from jose import jwt, JWTError

from ella_shared.exceptions import AuthError, EllaClientError, ErrorCode
from ella_shared.logging_config import AuditLogger
from ella_shared.models import UnauthorizedEvent

from ella_client.api_client import EllaAPIClient

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
REGISTER_PATH = "/auth/register"
LOGOUT_PATH = "/auth/logout"
FORGOT_PASSWORD_PATH = "/auth/forgot-password"
RESET_PASSWORD_PATH = "/auth/reset-password"
CURRENT_USER_PATH = "/auth/me"

MIN_PASSWORD_LENGTH = 8


class SessionManager:
    """
    Manages the user's session with the ELLA server.

    Credentials live in the API client's CredentialStore; this class only
    decides when they are written or cleared and tells interested callbacks.
    """

    def __init__(self, api_client: EllaAPIClient, audit_logger: Optional[AuditLogger] = None):
        self.api_client = api_client
        self.credential_store = api_client.credential_store
        self.audit = audit_logger or AuditLogger()

        # Callbacks for authentication events
        self._auth_callbacks: List[Callable[[bool], None]] = []
        self._forced_logout_seen = False

        # Forced logouts (failed refresh) arrive through the notifier
        self._unsubscribe = api_client.notifier.subscribe(self._on_unauthorized)

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        """Notify callbacks of authentication state change."""
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def _on_unauthorized(self, event: UnauthorizedEvent) -> None:
        logger.info(f"Session ended by the client ({event.reason})")
        self._forced_logout_seen = True
        self._notify_auth_change(False)

    def close(self) -> None:
        """Stop listening for forced logouts."""
        self._unsubscribe()

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Log in and store the returned credentials.

        Args:
            email: Account email
            password: Account password

        Returns:
            The login response body (token, tokenType, expiresIn, ...)

        Raises:
            AuthError: The server rejected the credentials or returned no token
        """
        try:
            result = await self.api_client.post(LOGIN_PATH, json={'email': email, 'password': password})
        except AuthError as e:
            reason = e.context.get('server_message') or "Invalid email or password"
            self.audit.log_authentication('login', user=email, success=False, failure_reason=reason)
            raise AuthError(
                f"Login failed: {reason}",
                error_code=ErrorCode.AUTH_LOGIN_FAILED,
                user_message=reason,
                context={'status': e.context.get('status', 401)},
                cause=e
            ) from e
        except EllaClientError as e:
            self.audit.log_authentication('login', user=email, success=False, failure_reason=e.message)
            raise

        if not isinstance(result, dict) or not result.get('token'):
            self.audit.log_authentication('login', user=email, success=False, failure_reason="no token in response")
            raise AuthError("Login response did not contain a token", error_code=ErrorCode.AUTH_LOGIN_FAILED)

        self.credential_store.store_credentials(result['token'], result.get('refreshToken'))
        self.audit.log_authentication('login', user=email, success=True)
        logger.info("Login successful")

        self._notify_auth_change(True)
        return result

    async def register(self, name: str, email: str, password: str) -> Any:
        """
        Create an account. The server takes the fields as query parameters.

        Returns:
            The registration response body
        """
        result = await self.api_client.post(
            REGISTER_PATH,
            params={'name': name, 'email': email, 'password': password}
        )
        self.audit.log_authentication('register', user=email, success=True)
        return result

    async def logout(self) -> None:
        """
        Log out on the server when possible, then clear local credentials.

        Server-side failures are logged and never prevent the local logout.
        """
        logger.info("Logging out and clearing authentication state")
        self._forced_logout_seen = False

        try:
            await self.api_client.post(LOGOUT_PATH)
        except EllaClientError as e:
            logger.warning(f"Server logout failed, clearing local session anyway: {e.message}")

        self.credential_store.clear_all()
        self.audit.log_authentication('logout', success=True)

        # A rejected logout call has already ended the session and told the callbacks
        if not self._forced_logout_seen:
            self._notify_auth_change(False)

    async def forgot_password(self, email: str) -> None:
        """Ask the server to email a password reset link."""
        await self.api_client.post(FORGOT_PASSWORD_PATH, params={'email': email})
        self.audit.log_authentication('forgot_password', user=email, success=True)

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Set a new password using the token from a reset link.

        Args:
            token: Reset token from the emailed link
            new_password: The new password, at least 8 characters

        Raises:
            ValueError: The token is empty or the password is too short
        """
        if not token:
            raise ValueError("Reset token is missing")
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        await self.api_client.post(RESET_PASSWORD_PATH, params={'token': token, 'newPassword': new_password})
        self.audit.log_authentication('reset_password', success=True)

    async def fetch_current_user(self) -> Optional[Dict[str, Any]]:
        """
        Get the logged-in user's profile.

        Returns:
            The profile, or None when no access token is stored
        """
        if not self.credential_store.get_access_token():
            return None
        return await self.api_client.get(CURRENT_USER_PATH)

    async def refresh(self) -> bool:
        """
        Refresh the session now, joining a refresh already in flight.

        Returns:
            True if a new access token was obtained
        """
        try:
            await self.api_client.executor.refresh_session()
            return True
        except AuthError as e:
            logger.error(f"Session refresh failed: {e.message}")
            return False

    def get_token_claims(self) -> Optional[Dict[str, Any]]:
        """
        Decode the stored access token's claims without verifying it.

        Returns:
            The claims, or None for a missing or malformed token
        """
        token = self.credential_store.get_access_token()
        if not token:
            return None

        try:
            return jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.debug(f"Stored access token is not a readable JWT: {e}")
            return None

    def get_token_expiration(self) -> Optional[datetime]:
        """Expiration time of the stored access token, if it declares one."""
        claims = self.get_token_claims()
        if not claims:
            return None

        exp = claims.get('exp')
        if isinstance(exp, (int, float)):
            return datetime.fromtimestamp(exp)
        return None

    def get_user_id(self) -> Optional[str]:
        claims = self.get_token_claims() or {}
        user_id = claims.get('id') or claims.get('sub')
        return str(user_id) if user_id is not None else None

    def is_authenticated(self) -> bool:
        """Check if an access token is stored and not known to be expired."""
        if not self.credential_store.get_access_token():
            return False

        expires_at = self.get_token_expiration()
        return expires_at is None or expires_at > datetime.now()
