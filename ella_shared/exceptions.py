"""
Exception hierarchy for the ELLA API client.

This module defines structured exceptions with error codes, context information,
user-facing messages and recovery suggestions, so every failure surfaced by the
client reaches the caller as a typed error.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the ELLA API client."""

    # Authentication Errors (1000-1099)
    AUTH_SESSION_EXPIRED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_LOGIN_FAILED = "AUTH_1003"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # HTTP Errors (3000-3099)
    HTTP_SERVER_ERROR = "HTTP_3001"
    HTTP_REQUEST_FAILED = "HTTP_3002"
    HTTP_FORBIDDEN = "HTTP_3003"
    HTTP_NOT_FOUND = "HTTP_3004"

    # Configuration Errors (8000-8099)
    CONFIG_INVALID_VALUE = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RECONNECT = "reconnect"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"


SESSION_EXPIRED_MESSAGE = "Session expired. Please log in again."
NO_CONNECTION_MESSAGE = "Unable to reach the server. Check your connection."
TIMEOUT_MESSAGE = "The request timed out."
SERVER_ERROR_MESSAGE = "Server error, please try again later."


class EllaClientError(Exception):
    """
    Base exception class for all ELLA API client errors.

    Provides structured error information including error codes, context,
    a user-facing message and recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class AuthError(EllaClientError):
    """Authorization could not be recovered; the user has to log in again."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AUTH_SESSION_EXPIRED,
        **kwargs
    ):
        kwargs.setdefault('user_message', SESSION_EXPIRED_MESSAGE)
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            **kwargs
        )


class NetworkError(EllaClientError):
    """No response was received from the server."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED,
        **kwargs
    ):
        kwargs.setdefault('user_message', NO_CONNECTION_MESSAGE)
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class RequestTimeoutError(NetworkError):
    """The transport gave up waiting for a response."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('user_message', TIMEOUT_MESSAGE)
        super().__init__(message=message, error_code=ErrorCode.NETWORK_TIMEOUT, **kwargs)


class ServerError(EllaClientError):
    """The server answered with a 5xx status."""

    def __init__(self, message: str, status: int = 500, **kwargs):
        context = kwargs.pop('context', {})
        context['status'] = status
        kwargs.setdefault('user_message', SERVER_ERROR_MESSAGE)
        super().__init__(
            message=message,
            error_code=ErrorCode.HTTP_SERVER_ERROR,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )
        self.status = status


class RequestError(EllaClientError):
    """
    The server rejected the request with a 4xx status other than 401.

    The server-provided message is kept verbatim as both the message and the
    user-facing message.
    """

    def __init__(self, message: str, status: int, payload: Any = None, **kwargs):
        context = kwargs.pop('context', {})
        context['status'] = status

        if status == 403:
            error_code = ErrorCode.HTTP_FORBIDDEN
        elif status == 404:
            error_code = ErrorCode.HTTP_NOT_FOUND
        else:
            error_code = ErrorCode.HTTP_REQUEST_FAILED

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            user_message=message,
            **kwargs
        )
        self.status = status
        self.payload = payload


class ConfigurationError(EllaClientError):
    """Configuration related errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
        config_key: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def create_error_response(error: EllaClientError) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary from an exception.

    Args:
        error: The EllaClientError exception

    Returns:
        Standardized error response dictionary
    """
    return error.to_dict()


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> EllaClientError:
    """
    Convert a generic exception to a structured EllaClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured EllaClientError
    """
    if isinstance(exception, EllaClientError):
        return exception

    if isinstance(exception, TimeoutError):
        return RequestTimeoutError(str(exception) or TIMEOUT_MESSAGE, context=context, cause=exception)

    if isinstance(exception, (ConnectionError, OSError)):
        return NetworkError(str(exception) or NO_CONNECTION_MESSAGE, context=context, cause=exception)

    if isinstance(exception, ValueError):
        return ConfigurationError(
            str(exception),
            error_code=ErrorCode.CONFIG_INVALID_VALUE,
            context=context,
            cause=exception
        )

    return EllaClientError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
