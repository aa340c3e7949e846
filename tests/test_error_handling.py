#!/usr/bin/env python3
"""
Unit tests for the structured error taxonomy and logging configuration.
"""

import json
import logging
from contextlib import contextmanager

import pytest

from ella_shared.exceptions import (
    EllaClientError, AuthError, NetworkError, RequestTimeoutError, ServerError,
    RequestError, ConfigurationError, ErrorCode, ErrorSeverity, RecoveryAction,
    SESSION_EXPIRED_MESSAGE, NO_CONNECTION_MESSAGE, TIMEOUT_MESSAGE, SERVER_ERROR_MESSAGE,
    create_error_response, handle_exception
)
from ella_shared.logging_config import (
    AuditLogger, AuditEventType, DetailedFormatter, LogFormat, LogLevel,
    StructuredFormatter, log_structured_error, setup_logging
)


class TestErrorTaxonomy:
    """Test the error classes and their user-facing messages."""

    def test_auth_error(self):
        error = AuthError("refresh failed")

        assert error.error_code == ErrorCode.AUTH_SESSION_EXPIRED
        assert error.user_message == SESSION_EXPIRED_MESSAGE
        assert RecoveryAction.LOGIN_AGAIN in error.recovery_actions

    def test_network_errors(self):
        network = NetworkError("connection refused")
        timeout = RequestTimeoutError("GET /goals timed out")

        assert network.user_message == NO_CONNECTION_MESSAGE
        assert isinstance(timeout, NetworkError)
        assert timeout.error_code == ErrorCode.NETWORK_TIMEOUT
        assert timeout.user_message == TIMEOUT_MESSAGE

    def test_server_error(self):
        error = ServerError("Server error (502): bad gateway", status=502)

        assert error.status == 502
        assert error.user_message == SERVER_ERROR_MESSAGE
        assert error.severity == ErrorSeverity.HIGH

    @pytest.mark.parametrize("status,code", [
        (400, ErrorCode.HTTP_REQUEST_FAILED),
        (403, ErrorCode.HTTP_FORBIDDEN),
        (404, ErrorCode.HTTP_NOT_FOUND),
        (422, ErrorCode.HTTP_REQUEST_FAILED),
    ])
    def test_request_error_codes(self, status, code):
        error = RequestError("Invalid amount", status=status, payload={'message': 'Invalid amount'})

        assert error.error_code == code
        assert error.user_message == "Invalid amount"

    def test_cause_is_recorded(self):
        cause = OSError("reset by peer")
        error = NetworkError("GET /goals failed", cause=cause)

        assert error.context['cause_type'] == 'OSError'
        assert error.context['cause_message'] == 'reset by peer'

    def test_to_dict(self):
        error = RequestError("Goal not found", status=404)

        result = create_error_response(error)

        assert result['error']['code'] == ErrorCode.HTTP_NOT_FOUND.value
        assert result['error']['user_message'] == "Goal not found"
        assert result['error']['context']['status'] == 404
        assert result['error']['cause'] is None
        json.dumps(result)

    def test_configuration_error_key(self):
        error = ConfigurationError("bad timeout", config_key='server.timeout')

        assert error.context['config_key'] == 'server.timeout'


class TestHandleException:
    """Test mapping builtin exceptions onto the taxonomy."""

    def test_passes_structured_errors_through(self):
        error = AuthError("expired")

        assert handle_exception(error) is error

    def test_timeout(self):
        assert isinstance(handle_exception(TimeoutError("slow")), RequestTimeoutError)

    def test_connection(self):
        result = handle_exception(ConnectionRefusedError("refused"))

        assert isinstance(result, NetworkError)
        assert not isinstance(result, RequestTimeoutError)

    def test_value_error(self):
        assert isinstance(handle_exception(ValueError("bad")), ConfigurationError)

    def test_unknown(self):
        result = handle_exception(KeyError("x"), context={'operation': 'test'})

        assert type(result) is EllaClientError
        assert result.error_code == ErrorCode.INTERNAL_UNEXPECTED_ERROR
        assert result.context['operation'] == 'test'


class TestFormatters:
    """Test log formatters."""

    def make_record(self, **extra):
        record = logging.LogRecord('ella_client.test', logging.WARNING, __file__, 10, "Session refreshed", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_structured_formatter(self):
        record = self.make_record(request_path='/goals')

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['level'] == 'WARNING'
        assert entry['logger'] == 'ella_client.test'
        assert entry['message'] == 'Session refreshed'
        assert entry['extra']['request_path'] == '/goals'

    def test_structured_formatter_error_info(self):
        record = self.make_record(error_info=ServerError("boom", status=500))

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['error']['code'] == ErrorCode.HTTP_SERVER_ERROR.value

    def test_detailed_formatter(self):
        output = DetailedFormatter().format(self.make_record())

        assert 'ella_client.test' in output
        assert 'Session refreshed' in output


class TestAuditLogger:
    """Test audit events."""

    def test_token_refresh_event(self, caplog):
        with caplog.at_level(logging.INFO, logger='audit'):
            AuditLogger().log_token_refresh(False, failure_reason="Refresh endpoint returned 401")

        record = caplog.records[-1]
        assert record.audit_info['event_type'] == AuditEventType.TOKEN_REFRESH.value
        assert record.audit_info['result'] == 'failure'
        assert record.audit_info['context']['failure_reason'] == "Refresh endpoint returned 401"

    def test_session_teardown_event(self, caplog):
        with caplog.at_level(logging.INFO, logger='audit'):
            AuditLogger().log_session_teardown("refresh_failed", notified=True)

        record = caplog.records[-1]
        assert record.audit_info['context'] == {'reason': 'refresh_failed', 'notification_emitted': True}

    def test_authentication_event(self, caplog):
        with caplog.at_level(logging.INFO, logger='audit'):
            AuditLogger().log_authentication('login', user='ana@example.com', success=True)

        assert "Login successful for ana@example.com" in caplog.text

    def test_error_event(self, caplog):
        with caplog.at_level(logging.INFO, logger='audit'):
            AuditLogger().log_error(RequestError("Goal not found", status=404))

        record = caplog.records[-1]
        assert record.audit_info['event_type'] == AuditEventType.ERROR_EVENT.value
        assert record.audit_info['context']['error_code'] == ErrorCode.HTTP_NOT_FOUND.value

    def test_structured_error_is_attached(self, caplog):
        logger = logging.getLogger('ella_client.test')
        error = AuthError("GET /goals unauthorized")

        with caplog.at_level(logging.WARNING):
            log_structured_error(logger, error, level=logging.WARNING)

        assert caplog.records[-1].error_info is error


@contextmanager
def preserved_logging():
    """Undo setup_logging's changes to the root and audit loggers."""
    root = logging.getLogger()
    audit = logging.getLogger('audit')
    saved = (root.handlers[:], root.level, audit.handlers[:], audit.propagate)
    try:
        yield
    finally:
        for logger in (root, audit):
            for handler in logger.handlers[:]:
                logger.removeHandler(handler)
                handler.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
        audit.handlers[:] = saved[2]
        audit.propagate = saved[3]


class TestSetupLogging:
    """Test setup_logging."""

    def test_file_logging_json(self, tmp_path):
        log_file = tmp_path / 'logs' / 'client.log'

        with preserved_logging():
            loggers = setup_logging(LogLevel.DEBUG, LogFormat.JSON, log_file=str(log_file), enable_console=False)
            loggers['client'].info("Client started")

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry['message'] == "Client started"
        assert set(loggers) == {'root', 'client', 'transport', 'auth', 'audit'}

    def test_audit_file(self, tmp_path):
        audit_file = tmp_path / 'audit.log'

        with preserved_logging():
            loggers = setup_logging(LogLevel.INFO, enable_console=False, audit_file=str(audit_file))
            AuditLogger().log_session_teardown("refresh_failed", notified=False)
            propagate = loggers['audit'].propagate

        entry = json.loads(audit_file.read_text().strip())
        assert entry['audit']['event_type'] == 'session_teardown'
        assert propagate is False
