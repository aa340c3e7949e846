#!/usr/bin/env python3
"""
Tests for the ella-client command line interface.
"""

import json

import pytest

from ella_client import main as cli
from ella_client.api_client import EllaAPIClient
from ella_client.auth.events import UnauthorizedNotifier
from ella_client.transport import TransportConnectionError

from conftest import json_response


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, tmp_path):
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path))
    monkeypatch.setattr(cli, 'setup_logging', lambda **kwargs: {})


@pytest.fixture
def client(monkeypatch, transport, store):
    client = EllaAPIClient(transport, store, notifier=UnauthorizedNotifier())
    monkeypatch.setattr(cli.EllaAPIClient, 'from_config', lambda config: client)
    return client


class TestArguments:
    """Test argument parsing."""

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])

    def test_request_method_is_normalised(self):
        args = cli.parse_arguments(['--json', 'request', 'get', '/goals'])

        assert args.method == 'GET'
        assert args.path == '/goals'
        assert args.json is True

    def test_overrides_reach_configuration(self):
        args = cli.parse_arguments(['--api-url', 'https://ella.example.com/api', '--storage', 'memory', 'status'])

        config = cli.build_configuration(args)

        assert config.get_api_base_url() == 'https://ella.example.com/api'
        assert config.get_storage_backend() == 'memory'


class TestCommands:
    """Test command results and exit codes."""

    def test_login(self, client, transport, store, capsys):
        transport.handler = lambda request: json_response(200, {'data': {'token': 'A1', 'expiresIn': 3600}})

        code = cli.main(['--json', 'login', '--email', 'ana@example.com', '--password', 'hunter2'])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {'authenticated': True, 'expires_in': 3600}
        assert store.get_access_token() == 'A1'
        assert transport.closed is True

    def test_login_prompts_for_password(self, client, transport, monkeypatch):
        transport.handler = lambda request: json_response(200, {'data': {'token': 'A1'}})
        monkeypatch.setattr(cli.getpass, 'getpass', lambda prompt: 'hunter2')

        assert cli.main(['login', '--email', 'ana@example.com']) == 0

    def test_logout(self, client, store, capsys):
        store.store_credentials('A1', 'R1')

        assert cli.main(['logout']) == 0
        assert store.get_credentials() is None
        assert "Logged out" in capsys.readouterr().out

    def test_status(self, client, store, capsys):
        store.store_credentials('opaque-token')

        code = cli.main(['--json', 'status'])

        status = json.loads(capsys.readouterr().out)
        assert code == 0
        assert status['authenticated'] is True
        assert status['has_refresh_token'] is False

    def test_whoami_not_logged_in(self, client):
        assert cli.main(['whoami']) == cli.EXIT_AUTH

    def test_request_prints_data(self, client, transport, store, capsys):
        store.store_credentials('A1')
        transport.handler = lambda request: json_response(200, {'data': {'balance': 120}})

        code = cli.main(['--json', 'request', 'GET', '/summary'])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {'balance': 120}

    def test_request_sends_json_body(self, client, transport):
        captured = []

        def handler(request):
            captured.append(request)
            return json_response(201, {'data': {'id': 3}})
        transport.handler = handler

        assert cli.main(['request', 'POST', '/goals', '--data', '{"name": "Trip"}']) == 0
        assert captured[0].json == {'name': 'Trip'}

    def test_invalid_json_body(self, client, transport):
        assert cli.main(['request', 'POST', '/goals', '--data', '{oops']) == cli.EXIT_ERROR
        assert transport.calls == []

    def test_expired_session_exit_code(self, client, transport, store, capsys):
        store.store_credentials('A1')
        transport.handler = lambda request: json_response(401)

        code = cli.main(['request', 'GET', '/summary'])

        assert code == cli.EXIT_AUTH
        assert "Session expired. Please log in again." in capsys.readouterr().err

    def test_network_exit_code(self, client, transport):
        def handler(request):
            raise TransportConnectionError("refused")
        transport.handler = handler

        assert cli.main(['request', 'GET', '/summary']) == cli.EXIT_NETWORK

    def test_request_error_exit_code(self, client, transport, capsys):
        transport.handler = lambda request: json_response(404, {'message': 'Goal not found'})

        code = cli.main(['--json', 'request', 'GET', '/goals/9'])

        assert code == cli.EXIT_REQUEST
        error = json.loads(capsys.readouterr().out)['error']
        assert error['user_message'] == 'Goal not found'


class TestUnexpectedErrors:
    """Test errors raised outside the structured taxonomy."""

    @pytest.mark.parametrize("exception,code", [
        (ConnectionResetError("reset by peer"), cli.EXIT_NETWORK),
        (TimeoutError("slow"), cli.EXIT_NETWORK),
        (KeyError("profile"), cli.EXIT_ERROR),
    ])
    def test_builtin_exception_is_mapped(self, monkeypatch, exception, code):
        async def failing(args, config):
            raise exception
        monkeypatch.setattr(cli, 'run_command', failing)

        assert cli.main(['status']) == code

    def test_json_error_carries_command(self, monkeypatch, capsys):
        async def failing(args, config):
            raise KeyError("profile")
        monkeypatch.setattr(cli, 'run_command', failing)

        code = cli.main(['--json', 'whoami'])

        error = json.loads(capsys.readouterr().out)['error']
        assert code == cli.EXIT_ERROR
        assert error['code'] == 'INTERNAL_9001'
        assert error['context']['command'] == 'whoami'
