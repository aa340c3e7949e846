#!/usr/bin/env python3
"""
Unit tests for EllaAPIClient.
"""

import pytest

from ella_shared.exceptions import AuthError, RequestError

from ella_client.api_client import EllaAPIClient
from ella_client.auth.events import UnauthorizedNotifier
from ella_client.auth.token_storage import InMemoryCredentialBackend
from ella_client.config import ClientConfiguration
from ella_client.transport import AiohttpTransport

from conftest import json_response


@pytest.fixture
def client(transport, store, notifier, executor):
    return EllaAPIClient(transport, store, executor=executor, notifier=notifier)


class TestRequests:
    """Test verb helpers and envelope handling."""

    @pytest.mark.asyncio
    async def test_get_unwraps_envelope(self, client, transport):
        transport.handler = lambda request: json_response(200, {'success': True, 'data': [{'id': 1}]})

        assert await client.get('/goals') == [{'id': 1}]
        assert transport.calls[0].method == 'GET'

    @pytest.mark.asyncio
    async def test_raw_payload(self, client, transport):
        transport.handler = lambda request: json_response(200, {'success': True, 'data': [{'id': 1}]})

        assert await client.get('/goals', unwrap=False) == {'success': True, 'data': [{'id': 1}]}

    @pytest.mark.asyncio
    async def test_unenveloped_payload(self, client, transport):
        transport.handler = lambda request: json_response(200, [{'id': 1}])

        assert await client.get('/goals') == [{'id': 1}]

    @pytest.mark.asyncio
    async def test_empty_body(self, client, transport):
        transport.handler = lambda request: json_response(204)

        assert await client.delete('/goals/1') is None
        assert transport.calls[0].method == 'DELETE'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verb", ['post', 'put', 'patch'])
    async def test_json_body(self, client, transport, verb):
        captured = []

        def handler(request):
            captured.append(request)
            return json_response(200, {'data': {'id': 1}})
        transport.handler = handler

        result = await getattr(client, verb)('/goals', {'name': 'Trip'})

        assert result == {'id': 1}
        assert captured[0].method == verb.upper()
        assert captured[0].json == {'name': 'Trip'}
        assert transport.calls[0].headers['Content-Type'] == 'application/json'

    @pytest.mark.asyncio
    async def test_request_passes_params_and_timeout(self, client, transport):
        captured = []

        def handler(request):
            captured.append(request)
            return json_response(200, {})
        transport.handler = handler

        await client.request('GET', '/transactions', params={'month': '2024-05'}, timeout=3.0)

        assert captured[0].params == {'month': '2024-05'}
        assert transport.calls[0].timeout == 3.0

    @pytest.mark.asyncio
    async def test_errors_propagate(self, client, transport):
        transport.handler = lambda request: json_response(409, {'message': 'Goal already exists'})

        with pytest.raises(RequestError, match='Goal already exists'):
            await client.post('/goals', {'name': 'Trip'})

    @pytest.mark.asyncio
    async def test_expired_session_is_refreshed(self, client, transport, store):
        store.store_credentials('A1', 'R1')

        def handler(request):
            if request.path == '/auth/refresh':
                return json_response(200, {'data': {'token': 'A2'}})
            if request.sent_bearer() == 'A2':
                return json_response(200, {'data': {'ok': True}})
            return json_response(401)
        transport.handler = handler

        assert await client.get('/summary') == {'ok': True}

    @pytest.mark.asyncio
    async def test_unrecoverable_session(self, client, transport, store, events):
        store.store_credentials('A1')
        transport.handler = lambda request: json_response(401)

        with pytest.raises(AuthError):
            await client.get('/summary')

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, client, transport):
        async with client:
            pass

        assert transport.closed is True


class TestFromConfig:
    """Test building a client from configuration."""

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv('ELLA_API_URL', raising=False)
        monkeypatch.delenv('ELLA_API_BASE_URL', raising=False)
        config = ClientConfiguration(str(tmp_path / 'absent.conf'))
        config.set_override('server.base_url', 'https://ella.example.com/api/')
        config.set_override('auth.storage_backend', 'memory')
        config.set_override('auth.prefer_cookie', False)
        config.set_override('server.refresh_timeout', 4)
        config.set_override('auth.unauthorized_min_interval', 2.5)
        notifier = UnauthorizedNotifier()

        async with EllaAPIClient.from_config(config, notifier=notifier) as client:
            assert isinstance(client.transport, AiohttpTransport)
            assert client.transport.base_url == 'https://ella.example.com/api'
            assert isinstance(client.credential_store.backend, InMemoryCredentialBackend)
            assert client.executor.prefer_cookie is False
            assert client.executor.refresh_timeout == 4.0
            assert client.executor.notifier is notifier
            assert notifier.min_interval == 2.5
