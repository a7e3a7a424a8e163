"""
Unit tests for FastAPI application.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from preoccupied.hooksync import create_app
from preoccupied.hooksync.config import ConfigStore
from preoccupied.hooksync.dispatcher import EventDispatcher

from conftest import encode, push_payload, release_payload, repository


@pytest.fixture
def dispatcher(store):
    dispatcher = EventDispatcher(store)
    dispatcher.process = AsyncMock()
    return dispatcher


@pytest.fixture
def client(dispatcher):
    """
    Create a test client for an app around the test configuration.
    """

    return TestClient(create_app(dispatcher=dispatcher))


def post(client, payload, event='push', signature=None):
    body, signed = encode(payload)
    return client.post(
        '/',
        content=body,
        headers={
            'Content-Type': 'application/json',
            'X-GitHub-Event': event,
            'X-GitHub-Delivery': 'delivery-1',
            'X-Hub-Signature-256': signature or signed,
        })


class TestWebhookEndpoint:
    """
    Tests for POST /.
    """

    def test_push_accepted(self, client, dispatcher):
        response = post(client, push_payload())

        assert response.status_code == 202
        assert response.json() == {'status': 'accepted'}

        dispatcher.process.assert_called_once()
        delivery = dispatcher.process.call_args[0][0]
        assert delivery.event == 'push'
        assert delivery.delivery_id == 'delivery-1'
        assert delivery.owner == 'octocat'
        assert delivery.payload['after'] == 'abc123'

    def test_release_accepted(self, client, dispatcher):
        response = post(client, release_payload(), event='release')

        assert response.status_code == 202
        assert dispatcher.process.call_args[0][0].event == 'release'

    def test_ping_accepted(self, client, dispatcher):
        payload = {'zen': 'Keep it logically awesome.', 'hook_id': 1234,
                   'repository': repository()}
        response = post(client, payload, event='ping')

        assert response.status_code == 202
        dispatcher.process.assert_called_once()

    def test_owner_lookup_is_case_insensitive(self, client, dispatcher):
        payload = push_payload(repository=repository(owner='OctoCat'))
        response = post(client, payload)

        assert response.status_code == 202

    def test_bad_signature(self, client, dispatcher):
        response = post(client, push_payload(), signature='sha256=' + '0' * 64)

        assert response.status_code == 401
        dispatcher.process.assert_not_called()

    def test_missing_signature(self, client, dispatcher):
        body, _signed = encode(push_payload())
        response = client.post('/', content=body, headers={'X-GitHub-Event': 'push'})

        assert response.status_code == 401
        dispatcher.process.assert_not_called()

    def test_unknown_owner(self, client, dispatcher):
        payload = push_payload(repository=repository(owner='stranger'))
        response = post(client, payload)

        assert response.status_code == 404
        assert 'stranger' in response.json()['detail']
        dispatcher.process.assert_not_called()

    def test_invalid_json(self, client, dispatcher):
        response = client.post(
            '/', content=b'{not json',
            headers={'X-GitHub-Event': 'push', 'X-Hub-Signature-256': 'sha256=' + '0' * 64})

        assert response.status_code == 400
        assert response.json()['detail'] == 'Invalid JSON payload'
        dispatcher.process.assert_not_called()

    def test_missing_owner(self, client, dispatcher):
        response = post(client, {'zen': 'Design for failure.'}, event='ping')

        assert response.status_code == 400
        assert response.json()['detail'] == 'Missing repository owner'


class TestRedirect:
    """
    Tests for the non-POST redirect.
    """

    @pytest.mark.parametrize('method', ['GET', 'PUT', 'DELETE'])
    def test_redirect_default(self, client, method):
        response = client.request(method, '/', follow_redirects=False)

        assert response.status_code == 307
        assert response.headers['location'] == 'https://pypi.org/project/preoccupied.hooksync/'

    def test_redirect_configured(self, config_data):
        config_data['global']['redirect_url'] = 'https://example.com/'
        client = TestClient(create_app(store=ConfigStore(config_data)))

        response = client.get('/', follow_redirects=False)

        assert response.headers['location'] == 'https://example.com/'


class TestStartup:
    """
    Tests for loading the configuration at startup.
    """

    def test_loads_store(self, config_data):
        store = ConfigStore(config_data)

        with patch('preoccupied.hooksync.config.ConfigStore.load', return_value=store) as mock_load:
            with TestClient(create_app()) as client:
                response = client.get('/', follow_redirects=False)
                assert client.app.state.store is store
                assert isinstance(client.app.state.dispatcher, EventDispatcher)

        mock_load.assert_called_once_with()
        assert response.status_code == 307

    def test_injected_store_not_reloaded(self, store):
        with patch('preoccupied.hooksync.config.ConfigStore.load') as mock_load:
            with TestClient(create_app(store=store)) as client:
                assert client.app.state.store is store

        mock_load.assert_not_called()

    def test_load_failure(self):
        with patch('preoccupied.hooksync.config.ConfigStore.load',
                   side_effect=ValueError('bad config')):
            with pytest.raises(ValueError):
                with TestClient(create_app()):
                    pass


# The end.
