"""
Shared pytest fixtures for hooksync tests.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import json
import tempfile

import pytest

from preoccupied.hooksync.config import ConfigStore
from preoccupied.hooksync.signature import sign


SECRET = 'webhook-secret'


@pytest.fixture
def temp_dir():
    """
    Create a temporary directory for tests.
    """

    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config_data():
    """
    A configuration with one account and one repository synced on all
    three actions.
    """

    return {
        'global': {
            'url': 'https://hooks.example.com/',
        },
        'users': {
            'octocat': {
                'token': 'ghp_test_token',
                'secret': SECRET,
                'repositories': {
                    'hello-world': {
                        'push': {
                            'folder': '/srv/hello',
                            'os_user': 'www-data',
                            'postcmd': 'npm install',
                            'branch': 'main',
                        },
                        'release': {
                            'folder': '/srv/hello-release',
                            'os_user': 'www-data',
                            'dl_filename': 'build.zip',
                        },
                        'workflow_run': {
                            'folder': '/srv/hello-ci',
                            'os_user': 'deploy',
                            'dl_filename': 'dist',
                            'postcmd': 'none',
                        },
                    },
                },
            },
        },
    }


@pytest.fixture
def store(config_data):
    return ConfigStore(config_data)


@pytest.fixture
def file_store(config_data, temp_dir):
    """
    A store backed by a file in a temporary directory.
    """

    store = ConfigStore(config_data, path=f'{temp_dir}/config.yaml')
    store.save()
    return store


@pytest.fixture
def mock_env_vars(monkeypatch):
    """
    Clear HOOKSYNC_* environment variables for testing.
    """

    env_vars_to_clear = [
        'CONFIG_PATH',
        'HOOKSYNC_URL',
        'HOOKSYNC_REDIRECT_URL',
        'HOOKSYNC_GITHUB_APP_ID',
        'HOOKSYNC_GITHUB_INSTALLATION_ID',
        'HOOKSYNC_GITHUB_KEYFILE',
        'HOOKSYNC_WEBHOOK_SECRET',
    ]

    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)

    return monkeypatch


def repository(name='Hello-World', owner='octocat'):
    return {
        'name': name,
        'full_name': f'{owner}/{name}',
        'owner': {'login': owner, 'name': owner},
    }


def push_payload(**kwargs):
    payload = {
        'ref': 'refs/heads/main',
        'after': 'abc123',
        'commits': [{'id': 'abc123', 'message': 'Update'}],
        'repository': repository(),
    }
    payload.update(kwargs)
    return payload


def release_payload(action='released', assets=None, **kwargs):
    if assets is None:
        assets = [{
            'id': 42,
            'name': 'build.zip',
            'url': 'https://api.github.com/repos/octocat/Hello-World/releases/assets/42',
        }]
    payload = {
        'action': action,
        'release': {'id': 7, 'tag_name': 'v1.0.0', 'assets': assets},
        'repository': repository(),
    }
    payload.update(kwargs)
    return payload


def workflow_run_payload(action='completed', conclusion='success', **kwargs):
    payload = {
        'action': action,
        'workflow_run': {
            'id': 99,
            'artifacts_url': 'https://api.github.com/repos/octocat/Hello-World/actions/runs/99/artifacts',
            'conclusion': conclusion,
            'head_branch': 'main',
        },
        'repository': repository(),
    }
    payload.update(kwargs)
    return payload


def encode(payload):
    """
    Serialize a payload and sign it the way GitHub does.
    """

    body = json.dumps(payload).encode('utf-8')
    return body, sign(SECRET, body)


# The end.
