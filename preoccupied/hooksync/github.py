"""
GitHub REST API calls used by hooksync: installation tokens, artifact and
release asset downloads, and webhook registration.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import jwt


logger = logging.getLogger(__name__)


GITHUB_API = os.environ.get('HOOKSYNC_GITHUB_API', 'https://api.github.com')

CACHE_THRESHOLD = 50 * 60  # 50 minutes

ACCEPT_JSON = 'application/vnd.github+json'
ACCEPT_BINARY = 'application/octet-stream'


# Cache for GitHub installation tokens, keyed by (app_id, installation_id)
_token_cache: Dict[Tuple[str, str], Dict[str, Union[str, datetime]]] = {}
_cache_lock = asyncio.Lock()


def github_headers(token: str, accept: str = ACCEPT_JSON) -> Dict[str, str]:
    return {
        'Authorization': f'Bearer {token}',
        'Accept': accept,
        'X-GitHub-Api-Version': '2022-11-28',
    }


def _cached_installation_token(cache_key: Tuple[str, str]) -> Optional[str]:
    """
    The cached token for cache_key, if it stays valid for longer than
    CACHE_THRESHOLD. Stale entries are dropped. Call with _cache_lock held.
    """

    cached = _token_cache.get(cache_key)
    if cached is None:
        return None

    remaining = cached['expires_at'] - datetime.now(timezone.utc)
    if remaining.total_seconds() > CACHE_THRESHOLD:
        return cached['token']

    del _token_cache[cache_key]
    return None


def _app_jwt(github_keyfile: str, github_app_id: str) -> str:
    with open(github_keyfile, 'r') as fk:
        private_key = fk.read()

    now = int(time.time())
    claims = {
        'iat': now - 60,
        'exp': now + (10 * 60),
        'iss': github_app_id,
    }
    return jwt.encode(claims, private_key, algorithm='RS256')


async def github_installation_token(
        github_keyfile: str,
        github_app_id: str,
        github_installation_id: str) -> str:
    """
    Mint an access token for a GitHub App installation, used by accounts
    that sync without a personal token. The app authenticates with a
    short-lived JWT signed by its private key in github_keyfile.

    GitHub installation tokens live for an hour. A minted token is shared
    by every delivery for the same installation until less than
    CACHE_THRESHOLD seconds of that hour remain.
    """

    if not (github_app_id and github_installation_id and github_keyfile):
        raise ValueError('github_app_id, github_installation_id, and github_keyfile must be set')

    cache_key = (github_app_id, github_installation_id)

    async with _cache_lock:
        token = _cached_installation_token(cache_key)
    if token:
        logger.debug(f'Reusing installation token for app {github_app_id}')
        return token

    headers = github_headers(_app_jwt(github_keyfile, github_app_id))
    url = f'{GITHUB_API}/app/installations/{github_installation_id}/access_tokens'

    async with httpx.AsyncClient() as client:
        r = await client.post(url, headers=headers)
        r.raise_for_status()
        minted = r.json()

    # GitHub returns ISO 8601 with a trailing Z
    expires_at = datetime.fromisoformat(minted['expires_at'].replace('Z', '+00:00'))

    async with _cache_lock:
        _token_cache[cache_key] = {'token': minted['token'], 'expires_at': expires_at}

    logger.debug(f'Minted installation token for app {github_app_id}, expires at {expires_at}')
    return minted['token']


async def get_repository(owner: str, repo: str, token: str) -> Dict[str, Any]:
    """
    Fetch repository metadata. Raises httpx.HTTPStatusError when the
    repository does not exist or is not visible to the token.
    """

    async with httpx.AsyncClient() as client:
        r = await client.get(f'{GITHUB_API}/repos/{owner}/{repo}',
                             headers=github_headers(token))
        r.raise_for_status()
        return r.json()


async def get_branch(owner: str, repo: str, branch: str, token: str) -> Dict[str, Any]:
    async with httpx.AsyncClient() as client:
        r = await client.get(f'{GITHUB_API}/repos/{owner}/{repo}/branches/{branch}',
                             headers=github_headers(token))
        r.raise_for_status()
        return r.json()


async def list_run_artifacts(artifacts_url: str, token: str) -> List[Dict[str, Any]]:
    """
    List the artifacts of a workflow run, given the run's artifacts_url
    from a workflow_run delivery.
    """

    async with httpx.AsyncClient() as client:
        r = await client.get(artifacts_url,
                             headers=github_headers(token),
                             params={'per_page': 100})
        r.raise_for_status()
        return r.json().get('artifacts', [])


async def download_file(url: str, token: str, dest: Path,
                        accept: str = ACCEPT_BINARY) -> Path:
    """
    Stream the body at url into dest. GitHub answers artifact and asset
    downloads with a redirect to storage; httpx drops the Authorization
    header when the redirect leaves the API host.
    """

    async with httpx.AsyncClient(follow_redirects=True, timeout=None) as client:
        async with client.stream('GET', url, headers=github_headers(token, accept)) as r:
            r.raise_for_status()
            with open(dest, 'wb') as fd:
                async for chunk in r.aiter_bytes():
                    fd.write(chunk)

    logger.debug(f'Downloaded {url} to {dest}')
    return dest


async def create_webhook(
        owner: str,
        repo: str,
        token: str,
        url: str,
        secret: str,
        events: List[str]) -> int:
    """
    Register a repository webhook pointing at url and return its id.
    """

    body = {
        'name': 'web',
        'active': True,
        'events': events,
        'config': {
            'url': url,
            'content_type': 'json',
            'insecure_ssl': '0',
            'secret': secret,
        },
    }

    async with httpx.AsyncClient() as client:
        r = await client.post(f'{GITHUB_API}/repos/{owner}/{repo}/hooks',
                              headers=github_headers(token),
                              json=body)
        r.raise_for_status()
        hook_id = r.json()['id']

    logger.info(f'Registered webhook {hook_id} for {owner}/{repo} on {events}')
    return hook_id


async def delete_webhook(owner: str, repo: str, hook_id: int, token: str) -> None:
    async with httpx.AsyncClient() as client:
        r = await client.delete(f'{GITHUB_API}/repos/{owner}/{repo}/hooks/{hook_id}',
                                headers=github_headers(token))
        r.raise_for_status()

    logger.info(f'Deleted webhook {hook_id} from {owner}/{repo}')


# The end.
