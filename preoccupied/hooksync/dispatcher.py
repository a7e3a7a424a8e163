"""
Authentication and dispatch of webhook deliveries to sync actions.

A delivery is handled in two phases. authenticate() runs while the HTTP
request is open and decides between 404, 401 and 202. process() runs
after the 202 has been sent and performs the synchronization, so GitHub
never waits on a slow pull or download and never retries because of it.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from .artifacts import (
    ArtifactFetcher, ArtifactNotFound, DownloadFailed,
    ReleaseAssetDescriptor, WorkflowArtifactDescriptor, )
from .config import AccountConfig, ConfigStore, SyncConfig
from .events import (
    PingEvent, PushEvent, ReleaseEvent, SyncEvent, UnsupportedEvent,
    WorkflowRunEvent, decode_event, )
from .executor import SyncExecutor, SyncOutcome
from .signature import verify


logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """
    A delivery was refused before processing
    """


class UnknownOwner(DispatchError):
    pass


class InvalidSignature(DispatchError):
    pass


class DispatchStatus(str, Enum):
    PING = 'ping'
    IGNORED = 'ignored'
    UNHANDLED = 'unhandled'
    NOT_CONFIGURED = 'not_configured'
    ARTIFACT_NOT_FOUND = 'artifact_not_found'
    DOWNLOAD_FAILED = 'download_failed'
    FAILED = 'failed'
    SYNCED = 'synced'
    ERROR = 'error'


class Delivery(BaseModel):
    """
    A single inbound webhook call. body holds the bytes exactly as
    received, which is what the signature covers.
    """

    event: Optional[str] = None
    delivery_id: Optional[str] = None
    signature: Optional[str] = None
    body: bytes
    payload: Any = None


    @property
    def owner(self) -> Optional[str]:
        try:
            owner = self.payload['repository']['owner']
        except (KeyError, TypeError):
            return None
        if not isinstance(owner, dict):
            return None
        return owner.get('login') or owner.get('name')


SyncKey = Tuple[str, str, str]


class EventDispatcher:
    """
    Routes authenticated deliveries to the matching sync configuration.
    Deliveries for the same account, repository and action are handled
    one at a time, in arrival order; different keys run concurrently.
    """

    def __init__(
            self,
            store: ConfigStore,
            fetcher: Optional[ArtifactFetcher] = None,
            executor: Optional[SyncExecutor] = None):

        self.store = store
        self.fetcher = fetcher or ArtifactFetcher()
        self.executor = executor or SyncExecutor()
        self._locks: Dict[SyncKey, asyncio.Lock] = defaultdict(asyncio.Lock)


    def authenticate(self, delivery: Delivery) -> AccountConfig:
        """
        Find the account owning the delivery's repository and check the
        delivery signature against its secret.

        Raises UnknownOwner or InvalidSignature.
        """

        self.store.refresh()

        owner = delivery.owner
        account = self.store.account(owner) if owner else None
        if account is None:
            raise UnknownOwner(f'User {owner} not found in server configuration')

        if not verify(account.secret or '', delivery.signature, delivery.body):
            logger.warning(f'Invalid signature on delivery {delivery.delivery_id} for {owner}')
            raise InvalidSignature('Invalid signature')

        return account


    async def process(self, delivery: Delivery) -> DispatchStatus:
        """
        Classify an authenticated delivery and run the sync it calls for.
        Never raises; every outcome is logged.
        """

        try:
            return await self._process(delivery)
        except Exception as e:
            logger.error(f'Error processing delivery {delivery.delivery_id}: {e}', exc_info=True)
            return DispatchStatus.ERROR


    async def _process(self, delivery: Delivery) -> DispatchStatus:
        self.store.refresh()
        event = decode_event(delivery.event, delivery.payload)

        if isinstance(event, PingEvent):
            logger.info('Received ping event from GitHub')
            return DispatchStatus.PING

        if isinstance(event, UnsupportedEvent):
            logger.info(f'Received {event.event} event from GitHub (not handled: {event.reason})')
            return DispatchStatus.UNHANDLED

        repo = event.repository
        if not event.qualifies:
            logger.info(f'Ignoring {event.kind} event with action {event.action} '
                        f'for {repo.full_name}')
            return DispatchStatus.IGNORED

        logger.info(f'Received {event.kind} event for repository {repo.name} from GitHub')

        login = self.store.account_login(repo.owner_login)
        sync = self.store.repo_sync(login, repo.name, event.sync_action) if login else None
        if sync is None:
            logger.info(f"Repository {repo.full_name} isn't handled by the server "
                        f'for {event.kind} events.')
            return DispatchStatus.NOT_CONFIGURED

        if isinstance(event, PushEvent) and not event.targets_branch(sync.branch):
            logger.info(f'Ignoring push to {event.ref} for {repo.full_name}, '
                        f'tracking {sync.branch}')
            return DispatchStatus.IGNORED

        if isinstance(event, WorkflowRunEvent) and event.workflow_run.conclusion != 'success':
            logger.info(f'Ignoring workflow run {event.workflow_run.id} for {repo.full_name} '
                        f'with conclusion {event.workflow_run.conclusion}')
            return DispatchStatus.IGNORED

        key = (login, repo.name.lower(), event.sync_action.value)
        async with self._locks[key]:
            return await self._execute(self.store.account(login), event, sync)


    async def _execute(self, account: AccountConfig, event: SyncEvent,
                       sync: SyncConfig) -> DispatchStatus:

        full_name = event.repository.full_name
        archive = None

        if event.sync_action.downloads:
            try:
                archive = await self.fetcher.fetch(account, self._descriptor(event, sync))
            except ArtifactNotFound as e:
                logger.warning(f'{e} ({full_name}), nothing to sync')
                return DispatchStatus.ARTIFACT_NOT_FOUND
            except DownloadFailed as e:
                logger.error(f'{e} ({full_name})')
                return DispatchStatus.DOWNLOAD_FAILED

        outcome: SyncOutcome = await self.executor.run(event.sync_action, sync, archive)

        if outcome.ok:
            logger.info(f'Successfully synced {sync.folder} folder with {full_name} repository!')
            return DispatchStatus.SYNCED

        logger.error(f'Failed to sync {sync.folder} folder with {full_name} repository '
                     f'(exit {outcome.exit_code})')

        # the plan stopped before removing the archive
        if archive is not None and archive.exists():
            archive.unlink()

        return DispatchStatus.FAILED


    def _descriptor(self, event: SyncEvent, sync: SyncConfig):
        if isinstance(event, ReleaseEvent):
            return ReleaseAssetDescriptor(
                filename=sync.dl_filename,
                folder=sync.folder,
                assets=event.release.assets)

        return WorkflowArtifactDescriptor(
            filename=sync.dl_filename,
            folder=sync.folder,
            artifacts_url=event.workflow_run.artifacts_url)


# The end.
