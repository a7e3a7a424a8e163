"""
Retrieval of workflow run artifacts and release assets.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import logging
from pathlib import Path
from typing import List, Union

import httpx
from pydantic import BaseModel, Field

from . import github
from .config import AccountConfig, SyncAction
from .events import ReleaseAsset


logger = logging.getLogger(__name__)


ARCHIVE_SUFFIXES = ('.tar.gz', '.tgz', '.tar', '.zip')


class ArtifactError(Exception):
    """
    Base class for failures to retrieve an artifact or asset
    """


class ArtifactNotFound(ArtifactError):
    """
    The named artifact or asset is not part of the listing
    """


class DownloadFailed(ArtifactError):
    """
    The listing or the binary could not be retrieved
    """


class ReleaseAssetDescriptor(BaseModel):
    """
    Which asset of a published release to download, and where to
    """

    filename: str
    folder: str
    assets: List[ReleaseAsset] = Field(default_factory=list)

    kind: SyncAction = SyncAction.RELEASE


class WorkflowArtifactDescriptor(BaseModel):
    """
    Which artifact of a completed workflow run to download, and where to
    """

    filename: str
    folder: str
    artifacts_url: str

    kind: SyncAction = SyncAction.WORKFLOW_RUN


Descriptor = Union[ReleaseAssetDescriptor, WorkflowArtifactDescriptor]


def archive_suffix(name: str) -> str:
    lowered = name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return suffix
    return '.zip'


def archive_path(folder: str, kind: SyncAction, remote_id: int, suffix: str = '.zip') -> Path:
    """
    Where a downloaded archive is stored while it waits to be unpacked.
    Named by remote id so unrelated syncs never share a file.
    """

    return Path(folder) / f'.hooksync-{SyncAction(kind).value}-{remote_id}{suffix}'


class ArtifactFetcher:
    """
    Downloads the artifact or asset named by a sync configuration into
    the target folder.
    """

    async def fetch(self, account: AccountConfig, descriptor: Descriptor) -> Path:
        """
        Download the file described by descriptor using the account's
        credentials and return the local archive path.

        Raises ArtifactNotFound when the name is not listed, and
        DownloadFailed when GitHub could not be reached or refused.
        """

        # release assets are listed in the delivery itself
        if isinstance(descriptor, ReleaseAssetDescriptor):
            url, dest = self._resolve_asset(descriptor)
            token = await self._token(account)
        else:
            token = await self._token(account)
            url, dest = await self._resolve_artifact(descriptor, token)

        logger.info(f'Downloading {descriptor.filename} to {dest}')
        try:
            return await github.download_file(url, token, dest)
        except (httpx.HTTPError, OSError) as e:
            if dest.exists():
                dest.unlink()
            raise DownloadFailed(f'Failed to download {descriptor.filename}: {e}') from e


    async def _token(self, account: AccountConfig) -> str:
        try:
            token = await account.api_token()
        except (httpx.HTTPError, OSError, ValueError) as e:
            raise DownloadFailed(f'Could not obtain a GitHub token: {e}') from e
        if not token:
            raise DownloadFailed('No GitHub token configured for account')
        return token


    def _resolve_asset(self, descriptor: ReleaseAssetDescriptor):
        for asset in descriptor.assets:
            if asset.name == descriptor.filename:
                dest = archive_path(descriptor.folder, descriptor.kind, asset.id,
                                    archive_suffix(asset.name))
                return asset.url, dest

        raise ArtifactNotFound(f'Release has no asset named {descriptor.filename}')


    async def _resolve_artifact(self, descriptor: WorkflowArtifactDescriptor, token: str):
        try:
            artifacts = await github.list_run_artifacts(descriptor.artifacts_url, token)
        except httpx.HTTPError as e:
            raise DownloadFailed(f'Failed to list artifacts: {e}') from e

        for artifact in artifacts:
            if artifact.get('name') == descriptor.filename and not artifact.get('expired'):
                dest = archive_path(descriptor.folder, descriptor.kind, artifact['id'])
                return artifact['archive_download_url'], dest

        raise ArtifactNotFound(f'Workflow run has no artifact named {descriptor.filename}')


# The end.
