"""
Decoding of GitHub webhook deliveries into typed events.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import SyncAction


logger = logging.getLogger(__name__)


RELEASE_ACTIONS = ('released',)
WORKFLOW_RUN_ACTIONS = ('completed',)


class Owner(BaseModel):
    model_config = ConfigDict(extra='ignore')

    login: Optional[str] = None
    name: Optional[str] = None


class Repository(BaseModel):
    model_config = ConfigDict(extra='ignore')

    name: str
    full_name: str
    owner: Owner


    @property
    def owner_login(self) -> Optional[str]:
        return self.owner.login or self.owner.name


class ReleaseAsset(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    name: str
    url: str
    browser_download_url: Optional[str] = None
    size: Optional[int] = None


class Release(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    tag_name: Optional[str] = None
    assets: List[ReleaseAsset] = Field(default_factory=list)


class WorkflowRun(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    artifacts_url: str
    conclusion: Optional[str] = None
    head_branch: Optional[str] = None


class PingEvent(BaseModel):
    kind: Literal['ping'] = 'ping'
    zen: Optional[str] = None
    hook_id: Optional[int] = None


class PushEvent(BaseModel):
    kind: Literal['push'] = 'push'
    repository: Repository
    ref: Optional[str] = None
    after: Optional[str] = None
    commits: List[Dict[str, Any]] = Field(default_factory=list)

    sync_action: SyncAction = SyncAction.PUSH


    @property
    def qualifies(self) -> bool:
        return True


    def targets_branch(self, branch: Optional[str]) -> bool:
        """
        Whether this push updates branch. Without a branch every push
        qualifies.
        """

        if not branch or self.ref is None:
            return True
        return self.ref == f'refs/heads/{branch}'


class ReleaseEvent(BaseModel):
    kind: Literal['release'] = 'release'
    repository: Repository
    action: Optional[str] = None
    release: Release

    sync_action: SyncAction = SyncAction.RELEASE


    @property
    def qualifies(self) -> bool:
        return self.action in RELEASE_ACTIONS


class WorkflowRunEvent(BaseModel):
    kind: Literal['workflow_run'] = 'workflow_run'
    repository: Repository
    action: Optional[str] = None
    workflow_run: WorkflowRun

    sync_action: SyncAction = SyncAction.WORKFLOW_RUN


    @property
    def qualifies(self) -> bool:
        return self.action in WORKFLOW_RUN_ACTIONS


class UnsupportedEvent(BaseModel):
    kind: Literal['unsupported'] = 'unsupported'
    event: Optional[str] = None
    action: Optional[str] = None
    reason: str = 'not handled'


SyncEvent = Union[PushEvent, ReleaseEvent, WorkflowRunEvent]

Event = Union[PingEvent, PushEvent, ReleaseEvent, WorkflowRunEvent, UnsupportedEvent]


_DECODERS = {
    'ping': PingEvent,
    'push': PushEvent,
    'release': ReleaseEvent,
    'workflow_run': WorkflowRunEvent,
}


def decode_event(event_type: Optional[str], payload: Any) -> Event:
    """
    Decode a delivery payload according to its X-GitHub-Event header.

    Unknown event types and payloads that do not have the expected shape
    become an UnsupportedEvent. This never raises.
    """

    action = payload.get('action') if isinstance(payload, dict) else None

    model = _DECODERS.get(event_type or '')
    if model is None:
        return UnsupportedEvent(event=event_type, action=action)

    if not isinstance(payload, dict):
        return UnsupportedEvent(event=event_type, reason='payload is not an object')

    fields = {key: value for key, value in payload.items()
              if key in model.model_fields and key not in ('kind', 'sync_action')}

    try:
        return model.model_validate(fields)
    except ValidationError as e:
        logger.debug(f'Malformed {event_type} payload: {e}')
        return UnsupportedEvent(event=event_type, action=action,
                                reason=f'malformed {event_type} payload')


# The end.
