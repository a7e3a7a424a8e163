"""
Configuration models and the key-path configuration store for hooksync.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import copy
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .github import github_installation_token


logger = logging.getLogger(__name__)


CONFIG_PATH = os.environ.get('CONFIG_PATH', '/config/config.yaml')

DEFAULT_REDIRECT_URL = 'https://pypi.org/project/preoccupied.hooksync/'


KeyPath = Union[str, Sequence[str]]


class SyncAction(str, Enum):
    """
    The kinds of GitHub event a folder can be synchronized on
    """

    PUSH = 'push'
    RELEASE = 'release'
    WORKFLOW_RUN = 'workflow_run'


    @property
    def downloads(self) -> bool:
        return self is not SyncAction.PUSH


class GlobalConfig(BaseModel):
    """
    Global configuration settings
    """

    url: Optional[str] = None
    redirect_url: str = DEFAULT_REDIRECT_URL

    github_app_id: Optional[str] = None
    github_installation_id: Optional[str] = None
    github_keyfile: Optional[str] = None

    webhook_secret: Optional[str] = None


class SyncConfig(BaseModel):
    """
    Synchronization settings for one action of one repository
    """

    folder: str
    os_user: str
    postcmd: str = 'none'
    branch: Optional[str] = None
    dl_filename: Optional[str] = None
    hook_id: Optional[int] = None


    @field_validator('folder')
    @classmethod
    def folder_is_absolute(cls, v: str) -> str:
        if not os.path.isabs(v):
            raise ValueError(f'folder must be an absolute path: {v}')
        return v


    @property
    def has_postcmd(self) -> bool:
        return bool(self.postcmd) and self.postcmd.strip().lower() != 'none'


class RepoConfig(BaseModel):
    """
    Repository configuration, at most one SyncConfig per action
    """

    push: Optional[SyncConfig] = None
    release: Optional[SyncConfig] = None
    workflow_run: Optional[SyncConfig] = None


    @model_validator(mode='after')
    def require_download_names(self) -> 'RepoConfig':
        for action in (SyncAction.RELEASE, SyncAction.WORKFLOW_RUN):
            sync = self.sync_for(action)
            if sync is not None and not sync.dl_filename:
                raise ValueError(f'{action.value} sync requires dl_filename')
        return self


    def sync_for(self, action: SyncAction) -> Optional[SyncConfig]:
        return getattr(self, SyncAction(action).value)


class AccountConfig(BaseModel):
    """
    A GitHub user or organization, with the credentials used to call the
    API and to authenticate webhook deliveries
    """

    token: Optional[str] = None
    secret: Optional[str] = None

    github_app_id: Optional[str] = None
    github_installation_id: Optional[str] = None
    github_keyfile: Optional[str] = None

    repositories: Dict[str, RepoConfig] = Field(default_factory=dict)


    @field_validator('repositories', mode='before')
    @classmethod
    def lower_repo_names(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return _lower_keys(v)
        return v


    async def api_token(self) -> Optional[str]:
        """
        Get a token for calling the GitHub API on behalf of this account.
        A personal access token wins over GitHub App credentials.
        """

        if self.token:
            return self.token

        if not self.github_keyfile:
            return None

        return await github_installation_token(
            github_keyfile=self.github_keyfile,
            github_app_id=self.github_app_id,
            github_installation_id=self.github_installation_id
        )


class RootConfig(BaseModel):
    """
    Root configuration model
    """

    global_: GlobalConfig = Field(alias='global', default_factory=GlobalConfig)
    users: Dict[str, AccountConfig] = Field(default_factory=dict)

    model_config = {'populate_by_name': True}


    @model_validator(mode='before')
    def apply_global_defaults(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply global config defaults to accounts that don't have them set.
        """

        if not isinstance(v, dict):
            return v

        fixed = {}
        glbl = fixed['global'] = GlobalConfig.model_validate(
            v.get('global', v.get('global_')) or {})

        users = fixed['users'] = dict(v.get('users') or {})
        for login, account in users.items():
            if isinstance(account, AccountConfig):
                account = account.model_dump(exclude_none=True)
            account = users[login] = dict(account or {})
            account.setdefault('secret', glbl.webhook_secret)
            account.setdefault('github_keyfile', glbl.github_keyfile)
            account.setdefault('github_app_id', glbl.github_app_id)
            account.setdefault('github_installation_id', glbl.github_installation_id)

        return fixed


def _config_from_env() -> Dict[str, Any]:
    """
    Build the global configuration overlay from HOOKSYNC_* environment
    variables.
    """

    global_config = {}
    pairs = (
        ('HOOKSYNC_URL', 'url'),
        ('HOOKSYNC_REDIRECT_URL', 'redirect_url'),
        ('HOOKSYNC_GITHUB_APP_ID', 'github_app_id'),
        ('HOOKSYNC_GITHUB_INSTALLATION_ID', 'github_installation_id'),
        ('HOOKSYNC_GITHUB_KEYFILE', 'github_keyfile'),
        ('HOOKSYNC_WEBHOOK_SECRET', 'webhook_secret'))

    for env_var, config_key in pairs:
        value = os.environ.get(env_var)
        if value is not None:
            global_config[config_key] = value

    return {'global': global_config}


def _lower_keys(repos: Dict[str, Any]) -> Dict[str, Any]:
    """
    Repository names are case-insensitive on GitHub, so they are kept
    lower-cased. Two names differing only in case are rejected.
    """

    lowered = {}
    for name, repo in repos.items():
        key = str(name).lower()
        if key in lowered:
            raise ValueError(f'Repository {name} is configured more than once')
        lowered[key] = repo
    return lowered


def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    data.setdefault('global', {})
    data.setdefault('users', {})

    for account in (data['users'] or {}).values():
        if isinstance(account, dict) and isinstance(account.get('repositories'), dict):
            account['repositories'] = _lower_keys(account['repositories'])

    return data


def _split(path: KeyPath) -> Tuple[str, ...]:
    if isinstance(path, str):
        parts = tuple(path.split('.'))
    else:
        parts = tuple(path)
    if not parts or not all(parts):
        raise KeyError(f'Invalid key path: {path!r}')

    # users.<login>.repositories.<name>
    if len(parts) > 3 and parts[0] == 'users' and parts[2] == 'repositories':
        parts = parts[:3] + (parts[3].lower(),) + parts[4:]

    return parts


def sync_path(login: str, repo_name: str, action: SyncAction) -> Tuple[str, ...]:
    """
    Key path of the SyncConfig for the given account, repository and action.
    """

    return ('users', login, 'repositories', repo_name.lower(), SyncAction(action).value)


class ConfigStore:
    """
    Key-path view over the YAML configuration file. Every mutation is
    validated against RootConfig before it is committed, so a rejected
    change leaves the store untouched.

    Paths are either dotted strings or sequences of keys. Use sequences
    whenever a key may itself contain a dot, such as repository names.
    Repository names are matched case-insensitively.

    Other processes may rewrite the file; refresh() picks up their
    changes as long as this store has nothing unsaved.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, path: Optional[str] = None):
        self.path = path
        self._data: Dict[str, Any] = _normalize(copy.deepcopy(data) if data else {})
        self._overlay: Dict[str, Any] = {}
        self._config = self._validate(self._data)

        # what was last read from or written to path
        self._stamp: Optional[Tuple[int, int, int]] = None
        self._dirty = True


    @classmethod
    def load(cls, path: Optional[str] = None) -> 'ConfigStore':
        """
        Load the store from the YAML file at path, defaulting to CONFIG_PATH.
        A missing file yields an empty store that will be created on save.
        HOOKSYNC_* environment values are overlaid but never persisted.
        """

        path = path or CONFIG_PATH

        store = cls(path=path)
        store._overlay = _config_from_env()['global']
        store._stamp = store._file_stamp()
        store._data = _normalize(store._read())
        store._config = store._validate(store._data)
        store._dirty = False

        logger.info(f'Loaded configuration with {len(store.config.users)} accounts from {path}')
        return store


    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r') as f:
            return yaml.safe_load(f) or {}


    def _file_stamp(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)


    def refresh(self) -> bool:
        """
        Reload the configuration if its file was replaced since this
        store last read or wrote it. A store holding unsaved changes is
        left alone. Returns True when the configuration was reloaded.

        A file that no longer parses or validates is logged and the
        previous configuration stays in effect.
        """

        if not self.path or self._dirty:
            return False

        stamp = self._file_stamp()
        if stamp == self._stamp:
            return False
        self._stamp = stamp

        try:
            data = _normalize(self._read())
            config = self._validate(data)
        except (OSError, yaml.YAMLError, ValueError) as e:
            logger.error(f'Failed to reload configuration from {self.path}: {e}', exc_info=True)
            return False

        self._data = data
        self._config = config
        logger.info(f'Reloaded configuration with {len(config.users)} accounts from {self.path}')
        return True


    def _validate(self, data: Dict[str, Any]) -> RootConfig:
        merged = dict(data)
        merged['global'] = {**(data.get('global') or {}), **self._overlay}
        return RootConfig.model_validate(merged)


    @property
    def config(self) -> RootConfig:
        return self._config


    def get(self, path: KeyPath, default: Any = None) -> Any:
        node: Any = self._data
        for key in _split(path):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return copy.deepcopy(node)


    def set(self, path: KeyPath, value: Any) -> None:
        keys = _split(path)
        data = copy.deepcopy(self._data)

        node = data
        for key in keys[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = node[key] = {}
            node = child
        node[keys[-1]] = copy.deepcopy(value)

        data = _normalize(data)
        self._config = self._validate(data)
        self._data = data
        self._dirty = True


    def delete(self, path: KeyPath) -> bool:
        """
        Remove the value at path. Returns False when nothing was there.
        """

        keys = _split(path)
        data = copy.deepcopy(self._data)

        node = data
        for key in keys[:-1]:
            node = node.get(key)
            if not isinstance(node, dict):
                return False
        if keys[-1] not in node:
            return False
        del node[keys[-1]]

        self._config = self._validate(data)
        self._data = data
        self._dirty = True
        return True


    def save(self) -> None:
        """
        Write the configuration back to its YAML file. The file is replaced
        atomically and is only readable by its owner, since it holds
        tokens and secrets.
        """

        if not self.path:
            return

        target = Path(self.path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp = tempfile.mkstemp(dir=str(target.parent), prefix=f'.{target.name}.')
        try:
            with os.fdopen(fd, 'w') as f:
                yaml.safe_dump(self._data, f, default_flow_style=False, sort_keys=True)
            os.chmod(tmp, 0o600)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

        self._stamp = self._file_stamp()
        self._dirty = False
        logger.debug(f'Saved configuration to {self.path}')


    def account_login(self, owner: str) -> Optional[str]:
        """
        The configured login matching owner. GitHub logins are
        case-insensitive, an exact match wins.
        """

        users = self._config.users
        if owner in users:
            return owner
        lowered = owner.lower()
        for login in users:
            if login.lower() == lowered:
                return login
        return None


    def account(self, owner: str) -> Optional[AccountConfig]:
        login = self.account_login(owner)
        return self._config.users[login] if login else None


    def repo_sync(self, owner: str, repo_name: str, action: SyncAction) -> Optional[SyncConfig]:
        account = self.account(owner)
        if account is None:
            return None
        repo = account.repositories.get(repo_name.lower())
        if repo is None:
            return None
        return repo.sync_for(action)


# The end.
