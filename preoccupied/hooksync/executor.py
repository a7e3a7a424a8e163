"""
Privilege-scoped command execution for folder synchronization.

Every synchronization is a plan: an ordered list of argv steps run in
the target folder, stopping at the first failure. Steps that touch the
synchronized content run as the configured OS user via sudo, so code
pulled from a repository never runs with the server's own identity.
Platforms without sudo (Windows) run the steps as the server itself and
skip the ownership fix.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import asyncio
import logging
import shlex
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from .config import SyncAction, SyncConfig


logger = logging.getLogger(__name__)


Step = Tuple[str, ...]


class SyncOutcome(BaseModel):
    """
    Result of running a command plan
    """

    exit_code: int
    stderr: str = ''
    command: str = ''


    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def render(folder: str, steps: Sequence[Step], secrets: Iterable[str] = ()) -> str:
    """
    Shell-style rendering of a plan, for logs. Any of the given secrets
    appearing in the text are masked.
    """

    text = ' && '.join([shlex.join(('cd', folder))] + [shlex.join(step) for step in steps])
    for secret in secrets:
        if secret:
            text = text.replace(secret, '***')
    return text


async def run(*args: str, cwd: str = None) -> SyncOutcome:
    logger.debug(f'Running {args[0]} in {cwd}')
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        return SyncOutcome(exit_code=127, stderr=f'{args[0]}: {e}')

    _stdout, stderr = await process.communicate()
    return SyncOutcome(exit_code=process.returncode,
                       stderr=stderr.decode('utf-8', errors='replace'))


class SyncExecutor:
    """
    Builds and runs the command plans for each kind of synchronization.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform


    @property
    def drops_privileges(self) -> bool:
        return self.platform != 'win32'


    def as_user(self, sync: SyncConfig, *args: str) -> Step:
        if self.drops_privileges:
            return ('sudo', '-u', sync.os_user) + args
        return args


    def chown(self, sync: SyncConfig) -> List[Step]:
        if not self.drops_privileges:
            return []
        return [('chown', '-R', f'{sync.os_user}:', sync.folder)]


    def postcmd(self, sync: SyncConfig) -> List[Step]:
        if not sync.has_postcmd:
            return []
        if self.drops_privileges:
            return [self.as_user(sync, 'sh', '-c', sync.postcmd)]
        return [('cmd', '/c', sync.postcmd)]


    def extract(self, sync: SyncConfig, archive: Path) -> List[Step]:
        name = archive.name.lower()
        if name.endswith(('.tar.gz', '.tgz', '.tar')):
            unpack = ('tar', '-xf', str(archive), '-C', sync.folder)
        else:
            unpack = ('unzip', '-o', '-q', str(archive), '-d', sync.folder)

        if self.drops_privileges:
            remove = ('rm', '-f', str(archive))
        else:
            remove = ('cmd', '/c', 'del', '/f', '/q', str(archive))

        return [unpack, remove]


    def plan(self, action: SyncAction, sync: SyncConfig,
             archive: Optional[Path] = None) -> List[Step]:
        """
        The steady-state plan for action. Pushes pull as the OS user;
        downloads are unpacked, removed, and handed to the OS user.
        The post-install command always comes last.
        """

        action = SyncAction(action)

        if action is SyncAction.PUSH:
            steps = [self.as_user(sync, 'git', 'pull')]
        else:
            if archive is None:
                raise ValueError(f'{action.value} sync requires a downloaded archive')
            steps = self.extract(sync, archive) + self.chown(sync)

        return steps + self.postcmd(sync)


    def bootstrap_plan(self, sync: SyncConfig, git_url: str, branch: str) -> List[Step]:
        """
        The first-time plan for a push sync: turn the folder into a
        checkout of branch tracking origin.
        """

        return self.chown(sync) + [
            self.as_user(sync, 'git', 'init', '-b', branch),
            self.as_user(sync, 'git', 'remote', 'add', 'origin', git_url),
            self.as_user(sync, 'git', 'pull', 'origin', branch),
            self.as_user(sync, 'git', 'branch', f'--set-upstream-to=origin/{branch}', branch),
            self.as_user(sync, 'git', 'pull'),
        ]


    async def execute(self, sync: SyncConfig, steps: Sequence[Step],
                      secrets: Iterable[str] = ()) -> SyncOutcome:
        """
        Run steps in order inside the sync folder. Stops at the first
        non-zero exit and reports it; stderr from every step that ran is
        collected.
        """

        secrets = list(secrets)
        command = render(sync.folder, steps, secrets)
        logger.info(f'Running: {command}')

        errors = []
        exit_code = 0
        for step in steps:
            result = await run(*step, cwd=sync.folder)
            if result.stderr:
                errors.append(result.stderr)
            if not result.ok:
                exit_code = result.exit_code
                break

        stderr = ''.join(errors)
        for secret in secrets:
            if secret:
                stderr = stderr.replace(secret, '***')

        outcome = SyncOutcome(exit_code=exit_code, stderr=stderr, command=command)
        if not outcome.ok:
            logger.error(f'Command exited with {exit_code} in {sync.folder}: {stderr.strip()}')
        elif stderr.strip():
            logger.warning(f'Command wrote to stderr in {sync.folder}: {stderr.strip()}')

        return outcome


    async def run(self, action: SyncAction, sync: SyncConfig,
                  archive: Optional[Path] = None) -> SyncOutcome:
        return await self.execute(sync, self.plan(action, sync, archive))


    async def bootstrap(self, sync: SyncConfig, git_url: str, branch: str,
                        secrets: Iterable[str] = ()) -> SyncOutcome:
        return await self.execute(sync, self.bootstrap_plan(sync, git_url, branch), secrets)


    async def prepare(self, sync: SyncConfig) -> SyncOutcome:
        """
        First-time plan for download syncs, which only need the folder
        to belong to the OS user.
        """

        return await self.execute(sync, self.chown(sync))


# The end.
