"""
Folder synchronization with GitHub repositories, driven by webhooks.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

from preoccupied.hooksync.app import app, create_app
from preoccupied.hooksync.config import ConfigStore, SyncAction
from preoccupied.hooksync.dispatcher import EventDispatcher
from preoccupied.hooksync.provisioning import ProvisioningFlow, ProvisionRequest


__all__ = [
    'app', 'create_app', 'ConfigStore', 'SyncAction', 'EventDispatcher',
    'ProvisioningFlow', 'ProvisionRequest', ]


# The end.
