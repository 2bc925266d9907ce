"""
PluginPresets: switch a host's loaded components to match named presets.

This package provides:

- :mod:`PluginPresets.core` – Scope and preset management, the reconciliation engine, the
  default-preset-on-login trigger, one-shot migration of older data layouts and the command surface.
- :mod:`PluginPresets.settings` – App-wide configuration, on-disk paths and the shared preset store.
- :mod:`PluginPresets.status` – Status codes and exceptions.
- :mod:`PluginPresets.log` – Logging setup with an in-memory log tank.
- :mod:`PluginPresets.ui` – Application-wide Qt signals the host's interface connects to.

Use :func:`PluginPresets.start` to build a session for a host.
"""

import sys
from typing import Optional

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('PluginPresets requires Python 3.11 or higher.')

__version__ = '0.0.0'
__license__ = 'GPL-3.0'
__description__ = 'PluginPresets: switch a host\'s loaded components to match named presets.'

from .log import log

log.setup_logging()


def start(registry, self_id: str, state_writer=None, scope_id: Optional[int] = None,
          name: Optional[str] = None, realm: Optional[str] = None):
    """Build a session for a host and arm the default-preset trigger.

    Migrates older data, selects the logged-in scope (or the last selected one),
    keeps ``self_id`` in the always-on set and applies the default preset right away
    when an identity is already logged in. On later logins the session switches
    scope before the trigger runs.

    Args:
        registry (ComponentRegistry): The host's component registry.
        self_id (str): The running system's own component id.
        state_writer (PersistentStateWriter): Optional host persistence capability.
        scope_id (int): The identity already logged in, if any.
        name (str): The identity's name.
        realm (str): The identity's realm.

    Returns:
        tuple: The session, its trigger and its command handler.
    """
    from .core.commands import CommandHandler
    from .core.session import start_session
    from .core.trigger import DefaultPresetTrigger

    session = start_session(registry, self_id, state_writer=state_writer, scope_id=scope_id, name=name,
                            realm=realm)
    trigger = DefaultPresetTrigger(session)
    commands = CommandHandler(session)

    if scope_id is not None:
        trigger.on_login()

    return session, trigger, commands
