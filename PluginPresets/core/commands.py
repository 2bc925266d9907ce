"""The text command surface.

``handle('')`` opens the manager, ``handle('alwayson')`` applies always-on only
mode and anything else is treated as a preset name.
"""
import logging
from typing import Optional

from .engine import ALWAYS_ON_ONLY_NAME
from .notify import CHAT_PREFIX
from .session import SessionAPI
from ..ui.actions import signals

ALWAYS_ON_TOKEN = 'alwayson'


class CommandHandler:
    """
    Routes command arguments to the session.

    Args:
        session: The active session.
        asynchronous: Run applies on a worker thread. Tests pass False.
    """

    def __init__(self, session: SessionAPI, asynchronous: bool = True) -> None:
        self.session = session
        self.asynchronous = asynchronous

    def handle(self, args: str) -> Optional[str]:
        """Run a command.

        Returns:
            The name of what is being applied, or None.
        """
        args = (args or '').strip()
        if not args:
            signals.showManager.emit()
            return None

        engine = self.session.engine
        if args.lower() == ALWAYS_ON_TOKEN:
            if self.asynchronous:
                engine.apply_always_on_only_async()
            else:
                engine.apply_always_on_only()
            return ALWAYS_ON_ONLY_NAME

        preset = self.session.find_preset(args)
        if preset is None:
            self._not_found(args)
            return None

        if self.asynchronous:
            engine.apply_preset_async(preset)
        else:
            engine.apply_preset(preset)
        return preset.name

    def _not_found(self, name: str) -> None:
        logging.warning(f'Preset "{name}" not found')
        signals.toastRequested.emit(f'Preset \'{name}\' not found', True)

        names = ', '.join(p.name for p in self.session.presets())
        signals.chatMessage.emit(f'{CHAT_PREFIX} Available presets: {names or "none"}', False)
        signals.chatMessage.emit(f'{CHAT_PREFIX} Special: {ALWAYS_ON_TOKEN}', False)
