"""Route user-facing notifications by the active scope's notification mode."""
import logging

from .scope import NotificationMode
from ..settings import lib
from ..ui.actions import signals

CHAT_PREFIX = '[Preset]'


def notify(mode: NotificationMode, message: str, is_error: bool = False) -> None:
    """Show a message as a toast or chat line, or nothing, depending on mode.

    Errors are shown even when ``show_notifications`` is off, as long as the mode
    itself is not disabled.

    Args:
        mode: The active scope's notification mode.
        message: Text to show.
        is_error: Render as an error.
    """
    if is_error:
        logging.error(f'Notification: {message}')
    else:
        logging.info(f'Notification: {message}')

    if not is_error and not lib.settings['show_notifications']:
        return

    if mode is NotificationMode.Toast:
        signals.toastRequested.emit(message, is_error)
    elif mode is NotificationMode.Chat:
        signals.chatMessage.emit(f'{CHAT_PREFIX} {message}', is_error)
