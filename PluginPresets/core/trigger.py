"""Apply the active scope's default preset once per session, on login."""
import enum
import logging
from typing import Optional

from PySide6 import QtCore

from .session import SessionAPI
from ..ui.actions import signals


class TriggerState(enum.Enum):
    NotTriggered = enum.auto()
    Triggered = enum.auto()


class DefaultPresetTrigger(QtCore.QObject):
    """
    Single-shot trigger connected to ``signals.loginOccurred``.

    Once the default preset has been applied the trigger disconnects itself and
    stays triggered until :meth:`reset`. A default preset name that does not
    resolve leaves the trigger armed, so fixing the name before the next login
    is enough.

    Args:
        session: The session providing the active scope and the engine.
        asynchronous: Run the apply on a worker thread. Tests pass False.
    """

    def __init__(self, session: SessionAPI, asynchronous: bool = True,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)
        self.session = session
        self.asynchronous = asynchronous
        self.state = TriggerState.NotTriggered
        self._connected = False
        self._connect()

    @property
    def triggered(self) -> bool:
        return self.state is TriggerState.Triggered

    def _connect(self) -> None:
        if self._connected:
            return
        signals.loginOccurred.connect(self.login_occurred)
        self._connected = True

    def disconnect_login(self) -> None:
        if not self._connected:
            return
        signals.loginOccurred.disconnect(self.login_occurred)
        self._connected = False

    def reset(self) -> None:
        """Re-arm the trigger for a new session."""
        self.state = TriggerState.NotTriggered
        self._connect()

    @QtCore.Slot(int, str, str)
    def login_occurred(self, scope_id: int, name: str, realm: str) -> None:
        self.on_login()

    def on_login(self) -> bool:
        """Apply the default preset unless it has already been applied.

        Returns:
            True if an apply was started.
        """
        if self.triggered:
            return False

        scope = self.session.current
        if not scope.apply_default_on_login:
            logging.debug(f'Applying the default preset is off for {scope.label}')
            return False

        if scope.use_always_on_as_default:
            self._fire()
            logging.info('Applying always-on only mode as default')
            self._apply(self.session.engine.apply_always_on_only, self.session.engine.apply_always_on_only_async)
            return True

        if not scope.default_preset:
            return False

        preset = self.session.find_preset(scope.default_preset)
        if preset is None:
            logging.warning(f'Default preset "{scope.default_preset}" not found, will retry on the next login')
            return False

        self._fire()
        logging.info(f'Applying default preset: {preset.name}')
        self._apply(self.session.engine.apply_preset, self.session.engine.apply_preset_async, preset)
        return True

    def _fire(self) -> None:
        self.state = TriggerState.Triggered
        self.disconnect_login()

    def _apply(self, func, func_async, *args) -> None:
        if self.asynchronous:
            worker = func_async(*args)
            worker.errorOccurred.connect(
                lambda err: logging.error(f'Failed to apply the default preset: {err}'))
            return
        try:
            func(*args)
        except Exception as ex:
            logging.error(f'Failed to apply the default preset: {ex}')
