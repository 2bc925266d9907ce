"""Application-wide Qt signals for PluginPresets.

This module provides:
    - Signals: custom Qt signals for session events (login, scope switches),
      preset and always-on changes, apply lifecycle, notifications and UI requests
      (showManager, showLogs).
    - show_manager slot: logs requests to open the management window. The window itself
      lives outside this package and connects to :attr:`Signals.showManager`.
"""
import logging

from PySide6 import QtCore


@QtCore.Slot()
def show_manager() -> None:
    """
    Log that the management window was requested.
    """
    logging.debug('Management window requested')


class Signals(QtCore.QObject):
    """Centralized Qt signals for session, preset, apply and UI events."""
    loginOccurred = QtCore.Signal(int, str, str)  # Scope id, name, realm
    scopeChanged = QtCore.Signal(int)  # Scope id

    settingChanged = QtCore.Signal(str, object)

    presetsChanged = QtCore.Signal()
    alwaysOnChanged = QtCore.Signal()

    presetAboutToBeApplied = QtCore.Signal(str)
    presetApplied = QtCore.Signal(str)
    applyStateChanged = QtCore.Signal(object)  # ApplyState

    toastRequested = QtCore.Signal(str, bool)  # Message, is error
    chatMessage = QtCore.Signal(str, bool)  # Message, is error

    showManager = QtCore.Signal()
    showLogs = QtCore.Signal()

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        self.showManager.connect(show_manager)


signals = Signals()
