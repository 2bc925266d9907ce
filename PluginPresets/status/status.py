"""Status definitions and exceptions for PluginPresets.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions (e.g., PresetNotFoundException) for error handling in the engine and stores
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Preset status
    PresetNotFound = enum.auto()
    PresetSaveFailed = enum.auto()

    # Scope status
    ScopeNotFound = enum.auto()

    # Apply status
    ApplyInProgress = enum.auto()
    ApplyFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the logs.',
    Status.Okay: 'Everything is okay.',

    Status.PresetNotFound: 'Could not find the preset. Has it been renamed or deleted?',
    Status.PresetSaveFailed: 'Could not save the preset. Your changes were not written to disk.',

    Status.ScopeNotFound: 'Could not find the character or scope data.',

    Status.ApplyInProgress: 'A preset is already being applied. Please wait for it to finish.',
    Status.ApplyFailed: 'Failed to apply the preset.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in PluginPresets.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class PresetNotFoundException(BaseStatusException):
    """Exception raised when a preset name cannot be resolved."""
    status = Status.PresetNotFound


class PresetSaveFailedException(BaseStatusException):
    """Exception raised when a preset record cannot be written to disk."""
    status = Status.PresetSaveFailed


class ScopeNotFoundException(BaseStatusException):
    """Exception raised when a scope id has no stored record."""
    status = Status.ScopeNotFound


class ApplyInProgressException(BaseStatusException):
    """Exception raised when an apply is requested while another one is running."""
    status = Status.ApplyInProgress


class ApplyFailedException(BaseStatusException):
    """Exception raised when an apply sequence is aborted by an error."""
    status = Status.ApplyFailed
