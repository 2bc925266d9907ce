"""Interfaces to the host's component registry.

The host reports installed components with a loaded flag and accepts enable and
disable commands without acknowledging them. The engine infers the outcome by
listing the installed components again.

Hosts that can also persist component states across full restarts expose that
through a :class:`PersistentStateWriter`. When no such writer is available the
engine only issues commands.
"""
import abc
import enum
import logging
from dataclasses import dataclass
from typing import Dict, List


class Command(enum.StrEnum):
    """Commands accepted by the host."""
    Enable = 'enable'
    Disable = 'disable'


@dataclass(frozen=True)
class InstalledComponent:
    """One installed component as reported by the host."""
    component_id: str
    display_name: str = ''
    loaded: bool = False
    is_dev: bool = False
    is_third_party: bool = False

    @property
    def name(self) -> str:
        return self.display_name or self.component_id


class ComponentRegistry(abc.ABC):
    """
    The host's component registry.
    """

    @abc.abstractmethod
    def list_installed(self) -> List[InstalledComponent]:
        """Return every installed component with its current loaded flag."""

    @abc.abstractmethod
    def send_command(self, command: Command, component_id: str) -> None:
        """Issue a command. Returns immediately; the effect shows up in later listings."""

    def installed_by_id(self) -> Dict[str, InstalledComponent]:
        """Index the installed components by id, keeping the first of any duplicates."""
        result: Dict[str, InstalledComponent] = {}
        for component in self.list_installed():
            result.setdefault(component.component_id, component)
        return result


class PersistentStateWriter(abc.ABC):
    """Optional host capability that makes component states survive restarts."""

    @property
    @abc.abstractmethod
    def available(self) -> bool:
        """True when the host capability could be reached."""

    @abc.abstractmethod
    def set_state(self, component: InstalledComponent, enabled: bool) -> bool:
        """Persist and apply a component's state.

        Returns:
            True on success. False tells the caller to fall back to a plain command.
        """


class UnavailableStateWriter(PersistentStateWriter):
    """The writer used when the host offers no persistence capability."""

    @property
    def available(self) -> bool:
        return False

    def set_state(self, component: InstalledComponent, enabled: bool) -> bool:
        logging.debug(f'Persistent state writer unavailable, not persisting {component.component_id}')
        return False
