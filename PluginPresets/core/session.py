"""Session state: the active scope and everything a user does with it.

:class:`SessionAPI` ties the stores and the engine together. It tracks the active
scope, manages its presets and always-on set, and keeps the running system's own
component in the always-on set so an apply can never disable it.
"""
import logging
from typing import List, Optional

from PySide6 import QtCore

from .engine import ApplyResult, ReconcileAPI
from .migration import MigrationAPI
from .registry import Command, ComponentRegistry, PersistentStateWriter
from .scope import GLOBAL_SCOPE_ID, NotificationMode, ScopeRecord, ScopeStore
from .worker import AsyncWorker
from ..settings import lib
from ..settings.presets.lib import Preset, PresetStore
from ..status import status
from ..ui.actions import signals


def unique_name(name: str, taken: List[str]) -> str:
    """Return name, or ``name (n)`` with the first free n, comparing case-insensitively."""
    lowered = {t.lower() for t in taken}
    candidate = name
    counter = 1
    while candidate.lower() in lowered:
        candidate = f'{name} ({counter})'
        counter += 1
    return candidate


class SessionAPI(QtCore.QObject):
    """
    Manages the active scope, its presets and always-on set, and runs applies.

    Presets are looked up in the active scope first and then in the shared pool.
    """

    def __init__(
            self,
            registry: ComponentRegistry,
            scopes: Optional[ScopeStore] = None,
            shared: Optional[PresetStore] = None,
            engine: Optional[ReconcileAPI] = None,
            state_writer: Optional[PersistentStateWriter] = None,
            self_id: Optional[str] = None,
            parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.registry = registry
        self.scopes = scopes or ScopeStore()
        self.shared = shared or PresetStore()
        self.engine = engine or ReconcileAPI(registry, self.scopes, state_writer=state_writer)
        self.self_id = self_id
        self._connected = False

        self._shared_presets: List[Preset] = self.shared.load_all()
        self.current: ScopeRecord = self.scopes.get_global()
        self.engine.set_scope(self.current)
        if self.self_id:
            self.ensure_always_on(self.self_id)

    @property
    def current_scope_id(self) -> int:
        return self.current.scope_id

    def _save(self) -> None:
        self.scopes.save(self.current)

    def connect_login(self) -> None:
        """Follow ``signals.loginOccurred``.

        Connect before any default-preset trigger so the scope is switched
        by the time the trigger runs.
        """
        if self._connected:
            return
        signals.loginOccurred.connect(self.login)
        self._connected = True

    def disconnect_login(self) -> None:
        if not self._connected:
            return
        signals.loginOccurred.disconnect(self.login)
        self._connected = False

    @QtCore.Slot(int, str, str)
    def login(self, scope_id: int, name: str, realm: str) -> None:
        """Switch to the scope of the identity that just logged in."""
        try:
            self.switch_scope(scope_id, name or None, realm or None)
        except status.ScopeNotFoundException:
            self.switch_scope(GLOBAL_SCOPE_ID)

    def switch_scope(self, scope_id: int, name: Optional[str] = None, realm: Optional[str] = None) -> ScopeRecord:
        """Make a scope active and keep the running system in its always-on set.

        With a name the scope is created or refreshed; without one the scope
        must already exist.

        Raises:
            status.ScopeNotFoundException: If the id is unknown and no name is given.
        """
        if scope_id == GLOBAL_SCOPE_ID:
            record = self.scopes.get_global()
        elif name is not None:
            record = self.scopes.get_or_create(scope_id, name, realm or '')
        else:
            record = self.scopes.get(scope_id)
            if record is None:
                raise status.ScopeNotFoundException(f'Scope {scope_id}')

        self.current = record
        self.engine.set_scope(record)
        if self.self_id:
            self.ensure_always_on(self.self_id)
        lib.settings['last_selected_scope_id'] = record.scope_id
        logging.info(f'Switched to: {record.label}')
        signals.scopeChanged.emit(record.scope_id)
        return record

    def delete_scope(self, scope_id: int) -> bool:
        """Delete a per-identity scope, switching to global if it was active."""
        if scope_id == self.current_scope_id:
            self.switch_scope(GLOBAL_SCOPE_ID)
        return self.scopes.delete(scope_id)

    # Presets

    def scope_presets(self) -> List[Preset]:
        return self.current.presets

    def shared_presets(self) -> List[Preset]:
        return list(self._shared_presets)

    def reload_shared_presets(self) -> None:
        self._shared_presets = self.shared.load_all()
        signals.presetsChanged.emit()

    def presets(self) -> List[Preset]:
        """Return the active scope's presets followed by the shared ones."""
        return list(self.current.presets) + self.shared_presets()

    def is_shared(self, preset: Preset) -> bool:
        return any(p.id == preset.id for p in self._shared_presets)

    def find_preset(self, name: str) -> Optional[Preset]:
        """Resolve a preset name, ignoring case. Scope presets win over shared ones."""
        if not name:
            return None
        return next((p for p in self.presets() if p.name.lower() == name.lower()), None)

    def get_preset(self, name: str) -> Preset:
        """Resolve a preset name.

        Raises:
            status.PresetNotFoundException: If no preset has that name.
        """
        preset = self.find_preset(name)
        if preset is None:
            raise status.PresetNotFoundException(f'"{name}"')
        return preset

    def add_preset(self, preset: Preset, shared: bool = False) -> Preset:
        """Add a preset, renaming it to ``name (n)`` if the name is taken.

        Args:
            preset: The preset to add.
            shared: Add it to the shared pool instead of the active scope.

        Raises:
            status.PresetSaveFailedException: If a shared preset cannot be written.
        """
        pool = self._shared_presets if shared else self.current.presets
        preset.name = unique_name(preset.name, [p.name for p in pool])

        if shared:
            self.shared.save(preset)
            self._shared_presets.append(preset)
            self._shared_presets.sort(key=lambda p: p.name.lower())
        else:
            self.current.presets.append(preset)
            self._save()

        logging.info(f'Added preset: {preset.name}')
        signals.presetsChanged.emit()
        return preset

    def update_preset(self, preset: Preset) -> None:
        """Persist changes made to a preset.

        Raises:
            status.PresetSaveFailedException: If a shared preset cannot be written.
        """
        preset.touch()
        if self.is_shared(preset):
            self.shared.save(preset)
        else:
            self._save()
        logging.info(f'Updated preset: {preset.name}')
        signals.presetsChanged.emit()

    def rename_preset(self, preset: Preset, name: str) -> None:
        """Rename a preset and move the active scope's pointers along with it."""
        old_name = preset.name
        preset.rename(name)
        if self.current.default_preset == old_name:
            self.current.default_preset = name
        if self.current.last_applied_preset == old_name:
            self.current.last_applied_preset = name
        if self.is_shared(preset):
            self._save()
        self.update_preset(preset)

    def delete_preset(self, preset: Preset) -> bool:
        """Remove a preset and clear the active scope's pointers to it.

        Returns:
            True if the preset was found and removed.
        """
        if self.is_shared(preset):
            self.shared.delete(preset)
            self._shared_presets = [p for p in self._shared_presets if p.id != preset.id]
        else:
            before = len(self.current.presets)
            self.current.presets = [p for p in self.current.presets if p.id != preset.id]
            if len(self.current.presets) == before:
                return False

        if self.current.default_preset == preset.name:
            self.current.default_preset = None
        if self.current.last_applied_preset == preset.name:
            self.current.last_applied_preset = None
        self._save()

        logging.info(f'Deleted preset: {preset.name}')
        signals.presetsChanged.emit()
        return True

    def duplicate_preset(self, source: Preset) -> Preset:
        return self.add_preset(source.copy(name=f'{source.name} (Copy)'), shared=self.is_shared(source))

    def create_preset_from_current(self, name: str, description: str = '') -> Preset:
        """Build an unsaved preset from the loaded components outside the always-on set."""
        components = {
            c.component_id for c in self.registry.list_installed()
            if c.loaded and c.component_id not in self.current.always_on
        }
        preset = Preset(name=name, description=description, components=components)
        logging.info(f'Created preset "{name}" with {len(components)} components')
        return preset

    def import_preset(self, source_scope_id: int, preset_name: str) -> Optional[Preset]:
        """Copy a preset from another scope into the active one."""
        preset = self.scopes.copy_preset_across_scopes(source_scope_id, preset_name)
        if preset is None:
            logging.warning(f'Preset "{preset_name}" not found in scope {source_scope_id}')
            return None
        return self.add_preset(preset)

    def last_applied_preset(self) -> Optional[Preset]:
        return self.find_preset(self.current.last_applied_preset or '')

    def set_default_preset(self, name: Optional[str]) -> None:
        self.current.default_preset = name or None
        if name:
            self.current.use_always_on_as_default = False
        self._save()

    def set_use_always_on_as_default(self, value: bool) -> None:
        self.current.use_always_on_as_default = value
        self._save()

    def set_apply_default_on_login(self, value: bool) -> None:
        self.current.apply_default_on_login = value
        self._save()

    def set_notification_mode(self, mode: NotificationMode) -> None:
        self.current.notification_mode = NotificationMode.parse(mode)
        self._save()

    # Always-on

    def always_on(self) -> set:
        return set(self.current.always_on)

    def is_always_on(self, component_id: str) -> bool:
        return component_id in self.current.always_on

    def add_always_on(self, component_id: str) -> bool:
        """Add a component to the always-on set and enable it if it is installed but unloaded.

        Returns:
            True if the set changed.
        """
        if component_id in self.current.always_on:
            return False
        self.current.always_on.add(component_id)
        self._save()

        component = self.registry.installed_by_id().get(component_id)
        if component is not None and not component.loaded:
            self.registry.send_command(Command.Enable, component_id)

        logging.info(f'Added always-on: {component_id}')
        signals.alwaysOnChanged.emit()
        return True

    def remove_always_on(self, component_id: str) -> bool:
        if component_id not in self.current.always_on:
            return False
        self.current.always_on.discard(component_id)
        self._save()
        logging.info(f'Removed always-on: {component_id}')
        signals.alwaysOnChanged.emit()
        return True

    def ensure_always_on(self, self_id: str) -> bool:
        """Keep the running system's own component in the active always-on set.

        Returns:
            True if it had to be added.
        """
        if self.is_always_on(self_id):
            return False
        logging.info(f'Adding {self_id} to the always-on set to prevent self-disable')
        return self.add_always_on(self_id)

    # Apply

    def apply(self, name: str) -> ApplyResult:
        """Apply a preset by name, blocking until done."""
        return self.engine.apply_preset(self.get_preset(name))

    def apply_async(self, name: str) -> AsyncWorker:
        return self.engine.apply_preset_async(self.get_preset(name))


def start_session(
        registry: ComponentRegistry,
        self_id: str,
        state_writer: Optional[PersistentStateWriter] = None,
        scope_id: Optional[int] = None,
        name: Optional[str] = None,
        realm: Optional[str] = None,
) -> SessionAPI:
    """Build a session: migrate old data, pick the scope and protect the running system.

    The session follows ``signals.loginOccurred`` from here on.

    Args:
        registry: The host's component registry.
        self_id: The running system's own component id.
        state_writer: Optional persistence capability of the host.
        scope_id: The identity already logged in, if any.
        name, realm: That identity's names.
    """
    scopes = ScopeStore()
    MigrationAPI(scopes).run()

    session = SessionAPI(registry, scopes=scopes, state_writer=state_writer, self_id=self_id)
    if scope_id is not None:
        session.switch_scope(scope_id, name, realm)
    else:
        last_id = lib.settings['last_selected_scope_id']
        if scopes.get(last_id) is None:
            last_id = GLOBAL_SCOPE_ID
        session.switch_scope(last_id)
    session.connect_login()
    return session
