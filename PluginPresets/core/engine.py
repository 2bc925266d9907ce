"""Reconciliation engine: make the host's loaded components match a preset.

The desired state of an apply is the *effective set*: the preset's components plus
the active scope's always-on set. The engine diffs it against the host's
installed components, disables what should not be loaded, then enables what
is missing. Each command is confirmed by polling the host until the component
reports the expected state or the confirmation timeout elapses; a timeout is
logged and the apply carries on.

Only one apply runs at a time. The current :class:`ApplyState` is published
through :attr:`ReconcileAPI.stateChanged` and mirrored to
``signals.applyStateChanged``.
"""
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from PySide6 import QtCore

from .notify import notify
from .registry import (
    Command,
    ComponentRegistry,
    InstalledComponent,
    PersistentStateWriter,
    UnavailableStateWriter,
)
from .scope import ScopeRecord, ScopeStore
from .worker import AsyncWorker, await_condition, start_asynchronous
from ..settings import lib
from ..settings.presets.lib import Preset
from ..status import status
from ..ui.actions import signals

ALWAYS_ON_ONLY_NAME = 'Always-On Only'
ROLLBACK_NAME = 'Rollback'


@dataclass
class ApplyState:
    running: bool = False
    status: str = ''
    progress: float = 0.0


@dataclass
class ComponentChange:
    component_id: str
    display_name: str
    is_always_on: bool = False


@dataclass
class PresetPreview:
    """What an apply would do, without doing it."""
    to_enable: List[ComponentChange] = field(default_factory=list)
    to_disable: List[ComponentChange] = field(default_factory=list)
    no_change: List[ComponentChange] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_enable or self.to_disable)


@dataclass
class ApplyResult:
    name: str
    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)


def effective_set(components: Iterable[str], always_on: Iterable[str]) -> Set[str]:
    """Return the union of a preset's components and the always-on set."""
    return set(components) | set(always_on)


def compute_preview(
        components: Iterable[str],
        always_on: Iterable[str],
        installed: Dict[str, InstalledComponent],
) -> PresetPreview:
    """Classify installed components against the effective set.

    Every installed component lands in at most one of ``to_enable``, ``to_disable``
    and ``no_change``; components that are neither loaded nor wanted are left out.
    Wanted components that are not installed are listed in ``missing``.

    Args:
        components: The preset's components.
        always_on: The scope's always-on set.
        installed: Installed components by id.
    """
    always_on = set(always_on)
    wanted = effective_set(components, always_on)
    preview = PresetPreview()

    for component_id in sorted(installed):
        component = installed[component_id]
        change = ComponentChange(component_id, component.name, component_id in always_on)
        should_load = component_id in wanted
        if component.loaded and not should_load:
            preview.to_disable.append(change)
        elif not component.loaded and should_load:
            preview.to_enable.append(change)
        elif component.loaded and should_load:
            preview.no_change.append(change)

    preview.missing = sorted(c for c in wanted if c not in installed)
    return preview


class ReconcileAPI(QtCore.QObject):
    """
    Applies presets to the host through a :class:`ComponentRegistry`.

    The blocking ``apply_*`` methods are meant to run on a worker thread; the
    ``*_async`` variants start one. A second apply while one is running raises
    :class:`status.ApplyInProgressException`.
    """
    stateChanged = QtCore.Signal(object)  # ApplyState
    applyFinished = QtCore.Signal(object)  # ApplyResult
    applyFailed = QtCore.Signal(str)

    def __init__(
            self,
            registry: ComponentRegistry,
            scopes: ScopeStore,
            state_writer: Optional[PersistentStateWriter] = None,
            sleep: Callable[[float], None] = time.sleep,
            parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.registry = registry
        self.scopes = scopes
        self.state_writer = state_writer or UnavailableStateWriter()
        self.sleep = sleep

        self.scope: ScopeRecord = scopes.get_global()
        self.rollback_snapshot: Optional[Preset] = None

        self._lock = threading.Lock()
        self._state = ApplyState()

    @property
    def state(self) -> ApplyState:
        return dataclasses.replace(self._state)

    @property
    def is_applying(self) -> bool:
        return self._state.running

    def set_scope(self, record: ScopeRecord) -> None:
        self.scope = record

    def _set_state(self, running: bool, status_text: str, progress: float) -> None:
        self._state = ApplyState(running=running, status=status_text, progress=progress)
        state = self.state
        self.stateChanged.emit(state)
        signals.applyStateChanged.emit(state)

    def effective_set(self, preset: Preset) -> Set[str]:
        return effective_set(preset.components, self.scope.always_on)

    def preview(self, preset: Preset) -> PresetPreview:
        """Return what applying the preset would change, without issuing commands."""
        return compute_preview(preset.components, self.scope.always_on, self.registry.installed_by_id())

    def missing_components(self, preset: Preset) -> List[str]:
        """Return the preset's components that are not installed."""
        installed = self.registry.installed_by_id()
        return sorted(c for c in preset.components if c not in installed)

    def apply_preset(self, preset: Preset) -> ApplyResult:
        """Apply a preset and record it as the scope's last applied preset."""
        return self._run(preset, always_on_only=False)

    def apply_always_on_only(self) -> ApplyResult:
        """Disable everything outside the always-on set."""
        return self._run(Preset(name=ALWAYS_ON_ONLY_NAME), always_on_only=True)

    def rollback(self) -> Optional[ApplyResult]:
        """Restore the components that were loaded before the last apply.

        The last-applied pointer is left alone and the snapshot is kept.

        Returns:
            The result, or None if there is nothing to roll back to.
        """
        if self.rollback_snapshot is None:
            logging.warning('No rollback snapshot available')
            return None
        return self._run(self.rollback_snapshot, always_on_only=False, is_rollback=True)

    def apply_preset_async(self, preset: Preset) -> AsyncWorker:
        return start_asynchronous(self.apply_preset, preset)

    def apply_always_on_only_async(self) -> AsyncWorker:
        return start_asynchronous(self.apply_always_on_only)

    def rollback_async(self) -> AsyncWorker:
        return start_asynchronous(self.rollback)

    def _run(self, preset: Preset, always_on_only: bool, is_rollback: bool = False) -> ApplyResult:
        if not self._lock.acquire(blocking=False):
            raise status.ApplyInProgressException(f'Cannot apply "{preset.name}" now.')

        scope = self.scope
        try:
            self._set_state(True, 'Preparing...', 0.0)
            signals.presetAboutToBeApplied.emit(preset.name)
            logging.info(f'Applying preset: {preset.name}')
            try:
                result = self._reconcile(preset, scope, capture_snapshot=not is_rollback)
            except status.BaseStatusException as ex:
                notify(scope.notification_mode, f'Failed: {ex}', is_error=True)
                self.applyFailed.emit(str(ex))
                raise
            except Exception as ex:
                notify(scope.notification_mode, f'Failed: {ex}', is_error=True)
                self.applyFailed.emit(str(ex))
                raise status.ApplyFailedException(f'"{preset.name}": {ex}') from ex

            if not is_rollback:
                scope.last_applied_preset = None if always_on_only else preset.name
                scope.last_applied_was_always_on_only = always_on_only
                self.scopes.save(scope)

            notify(scope.notification_mode, self._summary(result, always_on_only, is_rollback))
            logging.info(
                f'Applied "{preset.name}": {len(result.enabled)} enabled, {len(result.disabled)} disabled')
            signals.presetApplied.emit(preset.name)
            self.applyFinished.emit(result)
            return result
        finally:
            self._set_state(False, '', 0.0)
            self._lock.release()

    @staticmethod
    def _summary(result: ApplyResult, always_on_only: bool, is_rollback: bool) -> str:
        if always_on_only:
            head = 'Applied always-on only mode'
        elif is_rollback:
            head = 'Rolled back to the previous state'
        else:
            head = f'Applied \'{result.name}\''

        if not lib.settings['verbose_notifications']:
            return head

        text = f'{head} ({len(result.enabled)} enabled, {len(result.disabled)} disabled)'
        if result.missing:
            text += f'. Missing: {", ".join(result.missing)}'
        if result.timed_out:
            text += f'. Not confirmed: {", ".join(result.timed_out)}'
        return text

    def _reconcile(self, preset: Preset, scope: ScopeRecord, capture_snapshot: bool) -> ApplyResult:
        always_on = set(scope.always_on)
        wanted = effective_set(preset.components, always_on)
        installed = self.registry.installed_by_id()

        to_disable = [installed[c] for c in sorted(installed) if installed[c].loaded and c not in wanted]
        to_enable = [installed[c] for c in sorted(wanted) if c in installed and not installed[c].loaded]

        result = ApplyResult(name=preset.name)
        result.missing = sorted(c for c in wanted if c not in installed)
        for component_id in result.missing:
            logging.info(f'Component "{component_id}" of "{preset.name}" is not installed')

        if capture_snapshot and lib.settings['rollback_enabled']:
            self.rollback_snapshot = Preset(
                name=ROLLBACK_NAME,
                description=f'Components loaded before applying "{preset.name}"',
                components={c for c, v in installed.items() if v.loaded and c not in always_on},
            )

        total = len(to_disable) + len(to_enable)
        current = 0
        for component in to_disable:
            current += 1
            self._set_state(True, f'Disabling {component.name}...', current / total)
            if not self._change(component, enabled=False):
                result.timed_out.append(component.component_id)
            result.disabled.append(component.component_id)

        for component in to_enable:
            current += 1
            self._set_state(True, f'Enabling {component.name}...', current / total)
            if not self._change(component, enabled=True):
                result.timed_out.append(component.component_id)
            result.enabled.append(component.component_id)

        return result

    def _send(self, component: InstalledComponent, enabled: bool) -> None:
        if lib.settings['experimental_persistence'] and self.state_writer.available:
            if self.state_writer.set_state(component, enabled):
                return
            logging.warning(f'Falling back to a command for {component.name}')
        command = Command.Enable if enabled else Command.Disable
        self.registry.send_command(command, component.component_id)

    def _change(self, component: InstalledComponent, enabled: bool) -> bool:
        """Issue one command, wait for confirmation, then let the host settle.

        A component that vanishes from the registry is never confirmed.

        Returns:
            True if the component reached the expected state in time.
        """
        self._send(component, enabled)

        def reached() -> bool:
            current = self.registry.installed_by_id().get(component.component_id)
            return current is not None and current.loaded == enabled

        confirmed = await_condition(
            reached,
            lib.settings['poll_interval'] / 1000.0,
            lib.settings['confirm_timeout'] / 1000.0,
            sleep=self.sleep,
        )
        if not confirmed:
            state = 'loaded' if enabled else 'unloaded'
            logging.warning(f'Component {component.component_id} was not {state} within the timeout')

        self.sleep(lib.settings['delay_between_commands'] / 1000.0)
        return confirmed
