# tests/test_session.py
"""
Unit-tests for PluginPresets.core.session
(covers scope switching, preset management, the always-on set and start_session).

Run with:
    python -m unittest tests.test_session
"""
import json
from pathlib import Path
from unittest.mock import patch

from PluginPresets.core.migration import MigrationAPI
from PluginPresets.core.registry import Command
from PluginPresets.core.scope import GLOBAL_SCOPE_ID, ScopeStore
from PluginPresets.core.session import SessionAPI, start_session, unique_name
from PluginPresets.core.trigger import DefaultPresetTrigger
from PluginPresets.settings import lib
from PluginPresets.settings.presets.lib import Preset, PresetStore
from PluginPresets.status import status
from PluginPresets.ui.actions import signals
from tests.base import BaseTestCase, FakeRegistry, capture_signal

SELF_ID = 'PluginPresets'


class UniqueNameTests(BaseTestCase):

    def test_free_name_is_kept(self):
        self.assertEqual(unique_name('Raid', ['Craft']), 'Raid')

    def test_taken_name_gets_counter(self):
        self.assertEqual(unique_name('Raid', ['raid']), 'Raid (1)')
        self.assertEqual(unique_name('Raid', ['Raid', 'Raid (1)']), 'Raid (2)')


class SessionTestCase(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        lib.settings['delay_between_commands'] = 0
        self.registry = FakeRegistry(loaded=[SELF_ID, 'a', 'b'], unloaded=['c'])
        self.session = SessionAPI(self.registry)


class ScopeSwitchTests(SessionTestCase):

    def test_starts_on_global(self):
        self.assertEqual(self.session.current_scope_id, GLOBAL_SCOPE_ID)
        self.assertIs(self.session.engine.scope, self.session.current)

    def test_switch_creates_scope(self):
        with capture_signal(signals.scopeChanged) as changes:
            record = self.session.switch_scope(42, 'Jane', 'Realm')

        self.assertEqual(changes, [(42,)])
        self.assertIs(self.session.current, record)
        self.assertIs(self.session.engine.scope, record)
        self.assertEqual(lib.settings['last_selected_scope_id'], 42)
        self.assertIsNotNone(ScopeStore().get(42))

    def test_switch_to_unknown_id_without_name_raises(self):
        with self.assertRaises(status.ScopeNotFoundException):
            self.session.switch_scope(99)
        self.assertTrue(self.session.current.is_global)

    def test_switch_to_known_id_without_name(self):
        self.session.switch_scope(42, 'Jane', 'Realm')
        self.session.switch_scope(GLOBAL_SCOPE_ID)
        record = self.session.switch_scope(42)
        self.assertEqual(record.display_name, 'Jane')

    def test_delete_active_scope_switches_to_global(self):
        self.session.switch_scope(42, 'Jane', 'Realm')
        self.assertTrue(self.session.delete_scope(42))
        self.assertTrue(self.session.current.is_global)

    def test_presets_are_scoped(self):
        self.session.add_preset(Preset(name='Global preset'))
        self.session.switch_scope(42, 'Jane', 'Realm')
        self.assertIsNone(self.session.find_preset('Global preset'))
        self.session.switch_scope(GLOBAL_SCOPE_ID)
        self.assertIsNotNone(self.session.find_preset('global PRESET'))


class PresetManagementTests(SessionTestCase):

    def test_add_renames_duplicates(self):
        first = self.session.add_preset(Preset(name='Raid'))
        second = self.session.add_preset(Preset(name='raid'))
        self.assertEqual(first.name, 'Raid')
        self.assertEqual(second.name, 'raid (1)')

    def test_add_persists_and_signals(self):
        with capture_signal(signals.presetsChanged) as changes:
            self.session.add_preset(Preset(name='Raid', components={'a'}))
        self.assertEqual(len(changes), 1)
        stored = ScopeStore().get_global().find_preset('Raid')
        self.assertEqual(stored.components, {'a'})

    def test_shared_presets(self):
        preset = self.session.add_preset(Preset(name='Shared'), shared=True)
        self.assertTrue(self.session.is_shared(preset))
        self.assertEqual([p.name for p in PresetStore().load_all()], ['Shared'])
        self.assertEqual(self.session.find_preset('shared'), preset)

        self.session.switch_scope(42, 'Jane', 'Realm')
        self.assertIsNotNone(self.session.find_preset('Shared'))

    def test_scope_preset_wins_over_shared(self):
        shared = self.session.add_preset(Preset(name='Raid'), shared=True)
        local = self.session.add_preset(Preset(name='Raid'))
        self.assertEqual(self.session.find_preset('raid'), local)
        self.assertNotEqual(local.id, shared.id)

    def test_get_preset_raises_when_missing(self):
        with self.assertRaises(status.PresetNotFoundException):
            self.session.get_preset('Ghost')

    def test_update_shared_preset_writes_file(self):
        preset = self.session.add_preset(Preset(name='Shared'), shared=True)
        preset.add_component('z')
        self.session.update_preset(preset)
        self.assertEqual(PresetStore().load_all()[0].components, {'z'})

    def test_rename_moves_pointers(self):
        preset = self.session.add_preset(Preset(name='Raid'))
        self.session.set_default_preset('Raid')
        self.session.current.last_applied_preset = 'Raid'

        self.session.rename_preset(preset, 'Dungeon')

        record = ScopeStore().get_global()
        self.assertEqual(record.default_preset, 'Dungeon')
        self.assertEqual(record.last_applied_preset, 'Dungeon')
        self.assertIsNotNone(record.find_preset('Dungeon'))

    def test_delete_clears_pointers(self):
        preset = self.session.add_preset(Preset(name='Raid'))
        self.session.set_default_preset('Raid')
        self.session.current.last_applied_preset = 'Raid'

        self.assertTrue(self.session.delete_preset(preset))

        self.assertIsNone(self.session.current.default_preset)
        self.assertIsNone(self.session.current.last_applied_preset)
        self.assertEqual(ScopeStore().get_global().presets, [])
        self.assertFalse(self.session.delete_preset(preset))

    def test_delete_shared(self):
        preset = self.session.add_preset(Preset(name='Shared'), shared=True)
        self.assertTrue(self.session.delete_preset(preset))
        self.assertEqual(PresetStore().load_all(), [])
        self.assertEqual(self.session.shared_presets(), [])

    def test_delete_shared_when_file_is_locked(self):
        preset = self.session.add_preset(Preset(name='Shared'), shared=True)
        self.session.set_default_preset('Shared')
        self.session.current.last_applied_preset = 'Shared'

        with patch.object(Path, 'unlink', side_effect=PermissionError('locked')):
            self.assertTrue(self.session.delete_preset(preset))

        self.assertEqual(self.session.shared_presets(), [])
        self.assertIsNone(self.session.current.default_preset)
        self.assertIsNone(self.session.current.last_applied_preset)

    def test_duplicate(self):
        source = self.session.add_preset(Preset(name='Raid', components={'a'}))
        clone = self.session.duplicate_preset(source)
        self.assertEqual(clone.name, 'Raid (Copy)')
        self.assertNotEqual(clone.id, source.id)
        self.assertEqual(clone.components, {'a'})
        self.assertEqual(self.session.duplicate_preset(source).name, 'Raid (Copy) (1)')

    def test_create_from_current_skips_always_on(self):
        self.session.ensure_always_on(SELF_ID)
        preset = self.session.create_preset_from_current('Now', 'snapshot')
        self.assertEqual(preset.components, {'a', 'b'})
        self.assertEqual(preset.description, 'snapshot')
        self.assertIsNone(self.session.find_preset('Now'))

    def test_import_from_other_scope(self):
        self.session.switch_scope(42, 'Jane', 'Realm')
        source = self.session.add_preset(Preset(name='Raid', components={'a'}))
        self.session.switch_scope(GLOBAL_SCOPE_ID)

        imported = self.session.import_preset(42, 'Raid')

        self.assertIsNotNone(imported)
        self.assertNotEqual(imported.id, source.id)
        self.assertIsNotNone(self.session.find_preset('Raid'))
        self.assertIsNone(self.session.import_preset(42, 'Ghost'))

    def test_last_applied_preset(self):
        self.session.add_preset(Preset(name='Raid', components={'a'}))
        self.assertIsNone(self.session.last_applied_preset())
        self.session.apply('raid')
        self.assertEqual(self.session.last_applied_preset().name, 'Raid')
        self.assertEqual(self.registry.loaded, {'a'})

    def test_default_preset_clears_always_on_default(self):
        self.session.set_use_always_on_as_default(True)
        self.session.set_default_preset('Raid')
        self.assertFalse(self.session.current.use_always_on_as_default)
        self.session.set_default_preset(None)
        self.assertIsNone(self.session.current.default_preset)


class AlwaysOnTests(SessionTestCase):

    def test_add_enables_installed_unloaded(self):
        with capture_signal(signals.alwaysOnChanged) as changes:
            self.assertTrue(self.session.add_always_on('c'))
        self.assertEqual(len(changes), 1)
        self.assertIn((Command.Enable, 'c'), self.registry.commands)
        self.assertIn('c', self.registry.loaded)
        self.assertEqual(ScopeStore().get_global().always_on, {'c'})

    def test_add_loaded_or_missing_sends_nothing(self):
        self.session.add_always_on('a')
        self.session.add_always_on('ghost')
        self.assertEqual(self.registry.commands, [])
        self.assertFalse(self.session.add_always_on('a'))

    def test_remove(self):
        self.session.add_always_on('a')
        self.assertTrue(self.session.remove_always_on('a'))
        self.assertFalse(self.session.remove_always_on('a'))
        self.assertEqual(self.session.always_on(), set())

    def test_ensure_always_on_is_idempotent(self):
        self.assertTrue(self.session.ensure_always_on(SELF_ID))
        self.assertFalse(self.session.ensure_always_on(SELF_ID))
        self.assertEqual(self.session.always_on(), {SELF_ID})

    def test_self_survives_any_apply(self):
        self.session.ensure_always_on(SELF_ID)
        self.session.add_preset(Preset(name='Empty'))
        self.session.apply('Empty')
        self.assertEqual(self.registry.loaded, {SELF_ID})


class StartSessionTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        lib.settings['delay_between_commands'] = 0

    def start(self, registry: FakeRegistry, **kwargs) -> SessionAPI:
        session = start_session(registry, SELF_ID, **kwargs)
        self.addCleanup(session.disconnect_login)
        return session

    def test_start_migrates_and_protects_self(self):
        lib.settings.legacy_always_on_path.write_text(json.dumps(['legacy']), encoding='utf-8')
        registry = FakeRegistry(loaded=[SELF_ID])

        session = self.start(registry)

        self.assertTrue(MigrationAPI(session.scopes).is_complete())
        self.assertEqual(session.always_on(), {'legacy', SELF_ID})

    def test_start_in_logged_in_scope(self):
        registry = FakeRegistry(loaded=[SELF_ID])
        session = self.start(registry, scope_id=42, name='Jane', realm='Realm')
        self.assertEqual(session.current_scope_id, 42)
        self.assertIn(SELF_ID, session.always_on())

    def test_start_restores_last_selected_scope(self):
        ScopeStore().get_or_create(42, 'Jane', 'Realm')
        lib.settings['last_selected_scope_id'] = 42
        session = self.start(FakeRegistry())
        self.assertEqual(session.current_scope_id, 42)

    def test_start_with_stale_last_selected_scope(self):
        lib.settings['last_selected_scope_id'] = 99
        session = self.start(FakeRegistry())
        self.assertTrue(session.current.is_global)

    def test_self_survives_apply_after_scope_switch(self):
        registry = FakeRegistry(loaded=[SELF_ID, 'a'])
        session = self.start(registry)

        session.switch_scope(42, 'Alice', 'Realm')
        session.engine.apply_always_on_only()

        self.assertIn(SELF_ID, session.always_on())
        self.assertIn(SELF_ID, registry.loaded)
        self.assertNotIn('a', registry.loaded)

    def test_login_switches_scope_before_default_is_applied(self):
        registry = FakeRegistry(loaded=[SELF_ID, 'a'], unloaded=['b'])
        session = self.start(registry)

        session.switch_scope(42, 'Jane', 'Realm')
        session.add_preset(Preset(name='Raid', components={'b'}))
        session.set_default_preset('Raid')
        session.remove_always_on(SELF_ID)
        session.switch_scope(GLOBAL_SCOPE_ID)

        trigger = DefaultPresetTrigger(session, asynchronous=False)
        self.addCleanup(trigger.disconnect_login)

        with capture_signal(signals.scopeChanged) as changes:
            signals.loginOccurred.emit(42, 'Jane', 'Realm')

        self.assertEqual(changes, [(42,)])
        self.assertEqual(session.current_scope_id, 42)
        self.assertTrue(trigger.triggered)
        self.assertEqual(registry.loaded, {SELF_ID, 'b'})

    def test_login_with_unknown_id_and_no_name_uses_global(self):
        session = self.start(FakeRegistry(loaded=[SELF_ID]), scope_id=42, name='Jane', realm='Realm')
        signals.loginOccurred.emit(77, '', '')
        self.assertTrue(session.current.is_global)
        self.assertIn(SELF_ID, session.always_on())
