# tests/test_presets.py
"""
Unit-tests for PluginPresets.settings.presets.lib
(covers file name sanitising, the Preset model and PresetStore).

Run with:
    python -m unittest tests.test_presets
"""
import json
from pathlib import Path
from unittest import mock

from PluginPresets.settings import lib
from PluginPresets.settings.presets.lib import (
    PRESET_FORMAT,
    Preset,
    PresetStore,
    sanitize_file_name,
)
from PluginPresets.status import status
from tests.base import BaseTestCase


class SanitizeFileNameTests(BaseTestCase):

    def test_reserved_characters_are_replaced(self):
        self.assertEqual(sanitize_file_name('a/b\\c:d*e?f"g<h>i|j'), 'a_b_c_d_e_f_g_h_i_j')

    def test_runs_collapse(self):
        self.assertEqual(sanitize_file_name('raid::night'), 'raid_night')

    def test_trailing_dots_and_spaces_are_stripped(self):
        self.assertEqual(sanitize_file_name('Raid. . '), 'Raid')

    def test_empty_uses_fallback(self):
        self.assertEqual(sanitize_file_name(''), 'preset')
        self.assertEqual(sanitize_file_name('...'), 'preset')
        self.assertEqual(sanitize_file_name('', fallback='scope_1'), 'scope_1')

    def test_control_characters_are_replaced(self):
        self.assertEqual(sanitize_file_name('tab\there'), 'tab_here')


class PresetModelTests(BaseTestCase):

    def test_mutations_touch_last_modified(self):
        preset = Preset(name='Raid')
        preset.last_modified = preset.last_modified.replace(year=2000)

        for mutate in (
                lambda: preset.rename('Raid 2'),
                lambda: preset.set_description('desc'),
                lambda: preset.add_component('a'),
                lambda: preset.remove_component('a'),
                lambda: preset.set_components(['b', 'c']),
        ):
            preset.last_modified = preset.last_modified.replace(year=2000)
            mutate()
            self.assertNotEqual(preset.last_modified.year, 2000)

    def test_rename_rejects_empty(self):
        with self.assertRaises(ValueError):
            Preset(name='Raid').rename('')

    def test_copy_has_fresh_identity(self):
        preset = Preset(name='Raid', description='d', components={'a', 'b'})
        clone = preset.copy()
        self.assertNotEqual(clone.id, preset.id)
        self.assertEqual(clone.name, preset.name)
        self.assertEqual(clone.components, preset.components)
        clone.add_component('c')
        self.assertNotIn('c', preset.components)

    def test_dict_round_trip_keeps_fields(self):
        preset = Preset(name='Raid', description='d', components={'b', 'a'})
        data = preset.to_dict()
        self.assertEqual(data['components'], ['a', 'b'])
        self.assertEqual(Preset.from_dict(data), preset)

    def test_from_dict_rejects_bad_records(self):
        for data in ([], {}, {'id': 'x'}, {'id': 'x', 'name': 'n', 'components': 'abc'}):
            with self.assertRaises(ValueError):
                Preset.from_dict(data)

    def test_file_name_embeds_id(self):
        preset = Preset(name='Raid: Night')
        self.assertEqual(preset.file_name, f'Raid_ Night_{preset.id}.{PRESET_FORMAT}')


class PresetStoreTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.store = PresetStore()

    def test_defaults_to_shared_presets_dir(self):
        self.assertEqual(self.store.directory, lib.settings.shared_presets_dir)
        self.assertTrue(self.store.directory.is_dir())

    def test_save_and_load(self):
        self.store.save(Preset(name='beta', components={'x'}))
        self.store.save(Preset(name='Alpha', components={'y'}))
        presets = self.store.load_all()
        self.assertEqual([p.name for p in presets], ['Alpha', 'beta'])
        self.assertEqual(presets[1].components, {'x'})

    def test_rename_replaces_old_file(self):
        preset = Preset(name='Old')
        old_path = self.store.save(preset)
        preset.rename('New')
        new_path = self.store.save(preset)

        self.assertFalse(old_path.exists())
        self.assertTrue(new_path.exists())
        files = list(self.store.directory.glob(f'*.{PRESET_FORMAT}'))
        self.assertEqual(len(files), 1)

    def test_malformed_records_are_skipped(self):
        self.store.save(Preset(name='Good'))
        (self.store.directory / 'broken.json').write_text('{not json', encoding='utf-8')
        (self.store.directory / 'empty_record.json').write_text(json.dumps({'name': 'x'}), encoding='utf-8')

        presets = self.store.load_all()
        self.assertEqual([p.name for p in presets], ['Good'])

    def test_delete_removes_all_files_with_id(self):
        preset = Preset(name='Raid')
        self.store.save(preset)
        # A leftover from a crash between write and cleanup
        (self.store.directory / f'Stale_{preset.id}.json').write_text(
            json.dumps(preset.to_dict()), encoding='utf-8')

        self.assertEqual(self.store.delete(preset), 2)
        self.assertEqual(self.store.load_all(), [])

    def test_delete_missing_returns_zero(self):
        self.assertEqual(self.store.delete(Preset(name='Ghost')), 0)

    def test_save_failure_raises(self):
        with mock.patch.object(Path, 'open', side_effect=PermissionError('denied')):
            with self.assertRaises(status.PresetSaveFailedException):
                self.store.save(Preset(name='Raid'))

    def test_missing_directory_loads_empty(self):
        store = PresetStore(self.data_dir / 'elsewhere')
        store.directory.rmdir()
        self.assertEqual(store.load_all(), [])

    def test_delete_locked_file_is_logged(self):
        preset = Preset(name='Raid')
        path = self.store.save(preset)

        with mock.patch.object(Path, 'unlink', side_effect=PermissionError('locked')):
            with self.assertLogs(level='ERROR') as logs:
                self.assertEqual(self.store.delete(preset), 0)

        self.assertTrue(path.exists())
        self.assertIn('locked', logs.output[0])
