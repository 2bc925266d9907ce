"""One-time upgrade of older on-disk layouts into the current scope records.

Two older generations are understood:

- The per-identity folder layout: ``characters/<numeric id>/`` folders, each with a
  ``presets/`` folder, an ``always-on.json`` list and a ``config.json`` that refers to
  presets by GUID. ``characters.json`` maps ids to names, and a ``global/`` folder or a
  single ``global.json`` file hold the global data.
- The flat layout: a ``presets/`` folder and an ``always-on.json`` file directly in the
  data directory.

Migration runs once. The marker file is written only after the whole pass returns,
so a crash midway causes a retry on the next start. Imported presets keep their
legacy id and are merged by id, so a retry never duplicates them.
"""
import datetime
import json
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .scope import GLOBAL_SCOPE_ID, NotificationMode, ScopeRecord, ScopeStore
from ..settings import lib
from ..settings.presets.lib import Preset, now

_FRACTION = re.compile(r'(\.\d{6})\d+')


def _parse_legacy_datetime(value: Any) -> datetime.datetime:
    """Parse the timestamps older versions wrote (up to 7 fractional digits, optional offset)."""
    if not value:
        return now()
    text = _FRACTION.sub(r'\1', str(value)).replace('Z', '+00:00')
    try:
        dt = datetime.datetime.fromisoformat(text)
    except ValueError:
        logging.debug(f'Unparseable legacy timestamp "{value}", using current time')
        return now()
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def _read_json(path: Path) -> Any:
    with path.open('r', encoding='utf-8') as f:
        return json.load(f)


def read_legacy_preset(path: Path) -> Preset:
    """Read a preset file written by an older version.

    Older files carry ``Id, Name, Description, EnabledPlugins`` (or ``Plugins``),
    ``CreatedAt`` and ``LastModified``. A file without an id gets one derived from its
    path so repeated imports agree on it.

    Raises:
        ValueError: If the file is not a preset record.
        OSError: If the file cannot be read.
    """
    data = _read_json(path)
    if not isinstance(data, dict) or not data.get('Name'):
        raise ValueError(f'Not a preset record: {path.name}')
    components = data.get('EnabledPlugins')
    if components is None:
        components = data.get('Plugins') or []
    preset_id = data.get('Id') or str(uuid.uuid5(uuid.NAMESPACE_URL, path.resolve().as_posix()))
    return Preset(
        id=str(preset_id).lower(),
        name=str(data['Name']),
        description=str(data.get('Description') or ''),
        components={str(c) for c in components},
        created_at=_parse_legacy_datetime(data.get('CreatedAt')),
        last_modified=_parse_legacy_datetime(data.get('LastModified')),
    )


def read_legacy_always_on(path: Path) -> Set[str]:
    """Read an always-on list written by an older version.

    Raises:
        ValueError: If the file does not contain a list.
    """
    data = _read_json(path)
    if not isinstance(data, list):
        raise ValueError(f'Always-on file is not a list: {path}')
    return {str(c) for c in data}


def resolve_legacy_preset_name(folder: Path, legacy_id: str) -> Optional[str]:
    """Find the name of a legacy preset by its GUID.

    Older versions embedded the GUID in the preset file name, so only files whose
    name ends with the GUID are opened. Unreadable candidates are skipped.

    Args:
        folder: The legacy ``presets`` folder.
        legacy_id: The GUID to look for.

    Returns:
        The preset name, or None if no file matches.
    """
    if not folder.is_dir() or not legacy_id:
        return None
    wanted = str(legacy_id).lower()
    for path in sorted(folder.glob('*.json')):
        if not path.stem.lower().endswith(wanted):
            continue
        try:
            data = _read_json(path)
        except (OSError, ValueError) as ex:
            logging.debug(f'Skipping unreadable legacy preset {path.name}: {ex}')
            continue
        if isinstance(data, dict) and str(data.get('Id', '')).lower() == wanted:
            return data.get('Name') or None
    return None


def merge_into(record: ScopeRecord, presets: List[Preset], always_on: Set[str]) -> Tuple[int, int]:
    """Merge presets (upserted by id) and always-on entries into a record.

    Returns:
        The number of presets added and of always-on entries added.
    """
    known = {p.id: i for i, p in enumerate(record.presets)}
    added = 0
    for preset in presets:
        if preset.id in known:
            record.presets[known[preset.id]] = preset
            continue
        known[preset.id] = len(record.presets)
        record.presets.append(preset)
        added += 1
    before = len(record.always_on)
    record.always_on |= always_on
    return added, len(record.always_on) - before


class MigrationAPI:
    """
    Upgrades older layouts into the :class:`ScopeStore` once per installation.
    """

    def __init__(self, scopes: ScopeStore, paths: Optional[lib.ConfigPaths] = None) -> None:
        self.scopes = scopes
        self.paths = paths or lib.settings

    def is_complete(self) -> bool:
        return self.paths.migration_marker.exists()

    def run(self, force: bool = False) -> bool:
        """Run the migration unless the marker says it already ran.

        Args:
            force: Ignore the marker.

        Returns:
            True if the migration pass ran.
        """
        if self.is_complete() and not force:
            logging.debug('Migration marker found, skipping migration')
            return False

        logging.info('Checking for data to migrate...')
        self.migrate_current_structure()
        self.migrate_legacy_structure()
        self.mark_complete()
        return True

    def mark_complete(self) -> None:
        self.paths.migration_marker.write_text(datetime.datetime.now().isoformat(), encoding='utf-8')
        logging.info('Migration complete')

    def _read_names(self) -> Dict[int, Tuple[str, str]]:
        names: Dict[int, Tuple[str, str]] = {}
        path = self.paths.legacy_characters_file
        if not path.exists():
            return names
        try:
            for item in _read_json(path) or []:
                names[int(item['ContentId'])] = (str(item.get('Name') or ''), str(item.get('World') or ''))
        except (OSError, ValueError, TypeError, KeyError) as ex:
            logging.warning(f'Failed to read {path.name} for migration: {ex}')
        return names

    def migrate_folder(self, folder: Path) -> Optional[ScopeRecord]:
        """Rebuild a scope record from one legacy per-identity folder.

        Returns:
            The record, or None if the folder holds no presets and no always-on entries.
        """
        presets_dir = folder / 'presets'
        always_on_path = folder / 'always-on.json'
        config_path = folder / 'config.json'

        record = ScopeRecord(scope_id=GLOBAL_SCOPE_ID)

        if presets_dir.is_dir():
            for path in sorted(presets_dir.glob('*.json')):
                try:
                    record.presets.append(read_legacy_preset(path))
                except (OSError, ValueError, TypeError) as ex:
                    logging.warning(f'Failed to migrate preset {path}: {ex}')

        if always_on_path.exists():
            try:
                record.always_on = read_legacy_always_on(always_on_path)
            except (OSError, ValueError) as ex:
                logging.warning(f'Failed to migrate always-on {always_on_path}: {ex}')

        if config_path.exists():
            try:
                config = _read_json(config_path)
                if config.get('DefaultPresetId'):
                    record.default_preset = resolve_legacy_preset_name(presets_dir, config['DefaultPresetId'])
                if config.get('LastAppliedPresetId'):
                    record.last_applied_preset = resolve_legacy_preset_name(
                        presets_dir, config['LastAppliedPresetId'])
                if 'NotificationMode' in config:
                    record.notification_mode = NotificationMode.parse(config['NotificationMode'])
            except (OSError, ValueError, TypeError, AttributeError) as ex:
                logging.warning(f'Failed to migrate config {config_path}: {ex}')

        if not record.presets and not record.always_on:
            return None
        return record

    def _merge_record(self, target: ScopeRecord, source: ScopeRecord) -> None:
        merge_into(target, source.presets, source.always_on)
        if source.default_preset and not target.default_preset:
            target.default_preset = source.default_preset
        if source.last_applied_preset and not target.last_applied_preset:
            target.last_applied_preset = source.last_applied_preset
        target.notification_mode = source.notification_mode

    def migrate_current_structure(self) -> int:
        """Import the per-identity folder layout.

        Returns:
            The number of per-identity records written.
        """
        global_record = self.scopes.get_global()
        global_changed = False

        if self.paths.legacy_global_file.exists():
            try:
                data = _read_json(self.paths.legacy_global_file)
                presets = []
                for item in data.get('Presets') or []:
                    try:
                        presets.append(self._preset_from_record(item))
                    except (ValueError, TypeError) as ex:
                        logging.warning(f'Failed to migrate a preset from global.json: {ex}')
                merge_into(global_record, presets, {str(c) for c in data.get('AlwaysOn') or []})
                global_changed = True
                logging.info('Migrated global.json into the global scope')
            except (OSError, ValueError, TypeError, AttributeError) as ex:
                logging.warning(f'Failed to migrate global.json: {ex}')

        if self.paths.legacy_global_dir.is_dir():
            data = self.migrate_folder(self.paths.legacy_global_dir)
            if data is not None:
                self._merge_record(global_record, data)
                global_changed = True
                logging.info('Migrated global folder into the global scope')

        if global_changed:
            self.scopes.save(global_record)

        count = 0
        names = self._read_names()
        characters_dir = self.paths.legacy_characters_dir
        if not characters_dir.is_dir():
            return count

        for folder in sorted(p for p in characters_dir.iterdir() if p.is_dir()):
            try:
                scope_id = int(folder.name)
            except ValueError:
                continue
            if scope_id == GLOBAL_SCOPE_ID:
                continue
            try:
                data = self.migrate_folder(folder)
                if data is None:
                    continue
                name, realm = names.get(scope_id, (f'Character_{scope_id}', ''))
                existing = self.scopes.get(scope_id)
                if existing is not None:
                    self._merge_record(existing, data)
                    self.scopes.save(existing)
                else:
                    data.scope_id = scope_id
                    data.display_name = name
                    data.realm_name = realm
                    self.scopes.add(data)
                count += 1
                logging.info(f'Migrated scope: {name}')
            except (OSError, ValueError, TypeError) as ex:
                logging.warning(f'Failed to migrate folder {folder}: {ex}')
        return count

    @staticmethod
    def _preset_from_record(item: Dict[str, Any]) -> Preset:
        if not isinstance(item, dict) or not item.get('Name'):
            raise ValueError('Not a preset record')
        components = item.get('EnabledPlugins')
        if components is None:
            components = item.get('Plugins') or []
        return Preset(
            id=str(item.get('Id') or uuid.uuid5(uuid.NAMESPACE_URL, f'global.json/{item["Name"]}')).lower(),
            name=str(item['Name']),
            description=str(item.get('Description') or ''),
            components={str(c) for c in components},
            created_at=_parse_legacy_datetime(item.get('CreatedAt')),
            last_modified=_parse_legacy_datetime(item.get('LastModified')),
        )

    def migrate_legacy_structure(self) -> bool:
        """Import the flat layout into the global record.

        Presets and always-on entries are checked separately: each is imported only
        while the global record has none of that kind, so existing data is never
        overwritten and legacy always-on entries are not lost when the folder layout
        only produced presets.

        Returns:
            True if anything was imported.
        """
        presets_dir = self.paths.legacy_presets_dir
        always_on_path = self.paths.legacy_always_on_path
        if not presets_dir.is_dir() and not always_on_path.exists():
            return False

        logging.info('Found legacy flat structure')
        record = self.scopes.get_global()
        changed = False

        if presets_dir.is_dir() and not record.presets:
            presets = []
            for path in sorted(presets_dir.glob('*.json')):
                try:
                    presets.append(read_legacy_preset(path))
                except (OSError, ValueError, TypeError) as ex:
                    logging.warning(f'Failed to migrate legacy preset {path}: {ex}')
            added, _ = merge_into(record, presets, set())
            changed |= added > 0
            logging.info(f'Added {added} presets from the legacy structure')

        if always_on_path.exists() and not record.always_on:
            try:
                _, added = merge_into(record, [], read_legacy_always_on(always_on_path))
                changed |= added > 0
            except (OSError, ValueError) as ex:
                logging.warning(f'Failed to migrate legacy always-on: {ex}')

        if changed:
            self.scopes.save(record)
        return changed
