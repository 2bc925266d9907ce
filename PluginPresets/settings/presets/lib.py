"""Preset model and the file-per-preset store.

A preset is a named set of component ids. Presets kept in the shared pool live in
:attr:`ConfigPaths.shared_presets_dir`, one JSON file per preset named
``<sanitized name>_<id>.json``. The id is stable across renames, so the file name
changes with the preset name while the id suffix always identifies the record.
"""
import datetime
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .. import lib
from ...status import status

PRESET_FORMAT = 'json'

# Characters that are not allowed in file names on any of the supported platforms
_INVALID_CHARS = re.compile(r'[\\/*?:"<>|\x00-\x1f]+')


def sanitize_file_name(name: str, fallback: str = 'preset') -> str:
    """Make a safe file name stem from a display name.

    Args:
        name: The display name.
        fallback: Returned when nothing usable is left.

    Returns:
        The sanitized stem.
    """
    stem = _INVALID_CHARS.sub('_', name or '')
    stem = re.sub(r'_+', '_', stem).strip().rstrip('. ')
    return stem or fallback


def now() -> datetime.datetime:
    """Local time without microseconds, the resolution written to disk."""
    return datetime.datetime.now().replace(microsecond=0)


def _parse_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if not value:
        return now()
    return datetime.datetime.fromisoformat(str(value))


@dataclass
class Preset:
    """A named, stable-identity set of component ids."""
    name: str
    description: str = ''
    components: Set[str] = field(default_factory=set)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime.datetime = field(default_factory=now)
    last_modified: datetime.datetime = field(default_factory=now)

    def touch(self) -> None:
        """Refresh the modification timestamp."""
        self.last_modified = now()

    def rename(self, name: str) -> None:
        if not name:
            raise ValueError('Preset name cannot be empty')
        self.name = name
        self.touch()

    def set_description(self, description: str) -> None:
        self.description = description or ''
        self.touch()

    def set_components(self, components: Iterable[str]) -> None:
        self.components = set(components)
        self.touch()

    def add_component(self, component_id: str) -> None:
        self.components.add(component_id)
        self.touch()

    def remove_component(self, component_id: str) -> None:
        self.components.discard(component_id)
        self.touch()

    def copy(self, name: Optional[str] = None) -> 'Preset':
        """Return a deep copy with a new identity and fresh timestamps.

        Args:
            name: Optional name for the copy. Defaults to this preset's name.
        """
        return Preset(
            name=self.name if name is None else name,
            description=self.description,
            components=set(self.components),
        )

    @property
    def file_name(self) -> str:
        return f'{sanitize_file_name(self.name)}_{self.id}.{PRESET_FORMAT}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'components': sorted(self.components),
            'created_at': self.created_at.isoformat(),
            'last_modified': self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Preset':
        """Build a preset from its persisted form.

        Raises:
            ValueError: If the record has no id or name, or a field is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError('Preset record must be an object')
        if not data.get('id') or not data.get('name'):
            raise ValueError('Preset record is missing "id" or "name"')
        components = data.get('components') or []
        if not isinstance(components, list) or not all(isinstance(c, str) for c in components):
            raise ValueError('Preset "components" must be a list of strings')
        return cls(
            id=str(data['id']),
            name=str(data['name']),
            description=str(data.get('description') or ''),
            components=set(components),
            created_at=_parse_datetime(data.get('created_at')),
            last_modified=_parse_datetime(data.get('last_modified')),
        )


class PresetStore:
    """
    Loads, saves and deletes presets kept one file per preset in a directory.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self.directory: Path = Path(directory) if directory else lib.settings.shared_presets_dir
        self.directory.mkdir(parents=True, exist_ok=True)
        logging.debug(f'PresetStore initialized at: {self.directory}')

    def _files_for(self, preset_id: str) -> List[Path]:
        return sorted(self.directory.glob(f'*_{preset_id}.{PRESET_FORMAT}'))

    def load_all(self) -> List[Preset]:
        """Read every preset record in the directory.

        Unreadable or malformed records are logged and skipped.

        Returns:
            Presets sorted by name.
        """
        presets: List[Preset] = []
        if not self.directory.exists():
            logging.info(f'Presets directory {self.directory} does not exist, returning empty list')
            return presets

        files = sorted(self.directory.glob(f'*.{PRESET_FORMAT}'))
        logging.debug(f'Found {len(files)} preset files')
        for path in files:
            try:
                with path.open('r', encoding='utf-8') as f:
                    preset = Preset.from_dict(json.load(f))
            except (OSError, ValueError, TypeError) as ex:
                logging.error(f'Failed to load preset from {path}: {ex}')
                continue
            presets.append(preset)
            logging.debug(f'Loaded preset: {preset.name} from {path.name}')

        return sorted(presets, key=lambda p: p.name.lower())

    def save(self, preset: Preset) -> Path:
        """Write a preset, replacing any file that carried the same id.

        Returns:
            The path written.

        Raises:
            status.PresetSaveFailedException: If the file cannot be written.
        """
        path = self.directory / preset.file_name
        stale = [p for p in self._files_for(preset.id) if p != path]
        try:
            with path.open('w', encoding='utf-8') as f:
                json.dump(preset.to_dict(), f, indent=4, ensure_ascii=False)
        except OSError as ex:
            raise status.PresetSaveFailedException(f'"{preset.name}": {ex}') from ex

        # The preset was renamed: drop the file written under the old name
        for old in stale:
            try:
                old.unlink()
                logging.info(f'Deleted old preset file: {old.name}')
            except OSError as ex:
                logging.warning(f'Failed to remove old preset file {old}: {ex}')

        logging.info(f'Saved preset "{preset.name}" to {path.name}')
        return path

    def delete(self, preset: Preset) -> int:
        """Remove every file carrying the preset's id.

        Files that cannot be removed are logged and skipped.

        Returns:
            The number of files removed.
        """
        files = self._files_for(preset.id)
        if not files:
            logging.warning(f'No file found for preset "{preset.name}" (id: {preset.id})')
            return 0
        removed = 0
        for path in files:
            try:
                path.unlink()
            except OSError as ex:
                logging.error(f'Failed to delete preset file {path}: {ex}')
                continue
            removed += 1
            logging.info(f'Deleted preset "{preset.name}" from {path.name}')
        return removed
