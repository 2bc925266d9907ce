"""Per-scope records: one global record plus one record per tracked identity.

A scope holds its own presets, its always-on set, the default and last-applied
preset pointers and the notification preference. The global record (scope id 0)
lives at a fixed path and is never deleted; every other record is stored in
:attr:`ConfigPaths.scopes_dir` under a file name derived from the identity's
display and realm names.
"""
import datetime
import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..settings import lib
from ..settings.presets.lib import Preset, now, sanitize_file_name, _parse_datetime

GLOBAL_SCOPE_ID: int = 0
GLOBAL_SCOPE_NAME: str = 'Global'


class NotificationMode(enum.StrEnum):
    """How apply results are reported to the user."""
    Disabled = 'None'
    Toast = 'Toast'
    Chat = 'Chat'

    @classmethod
    def parse(cls, value: Any) -> 'NotificationMode':
        """Accept a stored name or the integer written by older versions.

        Raises:
            ValueError: If value does not name a mode.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            order = [cls.Disabled, cls.Toast, cls.Chat]
            if 0 <= value < len(order):
                return order[value]
            raise ValueError(f'Invalid notification mode: {value}')
        return cls(str(value))


@dataclass
class ScopeRecord:
    """Stored preferences of one scope."""
    scope_id: int
    display_name: str = ''
    realm_name: str = ''
    last_seen: datetime.datetime = field(default_factory=now)
    presets: List[Preset] = field(default_factory=list)
    always_on: Set[str] = field(default_factory=set)
    default_preset: Optional[str] = None
    use_always_on_as_default: bool = False
    apply_default_on_login: bool = True
    last_applied_preset: Optional[str] = None
    last_applied_was_always_on_only: bool = False
    notification_mode: NotificationMode = NotificationMode.Toast

    @property
    def is_global(self) -> bool:
        return self.scope_id == GLOBAL_SCOPE_ID

    @property
    def label(self) -> str:
        if not self.realm_name:
            return self.display_name
        return f'{self.display_name} @ {self.realm_name}'

    @property
    def file_name(self) -> str:
        name = self.display_name.replace(' ', '_')
        realm = self.realm_name.replace(' ', '_')
        stem = f'{name}_{realm}' if realm else name
        return f'{sanitize_file_name(stem, fallback=f"scope_{self.scope_id}")}.json'

    def find_preset(self, name: str) -> Optional[Preset]:
        """Return the first preset with the given name, ignoring case."""
        if not name:
            return None
        return next((p for p in self.presets if p.name.lower() == name.lower()), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scope_id': self.scope_id,
            'display_name': self.display_name,
            'realm_name': self.realm_name,
            'last_seen': self.last_seen.isoformat(),
            'presets': [p.to_dict() for p in self.presets],
            'always_on': sorted(self.always_on),
            'default_preset': self.default_preset,
            'use_always_on_as_default': self.use_always_on_as_default,
            'apply_default_on_login': self.apply_default_on_login,
            'last_applied_preset': self.last_applied_preset,
            'last_applied_was_always_on_only': self.last_applied_was_always_on_only,
            'notification_mode': self.notification_mode.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScopeRecord':
        """Build a record from its persisted form.

        Raises:
            ValueError: If the record is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError('Scope record must be an object')
        if 'scope_id' not in data:
            raise ValueError('Scope record is missing "scope_id"')
        always_on = data.get('always_on') or []
        if not isinstance(always_on, list):
            raise ValueError('Scope "always_on" must be a list')
        return cls(
            scope_id=int(data['scope_id']),
            display_name=str(data.get('display_name') or ''),
            realm_name=str(data.get('realm_name') or ''),
            last_seen=_parse_datetime(data.get('last_seen')),
            presets=[Preset.from_dict(p) for p in data.get('presets') or []],
            always_on={str(c) for c in always_on},
            default_preset=data.get('default_preset') or None,
            use_always_on_as_default=bool(data.get('use_always_on_as_default', False)),
            apply_default_on_login=bool(data.get('apply_default_on_login', True)),
            last_applied_preset=data.get('last_applied_preset') or None,
            last_applied_was_always_on_only=bool(data.get('last_applied_was_always_on_only', False)),
            notification_mode=NotificationMode.parse(data.get('notification_mode', NotificationMode.Toast)),
        )


def read_scope_file(path: Path) -> Optional[ScopeRecord]:
    """Read a scope record, returning None if the file is missing or unreadable."""
    if not path.exists():
        return None
    try:
        with path.open('r', encoding='utf-8') as f:
            return ScopeRecord.from_dict(json.load(f))
    except (OSError, ValueError, TypeError) as ex:
        logging.error(f'Failed to load scope record {path}: {ex}')
        return None


class ScopeStore:
    """
    Keeps every scope record in memory and mirrors changes to disk.

    Load failures degrade to empty records. Save failures are logged and never raised,
    so a failed preference write cannot interrupt an apply in progress.
    """

    def __init__(self, scopes_dir: Optional[Path] = None, global_path: Optional[Path] = None) -> None:
        self.scopes_dir: Path = Path(scopes_dir) if scopes_dir else lib.settings.scopes_dir
        self.global_path: Path = Path(global_path) if global_path else lib.settings.global_scope_path
        self.scopes_dir.mkdir(parents=True, exist_ok=True)

        self._global: ScopeRecord = ScopeRecord(scope_id=GLOBAL_SCOPE_ID, display_name=GLOBAL_SCOPE_NAME)
        self._records: Dict[int, ScopeRecord] = {}
        self.load_all()

    def load_all(self) -> None:
        """Reload the global record and every per-identity record from disk."""
        record = read_scope_file(self.global_path)
        if record is None:
            record = ScopeRecord(scope_id=GLOBAL_SCOPE_ID, display_name=GLOBAL_SCOPE_NAME)
        record.scope_id = GLOBAL_SCOPE_ID
        self._global = record

        self._records.clear()
        for path in sorted(self.scopes_dir.glob('*.json')):
            record = read_scope_file(path)
            if record is None:
                continue
            if record.is_global:
                logging.warning(f'Ignoring scope file with the reserved global id: {path.name}')
                continue
            self._records[record.scope_id] = record
        logging.info(f'Loaded {len(self._records)} scope record(s)')

    def path_for(self, record: ScopeRecord) -> Path:
        if record.is_global:
            return self.global_path
        return self.scopes_dir / record.file_name

    def get_global(self) -> ScopeRecord:
        return self._global

    def get(self, scope_id: int) -> Optional[ScopeRecord]:
        if scope_id == GLOBAL_SCOPE_ID:
            return self._global
        return self._records.get(scope_id)

    def all(self) -> List[ScopeRecord]:
        """Return every per-identity record sorted by display name."""
        return sorted(self._records.values(), key=lambda r: r.display_name.lower())

    def get_or_create(self, scope_id: int, display_name: str, realm_name: str) -> ScopeRecord:
        """Return the record for an identity, creating it on first sight.

        Known identities get their names and last-seen time refreshed. When the
        derived file name changes the old file is removed before saving.
        """
        if scope_id == GLOBAL_SCOPE_ID:
            return self._global

        existing = self._records.get(scope_id)
        if existing is not None:
            old_path = self.path_for(existing)
            existing.display_name = display_name
            existing.realm_name = realm_name
            existing.last_seen = now()

            new_path = self.path_for(existing)
            if old_path != new_path and old_path.exists():
                try:
                    old_path.unlink()
                    logging.info(f'Removed old scope file {old_path.name} after rename')
                except OSError as ex:
                    logging.error(f'Failed to remove old scope file {old_path}: {ex}')

            self.save(existing)
            return existing

        record = ScopeRecord(scope_id=scope_id, display_name=display_name, realm_name=realm_name)
        self._records[scope_id] = record
        self.save(record)
        logging.info(f'Created new scope record: {record.label}')
        return record

    def add(self, record: ScopeRecord) -> ScopeRecord:
        """Insert or replace a fully built record and save it."""
        if record.is_global:
            self._global = record
        else:
            previous = self._records.get(record.scope_id)
            if previous is not None and self.path_for(previous) != self.path_for(record):
                try:
                    self.path_for(previous).unlink(missing_ok=True)
                except OSError as ex:
                    logging.error(f'Failed to remove old scope file {self.path_for(previous)}: {ex}')
            self._records[record.scope_id] = record
        self.save(record)
        return record

    def save(self, record: ScopeRecord) -> bool:
        """Write a record to its file.

        Returns:
            True on success. Failures are logged, not raised.
        """
        path = self.path_for(record)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open('w', encoding='utf-8') as f:
                json.dump(record.to_dict(), f, indent=4, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as ex:
            logging.error(f'Failed to save scope record for {record.label}: {ex}')
            return False
        return True

    def delete(self, scope_id: int) -> bool:
        """Remove a per-identity record and its file.

        A file that cannot be removed is logged and the record is kept.

        Returns:
            True if a record was removed.

        Raises:
            ValueError: If asked to delete the global record.
        """
        if scope_id == GLOBAL_SCOPE_ID:
            raise ValueError('The global scope cannot be deleted')
        record = self._records.get(scope_id)
        if record is None:
            return False
        path = self.path_for(record)
        try:
            path.unlink(missing_ok=True)
        except OSError as ex:
            logging.error(f'Failed to remove scope file {path}: {ex}')
            return False
        del self._records[scope_id]
        logging.info(f'Deleted scope record: {record.label}')
        return True

    def copy_preset_across_scopes(self, source_scope_id: int, preset_name: str) -> Optional[Preset]:
        """Copy a preset out of a scope for import into another one.

        Returns:
            A new preset with a fresh identity, or None if the scope or preset is unknown.
        """
        source = self.get(source_scope_id)
        if source is None:
            return None
        preset = next((p for p in source.presets if p.name == preset_name), None)
        if preset is None:
            return None
        return preset.copy()
