"""
Application settings management.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from enum import Enum, Flag
from pathlib import Path
from typing import Any, Optional

from treedup.core.models import (
    CollisionAction,
    DuplicateOptions,
    SymbolicLinkBehaviour,
)
from treedup.services.hashing import HashAlgorithm


@dataclass
class SearchSettings:
    """Settings for directory searches."""
    directory_link_action: SymbolicLinkBehaviour = SymbolicLinkBehaviour.IGNORE
    file_link_action: SymbolicLinkBehaviour = SymbolicLinkBehaviour.IGNORE


@dataclass
class DuplicationSettings:
    """Settings for directory duplication."""
    collision_action: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES
    options: list[str] = field(default_factory=lambda: ['MERGE_EXISTING_DIRECTORIES'])
    owner: str = ""
    buffer_size: int = 65536
    compress_tiff: bool = False
    verify_algorithm: HashAlgorithm = HashAlgorithm.XXH64

    @property
    def duplicate_options(self) -> DuplicateOptions:
        """Option names folded into a DuplicateOptions flag."""
        flags = DuplicateOptions.NONE
        for name in self.options:
            try:
                flags |= DuplicateOptions[name]
            except KeyError:
                logging.warning(f"DuplicationSettings - Unknown duplicate option '{name}' ignored")
        return flags

    @duplicate_options.setter
    def duplicate_options(self, value: DuplicateOptions) -> None:
        self.options = [member.name for member in DuplicateOptions
                        if member.value and member in value]


@dataclass
class LoggingSettings:
    """Logging settings."""
    level: str = "INFO"
    log_file: str = ""


@dataclass
class ApplicationSettings:
    """Main application settings container."""
    search: SearchSettings = field(default_factory=SearchSettings)
    duplication: DuplicationSettings = field(default_factory=DuplicationSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    recent_sources: list[str] = field(default_factory=list)
    recent_destinations: list[str] = field(default_factory=list)


class SettingsManager:
    """Manager for loading/saving application settings."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = Path(settings_path) if settings_path else self._get_default_path()
        self._settings: Optional[ApplicationSettings] = None

    @staticmethod
    def _get_default_path() -> Path:
        """Get the default settings file path."""
        if os.name == 'nt':
            # Windows
            app_data = os.environ.get('APPDATA', os.path.expanduser('~'))
            return Path(app_data) / 'TreeDup' / 'settings.json'
        else:
            # Linux/Mac
            config_home = os.environ.get('XDG_CONFIG_HOME',
                                         os.path.expanduser('~/.config'))
            return Path(config_home) / 'treedup' / 'settings.json'

    @property
    def settings(self) -> ApplicationSettings:
        """Get current settings, loading from disk if needed."""
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    def load(self) -> ApplicationSettings:
        """Load settings from disk, falling back to defaults."""
        if not self.settings_path.exists():
            return ApplicationSettings()

        try:
            with open(self.settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            return self._from_dict(data)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logging.warning(f"SettingsManager - Could not load settings from {self.settings_path}: {e}")
            return ApplicationSettings()

    def save(self, settings: Optional[ApplicationSettings] = None) -> bool:
        """Save settings to disk."""
        settings = settings or self._settings
        if settings is None:
            return False

        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.settings_path, 'w', encoding='utf-8') as f:
                json.dump(self._to_dict(settings), f, indent=2)

        except OSError as e:
            logging.error(f"SettingsManager - Could not save settings to {self.settings_path}: {e}")
            return False

        self._settings = settings
        return True

    def add_recent_path(self, path: str, is_source: bool, limit: int = 10) -> None:
        """Add a path to the recent sources or destinations."""
        settings = self.settings
        recent = settings.recent_sources if is_source else settings.recent_destinations

        if path in recent:
            recent.remove(path)
        recent.insert(0, path)
        del recent[limit:]

        self.save()

    def _to_dict(self, settings: ApplicationSettings) -> dict:
        """Convert settings to dictionary for JSON serialization."""
        def convert(obj: Any) -> Any:
            if isinstance(obj, (Enum, Flag)):
                return obj.name
            elif isinstance(obj, list):
                return [convert(item) for item in obj]
            elif isinstance(obj, dict):
                return {k: convert(v) for k, v in obj.items()}
            else:
                return obj

        return convert(asdict(settings))

    def _from_dict(self, data: dict) -> ApplicationSettings:
        """Convert dictionary back to settings objects."""
        def get_enum(enum_class: type, value: Any, default: Enum) -> Enum:
            if isinstance(value, str):
                try:
                    return enum_class[value]
                except KeyError:
                    logging.warning(f"SettingsManager - Unknown {enum_class.__name__} '{value}', using default")
            return default

        search_data = data.get('search', {})
        search = SearchSettings(
            directory_link_action=get_enum(
                SymbolicLinkBehaviour,
                search_data.get('directory_link_action'),
                SearchSettings.directory_link_action,
            ),
            file_link_action=get_enum(
                SymbolicLinkBehaviour,
                search_data.get('file_link_action'),
                SearchSettings.file_link_action,
            ),
        )

        dup_data = data.get('duplication', {})
        defaults = DuplicationSettings()
        duplication = DuplicationSettings(
            collision_action=get_enum(
                CollisionAction,
                dup_data.get('collision_action'),
                defaults.collision_action,
            ),
            options=list(dup_data.get('options', defaults.options)),
            owner=dup_data.get('owner', defaults.owner),
            buffer_size=int(dup_data.get('buffer_size', defaults.buffer_size)),
            compress_tiff=bool(dup_data.get('compress_tiff', defaults.compress_tiff)),
            verify_algorithm=get_enum(
                HashAlgorithm,
                dup_data.get('verify_algorithm'),
                defaults.verify_algorithm,
            ),
        )

        log_data = data.get('logging', {})
        logging_settings = LoggingSettings(
            level=log_data.get('level', 'INFO'),
            log_file=log_data.get('log_file', ''),
        )

        return ApplicationSettings(
            search=search,
            duplication=duplication,
            logging=logging_settings,
            recent_sources=data.get('recent_sources', []),
            recent_destinations=data.get('recent_destinations', []),
        )
