"""
Worker for directory duplication.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from PyQt6.QtCore import QObject, pyqtSignal

from treedup.core.folder.duplicator import DirectoryDuplicator
from treedup.core.models import CollisionAction, DuplicateOptions, DuplicateResult, EntryAction
from treedup.services.settings import DuplicationSettings, SearchSettings
from treedup.workers.base_worker import BaseWorker


class DuplicateWorker(BaseWorker):
    """
    Worker for duplicating a directory tree.

    Reports every processed entry; per-entry failures are reported
    and the duplication continues.
    """

    # Signal emitted for each entry processed
    entry_processed = pyqtSignal(str, object)  # (relative path, EntryAction)

    # Signal emitted when an entry fails (but continues)
    duplicate_error = pyqtSignal(str, str)  # (path, error)

    def __init__(
        self,
        source: str | Path,
        destination: str | Path,
        options: DuplicateOptions = DuplicateOptions.MERGE_EXISTING_DIRECTORIES,
        collision_action: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES,
        settings: Optional[DuplicationSettings] = None,
        search_settings: Optional[SearchSettings] = None,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent=parent)
        self.source = Path(source)
        self.destination = Path(destination)
        self.options = options
        self.collision_action = collision_action
        self.settings = settings
        self.search_settings = search_settings
        self._duplicator: Optional[DirectoryDuplicator] = None
        self._processed = 0

    def do_work(self) -> DuplicateResult:
        """Execute duplication."""
        self.report_status(f"Duplicating {self.source} to {self.destination}...")

        self._duplicator = DirectoryDuplicator(
            self.source,
            self.destination,
            self.options,
            self.collision_action,
            settings=self.settings,
            search_settings=self.search_settings,
        )
        self._duplicator.on_entry = self._on_entry
        self._duplicator.on_error = self._on_error

        self._duplicator.duplicate()
        result = self._duplicator.result

        self.report_status("Complete")
        return result

    def _on_entry(self, relative_path: str, action: EntryAction) -> None:
        if self.is_cancelled:
            self._duplicator.stop()

        self._processed += 1
        self.entry_processed.emit(relative_path, action)
        self.report_progress(self._processed, relative_path)

    def _on_error(self, path: str, message: str) -> None:
        self.duplicate_error.emit(path, message)

    def cancel(self) -> None:
        """Cancel duplication."""
        super().cancel()
        if self._duplicator:
            self._duplicator.stop()
