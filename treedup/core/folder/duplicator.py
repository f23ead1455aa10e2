"""
Directory duplication engine.

Copies a directory tree into a destination while avoiding redundant
copies:
- Mirrors the directory structure (with permissions and timestamps)
- Skips files whose content already exists at the destination
- Renames or overwrites on collision according to policy
- Optional TIFF conversion of images and copy verification

A failure on one entry never aborts the rest of the tree.
"""

from __future__ import annotations

import io
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

from PyQt6.QtCore import QMutex, QMutexLocker

from treedup.core.compare import compare_files, file_and_stream_identical, files_contain_identical_image
from treedup.core.folder.collision import CollisionResolver
from treedup.core.folder.searcher import DirectorySearcher
from treedup.core.models import (
    CollisionAction,
    CollisionDecision,
    DirectoryEntry,
    DuplicateOptions,
    DuplicateResult,
    EntryAction,
    FileEntry,
    SearchAction,
    SearchError,
    SearchEventMask,
    SearchOption,
    SearchRequest,
)
from treedup.services import file_ops, image_codec
from treedup.services.hashing import HashingService
from treedup.services.settings import DuplicationSettings, SearchSettings


EntryObserver = Callable[[str, EntryAction], None]
ErrorObserver = Callable[[str, str], None]

# Writes the incoming content to a path; the flag requests exclusive creation.
Writer = Callable[[Path, bool], int]


class DirectoryDuplicator:
    """
    Duplicates a source directory tree into a destination directory.

    Usage:
        duplicator = DirectoryDuplicator(source, destination)
        duplicator.on_entry = lambda path, action: print(path, action.name)
        if not duplicator.duplicate():
            print(duplicator.result.errors)
    """

    RENAME_ATTEMPTS = 5

    def __init__(
        self,
        source: Path | str,
        destination: Path | str,
        options: DuplicateOptions = DuplicateOptions.MERGE_EXISTING_DIRECTORIES,
        collision_action: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES,
        settings: Optional[DuplicationSettings] = None,
        search_settings: Optional[SearchSettings] = None,
        owner: Optional[str] = None
    ):
        self.source = Path(os.path.abspath(source))
        self.destination = Path(os.path.abspath(destination))
        self.options = options
        self.collision_action = collision_action
        self.settings = settings or DuplicationSettings()
        self.search_settings = search_settings or SearchSettings()
        self.owner = owner or self.settings.owner or None

        self.on_entry: Optional[EntryObserver] = None
        self.on_error: Optional[ErrorObserver] = None

        self._searcher = DirectorySearcher()
        self._resolver = CollisionResolver()
        self._hashing = HashingService(self.settings.verify_algorithm, self.settings.buffer_size)
        self._result: Optional[DuplicateResult] = None
        self._mutex = QMutex()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether a duplication is currently active."""
        with QMutexLocker(self._mutex):
            return self._running

    @property
    def result(self) -> Optional[DuplicateResult]:
        """Result of the most recent duplicate() call."""
        return self._result

    def has_option(self, option: DuplicateOptions) -> bool:
        return bool(self.options & option)

    def duplicate(self) -> bool:
        """
        Duplicate the source tree into the destination.

        Returns:
            True if the whole source tree was searched; failures on
            individual entries are listed in result.errors. A call made
            while another duplication is running returns False and leaves
            that run's result alone.
        """
        with QMutexLocker(self._mutex):
            if self._running:
                logging.warning("DirectoryDuplicator - A duplication is already running")
                return False
            self._running = True

        try:
            return self._duplicate()
        finally:
            with QMutexLocker(self._mutex):
                self._running = False

    def stop(self) -> None:
        """Stop an ongoing duplication at the next entry."""
        self._searcher.stop()

    def _duplicate(self) -> bool:
        start_time = time.time()
        result = DuplicateResult(success=False)
        self._result = result

        if not self._check_roots():
            result.duration = time.time() - start_time
            return False

        if self.has_option(DuplicateOptions.DIRECTORY_STRUCTURE_ONLY):
            mask = SearchEventMask.DIRECTORIES
        else:
            mask = SearchEventMask.BOTH

        request = SearchRequest(
            root=self.source,
            search_option=SearchOption.ALL_DIRECTORIES,
            directory_link_action=self.search_settings.directory_link_action,
            file_link_action=self.search_settings.file_link_action,
            event_mask=mask,
        )

        logging.info(f"DirectoryDuplicator - Duplicating {self.source} to {self.destination}")

        outcome = self._searcher.start(
            request,
            on_directory=self._on_directory,
            on_file=self._on_file,
            on_error=self._on_search_error,
        )

        result.outcome = outcome
        result.success = outcome.finished
        result.duration = time.time() - start_time

        logging.info(
            f"DirectoryDuplicator - {outcome.reason.name}: "
            f"{result.directories_created} directories created, {result.files_copied} copied, "
            f"{result.files_overwritten} overwritten, {result.files_renamed} renamed, "
            f"{result.files_skipped} skipped, {result.error_count} errors"
        )
        return result.success

    # -------------------------------------------------------------------------
    # Roots
    # -------------------------------------------------------------------------

    def _check_roots(self) -> bool:
        source = self.source
        destination = self.destination

        if not source.is_dir():
            self._record_error(str(source), f"Source directory not found: {source}")
            return False

        if self.has_option(DuplicateOptions.SKIP_SYSTEM_FILES) and file_ops.is_hidden_or_system(source):
            logging.info(f"DirectoryDuplicator - Source {source} is hidden or system, nothing to do")
            return False

        real_source = source.resolve()
        real_destination = destination.resolve()
        if real_destination == real_source or real_source in real_destination.parents:
            self._record_error(str(destination), "Destination lies inside the source tree")
            return False

        try:
            return self._prepare_destination_root()
        except OSError as e:
            self._record_error(str(destination), f"Could not prepare destination: {e}")
            return False

    def _prepare_destination_root(self) -> bool:
        destination = self.destination

        if destination.exists():
            if not destination.is_dir():
                self._record_error(str(destination), "Destination exists and is not a directory")
                return False
            if not self.has_option(DuplicateOptions.MERGE_EXISTING_DIRECTORIES):
                self._record_error(str(destination), "Destination exists and merging is not enabled")
                return False
            file_ops.copy_permissions(self.source, destination)
            file_ops.ensure_writable_directory(destination)
        else:
            try:
                destination.mkdir(parents=True)
            except FileExistsError:
                if not destination.is_dir():
                    raise
                logging.debug(f"DirectoryDuplicator - {destination} appeared while creating it")

        file_ops.set_owner(destination, self.owner)
        return True

    # -------------------------------------------------------------------------
    # Search observers
    # -------------------------------------------------------------------------

    def _on_directory(self, entry: DirectoryEntry) -> SearchAction:
        relative_path = entry.relative_path

        if self.has_option(DuplicateOptions.SKIP_SYSTEM_FILES) and entry.metadata.is_hidden_or_system:
            self._report(relative_path, EntryAction.SKIPPED_SYSTEM)
            return SearchAction.SKIP

        target = self.destination / relative_path
        try:
            action = self._ensure_directory(entry.path, target)
        except Exception as e:
            self._record_error(relative_path, f"Could not create directory {target}: {e}")
            return SearchAction.SKIP

        self._report(relative_path, action)
        return SearchAction.CONTINUE

    def _on_file(self, entry: FileEntry) -> SearchAction:
        relative_path = entry.relative_path
        result = self._result

        try:
            if self.has_option(DuplicateOptions.SKIP_SYSTEM_FILES) and entry.metadata.is_hidden_or_system:
                result.files_skipped += 1
                self._report(relative_path, EntryAction.SKIPPED_SYSTEM)
                return SearchAction.CONTINUE

            if self.has_option(DuplicateOptions.SKIP_ZERO_BYTE_FILES) and entry.path.stat().st_size == 0:
                result.files_skipped += 1
                self._report(relative_path, EntryAction.SKIPPED_ZERO_BYTE)
                return SearchAction.CONTINUE

            target = self.destination / relative_path

            tiff_data = None
            if self.has_option(DuplicateOptions.CONVERT_IMAGES_TO_TIFF):
                tiff_data = self._encode_tiff(entry.path)

            if tiff_data is not None:
                self._place_tiff(entry, target.with_suffix(image_codec.TIFF_EXTENSION), tiff_data)
            else:
                self._place_file(entry, target)

        except Exception as e:
            self._record_error(relative_path, f"Could not copy {entry.path}: {e}")

        return SearchAction.CONTINUE

    def _on_search_error(self, error: SearchError) -> SearchAction:
        try:
            path = str(error.path.relative_to(self.source))
        except ValueError:
            path = str(error.path)
        self._record_error(path, error.message, log=False)
        return SearchAction.CONTINUE

    # -------------------------------------------------------------------------
    # Directories
    # -------------------------------------------------------------------------

    def _ensure_directory(self, source: Path, target: Path) -> EntryAction:
        """Create target mirroring source, or reconcile it if it already exists."""
        created = False

        if not target.is_dir():
            try:
                target.mkdir()
                created = True
            except FileExistsError:
                if not target.is_dir():
                    raise
                logging.debug(f"DirectoryDuplicator - {target} appeared while creating it")

        if created:
            file_ops.copy_attributes(source, target)
            self._result.directories_created += 1
            action = EntryAction.CREATED_DIRECTORY
        else:
            file_ops.copy_permissions(source, target)
            self._result.directories_merged += 1
            action = EntryAction.MERGED_DIRECTORY

        file_ops.ensure_writable_directory(target)
        file_ops.set_owner(target, self.owner)
        return action

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def _place_file(self, entry: FileEntry, target: Path) -> None:
        compare_images = self.has_option(DuplicateOptions.COMPARE_IMAGE_CONTENT)

        def writer(path: Path, exclusive: bool) -> int:
            return self._write_copy(entry.path, path, exclusive)

        def is_identical(path: Path) -> bool:
            return compare_files(entry.path, path, compare_images).identical

        self._place(entry.relative_path, target, writer, is_identical)

    def _place_tiff(self, entry: FileEntry, target: Path, data: bytes) -> None:
        compare_images = self.has_option(DuplicateOptions.COMPARE_IMAGE_CONTENT)

        def writer(path: Path, exclusive: bool) -> int:
            return self._write_data(entry.path, data, path, exclusive)

        def is_identical(path: Path) -> bool:
            if file_and_stream_identical(path, io.BytesIO(data)):
                return True
            return compare_images and files_contain_identical_image(entry.path, path)

        self._place(entry.relative_path, target, writer, is_identical)

    def _place(
        self,
        relative_path: str,
        target: Path,
        writer: Writer,
        is_identical: Callable[[Path], bool]
    ) -> None:
        """Write incoming content to target, resolving a collision if target is taken."""
        result = self._result

        if not os.path.lexists(target):
            try:
                writer(target, True)
                result.files_copied += 1
                self._report(relative_path, EntryAction.COPIED)
                return
            except FileExistsError:
                logging.debug(f"DirectoryDuplicator - {target} appeared while copying, resolving collision")

        identical = is_identical(target)
        decision = self._resolver.resolve(target, identical, self.collision_action)

        if decision.is_skip:
            result.files_skipped += 1
            self._report(relative_path, EntryAction.SKIPPED_IDENTICAL if identical else EntryAction.SKIPPED_EXISTING)

        elif decision.is_overwrite:
            if os.path.islink(target):
                # Replace the link itself, never the file it points to
                file_ops.remove_file(target)
            writer(target, False)
            result.files_overwritten += 1
            self._report(relative_path, EntryAction.OVERWRITTEN)

        else:
            written = self._write_renamed(decision, writer)
            result.files_renamed += 1
            logging.info(f"DirectoryDuplicator - {relative_path} collided, written as {written.name}")
            self._report(relative_path, EntryAction.RENAMED)

    def _write_renamed(self, decision: CollisionDecision, writer: Writer) -> Path:
        """Write to the renamed target, choosing another free name if it gets taken first."""
        target = decision.target_path

        for _ in range(self.RENAME_ATTEMPTS):
            try:
                writer(target, True)
                return target
            except FileExistsError:
                logging.debug(f"DirectoryDuplicator - {target} was taken, choosing another name")
                target, _suffix = self._resolver.unique_path(decision.existing_path)

        raise FileExistsError(f"Could not find a free name for {decision.existing_path}")

    def _write_copy(self, source: Path, target: Path, exclusive: bool) -> int:
        """Copy source to target with attributes, optionally verifying the result."""
        hasher = self._hashing.create_hasher() if self.has_option(DuplicateOptions.VERIFY_COPIES) else None

        try:
            copied = file_ops.copy_file(source, target, exclusive, self.settings.buffer_size, hasher)
        except FileExistsError:
            raise
        except OSError:
            if exclusive:
                self._discard(target)
            raise

        self._finish_written_file(source, target, hasher.hexdigest() if hasher else None)
        self._result.bytes_copied += copied
        return copied

    def _write_data(self, source: Path, data: bytes, target: Path, exclusive: bool) -> int:
        """Write converted data to target, taking timestamps from source."""
        written = file_ops.write_bytes(target, data, exclusive)

        expected = None
        if self.has_option(DuplicateOptions.VERIFY_COPIES):
            expected = self._hashing.hash_bytes(data).hash_hex

        self._finish_written_file(source, target, expected)
        self._result.bytes_copied += written
        return written

    def _finish_written_file(self, source: Path, target: Path, expected_hash: Optional[str]) -> None:
        if expected_hash is not None:
            actual = self._hashing.hash_file(target).hash_hex
            if actual != expected_hash:
                self._discard(target)
                raise OSError(f"Verification failed for {target}")

        file_ops.copy_attributes(source, target)
        file_ops.set_owner(target, self.owner)

    def _encode_tiff(self, source: Path) -> Optional[bytes]:
        with open(source, 'rb') as f:
            stream = image_codec.convert_stream_to_tiff(f, convert_ico=False, compress=self.settings.compress_tiff)
        return stream.getvalue() if stream is not None else None

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            if path.exists():
                file_ops.remove_file(path)
        except OSError as e:
            logging.warning(f"DirectoryDuplicator - Could not remove incomplete file {path}: {e}")

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _report(self, relative_path: str, action: EntryAction) -> None:
        logging.debug(f"DirectoryDuplicator - {relative_path}: {action.name}")
        if self.on_entry:
            self.on_entry(relative_path, action)

    def _record_error(self, path: str, message: str, log: bool = True) -> None:
        if log:
            logging.warning(f"DirectoryDuplicator - {message}")
        if self._result is not None:
            self._result.errors.append((path, message))
        if self.on_error:
            self.on_error(path, message)
        if self.on_entry:
            self.on_entry(path, EntryAction.FAILED)


def duplicate_folder(
    source: Path | str,
    destination: Path | str,
    options: DuplicateOptions = DuplicateOptions.MERGE_EXISTING_DIRECTORIES,
    collision_action: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES,
    owner: Optional[str] = None
) -> bool:
    """Duplicate a directory tree with a one-off DirectoryDuplicator."""
    duplicator = DirectoryDuplicator(source, destination, options, collision_action, owner=owner)
    return duplicator.duplicate()
