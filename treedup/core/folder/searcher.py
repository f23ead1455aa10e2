"""
Event-driven directory search.

Walks a directory tree and reports every entry through observer
callbacks, with:
- Top-level or recursive (pre-order) traversal
- Per-kind symbolic link policy
- Synchronous or background-thread execution
- Cooperative cancellation from any thread
- Error resilience (only a root failure is fatal)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from PyQt6.QtCore import QMutex, QMutexLocker, QThread

from treedup.core.models import (
    DirectoryEntry,
    FileEntry,
    SearchAction,
    SearchEndReason,
    SearchError,
    SearchOutcome,
    SearchRequest,
    SymbolicLinkBehaviour,
)
from treedup.services import file_ops


DirectoryObserver = Callable[[DirectoryEntry], Optional[SearchAction]]
FileObserver = Callable[[FileEntry], Optional[SearchAction]]
ErrorObserver = Callable[[SearchError], Optional[SearchAction]]
EndObserver = Callable[[SearchOutcome], None]


@dataclass
class _SearchRun:
    """State owned by a single search run."""
    request: SearchRequest
    on_directory: Optional[DirectoryObserver] = None
    on_file: Optional[FileObserver] = None
    on_error: Optional[ErrorObserver] = None
    on_ended: Optional[EndObserver] = None

    directories_visited: int = 0
    directories_found: int = 0
    files_found: int = 0
    errors: int = 0
    cancelled: bool = False
    outcome: Optional[SearchOutcome] = None

    # (st_dev, st_ino) of the directories on the current descent path
    ancestors: set[tuple[int, int]] = field(default_factory=set)


class _SearchThread(QThread):
    """Dedicated thread for a single background search."""

    def __init__(self, searcher: 'DirectorySearcher', run: _SearchRun):
        super().__init__()
        self._searcher = searcher
        self._run_state = run

    def run(self) -> None:
        self._searcher._run_in_background(self._run_state)


class DirectorySearcher:
    """
    Walks a directory and reports what it finds.

    Observers receive a DirectoryEntry, FileEntry or SearchError and may
    return a SearchAction: CANCEL ends the search, SKIP (directories
    only) reports the directory without descending into it. Returning
    None continues.

    Only one search runs per instance at a time; starting another while
    one is active does nothing.

    Usage:
        searcher = DirectorySearcher()
        outcome = searcher.start(
            SearchRequest(root, SearchOption.ALL_DIRECTORIES),
            on_file=lambda entry: print(entry.path),
        )
    """

    def __init__(self):
        self._mutex = QMutex()
        self._running = False
        self._stop_requested = False
        self._thread: Optional[_SearchThread] = None
        self._outcome: Optional[SearchOutcome] = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether a search is currently active."""
        with QMutexLocker(self._mutex):
            return self._running

    @property
    def outcome(self) -> Optional[SearchOutcome]:
        """Outcome of the most recent completed search."""
        with QMutexLocker(self._mutex):
            return self._outcome

    @property
    def cancelled(self) -> bool:
        """Whether the most recent search ended by cancellation."""
        outcome = self.outcome
        return outcome is not None and outcome.reason == SearchEndReason.CANCELLED

    def start(
        self,
        request: SearchRequest,
        on_directory: Optional[DirectoryObserver] = None,
        on_file: Optional[FileObserver] = None,
        on_error: Optional[ErrorObserver] = None,
        on_ended: Optional[EndObserver] = None
    ) -> Optional[SearchOutcome]:
        """
        Run a search on the calling thread.

        Exceptions raised by observers propagate to the caller.

        Returns:
            The SearchOutcome, or None if a search was already running
        """
        run = _SearchRun(request, on_directory, on_file, on_error, on_ended)
        if not self._acquire():
            return None

        try:
            return self._run(run)
        finally:
            self._release()

    def start_async(
        self,
        request: SearchRequest,
        on_directory: Optional[DirectoryObserver] = None,
        on_file: Optional[FileObserver] = None,
        on_error: Optional[ErrorObserver] = None,
        on_ended: Optional[EndObserver] = None
    ) -> bool:
        """
        Run a search on a dedicated background thread.

        Observers are called on that thread. Use wait() to block until the
        search has ended and outcome to read the result.

        Returns:
            True if the search was started, False if one was already running
        """
        run = _SearchRun(request, on_directory, on_file, on_error, on_ended)
        if not self._acquire():
            return False

        thread = _SearchThread(self, run)
        with QMutexLocker(self._mutex):
            self._thread = thread
        thread.start()
        return True

    def stop(self) -> None:
        """
        Request the active search to stop.

        Safe to call from any thread, including from inside an observer.
        The search ends with CANCELLED at its next checkpoint.
        """
        with QMutexLocker(self._mutex):
            if not self._running:
                return
            self._stop_requested = True
        logging.info("DirectorySearcher - Stop requested")

    def wait(self, timeout_ms: Optional[int] = None) -> bool:
        """
        Wait for a background search to end.

        Returns:
            True if no background search is running any more
        """
        with QMutexLocker(self._mutex):
            thread = self._thread

        if thread is None:
            return True

        if timeout_ms is None:
            return thread.wait()
        return thread.wait(timeout_ms)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def _acquire(self) -> bool:
        with QMutexLocker(self._mutex):
            if self._running:
                logging.debug("DirectorySearcher - Search already running, start ignored")
                return False
            self._running = True
            self._stop_requested = False
            self._outcome = None
            return True

    def _release(self) -> None:
        with QMutexLocker(self._mutex):
            self._running = False
            self._stop_requested = False

    def _stop_is_requested(self) -> bool:
        with QMutexLocker(self._mutex):
            return self._stop_requested

    def _run_in_background(self, run: _SearchRun) -> None:
        """Body of the background thread; never lets an exception escape."""
        try:
            self._run(run)
        except Exception as e:
            logging.exception(f"DirectorySearcher - Background search of {run.request.root} failed")
            if run.outcome is None:
                run.errors += 1
                try:
                    if run.on_error:
                        run.on_error(SearchError(run.request.root, str(e), e))
                    self._finish(run, SearchEndReason.OBSERVER_FAILED)
                except Exception:
                    logging.exception("DirectorySearcher - Observer failed while reporting an observer failure")
        finally:
            self._release()

    def _run(self, run: _SearchRun) -> SearchOutcome:
        root = run.request.root
        logging.info(f"DirectorySearcher - Searching {root}")

        try:
            children = file_ops.list_children(root)
            root_stat = root.stat()
        except OSError as e:
            logging.error(f"DirectorySearcher - Cannot open search root {root}: {e}")
            self._report_error(run, root, f"An error occurred searching '{root}' - {e}", e)
            return self._finish(run, SearchEndReason.FATAL_ERROR)

        run.ancestors.add((root_stat.st_dev, root_stat.st_ino))

        if self._process_children(run, root, children):
            return self._finish(run, SearchEndReason.FINISHED)
        return self._finish(run, SearchEndReason.CANCELLED)

    def _finish(self, run: _SearchRun, reason: SearchEndReason) -> SearchOutcome:
        outcome = SearchOutcome(
            reason=reason,
            root=run.request.root,
            directories_visited=run.directories_visited,
            directories_found=run.directories_found,
            files_found=run.files_found,
            errors=run.errors,
        )
        run.outcome = outcome

        with QMutexLocker(self._mutex):
            self._outcome = outcome

        logging.info(
            f"DirectorySearcher - Search of {outcome.root} ended ({reason.name}): "
            f"{outcome.directories_found} directories, {outcome.files_found} files, "
            f"{outcome.errors} errors"
        )

        if run.on_ended:
            run.on_ended(outcome)
        return outcome

    # -------------------------------------------------------------------------
    # Traversal
    # -------------------------------------------------------------------------

    def _checkpoint(self, run: _SearchRun) -> bool:
        """Return True if the run must stop now."""
        if not run.cancelled and self._stop_is_requested():
            run.cancelled = True
        return run.cancelled

    def _search_directory(self, run: _SearchRun, path: Path) -> bool:
        """
        Enumerate one directory below the root.

        Returns False if the run was cancelled.
        """
        try:
            children = file_ops.list_children(path)
        except OSError as e:
            self._report_error(run, path, f"An error occurred searching '{path}' - {e}", e)
            return not run.cancelled

        return self._process_children(run, path, children)

    def _process_children(self, run: _SearchRun, path: Path, children: list[os.DirEntry]) -> bool:
        """
        Report the children of a directory: sub-directories first, then files.

        Returns False if the run was cancelled.
        """
        directories: list[os.DirEntry] = []
        files: list[os.DirEntry] = []

        for entry in children:
            try:
                is_dir = entry.is_dir()
            except OSError:
                is_dir = False
            (directories if is_dir else files).append(entry)

        # Stops are also checked after every entry, including the last one
        if self._checkpoint(run):
            return False

        for entry in directories:
            if not self._process_directory_entry(run, entry):
                return False
            if self._checkpoint(run):
                return False

        for entry in files:
            if not self._process_file_entry(run, entry):
                return False
            if self._checkpoint(run):
                return False

        run.directories_visited += 1
        return True

    def _process_directory_entry(self, run: _SearchRun, entry: os.DirEntry) -> bool:
        request = run.request
        child = Path(entry.path)
        is_link = entry.is_symlink()

        if is_link and request.directory_link_action == SymbolicLinkBehaviour.IGNORE:
            logging.debug(f"DirectorySearcher - Ignoring directory link {child}")
            return True

        try:
            follow = is_link and request.directory_link_action == SymbolicLinkBehaviour.FOLLOW
            metadata = file_ops.get_metadata(child, follow_symlinks=follow)
            target_stat = entry.stat()
        except OSError as e:
            self._report_error(run, child, f"Could not read directory '{child}' - {e}", e)
            return not run.cancelled

        action = SearchAction.CONTINUE
        if request.reports_directories:
            run.directories_found += 1
            action = self._notify(run.on_directory, DirectoryEntry(
                path=child,
                relative_path=self._relative(request.root, child),
                metadata=metadata,
                is_symlink=is_link,
            ))
            if action == SearchAction.CANCEL:
                run.cancelled = True
                return False

        if not request.recursive or action == SearchAction.SKIP:
            return True

        if self._checkpoint(run):
            return False

        key = (target_stat.st_dev, target_stat.st_ino)
        if key in run.ancestors:
            logging.warning(f"DirectorySearcher - Not descending into {child}: link loops back to an ancestor")
            return True

        run.ancestors.add(key)
        try:
            return self._search_directory(run, child)
        finally:
            run.ancestors.discard(key)

    def _process_file_entry(self, run: _SearchRun, entry: os.DirEntry) -> bool:
        request = run.request
        child = Path(entry.path)
        is_link = entry.is_symlink()

        if is_link and request.file_link_action == SymbolicLinkBehaviour.IGNORE:
            logging.debug(f"DirectorySearcher - Ignoring file link {child}")
            return True

        if not request.reports_files:
            return True

        try:
            follow = is_link and request.file_link_action == SymbolicLinkBehaviour.FOLLOW
            metadata = file_ops.get_metadata(child, follow_symlinks=follow)
        except OSError as e:
            self._report_error(run, child, f"Could not read file '{child}' - {e}", e)
            return not run.cancelled

        run.files_found += 1
        action = self._notify(run.on_file, FileEntry(
            path=child,
            relative_path=self._relative(request.root, child),
            metadata=metadata,
            is_symlink=is_link,
        ))
        if action == SearchAction.CANCEL:
            run.cancelled = True
            return False

        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _relative(root: Path, path: Path) -> str:
        return str(path.relative_to(root))

    @staticmethod
    def _notify(observer: Optional[Callable], notification) -> SearchAction:
        if observer is None:
            return SearchAction.CONTINUE
        action = observer(notification)
        return action if action is not None else SearchAction.CONTINUE

    def _report_error(self, run: _SearchRun, path: Path, message: str, exception: BaseException) -> None:
        run.errors += 1
        logging.warning(f"DirectorySearcher - {message}")

        action = self._notify(run.on_error, SearchError(path, message, exception))
        if action == SearchAction.CANCEL:
            run.cancelled = True
