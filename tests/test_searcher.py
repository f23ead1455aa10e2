"""
Tests for the directory search engine.
"""

import os
import sys
import threading
from pathlib import Path

import pytest

from treedup.core.folder.searcher import DirectorySearcher
from treedup.core.models import (
    SearchAction,
    SearchEndReason,
    SearchEventMask,
    SearchOption,
    SearchRequest,
    SymbolicLinkBehaviour,
)


SUB_B = os.path.join('sub', 'b.txt')


class Recorder:
    """Collects every notification a search raises."""

    def __init__(self):
        self.events = []
        self.directories = []
        self.files = []
        self.errors = []
        self.ended = []

    def on_directory(self, entry):
        self.events.append(('D', entry.relative_path))
        self.directories.append(entry)

    def on_file(self, entry):
        self.events.append(('F', entry.relative_path))
        self.files.append(entry)

    def on_error(self, error):
        self.errors.append(error)

    def on_ended(self, outcome):
        self.ended.append(outcome)

    def observers(self):
        return dict(
            on_directory=self.on_directory,
            on_file=self.on_file,
            on_error=self.on_error,
            on_ended=self.on_ended,
        )


def symlinks_supported(tmp_path: Path) -> bool:
    try:
        os.symlink(tmp_path, tmp_path / '_probe')
    except (OSError, NotImplementedError):
        return False
    os.unlink(tmp_path / '_probe')
    return True


def run_search(root, **request_kwargs):
    recorder = Recorder()
    outcome = DirectorySearcher().start(SearchRequest(root, **request_kwargs), **recorder.observers())
    return outcome, recorder


# =============================================================================
# Requests
# =============================================================================

class TestSearchRequest:

    def test_root_is_made_absolute(self, simple_tree, monkeypatch):
        monkeypatch.chdir(simple_tree.parent)
        request = SearchRequest(simple_tree.name)
        assert request.root.resolve() == simple_tree.resolve()
        assert request.root.is_absolute()

    def test_empty_root_rejected(self):
        with pytest.raises(ValueError):
            SearchRequest('')

    def test_missing_root_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            SearchRequest(tmp_path / 'missing')

    def test_file_root_rejected(self, tmp_path):
        path = tmp_path / 'file.txt'
        path.write_text('x')
        with pytest.raises(ValueError):
            SearchRequest(path)

    def test_defaults(self, simple_tree):
        request = SearchRequest(simple_tree)
        assert not request.recursive
        assert request.reports_files
        assert request.reports_directories
        assert request.directory_link_action == SymbolicLinkBehaviour.IGNORE


# =============================================================================
# Traversal
# =============================================================================

class TestTraversal:

    def test_top_directory_only(self, simple_tree):
        outcome, recorder = run_search(simple_tree)

        assert outcome.reason == SearchEndReason.FINISHED
        assert recorder.events == [('D', 'sub'), ('F', 'a.txt')]
        assert outcome.directories_visited == 1
        assert outcome.directories_found == 1
        assert outcome.files_found == 1

    def test_recursive_counts(self, simple_tree):
        outcome, recorder = run_search(simple_tree, search_option=SearchOption.ALL_DIRECTORIES)

        assert outcome.finished
        assert outcome.directories_visited == 2
        assert outcome.directories_found == 1
        assert outcome.files_found == 2
        assert outcome.errors == 0
        assert {path for _, path in recorder.events} == {'sub', 'a.txt', SUB_B}

    def test_pre_order_directories_before_files(self, simple_tree):
        _, recorder = run_search(simple_tree, search_option=SearchOption.ALL_DIRECTORIES)
        assert recorder.events == [('D', 'sub'), ('F', SUB_B), ('F', 'a.txt')]

    def test_every_entry_reported_once(self, make_tree):
        root = make_tree({
            'one': {'x.txt': '1', 'deeper': {'y.txt': '2', 'z.txt': '3'}},
            'two': {},
            'three': {'w.txt': '4'},
            'top.txt': '5',
        })
        outcome, recorder = run_search(root, search_option=SearchOption.ALL_DIRECTORIES)

        paths = [path for _, path in recorder.events]
        assert len(paths) == len(set(paths)) == 9
        assert outcome.directories_found == 4
        assert outcome.files_found == 5
        assert outcome.directories_visited == 5

    def test_entries_carry_metadata(self, simple_tree):
        _, recorder = run_search(simple_tree)

        assert recorder.directories[0].metadata.is_directory
        entry = recorder.files[0]
        assert entry.path == simple_tree / 'a.txt'
        assert entry.metadata.is_file
        assert entry.size == len('alpha')
        assert not entry.is_symlink

    def test_empty_root(self, make_tree):
        outcome, recorder = run_search(make_tree({}), search_option=SearchOption.ALL_DIRECTORIES)

        assert outcome.finished
        assert recorder.events == []
        assert outcome.directories_visited == 1
        assert recorder.ended == [outcome]

    def test_files_only_mask_still_descends(self, simple_tree):
        outcome, recorder = run_search(
            simple_tree,
            search_option=SearchOption.ALL_DIRECTORIES,
            event_mask=SearchEventMask.FILES,
        )

        assert recorder.events == [('F', SUB_B), ('F', 'a.txt')]
        assert outcome.directories_found == 0
        assert outcome.files_found == 2

    def test_directories_only_mask(self, simple_tree):
        outcome, recorder = run_search(
            simple_tree,
            search_option=SearchOption.ALL_DIRECTORIES,
            event_mask=SearchEventMask.DIRECTORIES,
        )

        assert recorder.events == [('D', 'sub')]
        assert outcome.files_found == 0

    def test_skip_does_not_descend(self, simple_tree):
        seen = []

        def on_directory(entry):
            seen.append(entry.relative_path)
            return SearchAction.SKIP

        outcome = DirectorySearcher().start(
            SearchRequest(simple_tree, SearchOption.ALL_DIRECTORIES),
            on_directory=on_directory,
            on_file=lambda entry: seen.append(entry.relative_path),
        )

        assert outcome.finished
        assert seen == ['sub', 'a.txt']
        assert outcome.directories_visited == 1


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:

    def test_cancel_from_observer(self, make_tree):
        root = make_tree({f'f{i}.txt': str(i) for i in range(5)})
        seen = []

        def on_file(entry):
            seen.append(entry.relative_path)
            if len(seen) == 2:
                return SearchAction.CANCEL

        searcher = DirectorySearcher()
        outcome = searcher.start(SearchRequest(root), on_file=on_file)

        assert outcome.reason == SearchEndReason.CANCELLED
        assert seen == ['f0.txt', 'f1.txt']
        assert outcome.files_found == 2
        assert searcher.cancelled

    def test_cancel_stops_recursion(self, simple_tree):
        seen = []

        def on_directory(entry):
            seen.append(entry.relative_path)
            return SearchAction.CANCEL

        outcome = DirectorySearcher().start(
            SearchRequest(simple_tree, SearchOption.ALL_DIRECTORIES),
            on_directory=on_directory,
            on_file=lambda entry: seen.append(entry.relative_path),
        )

        assert outcome.cancelled
        assert seen == ['sub']

    def test_stop_from_observer(self, make_tree):
        root = make_tree({f'f{i}.txt': str(i) for i in range(5)})
        searcher = DirectorySearcher()
        seen = []

        def on_file(entry):
            seen.append(entry.relative_path)
            searcher.stop()

        outcome = searcher.start(SearchRequest(root), on_file=on_file)

        assert outcome.cancelled
        assert seen == ['f0.txt']

    def test_stop_on_last_entry(self, make_tree):
        root = make_tree({'only.txt': 'x'})
        searcher = DirectorySearcher()

        outcome = searcher.start(SearchRequest(root), on_file=lambda entry: searcher.stop())

        assert outcome.reason == SearchEndReason.CANCELLED
        assert outcome.files_found == 1
        assert outcome.directories_visited == 0

    def test_stop_on_last_entry_of_subdirectory(self, make_tree):
        root = make_tree({'sub': {'b.txt': 'bravo'}})
        searcher = DirectorySearcher()

        outcome = searcher.start(
            SearchRequest(root, SearchOption.ALL_DIRECTORIES),
            on_file=lambda entry: searcher.stop(),
        )

        assert outcome.reason == SearchEndReason.CANCELLED
        assert outcome.directories_found == 1
        assert outcome.directories_visited == 0

    def test_stop_on_last_directory(self, make_tree):
        root = make_tree({'sub': {}})
        searcher = DirectorySearcher()

        outcome = searcher.start(SearchRequest(root), on_directory=lambda entry: searcher.stop())

        assert outcome.cancelled

    def test_stop_when_idle_is_ignored(self, simple_tree):
        searcher = DirectorySearcher()
        searcher.stop()

        outcome = searcher.start(SearchRequest(simple_tree))
        assert outcome.finished
        assert not searcher.cancelled

    def test_searcher_is_reusable(self, simple_tree):
        searcher = DirectorySearcher()

        first = searcher.start(SearchRequest(simple_tree), on_file=lambda e: SearchAction.CANCEL)
        second = searcher.start(SearchRequest(simple_tree))

        assert first.cancelled
        assert second.finished
        assert searcher.outcome is second

    def test_start_while_running_is_ignored(self, simple_tree):
        searcher = DirectorySearcher()
        nested = []

        def on_file(entry):
            nested.append(searcher.start(SearchRequest(simple_tree)))

        outcome = searcher.start(SearchRequest(simple_tree), on_file=on_file)

        assert outcome.finished
        assert nested == [None]


# =============================================================================
# Errors
# =============================================================================

class TestErrors:

    def test_root_removed_after_request_is_fatal(self, make_tree):
        root = make_tree({})
        request = SearchRequest(root)
        root.rmdir()

        recorder = Recorder()
        outcome = DirectorySearcher().start(request, **recorder.observers())

        assert outcome.reason == SearchEndReason.FATAL_ERROR
        assert outcome.errors == 1
        assert len(recorder.errors) == 1
        assert recorder.errors[0].path == root
        assert recorder.ended == [outcome]

    @pytest.mark.skipif(sys.platform == 'win32' or os.geteuid() == 0,
                        reason="needs POSIX permissions and a non-root user")
    def test_unreadable_directory_is_not_fatal(self, make_tree):
        root = make_tree({
            'locked': {'hidden.txt': 'x'},
            'open': {'c.txt': 'c'},
            'a.txt': 'a',
        })
        locked = root / 'locked'
        os.chmod(locked, 0)
        try:
            outcome, recorder = run_search(root, search_option=SearchOption.ALL_DIRECTORIES)
        finally:
            os.chmod(locked, 0o755)

        assert outcome.finished
        assert outcome.errors == 1
        assert recorder.errors[0].path == locked
        paths = {path for _, path in recorder.events}
        assert paths == {'locked', 'open', os.path.join('open', 'c.txt'), 'a.txt'}

    def test_cancel_from_error_observer(self, make_tree):
        root = make_tree({})
        request = SearchRequest(root)
        root.rmdir()

        outcome = DirectorySearcher().start(request, on_error=lambda error: SearchAction.CANCEL)
        assert outcome.reason == SearchEndReason.FATAL_ERROR

    def test_observer_exception_propagates(self, simple_tree):
        searcher = DirectorySearcher()

        def on_file(entry):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            searcher.start(SearchRequest(simple_tree), on_file=on_file)

        assert not searcher.is_running


# =============================================================================
# Symbolic links
# =============================================================================

class TestSymbolicLinks:

    @pytest.fixture
    def linked_tree(self, make_tree, tmp_path):
        if not symlinks_supported(tmp_path):
            pytest.skip("symbolic links not available")

        root = make_tree({'real': {'x.txt': 'x'}, 'a.txt': 'a'})
        os.symlink(root / 'real', root / 'link_dir', target_is_directory=True)
        os.symlink(root / 'a.txt', root / 'link_file')
        return root

    def test_ignore_skips_links(self, linked_tree):
        _, recorder = run_search(linked_tree, search_option=SearchOption.ALL_DIRECTORIES)

        paths = {path for _, path in recorder.events}
        assert paths == {'real', os.path.join('real', 'x.txt'), 'a.txt'}

    def test_follow_reports_targets_and_descends(self, linked_tree):
        _, recorder = run_search(
            linked_tree,
            search_option=SearchOption.ALL_DIRECTORIES,
            directory_link_action=SymbolicLinkBehaviour.FOLLOW,
            file_link_action=SymbolicLinkBehaviour.FOLLOW,
        )

        paths = {path for _, path in recorder.events}
        assert os.path.join('link_dir', 'x.txt') in paths

        link_dir = next(e for e in recorder.directories if e.relative_path == 'link_dir')
        assert link_dir.is_symlink
        assert link_dir.metadata.is_directory

        link_file = next(e for e in recorder.files if e.relative_path == 'link_file')
        assert link_file.is_symlink
        assert link_file.metadata.is_file
        assert link_file.size == 1

    def test_return_reports_links_themselves(self, linked_tree):
        _, recorder = run_search(
            linked_tree,
            search_option=SearchOption.ALL_DIRECTORIES,
            directory_link_action=SymbolicLinkBehaviour.RETURN,
            file_link_action=SymbolicLinkBehaviour.RETURN,
        )

        link_dir = next(e for e in recorder.directories if e.relative_path == 'link_dir')
        assert link_dir.metadata.is_symlink
        assert link_dir.metadata.symlink_target == linked_tree / 'real'

        link_file = next(e for e in recorder.files if e.relative_path == 'link_file')
        assert link_file.metadata.is_symlink

        paths = {path for _, path in recorder.events}
        assert os.path.join('link_dir', 'x.txt') in paths

    def test_link_loop_is_not_descended(self, linked_tree):
        os.symlink(linked_tree, linked_tree / 'real' / 'loop', target_is_directory=True)

        outcome, recorder = run_search(
            linked_tree,
            search_option=SearchOption.ALL_DIRECTORIES,
            directory_link_action=SymbolicLinkBehaviour.FOLLOW,
        )

        assert outcome.finished
        paths = [path for _, path in recorder.events]
        assert os.path.join('real', 'loop') in paths
        assert not any(path.startswith(os.path.join('real', 'loop') + os.sep) for path in paths)


# =============================================================================
# Background searches
# =============================================================================

class TestAsync:

    def test_background_search_finishes(self, simple_tree):
        searcher = DirectorySearcher()
        recorder = Recorder()

        assert searcher.start_async(SearchRequest(simple_tree, SearchOption.ALL_DIRECTORIES),
                                    **recorder.observers())
        assert searcher.wait(5000)

        outcome = searcher.outcome
        assert outcome.finished
        assert outcome.files_found == 2
        assert recorder.ended == [outcome]
        assert not searcher.is_running

    def test_stop_background_search(self, make_tree):
        root = make_tree({f'f{i}.txt': str(i) for i in range(5)})
        searcher = DirectorySearcher()
        entered = threading.Event()
        release = threading.Event()
        seen = []

        def on_file(entry):
            seen.append(entry.relative_path)
            entered.set()
            release.wait(5)

        assert searcher.start_async(SearchRequest(root), on_file=on_file)
        assert entered.wait(5)

        assert searcher.is_running
        assert not searcher.start_async(SearchRequest(root))
        assert searcher.start(SearchRequest(root)) is None

        searcher.stop()
        release.set()
        assert searcher.wait(5000)

        assert searcher.cancelled
        assert seen == ['f0.txt']

    def test_background_observer_failure_has_its_own_reason(self, simple_tree):
        searcher = DirectorySearcher()
        errors = []

        def on_file(entry):
            raise RuntimeError("boom")

        assert searcher.start_async(SearchRequest(simple_tree), on_file=on_file, on_error=errors.append)
        assert searcher.wait(5000)

        assert searcher.outcome.reason == SearchEndReason.OBSERVER_FAILED
        assert len(errors) == 1
        assert isinstance(errors[0].exception, RuntimeError)
        assert not searcher.is_running

    def test_wait_without_search(self):
        assert DirectorySearcher().wait(10)
