"""
Base worker classes for background duplication.

A worker wraps one long-running job, tracks its state under a mutex and
reports through Qt signals, so the job can run on a WorkerThread while
the owning thread stays responsive.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Any, Optional

from PyQt6.QtCore import QObject, QThread, pyqtSignal, pyqtSlot, QMutex, QMutexLocker


class WorkerState(Enum):
    """State of a worker."""
    PENDING = auto()
    RUNNING = auto()
    CANCELLING = auto()
    CANCELLED = auto()
    COMPLETED = auto()
    FAILED = auto()


class WorkerSignals(QObject):
    """Signals a worker emits while its job runs."""
    started = pyqtSignal()

    # (entries processed so far, relative path of the latest entry)
    progress = pyqtSignal(int, str)

    status = pyqtSignal(str)

    # Job result, emitted only when the job ran to the end
    finished = pyqtSignal(object)

    error = pyqtSignal(str, str)  # (exception type, message)

    cancelled = pyqtSignal()

    state_changed = pyqtSignal(object)  # WorkerState


class BaseWorker(QObject):
    """
    A cancellable job that reports through WorkerSignals.

    Subclasses implement do_work(); run() drives the state machine:
    PENDING -> RUNNING -> COMPLETED, CANCELLED or FAILED. A worker
    cancelled before it starts goes straight to CANCELLED without
    calling do_work().
    """

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.signals = WorkerSignals()
        self._mutex = QMutex()
        self._state = WorkerState.PENDING
        self._cancelled = False
        self._result: Any = None
        self._error: Optional[tuple[str, str]] = None

    @property
    def state(self) -> WorkerState:
        with QMutexLocker(self._mutex):
            return self._state

    @state.setter
    def state(self, value: WorkerState) -> None:
        with QMutexLocker(self._mutex):
            self._state = value
        self.signals.state_changed.emit(value)

    @property
    def is_cancelled(self) -> bool:
        with QMutexLocker(self._mutex):
            return self._cancelled

    @property
    def result(self) -> Any:
        """Value returned by do_work(), also kept when the job was cancelled."""
        return self._result

    @property
    def error(self) -> Optional[tuple[str, str]]:
        """(exception type, message) if do_work() raised."""
        return self._error

    def cancel(self) -> None:
        """Ask the job to stop; subclasses also forward this to their engine."""
        with QMutexLocker(self._mutex):
            self._cancelled = True
            running = self._state == WorkerState.RUNNING
            if running:
                self._state = WorkerState.CANCELLING
        if running:
            self.signals.state_changed.emit(WorkerState.CANCELLING)

    @pyqtSlot()
    def run(self) -> None:
        if self.is_cancelled:
            logging.info(f"{type(self).__name__} - Cancelled before it started")
            self._end_cancelled()
            return

        self.state = WorkerState.RUNNING
        self.signals.started.emit()

        try:
            self._result = self.do_work()
        except Exception as e:
            logging.exception(f"{type(self).__name__} - Worker failed")
            self._error = (type(e).__name__, str(e))
            self.state = WorkerState.FAILED
            self.signals.error.emit(type(e).__name__, str(e))
            return

        if self.is_cancelled:
            self._end_cancelled()
        else:
            self.state = WorkerState.COMPLETED
            self.signals.finished.emit(self._result)

    def do_work(self) -> Any:
        raise NotImplementedError

    def _end_cancelled(self) -> None:
        self.state = WorkerState.CANCELLED
        self.signals.cancelled.emit()

    def report_progress(self, processed: int, path: str) -> None:
        self.signals.progress.emit(processed, path)

    def report_status(self, message: str) -> None:
        self.signals.status.emit(message)


class WorkerThread(QThread):
    """
    Runs a worker in the thread body.

    Usage:
        thread = WorkerThread(DuplicateWorker(source, destination))
        thread.start()
        thread.wait()
        result = thread.result
    """

    def __init__(
        self,
        worker: BaseWorker,
        parent: Optional[QObject] = None
    ):
        super().__init__(parent)
        self.worker = worker

    def run(self) -> None:
        self.worker.run()

    def cancel(self) -> None:
        self.worker.cancel()

    @property
    def result(self) -> Any:
        return self.worker.result

    @property
    def error(self) -> Optional[tuple[str, str]]:
        return self.worker.error
