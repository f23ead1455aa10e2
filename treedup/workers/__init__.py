"""
Background workers for non-blocking operations.

Provides QThread-based workers for directory duplication.

All workers use Qt signals for thread-safe communication
with the thread that owns them.
"""

from treedup.workers.base_worker import (
    BaseWorker,
    WorkerSignals,
    WorkerState,
    WorkerThread,
)
from treedup.workers.duplicate_worker import (
    DuplicateWorker,
)

__all__ = [
    # Base
    'BaseWorker',
    'WorkerSignals',
    'WorkerState',
    'WorkerThread',
    # Duplicate
    'DuplicateWorker',
]
