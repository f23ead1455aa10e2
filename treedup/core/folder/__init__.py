"""
Folder traversal and duplication module.

Provides functionality for:
- Cancellable directory searches with symbolic link policies
- Destination name collision handling
- Copying directory trees without redundant copies
"""

from treedup.core.folder.searcher import (
    DirectorySearcher,
)
from treedup.core.folder.collision import (
    CollisionResolver,
    resolve_collision,
)
from treedup.core.folder.duplicator import (
    DirectoryDuplicator,
    duplicate_folder,
)

__all__ = [
    # Searcher
    'DirectorySearcher',
    # Collision
    'CollisionResolver',
    'resolve_collision',
    # Duplicator
    'DirectoryDuplicator',
    'duplicate_folder',
]
