"""
Core data models for directory duplication.

This module defines the data structures shared across the application:
- Directory search models (requests, notifications, outcomes)
- Content comparison models
- Collision handling models
- Duplication options and results
- File metadata models

All models are UI-agnostic and type-hinted; request and outcome
objects are immutable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Optional


# =============================================================================
# Enumerations
# =============================================================================

class FileType(Enum):
    """Type of filesystem entry."""
    FILE = auto()
    DIRECTORY = auto()
    SYMLINK = auto()
    UNKNOWN = auto()


class SearchOption(Enum):
    """How deep a directory search goes."""
    TOP_DIRECTORY_ONLY = auto()  # Immediate children of the root only
    ALL_DIRECTORIES = auto()     # Every descendant


class SymbolicLinkBehaviour(Enum):
    """What to do when a symbolic link or junction is encountered."""
    IGNORE = auto()  # Skip the link, raise no event
    FOLLOW = auto()  # Raise an event for the link target and descend
    RETURN = auto()  # Raise an event for the link itself and descend


class SearchEventMask(Flag):
    """Which entry kinds a search reports."""
    FILES = 1
    DIRECTORIES = 2
    BOTH = FILES | DIRECTORIES


class SearchEndReason(Enum):
    """Why a directory search came to an end."""
    FINISHED = auto()
    CANCELLED = auto()
    FATAL_ERROR = auto()  # The search root could not be opened
    OBSERVER_FAILED = auto()  # An observer raised during a background run


class SearchAction(Enum):
    """Value returned by a search observer."""
    CONTINUE = auto()
    CANCEL = auto()
    SKIP = auto()  # Directories only: report but do not descend


class CompareMethod(Enum):
    """Method that produced a comparison result."""
    BYTE_EXACT = auto()
    ROTATED_PIXEL_MATCH = auto()
    TYPE_MISMATCH = auto()


class CollisionAction(Enum):
    """Policy for a file whose destination name is already taken."""
    OVERWRITE_EXISTING_FILES = auto()
    KEEP_EXISTING_FILES = auto()
    RENAME_ANY_EXISTING_FILES = auto()
    RENAME_DIFFERENT_EXISTING_FILES = auto()


class CollisionDecisionType(Enum):
    """Outcome of resolving a collision."""
    SKIP = auto()
    OVERWRITE = auto()
    RENAME = auto()


class DuplicateOptions(Flag):
    """Options controlling how a directory tree is duplicated."""
    NONE = 0
    MERGE_EXISTING_DIRECTORIES = 1  # Copy into a destination that already exists
    SKIP_ZERO_BYTE_FILES = 2
    DIRECTORY_STRUCTURE_ONLY = 4    # Create directories, copy no files
    SKIP_SYSTEM_FILES = 8           # Skip hidden/system files and directories
    CONVERT_IMAGES_TO_TIFF = 16
    COMPARE_IMAGE_CONTENT = 32      # Treat rotated copies of an image as identical
    VERIFY_COPIES = 64              # Re-hash every written file


class EntryAction(Enum):
    """What the duplicator did with a single entry."""
    CREATED_DIRECTORY = auto()
    MERGED_DIRECTORY = auto()
    COPIED = auto()
    OVERWRITTEN = auto()
    RENAMED = auto()
    SKIPPED_IDENTICAL = auto()
    SKIPPED_EXISTING = auto()
    SKIPPED_ZERO_BYTE = auto()
    SKIPPED_SYSTEM = auto()
    FAILED = auto()


# =============================================================================
# File Metadata Models
# =============================================================================

@dataclass
class FileMetadata:
    """Metadata for a file or directory."""
    path: Path
    name: str
    file_type: FileType
    size: int = 0
    modified_time: Optional[datetime] = None
    accessed_time: Optional[datetime] = None
    created_time: Optional[datetime] = None
    permissions: int = 0
    is_hidden: bool = False
    is_system: bool = False
    is_readonly: bool = False
    symlink_target: Optional[Path] = None
    error: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.file_type == FileType.FILE

    @property
    def is_directory(self) -> bool:
        return self.file_type == FileType.DIRECTORY

    @property
    def is_symlink(self) -> bool:
        return self.file_type == FileType.SYMLINK

    @property
    def is_hidden_or_system(self) -> bool:
        return self.is_hidden or self.is_system

    @property
    def extension(self) -> str:
        """Get file extension (lowercase, without dot)."""
        return self.path.suffix.lower().lstrip('.')


# =============================================================================
# Directory Search Models
# =============================================================================

@dataclass(frozen=True)
class SearchRequest:
    """
    Parameters of a single directory search.

    The root is resolved to an absolute path when the request is built;
    building a request for anything but an existing directory fails.
    """
    root: Path
    search_option: SearchOption = SearchOption.TOP_DIRECTORY_ONLY
    directory_link_action: SymbolicLinkBehaviour = SymbolicLinkBehaviour.IGNORE
    file_link_action: SymbolicLinkBehaviour = SymbolicLinkBehaviour.IGNORE
    event_mask: SearchEventMask = SearchEventMask.BOTH

    def __post_init__(self) -> None:
        if self.root is None or not str(self.root).strip():
            raise ValueError("Invalid search path: empty")

        root = Path(os.path.abspath(self.root))
        if not root.is_dir():
            raise ValueError(f"Invalid search path: {root}")

        object.__setattr__(self, 'root', root)

    @property
    def recursive(self) -> bool:
        return self.search_option == SearchOption.ALL_DIRECTORIES

    @property
    def reports_files(self) -> bool:
        return bool(self.event_mask & SearchEventMask.FILES)

    @property
    def reports_directories(self) -> bool:
        return bool(self.event_mask & SearchEventMask.DIRECTORIES)


@dataclass(frozen=True)
class DirectoryEntry:
    """A directory found during a search."""
    path: Path
    relative_path: str
    metadata: FileMetadata
    is_symlink: bool = False


@dataclass(frozen=True)
class FileEntry:
    """A file found during a search."""
    path: Path
    relative_path: str
    metadata: FileMetadata
    is_symlink: bool = False

    @property
    def size(self) -> int:
        return self.metadata.size


@dataclass(frozen=True)
class SearchError:
    """A recoverable (or, for the root, fatal) search failure."""
    path: Path
    message: str
    exception: Optional[BaseException] = None


@dataclass(frozen=True)
class SearchOutcome:
    """Terminal summary of a directory search."""
    reason: SearchEndReason
    root: Path
    directories_visited: int = 0
    directories_found: int = 0
    files_found: int = 0
    errors: int = 0

    @property
    def finished(self) -> bool:
        return self.reason == SearchEndReason.FINISHED

    @property
    def cancelled(self) -> bool:
        return self.reason == SearchEndReason.CANCELLED


# =============================================================================
# Comparison and Collision Models
# =============================================================================

@dataclass(frozen=True)
class ComparisonResult:
    """Whether two sources hold the same content, and how that was decided."""
    identical: bool
    method: CompareMethod

    def __bool__(self) -> bool:
        return self.identical


@dataclass(frozen=True)
class CollisionDecision:
    """
    What to do with an incoming file whose destination already exists.

    For RENAME, target_path is a path that did not exist when the
    decision was made and carries the numeric suffix.
    """
    decision: CollisionDecisionType
    existing_path: Path
    target_path: Optional[Path] = None
    suffix: Optional[str] = None

    @property
    def is_skip(self) -> bool:
        return self.decision == CollisionDecisionType.SKIP

    @property
    def is_overwrite(self) -> bool:
        return self.decision == CollisionDecisionType.OVERWRITE

    @property
    def is_rename(self) -> bool:
        return self.decision == CollisionDecisionType.RENAME


# =============================================================================
# Duplication Models
# =============================================================================

@dataclass
class DuplicateResult:
    """Result of duplicating a directory tree."""
    success: bool
    outcome: Optional[SearchOutcome] = None
    directories_created: int = 0
    directories_merged: int = 0
    files_copied: int = 0
    files_overwritten: int = 0
    files_renamed: int = 0
    files_skipped: int = 0
    bytes_copied: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)  # (path, message)
    duration: float = 0.0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def files_written(self) -> int:
        return self.files_copied + self.files_overwritten + self.files_renamed
