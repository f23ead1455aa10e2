"""
Collision handling for file duplication.

Decides what happens when a file is about to be written to a path that
is already taken: skip it, overwrite the existing file, or write under a
new, unused name.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from treedup.core.models import (
    CollisionAction,
    CollisionDecision,
    CollisionDecisionType,
)


class CollisionResolver:
    """
    Resolves destination name collisions according to a CollisionAction.

    Renamed targets get a zero-padded counter inserted before the
    extension (``photo.00001.jpg``). Every candidate is checked against
    the filesystem, so the returned path was free when it was chosen.
    """

    def __init__(self, suffix_width: int = 5, max_attempts: int = 100000):
        self.suffix_width = suffix_width
        self.max_attempts = max_attempts

    def resolve(
        self,
        existing_path: Path | str,
        identical: bool,
        policy: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES
    ) -> CollisionDecision:
        """
        Decide what to do with an incoming file.

        Args:
            existing_path: Destination path that is already occupied
            identical: Whether the incoming content matches the existing file
            policy: Collision policy to apply

        Returns:
            CollisionDecision; RENAME decisions carry a free target path
        """
        existing_path = Path(existing_path)

        if policy == CollisionAction.OVERWRITE_EXISTING_FILES:
            return CollisionDecision(CollisionDecisionType.OVERWRITE, existing_path, existing_path)

        if policy == CollisionAction.KEEP_EXISTING_FILES:
            return CollisionDecision(CollisionDecisionType.SKIP, existing_path)

        if policy == CollisionAction.RENAME_DIFFERENT_EXISTING_FILES and identical:
            return CollisionDecision(CollisionDecisionType.SKIP, existing_path)

        target, suffix = self.unique_path(existing_path)
        return CollisionDecision(
            CollisionDecisionType.RENAME,
            existing_path,
            target_path=target,
            suffix=suffix,
        )

    def unique_path(self, path: Path | str) -> tuple[Path, str]:
        """
        Find an unused sibling name for path.

        Returns:
            (free path, the suffix that was inserted)

        Raises:
            FileExistsError: if every candidate is taken
        """
        path = Path(path)
        stem = path.stem
        extension = path.suffix

        for counter in range(1, self.max_attempts + 1):
            suffix = f"{counter:0{self.suffix_width}d}"
            candidate = path.with_name(f"{stem}.{suffix}{extension}")
            if not os.path.lexists(candidate):
                return candidate, suffix

        logging.error(f"CollisionResolver - No free name left for {path}")
        raise FileExistsError(f"No free name available for {path}")


def resolve_collision(
    existing_path: Path | str,
    identical: bool,
    policy: CollisionAction = CollisionAction.RENAME_DIFFERENT_EXISTING_FILES
) -> CollisionDecision:
    """Resolve a collision with a default CollisionResolver."""
    return CollisionResolver().resolve(existing_path, identical, policy)
