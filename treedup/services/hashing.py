"""
Hashing service for copy verification.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any, Optional

import xxhash


class HashAlgorithm(Enum):
    """Supported hash algorithms."""
    XXH64 = auto()   # Fast non-cryptographic hash
    SHA256 = auto()


@dataclass
class HashResult:
    """Result of a hash operation."""
    algorithm: HashAlgorithm
    hash_hex: str
    file_size: int


class HashingService:
    """Service for computing file hashes."""

    def __init__(
        self,
        default_algorithm: HashAlgorithm = HashAlgorithm.XXH64,
        chunk_size: int = 65536
    ):
        self.default_algorithm = default_algorithm
        self.chunk_size = chunk_size

    def create_hasher(self, algorithm: Optional[HashAlgorithm] = None) -> Any:
        """Create a fresh incremental hasher."""
        algorithm = algorithm or self.default_algorithm
        if algorithm == HashAlgorithm.XXH64:
            return xxhash.xxh64()
        return hashlib.sha256()

    def hash_file(
        self,
        path: Path | str,
        algorithm: Optional[HashAlgorithm] = None
    ) -> HashResult:
        """Compute the hash of a file."""
        path = Path(path)
        algorithm = algorithm or self.default_algorithm
        hasher = self.create_hasher(algorithm)

        file_size = 0
        with open(path, 'rb') as f:
            while chunk := f.read(self.chunk_size):
                hasher.update(chunk)
                file_size += len(chunk)

        return HashResult(
            algorithm=algorithm,
            hash_hex=hasher.hexdigest(),
            file_size=file_size
        )

    def hash_bytes(self, data: bytes, algorithm: Optional[HashAlgorithm] = None) -> HashResult:
        """Compute the hash of an in-memory buffer."""
        algorithm = algorithm or self.default_algorithm
        hasher = self.create_hasher(algorithm)
        hasher.update(data)
        return HashResult(algorithm=algorithm, hash_hex=hasher.hexdigest(), file_size=len(data))
