from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO, Protocol

from blake3 import blake3

from dupecache.core.config import SUPPORTED_HASH_ALGORITHMS

DEFAULT_CHUNK_BYTES = 1024 * 1024


class FileHasher(Protocol):
    def hash(self, path: Path) -> str: ...


def _new_digest(algorithm: str):  # type: ignore[no-untyped-def]
    if algorithm == "sha256":
        return hashlib.sha256()
    if algorithm == "blake3":
        return blake3()
    raise ValueError(f"Unsupported hash algorithm: {algorithm}")


def hash_stream(stream: BinaryIO, *, algorithm: str = "sha256", chunk_bytes: int = DEFAULT_CHUNK_BYTES) -> str:
    digest = _new_digest(algorithm)
    while True:
        chunk = stream.read(chunk_bytes)
        if not chunk:
            break
        digest.update(chunk)
    return digest.hexdigest()


def hash_bytes(data: bytes, *, algorithm: str = "sha256") -> str:
    digest = _new_digest(algorithm)
    digest.update(data)
    return digest.hexdigest()


class StreamingFileHasher:
    def __init__(self, algorithm: str = "sha256", chunk_bytes: int = DEFAULT_CHUNK_BYTES):
        normalized = algorithm.lower().strip()
        if normalized not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"algorithm must be one of {sorted(SUPPORTED_HASH_ALGORITHMS)}")
        if chunk_bytes < 1:
            raise ValueError("chunk_bytes must be >= 1")
        self.algorithm = normalized
        self._chunk_bytes = chunk_bytes

    def hash(self, path: Path) -> str:
        with open(path, "rb") as stream:
            return hash_stream(stream, algorithm=self.algorithm, chunk_bytes=self._chunk_bytes)
