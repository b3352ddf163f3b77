"""Cache storage backends.

A backend stores one JSON document. Reads that cannot be decoded raise
CacheCorruptionError; the cache manager purges and treats them as a miss.
File I/O runs in a worker thread so the event loop never waits on disk.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Protocol

from collector_earnings.errors import CacheCorruptionError


class CacheStorage(Protocol):
    """Single-entry document store."""

    async def read(self) -> dict[str, Any] | None:
        """Stored document, or None when empty."""
        ...

    async def write(self, document: dict[str, Any]) -> None:
        """Atomically replace the stored document."""
        ...

    async def delete(self) -> None:
        ...


def _decode(raw: str) -> dict[str, Any]:
    try:
        document = json.loads(raw)
    except ValueError as e:
        raise CacheCorruptionError(f"Cache entry is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise CacheCorruptionError("Cache entry is not a JSON object")
    return document


class MemoryCacheStorage:
    """Holds the serialized document in memory."""

    def __init__(self) -> None:
        self.raw: str | None = None

    async def read(self) -> dict[str, Any] | None:
        if self.raw is None:
            return None
        return _decode(self.raw)

    async def write(self, document: dict[str, Any]) -> None:
        self.raw = json.dumps(document)

    async def delete(self) -> None:
        self.raw = None


class FileCacheStorage:
    """JSON file, replaced atomically via a temp file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def read(self) -> dict[str, Any] | None:
        raw = await asyncio.to_thread(self._read_text)
        if raw is None:
            return None
        return _decode(raw)

    async def write(self, document: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_text, json.dumps(document))

    async def delete(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read_text(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorruptionError(f"Cache file unreadable: {e}") from e

    def _write_text(self, raw: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(raw, encoding="utf-8")
        os.replace(tmp, self.path)
