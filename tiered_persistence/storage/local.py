"""
Local cache implementations.

FileLocalCache keeps one file per native key on disk and survives
restarts; MemoryLocalCache lives for the process and suits server-side
sessions and tests. Both enforce an optional capacity, like a browser's
local storage does.
"""

from __future__ import annotations

import base64
import os
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import LocalCacheQuotaError, StorageIOError
from .base import LocalCache

_FILE_SUFFIX = ".entry"


def _entry_size(native_key: str, value: str) -> int:
    return len(native_key) + len(value)


class MemoryLocalCache(LocalCache):
    """Dict-backed local cache.

    Capacity is measured in characters of keys plus values.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._entries: dict[str, str] = {}

    def _used(self) -> int:
        return sum(_entry_size(k, v) for k, v in self._entries.items())

    async def get(self, native_key: str) -> str | None:
        return self._entries.get(native_key)

    async def set(self, native_key: str, value: str) -> None:
        if self.quota_bytes is not None:
            current = self._entries.get(native_key)
            used = self._used()
            if current is not None:
                used -= _entry_size(native_key, current)
            needed = used + _entry_size(native_key, value)
            if needed > self.quota_bytes:
                raise LocalCacheQuotaError(native_key, needed, self.quota_bytes)
        self._entries[native_key] = value

    async def remove(self, native_key: str) -> None:
        self._entries.pop(native_key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._entries if k.startswith(prefix))

    def clear(self) -> None:
        """Drop every entry (the end user clearing local state)."""
        self._entries.clear()


class FileLocalCache(LocalCache):
    """File-backed local cache.

    Directory structure:
    {directory}/
      {urlsafe-base64(native_key)}.entry

    Writes go to a temp file in the same directory and are renamed into
    place, so a reader never observes a partially written entry.
    """

    def __init__(self, directory: Path, quota_bytes: int | None = None) -> None:
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes
        self._sizes: dict[str, int] | None = None

    def _path_for(self, native_key: str) -> Path:
        encoded = base64.urlsafe_b64encode(native_key.encode("utf-8")).decode("ascii")
        return self.directory / f"{encoded}{_FILE_SUFFIX}"

    @staticmethod
    def _key_for(filename: str) -> str | None:
        if not filename.endswith(_FILE_SUFFIX):
            return None
        encoded = filename[: -len(_FILE_SUFFIX)]
        try:
            return base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return None

    async def _ensure_directory(self) -> None:
        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            raise StorageIOError("create_directory", str(self.directory), e) from e

    async def _load_sizes(self) -> dict[str, int]:
        """Scan the cache directory once to seed the size ledger."""
        if self._sizes is not None:
            return self._sizes

        sizes: dict[str, int] = {}
        if await aiofiles.os.path.exists(self.directory):
            for filename in await aiofiles.os.listdir(self.directory):
                native_key = self._key_for(filename)
                if native_key is None:
                    continue
                try:
                    size = await aiofiles.os.path.getsize(self.directory / filename)
                except OSError:
                    continue
                sizes[native_key] = len(native_key) + size
        self._sizes = sizes
        return sizes

    async def get(self, native_key: str) -> str | None:
        path = self._path_for(native_key)
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageIOError("read_entry", str(path), e) from e

    async def set(self, native_key: str, value: str) -> None:
        sizes = await self._load_sizes()
        encoded = value.encode("utf-8")
        entry_size = len(native_key) + len(encoded)

        if self.quota_bytes is not None:
            needed = sum(sizes.values()) - sizes.get(native_key, 0) + entry_size
            if needed > self.quota_bytes:
                raise LocalCacheQuotaError(native_key, needed, self.quota_bytes)

        await self._ensure_directory()
        path = self._path_for(native_key)
        fd, temp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp_", suffix=".part")
        try:
            os.close(fd)
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(encoded)
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            if e.errno == 28:  # ENOSPC
                raise LocalCacheQuotaError(native_key, entry_size, self.quota_bytes) from e
            raise StorageIOError("write_entry", str(path), e) from e

        sizes[native_key] = entry_size

    async def remove(self, native_key: str) -> None:
        path = self._path_for(native_key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError("remove_entry", str(path), e) from e
        if self._sizes is not None:
            self._sizes.pop(native_key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        if not await aiofiles.os.path.exists(self.directory):
            return []
        found = []
        for filename in await aiofiles.os.listdir(self.directory):
            native_key = self._key_for(filename)
            if native_key is not None and native_key.startswith(prefix):
                found.append(native_key)
        return sorted(found)
