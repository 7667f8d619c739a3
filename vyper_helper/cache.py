#!/usr/bin/env python3
"""
Persistent compilation cache.

One record per source path, storing the content hash, settings hash and
compiler version of its last successful compile. The cache is advisory: a
missing, unreadable or foreign cache file means every file is stale, never
an error.
"""

from __future__ import annotations

import asyncio
import fcntl
import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Iterator, Optional, Tuple

import aiofiles
from loguru import logger

from .core_types import (
    BuildError,
    CacheEntry,
    CompilerProfile,
    PathLike,
    SourceFile,
    parse_version,
)
from .utils import FileManager, FileOperationError

CACHE_FORMAT = "vyper-files-cache-1"


class CompilationCache:
    """
    Maps source paths to what they were last compiled with.

    Entries recorded during a pass live in memory until save() or
    save_async() replaces the file atomically.
    """

    def __init__(self, cache_file: PathLike, lock_timeout: float = 60.0) -> None:
        self.cache_file = Path(cache_file)
        self.lock_file = self.cache_file.with_name(f"{self.cache_file.name}.lock")
        self.lock_timeout = lock_timeout
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(path: PathLike) -> str:
        return str(Path(path).resolve())

    @staticmethod
    def _profile_key(profile: CompilerProfile) -> Tuple[str, str]:
        return profile.settings_fingerprint, str(profile.parsed_version)

    def _apply(self, text: str) -> None:
        try:
            data = json.loads(text)

            if not isinstance(data, dict) or data.get("_format") != CACHE_FORMAT:
                logger.warning(f"Ignoring cache file with unknown format: {self.cache_file}")
                return

            self._entries = {
                path: CacheEntry.from_dict(entry)
                for path, entry in data.get("files", {}).items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load compilation cache, rebuilding everything: {e}")
            self._entries = {}
            return

        logger.debug(f"Loaded compilation cache with {len(self._entries)} entries")

    def load(self) -> None:
        """Load entries from disk, falling back to an empty cache."""
        self._entries = {}
        try:
            text = self.cache_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Failed to read compilation cache, rebuilding everything: {e}")
            return
        self._apply(text)

    async def load_async(self) -> None:
        """Async variant of load()."""
        self._entries = {}
        try:
            async with aiofiles.open(self.cache_file, "r", encoding="utf-8") as f:
                text = await f.read()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"Failed to read compilation cache, rebuilding everything: {e}")
            return
        self._apply(text)

    def get(self, path: PathLike) -> Optional[CacheEntry]:
        return self._entries.get(self._key(path))

    def is_stale(self, source: SourceFile, profile: CompilerProfile) -> bool:
        """
        Whether the source must be compiled with the given profile.

        An entry only counts when its settings hash and compiler version
        match the profile; a changed profile forces recompilation.
        """
        entry = self._entries.get(self._key(source.path))
        if entry is None or not entry.success:
            return True

        settings_hash, version = self._profile_key(profile)
        if entry.settings_hash != settings_hash:
            return True
        try:
            if str(parse_version(entry.compiler_version)) != version:
                return True
        except ValueError:
            return True

        return entry.content_hash != source.content_hash

    def record_success(
        self, source: SourceFile, profile: CompilerProfile, source_name: Optional[str] = None
    ) -> None:
        settings_hash, version = self._profile_key(profile)
        self._entries[self._key(source.path)] = CacheEntry(
            content_hash=source.content_hash,
            settings_hash=settings_hash,
            compiler_version=version,
            source_name=source_name,
        )

    def remove(self, path: PathLike) -> None:
        self._entries.pop(self._key(path), None)

    def prune_missing(self) -> int:
        """Drop entries for files that no longer exist."""
        missing = [path for path in self._entries if not Path(path).exists()]
        for path in missing:
            del self._entries[path]
        if missing:
            logger.debug(f"Pruned {len(missing)} cache entries for deleted files")
        return len(missing)

    def clear(self) -> None:
        self._entries.clear()

    def delete(self) -> None:
        """Clear the cache and remove its file."""
        self._entries.clear()
        self.cache_file.unlink(missing_ok=True)
        logger.info(f"Deleted compilation cache {self.cache_file}")

    @property
    def entries(self) -> Dict[str, CacheEntry]:
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and self._key(path) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(dict(self._entries))

    def _serialize(self) -> str:
        return json.dumps(
            {
                "_format": CACHE_FORMAT,
                "files": {
                    path: entry.to_dict() for path, entry in sorted(self._entries.items())
                },
            },
            indent=2,
        )

    def save(self) -> bool:
        """Write the cache atomically. Returns False if it could not be written."""
        try:
            FileManager.atomic_write_text(self.cache_file, self._serialize())
        except FileOperationError as e:
            logger.warning(f"Failed to save compilation cache: {e}")
            return False
        logger.debug(f"Saved compilation cache with {len(self._entries)} entries")
        return True

    async def save_async(self) -> bool:
        """Async variant of save()."""
        try:
            await FileManager.atomic_write_text_async(self.cache_file, self._serialize())
        except FileOperationError as e:
            logger.warning(f"Failed to save compilation cache: {e}")
            return False
        logger.debug(f"Saved compilation cache with {len(self._entries)} entries")
        return True

    @asynccontextmanager
    async def lock(self) -> AsyncIterator[bool]:
        """
        Hold the pass-level lock for this cache file.

        Serializes passes of this instance with an asyncio lock and passes of
        other instances or processes with an advisory flock on a sibling
        lock file. Yields whether the cache file may be used for this pass;
        if the lock file cannot be created the pass runs without the cache.

        Raises:
            BuildError: If the lock is not acquired within lock_timeout
        """
        async with self._lock:
            try:
                self.lock_file.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.lock_file), os.O_CREAT | os.O_RDWR)
            except OSError as e:
                logger.warning(
                    f"Cache location {self.lock_file.parent} is unusable, "
                    f"building without the cache: {e}"
                )
                yield False
                return

            try:
                await self._acquire_flock(fd)
                try:
                    yield True
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    async def _acquire_flock(self, fd: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.lock_timeout
        attempts = 0

        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                attempts += 1
                if loop.time() > deadline:
                    raise BuildError(
                        f"Timed out waiting for the cache lock {self.lock_file}",
                        error_code="CACHE_LOCK_TIMEOUT",
                        lock_file=str(self.lock_file),
                    ) from None
                if attempts == 1:
                    logger.info(f"Waiting for another build holding {self.lock_file}")
                await asyncio.sleep(min(0.5, 0.05 * (2 ** min(attempts, 5))))
