"""
Content Cache
=============

Content-addressed cache of rendered diagrams.

Entries are keyed by a SHA-256 digest of the trimmed diagram source and the
output format (plus page size when page-aware rendering is cached). Entries
expire after their TTL and are evicted oldest-accessed first, a quarter at a
time, when the byte budget would be exceeded. Each entry is optionally
mirrored to a JSON side file so other processes can reuse it; side file
failures are logged and never surface to callers.
"""

import asyncio
import hashlib
import math
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from pydantic import ValidationError

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.models.schemas import CacheEntry, CacheStats, ImageFormat, RenderedDiagram

logger = get_logger(__name__)

EVICTION_FRACTION = 0.25
SIDE_FILE_SUFFIX = ".json"


def compute_cache_key(
    source: str,
    image_format: str,
    page_size: Optional[str] = None,
    library_version: Optional[str] = None,
) -> str:
    """
    Digest identifying a render.

    Only surrounding whitespace of the source is normalized; inner whitespace
    is significant.
    """
    parts = [source.strip(), ImageFormat(image_format).value]
    if page_size:
        parts.append(page_size)
    if library_version:
        parts.append(f"mermaid@{library_version}")
    return hashlib.sha256("\0".join(parts).encode("utf-8")).hexdigest()


def format_bytes(size: int) -> str:
    """Human readable byte count."""
    if size <= 0:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{size} B"


class ContentCache:
    """In-memory diagram cache with best-effort on-disk side files."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache_dir: Optional[Path] = None,
        ttl_seconds: Optional[int] = None,
        max_size_bytes: Optional[int] = None,
        persist: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        self.cache_dir = Path(cache_dir or self.settings.cache_dir)
        self.ttl_seconds = self.settings.cache_ttl if ttl_seconds is None else ttl_seconds
        self.max_size_bytes = (
            int(self.settings.cache_max_size_mb * 1024 * 1024)
            if max_size_bytes is None
            else max_size_bytes
        )
        self.persist = self.settings.cache_persist if persist is None else persist

        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.total_size = 0
        self.logger: Any = logger.bind(component="content_cache")

        if self.persist:
            self._ensure_cache_dir()

    def key_for(
        self, source: str, image_format: str, page_size: Optional[str] = None
    ) -> str:
        version = (
            self.settings.mermaid_version
            if self.settings.cache_key_include_library_version
            else None
        )
        return compute_cache_key(source, image_format, page_size, version)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[RenderedDiagram]:
        """
        Look up a rendered diagram.

        Returns:
            The cached diagram, or None on a miss (absent, expired, or a side
            file that could not be loaded)
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = time.time()
            if entry.is_expired(now):
                await self._delete_unlocked(key)
                self.misses += 1
                return None

            if entry.data is None:
                data = await self._read_side_file(key)
                if data is None:
                    await self._delete_unlocked(key)
                    self.misses += 1
                    return None
                entry.data = data

            entry.last_accessed = now
            self.hits += 1
            return entry.data

    async def set(self, key: str, data: RenderedDiagram) -> None:
        """Store a rendered diagram, evicting old entries if over budget."""
        async with self._lock:
            size = self._estimate_size(data)

            existing = self._entries.pop(key, None)
            if existing is not None:
                self.total_size -= existing.size_bytes

            if self.total_size + size > self.max_size_bytes and self._entries:
                await self._evict_oldest()

            now = time.time()
            self._entries[key] = CacheEntry(
                hash=key,
                data=data,
                created_at=now,
                last_accessed=now,
                ttl_seconds=self.ttl_seconds,
                size_bytes=size,
            )
            self.total_size += size

            if self.persist:
                await self._write_side_file(key, data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            await self._delete_unlocked(key)

    async def clear(self) -> None:
        """Drop every entry, reset statistics and remove side files."""
        async with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0
            self.total_size = 0

            if self.persist:
                await asyncio.to_thread(self._remove_side_files, self._side_files())

    async def load_persisted(self) -> int:
        """
        Register side files left by earlier processes as lazily hydrated entries.

        Returns:
            Number of entries registered
        """
        if not self.persist:
            return 0

        async with self._lock:
            registered = 0
            for path in self._side_files():
                key = path.stem
                if key in self._entries:
                    continue
                try:
                    stat = path.stat()
                except OSError as e:
                    self.logger.warning("Failed to stat cache file", path=str(path), error=str(e))
                    continue

                entry = CacheEntry(
                    hash=key,
                    data=None,
                    created_at=stat.st_mtime,
                    last_accessed=stat.st_mtime,
                    ttl_seconds=self.ttl_seconds,
                    size_bytes=stat.st_size,
                )
                if entry.is_expired(time.time()):
                    continue

                self._entries[key] = entry
                self.total_size += entry.size_bytes
                registered += 1

            self.logger.info("Loaded persisted cache index", entries=registered)
            return registered

    def get_stats(self) -> CacheStats:
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests) * 100 if total_requests else 0.0
        return CacheStats(
            total_entries=len(self._entries),
            hits=self.hits,
            misses=self.misses,
            hit_rate=round(hit_rate, 2),
            total_size=self.total_size,
            memory_usage=format_bytes(self.total_size),
            evictions=self.evictions,
        )

    async def _delete_unlocked(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self.total_size -= entry.size_bytes
        if self.persist:
            await asyncio.to_thread(self._remove_side_files, [self._side_file(key)])

    async def _evict_oldest(self) -> None:
        by_access = sorted(self._entries.values(), key=lambda entry: entry.last_accessed)
        count = max(1, math.ceil(len(by_access) * EVICTION_FRACTION))
        for entry in by_access[:count]:
            await self._delete_unlocked(entry.hash)
            self.evictions += 1
        self.logger.info("Evicted cache entries", evicted=count, remaining=len(self._entries))

    def _estimate_size(self, data: RenderedDiagram) -> int:
        return len(data.image_data) + len(data.info.source) + 1000

    def _side_file(self, key: str) -> Path:
        return self.cache_dir / f"{key}{SIDE_FILE_SUFFIX}"

    def _side_files(self) -> list[Path]:
        try:
            return sorted(self.cache_dir.glob(f"*{SIDE_FILE_SUFFIX}"))
        except OSError as e:
            self.logger.warning("Failed to list cache directory", error=str(e))
            return []

    def _ensure_cache_dir(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.warning(
                "Failed to create cache directory, caching in memory only",
                cache_dir=str(self.cache_dir),
                error=str(e),
            )

    async def _write_side_file(self, key: str, data: RenderedDiagram) -> None:
        path = self._side_file(key)
        try:
            await asyncio.to_thread(path.write_text, data.model_dump_json(), "utf-8")
        except OSError as e:
            self.logger.warning("Failed to write cache file", path=str(path), error=str(e))

    async def _read_side_file(self, key: str) -> Optional[RenderedDiagram]:
        path = self._side_file(key)
        try:
            content = await asyncio.to_thread(path.read_text, "utf-8")
            return RenderedDiagram.model_validate_json(content)
        except (OSError, ValidationError, ValueError) as e:
            self.logger.warning("Failed to load cache file", path=str(path), error=str(e))
            return None

    def _remove_side_files(self, paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                self.logger.warning("Failed to remove cache file", path=str(path), error=str(e))
