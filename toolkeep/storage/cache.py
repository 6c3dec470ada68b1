"""Durable status cache.

Maps tool id -> last known ToolStatus and the time it was checked. The cache
lives in memory and is mirrored to a single JSON document that is rewritten
atomically (temp file + rename) on every persist.
"""

import asyncio
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from toolkeep.core.errors import CacheError
from toolkeep.tools.models import ToolStatus


logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1
DEFAULT_TTL = timedelta(hours=1)
HELP_TTL = timedelta(days=7)


@dataclass(frozen=True)
class CacheEntry:
    """Cached status of one tool."""

    tool_id: str
    status: ToolStatus
    checked_at: datetime
    latest_version: Optional[str] = None

    def age(self, now: Optional[datetime] = None) -> timedelta:
        """Time elapsed since the status was checked."""
        return (now or datetime.now(timezone.utc)) - self.checked_at

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "status": self.status.to_dict(),
            "checked_at": self.checked_at.isoformat(),
            "latest_version": self.latest_version,
        }

    @classmethod
    def from_dict(cls, tool_id: str, data: dict) -> "CacheEntry":
        """Create from dictionary."""
        checked_at = datetime.fromisoformat(data["checked_at"])
        if checked_at.tzinfo is None:
            checked_at = checked_at.replace(tzinfo=timezone.utc)
        return cls(
            tool_id=tool_id,
            status=ToolStatus.from_dict(data["status"]),
            checked_at=checked_at,
            latest_version=data.get("latest_version"),
        )


@dataclass(frozen=True)
class HelpEntry:
    """Cached help text of one tool."""

    tool_id: str
    text: str
    cached_at: datetime

    def to_dict(self) -> dict:
        return {"text": self.text, "cached_at": self.cached_at.isoformat()}

    @classmethod
    def from_dict(cls, tool_id: str, data: dict) -> "HelpEntry":
        cached_at = datetime.fromisoformat(data["cached_at"])
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=timezone.utc)
        return cls(tool_id=tool_id, text=str(data["text"]), cached_at=cached_at)


class StatusCache:
    """Thread-safe tool status cache with TTL staleness and atomic persistence.

    Example:
        cache = StatusCache(Path("~/.local/share/toolkeep/status.json"))
        cache.load_from_disk()
        cache.set("gemini-cli", status)
        await cache.persist_async()
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        ttl: Union[timedelta, float] = DEFAULT_TTL,
    ):
        """Initialize the cache.

        Args:
            path: Location of the cache document. None keeps the cache in memory only.
            ttl: Age after which an entry is stale (timedelta or seconds).
        """
        self.path = Path(path).expanduser() if path is not None else None
        self.ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        self._entries: dict[str, CacheEntry] = {}
        self._help: dict[str, HelpEntry] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

    def get(self, tool_id: str) -> Optional[CacheEntry]:
        """Get the cached entry for a tool.

        Args:
            tool_id: Tool id.

        Returns:
            Cached entry or None.
        """
        with self._lock:
            return self._entries.get(tool_id)

    def set(
        self,
        tool_id: str,
        status: ToolStatus,
        latest_version: Optional[str] = None,
        checked_at: Optional[datetime] = None,
    ) -> CacheEntry:
        """Record the status of a tool.

        The latest-version hint of an existing entry is kept unless a new one
        is given.

        Returns:
            The stored entry.
        """
        with self._lock:
            previous = self._entries.get(tool_id)
            if latest_version is None and previous is not None:
                latest_version = previous.latest_version
            entry = CacheEntry(
                tool_id=tool_id,
                status=status,
                checked_at=checked_at or datetime.now(timezone.utc),
                latest_version=latest_version,
            )
            self._entries[tool_id] = entry
            return entry

    def set_latest_version(self, tool_id: str, latest_version: Optional[str]) -> None:
        """Update only the latest-version hint of an existing entry."""
        with self._lock:
            entry = self._entries.get(tool_id)
            if entry is not None:
                self._entries[tool_id] = CacheEntry(
                    tool_id=tool_id,
                    status=entry.status,
                    checked_at=entry.checked_at,
                    latest_version=latest_version,
                )

    def remove(self, tool_id: str) -> None:
        """Drop the entry for a tool, if any."""
        with self._lock:
            self._entries.pop(tool_id, None)

    def clear(self) -> None:
        """Drop all entries, help text included."""
        with self._lock:
            self._entries.clear()
            self._help.clear()

    def get_tool_help(self, tool_id: str, now: Optional[datetime] = None) -> Optional[str]:
        """Cached help text of a tool, or None if missing or older than HELP_TTL."""
        with self._lock:
            entry = self._help.get(tool_id)
        if entry is None:
            return None
        if (now or datetime.now(timezone.utc)) - entry.cached_at > HELP_TTL:
            return None
        return entry.text

    def set_tool_help(self, tool_id: str, text: str) -> None:
        """Record the help text of a tool."""
        with self._lock:
            self._help[tool_id] = HelpEntry(tool_id, text, datetime.now(timezone.utc))

    def remove_tool_help(self, tool_id: str) -> None:
        with self._lock:
            self._help.pop(tool_id, None)

    def is_stale(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        """Whether an entry is older than the TTL."""
        return entry.age(now) > self.ttl

    def snapshot(self) -> dict[str, CacheEntry]:
        """Copy of all entries."""
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def load_from_disk(self) -> None:
        """Replace the in-memory entries with the cache document's.

        A missing, unreadable or corrupted document leaves the cache empty;
        the problem is logged and never raised.
        """
        if self.path is None or not self.path.exists():
            return

        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            entries = {
                tool_id: CacheEntry.from_dict(tool_id, data)
                for tool_id, data in document.get("tools", {}).items()
            }
            help_entries = {
                tool_id: HelpEntry.from_dict(tool_id, data)
                for tool_id, data in document.get("help", {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable status cache {self.path}: {e}")
            entries = {}
            help_entries = {}

        with self._lock:
            self._entries = entries
            self._help = help_entries
        logger.debug(f"Loaded {len(entries)} cached statuses from {self.path}")

    def persist(self) -> None:
        """Write the cache document atomically.

        Raises:
            CacheError: If the document cannot be written.
        """
        if self.path is None:
            return

        # Snapshot and write under one lock: the newest state always lands last
        with self._write_lock:
            with self._lock:
                document = {
                    "version": CACHE_FORMAT_VERSION,
                    "last_updated": datetime.now(timezone.utc).isoformat(),
                    "tools": {tool_id: e.to_dict() for tool_id, e in self._entries.items()},
                    "help": {tool_id: h.to_dict() for tool_id, h in self._help.items()},
                }
            payload = json.dumps(document, indent=2, sort_keys=True)

            tmp_path = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    dir=self.path.parent,
                    prefix=f".{self.path.name}.",
                    suffix=".tmp",
                )
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except OSError as e:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise CacheError(f"Failed to write status cache {self.path}: {e}") from e

    async def persist_async(self) -> None:
        """Persist without blocking the event loop.

        Raises:
            CacheError: If the document cannot be written.
        """
        await asyncio.to_thread(self.persist)
