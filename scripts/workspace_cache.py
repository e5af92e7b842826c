#!/usr/bin/env python3
"""
In-memory workspace cache for Recent Workspaces.

Holds one Workspace per URI, produces the bounded "recent workspaces" view,
and evicts stale entries once the cache grows past its size threshold.

Eviction is lazy: records are only aged out while the cache holds more than
max_size entries, never by age alone.

Requirements: Python 3.10+
"""

import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from workspace_utils import workspace_name_from_uri

logger = logging.getLogger(__name__)

# Defaults
DEFAULT_MAX_CACHE_SIZE = 100
DEFAULT_MAX_AGE_SECONDS = 30 * 24 * 60 * 60  # 30 days
DEFAULT_RECENT_LIMIT = 50


@dataclass
class Workspace:
    """One discovered workspace plus its protection/recency metadata."""
    uri: str  # Identity key
    store_handle: Optional[Path] = None  # Store sub-directory, only for trash/delete/rewrite
    nofail: bool = False
    remote: bool = False
    last_accessed: Optional[float] = None  # Epoch seconds
    editor_kind: str = ""

    @property
    def name(self) -> str:
        return workspace_name_from_uri(self.uri)


@dataclass(frozen=True)
class RecentWorkspaceView:
    """Read-only projection of a Workspace for the consumer."""
    name: str
    full_path: str
    editor_kind: str
    is_favorite: bool
    last_accessed: float = 0.0


class WorkspaceCache:
    """Deduplicated uri -> Workspace store."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_CACHE_SIZE,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.max_age = max_age
        self._clock = clock
        self._workspaces: dict[str, Workspace] = {}

    def __len__(self) -> int:
        return len(self._workspaces)

    def __contains__(self, uri: object) -> bool:
        return uri in self._workspaces

    def __iter__(self) -> Iterator[Workspace]:
        return iter(list(self._workspaces.values()))

    def get(self, uri: str) -> Optional[Workspace]:
        return self._workspaces.get(uri)

    def ingest(self, workspace: Workspace) -> bool:
        """
        Insert a workspace unless its URI is already cached.

        Returns True if inserted. Sets last_accessed to now when unset.
        """
        if workspace.uri in self._workspaces:
            logger.debug("Workspace already exists: %s", workspace.uri)
            return False
        if workspace.last_accessed is None:
            workspace.last_accessed = self._clock()
        self._workspaces[workspace.uri] = workspace
        return True

    def touch(self, uri: str) -> bool:
        """Mark a workspace as accessed now. Returns False if it is not cached."""
        workspace = self._workspaces.get(uri)
        if workspace is None:
            return False
        now = self._clock()
        workspace.last_accessed = max(workspace.last_accessed or 0.0, now)
        logger.debug("Updated last accessed time for %s", uri)
        return True

    def reset_access(self, uri: str, timestamp: Optional[float] = None) -> bool:
        """Explicitly set a workspace's last access time (the one non-monotonic path)."""
        workspace = self._workspaces.get(uri)
        if workspace is None:
            return False
        workspace.last_accessed = self._clock() if timestamp is None else timestamp
        return True

    def remove(self, uri: str) -> Optional[Workspace]:
        return self._workspaces.pop(uri, None)

    def clear(self) -> None:
        self._workspaces.clear()

    def evict_if_needed(self) -> list[str]:
        """
        Drop records older than max_age, but only while the cache is over max_size.

        Returns the evicted URIs.
        """
        if len(self._workspaces) <= self.max_size:
            return []

        logger.info(
            "Cache size (%d) exceeds maximum (%d), cleaning up old entries",
            len(self._workspaces), self.max_size,
        )
        now = self._clock()
        stale = [
            uri for uri, workspace in self._workspaces.items()
            if now - (workspace.last_accessed or 0.0) > self.max_age
        ]
        for uri in stale:
            del self._workspaces[uri]

        if stale:
            logger.info("Removed %d workspaces not accessed within %ds", len(stale), int(self.max_age))
        return stale

    def recent_view(
        self,
        favorites: Iterable[str] = (),
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[RecentWorkspaceView]:
        """
        Most recently accessed workspaces, newest first, at most `limit` long.

        Ties are broken by URI so the order is stable across rebuilds.
        """
        favorite_set = set(favorites)
        ordered = sorted(
            self._workspaces.values(),
            key=lambda w: (-(w.last_accessed or 0.0), w.uri),
        )
        return [
            RecentWorkspaceView(
                name=workspace.name,
                full_path=workspace.uri,
                editor_kind=workspace.editor_kind,
                is_favorite=workspace.uri in favorite_set,
                last_accessed=workspace.last_accessed or 0.0,
            )
            for workspace in ordered[:limit]
        ]


def partition_view(
    view: list[RecentWorkspaceView],
) -> tuple[list[RecentWorkspaceView], list[RecentWorkspaceView]]:
    """Split a recent view into (favorites, others), each keeping its order."""
    favorites = [entry for entry in view if entry.is_favorite]
    others = [entry for entry in view if not entry.is_favorite]
    return favorites, others
