#!/usr/bin/env python3
"""
Workspace discovery and cache synchronization engine for Recent Workspaces.

Owns all mutable state (cache, active editor, timers, in-flight scan) behind
an explicit start()/stop() lifecycle. A consumer (CLI, menu, API) reads the
recent view and calls the actions; everything else is driven by the
RefreshScheduler through the WorkQueue.

Cycle flow:
    full cycle:  discover editors -> resolve active editor -> scan store
    light cycle: scan the already-resolved editor's store
    scan:        parse record -> apply nofail list -> reconcile orphan -> ingest
    finalize:    evict -> rebuild recent view -> notify consumer

Only one cycle runs at a time. A trigger that arrives mid-cycle is coalesced
into a single pending cycle (a full request wins over a light one).

Usage:
    store = SettingsStore()
    engine = WorkspaceEngine(store, on_change=redraw)
    engine.start()
    engine.queue.run_forever()

Requirements: Python 3.10+
"""

import dataclasses
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Optional, Union

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from batch_scan import DEFAULT_BATCH_SIZE, BatchScanScheduler, Handle, WorkQueue
from editor_registry import EditorDescriptor, EditorRegistry
from kv_extractor import KVProjectExtractor, SqliteQueryTool
from orphan_reconciler import Decision, OrphanReconciler
from refresh_scheduler import RefreshScheduler
from store_scanner import (
    archive_store_record,
    clear_store,
    delete_store_record,
    mark_nofail,
    parse_store_dir,
)
from workspace_cache import DEFAULT_RECENT_LIMIT, RecentWorkspaceView, Workspace, WorkspaceCache
from workspace_errors import ResolutionFailure, StoreWriteFailure
from workspace_utils import EngineConfig, SettingsStore, get_archive_dir, path_to_uri

logger = logging.getLogger(__name__)

# Engine status values
STATUS_STOPPED = "stopped"
STATUS_SCANNING = "scanning"
STATUS_IDLE = "idle"
STATUS_NO_EDITOR = "no-editor"

CYCLE_FULL = "full"
CYCLE_LIGHT = "light"

Launcher = Callable[[str, Optional[Workspace], EditorDescriptor, EngineConfig], None]


class WorkspaceEngine:
    """Discovers editor workspaces and keeps the recent view fresh."""

    def __init__(
        self,
        settings: SettingsStore,
        queue: Optional[WorkQueue] = None,
        clock: Callable[[], float] = time.time,
        registry: Optional[EditorRegistry] = None,
        launcher: Optional[Launcher] = None,
        on_change: Optional[Callable[["WorkspaceEngine"], None]] = None,
        query_tool_factory: Optional[Callable[[str], SqliteQueryTool]] = None,
        archive_root: Optional[Path] = None,
        home: Optional[Path] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        settings_poll_interval: Optional[float] = None,
    ):
        self.settings = settings
        self.queue = queue or WorkQueue()
        self._clock = clock
        self.registry = registry or EditorRegistry()
        self.launcher = launcher
        self.on_change = on_change
        self.query_tool_factory = query_tool_factory
        self.archive_root = Path(archive_root) if archive_root else get_archive_dir()
        self.home = home
        self.batch_size = batch_size
        self.settings_poll_interval = settings_poll_interval

        self.config = settings.config()
        self.cache = WorkspaceCache(clock=clock)
        self.scheduler = RefreshScheduler(
            self.queue,
            on_full=self.run_full_cycle,
            on_light=self.run_light_cycle,
            clock=clock,
            seed=self.config.refresh_interval_seed,
        )

        self.active_editor: Optional[EditorDescriptor] = None
        self.status = STATUS_STOPPED
        self.cycles_completed = 0
        self._view: list[RecentWorkspaceView] = []
        self._reconciler = self._make_reconciler()
        self._scan: Optional[Union[BatchScanScheduler, Handle]] = None
        self._cycle_in_flight = False
        self._pending_cycle: Optional[str] = None
        self._rebuilding = False
        self._settings_handler: Optional[int] = None
        self._settings_poll: Optional[Handle] = None
        self._running = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle_in_flight

    @property
    def found_editors(self) -> list[EditorDescriptor]:
        return list(self.registry.found)

    def start(self) -> None:
        """Read settings, subscribe to changes, run a full cycle and arm the timer."""
        if self._running:
            return
        logger.info("Recent workspaces engine started")
        self._running = True
        self.config = self.settings.config()
        self._reconciler = self._make_reconciler()
        self._settings_handler = self.settings.connect(self._on_settings_changed)
        self.scheduler.seed = self.config.refresh_interval_seed
        self.scheduler.start()
        self._schedule_settings_poll()

    def stop(self) -> None:
        """Cancel timers and any in-flight scan, and drop cached state."""
        if not self._running:
            return
        self.scheduler.stop()
        self._cancel_scan()
        self._cycle_in_flight = False
        self._pending_cycle = None
        if self._settings_handler is not None:
            self.settings.disconnect(self._settings_handler)
            self._settings_handler = None
        if self._settings_poll is not None:
            self._settings_poll.cancel()
            self._settings_poll = None
        self.cache.clear()
        self._view = []
        self.registry.found = []
        self.active_editor = None
        self.status = STATUS_STOPPED
        self._running = False
        logger.info("Recent workspaces engine stopped")

    def restart_refresh(self) -> None:
        """Reset the adaptive interval and run a full cycle now."""
        self.scheduler.start()

    # =========================================================================
    # Scan cycles
    # =========================================================================

    def run_full_cycle(self) -> None:
        self._request_cycle(CYCLE_FULL)

    def run_light_cycle(self) -> None:
        self._request_cycle(CYCLE_LIGHT)

    def _request_cycle(self, kind: str) -> None:
        if not self._running:
            logger.debug("Engine stopped, ignoring %s cycle", kind)
            return
        if self._cycle_in_flight:
            if kind == CYCLE_FULL or self._pending_cycle is None:
                self._pending_cycle = kind
            logger.debug("Cycle in flight, deferring %s cycle", self._pending_cycle)
            return
        self._begin_cycle(kind)

    def _begin_cycle(self, kind: str) -> None:
        logger.info("Refreshing workspaces (full refresh: %s)", kind == CYCLE_FULL)
        self._cycle_in_flight = True
        self.status = STATUS_SCANNING

        try:
            if kind == CYCLE_FULL:
                self.registry.discover()
                self.active_editor = self.registry.resolve_active_editor(self.config.editor_location)
            if self.active_editor is None:
                raise ResolutionFailure("No active editor could be determined")

            editor = self.active_editor
            if editor.is_database:
                self._scan = self.queue.call_soon(self._scan_database, editor)
            else:
                scan = BatchScanScheduler(
                    self.queue,
                    Path(editor.storage_path),
                    process_entry=lambda store_dir: self._process_store_entry(store_dir, editor),
                    finalize=self._finalize_cycle,
                    batch_size=self.batch_size,
                )
                self._scan = scan
                scan.start()
        except ResolutionFailure as e:
            logger.info("%s", e)
            self._complete_cycle(STATUS_NO_EDITOR)
        except Exception:
            logger.exception("Error starting %s cycle", kind)
            self._finalize_cycle()

    def _scan_database(self, editor: EditorDescriptor) -> None:
        try:
            database = editor.database_path or ""
            tool = self.query_tool_factory(database) if self.query_tool_factory else None
            extractor = KVProjectExtractor(database, query_tool=tool, home=self.home)
            paths = extractor.extract()
            logger.info("Found %d %s projects (%s)", len(paths), editor.name, extractor.strategy)
            now = self._clock()
            for project_path in paths:
                workspace = Workspace(
                    uri=path_to_uri(project_path),
                    editor_kind=editor.name,
                    last_accessed=now,
                )
                self._apply_nofail_list(workspace)
                self._process_workspace(workspace)
        except Exception:
            logger.exception("Failed to load %s workspaces", editor.name)
        finally:
            self._finalize_cycle()

    def _process_store_entry(self, store_dir: Path, editor: EditorDescriptor) -> None:
        workspace = parse_store_dir(store_dir, editor.name)
        if workspace is None:
            return
        self._apply_nofail_list(workspace)
        self._process_workspace(workspace)

    def _apply_nofail_list(self, workspace: Workspace) -> None:
        """Protect workspaces named in the nofail list and persist the flag."""
        if workspace.nofail or workspace.name not in self.config.nofail_workspace_names:
            return

        logger.info("Updating workspace '%s' to set nofail: true", workspace.name)
        if workspace.store_handle is not None:
            try:
                mark_nofail(workspace)
            except StoreWriteFailure as e:
                logger.warning("%s", e)
        workspace.nofail = True

    def _process_workspace(self, workspace: Workspace) -> None:
        decision = self._reconciler.reconcile(workspace)

        if decision == Decision.ARCHIVED:
            self.cache.remove(workspace.uri)
            return
        if decision != Decision.PASS:
            return

        existing = self.cache.get(workspace.uri)
        if existing is not None:
            if workspace.nofail:
                existing.nofail = True
            if existing.store_handle is None:
                existing.store_handle = workspace.store_handle
            return

        self.cache.ingest(workspace)

    def _finalize_cycle(self) -> None:
        if not self._cycle_in_flight:
            return
        try:
            self.cache.evict_if_needed()
            logger.info("[Workspace Cache]: %d workspaces", len(self.cache))
        except Exception:
            logger.exception("Error finalizing workspace processing")
        self._complete_cycle(STATUS_IDLE)

    def _complete_cycle(self, status: str) -> None:
        self._scan = None
        self._cycle_in_flight = False
        self.cycles_completed += 1
        self.status = status
        self._rebuild_view()

        if self._pending_cycle is not None and self._running:
            kind = self._pending_cycle
            self._pending_cycle = None
            self.queue.call_soon(self._request_cycle, kind)
        else:
            self._pending_cycle = None

    def _cancel_scan(self) -> None:
        if self._scan is not None:
            self._scan.cancel()
            self._scan = None

    # =========================================================================
    # Recent view
    # =========================================================================

    def _rebuild_view(self) -> None:
        if self._rebuilding:
            logger.debug("Recent view rebuild already running, skipping")
            return
        self._rebuilding = True
        try:
            self._view = self.cache.recent_view(self.config.favorite_workspace_uris, DEFAULT_RECENT_LIMIT)
            logger.debug("[Recent Workspaces]: %d entries", len(self._view))
            if self.on_change is not None:
                try:
                    self.on_change(self)
                except Exception:
                    logger.exception("Error notifying consumer")
        finally:
            self._rebuilding = False

    def recent_workspaces(self) -> list[RecentWorkspaceView]:
        return list(self._view)

    def favorites(self) -> set[str]:
        return set(self.config.favorite_workspace_uris)

    # =========================================================================
    # Actions
    # =========================================================================

    def record_interaction(self) -> None:
        self.scheduler.record_interaction()

    def open_workspace(self, uri: str) -> bool:
        """Mark a workspace accessed and hand it to the launcher."""
        logger.info("Opening workspace: %s", uri)
        self.record_interaction()
        workspace = self.cache.get(uri)
        self.cache.touch(uri)
        self._rebuild_view()

        if self.launcher is None:
            return workspace is not None
        if self.active_editor is None:
            logger.warning("No active editor to open %s with", uri)
            return False
        try:
            self.launcher(uri, workspace, self.active_editor, self.config)
        except Exception as e:
            logger.error("Failed to launch %s: %s", self.active_editor.name, e)
            return False
        return True

    def toggle_favorite(self, uri: str) -> bool:
        """Flip a workspace's favorite state. Returns the new state."""
        self.record_interaction()
        favorites = set(self.config.favorite_workspace_uris)
        if uri in favorites:
            favorites.discard(uri)
            logger.info("Removed favorite: %s", uri)
        else:
            favorites.add(uri)
            logger.info("Added favorite: %s", uri)

        self.config = dataclasses.replace(self.config, favorite_workspace_uris=frozenset(favorites))
        if not self.settings.set("favoriteWorkspaceURIs", sorted(favorites)):
            logger.warning("Could not persist favorites")
        self._rebuild_view()
        return uri in favorites

    def soft_remove(self, uri: str) -> bool:
        """Archive a workspace's store record and drop it from the cache."""
        return self._remove(uri, "archive")

    def hard_remove(self, uri: str) -> bool:
        """Delete a workspace's store record and drop it from the cache."""
        return self._remove(uri, "delete")

    def _remove(self, uri: str, operation: str) -> bool:
        self.record_interaction()
        workspace = self.cache.get(uri)
        if workspace is None:
            logger.info("Cannot %s unknown workspace: %s", operation, uri)
            return False

        if workspace.store_handle is not None:
            try:
                if operation == "archive":
                    archive_store_record(workspace.store_handle, self.archive_root)
                else:
                    delete_store_record(workspace.store_handle)
            except StoreWriteFailure as e:
                logger.warning("%s", e)
                return False

        self.cache.remove(uri)
        logger.info("Workspace %s: %s", "archived" if operation == "archive" else "removed", workspace.name)
        self._rebuild_view()
        return True

    def clear_recent(self) -> bool:
        """
        Clear the active editor's whole workspace history.

        The storage directory is backed up to <storage>.bak first and the
        call fails if that backup already exists. On success the cache is
        emptied and a full refresh runs. Key-value stores cannot be cleared.
        """
        self.record_interaction()
        editor = self.active_editor
        if editor is None:
            logger.warning("No active editor to clear workspaces for")
            return False
        if editor.is_database:
            logger.warning("Cannot clear %s history: projects live in a key-value store", editor.name)
            return False

        logger.info("Clearing recent workspaces")
        try:
            backup = clear_store(Path(editor.storage_path))
        except StoreWriteFailure as e:
            logger.warning("Failed to clear recent workspaces: %s", e)
            return False

        logger.info("Cleared recent workspaces, backup at %s", backup)
        self._cancel_scan()
        self._cycle_in_flight = False
        self._pending_cycle = None
        self.cache.clear()
        self._rebuild_view()
        self.restart_refresh()
        return True

    def force_refresh(self) -> None:
        self.record_interaction()
        self.restart_refresh()

    # =========================================================================
    # Settings
    # =========================================================================

    def _make_reconciler(self) -> OrphanReconciler:
        return OrphanReconciler(
            cleanup_enabled=self.config.cleanup_orphaned_workspaces,
            prefer_workspace_file=self.config.prefer_workspace_file,
            archive_root=self.archive_root,
        )

    def _on_settings_changed(self, store: SettingsStore) -> None:
        old = self.config
        new = store.config()
        if new == old:
            return
        self.config = new

        if dataclasses.replace(old, favorite_workspace_uris=new.favorite_workspace_uris) == new:
            self._rebuild_view()
            return

        logger.info("Settings changed, restarting refresh")
        self._reconciler = self._make_reconciler()
        self.scheduler.seed = new.refresh_interval_seed
        self.restart_refresh()

    def _schedule_settings_poll(self) -> None:
        if self.settings_poll_interval is None:
            return
        if self._settings_poll is not None:
            self._settings_poll.cancel()
        self._settings_poll = self.queue.call_later(self.settings_poll_interval, self._poll_settings)

    def _poll_settings(self) -> None:
        """Pick up edits other processes made to the settings file."""
        self._settings_poll = None
        try:
            if self.settings.reload():
                logger.debug("Settings file changed on disk")
        finally:
            if self._running:
                self._schedule_settings_poll()
