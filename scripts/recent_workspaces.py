#!/usr/bin/env python3
"""
Recent Workspaces command line front end.

Lists, opens, favorites and removes the workspaces recently used in VS Code
family editors and Zed.

Usage:
    recent-workspaces list [--json]
    recent-workspaces editors
    recent-workspaces open TARGET
    recent-workspaces favorite TARGET
    recent-workspaces trash TARGET
    recent-workspaces remove TARGET
    recent-workspaces refresh
    recent-workspaces clear --yes
    recent-workspaces watch
    recent-workspaces config [KEY [VALUE]]

TARGET is a workspace URI, path or display name.

Requirements: Python 3.10+
"""

import argparse
import dataclasses
import json
import logging
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from editor_registry import EditorDescriptor, StorageKind
from workspace_cache import RecentWorkspaceView, Workspace, partition_view
from workspace_engine import STATUS_NO_EDITOR, WorkspaceEngine
from workspace_utils import (
    DEFAULT_SETTINGS,
    EngineConfig,
    SettingsStore,
    check_python_version,
    path_to_uri,
    uri_to_path,
    workspace_name_from_uri,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# How often a long-running watch re-reads the settings file (seconds)
SETTINGS_POLL_INTERVAL = 5.0


# =============================================================================
# Launching
# =============================================================================


def build_launch_command(uri: str, editor: EditorDescriptor, config: EngineConfig) -> list[str]:
    """
    Command line that opens a workspace in an editor.

    VS Code family editors get --folder-uri / --file-uri; Zed gets a plain path.
    """
    command = [editor.binary]
    extra_args = shlex.split(config.custom_launch_args) if config.custom_launch_args.strip() else []

    if editor.storage_kind == StorageKind.KEY_VALUE_DB:
        path = uri_to_path(uri)
        command.append(str(path) if path is not None else uri)
        return command + extra_args

    if config.new_window:
        command.append("--new-window")

    path = uri_to_path(uri)
    if path is not None:
        is_folder = path.is_dir()
    else:
        is_folder = not uri.endswith(".code-workspace")
    command.extend(["--folder-uri" if is_folder else "--file-uri", uri])
    return command + extra_args


def launch_workspace(
    uri: str,
    workspace: Optional[Workspace],
    editor: EditorDescriptor,
    config: EngineConfig,
) -> None:
    """Start the editor detached from this process. Raises OSError on failure."""
    command = build_launch_command(uri, editor, config)
    logger.info("Command to execute: %s", shlex.join(command))
    subprocess.Popen(
        command,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


# =============================================================================
# Helpers
# =============================================================================


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _make_engine(args: argparse.Namespace, settings_poll_interval: Optional[float] = None) -> WorkspaceEngine:
    store = SettingsStore(Path(args.settings) if args.settings else None)
    _configure_logging(args.debug or store.config().debug)
    return WorkspaceEngine(store, launcher=launch_workspace, settings_poll_interval=settings_poll_interval)


def _scan(engine: WorkspaceEngine) -> bool:
    """Run one full cycle to completion. Returns False when no editor was found."""
    engine.start()
    engine.queue.run_until_idle()
    if engine.status == STATUS_NO_EDITOR:
        print("No supported editor found.", file=sys.stderr)
        return False
    return True


def _find_target(engine: WorkspaceEngine, target: str) -> Optional[str]:
    """Resolve a URI, path or display name to a cached workspace URI."""
    if target in engine.cache:
        return target
    if "://" not in target:
        uri = path_to_uri(target)
        if uri in engine.cache:
            return uri

    matches = [ws.uri for ws in engine.cache if ws.name == target]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        print(f"Ambiguous workspace name '{target}':", file=sys.stderr)
        for uri in sorted(matches):
            print(f"  {uri}", file=sys.stderr)
        return None

    print(f"Workspace not found: {target}", file=sys.stderr)
    return None


def _print_entries(title: str, entries: list[RecentWorkspaceView]) -> None:
    print(f"{title} ({len(entries)}):")
    for entry in entries:
        star = "*" if entry.is_favorite else " "
        print(f"  {star} {entry.name}  [{entry.editor_kind}]  {entry.full_path}")


def _parse_value(raw: str):
    """Parse a config value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


# =============================================================================
# Commands
# =============================================================================


def cmd_list(args: argparse.Namespace) -> int:
    """List recent workspaces, favorites first."""
    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        view = engine.recent_workspaces()
        if args.json:
            print(json.dumps([dataclasses.asdict(v) for v in view], indent=2))
            return 0

        favorites, others = partition_view(view)
        if favorites:
            _print_entries("Favorites", favorites)
            print()
        _print_entries(f"Recent workspaces ({engine.active_editor.name})", others)
        return 0
    finally:
        engine.stop()


def cmd_editors(args: argparse.Namespace) -> int:
    """Show discovered editors and which one is active."""
    engine = _make_engine(args)
    try:
        _scan(engine)
        active = engine.active_editor
        print(f"Found editors ({len(engine.found_editors)}):")
        for editor in engine.found_editors:
            marker = "*" if active is not None and editor.name == active.name else " "
            store = editor.store_location or "(no history)"
            print(f"  {marker} {editor.name:<20} {editor.binary:<20} {store}")
        if active is None:
            print("\nNo active editor")
            return 1
        return 0
    finally:
        engine.stop()


def cmd_open(args: argparse.Namespace) -> int:
    """Open a workspace in the active editor."""
    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        uri = _find_target(engine, args.target)
        if uri is None:
            return 1
        if not engine.open_workspace(uri):
            print(f"Failed to open {uri}", file=sys.stderr)
            return 1
        print(f"Opened {workspace_name_from_uri(uri)}")
        return 0
    finally:
        engine.stop()


def cmd_favorite(args: argparse.Namespace) -> int:
    """Toggle a workspace's favorite flag."""
    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        uri = _find_target(engine, args.target)
        if uri is None:
            return 1
        now_favorite = engine.toggle_favorite(uri)
        state = "Added to" if now_favorite else "Removed from"
        print(f"{state} favorites: {workspace_name_from_uri(uri)}")
        return 0
    finally:
        engine.stop()


def cmd_trash(args: argparse.Namespace) -> int:
    """Archive a workspace's store record."""
    return _remove(args, hard=False)


def cmd_remove(args: argparse.Namespace) -> int:
    """Permanently delete a workspace's store record."""
    return _remove(args, hard=True)


def _remove(args: argparse.Namespace, hard: bool) -> int:
    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        uri = _find_target(engine, args.target)
        if uri is None:
            return 1
        ok = engine.hard_remove(uri) if hard else engine.soft_remove(uri)
        if not ok:
            print(f"Failed to remove {uri}", file=sys.stderr)
            return 1
        action = "Removed" if hard else "Archived"
        print(f"{action} {workspace_name_from_uri(uri)}")
        return 0
    finally:
        engine.stop()


def cmd_refresh(args: argparse.Namespace) -> int:
    """Run a full scan (including orphan cleanup, if enabled) and summarize it."""
    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        print(f"Active editor: {engine.active_editor.name}")
        print(f"Cached workspaces: {len(engine.cache)}")
        print(f"Recent view: {len(engine.recent_workspaces())}")
        return 0
    finally:
        engine.stop()


def cmd_clear(args: argparse.Namespace) -> int:
    """Back up the active editor's history, then clear it."""
    if not args.yes:
        print("This deletes every recent workspace record of the active editor.", file=sys.stderr)
        print("A backup is kept next to the storage directory. Re-run with --yes to proceed.", file=sys.stderr)
        return 1

    engine = _make_engine(args)
    try:
        if not _scan(engine):
            return 1
        storage = engine.active_editor.storage_path
        if not engine.clear_recent():
            print(f"Failed to clear recent workspaces of {engine.active_editor.name}", file=sys.stderr)
            return 1
        engine.queue.run_until_idle()
        print(f"Cleared recent workspaces, backup at {storage}.bak")
        return 0
    finally:
        engine.stop()


def cmd_watch(args: argparse.Namespace) -> int:
    """Keep refreshing on the adaptive schedule and print the list on each change."""
    engine = _make_engine(args, settings_poll_interval=SETTINGS_POLL_INTERVAL)
    last: list[RecentWorkspaceView] = []

    def on_change(eng: WorkspaceEngine) -> None:
        nonlocal last
        view = eng.recent_workspaces()
        if view == last:
            return
        last = view
        _print_entries("Recent workspaces", view)
        sys.stdout.flush()

    engine.on_change = on_change
    engine.start()
    try:
        engine.queue.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Show all settings, show one setting, or set one."""
    store = SettingsStore(Path(args.settings) if args.settings else None)
    _configure_logging(args.debug)

    if args.key is None:
        print(json.dumps(store.as_dict(), indent=2))
        return 0

    if args.key not in DEFAULT_SETTINGS:
        print(f"Unknown setting: {args.key}", file=sys.stderr)
        print(f"Known settings: {', '.join(sorted(DEFAULT_SETTINGS))}", file=sys.stderr)
        return 1

    if args.value is None:
        print(json.dumps(store.get(args.key)))
        return 0

    value = _parse_value(args.value)
    expected = type(DEFAULT_SETTINGS[args.key])
    if expected is not str and (not isinstance(value, expected) or (expected is int and isinstance(value, bool))):
        print(f"Invalid value for {args.key}: expected {expected.__name__}", file=sys.stderr)
        return 1
    if expected is str:
        value = args.value

    if not store.set(args.key, value):
        return 1
    print(f"{args.key} = {json.dumps(value)}")
    return 0


def main() -> int:
    check_python_version()

    parser = argparse.ArgumentParser(description="Recent workspaces for VS Code family editors and Zed")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--settings", help="Settings file (default: XDG config dir)")
    sub = parser.add_subparsers(dest="command")

    ls = sub.add_parser("list", help="List recent workspaces")
    ls.add_argument("--json", action="store_true", help="Output as JSON")
    ls.set_defaults(func=cmd_list)

    ed = sub.add_parser("editors", help="Show discovered editors")
    ed.set_defaults(func=cmd_editors)

    op = sub.add_parser("open", help="Open a workspace in the active editor")
    op.add_argument("target", help="Workspace URI, path or name")
    op.set_defaults(func=cmd_open)

    fav = sub.add_parser("favorite", help="Toggle a workspace's favorite flag")
    fav.add_argument("target", help="Workspace URI, path or name")
    fav.set_defaults(func=cmd_favorite)

    tr = sub.add_parser("trash", help="Archive a workspace's history record")
    tr.add_argument("target", help="Workspace URI, path or name")
    tr.set_defaults(func=cmd_trash)

    rm = sub.add_parser("remove", help="Permanently delete a workspace's history record")
    rm.add_argument("target", help="Workspace URI, path or name")
    rm.set_defaults(func=cmd_remove)

    rf = sub.add_parser("refresh", help="Rescan editor history")
    rf.set_defaults(func=cmd_refresh)

    cl = sub.add_parser("clear", help="Back up and clear the active editor's history")
    cl.add_argument("--yes", action="store_true", help="Confirm clearing")
    cl.set_defaults(func=cmd_clear)

    wa = sub.add_parser("watch", help="Keep refreshing and print changes")
    wa.set_defaults(func=cmd_watch)

    cf = sub.add_parser("config", help="Show or change settings")
    cf.add_argument("key", nargs="?", help="Setting name")
    cf.add_argument("value", nargs="?", help="New value (JSON, or a plain string)")
    cf.set_defaults(func=cmd_config)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
