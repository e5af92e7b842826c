#!/usr/bin/env python3
"""
Shared utilities for Recent Workspaces.

Provides XDG path handling, settings management, atomic JSON save,
URI helpers and file locking. Used by the engine, the scanners and the CLI.

Requirements: Python 3.10+
"""

import json
import os
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlparse

# Minimum Python version required
MIN_PYTHON = (3, 10)

APP_NAME = "recent-workspaces"

FILE_URI_PREFIX = "file://"
WORKSPACE_FILE_SUFFIX = ".code-workspace"


def check_python_version() -> None:
    """Check that Python version meets minimum requirements."""
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ required, "
            f"but running {sys.version_info.major}.{sys.version_info.minor}\n"
            f"Install a newer Python version or use pyenv/conda."
        )


def get_config_home() -> Path:
    """Get the user config directory ($XDG_CONFIG_HOME or ~/.config)."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    return Path(xdg) if xdg else Path.home() / ".config"


def get_data_home() -> Path:
    """Get the user data directory ($XDG_DATA_HOME or ~/.local/share)."""
    xdg = os.environ.get("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def get_app_config_dir() -> Path:
    """Get this tool's config directory."""
    return get_config_home() / APP_NAME


def get_app_data_dir() -> Path:
    """Get this tool's data directory."""
    return get_data_home() / APP_NAME


def get_settings_file() -> Path:
    """Get the settings file path."""
    return get_app_config_dir() / "settings.json"


def get_archive_dir() -> Path:
    """Get the directory that receives soft-removed store records."""
    return get_app_data_dir() / "archive"


# Default settings
DEFAULT_SETTINGS = {
    "version": 1,
    "editorLocation": "auto",
    "refreshIntervalSeed": 30,
    "preferWorkspaceFile": False,
    "cleanupOrphanedWorkspaces": False,
    "nofailWorkspaceNames": [],
    "favoriteWorkspaceURIs": [],
    "customLaunchArgs": "",
    "newWindow": False,
    "debug": False,
}


def load_settings(settings_file: Optional[Path] = None) -> dict[str, Any]:
    """
    Load settings from settings.json with defaults.

    Returns settings dict with all expected keys populated.
    """
    settings_file = settings_file or get_settings_file()
    settings = _deep_merge(DEFAULT_SETTINGS, {})

    if settings_file.exists():
        try:
            with open(settings_file, "r", encoding="utf-8") as f:
                user_settings = json.load(f)
            if isinstance(user_settings, dict):
                settings = _deep_merge(settings, user_settings)
            else:
                print(f"Warning: Ignoring non-object settings in {settings_file}", file=sys.stderr)
        except (json.JSONDecodeError, IOError) as e:
            print(f"Warning: Could not load settings from {settings_file}: {e}", file=sys.stderr)

    return settings


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override dict into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def save_settings(settings: dict[str, Any], settings_file: Optional[Path] = None) -> bool:
    """Save settings to settings.json."""
    settings_file = settings_file or get_settings_file()
    return save_json_file(settings_file, settings)


LOCK_STALE_SECONDS = 300


class FileLock:
    """
    Cross-platform file locking using directory creation.

    This works on all platforms (Windows, macOS, Linux) because
    mkdir is atomic and will fail if the directory already exists.

    Usage:
        with FileLock("~/.config/recent-workspaces/.settings.lock"):
            # critical section
    """

    def __init__(self, lock_path: str | Path, timeout: float = 10.0, poll_interval: float = 0.1):
        self.lock_path = Path(lock_path).expanduser()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._acquired = False

    def acquire(self) -> bool:
        """
        Attempt to acquire the lock.

        Returns True if acquired, False if timeout.
        """
        start_time = time.time()

        while time.time() - start_time < self.timeout:
            try:
                self.lock_path.mkdir(parents=True, exist_ok=False)
                self._acquired = True
                return True
            except FileExistsError:
                # Stale after 5 minutes
                try:
                    lock_age = time.time() - self.lock_path.stat().st_mtime
                    if lock_age > LOCK_STALE_SECONDS:
                        self.lock_path.rmdir()
                        continue
                except OSError:
                    pass

                time.sleep(self.poll_interval)

        return False

    def release(self) -> None:
        """Release the lock."""
        if self._acquired:
            try:
                self.lock_path.rmdir()
            except OSError:
                pass
            self._acquired = False

    def __enter__(self) -> "FileLock":
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock: {self.lock_path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def write_json_atomic(filepath: Path, data: Any, indent: int = 2) -> None:
    """
    Write JSON to a temp file in the same directory, then replace the target.

    Raises OSError on failure; the original file is left intact.
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{filepath.name}.", suffix=".tmp", dir=filepath.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, filepath)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def save_json_file(filepath: Path, data: Any, indent: int = 2) -> bool:
    """Save data to JSON file atomically with error handling."""
    try:
        write_json_atomic(filepath, data, indent=indent)
        return True
    except (IOError, TypeError, ValueError) as e:
        print(f"Error: Could not save {filepath}: {e}", file=sys.stderr)
        return False


# =============================================================================
# URI helpers
# =============================================================================


def path_to_uri(path: str) -> str:
    """
    Normalize a filesystem path (or an existing file:// URI) to a file:// URI.

    Example: "~/src/app" -> "file:///home/user/src/app"
    """
    if path.startswith(FILE_URI_PREFIX):
        return path
    return Path(path).expanduser().absolute().as_uri()


def uri_to_path(uri: str) -> Optional[Path]:
    """Convert a file:// URI to a Path. Returns None for other schemes."""
    if not uri.startswith(FILE_URI_PREFIX):
        return None
    parsed = urlparse(uri)
    return Path(unquote(parsed.path))


def uri_scheme(uri: str) -> str:
    """Get the scheme of a URI, lowercased ("" when there is none)."""
    return urlparse(uri).scheme.lower()


def workspace_name_from_uri(uri: str) -> str:
    """
    Get the display name of a workspace from its URI.

    Example: "file:///home/u/my%20app.code-workspace" -> "my app"
    """
    raw_path = unquote(urlparse(uri).path) if "://" in uri else uri
    name = raw_path.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(WORKSPACE_FILE_SUFFIX):
        name = name[: -len(WORKSPACE_FILE_SUFFIX)]
    return name


def dedupe_preserving_order(items: list) -> list:
    """Drop repeated items, keeping the first occurrence of each."""
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


# =============================================================================
# Engine configuration and settings store
# =============================================================================


@dataclass(frozen=True)
class EngineConfig:
    """Snapshot of the settings the engine consumes."""
    editor_location: str = "auto"
    refresh_interval_seed: int = 30
    prefer_workspace_file: bool = False
    cleanup_orphaned_workspaces: bool = False
    nofail_workspace_names: tuple[str, ...] = ()
    favorite_workspace_uris: frozenset[str] = field(default_factory=frozenset)
    custom_launch_args: str = ""
    new_window: bool = False
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "EngineConfig":
        """Build a config from a settings dict, tolerating bad value types."""
        def _bool(key: str) -> bool:
            value = settings.get(key)
            return value if isinstance(value, bool) else DEFAULT_SETTINGS[key]

        def _strings(key: str) -> list[str]:
            value = settings.get(key) or []
            if not isinstance(value, (list, tuple)):
                return []
            return [v for v in value if isinstance(v, str) and v]

        try:
            seed = int(settings.get("refreshIntervalSeed", DEFAULT_SETTINGS["refreshIntervalSeed"]))
        except (TypeError, ValueError):
            seed = DEFAULT_SETTINGS["refreshIntervalSeed"]

        location = settings.get("editorLocation")
        if not isinstance(location, str):
            location = DEFAULT_SETTINGS["editorLocation"]

        launch_args = settings.get("customLaunchArgs")
        if not isinstance(launch_args, str):
            launch_args = ""

        return cls(
            editor_location=location.strip(),
            refresh_interval_seed=seed,
            prefer_workspace_file=_bool("preferWorkspaceFile"),
            cleanup_orphaned_workspaces=_bool("cleanupOrphanedWorkspaces"),
            nofail_workspace_names=tuple(dedupe_preserving_order(_strings("nofailWorkspaceNames"))),
            favorite_workspace_uris=frozenset(_strings("favoriteWorkspaceURIs")),
            custom_launch_args=launch_args,
            new_window=_bool("newWindow"),
            debug=_bool("debug"),
        )


class SettingsStore:
    """
    JSON-file settings backend with get/set/change-notify.

    Listeners are called with the store as their only argument whenever a
    set() or reload() actually changes a value.
    """

    def __init__(self, settings_file: Optional[Path] = None):
        self.settings_file = Path(settings_file) if settings_file else get_settings_file()
        self._settings: dict[str, Any] = {}
        self._listeners: dict[int, Callable[["SettingsStore"], None]] = {}
        self._next_id = 1
        self.load()

    def load(self) -> dict[str, Any]:
        """Read the settings file without notifying listeners."""
        self._settings = load_settings(self.settings_file)
        return self.as_dict()

    def get(self, key: str, default: Any = None) -> Any:
        return self._settings.get(key, default)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._settings)

    def config(self) -> EngineConfig:
        return EngineConfig.from_settings(self._settings)

    def set(self, key: str, value: Any) -> bool:
        """
        Persist a single setting. Returns True if it was saved.

        Listeners only fire when the stored value changes.
        """
        if self._settings.get(key) == value:
            return True

        lock = FileLock(self.settings_file.parent / ".settings.lock", timeout=2.0)
        try:
            with lock:
                # Merge over what is on disk so other writers are not clobbered
                current = load_settings(self.settings_file)
                current[key] = value
                if not save_settings(current, self.settings_file):
                    return False
                self._settings = current
        except TimeoutError as e:
            print(f"Warning: {e}", file=sys.stderr)
            return False

        self._notify()
        return True

    def reload(self) -> bool:
        """Re-read the settings file. Returns True (and notifies) if anything changed."""
        fresh = load_settings(self.settings_file)
        if fresh == self._settings:
            return False
        self._settings = fresh
        self._notify()
        return True

    def connect(self, callback: Callable[["SettingsStore"], None]) -> int:
        handler_id = self._next_id
        self._next_id += 1
        self._listeners[handler_id] = callback
        return handler_id

    def disconnect(self, handler_id: int) -> None:
        self._listeners.pop(handler_id, None)

    def _notify(self) -> None:
        for callback in list(self._listeners.values()):
            callback(self)


if __name__ == "__main__":
    # Basic self-test
    check_python_version()

    print("Recent Workspaces Utils Self-Test")
    print("=" * 40)
    print(f"Config dir:     {get_app_config_dir()}")
    print(f"Data dir:       {get_app_data_dir()}")
    print(f"Settings file:  {get_settings_file()}")
    print(f"Archive dir:    {get_archive_dir()}")
    print()

    config = EngineConfig.from_settings(load_settings())
    print("Settings:")
    print(f"  Editor location:   {config.editor_location}")
    print(f"  Refresh seed:      {config.refresh_interval_seed}s")
    print(f"  Cleanup orphans:   {config.cleanup_orphaned_workspaces}")
    print(f"  Nofail names:      {len(config.nofail_workspace_names)}")
    print(f"  Favorites:         {len(config.favorite_workspace_uris)}")
