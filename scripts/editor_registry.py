#!/usr/bin/env python3
"""
Editor catalog and active-editor resolution for Recent Workspaces.

Knows where each supported editor keeps its history of opened workspaces:
- Directory-based editors (VS Code family, Cursor) keep one sub-directory per
  workspace under <config>/<Product>/User/workspaceStorage
- Zed keeps a single SQLite key-value database under <data>/zed/state.db

The registry discovers which stores exist on disk and resolves the single
active editor from the "editorLocation" setting ("auto", a binary name, or a
path to a binary).

Requirements: Python 3.10+
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from workspace_utils import get_config_home, get_data_home

logger = logging.getLogger(__name__)

AUTO_LOCATION = "auto"
WORKSPACE_STORAGE_SUFFIX = Path("User") / "workspaceStorage"

# Case-insensitive substring -> product directory. Order matters: first match wins.
STORAGE_GUESS_RULES = [
    ("insiders", "Code - Insiders"),
    ("codium", "VSCodium"),
    ("cursor", "Cursor"),
    ("code", "Code"),
]

# Probed in order when a guessed storage path does not exist
ALTERNATIVE_PRODUCT_DIRS = ["Cursor", "cursor", "Code", "code", "VSCodium", "vscodium"]

ZED_CHANNELS = ["stable", "preview", "dev"]


class StorageKind(str, Enum):
    """How an editor persists its workspace history."""
    DIRECTORY_JSON = "directory"
    KEY_VALUE_DB = "sqlite"


@dataclass(frozen=True)
class EditorDescriptor:
    """A known (or synthesized) editor and the location of its store."""
    name: str
    binary: str
    storage_kind: StorageKind
    storage_path: str  # workspaceStorage directory ("" for database editors)
    database_path: Optional[str] = None  # SQLite file for KEY_VALUE_DB editors
    is_default: bool = False
    channel: Optional[str] = None  # Zed release channel

    @property
    def is_database(self) -> bool:
        return self.storage_kind == StorageKind.KEY_VALUE_DB

    @property
    def store_location(self) -> Optional[Path]:
        """The directory or database file holding this editor's history."""
        location = self.database_path if self.is_database else self.storage_path
        return Path(location) if location else None

    def store_exists(self) -> bool:
        location = self.store_location
        return location is not None and location.exists()


def zed_channel_name(channel: str) -> str:
    """Editor/binary name for a Zed channel ("stable" -> "zed")."""
    return "zed" if channel == "stable" else f"zed-{channel}"


def default_editors(config_home: Optional[Path] = None, data_home: Optional[Path] = None) -> list[EditorDescriptor]:
    """The static editor catalog, in priority order."""
    config_home = config_home or get_config_home()
    data_home = data_home or get_data_home()

    def storage(product: str) -> str:
        return str(config_home / product / WORKSPACE_STORAGE_SUFFIX)

    return [
        EditorDescriptor("vscode", "code", StorageKind.DIRECTORY_JSON, storage("Code"), is_default=True),
        EditorDescriptor("codium", "codium", StorageKind.DIRECTORY_JSON, storage("VSCodium")),
        EditorDescriptor("code-insiders", "code-insiders", StorageKind.DIRECTORY_JSON, storage("Code - Insiders")),
        EditorDescriptor("cursor", "cursor", StorageKind.DIRECTORY_JSON, storage("Cursor")),
        EditorDescriptor(
            "zed",
            "zed",
            StorageKind.KEY_VALUE_DB,
            "",
            database_path=str(data_home / "zed" / "state.db"),
            channel="stable",
        ),
    ]


def guess_storage_path(binary_name: str, config_home: Optional[Path] = None) -> Path:
    """
    Guess the workspaceStorage directory for an editor from its binary name.

    Example: "/opt/VSCodium/bin/codium" -> ~/.config/VSCodium/User/workspaceStorage
    """
    config_home = config_home or get_config_home()
    lowered = binary_name.lower()
    for needle, product in STORAGE_GUESS_RULES:
        if needle in lowered:
            return config_home / product / WORKSPACE_STORAGE_SUFFIX
    return config_home / binary_name / WORKSPACE_STORAGE_SUFFIX


def alternative_storage_paths(config_home: Optional[Path] = None) -> list[Path]:
    """Known workspaceStorage locations, in probe order."""
    config_home = config_home or get_config_home()
    return [config_home / product / WORKSPACE_STORAGE_SUFFIX for product in ALTERNATIVE_PRODUCT_DIRS]


def is_path_location(location: str) -> bool:
    """True when the editorLocation setting is a path rather than a binary name."""
    return "/" in location or os.sep in location


class EditorRegistry:
    """
    Catalog of editors plus the ones actually found on disk.

    The found list is rebuilt by discover() and grows when resolution
    synthesizes a custom descriptor.
    """

    def __init__(
        self,
        editors: Optional[list[EditorDescriptor]] = None,
        config_home: Optional[Path] = None,
        data_home: Optional[Path] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.config_home = config_home or get_config_home()
        self.data_home = data_home or get_data_home()
        self.catalog = editors if editors is not None else default_editors(self.config_home, self.data_home)
        self.found: list[EditorDescriptor] = []
        self._which = which

    # =========================================================================
    # Discovery
    # =========================================================================

    def discover(self) -> list[EditorDescriptor]:
        """Rebuild the found list from what exists on disk, in catalog order."""
        found: list[EditorDescriptor] = []

        for editor in self.catalog:
            location = editor.store_location
            if editor.store_exists():
                logger.debug("Found %s store: %s", editor.name, location)
                found.append(editor)
                continue

            logger.debug("No %s store found: %s", editor.name, location)
            if editor.is_database and editor.name == "zed":
                found.extend(self._discover_zed_channels())

        self.found = found
        logger.info("Found editors: %s", [e.name for e in found])
        return list(found)

    def _discover_zed_channels(self) -> list[EditorDescriptor]:
        """Probe the Zed channel databases, then the Zed binaries on PATH."""
        found = []
        for channel in ZED_CHANNELS:
            name = zed_channel_name(channel)
            database = self.data_home / name / "state.db"
            if database.exists():
                logger.debug("Found alternative Zed database at %s", database)
                found.append(EditorDescriptor(
                    name, name, StorageKind.KEY_VALUE_DB, "",
                    database_path=str(database), channel=channel,
                ))

        if found:
            return found

        # Launchable without a database, just no project listing
        for channel in ZED_CHANNELS:
            binary = zed_channel_name(channel)
            try:
                binary_path = self._which(binary)
            except OSError as e:
                logger.debug("Error checking for %s binary: %s", binary, e)
                continue
            if binary_path:
                logger.debug("Found Zed binary at %s", binary_path)
                found.append(EditorDescriptor(
                    binary, binary, StorageKind.KEY_VALUE_DB, "",
                    database_path="", channel=channel,
                ))
        return found

    def register(self, editor: EditorDescriptor) -> bool:
        """Add an editor to the found list unless one with the same binary is there."""
        if any(e.binary == editor.binary for e in self.found):
            return False
        self.found.append(editor)
        return True

    # =========================================================================
    # Resolution
    # =========================================================================

    def synthesize_custom(self, location: str, name: Optional[str] = None) -> EditorDescriptor:
        """
        Build a descriptor for an editor the catalog does not know.

        The storage path is guessed from the binary name; when the guess does
        not exist the known alternatives are probed and the first existing one
        is adopted. A descriptor with no discoverable history is still
        returned (it can launch, it just lists nothing).
        """
        binary_name = Path(location).name if is_path_location(location) else location
        storage = guess_storage_path(binary_name, self.config_home)

        if storage.exists():
            logger.debug("Found workspace directory for custom editor: %s", storage)
        else:
            logger.debug("Workspace directory not found for custom editor: %s", storage)
            for alternative in alternative_storage_paths(self.config_home):
                if alternative.exists():
                    logger.debug("Found alternative workspace directory: %s", alternative)
                    storage = alternative
                    break
            else:
                logger.info("No workspace storage found for %s, using it anyway", location)

        return EditorDescriptor(
            name=name or f"custom ({binary_name})",
            binary=location,
            storage_kind=StorageKind.DIRECTORY_JSON,
            storage_path=str(storage),
        )

    def resolve_active_editor(
        self,
        location_setting: str,
        found_editors: Optional[list[EditorDescriptor]] = None,
    ) -> Optional[EditorDescriptor]:
        """
        Resolve the active editor from the editorLocation setting.

        - "auto": the default editor if found, else the first found editor
        - a path: a custom editor for that binary
        - a binary name: the found editor with that binary, else a custom
          editor for it, else the first found editor

        Returns None only when nothing at all could be resolved.
        """
        found = self.found if found_editors is None else found_editors
        location = (location_setting or "").strip()

        if location == AUTO_LOCATION:
            active = next((e for e in found if e.is_default), None)
            if active is None and found:
                active = found[0]
        elif is_path_location(location):
            logger.debug("Using custom editor binary path: %s", location)
            active = self.synthesize_custom(location)
            self.register(active)
        else:
            active = next((e for e in found if e.binary == location), None)
            if active is None and location:
                logger.debug("No predefined editor for binary '%s', creating custom entry", location)
                active = self.synthesize_custom(location)
                self.register(active)
            if active is None and found:
                active = found[0]

        if active is None:
            logger.info("No active editor found")
        else:
            logger.info("Active editor: %s (%s) store: %s", active.name, active.binary, active.store_location)
        return active
