#!/usr/bin/env python3
"""
Directory-store parsing and record mutation for Recent Workspaces.

VS Code family editors keep one sub-directory per opened workspace:

    workspaceStorage/
        3f2a.../workspace.json   {"folder": "file:///home/user/app"}
        91bc.../workspace.json   {"workspace": "file:///home/user/x.code-workspace"}

This module parses those records into Workspace objects and performs the
few writes the engine makes to them (nofail rewrite, archive, delete,
clearing a whole store behind a backup).

Requirements: Python 3.10+
"""

import json
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from workspace_cache import Workspace
from workspace_errors import ParseFailure, StoreWriteFailure
from workspace_utils import WORKSPACE_FILE_SUFFIX, uri_scheme, write_json_atomic

logger = logging.getLogger(__name__)

RECORD_FILENAME = "workspace.json"

# URI schemes that point at a remote or container resource
REMOTE_SCHEMES = {"vscode-remote", "docker", "vscode-vfs", "dev-container"}


def is_remote_uri(uri: str) -> bool:
    return uri_scheme(uri) in REMOTE_SCHEMES


# =============================================================================
# Parsing
# =============================================================================


def load_store_record(store_dir: Path) -> dict:
    """
    Read and validate <store_dir>/workspace.json.

    Raises ParseFailure when the file is missing, unreadable, not a JSON
    object, or has neither a "folder" nor a "workspace" URI.
    """
    record_file = store_dir / RECORD_FILENAME
    if not record_file.is_file():
        raise ParseFailure(store_dir, f"no {RECORD_FILENAME}")

    try:
        data = json.loads(record_file.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, IOError, UnicodeDecodeError) as e:
        raise ParseFailure(record_file, str(e)) from e

    if not isinstance(data, dict):
        raise ParseFailure(record_file, "record is not a JSON object")

    uri = _first_uri(data)
    if not uri:
        raise ParseFailure(record_file, "no folder or workspace property")

    return data


def _first_uri(data: dict) -> Optional[str]:
    for key in ("folder", "workspace"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def parse_store_dir(store_dir: Path, editor_kind: str = "") -> Optional[Workspace]:
    """
    Parse one store sub-directory into a Workspace.

    Returns None (and logs why) when the record cannot be used.
    """
    try:
        data = load_store_record(store_dir)
    except ParseFailure as e:
        logger.debug("%s", e)
        return None

    uri = _first_uri(data)
    workspace = Workspace(
        uri=uri,
        store_handle=store_dir,
        nofail=data.get("nofail") is True,
        remote=is_remote_uri(uri),
        editor_kind=editor_kind,
    )
    logger.debug(
        "Parsed %s with %s (nofail: %s, remote: %s)",
        store_dir, uri, workspace.nofail, workspace.remote,
    )
    return workspace


# =============================================================================
# Record mutations
# =============================================================================


def mark_nofail(workspace: Workspace) -> None:
    """
    Set "nofail": true in the workspace's store record, keeping other fields.

    The replacement is written atomically. Raises StoreWriteFailure.
    """
    if workspace.store_handle is None:
        raise StoreWriteFailure("rewrite", workspace.uri, "workspace has no store record")

    record_file = Path(workspace.store_handle) / RECORD_FILENAME
    try:
        data = json.loads(record_file.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("record is not a JSON object")
        data["nofail"] = True
        write_json_atomic(record_file, data)
    except (OSError, ValueError) as e:
        raise StoreWriteFailure("rewrite", record_file, e) from e

    workspace.nofail = True


def archive_store_record(store_dir: Path, archive_root: Path, now: Optional[datetime] = None) -> Path:
    """
    Move a store sub-directory into a timestamped archive directory.

    Nothing is deleted; the record can be moved back by hand.
    Returns the archived location. Raises StoreWriteFailure.
    """
    store_dir = Path(store_dir)
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    archive_dir = Path(archive_root) / stamp

    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        dest = archive_dir / store_dir.name
        counter = 1
        while dest.exists():
            dest = archive_dir / f"{store_dir.name}.{counter}"
            counter += 1
        shutil.move(str(store_dir), str(dest))
    except (OSError, shutil.Error) as e:
        raise StoreWriteFailure("archive", store_dir, e) from e

    return dest


def delete_store_record(store_dir: Path) -> None:
    """Remove a store sub-directory permanently. Raises StoreWriteFailure."""
    try:
        shutil.rmtree(store_dir)
    except OSError as e:
        raise StoreWriteFailure("delete", store_dir, e) from e


def clear_store(storage_dir: Path) -> Path:
    """
    Back up a workspace storage directory, then delete every store sub-directory.

    The backup is a copy at <storage>.bak. Refuses to run when that backup
    already exists, so an earlier backup is never overwritten.
    Returns the backup location. Raises StoreWriteFailure.
    """
    storage_dir = Path(storage_dir)
    backup_dir = storage_dir.with_name(storage_dir.name + ".bak")

    if not storage_dir.is_dir():
        raise StoreWriteFailure("clear", storage_dir, "storage directory does not exist")
    if backup_dir.exists():
        raise StoreWriteFailure("clear", storage_dir, f"backup {backup_dir} already exists")

    logger.info("Creating backup of %s to %s", storage_dir, backup_dir)
    try:
        shutil.copytree(storage_dir, backup_dir)
    except (OSError, shutil.Error) as e:
        raise StoreWriteFailure("back up", storage_dir, e) from e

    try:
        children = sorted(storage_dir.iterdir())
    except OSError as e:
        raise StoreWriteFailure("clear", storage_dir, e) from e

    for child in children:
        if child.is_dir():
            logger.debug("Deleting %s", child)
            delete_store_record(child)

    return backup_dir


def find_workspace_file(directory: Path) -> Optional[Path]:
    """First *.code-workspace file among the directory's immediate children."""
    try:
        candidates = sorted(
            child for child in Path(directory).iterdir()
            if child.name.endswith(WORKSPACE_FILE_SUFFIX) and child.is_file()
        )
    except OSError as e:
        logger.debug("Error checking for workspace file in %s: %s", directory, e)
        return None
    return candidates[0] if candidates else None
