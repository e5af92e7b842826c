#!/usr/bin/env python3
"""
Orphan reconciliation for Recent Workspaces.

An "orphan" is a workspace whose target folder or .code-workspace file no
longer exists. Depending on settings and the workspace's nofail flag the
store record is archived, skipped, or protected.

Requirements: Python 3.10+
"""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from store_scanner import archive_store_record, find_workspace_file
from workspace_cache import Workspace
from workspace_errors import StoreWriteFailure, TargetMissing
from workspace_utils import get_archive_dir, uri_to_path

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Outcome of reconciling one workspace."""
    PASS = "pass"  # target exists, ingest
    ARCHIVED = "archived"  # orphan, store record archived (or archiving attempted)
    SKIPPED = "skipped"  # orphan, cleanup disabled
    PROTECTED = "protected"  # orphan, nofail


def resolve_target(workspace: Workspace) -> Path:
    """
    Local path a workspace points at.

    Raises TargetMissing when it does not exist (or is not a local URI).
    """
    path = uri_to_path(workspace.uri)
    if path is None or not path.exists():
        raise TargetMissing(workspace.uri, path)
    return path


class OrphanReconciler:
    """Decide what happens to a discovered workspace before it is cached."""

    def __init__(
        self,
        cleanup_enabled: bool = False,
        prefer_workspace_file: bool = False,
        archive_root: Optional[Path] = None,
    ):
        self.cleanup_enabled = cleanup_enabled
        self.prefer_workspace_file = prefer_workspace_file
        self.archive_root = Path(archive_root) if archive_root else get_archive_dir()

    def reconcile(self, workspace: Workspace) -> Decision:
        """
        Check a workspace's target and apply the orphan policy.

        May rewrite workspace.uri to a .code-workspace file inside the
        target directory when workspace files are preferred.
        """
        if workspace.remote:
            # No remote resolution; remote targets are never orphans
            return Decision.PASS

        if self.prefer_workspace_file:
            self._maybe_prefer_workspace_file(workspace)

        try:
            resolve_target(workspace)
            return Decision.PASS
        except TargetMissing as e:
            logger.debug("%s", e)

        if not self.cleanup_enabled or workspace.nofail:
            decision = Decision.PROTECTED if workspace.nofail else Decision.SKIPPED
            logger.info(
                "Skipping removal for workspace: %s (cleanup enabled: %s, nofail: %s)",
                workspace.uri, self.cleanup_enabled, workspace.nofail,
            )
            return decision

        logger.info("Workspace will be removed: %s", workspace.uri)
        if workspace.store_handle is None:
            return Decision.ARCHIVED

        try:
            dest = archive_store_record(workspace.store_handle, self.archive_root)
            logger.info("Workspace archived: %s -> %s", workspace.uri, dest)
        except StoreWriteFailure as e:
            logger.warning("Failed to archive workspace %s: %s", workspace.uri, e)
        return Decision.ARCHIVED

    def _maybe_prefer_workspace_file(self, workspace: Workspace) -> None:
        path = uri_to_path(workspace.uri)
        if path is None or not path.is_dir():
            return

        workspace_file = find_workspace_file(path)
        logger.debug("Checked for .code-workspace in %s: %s", path, workspace_file)
        if workspace_file is not None:
            workspace.uri = workspace_file.as_uri()
            logger.debug("Updated workspace URI to use .code-workspace file: %s", workspace.uri)
