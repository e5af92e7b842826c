#!/usr/bin/env python3
"""
Error taxonomy for Recent Workspaces.

Every boundary (file read, database query, JSON parse, filesystem mutation)
catches its own failures and converts them to one of these. None of them is
allowed to escape a scan cycle.

Usage:
    from workspace_errors import ParseFailure, StoreWriteFailure

    try:
        mark_nofail(workspace)
    except StoreWriteFailure as e:
        logger.warning("%s", e)
"""

from pathlib import Path
from typing import Optional


class WorkspaceError(Exception):
    """Base class for all engine errors."""


class ParseFailure(WorkspaceError):
    """A store record is missing, malformed, or names no workspace."""

    def __init__(self, source: Path | str, reason: str):
        self.source = str(source)
        self.reason = reason
        super().__init__(f"Could not parse {self.source}: {reason}")


class ToolUnavailable(WorkspaceError):
    """The key-value query tool cannot be used; advance the fallback chain."""


class TargetMissing(WorkspaceError):
    """A workspace target vanished from disk."""

    def __init__(self, uri: str, path: Optional[Path] = None):
        self.uri = uri
        self.path = path
        super().__init__(f"Workspace target not found: {path or uri}")


class StoreWriteFailure(WorkspaceError):
    """Archiving, deleting, or rewriting a store record failed."""

    def __init__(self, operation: str, target: Path | str, error: Exception | str):
        self.operation = operation
        self.target = str(target)
        self.error = error
        super().__init__(f"Could not {operation} {self.target}: {error}")


class ResolutionFailure(WorkspaceError):
    """No active editor could be determined."""
