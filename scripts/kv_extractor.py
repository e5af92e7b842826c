#!/usr/bin/env python3
"""
Project extraction from key-value database stores (Zed) for Recent Workspaces.

Zed keeps its state in a SQLite database with a kvs(key, value) table. The
extractor tries, in order:

1. Direct query: the "project_panel/projects" key, a JSON array of projects
2. Broad query: every project-like key/value, parsed line by line
3. Filesystem heuristic (only when the database cannot be queried at all):
   look for git repos and project marker files under common project roots

Each strategy runs only if the previous one is unavailable or finds nothing.

Requirements: Python 3.10+
"""

import json
import logging
import re
import sqlite3
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from workspace_errors import ToolUnavailable
from workspace_utils import dedupe_preserving_order

logger = logging.getLogger(__name__)

PROJECTS_KEY = "project_panel/projects"
DIRECT_QUERY = "SELECT value FROM kvs WHERE key = ?"
BROAD_QUERY = "SELECT value FROM kvs WHERE key LIKE '%project%' AND value LIKE '%path%'"

DEFAULT_MAX_PROJECTS = 25
MAX_SCAN_DEPTH = 2

# Directories under $HOME that commonly hold projects
COMMON_PROJECT_ROOTS = [
    "Projects",
    "Development",
    "src",
    "Code",
    "git",
    "workspace",
    "workspaces",
    "work",
    "GitHub",
    "github",
    "GitLab",
    "gitlab",
]

# Files whose presence marks a directory as a project
PROJECT_MARKER_FILES = {
    "package.json",
    "Cargo.toml",
    "setup.py",
    "pyproject.toml",
    "CMakeLists.txt",
    "Makefile",
    "project.clj",
    "build.gradle",
    "pom.xml",
    "build.sbt",
    "go.mod",
    ".zed-project",
}

VCS_MARKER_DIRS = {".git", ".hg", ".svn"}

# Recently-used registry files, relative to $HOME
RECENTLY_USED_FILES = [
    Path(".local") / "share" / "recently-used.xbel",
    Path(".recently-used.xbel"),
]

HREF_PATTERN = re.compile(r'href="(file://[^"]+)"')


# =============================================================================
# Query Tool
# =============================================================================


class SqliteQueryTool:
    """
    Read-only access to a key-value SQLite database.

    Unavailable when the file is missing, cannot be opened, or has no kvs table.
    """

    def __init__(self, database_path: Path | str, timeout: float = 2.0):
        self.database_path = Path(database_path) if database_path else None
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        if self.database_path is None or not self.database_path.is_file():
            raise ToolUnavailable(f"Database not found: {self.database_path}")
        uri = f"{self.database_path.resolve().as_uri()}?mode=ro"
        try:
            return sqlite3.connect(uri, uri=True, timeout=self.timeout)
        except sqlite3.Error as e:
            raise ToolUnavailable(f"Cannot open {self.database_path}: {e}") from e

    def is_available(self) -> bool:
        try:
            conn = self._connect()
        except ToolUnavailable as e:
            logger.debug("%s", e)
            return False
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'kvs'"
            ).fetchone()
            return row is not None
        except sqlite3.Error as e:
            logger.debug("Cannot query %s: %s", self.database_path, e)
            return False
        finally:
            conn.close()

    def query(self, sql: str, params: tuple = ()) -> list[str]:
        """Run a query and return the first column of each row as text."""
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise ToolUnavailable(f"Query failed on {self.database_path}: {e}") from e
        finally:
            conn.close()

        values = []
        for (value,) in rows:
            if value is None:
                continue
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            values.append(str(value))
        return values


# =============================================================================
# JSON payload helpers
# =============================================================================


def _entry_path(entry: Any) -> Optional[str]:
    """Path from one project entry: a string, or an object with path/worktree."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        for key in ("path", "worktree"):
            value = entry.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def parse_project_array(payload: str) -> list[str]:
    """
    Parse the direct-query payload: a JSON array of strings or objects.

    Raises ValueError when the payload is not a JSON array.
    """
    data = json.loads(payload)
    if not isinstance(data, list):
        raise ValueError("projects data is not an array")
    return [path for path in (_entry_path(item) for item in data) if path]


def collect_project_paths(data: Any, depth: int = 0) -> list[str]:
    """
    Recursively pull path/worktree fields out of an arbitrary JSON value.

    Strings count as paths only when they look like one (contain "/") and
    sit at the top level or inside an array.
    """
    if depth > 16:
        return []

    paths: list[str] = []
    if isinstance(data, str):
        if "/" in data:
            paths.append(data)
    elif isinstance(data, list):
        for item in data:
            paths.extend(collect_project_paths(item, depth + 1))
    elif isinstance(data, dict):
        for key in ("path", "worktree"):
            value = data.get(key)
            if isinstance(value, str) and value:
                paths.append(value)
        for key, value in data.items():
            if key in ("path", "worktree"):
                continue
            if isinstance(value, (dict, list)):
                paths.extend(collect_project_paths(value, depth + 1))
    return paths


def parse_fragments(output: str) -> list[str]:
    """Parse newline-delimited JSON fragments, skipping lines that do not parse."""
    paths: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        paths.extend(collect_project_paths(data))
    return paths


# =============================================================================
# Extractor
# =============================================================================


class KVProjectExtractor:
    """Extract project paths from a key-value store with a fallback chain."""

    def __init__(
        self,
        database_path: Path | str,
        query_tool: Optional[SqliteQueryTool] = None,
        home: Optional[Path] = None,
        max_projects: int = DEFAULT_MAX_PROJECTS,
    ):
        self.database_path = Path(database_path) if database_path else None
        self.query_tool = query_tool if query_tool is not None else SqliteQueryTool(database_path)
        self.home = Path(home) if home else Path.home()
        self.max_projects = max_projects
        self.strategy: Optional[str] = None  # which strategy produced the result

    def extract(self) -> list[str]:
        """Run the fallback chain. Returns deduplicated project paths."""
        self.strategy = None

        if not self.query_tool.is_available():
            logger.info("Query tool unavailable for %s, using filesystem heuristic", self.database_path)
            self.strategy = "filesystem"
            return self.extract_from_filesystem()

        paths = self.extract_direct()
        if paths:
            self.strategy = "direct"
            return paths

        paths = self.extract_broad()
        if paths:
            self.strategy = "broad"
        else:
            logger.info("No projects found in %s", self.database_path)
        return paths

    def extract_direct(self) -> list[str]:
        try:
            rows = self.query_tool.query(DIRECT_QUERY, (PROJECTS_KEY,))
        except ToolUnavailable as e:
            logger.debug("%s", e)
            return []

        paths: list[str] = []
        for payload in rows:
            try:
                paths.extend(parse_project_array(payload))
            except ValueError as e:
                logger.debug("Failed to parse projects JSON: %s", e)

        logger.debug("Direct query found %d projects", len(paths))
        return dedupe_preserving_order(paths)

    def extract_broad(self) -> list[str]:
        try:
            rows = self.query_tool.query(BROAD_QUERY)
        except ToolUnavailable as e:
            logger.debug("%s", e)
            return []

        paths = parse_fragments("\n".join(rows))
        logger.debug("Broad query found %d potential projects", len(paths))
        return dedupe_preserving_order(paths)

    # =========================================================================
    # Filesystem heuristic
    # =========================================================================

    def extract_from_filesystem(self) -> list[str]:
        """
        Look for projects under common roots and recently used directories.

        Falls back to the home directory itself when nothing is found.
        """
        found: list[str] = []
        for root in self.candidate_roots():
            if len(found) >= self.max_projects:
                break
            if not root.is_dir():
                continue
            before = len(found)
            self._scan_for_projects(root, 0, found)
            logger.debug("Found %d projects in %s", len(found) - before, root)

        if not found:
            logger.info("No projects found in common locations, adding home directory as fallback")
            return [str(self.home)]

        logger.info("Found a total of %d potential projects", len(found))
        return found

    def candidate_roots(self) -> list[Path]:
        roots = [self.home / name for name in COMMON_PROJECT_ROOTS]
        roots.extend(recent_directories(self.home))
        return dedupe_preserving_order(roots)

    def _scan_for_projects(self, directory: Path, depth: int, found: list[str]) -> None:
        if depth > MAX_SCAN_DEPTH or len(found) >= self.max_projects:
            return

        try:
            children = sorted(directory.iterdir())
        except OSError as e:
            logger.debug("Error scanning directory %s: %s", directory, e)
            return

        subdirs = []
        for child in children:
            if len(found) >= self.max_projects:
                return
            try:
                is_dir = child.is_dir()
            except OSError:
                continue

            if is_dir:
                if child.name.startswith("."):
                    continue
                subdirs.append(child)
                if any((child / marker).is_dir() for marker in VCS_MARKER_DIRS):
                    self._add(child, found)
            elif child.name in PROJECT_MARKER_FILES:
                self._add(directory, found)

        if depth < MAX_SCAN_DEPTH:
            for subdir in subdirs:
                if len(found) >= self.max_projects:
                    return
                self._scan_for_projects(subdir, depth + 1, found)

    def _add(self, path: Path, found: list[str]) -> None:
        path_str = str(path)
        if path_str not in found:
            logger.debug("Found project: %s", path_str)
            found.append(path_str)


def recent_directories(home: Path) -> list[Path]:
    """Existing directories referenced by the recently-used registry."""
    directories: list[Path] = []
    for relative in RECENTLY_USED_FILES:
        registry = home / relative
        if not registry.is_file():
            continue
        try:
            content = registry.read_text(encoding="utf-8", errors="replace")
        except IOError as e:
            logger.debug("Error reading recently used file %s: %s", registry, e)
            continue

        for href in HREF_PATTERN.findall(content):
            path = Path(unquote(href[len("file://"):]))
            try:
                if path.is_dir() and path not in directories:
                    directories.append(path)
            except OSError:
                continue
    return directories
