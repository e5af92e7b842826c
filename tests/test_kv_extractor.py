#!/usr/bin/env python3
"""
Unit tests for kv_extractor.py

Run with: python -m pytest tests/test_kv_extractor.py -v
"""

import json
import sqlite3
import sys
import tempfile
from pathlib import Path

import pytest

# Add scripts directory to path
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from kv_extractor import (
    DIRECT_QUERY,
    PROJECTS_KEY,
    KVProjectExtractor,
    SqliteQueryTool,
    collect_project_paths,
    parse_fragments,
    parse_project_array,
    recent_directories,
)
from workspace_errors import ToolUnavailable


def _make_db(path: Path, rows: dict[str, str]) -> Path:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE kvs (key TEXT PRIMARY KEY, value TEXT)")
        conn.executemany("INSERT INTO kvs (key, value) VALUES (?, ?)", rows.items())
        conn.commit()
    finally:
        conn.close()
    return path


class FakeQueryTool:
    """Stands in for the database: returns canned rows per query."""

    def __init__(self, available=True, direct=(), broad=()):
        self.available = available
        self.direct = list(direct)
        self.broad = list(broad)
        self.queries = []

    def is_available(self) -> bool:
        return self.available

    def query(self, sql, params=()):
        self.queries.append(sql)
        return self.direct if sql == DIRECT_QUERY else self.broad


# =============================================================================
# Payload Parsing Tests
# =============================================================================


class TestParseProjectArray:
    def test_strings_and_objects(self):
        payload = json.dumps(["/a", {"path": "/b"}, {"worktree": "/c"}, {"other": 1}, 5, ""])
        assert parse_project_array(payload) == ["/a", "/b", "/c"]

    def test_not_an_array(self):
        with pytest.raises(ValueError):
            parse_project_array('{"path": "/a"}')

    def test_bad_json(self):
        with pytest.raises(ValueError):
            parse_project_array("not json")


class TestParseFragments:
    def test_skips_unparseable_lines(self):
        output = "\n".join([
            '{"path": "/home/u/one"}',
            "garbage {{",
            "",
            '{"workspace": {"worktree": "/home/u/two"}}',
        ])
        assert parse_fragments(output) == ["/home/u/one", "/home/u/two"]

    def test_nested_arrays(self):
        output = json.dumps({"roots": [{"path": "/a"}, ["/b", "no-slash"]]})
        assert parse_fragments(output) == ["/a", "/b"]

    def test_collect_ignores_scalars(self):
        assert collect_project_paths({"count": 3, "name": "/not-a-path-key"}) == []


# =============================================================================
# Query Tool Tests
# =============================================================================


class TestSqliteQueryTool:
    def test_missing_database_unavailable(self):
        tool = SqliteQueryTool("/nonexistent/state.db")
        assert not tool.is_available()
        with pytest.raises(ToolUnavailable):
            tool.query(DIRECT_QUERY, (PROJECTS_KEY,))

    def test_empty_path_unavailable(self):
        assert not SqliteQueryTool("").is_available()

    def test_database_without_kvs_unavailable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = Path(tmpdir) / "state.db"
            conn = sqlite3.connect(db)
            conn.execute("CREATE TABLE other (x TEXT)")
            conn.close()
            assert not SqliteQueryTool(db).is_available()

    def test_not_a_database_unavailable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = Path(tmpdir) / "state.db"
            db.write_text("this is not sqlite" * 100)
            assert not SqliteQueryTool(db).is_available()

    def test_query_returns_values(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = _make_db(Path(tmpdir) / "state.db", {PROJECTS_KEY: '["/a"]'})
            tool = SqliteQueryTool(db)
            assert tool.is_available()
            assert tool.query(DIRECT_QUERY, (PROJECTS_KEY,)) == ['["/a"]']


# =============================================================================
# Extractor Tests
# =============================================================================


class TestExtractWithDatabase:
    def test_direct_query(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = _make_db(Path(tmpdir) / "state.db", {
                PROJECTS_KEY: json.dumps(["/home/u/one", {"path": "/home/u/two"}, "/home/u/one"]),
            })
            extractor = KVProjectExtractor(db, home=Path(tmpdir))
            assert extractor.extract() == ["/home/u/one", "/home/u/two"]
            assert extractor.strategy == "direct"

    def test_broad_query_when_direct_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db = _make_db(Path(tmpdir) / "state.db", {
                "recent_projects": json.dumps({"path": "/home/u/three"}),
                "workspace_project_roots": json.dumps([{"path": "/home/u/four"}]),
                "unrelated": json.dumps({"path": "/home/u/ignored"}),
            })
            extractor = KVProjectExtractor(db, home=Path(tmpdir))
            assert sorted(extractor.extract()) == ["/home/u/four", "/home/u/three"]
            assert extractor.strategy == "broad"

    def test_malformed_direct_payload_falls_through(self):
        tool = FakeQueryTool(direct=["not json"], broad=['{"path": "/home/u/x"}'])
        extractor = KVProjectExtractor("state.db", query_tool=tool, home=Path("/h"))
        assert extractor.extract() == ["/home/u/x"]
        assert extractor.strategy == "broad"

    def test_available_but_empty_does_not_use_filesystem(self):
        tool = FakeQueryTool()
        extractor = KVProjectExtractor("state.db", query_tool=tool, home=Path("/h"))
        assert extractor.extract() == []
        assert extractor.strategy is None

    def test_query_failure_treated_as_empty(self):
        class FailingTool(FakeQueryTool):
            def query(self, sql, params=()):
                raise ToolUnavailable("locked")

        extractor = KVProjectExtractor("state.db", query_tool=FailingTool(), home=Path("/h"))
        assert extractor.extract() == []


class TestFilesystemHeuristic:
    def test_no_tool_and_no_directories_yields_home(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            extractor = KVProjectExtractor("", query_tool=FakeQueryTool(available=False), home=Path(tmpdir))
            assert extractor.extract() == [tmpdir]
            assert extractor.strategy == "filesystem"

    def test_git_and_marker_projects(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            (home / "Projects" / "alpha" / ".git").mkdir(parents=True)
            (home / "Projects" / "group" / "beta").mkdir(parents=True)
            (home / "Projects" / "group" / "beta" / "package.json").write_text("{}")
            (home / "Projects" / "notes").mkdir(parents=True)
            (home / "Projects" / ".hidden" / ".git").mkdir(parents=True)

            extractor = KVProjectExtractor("", query_tool=FakeQueryTool(available=False), home=home)
            found = extractor.extract()

            assert sorted(found) == sorted([
                str(home / "Projects" / "alpha"),
                str(home / "Projects" / "group" / "beta"),
            ])

    def test_depth_limit(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            deep = home / "src" / "a" / "b" / "c" / "d"
            (deep / ".git").mkdir(parents=True)

            extractor = KVProjectExtractor("", query_tool=FakeQueryTool(available=False), home=home)
            assert extractor.extract() == [str(home)]

    def test_capped_at_max_projects(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            for n in range(40):
                (home / "Code" / f"repo{n:02d}" / ".git").mkdir(parents=True)

            extractor = KVProjectExtractor("", query_tool=FakeQueryTool(available=False), home=home)
            found = extractor.extract()
            assert len(found) == 25
            assert len(set(found)) == 25

    def test_recently_used_directories_scanned(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            elsewhere = home / "elsewhere" / "my project"
            (elsewhere / "app" / ".git").mkdir(parents=True)
            xbel = home / ".local" / "share" / "recently-used.xbel"
            xbel.parent.mkdir(parents=True)
            xbel.write_text(
                f'<xbel><bookmark href="{elsewhere.as_uri()}"/>'
                f'<bookmark href="file:///nonexistent/dir"/></xbel>'
            )

            assert recent_directories(home) == [elsewhere]
            extractor = KVProjectExtractor("", query_tool=FakeQueryTool(available=False), home=home)
            assert extractor.extract() == [str(elsewhere / "app")]

    def test_real_missing_database_uses_filesystem(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            (home / "git" / "tool" / ".git").mkdir(parents=True)
            extractor = KVProjectExtractor(home / "zed" / "state.db", home=home)
            assert extractor.extract() == [str(home / "git" / "tool")]
            assert extractor.strategy == "filesystem"
