#!/usr/bin/env python3
"""
Unit tests for orphan_reconciler.py

Run with: python -m pytest tests/test_orphan_reconciler.py -v
"""

import json
import sys
import tempfile
from pathlib import Path
from unittest import mock

import pytest

# Add scripts directory to path
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from orphan_reconciler import Decision, OrphanReconciler, resolve_target
from store_scanner import RECORD_FILENAME
from workspace_cache import Workspace
from workspace_errors import StoreWriteFailure, TargetMissing


def _store_record(root: Path, name: str, uri: str) -> Path:
    store_dir = root / "storage" / name
    store_dir.mkdir(parents=True)
    (store_dir / RECORD_FILENAME).write_text(json.dumps({"folder": uri}))
    return store_dir


def _orphan(root: Path, nofail: bool = False) -> Workspace:
    uri = (root / "deleted-project").as_uri()
    return Workspace(uri=uri, store_handle=_store_record(root, "orphan", uri), nofail=nofail)


class TestResolveTarget:
    def test_existing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            assert resolve_target(Workspace(uri=Path(tmpdir).as_uri())) == Path(tmpdir)

    def test_missing(self):
        with pytest.raises(TargetMissing):
            resolve_target(Workspace(uri="file:///nonexistent/project"))

    def test_remote_has_no_local_target(self):
        with pytest.raises(TargetMissing):
            resolve_target(Workspace(uri="vscode-remote://ssh-remote+box/srv"))


class TestReconcile:
    def test_existing_target_passes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=Path(tmpdir) / "archive")
            workspace = Workspace(uri=Path(tmpdir).as_uri())
            assert reconciler.reconcile(workspace) == Decision.PASS

    def test_remote_always_passes(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=Path(tmpdir) / "archive")
            workspace = Workspace(uri="docker://container/app", remote=True)
            assert reconciler.reconcile(workspace) == Decision.PASS

    def test_orphan_skipped_when_cleanup_disabled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            workspace = _orphan(root)
            reconciler = OrphanReconciler(cleanup_enabled=False, archive_root=root / "archive")

            assert reconciler.reconcile(workspace) == Decision.SKIPPED
            assert workspace.store_handle.exists()
            assert not (root / "archive").exists()

    def test_nofail_orphan_never_archived(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            workspace = _orphan(root, nofail=True)
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=root / "archive")

            assert reconciler.reconcile(workspace) == Decision.PROTECTED
            assert workspace.store_handle.exists()

    def test_orphan_archived_when_cleanup_enabled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            workspace = _orphan(root)
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=root / "archive")

            assert reconciler.reconcile(workspace) == Decision.ARCHIVED
            assert not workspace.store_handle.exists()
            archived = list((root / "archive").glob("*/orphan"))
            assert len(archived) == 1

    def test_archive_failure_still_drops_record(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            workspace = _orphan(root)
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=root / "archive")

            with mock.patch(
                "orphan_reconciler.archive_store_record",
                side_effect=StoreWriteFailure("archive", workspace.store_handle, "denied"),
            ):
                assert reconciler.reconcile(workspace) == Decision.ARCHIVED
            assert workspace.store_handle.exists()

    def test_orphan_without_store_handle(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            reconciler = OrphanReconciler(cleanup_enabled=True, archive_root=Path(tmpdir) / "archive")
            workspace = Workspace(uri="file:///nonexistent/project")
            assert reconciler.reconcile(workspace) == Decision.ARCHIVED


class TestPreferWorkspaceFile:
    def test_uri_rewritten_to_workspace_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            project = Path(tmpdir) / "project"
            project.mkdir()
            (project / "team.code-workspace").write_text("{}")
            workspace = Workspace(uri=project.as_uri())
            reconciler = OrphanReconciler(prefer_workspace_file=True, archive_root=Path(tmpdir) / "archive")

            assert reconciler.reconcile(workspace) == Decision.PASS
            assert workspace.uri == (project / "team.code-workspace").as_uri()
            assert workspace.name == "team"

    def test_uri_kept_without_workspace_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            project = Path(tmpdir) / "project"
            project.mkdir()
            workspace = Workspace(uri=project.as_uri())
            reconciler = OrphanReconciler(prefer_workspace_file=True, archive_root=Path(tmpdir) / "archive")

            reconciler.reconcile(workspace)
            assert workspace.uri == project.as_uri()

    def test_disabled_keeps_folder_uri(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            project = Path(tmpdir) / "project"
            project.mkdir()
            (project / "team.code-workspace").write_text("{}")
            workspace = Workspace(uri=project.as_uri())
            reconciler = OrphanReconciler(archive_root=Path(tmpdir) / "archive")

            reconciler.reconcile(workspace)
            assert workspace.uri == project.as_uri()
