"""Tests for host-to-container sync."""

import asyncio
from pathlib import Path

import pytest

from conftest import FakeDockerManager
from reactor.hotreload.enums import ChangeState
from reactor.hotreload.errors import SyncError
from reactor.hotreload.models import ChangeEntry, SettledChangeSet, SyncMapping, SyncOptions
from reactor.hotreload.sync import ContainerSync, map_path, resolve_mapping


def _change_set(*entries: tuple[Path, ChangeState]) -> SettledChangeSet:
    return SettledChangeSet(entries={p: ChangeEntry(path=p, state=s) for p, s in entries})


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.go").write_text("package main")
    (tmp_path / "web").mkdir()
    (tmp_path / "web" / "app.js").write_text("console.log(1)")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("x")
    return tmp_path


class TestMapping:
    def test_longest_prefix_wins(self, tree: Path):
        outer = SyncMapping(host_path=tree, container_path="/app")
        inner = SyncMapping(host_path=tree / "web", container_path="/srv/www")

        assert resolve_mapping(tree / "web" / "app.js", [outer, inner]) is inner
        assert resolve_mapping(tree / "src" / "main.go", [inner, outer]) is outer

    def test_no_mapping(self, tree: Path):
        mapping = SyncMapping(host_path=tree / "web")
        assert resolve_mapping(tree / "src" / "main.go", [mapping]) is None

    def test_sibling_prefix_is_not_a_parent(self, tmp_path: Path):
        mapping = SyncMapping(host_path=tmp_path / "app")
        assert resolve_mapping(tmp_path / "app2" / "x.go", [mapping]) is None

    def test_map_path(self, tree: Path):
        mapping = SyncMapping(host_path=tree, container_path="/app")
        assert map_path(tree / "src" / "main.go", mapping) == "/app/src/main.go"
        assert map_path(tree, mapping) == "/app"


class TestSync:
    async def test_copies_changed_files(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        mappings = [SyncMapping(host_path=tree, container_path="/app")]
        changes = _change_set((tree / "src" / "main.go", ChangeState.MODIFIED))

        stats = await sync.sync("dev", mappings, changes)

        assert stats.files_synced == [str(tree / "src" / "main.go")]
        assert stats.bytes_transferred == len("package main")
        assert docker.files["/app/src/main.go"] == b"package main"
        assert stats.last_sync is not None

    async def test_excluded_files_never_synced(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        mappings = [SyncMapping(host_path=tree, include_patterns=["**/*.js"])]
        changes = _change_set(
            (tree / "node_modules" / "dep.js", ChangeState.MODIFIED),
            (tree / "web" / "app.js", ChangeState.MODIFIED),
        )

        stats = await sync.sync("dev", mappings, changes)

        assert stats.files_synced == [str(tree / "web" / "app.js")]
        assert "/app/node_modules/dep.js" not in docker.files

    async def test_deletes_left_in_place_by_default(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        docker.files["/app/old.go"] = b"old"
        changes = _change_set((tree / "old.go", ChangeState.DELETED))

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], changes)

        assert stats.files_deleted == []
        assert "/app/old.go" in docker.files

    async def test_delete_extraneous(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        docker.files["/app/old.go"] = b"old"
        changes = _change_set((tree / "old.go", ChangeState.DELETED))

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], changes, SyncOptions(delete_extraneous=True))

        assert stats.files_deleted == [str(tree / "old.go")]
        assert docker.removed == ["/app/old.go"]

    async def test_dry_run_does_no_io(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        changes = _change_set((tree / "src" / "main.go", ChangeState.MODIFIED))

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], changes, SyncOptions(dry_run=True))

        assert stats.files_synced == [str(tree / "src" / "main.go")]
        assert docker.copies == []

    async def test_partial_failure(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        docker.fail_paths = {tree / "src" / "main.go"}
        changes = _change_set(
            (tree / "src" / "main.go", ChangeState.MODIFIED),
            (tree / "web" / "app.js", ChangeState.MODIFIED),
        )

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], changes)

        assert stats.files_synced == [str(tree / "web" / "app.js")]
        assert stats.failed_syncs == 1
        assert stats.errors[0].host_path == str(tree / "src" / "main.go")

    async def test_total_failure_raises(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        docker.fail_paths = {tree / "src" / "main.go"}
        changes = _change_set((tree / "src" / "main.go", ChangeState.MODIFIED))

        with pytest.raises(SyncError) as exc:
            await sync.sync("dev", [SyncMapping(host_path=tree)], changes)
        assert len(exc.value.failures) == 1

    async def test_vanished_file_is_a_failure(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        changes = _change_set(
            (tree / "gone.go", ChangeState.MODIFIED),
            (tree / "src" / "main.go", ChangeState.MODIFIED),
        )

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], changes)
        assert stats.failed_syncs == 1

    async def test_build_outputs_are_copied(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        dist = tree / "dist"
        dist.mkdir()
        (dist / "bundle.js").write_text("bundle")

        stats = await sync.sync("dev", [SyncMapping(host_path=tree)], SettledChangeSet(), extra_paths=[dist])

        assert stats.files_synced == [str(dist)]
        assert docker.files["/app/dist/bundle.js"] == b"bundle"

    async def test_empty_change_set(self, tree: Path, docker: FakeDockerManager):
        stats = await ContainerSync(docker).sync("dev", [SyncMapping(host_path=tree)], SettledChangeSet())
        assert stats.sync_operations == 0

    async def test_cancel_finishes_current_copy(self, tree: Path, docker: FakeDockerManager):
        sync = ContainerSync(docker)
        docker.copy_delay = 0.2
        changes = _change_set(
            (tree / "src" / "main.go", ChangeState.MODIFIED),
            (tree / "web" / "app.js", ChangeState.MODIFIED),
        )

        task = asyncio.create_task(sync.sync("dev", [SyncMapping(host_path=tree)], changes))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        # The in-flight copy completed, the rest was abandoned
        assert [c[2] for c in docker.copies] == ["/app/src/main.go"]
