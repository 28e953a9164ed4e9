"""Tests for batch planning, name mapping and local file collection."""
from unittest.mock import AsyncMock

import pytest

from fstasks.errors import APIError, BatchValidationError, TransportError
from fstasks.models import BatchPlan, ConflictStrategy, LocalFile, ResolvedFile
from fstasks.orchestrator.batch_planner import BatchPlanner, normalize_target, upload_name
from fstasks.orchestrator.file_collector import FileCollector


def test_normalize_target():
    assert normalize_target(None) == "/"
    assert normalize_target("") == "/"
    assert normalize_target(" / ") == "/"
    assert normalize_target("backup/") == "/backup"
    assert normalize_target("/a/b/") == "/a/b"


class TestBatchPlanner:
    @pytest.mark.asyncio
    async def test_plan_with_fake_backend(self, fake_api, make_file):
        fake_api.stored["/backup/a.txt"] = b"old"
        files = [make_file("a.txt", b"new"), make_file("b.txt", b"bb")]

        plan = await BatchPlanner(fake_api).plan("backup/", files, ConflictStrategy.AUTO_RENAME)

        assert plan.task_id == "task-1"
        assert plan.target_path == "/backup"
        assert fake_api.batches[0]["files"] == [{"path": "a.txt", "size": 3}, {"path": "b.txt", "size": 2}]
        assert plan.resolution_for("a.txt").resolved == "/backup/a (1).txt"
        assert plan.resolution_for("b.txt").resolved == "/backup/b.txt"

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, fake_api):
        with pytest.raises(BatchValidationError):
            await BatchPlanner(fake_api).plan("/", [])
        assert fake_api.batches == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [APIError("forbidden", code=403), TransportError("down")])
    async def test_backend_failure_becomes_validation_error(self, error):
        api = AsyncMock()
        api.create_upload_batch = AsyncMock(side_effect=error)
        files = [LocalFile(path=None, relative_path="a", size=1)]
        with pytest.raises(BatchValidationError, match="could not create upload task"):
            await BatchPlanner(api).plan("/", files)

    @pytest.mark.asyncio
    async def test_missing_task_id(self):
        api = AsyncMock()
        api.create_upload_batch = AsyncMock(return_value={"files": []})
        with pytest.raises(BatchValidationError, match="task id"):
            await BatchPlanner(api).plan("/", [LocalFile(path=None, relative_path="a", size=1)])

    @pytest.mark.asyncio
    async def test_malformed_resolution(self):
        api = AsyncMock()
        api.create_upload_batch = AsyncMock(return_value={"taskId": "t", "files": [{"resolved": "/a"}]})
        with pytest.raises(BatchValidationError, match="malformed"):
            await BatchPlanner(api).plan("/", [LocalFile(path=None, relative_path="a", size=1)])


class TestUploadName:
    def _plan(self, *files, target="/backup"):
        return BatchPlan(task_id="t", target_path=target, files=list(files))

    def test_renamed_path_is_made_relative_to_target(self):
        plan = self._plan(ResolvedFile("photos/a.jpg", "/backup/photos/a (1).jpg"))
        assert upload_name(plan, "photos/a.jpg") == "photos/a (1).jpg"

    def test_root_target(self):
        plan = self._plan(ResolvedFile("a.jpg", "/a (2).jpg"), target="/")
        assert upload_name(plan, "a.jpg") == "a (2).jpg"

    def test_skipped_file(self):
        plan = self._plan(ResolvedFile("a.jpg", None, skipped=True))
        assert upload_name(plan, "a.jpg") is None

    def test_missing_resolution_keeps_original_name(self):
        assert upload_name(self._plan(), "dir/a.jpg") == "dir/a.jpg"


class TestFileCollector:
    def test_collect_folder_keeps_prefix(self, tmp_path):
        folder = tmp_path / "photos"
        (folder / "2024").mkdir(parents=True)
        (folder / "b.jpg").write_bytes(b"bb")
        (folder / "2024" / "a.jpg").write_bytes(b"a")
        single = tmp_path / "notes.txt"
        single.write_bytes(b"xyz")

        files = FileCollector.collect_files([folder, single, single])

        assert [f.relative_path for f in files] == ["photos/2024/a.jpg", "photos/b.jpg", "notes.txt"]
        assert [f.size for f in files] == [1, 2, 3]

    def test_missing_source(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileCollector.collect_files([tmp_path / "nope"])

    def test_match_pending(self, tmp_path):
        folder = tmp_path / "photos"
        folder.mkdir()
        (folder / "a.jpg").write_bytes(b"a")
        (folder / "b.jpg").write_bytes(b"b")

        matched = FileCollector.match_pending(folder, ["photos/a.jpg", "b.jpg", "photos/gone.jpg"])

        assert [f.relative_path for f in matched] == ["photos/a.jpg", "b.jpg"]
        assert matched[1].path == folder / "b.jpg"
