"""End-to-end tests of the batch -> file -> chunk loop against the fake backend."""
import asyncio
from pathlib import Path
from dataclasses import replace

import pytest

from fstasks.errors import TransportError, UploadCancelled
from fstasks.models import ConflictStrategy, FileOutcome, TaskStatus
from fstasks.orchestrator import BatchState, TaskClient
from fstasks.orchestrator.batch_planner import upload_name
from fstasks.orchestrator.batch_upload import FileUploader
from fstasks.services.cancellation import CancellationToken


def payload(size: int, seed: int = 0) -> bytes:
    return bytes((i * 7 + seed) % 251 for i in range(size))


@pytest.fixture
def client(fake_api, fast_config, registry):
    return TaskClient(api=fake_api, config=fast_config, registry=registry)


class TestScenarios:
    @pytest.mark.asyncio
    async def test_four_ordered_chunks(self, fake_api, fast_config, registry, make_file):
        # 100 "MiB" in 32 "MiB" chunks, scaled down to bytes
        config = replace(fast_config, chunk_size=32)
        content = payload(100)
        local = make_file("big.bin", content)
        percents = []

        async with TaskClient(api=fake_api, config=config, registry=registry) as client:
            process = await client.prepare_upload([local], "/data")
            assert fake_api.status(process.task_id) == "running"

            async def on_progress(progress):
                percents.append(progress.percent)

            process.on_file_progress(on_progress)
            result = await process.wait()

        assert fake_api.uploaded_indices("big.bin") == [0, 1, 2, 3]
        assert [u["size"] for u in fake_api.uploads] == [32, 32, 32, 4]
        assert all(u["total_chunks"] == 4 and u["task_id"] == process.task_id for u in fake_api.uploads)
        assert fake_api.stored["/data/big.bin"] == content
        assert percents[-1] == 100.0
        assert percents == sorted(percents)
        assert result.status == TaskStatus.COMPLETED
        assert process.state == BatchState.COMPLETED
        assert fake_api.status(process.task_id) == "completed"
        assert process.task_id not in registry

    @pytest.mark.asyncio
    async def test_cancel_after_first_file(self, fake_api, client, make_file):
        files = [make_file(name, payload(40, i)) for i, name in enumerate(["1.bin", "2.bin", "3.bin"])]
        async with client:
            process = await client.prepare_upload(files, "/data")

            async def cancel_batch(result):
                await client.controller.cancel(process.task_id)

            process.on_file_complete(cancel_batch)
            result = await process.wait()

        assert fake_api.uploaded_filenames() == ["1.bin"]
        assert fake_api.status(process.task_id) == "cancelled"
        assert fake_api.chunks == {}
        assert result.status == TaskStatus.CANCELLED
        assert [r.outcome for r in result.results] == [
            FileOutcome.UPLOADED, FileOutcome.CANCELLED, FileOutcome.CANCELLED
        ]
        assert ("cancel", process.task_id) in fake_api.commands


class TestResume:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("already", [(), (0,), (1, 3), (0, 1, 2), (3,)])
    async def test_only_missing_chunks_are_sent(self, fake_api, fast_config, make_file, already):
        content = payload(60)
        local = make_file("big.bin", content)
        fake_api.chunks["/t/big.bin"] = {i: content[i * 16:(i + 1) * 16] for i in already}

        uploader = FileUploader(fake_api, fast_config)
        sent = await uploader.upload(local, "/t", "big.bin")

        expected = [i for i in range(4) if i not in already]
        assert fake_api.uploaded_indices() == expected
        assert sent == sum(min(16, 60 - i * 16) for i in expected)
        assert fake_api.stored["/t/big.bin"] == content

    @pytest.mark.asyncio
    async def test_all_chunks_present_sends_nothing(self, fake_api, fast_config, make_file):
        content = payload(60)
        local = make_file("big.bin", content)
        fake_api.chunks["/t/big.bin"] = {i: content[i * 16:(i + 1) * 16] for i in range(4)}

        sent = await FileUploader(fake_api, fast_config).upload(local, "/t", "big.bin")

        assert sent == 0
        assert fake_api.uploads == []
        assert b"".join(fake_api.chunks["/t/big.bin"][i] for i in range(4)) == content

    @pytest.mark.asyncio
    async def test_resume_upload_sends_pending_files(self, fake_api, client, make_file):
        folder = make_file("data/a.txt", b"aaa").path.parent
        make_file("data/b.txt", b"bbbb")
        fake_api.script = [200, TransportError("reset"), TransportError("reset"), TransportError("reset")]

        async with client:
            first = await client.upload([folder], "/backup")
            assert first.status == TaskStatus.FAILED
            fake_api.tasks[first.task_id]["status"] = "interrupted"

            second = await client.resume_upload(first.task_id, folder)

        assert second is not None
        assert second.task_id != first.task_id
        assert second.status == TaskStatus.COMPLETED
        assert [r.relative_path for r in second.results] == ["data/b.txt"]
        assert fake_api.stored["/backup/data/b.txt"] == b"bbbb"
        assert fake_api.batches[-1]["files"] == [{"path": "data/b.txt", "size": 4}]

    @pytest.mark.asyncio
    async def test_resume_with_nothing_pending(self, fake_api, client):
        fake_api.add_task("done", status="failed", target_path="/x", pending_files=[])
        async with client:
            assert await client.resume_upload("done", Path("/nowhere")) is None


class TestBatchBehaviour:
    @pytest.mark.asyncio
    async def test_skip_strategy(self, fake_api, client, make_file):
        fake_api.stored["/t/a.txt"] = b"old"
        files = [make_file("a.txt", b"new"), make_file("b.txt", b"b")]
        skipped = []

        async with client:
            process = await client.prepare_upload(files, "/t", ConflictStrategy.SKIP)
            process.on_file_skip(skipped.append)
            result = await process.wait()

        assert fake_api.uploaded_filenames() == ["b.txt"]
        assert fake_api.stored["/t/a.txt"] == b"old"
        assert [r.relative_path for r in skipped] == ["a.txt"]
        assert result.skipped_files == 1
        assert result.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_auto_rename_uploads_under_resolved_name(self, fake_api, client, make_file):
        fake_api.stored["/t/a.txt"] = b"old"
        async with client:
            result = await client.upload([make_file("a.txt", b"new")], "/t")

        assert fake_api.stored["/t/a (1).txt"] == b"new"
        assert result.results[0].filename == "a (1).txt"

    @pytest.mark.asyncio
    async def test_overwrite_keeps_original_name(self, fake_api, client, make_file):
        fake_api.stored["/t/a.txt"] = b"old"
        async with client:
            process = await client.prepare_upload([make_file("a.txt", b"new")], "/t", ConflictStrategy.OVERWRITE)
            result = await process.wait()

        assert fake_api.batches[-1]["strategy"] == ConflictStrategy.OVERWRITE
        assert upload_name(process.plan, "a.txt") == "a.txt"
        assert fake_api.stored == {"/t/a.txt": b"new"}
        assert result.results[0].filename == "a.txt"
        assert result.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unstarted_process_is_not_registered(self, fake_api, client, registry, make_file):
        async with client:
            process = await client.prepare_upload([make_file("a.txt", b"a")], "/t")
            assert process.task_id not in registry
            await process.start()
            assert registry.get(process.task_id) is process.token
            await process.wait()
        assert process.task_id not in registry

    @pytest.mark.asyncio
    async def test_failed_file_does_not_abort_batch(self, fake_api, client, make_file):
        files = [make_file("a.txt", b"a"), make_file("b.txt", b"b")]
        fake_api.script = [TransportError("reset")] * 3
        failures = []

        async with client:
            process = await client.prepare_upload(files, "/t")
            process.on_file_fail(failures.append)
            result = await process.wait()

        assert fake_api.uploaded_filenames() == ["a.txt", "b.txt"]
        assert len(fake_api.uploads) == 4
        assert fake_api.stored == {"/t/b.txt": b"b"}
        assert result.status == TaskStatus.FAILED
        assert result.failed_files == 1
        assert result.uploaded_files == 1
        assert failures[0].relative_path == "a.txt"
        assert "giving up" in failures[0].error

    @pytest.mark.asyncio
    async def test_server_cancel_mid_file(self, fake_api, client, make_file):
        files = [make_file("a.bin", payload(64)), make_file("b.bin", payload(10))]
        def cancel_on_server(request):
            fake_api.tasks[request["task_id"]]["status"] = "cancelled"

        async with client:
            process = await client.prepare_upload(files, "/t")
            fake_api.after_upload = cancel_on_server
            result = await process.wait()

        assert fake_api.uploaded_indices() == [0, 1]
        assert result.status == TaskStatus.CANCELLED
        assert process.token.cancelled is True
        assert "b.bin" not in fake_api.uploaded_filenames()

    @pytest.mark.asyncio
    async def test_pause_then_resume_wakes_transfer(self, fake_api, fast_config, registry, make_file):
        config = replace(fast_config, pause_poll_interval=30, pause_poll_max=30)
        local = make_file("a.bin", payload(48))

        async with TaskClient(api=fake_api, config=config, registry=registry) as client:
            process = await client.prepare_upload([local], "/t")

            def pause_once(request):
                fake_api.after_upload = None
                fake_api.tasks[request["task_id"]]["status"] = "paused"

            fake_api.after_upload = pause_once
            await process.start()
            await asyncio.sleep(0.05)
            assert await client.controller.resume(process.task_id) is True
            result = await asyncio.wait_for(process.wait(), timeout=2)

        assert result.status == TaskStatus.COMPLETED
        assert [i for i in fake_api.uploaded_indices() if i is not None] == [0, 1, 1, 2]

    @pytest.mark.asyncio
    async def test_parallel_files_keep_chunk_order(self, fake_api, fast_config, registry, make_file):
        config = replace(fast_config, max_parallel_files=2)
        files = [make_file(f"f{i}.bin", payload(50, i)) for i in range(4)]

        async with TaskClient(api=fake_api, config=config, registry=registry) as client:
            result = await client.upload(files, "/p")

        assert result.uploaded_files == 4
        for i, local in enumerate(files):
            assert fake_api.uploaded_indices(local.relative_path) == [0, 1, 2, 3]
            assert fake_api.stored[f"/p/f{i}.bin"] == payload(50, i)

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_first_chunk(self, fake_api, fast_config, make_file):
        token = CancellationToken("t")
        token.cancel()

        with pytest.raises(UploadCancelled):
            await FileUploader(fake_api, fast_config).upload(
                make_file("a.bin", payload(40)), "/t", "a.bin", token=token
            )
        assert fake_api.uploads == []
