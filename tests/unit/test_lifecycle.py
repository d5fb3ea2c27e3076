"""
Unit tests for the conversion lifecycle: state machine, cleanup and output checks.
"""

import asyncio
import io
import time
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from converter.config import ConversionCategory, ConversionStrategy
from converter.utils import conversion_core
from converter.utils.artifact_store import ArtifactStore
from converter.utils.conversion_core import (
    ConversionJob,
    ConversionLifecycle,
    JobStage,
    JobStatus,
    build_download_url,
    display_name_for,
)
from converter.utils.error_handling import (
    ConversionFailed,
    TypeMismatch,
    UnsupportedConversion,
)
from converter.utils.external_tools import run_blocking
from converter.utils.intake import UploadedFile
from converter.utils.mime_detector import TypeResolver


def make_upload(content: bytes, filename: str, content_type: str) -> UploadFile:
    return UploadFile(file=io.BytesIO(content), filename=filename, headers=Headers({"content-type": content_type}))


@pytest.fixture
def lifecycle(storage, settings):
    # Trust declared types so these tests do not depend on libmagic
    resolver = TypeResolver(identify_func=lambda head: None)
    return ConversionLifecycle(storage, ArtifactStore(storage, settings), settings, resolver=resolver)


def fake_job(tmp_path) -> ConversionJob:
    source = UploadedFile("a" * 32, "x.png", "image/png", 1, tmp_path / "x")
    return ConversionJob("b" * 32, source, ConversionCategory.IMAGE, "png", "c" * 32)


class TestJobStateMachine:

    def test_happy_path(self, tmp_path):
        job = fake_job(tmp_path)
        for stage in (JobStage.RESOLVED, JobStage.CONVERTING, JobStage.COMPLETED):
            job.advance(stage)
        assert job.status == JobStatus.SUCCEEDED
        assert job.error is None

    def test_failure_carries_error(self, tmp_path):
        job = fake_job(tmp_path)
        error = ConversionFailed("boom")
        job.advance(JobStage.FAILED, error)
        assert job.status == JobStatus.FAILED
        assert job.error is error

    def test_failed_requires_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            fake_job(tmp_path).advance(JobStage.FAILED)

    def test_no_backwards_transition(self, tmp_path):
        job = fake_job(tmp_path)
        job.advance(JobStage.CONVERTING)
        job.advance(JobStage.COMPLETED)
        with pytest.raises(RuntimeError):
            job.advance(JobStage.CONVERTING)

    def test_terminal_failure(self, tmp_path):
        job = fake_job(tmp_path)
        job.advance(JobStage.FAILED, ConversionFailed("boom"))
        with pytest.raises(RuntimeError):
            job.advance(JobStage.COMPLETED)


class TestNaming:

    @pytest.mark.parametrize("original,target,expected", [
        ("photo.png", "jpg", "photo.jpg"),
        ("archive.tar.gz", "zip", "archive.tar.zip"),
        ("README", "pdf", "README.pdf"),
    ])
    def test_display_name(self, original, target, expected):
        assert display_name_for(original, target) == expected

    def test_download_url_encoded(self):
        url = build_download_url("d" * 32, "my report & notes.pdf")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("/download?")
        assert query == {"file": ["d" * 32], "name": ["my report & notes.pdf"]}


class TestConvertUpload:

    @pytest.mark.asyncio
    async def test_success_publishes_and_cleans(self, lifecycle, storage, png_bytes):
        artifact = await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "JPG", "image")

        assert artifact.display_name == "pic.jpg"
        assert artifact.media_type == "image/jpeg"
        assert artifact.storage_path == storage.converted_path(artifact.token)
        assert artifact.storage_path.read_bytes()[:3] == b"\xff\xd8\xff"
        assert list(storage.intake_dir.iterdir()) == []
        assert list(storage.scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_parameter_errors_before_intake(self, lifecycle, storage, png_bytes):
        with pytest.raises(UnsupportedConversion):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "epub", "document")
        assert list(storage.intake_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_category_mismatch_cleans_input(self, lifecycle, storage, png_bytes):
        with pytest.raises(TypeMismatch):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "mp3", "audio")
        assert list(storage.intake_dir.iterdir()) == []
        assert list(storage.scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_strategy_crash_becomes_conversion_failed(self, lifecycle, storage, png_bytes, monkeypatch):
        async def crashing(ctx):
            raise ZeroDivisionError("bug")

        monkeypatch.setitem(conversion_core.STRATEGY_REGISTRY, ConversionStrategy.PILLOW, crashing)
        with pytest.raises(ConversionFailed):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")
        assert list(storage.intake_dir.iterdir()) == []
        assert list(storage.scratch_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_output_rejected(self, lifecycle, png_bytes, monkeypatch):
        async def silent(ctx):
            ctx.output_path.write_bytes(b"")

        monkeypatch.setitem(conversion_core.STRATEGY_REGISTRY, ConversionStrategy.PILLOW, silent)
        with pytest.raises(ConversionFailed, match="no output"):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")

    @pytest.mark.asyncio
    async def test_invalid_output_rejected(self, lifecycle, storage, png_bytes, monkeypatch):
        async def liar(ctx):
            ctx.output_path.write_bytes(b"this is not a png")

        monkeypatch.setitem(conversion_core.STRATEGY_REGISTRY, ConversionStrategy.PILLOW, liar)
        with pytest.raises(ConversionFailed, match="invalid"):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")
        assert [p for p in storage.converted_dir.iterdir() if p.is_file()] == []


class TestBlockingWork:

    @pytest.mark.asyncio
    async def test_validation_does_not_block_event_loop(self, lifecycle, png_bytes, monkeypatch):
        def slow_validator(path, fmt, **options):
            time.sleep(1.0)
            return True

        monkeypatch.setattr(conversion_core, "validate_output", slow_validator)

        gaps = []
        stop = asyncio.Event()

        async def ticker():
            last = time.monotonic()
            while not stop.is_set():
                await asyncio.sleep(0.05)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        ticking = asyncio.create_task(ticker())
        try:
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")
        finally:
            stop.set()
            await ticking

        assert len(gaps) > 5
        assert max(gaps) < 0.5

    @pytest.mark.asyncio
    async def test_timed_out_worker_stops_before_scratch_removal(
        self, lifecycle, storage, settings, png_bytes, monkeypatch
    ):
        written = []

        async def slow_writer(ctx):
            def write_members():
                for i in range(500):
                    ctx.cancel_token.check()
                    member = ctx.scratch_dir / f"member-{i}"
                    member.write_bytes(b"x" * 1024)
                    written.append(member)
                    time.sleep(0.01)

            await run_blocking(write_members, timeout=ctx.timeout, tool="archiver", token=ctx.cancel_token)

        monkeypatch.setattr(settings, "tool_timeout_seconds", 0.2)
        monkeypatch.setitem(conversion_core.STRATEGY_REGISTRY, ConversionStrategy.PILLOW, slow_writer)

        with pytest.raises(ConversionFailed, match="archiver timed out"):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")

        count = len(written)
        assert 0 < count < 500
        await asyncio.sleep(0.1)
        assert len(written) == count
        assert list(storage.scratch_dir.iterdir()) == []
        assert list(storage.intake_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_uncooperative_worker_is_waited_for(self, lifecycle, storage, settings, png_bytes, monkeypatch):
        async def late_writer(ctx):
            def write_late():
                time.sleep(0.5)
                (ctx.scratch_dir / "late.bin").write_bytes(b"x")

            await run_blocking(write_late, timeout=ctx.timeout, tool="Pillow", token=ctx.cancel_token)

        monkeypatch.setattr(settings, "tool_timeout_seconds", 0.1)
        monkeypatch.setitem(conversion_core.STRATEGY_REGISTRY, ConversionStrategy.PILLOW, late_writer)

        with pytest.raises(ConversionFailed, match="timed out"):
            await lifecycle.convert_upload(make_upload(png_bytes, "pic.png", "image/png"), "png", "image")
        assert list(storage.scratch_dir.iterdir()) == []


class TestConcurrentJobs:

    @pytest.mark.asyncio
    async def test_parallel_conversions_are_isolated(self, lifecycle, storage, png_bytes):
        uploads = [make_upload(png_bytes, f"pic{i}.png", "image/png") for i in range(5)]
        artifacts = await asyncio.gather(
            *(lifecycle.convert_upload(upload, "jpg", "image") for upload in uploads)
        )

        assert len({a.token for a in artifacts}) == 5
        assert len({a.storage_path for a in artifacts}) == 5
        assert sorted(a.display_name for a in artifacts) == [f"pic{i}.jpg" for i in range(5)]
        for artifact in artifacts:
            assert artifact.storage_path.read_bytes()[:3] == b"\xff\xd8\xff"
        assert list(storage.intake_dir.iterdir()) == []
        assert list(storage.scratch_dir.iterdir()) == []
