"""
Unit tests for upload intake and filename sanitizing.
"""

import asyncio
import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from converter.utils.error_handling import NoFileProvided, PayloadTooLarge, UnsupportedType
from converter.utils.intake import UploadIntake, normalize_mime, sanitize_filename


def make_upload(content: bytes, filename: str = "photo.png", content_type: str = "image/png") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


class TestSanitizeFilename:

    @pytest.mark.parametrize("raw,expected", [
        ("report.pdf", "report.pdf"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\photo.jpg", "photo.jpg"),
        ("..hidden", "hidden"),
        ("bad\x00na\x1fme.txt", "badname.txt"),
        ("", "file"),
        (None, "file"),
        ("dir/", "file"),
        ("...", "file"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_filename(raw) == expected

    def test_length_capped(self):
        assert len(sanitize_filename("a" * 400 + ".txt")) == 255


class TestNormalizeMime:

    def test_parameters_stripped(self):
        assert normalize_mime("Image/PNG; charset=binary") == "image/png"

    def test_empty(self):
        assert normalize_mime(None) == ""


class TestUploadIntake:

    @pytest.fixture
    def intake(self, storage):
        return UploadIntake(storage, max_upload_bytes=4096)

    @pytest.mark.asyncio
    async def test_accept_stores_under_server_name(self, intake, storage):
        uploaded = await intake.accept(make_upload(b"\x89PNG" + b"0" * 100, filename="../evil.png"))

        assert uploaded.storage_path.parent == storage.intake_dir
        assert uploaded.storage_path.name == uploaded.storage_id
        assert len(uploaded.storage_id) == 32
        assert uploaded.original_filename == "evil.png"
        assert uploaded.size_bytes == 104
        assert uploaded.storage_path.read_bytes().startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_distinct_paths(self, intake):
        first = await intake.accept(make_upload(b"same"))
        second = await intake.accept(make_upload(b"same"))
        assert first.storage_path != second.storage_path

    @pytest.mark.asyncio
    async def test_concurrent_accepts_are_isolated(self, intake, storage):
        uploads = [make_upload(f"upload-{i}".encode() * 50) for i in range(8)]
        oversized = make_upload(b"x" * 8192)

        results = await asyncio.gather(
            *(intake.accept(upload) for upload in uploads),
            intake.accept(oversized),
            return_exceptions=True,
        )

        accepted, rejected = results[:-1], results[-1]
        assert isinstance(rejected, PayloadTooLarge)
        assert len({u.storage_id for u in accepted}) == 8
        assert len({u.storage_path for u in accepted}) == 8
        for i, uploaded in enumerate(accepted):
            assert uploaded.storage_path.read_bytes() == f"upload-{i}".encode() * 50
        assert sorted(storage.intake_dir.iterdir()) == sorted(u.storage_path for u in accepted)

    @pytest.mark.asyncio
    async def test_missing_upload(self, intake):
        with pytest.raises(NoFileProvided):
            await intake.accept(None)

    @pytest.mark.asyncio
    async def test_empty_upload(self, intake, storage):
        with pytest.raises(NoFileProvided):
            await intake.accept(make_upload(b""))
        assert list(storage.intake_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_disallowed_type_never_touches_disk(self, intake, storage):
        with pytest.raises(UnsupportedType):
            await intake.accept(make_upload(b"#!/bin/sh", filename="x.sh", content_type="application/x-sh"))
        assert list(storage.intake_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_oversized_upload_removed(self, intake, storage):
        with pytest.raises(PayloadTooLarge):
            await intake.accept(make_upload(b"0" * 10000))
        assert list(storage.intake_dir.iterdir()) == []
