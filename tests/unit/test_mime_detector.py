"""
Unit tests for content type resolution.

A fake ``identify`` stands in for libmagic so the reconciliation rules are
tested independently of the installed magic database.
"""

import pytest

from converter.config import ConversionCategory
from converter.utils.error_handling import TypeMismatch
from converter.utils.mime_detector import (
    TypeResolution,
    TypeResolver,
    check_category,
    get_format_from_mime_type,
)

from conftest import requires_magic

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def resolver_returning(mime):
    return TypeResolver(identify_func=lambda head: mime)


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "upload"
    path.write_bytes(b"content")
    return path


class TestTypeResolver:

    def test_matching_types_verified(self, sample):
        resolution = resolver_returning("image/png").resolve(sample, "image/png")
        assert resolution == TypeResolution("image/png", True, "image/png")

    def test_sniffed_type_wins(self, sample):
        resolution = resolver_returning("text/x-shellscript").resolve(sample, "image/png")
        assert resolution.mime == "text/x-shellscript"
        assert resolution.verified is True

    @pytest.mark.parametrize("sniffed", [None, "application/octet-stream", "inode/x-empty"])
    def test_inconclusive_sniff_falls_back(self, sample, sniffed):
        resolution = resolver_returning(sniffed).resolve(sample, "audio/flac")
        assert resolution.mime == "audio/flac"
        assert resolution.verified is False

    def test_zip_container_refined_to_ooxml(self, sample):
        resolution = resolver_returning("application/zip").resolve(sample, DOCX)
        assert resolution.mime == DOCX
        assert resolution.verified is True
        assert resolution.raw_mime == "application/zip"

    def test_ole_container_refined_to_legacy_office(self, sample):
        resolution = resolver_returning("application/x-ole-storage").resolve(sample, "application/msword")
        assert resolution.mime == "application/msword"

    def test_zip_not_refined_to_unrelated_type(self, sample):
        resolution = resolver_returning("application/zip").resolve(sample, "image/png")
        assert resolution.mime == "application/zip"

    def test_reads_only_the_head(self, tmp_path):
        seen = []
        path = tmp_path / "big"
        path.write_bytes(b"x" * (200 * 1024))
        TypeResolver(identify_func=lambda head: seen.append(len(head)) or "text/plain").resolve(path, "text/plain")
        assert seen == [64 * 1024]


class TestCheckCategory:

    def test_matching_category(self):
        check_category(TypeResolution("image/png", True), ConversionCategory.IMAGE)

    def test_script_as_image_rejected(self):
        with pytest.raises(TypeMismatch):
            check_category(TypeResolution("text/x-shellscript", True), ConversionCategory.IMAGE)

    def test_wrong_category_rejected(self):
        with pytest.raises(TypeMismatch):
            check_category(TypeResolution("audio/mpeg", True), ConversionCategory.VIDEO)

    def test_gif_is_video_source(self):
        check_category(TypeResolution("image/gif", True), ConversionCategory.VIDEO)

    def test_unverified_allowed_by_default(self):
        check_category(TypeResolution("audio/flac", False), ConversionCategory.AUDIO)

    def test_unverified_rejected_when_disallowed(self):
        with pytest.raises(TypeMismatch):
            check_category(TypeResolution("audio/flac", False), ConversionCategory.AUDIO, allow_unverified=False)


class TestFormatMapping:

    @pytest.mark.parametrize("mime,fmt", [
        ("application/pdf", "pdf"),
        (DOCX, "docx"),
        ("application/x-7z-compressed", "7z"),
        ("application/x-gzip", "gz"),
        ("audio/x-wav", "wav"),
        ("text/rtf; charset=us-ascii", "rtf"),
        ("application/unknown", None),
        (None, None),
    ])
    def test_format_from_mime(self, mime, fmt):
        assert get_format_from_mime_type(mime) == fmt


@requires_magic
class TestLibmagic:

    def test_png_identified(self, tmp_path, png_bytes):
        path = tmp_path / "upload"
        path.write_bytes(png_bytes)
        resolution = TypeResolver().resolve(path, "image/jpeg")
        assert resolution.mime == "image/png"
        assert resolution.verified is True

    def test_shell_script_declared_as_png(self, tmp_path):
        path = tmp_path / "upload"
        path.write_bytes(b"#!/bin/sh\necho pwned\n")
        resolution = TypeResolver().resolve(path, "image/png")
        assert resolution.mime.startswith("text/")
        with pytest.raises(TypeMismatch):
            check_category(resolution, ConversionCategory.IMAGE)
