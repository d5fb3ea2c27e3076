"""
Archive repackaging.

An input already in the target format is wrapped unchanged as a single entry.
Anything else is extracted into the job's scratch directory, with limits on
member count and extracted size, and the tree is recompressed in the target
format with relative paths preserved.
"""

import bz2
import gzip
import lzma
import os
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, Iterator, Optional

import py7zr

from ..utils.error_handling import ConversionFailed, UnsupportedConversion
from ..utils.external_tools import CancelToken, run_blocking
from ..utils.intake import sanitize_filename
from ..utils.logging_config import get_logger
from ..utils.mime_detector import get_format_from_mime_type
from .base import ConversionContext

logger = get_logger(__name__)

COPY_CHUNK = 1024 * 1024
EXTRACT_DIR = "extracted"

SINGLE_STREAM_OPENERS = {
    "gz": gzip.open,
    "bz2": bz2.open,
    "xz": lzma.open,
}


class UnsafeArchive(ConversionFailed):
    """Archive content violates the extraction rules."""
    pass


class ExtractionBudget:
    """Tracks member count and extracted bytes against configured limits."""

    def __init__(self, max_members: int, max_bytes: int, token: Optional[CancelToken] = None):
        self.max_members = max_members
        self.max_bytes = max_bytes
        self.token = token or CancelToken()
        self.members = 0
        self.bytes = 0

    def add_member(self) -> None:
        self.token.check()
        self.members += 1
        if self.members > self.max_members:
            raise UnsafeArchive(f"Archive has more than {self.max_members} members")

    def add_bytes(self, count: int) -> None:
        self.token.check()
        self.bytes += count
        if self.bytes > self.max_bytes:
            raise UnsafeArchive(
                f"Archive expands beyond the {self.max_bytes} byte extraction limit"
            )


def safe_member_path(dest: Path, name: str) -> Path:
    """
    Resolve an archive member name inside the extraction directory.

    Raises:
        UnsafeArchive: For absolute names, drive letters or parent references
    """
    normalized = name.replace("\\", "/")
    parts = [p for p in PurePosixPath(normalized).parts if p not in ("", ".")]
    if (
        normalized.startswith("/")
        or (parts and ":" in parts[0])
        or any(part == ".." for part in parts)
    ):
        raise UnsafeArchive(f"Archive member has an unsafe path: {name!r}")

    target = dest.joinpath(*parts)
    if os.path.commonpath([str(dest.resolve()), str(target.resolve())]) != str(dest.resolve()):
        raise UnsafeArchive(f"Archive member escapes the extraction directory: {name!r}")
    return target


def _copy_limited(src, target: Path, budget: ExtractionBudget) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "xb") as out:
        while True:
            chunk = src.read(COPY_CHUNK)
            if not chunk:
                break
            budget.add_bytes(len(chunk))
            out.write(chunk)


# ===== EXTRACTORS =====

def extract_zip(path: Path, dest: Path, budget: ExtractionBudget) -> None:
    with zipfile.ZipFile(path) as zf:
        for info in zf.infolist():
            budget.add_member()
            mode = info.external_attr >> 16
            if stat.S_ISLNK(mode):
                raise UnsafeArchive(f"Archive member is a link: {info.filename!r}")
            target = safe_member_path(dest, info.filename)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            with zf.open(info) as src:
                _copy_limited(src, target, budget)


def _extract_tar_members(tf: tarfile.TarFile, dest: Path, budget: ExtractionBudget) -> None:
    for member in tf:
        budget.add_member()
        target = safe_member_path(dest, member.name)
        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
        elif member.isreg():
            src = tf.extractfile(member)
            with src:
                _copy_limited(src, target, budget)
        else:
            raise UnsafeArchive(f"Archive member is not a regular file: {member.name!r}")


def extract_tar(path: Path, dest: Path, budget: ExtractionBudget) -> None:
    with tarfile.open(path, "r:*") as tf:
        _extract_tar_members(tf, dest, budget)


def extract_compressed_stream(path: Path, dest: Path, budget: ExtractionBudget,
                              source_format: str, original_filename: str) -> None:
    """Extract a compressed tarball, or decompress a single compressed file."""
    try:
        with tarfile.open(path, "r:*") as tf:
            _extract_tar_members(tf, dest, budget)
            return
    except tarfile.ReadError:
        pass

    stem = Path(original_filename).stem if "." in original_filename else original_filename
    target = dest / sanitize_filename(stem)
    budget.add_member()
    with SINGLE_STREAM_OPENERS[source_format](path, "rb") as src:
        _copy_limited(src, target, budget)


def extract_7z(path: Path, dest: Path, budget: ExtractionBudget) -> None:
    with py7zr.SevenZipFile(path, mode="r") as archive:
        for member in archive.files:
            if member.is_symlink:
                raise UnsafeArchive(f"Archive member is a link: {member.filename!r}")
        for entry in archive.list():
            budget.add_member()
            safe_member_path(dest, entry.filename)
            if not entry.is_directory:
                budget.add_bytes(entry.uncompressed or 0)
        archive.extractall(path=dest)


# ===== WRITERS =====

def _iter_files(root: Path, token: Optional[CancelToken] = None) -> Iterator[Path]:
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        if token is not None:
            token.check()
        yield path


def _relative_name(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def write_zip(root: Path, output: Path, token: Optional[CancelToken] = None) -> None:
    with zipfile.ZipFile(output, "w", zipfile.ZIP_DEFLATED) as zf:
        for file_path in _iter_files(root, token):
            zf.write(file_path, _relative_name(root, file_path))


def write_tar(root: Path, output: Path, token: Optional[CancelToken] = None) -> None:
    with tarfile.open(output, "w") as tf:
        for file_path in _iter_files(root, token):
            tf.add(file_path, arcname=_relative_name(root, file_path), recursive=False)


def write_7z(root: Path, output: Path, token: Optional[CancelToken] = None) -> None:
    with py7zr.SevenZipFile(output, mode="w") as archive:
        for file_path in _iter_files(root, token):
            archive.write(file_path, _relative_name(root, file_path))


ARCHIVE_WRITERS: Dict[str, Callable[..., None]] = {
    "zip": write_zip,
    "tar": write_tar,
    "7z": write_7z,
}


def repackage(ctx: ConversionContext, source_format: Optional[str]) -> None:
    """Blocking body of the archive strategy."""
    writer = ARCHIVE_WRITERS[ctx.target_format]
    staging = ctx.scratch_dir / EXTRACT_DIR
    staging.mkdir()

    if source_format == ctx.target_format:
        # Already in the target format: wrap the file itself as one entry
        entry = staging / sanitize_filename(ctx.original_filename)
        shutil.copyfile(ctx.input_path, entry)
    else:
        budget = ExtractionBudget(
            ctx.settings.max_archive_members, ctx.settings.max_extracted_bytes, ctx.cancel_token
        )
        if source_format == "zip":
            extract_zip(ctx.input_path, staging, budget)
        elif source_format == "tar":
            extract_tar(ctx.input_path, staging, budget)
        elif source_format in SINGLE_STREAM_OPENERS:
            extract_compressed_stream(ctx.input_path, staging, budget, source_format, ctx.original_filename)
        elif source_format == "7z":
            extract_7z(ctx.input_path, staging, budget)
        else:
            raise UnsupportedConversion(
                f"Archives of type {source_format or 'unknown'} cannot be repackaged"
            )
        logger.debug(f"Extracted {budget.members} members ({budget.bytes} bytes)")

    writer(staging, ctx.output_path, ctx.cancel_token)


async def archive_strategy(ctx: ConversionContext) -> None:
    """Repackage an archive (or wrap a file) as zip, tar or 7z."""
    if ctx.target_format not in ARCHIVE_WRITERS:
        raise UnsupportedConversion(f"Conversion of archive to {ctx.target_format} is not supported")

    source_format = get_format_from_mime_type(ctx.source_mime)
    try:
        await run_blocking(repackage, ctx, source_format, timeout=ctx.timeout, tool="archiver",
                           token=ctx.cancel_token)
    except (ConversionFailed, UnsupportedConversion):
        ctx.discard_output()
        raise
    except (zipfile.BadZipFile, tarfile.TarError, py7zr.Bad7zFile, EOFError, lzma.LZMAError) as e:
        ctx.discard_output()
        raise ConversionFailed("Archive could not be read", details=str(e)) from e
    except (OSError, ValueError) as e:
        ctx.discard_output()
        raise ConversionFailed("Archive repackaging failed", details=str(e)) from e

    logger.info(f"Archive repackaged as {ctx.target_format}")
