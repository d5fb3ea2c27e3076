"""
Upload intake.

Copies an uploaded stream into the intake area under a server-assigned name
while enforcing the declared-type allow-list and the upload size ceiling.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from ..config import ALL_ALLOWED_MIME_TYPES
from .error_handling import InternalIOError, NoFileProvided, PayloadTooLarge, UnsupportedType
from .logging_config import get_logger
from .storage import StorageLayout, new_storage_id

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB
MAX_FILENAME_LENGTH = 255
DEFAULT_FILENAME = "file"

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")


@dataclass
class UploadedFile:
    """An upload that has been written to the intake area."""
    storage_id: str
    original_filename: str
    declared_mime: str
    size_bytes: int
    storage_path: Path
    detected_mime: Optional[str] = None
    verified: bool = False


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Reduce a client-supplied filename to something safe to display.

    The result is the last path component (``/`` and ``\\`` both count as
    separators) with control characters and leading dots removed, capped at
    255 characters. An empty result becomes ``file``.
    """
    if not filename:
        return DEFAULT_FILENAME

    name = re.split(r"[\\/]", str(filename))[-1]
    name = _CONTROL_CHARS_RE.sub("", name).strip()
    name = name.lstrip(".").strip()
    name = name[:MAX_FILENAME_LENGTH]

    return name or DEFAULT_FILENAME


def normalize_mime(content_type: Optional[str]) -> str:
    """Lowercase a MIME type and drop any parameters (``; charset=...``)."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


class UploadIntake:
    """Writes uploads into the intake area."""

    def __init__(self, storage: StorageLayout, max_upload_bytes: int):
        self.storage = storage
        self.max_upload_bytes = max_upload_bytes

    async def accept(self, upload: Optional[UploadFile]) -> UploadedFile:
        """
        Validate and persist an upload.

        Args:
            upload: The multipart file part, possibly None

        Returns:
            UploadedFile describing the stored copy

        Raises:
            NoFileProvided: No file part, or a zero-byte file
            UnsupportedType: Declared MIME type is not on the allow-list
            PayloadTooLarge: Upload exceeds the configured ceiling
            InternalIOError: The intake area could not be written
        """
        if upload is None or (not upload.filename and not upload.content_type):
            raise NoFileProvided("No file provided")

        declared_mime = normalize_mime(upload.content_type)
        if declared_mime not in ALL_ALLOWED_MIME_TYPES:
            raise UnsupportedType(f"File type '{declared_mime or 'unknown'}' is not supported")

        original_filename = sanitize_filename(upload.filename)
        storage_id = new_storage_id()
        storage_path = self.storage.intake_path(storage_id)

        try:
            out = open(storage_path, "xb")
        except OSError as e:
            raise InternalIOError("Failed to store upload", details=str(e)) from e

        size = 0
        try:
            with out:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_upload_bytes:
                        raise PayloadTooLarge(
                            f"File exceeds the maximum upload size of "
                            f"{self.max_upload_bytes // (1024 * 1024)} MB"
                        )
                    out.write(chunk)
        except OSError as e:
            self.storage.remove_file(storage_path)
            raise InternalIOError("Failed to store upload", details=str(e)) from e
        except BaseException:
            self.storage.remove_file(storage_path)
            raise

        if size == 0:
            self.storage.remove_file(storage_path)
            raise NoFileProvided("Uploaded file is empty")

        logger.info(f"Accepted upload {storage_id} ({declared_mime}, {size} bytes)")

        return UploadedFile(
            storage_id=storage_id,
            original_filename=original_filename,
            declared_mime=declared_mime,
            size_bytes=size,
            storage_path=storage_path,
        )
