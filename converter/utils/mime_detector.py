"""
Content-based MIME type resolution.

The declared content type of an upload is untrusted. This module sniffs the
stored bytes with python-magic, reconciles the result with the declared type
and decides which conversion categories the file may be dispatched to.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

# Try to import python-magic for content-based detection
try:
    import magic
    MAGIC_AVAILABLE = True
except ImportError:
    magic = None
    MAGIC_AVAILABLE = False

from ..config import (
    CONTAINER_REFINEMENTS,
    MIME_CATEGORY_MAP,
    UNIDENTIFIED_MIME_TYPES,
    ConversionCategory,
)
from .error_handling import TypeMismatch

logger = logging.getLogger(__name__)

SNIFF_BYTES = 64 * 1024

# Format names for the MIME types the gateway handles
MIME_TYPE_MAPPINGS = {
    # Document formats
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
    "rtf": "application/rtf",

    # Text formats
    "txt": "text/plain",
    "html": "text/html",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",

    # Image formats
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",

    # Video formats
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "webm": "video/webm",

    # Audio formats
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "m4a": "audio/x-m4a",

    # Archive formats
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "tar": "application/x-tar",
    "7z": "application/x-7z-compressed",
    "gz": "application/gzip",
}

# Reverse mapping for content-type to format detection
CONTENT_TYPE_TO_FORMAT = {v: k for k, v in MIME_TYPE_MAPPINGS.items()}
CONTENT_TYPE_TO_FORMAT.update({
    "text/rtf": "rtf",
    "audio/x-wav": "wav",
    "audio/vnd.wave": "wav",
    "audio/x-flac": "flac",
    "audio/mp4": "m4a",
    "image/x-ms-bmp": "bmp",
    "application/x-gzip": "gz",
    "application/x-rar": "rar",
    "application/vnd.rar": "rar",
    "application/x-bzip2": "bz2",
    "application/x-xz": "xz",
})

IdentifyFunc = Callable[[bytes], Optional[str]]


def identify(content: bytes) -> Optional[str]:
    """
    Detect a MIME type from leading content bytes using python-magic.

    Returns None when libmagic is unavailable or detection fails.
    """
    if not MAGIC_AVAILABLE or not content:
        return None

    try:
        detected = magic.from_buffer(content, mime=True)
    except Exception as e:
        logger.debug(f"Content-based detection failed: {e}")
        return None

    return detected.lower() if detected else None


def get_format_from_mime_type(mime_type: Optional[str]) -> Optional[str]:
    """
    Get file format from MIME type.

    Args:
        mime_type: MIME type string

    Returns:
        File format/extension or None
    """
    if not mime_type:
        return None

    mime_clean = mime_type.lower().split(";")[0].strip()
    return CONTENT_TYPE_TO_FORMAT.get(mime_clean)


def categories_for(mime_type: Optional[str]) -> set:
    """Conversion categories a MIME type may be dispatched to."""
    if not mime_type:
        return set()
    return set(MIME_CATEGORY_MAP.get(mime_type, set()))


@dataclass(frozen=True)
class TypeResolution:
    """Outcome of reconciling declared and sniffed types."""
    mime: str
    verified: bool
    raw_mime: Optional[str] = None


class TypeResolver:
    """
    Resolves the real content type of a stored upload.

    Detection order:
    1. Sniff the first 64 KiB with ``identify``
    2. If the sniffed type is a generic container that legitimately carries
       the declared type (OOXML in zip, legacy Office in OLE), keep the
       declared type as verified
    3. If sniffing failed, fall back to the declared type, unverified
    """

    def __init__(self, identify_func: Optional[IdentifyFunc] = None):
        self.identify = identify_func or identify

    def resolve(self, path: Union[str, Path], declared_mime: str) -> TypeResolution:
        with open(path, "rb") as f:
            head = f.read(SNIFF_BYTES)

        raw_mime = self.identify(head)

        if not raw_mime or raw_mime in UNIDENTIFIED_MIME_TYPES:
            logger.debug(f"Sniffing inconclusive ({raw_mime}); using declared type {declared_mime}")
            return TypeResolution(mime=declared_mime, verified=False, raw_mime=raw_mime)

        if raw_mime == declared_mime:
            return TypeResolution(mime=raw_mime, verified=True, raw_mime=raw_mime)

        if declared_mime in CONTAINER_REFINEMENTS.get(raw_mime, frozenset()):
            logger.debug(f"Container {raw_mime} refined to declared {declared_mime}")
            return TypeResolution(mime=declared_mime, verified=True, raw_mime=raw_mime)

        if raw_mime not in MIME_CATEGORY_MAP:
            logger.info(f"Declared type {declared_mime} does not match content ({raw_mime})")

        return TypeResolution(mime=raw_mime, verified=True, raw_mime=raw_mime)


def check_category(
    resolution: TypeResolution,
    category: ConversionCategory,
    allow_unverified: bool = True
) -> None:
    """
    Ensure a resolved type may be dispatched to the requested category.

    Raises:
        TypeMismatch: If the content does not belong to the category, or it
            could not be verified and unverified types are not allowed
    """
    if not resolution.verified and not allow_unverified:
        raise TypeMismatch(
            "File content could not be verified",
            details=f"declared type {resolution.mime} was not confirmed by content inspection",
        )

    if category not in categories_for(resolution.mime):
        raise TypeMismatch(
            f"File content does not match conversion type '{category.value}'",
            details=f"detected content type: {resolution.mime}",
        )
