"""
Conversion configuration for the gateway.

This module defines the declared-type allow-list, the capability matrix that
maps (category, target format) pairs onto conversion strategies, the document
routes used by the document strategy, and the environment-driven runtime
settings.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Set, Tuple


class ConversionCategory(str, Enum):
    """Groups of conversions sharing an external tool family."""
    DOCUMENT = "document"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ARCHIVE = "archive"


class ConversionStrategy(Enum):
    """Available conversion strategies."""
    PILLOW = "pillow"
    FFMPEG_VIDEO = "ffmpeg-video"
    FFMPEG_AUDIO = "ffmpeg-audio"
    ZIP_ARCHIVE = "zip-archive"
    TAR_ARCHIVE = "tar-archive"
    SEVENZIP_ARCHIVE = "7z-archive"
    DOCUMENT = "document"


class DocumentTool(Enum):
    """External capabilities the document strategy can delegate to."""
    LIBREOFFICE = "libreoffice"
    MAMMOTH = "mammoth"
    PYMUPDF = "pymupdf"
    PANDAS = "pandas"


# Declared MIME types accepted at intake, grouped by category
ALLOWED_MIME_TYPES: Dict[ConversionCategory, FrozenSet[str]] = {
    ConversionCategory.DOCUMENT: frozenset({
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.text",
        "application/vnd.oasis.opendocument.spreadsheet",
        "application/vnd.oasis.opendocument.presentation",
        "application/rtf",
    }),
    ConversionCategory.IMAGE: frozenset({
        "image/jpeg", "image/png", "image/webp", "image/svg+xml", "image/bmp",
        "image/gif", "image/tiff",
    }),
    ConversionCategory.VIDEO: frozenset({
        "video/mp4", "video/quicktime", "video/x-msvideo", "video/x-matroska",
        "video/webm",
    }),
    ConversionCategory.AUDIO: frozenset({
        "audio/mpeg", "audio/wav", "audio/x-wav", "audio/flac", "audio/ogg",
        "audio/aac", "audio/mp4", "audio/x-m4a",
    }),
    ConversionCategory.ARCHIVE: frozenset({
        "application/zip", "application/x-rar-compressed", "application/x-tar",
        "application/x-7z-compressed", "application/gzip", "application/x-gzip",
    }),
}

ALL_ALLOWED_MIME_TYPES: FrozenSet[str] = frozenset().union(*ALLOWED_MIME_TYPES.values())

# Sniffed MIME types (including libmagic's spellings) -> categories they may serve
MIME_CATEGORY_MAP: Dict[str, Set[ConversionCategory]] = {
    mime: {category}
    for category, mimes in ALLOWED_MIME_TYPES.items()
    for mime in mimes
}
MIME_CATEGORY_MAP.update({
    # libmagic aliases
    "text/rtf": {ConversionCategory.DOCUMENT},
    "image/x-ms-bmp": {ConversionCategory.IMAGE},
    "image/svg": {ConversionCategory.IMAGE},
    "audio/x-flac": {ConversionCategory.AUDIO},
    "audio/x-hx-aac-adts": {ConversionCategory.AUDIO},
    "audio/vnd.wave": {ConversionCategory.AUDIO},
    "video/x-m4v": {ConversionCategory.VIDEO},
    "video/x-ms-asf": {ConversionCategory.VIDEO},
    "application/x-bzip2": {ConversionCategory.ARCHIVE},
    "application/x-xz": {ConversionCategory.ARCHIVE},
    "application/vnd.rar": {ConversionCategory.ARCHIVE},
    "application/x-rar": {ConversionCategory.ARCHIVE},
})
# Animated GIFs are a valid video source
MIME_CATEGORY_MAP["image/gif"] = {ConversionCategory.IMAGE, ConversionCategory.VIDEO}
# Ogg containers may carry video
MIME_CATEGORY_MAP["video/ogg"] = {ConversionCategory.VIDEO, ConversionCategory.AUDIO}

# Generic container signatures and the declared types they legitimately carry
CONTAINER_REFINEMENTS: Dict[str, FrozenSet[str]] = {
    "application/zip": frozenset({
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.text",
        "application/vnd.oasis.opendocument.spreadsheet",
        "application/vnd.oasis.opendocument.presentation",
    }),
    "application/x-ole-storage": frozenset({
        "application/msword", "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
    }),
    "application/cdfv2": frozenset({
        "application/msword", "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
    }),
    "application/vnd.ms-office": frozenset({
        "application/msword", "application/vnd.ms-excel", "application/vnd.ms-powerpoint",
    }),
    "audio/mp4": frozenset({"audio/x-m4a", "audio/aac"}),
    "video/mp4": frozenset({"audio/mp4", "audio/x-m4a"}),
}

# What a sniffer returns when it could not identify the content
UNIDENTIFIED_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/octet-stream",
    "inode/x-empty",
    "application/x-empty",
})

# Target format aliases used for lookups; the display name keeps the request
FORMAT_ALIASES: Dict[str, str] = {
    "jpg": "jpeg",
}


# Capability matrix defining (category, target) -> strategy
CAPABILITY_MATRIX: Dict[Tuple[ConversionCategory, str], Tuple[ConversionStrategy, str]] = {
    # Images
    (ConversionCategory.IMAGE, "jpeg"): (ConversionStrategy.PILLOW, "Re-encode image as JPEG"),
    (ConversionCategory.IMAGE, "png"): (ConversionStrategy.PILLOW, "Re-encode image as PNG"),
    (ConversionCategory.IMAGE, "webp"): (ConversionStrategy.PILLOW, "Re-encode image as WebP"),

    # Video
    (ConversionCategory.VIDEO, "mp4"): (ConversionStrategy.FFMPEG_VIDEO, "Transcode to MP4 (H.264/AAC)"),
    (ConversionCategory.VIDEO, "mov"): (ConversionStrategy.FFMPEG_VIDEO, "Transcode to QuickTime"),
    (ConversionCategory.VIDEO, "avi"): (ConversionStrategy.FFMPEG_VIDEO, "Transcode to AVI"),
    (ConversionCategory.VIDEO, "mkv"): (ConversionStrategy.FFMPEG_VIDEO, "Remux/transcode to Matroska"),
    (ConversionCategory.VIDEO, "webm"): (ConversionStrategy.FFMPEG_VIDEO, "Transcode to WebM (VP9/Opus)"),

    # Audio
    (ConversionCategory.AUDIO, "mp3"): (ConversionStrategy.FFMPEG_AUDIO, "Encode MP3 with libmp3lame"),
    (ConversionCategory.AUDIO, "wav"): (ConversionStrategy.FFMPEG_AUDIO, "Decode to 16-bit PCM WAV"),

    # Archives
    (ConversionCategory.ARCHIVE, "zip"): (ConversionStrategy.ZIP_ARCHIVE, "Repackage as ZIP"),
    (ConversionCategory.ARCHIVE, "tar"): (ConversionStrategy.TAR_ARCHIVE, "Repackage as TAR"),
    (ConversionCategory.ARCHIVE, "7z"): (ConversionStrategy.SEVENZIP_ARCHIVE, "Repackage as 7z"),

    # Documents (per-source routing lives in DOCUMENT_ROUTES)
    (ConversionCategory.DOCUMENT, "pdf"): (ConversionStrategy.DOCUMENT, "Office document to PDF"),
    (ConversionCategory.DOCUMENT, "docx"): (ConversionStrategy.DOCUMENT, "Word processing to DOCX"),
    (ConversionCategory.DOCUMENT, "odt"): (ConversionStrategy.DOCUMENT, "Word processing to ODT"),
    (ConversionCategory.DOCUMENT, "xlsx"): (ConversionStrategy.DOCUMENT, "Spreadsheet to XLSX"),
    (ConversionCategory.DOCUMENT, "ods"): (ConversionStrategy.DOCUMENT, "Spreadsheet to ODS"),
    (ConversionCategory.DOCUMENT, "pptx"): (ConversionStrategy.DOCUMENT, "Presentation to PPTX"),
    (ConversionCategory.DOCUMENT, "odp"): (ConversionStrategy.DOCUMENT, "Presentation to ODP"),
    (ConversionCategory.DOCUMENT, "html"): (ConversionStrategy.DOCUMENT, "Word document to HTML"),
    (ConversionCategory.DOCUMENT, "txt"): (ConversionStrategy.DOCUMENT, "Plain text extraction"),
    (ConversionCategory.DOCUMENT, "csv"): (ConversionStrategy.DOCUMENT, "Spreadsheet to CSV"),
    (ConversionCategory.DOCUMENT, "json"): (ConversionStrategy.DOCUMENT, "Spreadsheet to JSON records"),
    (ConversionCategory.DOCUMENT, "md"): (ConversionStrategy.DOCUMENT, "Spreadsheet to Markdown table"),
}

# Categories whose tool family works per codec: a miss there is a format problem
FORMAT_FAMILY_CATEGORIES: FrozenSet[ConversionCategory] = frozenset({ConversionCategory.IMAGE})

# Archive targets enabled unless ARCHIVE_TARGETS says otherwise
DEFAULT_ARCHIVE_TARGETS = ("zip",)


# Document routes defining (source format, target) -> tools in priority order
DOCUMENT_ROUTES: Dict[Tuple[str, str], List[Tuple[DocumentTool, str]]] = {
    # To PDF
    ("doc", "pdf"): [(DocumentTool.LIBREOFFICE, "Legacy Word to PDF")],
    ("docx", "pdf"): [(DocumentTool.LIBREOFFICE, "Word to PDF")],
    ("odt", "pdf"): [(DocumentTool.LIBREOFFICE, "OpenDocument text to PDF")],
    ("rtf", "pdf"): [(DocumentTool.LIBREOFFICE, "RTF to PDF")],
    ("xls", "pdf"): [(DocumentTool.LIBREOFFICE, "Legacy Excel to PDF")],
    ("xlsx", "pdf"): [(DocumentTool.LIBREOFFICE, "Excel to PDF")],
    ("ods", "pdf"): [(DocumentTool.LIBREOFFICE, "OpenDocument spreadsheet to PDF")],
    ("ppt", "pdf"): [(DocumentTool.LIBREOFFICE, "Legacy PowerPoint to PDF")],
    ("pptx", "pdf"): [(DocumentTool.LIBREOFFICE, "PowerPoint to PDF")],
    ("odp", "pdf"): [(DocumentTool.LIBREOFFICE, "OpenDocument presentation to PDF")],

    # Word processing
    ("pdf", "docx"): [(DocumentTool.LIBREOFFICE, "PDF to Word via the writer PDF import filter")],
    ("doc", "docx"): [(DocumentTool.LIBREOFFICE, "Legacy Word to DOCX")],
    ("odt", "docx"): [(DocumentTool.LIBREOFFICE, "OpenDocument to Word")],
    ("rtf", "docx"): [(DocumentTool.LIBREOFFICE, "RTF to Word")],
    ("doc", "odt"): [(DocumentTool.LIBREOFFICE, "Legacy Word to OpenDocument")],
    ("docx", "odt"): [(DocumentTool.LIBREOFFICE, "Word to OpenDocument")],
    ("rtf", "odt"): [(DocumentTool.LIBREOFFICE, "RTF to OpenDocument")],
    ("docx", "html"): [(DocumentTool.MAMMOTH, "Word to semantic HTML")],

    # Spreadsheets
    ("xls", "xlsx"): [(DocumentTool.LIBREOFFICE, "Legacy Excel to XLSX")],
    ("ods", "xlsx"): [(DocumentTool.LIBREOFFICE, "OpenDocument spreadsheet to Excel")],
    ("xls", "ods"): [(DocumentTool.LIBREOFFICE, "Legacy Excel to OpenDocument")],
    ("xlsx", "ods"): [(DocumentTool.LIBREOFFICE, "Excel to OpenDocument")],
    ("xls", "csv"): [(DocumentTool.PANDAS, "First sheet as CSV")],
    ("xlsx", "csv"): [(DocumentTool.PANDAS, "First sheet as CSV")],
    ("ods", "csv"): [(DocumentTool.PANDAS, "First sheet as CSV")],
    ("xls", "json"): [(DocumentTool.PANDAS, "First sheet as JSON records")],
    ("xlsx", "json"): [(DocumentTool.PANDAS, "First sheet as JSON records")],
    ("ods", "json"): [(DocumentTool.PANDAS, "First sheet as JSON records")],
    ("xls", "md"): [(DocumentTool.PANDAS, "First sheet as Markdown table")],
    ("xlsx", "md"): [(DocumentTool.PANDAS, "First sheet as Markdown table")],
    ("ods", "md"): [(DocumentTool.PANDAS, "First sheet as Markdown table")],

    # Presentations
    ("ppt", "pptx"): [(DocumentTool.LIBREOFFICE, "Legacy PowerPoint to PPTX")],
    ("odp", "pptx"): [(DocumentTool.LIBREOFFICE, "OpenDocument presentation to PowerPoint")],
    ("ppt", "odp"): [(DocumentTool.LIBREOFFICE, "Legacy PowerPoint to OpenDocument")],
    ("pptx", "odp"): [(DocumentTool.LIBREOFFICE, "PowerPoint to OpenDocument")],

    # Text extraction
    ("pdf", "txt"): [(DocumentTool.PYMUPDF, "PDF text extraction")],
    ("docx", "txt"): [(DocumentTool.MAMMOTH, "Word raw text extraction")],
    ("xls", "txt"): [(DocumentTool.PANDAS, "First sheet as tab separated text")],
    ("xlsx", "txt"): [(DocumentTool.PANDAS, "First sheet as tab separated text")],
    ("ods", "txt"): [(DocumentTool.PANDAS, "First sheet as tab separated text")],
}


# Front-end page slugs served with the static shell
CONVERTER_PAGES = [
    # Document converters
    "pdf-to-word", "word-to-pdf", "excel-to-pdf", "ppt-to-pdf",
    # Image converters
    "jpg-to-png", "png-to-jpg", "webp-to-jpg", "svg-to-png", "bmp-to-jpg",
    # Video converters
    "mp4-to-mov", "mov-to-mp4", "avi-to-mp4", "mkv-to-mp4", "webm-to-mp4", "gif-to-mp4",
    # Audio converters
    "mp3-to-wav", "wav-to-mp3", "flac-to-mp3", "ogg-to-mp3", "aac-to-mp3", "m4a-to-mp3",
    # Archive converters
    "tar-to-zip", "7z-to-zip", "gzip-to-zip",
]


# ===== RUNTIME SETTINGS =====

DEFAULT_STORAGE_ROOT = "/tmp/converter-gateway"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_list(name: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


class GatewaySettings:
    """Runtime settings, read once from the environment at startup."""

    def __init__(
        self,
        storage_root: Path = Path(DEFAULT_STORAGE_ROOT),
        max_upload_bytes: int = 100 * 1024 * 1024,
        tool_timeout_seconds: int = 300,
        retention_seconds: int = 3600,
        sweep_interval_seconds: int = 300,
        stale_work_seconds: int = 6 * 3600,
        max_extracted_bytes: int = 1024 * 1024 * 1024,
        max_archive_members: int = 10000,
        archive_targets: Tuple[str, ...] = DEFAULT_ARCHIVE_TARGETS,
        disabled_conversions: Tuple[str, ...] = (),
        allow_unverified_types: bool = True,
        ffmpeg_binary: str = "ffmpeg",
        soffice_binary: str = "soffice",
    ):
        self.storage_root = Path(storage_root)
        self.max_upload_bytes = max_upload_bytes
        self.tool_timeout_seconds = tool_timeout_seconds
        self.retention_seconds = retention_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.stale_work_seconds = stale_work_seconds
        self.max_extracted_bytes = max_extracted_bytes
        self.max_archive_members = max_archive_members
        self.archive_targets = tuple(archive_targets)
        self.disabled_conversions = tuple(disabled_conversions)
        self.allow_unverified_types = allow_unverified_types
        self.ffmpeg_binary = ffmpeg_binary
        self.soffice_binary = soffice_binary

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            storage_root=Path(os.getenv("STORAGE_ROOT", DEFAULT_STORAGE_ROOT)),
            max_upload_bytes=_env_int("MAX_UPLOAD_MB", 100) * 1024 * 1024,
            tool_timeout_seconds=_env_int("TOOL_TIMEOUT_SECONDS", 300),
            retention_seconds=_env_int("RETENTION_SECONDS", 3600),
            sweep_interval_seconds=_env_int("SWEEP_INTERVAL_SECONDS", 300),
            stale_work_seconds=_env_int("STALE_WORK_SECONDS", 6 * 3600),
            max_extracted_bytes=_env_int("MAX_EXTRACTED_MB", 1024) * 1024 * 1024,
            max_archive_members=_env_int("MAX_ARCHIVE_MEMBERS", 10000),
            archive_targets=_env_list("ARCHIVE_TARGETS", DEFAULT_ARCHIVE_TARGETS),
            disabled_conversions=_env_list("DISABLED_CONVERSIONS"),
            allow_unverified_types=_env_bool("ALLOW_UNVERIFIED_TYPES", True),
            ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
            soffice_binary=os.getenv("SOFFICE_BINARY", "soffice"),
        )

    def is_disabled(self, category: ConversionCategory, target: str) -> bool:
        """Whether a capability-matrix entry is switched off by configuration."""
        if category == ConversionCategory.ARCHIVE and target not in self.archive_targets:
            return True
        return f"{category.value}:{target}" in self.disabled_conversions

    def __repr__(self) -> str:
        return (
            f"GatewaySettings(storage_root={self.storage_root}, "
            f"max_upload_bytes={self.max_upload_bytes}, "
            f"tool_timeout_seconds={self.tool_timeout_seconds}, "
            f"archive_targets={self.archive_targets})"
        )


# Global settings instance
_settings: Optional[GatewaySettings] = None


def get_settings() -> GatewaySettings:
    """Get the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = GatewaySettings.from_env()
    return _settings
