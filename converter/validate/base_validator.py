"""
Base file validator classes for conversion output validation.

Validators inspect a produced file on disk and raise ValidationError when it
is not a well-formed instance of its format. They read only as much of the
file as they need, since outputs may be large media files.
"""

import logging
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

HEAD_BYTES = 64 * 1024
MAX_TEXT_BYTES = 32 * 1024 * 1024


class ValidationError(Exception):
    """Raised when file validation fails."""
    def __init__(self, message: str, format_type: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.format_type = format_type
        self.details = details or {}


class BaseFileValidator(ABC):
    """
    Base class for file format validators.

    Provides the existence and size checks shared by every format; subclasses
    implement ``_validate_path``.
    """

    def __init__(self, format_name: str):
        self.format_name = format_name
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def validate_file(self, file_path: Union[str, Path], **options) -> bool:
        """
        Validate a file against this validator's format.

        Returns:
            True if validation passes

        Raises:
            ValidationError: If validation fails
        """
        file_path = Path(file_path)

        self._check_file_exists(file_path)
        self._check_file_size(file_path)

        try:
            return self._validate_path(file_path, **options)
        except ValidationError:
            raise
        except OSError as e:
            raise ValidationError(
                f"Failed to read file: {e}",
                format_type=self.format_name,
                details={"read_error": str(e)}
            )

    def _check_file_exists(self, file_path: Path) -> None:
        if not file_path.is_file():
            raise ValidationError("Output file does not exist", format_type=self.format_name)

    def _check_file_size(self, file_path: Path) -> None:
        file_size = file_path.stat().st_size
        if file_size == 0:
            raise ValidationError(
                "File is empty (size 0)",
                format_type=self.format_name,
                details={"file_size": file_size}
            )

    def _read_head(self, file_path: Path, size: int = HEAD_BYTES) -> bytes:
        with open(file_path, "rb") as f:
            return f.read(size)

    def _fail(self, message: str, **details: Any) -> None:
        raise ValidationError(
            f"Invalid {self.format_name.upper()} file: {message}",
            format_type=self.format_name,
            details=details
        )

    @abstractmethod
    def _validate_path(self, file_path: Path, **options) -> bool:
        """Perform format-specific validation."""
        pass


class TextBasedValidator(BaseFileValidator):
    """
    Base class for text-based file validators.

    Text output must be UTF-8, contain something other than whitespace and
    carry no null bytes.
    """

    def _read_text(self, file_path: Path) -> str:
        if file_path.stat().st_size > MAX_TEXT_BYTES:
            # Only the head is checked for very large text outputs
            raw = self._read_head(file_path, MAX_TEXT_BYTES)
            return raw.decode("utf-8", errors="ignore")
        try:
            return file_path.read_text(encoding="utf-8", errors="strict")
        except UnicodeDecodeError as e:
            raise ValidationError(
                f"File must be valid UTF-8 encoded text: {e}",
                format_type=self.format_name,
                details={"encoding_error": str(e)}
            )

    def _validate_path(self, file_path: Path, **options) -> bool:
        content = self._read_text(file_path)

        if not content.strip():
            self._fail("file is empty or contains only whitespace", content_length=len(content))
        if "\x00" in content:
            self._fail("file contains binary data (null bytes)")

        return self._validate_text(content, **options)

    def _validate_text(self, content: str, **options) -> bool:
        return True


class SignatureValidator(BaseFileValidator):
    """
    Validator matching magic bytes at fixed offsets.

    ``signatures`` is a list of alternatives; each alternative is a list of
    (offset, bytes) pairs that must all match.
    """

    signatures: List[List[tuple]] = []

    def _validate_path(self, file_path: Path, **options) -> bool:
        head = self._read_head(file_path)
        if not any(self._matches(head, alternative) for alternative in self.signatures):
            self._fail("signature not found", header_found=head[:16].hex())
        return True

    @staticmethod
    def _matches(head: bytes, alternative: Iterable[tuple]) -> bool:
        return all(head[offset:offset + len(magic)] == magic for offset, magic in alternative)


class ArchiveBasedValidator(BaseFileValidator):
    """
    Base class for ZIP-container formats (OOXML, OpenDocument).

    Checks the container opens and holds the required members.
    """

    def __init__(self, format_name: str, required_files: List[str]):
        super().__init__(format_name)
        self.required_files = required_files

    def _validate_path(self, file_path: Path, **options) -> bool:
        try:
            with zipfile.ZipFile(file_path, "r") as zf:
                namelist = zf.namelist()
                missing_files = [name for name in self.required_files if name not in namelist]
                if missing_files:
                    self._fail(
                        f"missing required files: {missing_files}",
                        missing_files=missing_files,
                        available_files=namelist[:10]
                    )
                self._validate_archive(zf)
        except zipfile.BadZipFile as e:
            self._fail(f"not a valid ZIP container: {e}", zip_error=str(e))
        return True

    def _validate_archive(self, zf: zipfile.ZipFile) -> None:
        pass
