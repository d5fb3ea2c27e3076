"""
Output validation for conversion results.

Every target format with a registered validator is checked after its
strategy returns, so a tool that exits cleanly but writes garbage is still
reported as a failed conversion.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .base_validator import BaseFileValidator, ValidationError
from .formats import archive, image, media, office, pdf, text

logger = logging.getLogger(__name__)

# Map target formats to validator factories
VALIDATOR_FACTORIES: Dict[str, Callable[[], BaseFileValidator]] = {
    # Images
    'jpeg': image.JPEGValidator,
    'jpg': image.JPEGValidator,
    'png': image.PNGValidator,
    'webp': image.WEBPValidator,

    # Video
    'mp4': media.MP4Validator,
    'mov': media.MOVValidator,
    'avi': media.AVIValidator,
    'mkv': lambda: media.MatroskaValidator("mkv"),
    'webm': lambda: media.MatroskaValidator("webm"),

    # Audio
    'mp3': media.MP3Validator,
    'wav': media.WAVValidator,

    # Archives
    'zip': archive.ZIPValidator,
    'tar': archive.TARValidator,
    '7z': archive.SevenZipValidator,

    # Documents
    'pdf': pdf.PDFValidator,
    'docx': office.DOCXValidator,
    'xlsx': office.XLSXValidator,
    'pptx': office.PPTXValidator,
    'odt': office.ODTValidator,
    'ods': office.ODSValidator,
    'odp': office.ODPValidator,
    'txt': text.TextValidator,
    'md': text.MarkdownValidator,
    'csv': text.CSVValidator,
    'html': text.HTMLValidator,
    'json': text.JSONValidator,
}


def create_validator_for_format(format_name: str) -> Optional[BaseFileValidator]:
    """
    Create the validator for a format.

    Returns:
        A validator instance, or None when the format has no validator
    """
    factory = VALIDATOR_FACTORIES.get(format_name.lower())
    return factory() if factory else None


def validate_output(file_path: Union[str, Path], expected_format: str, **options) -> Optional[bool]:
    """
    Validate a conversion output.

    Returns:
        True if validation passed, None if no validator exists for the format

    Raises:
        ValidationError: If validation fails
    """
    validator = create_validator_for_format(expected_format)
    if validator is None:
        logger.debug(f"No validator registered for {expected_format}")
        return None
    return validator.validate_file(file_path, **options)


__all__ = ["ValidationError", "create_validator_for_format", "validate_output", "VALIDATOR_FACTORIES"]
