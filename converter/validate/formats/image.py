"""
Image file validation.

Checks the format signature, then lets Pillow verify the encoded stream.
"""

from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..base_validator import SignatureValidator


class PillowImageValidator(SignatureValidator):
    """Signature check followed by ``Image.verify``."""

    pillow_format = ""

    def _validate_path(self, file_path: Path, **options) -> bool:
        super()._validate_path(file_path, **options)
        try:
            with Image.open(file_path) as img:
                if img.format != self.pillow_format:
                    self._fail(f"decoded as {img.format}", pillow_format=img.format)
                img.verify()
        except (UnidentifiedImageError, SyntaxError, ValueError) as e:
            self._fail(f"image data is corrupt: {e}", pillow_error=str(e))
        return True


class JPEGValidator(PillowImageValidator):
    signatures = [[(0, b"\xff\xd8\xff")]]
    pillow_format = "JPEG"

    def __init__(self):
        super().__init__("jpeg")


class PNGValidator(PillowImageValidator):
    signatures = [[(0, b"\x89PNG\r\n\x1a\n")]]
    pillow_format = "PNG"

    def __init__(self):
        super().__init__("png")


class WEBPValidator(PillowImageValidator):
    signatures = [[(0, b"RIFF"), (8, b"WEBP")]]
    pillow_format = "WEBP"

    def __init__(self):
        super().__init__("webp")
