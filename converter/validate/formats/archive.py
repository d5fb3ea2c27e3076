"""
Archive output validation.
"""

import tarfile
import zipfile
import zlib
from pathlib import Path

import py7zr

from ..base_validator import BaseFileValidator

ZIP_READ_CHUNK = 1024 * 1024


class ZIPValidator(BaseFileValidator):
    """ZIP archives must open and every member must decompress with a matching CRC."""

    def __init__(self):
        super().__init__("zip")

    def _validate_path(self, file_path: Path, **options) -> bool:
        token = options.get("token")
        try:
            with zipfile.ZipFile(file_path, "r") as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    # ZipExtFile raises BadZipFile on CRC mismatch at end of stream
                    with zf.open(info) as member:
                        while True:
                            if token is not None:
                                token.check()
                            if not member.read(ZIP_READ_CHUNK):
                                break
        except zipfile.BadZipFile as e:
            self._fail(f"not a valid ZIP archive: {e}", zip_error=str(e))
        except (zlib.error, EOFError) as e:
            self._fail(f"corrupt ZIP member data: {e}", zip_error=str(e))
        return True


class TARValidator(BaseFileValidator):
    def __init__(self):
        super().__init__("tar")

    def _validate_path(self, file_path: Path, **options) -> bool:
        try:
            with tarfile.open(file_path, "r:") as tf:
                tf.getmembers()
        except tarfile.TarError as e:
            self._fail(f"not a valid TAR archive: {e}", tar_error=str(e))
        return True


class SevenZipValidator(BaseFileValidator):
    def __init__(self):
        super().__init__("7z")

    def _validate_path(self, file_path: Path, **options) -> bool:
        if not py7zr.is_7zfile(file_path):
            self._fail("signature not found")
        return True
