"""
PDF file validation.

Checks the header, the trailing EOF marker and the cross-reference section
without loading the whole document.
"""

import os
from pathlib import Path

from ..base_validator import BaseFileValidator

TAIL_BYTES = 4096


class PDFValidator(BaseFileValidator):
    """PDF file validator using the base validation framework."""

    def __init__(self):
        super().__init__("pdf")

    def _validate_path(self, file_path: Path, **options) -> bool:
        head = self._read_head(file_path, 1024)
        if not head.startswith(b"%PDF-"):
            self._fail("missing PDF header", header_found=head[:10].hex())

        with open(file_path, "rb") as f:
            f.seek(max(0, os.path.getsize(file_path) - TAIL_BYTES))
            tail = f.read()

        if b"%%EOF" not in tail:
            self._fail("missing EOF marker")

        # Classic xref table or an xref stream referenced by startxref
        if b"startxref" not in tail and b"xref" not in tail:
            self._fail("missing cross-reference section")

        return True
