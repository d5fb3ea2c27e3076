"""
Office document validation.

OOXML (docx, xlsx, pptx) and OpenDocument (odt, ods, odp) files are ZIP
containers; each format is identified by the members it must hold.
"""

import zipfile

from ..base_validator import ArchiveBasedValidator

ODF_MIMETYPES = {
    "odt": "application/vnd.oasis.opendocument.text",
    "ods": "application/vnd.oasis.opendocument.spreadsheet",
    "odp": "application/vnd.oasis.opendocument.presentation",
}


class DOCXValidator(ArchiveBasedValidator):
    def __init__(self):
        super().__init__("docx", ["[Content_Types].xml", "_rels/.rels", "word/document.xml"])

    def _validate_archive(self, zf: zipfile.ZipFile) -> None:
        if zf.getinfo("word/document.xml").file_size == 0:
            self._fail("document content is empty")


class XLSXValidator(ArchiveBasedValidator):
    def __init__(self):
        super().__init__("xlsx", ["[Content_Types].xml", "_rels/.rels", "xl/workbook.xml"])


class PPTXValidator(ArchiveBasedValidator):
    def __init__(self):
        super().__init__("pptx", ["[Content_Types].xml", "_rels/.rels", "ppt/presentation.xml"])


class OpenDocumentValidator(ArchiveBasedValidator):
    """ODF containers must declare their own type in the ``mimetype`` member."""

    def __init__(self, format_name: str):
        super().__init__(format_name, ["mimetype", "META-INF/manifest.xml", "content.xml"])

    def _validate_archive(self, zf: zipfile.ZipFile) -> None:
        declared = zf.read("mimetype").decode("ascii", errors="replace").strip()
        expected = ODF_MIMETYPES[self.format_name]
        if declared != expected:
            self._fail(f"mimetype member is {declared!r}", expected=expected)


class ODTValidator(OpenDocumentValidator):
    def __init__(self):
        super().__init__("odt")


class ODSValidator(OpenDocumentValidator):
    def __init__(self):
        super().__init__("ods")


class ODPValidator(OpenDocumentValidator):
    def __init__(self):
        super().__init__("odp")
