"""
Text output validation: plain text, Markdown, CSV, HTML and JSON.
"""

import csv
import io
import json as json_lib

from ..base_validator import TextBasedValidator


class TextValidator(TextBasedValidator):
    def __init__(self):
        super().__init__("txt")


class MarkdownValidator(TextBasedValidator):
    def __init__(self):
        super().__init__("md")


class CSVValidator(TextBasedValidator):
    """CSV rows must parse and agree on their column count."""

    def __init__(self):
        super().__init__("csv")

    def _validate_text(self, content: str, **options) -> bool:
        try:
            rows = [row for row in csv.reader(io.StringIO(content)) if row]
        except csv.Error as e:
            self._fail(f"unparseable CSV: {e}", csv_error=str(e))
        widths = {len(row) for row in rows}
        if len(widths) > 1:
            self._fail("rows have inconsistent column counts", column_counts=sorted(widths))
        return True


class HTMLValidator(TextBasedValidator):
    """Expects a complete document, as produced by the Word to HTML path."""

    def __init__(self):
        super().__init__("html")

    def _validate_text(self, content: str, **options) -> bool:
        lowered = content.lower()
        if "<html" not in lowered or "</html>" not in lowered:
            self._fail("missing <html> root element")
        return True


class JSONValidator(TextBasedValidator):
    def __init__(self):
        super().__init__("json")

    def _validate_text(self, content: str, **options) -> bool:
        try:
            parsed = json_lib.loads(content)
        except json_lib.JSONDecodeError as e:
            self._fail(f"invalid JSON: {e}", json_error=str(e), position=e.pos)

        if isinstance(parsed, (dict, list)) and len(parsed) == 0:
            self.logger.info("JSON file contains empty object/array")
        return True
