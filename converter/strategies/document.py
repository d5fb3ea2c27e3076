"""
Document conversions.

The route for a (source format, target) pair decides which tool runs:
LibreOffice in headless mode for office formats and PDF, mammoth for Word to
HTML or text, PyMuPDF for PDF text extraction, and pandas for spreadsheet
tables.
"""

import html
import json
import shutil
from pathlib import Path
from typing import Callable, Dict

import fitz  # PyMuPDF
import mammoth
import pandas as pd

from ..config import DocumentTool
from ..utils.conversion_lookup import get_document_routes
from ..utils.error_handling import ConversionFailed, GatewayError, UnsupportedConversion
from ..utils.external_tools import CancelToken, run_blocking, run_tool
from ..utils.logging_config import get_logger
from ..utils.mime_detector import get_format_from_mime_type
from .base import ConversionContext

logger = get_logger(__name__)

# LibreOffice export filters where the bare extension is ambiguous
LIBREOFFICE_FILTERS = {
    "pdf": "pdf",
    "docx": 'docx:"MS Word 2007 XML"',
    "odt": "odt",
    "xlsx": 'xlsx:"Calc MS Excel 2007 XML"',
    "ods": "ods",
    "pptx": 'pptx:"Impress MS PowerPoint 2007 XML"',
    "odp": "odp",
}

# Import filters forced for specific source formats
LIBREOFFICE_IMPORT_FILTERS = {
    ("pdf", "docx"): "writer_pdf_import",
}

SPREADSHEET_ENGINES = {
    "xlsx": "openpyxl",
    "xls": "xlrd",
    "ods": "odf",
}


# ===== LIBREOFFICE =====

async def convert_with_libreoffice(ctx: ConversionContext, source_format: str) -> None:
    """
    Run ``soffice --convert-to`` inside the job's scratch directory.

    Each job gets its own LibreOffice user profile so concurrent conversions
    do not contend for the profile lock.
    """
    source = ctx.scratch_dir / f"source.{source_format}"
    outdir = ctx.scratch_dir / "lo-out"
    profile = ctx.scratch_dir / "lo-profile"
    shutil.copyfile(ctx.input_path, source)
    outdir.mkdir()

    args = [
        ctx.settings.soffice_binary,
        "--headless",
        "--norestore",
        "--nolockcheck",
        f"-env:UserInstallation={profile.as_uri()}",
    ]
    import_filter = LIBREOFFICE_IMPORT_FILTERS.get((source_format, ctx.target_format))
    if import_filter:
        args.append(f"--infilter={import_filter}")
    args += [
        "--convert-to", LIBREOFFICE_FILTERS.get(ctx.target_format, ctx.target_format),
        "--outdir", str(outdir),
        str(source),
    ]

    await run_tool(args, tool="LibreOffice", timeout=ctx.timeout, cwd=str(ctx.scratch_dir))

    produced = outdir / f"source.{ctx.target_format}"
    if not produced.exists():
        # soffice exits 0 even when it could not load or export the document
        raise ConversionFailed("LibreOffice did not produce an output file")
    shutil.move(str(produced), str(ctx.output_path))


# ===== MAMMOTH =====

def _docx_to_html(input_path: Path, output_path: Path, title: str) -> None:
    with open(input_path, "rb") as docx_file:
        result = mammoth.convert_to_html(docx_file)
    for message in result.messages:
        logger.debug(f"mammoth: {message}")

    document = (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n<body>\n"
        f"{result.value}\n"
        "</body>\n</html>\n"
    )
    output_path.write_text(document, encoding="utf-8")


def _docx_to_text(input_path: Path, output_path: Path) -> None:
    with open(input_path, "rb") as docx_file:
        result = mammoth.extract_raw_text(docx_file)
    output_path.write_text(result.value, encoding="utf-8")


async def convert_with_mammoth(ctx: ConversionContext, source_format: str) -> None:
    title = ctx.original_filename.rsplit(".", 1)[0] if "." in ctx.original_filename else ctx.original_filename
    if ctx.target_format == "html":
        await run_blocking(_docx_to_html, ctx.input_path, ctx.output_path, title,
                           timeout=ctx.timeout, tool="mammoth", token=ctx.cancel_token)
    else:
        await run_blocking(_docx_to_text, ctx.input_path, ctx.output_path,
                           timeout=ctx.timeout, tool="mammoth", token=ctx.cancel_token)


# ===== PYMUPDF =====

def _pdf_to_text(input_path: Path, output_path: Path, token: CancelToken) -> None:
    pages = []
    with fitz.open(str(input_path), filetype="pdf") as doc:
        if doc.page_count == 0:
            raise ValueError("PDF has no pages")
        for page in doc:
            token.check()
            pages.append(page.get_text("text"))
    output_path.write_text("\n\f\n".join(pages), encoding="utf-8")


async def convert_with_pymupdf(ctx: ConversionContext, source_format: str) -> None:
    await run_blocking(_pdf_to_text, ctx.input_path, ctx.output_path, ctx.cancel_token,
                       timeout=ctx.timeout, tool="PyMuPDF", token=ctx.cancel_token)


# ===== PANDAS =====

def read_first_sheet(input_path: Path, source_format: str) -> pd.DataFrame:
    """Read the first sheet of a spreadsheet into a DataFrame."""
    return pd.read_excel(input_path, sheet_name=0, engine=SPREADSHEET_ENGINES[source_format])


def dataframe_to_markdown(df: pd.DataFrame, title: str = "") -> str:
    """Render a DataFrame as a Markdown table."""
    header = f"# {title}\n\n" if title else ""
    if df.empty and len(df.columns) == 0:
        return header + "_No data found in the spreadsheet._\n"

    df = df.copy()
    df.columns = [str(col).strip() for col in df.columns]
    df = df.fillna("").astype(str)

    lines = [
        "| " + " | ".join(c.replace("|", "\\|") for c in df.columns) + " |",
        "| " + " | ".join(["---"] * len(df.columns)) + " |",
    ]
    for _, row in df.iterrows():
        lines.append("| " + " | ".join(str(val).replace("|", "\\|") for val in row) + " |")

    return header + "\n".join(lines) + "\n"


def dataframe_to_text(df: pd.DataFrame) -> str:
    """Render a DataFrame as tab separated text with a header row."""
    df = df.copy()
    df.columns = [str(col).strip() for col in df.columns]
    df = df.fillna("").astype(str)

    lines = ["\t".join(df.columns)]
    for _, row in df.iterrows():
        lines.append("\t".join(str(val) for val in row))
    return "\n".join(lines) + "\n"


def _spreadsheet_to(input_path: Path, output_path: Path, source_format: str, target: str, title: str) -> None:
    df = read_first_sheet(input_path, source_format)

    if target == "csv":
        df.to_csv(output_path, index=False)
    elif target == "json":
        records = json.loads(df.to_json(orient="records", date_format="iso"))
        output_path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
    elif target == "md":
        output_path.write_text(dataframe_to_markdown(df, title), encoding="utf-8")
    else:
        output_path.write_text(dataframe_to_text(df), encoding="utf-8")


async def convert_with_pandas(ctx: ConversionContext, source_format: str) -> None:
    title = ctx.original_filename.rsplit(".", 1)[0] if "." in ctx.original_filename else ctx.original_filename
    await run_blocking(_spreadsheet_to, ctx.input_path, ctx.output_path, source_format, ctx.target_format, title,
                       timeout=ctx.timeout, tool="pandas", token=ctx.cancel_token)


DOCUMENT_TOOL_HANDLERS: Dict[DocumentTool, Callable] = {
    DocumentTool.LIBREOFFICE: convert_with_libreoffice,
    DocumentTool.MAMMOTH: convert_with_mammoth,
    DocumentTool.PYMUPDF: convert_with_pymupdf,
    DocumentTool.PANDAS: convert_with_pandas,
}


async def document_strategy(ctx: ConversionContext) -> None:
    """Convert a document using the first tool routed for its source format."""
    source_format = get_format_from_mime_type(ctx.source_mime)
    routes = get_document_routes(source_format, ctx.target_format)
    if not routes:
        raise UnsupportedConversion(
            f"Conversion of {source_format or 'this document'} to {ctx.target_format} is not supported"
        )

    tool, description = routes[0]
    logger.info(f"Document conversion {source_format} -> {ctx.target_format} via {tool.value}: {description}")

    try:
        await DOCUMENT_TOOL_HANDLERS[tool](ctx, source_format)
    except GatewayError:
        ctx.discard_output()
        raise
    except (OSError, ValueError, RuntimeError, KeyError) as e:
        ctx.discard_output()
        raise ConversionFailed(f"Document conversion with {tool.value} failed", details=str(e)) from e
