"""
Image re-encoding with Pillow.

Raster inputs are decoded by Pillow. SVG inputs are rasterized with PyMuPDF
first, since Pillow has no vector decoder.
"""

import io
from pathlib import Path

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from ..utils.error_handling import ConversionFailed, UnsupportedFormat
from ..utils.external_tools import run_blocking
from ..utils.logging_config import get_logger
from .base import ConversionContext

logger = get_logger(__name__)

# Target format -> Pillow encoder name and save options
PILLOW_ENCODERS = {
    "jpeg": ("JPEG", {"quality": 90, "optimize": True}),
    "png": ("PNG", {"optimize": True}),
    "webp": ("WEBP", {"quality": 90, "method": 4}),
}

SVG_RENDER_DPI = 144


def _open_source(path: Path, source_mime: str) -> Image.Image:
    if source_mime == "image/svg+xml":
        with fitz.open(str(path), filetype="svg") as doc:
            pix = doc[0].get_pixmap(dpi=SVG_RENDER_DPI, alpha=True)
            return Image.open(io.BytesIO(pix.tobytes("png")))
    return Image.open(path)


def _flatten_for_jpeg(img: Image.Image) -> Image.Image:
    """JPEG has no alpha channel: composite transparent images onto white."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def convert_image(input_path: Path, output_path: Path, source_mime: str, target: str) -> None:
    """Decode an image and re-encode it in the target format."""
    encoder, options = PILLOW_ENCODERS[target]

    with _open_source(input_path, source_mime) as img:
        # Animated sources keep their first frame
        img.seek(0)
        if target == "jpeg":
            out = _flatten_for_jpeg(img)
        elif img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            out = img.convert("RGBA")
        else:
            out = img
        out.save(output_path, format=encoder, **options)


async def image_strategy(ctx: ConversionContext) -> None:
    """Re-encode an image as JPEG, PNG or WebP."""
    if ctx.target_format not in PILLOW_ENCODERS:
        raise UnsupportedFormat(f"Unsupported image format: {ctx.target_format}")

    try:
        await run_blocking(
            convert_image, ctx.input_path, ctx.output_path, ctx.source_mime, ctx.target_format,
            timeout=ctx.timeout, tool="Pillow", token=ctx.cancel_token,
        )
    except ConversionFailed:
        ctx.discard_output()
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        ctx.discard_output()
        raise ConversionFailed("Image could not be decoded", details=str(e)) from e
    except (OSError, ValueError, RuntimeError) as e:
        ctx.discard_output()
        raise ConversionFailed("Image conversion failed", details=str(e)) from e

    logger.info(f"Image converted to {ctx.target_format}")
