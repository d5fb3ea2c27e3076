"""
Unit tests for the Pillow image strategy.
"""

import io

import pytest
from PIL import Image

from converter.config import ConversionCategory
from converter.strategies.base import ConversionContext
from converter.strategies.image import image_strategy
from converter.utils.error_handling import ConversionFailed, UnsupportedFormat

from conftest import make_image


@pytest.fixture
def make_ctx(tmp_path, settings):
    def _make(content: bytes, source_mime: str, target: str) -> ConversionContext:
        input_path = tmp_path / "input"
        input_path.write_bytes(content)
        scratch = tmp_path / "scratch"
        scratch.mkdir(exist_ok=True)
        return ConversionContext(
            input_path=input_path,
            output_path=scratch / f"output.{target}",
            scratch_dir=scratch,
            source_mime=source_mime,
            category=ConversionCategory.IMAGE,
            target_format=target,
            original_filename=f"picture.{source_mime.split('/')[-1]}",
            settings=settings,
        )
    return _make


class TestImageStrategy:

    @pytest.mark.asyncio
    async def test_jpeg_to_webp(self, make_ctx, jpeg_bytes):
        ctx = make_ctx(jpeg_bytes, "image/jpeg", "webp")
        await image_strategy(ctx)

        data = ctx.output_path.read_bytes()
        assert data[:4] == b"RIFF"
        assert data[8:12] == b"WEBP"

    @pytest.mark.asyncio
    async def test_rgba_png_to_jpeg_flattens_alpha(self, make_ctx, png_bytes):
        ctx = make_ctx(png_bytes, "image/png", "jpeg")
        await image_strategy(ctx)

        with Image.open(ctx.output_path) as img:
            assert img.format == "JPEG"
            assert img.mode == "RGB"

    @pytest.mark.asyncio
    async def test_palette_to_jpeg(self, make_ctx):
        ctx = make_ctx(make_image("GIF", mode="P"), "image/gif", "jpeg")
        await image_strategy(ctx)
        assert ctx.output_path.read_bytes()[:3] == b"\xff\xd8\xff"

    @pytest.mark.asyncio
    async def test_png_keeps_alpha_in_webp(self, make_ctx, png_bytes):
        ctx = make_ctx(png_bytes, "image/png", "webp")
        await image_strategy(ctx)
        with Image.open(ctx.output_path) as img:
            assert img.mode == "RGBA"

    @pytest.mark.asyncio
    async def test_bmp_to_png(self, make_ctx):
        ctx = make_ctx(make_image("BMP"), "image/bmp", "png")
        await image_strategy(ctx)
        with Image.open(ctx.output_path) as img:
            assert img.format == "PNG"
            assert img.size == (32, 24)

    @pytest.mark.asyncio
    async def test_svg_rasterized(self, make_ctx):
        svg = (
            b'<svg xmlns="http://www.w3.org/2000/svg" width="40" height="20">'
            b'<rect width="40" height="20" fill="red"/></svg>'
        )
        ctx = make_ctx(svg, "image/svg+xml", "png")
        await image_strategy(ctx)
        with Image.open(ctx.output_path) as img:
            assert img.format == "PNG"

    @pytest.mark.asyncio
    async def test_corrupt_input(self, make_ctx):
        ctx = make_ctx(b"\x89PNG\r\n\x1a\n" + b"garbage" * 10, "image/png", "jpeg")
        with pytest.raises(ConversionFailed):
            await image_strategy(ctx)
        assert not ctx.output_path.exists()

    @pytest.mark.asyncio
    async def test_unknown_target(self, make_ctx, png_bytes):
        ctx = make_ctx(png_bytes, "image/png", "tiff")
        with pytest.raises(UnsupportedFormat):
            await image_strategy(ctx)

    @pytest.mark.asyncio
    async def test_decompression_bomb(self, make_ctx, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 10)
        ctx = make_ctx(make_image("PNG", size=(100, 100)), "image/png", "jpeg")
        with pytest.raises(ConversionFailed):
            await image_strategy(ctx)
