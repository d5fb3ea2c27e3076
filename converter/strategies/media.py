"""
Video and audio transcoding with ffmpeg.

Commands are built with ffmpeg-python and executed through the bounded
subprocess runner, so a timeout or a cancelled request kills ffmpeg.
"""

from typing import Any, Dict

import ffmpeg

from ..utils.error_handling import UnsupportedConversion
from ..utils.external_tools import run_tool
from ..utils.logging_config import get_logger
from .base import ConversionContext

logger = get_logger(__name__)

# H.264 and friends reject odd frame sizes
EVEN_DIMENSIONS_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"

VIDEO_OUTPUTS: Dict[str, Dict[str, Any]] = {
    "mp4": {
        "f": "mp4",
        "vcodec": "libx264",
        "acodec": "aac",
        "pix_fmt": "yuv420p",
        "vf": EVEN_DIMENSIONS_FILTER,
        "movflags": "+faststart",
        "preset": "medium",
        "crf": 23,
    },
    "mov": {
        "f": "mov",
        "vcodec": "libx264",
        "acodec": "aac",
        "pix_fmt": "yuv420p",
        "vf": EVEN_DIMENSIONS_FILTER,
        "preset": "medium",
        "crf": 23,
    },
    "mkv": {
        "f": "matroska",
        "vcodec": "libx264",
        "acodec": "aac",
        "pix_fmt": "yuv420p",
        "vf": EVEN_DIMENSIONS_FILTER,
        "preset": "medium",
        "crf": 23,
    },
    "avi": {
        "f": "avi",
        "vcodec": "mpeg4",
        "acodec": "libmp3lame",
        "qscale:v": 4,
    },
    "webm": {
        "f": "webm",
        "vcodec": "libvpx-vp9",
        "acodec": "libopus",
        "crf": 32,
        "b:v": 0,
    },
}

AUDIO_OUTPUTS: Dict[str, Dict[str, Any]] = {
    "mp3": {
        "f": "mp3",
        "acodec": "libmp3lame",
        "audio_bitrate": "192k",
    },
    "wav": {
        "f": "wav",
        "acodec": "pcm_s16le",
    },
}


def build_command(ctx: ConversionContext, output_options: Dict[str, Any], drop_video: bool = False) -> list:
    """Build the ffmpeg argument vector for a conversion."""
    options = dict(output_options)
    if drop_video:
        options["vn"] = None

    stream = ffmpeg.input(str(ctx.input_path))
    stream = ffmpeg.output(stream, str(ctx.output_path), **options)
    return ffmpeg.compile(
        stream,
        cmd=[ctx.settings.ffmpeg_binary, "-nostdin", "-hide_banner", "-loglevel", "error"],
        overwrite_output=True,
    )


async def _transcode(ctx: ConversionContext, output_options: Dict[str, Any], drop_video: bool) -> None:
    args = build_command(ctx, output_options, drop_video=drop_video)
    try:
        await run_tool(args, tool="ffmpeg", timeout=ctx.timeout, cwd=str(ctx.scratch_dir))
    except BaseException:
        ctx.discard_output()
        raise


async def video_strategy(ctx: ConversionContext) -> None:
    """Transcode a video into mp4, mov, avi, mkv or webm."""
    options = VIDEO_OUTPUTS.get(ctx.target_format)
    if options is None:
        raise UnsupportedConversion(f"Conversion of video to {ctx.target_format} is not supported")

    await _transcode(ctx, options, drop_video=False)
    logger.info(f"Video transcoded to {ctx.target_format}")


async def audio_strategy(ctx: ConversionContext) -> None:
    """Transcode audio into mp3 or wav, dropping any video stream."""
    options = AUDIO_OUTPUTS.get(ctx.target_format)
    if options is None:
        raise UnsupportedConversion(f"Conversion of audio to {ctx.target_format} is not supported")

    await _transcode(ctx, options, drop_video=True)
    logger.info(f"Audio transcoded to {ctx.target_format}")
