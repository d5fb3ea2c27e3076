"""
Conversion strategies.

Every strategy is an ``async def strategy(ctx)`` that writes
``ctx.output_path`` or raises a GatewayError.
"""

from typing import Dict

from ..config import ConversionStrategy
from .archive import archive_strategy
from .base import ConversionContext, StrategyFunc
from .document import document_strategy
from .image import image_strategy
from .media import audio_strategy, video_strategy

STRATEGY_REGISTRY: Dict[ConversionStrategy, StrategyFunc] = {
    ConversionStrategy.PILLOW: image_strategy,
    ConversionStrategy.FFMPEG_VIDEO: video_strategy,
    ConversionStrategy.FFMPEG_AUDIO: audio_strategy,
    ConversionStrategy.ZIP_ARCHIVE: archive_strategy,
    ConversionStrategy.TAR_ARCHIVE: archive_strategy,
    ConversionStrategy.SEVENZIP_ARCHIVE: archive_strategy,
    ConversionStrategy.DOCUMENT: document_strategy,
}

__all__ = ["ConversionContext", "StrategyFunc", "STRATEGY_REGISTRY"]
