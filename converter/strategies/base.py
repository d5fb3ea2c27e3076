"""Shared types for conversion strategies."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from ..config import ConversionCategory, GatewaySettings
from ..utils.external_tools import CancelToken


@dataclass
class ConversionContext:
    """Everything a strategy needs to convert one input file."""
    input_path: Path
    output_path: Path
    scratch_dir: Path
    source_mime: str
    category: ConversionCategory
    target_format: str
    original_filename: str
    settings: GatewaySettings
    cancel_token: CancelToken = field(default_factory=CancelToken, repr=False)

    @property
    def timeout(self) -> int:
        return self.settings.tool_timeout_seconds

    def discard_output(self) -> None:
        """Remove a partial output file."""
        try:
            self.output_path.unlink()
        except FileNotFoundError:
            pass


StrategyFunc = Callable[[ConversionContext], Awaitable[None]]
