"""
Publishing and single-use download of converted artifacts.

A validated output is moved into ``converted/<token>``. A download claims it
by atomic rename into ``converted/claimed/``, so only one request can ever
obtain it, and the claimed file is deleted once the response has been sent.
Artifacts nobody downloads are reclaimed by the retention sweeper.
"""

import asyncio
import mimetypes
import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from fastapi.responses import FileResponse

from ..config import GatewaySettings
from .error_handling import NotFound
from .intake import sanitize_filename
from .logging_config import get_logger
from .mime_detector import MIME_TYPE_MAPPINGS
from .storage import StorageLayout

logger = get_logger(__name__)

TOKEN_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass
class ConvertedArtifact:
    """A published conversion result awaiting download."""
    token: str
    storage_path: Path
    display_name: str
    media_type: str
    size_bytes: int
    single_use: bool = True


def media_type_for(format_name: str) -> str:
    """Content type to serve for a target format."""
    mapped = MIME_TYPE_MAPPINGS.get(format_name.lower())
    if mapped:
        return mapped
    guessed, _ = mimetypes.guess_type(f"file.{format_name}")
    return guessed or "application/octet-stream"


class SingleUseFileResponse(FileResponse):
    """File response that deletes the file after sending, whatever the outcome."""

    def __init__(self, path: Path, storage: StorageLayout, **kwargs):
        super().__init__(path, **kwargs)
        self._storage = storage

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._storage.remove_file(self.path)


class ArtifactStore:
    """Owns the converted area: publish, claim, and retention."""

    def __init__(self, storage: StorageLayout, settings: GatewaySettings):
        self.storage = storage
        self.settings = settings

    def publish(self, output_path: Path, token: str, display_name: str, target_format: str) -> ConvertedArtifact:
        """
        Move a validated output into the converted area.

        The rename is atomic within the storage root, so an artifact is
        either absent or complete.
        """
        destination = self.storage.converted_path(token)
        os.replace(output_path, destination)
        now = time.time()
        os.utime(destination, (now, now))

        artifact = ConvertedArtifact(
            token=token,
            storage_path=destination,
            display_name=display_name,
            media_type=media_type_for(target_format),
            size_bytes=destination.stat().st_size,
        )
        logger.info(f"Published artifact {token} ({artifact.size_bytes} bytes)")
        return artifact

    def claim(self, token: Optional[str]) -> Path:
        """
        Take exclusive ownership of an artifact for download.

        Raises:
            NotFound: Malformed token, unknown token, or already claimed
        """
        if not token or not TOKEN_RE.match(token):
            raise NotFound("File not found")

        source = self.storage.converted_path(token)
        claimed = self.storage.claimed_dir / f"{token}-{uuid.uuid4().hex}"
        try:
            os.rename(source, claimed)
        except FileNotFoundError:
            raise NotFound("File not found")

        # Restart the retention clock so an in-flight download is not swept
        now = time.time()
        os.utime(claimed, (now, now))
        logger.info(f"Artifact {token} claimed for download")
        return claimed

    def download_response(self, token: Optional[str], name: Optional[str]) -> SingleUseFileResponse:
        """Claim an artifact and build the response that streams and deletes it."""
        claimed = self.claim(token)
        filename = sanitize_filename(name) if name else token
        extension = Path(filename).suffix.lstrip(".")
        media_type = media_type_for(extension) if extension else "application/octet-stream"

        return SingleUseFileResponse(
            claimed,
            self.storage,
            filename=filename,
            media_type=media_type,
        )

    def reclaim_expired(self) -> Dict[str, int]:
        """Delete expired artifacts and stale work files."""
        retention = self.settings.retention_seconds
        stale = self.settings.stale_work_seconds
        return {
            "converted": self.storage.sweep(self.storage.converted_dir, retention),
            "claimed": self.storage.sweep(self.storage.claimed_dir, retention),
            "intake": self.storage.sweep(self.storage.intake_dir, stale),
            "scratch": self.storage.sweep(self.storage.scratch_dir, stale),
        }

    async def retention_sweeper(self, interval: Optional[float] = None) -> None:
        """Run ``reclaim_expired`` periodically until cancelled."""
        interval = interval or self.settings.sweep_interval_seconds
        logger.info(f"Retention sweeper started (every {interval}s)")
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await asyncio.to_thread(self.reclaim_expired)
            except Exception:
                logger.exception("Retention sweep failed")
                continue
            if any(removed.values()):
                logger.info(f"Retention sweep removed {removed}")
