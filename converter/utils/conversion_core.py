"""
Core conversion lifecycle for the /convert endpoint.

A conversion moves through ``Received -> Resolved -> Converting`` and ends in
``Completed`` or ``Failed``. Whatever the outcome, the uploaded input and the
job's scratch directory are removed before the request returns.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi import UploadFile

from ..config import ConversionCategory, GatewaySettings
from ..strategies import STRATEGY_REGISTRY, ConversionContext
from ..validate import ValidationError, validate_output
from .artifact_store import ArtifactStore, ConvertedArtifact
from .conversion_lookup import get_strategy, normalize_target, parse_category
from .error_handling import ConversionFailed, GatewayError, InternalIOError
from .external_tools import CancelToken, run_blocking
from .intake import UploadedFile, UploadIntake
from .mime_detector import TypeResolver, check_category
from .storage import StorageLayout, new_storage_id

# Set up logging
logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStage(str, Enum):
    RECEIVED = "received"
    RESOLVED = "resolved"
    CONVERTING = "converting"
    COMPLETED = "completed"
    FAILED = "failed"


# Status transitions only ever move forward
_ALLOWED_TRANSITIONS: Dict[JobStatus, set] = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}

_STAGE_STATUS = {
    JobStage.RECEIVED: JobStatus.PENDING,
    JobStage.RESOLVED: JobStatus.PENDING,
    JobStage.CONVERTING: JobStatus.RUNNING,
    JobStage.COMPLETED: JobStatus.SUCCEEDED,
    JobStage.FAILED: JobStatus.FAILED,
}


@dataclass
class ConversionJob:
    """One conversion of one upload."""
    job_id: str
    source: UploadedFile
    category: ConversionCategory
    target_format: str
    output_storage_id: str
    status: JobStatus = JobStatus.PENDING
    stage: JobStage = JobStage.RECEIVED
    error: Optional[GatewayError] = field(default=None, repr=False)

    def advance(self, stage: JobStage, error: Optional[GatewayError] = None) -> None:
        """
        Move the job to a new lifecycle stage.

        Raises:
            RuntimeError: If the implied status change would move backwards
        """
        status = _STAGE_STATUS[stage]
        if status != self.status and status not in _ALLOWED_TRANSITIONS[self.status]:
            raise RuntimeError(f"Illegal job transition {self.status.value} -> {status.value}")
        if stage == JobStage.FAILED and error is None:
            raise RuntimeError("A failed job must carry an error")

        self.status = status
        self.stage = stage
        self.error = error if stage == JobStage.FAILED else None
        logger.info(f"Job {self.job_id}: {stage.value}")


def display_name_for(original_filename: str, requested_target: str) -> str:
    """Original name with its last extension replaced by the requested target."""
    stem = original_filename.rsplit(".", 1)[0] if "." in original_filename else original_filename
    return f"{stem or 'file'}.{requested_target}"


def build_download_url(token: str, display_name: str) -> str:
    return "/download?" + urlencode({"file": token, "name": display_name})


class ConversionLifecycle:
    """Runs one upload through intake, resolution, conversion and publishing."""

    def __init__(
        self,
        storage: StorageLayout,
        artifacts: ArtifactStore,
        settings: GatewaySettings,
        resolver: Optional[TypeResolver] = None,
    ):
        self.storage = storage
        self.artifacts = artifacts
        self.settings = settings
        self.intake = UploadIntake(storage, settings.max_upload_bytes)
        self.resolver = resolver or TypeResolver()

    async def convert_upload(
        self,
        upload: Optional[UploadFile],
        target_format: Optional[str],
        conversion_type: Optional[str],
    ) -> ConvertedArtifact:
        """
        Convert an upload and publish the result.

        Args:
            upload: The uploaded file part
            target_format: Requested output format (as sent by the client)
            conversion_type: Requested category

        Returns:
            The published artifact

        Raises:
            GatewayError: For every failure; see the error taxonomy
        """
        # Parameter errors are reported before anything is written
        category = parse_category(conversion_type)
        target = normalize_target(target_format)
        requested_target = target_format.strip().lower()
        strategy, description = get_strategy(category, target, self.settings)

        source = await self.intake.accept(upload)
        job: Optional[ConversionJob] = None
        scratch_dir: Optional[Path] = None

        try:
            job = ConversionJob(
                job_id=new_storage_id(),
                source=source,
                category=category,
                target_format=target,
                output_storage_id=new_storage_id(),
            )
            logger.info(
                f"Job {job.job_id}: received {source.storage_id} -> {category.value}:{target} ({description})"
            )

            resolution = await asyncio.to_thread(self.resolver.resolve, source.storage_path, source.declared_mime)
            source.detected_mime = resolution.mime
            source.verified = resolution.verified
            check_category(resolution, category, self.settings.allow_unverified_types)
            job.advance(JobStage.RESOLVED)

            scratch_dir = self.storage.create_scratch_dir(job.job_id)
            ctx = ConversionContext(
                input_path=source.storage_path,
                output_path=scratch_dir / f"output.{target}",
                scratch_dir=scratch_dir,
                source_mime=resolution.mime,
                category=category,
                target_format=target,
                original_filename=source.original_filename,
                settings=self.settings,
            )

            job.advance(JobStage.CONVERTING)
            await self._run_strategy(STRATEGY_REGISTRY[strategy], ctx)
            await run_blocking(
                self._verify_output, ctx.output_path, target, ctx.cancel_token,
                timeout=ctx.timeout, tool="validator", token=ctx.cancel_token,
            )

            artifact = self.artifacts.publish(
                ctx.output_path,
                job.output_storage_id,
                display_name_for(source.original_filename, requested_target),
                target,
            )
            job.advance(JobStage.COMPLETED)
            return artifact

        except GatewayError as e:
            if job is not None:
                job.advance(JobStage.FAILED, e)
            raise
        except OSError as e:
            error = InternalIOError("Storage operation failed", details=str(e))
            if job is not None:
                job.advance(JobStage.FAILED, error)
            raise error from e
        finally:
            self.storage.remove_file(source.storage_path)
            if scratch_dir is not None:
                self.storage.remove_tree(scratch_dir)

    async def _run_strategy(self, strategy_func, ctx: ConversionContext) -> None:
        try:
            await strategy_func(ctx)
        except GatewayError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Strategy raised an unexpected error")
            raise ConversionFailed("Conversion failed", details=str(e)) from e

    def _verify_output(self, output_path: Path, target: str, token: CancelToken) -> None:
        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise ConversionFailed("Conversion produced no output")
        try:
            validate_output(output_path, target, token=token)
        except ValidationError as e:
            raise ConversionFailed("Conversion produced an invalid file", details=str(e)) from e
