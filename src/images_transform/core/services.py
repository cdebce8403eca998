"""Single image processing: artifacts in, pipeline, artifact out."""

import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .artifacts import ArtifactStore
from .exceptions import ImagesTransformError
from .models import ProcessedImage, ProcessingPlan
from .observability import LogContext, StructuredLogger
from .pipeline import TransformationPipeline
from .protocols import LoggerProtocol, ProcessingService


@dataclass
class ProcessingContext:
    """Context for one image processing request."""

    correlation_id: str
    start_time: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)
    log_context: LogContext = field(default_factory=LogContext)

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time


@dataclass
class OutputArtifact:
    """A processed image that has been written under ``outputs/``."""

    path: Path
    image: ProcessedImage

    @property
    def download_name(self) -> str:
        return self.path.name


class ImageProcessingService(ProcessingService):
    """
    Runs one image through the pipeline with temp file bookkeeping.

    The input is written under ``uploads/`` and always removed before the
    call returns. The output is only written once the pipeline succeeded,
    so a failed request never leaves an output file behind.
    """

    def __init__(
        self,
        store: ArtifactStore,
        pipeline: Optional[TransformationPipeline] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._store = store
        self._pipeline = pipeline or TransformationPipeline()
        self._logger = logger or StructuredLogger("service")

    @property
    def store(self) -> ArtifactStore:
        return self._store

    def _new_context(self, filename: str, correlation_id: Optional[str]) -> ProcessingContext:
        correlation_id = correlation_id or f"img_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        log_context = LogContext(
            correlation_id=correlation_id,
            operation="process_image",
            component="image_processing_service",
        ).with_metadata(filename=filename)
        return ProcessingContext(correlation_id=correlation_id, log_context=log_context)

    def process_to_file(
        self,
        plan: ProcessingPlan,
        data: bytes,
        filename: str = "upload",
        correlation_id: Optional[str] = None,
    ) -> OutputArtifact:
        """
        Process ``data`` and leave the result under ``outputs/``.

        The caller owns the returned artifact and must discard it (or leave
        it to the sweep) once delivered.

        Raises:
            PipelineError: For geometry or decode failures
            ArtifactError: For filesystem failures
            InternalError: For anything unexpected
        """
        context = self._new_context(filename, correlation_id)
        log_context = context.log_context

        try:
            with self._store.temp_input(data, filename) as input_path:
                self._logger.debug("Stored input", log_context.with_operation("store_input"), path=input_path.name)
                source = self._store.read(input_path)

                self._logger.debug("Decoding image", log_context.with_operation("decode"))
                image = self._pipeline.decode(source)

                processed = self._pipeline.run(plan, image, log_context)

            with self._store.temp_output(processed.extension) as output_path:
                self._store.write(output_path, processed.data)

        except ImagesTransformError as e:
            self._logger.error(
                "Image processing failed",
                log_context.with_metadata(error_kind=e.kind, error=str(e)),
            )
            raise

        self._logger.info(
            "Successfully processed image",
            log_context,
            output=output_path.name,
            processing_time_ms=round(context.elapsed * 1000, 2),
        )
        return OutputArtifact(path=output_path, image=processed)

    def process_bytes(
        self,
        plan: ProcessingPlan,
        data: bytes,
        filename: str = "upload",
        correlation_id: Optional[str] = None,
    ) -> ProcessedImage:
        """Process ``data`` and return the result in memory; no file outlives the call."""
        artifact = self.process_to_file(plan, data, filename, correlation_id)
        self._store.discard(artifact.path)
        return artifact.image
