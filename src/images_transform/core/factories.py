"""Factory classes for creating configured service instances."""

from typing import Optional

from .artifacts import ArtifactStore, ArtifactSweeper
from .batch import BatchCoordinator
from .config import Settings, get_settings
from .observability import MetricsCollector
from .pipeline import TransformationPipeline
from .services import ImageProcessingService


class ProcessingPipelineFactory:
    """Factory for creating the complete processing stack from settings."""

    @staticmethod
    def create_store(settings: Optional[Settings] = None) -> ArtifactStore:
        settings = settings or get_settings()
        store = ArtifactStore(settings.upload_dir, settings.output_dir)
        store.ensure_directories()
        return store

    @staticmethod
    def create_service(
        settings: Optional[Settings] = None,
        store: Optional[ArtifactStore] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> ImageProcessingService:
        """Create a single image service with its store and pipeline."""
        settings = settings or get_settings()
        if store is None:
            store = ProcessingPipelineFactory.create_store(settings)
        pipeline = TransformationPipeline(
            default_quality=settings.default_quality,
            metrics_collector=metrics_collector,
        )
        return ImageProcessingService(store, pipeline)

    @staticmethod
    def create_coordinator(
        settings: Optional[Settings] = None,
        service: Optional[ImageProcessingService] = None,
    ) -> BatchCoordinator:
        """Create a batch coordinator using the configured fan-out strategy."""
        from ..processors import get_strategy

        settings = settings or get_settings()
        if service is None:
            service = ProcessingPipelineFactory.create_service(settings)
        strategy = get_strategy(settings.batch_strategy, settings.batch_concurrency)
        return BatchCoordinator(service, strategy)

    @staticmethod
    def create_sweeper(
        store: ArtifactStore, settings: Optional[Settings] = None
    ) -> ArtifactSweeper:
        settings = settings or get_settings()
        return ArtifactSweeper(
            store,
            interval=settings.sweep_interval_seconds,
            max_age=settings.retention_seconds,
        )
