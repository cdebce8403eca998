"""Unit tests for service implementations."""

from unittest.mock import Mock, patch

import pytest

from images_transform.core.artifacts import ArtifactStore
from images_transform.core.exceptions import (
    ArtifactError,
    InvalidGeometryError,
    UnsupportedOrCorruptInputError,
)
from images_transform.core.factories import ProcessingPipelineFactory
from images_transform.core.config import Settings
from images_transform.core.observability import MetricsCollector
from images_transform.core.pipeline import TransformationPipeline
from images_transform.core.services import ImageProcessingService, OutputArtifact
from images_transform.core.validation import validate_options
from images_transform.testing.fakes import FakeLogger, create_corrupt_image_bytes, create_test_image


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "uploads", tmp_path / "outputs")


@pytest.fixture
def service(store):
    return ImageProcessingService(store, logger=FakeLogger())


def _files(directory):
    return sorted(directory.iterdir()) if directory.exists() else []


class TestImageProcessingService:
    """Tests for ImageProcessingService."""

    def test_process_to_file_success(self, service, store):
        plan = validate_options({"format": "png", "resize": {"width": 50}})

        artifact = service.process_to_file(plan, create_test_image(100, 80), "photo.jpg")

        assert isinstance(artifact, OutputArtifact)
        assert artifact.path.parent == store.output_dir
        assert artifact.path.suffix == ".png"
        assert artifact.download_name == artifact.path.name
        assert artifact.path.read_bytes() == artifact.image.data
        assert (artifact.image.width, artifact.image.height) == (50, 40)
        # Input never outlives the call
        assert _files(store.upload_dir) == []

    def test_process_bytes_leaves_no_files(self, service, store):
        result = service.process_bytes(validate_options({}), create_test_image(30, 30))

        assert result.format == "JPEG"
        assert _files(store.upload_dir) == []
        assert _files(store.output_dir) == []

    def test_geometry_failure_leaves_no_files(self, service, store):
        plan = validate_options({"crop": {"x": 0, "y": 0, "width": 500, "height": 10}})

        with pytest.raises(InvalidGeometryError):
            service.process_to_file(plan, create_test_image(100, 100), "photo.jpg")

        assert _files(store.upload_dir) == []
        assert _files(store.output_dir) == []

    def test_corrupt_input_leaves_no_files(self, service, store):
        with pytest.raises(UnsupportedOrCorruptInputError):
            service.process_to_file(validate_options({}), create_corrupt_image_bytes(), "bad.jpg")

        assert _files(store.upload_dir) == []
        assert _files(store.output_dir) == []

    def test_failure_is_logged(self, store):
        logger = FakeLogger()
        service = ImageProcessingService(store, logger=logger)

        with pytest.raises(UnsupportedOrCorruptInputError):
            service.process_bytes(validate_options({}), create_corrupt_image_bytes(), "bad.jpg")

        errors = logger.get_logs("ERROR")
        assert len(errors) == 1
        assert errors[0]["context"].metadata["error_kind"] == "UnsupportedOrCorruptInput"
        assert errors[0]["context"].metadata["filename"] == "bad.jpg"

    def test_correlation_id_propagated(self, store):
        logger = FakeLogger()
        service = ImageProcessingService(store, logger=logger)

        service.process_bytes(validate_options({}), create_test_image(10, 10), correlation_id="req-42")

        success = logger.get_logs("INFO")[0]
        assert success["message"] == "Successfully processed image"
        assert success["context"].correlation_id == "req-42"

    def test_output_write_failure_removes_partial_file(self, service, store):
        real_write = store.write

        def failing_write(path, data):
            if path.parent == store.output_dir:
                path.write_bytes(b"partial")
                raise ArtifactError("disk full")
            return real_write(path, data)

        with patch.object(store, "write", side_effect=failing_write):
            with pytest.raises(ArtifactError):
                service.process_to_file(validate_options({}), create_test_image(10, 10))

        assert _files(store.output_dir) == []

    def test_uses_injected_pipeline(self, store):
        pipeline = Mock(spec=TransformationPipeline)
        pipeline.decode.side_effect = UnsupportedOrCorruptInputError("nope")
        service = ImageProcessingService(store, pipeline=pipeline, logger=FakeLogger())

        with pytest.raises(UnsupportedOrCorruptInputError):
            service.process_bytes(validate_options({}), b"whatever")

        pipeline.decode.assert_called_once_with(b"whatever")
        pipeline.run.assert_not_called()

    def test_concurrent_requests_do_not_collide(self, service, store):
        from concurrent.futures import ThreadPoolExecutor

        plan = validate_options({"format": "png"})
        data = create_test_image(40, 40)
        with ThreadPoolExecutor(max_workers=8) as executor:
            artifacts = list(executor.map(lambda _: service.process_to_file(plan, data, "same.jpg"), range(16)))

        assert len({artifact.path for artifact in artifacts}) == 16
        assert _files(store.upload_dir) == []


class TestProcessingPipelineFactory:
    """Tests for ProcessingPipelineFactory."""

    def test_create_store_makes_directories(self, tmp_path):
        settings = Settings(work_dir=tmp_path)
        store = ProcessingPipelineFactory.create_store(settings)
        assert store.upload_dir == tmp_path / "uploads"
        assert store.output_dir == tmp_path / "outputs"
        assert store.upload_dir.is_dir()

    def test_create_service_uses_settings_quality(self, tmp_path):
        data = create_test_image(200, 200)
        low = ProcessingPipelineFactory.create_service(Settings(work_dir=tmp_path, default_quality=5))
        high = ProcessingPipelineFactory.create_service(Settings(work_dir=tmp_path, default_quality=100))
        plan = validate_options({})
        assert len(low.process_bytes(plan, data).data) < len(high.process_bytes(plan, data).data)

    def test_create_service_with_metrics(self, tmp_path):
        collector = MetricsCollector()
        service = ProcessingPipelineFactory.create_service(
            Settings(work_dir=tmp_path), metrics_collector=collector
        )
        service.process_bytes(validate_options({"rotation": 90}), create_test_image(10, 10))
        assert collector.get_summary("rotate")["total_operations"] == 1

    def test_create_coordinator_uses_strategy_setting(self, tmp_path):
        from images_transform.processors import ThreadPoolFanOut

        settings = Settings(work_dir=tmp_path, batch_strategy="multithread", batch_concurrency=3)
        coordinator = ProcessingPipelineFactory.create_coordinator(settings)
        assert isinstance(coordinator._strategy, ThreadPoolFanOut)

    def test_create_sweeper(self, tmp_path):
        settings = Settings(work_dir=tmp_path, sweep_interval_seconds=12, retention_seconds=34)
        store = ProcessingPipelineFactory.create_store(settings)
        sweeper = ProcessingPipelineFactory.create_sweeper(store, settings)
        assert sweeper._interval == 12
        assert sweeper._max_age == 34
        assert not sweeper.running
