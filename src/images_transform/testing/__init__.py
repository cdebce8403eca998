"""Testing utilities and fakes for the image transform service."""

from .fakes import (
    FakeLogger,
    FakeProcessingService,
    create_batch_sources,
    create_corrupt_image_bytes,
    create_test_image,
)

__all__ = [
    "FakeLogger",
    "FakeProcessingService",
    "create_batch_sources",
    "create_corrupt_image_bytes",
    "create_test_image",
]
