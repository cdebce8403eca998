"""HTTP transport for the image transform service."""

from .app import create_application

__all__ = ["create_application"]
