"""Image transform service: validated option plans applied to uploaded images."""

__version__ = "0.1.0"
