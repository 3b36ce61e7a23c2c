"""Configuration for the extraction pipeline."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
