"""Configuration management for termbridge.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides, including ``BRIDGE_PORT``.
"""

from termbridge.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
