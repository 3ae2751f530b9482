"""
Configuration management module.

This module provides centralized configuration management using Pydantic Settings
with support for environment variables and type validation.
"""

from .settings import Settings, settings, get_settings

__all__ = ["Settings", "settings", "get_settings"]
