"""
HTTP API for document ingestion, store listing and chat.
"""

from .app import create_app
from .dependencies import ServiceContainer
from .exceptions import setup_exception_handlers

__all__ = ["create_app", "ServiceContainer", "setup_exception_handlers"]
