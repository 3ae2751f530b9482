"""
Ingestion trigger: fan-out policy and the upload/vectorize service.
"""

from .fanout import FanOutPolicy
from .service import IngestionResult, IngestionService

__all__ = ["FanOutPolicy", "IngestionResult", "IngestionService"]
