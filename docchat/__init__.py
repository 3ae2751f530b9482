"""
Document Chat RAG core.

Multi-user document chat: uploaded text is chunked and embedded into named
vector stores, and per-user conversations retrieve relevant chunks to ground
generated answers.
"""

__version__ = "1.0.0"

from docchat.config.settings import settings

__all__ = ["settings"]
