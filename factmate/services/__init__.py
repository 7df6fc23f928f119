"""Services for FactMate."""

from .llm_service import LLMService
from .document_loader import load_document, is_rich_document

__all__ = [
    "LLMService",
    "load_document",
    "is_rich_document",
]
