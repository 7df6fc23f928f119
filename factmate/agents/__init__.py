"""Agents for the FactMate pipeline."""

from .extractor import ClaimExtractor
from .verifier import ClaimVerifier, extract_sources, parse_verification_response

__all__ = [
    "ClaimExtractor",
    "ClaimVerifier",
    "extract_sources",
    "parse_verification_response",
]
