"""Data models for FactMate."""

from .schemas import (
    Claim,
    ClaimType,
    Credentials,
    ProcessStage,
    SearchResponse,
    SessionState,
    Source,
    VerificationResult,
    VerificationStatus,
    WebReference,
)

__all__ = [
    "Claim",
    "ClaimType",
    "Credentials",
    "ProcessStage",
    "SearchResponse",
    "SessionState",
    "Source",
    "VerificationResult",
    "VerificationStatus",
    "WebReference",
]
