"""Pydantic data models for the FactMate pipeline."""

from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, SecretStr
from datetime import datetime
import uuid


class ClaimType(str, Enum):
    """Kind of claim, which selects the verification instruction."""
    REFERENCE = "reference"
    STATISTIC = "statistic"
    GENERAL = "general"

    @classmethod
    def from_wire(cls, value: Any) -> "ClaimType":
        """Map an extraction payload type (PAPER/DATA/GENERAL) to a ClaimType.

        Anything unrecognized is treated as a general statement.
        """
        if value == "PAPER":
            return cls.REFERENCE
        if value == "DATA":
            return cls.STATISTIC
        return cls.GENERAL

    @property
    def label(self) -> str:
        return CLAIM_TYPE_LABELS[self]


CLAIM_TYPE_LABELS = {
    ClaimType.REFERENCE: "Reference",
    ClaimType.STATISTIC: "Statistic",
    ClaimType.GENERAL: "General",
}


class VerificationStatus(str, Enum):
    """Verdict for a claim as shown in the report."""
    VERIFIED_TRUE = "True"
    VERIFIED_FALSE = "False"
    UNCERTAIN = "Uncertain"
    PENDING = "Pending"


class ProcessStage(str, Enum):
    """Stage of a fact-checking session."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    COMPLETE = "complete"


class Claim(BaseModel):
    """An atomic factual statement extracted from source text."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str = Field(..., description="The atomic claim text")
    type: ClaimType = Field(default=ClaimType.GENERAL, description="Kind of claim")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "5b0f1c1e-8f7a-4a53-9d55-3f1f8c2a9b10",
                "text": "The Eiffel Tower is 330 meters tall.",
                "type": "statistic"
            }
        }


class Source(BaseModel):
    """A web page cited by the search-grounded verification call."""

    title: str = Field(..., description="Title of the source page")
    uri: str = Field(..., description="URL of the source page")

    class Config:
        frozen = True


class WebReference(BaseModel):
    """Raw grounding reference as returned alongside an LLM response."""

    title: Optional[str] = None
    uri: Optional[str] = None


class SearchResponse(BaseModel):
    """Free-text LLM response together with its web references."""

    text: str = ""
    references: List[WebReference] = Field(default_factory=list)


class VerificationResult(BaseModel):
    """Result of verifying a single claim."""

    claim_id: str = Field(..., description="Id of the verified claim")
    status: VerificationStatus = Field(..., description="Verdict for the claim")
    reasoning: str = Field(default="", description="Explanation of the verdict")
    sources: List[Source] = Field(
        default_factory=list,
        description="Web sources consulted, in the order returned"
    )

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "claim_id": "5b0f1c1e-8f7a-4a53-9d55-3f1f8c2a9b10",
                "status": "True",
                "reasoning": "The official site lists the height as 330 metres.",
                "sources": [
                    {"title": "The Eiffel Tower", "uri": "https://www.toureiffel.paris/en"}
                ]
            }
        }


class Credentials(BaseModel):
    """API keys entered by the user for one session.

    Only the LLM key is used. The search and scholar keys are accepted
    for compatibility with the input form but are not wired to anything.
    """

    llm_api_key: SecretStr = Field(default=SecretStr(""))
    search_api_key: Optional[SecretStr] = None
    scholar_api_key: Optional[SecretStr] = None

    @property
    def has_llm_key(self) -> bool:
        return bool(self.llm_api_key.get_secret_value().strip())


class SessionState(BaseModel):
    """Snapshot of a fact-checking session.

    Instances are never mutated; each transition produces a new value.
    """

    run_id: Optional[str] = Field(
        default=None,
        description="Identifier of the submission that produced this state"
    )
    stage: ProcessStage = Field(default=ProcessStage.IDLE)
    claims: List[Claim] = Field(default_factory=list)
    results: Dict[str, VerificationResult] = Field(default_factory=dict)
    error: Optional[str] = Field(default=None, description="User-visible error message")

    class Config:
        frozen = True

    @property
    def is_active(self) -> bool:
        return self.stage in (ProcessStage.EXTRACTING, ProcessStage.VERIFYING)


# API Request/Response Models

class CredentialsRequest(BaseModel):
    """Request model for setting session credentials."""

    llm_api_key: str = Field(..., description="OpenAI API key")
    search_api_key: Optional[str] = Field(default=None, description="Optional, currently unused")
    scholar_api_key: Optional[str] = Field(default=None, description="Optional, currently unused")

    def to_credentials(self) -> Credentials:
        return Credentials(
            llm_api_key=SecretStr(self.llm_api_key),
            search_api_key=SecretStr(self.search_api_key) if self.search_api_key else None,
            scholar_api_key=SecretStr(self.scholar_api_key) if self.scholar_api_key else None,
        )


class CredentialsStatus(BaseModel):
    """Which credentials are set, without revealing them."""

    llm_api_key: bool = False
    search_api_key: bool = False
    scholar_api_key: bool = False

    @classmethod
    def from_credentials(cls, credentials: Optional[Credentials]) -> "CredentialsStatus":
        if credentials is None:
            return cls()
        return cls(
            llm_api_key=credentials.has_llm_key,
            search_api_key=credentials.search_api_key is not None,
            scholar_api_key=credentials.scholar_api_key is not None,
        )


class SubmitRequest(BaseModel):
    """Request model for submitting text to fact-check."""

    text: str = Field(..., description="The text to fact-check")

    class Config:
        json_schema_extra = {
            "example": {
                "text": "The Eiffel Tower is 330 meters tall and was completed in 1889."
            }
        }


class SessionResponse(BaseModel):
    """Response model describing a session and its current state."""

    session_id: str = Field(..., description="Session identifier")
    state: SessionState
    credentials: CredentialsStatus = Field(default_factory=CredentialsStatus)


class DocumentResponse(BaseModel):
    """Plain text extracted from an uploaded document."""

    filename: str
    text: str


class StreamEvent(BaseModel):
    """Event model for SSE streaming."""

    event_type: str = Field(..., description="Type of event")
    data: Dict[str, Any] = Field(default_factory=dict, description="Event data")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
