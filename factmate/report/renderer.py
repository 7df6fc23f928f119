"""Report rendering: a pure function of the claims and their results."""

from typing import Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from ..models.schemas import (
    Claim,
    ClaimType,
    Source,
    VerificationResult,
    VerificationStatus,
)

PENDING_REASONING_PLACEHOLDER = "Verifying..."
NO_SOURCES_PLACEHOLDER = "No links found"
PENDING_SOURCES_PLACEHOLDER = "..."


class ReportRow(BaseModel):
    """One claim and its (possibly pending) verdict."""

    claim_id: str
    claim_text: str
    claim_type: ClaimType
    type_label: str
    status: VerificationStatus
    reasoning: Optional[str] = None
    sources: List[Source] = Field(default_factory=list)

    class Config:
        frozen = True

    @property
    def is_pending(self) -> bool:
        return self.status == VerificationStatus.PENDING


class Report(BaseModel):
    """Verification report correlating each claim with its result."""

    rows: List[ReportRow] = Field(default_factory=list)
    status_counts: Dict[VerificationStatus, int] = Field(default_factory=dict)

    class Config:
        frozen = True

    @property
    def total_claims(self) -> int:
        return len(self.rows)


def render_report(
    claims: Sequence[Claim],
    results: Mapping[str, VerificationResult]
) -> Report:
    """Build the report for the current claims and results.

    Claims without a result are shown as pending with no reasoning and no
    sources. The inputs are only read.
    """
    rows = []
    counts = {status: 0 for status in VerificationStatus}

    for claim in claims:
        result = results.get(claim.id)
        if result is None:
            row = ReportRow(
                claim_id=claim.id,
                claim_text=claim.text,
                claim_type=claim.type,
                type_label=claim.type.label,
                status=VerificationStatus.PENDING,
            )
        else:
            row = ReportRow(
                claim_id=claim.id,
                claim_text=claim.text,
                claim_type=claim.type,
                type_label=claim.type.label,
                status=result.status,
                reasoning=result.reasoning,
                sources=list(result.sources),
            )
        counts[row.status] += 1
        rows.append(row)

    return Report(rows=rows, status_counts=counts)


def format_report(report: Report) -> str:
    """Render the report as a plain-text table."""
    lines = [
        "Verification Report",
        f"{report.total_claims} claims found",
        "",
    ]

    for index, row in enumerate(report.rows, 1):
        lines.append(f"[{index}] \"{row.claim_text}\"")
        lines.append(f"    Type: {row.type_label}")
        lines.append(f"    Result: {row.status.value}")
        lines.append(f"    Reasoning: {row.reasoning or PENDING_REASONING_PLACEHOLDER}")

        if row.sources:
            lines.append("    Sources:")
            for source in row.sources:
                lines.append(f"      - {source.title} <{source.uri}>")
        elif row.is_pending:
            lines.append(f"    Sources: {PENDING_SOURCES_PLACEHOLDER}")
        else:
            lines.append(f"    Sources: {NO_SOURCES_PLACEHOLDER}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
