"""Verifier agent: checks a single claim with a search-grounded LLM call."""

import logging
import re
from typing import Iterable, List, Optional, Tuple

from ..exceptions import MissingCredentialsError
from ..models.schemas import (
    Claim,
    ClaimType,
    Credentials,
    Source,
    VerificationResult,
    VerificationStatus,
    WebReference,
)
from ..services.llm_service import LLMService, LLMServiceFactory

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TITLE = "Web Source"

# Checked in this order; the first marker found wins
STATUS_MARKERS = (
    ("STATUS: TRUE", VerificationStatus.VERIFIED_TRUE),
    ("STATUS: FALSE", VerificationStatus.VERIFIED_FALSE),
    ("STATUS: UNCERTAIN", VerificationStatus.UNCERTAIN),
)

REASON_PATTERN = re.compile(r"REASON:\s*(.*)", re.DOTALL)
STATUS_LINE_PATTERN = re.compile(r"STATUS:.*(\n|$)")


def parse_verification_response(text: str) -> Tuple[VerificationStatus, str]:
    """Parse the two-line STATUS/REASON answer of the verification call.

    The status is UNCERTAIN unless one of the literal STATUS markers is
    present. The reasoning is everything after ``REASON:``; without it, the
    whole text minus the first STATUS line is used.

    Args:
        text: Raw response text

    Returns:
        Tuple of (status, reasoning)
    """
    text = text or ""

    status = VerificationStatus.UNCERTAIN
    for marker, candidate in STATUS_MARKERS:
        if marker in text:
            status = candidate
            break

    match = REASON_PATTERN.search(text)
    if match and match.group(1):
        reasoning = match.group(1).strip()
    else:
        reasoning = STATUS_LINE_PATTERN.sub("", text, count=1).strip()

    return status, reasoning


def extract_sources(references: Iterable[WebReference]) -> List[Source]:
    """Map grounding references to sources.

    References without a URI are dropped and missing titles get a generic
    placeholder. Order is preserved and duplicates are kept.
    """
    sources = []
    for reference in references:
        if not reference.uri:
            continue
        sources.append(Source(title=reference.title or DEFAULT_SOURCE_TITLE, uri=reference.uri))
    return sources


class ClaimVerifier:
    """Agent responsible for fact-checking one claim against live web search.

    The instruction sent to the model depends on the claim type. Because
    search-grounded calls cannot be schema-constrained, the answer is
    requested in a fixed text format and parsed with
    :func:`parse_verification_response`.
    """

    TYPE_INSTRUCTIONS = {
        ClaimType.REFERENCE: (
            "This is a bibliographic or academic claim. Verify if this paper/study "
            "exists and if the citation details are correct."
        ),
        ClaimType.STATISTIC: (
            "This is a statistical claim with specific numbers and dates. Check for accuracy."
        ),
        ClaimType.GENERAL: "Verify the truthfulness of this general statement.",
    }

    PROMPT_TEMPLATE = """Fact check this claim: "{claim}".
{instruction}

Provide your response in the following strict format:
STATUS: [TRUE | FALSE | UNCERTAIN]
REASON: [A short explanation of why]"""

    def __init__(self, llm_service_factory: Optional[LLMServiceFactory] = None):
        """Initialize the verifier.

        Args:
            llm_service_factory: Builds an LLM service from session credentials
        """
        self.llm_service_factory = llm_service_factory or LLMService.from_credentials

    def build_prompt(self, claim: Claim) -> str:
        instruction = self.TYPE_INSTRUCTIONS.get(claim.type, self.TYPE_INSTRUCTIONS[ClaimType.GENERAL])
        return self.PROMPT_TEMPLATE.format(claim=claim.text, instruction=instruction)

    async def verify(
        self,
        claim: Claim,
        credentials: Optional[Credentials],
        llm_service: Optional[LLMService] = None
    ) -> VerificationResult:
        """Verify a single claim.

        Args:
            claim: The claim to verify
            credentials: Session credentials carrying the LLM key
            llm_service: Service shared by the current run; when omitted, one is
                built from the credentials and closed afterwards

        Returns:
            VerificationResult with status, reasoning and sources

        Raises:
            MissingCredentialsError: If the LLM key is absent
            LLMRequestError: On transport or API failure
        """
        if credentials is None or not credentials.has_llm_key:
            raise MissingCredentialsError()

        if llm_service is not None:
            return await self._verify(claim, llm_service)

        llm_service = self.llm_service_factory(credentials)
        try:
            return await self._verify(claim, llm_service)
        finally:
            await llm_service.close()

    async def _verify(self, claim: Claim, llm_service: LLMService) -> VerificationResult:
        logger.info(f"Verifying claim: {claim.text[:50]}...")
        response = await llm_service.generate_with_search(self.build_prompt(claim))

        status, reasoning = parse_verification_response(response.text)
        sources = extract_sources(response.references)

        logger.info(f"Verification result for {claim.id}: {status.value} ({len(sources)} sources)")

        return VerificationResult(
            claim_id=claim.id,
            status=status,
            reasoning=reasoning,
            sources=sources
        )
