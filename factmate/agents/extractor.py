"""Claim extraction agent: turns source text into atomic claims."""

import logging
from typing import Any, List, Optional

from ..exceptions import MissingCredentialsError
from ..models.schemas import Claim, ClaimType, Credentials
from ..services.llm_service import LLMService, LLMServiceFactory

logger = logging.getLogger(__name__)


class ClaimExtractor:
    """Agent responsible for extracting verifiable claims from text.

    The whole input is sent in a single request and the model answers with
    a schema-constrained list of claims, each classified as a reference,
    a statistic or a general statement.
    """

    # Inputs are cut to this many characters; anything past it is never seen
    MAX_SOURCE_CHARS = 15000

    SYSTEM_PROMPT = "You are an expert fact-checker assistant. Extract atomic, verifiable claims."

    RESPONSE_SCHEMA = {
        "type": "object",
        "properties": {
            "claims": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "text": {
                            "type": "string",
                            "description": "The atomic fact or claim extracted from the text."
                        },
                        "type": {
                            "type": "string",
                            "enum": ["PAPER", "DATA", "GENERAL"],
                            "description": (
                                "Classify the claim: PAPER for citations/studies, "
                                "DATA for statistics/numbers, GENERAL for factual assertions."
                            )
                        }
                    },
                    "required": ["text", "type"],
                    "additionalProperties": False
                }
            }
        },
        "required": ["claims"],
        "additionalProperties": False
    }

    def __init__(self, llm_service_factory: Optional[LLMServiceFactory] = None):
        """Initialize the extractor.

        Args:
            llm_service_factory: Builds an LLM service from session credentials
        """
        self.llm_service_factory = llm_service_factory or LLMService.from_credentials

    @classmethod
    def truncate(cls, text: str) -> str:
        """Cut the source text down to the request size limit."""
        return text[:cls.MAX_SOURCE_CHARS]

    def build_prompt(self, text: str) -> str:
        return f"""Analyze the following text and extract key factual claims that need verification.
Focus on specific entities, numbers, dates, and citations.
Classify each claim carefully.

Text:
"{self.truncate(text)}"
(Text truncated for length if necessary)"""

    async def extract(
        self,
        text: str,
        credentials: Optional[Credentials],
        llm_service: Optional[LLMService] = None
    ) -> List[Claim]:
        """Extract claims from text.

        Args:
            text: Source text; only the first MAX_SOURCE_CHARS characters are used
            credentials: Session credentials carrying the LLM key
            llm_service: Service shared by the current run; when omitted, one is
                built from the credentials and closed afterwards

        Returns:
            List of Claim objects, empty when the model found nothing usable

        Raises:
            MissingCredentialsError: If the LLM key is absent
            LLMRequestError: On transport or API failure
        """
        if credentials is None or not credentials.has_llm_key:
            raise MissingCredentialsError()

        if llm_service is not None:
            return await self._extract(text, llm_service)

        llm_service = self.llm_service_factory(credentials)
        try:
            return await self._extract(text, llm_service)
        finally:
            await llm_service.close()

    async def _extract(self, text: str, llm_service: LLMService) -> List[Claim]:
        if len(text) > self.MAX_SOURCE_CHARS:
            logger.info(
                f"Source text truncated from {len(text)} to {self.MAX_SOURCE_CHARS} characters"
            )

        try:
            payload = await llm_service.generate_structured(
                system_prompt=self.SYSTEM_PROMPT,
                user_prompt=self.build_prompt(text),
                response_schema=self.RESPONSE_SCHEMA,
                schema_name="claim_extraction"
            )
        except ValueError as e:
            logger.warning(f"Failed to parse LLM extraction response: {e}")
            return []

        claims = self.parse_claims(payload)
        logger.info(f"Extracted {len(claims)} claims")
        return claims

    @staticmethod
    def parse_claims(payload: Any) -> List[Claim]:
        """Build claims from an extraction payload.

        Accepts either ``{"claims": [...]}`` or a bare list. Anything else
        yields no claims.
        """
        if isinstance(payload, dict):
            payload = payload.get("claims")

        if not isinstance(payload, list):
            if payload is not None:
                logger.warning("Extraction payload is not a list of claims; ignoring it")
            return []

        claims = []
        for index, item in enumerate(payload):
            if not isinstance(item, dict):
                logger.debug(f"Skipping malformed claim entry {index}")
                continue

            text = item.get("text")
            if not isinstance(text, str) or not text.strip():
                logger.debug(f"Skipping claim entry {index} without text")
                continue

            claim = Claim(text=text.strip(), type=ClaimType.from_wire(item.get("type")))
            claims.append(claim)
            logger.debug(f"Extracted claim {index + 1}: {claim.text[:50]}...")

        return claims
