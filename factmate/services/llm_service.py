"""LLM service wrapper for the OpenAI API."""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from ..config import settings
from ..exceptions import LLMRequestError, MissingCredentialsError
from ..models.schemas import Credentials, SearchResponse, WebReference

logger = logging.getLogger(__name__)


class LLMService:
    """Service wrapper for OpenAI API interactions.

    One instance is bound to one API key; the key comes from the user's
    session credentials rather than from configuration.
    """

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        search_model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        """Initialize the LLM service.

        Args:
            api_key: OpenAI API key supplied by the user
            model: Model used for structured generation (defaults to settings)
            search_model: Search-enabled model used for grounded generation
            temperature: Temperature for structured generation (defaults to settings)
            client: Preconfigured async client, mainly for tests
        """
        if not api_key:
            raise MissingCredentialsError()

        self.model = model or settings.LLM_MODEL
        self.search_model = search_model or settings.SEARCH_LLM_MODEL
        self.temperature = temperature if temperature is not None else settings.LLM_TEMPERATURE
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            timeout=settings.LLM_TIMEOUT_SECONDS
        )

    @classmethod
    def from_credentials(cls, credentials: Optional[Credentials]) -> "LLMService":
        """Build a service from session credentials.

        Raises:
            MissingCredentialsError: If no LLM key is present
        """
        if credentials is None or not credentials.has_llm_key:
            raise MissingCredentialsError()
        return cls(api_key=credentials.llm_api_key.get_secret_value())

    async def close(self):
        """Release the client's connection pool."""
        await self.client.close()

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_schema: Dict[str, Any],
        schema_name: str = "response",
        temperature: Optional[float] = None,
        max_tokens: int = 4000
    ) -> Optional[Any]:
        """Generate a schema-constrained JSON response.

        Args:
            system_prompt: System message for context
            user_prompt: User message/query
            response_schema: JSON schema the response must follow
            schema_name: Name reported to the API for the schema
            temperature: Override default temperature
            max_tokens: Maximum tokens in response

        Returns:
            Parsed JSON payload, or None when the model returned no content

        Raises:
            LLMRequestError: On transport or API failure
            ValueError: If the content is not valid JSON
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=temperature if temperature is not None else self.temperature,
                max_tokens=max_tokens,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": schema_name,
                        "schema": response_schema,
                        "strict": True
                    }
                }
            )
        except OpenAIError as e:
            logger.error(f"LLM structured generation failed: {e}")
            raise LLMRequestError(f"Structured generation failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            return None

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse LLM JSON response: {e}")
            raise ValueError(f"Invalid JSON response from LLM: {e}")

    async def generate_with_search(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None
    ) -> SearchResponse:
        """Generate a free-text response grounded in live web search.

        Search-enabled models do not accept a response schema, so the
        caller is responsible for parsing the text.

        Args:
            user_prompt: User message/query
            system_prompt: Optional system message

        Returns:
            SearchResponse with the text and any cited web references

        Raises:
            LLMRequestError: On transport or API failure
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.search_model,
                messages=messages,
                web_search_options={}
            )
        except OpenAIError as e:
            logger.error(f"Search-grounded generation failed: {e}")
            raise LLMRequestError(f"Search-grounded generation failed: {e}") from e

        if not response.choices:
            return SearchResponse()

        message = response.choices[0].message
        return SearchResponse(
            text=message.content or "",
            references=self._collect_references(getattr(message, "annotations", None))
        )

    @staticmethod
    def _collect_references(annotations: Optional[List[Any]]) -> List[WebReference]:
        """Turn url_citation annotations into web references."""
        references = []
        for annotation in annotations or []:
            citation = getattr(annotation, "url_citation", None)
            if citation is None:
                continue
            references.append(
                WebReference(
                    title=getattr(citation, "title", None),
                    uri=getattr(citation, "url", None)
                )
            )
        return references


# Builds a service bound to the key in a session's credentials
LLMServiceFactory = Callable[[Credentials], LLMService]
