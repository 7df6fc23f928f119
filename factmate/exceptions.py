"""Exception types raised by the FactMate pipeline."""


class FactMateError(Exception):
    """Base class for FactMate errors."""


class MissingCredentialsError(FactMateError):
    """Raised when the required LLM API key has not been provided."""

    def __init__(self, message: str = "LLM API key is missing"):
        super().__init__(message)


class DocumentParseError(FactMateError):
    """Raised when an uploaded document cannot be converted to text."""


class LLMRequestError(FactMateError):
    """Raised when a request to the LLM provider fails in transport or at the API."""
