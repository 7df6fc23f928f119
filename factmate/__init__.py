"""FactMate: extract factual claims from text and verify them with a search-grounded LLM."""

__version__ = "0.1.0"
