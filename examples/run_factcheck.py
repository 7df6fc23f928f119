"""Example usage script for the FactMate pipeline."""

import getpass
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import SecretStr

from factmate.exceptions import DocumentParseError
from factmate.graph import run_fact_check
from factmate.models.schemas import Credentials
from factmate.report import format_report, render_report
from factmate.services.document_loader import load_document


SAMPLE_TEXT = """
The Eiffel Tower is 330 meters tall and was completed in 1889.
It was designed by Gustave Eiffel and is located in Paris, France.
The tower attracts approximately 7 million visitors per year.
The Great Wall of China is visible from space with the naked eye.
"""


def read_source(argv) -> str:
    """Read the text to check from a file given on the command line, or use the sample."""
    if len(argv) < 2:
        return SAMPLE_TEXT

    path = argv[1]
    with open(path, "rb") as f:
        content = f.read()
    return load_document(os.path.basename(path), content)


def main():
    """Run a sample fact check."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        text = read_source(sys.argv)
    except DocumentParseError as e:
        print(f"Error: {e}")
        return

    api_key = getpass.getpass("OpenAI API key: ").strip()
    if not api_key:
        print("Error: an OpenAI API key is required")
        return

    print("=" * 60)
    print("FactMate - Fact Checking Pipeline")
    print("=" * 60)
    print(f"\nInput Text:\n{text.strip()[:500]}\n")
    print("-" * 60)
    print("Running fact check...\n")

    state = run_fact_check(text, Credentials(llm_api_key=SecretStr(api_key)))

    if state.error:
        print(f"\nError: {state.error}")
        return

    print("\n" + format_report(render_report(state.claims, state.results)))


if __name__ == "__main__":
    main()
