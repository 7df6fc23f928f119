"""Conversion of uploaded files to plain text."""

import io
import logging

import mammoth

from ..exceptions import DocumentParseError

logger = logging.getLogger(__name__)

RICH_DOCUMENT_EXTENSIONS = (".docx",)


def is_rich_document(filename: str) -> bool:
    """Whether the file name carries an extension that needs conversion."""
    return (filename or "").lower().endswith(RICH_DOCUMENT_EXTENSIONS)


def load_document(filename: str, content: bytes) -> str:
    """Convert an uploaded file to plain text.

    Word documents are converted with mammoth. Everything else is decoded
    as UTF-8, dropping a byte-order mark and replacing undecodable bytes.

    Args:
        filename: Name of the uploaded file
        content: Raw file content

    Returns:
        Extracted plain text

    Raises:
        DocumentParseError: If a rich document cannot be converted
    """
    if is_rich_document(filename):
        try:
            result = mammoth.extract_raw_text(io.BytesIO(content))
        except Exception as e:
            logger.error(f"Failed to parse document {filename}: {e}")
            raise DocumentParseError(f"Failed to parse DOCX file: {filename}") from e

        for message in result.messages:
            logger.debug(f"mammoth: {message}")
        return result.value

    return content.decode("utf-8-sig", errors="replace")
