"""Text normalization and bounding helpers for fund documents.

Handles encoding cleanup and whitespace normalization of extracted text,
the bounded preview used for classification, and the truncation marker
applied when documents exceed a prompt's character budget.
"""

import re
import unicodedata
from loguru import logger

from fundreview.logging_config import log_tool_execution


TRUNCATION_MARKER = "[Document truncated]"


class TextNormalizer:
    """Text normalizer for extracted document text."""

    # Characters that PDF/DOCX extraction commonly leaves behind
    REPLACEMENTS = {
        '\u00a0': ' ',   # Non-breaking space
        '\u00ad': '',    # Soft hyphen
        '\ufeff': '',    # Zero-width no-break space (BOM)
        '\u200b': '',    # Zero-width space
    }

    @log_tool_execution("text_normalizer")
    def normalize(self, text: str) -> str:
        """Normalize document text with encoding cleanup and formatting.

        Quotes and dashes are left untouched: issue quotes must match the
        text the model was shown character for character.

        Args:
            text: Raw extracted text

        Returns:
            Normalized text
        """
        if not text:
            logger.warning("Empty text provided for normalization")
            return ""

        text = unicodedata.normalize('NFC', text)

        for old, new in self.REPLACEMENTS.items():
            text = text.replace(old, new)

        text = text.replace('\r\n', '\n').replace('\r', '\n')
        text = text.replace('\t', '    ')

        # Trailing spaces carry no meaning and confuse quote matching
        text = re.sub(r'[ ]+\n', '\n', text)

        # Remove excessive blank lines (more than 2 consecutive)
        text = re.sub(r'\n{3,}', '\n\n', text)

        text = text.strip()
        logger.debug(f"Text normalized, length: {len(text)}")

        return text


def get_document_preview(document_text: str, max_chars: int = 5000) -> str:
    """Return a bounded prefix of a document for classification.

    Cuts at the last sentence terminator (". ") or paragraph break
    ("\\n\\n") when it falls beyond 80% of ``max_chars``; otherwise the raw
    prefix is returned.

    Args:
        document_text: Full document text
        max_chars: Maximum characters to return

    Returns:
        Preview text, never longer than ``max_chars``
    """
    if len(document_text) <= max_chars:
        return document_text

    truncated = document_text[:max_chars]
    break_point = max(truncated.rfind('. '), truncated.rfind('\n\n'))

    if break_point > max_chars * 0.8:
        return truncated[:break_point + 1]

    return truncated


def truncate_document(document_text: str, limit: int) -> str:
    """Bound a document to ``limit`` characters, marking the cut explicitly.

    Args:
        document_text: Full document text
        limit: Maximum characters of document text to keep

    Returns:
        The text unchanged, or its first ``limit`` characters followed by
        the truncation marker on its own line
    """
    if len(document_text) <= limit:
        return document_text

    logger.info(
        "Document truncated for prompt",
        original_length=len(document_text),
        limit=limit
    )
    return f"{document_text[:limit]}\n{TRUNCATION_MARKER}"
