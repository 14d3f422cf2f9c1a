"""Document parser for extracting plain text from uploaded fund documents.

Uses pdfplumber for PDF text extraction and python-docx for Word files.
Documents are read from memory only; nothing is written to disk.
"""

import io
from pathlib import Path
from typing import Dict, List, Optional

import pdfplumber
from docx import Document as DocxDocument
from loguru import logger

from fundreview.error_handling import (
    DocumentParsingError,
    EmptyContentError,
    UnsupportedFormatError,
    handle_errors
)
from fundreview.logging_config import log_tool_execution
from fundreview.models import Document
from tools.text_normalizer import TextNormalizer


PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"

SUPPORTED_FORMATS = {
    PDF_MIME: ".pdf",
    DOCX_MIME: ".docx",
    TEXT_MIME: ".txt",
}


def detect_format(mime_type: Optional[str], filename: str) -> str:
    """Resolve a document to one of '.pdf', '.docx', '.txt'.

    The MIME type wins when it is recognised; otherwise the file extension
    decides.

    Raises:
        UnsupportedFormatError: If neither identifies a supported format
    """
    if mime_type in SUPPORTED_FORMATS:
        return SUPPORTED_FORMATS[mime_type]

    extension = Path(filename or "").suffix.lower()
    if extension in SUPPORTED_FORMATS.values():
        return extension

    raise UnsupportedFormatError(
        f"Unsupported file type: {mime_type or 'unknown'} ({filename})"
    )


class DocumentParser:
    """Parser that turns PDF, DOCX and TXT bytes into normalized text."""

    def __init__(self, large_pdf_pages: int = 100):
        """Initialize document parser.

        Args:
            large_pdf_pages: Page count above which a slow-processing warning is logged
        """
        self.large_pdf_pages = large_pdf_pages
        self.normalizer = TextNormalizer()

    @log_tool_execution("document_parser")
    @handle_errors(DocumentParsingError)
    def parse(self, file_bytes: bytes, mime_type: Optional[str], filename: str) -> str:
        """Extract text from an uploaded document.

        Args:
            file_bytes: Raw file content
            mime_type: MIME type reported by the upload, if any
            filename: Original filename

        Returns:
            Normalized document text

        Raises:
            UnsupportedFormatError: If the format is not PDF, DOCX or TXT
            EmptyContentError: If no text could be extracted
            DocumentParsingError: If the parsing library fails
        """
        file_format = detect_format(mime_type, filename)

        if file_format == ".pdf":
            raw_text = self._parse_pdf(file_bytes, filename)
        elif file_format == ".docx":
            raw_text = self._parse_docx(file_bytes, filename)
        else:
            raw_text = self._parse_txt(file_bytes)

        text = self.normalizer.normalize(raw_text)
        if not text:
            raise EmptyContentError(f"{filename} appears to be empty or contains only images")

        logger.info(
            "Document parsed",
            filename=filename,
            file_format=file_format,
            text_length=len(text)
        )
        return text

    def load_document(self, file_bytes: bytes, mime_type: Optional[str], filename: str) -> Document:
        """Parse an upload into a Document record."""
        return Document(
            name=filename,
            text=self.parse(file_bytes, mime_type, filename),
            mime_hint=mime_type
        )

    def _parse_pdf(self, file_bytes: bytes, filename: str) -> str:
        with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
            page_count = len(pdf.pages)

            if page_count > self.large_pdf_pages:
                logger.warning(
                    f"Large PDF detected: {page_count} pages. May take longer to process.",
                    filename=filename
                )

            pages: List[str] = []
            for page_num, page in enumerate(pdf.pages, start=1):
                page_text = page.extract_text()
                if not page_text:
                    logger.warning(f"No text extracted from page {page_num}", filename=filename)
                    continue
                pages.append(page_text)

        return "\n\n".join(pages)

    def _parse_docx(self, file_bytes: bytes, filename: str) -> str:
        document = DocxDocument(io.BytesIO(file_bytes))

        paragraphs = [p.text for p in document.paragraphs]

        # Tables hold much of a side letter's schedule content
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    paragraphs.append(" | ".join(cells))

        logger.debug(
            "DOCX extracted",
            filename=filename,
            paragraph_count=len(document.paragraphs),
            table_count=len(document.tables)
        )
        return "\n\n".join(p for p in paragraphs if p.strip())

    def _parse_txt(self, file_bytes: bytes) -> str:
        return file_bytes.decode("utf-8", errors="replace")


class FileValidator:
    """Validator for uploaded document files."""

    def __init__(self, max_size_mb: int = 50):
        """Initialize file validator.

        Args:
            max_size_mb: Maximum file size in megabytes
        """
        self.max_size_bytes = max_size_mb * 1024 * 1024

    @log_tool_execution("file_validator")
    def validate_file(
        self,
        filename: str,
        file_size: int,
        mime_type: Optional[str] = None,
        file_content: Optional[bytes] = None
    ) -> Dict[str, object]:
        """Validate an uploaded file before parsing.

        Args:
            filename: Name of the uploaded file
            file_size: Size of the file in bytes
            mime_type: Reported MIME type
            file_content: Optional file content for magic-number checks

        Returns:
            Dictionary with validation results:
                - valid: Boolean indicating if file is valid
                - errors: List of validation errors
                - warnings: List of validation warnings
                - file_format: Resolved format extension or None
                - too_large: Whether the size limit was exceeded
        """
        errors = []
        warnings = []

        try:
            file_format = detect_format(mime_type, filename)
        except UnsupportedFormatError:
            file_format = None
            errors.append("Invalid file type. Only PDF, DOCX, and TXT files are allowed.")

        too_large = file_size > self.max_size_bytes
        if too_large:
            errors.append(
                f"File size ({file_size / 1024 / 1024:.2f} MB) exceeds "
                f"maximum allowed size ({self.max_size_bytes / 1024 / 1024:.0f} MB)"
            )

        if file_size == 0:
            errors.append("File is empty")

        if file_content and file_format == ".pdf" and not file_content.startswith(b"%PDF"):
            errors.append("File does not appear to be a valid PDF")

        if file_content and file_format == ".docx" and not file_content.startswith(b"PK"):
            errors.append("File does not appear to be a valid DOCX")

        if 0 < file_size < 1024:
            warnings.append("File is very small, may not contain a complete document")

        valid = len(errors) == 0

        if not valid:
            logger.warning("File validation failed", filename=filename, errors=errors)

        return {
            "valid": valid,
            "errors": errors,
            "warnings": warnings,
            "file_format": file_format,
            "too_large": too_large,
        }
