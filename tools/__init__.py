"""Tools package for document processing and result validation utilities."""

from tools.text_normalizer import TextNormalizer, get_document_preview, truncate_document
from tools.document_parser import DocumentParser, FileValidator, detect_format
from tools.json_extractor import extract_first_json_object
from tools.result_validator import ResultValidator, NormalizationOutcome, derive_verdict

__all__ = [
    "TextNormalizer",
    "get_document_preview",
    "truncate_document",
    "DocumentParser",
    "FileValidator",
    "detect_format",
    "extract_first_json_object",
    "ResultValidator",
    "NormalizationOutcome",
    "derive_verdict",
]
