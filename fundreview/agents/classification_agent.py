"""Classification Agent - preflight role and document-type inference.

Reads only a bounded preview of the document and asks the model which side
(GP or LP) the user is likely on, what kind of document it is, and whether it
was received or drafted. A manually selected role always wins.
"""

import re
from typing import Any, Dict, Optional
from loguru import logger

from fundreview.config import PipelineConfig
from fundreview.error_handling import ClassificationParseError
from fundreview.logging_config import get_session_logger, log_stage_execution
from fundreview.model_client import ModelClient
from fundreview.models import PreflightResult, UserRole
from fundreview.prompts import build_classification_prompt
from tools.json_extractor import extract_first_json_object
from tools.text_normalizer import get_document_preview


MANUAL_ROLE_RATIONALE = "User manually selected role"

ROLE_ALIASES = {
    "gp": "gp",
    "general partner": "gp",
    "general-partner": "gp",
    "fund manager": "gp",
    "manager": "gp",
    "lp": "lp",
    "limited partner": "lp",
    "limited-partner": "lp",
    "investor": "lp",
}

CONFIDENCE_LEVELS = ("high", "medium", "low")
DOCUMENT_TYPES = ("side-letter", "lpa", "sub-doc", "co-invest", "other")
DIRECTIONALITIES = ("incoming", "outgoing", "unknown")

# Statements that name the reader's side outright
EXPLICIT_ROLE_PATTERN = re.compile(
    r"\b(?:on behalf of|acting as|in (?:its|their) capacity as|as (?:a|an|the))\s+"
    r"(?:the\s+)?(?:general partner|limited partner|fund manager|investment manager|investor)\b",
    re.IGNORECASE
)


def has_explicit_role_statement(preview: str) -> bool:
    return EXPLICIT_ROLE_PATTERN.search(preview) is not None


def manual_preflight(role: UserRole) -> PreflightResult:
    """PreflightResult for a role the user chose without classification."""
    return PreflightResult(
        inferred_role=role,
        confidence="high",
        document_type="other",
        directionality="unknown",
        rationale=MANUAL_ROLE_RATIONALE
    )


class ClassificationAgent:
    """Preflight stage: preview text -> PreflightResult."""

    def __init__(self, config: PipelineConfig, model_client: ModelClient):
        """Initialize the Classification Agent.

        Args:
            config: Pipeline configuration (preview cap, generation settings)
            model_client: Client used for the single model call
        """
        self.config = config
        self.model_client = model_client

    def build_prompt(self, document_preview: str) -> str:
        preview = get_document_preview(document_preview, self.config.preview_max_chars)
        return build_classification_prompt(preview)

    @log_stage_execution("ClassificationStage")
    def classify(
        self,
        document_preview: str,
        manual_role: Optional[UserRole] = None,
        session_id: str = "default"
    ) -> PreflightResult:
        """Infer the user's role and the document type from a preview.

        Args:
            document_preview: Opening text of the document (re-capped here)
            manual_role: Role chosen by the user, overrides the inference
            session_id: Session identifier for logging

        Returns:
            PreflightResult

        Raises:
            ModelInvocationError: If the model call fails or times out
            ClassificationParseError: If the response carries no usable JSON
        """
        session_logger = get_session_logger(session_id, "ClassificationStage")

        preview = get_document_preview(document_preview, self.config.preview_max_chars)
        prompt = build_classification_prompt(preview)
        response = self.model_client.generate(prompt, self.config.classification)

        payload = extract_first_json_object(response)
        if payload is None:
            session_logger.error("No JSON object in classification response", response_length=len(response))
            raise ClassificationParseError("Failed to parse classification JSON from model response")

        result = self._coerce(payload, manual_role)

        if manual_role is not None:
            result.inferred_role = manual_role
            result.confidence = "high"
            result.rationale = MANUAL_ROLE_RATIONALE
        elif result.confidence == "high" and not has_explicit_role_statement(preview):
            session_logger.info("Downgrading classification confidence: no explicit role statement in preview")
            result.confidence = "medium"

        session_logger.info(
            "Document classified",
            inferred_role=result.inferred_role,
            confidence=result.confidence,
            document_type=result.document_type,
            directionality=result.directionality
        )
        return result

    def _coerce(self, payload: Dict[str, Any], manual_role: Optional[UserRole]) -> PreflightResult:
        """Map a loosely-typed model payload onto PreflightResult."""
        raw_role = str(payload.get("inferredRole") or "").strip().lower()
        role = ROLE_ALIASES.get(raw_role)
        if role is None:
            if manual_role is None:
                raise ClassificationParseError(f"Unrecognised inferredRole: {raw_role or 'missing'}")
            role = manual_role

        confidence = str(payload.get("confidence") or "").strip().lower()
        if confidence not in CONFIDENCE_LEVELS:
            logger.debug(f"Coercing unknown confidence '{confidence}' to low")
            confidence = "low"

        document_type = str(payload.get("documentType") or "").strip().lower().replace(" ", "-")
        if document_type not in DOCUMENT_TYPES:
            document_type = "other"

        directionality = str(payload.get("directionality") or "").strip().lower()
        if directionality not in DIRECTIONALITIES:
            directionality = "unknown"

        return PreflightResult(
            inferred_role=role,
            confidence=confidence,
            document_type=document_type,
            directionality=directionality,
            rationale=str(payload.get("rationale") or "").strip()
        )
