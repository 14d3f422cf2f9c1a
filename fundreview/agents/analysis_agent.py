"""
Analysis Agent - role-conditioned document analysis.

Pipeline: documents -> bounded prompt -> model -> first JSON object ->
typed AnalysisResult -> ResultValidator.normalize

The prompt is assembled from fixed blocks:
1. Security preamble (document text is evidence, never instructions)
2. Evidence discipline (verbatim quotes or the not-found sentinel)
3. GP or LP rubric (priorities, red-line blockers, framing)
4. Output rules and the JSON shape

Metadata and protectingRole are stamped here, never read from the model.
"""

from datetime import datetime, timezone
from typing import List, Optional

from fundreview.config import PipelineConfig
from fundreview.error_handling import AnalysisParseError, InputValidationError
from fundreview.logging_config import get_session_logger, log_stage_execution
from fundreview.model_client import ModelClient
from fundreview.models import AnalysisMetadata, AnalysisResult, UserRole
from fundreview.prompts import analysis_closing, analysis_instructions
from tools.json_extractor import extract_first_json_object
from tools.result_validator import ResultValidator
from tools.text_normalizer import truncate_document


class AnalysisAgent:
    """Analysis stage: target (+ reference) text -> normalized AnalysisResult."""

    def __init__(
        self,
        config: PipelineConfig,
        model_client: ModelClient,
        validator: Optional[ResultValidator] = None
    ):
        self.config = config
        self.model_client = model_client
        self.validator = validator or ResultValidator()

    def build_prompt(
        self,
        target_text: str,
        role: UserRole,
        target_name: str,
        reference_text: Optional[str] = None,
        reference_name: Optional[str] = None
    ) -> str:
        """Assemble the full analysis prompt.

        Documents longer than ``analysis_document_limit`` characters are cut
        to that bound and followed by the truncation marker.
        """
        limit = self.config.analysis_document_limit

        sections: List[str] = [
            analysis_instructions(role),
            f"--- TARGET DOCUMENT ({target_name}) ---\n"
            f"{truncate_document(target_text, limit)}\n---",
        ]

        if reference_text:
            sections.append(
                f"--- REFERENCE DOCUMENT ({reference_name or 'reference'}) ---\n"
                f"{truncate_document(reference_text, limit)}\n---"
            )

        sections.append(analysis_closing(role))
        return "\n\n".join(sections)

    @log_stage_execution("AnalysisStage")
    def analyze(
        self,
        target_text: str,
        role: UserRole,
        target_name: str,
        reference_text: Optional[str] = None,
        reference_name: Optional[str] = None,
        session_id: str = "default"
    ) -> AnalysisResult:
        """Analyze a target document for the given role.

        Args:
            target_text: Full text of the document under review
            role: Side the analysis protects ("gp" or "lp")
            target_name: Display name of the target document
            reference_text: Optional reference document (e.g. the LPA)
            reference_name: Display name of the reference document
            session_id: Session identifier for logging

        Returns:
            Normalized AnalysisResult

        Raises:
            InputValidationError: If the target text is empty or the role unknown
            ModelInvocationError: If the model call fails or times out
            AnalysisParseError: If the response carries no usable JSON
            SchemaViolationError: If the JSON is not an analysis at all
        """
        session_logger = get_session_logger(session_id, "AnalysisStage")

        if not target_text or not target_text.strip():
            raise InputValidationError("targetDocumentText is required")
        if role not in ("gp", "lp"):
            raise InputValidationError(f"userRole must be 'gp' or 'lp', got {role!r}")

        prompt = self.build_prompt(target_text, role, target_name, reference_text, reference_name)
        session_logger.info(
            "Analysis prompt built",
            prompt_length=len(prompt),
            target_length=len(target_text),
            has_reference=bool(reference_text)
        )

        response = self.model_client.generate(prompt, self.config.analysis)

        payload = extract_first_json_object(response)
        if payload is None:
            session_logger.error("No JSON object in analysis response", response_length=len(response))
            raise AnalysisParseError("Failed to parse analysis JSON from model response")

        metadata = AnalysisMetadata(
            analysis_timestamp=datetime.now(timezone.utc).isoformat(),
            target_document_name=target_name,
            model_used=self.model_client.model_name,
            reference_document_name=reference_name if reference_text else None
        )

        coerced = self.validator.from_raw(payload, protecting_role=role, metadata=metadata)
        outcome = self.validator.normalize(
            coerced.result,
            target_text=target_text,
            reference_text=reference_text or None,
            extra_warnings=coerced.warnings
        )

        result = outcome.result
        session_logger.info(
            "Analysis completed",
            verdict=result.verdict,
            critical_issues=len(result.critical_issues),
            issues=len(result.issues),
            warnings=len(outcome.warnings)
        )
        return result
