"""
Fund Review Pipeline - coordinator for the review stages.

Stages run in this order:
    Parse -> Preview -> Classification -> Analysis -> (client) -> Conversation

Key Features:
- One explicitly constructed PipelineConfig and ModelClient shared by all stages
- Caller-side retry: ModelInvocationError is retried once with backoff,
  parse errors are never retried
- No server-side state; sessions are snapshots handed back to the client
"""

import uuid
from typing import Callable, Optional, Sequence, TypeVar
from loguru import logger

from fundreview.agents import AnalysisAgent, ClassificationAgent, ConversationAgent
from fundreview.agents.classification_agent import manual_preflight
from fundreview.config import PipelineConfig
from fundreview.error_handling import (
    InputValidationError,
    MODEL_RETRY_CONFIG,
    ModelInvocationError,
    RetryConfig,
    retry_with_backoff,
)
from fundreview.logging_config import get_session_logger
from fundreview.model_client import GeminiModelClient, ModelClient
from fundreview.models import (
    AnalysisResult,
    ChatMessage,
    ChatTurnResult,
    DocumentTexts,
    PreflightResult,
    ReviewOutcome,
    UserRole,
)
from memory.session_manager import SessionManager, create_session_manager
from tools.document_parser import DocumentParser
from tools.text_normalizer import get_document_preview


T = TypeVar("T")

VALID_ROLES = ("gp", "lp")


class FundReviewPipeline:
    """
    Coordinates classification, analysis and conversation for fund documents.

    Every public call is independent: a pure function of its arguments plus
    model calls, so one pipeline can serve concurrent requests.
    """

    def __init__(
        self,
        config: PipelineConfig,
        model_client: ModelClient,
        retry_config: RetryConfig = MODEL_RETRY_CONFIG,
        parser: Optional[DocumentParser] = None,
        session_manager: Optional[SessionManager] = None
    ):
        """Initialize the pipeline.

        Args:
            config: Pipeline configuration
            model_client: Model client shared by all stages
            retry_config: Retry policy for model failures
            parser: Document parser (default instance if not provided)
            session_manager: Session helper (built from config if not provided)
        """
        self.config = config
        self.model_client = model_client
        self.retry_config = retry_config

        self.parser = parser or DocumentParser()
        self.session_manager = session_manager or create_session_manager(config.session_ttl_minutes)

        self.classification_agent = ClassificationAgent(config, model_client)
        self.analysis_agent = AnalysisAgent(config, model_client)
        self.conversation_agent = ConversationAgent(config, model_client)

        logger.info(
            "FundReviewPipeline initialized",
            model=model_client.model_name,
            retry_attempts=retry_config.attempts
        )

    def _call_with_retry(self, func: Callable[..., T], *args, **kwargs) -> T:
        return retry_with_backoff(self.retry_config, (ModelInvocationError,))(func)(*args, **kwargs)

    def classify(
        self,
        document_preview: str,
        manual_role: Optional[UserRole] = None,
        session_id: str = "default"
    ) -> PreflightResult:
        """Preflight classification of a document preview."""
        if not document_preview or not document_preview.strip():
            raise InputValidationError("documentText is required and must be a string")
        if manual_role is not None and manual_role not in VALID_ROLES:
            raise InputValidationError('userRole must be either "gp" or "lp"')

        return self._call_with_retry(
            self.classification_agent.classify,
            document_preview,
            manual_role=manual_role,
            session_id=session_id
        )

    def analyze(
        self,
        target_text: str,
        role: UserRole,
        target_name: str,
        reference_text: Optional[str] = None,
        reference_name: Optional[str] = None,
        session_id: str = "default"
    ) -> AnalysisResult:
        """Full analysis of a target document for ``role``."""
        if not target_name:
            raise InputValidationError("targetDocumentName is required and must be a string")

        return self._call_with_retry(
            self.analysis_agent.analyze,
            target_text,
            role,
            target_name,
            reference_text=reference_text,
            reference_name=reference_name,
            session_id=session_id
        )

    def chat(
        self,
        message: str,
        history: Sequence[ChatMessage],
        analysis_context: AnalysisResult,
        document_texts: DocumentTexts,
        session_id: str = "default"
    ) -> ChatTurnResult:
        """One conversation turn over an analyzed document."""
        return self._call_with_retry(
            self.conversation_agent.chat,
            message,
            history,
            analysis_context,
            document_texts,
            session_id=session_id
        )

    def review_documents(
        self,
        target_bytes: bytes,
        target_filename: str,
        target_mime_type: Optional[str] = None,
        reference_bytes: Optional[bytes] = None,
        reference_filename: Optional[str] = None,
        reference_mime_type: Optional[str] = None,
        manual_role: Optional[UserRole] = None,
        session_id: Optional[str] = None
    ) -> ReviewOutcome:
        """Upload workflow: parse, classify unless a role is given, analyze.

        Args:
            target_bytes: Raw target document
            target_filename: Target filename (used for format detection and display)
            target_mime_type: Reported MIME type of the target
            reference_bytes: Optional raw reference document
            reference_filename: Reference filename
            reference_mime_type: Reported MIME type of the reference
            manual_role: Role chosen by the user; skips classification
            session_id: Session identifier (generated if not provided)

        Returns:
            ReviewOutcome with classification, analysis and a new session snapshot
        """
        session_id = session_id or f"session-{uuid.uuid4().hex}"
        session_logger = get_session_logger(session_id, "Pipeline")

        target = self.parser.load_document(target_bytes, target_mime_type, target_filename)
        target_text = target.text

        reference = None
        if reference_bytes is not None:
            reference = self.parser.load_document(
                reference_bytes, reference_mime_type, reference_filename or "reference"
            )
        reference_text = reference.text if reference else None
        reference_filename = reference.name if reference else None

        if manual_role in VALID_ROLES:
            session_logger.info(f"Using manually selected role: {manual_role}")
            classification = manual_preflight(manual_role)
        else:
            preview = get_document_preview(target_text, self.config.preview_max_chars)
            classification = self.classify(preview, session_id=session_id)
            session_logger.info(
                f"Inferred role: {classification.inferred_role} "
                f"(confidence: {classification.confidence})"
            )

        analysis = self.analyze(
            target_text,
            classification.inferred_role,
            target.name,
            reference_text=reference_text,
            reference_name=reference_filename,
            session_id=session_id
        )

        session = self.session_manager.create_session(
            target_document_text=target_text,
            target_document_name=target.name,
            analysis_result=analysis,
            reference_document_text=reference_text,
            reference_document_name=reference_filename,
            session_id=session_id
        )

        return ReviewOutcome(classification=classification, analysis=analysis, session=session)


def create_pipeline(
    config: Optional[PipelineConfig] = None,
    model_client: Optional[ModelClient] = None,
    retry_config: Optional[RetryConfig] = None
) -> FundReviewPipeline:
    """Factory function to create a pipeline with environment-based configuration.

    Args:
        config: Optional configuration (read from the environment if not provided)
        model_client: Optional model client (Gemini client if not provided)
        retry_config: Optional retry policy

    Returns:
        Configured FundReviewPipeline instance
    """
    if config is None:
        config = PipelineConfig.from_env()

    if model_client is None:
        model_client = GeminiModelClient(config)

    return FundReviewPipeline(
        config=config,
        model_client=model_client,
        retry_config=retry_config or MODEL_RETRY_CONFIG
    )
