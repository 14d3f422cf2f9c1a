"""Private fund document review pipeline.

The pipeline itself lives in ``fundreview.orchestrator``; this package root
only exposes the records, errors, configuration and logging helpers that
the tools and memory packages share.
"""

from fundreview.models import (
    AnalysisMetadata,
    AnalysisResult,
    ChatMessage,
    ChatTurnResult,
    ClauseReference,
    Document,
    DocumentTexts,
    Issue,
    PreflightResult,
    RedlineChange,
    RegulatoryFlag,
    SessionState,
    SuggestedFix,
)

from fundreview.config import GenerationSettings, PipelineConfig

from fundreview.logging_config import (
    setup_logging,
    get_session_logger,
    log_stage_execution,
    log_tool_execution,
)

from fundreview.error_handling import (
    FundReviewError,
    InputValidationError,
    DocumentParsingError,
    UnsupportedFormatError,
    EmptyContentError,
    ModelInvocationError,
    ResponseParseError,
    ClassificationParseError,
    AnalysisParseError,
    SchemaViolationError,
    SessionError,
    RetryConfig,
    MODEL_RETRY_CONFIG,
    retry_with_backoff,
    handle_errors,
)

__version__ = "0.1.0"

__all__ = [
    # Models
    "AnalysisMetadata",
    "AnalysisResult",
    "ChatMessage",
    "ChatTurnResult",
    "ClauseReference",
    "Document",
    "DocumentTexts",
    "Issue",
    "PreflightResult",
    "RedlineChange",
    "RegulatoryFlag",
    "SessionState",
    "SuggestedFix",
    # Configuration
    "GenerationSettings",
    "PipelineConfig",
    # Logging
    "setup_logging",
    "get_session_logger",
    "log_stage_execution",
    "log_tool_execution",
    # Error Handling
    "FundReviewError",
    "InputValidationError",
    "DocumentParsingError",
    "UnsupportedFormatError",
    "EmptyContentError",
    "ModelInvocationError",
    "ResponseParseError",
    "ClassificationParseError",
    "AnalysisParseError",
    "SchemaViolationError",
    "SessionError",
    "RetryConfig",
    "MODEL_RETRY_CONFIG",
    "retry_with_backoff",
    "handle_errors",
]
