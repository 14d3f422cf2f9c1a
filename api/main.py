"""
FastAPI Backend for the Private Fund Document Review pipeline.

This module provides the REST API layer:
- Preflight classification of a document preview
- Full role-conditioned analysis
- Conversational follow-up over an analyzed document
- One-shot upload workflow (parse -> classify -> analyze)

Architecture:
    Client -> FastAPI -> FundReviewPipeline -> Stages -> Model

The API keeps no session state. Every chat call replays the history,
analysis and document texts the client holds.
"""

import os
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Literal, Optional

import msgspec
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.security import (
    get_security_headers,
    is_development,
    log_security_audit,
    validate_environment_security,
)
from fundreview.error_handling import (
    DocumentParsingError,
    EmptyContentError,
    FundReviewError,
    InputValidationError,
    ModelInvocationError,
    ResponseParseError,
    SchemaViolationError,
    SessionError,
    UnsupportedFormatError,
)
from fundreview.logging_config import setup_logging
from fundreview.models import AnalysisResult, ChatMessage, DocumentTexts
from fundreview.orchestrator import FundReviewPipeline, create_pipeline
from tools.document_parser import FileValidator

load_dotenv()

setup_logging(
    log_dir="logs",
    level=os.getenv("LOG_LEVEL", "INFO"),
    rotation="100 MB",
    retention="30 days",
)


# =============================================================================
# Application
# =============================================================================

API_VERSION = "1.0.0"
LOCAL_CLIENTS = {"127.0.0.1", "localhost", "::1"}

RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "50"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", "60"))
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "50"))

app = FastAPI(
    title="Private Fund Document Review API",
    description="Role-aware review of side letters, LPAs and subscription documents",
    version=API_VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)


# =============================================================================
# Middleware
# =============================================================================


class SlidingWindowRateLimiter:
    """Per-client request budget over a sliding time window, held in memory."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, client: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        hits = self._hits[client]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True

    def reset(self) -> None:
        self._hits.clear()


rate_limiter = SlidingWindowRateLimiter(RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Apply the rate limit to /api routes; local clients are exempt."""
    client = request.client.host if request.client else "unknown"
    if request.url.path.startswith("/api") and client not in LOCAL_CLIENTS:
        if not rate_limiter.allow(client):
            logger.warning("Rate limit exceeded", client=client, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content=error_body("Too many requests, please try again later."),
            )
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(get_security_headers())
    return response


# =============================================================================
# Error Mapping
# =============================================================================


def status_for_error(error: FundReviewError) -> int:
    """HTTP status code for a pipeline error."""
    if isinstance(error, UnsupportedFormatError):
        return 415
    if isinstance(error, (EmptyContentError, DocumentParsingError)):
        return 422
    if isinstance(error, (InputValidationError, SessionError)):
        return 400
    if isinstance(error, ModelInvocationError):
        timed_out = isinstance(error.cause, TimeoutError) or "timed out" in str(error).lower()
        return 504 if timed_out else 502
    if isinstance(error, (ResponseParseError, SchemaViolationError)):
        return 502
    return 500


def error_body(error: str, details: Optional[str] = None) -> Dict[str, str]:
    body = {"error": error}
    if details and is_development():
        body["details"] = details
    return body


@app.exception_handler(FundReviewError)
async def fund_review_error_handler(request: Request, exc: FundReviewError):
    status_code = status_for_error(exc)
    logger.warning(
        f"Request failed: {exc.user_message}",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__
    )
    return JSONResponse(status_code=status_code, content=error_body(exc.user_message, str(exc)))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(part) for part in err["loc"][1:]) for err in exc.errors())
    return JSONResponse(
        status_code=400,
        content=error_body("Invalid request", f"Invalid or missing fields: {fields}"),
    )


# =============================================================================
# Pipeline Singleton
# =============================================================================

pipeline: Optional[FundReviewPipeline] = None


def get_pipeline() -> FundReviewPipeline:
    """Lazy initialization of the review pipeline singleton."""
    global pipeline
    if pipeline is None:
        pipeline = create_pipeline()
        logger.info("Pipeline initialized")
    return pipeline


# =============================================================================
# Request Models
# =============================================================================


class CamelModel(BaseModel):
    """Request body using the client's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClassifyRequest(CamelModel):
    """Preflight request: opening text of a document."""

    document_text: str = Field(min_length=1)
    user_role: Optional[Literal["gp", "lp"]] = None
    session_id: Optional[str] = None


class AnalyzeRequest(CamelModel):
    """Full analysis request."""

    target_document_text: str = Field(min_length=1)
    user_role: Literal["gp", "lp"]
    target_document_name: str = Field(min_length=1)
    reference_document_text: Optional[str] = None
    reference_document_name: Optional[str] = None
    session_id: Optional[str] = None


class ChatRequest(CamelModel):
    """One conversation turn; all context is replayed by the client."""

    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    conversation_history: List[Dict[str, Any]] = []
    analysis_context: Dict[str, Any]
    document_texts: Dict[str, Any]


def _convert(value: Any, target_type: Any, field_name: str) -> Any:
    """Convert a JSON fragment into a msgspec record."""
    try:
        return msgspec.convert(value, target_type, strict=False)
    except msgspec.ValidationError as e:
        raise InputValidationError(f"{field_name} is malformed: {e}", cause=e) from e


# =============================================================================
# API Endpoints
# =============================================================================


@app.get("/")
async def root():
    return {
        "service": app.title,
        "version": API_VERSION,
        "routes": ["/api/classify", "/api/analyze", "/api/chat", "/api/upload/analyze"],
    }


@app.get("/health")
async def health_check():
    """Liveness probe; does not touch the model."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.post("/api/classify")
def classify_document(
    request: ClassifyRequest,
    review_pipeline: FundReviewPipeline = Depends(get_pipeline),
):
    """Classify a document preview to infer the user's role (preflight)."""
    result = review_pipeline.classify(
        request.document_text,
        manual_role=request.user_role,
        session_id=request.session_id or "default"
    )
    return msgspec.to_builtins(result)


@app.post("/api/analyze")
def analyze_document(
    request: AnalyzeRequest,
    review_pipeline: FundReviewPipeline = Depends(get_pipeline),
):
    """Analyze a document and return the structured AnalysisResult."""
    result = review_pipeline.analyze(
        request.target_document_text,
        request.user_role,
        request.target_document_name,
        reference_text=request.reference_document_text or None,
        reference_name=request.reference_document_name,
        session_id=request.session_id or "default"
    )
    return msgspec.to_builtins(result)


@app.post("/api/chat")
def chat(
    request: ChatRequest,
    review_pipeline: FundReviewPipeline = Depends(get_pipeline),
):
    """Answer a follow-up question about an analyzed document."""
    history = _convert(request.conversation_history, List[ChatMessage], "conversationHistory")
    analysis_context = _convert(request.analysis_context, AnalysisResult, "analysisContext")
    document_texts = _convert(request.document_texts, DocumentTexts, "documentTexts")

    logger.info(
        "Chat request received",
        session_id=request.session_id,
        history_messages=len(history)
    )

    turn = review_pipeline.chat(
        request.message,
        history,
        analysis_context,
        document_texts,
        session_id=request.session_id
    )
    return {
        "reply": turn.reply,
        "conversationHistory": msgspec.to_builtins(turn.updated_history),
    }


@app.post("/api/upload/analyze")
async def upload_and_analyze(
    targetDocument: UploadFile = File(...),
    referenceDocument: Optional[UploadFile] = File(None),
    userRole: Optional[str] = Form(None),
    review_pipeline: FundReviewPipeline = Depends(get_pipeline),
):
    """Complete workflow: upload -> parse -> classify (unless role given) -> analyze.

    Returns:
        classification, analysis and a fresh session snapshot
    """
    validator = FileValidator(max_size_mb=MAX_FILE_SIZE_MB)

    uploads = {"targetDocument": targetDocument}
    if referenceDocument is not None and referenceDocument.filename:
        uploads["referenceDocument"] = referenceDocument

    contents: Dict[str, bytes] = {}
    for field_name, upload in uploads.items():
        content = await upload.read()
        validation = validator.validate_file(
            upload.filename or field_name,
            len(content),
            mime_type=upload.content_type,
            file_content=content
        )
        if validation["too_large"]:
            return JSONResponse(
                status_code=413,
                content=error_body("File too large", f"Maximum file size is {MAX_FILE_SIZE_MB}MB"),
            )
        if validation["file_format"] is None:
            raise UnsupportedFormatError(f"{field_name}: {upload.content_type} ({upload.filename})")
        if not validation["valid"]:
            raise InputValidationError(f"{field_name}: " + "; ".join(validation["errors"]))
        contents[field_name] = content

    session_id = f"session-{uuid.uuid4().hex}"
    log_security_audit(
        "documents_received",
        session_id,
        {
            "target_filename": targetDocument.filename,
            "target_size_bytes": len(contents["targetDocument"]),
            "has_reference": "referenceDocument" in contents,
        },
    )

    manual_role = userRole if userRole in ("gp", "lp") else None
    reference = uploads.get("referenceDocument")

    outcome = await run_in_threadpool(
        review_pipeline.review_documents,
        contents["targetDocument"],
        targetDocument.filename or "targetDocument",
        target_mime_type=targetDocument.content_type,
        reference_bytes=contents.get("referenceDocument"),
        reference_filename=reference.filename if reference else None,
        reference_mime_type=reference.content_type if reference else None,
        manual_role=manual_role,
        session_id=session_id
    )
    return msgspec.to_builtins(outcome)


@app.on_event("startup")
async def startup_event():
    """Refuse to start with an unusable configuration; build the pipeline eagerly."""
    check = validate_environment_security()

    for warning in check["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    if not check["valid"]:
        for problem in check["errors"]:
            logger.error(f"Configuration error: {problem}")
        raise RuntimeError(
            "Refusing to start the review API:\n"
            + "\n".join(f"  - {problem}" for problem in check["errors"])
        )

    get_pipeline()
    logger.info("Review API ready", version=API_VERSION, max_file_size_mb=MAX_FILE_SIZE_MB)
