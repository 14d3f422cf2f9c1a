"""
Data Models - msgspec Structs for the review pipeline.

These models define the records passed between pipeline stages and
returned to callers. All structs encode to camelCase JSON so the wire
format matches what the browser client stores in its session snapshot.

Using msgspec provides:
- Fast JSON serialization/deserialization
- Type validation at runtime (closed Literal sets for every enum)
- Immutable records where the lifecycle demands it (ChatMessage)
"""

from datetime import datetime
from typing import List, Literal, Optional
from msgspec import Struct


NOT_FOUND_SENTINEL = "Not found in document"
MAX_QUOTE_LENGTH = 250
MAX_CRITICAL_ISSUES = 3
MAX_ISSUES = 10

UserRole = Literal["gp", "lp"]
Confidence = Literal["high", "medium", "low"]
DocumentType = Literal["side-letter", "lpa", "sub-doc", "co-invest", "other"]
Directionality = Literal["incoming", "outgoing", "unknown"]
RiskLevel = Literal["blocker", "negotiate", "standard"]
Verdict = Literal["safe-to-sign", "negotiate", "high-risk", "do-not-sign"]
FixApproach = Literal["soft", "hard"]
DocumentSlot = Literal["target", "reference"]
RegulatoryCategory = Literal["erisa", "ubti-eci", "foia", "ofac-aml", "state-law"]
RegulatoryStatus = Literal["clear", "flag", "needs-review"]
MessageRole = Literal["user", "assistant"]
IssueTopic = Literal[
    "management-fee",
    "carried-interest",
    "preferred-return",
    "clawback",
    "fee-offset",
    "indemnification",
    "exculpation",
    "mfn",
    "co-invest",
    "liquidity",
    "transfer-restrictions",
    "reporting",
    "audit-rights",
    "governance",
    "lp-advisory-committee",
    "key-person",
    "gp-removal",
    "term-extensions",
    "erisa",
    "tax",
    "confidentiality",
    "other",
]

ISSUE_TOPICS = IssueTopic.__args__
RISK_RANK = {"blocker": 0, "negotiate": 1, "standard": 2}


class Document(Struct, frozen=True, rename="camel"):
    """Uploaded document text held only for the lifetime of a request."""
    name: str
    text: str
    mime_hint: Optional[str] = None


class PreflightResult(Struct, rename="camel"):
    """Role / document-type inference produced from a document preview."""
    inferred_role: UserRole
    confidence: Confidence
    document_type: DocumentType
    directionality: Directionality
    rationale: str


class ClauseReference(Struct, rename="camel"):
    """Pointer into a document with a verbatim supporting quote."""
    document: DocumentSlot
    locator: str
    quote: str


class RedlineChange(Struct, rename="camel"):
    """Exact text swap proposed for negotiation."""
    original: str
    proposed: str
    market_justification: str = ""


class SuggestedFix(Struct, rename="camel"):
    """One way of curing an issue, soft (tweak) or hard (rewrite)."""
    approach: FixApproach
    description: str
    redline: RedlineChange


class Issue(Struct, rename="camel", kw_only=True, omit_defaults=True):
    """A single finding anchored to the target document."""
    id: str
    risk: RiskLevel
    topic: IssueTopic
    title: str
    summary: str
    impact_analysis: str
    target_ref: ClauseReference
    fixes: List[SuggestedFix]
    reference_ref: Optional[ClauseReference] = None
    market_context: Optional[str] = None


class RegulatoryFlag(Struct, rename="camel"):
    """Regulatory category check (ERISA, UBTI/ECI, FOIA, ...)."""
    category: RegulatoryCategory
    status: RegulatoryStatus
    summary: str


class AnalysisMetadata(Struct, rename="camel", omit_defaults=True):
    """Facts stamped by the pipeline, never taken from model output."""
    analysis_timestamp: str
    target_document_name: str
    model_used: str
    reference_document_name: Optional[str] = None


class AnalysisResult(Struct, rename="camel", kw_only=True):
    """Structured decision dashboard for one target document."""
    verdict: Verdict
    verdict_rationale: str = ""
    protecting_role: UserRole
    key_action: str = ""
    critical_issues: List[Issue] = []
    issues: List[Issue] = []
    regulatory_flags: List[RegulatoryFlag] = []
    assumptions: List[str] = []
    uncurable_structural_issue: bool = False
    material_economic_impact: bool = False
    metadata: AnalysisMetadata

    @property
    def blocker_count(self) -> int:
        return sum(1 for issue in self.critical_issues if issue.risk == "blocker")

    @property
    def negotiate_count(self) -> int:
        return sum(1 for issue in self.issues if issue.risk == "negotiate")


class ChatMessage(Struct, frozen=True, rename="camel"):
    """One immutable message in a conversation."""
    id: str
    role: MessageRole
    content: str
    timestamp: datetime


class DocumentTexts(Struct, rename="camel", omit_defaults=True):
    """Document texts replayed by the client on every chat turn."""
    target: str
    target_name: str
    reference: Optional[str] = None
    reference_name: Optional[str] = None


class ChatTurnResult(Struct, rename="camel"):
    """Reply text plus the caller's history extended by one turn."""
    reply: str
    updated_history: List[ChatMessage]
    intent: Literal["drafting", "qa"] = "qa"
    document_attached: bool = False


class SessionState(Struct, rename="camel", kw_only=True):
    """Client-held session snapshot; never stored server-side."""
    session_id: str
    analysis_result: Optional[AnalysisResult] = None
    target_document_text: str
    target_document_name: str
    reference_document_text: Optional[str] = None
    reference_document_name: Optional[str] = None
    conversation_history: List[ChatMessage] = []
    created_at: datetime


class ReviewOutcome(Struct, rename="camel"):
    """Upload workflow result: preflight, analysis and a fresh session snapshot."""
    classification: PreflightResult
    analysis: AnalysisResult
    session: SessionState
