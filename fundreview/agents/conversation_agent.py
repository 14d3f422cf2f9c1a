"""Conversation Agent - follow-up Q&A and drafting over an analyzed document.

Each turn is stateless: the caller replays the prior history, the analysis
and the document texts, and gets back the reply plus the history extended by
exactly one user/assistant exchange.

Full document text is attached only when the message asks for specific
provisions; other turns rely on the analysis summary.
"""

import re
from typing import List, Optional, Sequence

from fundreview.config import PipelineConfig
from fundreview.error_handling import InputValidationError
from fundreview.logging_config import get_session_logger, log_stage_execution
from fundreview.model_client import ModelClient
from fundreview.models import (
    AnalysisResult,
    ChatMessage,
    ChatTurnResult,
    DocumentTexts,
    Issue,
)
from fundreview.prompts import (
    DOCUMENTS_ON_REQUEST,
    ChatIntent,
    chat_instructions,
    chat_intro,
)
from memory.conversation_history import append_turn, render_history
from tools.text_normalizer import truncate_document


DRAFTING_PATTERN = re.compile(
    r"\b(drafts?|drafting|writes?|writing|creates?|creating|generates?|generating|compos(e|es|ing))\b",
    re.IGNORECASE
)
DOCUMENT_REQUEST_PATTERN = re.compile(
    r"\b(sections?|clauses?|articles?|show me|find)\b",
    re.IGNORECASE
)


def detect_intent(message: str) -> ChatIntent:
    """Tag a message as drafting or Q&A."""
    return "drafting" if DRAFTING_PATTERN.search(message) else "qa"


def needs_full_document(message: str) -> bool:
    """True when the message asks for specific provisions."""
    return DOCUMENT_REQUEST_PATTERN.search(message) is not None


def _issue_line(issue: Issue) -> str:
    locator = f" ({issue.target_ref.locator})" if issue.target_ref.locator else ""
    return f"- [{issue.risk}] {issue.title}{locator}: {issue.summary}"


def summarize_analysis(analysis: AnalysisResult) -> str:
    """Compact text rendering of an analysis for the chat prompt."""
    lines = [
        "ANALYSIS SUMMARY:",
        f"Verdict: {analysis.verdict}",
    ]
    if analysis.verdict_rationale:
        lines.append(f"Rationale: {analysis.verdict_rationale}")
    if analysis.key_action:
        lines.append(f"Key action: {analysis.key_action}")

    if analysis.critical_issues:
        lines.append("Critical issues:")
        lines.extend(_issue_line(issue) for issue in analysis.critical_issues)
    if analysis.issues:
        lines.append("Other issues:")
        lines.extend(_issue_line(issue) for issue in analysis.issues)
    if analysis.regulatory_flags:
        lines.append("Regulatory flags:")
        lines.extend(
            f"- {flag.category}: {flag.status} - {flag.summary}"
            for flag in analysis.regulatory_flags
        )
    return "\n".join(lines)


class ConversationAgent:
    """Chat stage: (message, history, analysis, documents) -> ChatTurnResult."""

    def __init__(self, config: PipelineConfig, model_client: ModelClient):
        self.config = config
        self.model_client = model_client

    def build_prompt(
        self,
        message: str,
        history: Sequence[ChatMessage],
        analysis_context: AnalysisResult,
        document_texts: DocumentTexts,
        intent: Optional[ChatIntent] = None,
        attach_documents: Optional[bool] = None
    ) -> str:
        """Assemble the prompt for one chat turn.

        Args:
            message: The user's new message
            history: Prior messages, oldest first
            analysis_context: Result of the earlier analysis
            document_texts: Target (and optional reference) document text
            intent: Overrides intent detection
            attach_documents: Overrides the attachment policy

        Returns:
            Prompt text
        """
        if intent is None:
            intent = detect_intent(message)
        if attach_documents is None:
            attach_documents = needs_full_document(message)

        sections: List[str] = [
            chat_intro(analysis_context.protecting_role),
            summarize_analysis(analysis_context),
        ]

        if attach_documents:
            sections.append(
                f"--- TARGET DOCUMENT ({document_texts.target_name}) ---\n"
                f"{truncate_document(document_texts.target, self.config.chat_target_limit)}\n---"
            )
            if document_texts.reference:
                sections.append(
                    f"--- REFERENCE DOCUMENT ({document_texts.reference_name or 'reference'}) ---\n"
                    f"{truncate_document(document_texts.reference, self.config.chat_reference_limit)}\n---"
                )
        else:
            sections.append(DOCUMENTS_ON_REQUEST)

        rendered_history = render_history(history, self.config.chat_history_turns)
        sections.append("CONVERSATION SO FAR:\n" + (rendered_history or "(no previous messages)"))

        sections.append(chat_instructions(intent))
        sections.append(f"User: {message}\nAssistant:")
        return "\n\n".join(sections)

    @log_stage_execution("ConversationStage")
    def chat(
        self,
        message: str,
        history: Sequence[ChatMessage],
        analysis_context: AnalysisResult,
        document_texts: DocumentTexts,
        session_id: str = "default"
    ) -> ChatTurnResult:
        """Answer one chat message.

        Raises:
            InputValidationError: If the message or target text is empty
            ModelInvocationError: If the model call fails or times out
        """
        session_logger = get_session_logger(session_id, "ConversationStage")

        if not message or not message.strip():
            raise InputValidationError("message is required")
        if not document_texts.target:
            raise InputValidationError("documentTexts.target is required")

        intent = detect_intent(message)
        attach_documents = needs_full_document(message)

        prompt = self.build_prompt(
            message,
            history,
            analysis_context,
            document_texts,
            intent=intent,
            attach_documents=attach_documents
        )
        session_logger.info(
            "Chat prompt built",
            intent=intent,
            document_attached=attach_documents,
            history_messages=len(history),
            prompt_length=len(prompt)
        )

        reply = self.model_client.generate(prompt, self.config.chat).strip()

        return ChatTurnResult(
            reply=reply,
            updated_history=append_turn(history, message, reply),
            intent=intent,
            document_attached=attach_documents
        )
