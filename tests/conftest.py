"""Shared test fixtures for the fund review tests."""

from __future__ import annotations

import pytest

from factories import LPA_TEXT, SIDE_LETTER_TEXT, FakeModelClient
from fundreview.config import PipelineConfig
from fundreview.error_handling import RetryConfig
from fundreview.models import (
    AnalysisMetadata,
    AnalysisResult,
    ClauseReference,
    DocumentTexts,
    Issue,
    RedlineChange,
    SuggestedFix,
)
from fundreview.orchestrator import FundReviewPipeline


@pytest.fixture
def fake_model() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(api_key="test-key")


@pytest.fixture
def no_delay_retry() -> RetryConfig:
    return RetryConfig(attempts=2, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def pipeline(config: PipelineConfig, fake_model: FakeModelClient, no_delay_retry: RetryConfig) -> FundReviewPipeline:
    return FundReviewPipeline(config, fake_model, retry_config=no_delay_retry)


@pytest.fixture
def side_letter_text() -> str:
    return SIDE_LETTER_TEXT


@pytest.fixture
def lpa_text() -> str:
    return LPA_TEXT


@pytest.fixture
def sample_analysis() -> AnalysisResult:
    """A normalized analysis of the side letter, as the client would replay it."""
    quote = "The Partnership shall indemnify the General Partner for any losses arising from its negligence."
    return AnalysisResult(
        verdict="high-risk",
        verdict_rationale="Indemnification covers simple negligence.",
        protecting_role="lp",
        key_action="Carve negligence out of the indemnity.",
        critical_issues=[
            Issue(
                id="issue-001",
                risk="blocker",
                topic="indemnification",
                title="Indemnity covers negligence",
                summary="The GP is indemnified for its own negligence.",
                impact_analysis="Your capital funds the GP's mistakes.",
                target_ref=ClauseReference(document="target", locator="Paragraph 3", quote=quote),
                fixes=[
                    SuggestedFix(
                        approach="soft",
                        description="Limit to losses not caused by gross negligence.",
                        redline=RedlineChange(
                            original="arising from its negligence",
                            proposed="other than losses arising from its gross negligence",
                        ),
                    )
                ],
            )
        ],
        metadata=AnalysisMetadata(
            analysis_timestamp="2026-01-05T10:00:00+00:00",
            target_document_name="side_letter.pdf",
            model_used="fake-model",
        ),
    )


@pytest.fixture
def document_texts(side_letter_text: str) -> DocumentTexts:
    return DocumentTexts(target=side_letter_text, target_name="side_letter.pdf")
