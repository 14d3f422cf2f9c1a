"""Tests for the preflight classification stage."""

from __future__ import annotations

import json

import pytest

from factories import SIDE_LETTER_TEXT, FakeModelClient
from fundreview.agents.classification_agent import (
    MANUAL_ROLE_RATIONALE,
    ClassificationAgent,
    has_explicit_role_statement,
    manual_preflight,
)
from fundreview.config import PipelineConfig
from fundreview.error_handling import ClassificationParseError, ModelInvocationError


def classification_response(**fields) -> str:
    payload = {
        "inferredRole": "lp",
        "confidence": "high",
        "documentType": "side-letter",
        "directionality": "incoming",
        "rationale": "The letter grants accommodations to an investor.",
    }
    payload.update(fields)
    return f"```json\n{json.dumps(payload)}\n```"


@pytest.fixture
def agent(config: PipelineConfig, fake_model: FakeModelClient) -> ClassificationAgent:
    return ClassificationAgent(config, fake_model)


# ---------------------------------------------------------------------------
# Confidence rules
# ---------------------------------------------------------------------------


class TestConfidence:
    def test_high_without_explicit_statement_is_downgraded(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        fake_model.queue(classification_response())

        result = agent.classify(SIDE_LETTER_TEXT, session_id="s-1")

        assert result.inferred_role == "lp"
        assert result.confidence == "medium"
        assert result.document_type == "side-letter"
        assert result.directionality == "incoming"

    def test_high_kept_with_explicit_statement(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        preview = "This letter is delivered on behalf of the General Partner.\n\n" + SIDE_LETTER_TEXT
        fake_model.queue(classification_response(inferredRole="gp", directionality="outgoing"))

        result = agent.classify(preview)

        assert result.inferred_role == "gp"
        assert result.confidence == "high"

    def test_role_statement_beyond_preview_is_ignored(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        text = SIDE_LETTER_TEXT + "\n" * 10 + "x" * 6000 + "\nSigned on behalf of the General Partner."
        fake_model.queue(classification_response(inferredRole="gp"))

        result = agent.classify(text)

        assert "Signed on behalf of the General Partner" not in fake_model.last_prompt
        assert result.confidence == "medium"

    def test_medium_and_low_pass_through(self, agent: ClassificationAgent, fake_model: FakeModelClient) -> None:
        fake_model.queue(classification_response(confidence="low"))
        assert agent.classify(SIDE_LETTER_TEXT).confidence == "low"

    @pytest.mark.parametrize("preview, expected", [
        ("Signed on behalf of the General Partner", True),
        ("acting as Limited Partner under the Agreement", True),
        ("We, as an Investor, request the following", True),
        ("The General Partner shall provide reports", False),
        ("", False),
    ])
    def test_explicit_role_statement(self, preview: str, expected: bool) -> None:
        assert has_explicit_role_statement(preview) is expected


# ---------------------------------------------------------------------------
# Manual role
# ---------------------------------------------------------------------------


class TestManualRole:
    def test_manual_role_overrides_inference(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        fake_model.queue(classification_response(inferredRole="lp", confidence="low"))

        result = agent.classify(SIDE_LETTER_TEXT, manual_role="gp")

        assert result.inferred_role == "gp"
        assert result.confidence == "high"
        assert result.rationale == MANUAL_ROLE_RATIONALE
        assert result.document_type == "side-letter"

    def test_manual_role_rescues_unrecognised_role(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        fake_model.queue(classification_response(inferredRole="unclear"))
        assert agent.classify(SIDE_LETTER_TEXT, manual_role="lp").inferred_role == "lp"

    def test_manual_preflight_without_model(self) -> None:
        result = manual_preflight("gp")
        assert result.inferred_role == "gp"
        assert result.confidence == "high"
        assert result.document_type == "other"
        assert result.directionality == "unknown"
        assert result.rationale == MANUAL_ROLE_RATIONALE


# ---------------------------------------------------------------------------
# Model call and parsing
# ---------------------------------------------------------------------------


class TestModelCall:
    def test_uses_low_temperature(self, agent: ClassificationAgent, fake_model: FakeModelClient) -> None:
        fake_model.queue(classification_response())
        agent.classify(SIDE_LETTER_TEXT)

        _, settings = fake_model.calls[0]
        assert settings.temperature == pytest.approx(0.3)

    def test_preview_is_capped(self, agent: ClassificationAgent, fake_model: FakeModelClient) -> None:
        text = "x" * 6000 + " TAIL-MARKER"
        fake_model.queue(classification_response())

        agent.classify(text)

        assert "x" * 100 in fake_model.last_prompt
        assert "TAIL-MARKER" not in fake_model.last_prompt

    def test_prompt_lists_allowed_values(self, agent: ClassificationAgent) -> None:
        prompt = agent.build_prompt(SIDE_LETTER_TEXT)
        for value in ("gp", "lp", "side-letter", "lpa", "sub-doc", "co-invest", "incoming", "outgoing"):
            assert value in prompt
        assert "Evergreen Capital Fund IV" in prompt

    def test_no_json_raises_parse_error(self, agent: ClassificationAgent, fake_model: FakeModelClient) -> None:
        fake_model.queue("I think this is probably for an investor.")
        with pytest.raises(ClassificationParseError):
            agent.classify(SIDE_LETTER_TEXT)

    def test_unrecognised_role_raises_parse_error(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        fake_model.queue(classification_response(inferredRole="auditor"))
        with pytest.raises(ClassificationParseError):
            agent.classify(SIDE_LETTER_TEXT)

    def test_model_failure_propagates_without_retry(
        self, agent: ClassificationAgent, fake_model: FakeModelClient
    ) -> None:
        fake_model.queue(ModelInvocationError("timed out"))
        with pytest.raises(ModelInvocationError):
            agent.classify(SIDE_LETTER_TEXT)
        assert len(fake_model.calls) == 1

    def test_loose_values_are_coerced(self, agent: ClassificationAgent, fake_model: FakeModelClient) -> None:
        fake_model.queue(classification_response(
            inferredRole="Limited Partner",
            confidence="certain",
            documentType="Side Letter",
            directionality="sideways",
        ))

        result = agent.classify(SIDE_LETTER_TEXT)

        assert result.inferred_role == "lp"
        assert result.confidence == "low"
        assert result.document_type == "side-letter"
        assert result.directionality == "unknown"
