"""Tests for result coercion and normalization.

Covers the verdict derivation rule, issue caps and placement, quote
provenance against the source text, and idempotence of normalization.
"""

from __future__ import annotations

import pytest

from factories import SIDE_LETTER_TEXT, analysis_payload, issue_payload
from fundreview.error_handling import SchemaViolationError
from fundreview.models import (
    MAX_QUOTE_LENGTH,
    NOT_FOUND_SENTINEL,
    AnalysisMetadata,
    AnalysisResult,
)
from tools.result_validator import (
    ResultValidator,
    derive_verdict,
    quote_is_grounded,
    shorten_quote,
)


FEE_QUOTE = "The Management Fee shall be calculated on committed capital"
MFN_QUOTE = "The General Partner shall not be required to offer the Investor any rights"
INDEMNITY_QUOTE = "The Partnership shall indemnify the General Partner for any losses arising from its negligence."
REPORTING_QUOTE = "The General Partner will provide quarterly unaudited reports"
KEY_PERSON_QUOTE = "No key person provision shall apply"

LONG_CLAUSE = (
    "Transfers. The Investor may not sell, assign, pledge or otherwise transfer all or "
    "any portion of its interest in the Partnership, whether voluntarily or by operation "
    "of law, without the prior written consent of the General Partner, which consent may "
    "be withheld in the General Partner's sole and absolute discretion for any reason or "
    "no reason, and any purported transfer in violation hereof shall be null and void."
)
LONG_DOCUMENT = SIDE_LETTER_TEXT + "\n\n6. " + LONG_CLAUSE


@pytest.fixture
def validator() -> ResultValidator:
    return ResultValidator()


@pytest.fixture
def metadata() -> AnalysisMetadata:
    return AnalysisMetadata(
        analysis_timestamp="2026-01-05T10:00:00+00:00",
        target_document_name="side_letter.pdf",
        model_used="fake-model",
    )


def build(validator: ResultValidator, metadata: AnalysisMetadata, payload: dict) -> AnalysisResult:
    return validator.from_raw(payload, protecting_role="lp", metadata=metadata).result


def all_quotes(result: AnalysisResult):
    for issue in result.critical_issues + result.issues:
        yield issue.target_ref.quote


# ---------------------------------------------------------------------------
# Verdict derivation
# ---------------------------------------------------------------------------


def expected_verdict(blockers: int, negotiates: int, structural: bool, economic: bool) -> str:
    if structural:
        return "do-not-sign"
    if blockers >= 3:
        return "do-not-sign"
    if blockers in (1, 2):
        return "high-risk"
    if negotiates >= 3 or economic:
        return "negotiate"
    return "safe-to-sign"


class TestDeriveVerdict:
    @pytest.mark.parametrize("structural", [False, True])
    @pytest.mark.parametrize("economic", [False, True])
    def test_enumerated_counts(self, structural: bool, economic: bool) -> None:
        for blockers in range(6):
            for negotiates in range(6):
                assert derive_verdict(blockers, negotiates, structural, economic) == expected_verdict(
                    blockers, negotiates, structural, economic
                ), (blockers, negotiates, structural, economic)

    def test_boundaries(self) -> None:
        assert derive_verdict(0, 2) == "safe-to-sign"
        assert derive_verdict(0, 3) == "negotiate"
        assert derive_verdict(1, 0) == "high-risk"
        assert derive_verdict(2, 5) == "high-risk"
        assert derive_verdict(3, 0) == "do-not-sign"
        assert derive_verdict(0, 0, uncurable_structural_issue=True) == "do-not-sign"
        assert derive_verdict(0, 0, material_economic_impact=True) == "negotiate"


# ---------------------------------------------------------------------------
# Coercion of raw payloads
# ---------------------------------------------------------------------------


class TestFromRaw:
    def test_non_object_payload(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        with pytest.raises(SchemaViolationError):
            validator.from_raw(["not", "an", "object"], protecting_role="lp", metadata=metadata)

    def test_payload_without_analysis_keys(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        with pytest.raises(SchemaViolationError):
            validator.from_raw({"error": "cannot comply"}, protecting_role="lp", metadata=metadata)

    def test_non_list_issues_read_as_empty(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        payload = analysis_payload(issues=[issue_payload("Fee basis", quote=FEE_QUOTE)])
        payload["criticalIssues"] = "None identified"

        outcome = validator.from_raw(payload, protecting_role="lp", metadata=metadata)

        assert outcome.result.critical_issues == []
        assert len(outcome.result.issues) == 1
        assert any("criticalIssues" in warning for warning in outcome.warnings)

    def test_loose_values_are_coerced(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        raw_issue = issue_payload("Fee basis", risk="High", topic="Management Fee")
        raw_issue["fixes"][0]["approach"] = "medium"
        del raw_issue["targetRef"]
        payload = analysis_payload(critical=[raw_issue], verdict="high-risk")

        result = build(validator, metadata, payload)

        issue = result.critical_issues[0]
        assert issue.risk == "blocker"
        assert issue.topic == "management-fee"
        assert issue.fixes[0].approach == "soft"
        assert issue.target_ref.quote == NOT_FOUND_SENTINEL

    def test_unknown_topic_becomes_other(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        payload = analysis_payload(issues=[issue_payload("Odd", topic="side-pocket")])
        assert build(validator, metadata, payload).issues[0].topic == "other"

    def test_stamped_fields_are_not_taken_from_model(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        payload = analysis_payload(protectingRole="gp", metadata={"modelUsed": "other-model"})
        result = build(validator, metadata, payload)
        assert result.protecting_role == "lp"
        assert result.metadata == metadata

    def test_unreadable_entries_are_dropped_with_warning(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        payload = analysis_payload(issues=["just a string", issue_payload("Fee basis")])
        outcome = validator.from_raw(payload, protecting_role="lp", metadata=metadata)
        assert len(outcome.result.issues) == 1
        assert any("could not be read" in w for w in outcome.warnings)

    def test_regulatory_flags(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        payload = analysis_payload(regulatoryFlags=[
            {"category": "ERISA", "status": "maybe", "summary": "Check plan assets."},
            {"category": "cfius", "status": "flag", "summary": "Unknown."},
        ])
        outcome = validator.from_raw(payload, protecting_role="lp", metadata=metadata)
        flags = outcome.result.regulatory_flags
        assert len(flags) == 1
        assert flags[0].category == "erisa"
        assert flags[0].status == "needs-review"
        assert any("cfius" in w for w in outcome.warnings)

    def test_missing_verdict_is_derived(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        payload = analysis_payload(critical=[issue_payload("Indemnity", risk="blocker", quote=INDEMNITY_QUOTE)])
        del payload["verdict"]
        outcome = validator.from_raw(payload, protecting_role="lp", metadata=metadata)
        assert outcome.result.verdict == "high-risk"
        assert outcome.warnings


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeCaps:
    def test_four_blockers_keep_three(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        critical = [
            issue_payload("Fee on committed capital", risk="blocker", quote=FEE_QUOTE),
            issue_payload("No MFN", risk="blocker", quote=MFN_QUOTE, topic="mfn"),
            issue_payload("Negligence indemnity", risk="blocker", quote=INDEMNITY_QUOTE, topic="indemnification"),
            issue_payload("No key person", risk="blocker", quote=KEY_PERSON_QUOTE, topic="key-person"),
        ]
        result = build(validator, metadata, analysis_payload(critical=critical, verdict="do-not-sign"))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        titles = [issue.title for issue in outcome.result.critical_issues]
        assert titles == ["Fee on committed capital", "No MFN", "Negligence indemnity"]
        assert all(issue.risk == "blocker" for issue in outcome.result.critical_issues)
        assert any("No key person" in w for w in outcome.warnings)
        assert any("No key person" in a for a in outcome.result.assumptions)
        assert outcome.result.verdict == "do-not-sign"

    def test_non_blocker_demoted_from_critical(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        critical = [issue_payload("Reporting lag", risk="negotiate", quote=REPORTING_QUOTE)]
        result = build(validator, metadata, analysis_payload(critical=critical))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.critical_issues == []
        assert [issue.title for issue in outcome.result.issues] == ["Reporting lag"]

    def test_blocker_promoted_from_issues(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [issue_payload("Negligence indemnity", risk="blocker", quote=INDEMNITY_QUOTE)]
        result = build(validator, metadata, analysis_payload(issues=issues, verdict="high-risk"))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert [issue.title for issue in outcome.result.critical_issues] == ["Negligence indemnity"]
        assert outcome.result.issues == []

    def test_issue_cap_keeps_highest_risk(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [issue_payload(f"Standard {i}", risk="standard") for i in range(6)]
        issues += [issue_payload(f"Negotiate {i}", risk="negotiate") for i in range(6)]
        result = build(validator, metadata, analysis_payload(issues=issues, verdict="negotiate"))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        kept = outcome.result.issues
        assert len(kept) == 10
        assert [issue.risk for issue in kept[:6]] == ["negotiate"] * 6
        assert [issue.title for issue in kept[:6]] == [f"Negotiate {i}" for i in range(6)]
        assert all(issue.risk == "standard" for issue in kept[6:])

    def test_issue_without_fix_is_omitted(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [issue_payload("No fix offered", fixes=[]), issue_payload("Fee basis")]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert [issue.title for issue in outcome.result.issues] == ["Fee basis"]
        assert any("No fix offered" in w for w in outcome.warnings)

    def test_missing_ids_are_assigned_uniquely(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [
            issue_payload("A", issue_id="fee"),
            issue_payload("B", issue_id="fee"),
            issue_payload("C"),
        ]
        result = build(validator, metadata, analysis_payload(issues=issues))

        ids = [issue.id for issue in validator.normalize(result).result.issues]
        assert ids[0] == "fee"
        assert len(set(ids)) == 3
        assert all(ids)


class TestNormalizeVerdict:
    def test_mismatched_verdict_is_replaced_and_reported(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        critical = [issue_payload("Negligence indemnity", risk="blocker", quote=INDEMNITY_QUOTE)]
        result = build(validator, metadata, analysis_payload(critical=critical, verdict="safe-to-sign"))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.verdict == "high-risk"
        assert any("safe-to-sign" in a and "high-risk" in a for a in outcome.result.assumptions)

    def test_matching_verdict_raises_no_warning(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [issue_payload("Fee basis", risk="negotiate")]
        result = build(validator, metadata, analysis_payload(issues=issues, verdict="safe-to-sign"))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.verdict == "safe-to-sign"
        assert outcome.warnings == []
        assert outcome.result.assumptions == []

    def test_structural_flag_forces_do_not_sign(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        payload = analysis_payload(verdict="do-not-sign", uncurableStructuralIssue=True)
        result = build(validator, metadata, payload)
        assert validator.normalize(result).result.verdict == "do-not-sign"


class TestQuoteProvenance:
    def test_fabricated_quote_becomes_sentinel(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        issues = [issue_payload("Carry", quote="Carried interest shall be 30% of all profits.")]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.issues[0].target_ref.quote == NOT_FOUND_SENTINEL
        assert any("could not be found verbatim" in w for w in outcome.warnings)

    def test_whitespace_drift_is_repaired(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        drifted = "The Management Fee  shall be\ncalculated on committed capital"
        issues = [issue_payload("Fee basis", quote=drifted)]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.issues[0].target_ref.quote == FEE_QUOTE

    def test_wrapping_quotation_marks_are_repaired(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        issues = [issue_payload("Fee basis", quote=f'"{FEE_QUOTE}"')]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        assert outcome.result.issues[0].target_ref.quote == FEE_QUOTE

    def test_omission_marker_segments_in_order(self) -> None:
        quote = "The Management Fee [...] committed capital"
        assert quote_is_grounded(quote, SIDE_LETTER_TEXT)
        assert not quote_is_grounded("committed capital [...] The Management Fee", SIDE_LETTER_TEXT)

    def test_overlong_quote_is_shortened(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        assert len(LONG_CLAUSE) > MAX_QUOTE_LENGTH
        issues = [issue_payload("Transfer consent", quote=LONG_CLAUSE, topic="transfer-restrictions")]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=LONG_DOCUMENT)

        quote = outcome.result.issues[0].target_ref.quote
        assert len(quote) <= MAX_QUOTE_LENGTH
        assert quote.endswith("[...]")
        assert quote_is_grounded(quote, LONG_DOCUMENT)
        assert any("shortened" in w for w in outcome.warnings)

    def test_shorten_quote_within_limit_unchanged(self) -> None:
        assert shorten_quote("short quote") == "short quote"

    def test_reference_quote_without_reference_document(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        reference_ref = {"document": "reference", "locator": "Section 7.3", "quote": "except for losses"}
        issues = [issue_payload("Indemnity gap", referenceRef=reference_ref)]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT, reference_text=None)

        assert outcome.result.issues[0].reference_ref is None
        assert any("reference document" in w for w in outcome.warnings)

    def test_reference_quote_checked_against_reference(
        self, validator: ResultValidator, metadata: AnalysisMetadata, lpa_text: str
    ) -> None:
        reference_ref = {"document": "target", "locator": "Section 7.3", "quote": "except for losses arising from fraud"}
        issues = [issue_payload("Indemnity gap", referenceRef=reference_ref)]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT, reference_text=lpa_text)

        ref = outcome.result.issues[0].reference_ref
        assert ref.document == "reference"
        assert ref.quote == "except for losses arising from fraud"

    def test_every_quote_is_grounded_or_sentinel(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        issues = [
            issue_payload("Real", quote=MFN_QUOTE),
            issue_payload("Invented", quote="The GP may extend the term indefinitely."),
            issue_payload("Drifted", quote="quarterly   unaudited reports"),
            issue_payload("Sentinel", quote="not found in document."),
        ]
        result = build(validator, metadata, analysis_payload(issues=issues))

        outcome = validator.normalize(result, target_text=SIDE_LETTER_TEXT)

        for quote in all_quotes(outcome.result):
            assert quote == NOT_FOUND_SENTINEL or quote in SIDE_LETTER_TEXT
            assert len(quote) <= MAX_QUOTE_LENGTH


class TestIdempotence:
    def test_normalize_twice_is_a_no_op(self, validator: ResultValidator, metadata: AnalysisMetadata) -> None:
        critical = [
            issue_payload(f"Blocker {i}", risk="blocker", quote=INDEMNITY_QUOTE) for i in range(5)
        ]
        issues = [issue_payload(f"Item {i}", risk="standard") for i in range(12)]
        issues.append(issue_payload("Invented", quote="Not in this letter at all."))
        issues.append(issue_payload("Long", quote=LONG_CLAUSE))
        payload = analysis_payload(critical=critical, issues=issues, verdict="safe-to-sign")
        outcome = validator.from_raw(payload, protecting_role="lp", metadata=metadata)

        once = validator.normalize(
            outcome.result, target_text=LONG_DOCUMENT, extra_warnings=outcome.warnings
        ).result
        twice = validator.normalize(once, target_text=LONG_DOCUMENT)

        assert twice.result == once
        assert twice.warnings == []

    def test_structural_only_normalization_is_stable(
        self, validator: ResultValidator, metadata: AnalysisMetadata
    ) -> None:
        issues = [issue_payload(f"Negotiate {i}", risk="negotiate") for i in range(4)]
        result = build(validator, metadata, analysis_payload(issues=issues, verdict="safe-to-sign"))

        once = validator.normalize(result).result
        assert validator.normalize(once).result == once
