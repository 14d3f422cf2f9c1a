"""Result validation and normalization for model-produced analyses.

The model is asked to follow the AnalysisResult schema but is never
trusted to. This module:
1. Coerces the raw decoded JSON into typed structs (``from_raw``)
2. Enforces caps, placement and fix requirements on issues
3. Checks every quote against the document it claims to come from
4. Derives the verdict from issue counts instead of accepting the model's

Corrections that are safe happen silently; anything that changes what the
user will read is reported as a data-quality entry in ``assumptions``.
Normalizing an already-normalized result changes nothing.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

import msgspec
from msgspec import Struct
from msgspec.structs import replace
from loguru import logger

from fundreview.error_handling import SchemaViolationError
from fundreview.models import (
    AnalysisMetadata,
    AnalysisResult,
    ClauseReference,
    ISSUE_TOPICS,
    Issue,
    MAX_CRITICAL_ISSUES,
    MAX_ISSUES,
    MAX_QUOTE_LENGTH,
    NOT_FOUND_SENTINEL,
    RISK_RANK,
    RegulatoryFlag,
    Verdict,
)


OMISSION_MARKER = "[...]"
WARNING_PREFIX = "Data quality: "

VERDICTS = ("safe-to-sign", "negotiate", "high-risk", "do-not-sign")
REGULATORY_CATEGORIES = ("erisa", "ubti-eci", "foia", "ofac-aml", "state-law")
REGULATORY_STATUSES = ("clear", "flag", "needs-review")

RISK_ALIASES = {
    "critical": "blocker",
    "high": "blocker",
    "medium": "negotiate",
    "moderate": "negotiate",
    "low": "standard",
    "info": "standard",
}


class NormalizationOutcome(Struct):
    """A normalized result plus the warnings raised while producing it."""
    result: AnalysisResult
    warnings: List[str] = []


def derive_verdict(
    blocker_count: int,
    negotiate_count: int,
    uncurable_structural_issue: bool = False,
    material_economic_impact: bool = False
) -> Verdict:
    """Map issue counts and structural flags onto a verdict.

    - do-not-sign: 3+ blockers, or an uncurable structural issue
    - high-risk: 1-2 blockers
    - negotiate: no blockers but 3+ negotiate items or material economic impact
    - safe-to-sign: no blockers and at most 2 negotiate items
    """
    if blocker_count >= 3 or uncurable_structural_issue:
        return "do-not-sign"
    if blocker_count >= 1:
        return "high-risk"
    if negotiate_count >= 3 or material_economic_impact:
        return "negotiate"
    return "safe-to-sign"


def is_sentinel(quote: str) -> bool:
    return quote.strip().rstrip(".").lower() == NOT_FOUND_SENTINEL.lower()


def quote_segments(quote: str) -> List[str]:
    """Split a quote on omission markers into its verbatim pieces."""
    return [segment.strip() for segment in quote.split(OMISSION_MARKER) if segment.strip()]


def quote_is_grounded(quote: str, document_text: str) -> bool:
    """True if the quote is the sentinel or its pieces occur in order in the text."""
    if quote == NOT_FOUND_SENTINEL:
        return True

    segments = quote_segments(quote)
    if not segments:
        return False

    position = 0
    for segment in segments:
        found = document_text.find(segment, position)
        if found == -1:
            return False
        position = found + len(segment)
    return True


def locate_quote(quote: str, document_text: str) -> Optional[str]:
    """Find the exact document span a whitespace-drifted quote refers to.

    Models re-flow line breaks and wrap quotes in quotation marks; the
    tokens still have to appear in order with only whitespace between them.
    """
    for candidate in (quote, quote.strip('"\'“”')):
        tokens = candidate.split()
        if not tokens:
            continue
        pattern = r"\s+".join(re.escape(token) for token in tokens)
        match = re.search(pattern, document_text)
        if match:
            return match.group(0)
    return None


def shorten_quote(quote: str, limit: int = MAX_QUOTE_LENGTH) -> str:
    """Cut a quote to ``limit`` characters, ending in an omission marker."""
    if len(quote) <= limit:
        return quote

    cut = quote[:limit - len(OMISSION_MARKER) - 1].rstrip()
    # Never leave half an omission marker behind
    partial = cut.rfind("[")
    if partial != -1 and partial >= len(cut) - len(OMISSION_MARKER):
        cut = cut[:partial].rstrip()
    return f"{cut} {OMISSION_MARKER}"


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


class ResultValidator:
    """Coerces and normalizes AnalysisResult payloads."""

    # Raw payload handling

    def from_raw(
        self,
        raw: Any,
        *,
        protecting_role: str,
        metadata: AnalysisMetadata
    ) -> NormalizationOutcome:
        """Coerce a decoded model payload into an AnalysisResult.

        Args:
            raw: Decoded JSON object from the model response
            protecting_role: Role the analysis was conducted for
            metadata: Pipeline-stamped metadata

        Returns:
            Outcome holding the typed (not yet normalized) result and any
            coercion warnings

        Raises:
            SchemaViolationError: If the payload is not an analysis at all
        """
        if not isinstance(raw, dict):
            raise SchemaViolationError(f"Expected a JSON object, got {type(raw).__name__}")

        if not any(key in raw for key in ("verdict", "criticalIssues", "issues")):
            raise SchemaViolationError(
                "Response carries none of verdict, criticalIssues or issues"
            )

        warnings: List[str] = []

        critical_issues = self._coerce_issues(raw, "criticalIssues", "blocker", warnings)
        issues = self._coerce_issues(raw, "issues", "standard", warnings)
        regulatory_flags = self._coerce_flags(raw.get("regulatoryFlags"), warnings)

        raw_assumptions = raw.get("assumptions")
        assumptions = (
            [_text(a) for a in raw_assumptions if isinstance(a, str) and a.strip()]
            if isinstance(raw_assumptions, list) else []
        )

        uncurable = _flag(raw.get("uncurableStructuralIssue"))
        economic = _flag(raw.get("materialEconomicImpact"))

        verdict = _text(raw.get("verdict")).lower()
        if verdict not in VERDICTS:
            warnings.append(
                f"The model returned no recognised verdict ({verdict or 'none'}); "
                "the verdict was derived from issue counts."
            )
            verdict = derive_verdict(
                sum(1 for i in critical_issues if i.risk == "blocker"),
                sum(1 for i in issues if i.risk == "negotiate"),
                uncurable,
                economic
            )

        result = AnalysisResult(
            verdict=verdict,
            verdict_rationale=_text(raw.get("verdictRationale")),
            protecting_role=protecting_role,
            key_action=_text(raw.get("keyAction")),
            critical_issues=critical_issues,
            issues=issues,
            regulatory_flags=regulatory_flags,
            assumptions=assumptions,
            uncurable_structural_issue=uncurable,
            material_economic_impact=economic,
            metadata=metadata
        )
        return NormalizationOutcome(result=result, warnings=warnings)

    def _coerce_issues(
        self,
        raw: Dict[str, Any],
        key: str,
        default_risk: str,
        warnings: List[str]
    ) -> List[Issue]:
        value = raw.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            warnings.append(
                f"'{key}' was a {type(value).__name__} rather than a list and was read as empty."
            )
            return []

        coerced = []
        for index, raw_issue in enumerate(value):
            issue = self._coerce_issue(raw_issue, default_risk)
            if issue is None:
                warnings.append(f"Entry {index + 1} of {key} could not be read and was omitted.")
                continue
            coerced.append(issue)
        return coerced

    def _coerce_issue(self, raw_issue: Any, default_risk: str) -> Optional[Issue]:
        if not isinstance(raw_issue, dict):
            return None

        risk = _text(raw_issue.get("risk")).lower()
        risk = RISK_ALIASES.get(risk, risk)
        if risk not in RISK_RANK:
            risk = default_risk

        topic = _text(raw_issue.get("topic")).lower().replace("_", "-").replace(" ", "-")
        if topic not in ISSUE_TOPICS:
            topic = "other"

        target_ref = self._coerce_reference(raw_issue.get("targetRef"), "target")
        if target_ref is None:
            target_ref = {"document": "target", "locator": "", "quote": NOT_FOUND_SENTINEL}

        fixes = []
        raw_fixes = raw_issue.get("fixes")
        for raw_fix in raw_fixes if isinstance(raw_fixes, list) else []:
            if not isinstance(raw_fix, dict):
                continue
            approach = _text(raw_fix.get("approach")).lower()
            redline = raw_fix.get("redline") if isinstance(raw_fix.get("redline"), dict) else {}
            fixes.append({
                "approach": approach if approach in ("soft", "hard") else "soft",
                "description": _text(raw_fix.get("description")),
                "redline": {
                    "original": _text(redline.get("original")),
                    "proposed": _text(redline.get("proposed")),
                    "marketJustification": _text(redline.get("marketJustification")),
                },
            })

        data = {
            "id": _text(raw_issue.get("id")),
            "risk": risk,
            "topic": topic,
            "title": _text(raw_issue.get("title")),
            "summary": _text(raw_issue.get("summary")),
            "impactAnalysis": _text(raw_issue.get("impactAnalysis")),
            "targetRef": target_ref,
            "fixes": fixes,
        }
        reference_ref = self._coerce_reference(raw_issue.get("referenceRef"), "reference")
        if reference_ref is not None:
            data["referenceRef"] = reference_ref
        market_context = _text(raw_issue.get("marketContext"))
        if market_context:
            data["marketContext"] = market_context

        try:
            return msgspec.convert(data, Issue, strict=False)
        except msgspec.ValidationError as e:
            logger.warning(f"Dropping unreadable issue: {e}")
            return None

    def _coerce_reference(self, raw_ref: Any, slot: str) -> Optional[Dict[str, str]]:
        if not isinstance(raw_ref, dict):
            return None
        return {
            "document": slot,
            "locator": _text(raw_ref.get("locator")),
            "quote": _text(raw_ref.get("quote")) or NOT_FOUND_SENTINEL,
        }

    def _coerce_flags(self, raw_flags: Any, warnings: List[str]) -> List[RegulatoryFlag]:
        if not isinstance(raw_flags, list):
            return []

        flags = []
        for raw_flag in raw_flags:
            if not isinstance(raw_flag, dict):
                continue
            category = _text(raw_flag.get("category")).lower().replace("_", "-").replace("/", "-")
            if category not in REGULATORY_CATEGORIES:
                warnings.append(
                    f"A regulatory flag with unrecognised category '{category or 'none'}' was omitted."
                )
                continue
            status = _text(raw_flag.get("status")).lower().replace(" ", "-")
            flags.append(RegulatoryFlag(
                category=category,
                status=status if status in REGULATORY_STATUSES else "needs-review",
                summary=_text(raw_flag.get("summary"))
            ))
        return flags

    # Structural normalization

    def normalize(
        self,
        result: AnalysisResult,
        target_text: Optional[str] = None,
        reference_text: Optional[str] = None,
        extra_warnings: Optional[List[str]] = None
    ) -> NormalizationOutcome:
        """Enforce the AnalysisResult invariants.

        When ``target_text`` is given, quotes are checked against it (and
        reference quotes against ``reference_text``; with no reference
        document any reference quote is dropped). Without it, only
        structural rules are applied.

        Args:
            result: Typed analysis result
            target_text: Text the target quotes must come from
            reference_text: Text the reference quotes must come from
            extra_warnings: Warnings from earlier steps to record as well

        Returns:
            Outcome with the normalized result and the warnings it raised
        """
        warnings: List[str] = list(extra_warnings or [])
        verify = target_text is not None

        critical: List[Issue] = []
        others: List[Issue] = []

        for issue in result.critical_issues:
            issue = self._normalize_issue(issue, target_text, reference_text, verify, warnings)
            if issue is None:
                continue
            if issue.risk == "blocker":
                critical.append(issue)
            else:
                warnings.append(
                    f"'{issue.title}' was listed as critical but rated '{issue.risk}'; "
                    "it was moved to the other issues."
                )
                others.append(issue)

        for issue in result.issues:
            issue = self._normalize_issue(issue, target_text, reference_text, verify, warnings)
            if issue is None:
                continue
            if issue.risk == "blocker":
                warnings.append(f"Blocker '{issue.title}' was promoted to the critical issues.")
                critical.append(issue)
            else:
                others.append(issue)

        if len(critical) > MAX_CRITICAL_ISSUES:
            dropped = critical[MAX_CRITICAL_ISSUES:]
            critical = critical[:MAX_CRITICAL_ISSUES]
            warnings.append(
                f"{len(critical) + len(dropped)} blocker issues were returned; only the first "
                f"{MAX_CRITICAL_ISSUES} are kept (omitted: "
                + ", ".join(f"'{issue.title}'" for issue in dropped) + ")."
            )

        # Stable sort keeps the model's priority order within a risk level
        others.sort(key=lambda issue: RISK_RANK[issue.risk])
        if len(others) > MAX_ISSUES:
            dropped = others[MAX_ISSUES:]
            others = others[:MAX_ISSUES]
            warnings.append(
                f"{len(others) + len(dropped)} non-blocker issues were returned; only the "
                f"{MAX_ISSUES} highest-risk are kept."
            )

        critical, others = self._assign_ids(critical, others)

        negotiate_count = sum(1 for issue in others if issue.risk == "negotiate")
        verdict = derive_verdict(
            len(critical),
            negotiate_count,
            result.uncurable_structural_issue,
            result.material_economic_impact
        )
        if verdict != result.verdict:
            warnings.append(
                f"Model-declared verdict '{result.verdict}' did not match the issue counts "
                f"({len(critical)} blockers, {negotiate_count} negotiate items); "
                f"verdict set to '{verdict}'."
            )

        assumptions = list(result.assumptions)
        for warning in warnings:
            entry = f"{WARNING_PREFIX}{warning}"
            if entry not in assumptions:
                assumptions.append(entry)

        if warnings:
            logger.warning("Analysis result normalized with corrections", warning_count=len(warnings))

        normalized = replace(
            result,
            verdict=verdict,
            critical_issues=critical,
            issues=others,
            assumptions=assumptions
        )
        return NormalizationOutcome(result=normalized, warnings=warnings)

    def _normalize_issue(
        self,
        issue: Issue,
        target_text: Optional[str],
        reference_text: Optional[str],
        verify: bool,
        warnings: List[str]
    ) -> Optional[Issue]:
        label = issue.title or issue.id or "untitled issue"

        if not issue.fixes:
            warnings.append(f"'{label}' was omitted because it carried no suggested fix.")
            return None

        target_ref = self._normalize_reference(
            issue.target_ref, "target", target_text, label, warnings
        )

        reference_ref = issue.reference_ref
        if reference_ref is not None:
            if verify and reference_text is None:
                warnings.append(
                    f"'{label}' cited a reference document that was not provided; "
                    "the reference quote was removed."
                )
                reference_ref = None
            else:
                reference_ref = self._normalize_reference(
                    reference_ref, "reference", reference_text, label, warnings
                )

        if target_ref is issue.target_ref and reference_ref is issue.reference_ref:
            return issue
        return replace(issue, target_ref=target_ref, reference_ref=reference_ref)

    def _normalize_reference(
        self,
        ref: ClauseReference,
        slot: str,
        document_text: Optional[str],
        label: str,
        warnings: List[str]
    ) -> ClauseReference:
        quote = ref.quote.strip()

        if is_sentinel(quote):
            quote = NOT_FOUND_SENTINEL
        elif document_text is not None and not quote_is_grounded(quote, document_text):
            located = None if OMISSION_MARKER in quote else locate_quote(quote, document_text)
            if located is None:
                warnings.append(
                    f"The quote for '{label}' could not be found verbatim in the {slot} "
                    f"document and was replaced with '{NOT_FOUND_SENTINEL}'."
                )
                quote = NOT_FOUND_SENTINEL
            else:
                quote = located

        if len(quote) > MAX_QUOTE_LENGTH:
            warnings.append(
                f"The quote for '{label}' exceeded {MAX_QUOTE_LENGTH} characters and was shortened."
            )
            quote = shorten_quote(quote)

        if quote == ref.quote and ref.document == slot:
            return ref
        return replace(ref, document=slot, quote=quote)

    def _assign_ids(
        self,
        critical: List[Issue],
        others: List[Issue]
    ) -> Tuple[List[Issue], List[Issue]]:
        seen = set()
        counter = 0

        def with_id(issue: Issue) -> Issue:
            nonlocal counter
            counter += 1
            if issue.id and issue.id not in seen:
                seen.add(issue.id)
                return issue
            new_id = f"issue-{counter:03d}"
            while new_id in seen:
                counter += 1
                new_id = f"issue-{counter:03d}"
            seen.add(new_id)
            return replace(issue, id=new_id)

        return [with_id(i) for i in critical], [with_id(i) for i in others]
