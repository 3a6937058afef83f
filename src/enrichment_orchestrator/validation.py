"""
Completeness validation for structured enrichment results.

`validate` is a pure function of (result, schema): no clock, no I/O, and the
same input always yields an equal `ValidationResult`.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConfigurationError
from .paths import FieldPath

NOT_AVAILABLE = "N/A"
RESEARCH_NOTES_FIELD = "_research_notes"
CONFIDENCE_FIELD = "_confidence_level"
INCOMPLETE_WEIGHT = 0.5

_PLACEHOLDERS = frozenset({"tbd", "todo", "à définir", "unknown", "inconnu"})


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class FieldRequirement:
    path: FieldPath
    required: bool = True
    min_length: int | None = None
    min_items: int | None = None
    predicate: Callable[[Any], bool] | None = field(default=None, compare=False)
    predicate_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, FieldPath):
            object.__setattr__(self, "path", FieldPath.parse(self.path))


@dataclass(frozen=True)
class CompletenessSchema:
    kind: str
    version: str
    requirements: tuple[FieldRequirement, ...]

    @property
    def required_count(self) -> int:
        return sum(1 for r in self.requirements if r.required)

    def paths(self) -> list[str]:
        return [str(r.path) for r in self.requirements]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    missing_fields: tuple[str, ...]
    incomplete_fields: tuple[str, ...]
    confidence: Confidence
    completeness_score: int
    quality_issues: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "missingFields": list(self.missing_fields),
            "incompleteFields": list(self.incomplete_fields),
            "confidence": self.confidence.value,
            "completenessScore": self.completeness_score,
            "qualityIssues": list(self.quality_issues),
        }


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _is_not_available(value: Any) -> bool:
    return isinstance(value, str) and NOT_AVAILABLE in value


def _is_placeholder(value: Any) -> bool:
    if isinstance(value, list):
        return not value
    if isinstance(value, dict):
        if not value:
            return True
        return all(v is None or (isinstance(v, str) and not v.strip()) for v in value.values())
    if isinstance(value, str):
        return value.strip().lower() in _PLACEHOLDERS
    return False


def _explained(data: dict[str, Any], path: FieldPath) -> bool:
    notes = data.get(RESEARCH_NOTES_FIELD)
    if isinstance(notes, str):
        return str(path) in notes
    if isinstance(notes, (list, tuple)):
        return any(isinstance(n, str) and str(path) in n for n in notes)
    if isinstance(notes, dict):
        return str(path) in notes
    return False


def _violations(req: FieldRequirement, value: Any) -> list[str]:
    out: list[str] = []
    if req.min_length is not None and isinstance(value, str) and len(value) < req.min_length:
        out.append(f"too short: {len(value)} < {req.min_length}")
    if req.min_items is not None and isinstance(value, list) and len(value) < req.min_items:
        out.append(f"too few items: {len(value)} < {req.min_items}")
    if req.predicate is not None:
        try:
            passed = bool(req.predicate(value))
        except (TypeError, ValueError):
            passed = False
        if not passed:
            out.append(f"failed {req.predicate_name or 'validation'}")
    if _is_placeholder(value):
        out.append("placeholder value")
    return out


def completeness_score(required_count: int, missing_count: int, incomplete_count: int) -> int:
    if required_count <= 0:
        return 100
    raw = 100 * (required_count - missing_count - INCOMPLETE_WEIGHT * incomplete_count) / required_count
    # half-up rounding; round() would bank 72.5 down to 72
    return max(0, min(100, int(math.floor(raw + 0.5))))


def validate(data: Any, schema: CompletenessSchema) -> ValidationResult:
    doc: dict[str, Any] = data if isinstance(data, dict) else {}
    missing: list[str] = []
    incomplete: list[str] = []
    issues: list[str] = []

    for req in schema.requirements:
        value = req.path.resolve(doc)
        if _is_blank(value):
            if req.required:
                missing.append(str(req.path))
            continue

        if _is_not_available(value):
            if not _explained(doc, req.path):
                issues.append(f"{req.path} is N/A without explanation")
            continue

        violations = _violations(req, value)
        if violations:
            incomplete.append(f"{req.path} ({'; '.join(violations)})")

    score = completeness_score(schema.required_count, len(missing), len(incomplete))

    if score >= 85 and not issues:
        confidence = Confidence.HIGH
    elif score >= 65:
        confidence = Confidence.MEDIUM
    else:
        confidence = Confidence.LOW

    reported = doc.get(CONFIDENCE_FIELD)
    if isinstance(reported, dict) and reported.get("overall") == Confidence.LOW.value:
        confidence = Confidence.LOW
        issues.append("Self-reported low confidence")

    return ValidationResult(
        is_valid=not missing and not incomplete,
        missing_fields=tuple(missing),
        incomplete_fields=tuple(incomplete),
        confidence=confidence,
        completeness_score=score,
        quality_issues=tuple(issues),
    )


def at_least(threshold: float) -> Callable[[Any], bool]:
    def _check(value: Any) -> bool:
        return float(value) >= threshold

    return _check


def _req(path: str, required: bool = True, **rules: Any) -> FieldRequirement:
    return FieldRequirement(FieldPath.parse(path), required=required, **rules)


PRODUCT_ANALYSIS_SCHEMA = CompletenessSchema(
    kind="product_analysis",
    version="2024.1",
    requirements=(
        _req("product_name", min_length=3),
        _req("brand", required=False),
        _req("description", min_length=30),
        _req("description_long", min_length=300),
        _req("seo.title", min_length=30),
        _req("seo.meta_description", min_length=100),
        _req("seo.keywords", min_items=3),
        _req("seo.score", predicate=at_least(50), predicate_name="score >= 50"),
        _req("pricing.estimated_price"),
        _req("pricing.market_position"),
        _req("pricing.competitive_analysis", min_length=50),
        _req("pricing.recommended_margin", required=False),
        _req("competition.main_competitors", min_items=1),
        _req("competition.differentiation", min_length=50),
        _req("competitive_pros", min_items=2),
        _req("competitive_cons", min_items=1),
        _req("use_cases", min_items=2),
        _req("market_position"),
        _req("trends.market_trend"),
        _req("trends.popularity_score"),
        _req("repairability.score"),
        _req("repairability.ease_of_repair"),
        _req("hs_code.code", min_length=6),
        _req("environmental_impact.recyclability_score"),
        _req("environmental_impact.eco_score"),
        _req("image_optimization.suggested_angles", min_items=3),
        _req("image_optimization.quality_score"),
        _req("tags_categories.primary_category"),
        _req("tags_categories.suggested_tags", min_items=3),
        _req("customer_reviews.sentiment_score"),
        _req("customer_reviews.common_praises", min_items=1),
        _req("global_report.overall_score", predicate=at_least(50), predicate_name="score >= 50"),
        _req("global_report.strengths", min_items=2),
        _req("global_report.priority_actions", min_items=1),
        _req("web_sources", min_items=3),
    ),
)

SCHEMAS: dict[str, CompletenessSchema] = {PRODUCT_ANALYSIS_SCHEMA.kind: PRODUCT_ANALYSIS_SCHEMA}


def get_schema(kind: str) -> CompletenessSchema:
    try:
        return SCHEMAS[kind]
    except KeyError:
        raise ConfigurationError(f"Unknown result kind: {kind!r}") from None


SECTION_KINDS = frozenset({"specifications", "cost_analysis", "seo", "long_description"})


@dataclass(frozen=True)
class SectionCheck:
    is_valid: bool
    issues: tuple[str, ...]


def check_enrichment_section(kind: str, data: dict[str, Any]) -> SectionCheck:
    """Quick structural checks for single-section enrichments."""
    issues: list[str] = []

    if kind == "specifications":
        if not data.get("dimensions"):
            issues.append("Missing dimensions")
        if not data.get("materials"):
            issues.append("Missing materials")
        if not data.get("certifications"):
            issues.append("Missing certifications")
        if not data.get("warranty"):
            issues.append("Missing warranty info")
    elif kind == "cost_analysis":
        if not data.get("market_research"):
            issues.append("Missing market research")
        if not (data.get("pricing_strategy") or {}).get("recommended_price"):
            issues.append("Missing recommended price")
        if not data.get("margin_analysis"):
            issues.append("Missing margin analysis")
        if len(data.get("competitor_prices") or []) < 5:
            issues.append("Insufficient competitor price data (need at least 5)")
    elif kind == "seo":
        if len(data.get("title") or "") < 30:
            issues.append("SEO title too short")
        if len(data.get("meta_description") or "") < 100:
            issues.append("Meta description too short")
        if len(data.get("keywords") or []) < 5:
            issues.append("Insufficient keywords (need at least 5)")
    elif kind == "long_description":
        text = data.get("description_long")
        if not text:
            issues.append("Missing long description")
        elif len(text.split()) < 400:
            issues.append("Long description too short (need 400+ words)")

    return SectionCheck(is_valid=not issues, issues=tuple(issues))
