"""Field-level comparison of new and legacy extractions."""

from typing import Any, Optional

from transcript_agents.models import ComparisonReport, LegacyExtraction

COMPARED_FIELDS = ("call_type", "agreed_rate", "load_count")
RATE_TOLERANCE = 0.01


def _values(extraction: LegacyExtraction) -> dict[str, Any]:
    return {
        "call_type": extraction.call_type,
        "agreed_rate": extraction.agreed_rate,
        "load_count": len(extraction.loads),
    }


def _same(field: str, left: Any, right: Any) -> bool:
    if field == "agreed_rate" and left is not None and right is not None:
        return abs(float(left) - float(right)) <= RATE_TOLERANCE
    return left == right


def compare_extractions(
    new: LegacyExtraction,
    legacy: LegacyExtraction,
    agreement_threshold: float = 70.0,
    fields: Optional[tuple[str, ...]] = None,
) -> ComparisonReport:
    """Compare call type, agreed rate and load count.

    Agreement at or above the threshold recommends the new output;
    anything below needs review.
    """
    fields = fields or COMPARED_FIELDS
    new_values, legacy_values = _values(new), _values(legacy)

    matched = []
    differences = []
    for field in fields:
        if _same(field, new_values[field], legacy_values[field]):
            matched.append(field)
        else:
            differences.append({"field": field, "new": new_values[field], "legacy": legacy_values[field]})

    agreement = round(100.0 * len(matched) / len(fields), 2) if fields else 100.0
    return ComparisonReport(
        agreement_percentage=agreement,
        matched_fields=matched,
        differences=differences,
        recommendation="use_new" if agreement >= agreement_threshold else "needs_review",
    )
