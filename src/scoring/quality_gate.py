"""Field validation and completeness scoring for ingested stock records."""

import math
from typing import Any, Iterable, Mapping

from .config import FIELD_POLICIES, TOTAL_TRACKED_FIELDS, FieldPolicy

ISSUE_NOT_A_NUMBER = "not_a_number"
ISSUE_BELOW_MINIMUM = "below_minimum"
ISSUE_ABOVE_MAXIMUM = "above_maximum"
ISSUE_ZERO_VALUE = "zero_value"
ISSUE_NEGATIVE_VALUE = "negative_value"


def is_number(value: Any) -> bool:
    """True for finite ints/floats (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_numeric_field(
    field: str, value: Any, policies: Mapping[str, FieldPolicy] = FIELD_POLICIES
) -> list[str]:
    """
    Validate one present field value against its policy.

    Args:
        field: Tracked field name (e.g. "price")
        value: Raw value as it will be stored
        policies: Policy table, defaults to FIELD_POLICIES

    Returns:
        List of issue codes, empty when the value is valid
    """
    if not is_number(value):
        return [ISSUE_NOT_A_NUMBER]

    policy = policies.get(field, FieldPolicy())
    issues: list[str] = []

    if policy.min_value is not None and value < policy.min_value:
        issues.append(ISSUE_BELOW_MINIMUM)
    if policy.max_value is not None and value > policy.max_value:
        issues.append(ISSUE_ABOVE_MAXIMUM)
    if policy.zero_is_placeholder and value == 0:
        issues.append(ISSUE_ZERO_VALUE)
    if policy.non_negative and value < 0:
        issues.append(ISSUE_NEGATIVE_VALUE)

    return issues


def validate_fields(
    values: Mapping[str, Any], policies: Mapping[str, FieldPolicy] = FIELD_POLICIES
) -> dict[str, list[str]]:
    """
    Validate every present (non-None) value.

    Missing fields are not reported here; they belong in missing_fields.

    Returns:
        Mapping of field -> issue codes, only for fields with issues
    """
    issues: dict[str, list[str]] = {}
    for field, value in values.items():
        if value is None:
            continue
        field_issues = validate_numeric_field(field, value, policies)
        if field_issues:
            issues[field] = field_issues
    return issues


def completeness_score(
    missing_count: int, invalid_count: int, total_fields: int = TOTAL_TRACKED_FIELDS
) -> int:
    """
    Percentage of tracked fields that are present and valid.

    Args:
        missing_count: Number of missing tracked fields
        invalid_count: Number of present fields with validation issues
        total_fields: Number of tracked fields

    Returns:
        Integer score in [0, 100]
    """
    if total_fields <= 0:
        return 0
    ratio = (missing_count + invalid_count) / total_fields
    return max(0, min(100, round(100 * (1 - ratio))))


def aggregate_completeness(
    missing_counts: Iterable[int], total_fields: int = TOTAL_TRACKED_FIELDS
) -> int:
    """Run-level completeness from per-record missing-field counts."""
    counts = list(missing_counts)
    if not counts or total_fields <= 0:
        return 100 if not counts else 0
    mean_missing = sum(counts) / len(counts)
    return max(0, min(100, round(100 * (1 - mean_missing / total_fields))))
