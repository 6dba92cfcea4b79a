"""Record validation and ranking heuristics for ingested stocks."""

from .config import FIELD_POLICIES, SCORE_TIERS, TOTAL_TRACKED_FIELDS, TRACKED_FIELDS
from .composite import calculate_composite_score, explain_composite_score
from .quality_gate import (
    aggregate_completeness,
    completeness_score,
    validate_fields,
    validate_numeric_field,
)

__all__ = [
    "FIELD_POLICIES",
    "SCORE_TIERS",
    "TOTAL_TRACKED_FIELDS",
    "TRACKED_FIELDS",
    "calculate_composite_score",
    "explain_composite_score",
    "aggregate_completeness",
    "completeness_score",
    "validate_fields",
    "validate_numeric_field",
]
