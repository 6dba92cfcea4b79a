"""
Derived-metric calculators.

Pure functions over raw financial statement fields; they never fetch data.
"""

from .debt_ebitda import DerivedMetric, compute_debt_to_ebitda

__all__ = ["DerivedMetric", "compute_debt_to_ebitda"]
