"""Persisted stock record model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from scoring.config import TRACKED_FIELDS


@dataclass
class DataQuality:
    missing_fields: list[str] = field(default_factory=list)
    validation_issues: dict[str, list[str]] = field(default_factory=dict)
    completeness_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "missingFields": list(self.missing_fields),
            "validationIssues": {k: list(v) for k, v in self.validation_issues.items()},
            "completenessScore": self.completeness_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DataQuality":
        data = data or {}
        return cls(
            missing_fields=list(data.get("missingFields") or []),
            validation_issues={
                k: list(v) for k, v in (data.get("validationIssues") or {}).items()
            },
            completeness_score=int(data.get("completenessScore") or 0),
        )


@dataclass
class StockRecord:
    """One symbol's validated snapshot; None marks an unavailable field."""

    symbol: str
    name: Optional[str] = None
    exchange: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    metrics: dict[str, Optional[float]] = field(
        default_factory=lambda: {name: None for name in TRACKED_FIELDS}
    )
    net_debt_to_ebitda_method: Optional[str] = None
    data_quality: DataQuality = field(default_factory=DataQuality)
    composite_score: int = 0
    last_updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "symbol": self.symbol,
            "name": self.name,
            "exchange": self.exchange,
            "sector": self.sector,
            "industry": self.industry,
        }
        payload.update({name: self.metrics.get(name) for name in TRACKED_FIELDS})
        payload.update(
            {
                "netDebtToEBITDAMethod": self.net_debt_to_ebitda_method,
                "dataQuality": self.data_quality.to_dict(),
                "compositeScore": self.composite_score,
                "lastUpdated": self.last_updated,
            }
        )
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StockRecord":
        return cls(
            symbol=str(data["symbol"]),
            name=data.get("name"),
            exchange=data.get("exchange"),
            sector=data.get("sector"),
            industry=data.get("industry"),
            metrics={name: data.get(name) for name in TRACKED_FIELDS},
            net_debt_to_ebitda_method=data.get("netDebtToEBITDAMethod"),
            data_quality=DataQuality.from_dict(data.get("dataQuality")),
            composite_score=int(data.get("compositeScore") or 0),
            last_updated=str(data.get("lastUpdated") or ""),
        )
