"""
Diagnostic result returned by Pipeline.analyze.

Immutable once built; to_dict() gives the plain-data export used by the CLI.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

import numpy as np

from morphoscore.scoring.aggregation import CategoryScore
from morphoscore.scoring.ensemble import TierScore


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp, e.g. 2024-01-01T12:00:00.000000+00:00"""
    return datetime.now(timezone.utc).isoformat()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


@dataclass(frozen=True)
class DiagnosticResult:
    final_score: float
    confidence: float
    label: str
    categories: Mapping[str, CategoryScore]
    tiers: Mapping[str, TierScore]
    timestamp: str
    metadata: Mapping[str, Any]

    @property
    def insufficient_data(self) -> Dict[str, tuple]:
        """Category name -> criteria scored on insufficient data (non-empty only)."""
        return {
            name: category.insufficient_data
            for name, category in self.categories.items()
            if category.insufficient_data
        }

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable({
            "final_score": self.final_score,
            "confidence": self.confidence,
            "label": self.label,
            "categories": {name: c.to_dict() for name, c in self.categories.items()},
            "tiers": {name: t.to_dict() for name, t in self.tiers.items()},
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        })

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
