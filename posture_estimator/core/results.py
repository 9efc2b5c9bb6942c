"""
Results Module
==============

Per-scope reports and the run-wide aggregation of plan line items.

Classes
-------
ScopeReport
    Outcome of processing one scope unit.
ResultAggregator
    Lock-guarded collection of line items shared by all scope tasks.
RunSummary
    Everything a reporter needs once the run has finished.

Example
-------
>>> summary = engine.run()
>>> print(f"{len(summary.line_items)} rows from {len(summary.reports)} scope units")
>>> for scope_id, error in summary.failed_scopes.items():
...     print(f"{scope_id}: {error}")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from posture_estimator.core.models import (
    EnvironmentType,
    PartitionCounts,
    PlanLineItem,
    ResourceCounts,
    ScopeUnit,
)

# Module logger
logger = logging.getLogger(__name__)


@dataclass
class ScopeReport:
    """
    Outcome of processing one scope unit.

    Attributes
    ----------
    scope : ScopeUnit
        The scope unit processed.
    counts : ResourceCounts
        Totals across regions plus global categories.
    core_estimate : float
        Adjusted container cores.
    line_items : list of PlanLineItem
        Rows emitted for the scope unit.
    partitions : list of PartitionCounts
        Per-region detail.
    elapsed_seconds : float
        Processing time.
    """

    scope: ScopeUnit
    counts: ResourceCounts
    core_estimate: float
    line_items: List[PlanLineItem]
    partitions: List[PartitionCounts] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def degraded_categories(self) -> List[str]:
        return sorted(self.counts.degraded)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "scope_id": self.scope.id,
            "display_name": self.scope.display_name,
            "counts": self.counts.as_dict(),
            "degraded_categories": self.degraded_categories,
            "core_estimate": round(self.core_estimate, 2),
            "regions": sorted(p.partition for p in self.partitions),
            "scaling_groups": [
                {
                    "group_id": s.group_id,
                    "current_instance_count": s.current_instance_count,
                    "average_instance_count": s.average_instance_count,
                    "raw_cores": s.raw_cores,
                    "adjusted_cores": round(s.adjusted_cores, 2),
                }
                for p in self.partitions
                for s in p.samples
            ],
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }


class ResultAggregator:
    """
    Collect line items from concurrent scope tasks.

    Appends are serialized with a lock; readers get a snapshot sorted by
    scope id so output does not depend on completion order.

    Example
    -------
    >>> aggregator = ResultAggregator()
    >>> aggregator.extend(report.line_items)
    >>> rows = aggregator.line_items()
    """

    def __init__(self) -> None:
        self._items: List[PlanLineItem] = []
        self._lock = threading.Lock()

    def extend(self, items: Iterable[PlanLineItem]) -> None:
        """Append the rows of one scope unit."""
        items = list(items)
        with self._lock:
            self._items.extend(items)

    def line_items(self) -> List[PlanLineItem]:
        """Snapshot of every row, sorted by scope id (plan order kept)."""
        with self._lock:
            snapshot = list(self._items)
        return sorted(snapshot, key=lambda item: item.scope_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class RunSummary:
    """
    Aggregated results of an estimation run.

    Attributes
    ----------
    environment : EnvironmentType
        Cloud inventoried.
    scopes_discovered : int
        Scope units returned by the enumerator.
    reports : list of ScopeReport
        Successfully processed scope units, sorted by id.
    line_items : list of PlanLineItem
        Every emitted row.
    failed_scopes : dict
        Scope id -> error message for skipped scope units.
    started_at : datetime
        Run start (UTC).
    """

    environment: EnvironmentType
    scopes_discovered: int
    reports: List[ScopeReport]
    line_items: List[PlanLineItem]
    failed_scopes: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_errors(self) -> bool:
        return bool(self.failed_scopes) or any(r.counts.degraded for r in self.reports)

    @property
    def total_core_estimate(self) -> float:
        return sum(r.core_estimate for r in self.reports)

    def totals_by_plan(self) -> Dict[str, int]:
        """Resources count summed per plan across scope units."""
        totals: Dict[str, int] = {}
        for item in self.line_items:
            key = item.plan_name.value
            totals[key] = totals.get(key, 0) + item.resources_count
        return totals

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "environment_type": self.environment.value,
            "started_at": self.started_at.isoformat(),
            "scopes_discovered": self.scopes_discovered,
            "scopes_processed": len(self.reports),
            "failed_scopes": self.failed_scopes,
            "totals_by_plan": self.totals_by_plan(),
            "line_items": [item.to_dict() for item in self.line_items],
            "scopes": [report.to_dict() for report in self.reports],
        }

    def __repr__(self) -> str:
        return (
            f"RunSummary(environment='{self.environment.value}', "
            f"scopes={len(self.reports)}/{self.scopes_discovered}, "
            f"rows={len(self.line_items)})"
        )
