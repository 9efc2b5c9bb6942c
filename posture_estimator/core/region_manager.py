"""
Region Manager Module
=====================

Fans the counting of one scope unit out over its regions in parallel.

This module handles:
- Discovery of the scope unit's regions (with an optional allow-list)
- Parallel execution of per-region counting on a thread pool
- Per-region failure isolation
- Aggregation of the per-region results

Classes
-------
RegionFanOut
    Orchestrates the per-region counting of one scope unit.

Example
-------
>>> fan_out = RegionFanOut(provider, retry_policy)
>>> partitions = fan_out.discover(bound_scope)
>>> results = fan_out.run(bound_scope, partitions, count_region)
>>> totals = ResourceCounts.combine(r.counts for r in results)

Notes
-----
Regions are bounded (a few dozen at most), so by default every region
gets its own worker. Scope units, which can number in the hundreds, are
bounded separately by the ConcurrencyController.

See Also
--------
ConcurrencyController : Scope-level pool.
ResourceCounter : Per-region counting.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Sequence

from posture_estimator.core.models import PartitionCounts, ScopeUnit
from posture_estimator.core.pool import TaskPool
from posture_estimator.core.retry import RetryPolicy

# Module logger
logger = logging.getLogger(__name__)


class RegionFanOut:
    """
    Run a per-region counting function across a scope unit's regions.

    Parameters
    ----------
    provider : CloudProvider
        Adapter used to list regions.
    retry_policy : RetryPolicy
        Policy wrapping the region listing call.
    max_workers : int, optional
        Cap on concurrent regions. None gives one worker per region.
    allowed_regions : iterable of str, optional
        Only these regions are counted when given.
    degraded_categories : sequence of str
        Categories reported as degraded zeros for a failed region.

    Examples
    --------
    Counting two regions with a custom function:

    >>> fan_out = RegionFanOut(provider, RetryPolicy(), allowed_regions=["us-east-1"])
    >>> results = fan_out.run(scope, ["us-east-1"], counter_fn)
    """

    def __init__(
        self,
        provider,
        retry_policy: RetryPolicy,
        max_workers: Optional[int] = None,
        allowed_regions: Optional[Iterable[str]] = None,
        degraded_categories: Sequence[str] = (),
    ) -> None:
        self.provider = provider
        self.retry_policy = retry_policy
        self.max_workers = max_workers
        self.allowed_regions = set(allowed_regions) if allowed_regions else None
        self.degraded_categories = tuple(degraded_categories)

        logger.debug(f"Initialized RegionFanOut with max_workers={max_workers}")

    def discover(self, scope: ScopeUnit) -> Optional[List[str]]:
        """
        List the regions of a bound scope unit.

        Returns
        -------
        list of str or None
            Sorted region names, filtered by the allow-list. None when
            the listing fails; the failure is logged and the caller marks
            the regional categories degraded.
        """
        try:
            regions = self.retry_policy.call(self.provider.list_partitions, scope)
        except Exception as e:
            logger.error(
                f"[{scope.id}] failed to list regions "
                f"({self.provider.classify_error(e).value}), "
                f"regional counts will be 0: {e}"
            )
            return None

        regions = sorted(set(regions))
        if self.allowed_regions is not None:
            regions = [r for r in regions if r in self.allowed_regions]

        logger.debug(f"[{scope.id}] discovered {len(regions)} regions")
        return regions

    def run(
        self,
        scope: ScopeUnit,
        partitions: Sequence[str],
        count_fn: Callable[[ScopeUnit, str], PartitionCounts],
    ) -> List[PartitionCounts]:
        """
        Count every partition concurrently.

        Parameters
        ----------
        scope : ScopeUnit
            Bound scope unit.
        partitions : sequence of str
            Regions to count.
        count_fn : callable
            Called as ``count_fn(scope, partition)``.

        Returns
        -------
        list of PartitionCounts
            One entry per partition, in completion order. A partition whose
            counting raised yields zero counts with every category marked
            degraded.
        """
        if not partitions:
            return []

        workers = self.max_workers or len(partitions)
        pool = TaskPool(max_workers=workers, name=f"regions-{scope.id}")
        outcomes = pool.run(list(partitions), lambda partition: count_fn(scope, partition))

        results: List[PartitionCounts] = []
        for outcome in outcomes:
            if outcome.ok:
                results.append(outcome.result)
                continue
            logger.error(
                f"[{scope.id}/{outcome.item}] region counting failed, "
                f"counting 0: {outcome.error}"
            )
            results.append(
                PartitionCounts.degraded(outcome.item, self.degraded_categories)
            )

        return results

    def __repr__(self) -> str:
        return f"RegionFanOut(max_workers={self.max_workers})"
