"""
Estimation Engine Module
========================

Runs an estimation end to end for one cloud:

1. Enumerate scope units (fatal if none)
2. Process scope units on the bounded ConcurrencyController
3. Per scope unit: bind credentials, fan out over regions, count,
   estimate container cores, count global categories, map to plans
4. Collect every line item in the ResultAggregator

Classes
-------
EstimationEngine
    Provider-agnostic orchestration.

Example
-------
>>> config = RunConfig(environment=EnvironmentType.AWS, max_workers=10)
>>> engine = EstimationEngine(AWSProvider(config), config)
>>> summary = engine.run()
>>> CSVReporter("estimate.csv").report(summary)
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from posture_estimator.core.config import RunConfig
from posture_estimator.core.core_estimator import CoreEstimator, InstanceTypeCoreCache
from posture_estimator.core.models import (
    MANAGED_CONTAINER_CLUSTER,
    PartitionCounts,
    ResourceCounts,
    ScopeUnit,
)
from posture_estimator.core.plan_mapper import PlanMapper
from posture_estimator.core.pool import ConcurrencyController, ProgressCallback
from posture_estimator.core.region_manager import RegionFanOut
from posture_estimator.core.resource_counter import ResourceCounter
from posture_estimator.core.results import ResultAggregator, RunSummary, ScopeReport
from posture_estimator.core.retry import RetryPolicy
from posture_estimator.providers.base import ScopeEnumerator

# Module logger
logger = logging.getLogger(__name__)


class EstimationEngine:
    """
    Inventory engine parameterized by a provider adapter.

    Parameters
    ----------
    provider : CloudProvider
        Adapter for the cloud being inventoried.
    config : RunConfig
        Run settings.
    sleep : callable, optional
        Backoff sleep, ``time.sleep`` by default.
    clock : callable, optional
        UTC clock for the metric window.

    Notes
    -----
    Each scope unit gets its own :class:`InstanceTypeCoreCache`, shared by
    that unit's region tasks only.
    """

    def __init__(
        self,
        provider,
        config: RunConfig,
        sleep: Optional[Callable[[float], None]] = None,
        clock=None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.retry_policy = RetryPolicy(
            max_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            classifier=provider.classify_error,
            sleep=sleep,
        )
        self.counter = ResourceCounter(provider, self.retry_policy)
        self.core_estimator = CoreEstimator(
            provider, self.retry_policy, config, clock=clock
        )
        self.fan_out = RegionFanOut(
            provider,
            self.retry_policy,
            max_workers=config.max_region_workers,
            allowed_regions=config.regions,
            degraded_categories=self.counter.partition_categories,
        )
        self.plan_mapper = PlanMapper(provider.environment)
        self.enumerator = ScopeEnumerator(provider, self.retry_policy)

    def run(self, progress_callback: Optional[ProgressCallback] = None) -> RunSummary:
        """
        Estimate every scope unit.

        Returns
        -------
        RunSummary
            Reports, line items and skipped scope units.

        Raises
        ------
        ConfigurationError
            If no scope unit is discoverable.
        CredentialsError
            If the base credentials are unusable.
        """
        scope_units = self.enumerator.enumerate()
        aggregator = ResultAggregator()

        def process(scope: ScopeUnit) -> ScopeReport:
            report = self.process_scope(scope)
            aggregator.extend(report.line_items)
            return report

        controller = ConcurrencyController(max_workers=self.config.max_workers)
        outcomes = controller.run(scope_units, process, progress_callback)

        reports = sorted(
            (o.result for o in outcomes if o.ok), key=lambda r: r.scope.id
        )
        failed = {o.item.id: str(o.error) for o in outcomes if not o.ok}

        summary = RunSummary(
            environment=self.provider.environment,
            scopes_discovered=len(scope_units),
            reports=reports,
            line_items=aggregator.line_items(),
            failed_scopes=failed,
        )
        logger.info(
            f"Estimation complete: {len(summary.line_items)} line items from "
            f"{len(reports)}/{len(scope_units)} scope units"
        )
        return summary

    def process_scope(self, scope: ScopeUnit) -> ScopeReport:
        """
        Inventory one scope unit and map it to plan line items.

        Raises
        ------
        ScopeUnavailableError
            If credentials cannot be bound; the scope unit is skipped.
        """
        started = time.perf_counter()
        bound = self.provider.connect(scope)
        cache = InstanceTypeCoreCache()

        partitions = self.fan_out.discover(bound)
        results = self.fan_out.run(
            bound,
            partitions or [],
            lambda s, partition: self.process_partition(s, partition, cache),
        )

        counts = ResourceCounts.combine(r.counts for r in results)
        if partitions is None:
            for category in self.fan_out.degraded_categories:
                counts.mark_degraded(category)
        counts.merge(self.counter.count_global(bound))
        core_estimate = sum(r.core_estimate for r in results)

        line_items = self.plan_mapper.map_scope(scope.id, counts, core_estimate)
        elapsed = time.perf_counter() - started

        degraded = sorted(counts.degraded)
        logger.info(
            f"[{scope.label}] {len(partitions or [])} regions in {elapsed:.1f}s: "
            f"{counts.as_dict()} cores={core_estimate:.2f}"
            + (f" degraded={degraded}" if degraded else "")
        )
        return ScopeReport(
            scope=scope,
            counts=counts,
            core_estimate=core_estimate,
            line_items=line_items,
            partitions=results,
            elapsed_seconds=elapsed,
        )

    def process_partition(
        self, scope: ScopeUnit, partition: str, cache: InstanceTypeCoreCache
    ) -> PartitionCounts:
        """
        Count one region and estimate the cores of its node groups.

        A scaling group that cannot be sampled marks container clusters
        degraded, since the container core total is then incomplete.
        """
        result = self.counter.count_partition(scope, partition)
        if result.node_groups:
            failed: List[str] = []
            result.samples = self.core_estimator.sample_node_groups(
                scope, partition, result.node_groups, cache, failed=failed
            )
            if failed:
                result.counts.mark_degraded(MANAGED_CONTAINER_CLUSTER)
            result.core_estimate = CoreEstimator.total(result.samples)
        return result
