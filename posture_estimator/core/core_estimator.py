"""
Core Estimator Module
=====================

Time-weighted vCPU estimation for the auto-scaled groups backing managed
container node pools.

A group measured while it happens to be scaled up (or down) would bill
a transient snapshot. The estimator scales every instance's cores by
``average / current``, where ``average`` is the mean daily instance
count over a trailing window, so the figure reflects steady-state size.

Classes
-------
InstanceTypeCoreCache
    Thread-safe, lazily populated instance type -> cores map.
CoreEstimator
    Samples scaling groups and sums their adjusted cores.

Example
-------
>>> cache = InstanceTypeCoreCache()
>>> estimator = CoreEstimator(provider, RetryPolicy(), config)
>>> samples = estimator.sample_node_groups(scope, "us-east-1", node_groups, cache)
>>> CoreEstimator.total(samples)
36.5

Adjustment Rule
---------------
For a group with ``current`` live instances and a window mean ``average``:

- ``average`` present, non-zero and ``current > 0``: each instance
  contributes ``cores * average / current``
- otherwise each instance contributes its raw ``cores``

A group with no live instance contributes 0 and is never looked up in
the metric store.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from posture_estimator.core.config import MetricErrorPolicy, RunConfig
from posture_estimator.core.models import NodeGroup, ScalingGroupSample, ScopeUnit
from posture_estimator.core.retry import RetryPolicy

# Module logger
logger = logging.getLogger(__name__)


class InstanceTypeCoreCache:
    """
    Instance type -> cores lookup shared by the region tasks of one
    scope unit.

    Entries are populated on first use and never invalidated. Two
    threads missing the same type may both resolve it; the lookup is a
    pure function of the type, so the second write is harmless.

    Example
    -------
    >>> cache = InstanceTypeCoreCache()
    >>> cache.get("m5.xlarge", lambda t: 4)
    4
    >>> cache.get("m5.xlarge", lambda t: 99)
    4
    """

    def __init__(self) -> None:
        self._cores: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, instance_type: str, loader: Callable[[str], int]) -> int:
        """Return the cached cores of ``instance_type``, loading on a miss."""
        with self._lock:
            if instance_type in self._cores:
                return self._cores[instance_type]

        cores = int(loader(instance_type))
        with self._lock:
            return self._cores.setdefault(instance_type, cores)

    def __contains__(self, instance_type: object) -> bool:
        with self._lock:
            return instance_type in self._cores

    def __len__(self) -> int:
        with self._lock:
            return len(self._cores)


class CoreEstimator:
    """
    Compute the time-weighted vCPU contribution of scaling groups.

    Parameters
    ----------
    provider : CloudProvider
        Adapter supplying group descriptions, core lookups and metrics.
    retry_policy : RetryPolicy
        Policy wrapping description and core lookup calls (and metric
        queries under ``MetricErrorPolicy.RETRY``).
    config : RunConfig
        Supplies the metric window, period and error policy.
    clock : callable, optional
        Returns the current UTC time; the window ends there.
    """

    def __init__(
        self,
        provider,
        retry_policy: RetryPolicy,
        config: RunConfig,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.provider = provider
        self.retry_policy = retry_policy
        self.window_days = config.metric_window_days
        self.period_seconds = config.metric_period_seconds
        self.metric_error_policy = config.metric_error_policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def total(samples: Iterable[ScalingGroupSample]) -> float:
        """Sum of adjusted cores; order does not matter."""
        return float(sum(sample.adjusted_cores for sample in samples))

    def estimate(
        self,
        scope: ScopeUnit,
        partition: str,
        node_groups: Iterable[NodeGroup],
        cache: InstanceTypeCoreCache,
    ) -> float:
        """Adjusted cores of every scaling group behind ``node_groups``."""
        return self.total(self.sample_node_groups(scope, partition, node_groups, cache))

    def sample_node_groups(
        self,
        scope: ScopeUnit,
        partition: str,
        node_groups: Iterable[NodeGroup],
        cache: InstanceTypeCoreCache,
        failed: Optional[List[str]] = None,
    ) -> List[ScalingGroupSample]:
        """
        Sample every scaling group backing ``node_groups``.

        A group whose description or core lookup fails is logged and
        left out (it contributes 0); this method does not raise. The ids
        of such groups are appended to ``failed`` when a list is given.
        """
        samples: List[ScalingGroupSample] = []
        for node_group in node_groups:
            for group_id in node_group.scaling_group_ids:
                try:
                    samples.append(
                        self.sample_scaling_group(
                            scope, partition, group_id, node_group, cache
                        )
                    )
                except Exception as e:
                    logger.warning(
                        f"[{scope.id}/{partition}] cannot estimate cores of "
                        f"scaling group {group_id} "
                        f"({self.provider.classify_error(e).value}): {e}"
                    )
                    if failed is not None:
                        failed.append(group_id)
        return samples

    def sample_scaling_group(
        self,
        scope: ScopeUnit,
        partition: str,
        group_id: str,
        node_group: NodeGroup,
        cache: InstanceTypeCoreCache,
    ) -> ScalingGroupSample:
        """
        Build the adjustment inputs of one scaling group.

        The live count and the metric average are read one after the
        other, before the ratio is applied.
        """
        description = self.retry_policy.call(
            self.provider.describe_scaling_group, scope, partition, group_id
        )
        current = description.current_instance_count

        if current <= 0:
            logger.debug(f"[{scope.id}/{partition}] {group_id} has no instances")
            return ScalingGroupSample(
                group_id=group_id,
                cores_per_instance=(),
                current_instance_count=0,
                average_instance_count=None,
                window_days=self.window_days,
            )

        instance_types = list(description.instance_types)
        if not instance_types and node_group.instance_types:
            instance_types = [node_group.instance_types[0]] * current

        def load(instance_type: str) -> int:
            return self.retry_policy.call(
                self.provider.resolve_cores_for_instance_type,
                scope,
                partition,
                instance_type,
            )

        cores = tuple(cache.get(t, load) for t in instance_types)
        average = self.average_instance_count(scope, partition, group_id)

        sample = ScalingGroupSample(
            group_id=group_id,
            cores_per_instance=cores,
            current_instance_count=current,
            average_instance_count=average,
            window_days=self.window_days,
        )
        logger.debug(
            f"[{scope.id}/{partition}] {group_id}: current={current} "
            f"average={average} raw={sample.raw_cores} "
            f"adjusted={sample.adjusted_cores:.2f}"
        )
        return sample

    def average_instance_count(
        self, scope: ScopeUnit, partition: str, group_id: str
    ) -> Optional[float]:
        """
        Mean of the group's daily instance-count samples over the window.

        Returns
        -------
        float or None
            None when the window holds no samples or the query failed.
        """
        end = self._clock()
        start = end - timedelta(days=self.window_days)
        args = (
            scope,
            partition,
            self.provider.scaling_group_metric,
            group_id,
            start,
            end,
            self.period_seconds,
        )

        try:
            if self.metric_error_policy is MetricErrorPolicy.RETRY:
                values = self.retry_policy.call(self.provider.query_time_series, *args)
            else:
                values = self.provider.query_time_series(*args)
        except Exception as e:
            logger.info(
                f"[{scope.id}/{partition}] no instance count history for "
                f"{group_id}, using unscaled cores: {e}"
            )
            return None

        values = [float(v) for v in values if v is not None]
        if not values:
            return None
        return sum(values) / len(values)
