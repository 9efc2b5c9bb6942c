"""
Resource Counter Module
=======================

Counts the resources of one region (or of a whole scope unit, for
global categories) through the provider's listing capabilities.

Every capability call is wrapped individually by the retry policy, so a
failing category never hides the others. A category that still fails is
degraded to a visible zero and logged; nothing raises out of the counter.

Classes
-------
ResourceCounter
    Per-partition and per-scope counting.

Example
-------
>>> counter = ResourceCounter(provider, RetryPolicy())
>>> partition = counter.count_partition(bound_scope, "us-east-1")
>>> partition.counts["compute"]
12
"""

from __future__ import annotations

import logging
from typing import List, Optional

from posture_estimator.core.exceptions import CountingError
from posture_estimator.core.models import (
    MANAGED_CONTAINER_CLUSTER,
    NodeGroup,
    PartitionCounts,
    ResourceCounts,
    ScopeUnit,
)
from posture_estimator.core.retry import ErrorKind, RetryPolicy

# Module logger
logger = logging.getLogger(__name__)


class ResourceCounter:
    """
    Count resources through a provider adapter.

    Parameters
    ----------
    provider : CloudProvider
        Adapter supplying the listing capabilities.
    retry_policy : RetryPolicy
        Policy wrapping each capability call.
    """

    def __init__(self, provider, retry_policy: RetryPolicy) -> None:
        self.provider = provider
        self.retry_policy = retry_policy

    @property
    def partition_categories(self) -> List[str]:
        """Every category a partition reports, container clusters included."""
        return list(self.provider.regional_categories) + [MANAGED_CONTAINER_CLUSTER]

    def count_partition(self, scope: ScopeUnit, partition: str) -> PartitionCounts:
        """
        Count every regional category in one partition.

        Container clusters are listed once: their number becomes the
        ``managedContainerCluster`` count and their node groups are
        returned for core estimation. A cluster whose node groups cannot
        be listed keeps its count but marks the category degraded.

        Parameters
        ----------
        scope : ScopeUnit
            Bound scope unit.
        partition : str
            Region to count.

        Returns
        -------
        PartitionCounts
            Counts (with degraded categories marked) and node groups.
        """
        counts = ResourceCounts()
        for category in self.provider.regional_categories:
            value = self._count(scope, partition, category)
            if value is None:
                counts.mark_degraded(category)
            else:
                counts.add(category, value)

        node_groups: List[NodeGroup] = []
        clusters = self._call(
            "list container clusters",
            scope,
            partition,
            self.provider.list_container_clusters,
            scope,
            partition,
        )
        if clusters is None:
            counts.mark_degraded(MANAGED_CONTAINER_CLUSTER)
        else:
            counts.add(MANAGED_CONTAINER_CLUSTER, len(clusters))
            for cluster_id in clusters:
                groups = self._call(
                    f"list node groups of {cluster_id}",
                    scope,
                    partition,
                    self.provider.list_node_groups,
                    scope,
                    partition,
                    cluster_id,
                )
                if groups is None:
                    counts.mark_degraded(MANAGED_CONTAINER_CLUSTER)
                else:
                    node_groups.extend(groups)

        logger.debug(
            f"[{scope.id}/{partition}] counted {counts.as_dict()} "
            f"with {len(node_groups)} node groups"
        )
        return PartitionCounts(
            partition=partition, counts=counts, node_groups=node_groups
        )

    def count_global(self, scope: ScopeUnit) -> ResourceCounts:
        """Count the scope-wide categories (object storage) once."""
        counts = ResourceCounts()
        for category in self.provider.global_categories:
            value = self._count(scope, None, category)
            if value is None:
                counts.mark_degraded(category)
            else:
                counts.add(category, value)
        return counts

    # =========================================================================
    # Private Methods
    # =========================================================================

    def _count(
        self, scope: ScopeUnit, partition: Optional[str], category: str
    ) -> Optional[int]:
        def count() -> int:
            value = self.provider.count_resources(scope, partition, category)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise CountingError(
                    f"Invalid {category} count {value!r}",
                    category=category,
                    partition=partition,
                )
            return value

        return self._call(f"count {category}", scope, partition, count)

    def _call(self, action, scope, partition, operation, *args):
        """Run one capability call; None means the call failed for good."""
        try:
            return self.retry_policy.call(operation, *args)
        except Exception as e:
            kind = self.provider.classify_error(e)
            where = f"{scope.id}/{partition or 'global'}"
            if kind in (ErrorKind.PERMISSION_DENIED, ErrorKind.NOT_SUPPORTED):
                logger.warning(
                    f"[{where}] cannot {action} ({kind.value}), counting 0: {e}"
                )
            else:
                logger.error(
                    f"[{where}] failed to {action} after retries, counting 0: {e}"
                )
            return None
