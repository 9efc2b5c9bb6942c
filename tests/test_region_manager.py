"""
Tests for the Region Manager module.
"""

import random

from conftest import FakeProvider
from posture_estimator.core.exceptions import PermissionDeniedError
from posture_estimator.core.models import (
    COMPUTE,
    MANAGED_CONTAINER_CLUSTER,
    PartitionCounts,
    ResourceCounts,
)
from posture_estimator.core.region_manager import RegionFanOut

REGIONS = ["us-east-1", "us-west-2", "eu-west-1", "ap-southeast-1"]


def count_by_region(values):
    def count(scope, partition):
        return PartitionCounts(
            partition=partition, counts=ResourceCounts({COMPUTE: values[partition]})
        )

    return count


class TestRegionFanOut:
    """Tests for RegionFanOut class."""

    def test_init(self, retry_policy):
        """Test RegionFanOut initialization."""
        fan_out = RegionFanOut(FakeProvider(), retry_policy, max_workers=5)

        assert fan_out.max_workers == 5
        assert fan_out.allowed_regions is None

    def test_discover_sorted(self, retry_policy, scope):
        """Test that discovered regions are sorted and unique."""
        provider = FakeProvider(partitions=["us-west-2", "eu-west-1", "us-west-2"])

        regions = RegionFanOut(provider, retry_policy).discover(scope)

        assert regions == ["eu-west-1", "us-west-2"]

    def test_discover_allow_list(self, retry_policy, scope):
        """Test that only allowed regions are kept."""
        provider = FakeProvider(partitions=REGIONS)
        fan_out = RegionFanOut(
            provider, retry_policy, allowed_regions=["us-east-1", "eu-west-1", "mars-1"]
        )

        assert fan_out.discover(scope) == ["eu-west-1", "us-east-1"]

    def test_discover_failure_returns_none(self, retry_policy, scope):
        """Test that a failed region listing is distinguishable from no regions."""
        provider = FakeProvider(
            failures={("partitions", scope.id): PermissionDeniedError("denied")}
        )

        assert RegionFanOut(provider, retry_policy).discover(scope) is None

    def test_run_sums_are_order_independent(self, retry_policy, scope):
        """Test that totals match whatever order regions complete in."""
        values = {"us-east-1": 3, "us-west-2": 5, "eu-west-1": 0, "ap-southeast-1": 7}
        fan_out = RegionFanOut(FakeProvider(), retry_policy, max_workers=2)

        shuffled = list(REGIONS)
        random.Random(7).shuffle(shuffled)
        first = fan_out.run(scope, REGIONS, count_by_region(values))
        second = fan_out.run(scope, shuffled, count_by_region(values))

        assert ResourceCounts.combine(r.counts for r in first)[COMPUTE] == 15
        assert ResourceCounts.combine(r.counts for r in second)[COMPUTE] == 15
        assert sorted(r.partition for r in first) == sorted(REGIONS)

    def test_failed_region_is_degraded(self, retry_policy, scope):
        """Test that a region whose counting raises reports degraded zeros."""

        def count(scope, partition):
            if partition == "eu-west-1":
                raise RuntimeError("endpoint unreachable")
            return PartitionCounts(partition, ResourceCounts({COMPUTE: 2}))

        fan_out = RegionFanOut(
            FakeProvider(),
            retry_policy,
            degraded_categories=[COMPUTE, MANAGED_CONTAINER_CLUSTER],
        )
        results = {r.partition: r for r in fan_out.run(scope, REGIONS, count)}

        assert results["eu-west-1"].counts[COMPUTE] == 0
        assert results["eu-west-1"].counts.degraded == {
            COMPUTE,
            MANAGED_CONTAINER_CLUSTER,
        }
        total = ResourceCounts.combine(r.counts for r in results.values())
        assert total[COMPUTE] == 6

    def test_run_no_partitions(self, retry_policy, scope):
        """Test that no regions means no work."""
        fan_out = RegionFanOut(FakeProvider(), retry_policy)
        assert fan_out.run(scope, [], count_by_region({})) == []

    def test_repr(self, retry_policy):
        """Test string representation."""
        fan_out = RegionFanOut(FakeProvider(), retry_policy, max_workers=5)
        assert repr(fan_out) == "RegionFanOut(max_workers=5)"
