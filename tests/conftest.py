"""
Pytest configuration and shared fixtures for testing.
"""

import threading
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from posture_estimator.core.config import RunConfig
from posture_estimator.core.models import (
    COMPUTE,
    EnvironmentType,
    NodeGroup,
    ScalingGroupDescription,
    ScopeUnit,
)
from posture_estimator.core.retry import RetryPolicy
from posture_estimator.providers.base import CloudProvider

FIXED_NOW = datetime(2024, 1, 31, tzinfo=timezone.utc)


class FakeProvider(CloudProvider):
    """
    In-memory provider for engine tests.

    ``failures`` maps a call key to either one exception (raised on every
    call) or a list of exceptions raised on successive calls until the
    list is exhausted. Keys:

    - ("scopes",)
    - ("connect", scope_id)
    - ("partitions", scope_id)
    - ("count", scope_id, partition, category)
    - ("clusters", scope_id, partition)
    - ("node_groups", cluster_id)
    - ("describe", group_id)
    - ("cores", instance_type)
    - ("series", group_id)
    """

    environment = EnvironmentType.AWS
    scaling_group_metric = "GroupInServiceInstances"
    scaling_group_dimension = "AutoScalingGroupName"

    def __init__(
        self,
        scopes=None,
        partitions=None,
        counts=None,
        clusters=None,
        node_groups=None,
        scaling_groups=None,
        cores=None,
        series=None,
        failures=None,
        config=None,
    ):
        super().__init__(config or RunConfig(environment=EnvironmentType.AWS))
        self.scopes = (
            scopes if scopes is not None else [ScopeUnit("111111111111", "prod")]
        )
        self.partitions = partitions if partitions is not None else ["us-east-1"]
        self.counts = counts or {}
        self.clusters = clusters or {}
        self.node_groups = node_groups or {}
        self.scaling_groups = scaling_groups or {}
        self.cores = cores or {}
        self.series = series or {}
        self.failures = failures or {}
        self.calls = []
        self._lock = threading.Lock()

    def _enter(self, *key):
        with self._lock:
            self.calls.append(key)
            failure = self.failures.get(key)
            if isinstance(failure, list):
                failure = failure.pop(0) if failure else None
        if failure is not None:
            raise failure

    def count_calls(self, *key):
        with self._lock:
            return sum(1 for call in self.calls if call == key)

    def calls_of(self, name):
        with self._lock:
            return [call for call in self.calls if call[0] == name]

    def list_scope_units(self):
        self._enter("scopes")
        return list(self.scopes)

    def connect(self, scope):
        self._enter("connect", scope.id)
        return scope.bind({"session": scope.id})

    def list_partitions(self, scope):
        self._enter("partitions", scope.id)
        if isinstance(self.partitions, dict):
            return list(self.partitions.get(scope.id, []))
        return list(self.partitions)

    def count_resources(self, scope, partition, category):
        self._enter("count", scope.id, partition, category)
        return self.counts.get((scope.id, partition, category), 0)

    def list_container_clusters(self, scope, partition):
        self._enter("clusters", scope.id, partition)
        return list(self.clusters.get((scope.id, partition), []))

    def list_node_groups(self, scope, partition, cluster_id):
        self._enter("node_groups", cluster_id)
        return list(self.node_groups.get(cluster_id, []))

    def describe_scaling_group(self, scope, partition, group_id):
        self._enter("describe", group_id)
        return self.scaling_groups.get(
            group_id, ScalingGroupDescription(group_id=group_id, current_instance_count=0)
        )

    def resolve_cores_for_instance_type(self, scope, partition, instance_type):
        self._enter("cores", instance_type)
        return self.cores[instance_type]

    def query_time_series(self, scope, partition, metric, dimension, start, end, period):
        self._enter("series", dimension)
        with self._lock:
            self.calls.append(("window", dimension, start, end, period))
        return list(self.series.get(dimension, []))


def no_sleep(seconds):
    """Backoff sleep replacement."""


@pytest.fixture
def run_config():
    """Default AWS run configuration."""
    return RunConfig(environment=EnvironmentType.AWS, max_workers=4)


@pytest.fixture
def sleeps():
    """Collected backoff delays."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    """Three-attempt policy that records instead of sleeping."""
    return RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeps.append)


@pytest.fixture
def scope():
    """A bound scope unit."""
    return ScopeUnit("111111111111", "prod").bind({"session": "111111111111"})


@pytest.fixture
def fake_provider():
    """Provider with one scope unit and one region of compute."""
    return FakeProvider(counts={("111111111111", "us-east-1", COMPUTE): 2})


@pytest.fixture
def container_provider():
    """
    One EKS-like cluster whose node group is backed by a 2-instance
    scaling group of 4-core instances, averaging 1 instance over 30 days.
    """
    return FakeProvider(
        clusters={("111111111111", "us-east-1"): ["cluster-1"]},
        node_groups={
            "cluster-1": [
                NodeGroup(
                    id="workers",
                    cluster_id="cluster-1",
                    scaling_group_ids=("asg-workers",),
                    instance_types=("m5.xlarge",),
                )
            ]
        },
        scaling_groups={
            "asg-workers": ScalingGroupDescription(
                group_id="asg-workers",
                current_instance_count=2,
                instance_types=("m5.xlarge", "m5.xlarge"),
            )
        },
        cores={"m5.xlarge": 4},
        series={"asg-workers": [1.0] * 30},
    )


# =============================================================================
# AWS (moto)
# =============================================================================


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mock_aws_environment(aws_credentials):
    """Create a mocked AWS environment."""
    with mock_aws():
        yield


@pytest.fixture
def ec2_client(mock_aws_environment):
    """Create a boto3 EC2 client for setting up test resources."""
    return boto3.client("ec2", region_name="us-east-1")


@pytest.fixture
def ami_id(ec2_client):
    """An AMI id usable by run_instances."""
    return ec2_client.describe_images(Owners=["amazon"])["Images"][0]["ImageId"]
