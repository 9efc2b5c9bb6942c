"""
Tests for the GCP provider adapter.
"""

from types import SimpleNamespace

import pytest

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import NotSupportedError, ScopeUnavailableError
from posture_estimator.core.models import COMPUTE, KEY_VAULT, EnvironmentType, ScopeUnit
from posture_estimator.core.retry import ErrorKind
from posture_estimator.providers.gcp import (
    GCPProvider,
    GCPSession,
    parse_group_url,
    zone_region,
)

PROJECT_ID = "billing-prod"
GROUP_URL = (
    f"https://www.googleapis.com/compute/v1/projects/{PROJECT_ID}/zones/"
    "us-central1-a/instanceGroupManagers/gke-prod-default-pool-1a2b3c"
)


@pytest.fixture
def provider():
    return GCPProvider(RunConfig(environment=EnvironmentType.GCP), credentials=object())


@pytest.fixture
def session():
    pytest.importorskip("google.cloud.compute_v1")
    pytest.importorskip("google.cloud.container_v1")
    return GCPSession(credentials=object(), project_id=PROJECT_ID)


@pytest.fixture
def bound_scope(session):
    return ScopeUnit(PROJECT_ID, "Billing").bind(session)


class TestHelpers:
    """Tests for zone and URL helpers."""

    @pytest.mark.parametrize(
        "zone,region",
        [
            ("us-central1-a", "us-central1"),
            ("zones/europe-west1-b", "europe-west1"),
            ("https://www.googleapis.com/compute/v1/projects/p/zones/asia-east1-c", "asia-east1"),
        ],
    )
    def test_zone_region(self, zone, region):
        """Test region extraction from zone names and URLs."""
        assert zone_region(zone) == region

    def test_parse_group_url(self):
        """Test instance group manager URL parsing."""
        assert parse_group_url(GROUP_URL) == {
            "project": PROJECT_ID,
            "zone": "us-central1-a",
            "name": "gke-prod-default-pool-1a2b3c",
        }

    def test_parse_group_url_instance_groups(self):
        """Test URLs that point at the instance group instead of its manager."""
        url = GROUP_URL.replace("instanceGroupManagers", "instanceGroups")
        assert parse_group_url(url)["name"] == "gke-prod-default-pool-1a2b3c"


class TestGCPProvider:
    """Tests for GCPProvider class."""

    def test_connect_binds_session(self, provider):
        """Test that connecting binds a per-project session."""
        bound = provider.connect(ScopeUnit(PROJECT_ID, "Billing"))

        assert isinstance(bound.credential_handle, GCPSession)
        assert bound.credential_handle.project_id == PROJECT_ID

    def test_unbound_scope_rejected(self, provider):
        """Test that counting requires a connected scope unit."""
        with pytest.raises(ScopeUnavailableError):
            provider.count_resources(ScopeUnit(PROJECT_ID, "x"), "us-central1", COMPUTE)

    def test_unknown_category(self, provider):
        """Test that categories GCP does not count are not supported."""
        bound = provider.connect(ScopeUnit(PROJECT_ID, "Billing"))
        with pytest.raises(NotSupportedError):
            provider.count_resources(bound, "us-central1", KEY_VAULT)

    def test_count_instances_across_zones(self, provider, session, bound_scope):
        """Test that instances of every zone of the region are summed."""
        zones = {
            "us-central1-a": ["vm-1", "vm-2"],
            "us-central1-b": ["vm-3"],
        }
        session._clients["RegionsClient"] = SimpleNamespace(
            get=lambda project, region: SimpleNamespace(
                zones=[f"https://compute/zones/{z}" for z in zones]
            )
        )
        session._clients["InstancesClient"] = SimpleNamespace(
            list=lambda project, zone: iter(zones[zone])
        )

        assert provider.count_resources(bound_scope, "us-central1", COMPUTE) == 3
        assert session.region_zones("us-central1") == ["us-central1-a", "us-central1-b"]

    def test_clusters_in_region(self, provider, session, bound_scope):
        """Test that regional and zonal clusters of the region are listed."""
        session._clients["container"] = SimpleNamespace(
            list_clusters=lambda parent: SimpleNamespace(
                clusters=[
                    SimpleNamespace(name="regional", location="us-central1"),
                    SimpleNamespace(name="zonal", location="us-central1-f"),
                    SimpleNamespace(name="other", location="europe-west1"),
                ]
            )
        )

        assert provider.list_container_clusters(bound_scope, "us-central1") == [
            f"projects/{PROJECT_ID}/locations/us-central1/clusters/regional",
            f"projects/{PROJECT_ID}/locations/us-central1-f/clusters/zonal",
        ]

    def test_node_pools_and_group_size(self, provider, session, bound_scope):
        """Test node pool instance groups and their live size."""
        cluster_id = f"projects/{PROJECT_ID}/locations/us-central1/clusters/regional"
        session._clients["container"] = SimpleNamespace(
            list_node_pools=lambda parent: SimpleNamespace(
                node_pools=[
                    SimpleNamespace(
                        name="default-pool",
                        instance_group_urls=[GROUP_URL],
                        config=SimpleNamespace(machine_type="e2-standard-4"),
                    )
                ]
            )
        )
        session._clients["InstanceGroupManagersClient"] = SimpleNamespace(
            list_managed_instances=lambda project, zone, instance_group_manager: iter(
                ["i-1", "i-2"]
            )
        )

        [group] = provider.list_node_groups(bound_scope, "us-central1", cluster_id)
        assert group.scaling_group_ids == (GROUP_URL,)
        assert group.instance_types == ("e2-standard-4",)

        description = provider.describe_scaling_group(bound_scope, "us-central1", GROUP_URL)
        assert description.current_instance_count == 2
        assert description.instance_types == ()

    def test_classify_error(self, provider):
        """Test google-api-core error classification."""
        exceptions = pytest.importorskip("google.api_core.exceptions")
        pytest.importorskip("googleapiclient.errors")

        assert (
            provider.classify_error(exceptions.PermissionDenied("no"))
            is ErrorKind.PERMISSION_DENIED
        )
        assert (
            provider.classify_error(exceptions.TooManyRequests("slow down"))
            is ErrorKind.TRANSIENT
        )
        assert (
            provider.classify_error(exceptions.ServiceUnavailable("later"))
            is ErrorKind.TRANSIENT
        )
        assert provider.classify_error(KeyError("x")) is ErrorKind.UNKNOWN
