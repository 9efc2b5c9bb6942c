"""
GCP Provider Module
===================

Google Cloud adapter for the estimation engine.

Scope units are the active projects visible to the application default
credentials; partitions are compute regions.

Classes
-------
GCPSession
    Per-project holder of lazily created Cloud client objects.
GCPProvider
    :class:`CloudProvider` implementation.

Resources Counted
-----------------
- compute: Compute Engine instances, per zone of the region
- managedDb: Cloud SQL instances (sqladmin API)
- managedContainerCluster: GKE clusters, regional and zonal
- serverless: Cloud Functions (1st and 2nd gen)
- objectStorage: Cloud Storage buckets (global)

GKE node pools are backed by managed instance groups, whose size history
comes from the ``compute.googleapis.com/instance_group/size`` metric.

Notes
-----
The google-cloud libraries are an optional extra (``pip install
posture-estimator[gcp]``) and are imported where they are used.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import (
    CredentialsError,
    NotSupportedError,
    ScopeUnavailableError,
)
from posture_estimator.core.models import (
    COMPUTE,
    MANAGED_DB,
    OBJECT_STORAGE,
    SERVERLESS,
    EnvironmentType,
    NodeGroup,
    ScalingGroupDescription,
    ScopeUnit,
)
from posture_estimator.core.retry import ErrorKind, default_classifier
from posture_estimator.providers.base import CloudProvider

# Module logger
logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def zone_region(zone: str) -> str:
    """
    Region of a zone name or URL.

    >>> zone_region("zones/europe-west1-b")
    'europe-west1'
    """
    return zone.rsplit("/", 1)[-1].rsplit("-", 1)[0]


def parse_group_url(url: str) -> Dict[str, str]:
    """
    Split an instance group manager URL into project, zone and name.

    >>> parse_group_url(
    ...     "https://www.googleapis.com/compute/v1/projects/p1/zones/"
    ...     "us-central1-a/instanceGroupManagers/gke-pool-1"
    ... )["zone"]
    'us-central1-a'
    """
    parts = url.split("/")
    result = {}
    for key, name in (
        ("projects", "project"),
        ("zones", "zone"),
        ("instanceGroupManagers", "name"),
        ("instanceGroups", "name"),
    ):
        if key in parts:
            index = parts.index(key)
            if index + 1 < len(parts):
                result[name] = parts[index + 1]
    return result


class GCPSession:
    """
    Cloud clients of one project.

    Clients are created on first use under a lock and shared by every
    region task of the project.

    Parameters
    ----------
    credentials : google.auth.credentials.Credentials
        Credentials shared by all projects.
    project_id : str
        Project the calls are made against.
    """

    def __init__(self, credentials: Any, project_id: str) -> None:
        self.credentials = credentials
        self.project_id = project_id
        self._clients: Dict[str, Any] = {}
        self._region_zones: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def _get(self, name: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            if name not in self._clients:
                self._clients[name] = factory()
                logger.debug(f"Created {name} client for {self.project_id}")
            return self._clients[name]

    def compute(self, client_name: str) -> Any:
        """Compute Engine client by class name (``InstancesClient``, ...)."""
        from google.cloud import compute_v1

        factory = getattr(compute_v1, client_name)
        return self._get(client_name, lambda: factory(credentials=self.credentials))

    @property
    def clusters(self) -> Any:
        from google.cloud import container_v1

        return self._get(
            "container",
            lambda: container_v1.ClusterManagerClient(credentials=self.credentials),
        )

    @property
    def functions(self) -> Any:
        from google.cloud import functions_v2

        return self._get(
            "functions",
            lambda: functions_v2.FunctionServiceClient(credentials=self.credentials),
        )

    @property
    def storage(self) -> Any:
        from google.cloud import storage

        return self._get(
            "storage",
            lambda: storage.Client(project=self.project_id, credentials=self.credentials),
        )

    @property
    def monitoring(self) -> Any:
        from google.cloud import monitoring_v3

        return self._get(
            "monitoring",
            lambda: monitoring_v3.MetricServiceClient(credentials=self.credentials),
        )

    @property
    def sqladmin(self) -> Any:
        from googleapiclient import discovery

        return self._get(
            "sqladmin",
            lambda: discovery.build(
                "sqladmin",
                "v1beta4",
                credentials=self.credentials,
                cache_discovery=False,
            ),
        )

    def region_zones(self, region: str) -> List[str]:
        """Zone names of a region, fetched once."""
        with self._lock:
            if region in self._region_zones:
                return self._region_zones[region]
        info = self.compute("RegionsClient").get(project=self.project_id, region=region)
        zones = sorted(z.rsplit("/", 1)[-1] for z in info.zones)
        with self._lock:
            return self._region_zones.setdefault(region, zones)

    def __repr__(self) -> str:
        return f"GCPSession(project_id={self.project_id!r})"


class GCPProvider(CloudProvider):
    """
    GCP adapter.

    Parameters
    ----------
    config : RunConfig
        ``option("parent")`` (``organizations/ID`` or ``folders/ID``)
        restricts enumeration to the direct children of one node.
    credentials : google.auth.credentials.Credentials, optional
        Credentials to use instead of the application defaults.
    """

    environment = EnvironmentType.GCP
    regional_categories = (COMPUTE, MANAGED_DB, SERVERLESS)
    global_categories = (OBJECT_STORAGE,)
    scaling_group_metric = "compute.googleapis.com/instance_group/size"
    scaling_group_dimension = "instance_group_name"

    def __init__(self, config: RunConfig, credentials: Any = None) -> None:
        super().__init__(config)
        self._credentials = credentials
        self._lock = threading.Lock()
        self._counters: Dict[str, Callable[[ScopeUnit, GCPSession, Optional[str]], int]] = {
            COMPUTE: self._count_instances,
            MANAGED_DB: self._count_sql_instances,
            SERVERLESS: self._count_functions,
            OBJECT_STORAGE: self._count_buckets,
        }

    @property
    def credentials(self) -> Any:
        """Get or load the application default credentials."""
        with self._lock:
            if self._credentials is None:
                import google.auth
                from google.auth.exceptions import DefaultCredentialsError

                try:
                    self._credentials, _ = google.auth.default()
                except DefaultCredentialsError as e:
                    raise CredentialsError(
                        f"GCP credentials not found: {e}",
                        provider=self.environment.value,
                        details={
                            "hint": "Run 'gcloud auth application-default login'"
                        },
                    )
            return self._credentials

    # =========================================================================
    # Scope Units
    # =========================================================================

    def list_scope_units(self) -> List[ScopeUnit]:
        from google.cloud import resourcemanager_v3

        client = resourcemanager_v3.ProjectsClient(credentials=self.credentials)
        parent = self.config.option("parent")
        if parent:
            projects = client.list_projects(parent=parent)
        else:
            projects = client.search_projects(query="state:ACTIVE")

        active = resourcemanager_v3.Project.State.ACTIVE
        return [
            ScopeUnit(
                id=project.project_id,
                display_name=project.display_name or project.project_id,
            )
            for project in projects
            if project.state == active
        ]

    def connect(self, scope: ScopeUnit) -> ScopeUnit:
        if isinstance(scope.credential_handle, GCPSession):
            return scope
        return scope.bind(GCPSession(self.credentials, scope.id))

    # =========================================================================
    # Listing Capabilities
    # =========================================================================

    def list_partitions(self, scope: ScopeUnit) -> List[str]:
        regions = self._session(scope).compute("RegionsClient").list(project=scope.id)
        return sorted(region.name for region in regions if region.status == "UP")

    def count_resources(
        self, scope: ScopeUnit, partition: Optional[str], category: str
    ) -> int:
        counter = self._counters.get(category)
        if counter is None:
            raise NotSupportedError(
                f"Category {category!r} is not counted on GCP",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return counter(scope, self._session(scope), partition)

    def list_container_clusters(self, scope: ScopeUnit, partition: str) -> List[str]:
        response = self._session(scope).clusters.list_clusters(
            parent=f"projects/{scope.id}/locations/-"
        )
        return [
            f"projects/{scope.id}/locations/{cluster.location}/clusters/{cluster.name}"
            for cluster in response.clusters
            if cluster.location == partition or zone_region(cluster.location) == partition
        ]

    def list_node_groups(
        self, scope: ScopeUnit, partition: str, cluster_id: str
    ) -> List[NodeGroup]:
        response = self._session(scope).clusters.list_node_pools(parent=cluster_id)
        return [
            NodeGroup(
                id=pool.name,
                cluster_id=cluster_id,
                scaling_group_ids=tuple(pool.instance_group_urls),
                instance_types=(pool.config.machine_type,)
                if pool.config.machine_type
                else (),
            )
            for pool in response.node_pools
        ]

    def describe_scaling_group(
        self, scope: ScopeUnit, partition: str, group_id: str
    ) -> ScalingGroupDescription:
        group = parse_group_url(group_id)
        managers = self._session(scope).compute("InstanceGroupManagersClient")
        instances = managers.list_managed_instances(
            project=group.get("project", scope.id),
            zone=group["zone"],
            instance_group_manager=group["name"],
        )
        # Machine type comes from the node pool
        return ScalingGroupDescription(
            group_id=group_id,
            current_instance_count=sum(1 for _ in instances),
        )

    def resolve_cores_for_instance_type(
        self, scope: ScopeUnit, partition: str, instance_type: str
    ) -> int:
        session = self._session(scope)
        zone = session.region_zones(partition)[0]
        machine_type = session.compute("MachineTypesClient").get(
            project=scope.id, zone=zone, machine_type=instance_type
        )
        return int(machine_type.guest_cpus)

    def query_time_series(
        self,
        scope: ScopeUnit,
        partition: str,
        metric: str,
        dimension: str,
        start: datetime,
        end: datetime,
        period: int,
    ) -> List[float]:
        from google.cloud import monitoring_v3
        from google.protobuf.timestamp_pb2 import Timestamp

        group_name = parse_group_url(dimension).get("name", dimension)
        interval = monitoring_v3.TimeInterval(
            {
                "start_time": Timestamp(seconds=int(start.timestamp())),
                "end_time": Timestamp(seconds=int(end.timestamp())),
            }
        )
        aggregation = monitoring_v3.Aggregation(
            {
                "alignment_period": {"seconds": period},
                "per_series_aligner": monitoring_v3.Aggregation.Aligner.ALIGN_MEAN,
            }
        )
        results = self._session(scope).monitoring.list_time_series(
            request={
                "name": f"projects/{scope.id}",
                "filter": (
                    f'metric.type="{metric}" '
                    f'AND resource.labels.{self.scaling_group_dimension}="{group_name}"'
                ),
                "interval": interval,
                "aggregation": aggregation,
                "view": monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL,
            }
        )

        values = []
        for series in results:
            for point in series.points:
                if "double_value" in point.value:
                    values.append(point.value.double_value)
                else:
                    values.append(float(point.value.int64_value))
        return values

    # =========================================================================
    # Error Classification
    # =========================================================================

    def classify_error(self, exc: BaseException) -> ErrorKind:
        from google.api_core import exceptions as api_exceptions
        from google.auth.exceptions import GoogleAuthError, TransportError
        from googleapiclient.errors import HttpError

        if isinstance(exc, (api_exceptions.PermissionDenied, api_exceptions.Unauthenticated)):
            return ErrorKind.PERMISSION_DENIED
        if isinstance(
            exc,
            (
                api_exceptions.TooManyRequests,
                api_exceptions.ServerError,
                api_exceptions.DeadlineExceeded,
                api_exceptions.ResourceExhausted,
                TransportError,
            ),
        ):
            return ErrorKind.TRANSIENT
        if isinstance(exc, api_exceptions.MethodNotImplemented):
            return ErrorKind.NOT_SUPPORTED
        if isinstance(exc, GoogleAuthError):
            return ErrorKind.PERMISSION_DENIED
        if isinstance(exc, HttpError):
            status = int(getattr(exc, "status_code", None) or exc.resp.status)
            if status in (401, 403):
                return ErrorKind.PERMISSION_DENIED
            if status in TRANSIENT_STATUS_CODES:
                return ErrorKind.TRANSIENT
            return ErrorKind.UNKNOWN
        return default_classifier(exc)

    # =========================================================================
    # Private Methods: Category Counters
    # =========================================================================

    def _session(self, scope: ScopeUnit) -> GCPSession:
        if not isinstance(scope.credential_handle, GCPSession):
            raise ScopeUnavailableError(
                "Scope unit is not connected",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return scope.credential_handle

    def _count_instances(
        self, scope: ScopeUnit, session: GCPSession, region: Optional[str]
    ) -> int:
        instances = session.compute("InstancesClient")
        total = 0
        for zone in session.region_zones(region):
            total += sum(1 for _ in instances.list(project=scope.id, zone=zone))
        return total

    def _count_sql_instances(
        self, scope: ScopeUnit, session: GCPSession, region: Optional[str]
    ) -> int:
        api = session.sqladmin.instances()
        request = api.list(project=scope.id)
        total = 0
        while request is not None:
            response = request.execute()
            total += sum(
                1 for item in response.get("items", []) if item.get("region") == region
            )
            request = api.list_next(request, response)
        return total

    def _count_functions(
        self, scope: ScopeUnit, session: GCPSession, region: Optional[str]
    ) -> int:
        functions = session.functions.list_functions(
            request={"parent": f"projects/{scope.id}/locations/{region}"}
        )
        return sum(1 for _ in functions)

    def _count_buckets(
        self, scope: ScopeUnit, session: GCPSession, region: Optional[str]
    ) -> int:
        return sum(1 for _ in session.storage.list_buckets(project=scope.id))
