"""
Azure Provider Module
=====================

Azure Resource Manager adapter for the estimation engine.

Scope units are the enabled subscriptions visible to the credential;
partitions are the subscription's locations. Resources are counted
through the ARM generic resource listing filtered by resource type and
location, so one SDK client covers every category.

Classes
-------
AzureSession
    Per-subscription holder of lazily created management clients.
AzureProvider
    :class:`CloudProvider` implementation.

Notes
-----
AKS agent pools play the role of scaling groups. Azure Monitor has no
per-pool node-count metric, so :meth:`query_time_series` keeps the base
class behaviour (``NotSupportedError``) and container cores are billed
unscaled.

The Azure SDKs are an optional extra (``pip install
posture-estimator[azure]``) and are imported where they are used.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import (
    CredentialsError,
    NotSupportedError,
    ProviderError,
    ScopeUnavailableError,
)
from posture_estimator.core.models import (
    AI,
    API,
    COMPUTE,
    COSMOS_DB,
    KEY_VAULT,
    MANAGED_DB,
    OBJECT_STORAGE,
    OPEN_SOURCE_DB,
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

# ARM resource types counted per category
RESOURCE_TYPES: Dict[str, Tuple[str, ...]] = {
    COMPUTE: ("Microsoft.Compute/virtualMachines",),
    MANAGED_DB: ("Microsoft.Sql/servers",),
    OPEN_SOURCE_DB: (
        "Microsoft.DBforPostgreSQL/flexibleServers",
        "Microsoft.DBforPostgreSQL/servers",
        "Microsoft.DBforMySQL/flexibleServers",
        "Microsoft.DBforMySQL/servers",
        "Microsoft.DBforMariaDB/servers",
    ),
    COSMOS_DB: ("Microsoft.DocumentDB/databaseAccounts",),
    KEY_VAULT: ("Microsoft.KeyVault/vaults",),
    API: ("Microsoft.ApiManagement/service",),
    AI: ("Microsoft.CognitiveServices/accounts",),
    SERVERLESS: ("Microsoft.Web/sites",),
    OBJECT_STORAGE: ("Microsoft.Storage/storageAccounts",),
}

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def parse_resource_id(resource_id: str) -> Dict[str, str]:
    """
    Split an ARM resource id into its key/value segments.

    Examples
    --------
    >>> parse_resource_id(
    ...     "/subscriptions/s1/resourceGroups/rg/providers/"
    ...     "Microsoft.ContainerService/managedClusters/aks1"
    ... )["managedClusters"]
    'aks1'
    """
    parts = [p for p in resource_id.split("/") if p]
    segments = {}
    for key, value in zip(parts[0::2], parts[1::2]):
        segments.setdefault(key, value)
    # Case varies between APIs
    for key in list(segments):
        if key.lower() == "resourcegroups":
            segments["resourceGroups"] = segments[key]
    return segments


class AzureSession:
    """
    Management clients of one subscription.

    Clients are created on first use under a lock and shared by every
    location task of the subscription.

    Parameters
    ----------
    credential : azure.core.credentials.TokenCredential
        Credential shared by all subscriptions.
    subscription_id : str
        Subscription the clients are bound to.
    """

    def __init__(self, credential: Any, subscription_id: str) -> None:
        self.credential = credential
        self.subscription_id = subscription_id
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _get(self, name: str, factory: Callable[[], Any]) -> Any:
        with self._lock:
            if name not in self._clients:
                self._clients[name] = factory()
                logger.debug(f"Created {name} client for {self.subscription_id}")
            return self._clients[name]

    @property
    def resources(self) -> Any:
        from azure.mgmt.resource import ResourceManagementClient

        return self._get(
            "resource",
            lambda: ResourceManagementClient(self.credential, self.subscription_id),
        )

    @property
    def subscriptions(self) -> Any:
        from azure.mgmt.resource import SubscriptionClient

        return self._get("subscription", lambda: SubscriptionClient(self.credential))

    @property
    def containers(self) -> Any:
        from azure.mgmt.containerservice import ContainerServiceClient

        return self._get(
            "containerservice",
            lambda: ContainerServiceClient(self.credential, self.subscription_id),
        )

    @property
    def compute(self) -> Any:
        from azure.mgmt.compute import ComputeManagementClient

        return self._get(
            "compute",
            lambda: ComputeManagementClient(self.credential, self.subscription_id),
        )

    def __repr__(self) -> str:
        return f"AzureSession(subscription_id={self.subscription_id!r})"


class AzureProvider(CloudProvider):
    """
    Azure adapter.

    Parameters
    ----------
    config : RunConfig
        ``option("tenant_id")`` restricts the credential to one tenant.
    credential : TokenCredential, optional
        Credential to use instead of ``DefaultAzureCredential``.
    """

    environment = EnvironmentType.AZURE
    regional_categories = (
        COMPUTE,
        MANAGED_DB,
        OPEN_SOURCE_DB,
        COSMOS_DB,
        KEY_VAULT,
        SERVERLESS,
        API,
        AI,
    )
    global_categories = (OBJECT_STORAGE,)
    scaling_group_metric = "node_count"
    scaling_group_dimension = "agentpool"

    def __init__(self, config: RunConfig, credential: Any = None) -> None:
        super().__init__(config)
        self._credential = credential
        self._lock = threading.Lock()

    @property
    def credential(self) -> Any:
        """Get or create the shared credential (lazy initialization)."""
        with self._lock:
            if self._credential is None:
                from azure.identity import DefaultAzureCredential

                tenant_id = self.config.option("tenant_id")
                kwargs = {}
                if tenant_id:
                    kwargs["interactive_browser_tenant_id"] = tenant_id
                    kwargs["shared_cache_tenant_id"] = tenant_id
                self._credential = DefaultAzureCredential(**kwargs)
            return self._credential

    # =========================================================================
    # Scope Units
    # =========================================================================

    def list_scope_units(self) -> List[ScopeUnit]:
        from azure.core.exceptions import ClientAuthenticationError
        from azure.mgmt.resource import SubscriptionClient

        try:
            subscriptions = list(SubscriptionClient(self.credential).subscriptions.list())
        except ClientAuthenticationError as e:
            raise CredentialsError(
                f"Azure credentials not usable: {e.message}",
                provider=self.environment.value,
                details={"hint": "Run 'az login' or set AZURE_CLIENT_ID/AZURE_TENANT_ID"},
            )

        units = []
        for subscription in subscriptions:
            state = _enum_value(getattr(subscription, "state", None)) or "Enabled"
            if state.lower() != "enabled":
                logger.debug(f"Skipping subscription {subscription.subscription_id} ({state})")
                continue
            units.append(
                ScopeUnit(
                    id=subscription.subscription_id,
                    display_name=subscription.display_name or subscription.subscription_id,
                )
            )
        return units

    def connect(self, scope: ScopeUnit) -> ScopeUnit:
        if isinstance(scope.credential_handle, AzureSession):
            return scope
        return scope.bind(AzureSession(self.credential, scope.id))

    # =========================================================================
    # Listing Capabilities
    # =========================================================================

    def list_partitions(self, scope: ScopeUnit) -> List[str]:
        session = self._session(scope)
        locations = session.subscriptions.subscriptions.list_locations(scope.id)
        return sorted(
            loc.name
            for loc in locations
            if getattr(loc, "metadata", None) is None
            or (_enum_value(loc.metadata.region_type) or "Physical").lower() == "physical"
        )

    def count_resources(
        self, scope: ScopeUnit, partition: Optional[str], category: str
    ) -> int:
        resource_types = RESOURCE_TYPES.get(category)
        if resource_types is None:
            raise NotSupportedError(
                f"Category {category!r} is not counted on Azure",
                provider=self.environment.value,
                scope_id=scope.id,
            )

        session = self._session(scope)
        total = 0
        for resource_type in resource_types:
            query = f"resourceType eq '{resource_type}'"
            if partition is not None:
                query += f" and location eq '{partition}'"
            for resource in session.resources.resources.list(filter=query):
                if category == SERVERLESS and "functionapp" not in (resource.kind or ""):
                    continue
                total += 1
        return total

    def list_container_clusters(self, scope: ScopeUnit, partition: str) -> List[str]:
        session = self._session(scope)
        return [
            cluster.id
            for cluster in session.containers.managed_clusters.list()
            if _same_location(cluster.location, partition)
        ]

    def list_node_groups(
        self, scope: ScopeUnit, partition: str, cluster_id: str
    ) -> List[NodeGroup]:
        segments = parse_resource_id(cluster_id)
        pools = self._session(scope).containers.agent_pools.list(
            segments["resourceGroups"], segments["managedClusters"]
        )
        return [
            NodeGroup(
                id=pool.name,
                cluster_id=cluster_id,
                scaling_group_ids=(f"{cluster_id}/agentPools/{pool.name}",),
                instance_types=(pool.vm_size,) if pool.vm_size else (),
            )
            for pool in pools
        ]

    def describe_scaling_group(
        self, scope: ScopeUnit, partition: str, group_id: str
    ) -> ScalingGroupDescription:
        segments = parse_resource_id(group_id)
        pool = self._session(scope).containers.agent_pools.get(
            segments["resourceGroups"],
            segments["managedClusters"],
            segments["agentPools"],
        )
        count = int(pool.count or 0)
        return ScalingGroupDescription(
            group_id=group_id,
            current_instance_count=count,
            instance_types=(pool.vm_size,) * count if pool.vm_size else (),
        )

    def resolve_cores_for_instance_type(
        self, scope: ScopeUnit, partition: str, instance_type: str
    ) -> int:
        sizes = self._session(scope).compute.virtual_machine_sizes.list(location=partition)
        for size in sizes:
            if size.name.lower() == instance_type.lower():
                return int(size.number_of_cores)
        raise ProviderError(
            f"Unknown VM size {instance_type} in {partition}",
            provider=self.environment.value,
            scope_id=scope.id,
        )

    # =========================================================================
    # Error Classification
    # =========================================================================

    def classify_error(self, exc: BaseException) -> ErrorKind:
        from azure.core.exceptions import (
            ClientAuthenticationError,
            HttpResponseError,
            ServiceRequestError,
            ServiceResponseError,
        )

        if isinstance(exc, ClientAuthenticationError):
            return ErrorKind.PERMISSION_DENIED
        if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
            return ErrorKind.TRANSIENT
        if isinstance(exc, HttpResponseError):
            status = exc.status_code or 0
            if status == 403:
                return ErrorKind.PERMISSION_DENIED
            if status in TRANSIENT_STATUS_CODES:
                return ErrorKind.TRANSIENT
            code = getattr(getattr(exc, "error", None), "code", "") or ""
            if code in ("MissingSubscriptionRegistration", "NoRegisteredProviderFound"):
                return ErrorKind.NOT_SUPPORTED
            return ErrorKind.UNKNOWN
        return default_classifier(exc)

    def _session(self, scope: ScopeUnit) -> AzureSession:
        if not isinstance(scope.credential_handle, AzureSession):
            raise ScopeUnavailableError(
                "Scope unit is not connected",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return scope.credential_handle


def _same_location(location: Optional[str], partition: str) -> bool:
    """ARM reports locations as 'West Europe' or 'westeurope'."""
    if not location:
        return False
    return location.replace(" ", "").lower() == partition.replace(" ", "").lower()


def _enum_value(value: Any) -> Optional[str]:
    """Plain string of an SDK enum (or string) field."""
    if value is None:
        return None
    return str(getattr(value, "value", value))
