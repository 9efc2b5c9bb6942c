"""
AWS Provider Module
===================

boto3 adapter for the estimation engine.

Scope units are the accounts of an AWS Organization (entered by
assuming a role in each member account) or, without organization
access, the caller's own account. Partitions are the enabled regions.

Classes
-------
AWSClient
    Thread-safe wrapper around a boto3 session with cached clients.
AWSProvider
    :class:`CloudProvider` implementation.

Example
-------
>>> config = RunConfig(environment=EnvironmentType.AWS, profile="management")
>>> provider = AWSProvider(config)
>>> scopes = provider.list_scope_units()
>>> bound = provider.connect(scopes[0])
>>> provider.count_resources(bound, "us-east-1", "compute")
17

Resources Counted
-----------------
- compute: EC2 instances that are not terminated
- managedDb: RDS DB instances
- managedContainerCluster: EKS clusters
- serverless: Lambda functions
- objectStorage: S3 buckets (global)

Container cores come from the Auto Scaling groups behind EKS managed
node groups, with the ``AWS/AutoScaling GroupInServiceInstances``
metric as instance-count history.

See Also
--------
boto3 : AWS SDK for Python
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
)

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import (
    CredentialsError,
    NotSupportedError,
    ProviderError,
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

# Region used for global endpoints and region discovery
HOME_REGION = "us-east-1"

PERMISSION_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AccessDeniedException",
        "AuthFailure",
        "AuthorizationError",
        "InvalidClientTokenId",
        "OptInRequired",
        "SubscriptionRequiredException",
        "UnauthorizedOperation",
        "UnrecognizedClientException",
    }
)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalError",
        "InternalFailure",
        "RequestLimitExceeded",
        "RequestTimeout",
        "ServiceUnavailable",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
    }
)

NOT_SUPPORTED_ERROR_CODES = frozenset({"InvalidAction", "UnsupportedOperation"})

# Instance states that still bill or can resume
LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]


class AWSClient:
    """
    Thread-safe boto3 session wrapper with cached service clients.

    boto3 sessions are not thread-safe, but the clients they create
    are. Client creation is therefore serialized with a lock and each
    (service, region) client is created once and reused by every region
    task of the scope unit.

    Parameters
    ----------
    profile : str, optional
        AWS profile name from ~/.aws/credentials.
    max_retries : int, default=3
        botocore retry attempts per request.
    timeout : int, default=30
        Connect and read timeout in seconds.
    session : boto3.Session, optional
        Pre-built session (assumed-role credentials).

    Examples
    --------
    >>> client = AWSClient(profile="production")
    >>> client.get_account_id()
    '123456789012'
    >>> ec2 = client.client("ec2", "eu-west-1")
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        max_retries: int = 3,
        timeout: int = 30,
        session: Optional[boto3.Session] = None,
    ) -> None:
        self.profile = profile
        self.max_retries = max_retries
        self.timeout = timeout

        self._session = session
        self._clients: Dict[Tuple[str, str], Any] = {}
        self._lock = threading.Lock()
        self._config = Config(
            retries={"max_attempts": max_retries, "mode": "adaptive"},
            connect_timeout=timeout,
            read_timeout=timeout,
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create the boto3 session (lazy initialization)."""
        with self._lock:
            if self._session is None:
                self._session = self._create_session()
            return self._session

    def _create_session(self) -> boto3.Session:
        try:
            if self.profile:
                session = boto3.Session(profile_name=self.profile)
            else:
                session = boto3.Session()
            logger.debug(f"Created boto3 session (profile={self.profile})")
            return session
        except ProfileNotFound:
            raise CredentialsError(
                f"AWS profile '{self.profile}' not found",
                provider=EnvironmentType.AWS.value,
                details={"hint": "Check ~/.aws/credentials for available profiles"},
            )

    def client(self, service_name: str, region: str = HOME_REGION) -> Any:
        """
        Get or create a boto3 client for a service in a region.

        Raises
        ------
        CredentialsError
            If no credentials are configured.
        """
        session = self.session
        key = (service_name, region)
        with self._lock:
            if key in self._clients:
                return self._clients[key]
            try:
                client = session.client(
                    service_name, region_name=region, config=self._config
                )
            except NoCredentialsError:
                raise CredentialsError(
                    "AWS credentials not found",
                    provider=EnvironmentType.AWS.value,
                    details={
                        "hint": (
                            "Configure credentials using 'aws configure' or set "
                            "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY"
                        ),
                    },
                )
            self._clients[key] = client
            logger.debug(f"Created {service_name} client for {region}")
            return client

    def get_account_id(self) -> str:
        """Return the account ID of the current credentials."""
        try:
            return self.client("sts").get_caller_identity()["Account"]
        except NoCredentialsError:
            raise CredentialsError(
                "AWS credentials not found", provider=EnvironmentType.AWS.value
            )
        except ClientError as e:
            raise CredentialsError(
                f"Failed to validate AWS credentials: {e}",
                provider=EnvironmentType.AWS.value,
            )

    def assume_role(self, role_arn: str, session_name: str) -> "AWSClient":
        """
        Assume ``role_arn`` and return a client on the temporary credentials.

        Raises
        ------
        botocore.exceptions.ClientError
            If the role cannot be assumed.
        """
        response = self.client("sts").assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name,
            DurationSeconds=3600,
        )
        credentials = response["Credentials"]
        session = boto3.Session(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
        )
        return AWSClient(
            max_retries=self.max_retries, timeout=self.timeout, session=session
        )

    def __repr__(self) -> str:
        return f"AWSClient(profile={self.profile!r}, max_retries={self.max_retries})"


def _paginate(client: Any, operation: str, key: str, **kwargs: Any) -> Iterator[Any]:
    """Yield every item under ``key`` across all pages of ``operation``."""
    paginator = client.get_paginator(operation)
    for page in paginator.paginate(**kwargs):
        yield from page.get(key, [])


class AWSProvider(CloudProvider):
    """
    AWS adapter.

    Parameters
    ----------
    config : RunConfig
        Uses ``profile``, ``role_name``, ``use_organization``,
        ``request_timeout``.
    base_client : AWSClient, optional
        Client for the caller's credentials, built from ``config`` when
        omitted.
    """

    environment = EnvironmentType.AWS
    regional_categories = (COMPUTE, MANAGED_DB, SERVERLESS)
    global_categories = (OBJECT_STORAGE,)
    scaling_group_metric = "GroupInServiceInstances"
    scaling_group_dimension = "AutoScalingGroupName"
    metric_namespace = "AWS/AutoScaling"
    session_name = "posture-estimator"

    def __init__(self, config: RunConfig, base_client: Optional[AWSClient] = None) -> None:
        super().__init__(config)
        self.base_client = base_client or AWSClient(
            profile=config.profile, timeout=config.request_timeout
        )
        self._counters: Dict[str, Callable[[AWSClient, Optional[str]], int]] = {
            COMPUTE: self._count_instances,
            MANAGED_DB: self._count_db_instances,
            SERVERLESS: self._count_functions,
            OBJECT_STORAGE: self._count_buckets,
        }

    # =========================================================================
    # Scope Units
    # =========================================================================

    def list_scope_units(self) -> List[ScopeUnit]:
        caller_account = self.base_client.get_account_id()
        caller = ScopeUnit(id=caller_account, display_name=caller_account)

        if not self.config.use_organization:
            return [caller]

        try:
            accounts = list(
                _paginate(
                    self.base_client.client("organizations"),
                    "list_accounts",
                    "Accounts",
                )
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("AWSOrganizationsNotInUseException", "AccessDeniedException"):
                logger.warning(
                    f"Cannot list organization accounts ({code}), "
                    f"estimating account {caller_account} only"
                )
                return [caller]
            raise

        units = []
        for account in accounts:
            if account.get("Status", "ACTIVE") != "ACTIVE":
                continue
            account_id = account["Id"]
            handle = None
            if account_id != caller_account:
                handle = f"arn:aws:iam::{account_id}:role/{self.config.role_name}"
            units.append(
                ScopeUnit(
                    id=account_id,
                    display_name=account.get("Name", account_id),
                    credential_handle=handle,
                )
            )
        return units

    def connect(self, scope: ScopeUnit) -> ScopeUnit:
        """Bind the caller's client or an assumed-role client."""
        if scope.credential_handle is None:
            return scope.bind(self.base_client)
        if isinstance(scope.credential_handle, AWSClient):
            return scope

        role_arn = scope.credential_handle
        try:
            client = self.base_client.assume_role(role_arn, self.session_name)
        except (ClientError, NoCredentialsError) as e:
            raise ScopeUnavailableError(
                f"Cannot assume {role_arn}: {e}",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        logger.debug(f"Assumed {role_arn}")
        return scope.bind(client)

    # =========================================================================
    # Listing Capabilities
    # =========================================================================

    def list_partitions(self, scope: ScopeUnit) -> List[str]:
        ec2 = self._client(scope).client("ec2", HOME_REGION)
        response = ec2.describe_regions(AllRegions=False)
        return sorted(r["RegionName"] for r in response.get("Regions", []))

    def count_resources(
        self, scope: ScopeUnit, partition: Optional[str], category: str
    ) -> int:
        counter = self._counters.get(category)
        if counter is None:
            raise NotSupportedError(
                f"Category {category!r} is not counted on AWS",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return counter(self._client(scope), partition)

    def list_container_clusters(self, scope: ScopeUnit, partition: str) -> List[str]:
        eks = self._client(scope).client("eks", partition)
        return list(_paginate(eks, "list_clusters", "clusters"))

    def list_node_groups(
        self, scope: ScopeUnit, partition: str, cluster_id: str
    ) -> List[NodeGroup]:
        eks = self._client(scope).client("eks", partition)
        node_groups = []
        for name in _paginate(eks, "list_nodegroups", "nodegroups", clusterName=cluster_id):
            nodegroup = eks.describe_nodegroup(
                clusterName=cluster_id, nodegroupName=name
            )["nodegroup"]
            asgs = nodegroup.get("resources", {}).get("autoScalingGroups", [])
            node_groups.append(
                NodeGroup(
                    id=name,
                    cluster_id=cluster_id,
                    scaling_group_ids=tuple(a["name"] for a in asgs if a.get("name")),
                    instance_types=tuple(nodegroup.get("instanceTypes") or ()),
                )
            )
        return node_groups

    def describe_scaling_group(
        self, scope: ScopeUnit, partition: str, group_id: str
    ) -> ScalingGroupDescription:
        autoscaling = self._client(scope).client("autoscaling", partition)
        groups = autoscaling.describe_auto_scaling_groups(
            AutoScalingGroupNames=[group_id]
        ).get("AutoScalingGroups", [])
        if not groups:
            return ScalingGroupDescription(group_id=group_id, current_instance_count=0)

        instances = groups[0].get("Instances", [])
        instance_types = tuple(
            i["InstanceType"] for i in instances if i.get("InstanceType")
        )
        if len(instance_types) != len(instances):
            # Older responses omit the per-instance type
            instance_types = ()
        return ScalingGroupDescription(
            group_id=group_id,
            current_instance_count=len(instances),
            instance_types=instance_types,
        )

    def resolve_cores_for_instance_type(
        self, scope: ScopeUnit, partition: str, instance_type: str
    ) -> int:
        ec2 = self._client(scope).client("ec2", partition)
        response = ec2.describe_instance_types(InstanceTypes=[instance_type])
        types = response.get("InstanceTypes", [])
        if not types:
            raise ProviderError(
                f"Unknown instance type {instance_type}",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return int(types[0]["VCpuInfo"]["DefaultVCpus"])

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
        cloudwatch = self._client(scope).client("cloudwatch", partition)
        response = cloudwatch.get_metric_statistics(
            Namespace=self.metric_namespace,
            MetricName=metric,
            Dimensions=[{"Name": self.scaling_group_dimension, "Value": dimension}],
            StartTime=start,
            EndTime=end,
            Period=period,
            Statistics=["Average"],
        )
        datapoints = sorted(
            response.get("Datapoints", []), key=lambda d: d["Timestamp"]
        )
        return [float(d["Average"]) for d in datapoints if "Average" in d]

    # =========================================================================
    # Error Classification
    # =========================================================================

    def classify_error(self, exc: BaseException) -> ErrorKind:
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            if code in PERMISSION_ERROR_CODES:
                return ErrorKind.PERMISSION_DENIED
            if code in TRANSIENT_ERROR_CODES:
                return ErrorKind.TRANSIENT
            if code in NOT_SUPPORTED_ERROR_CODES:
                return ErrorKind.NOT_SUPPORTED
            return ErrorKind.UNKNOWN
        if isinstance(
            exc,
            (
                EndpointConnectionError,
                ConnectTimeoutError,
                ReadTimeoutError,
                ConnectionClosedError,
            ),
        ):
            return ErrorKind.TRANSIENT
        if isinstance(exc, (NoCredentialsError, CredentialsError)):
            return ErrorKind.PERMISSION_DENIED
        return default_classifier(exc)

    # =========================================================================
    # Private Methods: Category Counters
    # =========================================================================

    def _client(self, scope: ScopeUnit) -> AWSClient:
        if not isinstance(scope.credential_handle, AWSClient):
            raise ScopeUnavailableError(
                "Scope unit is not connected",
                provider=self.environment.value,
                scope_id=scope.id,
            )
        return scope.credential_handle

    def _count_instances(self, client: AWSClient, region: Optional[str]) -> int:
        ec2 = client.client("ec2", region)
        reservations = _paginate(
            ec2,
            "describe_instances",
            "Reservations",
            Filters=[{"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES}],
        )
        return sum(len(r.get("Instances", [])) for r in reservations)

    def _count_db_instances(self, client: AWSClient, region: Optional[str]) -> int:
        rds = client.client("rds", region)
        return sum(1 for _ in _paginate(rds, "describe_db_instances", "DBInstances"))

    def _count_functions(self, client: AWSClient, region: Optional[str]) -> int:
        lambda_client = client.client("lambda", region)
        return sum(1 for _ in _paginate(lambda_client, "list_functions", "Functions"))

    def _count_buckets(self, client: AWSClient, region: Optional[str]) -> int:
        s3 = client.client("s3", HOME_REGION)
        return len(s3.list_buckets().get("Buckets", []))
