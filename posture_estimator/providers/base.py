"""
Provider Interface Module
=========================

Abstract capabilities the estimation engine needs from a cloud, and the
scope enumerator built on top of them.

Every adapter (AWS, Azure, GCP) implements :class:`CloudProvider`. The
engine never talks to an SDK directly, so adding a cloud means adding
one adapter.

Classes
-------
CloudProvider
    Abstract base class for provider adapters.
ScopeEnumerator
    Produces the scope units of a run.

Example
-------
>>> provider = AWSProvider(config)
>>> scopes = ScopeEnumerator(provider, retry_policy).enumerate()
>>> bound = provider.connect(scopes[0])
>>> provider.list_partitions(bound)
['eu-west-1', 'us-east-1', ...]
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import ConfigurationError, NotSupportedError
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
from posture_estimator.core.retry import ErrorKind, RetryPolicy, default_classifier

# Module logger
logger = logging.getLogger(__name__)


class CloudProvider(ABC):
    """
    Abstract base class for cloud provider adapters.

    Parameters
    ----------
    config : RunConfig
        Run settings (profile, role name, timeouts, ...).

    Attributes
    ----------
    environment : EnvironmentType
        Environment written to every line item.
    regional_categories : tuple of str
        Categories counted once per partition. Container clusters are
        always counted through :meth:`list_container_clusters` and are
        not listed here.
    global_categories : tuple of str
        Categories counted once per scope unit (object storage).
    scaling_group_metric : str
        Time-series metric holding a scaling group's instance count.
    scaling_group_dimension : str
        Metric dimension identifying the group.

    Notes
    -----
    Implementations may raise any SDK exception; :meth:`classify_error`
    maps them to an :class:`ErrorKind` so the engine can decide whether
    to retry and how to log.
    """

    environment: EnvironmentType
    regional_categories: Tuple[str, ...] = (COMPUTE, MANAGED_DB, SERVERLESS)
    global_categories: Tuple[str, ...] = (OBJECT_STORAGE,)
    scaling_group_metric: str = ""
    scaling_group_dimension: str = ""

    def __init__(self, config: RunConfig) -> None:
        self.config = config
        logger.debug(f"Initialized {self.__class__.__name__}")

    # =========================================================================
    # Scope Units
    # =========================================================================

    @abstractmethod
    def list_scope_units(self) -> List[ScopeUnit]:
        """
        List the accounts, subscriptions or projects to process.

        Raises
        ------
        CredentialsError
            If the base credentials cannot be used at all.
        """

    @abstractmethod
    def connect(self, scope: ScopeUnit) -> ScopeUnit:
        """
        Bind live credentials to a scope unit.

        Returns
        -------
        ScopeUnit
            Copy of ``scope`` whose ``credential_handle`` is usable by the
            other capabilities.

        Raises
        ------
        ScopeUnavailableError
            If no usable credentials exist for this scope unit.
        """

    # =========================================================================
    # Listing Capabilities
    # =========================================================================

    @abstractmethod
    def list_partitions(self, scope: ScopeUnit) -> List[str]:
        """List the regions of a bound scope unit."""

    @abstractmethod
    def count_resources(
        self, scope: ScopeUnit, partition: Optional[str], category: str
    ) -> int:
        """
        Count resources of one category.

        ``partition`` is None for global categories.
        """

    @abstractmethod
    def list_container_clusters(self, scope: ScopeUnit, partition: str) -> List[str]:
        """List managed container cluster identifiers in a region."""

    @abstractmethod
    def list_node_groups(
        self, scope: ScopeUnit, partition: str, cluster_id: str
    ) -> List[NodeGroup]:
        """List the node groups of a cluster."""

    @abstractmethod
    def describe_scaling_group(
        self, scope: ScopeUnit, partition: str, group_id: str
    ) -> ScalingGroupDescription:
        """Describe the live membership of a scaling group."""

    @abstractmethod
    def resolve_cores_for_instance_type(
        self, scope: ScopeUnit, partition: str, instance_type: str
    ) -> int:
        """Number of vCPUs of an instance type."""

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
        """
        Fetch metric samples for one dimension value.

        Parameters
        ----------
        metric : str
            Metric name (``scaling_group_metric``).
        dimension : str
            Value of ``scaling_group_dimension`` (the group identifier).
        start, end : datetime
            Window bounds (UTC).
        period : int
            Sample granularity in seconds.

        Returns
        -------
        list of float
            Samples in the window; empty when none were recorded.

        Raises
        ------
        NotSupportedError
            By default; adapters with a usable metric override this.
        """
        raise NotSupportedError(
            f"{self.environment.value} does not expose a scaling group size metric",
            provider=self.environment.value,
            scope_id=scope.id,
        )

    # =========================================================================
    # Error Classification
    # =========================================================================

    def classify_error(self, exc: BaseException) -> ErrorKind:
        """Map an exception to an :class:`ErrorKind`."""
        return default_classifier(exc)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(environment={self.environment.value!r})"


class ScopeEnumerator:
    """
    Produce the ordered, de-duplicated scope units of a run.

    Parameters
    ----------
    provider : CloudProvider
        Adapter to enumerate.
    retry_policy : RetryPolicy
        Policy wrapping the listing call.

    Raises
    ------
    ConfigurationError
        From :meth:`enumerate` when no scope unit is discoverable.
    """

    def __init__(self, provider: CloudProvider, retry_policy: RetryPolicy) -> None:
        self.provider = provider
        self.retry_policy = retry_policy

    def enumerate(self) -> List[ScopeUnit]:
        """Return every scope unit once, ordered by id."""
        units = self.retry_policy.call(self.provider.list_scope_units)

        unique = {}
        for unit in units:
            unique.setdefault(unit.id, unit)
        ordered = sorted(unique.values(), key=lambda u: u.id)

        if not ordered:
            raise ConfigurationError(
                f"No {self.provider.environment.value} scope units found",
                details={"hint": "Check the credentials and organization access"},
            )

        logger.info(
            f"Discovered {len(ordered)} {self.provider.environment.value} scope units"
        )
        return ordered
