"""
Data Model Module
=================

Value types shared by the estimation engine, the provider adapters and
the reporters.

Classes
-------
EnvironmentType
    Cloud environment a scope unit belongs to.
PlanName
    Billing plans a line item can be emitted for.
ScopeUnit
    One billing boundary (account, subscription or project).
ResourceCounts
    Additive per-category resource counts.
NodeGroup
    Worker pool of a managed container cluster.
ScalingGroupDescription
    Live membership of one auto-scaled group.
ScalingGroupSample
    Inputs of the core adjustment for one scaling group.
PartitionCounts
    Counts and core estimate of one region.
PlanLineItem
    One output row.

Notes
-----
Category names are plain strings so provider adapters can add their own
categories without touching this module. The well-known names are
exposed as module constants.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

# Module logger
logger = logging.getLogger(__name__)

# Well-known resource categories
COMPUTE = "compute"
MANAGED_DB = "managedDb"
OBJECT_STORAGE = "objectStorage"
MANAGED_CONTAINER_CLUSTER = "managedContainerCluster"
SERVERLESS = "serverless"
OPEN_SOURCE_DB = "openSourceDb"
COSMOS_DB = "cosmosDb"
KEY_VAULT = "keyVault"
API = "api"
AI = "ai"

# Flat monthly hours billed for count-based plans
MONTHLY_HOURS = 730


class EnvironmentType(str, Enum):
    """Cloud environment of a scope unit, as written to the report."""

    AWS = "AWS"
    GCP = "GCP"
    AZURE = "Azure"

    @classmethod
    def from_name(cls, name: str) -> "EnvironmentType":
        """Parse a case-insensitive environment name ('aws', 'Azure', ...)."""
        for member in cls:
            if member.value.lower() == name.lower():
                return member
        raise ValueError(f"Unknown environment type: {name!r}")


class PlanName(str, Enum):
    """Billing plans recognised by the report consumer."""

    CLOUD_POSTURE = "cloudposture"
    VIRTUAL_MACHINES = "virtualmachines"
    SQL_SERVERS = "sqlservers"
    CONTAINERS = "containers"
    SERVERLESS = "serverless"
    STORAGE_ACCOUNTS = "storageaccounts"
    KEY_VAULTS = "keyvaults"
    COSMOS_DBS = "cosmosdbs"
    API = "api"
    AI = "ai"
    OPEN_SOURCE_RELATIONAL_DATABASES = "opensourcerelationaldatabases"
    ON_UPLOAD_MALWARE_SCANNING = "onuploadmalwarescanning"
    ARM = "arm"


@dataclass(frozen=True)
class ScopeUnit:
    """
    One isolated billing boundary.

    Parameters
    ----------
    id : str
        Account ID, subscription ID or project ID.
    display_name : str
        Human readable name.
    credential_handle : Any, optional
        Opaque provider value. Before binding it holds what the provider
        needs to obtain credentials (e.g. a role ARN); after
        ``CloudProvider.connect`` it holds the live session.

    Examples
    --------
    >>> scope = ScopeUnit(id="123456789012", display_name="prod")
    >>> bound = scope.bind(session)
    >>> bound.credential_handle is session
    True
    """

    id: str
    display_name: str
    credential_handle: Any = field(default=None, compare=False, repr=False)

    def bind(self, credential_handle: Any) -> "ScopeUnit":
        """Return a copy of this scope unit carrying live credentials."""
        return ScopeUnit(
            id=self.id,
            display_name=self.display_name,
            credential_handle=credential_handle,
        )

    @property
    def label(self) -> str:
        """Short label used in log lines."""
        if self.display_name and self.display_name != self.id:
            return f"{self.display_name} ({self.id})"
        return self.id


class ResourceCounts:
    """
    Non-negative resource counts keyed by category.

    Counts only ever grow. Categories that were zeroed because their
    listing failed are tracked in ``degraded`` so the report can show
    them as visible zeros.

    Examples
    --------
    >>> counts = ResourceCounts({"compute": 3})
    >>> counts.add("compute", 1)
    >>> counts["compute"]
    4
    >>> counts["serverless"]
    0
    """

    def __init__(
        self,
        counts: Optional[Mapping[str, int]] = None,
        degraded: Optional[Iterable[str]] = None,
    ) -> None:
        self._counts: Dict[str, int] = {}
        self.degraded: Set[str] = set(degraded or ())
        for category, value in (counts or {}).items():
            self.add(category, value)

    def add(self, category: str, value: int) -> None:
        """Add ``value`` resources to ``category``."""
        if value < 0:
            raise ValueError(
                f"Resource count for {category!r} must be >= 0, got {value}"
            )
        self._counts[category] = self._counts.get(category, 0) + int(value)

    def mark_degraded(self, category: str) -> None:
        """Record that ``category`` is zero or incomplete because of a failure."""
        self._counts.setdefault(category, 0)
        self.degraded.add(category)

    def merge(self, other: "ResourceCounts") -> "ResourceCounts":
        """Add every count of ``other`` into this instance and return it."""
        for category, value in other.items():
            self.add(category, value)
        self.degraded.update(other.degraded)
        return self

    @classmethod
    def combine(cls, parts: Iterable["ResourceCounts"]) -> "ResourceCounts":
        """Sum any number of counts into a new instance."""
        total = cls()
        for part in parts:
            total.merge(part)
        return total

    def total(self, categories: Sequence[str]) -> int:
        """Sum the counts of ``categories``."""
        return sum(self[c] for c in categories)

    def items(self):
        return self._counts.items()

    def as_dict(self) -> Dict[str, int]:
        return dict(self._counts)

    def __getitem__(self, category: str) -> int:
        return self._counts.get(category, 0)

    def __contains__(self, category: object) -> bool:
        return category in self._counts

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceCounts):
            return NotImplemented
        mine = {k: v for k, v in self._counts.items() if v}
        theirs = {k: v for k, v in other._counts.items() if v}
        return mine == theirs

    def __repr__(self) -> str:
        return f"ResourceCounts({self._counts!r}, degraded={sorted(self.degraded)!r})"


@dataclass(frozen=True)
class NodeGroup:
    """
    Worker pool of a managed container cluster.

    Parameters
    ----------
    id : str
        Node group (node pool / agent pool) identifier.
    cluster_id : str
        Owning cluster.
    scaling_group_ids : tuple of str
        Auto-scaled groups backing the pool (ASG names, MIG URLs, ...).
    instance_types : tuple of str
        Instance types advertised by the pool, used when the scaling
        group description does not report per-instance types.
    """

    id: str
    cluster_id: str
    scaling_group_ids: Tuple[str, ...] = ()
    instance_types: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScalingGroupDescription:
    """Live membership of an auto-scaled group."""

    group_id: str
    current_instance_count: int
    instance_types: Tuple[str, ...] = ()


def adjust_cores(
    cores: float,
    current_instance_count: int,
    average_instance_count: Optional[float],
) -> float:
    """
    Scale one instance's cores by the group's time-averaged size.

    Parameters
    ----------
    cores : float
        Raw cores of the instance.
    current_instance_count : int
        Live size of the group.
    average_instance_count : float, optional
        Mean group size over the metric window, None when no samples.

    Returns
    -------
    float
        ``cores * average / current`` when both are positive, else ``cores``.

    Examples
    --------
    >>> adjust_cores(4, 2, 1.0)
    2.0
    >>> adjust_cores(4, 2, None)
    4
    """
    if average_instance_count and current_instance_count > 0:
        return cores * (average_instance_count / current_instance_count)
    return cores


@dataclass(frozen=True)
class ScalingGroupSample:
    """
    Inputs of the core adjustment for one scaling group.

    Parameters
    ----------
    group_id : str
        Scaling group identifier.
    cores_per_instance : tuple of int
        Resolved cores of every current instance.
    current_instance_count : int
        Live group size.
    average_instance_count : float, optional
        Mean of the daily instance-count samples, None when there are none.
    window_days : int
        Length of the trailing metric window.
    """

    group_id: str
    cores_per_instance: Tuple[int, ...]
    current_instance_count: int
    average_instance_count: Optional[float]
    window_days: int

    @property
    def raw_cores(self) -> int:
        return sum(self.cores_per_instance)

    @property
    def adjusted_cores(self) -> float:
        """Sum of every instance's (possibly scaled) core contribution."""
        return sum(
            adjust_cores(
                cores, self.current_instance_count, self.average_instance_count
            )
            for cores in self.cores_per_instance
        )


@dataclass
class PartitionCounts:
    """Counts, node groups and container core estimate of one region."""

    partition: str
    counts: ResourceCounts = field(default_factory=ResourceCounts)
    node_groups: List[NodeGroup] = field(default_factory=list)
    core_estimate: float = 0.0
    samples: List[ScalingGroupSample] = field(default_factory=list)

    @classmethod
    def degraded(cls, partition: str, categories: Iterable[str]) -> "PartitionCounts":
        """Zero result for a region whose counting failed outright."""
        counts = ResourceCounts()
        for category in categories:
            counts.mark_degraded(category)
        return cls(partition=partition, counts=counts)


@dataclass(frozen=True)
class PlanLineItem:
    """
    One output row mapping a scope unit's resources to a billing plan.

    ``environment_name`` is always None at emission time; it is filled
    in by the system that consumes the report.
    """

    scope_id: str
    resources_count: int
    billable_units: float
    plan_name: PlanName
    environment_type: EnvironmentType
    environment_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Row keyed by report column name."""
        return {
            "ScopeId": self.scope_id,
            "EnvironmentName": self.environment_name or "",
            "ResourcesCount": self.resources_count,
            "BillableUnits": self.billable_units,
            "PlanName": self.plan_name.value,
            "EnvironmentType": self.environment_type.value,
        }
