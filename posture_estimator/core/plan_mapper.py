"""
Plan Mapper Module
==================

Converts a scope unit's resource counts and container core estimate
into billing plan line items.

The plan tables below are the only place that decides which counts feed
which plan. Adding a plan means adding a :class:`PlanRule`; the counting
code is untouched.

Classes
-------
Billing
    How a plan's billable units are derived.
PlanRule
    One row of a plan table.
PlanMapper
    Applies a plan table to a scope unit.

Example
-------
>>> mapper = PlanMapper(EnvironmentType.AWS)
>>> items = mapper.map_scope("123456789012", counts, core_estimate=12.0)
>>> [i.plan_name.value for i in items]
['cloudposture', 'virtualmachines', 'sqlservers', 'containers', 'serverless']
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from posture_estimator.core.models import (
    AI,
    API,
    COMPUTE,
    COSMOS_DB,
    KEY_VAULT,
    MANAGED_CONTAINER_CLUSTER,
    MANAGED_DB,
    MONTHLY_HOURS,
    OBJECT_STORAGE,
    OPEN_SOURCE_DB,
    SERVERLESS,
    EnvironmentType,
    PlanLineItem,
    PlanName,
    ResourceCounts,
)

# Module logger
logger = logging.getLogger(__name__)


class Billing(str, Enum):
    """Source of a plan's billable units."""

    MONTHLY_HOURS = "hours"
    CORES = "cores"


@dataclass(frozen=True)
class PlanRule:
    """
    One plan table row.

    Parameters
    ----------
    plan : PlanName
        Plan emitted.
    categories : tuple of str
        Categories summed into ``resources_count``.
    billing : Billing
        ``MONTHLY_HOURS`` bills a flat 730 hours, ``CORES`` bills the
        scope unit's container core estimate.
    """

    plan: PlanName
    categories: Tuple[str, ...]
    billing: Billing = Billing.MONTHLY_HOURS


_POSTURE = PlanRule(PlanName.CLOUD_POSTURE, (COMPUTE, MANAGED_DB, OBJECT_STORAGE))
_VIRTUAL_MACHINES = PlanRule(PlanName.VIRTUAL_MACHINES, (COMPUTE,))
_SQL = PlanRule(PlanName.SQL_SERVERS, (MANAGED_DB,))
_CONTAINERS = PlanRule(
    PlanName.CONTAINERS, (MANAGED_CONTAINER_CLUSTER,), Billing.CORES
)
_SERVERLESS = PlanRule(PlanName.SERVERLESS, (SERVERLESS,))

PLAN_TABLES: Dict[EnvironmentType, Tuple[PlanRule, ...]] = {
    EnvironmentType.AWS: (
        _POSTURE,
        _VIRTUAL_MACHINES,
        _SQL,
        _CONTAINERS,
        _SERVERLESS,
    ),
    EnvironmentType.GCP: (
        _POSTURE,
        _VIRTUAL_MACHINES,
        _SQL,
        _CONTAINERS,
        _SERVERLESS,
    ),
    EnvironmentType.AZURE: (
        _POSTURE,
        _VIRTUAL_MACHINES,
        _SQL,
        PlanRule(PlanName.OPEN_SOURCE_RELATIONAL_DATABASES, (OPEN_SOURCE_DB,)),
        PlanRule(PlanName.COSMOS_DBS, (COSMOS_DB,)),
        PlanRule(PlanName.STORAGE_ACCOUNTS, (OBJECT_STORAGE,)),
        PlanRule(PlanName.KEY_VAULTS, (KEY_VAULT,)),
        _CONTAINERS,
        _SERVERLESS,
        PlanRule(PlanName.API, (API,)),
        PlanRule(PlanName.AI, (AI,)),
    ),
}


class PlanMapper:
    """
    Apply an environment's plan table to a scope unit.

    Parameters
    ----------
    environment : EnvironmentType
        Selects the plan table.
    table : tuple of PlanRule, optional
        Overrides the built-in table.
    """

    def __init__(
        self,
        environment: EnvironmentType,
        table: Optional[Tuple[PlanRule, ...]] = None,
    ) -> None:
        self.environment = environment
        self.table = table if table is not None else PLAN_TABLES[environment]
        plans = [rule.plan for rule in self.table]
        if len(plans) != len(set(plans)):
            raise ValueError(f"Duplicate plan in {environment.value} plan table")

    def map_scope(
        self,
        scope_id: str,
        counts: ResourceCounts,
        core_estimate: float,
    ) -> List[PlanLineItem]:
        """
        Emit one line item per plan of the table, in table order.

        Categories missing from ``counts`` count as 0, so every plan row
        is emitted even when counting degraded.
        """
        items = []
        for rule in self.table:
            if rule.billing is Billing.CORES:
                billable_units = round(max(core_estimate, 0.0), 2)
            else:
                billable_units = MONTHLY_HOURS
            items.append(
                PlanLineItem(
                    scope_id=scope_id,
                    resources_count=counts.total(rule.categories),
                    billable_units=billable_units,
                    plan_name=rule.plan,
                    environment_type=self.environment,
                )
            )
        return items

    def __repr__(self) -> str:
        return f"PlanMapper(environment={self.environment.value!r}, plans={len(self.table)})"
