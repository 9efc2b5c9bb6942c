"""
Tests for the Plan Mapper module.
"""

import pytest

from posture_estimator.core.models import (
    AI,
    API,
    COMPUTE,
    COSMOS_DB,
    KEY_VAULT,
    MANAGED_CONTAINER_CLUSTER,
    MANAGED_DB,
    OBJECT_STORAGE,
    OPEN_SOURCE_DB,
    SERVERLESS,
    EnvironmentType,
    PlanName,
    ResourceCounts,
)
from posture_estimator.core.plan_mapper import PLAN_TABLES, Billing, PlanMapper, PlanRule

SCOPE_ID = "123456789012"


@pytest.fixture
def counts():
    return ResourceCounts(
        {
            COMPUTE: 10,
            MANAGED_DB: 2,
            OBJECT_STORAGE: 5,
            MANAGED_CONTAINER_CLUSTER: 1,
            SERVERLESS: 4,
        }
    )


class TestPlanMapper:
    """Tests for PlanMapper class."""

    def test_aws_plans_in_order(self, counts):
        """Test the AWS plan rows and their order."""
        items = PlanMapper(EnvironmentType.AWS).map_scope(SCOPE_ID, counts, 12.0)

        assert [i.plan_name for i in items] == [
            PlanName.CLOUD_POSTURE,
            PlanName.VIRTUAL_MACHINES,
            PlanName.SQL_SERVERS,
            PlanName.CONTAINERS,
            PlanName.SERVERLESS,
        ]
        assert all(i.scope_id == SCOPE_ID for i in items)
        assert all(i.environment_type is EnvironmentType.AWS for i in items)
        assert all(i.environment_name is None for i in items)

    def test_aws_resources_and_units(self, counts):
        """Test resource counts and billable units per plan."""
        items = {
            i.plan_name: i
            for i in PlanMapper(EnvironmentType.AWS).map_scope(SCOPE_ID, counts, 12.0)
        }

        assert items[PlanName.CLOUD_POSTURE].resources_count == 17
        assert items[PlanName.VIRTUAL_MACHINES].resources_count == 10
        assert items[PlanName.SQL_SERVERS].resources_count == 2
        assert items[PlanName.CONTAINERS].resources_count == 1
        assert items[PlanName.SERVERLESS].resources_count == 4

        assert items[PlanName.CONTAINERS].billable_units == 12.0
        for plan in (
            PlanName.CLOUD_POSTURE,
            PlanName.VIRTUAL_MACHINES,
            PlanName.SQL_SERVERS,
            PlanName.SERVERLESS,
        ):
            assert items[plan].billable_units == 730

    def test_gcp_matches_aws_plans(self, counts):
        """Test that GCP emits the same plans as AWS."""
        aws = PlanMapper(EnvironmentType.AWS).map_scope(SCOPE_ID, counts, 0)
        gcp = PlanMapper(EnvironmentType.GCP).map_scope(SCOPE_ID, counts, 0)

        assert [i.plan_name for i in aws] == [i.plan_name for i in gcp]
        assert all(i.environment_type is EnvironmentType.GCP for i in gcp)

    def test_azure_plans(self):
        """Test the Azure plan rows."""
        counts = ResourceCounts(
            {
                COMPUTE: 1,
                MANAGED_DB: 2,
                OPEN_SOURCE_DB: 3,
                COSMOS_DB: 4,
                OBJECT_STORAGE: 5,
                KEY_VAULT: 6,
                SERVERLESS: 7,
                API: 8,
                AI: 9,
            }
        )
        items = PlanMapper(EnvironmentType.AZURE).map_scope("sub-1", counts, 3.5)
        by_plan = {i.plan_name: i.resources_count for i in items}

        assert len(items) == 11
        assert by_plan[PlanName.CLOUD_POSTURE] == 8
        assert by_plan[PlanName.OPEN_SOURCE_RELATIONAL_DATABASES] == 3
        assert by_plan[PlanName.COSMOS_DBS] == 4
        assert by_plan[PlanName.STORAGE_ACCOUNTS] == 5
        assert by_plan[PlanName.KEY_VAULTS] == 6
        assert by_plan[PlanName.API] == 8
        assert by_plan[PlanName.AI] == 9
        assert PlanName.ARM not in by_plan
        assert PlanName.ON_UPLOAD_MALWARE_SCANNING not in by_plan

    def test_missing_categories_count_zero(self):
        """Test that every plan is emitted even with empty counts."""
        items = PlanMapper(EnvironmentType.AWS).map_scope(SCOPE_ID, ResourceCounts(), 0.0)

        assert len(items) == 5
        assert all(i.resources_count == 0 for i in items)

    def test_core_estimate_is_rounded(self, counts):
        """Test that container units are rounded to two decimals."""
        items = PlanMapper(EnvironmentType.AWS).map_scope(SCOPE_ID, counts, 36.456789)
        [containers] = [i for i in items if i.plan_name is PlanName.CONTAINERS]

        assert containers.billable_units == 36.46

    def test_deterministic(self, counts):
        """Test that the same input maps to the same rows."""
        mapper = PlanMapper(EnvironmentType.AZURE)
        assert mapper.map_scope("s", counts, 1.0) == mapper.map_scope("s", counts, 1.0)

    def test_duplicate_plan_rejected(self):
        """Test that a table naming a plan twice is refused."""
        table = (
            PlanRule(PlanName.VIRTUAL_MACHINES, (COMPUTE,)),
            PlanRule(PlanName.VIRTUAL_MACHINES, (MANAGED_DB,)),
        )
        with pytest.raises(ValueError):
            PlanMapper(EnvironmentType.AWS, table=table)

    def test_custom_table(self, counts):
        """Test mapping with an overriding table."""
        table = (PlanRule(PlanName.CONTAINERS, (MANAGED_CONTAINER_CLUSTER,), Billing.CORES),)
        [item] = PlanMapper(EnvironmentType.AWS, table=table).map_scope(SCOPE_ID, counts, 2)

        assert item.plan_name is PlanName.CONTAINERS
        assert item.billable_units == 2

    @pytest.mark.parametrize("environment", list(EnvironmentType))
    def test_every_environment_has_a_table(self, environment):
        """Test that each environment has a table with the posture plan first."""
        assert PLAN_TABLES[environment][0].plan is PlanName.CLOUD_POSTURE
