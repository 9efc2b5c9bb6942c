"""
Tests for the AWS provider adapter.
"""

import io
import zipfile
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from posture_estimator.core.config import RunConfig
from posture_estimator.core.exceptions import (
    NotSupportedError,
    PermissionDeniedError,
    ScopeUnavailableError,
)
from posture_estimator.core.models import (
    COMPUTE,
    KEY_VAULT,
    MANAGED_DB,
    OBJECT_STORAGE,
    SERVERLESS,
    EnvironmentType,
    ScopeUnit,
)
from posture_estimator.core.retry import ErrorKind
from posture_estimator.providers.aws import AWSClient, AWSProvider

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


def client_error(code, operation="DescribeInstances"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def provider(mock_aws_environment):
    """AWS provider for the caller's account only."""
    config = RunConfig(environment=EnvironmentType.AWS, use_organization=False)
    return AWSProvider(config)


@pytest.fixture
def bound_scope(provider):
    """The caller's account, connected."""
    [scope] = provider.list_scope_units()
    return provider.connect(scope)


class TestAWSClient:
    """Tests for AWSClient class."""

    def test_get_account_id(self, mock_aws_environment):
        """Test getting AWS account ID."""
        assert AWSClient().get_account_id() == ACCOUNT_ID

    def test_client_caching(self, mock_aws_environment):
        """Test that clients are cached per service and region."""
        client = AWSClient()

        ec2_1 = client.client("ec2", "us-east-1")
        ec2_2 = client.client("ec2", "us-east-1")
        ec2_3 = client.client("ec2", "us-west-2")

        assert ec2_1 is ec2_2
        assert ec2_1 is not ec2_3

    def test_assume_role(self, mock_aws_environment):
        """Test that assuming a role yields a new client."""
        base = AWSClient(timeout=10)
        assumed = base.assume_role(
            f"arn:aws:iam::{ACCOUNT_ID}:role/OrganizationAccountAccessRole",
            "posture-estimator",
        )

        assert assumed is not base
        assert assumed.timeout == 10
        assert assumed.session.get_credentials() is not None


class TestAWSProviderScopes:
    """Tests for scope unit discovery and binding."""

    def test_single_account(self, provider):
        """Test that the caller's account is the only scope unit."""
        [scope] = provider.list_scope_units()

        assert scope.id == ACCOUNT_ID
        assert scope.credential_handle is None

    def test_organization_not_in_use(self, mock_aws_environment):
        """Test falling back to the caller when there is no organization."""
        provider = AWSProvider(RunConfig(environment=EnvironmentType.AWS))

        assert [s.id for s in provider.list_scope_units()] == [ACCOUNT_ID]

    def test_organization_accounts(self, mock_aws_environment):
        """Test that member accounts get a role ARN handle."""
        organizations = boto3.client("organizations", region_name=REGION)
        organizations.create_organization(FeatureSet="ALL")
        organizations.create_account(AccountName="dev", Email="dev@example.com")

        provider = AWSProvider(
            RunConfig(environment=EnvironmentType.AWS, role_name="AuditRole")
        )
        scopes = {s.id: s for s in provider.list_scope_units()}

        assert len(scopes) == 2
        assert scopes[ACCOUNT_ID].credential_handle is None
        [member] = [s for s in scopes.values() if s.id != ACCOUNT_ID]
        assert member.credential_handle == f"arn:aws:iam::{member.id}:role/AuditRole"

    def test_connect_caller(self, provider):
        """Test that the caller's account binds the base client."""
        bound = provider.connect(ScopeUnit(ACCOUNT_ID, ACCOUNT_ID))
        assert bound.credential_handle is provider.base_client

    def test_connect_member(self, provider):
        """Test that a member account binds an assumed-role client."""
        scope = ScopeUnit(
            "210987654321",
            "dev",
            credential_handle="arn:aws:iam::210987654321:role/OrganizationAccountAccessRole",
        )
        bound = provider.connect(scope)

        assert isinstance(bound.credential_handle, AWSClient)
        assert bound.credential_handle is not provider.base_client

    def test_connect_failure(self, mock_aws_environment):
        """Test that a role that cannot be assumed makes the scope unavailable."""

        class DeniedClient(AWSClient):
            def assume_role(self, role_arn, session_name):
                raise client_error("AccessDenied", "AssumeRole")

        provider = AWSProvider(
            RunConfig(environment=EnvironmentType.AWS), base_client=DeniedClient()
        )
        scope = ScopeUnit("210987654321", "dev", credential_handle="arn:aws:iam::x:role/y")

        with pytest.raises(ScopeUnavailableError):
            provider.connect(scope)

    def test_unbound_scope_rejected(self, provider):
        """Test that counting requires a connected scope unit."""
        with pytest.raises(ScopeUnavailableError):
            provider.count_resources(ScopeUnit(ACCOUNT_ID, ACCOUNT_ID), REGION, COMPUTE)


class TestAWSProviderCounting:
    """Tests for the listing capabilities."""

    def test_list_partitions(self, provider, bound_scope):
        """Test region discovery."""
        regions = provider.list_partitions(bound_scope)

        assert REGION in regions
        assert regions == sorted(regions)

    def test_count_instances(self, provider, bound_scope, ec2_client, ami_id):
        """Test that terminated instances are not counted."""
        response = ec2_client.run_instances(
            ImageId=ami_id, MinCount=3, MaxCount=3, InstanceType="t2.micro"
        )
        ec2_client.terminate_instances(
            InstanceIds=[response["Instances"][0]["InstanceId"]]
        )

        assert provider.count_resources(bound_scope, REGION, COMPUTE) == 2
        assert provider.count_resources(bound_scope, "us-west-2", COMPUTE) == 0

    def test_count_db_instances(self, provider, bound_scope):
        """Test counting RDS instances."""
        rds = boto3.client("rds", region_name=REGION)
        rds.create_db_instance(
            DBInstanceIdentifier="orders",
            DBInstanceClass="db.t3.micro",
            Engine="postgres",
            MasterUsername="admin",
            MasterUserPassword="password123",
            AllocatedStorage=20,
        )

        assert provider.count_resources(bound_scope, REGION, MANAGED_DB) == 1

    def test_count_functions(self, provider, bound_scope):
        """Test counting Lambda functions."""
        iam = boto3.client("iam", region_name=REGION)
        role = iam.create_role(
            RoleName="lambda-role",
            AssumeRolePolicyDocument=(
                '{"Version": "2012-10-17", "Statement": [{"Effect": "Allow", '
                '"Principal": {"Service": "lambda.amazonaws.com"}, '
                '"Action": "sts:AssumeRole"}]}'
            ),
        )["Role"]
        archive = io.BytesIO()
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("handler.py", "def handler(event, context):\n    return event\n")

        lambda_client = boto3.client("lambda", region_name=REGION)
        for name in ("resize", "notify"):
            lambda_client.create_function(
                FunctionName=name,
                Runtime="python3.11",
                Role=role["Arn"],
                Handler="handler.handler",
                Code={"ZipFile": archive.getvalue()},
            )

        assert provider.count_resources(bound_scope, REGION, SERVERLESS) == 2

    def test_count_buckets(self, provider, bound_scope):
        """Test that S3 buckets are counted globally."""
        s3 = boto3.client("s3", region_name=REGION)
        s3.create_bucket(Bucket="logs-bucket")
        s3.create_bucket(Bucket="data-bucket")

        assert provider.count_resources(bound_scope, None, OBJECT_STORAGE) == 2

    def test_unknown_category(self, provider, bound_scope):
        """Test that categories AWS does not count are not supported."""
        with pytest.raises(NotSupportedError):
            provider.count_resources(bound_scope, REGION, KEY_VAULT)

    def test_list_container_clusters(self, provider, bound_scope):
        """Test listing EKS clusters and their node groups."""
        eks = boto3.client("eks", region_name=REGION)
        eks.create_cluster(
            name="platform",
            roleArn=f"arn:aws:iam::{ACCOUNT_ID}:role/eks",
            resourcesVpcConfig={"subnetIds": ["subnet-1"]},
        )
        eks.create_nodegroup(
            clusterName="platform",
            nodegroupName="workers",
            subnets=["subnet-1"],
            nodeRole=f"arn:aws:iam::{ACCOUNT_ID}:role/node",
            instanceTypes=["m5.xlarge"],
        )

        assert provider.list_container_clusters(bound_scope, REGION) == ["platform"]
        [group] = provider.list_node_groups(bound_scope, REGION, "platform")
        assert group.id == "workers"
        assert group.cluster_id == "platform"
        assert group.instance_types == ("m5.xlarge",)


class TestAWSProviderCores:
    """Tests for scaling group and core lookups."""

    def test_describe_scaling_group(self, provider, bound_scope, ami_id):
        """Test the live size of an Auto Scaling group."""
        autoscaling = boto3.client("autoscaling", region_name=REGION)
        autoscaling.create_launch_configuration(
            LaunchConfigurationName="workers-lc",
            ImageId=ami_id,
            InstanceType="t2.micro",
        )
        autoscaling.create_auto_scaling_group(
            AutoScalingGroupName="workers",
            LaunchConfigurationName="workers-lc",
            MinSize=2,
            MaxSize=2,
            DesiredCapacity=2,
            AvailabilityZones=["us-east-1a"],
        )

        description = provider.describe_scaling_group(bound_scope, REGION, "workers")

        assert description.group_id == "workers"
        assert description.current_instance_count == 2

    def test_missing_scaling_group(self, provider, bound_scope):
        """Test that a deleted group has no instances."""
        description = provider.describe_scaling_group(bound_scope, REGION, "gone")
        assert description.current_instance_count == 0

    def test_resolve_cores(self, provider, bound_scope):
        """Test vCPU lookup of an instance type."""
        assert provider.resolve_cores_for_instance_type(bound_scope, REGION, "m5.xlarge") == 4

    def test_query_time_series_empty(self, provider, bound_scope):
        """Test that a group without datapoints yields no samples."""
        end = datetime.now(timezone.utc)
        values = provider.query_time_series(
            bound_scope,
            REGION,
            provider.scaling_group_metric,
            "workers",
            end - timedelta(days=30),
            end,
            86400,
        )
        assert values == []


class TestAWSProviderErrors:
    """Tests for AWS error classification."""

    @pytest.mark.parametrize(
        "code,kind",
        [
            ("AccessDenied", ErrorKind.PERMISSION_DENIED),
            ("UnauthorizedOperation", ErrorKind.PERMISSION_DENIED),
            ("OptInRequired", ErrorKind.PERMISSION_DENIED),
            ("Throttling", ErrorKind.TRANSIENT),
            ("RequestLimitExceeded", ErrorKind.TRANSIENT),
            ("ServiceUnavailable", ErrorKind.TRANSIENT),
            ("InvalidAction", ErrorKind.NOT_SUPPORTED),
            ("ValidationError", ErrorKind.UNKNOWN),
        ],
    )
    def test_client_error_codes(self, code, kind):
        """Test ClientError classification by code."""
        provider = AWSProvider(
            RunConfig(environment=EnvironmentType.AWS), base_client=AWSClient()
        )
        assert provider.classify_error(client_error(code)) is kind

    def test_connection_errors_are_transient(self):
        """Test that network errors are retried."""
        provider = AWSProvider(RunConfig(environment=EnvironmentType.AWS))
        error = EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com")
        assert provider.classify_error(error) is ErrorKind.TRANSIENT

    def test_credential_errors(self):
        """Test that missing credentials are not retried."""
        provider = AWSProvider(RunConfig(environment=EnvironmentType.AWS))
        assert provider.classify_error(NoCredentialsError()) is ErrorKind.PERMISSION_DENIED
        assert (
            provider.classify_error(PermissionDeniedError("denied"))
            is ErrorKind.PERMISSION_DENIED
        )
