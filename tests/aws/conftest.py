"""Fixtures for provider tests against moto's fake AWS.

Every test in this directory runs inside ``mock_aws``; the provider and
its boto3 clients are created within that context so no call ever leaves
the process.
"""

import boto3
import pytest
from moto import mock_aws

from converge.core.reconciler import Reconciler
from converge.core.waiter import WaitConfig
from converge.providers.aws import AWSProvider
from converge.utils.aws_client import AWSClientManager


@pytest.fixture(autouse=True)
def mock_aws_env(monkeypatch):
    """Activate moto's mock_aws context for every test in this directory."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-west-2")

    with mock_aws():
        yield


@pytest.fixture
def aws_region():
    return "us-west-2"


@pytest.fixture
def aws_session(aws_region):
    """Return a boto3 Session wired to the test region with dummy creds."""
    return boto3.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        aws_session_token="testing",
        region_name=aws_region,
    )


@pytest.fixture
def clients(aws_session):
    return AWSClientManager.from_session(aws_session)


@pytest.fixture
def provider(clients):
    return AWSProvider(clients)


@pytest.fixture
def reconciler(provider):
    return Reconciler(
        provider,
        wait_config=WaitConfig(interval=0, max_attempts=5),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def network(aws_session, aws_region):
    """A VPC with public subnets in two zones and one private subnet."""
    ec2 = aws_session.client("ec2", region_name=aws_region)

    vpc_id = ec2.create_vpc(CidrBlock="10.0.0.0/16")["Vpc"]["VpcId"]
    igw_id = ec2.create_internet_gateway()["InternetGateway"]["InternetGatewayId"]
    ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)

    public_a = ec2.create_subnet(
        VpcId=vpc_id, CidrBlock="10.0.1.0/24", AvailabilityZone=f"{aws_region}a"
    )["Subnet"]["SubnetId"]
    public_b = ec2.create_subnet(
        VpcId=vpc_id, CidrBlock="10.0.2.0/24", AvailabilityZone=f"{aws_region}b"
    )["Subnet"]["SubnetId"]
    private_a = ec2.create_subnet(
        VpcId=vpc_id, CidrBlock="10.0.11.0/24", AvailabilityZone=f"{aws_region}a"
    )["Subnet"]["SubnetId"]

    main_route_table = ec2.describe_route_tables(
        Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "association.main", "Values": ["true"]},
        ]
    )["RouteTables"][0]["RouteTableId"]

    return {
        "vpc_id": vpc_id,
        "igw_id": igw_id,
        "public_subnets": [public_a, public_b],
        "private_subnet": private_a,
        "main_route_table": main_route_table,
    }
