from __future__ import annotations

import pytest
from aws_fakes import FakeClient, FakeCredentials, client_error, paged

from vpc_inventory.scanners import (
    ComputeScanner,
    DatabaseScanner,
    LoadBalancingScanner,
    ResourceRecord,
    ResourceType,
    ScannerRegistry,
    default_registry,
)
from vpc_inventory.util.errors import RemoteApiError


def _compute_client(**overrides) -> FakeClient:
    ops = {
        "describe_instances": paged(
            "Reservations",
            [
                [{"Instances": [{"InstanceId": "i-1", "Tags": [{"Key": "Name", "Value": "web"}]}]}],
                [{"Instances": [{"InstanceId": "i-2"}]}],
            ],
        ),
        "describe_network_interfaces": {"NetworkInterfaces": [{"NetworkInterfaceId": "eni-1", "Description": "lb"}]},
        "describe_nat_gateways": {"NatGateways": [{"NatGatewayId": "nat-1"}]},
        "describe_flow_logs": {"FlowLogs": [{"FlowLogId": "fl-1", "LogGroupName": "vpc-logs"}]},
    }
    ops.update(overrides)
    return FakeClient(**ops)


def test_compute_scanner_lists_all_families() -> None:
    ec2 = _compute_client()

    records = ComputeScanner().scan(FakeCredentials({"ec2": ec2}), "us-east-1", "vpc-1")

    assert records == [
        ResourceRecord("i-1", ResourceType.EC2_INSTANCE, "web"),
        ResourceRecord("i-2", ResourceType.EC2_INSTANCE, ""),
        ResourceRecord("eni-1", ResourceType.EC2_ENI, "lb"),
        ResourceRecord("nat-1", ResourceType.EC2_NAT_GATEWAY, "nat-1"),
        ResourceRecord("fl-1", ResourceType.EC2_FLOW_LOG, "vpc-logs"),
    ]
    by_name = dict((name, kw) for name, kw in ec2.calls)
    assert by_name["describe_nat_gateways"]["Filter"] == [{"Name": "vpc-id", "Values": ["vpc-1"]}]
    assert by_name["describe_flow_logs"]["Filter"] == [{"Name": "resource-id", "Values": ["vpc-1"]}]


def test_compute_scanner_keeps_partial_results() -> None:
    ec2 = _compute_client(describe_network_interfaces=client_error("Throttling", "DescribeNetworkInterfaces"))

    records = ComputeScanner().scan(FakeCredentials({"ec2": ec2}), "us-east-1", "vpc-1")

    assert {r.resource_type for r in records} == {
        ResourceType.EC2_INSTANCE,
        ResourceType.EC2_NAT_GATEWAY,
        ResourceType.EC2_FLOW_LOG,
    }


def test_compute_scanner_raises_when_every_listing_fails() -> None:
    denied = client_error("UnauthorizedOperation", "Describe")
    ec2 = _compute_client(
        describe_instances=denied,
        describe_network_interfaces=denied,
        describe_nat_gateways=denied,
        describe_flow_logs=denied,
    )

    with pytest.raises(RemoteApiError):
        ComputeScanner().scan(FakeCredentials({"ec2": ec2}), "us-east-1", "vpc-1")


def test_load_balancing_scanner_filters_client_side() -> None:
    elbv2 = FakeClient(
        describe_load_balancers=paged(
            "LoadBalancers",
            [
                [{"LoadBalancerArn": "arn:lb/1", "LoadBalancerName": "one", "VpcId": "vpc-1"}],
                [{"LoadBalancerArn": "arn:lb/2", "LoadBalancerName": "two", "VpcId": "vpc-2"}],
            ],
            token_key="Marker",
            output_token_key="NextMarker",
        ),
        describe_target_groups={
            "TargetGroups": [
                {"TargetGroupArn": "arn:tg/1", "TargetGroupName": "tg", "VpcId": "vpc-1"},
                {"TargetGroupArn": "arn:tg/2", "TargetGroupName": "lambda-tg"},
            ]
        },
    )

    records = LoadBalancingScanner().scan(FakeCredentials({"elbv2": elbv2}), "us-east-1", "vpc-1")

    assert [(r.resource_type, r.identifier) for r in records] == [
        (ResourceType.ELBV2_LOAD_BALANCER, "arn:lb/1"),
        (ResourceType.ELBV2_TARGET_GROUP, "arn:tg/1"),
    ]


def test_load_balancing_scanner_raises_remote_error() -> None:
    elbv2 = FakeClient(describe_load_balancers=client_error("AccessDenied", "DescribeLoadBalancers"))
    with pytest.raises(RemoteApiError):
        LoadBalancingScanner().scan(FakeCredentials({"elbv2": elbv2}), "us-east-1", "vpc-1")


def test_database_scanner_flags_clusters_unverified() -> None:
    rds = FakeClient(
        describe_db_instances=paged(
            "DBInstances",
            [
                [{"DBInstanceArn": "arn:db:a", "DBInstanceIdentifier": "a", "DBSubnetGroup": {"VpcId": "vpc-1"}}],
                [{"DBInstanceArn": "arn:db:b", "DBInstanceIdentifier": "b", "DBSubnetGroup": {"VpcId": "vpc-9"}}],
            ],
            token_key="Marker",
        ),
        describe_db_clusters={
            "DBClusters": [
                {"DBClusterArn": "arn:cluster:aurora", "DBClusterIdentifier": "aurora", "Engine": "aurora-postgresql"},
                {"DBClusterArn": "arn:cluster:docs", "DBClusterIdentifier": "docs", "Engine": "docdb"},
            ]
        },
    )
    docdb = FakeClient(
        describe_db_clusters={"DBClusters": [{"DBClusterArn": "arn:cluster:docs", "DBClusterIdentifier": "docs"}]}
    )

    records = DatabaseScanner().scan(FakeCredentials({"rds": rds, "docdb": docdb}), "us-east-1", "vpc-1")

    assert records == [
        ResourceRecord("arn:db:a", ResourceType.RDS_INSTANCE, "a"),
        ResourceRecord("arn:cluster:aurora", ResourceType.RDS_CLUSTER, "aurora", verified_network=False),
        ResourceRecord("arn:cluster:docs", ResourceType.DOCDB_CLUSTER, "docs", verified_network=False),
    ]
    assert docdb.calls[0][1]["Filters"] == [{"Name": "engine", "Values": ["docdb"]}]


def test_registry_order_and_uniqueness() -> None:
    registry = default_registry()
    assert registry.families() == ["compute", "load-balancing", "database"]

    with pytest.raises(ValueError):
        registry.register(ComputeScanner())
    with pytest.raises(TypeError):
        ScannerRegistry().register(object())  # type: ignore[arg-type]
