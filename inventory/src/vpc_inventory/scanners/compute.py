from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple

from ..auth.providers import CredentialStrategy
from ..aws.networks import name_tag
from ..logging import get_logger, log_event
from ..util.errors import RemoteApiError, map_aws_error
from ..util.pagination import paginate_aws
from .base import ResourceRecord, ResourceType

LOG = get_logger(__name__)


def _vpc_filter(vpc_id: str, name: str = "vpc-id") -> List[Dict[str, Any]]:
    return [{"Name": name, "Values": [vpc_id]}]


def list_instances(ec2: Any, vpc_id: str) -> List[ResourceRecord]:
    out: List[ResourceRecord] = []
    for reservation in paginate_aws(ec2, "describe_instances", "Reservations", Filters=_vpc_filter(vpc_id)):
        for inst in reservation.get("Instances") or []:
            out.append(
                ResourceRecord(
                    identifier=str(inst.get("InstanceId") or ""),
                    resource_type=ResourceType.EC2_INSTANCE,
                    name=name_tag(inst.get("Tags")) or "",
                )
            )
    return out


def list_network_interfaces(ec2: Any, vpc_id: str) -> List[ResourceRecord]:
    return [
        ResourceRecord(
            identifier=str(eni.get("NetworkInterfaceId") or ""),
            resource_type=ResourceType.EC2_ENI,
            name=str(eni.get("Description") or ""),
        )
        for eni in paginate_aws(ec2, "describe_network_interfaces", "NetworkInterfaces", Filters=_vpc_filter(vpc_id))
    ]


def list_nat_gateways(ec2: Any, vpc_id: str) -> List[ResourceRecord]:
    out: List[ResourceRecord] = []
    # DescribeNatGateways takes Filter, not Filters
    for ngw in paginate_aws(ec2, "describe_nat_gateways", "NatGateways", Filter=_vpc_filter(vpc_id)):
        ngw_id = str(ngw.get("NatGatewayId") or "")
        out.append(
            ResourceRecord(
                identifier=ngw_id,
                resource_type=ResourceType.EC2_NAT_GATEWAY,
                name=name_tag(ngw.get("Tags")) or ngw_id,
            )
        )
    return out


def list_flow_logs(ec2: Any, vpc_id: str) -> List[ResourceRecord]:
    return [
        ResourceRecord(
            identifier=str(fl.get("FlowLogId") or ""),
            resource_type=ResourceType.EC2_FLOW_LOG,
            name=str(fl.get("LogGroupName") or fl.get("LogDestination") or ""),
        )
        for fl in paginate_aws(ec2, "describe_flow_logs", "FlowLogs", Filter=_vpc_filter(vpc_id, "resource-id"))
    ]


class ComputeScanner:
    """
    EC2 instances, network interfaces, NAT gateways and flow logs of a VPC.

    The four listings are independent. A failing listing is logged and skipped;
    records gathered by the others are still returned. Only when every listing
    fails does the scanner raise.
    """

    family = "compute"

    def __init__(self) -> None:
        self._listings: Tuple[Tuple[str, Callable[[Any, str], List[ResourceRecord]]], ...] = (
            ("instances", list_instances),
            ("network-interfaces", list_network_interfaces),
            ("nat-gateways", list_nat_gateways),
            ("flow-logs", list_flow_logs),
        )

    def scan(self, credentials: CredentialStrategy, region: str, vpc_id: str) -> List[ResourceRecord]:
        ec2 = credentials.client("ec2", region)
        records: List[ResourceRecord] = []
        errors: List[RemoteApiError] = []
        for label, listing in self._listings:
            try:
                records.extend(listing(ec2, vpc_id))
            except Exception as e:
                mapped = map_aws_error(e, f"Listing {label} of {vpc_id} in {region}")
                if mapped is None:
                    raise
                errors.append(mapped)
                log_event(
                    LOG,
                    logging.WARNING,
                    f"Compute listing {label} failed for {vpc_id}",
                    step="scan",
                    phase="warning",
                    family=self.family,
                    listing=label,
                    region=region,
                    vpc_id=vpc_id,
                    error=str(mapped),
                )
        if errors and len(errors) == len(self._listings):
            raise errors[0]
        return records
