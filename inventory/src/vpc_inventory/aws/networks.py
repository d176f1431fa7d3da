from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..auth.providers import CredentialStrategy
from ..logging import get_logger
from ..util.errors import NotFoundInRegion, map_aws_error
from ..util.pagination import paginate_aws

LOG = get_logger(__name__)

VPC_NOT_FOUND_CODES = frozenset({"InvalidVpcID.NotFound"})


@dataclass(frozen=True)
class DiscoveredNetwork:
    network_id: str
    name: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def name_tag(tags: Optional[Sequence[Dict[str, Any]]]) -> Optional[str]:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            value = tag.get("Value")
            return str(value) if value is not None else None
    return None


def _to_network(vpc: Dict[str, Any]) -> DiscoveredNetwork:
    return DiscoveredNetwork(
        network_id=str(vpc.get("VpcId") or ""),
        name=name_tag(vpc.get("Tags")),
        raw=vpc,
    )


def describe_vpc(ec2: Any, vpc_id: str, region: str) -> List[Dict[str, Any]]:
    """
    Describe a single VPC; raise NotFoundInRegion when the id does not exist here.
    """
    try:
        resp = ec2.describe_vpcs(VpcIds=[vpc_id])
    except Exception as e:
        mapped = map_aws_error(e, f"DescribeVpcs {vpc_id} failed in {region}")
        if mapped is None:
            raise
        if mapped.code in VPC_NOT_FOUND_CODES:
            raise NotFoundInRegion(f"{vpc_id} absent in {region}", code=mapped.code) from e
        raise mapped from e
    return list(resp.get("Vpcs") or [])


def list_all_networks(ec2: Any, region: str) -> List[DiscoveredNetwork]:
    try:
        return [_to_network(v) for v in paginate_aws(ec2, "describe_vpcs", "Vpcs")]
    except Exception as e:
        mapped = map_aws_error(e, f"DescribeVpcs failed in {region}")
        if mapped:
            raise mapped from e
        raise


def list_filtered_networks(ec2: Any, region: str, vpc_ids: Sequence[str]) -> List[DiscoveredNetwork]:
    """
    Query each id on its own. The same id list is reused for every region, so an
    id that does not exist in this region is expected and skipped quietly.
    """
    out: List[DiscoveredNetwork] = []
    for vpc_id in vpc_ids:
        try:
            vpcs = describe_vpc(ec2, vpc_id, region)
        except NotFoundInRegion:
            LOG.debug("%s absent in %s; skipped", vpc_id, region, extra={"region": region, "vpc_id": vpc_id})
            continue
        out.extend(_to_network(v) for v in vpcs)
    return out


def list_networks(
    credentials: CredentialStrategy,
    region: str,
    explicit_ids: Sequence[str] = (),
) -> List[DiscoveredNetwork]:
    """
    List VPCs visible to credentials in region, optionally restricted to explicit_ids.
    Results are unique by VPC id and keep API order.
    """
    ec2 = credentials.client("ec2", region)
    if explicit_ids:
        found = list_filtered_networks(ec2, region, explicit_ids)
    else:
        found = list_all_networks(ec2, region)
    unique: Dict[str, DiscoveredNetwork] = {}
    for net in found:
        if net.network_id and net.network_id not in unique:
            unique[net.network_id] = net
    return list(unique.values())
