from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..auth.providers import CredentialStrategy
from ..logging import get_logger, log_event
from ..util.errors import map_aws_error
from ..util.pagination import paginate_aws
from .networks import DiscoveredNetwork, describe_vpc

LOG = get_logger(__name__)

PEERING_ACTIVE = "active"


@dataclass(frozen=True)
class Classification:
    public: bool
    peers: List[str]
    cidrs: List[str]
    errors: Tuple[str, ...] = ()


def _ec2_filter(name: str, value: str) -> List[Dict[str, Any]]:
    return [{"Name": name, "Values": [value]}]


def cidr_blocks(vpc: Dict[str, Any]) -> List[str]:
    """
    Primary IPv4 block plus every IPv4 and IPv6 association block, sorted and unique.
    """
    cidrs: set[str] = set()
    primary = vpc.get("CidrBlock")
    if primary:
        cidrs.add(str(primary))
    for assoc in vpc.get("CidrBlockAssociationSet") or []:
        if assoc.get("CidrBlock"):
            cidrs.add(str(assoc["CidrBlock"]))
    for assoc in vpc.get("Ipv6CidrBlockAssociationSet") or []:
        if assoc.get("Ipv6CidrBlock"):
            cidrs.add(str(assoc["Ipv6CidrBlock"]))
    return sorted(cidrs)


def has_internet_gateway(ec2: Any, vpc_id: str) -> bool:
    """True iff at least one internet gateway reports an attachment to vpc_id."""
    for igw in paginate_aws(
        ec2,
        "describe_internet_gateways",
        "InternetGateways",
        Filters=_ec2_filter("attachment.vpc-id", vpc_id),
    ):
        for att in igw.get("Attachments") or []:
            if att.get("VpcId") == vpc_id:
                return True
    return False


def collect_peers(
    ec2: Any,
    vpc_id: str,
    filter_name: str,
    other_side: Callable[[Dict[str, Any]], Optional[str]],
) -> List[str]:
    """
    VPC ids on the other side of ACTIVE peering connections matched by filter_name.
    Pending, rejected, expired and deleted connections never count.
    """
    peers: List[str] = []
    for pc in paginate_aws(
        ec2,
        "describe_vpc_peering_connections",
        "VpcPeeringConnections",
        Filters=_ec2_filter(filter_name, vpc_id),
    ):
        code = str((pc.get("Status") or {}).get("Code") or "").lower()
        if code != PEERING_ACTIVE:
            continue
        pid = other_side(pc)
        if pid:
            peers.append(pid)
    return peers


def peer_network_ids(ec2: Any, vpc_id: str) -> List[str]:
    peers = collect_peers(
        ec2,
        vpc_id,
        "requester-vpc-info.vpc-id",
        lambda pc: (pc.get("AccepterVpcInfo") or {}).get("VpcId"),
    )
    peers.extend(
        collect_peers(
            ec2,
            vpc_id,
            "accepter-vpc-info.vpc-id",
            lambda pc: (pc.get("RequesterVpcInfo") or {}).get("VpcId"),
        )
    )
    return sorted(set(peers))


class NetworkClassifier:
    """
    Derive public exposure, peering and CIDR membership of one VPC.

    Each fact is queried independently. A failed query is logged and leaves its
    fact at the default (public=False, peers=[], cidrs=[]) without affecting the
    other facts or the rest of the run.
    """

    def classify(
        self,
        credentials: CredentialStrategy,
        region: str,
        network: DiscoveredNetwork,
    ) -> Classification:
        ec2 = credentials.client("ec2", region)
        vpc_id = network.network_id
        errors: List[str] = []

        public = self._guard(
            lambda: has_internet_gateway(ec2, vpc_id), False, "public", region, vpc_id, errors
        )
        peers = self._guard(lambda: peer_network_ids(ec2, vpc_id), [], "peers", region, vpc_id, errors)

        def _cidrs() -> List[str]:
            raw = network.raw
            if not raw:
                described = describe_vpc(ec2, vpc_id, region)
                raw = described[0] if described else {}
            return cidr_blocks(raw)

        cidrs = self._guard(_cidrs, [], "cidrs", region, vpc_id, errors)
        return Classification(public=bool(public), peers=list(peers), cidrs=list(cidrs), errors=tuple(errors))

    @staticmethod
    def _guard(
        func: Callable[[], Any],
        default: Any,
        fact: str,
        region: str,
        vpc_id: str,
        errors: List[str],
    ) -> Any:
        try:
            return func()
        except Exception as e:
            mapped = map_aws_error(e, f"Classifying {fact} of {vpc_id} in {region}")
            if mapped is None:
                LOG.debug("Classifying %s of %s raised", fact, vpc_id, exc_info=e)
            message = str(mapped) if mapped is not None else f"{type(e).__name__}: {e}"
            errors.append(f"{fact}: {message}")
            log_event(
                LOG,
                logging.ERROR,
                f"Network classification failed for {vpc_id} ({fact}); using default",
                step="classify",
                phase="error",
                region=region,
                vpc_id=vpc_id,
                fact=fact,
                error=message,
            )
            return default
