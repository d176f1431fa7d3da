from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol, runtime_checkable

from ..auth.providers import CredentialStrategy


class ResourceType(str, Enum):
    EC2_INSTANCE = "ec2.instance"
    EC2_ENI = "ec2.eni"
    EC2_NAT_GATEWAY = "ec2.nat-gateway"
    EC2_FLOW_LOG = "ec2.flow-log"
    ELBV2_LOAD_BALANCER = "elbv2.load-balancer"
    ELBV2_TARGET_GROUP = "elbv2.target-group"
    RDS_INSTANCE = "rds.instance"
    RDS_CLUSTER = "rds.cluster"
    DOCDB_CLUSTER = "docdb.cluster"


@dataclass(frozen=True)
class ResourceRecord:
    """
    One resource found inside a VPC.

    verified_network is False for resources whose API exposes no VPC association
    (RDS and DocumentDB clusters): they are listed under every scanned VPC of
    their region and may not belong to it.
    """

    identifier: str
    resource_type: ResourceType
    name: str = ""
    verified_network: bool = True

    def sort_key(self) -> tuple[str, str, str]:
        return (self.resource_type.value, self.identifier, self.name)


@runtime_checkable
class ResourceScanner(Protocol):
    """
    Scanner contract for one resource family.
    Implementations raise RemoteApiError on provider errors; they never mutate shared state.
    """

    family: str

    def scan(self, credentials: CredentialStrategy, region: str, vpc_id: str) -> List[ResourceRecord]:
        ...
