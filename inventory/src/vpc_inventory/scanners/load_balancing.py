from __future__ import annotations

from typing import List

from ..auth.providers import CredentialStrategy
from ..util.errors import map_aws_error
from ..util.pagination import paginate_aws
from .base import ResourceRecord, ResourceType


class LoadBalancingScanner:
    """
    ELBv2 load balancers and target groups. The API has no VPC filter, so every
    item of the region is listed and matched on its own VpcId.
    """

    family = "load-balancing"

    def scan(self, credentials: CredentialStrategy, region: str, vpc_id: str) -> List[ResourceRecord]:
        elbv2 = credentials.client("elbv2", region)
        records: List[ResourceRecord] = []
        try:
            for lb in paginate_aws(elbv2, "describe_load_balancers", "LoadBalancers"):
                if lb.get("VpcId") == vpc_id:
                    records.append(
                        ResourceRecord(
                            identifier=str(lb.get("LoadBalancerArn") or ""),
                            resource_type=ResourceType.ELBV2_LOAD_BALANCER,
                            name=str(lb.get("LoadBalancerName") or ""),
                        )
                    )
            for tg in paginate_aws(elbv2, "describe_target_groups", "TargetGroups"):
                if tg.get("VpcId") == vpc_id:
                    records.append(
                        ResourceRecord(
                            identifier=str(tg.get("TargetGroupArn") or ""),
                            resource_type=ResourceType.ELBV2_TARGET_GROUP,
                            name=str(tg.get("TargetGroupName") or ""),
                        )
                    )
        except Exception as e:
            mapped = map_aws_error(e, f"ELBv2 listing failed for {vpc_id} in {region}")
            if mapped:
                raise mapped from e
            raise
        return records
