from __future__ import annotations

from typing import Any, Dict, Iterable, List

from ..auth.providers import CredentialStrategy
from ..util.errors import map_aws_error
from ..util.pagination import paginate_aws
from .base import ResourceRecord, ResourceType

DOCDB_ENGINE = "docdb"


def iter_db_instances(rds: Any) -> Iterable[Dict[str, Any]]:
    return paginate_aws(rds, "describe_db_instances", "DBInstances")


def instance_vpc_id(db: Dict[str, Any]) -> str:
    return str((db.get("DBSubnetGroup") or {}).get("VpcId") or "")


class DatabaseScanner:
    """
    RDS instances, RDS clusters and DocumentDB clusters.

    Instances are matched on DBSubnetGroup.VpcId. Cluster listings expose no VPC
    association, so clusters are returned for every VPC of the region with
    verified_network=False. DocumentDB clusters also show up in the RDS cluster
    listing; they are reported once, as docdb.cluster.
    """

    family = "database"

    def scan(self, credentials: CredentialStrategy, region: str, vpc_id: str) -> List[ResourceRecord]:
        rds = credentials.client("rds", region)
        docdb = credentials.client("docdb", region)
        records: List[ResourceRecord] = []
        try:
            for db in iter_db_instances(rds):
                if instance_vpc_id(db) == vpc_id:
                    records.append(
                        ResourceRecord(
                            identifier=str(db.get("DBInstanceArn") or ""),
                            resource_type=ResourceType.RDS_INSTANCE,
                            name=str(db.get("DBInstanceIdentifier") or ""),
                        )
                    )
            for cl in paginate_aws(rds, "describe_db_clusters", "DBClusters"):
                if str(cl.get("Engine") or "") == DOCDB_ENGINE:
                    continue
                records.append(
                    ResourceRecord(
                        identifier=str(cl.get("DBClusterArn") or ""),
                        resource_type=ResourceType.RDS_CLUSTER,
                        name=str(cl.get("DBClusterIdentifier") or ""),
                        verified_network=False,
                    )
                )
            for cl in paginate_aws(
                docdb,
                "describe_db_clusters",
                "DBClusters",
                Filters=[{"Name": "engine", "Values": [DOCDB_ENGINE]}],
            ):
                records.append(
                    ResourceRecord(
                        identifier=str(cl.get("DBClusterArn") or ""),
                        resource_type=ResourceType.DOCDB_CLUSTER,
                        name=str(cl.get("DBClusterIdentifier") or ""),
                        verified_network=False,
                    )
                )
        except Exception as e:
            mapped = map_aws_error(e, f"RDS/DocumentDB listing failed for {vpc_id} in {region}")
            if mapped:
                raise mapped from e
            raise
        return records
