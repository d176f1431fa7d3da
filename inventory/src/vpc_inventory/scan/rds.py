from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..auth.providers import DEFAULT_SESSION_NAME, AuthContext, CredentialStrategy, get_caller_account
from ..auth.scope import DEFAULT_ORG_ROLE_NAME, RunMode, ScanScope, ScopePath, ScopeResolver, resolve_credentials
from ..logging import StepTimers, get_logger, log_event
from ..scanners.database import iter_db_instances
from ..util.concurrency import parallel_map_ordered
from ..util.errors import map_aws_error
from .orchestrator import DEFAULT_WORKERS_REGION

LOG = get_logger(__name__)


@dataclass(frozen=True)
class RdsInstance:
    region: str
    role_arn: Optional[str]
    instance_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"region": self.region, "role_arn": self.role_arn, "instance_id": self.instance_id}


@dataclass(frozen=True)
class RdsOutcome:
    """Final state of one (scope, region) pair: SCANNED or FAILED."""

    scope: ScanScope
    region: str
    path: ScopePath
    instances: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class RdsScanResult:
    instances: List[RdsInstance]
    outcomes: List[RdsOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[RdsOutcome]:
        return [o for o in self.outcomes if o.path == ScopePath.FAILED]


def format_instance(inst: RdsInstance) -> str:
    """Tab-separated line: [role_arn] region instance_id."""
    if inst.role_arn:
        return f"{inst.role_arn}\t{inst.region}\t{inst.instance_id}"
    return f"{inst.region}\t{inst.instance_id}"


class RdsInventory:
    """
    Flat listing of RDS DB instance identifiers per (scope, region).

    Each pair walks UNRESOLVED -> CURRENT_ACCOUNT | DELEGATED -> SCANNED | FAILED.
    Delegated credentials are built per (role, region); a failure to assume the
    role or to list instances fails that pair only.
    """

    def __init__(
        self,
        ctx: AuthContext,
        *,
        resolver: Optional[ScopeResolver] = None,
        workers_region: int = DEFAULT_WORKERS_REGION,
        session_name: str = DEFAULT_SESSION_NAME,
        org_role_name: str = DEFAULT_ORG_ROLE_NAME,
        caller_account: Optional[Callable[[AuthContext], str]] = None,
    ) -> None:
        self._ctx = ctx
        self._resolver = resolver or ScopeResolver(ctx, org_role_name=org_role_name)
        self._workers_region = max(1, int(workers_region))
        self._session_name = session_name
        self._caller_account = caller_account or get_caller_account

    def run(self, mode: RunMode, regions: List[str], role_arns: List[str] | Tuple[str, ...] = ()) -> RdsScanResult:
        timers = StepTimers()
        log_event(LOG, logging.INFO, "RDS inventory started", step="rds", phase="start", timers=timers, mode=mode.value)
        scopes = self._resolver.resolve(mode, role_arns)
        caller = self._caller_account(self._ctx)
        LOG.info("Caller account %s", caller, extra={"account_id": caller})

        units: List[Tuple[ScopePath, ScanScope, CredentialStrategy, str]] = []
        for scope in scopes:
            path, bound, credentials = resolve_credentials(scope, caller, self._ctx, session_name=self._session_name)
            LOG.debug("Scope %s resolved to %s", scope.label, path.value, extra={"path": path.value})
            for region in regions:
                units.append((path, bound, credentials, region))

        per_unit = parallel_map_ordered(self._scan_unit, units, max_workers=self._workers_region)
        instances: List[RdsInstance] = []
        outcomes: List[RdsOutcome] = []
        for outcome, found in per_unit:
            outcomes.append(outcome)
            instances.extend(found)

        log_event(
            LOG,
            logging.INFO,
            "RDS inventory complete",
            step="rds",
            phase="complete",
            timers=timers,
            instances=len(instances),
            failed=sum(1 for o in outcomes if o.path == ScopePath.FAILED),
        )
        return RdsScanResult(instances=instances, outcomes=outcomes)

    def _scan_unit(
        self, unit: Tuple[ScopePath, ScanScope, CredentialStrategy, str]
    ) -> Tuple[RdsOutcome, List[RdsInstance]]:
        path, scope, credentials, region = unit
        LOG.info("Region %s (%s)", region, scope.label, extra={"region": region, "path": path.value})
        try:
            rds = credentials.client("rds", region)
            found = [
                RdsInstance(
                    region=region,
                    role_arn=credentials.role_arn,
                    instance_id=str(db.get("DBInstanceIdentifier") or ""),
                )
                for db in iter_db_instances(rds)
            ]
        except Exception as e:
            mapped = map_aws_error(e, f"DescribeDBInstances failed for {scope.label} in {region}")
            if mapped is None:
                LOG.debug("DescribeDBInstances for %s raised", scope.label, exc_info=e)
            message = str(mapped) if mapped is not None else f"{type(e).__name__}: {e}"
            log_event(
                LOG,
                logging.ERROR,
                f"Error in {region}: {message}",
                step="rds",
                phase="error",
                region=region,
                scope=scope.label,
                code=getattr(mapped, "code", None),
            )
            return RdsOutcome(scope=scope, region=region, path=ScopePath.FAILED, error=message), []
        LOG.info("Got %d instance(s) in %s", len(found), region, extra={"region": region})
        return RdsOutcome(scope=scope, region=region, path=ScopePath.SCANNED, instances=len(found)), found

