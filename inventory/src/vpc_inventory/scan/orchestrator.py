from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple

from ..auth.providers import DEFAULT_SESSION_NAME, AuthContext, CredentialStrategy, get_caller_account
from ..auth.scope import (
    DEFAULT_ORG_ROLE_NAME,
    RunMode,
    ScanScope,
    ScopePath,
    ScopeResolver,
    resolve_credentials,
)
from ..aws.classify import NetworkClassifier
from ..aws.networks import DiscoveredNetwork, list_networks
from ..logging import StepTimers, get_logger, log_event
from ..scanners import ScannerRegistry, default_registry
from ..scanners.base import ResourceRecord, ResourceScanner
from ..util.concurrency import parallel_map_ordered, parallel_map_settled
from ..util.errors import DelegationError, RemoteApiError, aws_error_code
from .aggregate import NetworkRecord, ResultAggregate, ScanFailure, ScanResult

LOG = get_logger(__name__)

DEFAULT_WORKERS_REGION = 6
DEFAULT_WORKERS_SCAN = 6


class ScanProgress(Protocol):
    def advance_scan(self, region: str, *, count: int = 1) -> None:
        ...


@dataclass(frozen=True)
class ScanRequest:
    regions: Tuple[str, ...]
    mode: RunMode = RunMode.CURRENT
    role_arns: Tuple[str, ...] = ()
    vpc_ids: Tuple[str, ...] = ()
    summary_only: bool = True


@dataclass(frozen=True)
class ScanUnit:
    """One (scope, region) pair and the credentials it is scanned with."""

    scope: ScanScope
    path: ScopePath
    credentials: CredentialStrategy
    region: str

    @property
    def label(self) -> str:
        return f"{self.scope.label}@{self.region}"


@dataclass(frozen=True)
class UnitOutcome:
    scope: ScanScope
    region: str
    path: ScopePath
    networks: int = 0
    error: Optional[str] = None


class ScanOrchestrator:
    """
    Cross-account, cross-region VPC scan.

    Scopes are resolved first (explicit ARNs are validated before any remote
    call), then the caller account is read once and each scope is bound to
    ambient or delegated credentials. (scope, region) units run on a bounded
    pool; within a VPC the classifier runs first and the registered scanners
    fan out on a second bounded pool. A failing scanner, classifier query,
    network listing or role assumption only reduces completeness: it is logged,
    recorded in ScanResult.failures and the run continues.
    """

    def __init__(
        self,
        ctx: AuthContext,
        *,
        resolver: Optional[ScopeResolver] = None,
        classifier: Optional[NetworkClassifier] = None,
        registry: Optional[ScannerRegistry] = None,
        workers_region: int = DEFAULT_WORKERS_REGION,
        workers_scan: int = DEFAULT_WORKERS_SCAN,
        session_name: str = DEFAULT_SESSION_NAME,
        org_role_name: str = DEFAULT_ORG_ROLE_NAME,
        caller_account: Optional[Callable[[AuthContext], str]] = None,
        progress: Optional[ScanProgress] = None,
    ) -> None:
        self._ctx = ctx
        self._resolver = resolver or ScopeResolver(ctx, org_role_name=org_role_name)
        self._classifier = classifier or NetworkClassifier()
        self._registry = registry or default_registry()
        self._workers_region = max(1, int(workers_region))
        self._workers_scan = max(1, int(workers_scan))
        self._session_name = session_name
        self._caller_account = caller_account or get_caller_account
        self._progress = progress
        self.outcomes: List[UnitOutcome] = []

    def plan(self, request: ScanRequest) -> List[ScanUnit]:
        scopes = self._resolver.resolve(request.mode, request.role_arns)
        caller = self._caller_account(self._ctx)
        units: List[ScanUnit] = []
        for scope in scopes:
            path, bound, credentials = resolve_credentials(
                scope, caller, self._ctx, session_name=self._session_name
            )
            for region in request.regions:
                units.append(ScanUnit(scope=bound, path=path, credentials=credentials, region=region))
        return units

    def run(self, request: ScanRequest) -> ScanResult:
        timers = StepTimers()
        log_event(
            LOG,
            logging.INFO,
            "VPC scan started",
            step="scan",
            phase="start",
            timers=timers,
            mode=request.mode.value,
            regions=list(request.regions),
            summary_only=request.summary_only,
        )
        units = self.plan(request)
        aggregate = ResultAggregate()
        self.outcomes = parallel_map_ordered(
            lambda item: self._scan_unit(item[1], request, aggregate, order=item[0]),
            list(enumerate(units)),
            max_workers=self._workers_region,
        )
        result = aggregate.snapshot()
        log_event(
            LOG,
            logging.INFO,
            "VPC scan complete",
            step="scan",
            phase="complete",
            timers=timers,
            units=len(units),
            **result.counts(),
        )
        return result

    def _scan_unit(
        self,
        unit: ScanUnit,
        request: ScanRequest,
        aggregate: ResultAggregate,
        *,
        order: int = 0,
    ) -> UnitOutcome:
        aggregate.mark_region(unit.region)
        try:
            networks = list_networks(unit.credentials, unit.region, request.vpc_ids)
        except Exception as e:
            if not isinstance(e, RemoteApiError):
                LOG.debug("Network listing for %s raised", unit.label, exc_info=e)
            log_event(
                LOG,
                logging.ERROR,
                f"Skipping {unit.label}: {e}",
                step="networks",
                phase="error",
                region=unit.region,
                scope=unit.scope.label,
                path=unit.path.value,
            )
            aggregate.add_failure(
                ScanFailure(
                    stage="delegation" if isinstance(e, DelegationError) else "networks",
                    region=unit.region,
                    scope=unit.scope.label,
                    message=str(e),
                    code=getattr(e, "code", None),
                )
            )
            return UnitOutcome(scope=unit.scope, region=unit.region, path=ScopePath.FAILED, error=str(e))

        LOG.info(
            "Found %d VPC(s) in %s",
            len(networks),
            unit.label,
            extra={"region": unit.region, "scope": unit.scope.label},
        )
        for network in networks:
            aggregate.merge(self._scan_network(unit, network, request.summary_only, aggregate), order=order)
            if self._progress is not None:
                self._progress.advance_scan(unit.region)
        return UnitOutcome(scope=unit.scope, region=unit.region, path=ScopePath.SCANNED, networks=len(networks))

    def _scan_network(
        self,
        unit: ScanUnit,
        network: DiscoveredNetwork,
        summary_only: bool,
        aggregate: ResultAggregate,
    ) -> NetworkRecord:
        vpc_id = network.network_id
        facts = self._classifier.classify(unit.credentials, unit.region, network)
        for err in facts.errors:
            aggregate.add_failure(
                ScanFailure(stage="classify", region=unit.region, scope=unit.scope.label, message=err, vpc_id=vpc_id)
            )
        record = NetworkRecord(
            network_id=vpc_id,
            region=unit.region,
            name=network.name,
            cidrs=list(facts.cidrs),
            public=facts.public,
            peers=list(facts.peers),
            account_id=unit.scope.account_id,
            role_arn=unit.scope.role_arn,
        )
        if summary_only:
            return record
        record.resources = self._scan_resources(unit, vpc_id, aggregate)
        return record

    def _scan_resources(self, unit: ScanUnit, vpc_id: str, aggregate: ResultAggregate) -> List[ResourceRecord]:
        def _run(scanner: ResourceScanner) -> List[ResourceRecord]:
            return scanner.scan(unit.credentials, unit.region, vpc_id)

        resources: List[ResourceRecord] = []
        for settled in parallel_map_settled(_run, self._registry.scanners(), max_workers=self._workers_scan):
            if settled.ok:
                resources.extend(settled.value or [])
                continue
            err = settled.error
            family = settled.item.family
            log_event(
                LOG,
                logging.WARNING,
                f"Scanner {family} failed for {vpc_id}; continuing without its records",
                step="scanner",
                phase="warning",
                family=family,
                region=unit.region,
                vpc_id=vpc_id,
                scope=unit.scope.label,
                error=str(err),
            )
            if not isinstance(err, RemoteApiError):
                LOG.debug("Scanner %s raised", family, exc_info=err)
            aggregate.add_failure(
                ScanFailure(
                    stage="scanner",
                    region=unit.region,
                    scope=unit.scope.label,
                    message=str(err),
                    vpc_id=vpc_id,
                    family=family,
                    code=getattr(err, "code", None) or (aws_error_code(err) if err else None),
                )
            )
        return resources

