from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ..logging import get_logger
from ..util.errors import AuthResolutionError, DelegationError, map_aws_error

try:
    import boto3
    from botocore.config import Config
except Exception:  # pragma: no cover - import error surfaced at runtime/CI
    boto3 = None  # type: ignore
    Config = None  # type: ignore

LOG = get_logger(__name__)

DEFAULT_BOOTSTRAP_REGION = "us-east-1"
DEFAULT_SESSION_NAME = "vpc-inventory"

SessionFactory = Callable[..., Any]


def _api_config() -> Any:
    # A failed call is final: no SDK-level retries beyond the first attempt.
    if Config is None:  # pragma: no cover
        return None
    return Config(retries={"total_max_attempts": 1, "mode": "standard"})


@dataclass(frozen=True)
class AuthContext:
    """
    Resolved ambient credentials for one run.

    session is the boto3 Session built from the default credential chain (or a
    named profile); session_factory builds the per-region sessions that carry
    delegated (AssumeRole) credentials. boto3 Sessions are not thread-safe, so
    client construction on a shared session goes through lock.
    """

    session: Any
    profile: Optional[str]
    bootstrap_region: str
    session_factory: SessionFactory
    lock: Any = field(default_factory=threading.RLock, compare=False, repr=False)


def _require_boto3() -> None:
    if boto3 is None:
        raise AuthResolutionError("boto3 is not installed. Install dependencies and try again: pip install .")


def detect_bootstrap_region(regions: Optional[Sequence[str]] = None) -> str:
    """
    Region used for STS/Organizations calls: AWS_REGION, then AWS_DEFAULT_REGION,
    then the first scanned region.
    """
    for name in ("AWS_REGION", "AWS_DEFAULT_REGION"):
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    for region in regions or []:
        if region and region.strip():
            return region.strip()
    return DEFAULT_BOOTSTRAP_REGION


def resolve_auth(
    profile: Optional[str],
    bootstrap_region: Optional[str] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
) -> AuthContext:
    """
    Resolve ambient credentials from the default chain (env, shared config,
    SSO, instance/container roles), or from the named profile when given.
    """
    if session_factory is None:
        _require_boto3()
        session_factory = boto3.session.Session  # type: ignore[union-attr]
    region = bootstrap_region or detect_bootstrap_region()
    kwargs: Dict[str, Any] = {"region_name": region}
    if profile:
        kwargs["profile_name"] = profile
    try:
        session = session_factory(**kwargs)
        credentials = session.get_credentials()
    except Exception as e:
        raise AuthResolutionError(f"Failed to load AWS credentials (profile={profile or 'default'}): {e}") from e
    if credentials is None:
        raise AuthResolutionError(
            "No AWS credentials found. Configure the default credential chain or pass --profile."
        )
    return AuthContext(session=session, profile=profile, bootstrap_region=region, session_factory=session_factory)


def make_client(ctx: AuthContext, session: Any, service: str, region: str) -> Any:
    """
    Construct a boto3 client for service in region from session.
    """
    with ctx.lock:
        return session.client(service, region_name=region, config=_api_config())


def get_caller_identity(ctx: AuthContext) -> Dict[str, str]:
    """
    Call sts:GetCallerIdentity with the ambient credentials. Failure is fatal for the run.
    """
    sts = make_client(ctx, ctx.session, "sts", ctx.bootstrap_region)
    LOG.debug("Calling STS GetCallerIdentity", extra={"region": ctx.bootstrap_region})
    try:
        resp = sts.get_caller_identity()
    except Exception as e:
        raise AuthResolutionError(f"Failed to resolve caller identity: {e}") from e
    account = str(resp.get("Account") or "")
    if not account:
        raise AuthResolutionError("GetCallerIdentity returned no account id")
    return {"Account": account, "Arn": str(resp.get("Arn") or ""), "UserId": str(resp.get("UserId") or "")}


def get_caller_account(ctx: AuthContext) -> str:
    account = get_caller_identity(ctx)["Account"]
    LOG.debug("Caller account resolved", extra={"account_id": account})
    return account


class CredentialStrategy:
    """
    How API clients for one scan scope obtain credentials. Clients are cached per
    (service, region) for the lifetime of the strategy, i.e. a single run.
    """

    role_arn: Optional[str] = None

    def __init__(self, ctx: AuthContext) -> None:
        self._ctx = ctx
        self._clients: Dict[Tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    @property
    def delegated(self) -> bool:
        return self.role_arn is not None

    @property
    def label(self) -> str:
        return self.role_arn or "current-account"

    def session_for(self, region: str) -> Any:
        raise NotImplementedError

    def client(self, service: str, region: str) -> Any:
        key = (service, region)
        with self._lock:
            cached = self._clients.get(key)
            if cached is None:
                cached = make_client(self._ctx, self.session_for(region), service, region)
                self._clients[key] = cached
            return cached


class AmbientCredentials(CredentialStrategy):
    """Use the caller's own credentials."""

    def session_for(self, region: str) -> Any:
        return self._ctx.session


class AssumedRoleCredentials(CredentialStrategy):
    """
    Assume role_arn through a regional STS endpoint. Delegated sessions are
    region-scoped: each region triggers its own AssumeRole call, at most once.
    """

    def __init__(self, ctx: AuthContext, role_arn: str, session_name: str = DEFAULT_SESSION_NAME) -> None:
        super().__init__(ctx)
        self.role_arn = role_arn
        self._session_name = session_name
        self._sessions: Dict[str, Any] = {}

    def session_for(self, region: str) -> Any:
        cached = self._sessions.get(region)
        if cached is not None:
            return cached
        LOG.info("Assuming role %s in %s", self.role_arn, region, extra={"region": region})
        sts = make_client(self._ctx, self._ctx.session, "sts", region)
        try:
            response = sts.assume_role(RoleArn=self.role_arn, RoleSessionName=self._session_name)
        except Exception as e:
            mapped = map_aws_error(e, f"AssumeRole {self.role_arn} failed in {region}", DelegationError)
            if mapped:
                raise mapped from e
            raise DelegationError(f"AssumeRole {self.role_arn} failed in {region}: {e}") from e
        try:
            creds = response["Credentials"]
        except (KeyError, TypeError) as e:
            raise DelegationError(f"Malformed AssumeRole response for {self.role_arn} in {region}") from e
        try:
            session = self._ctx.session_factory(
                aws_access_key_id=creds["AccessKeyId"],
                aws_secret_access_key=creds["SecretAccessKey"],
                aws_session_token=creds["SessionToken"],
                region_name=region,
            )
        except Exception as e:
            raise DelegationError(f"Failed to build delegated session for {self.role_arn} in {region}: {e}") from e
        self._sessions[region] = session
        return session
