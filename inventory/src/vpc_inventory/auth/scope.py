from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..util.errors import ConfigError, InvalidIdentifierFormat
from .providers import (
    DEFAULT_SESSION_NAME,
    AmbientCredentials,
    AssumedRoleCredentials,
    AuthContext,
    CredentialStrategy,
)

LOG = get_logger(__name__)

DEFAULT_ORG_ROLE_NAME = "OrganizationAccountAccessRole"

# arn:<partition>:iam::<account>:role/<path/name>
_ROLE_ARN_RE = re.compile(r"^arn:aws[a-z-]*:iam::(\d{12}):role/[\w+=,.@/-]+$")


class RunMode(str, Enum):
    CURRENT = "current"
    EXPLICIT = "explicit"
    ORGANIZATION = "organization"


class ScopePath(str, Enum):
    UNRESOLVED = "unresolved"
    CURRENT_ACCOUNT = "current-account"
    DELEGATED = "delegated"
    SCANNED = "scanned"
    FAILED = "failed"


@dataclass(frozen=True)
class ScanScope:
    """
    One account boundary to scan: the caller itself (role_arn is None) or a
    delegated role. account_id is known up front for delegated scopes and filled
    in from GetCallerIdentity for the current-account scope.
    """

    role_arn: Optional[str] = None
    account_id: Optional[str] = None

    @property
    def delegated(self) -> bool:
        return self.role_arn is not None

    @property
    def label(self) -> str:
        return self.role_arn or "current-account"


def extract_account_from_arn(arn: str) -> Optional[str]:
    parts = (arn or "").split(":")
    if len(parts) != 6:
        return None
    return parts[4] or None


def validate_role_arn(arn: str) -> str:
    """
    Return the account id embedded in a role ARN, or raise InvalidIdentifierFormat.
    """
    value = (arn or "").strip()
    m = _ROLE_ARN_RE.match(value)
    if not m:
        raise InvalidIdentifierFormat(
            f"Invalid role ARN format: '{arn}'. Expected format: arn:aws:iam::<account>:role/<name>"
        )
    return m.group(1)


def role_arn_for_account(account_id: str, role_name: str, partition: str = "aws") -> str:
    return f"arn:{partition}:iam::{account_id}:role/{role_name}"


AccountLister = Callable[[AuthContext], List[Dict[str, str]]]


class ScopeResolver:
    """
    Turn a run mode into the ordered list of scopes to scan.

    Explicit mode is pure validation and performs no remote call; whether an
    explicit role lives in the caller's own account is only decided later by
    resolve_credentials. Organization mode reads the member accounts once.
    """

    def __init__(
        self,
        ctx: Optional[AuthContext] = None,
        *,
        org_role_name: str = DEFAULT_ORG_ROLE_NAME,
        list_accounts: Optional[AccountLister] = None,
    ) -> None:
        self._ctx = ctx
        self._org_role_name = org_role_name
        if list_accounts is None:
            from ..aws.organizations import list_member_accounts

            list_accounts = list_member_accounts
        self._list_accounts = list_accounts

    def resolve(self, mode: RunMode, explicit_identities: Sequence[str] = ()) -> List[ScanScope]:
        if mode == RunMode.CURRENT:
            return [ScanScope()]
        if mode == RunMode.EXPLICIT:
            return self._explicit_scopes(explicit_identities)
        if mode == RunMode.ORGANIZATION:
            return self._organization_scopes()
        raise ConfigError(f"Unsupported run mode: {mode}")

    def _explicit_scopes(self, identities: Iterable[str]) -> List[ScanScope]:
        scopes: List[ScanScope] = []
        seen: set[str] = set()
        for arn in identities:
            account = validate_role_arn(arn)
            arn = arn.strip()
            if arn in seen:
                continue
            seen.add(arn)
            scopes.append(ScanScope(role_arn=arn, account_id=account))
        if not scopes:
            raise ConfigError("Explicit mode requires at least one role ARN")
        return scopes

    def _organization_scopes(self) -> List[ScanScope]:
        if self._ctx is None:
            raise ConfigError("Organization mode requires resolved credentials")
        LOG.info("Enumerating accounts via AWS Organizations")
        scopes: List[ScanScope] = []
        for acct in self._list_accounts(self._ctx):
            account_id = acct["id"]
            arn = role_arn_for_account(account_id, self._org_role_name)
            LOG.info("Found account %s; will attempt %s", account_id, arn, extra={"account_id": account_id})
            scopes.append(ScanScope(role_arn=arn, account_id=account_id))
        return scopes


def resolve_credentials(
    scope: ScanScope,
    caller_account: str,
    ctx: AuthContext,
    *,
    session_name: str = DEFAULT_SESSION_NAME,
) -> Tuple[ScopePath, ScanScope, CredentialStrategy]:
    """
    Decide how a scope is scanned. A role in the caller's own account is never
    assumed: the ambient credentials already have that account's access.
    Returns the path taken, the scope with its account id filled in, and the
    credential strategy.
    """
    if scope.role_arn is None:
        return ScopePath.CURRENT_ACCOUNT, ScanScope(account_id=caller_account), AmbientCredentials(ctx)
    account = scope.account_id or extract_account_from_arn(scope.role_arn)
    if account == caller_account:
        LOG.info("%s is in current account; skipping AssumeRole", scope.role_arn, extra={"account_id": account})
        return ScopePath.CURRENT_ACCOUNT, ScanScope(role_arn=scope.role_arn, account_id=account), AmbientCredentials(ctx)
    return (
        ScopePath.DELEGATED,
        ScanScope(role_arn=scope.role_arn, account_id=account),
        AssumedRoleCredentials(ctx, scope.role_arn, session_name=session_name),
    )
