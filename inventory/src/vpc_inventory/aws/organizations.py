from __future__ import annotations

from typing import Dict, List

from ..auth.providers import AuthContext, make_client
from ..util.errors import DirectoryListingError, map_aws_error
from ..util.pagination import paginate_aws


def get_organizations_client(ctx: AuthContext) -> object:
    return make_client(ctx, ctx.session, "organizations", ctx.bootstrap_region)


def list_member_accounts(ctx: AuthContext) -> List[Dict[str, str]]:
    """
    List every member account of the caller's organization, following NextToken
    until exhausted. Returns [{"id", "name", "status"}] in directory order with
    duplicate ids removed.

    Any failure raises DirectoryListingError: without the account list an
    organization-wide scan cannot be meaningful.
    """
    client = get_organizations_client(ctx)
    out: List[Dict[str, str]] = []
    seen: set[str] = set()
    try:
        for acct in paginate_aws(client, "list_accounts", "Accounts"):
            account_id = str(acct.get("Id") or "")
            if not account_id or account_id in seen:
                continue
            seen.add(account_id)
            out.append(
                {
                    "id": account_id,
                    "name": str(acct.get("Name") or ""),
                    "status": str(acct.get("Status") or ""),
                }
            )
    except Exception as e:
        mapped = map_aws_error(e, "AWS error while listing organization accounts", DirectoryListingError)
        if mapped:
            raise mapped from e
        raise DirectoryListingError(f"Failed to list organization accounts: {e}") from e
    return out
