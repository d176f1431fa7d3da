from __future__ import annotations

import pytest
from aws_fakes import FakeClient, assume_role_response, make_ctx

from vpc_inventory.auth.providers import AmbientCredentials, AssumedRoleCredentials
from vpc_inventory.auth.scope import (
    RunMode,
    ScanScope,
    ScopePath,
    ScopeResolver,
    extract_account_from_arn,
    resolve_credentials,
    role_arn_for_account,
    validate_role_arn,
)
from vpc_inventory.util.errors import ConfigError, DirectoryListingError, InvalidIdentifierFormat

ROLE = "arn:aws:iam::123456789012:role/Foo"


def _no_directory(ctx):
    raise AssertionError("directory must not be listed")


def test_validate_role_arn_returns_embedded_account() -> None:
    assert validate_role_arn(ROLE) == "123456789012"
    assert validate_role_arn("arn:aws-us-gov:iam::210987654321:role/path/to/Role") == "210987654321"
    assert extract_account_from_arn(ROLE) == "123456789012"
    assert extract_account_from_arn("not-an-arn") is None


@pytest.mark.parametrize(
    "arn",
    [
        "not-an-arn",
        "arn:aws:iam::123456789012:user/bob",
        "arn:aws:iam::1234:role/Short",
        "arn:aws:s3:::bucket",
        "",
    ],
)
def test_malformed_identifiers_fail_validation(arn: str) -> None:
    resolver = ScopeResolver(None, list_accounts=_no_directory)
    with pytest.raises(InvalidIdentifierFormat):
        resolver.resolve(RunMode.EXPLICIT, [arn])


def test_current_mode_is_single_unscoped_scope() -> None:
    resolver = ScopeResolver(None, list_accounts=_no_directory)
    assert resolver.resolve(RunMode.CURRENT) == [ScanScope()]


def test_explicit_mode_keeps_input_order_and_drops_duplicates() -> None:
    other = "arn:aws:iam::999999999999:role/Bar"
    resolver = ScopeResolver(None, list_accounts=_no_directory)

    scopes = resolver.resolve(RunMode.EXPLICIT, [other, ROLE, other])

    assert [s.role_arn for s in scopes] == [other, ROLE]
    assert [s.account_id for s in scopes] == ["999999999999", "123456789012"]


def test_explicit_mode_requires_identities() -> None:
    with pytest.raises(ConfigError):
        ScopeResolver(None, list_accounts=_no_directory).resolve(RunMode.EXPLICIT, [])


def test_organization_mode_synthesizes_configured_role() -> None:
    ctx = make_ctx()
    accounts = [{"id": "111111111111", "name": "a", "status": "ACTIVE"}, {"id": "222222222222", "name": "b", "status": "ACTIVE"}]
    resolver = ScopeResolver(ctx, org_role_name="InventoryRead", list_accounts=lambda _ctx: accounts)

    scopes = resolver.resolve(RunMode.ORGANIZATION)

    assert [s.role_arn for s in scopes] == [
        "arn:aws:iam::111111111111:role/InventoryRead",
        "arn:aws:iam::222222222222:role/InventoryRead",
    ]
    assert role_arn_for_account("1", "R") == "arn:aws:iam::1:role/R"


def test_organization_mode_directory_failure_is_fatal() -> None:
    def _fail(ctx):
        raise DirectoryListingError("denied")

    with pytest.raises(DirectoryListingError):
        ScopeResolver(make_ctx(), list_accounts=_fail).resolve(RunMode.ORGANIZATION)


def test_self_scope_uses_ambient_credentials_without_assume_role() -> None:
    sts = FakeClient(assume_role=AssertionError("no self-assumption"))
    ec2 = FakeClient()
    ctx = make_ctx({"sts": sts, "ec2": ec2})
    scope = ScopeResolver(None, list_accounts=_no_directory).resolve(RunMode.EXPLICIT, [ROLE])[0]

    path, bound, creds = resolve_credentials(scope, "123456789012", ctx)

    assert path == ScopePath.CURRENT_ACCOUNT
    assert isinstance(creds, AmbientCredentials)
    assert bound.account_id == "123456789012"
    for region in ("us-east-1", "us-west-2"):
        assert creds.client("ec2", region) is ec2
    assert sts.calls == []


def test_foreign_scope_assumes_once_per_region() -> None:
    sts = FakeClient(assume_role=lambda **kw: assume_role_response())
    ctx = make_ctx({"sts": sts}, delegated_clients={"ec2": FakeClient(), "rds": FakeClient()})
    scope = ScanScope(role_arn=ROLE, account_id="123456789012")

    path, _, creds = resolve_credentials(scope, "999999999999", ctx, session_name="unit")

    assert path == ScopePath.DELEGATED
    assert isinstance(creds, AssumedRoleCredentials)
    for region in ("us-east-1", "us-west-2"):
        creds.client("ec2", region)
        creds.client("rds", region)
        creds.client("ec2", region)
    assert sts.call_names() == ["assume_role", "assume_role"]
    assert sts.calls[0][1] == {"RoleArn": ROLE, "RoleSessionName": "unit"}
    created = ctx.session_factory.created
    assert [s.kwargs["region_name"] for s in created] == ["us-east-1", "us-west-2"]
    assert created[0].kwargs["aws_access_key_id"] == "AKIA"


def test_unscoped_scope_is_current_account() -> None:
    ctx = make_ctx()
    path, bound, creds = resolve_credentials(ScanScope(), "123456789012", ctx)
    assert path == ScopePath.CURRENT_ACCOUNT
    assert bound == ScanScope(account_id="123456789012")
    assert creds.role_arn is None
