from __future__ import annotations

import pytest

from vpc_inventory.auth.scope import DEFAULT_ORG_ROLE_NAME, RunMode
from vpc_inventory.config import DEFAULT_REGIONS, RunConfig, dump_config, load_run_config
from vpc_inventory.util.errors import ConfigError, InvalidIdentifierFormat

ROLE = "arn:aws:iam::123456789012:role/Inventory"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "AWS_PROFILE",
        "VPC_INV_PROFILE",
        "VPC_INV_REGIONS",
        "VPC_INV_ROLE_ARNS",
        "VPC_INV_USE_ORG",
        "VPC_INV_WORKERS_REGION",
        "VPC_INV_WORKERS_SCAN",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_for_vpcs() -> None:
    command, cfg = load_run_config(argv=["vpcs"])
    assert command == "vpcs"
    assert isinstance(cfg, RunConfig)
    assert cfg.regions == list(DEFAULT_REGIONS)
    assert cfg.mode == RunMode.CURRENT
    assert cfg.org_role_name == DEFAULT_ORG_ROLE_NAME
    assert cfg.workers_region > 0
    assert cfg.workers_scan > 0
    # no VPC ids: network summaries only
    assert cfg.summary_only is True


def test_vpc_ids_enable_resource_listing() -> None:
    _, cfg = load_run_config(argv=["vpcs", "vpc-0abc", "vpc-0def"])
    assert cfg.vpc_ids == ["vpc-0abc", "vpc-0def"]
    assert cfg.summary_only is False


def test_summary_only_flag_overrides_derived_default() -> None:
    _, cfg = load_run_config(argv=["vpcs", "vpc-0abc", "--summary-only"])
    assert cfg.summary_only is True
    _, cfg = load_run_config(argv=["vpcs", "--no-summary-only"])
    assert cfg.summary_only is False


def test_invalid_vpc_id_is_rejected() -> None:
    with pytest.raises(ConfigError):
        load_run_config(argv=["vpcs", "subnet-123"])


def test_regions_from_cli_and_env(monkeypatch) -> None:
    _, cfg = load_run_config(argv=["vpcs", "--regions", "eu-west-1,ap-south-1"])
    assert cfg.regions == ["eu-west-1", "ap-south-1"]

    monkeypatch.setenv("VPC_INV_REGIONS", "ca-central-1")
    _, cfg = load_run_config(argv=["rds"])
    assert cfg.regions == ["ca-central-1"]


def test_empty_regions_rejected(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("regions: []\n", encoding="utf-8")
    # an empty list is a value, not an absence: it reaches validation
    with pytest.raises(ConfigError):
        load_run_config(argv=["vpcs", "--config", str(cfg_path)])


def test_role_arns_select_explicit_mode() -> None:
    _, cfg = load_run_config(argv=["rds", "--role-arns", ROLE, "arn:aws:iam::210987654321:role/Other"])
    assert cfg.mode == RunMode.EXPLICIT
    assert cfg.role_arns == [ROLE, "arn:aws:iam::210987654321:role/Other"]


def test_malformed_role_arn_rejected() -> None:
    with pytest.raises(InvalidIdentifierFormat):
        load_run_config(argv=["vpcs", "--role-arns", "not-an-arn"])


def test_use_org_and_role_arns_are_exclusive_on_cli() -> None:
    with pytest.raises(SystemExit):
        load_run_config(argv=["vpcs", "--use-org", "--role-arns", ROLE])


def test_use_org_and_role_arns_are_exclusive_across_sources(monkeypatch) -> None:
    monkeypatch.setenv("VPC_INV_USE_ORG", "1")
    with pytest.raises(ConfigError):
        load_run_config(argv=["vpcs", "--role-arns", ROLE])


def test_use_org_mode_and_role_name() -> None:
    _, cfg = load_run_config(argv=["vpcs", "--use-org", "--org-role-name", "InventoryReader"])
    assert cfg.mode == RunMode.ORGANIZATION
    assert cfg.org_role_name == "InventoryReader"


def test_config_file_env_cli_precedence(monkeypatch, tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "regions: [eu-west-1]\nworkers_region: 7\nworkers_scan: 3\nprofile: from-file\nprogress: false\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("VPC_INV_WORKERS_REGION", "9")
    monkeypatch.setenv("VPC_INV_PROFILE", "from-env")

    _, cfg = load_run_config(argv=["vpcs", "--config", str(cfg_path), "--profile", "from-cli"])

    assert cfg.regions == ["eu-west-1"]
    assert cfg.workers_region == 9
    assert cfg.workers_scan == 3
    assert cfg.profile == "from-cli"
    assert cfg.progress is False


def test_zero_workers_on_cli_rejected() -> None:
    with pytest.raises(ConfigError, match="Worker counts"):
        load_run_config(argv=["vpcs", "--workers-region", "0"])


def test_zero_workers_from_env_rejected(monkeypatch) -> None:
    monkeypatch.setenv("VPC_INV_WORKERS_SCAN", "0")
    with pytest.raises(ConfigError, match="Worker counts"):
        load_run_config(argv=["vpcs"])


def test_aws_profile_is_the_env_fallback(monkeypatch) -> None:
    monkeypatch.setenv("AWS_PROFILE", "ambient")
    _, cfg = load_run_config(argv=["validate-auth"])
    assert cfg.profile == "ambient"


def test_json_config_file(tmp_path) -> None:
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text('{"role_arns": ["%s"], "session_name": "audit"}' % ROLE, encoding="utf-8")
    _, cfg = load_run_config(argv=["rds", "--config", str(cfg_path)])
    assert cfg.role_arns == [ROLE]
    assert cfg.session_name == "audit"


def test_unknown_config_keys_warn(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("regions: us-east-1\nquery: ignored\n", encoding="utf-8")
    with pytest.warns(UserWarning, match="query"):
        _, cfg = load_run_config(argv=["vpcs", "--config", str(cfg_path)])
    assert cfg.regions == ["us-east-1"]


def test_bad_config_value_type(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("workers_scan: many\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_run_config(argv=["vpcs", "--config", str(cfg_path)])


def test_missing_config_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        load_run_config(argv=["vpcs", "--config", str(tmp_path / "absent.yaml")])


def test_outdir_is_timestamped_for_scans(tmp_path) -> None:
    _, cfg = load_run_config(argv=["vpcs", "--outdir", str(tmp_path)])
    assert cfg.outdir.parent == tmp_path
    assert cfg.outdir.name.endswith("Z")


def test_dump_config_reports_mode() -> None:
    _, cfg = load_run_config(argv=["vpcs", "--role-arns", ROLE])
    dumped = dump_config(cfg)
    assert dumped["mode"] == "explicit"
    assert dumped["role_arns"] == [ROLE]
