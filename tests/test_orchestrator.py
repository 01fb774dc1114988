import pytest

from tenancy_kit import orchestrator
from tenancy_kit.config import NameValueMap, TenancyConfig
from tenancy_kit.gcp_secrets import SecretStore
from tenancy_kit.retry import RetryPolicy


def _minimal_cfg() -> TenancyConfig:
    return TenancyConfig(
        org_domain="example.com",
        location="uksouth",
        oidc_issuer_urls=NameValueMap.parse(
            "development=https://dev.example/oidc,production=https://prod.example/oidc"
        ),
        athena_projects=NameValueMap.parse("seed=mf-seed,development=mf-dev,production=mf-prod"),
        billing_account_name="acc",
        billing_profile_name="prof",
        billing_invoice_section_name="sec",
    )


def _apply(cfg: TenancyConfig, az) -> str:  # noqa: ANN001
    return orchestrator.apply_all(
        cfg,
        az,
        policy=RetryPolicy(sleep=lambda s: None),
        settle_seconds=0,
    )


def test_apply_all_provisions_seed_groups_and_stages(fake_az) -> None:
    summary = _apply(_minimal_cfg(), fake_az)

    assert "# Apply summary" in summary
    assert [c[1] for c in fake_az.created("create_management_group")] == [
        "development",
        "sandbox",
        "testing",
        "production",
        "staging",
        "live",
    ]
    assert [c[1] for c in fake_az.created("create_service_principal")] == [
        "example-com-seed-sp",
        "example-com-development-sp",
        "example-com-production-sp",
    ]
    # seed 는 구독 범위, 단계별 SP 는 최상위 관리 그룹 범위로 만들어진다.
    scopes = {c[1]: c[3] for c in fake_az.created("create_service_principal")}
    assert scopes["example-com-seed-sp"] == ["/subscriptions/sub-123"]
    assert scopes["example-com-production-sp"] == ["/providers/Microsoft.Management/managementGroups/production"]

    assert ("app-example-com-seed-sp", "Contributor", "/subscriptions/sub-123/resourceGroups/example-com-seed-rg") in (
        fake_az.role_assignments
    )
    assert ("app-example-com-development-sp", "Contributor", "/subscriptions/sub-123") in fake_az.role_assignments
    assert len(fake_az.rest_posts) == 3

    issuers = {name: p["issuer"] for (_, name), p in fake_az.federated_credentials.items()}
    assert issuers == {
        "example-com-seed-fc": "https://prod.example/oidc",
        "example-com-development-fc": "https://dev.example/oidc",
        "example-com-production-fc": "https://prod.example/oidc",
    }


def test_apply_all_rerun_creates_nothing_new(fake_az) -> None:
    cfg = _minimal_cfg()
    _apply(cfg, fake_az)
    created_before = list(fake_az.calls)

    _apply(cfg, fake_az)

    assert fake_az.calls == created_before


def test_apply_all_settles_before_permissions(fake_az) -> None:
    sleeps: list[float] = []

    orchestrator.apply_all(
        _minimal_cfg(),
        fake_az,
        policy=RetryPolicy(sleep=lambda s: None),
        settle_seconds=60,
        sleep=sleeps.append,
    )

    assert sleeps == [60]


def test_apply_all_propagates_failures(fake_az, monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*args, **kwargs) -> None:  # noqa: ANN002, ANN003
        raise RuntimeError("boom")

    monkeypatch.setattr(fake_az, "create_management_group", boom)

    with pytest.raises(RuntimeError):
        _apply(_minimal_cfg(), fake_az)

    # seed 는 이미 만들어진 상태로 남는다.
    assert "example-com-seed-rg" in fake_az.resource_groups


def test_apply_all_requires_billing_ids(fake_az) -> None:
    cfg = _minimal_cfg()
    cfg.billing_invoice_section_name = ""

    with pytest.raises(ValueError):
        _apply(cfg, fake_az)


def test_configure_sp_permissions_skips_seed(fake_az) -> None:
    assert orchestrator.configure_sp_permissions(_minimal_cfg(), fake_az, "seed") is None
    assert fake_az.calls == []


def test_output_all_lists_seed_stages_and_billing_scope(fake_az) -> None:
    fake_az.service_principals["example-com-seed-sp"] = "seed-client"
    fake_az.service_principals["example-com-production-sp"] = "prod-client"

    report = orchestrator.output_all(_minimal_cfg(), fake_az)

    assert "# seed\nAZURE_SUBSCRIPTION_ID=sub-123\nAZURE_TENANT_ID=tenant-xyz\nAZURE_CLIENT_ID=seed-client" in report
    assert "AZURE_CLIENT_ID=prod-client" in report
    assert report.count("USE_WORKLOAD_IDENTITY_AUTH=true") == 3
    assert report.endswith(
        "/providers/Microsoft.Billing/billingAccounts/acc/billingProfiles/prof/invoiceSections/sec"
    )


def test_save_secrets_writes_each_stage_to_its_project(fake_az, fake_sm_client) -> None:
    fake_az.service_principals["example-com-development-sp"] = "dev-client"

    summary = orchestrator.save_secrets(_minimal_cfg(), fake_az, SecretStore(client=fake_sm_client))

    assert sorted(fake_sm_client.created) == [
        "projects/mf-dev/secrets/azure_credentials_root",
        "projects/mf-prod/secrets/azure_credentials_root",
        "projects/mf-seed/secrets/azure_credentials_root",
    ]
    payload = fake_sm_client.payloads["projects/mf-dev/secrets/azure_credentials_root/versions/1"]
    assert b"AZURE_CLIENT_ID=dev-client\n" in payload
    assert "- development -> mf-dev" in summary


def test_save_secrets_skips_stage_without_project(fake_az, fake_sm_client) -> None:
    cfg = _minimal_cfg()
    cfg.athena_projects = NameValueMap.parse("seed=mf-seed")

    summary = orchestrator.save_secrets(cfg, fake_az, SecretStore(client=fake_sm_client))

    assert fake_sm_client.created == ["projects/mf-seed/secrets/azure_credentials_root"]
    assert "## Skipped (no project)\n- development\n- production" in summary


def test_save_secrets_uses_configured_retention(fake_az, fake_sm_client) -> None:
    cfg = _minimal_cfg()
    cfg.secret_retain_versions = 2
    fake_sm_client.seed_versions("projects/mf-seed/secrets/azure_credentials_root", 4)

    orchestrator.save_secrets(cfg, fake_az, SecretStore(client=fake_sm_client))

    assert len(fake_sm_client.destroyed) == 3


def test_init_env_file_writes_template_and_billing(fake_az, tmp_path) -> None:
    cfg = TenancyConfig(org_domain="example.com")

    orchestrator.init_env_file(cfg, fake_az, base_dir=str(tmp_path), prompt=lambda *a, **k: 1)

    from dotenv import dotenv_values

    values = dotenv_values(tmp_path / ".env")
    assert values["ORG_DOMAIN"] == "example.com"
    assert values["LOCATION"] == "uksouth"
    assert values["OIDC_ISSUER_URLS"] == "development=,production="
    assert values["ATHENA_PROJECTS"].startswith("seed=mf")
    assert values["BILLING_ACCOUNT_NAME"] == "acc-1"
    assert values["BILLING_PROFILE_NAME"] == "prof-1"
    assert values["BILLING_INVOICE_SECTION_NAME"] == "sec-1"

    loaded = TenancyConfig.from_mapping(values)
    assert loaded.athena_projects.keys() == ["seed", "development", "production"]


def test_init_env_file_leaves_existing_file_alone(fake_az, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("ORG_DOMAIN=keep.me\n", encoding="utf-8")

    orchestrator.init_env_file(
        TenancyConfig(org_domain="example.com"), fake_az, base_dir=str(tmp_path), prompt=lambda *a, **k: 1
    )

    assert env_file.read_text(encoding="utf-8") == "ORG_DOMAIN=keep.me\n"


def test_init_env_file_requires_domain(fake_az, tmp_path) -> None:
    with pytest.raises(ValueError):
        orchestrator.init_env_file(TenancyConfig(org_domain=""), fake_az, base_dir=str(tmp_path))
    assert not (tmp_path / ".env").exists()


def test_set_billing_scope_rewrites_existing_keys(fake_az, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("BILLING_ACCOUNT_NAME=old\n#BILLING_PROFILE_NAME=old\n", encoding="utf-8")

    ids = orchestrator.set_billing_scope(fake_az, base_dir=str(tmp_path), prompt=lambda *a, **k: 1)

    assert ids.scope_id.endswith("invoiceSections/sec-1")
    assert env_file.read_text(encoding="utf-8").splitlines() == [
        "BILLING_ACCOUNT_NAME=acc-1",
        "BILLING_PROFILE_NAME=prof-1",
        "BILLING_INVOICE_SECTION_NAME=sec-1",
    ]
