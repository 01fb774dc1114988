from __future__ import annotations

import os
import time
from typing import Any, Callable, List, Optional

from .azure_billing import BillingIds, assign_billing_role, select_billing_ids
from .azure_cli import AzureCli
from .azure_identity import (
    assign_role,
    ensure_federated_credential,
    ensure_resource_group,
    ensure_service_principal,
    get_sp_output,
    resource_name,
)
from .azure_management_groups import create_management_group_hierarchy, get_management_group_id
from .config import (
    DEFAULT_LOCATION,
    ENV_FILE_DEFAULT,
    SEED_STAGE,
    NameValueMap,
    TenancyConfig,
    get_athena_project_name,
    get_lifecycle_stage,
    write_env_var,
)
from .gcp_secrets import AZURE_CREDENTIALS_SECRET, SecretStore
from .logging_utils import get_logger
from .retry import RetryPolicy


logger = get_logger(__name__)

SP_ROLE = "Contributor"

# seed 의 서비스 주체는 production OIDC issuer 를 신뢰한다.
SEED_ISSUER_STAGE = "production"

# 관리 그룹 생성 후 권한 설정 전에 기다리는 시간(초)
MANAGEMENT_GROUP_SETTLE_SECONDS = 60.0


def _billing_ids(cfg: TenancyConfig) -> BillingIds:
    return BillingIds(
        cfg.billing_account_name,
        cfg.billing_profile_name,
        cfg.billing_invoice_section_name,
    )


def _write_billing_ids(env_file: str, billing: BillingIds) -> None:
    write_env_var(env_file, "BILLING_ACCOUNT_NAME", billing.account_name)
    write_env_var(env_file, "BILLING_PROFILE_NAME", billing.profile_name)
    write_env_var(env_file, "BILLING_INVOICE_SECTION_NAME", billing.invoice_section_name)


def render_env_template(cfg: TenancyConfig) -> str:
    """
    init 명령이 만드는 .env 초기 내용.
    """
    stages = cfg.lifecycle_stages
    oidc = NameValueMap((stage, "") for stage in stages)
    projects = NameValueMap(
        (stage, get_athena_project_name(cfg.org_domain, stage)) for stage in [SEED_STAGE, *stages]
    )

    lines = [
        "# Athena .env file",
        "# The clients organization domain. Required.",
        f'ORG_DOMAIN="{cfg.org_domain}"',
        "# Location. Values from: 'az account list-locations'. Required.",
        f'LOCATION="{cfg.location or DEFAULT_LOCATION}"',
        "# The parent of management groups hierarchy. Optional.",
        "# If empty string, the 'Tenant Root Group' will be used.",
        f'MANAGEMENT_GROUP_PARENT="{cfg.management_group_parent}"',
        "# The map of the OIDC issuer URLs (stage=url, comma separated). Required.",
        "# Each lifecycle stage should have OIDC URL as a value.",
        f'OIDC_ISSUER_URLS="{oidc.serialize()}"',
        "# The map of GCP projects to save secrets (stage=project, comma separated). Required.",
        f'ATHENA_PROJECTS="{projects.serialize()}"',
        "# Number of secret versions to keep. Empty keeps all versions.",
        "# SECRET_RETAIN_VERSIONS=",
    ]
    return "\n".join(lines) + "\n"


def init_env_file(
    cfg: TenancyConfig,
    az: AzureCli,
    base_dir: str = ".",
    prompt: Optional[Callable[..., Any]] = None,
) -> str:
    """
    .env 가 없을 때만 템플릿을 만들고, 청구 정보를 대화형으로 선택해 기록한다.
    """
    if not cfg.org_domain:
        raise ValueError("init 명령에는 조직 도메인(--domain)이 필요합니다.")

    env_file = os.path.join(base_dir, ENV_FILE_DEFAULT)
    if os.path.exists(env_file):
        logger.info(".env 파일이 이미 존재하여 초기화를 건너뜁니다: %s", env_file)
        return f"{env_file} 이(가) 이미 존재하여 건너뜀"

    with open(env_file, "w", encoding="utf-8") as f:
        f.write(render_env_template(cfg))

    billing = select_billing_ids(az, prompt=prompt)
    with open(env_file, "a", encoding="utf-8") as f:
        f.write("# Billing information\n")
    if billing.account_name and billing.profile_name and billing.invoice_section_name:
        _write_billing_ids(env_file, billing)

    logger.info(".env 파일을 생성했습니다: %s", env_file)
    return f"{env_file} 템플릿을 생성했습니다."


def configure_seed(cfg: TenancyConfig, az: AzureCli) -> str:
    """
    seed 환경: 리소스 그룹 + 구독 범위 서비스 주체 + 청구 역할 + 페더레이션 자격 증명.
    Returns:
        seed 서비스 주체 appId
    """
    prefix = cfg.name_prefix
    rg_name = resource_name(prefix, SEED_STAGE, "rg")
    sp_name = resource_name(prefix, SEED_STAGE, "sp")
    fc_name = resource_name(prefix, SEED_STAGE, "fc")
    billing_id_path = _billing_ids(cfg).id_path

    logger.info("리소스 그룹 준비: %s", rg_name)
    rg_id = ensure_resource_group(az, rg_name, cfg.location)

    logger.info("서비스 주체 준비: %s", sp_name)
    sp_id = ensure_service_principal(az, sp_name, az.subscription_scope_id(), SP_ROLE)

    assign_role(az, sp_id, SP_ROLE, rg_id)

    app_obj_id = az.app_object_id(sp_id)
    assign_billing_role(az, app_obj_id, az.tenant_id(), billing_id_path)

    ensure_federated_credential(az, fc_name, sp_id, cfg.oidc_issuer_urls.get(SEED_ISSUER_STAGE))
    return sp_id


def configure_sp_permissions(cfg: TenancyConfig, az: AzureCli, stage: str) -> Optional[str]:
    """
    라이프사이클 단계별 서비스 주체를 만들고 권한/신뢰를 설정한다.

    - 최상위 관리 그룹(= 단계 이름) 에 Contributor
    - 기본 구독에 Contributor
    - 송장 섹션 Owner
    - 단계 OIDC issuer 에 대한 페더레이션 자격 증명
    """
    if not stage:
        raise ValueError("라이프사이클 단계 이름이 필요합니다.")
    if stage == SEED_STAGE:
        return None
    if not cfg.oidc_issuer_urls:
        raise ValueError("OIDC issuer URL 맵(OIDC_ISSUER_URLS)이 필요합니다.")

    prefix = cfg.name_prefix
    billing_id_path = _billing_ids(cfg).id_path
    sp_name = resource_name(prefix, stage, "sp")
    fc_name = resource_name(prefix, stage, "fc")

    logger.info("서비스 주체 준비: %s", sp_name)
    mg_scope = get_management_group_id(az, stage) or ""
    sp_id = ensure_service_principal(az, sp_name, mg_scope, SP_ROLE)

    assign_role(az, sp_id, SP_ROLE, az.subscription_scope_id())

    app_obj_id = az.app_object_id(sp_id)
    assign_billing_role(az, app_obj_id, az.tenant_id(), billing_id_path)

    issuer_url = cfg.oidc_issuer_urls.get(get_lifecycle_stage(stage))
    ensure_federated_credential(az, fc_name, sp_id, issuer_url)
    return sp_id


def apply_all(
    cfg: TenancyConfig,
    az: AzureCli,
    *,
    policy: Optional[RetryPolicy] = None,
    settle_seconds: float = MANAGEMENT_GROUP_SETTLE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """
    seed -> 관리 그룹 계층 -> 단계별 권한 순서로 적용한다.
    중간 실패는 그대로 전파된다. (이미 만든 리소스는 남아 있음)
    """
    lines: List[str] = ["# Apply summary", f"- domain: {cfg.org_domain}", ""]

    logger.info("seed 환경 설정")
    seed_sp = configure_seed(cfg, az)
    lines.append("## Seed")
    lines.append(f"- {resource_name(cfg.name_prefix, SEED_STAGE, 'sp')}: {seed_sp}")
    lines.append("")

    logger.info("관리 그룹 생성")
    lines.append("## Management groups")
    for env_path in cfg.environments:
        logger.info("환경: %s", env_path.replace("/", "-"))
        create_management_group_hierarchy(az, env_path, cfg.management_group_parent, policy)
        lines.append(f"- {env_path}")
    lines.append("")

    if settle_seconds > 0:
        logger.info("관리 그룹 전파 대기: %.0f초", settle_seconds)
        sleep(settle_seconds)

    logger.info("권한 설정")
    lines.append("## Service principals")
    for stage in cfg.lifecycle_stages:
        sp_id = configure_sp_permissions(cfg, az, stage)
        lines.append(f"- {resource_name(cfg.name_prefix, stage, 'sp')}: {sp_id or '(skipped)'}")

    return "\n".join(lines)


def output_all(cfg: TenancyConfig, az: AzureCli) -> str:
    """
    seed 및 단계별 서비스 주체 출력과 청구 범위 id 를 텍스트로 반환한다.
    """
    subscription_id = az.subscription_id()
    tenant_id = az.tenant_id()

    blocks: List[str] = []
    for stage in [SEED_STAGE, *cfg.lifecycle_stages]:
        blocks.append(f"# {stage}")
        blocks.append(get_sp_output(az, stage, cfg.name_prefix, subscription_id, tenant_id))
        blocks.append("")

    blocks.append("# Billing scope")
    blocks.append(_billing_ids(cfg).scope_id)
    return "\n".join(blocks)


def save_secrets(
    cfg: TenancyConfig,
    az: AzureCli,
    store: SecretStore,
    retain_versions: Optional[int] = None,
) -> str:
    """
    seed 및 단계별 서비스 주체 출력을 단계에 매핑된 GCP 프로젝트의 secret 으로 저장한다.
    """
    if not cfg.athena_projects:
        raise ValueError("Google Cloud 프로젝트 맵(ATHENA_PROJECTS)이 필요합니다.")

    retain = retain_versions if retain_versions is not None else cfg.secret_retain_versions
    subscription_id = az.subscription_id()
    tenant_id = az.tenant_id()

    saved: List[str] = []
    skipped: List[str] = []
    for stage in [SEED_STAGE, *cfg.lifecycle_stages]:
        logger.info("secret 저장: %s", stage)
        value = get_sp_output(az, stage, cfg.name_prefix, subscription_id, tenant_id)
        project = cfg.athena_projects.get(get_lifecycle_stage(stage))
        version = store.save_secret_version(AZURE_CREDENTIALS_SECRET, value, project, retain)
        if version is None:
            skipped.append(stage)
        else:
            saved.append(f"{stage} -> {project}")

    lines: List[str] = ["# Save secrets summary", ""]
    for title, items in (("## Saved", saved), ("## Skipped (no project)", skipped)):
        lines.append(title)
        if items:
            for s in items:
                lines.append(f"- {s}")
        else:
            lines.append("- (none)")
        lines.append("")
    return "\n".join(lines).rstrip()


def set_billing_scope(
    az: AzureCli,
    base_dir: str = ".",
    prompt: Optional[Callable[..., Any]] = None,
) -> BillingIds:
    billing = select_billing_ids(az, prompt=prompt)
    env_file = os.path.join(base_dir, ENV_FILE_DEFAULT)
    _write_billing_ids(env_file, billing)
    return billing
