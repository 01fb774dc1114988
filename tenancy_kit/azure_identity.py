"""
azure_identity
--------------

리소스 그룹, 서비스 주체(SP), 역할 할당, 페더레이션 자격 증명(OIDC 신뢰) 을 준비하고
ASO(Azure Service Operator) 용 자격 증명 출력을 만드는 모듈.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .azure_cli import AzureCli
from .logging_utils import get_logger


logger = get_logger(__name__)


FEDERATED_CREDENTIAL_SUBJECT = (
    "system:serviceaccount:azureserviceoperator-athena-system:azureserviceoperator-default"
)
FEDERATED_CREDENTIAL_AUDIENCE = "api://AzureADTokenExchange"

DEFAULT_SP_ROLE = "Reader"


def resource_name(name_prefix: str, stage: str, suffix: str) -> str:
    """("example-com", "production", "sp") -> "example-com-production-sp" """
    return f"{name_prefix}-{stage}-{suffix}".lower()


def ensure_resource_group(az: AzureCli, name: str, location: str) -> str:
    if not name:
        raise ValueError("리소스 그룹 이름이 필요합니다.")
    if not location:
        raise ValueError("리소스 그룹 location 이 필요합니다.")

    rg_id = az.resource_group_id(name)
    if rg_id:
        logger.info("기존 리소스 그룹을 사용합니다: %s", name)
        return rg_id

    logger.info("리소스 그룹 생성: %s (location=%s)", name, location)
    return az.create_resource_group(name, location)


def ensure_service_principal(az: AzureCli, name: str, scope: str, role: Optional[str] = None) -> str:
    """
    서비스 주체가 없으면 scope 에 role 을 부여하여 생성하고, appId(client id) 를 반환한다.
    """
    if not name:
        raise ValueError("서비스 주체 이름이 필요합니다.")
    if not scope:
        raise ValueError(f"서비스 주체 '{name}' 의 scope 가 필요합니다.")

    app_id = az.service_principal_app_id(name)
    if app_id:
        logger.info("서비스 주체 '%s' 이(가) 이미 존재합니다: %s", name, app_id)
        return app_id

    logger.info("서비스 주체 생성: %s (role=%s, scope=%s)", name, role or DEFAULT_SP_ROLE, scope)
    return az.create_service_principal(name, role or DEFAULT_SP_ROLE, [scope])


def assign_role(az: AzureCli, assignee: str, role: str, scope: str) -> None:
    # az role assignment create 는 이미 같은 할당이 있으면 기존 것을 돌려준다.
    if not assignee:
        raise ValueError("Object id 가 필요합니다.")
    if not role:
        raise ValueError("역할 이름이 필요합니다.")
    if not scope:
        raise ValueError("scope 가 필요합니다.")

    logger.info("역할 할당: %s -> %s (scope=%s)", assignee, role, scope)
    az.assign_role(assignee, role, scope)


def federated_credential_parameters(name: str, issuer_url: str) -> Dict[str, Any]:
    return {
        "name": name,
        "issuer": issuer_url,
        "subject": FEDERATED_CREDENTIAL_SUBJECT,
        "description": "",
        "audiences": [FEDERATED_CREDENTIAL_AUDIENCE],
    }


def ensure_federated_credential(az: AzureCli, name: str, app_id: str, issuer_url: str) -> bool:
    """
    OIDC issuer 와 서비스 주체 사이의 신뢰를 설정한다.

    Returns:
        새로 생성했으면 True, 이미 있어서 건너뛰었으면 False
    """
    if not name:
        raise ValueError("페더레이션 자격 증명 이름이 필요합니다.")
    if not app_id:
        raise ValueError("서비스 주체 id 가 필요합니다.")
    if not issuer_url:
        raise ValueError(f"페더레이션 자격 증명 '{name}' 의 OIDC issuer URL 이 필요합니다.")

    if az.federated_credential_exists(app_id, name):
        logger.info("페더레이션 자격 증명 '%s' 이(가) 이미 존재합니다.", name)
        return False

    app_obj_id = az.app_object_id(app_id)
    logger.info("페더레이션 자격 증명 생성: %s (issuer=%s)", name, issuer_url)
    az.create_federated_credential(app_obj_id, federated_credential_parameters(name, issuer_url))
    return True


def format_sp_output(subscription_id: str, tenant_id: str, client_id: str) -> str:
    return "\n".join(
        [
            f"AZURE_SUBSCRIPTION_ID={subscription_id}",
            f"AZURE_TENANT_ID={tenant_id}",
            f"AZURE_CLIENT_ID={client_id}",
            "USE_WORKLOAD_IDENTITY_AUTH=true",
        ]
    )


def get_sp_output(az: AzureCli, stage: str, name_prefix: str, subscription_id: str, tenant_id: str) -> str:
    """
    단계별 서비스 주체의 ASO 용 KEY=VALUE 출력을 만든다.
    서비스 주체가 아직 없으면 AZURE_CLIENT_ID 는 빈 값이 된다.
    """
    if not stage:
        raise ValueError("라이프사이클 단계 이름이 필요합니다.")
    if not name_prefix:
        raise ValueError("이름 prefix 가 필요합니다.")
    if not subscription_id:
        raise ValueError("Azure subscription id 가 필요합니다.")
    if not tenant_id:
        raise ValueError("Azure tenant id 가 필요합니다.")

    sp_name = resource_name(name_prefix, stage, "sp")
    client_id = az.service_principal_app_id(sp_name) or ""
    if not client_id:
        logger.warning("서비스 주체를 찾을 수 없습니다: %s", sp_name)
    return format_sp_output(subscription_id, tenant_id, client_id)
