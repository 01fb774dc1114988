"""
azure_billing
-------------

청구 계정 / 청구 프로필 / 송장 섹션 선택과, 송장 섹션 범위의 청구 역할 할당을 담당하는 모듈.

참고:
- https://learn.microsoft.com/en-us/azure/cost-management-billing/manage/understand-mca-roles
- https://learn.microsoft.com/en-us/rest/api/billing/billing-role-assignments/create-by-invoice-section
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import click

from .azure_cli import AzureCli
from .logging_utils import get_logger


logger = get_logger(__name__)


BILLING_API_BASE = "https://management.azure.com/providers/Microsoft.Billing"
BILLING_API_SUFFIX = "createBillingRoleAssignment?api-version=2024-04-01"

# 송장 섹션 Owner
INVOICE_SECTION_OWNER_ROLE_ID = "30000000-aaaa-bbbb-cccc-100000000000"


@dataclass(frozen=True)
class BillingIds:
    account_name: str
    profile_name: str
    invoice_section_name: str

    def _require(self) -> None:
        if not self.account_name:
            raise ValueError("청구 계정 이름(BILLING_ACCOUNT_NAME)이 필요합니다.")
        if not self.profile_name:
            raise ValueError("청구 프로필 이름(BILLING_PROFILE_NAME)이 필요합니다.")
        if not self.invoice_section_name:
            raise ValueError("송장 섹션 이름(BILLING_INVOICE_SECTION_NAME)이 필요합니다.")

    @property
    def id_path(self) -> str:
        """billingAccounts/.../billingProfiles/.../invoiceSections/..."""
        self._require()
        return (
            f"billingAccounts/{self.account_name}"
            f"/billingProfiles/{self.profile_name}"
            f"/invoiceSections/{self.invoice_section_name}"
        )

    @property
    def scope_id(self) -> str:
        return f"/providers/Microsoft.Billing/{self.id_path}"


def billing_role_assignment_request(
    obj_id: str, role_id: str, tenant_id: str, billing_id_path: str
) -> tuple[str, Dict[str, Any]]:
    """
    createBillingRoleAssignment REST 호출의 (url, body) 를 만든다.
    """
    if not obj_id:
        raise ValueError("Object id 가 필요합니다.")
    if not role_id:
        raise ValueError("청구 역할 id 가 필요합니다.")
    if not tenant_id:
        raise ValueError("Azure tenant id 가 필요합니다.")
    if not billing_id_path:
        raise ValueError("청구 id 경로가 필요합니다.")

    url = f"{BILLING_API_BASE}/{billing_id_path}/{BILLING_API_SUFFIX}"
    body = {
        "principalId": obj_id,
        "principalTenantId": tenant_id,
        "roleDefinitionId": f"/providers/Microsoft.Billing/{billing_id_path}/billingRoleDefinitions/{role_id}",
    }
    return url, body


def assign_billing_role(
    az: AzureCli,
    obj_id: str,
    tenant_id: str,
    billing_id_path: str,
    role_id: str = INVOICE_SECTION_OWNER_ROLE_ID,
) -> str:
    url, body = billing_role_assignment_request(obj_id, role_id, tenant_id, billing_id_path)
    logger.info("청구 역할 할당: principal=%s role=%s", obj_id, role_id)
    logger.debug("청구 역할 할당 body: %s", body)
    return az.rest_post(url, body)


def select_option(
    options: Sequence[str],
    *,
    label: str = "",
    prompt: Optional[Callable[..., Any]] = None,
) -> str:
    """
    번호 목록을 출력하고 사용자 선택을 받는다. (기본값 1)

    옵션이 없거나 범위를 벗어난 번호를 고르면 빈 문자열을 반환한다.
    """
    options = [o for o in options if o]
    if not options:
        return ""

    ask = prompt or click.prompt
    click.echo(f"{label} 선택:" if label else "사용할 항목을 선택하세요:")
    for idx, item in enumerate(options, start=1):
        click.echo(f" [{idx}] {item}")

    choice = ask("번호를 입력하세요", default=1, type=int)
    try:
        choice = int(choice)
    except (TypeError, ValueError):
        return ""
    if 1 <= choice <= len(options):
        return options[choice - 1]
    return ""


def select_billing_ids(az: AzureCli, *, prompt: Optional[Callable[..., Any]] = None) -> BillingIds:
    """
    청구 계정 -> 청구 프로필 -> 송장 섹션 순서로 대화형 선택을 진행한다.
    """
    account = select_option(az.billing_account_names(), label="청구 계정", prompt=prompt)
    profile = ""
    section = ""
    if account:
        profile = select_option(az.billing_profile_names(account), label="청구 프로필", prompt=prompt)
    if account and profile:
        section = select_option(
            az.invoice_section_names(account, profile), label="송장 섹션", prompt=prompt
        )

    if not (account and profile and section):
        logger.warning(
            "청구 정보 선택이 완료되지 않았습니다: account=%r profile=%r section=%r",
            account,
            profile,
            section,
        )
    return BillingIds(account, profile, section)
