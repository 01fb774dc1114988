"""
azure_cli
---------

az CLI 호출을 감싸는 얇은 클라이언트.

각 메서드는 az 명령 하나에 대응하며, tsv 출력에서 값 하나(또는 목록)를 돌려준다.
runner 를 바꿔 끼우면 테스트에서 실제 az 없이 동작을 검증할 수 있다.
"""

from __future__ import annotations

import json
import shutil
from typing import Any, Callable, Dict, List, Optional, Sequence

from .logging_utils import get_logger
from .subprocess_utils import CommandError, RunResult, run_command


logger = get_logger(__name__)


Runner = Callable[..., RunResult]


class AzureCli:
    def __init__(self, runner: Optional[Runner] = None, executable: str = "az") -> None:
        self._runner: Runner = runner or run_command
        self._executable = executable

    # -----------------------------
    # low level
    # -----------------------------
    def run(self, *args: str, spinner_message: Optional[str] = None) -> str:
        cmd = [self._executable, *args]
        result = self._runner(cmd, spinner_message=spinner_message)
        return (result.stdout or "").strip()

    def _tsv(self, *args: str) -> str:
        return self.run(*args, "--output", "tsv")

    def _tsv_list(self, *args: str) -> List[str]:
        out = self._tsv(*args)
        return [line.strip() for line in out.splitlines() if line.strip()]

    def _probe(self, *args: str) -> Optional[str]:
        """
        실패하면(존재하지 않음 등) None 을 반환하는 조회.
        """
        try:
            return self._tsv(*args)
        except CommandError as e:
            logger.debug("조회 실패(없음으로 간주): %s", e)
            return None

    # -----------------------------
    # account / tenant
    # -----------------------------
    def version(self) -> str:
        return self.run("version", "--output", "json")

    def signed_in_user_name(self) -> Optional[str]:
        return self._probe("ad", "signed-in-user", "show", "--query", "displayName")

    def subscription_id(self) -> str:
        return self._tsv("account", "list", "--query", "[?isDefault].id")

    def subscription_scope_id(self) -> str:
        sub_id = self.subscription_id()
        return self._tsv(
            "account", "subscription", "list",
            "--query", f"[?subscriptionId=='{sub_id}'].id",
        )

    def tenant_id(self) -> str:
        return self._tsv("account", "list", "--query", "[?isDefault].tenantId")

    # -----------------------------
    # management groups
    # -----------------------------
    def management_group_name_available(self, name: str) -> bool:
        out = self._tsv(
            "account", "management-group", "check-name-availability",
            "--name", name,
            "--query", "nameAvailable",
        )
        return out.lower() == "true"

    def show_management_group_id(self, name: str) -> Optional[str]:
        return self._probe("account", "management-group", "show", "--name", name, "--query", "id") or None

    def create_management_group(self, name: str, parent: Optional[str] = None) -> str:
        args = ["account", "management-group", "create", "--name", name]
        if parent:
            args += ["--parent", parent]
        return self._tsv(*args, "--query", "id")

    # -----------------------------
    # resource groups
    # -----------------------------
    def resource_group_id(self, name: str) -> Optional[str]:
        return self._tsv("group", "list", "--query", f"[?name=='{name}'].id") or None

    def create_resource_group(self, name: str, location: str) -> str:
        return self._tsv("group", "create", "--name", name, "--location", location, "--query", "id")

    # -----------------------------
    # service principals / apps
    # -----------------------------
    def service_principal_app_id(self, display_name: str) -> Optional[str]:
        ids = self._tsv_list("ad", "sp", "list", "--display-name", display_name, "--query", "[].appId")
        return ids[0] if ids else None

    def create_service_principal(self, display_name: str, role: str, scopes: Sequence[str]) -> str:
        return self._tsv(
            "ad", "sp", "create-for-rbac",
            "--only-show-errors",
            "--display-name", display_name,
            "--role", role,
            "--scopes", *scopes,
            "--query", "appId",
        )

    def app_object_id(self, app_id: str) -> str:
        return self._tsv("ad", "app", "show", "--id", app_id, "--query", "id")

    def assign_role(self, assignee: str, role: str, scope: str) -> None:
        self.run(
            "role", "assignment", "create",
            "--assignee", assignee,
            "--role", role,
            "--scope", scope,
            "--output", "none",
        )

    def federated_credential_exists(self, app_id: str, credential_name: str) -> bool:
        found = self._probe(
            "ad", "app", "federated-credential", "show",
            "--only-show-errors",
            "--id", app_id,
            "--federated-credential-id", credential_name,
            "--query", "name",
        )
        return found is not None

    def create_federated_credential(self, app_object_id: str, parameters: Dict[str, Any]) -> None:
        self.run(
            "ad", "app", "federated-credential", "create",
            "--id", app_object_id,
            "--parameters", json.dumps(parameters),
            "--output", "none",
        )

    # -----------------------------
    # billing
    # -----------------------------
    def rest_post(self, url: str, body: Dict[str, Any]) -> str:
        return self.run("rest", "--method", "post", "--url", url, "--body", json.dumps(body))

    def billing_account_names(self) -> List[str]:
        return self._tsv_list("billing", "account", "list", "--only-show-errors", "--query", "[].name")

    def billing_profile_names(self, account_name: str) -> List[str]:
        return self._tsv_list(
            "billing", "profile", "list",
            "--account-name", account_name,
            "--only-show-errors",
            "--query", "[].name",
        )

    def invoice_section_names(self, account_name: str, profile_name: str) -> List[str]:
        return self._tsv_list(
            "billing", "invoice", "section", "list",
            "--account-name", account_name,
            "--profile-name", profile_name,
            "--only-show-errors",
            "--query", "[].name",
        )

    # -----------------------------
    # prerequisites
    # -----------------------------
    def check_prerequisites(self) -> List[str]:
        """
        az 설치 여부와 로그인 상태를 점검하고, 문제 목록을 반환한다. (비어 있으면 통과)
        """
        problems: List[str] = []

        if shutil.which(self._executable) is None:
            problems.append(
                "Azure CLI 가 필요합니다. "
                "https://learn.microsoft.com/en-us/cli/azure/install-azure-cli 참고"
            )
            return problems

        logger.debug("az version: %s", self.version())

        user = self.signed_in_user_name()
        if not user:
            problems.append("Azure 로그인이 필요합니다. 'az login' 을 실행하세요.")
        else:
            logger.info("Azure 로그인 사용자: %s", user)

        return problems
