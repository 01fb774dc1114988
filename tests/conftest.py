"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 tenancy_kit 패키지가 먼저 import 되지 않도록
repo root 를 sys.path 최상단에 고정한다.

az / Secret Manager 를 흉내내는 in-memory fake 도 여기서 제공한다.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest


def _pin_repo_root() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


def pytest_configure() -> None:
    _pin_repo_root()


_pin_repo_root()


from tenancy_kit.azure_cli import AzureCli  # noqa: E402


class FakeAzureCli(AzureCli):
    """
    AzureCli 의 in-memory 대체. 생성 호출은 calls 에 기록된다.
    management_group_delay 만큼 조회가 실패한 뒤에 관리 그룹이 보이게 된다.
    """

    def __init__(self, management_group_delay: int = 0) -> None:
        super().__init__(runner=self._no_runner)
        self.calls: List[tuple] = []
        self.management_groups: Dict[str, Dict[str, Any]] = {}
        self.resource_groups: Dict[str, str] = {}
        self.service_principals: Dict[str, str] = {}
        self.federated_credentials: Dict[tuple, Dict[str, Any]] = {}
        self.role_assignments: List[tuple] = []
        self.rest_posts: List[tuple] = []
        self.management_group_delay = management_group_delay
        self.billing = {
            "accounts": ["acc-1"],
            "profiles": {"acc-1": ["prof-1"]},
            "sections": {("acc-1", "prof-1"): ["sec-1"]},
        }

    @staticmethod
    def _no_runner(cmd: Sequence[str], **kwargs: Any):  # noqa: ANN205
        raise AssertionError(f"unexpected az call: {cmd}")

    def created(self, kind: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == kind]

    def subscription_id(self) -> str:
        return "sub-123"

    def subscription_scope_id(self) -> str:
        return "/subscriptions/sub-123"

    def tenant_id(self) -> str:
        return "tenant-xyz"

    def signed_in_user_name(self) -> Optional[str]:
        return "Operator"

    def management_group_name_available(self, name: str) -> bool:
        return name not in self.management_groups

    def show_management_group_id(self, name: str) -> Optional[str]:
        mg = self.management_groups.get(name)
        if mg is None:
            return None
        if mg["pending"] > 0:
            mg["pending"] -= 1
            return None
        return mg["id"]

    def create_management_group(self, name: str, parent: Optional[str] = None) -> str:
        self.calls.append(("create_management_group", name, parent))
        mg_id = f"/providers/Microsoft.Management/managementGroups/{name}"
        self.management_groups[name] = {"id": mg_id, "parent": parent, "pending": self.management_group_delay}
        return mg_id

    def resource_group_id(self, name: str) -> Optional[str]:
        return self.resource_groups.get(name)

    def create_resource_group(self, name: str, location: str) -> str:
        self.calls.append(("create_resource_group", name, location))
        rg_id = f"/subscriptions/sub-123/resourceGroups/{name}"
        self.resource_groups[name] = rg_id
        return rg_id

    def service_principal_app_id(self, display_name: str) -> Optional[str]:
        return self.service_principals.get(display_name)

    def create_service_principal(self, display_name: str, role: str, scopes: Sequence[str]) -> str:
        self.calls.append(("create_service_principal", display_name, role, list(scopes)))
        app_id = f"app-{display_name}"
        self.service_principals[display_name] = app_id
        return app_id

    def app_object_id(self, app_id: str) -> str:
        return f"obj-{app_id}"

    def assign_role(self, assignee: str, role: str, scope: str) -> None:
        self.role_assignments.append((assignee, role, scope))

    def federated_credential_exists(self, app_id: str, credential_name: str) -> bool:
        return (app_id, credential_name) in self.federated_credentials

    def create_federated_credential(self, app_object_id: str, parameters: Dict[str, Any]) -> None:
        self.calls.append(("create_federated_credential", app_object_id, parameters["name"]))
        app_id = app_object_id[len("obj-"):]
        self.federated_credentials[(app_id, parameters["name"])] = parameters

    def rest_post(self, url: str, body: Dict[str, Any]) -> str:
        self.rest_posts.append((url, body))
        return "{}"

    def billing_account_names(self) -> List[str]:
        return list(self.billing["accounts"])

    def billing_profile_names(self, account_name: str) -> List[str]:
        return list(self.billing["profiles"].get(account_name, []))

    def invoice_section_names(self, account_name: str, profile_name: str) -> List[str]:
        return list(self.billing["sections"].get((account_name, profile_name), []))


@dataclass
class FakeVersion:
    name: str
    create_time: datetime
    state: str = "ENABLED"


class FakeSecretManagerClient:
    """
    SecretManagerServiceClient 중 SecretStore 가 쓰는 메서드만 구현.
    """

    def __init__(self) -> None:
        self.secrets: Dict[str, List[FakeVersion]] = {}
        self.payloads: Dict[str, bytes] = {}
        self.created: List[str] = []
        self.destroyed: List[str] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def get_secret(self, name: str) -> Dict[str, str]:
        from google.api_core.exceptions import NotFound

        if name not in self.secrets:
            raise NotFound(f"{name} not found")
        return {"name": name}

    def create_secret(self, parent: str, secret_id: str, secret: Dict[str, Any]) -> Dict[str, str]:
        name = f"{parent}/secrets/{secret_id}"
        self.created.append(name)
        self.secrets[name] = []
        return {"name": name}

    def add_secret_version(self, parent: str, payload: Dict[str, bytes]) -> FakeVersion:
        versions = self.secrets[parent]
        version = FakeVersion(name=f"{parent}/versions/{len(versions) + 1}", create_time=self._tick())
        versions.append(version)
        self.payloads[version.name] = payload["data"]
        return version

    def seed_versions(self, name: str, count: int, state: str = "ENABLED") -> None:
        versions = self.secrets.setdefault(name, [])
        for _ in range(count):
            versions.append(
                FakeVersion(name=f"{name}/versions/{len(versions) + 1}", create_time=self._tick(), state=state)
            )

    def list_secret_versions(self, request: Dict[str, str]) -> List[FakeVersion]:
        # 실제 API 처럼 최신 버전이 먼저 온다.
        live = [v for v in self.secrets[request["parent"]] if v.state in ("ENABLED", "DISABLED")]
        return sorted(live, key=lambda v: v.create_time, reverse=True)

    def destroy_secret_version(self, request: Dict[str, str]) -> None:
        self.destroyed.append(request["name"])
        for versions in self.secrets.values():
            for v in versions:
                if v.name == request["name"]:
                    v.state = "DESTROYED"


@pytest.fixture
def fake_az() -> FakeAzureCli:
    return FakeAzureCli()


@pytest.fixture
def fake_sm_client() -> FakeSecretManagerClient:
    return FakeSecretManagerClient()


@pytest.fixture
def make_fake_az():  # noqa: ANN201
    return FakeAzureCli
