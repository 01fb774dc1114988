"""
gcp_secrets
-----------

Azure 자격 증명 출력을 Google Cloud Secret Manager 에 버전으로 저장하고,
오래된 버전을 정리(보존 개수 유지)하는 모듈.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional

from google.api_core.exceptions import NotFound
from google.cloud import secretmanager

from .logging_utils import get_logger


logger = get_logger(__name__)


AZURE_CREDENTIALS_SECRET = "azure_credentials_root"

# 비활성(DISABLED) 버전도 보존 개수에 포함한다. DESTROYED 는 제외.
_LIVE_VERSIONS_FILTER = "state:ENABLED OR state:DISABLED"

_VERSION_SUFFIX = re.compile(r"\.v[0-9]*$")


def normalize_secret_name(name: str) -> str:
    """
    "Azure.Credentials.v2" -> "azure_credentials"
    (버전 suffix 제거, '.' -> '_', 소문자)
    """
    return _VERSION_SUFFIX.sub("", name).replace(".", "_").lower()


def _check_retain_count(retain_versions: Optional[int]) -> None:
    if retain_versions is not None and retain_versions <= 0:
        raise ValueError("보존할 secret 버전 수는 0 보다 커야 합니다.")


class SecretStore:
    """
    Secret Manager 클라이언트 래퍼.

    client 를 주입하지 않으면 처음 사용할 때 SecretManagerServiceClient 를 만든다.
    """

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def exists(self, project: str, secret_id: str) -> bool:
        try:
            self.client.get_secret(name=f"projects/{project}/secrets/{secret_id}")
        except NotFound:
            return False
        return True

    def create(self, project: str, secret_id: str) -> None:
        logger.info("Secret 이 없어 새로 생성합니다: projects/%s/secrets/%s", project, secret_id)
        self.client.create_secret(
            parent=f"projects/{project}",
            secret_id=secret_id,
            secret={
                "replication": {"automatic": {}},
            },
        )

    def add_version(self, project: str, secret_id: str, value: str) -> str:
        secret_name = f"projects/{project}/secrets/{secret_id}"
        logger.info("Secret 에 새 버전을 추가합니다: %s", secret_name)
        # 값은 항상 줄바꿈으로 끝나도록 저장한다.
        data = value if value.endswith("\n") else value + "\n"
        version = self.client.add_secret_version(
            parent=secret_name,
            payload={"data": data.encode("utf-8")},
        )
        return getattr(version, "name", "")

    def list_live_versions(self, project: str, secret_id: str) -> List[Any]:
        """
        ENABLED/DISABLED 버전을 생성 시각 오름차순(오래된 것 먼저) 으로 반환한다.
        """
        versions = self.client.list_secret_versions(
            request={
                "parent": f"projects/{project}/secrets/{secret_id}",
                "filter": _LIVE_VERSIONS_FILTER,
            }
        )
        return sorted(versions, key=lambda v: v.create_time)

    def destroy_version(self, version_name: str) -> None:
        logger.info("Secret 버전 삭제(destroy): %s", version_name)
        self.client.destroy_secret_version(request={"name": version_name})

    def cleanup_versions(self, project: str, secret_id: str, retain_versions: Optional[int]) -> List[str]:
        """
        가장 최근 retain_versions 개만 남기고 오래된 버전을 destroy 한다.

        retain_versions 가 None 이면 모든 버전을 보존한다.
        Returns:
            destroy 한 버전 이름 목록
        """
        _check_retain_count(retain_versions)
        if retain_versions is None:
            logger.debug("보존 개수가 지정되지 않아 버전 정리를 건너뜁니다: %s", secret_id)
            return []

        versions = self.list_live_versions(project, secret_id)
        delete_count = len(versions) - retain_versions
        if delete_count <= 0:
            return []

        destroyed: List[str] = []
        for version in versions[:delete_count]:
            self.destroy_version(version.name)
            destroyed.append(version.name)
        logger.info("Secret 버전 정리 완료: %s (%d개 삭제)", secret_id, len(destroyed))
        return destroyed

    def save_secret_version(
        self,
        name: str,
        value: str,
        project: str,
        retain_versions: Optional[int] = None,
    ) -> Optional[str]:
        """
        secret 이 없으면 생성 후 첫 버전을 저장하고,
        있으면 새 버전을 추가한 뒤 보존 개수에 맞게 정리한다.

        project 가 비어 있으면 에러 로그만 남기고 건너뛴다. (None 반환)
        """
        if not name:
            raise ValueError("Secret 이름이 필요합니다.")
        _check_retain_count(retain_versions)
        if not project:
            logger.error("Google Cloud 프로젝트가 지정되지 않아 secret 저장을 건너뜁니다: %s", name)
            return None

        secret_id = normalize_secret_name(name)
        logger.info("Secret 존재 여부 확인: projects/%s/secrets/%s", project, secret_id)

        if not self.exists(project, secret_id):
            self.create(project, secret_id)
            return self.add_version(project, secret_id, value)

        version_name = self.add_version(project, secret_id, value)
        self.cleanup_versions(project, secret_id, retain_versions)
        return version_name
