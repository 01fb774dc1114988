"""
azure_management_groups
-----------------------

관리 그룹 조회/생성 및 "development/sandbox" 같은 경로로부터 계층을 만드는 모듈.
"""

from __future__ import annotations

from typing import Optional

from .azure_cli import AzureCli
from .config import SEED_STAGE
from .logging_utils import get_logger
from .retry import RetryPolicy, wait_until
from .subprocess_utils import CommandError


logger = get_logger(__name__)


def get_management_group_id(az: AzureCli, name: str) -> Optional[str]:
    """
    이름이 이미 사용 중인 경우에만 관리 그룹 id 를 조회한다. 없으면 None.
    """
    if not name:
        raise ValueError("관리 그룹 이름이 필요합니다.")

    if az.management_group_name_available(name):
        return None
    return az.show_management_group_id(name)


def wait_management_group_ready(az: AzureCli, name: str, policy: RetryPolicy) -> Optional[str]:
    def _probe() -> Optional[str]:
        # 생성 직후의 조회 실패는 "아직 준비되지 않음" 으로 본다.
        try:
            return get_management_group_id(az, name)
        except CommandError as e:
            logger.debug("관리 그룹 '%s' 조회 실패, 재시도합니다: %s", name, e)
            return None

    mg_id = wait_until(
        _probe,
        policy,
        description=f"관리 그룹 {name}",
    )
    if mg_id:
        logger.info("관리 그룹 준비 완료: %s", mg_id)
    else:
        logger.warning("관리 그룹 '%s' 의 id 를 가져오지 못했습니다. (아직 준비되지 않음)", name)
    return mg_id


def create_management_group(
    az: AzureCli,
    name: str,
    parent: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> Optional[str]:
    """
    관리 그룹이 없으면 생성하고 준비될 때까지 기다린다.

    parent 는 관리 그룹 이름 또는 전체 id. 비어 있으면 Tenant Root Group 아래에 생성된다.
    이미 존재하면 아무 것도 만들지 않고 기존 id 를 반환한다.
    """
    if not name:
        raise ValueError("관리 그룹 이름이 필요합니다.")

    if not az.management_group_name_available(name):
        logger.info("관리 그룹 '%s' 이(가) 이미 존재합니다.", name)
        return az.show_management_group_id(name)

    if parent:
        logger.info("관리 그룹 생성: %s (parent=%s)", name, parent)
    else:
        logger.info("관리 그룹 생성: %s", name)
    az.create_management_group(name, parent or None)

    return wait_management_group_ready(az, name, policy or RetryPolicy())


def create_management_group_hierarchy(
    az: AzureCli,
    path: str,
    parent: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> None:
    """
    "production/live" -> production 을 만든 뒤 그 아래에 live 를 만든다.
    seed 환경은 관리 그룹 계층이 없으므로 건너뛴다.
    """
    if not path:
        raise ValueError("관리 그룹 경로가 필요합니다.")
    if path == SEED_STAGE:
        return

    current_parent = parent or None
    for name in [p for p in path.split("/") if p]:
        create_management_group(az, name, current_parent, policy)
        current_parent = name
