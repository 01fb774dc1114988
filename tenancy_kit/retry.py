"""
retry
-----

비동기로 만들어지는 리소스(관리 그룹 등)를 고정 간격으로 기다리는 폴링 유틸.
sleep 을 주입할 수 있어 테스트에서 실제로 기다리지 않는다.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .logging_utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 20
    delay: float = 3.0
    initial_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)


def wait_until(
    probe: Callable[[], Optional[T]],
    policy: RetryPolicy,
    *,
    description: str = "resource",
) -> Optional[T]:
    """
    probe() 가 truthy 값을 돌려줄 때까지 최대 policy.max_attempts 번 시도한다.

    initial_delay 만큼 먼저 기다린 뒤 시작하며, 실패한 시도 사이에는 delay 만큼 쉰다.
    끝까지 준비되지 않으면 None 을 반환한다. (예외로 만들지 않는 것은 호출측 판단)
    """
    if policy.max_attempts <= 0:
        raise ValueError("max_attempts 는 1 이상이어야 합니다.")

    if policy.initial_delay > 0:
        policy.sleep(policy.initial_delay)

    for attempt in range(1, policy.max_attempts + 1):
        value = probe()
        if value:
            return value
        logger.info("'%s' 준비 대기 중... (%d/%d)", description, attempt, policy.max_attempts)
        if attempt < policy.max_attempts:
            policy.sleep(policy.delay)

    return None
