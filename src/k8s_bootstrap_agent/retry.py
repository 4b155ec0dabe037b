"""
제한된 재시도(bounded retry) 폴링 유틸리티
API 준비 대기, CNI 준비 대기, 조인 명령어 대기에서 공통으로 사용
"""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from .exceptions import RetryExhausted

T = TypeVar("T")


def poll_until(fetch: Callable[[], T],
               accept: Callable[[T], bool],
               max_attempts: int,
               interval: float,
               backoff: float = 1.0,
               sleep: Callable[[float], None] = time.sleep,
               on_attempt: Optional[Callable[[int, int, Optional[T], Optional[BaseException]], None]] = None,
               retry_on: Tuple[Type[BaseException], ...] = (Exception,),
               description: str = "condition") -> T:
    """fetch()가 accept를 만족할 때까지 최대 max_attempts 회 호출

    Args:
        fetch: 매 시도마다 호출되는 값 조회 함수
        accept: 조회 값이 준비되었는지 판단하는 조건
        max_attempts: 최대 시도 횟수 (1 이상)
        interval: 시도 사이 대기 시간 (초). 마지막 시도 후에는 대기하지 않음
        backoff: 매 시도 후 interval 에 곱하는 배수 (1.0 이면 고정 간격)
        sleep: 대기 함수 (테스트에서 가짜 시계로 교체)
        on_attempt: (attempt, max_attempts, value, error) 진행 콜백
        retry_on: 실패한 시도로 간주할 예외 타입
        description: 타임아웃 메시지에 쓰일 설명

    Returns:
        accept 를 처음 만족한 값

    Raises:
        RetryExhausted: 모든 시도가 실패한 경우
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = interval
    value = None
    error = None

    for attempt in range(1, max_attempts + 1):
        value = None
        error = None
        try:
            value = fetch()
        except retry_on as e:
            error = e

        ready = error is None and accept(value)

        if on_attempt:
            on_attempt(attempt, max_attempts, value, error)

        if ready:
            return value

        if attempt < max_attempts:
            sleep(delay)
            delay = delay * backoff

    raise RetryExhausted(
        f"{description} not met after {max_attempts} attempts",
        attempts=max_attempts,
        last_value=value,
        last_error=error,
    )
