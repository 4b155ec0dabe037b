"""
부트스트랩 완료 마커 파일
외부 감시자가 로그를 파싱하지 않고 완료 여부를 알 수 있도록 고정 경로에 기록
"""

import os
from typing import Optional

MASTER_SUCCESS = "MASTER_INIT_SUCCESS"
WORKER_SUCCESS = "WORKER_JOIN_SUCCESS"


def write_marker(path: str, value: str):
    """마커 파일 기록"""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(value + "\n")


def read_marker(path: str) -> Optional[str]:
    """마커 파일 읽기, 없으면 None"""
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read().strip()
