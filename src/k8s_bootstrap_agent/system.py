"""
외부 명령 실행 래퍼
kubeadm, kubectl, systemctl, dnf 등은 모두 이 래퍼를 통해 인자 목록으로 실행된다
"""

import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .exceptions import CommandError


@dataclass
class CommandResult:
    """명령 실행 결과"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """subprocess 기반 명령 실행기"""

    def __init__(self, timeout: Optional[int] = 600):
        self.timeout = timeout

    def run(self, args: Sequence[str], check: bool = False, timeout: Optional[int] = None,
            env: Optional[dict] = None) -> CommandResult:
        """명령 실행

        Args:
            args: 실행할 명령 인자 목록 (셸을 거치지 않음)
            check: True 이면 실패 시 CommandError
            timeout: 명령 타임아웃 (초)
            env: 환경 변수
        """
        cmd = list(args)

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                env=env,
                timeout=timeout or self.timeout
            )
            result = CommandResult(cmd, proc.returncode, proc.stdout or "", proc.stderr or "")
        except subprocess.TimeoutExpired:
            result = CommandResult(cmd, 124, "", f"timed out after {timeout or self.timeout}s")
        except FileNotFoundError:
            result = CommandResult(cmd, 127, "", f"{cmd[0]}: command not found")

        if check and not result.ok:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result

    def which(self, name: str) -> Optional[str]:
        """실행 파일 경로 확인"""
        return shutil.which(name)
