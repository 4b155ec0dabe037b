"""
에이전트 예외 정의
치명적 단계 실패는 모두 AgentError 하위 타입으로 전달된다
"""

from typing import Optional


class AgentError(Exception):
    """에이전트 기본 예외"""

    phase = "AGENT"

    def __init__(self, message: str, phase: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if phase:
            self.phase = phase


class BootstrapError(AgentError):
    """로컬 부트스트랩 전제조건 실패"""

    phase = "BOOTSTRAP"


class CommandError(AgentError):
    """외부 명령 실행 실패"""

    def __init__(self, args, returncode: int, stderr: str = "", phase: Optional[str] = None):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command failed ({returncode}): {' '.join(self.args_list)}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message, phase)


class MetadataError(AgentError):
    """인스턴스 메타데이터 조회 실패"""

    phase = "METADATA"


class ChannelError(AgentError):
    """조정 채널(Parameter Store) 읽기/쓰기 실패"""

    phase = "CHANNEL"


class CredentialError(AgentError):
    """조인 명령어 생성 또는 문법 검증 실패"""

    phase = "CREDENTIAL"


class RetryExhausted(AgentError):
    """제한된 재시도 횟수 초과"""

    phase = "RETRY"

    def __init__(self, message: str, attempts: int, last_value=None,
                 last_error: Optional[BaseException] = None, phase: Optional[str] = None):
        super().__init__(message, phase)
        self.attempts = attempts
        self.last_value = last_value
        self.last_error = last_error


class CredentialTimeout(RetryExhausted):
    """조인 명령어 대기 시간 초과"""

    phase = "AWAIT"


class JoinError(AgentError):
    """클러스터 조인 실패"""

    phase = "JOIN"


class PublishError(AgentError):
    """조인 명령어 전파 실패 (로컬 초기화는 유지됨)"""

    phase = "PUBLISH"
