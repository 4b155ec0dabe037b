"""
마스터/워커 역할 공통 기반 클래스
"""

import time
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .bootstrap import NodeBootstrapper
from .channel import CoordinationChannel
from .config import Config
from .logger import AgentLogger
from .metadata import InstanceMetadataClient
from .system import CommandRunner


class NodeRole:
    """한 노드의 1회 실행을 나타내는 역할 러너"""

    role = "node"
    bootstrapping_state: Enum = None
    runtime_ready_state: Enum = None

    def __init__(self, config: Config, logger: AgentLogger, channel: CoordinationChannel,
                 runner: Optional[CommandRunner] = None,
                 metadata: Optional[InstanceMetadataClient] = None,
                 bootstrapper: Optional[NodeBootstrapper] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.logger = logger
        self.channel = channel
        self.runner = runner or CommandRunner(timeout=config.agent.command_timeout)
        self.metadata = metadata or InstanceMetadataClient()
        self.bootstrapper = bootstrapper or NodeBootstrapper(config, logger, self.runner, role=self.role)
        self.sleep = sleep
        self.state: Optional[Enum] = None
        self.history: List[Enum] = []
        self.execution_log: List[dict] = []
        self.local_ip: Optional[str] = None

    @property
    def key(self) -> str:
        """조인 명령어 파라미터 키"""
        return self.config.parameter_name

    def transition(self, state: Enum):
        """상태 전이 기록"""
        self.state = state
        self.history.append(state)
        self.logger.debug("STATE", f"{self.role} -> {state.value}")

    def log_step(self, step: str, status: str, message: str = ""):
        """실행 단계 기록"""
        self.execution_log.append({
            "step": step,
            "status": status,
            "message": message
        })

    def bootstrap_local(self):
        """로컬 부트스트랩 (실패 시 BootstrapError)"""
        self.transition(self.bootstrapping_state)
        versions = self.bootstrapper.run()
        self.transition(self.runtime_ready_state)
        summary = ", ".join(f"{k} {v}" for k, v in versions.items())
        self.log_step("로컬 부트스트랩", "success", summary or "완료")
        return versions

    def skip_bootstrap(self):
        """이미 부트스트랩된 노드에서 로컬 단계 생략"""
        self.logger.info("BOOTSTRAP", "로컬 부트스트랩을 건너뜁니다")
        self.transition(self.runtime_ready_state)
        self.log_step("로컬 부트스트랩", "success", "건너뜀")

    def summary_rows(self) -> List[Tuple[str, str]]:
        """완료 보고용 (항목, 값) 목록"""
        return [
            ("클러스터 ID", self.config.cluster.cluster_id or "-"),
            ("로컬 IP", self.local_ip or "-"),
            ("최종 상태", self.state.value if self.state is not None else "-"),
        ]

    def resolve_local_ip(self, phase: str = "PHASE 5") -> str:
        """IMDSv2 로 로컬 IP 확인 (실패 시 MetadataError)"""
        self.logger.info(phase, "로컬 IP 확인 (IMDSv2)...")
        self.local_ip = self.metadata.local_ipv4()
        self.logger.success(phase, f"로컬 IP: {self.local_ip}")
        self.log_step("로컬 IP 확인", "success", self.local_ip)
        return self.local_ip
