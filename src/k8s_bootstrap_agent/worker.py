"""
워커 노드 조인 (Joiner 역할)
조인 명령어 대기, kubeadm join, 멤버십 확인
"""

import os
from enum import Enum
from typing import Dict, Optional

from .base import NodeRole
from .credential import JoinCredential, is_valid_credential, parse_join_command
from .exceptions import ChannelError, CredentialTimeout, JoinError, RetryExhausted
from .retry import poll_until

REGISTRATION_MARKERS = ("Successfully registered", "Node join complete")


class JoinerState(Enum):
    BOOTSTRAPPING = "Bootstrapping"
    RUNTIME_READY = "RuntimeReady"
    AWAITING_CREDENTIAL = "AwaitingCredential"
    JOINING = "Joining"
    JOINED = "Joined"
    JOIN_FAILED = "JoinFailed"


class WorkerJoiner(NodeRole):
    """조정 채널에서 조인 명령어를 기다린 후 클러스터에 조인"""

    role = "worker"
    bootstrapping_state = JoinerState.BOOTSTRAPPING
    runtime_ready_state = JoinerState.RUNTIME_READY

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.poll_attempts = 0
        self.membership: Dict = {}

    def _describe(self, value: Optional[str], error: Optional[BaseException]) -> str:
        if error is not None:
            return f"조회 실패: {error}"
        if value is None:
            return "파라미터 없음"
        if value.strip() == self.config.cluster.placeholder.strip():
            return "플레이스홀더"
        if not is_valid_credential(value, self.config.cluster.placeholder):
            return "유효하지 않은 값"
        return "유효한 조인 명령어"

    def await_join_credential(self, max_attempts: Optional[int] = None,
                              interval: Optional[float] = None) -> JoinCredential:
        """유효한 조인 명령어가 나타날 때까지 제한된 재시도 폴링

        플레이스홀더, 빈 값, 문법 오류, 조회 실패는 모두 "아직 준비 안 됨" 으로 간주한다.

        Raises:
            CredentialTimeout: max_attempts 회 조회 후에도 유효한 값이 없음
        """
        phase = "PHASE 6"
        worker = self.config.worker
        max_attempts = worker.max_attempts if max_attempts is None else max_attempts
        interval = worker.poll_interval if interval is None else interval
        placeholder = self.config.cluster.placeholder

        self.transition(JoinerState.AWAITING_CREDENTIAL)
        self.logger.banner(phase, "마스터 노드 조인 토큰 대기")
        self.logger.info(phase, f"최대 {max_attempts}번 시도, {interval}초 간격: {self.key}")
        self.poll_attempts = 0

        def report(attempt, total, value, error):
            self.poll_attempts = attempt
            self.logger.info(phase, f"조인 명령어 확인... ({attempt}/{total}) {self._describe(value, error)}")

        try:
            value = poll_until(
                fetch=lambda: self.channel.get(self.key),
                accept=lambda v: is_valid_credential(v, placeholder),
                max_attempts=max_attempts,
                interval=interval,
                backoff=worker.backoff,
                sleep=self.sleep,
                on_attempt=report,
                retry_on=(ChannelError,),
                description="join credential",
            )
        except RetryExhausted as e:
            raise CredentialTimeout(
                f"조인 명령어 수신 실패 ({max_attempts}회 시도)",
                attempts=e.attempts,
                last_value=e.last_value,
                last_error=e.last_error,
                phase=phase,
            ) from e

        credential = parse_join_command(value, placeholder)
        self.logger.success(phase, "유효한 조인 명령어 수신!")
        self.log_step("조인 명령어 대기", "success", f"{self.poll_attempts}번째 시도")
        return credential

    def is_joined(self) -> bool:
        """기존 클러스터 멤버십 확인"""
        return os.path.exists(self.config.worker.kubelet_conf)

    def join(self, credential: JoinCredential):
        """구조화된 자격 정보로 kubeadm join 1회 실행"""
        phase = "PHASE 7"
        self.transition(JoinerState.JOINING)
        self.logger.banner(phase, "클러스터 조인")

        if self.is_joined():
            self.logger.success(phase, "이미 클러스터에 조인되어 있습니다.")
            self.transition(JoinerState.JOINED)
            self.log_step("클러스터 조인", "success", "이미 조인됨")
            return

        cmd = ["kubeadm"] + credential.join_args()
        self.logger.info(phase, f"실행 명령어: {credential.to_command()}")
        result = self.runner.run(cmd, timeout=self.config.worker.join_timeout)

        if not result.ok:
            self.transition(JoinerState.JOIN_FAILED)
            self.log_step("클러스터 조인", "failed", result.stderr.strip()[:40])
            raise JoinError(
                f"클러스터 조인 실패 (명령어: {credential.to_command()}): {result.stderr.strip()}",
                phase,
            )

        self.transition(JoinerState.JOINED)
        self.logger.success(phase, "클러스터 조인 성공")
        self.log_step("클러스터 조인", "success", "완료")

    def _kubelet_active(self) -> bool:
        return self.runner.run(["systemctl", "is-active", "--quiet", "kubelet"]).ok

    def verify_membership(self, settle_time: Optional[float] = None) -> Dict:
        """kubelet 상태 및 노드 등록 확인 (치명적이지 않음)"""
        phase = "PHASE 7"
        worker = self.config.worker
        settle_time = worker.settle_time if settle_time is None else settle_time

        results = {
            "kubelet_active": False,
            "containerd_active": False,
            "restarted": False,
            "registered": False,
        }

        self.sleep(settle_time)
        if self._kubelet_active():
            self.logger.success(phase, "kubelet 실행 확인")
            results["kubelet_active"] = True
        else:
            self.logger.error(phase, "kubelet 실행 실패, 재시작 시도")
            self.runner.run(["systemctl", "restart", "kubelet"])
            results["restarted"] = True
            self.sleep(worker.restart_wait)
            if self._kubelet_active():
                self.logger.success(phase, "kubelet 재시작 성공")
                results["kubelet_active"] = True
            else:
                self.logger.error(phase, "kubelet 재시작 실패")

        results["containerd_active"] = self.runner.run(["systemctl", "is-active", "--quiet", "containerd"]).ok
        if not results["containerd_active"]:
            self.logger.warning(phase, "containerd 서비스가 실행 중이 아닙니다")

        self.logger.info(phase, "노드 등록 확인...")
        self.sleep(worker.registration_wait)
        logs = self.runner.run(["journalctl", "-u", "kubelet", "--since", "2 minutes ago", "--no-pager"])
        if logs.ok and any(marker in logs.stdout for marker in REGISTRATION_MARKERS):
            self.logger.success(phase, "노드 등록 확인")
            results["registered"] = True
        else:
            self.logger.warning(phase, "노드 등록 확인 불가 (마스터에서 확인 필요)")

        self.log_step(
            "멤버십 확인",
            "success" if results["kubelet_active"] else "failed",
            "등록 확인" if results["registered"] else "마스터에서 확인 필요",
        )
        self.membership = results
        return results

    def summary_rows(self):
        rows = super().summary_rows()
        rows.insert(1, ("호스트명", self.config.hostname_for(self.role)))
        if self.membership:
            rows.append(("kubelet", "active" if self.membership["kubelet_active"] else "inactive"))
            rows.append(("containerd", "active" if self.membership["containerd_active"] else "inactive"))
        return rows

    def run(self, skip_bootstrap: bool = False) -> JoinerState:
        """워커 전체 시퀀스"""
        self.logger.info("WORKER", f"Kubernetes Worker Join Started (cluster: {self.config.cluster.cluster_id}, "
                                   f"worker: {self.config.worker.index})")
        if skip_bootstrap:
            self.skip_bootstrap()
        else:
            self.bootstrap_local()

        self.resolve_local_ip()
        credential = self.await_join_credential()
        self.join(credential)
        self.verify_membership()
        return self.state
