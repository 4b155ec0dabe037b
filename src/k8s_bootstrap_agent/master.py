"""
마스터 노드 초기화 (Initializer 역할)
kubeadm init, API 준비 대기, CNI 설치, 조인 명령어 생성 및 게시
"""

import os
import shutil
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from .base import NodeRole
from .credential import JoinCredential, is_valid_credential, parse_duration, parse_join_command
from .exceptions import (AgentError, ChannelError, CredentialError, PublishError,
                         RetryExhausted)
from .retry import poll_until
from .system import CommandResult


class InitializerState(Enum):
    BOOTSTRAPPING = "Bootstrapping"
    RUNTIME_READY = "RuntimeReady"
    CONTROL_PLANE_INITIALIZING = "ControlPlaneInitializing"
    CONTROL_PLANE_READY = "ControlPlaneReady"
    CREDENTIAL_PUBLISHED = "CredentialPublished"
    PUBLISH_FAILED = "PublishFailed"


def count_running_pods(output: str, pattern: str) -> int:
    """kubectl get pods --no-headers 출력에서 이름에 pattern 이 포함된 Running 파드 수"""
    count = 0
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 3 and pattern in parts[0] and parts[2] == "Running":
            count += 1
    return count


class ControlPlaneInitializer(NodeRole):
    """컨트롤 플레인 초기화 및 조인 명령어 게시"""

    role = "master"
    bootstrapping_state = InitializerState.BOOTSTRAPPING
    runtime_ready_state = InitializerState.RUNTIME_READY

    def __init__(self, *args, clock: Callable[[], datetime] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.credential: Optional[JoinCredential] = None
        self.node_status = ""
        self.cluster_info = ""

    def _kubectl(self, *args: str) -> CommandResult:
        env = dict(os.environ, KUBECONFIG=self.config.kubernetes.admin_conf)
        return self.runner.run(["kubectl"] + list(args), env=env)

    def prepare_channel(self):
        """세션 파라미터가 없으면 플레이스홀더 생성 (실패는 경고만)"""
        placeholder = self.config.cluster.placeholder
        try:
            if self.channel.ensure_placeholder(self.key, placeholder):
                self.logger.info("CHANNEL", f"플레이스홀더 생성: {self.key}")
        except ChannelError as e:
            self.logger.warning("CHANNEL", f"플레이스홀더 확인 실패: {e}")

    def initialize_control_plane(self, advertise_address: str):
        """kubeadm init 실행 후 kubeconfig 배포"""
        phase = "PHASE 5"
        self.transition(InitializerState.CONTROL_PLANE_INITIALIZING)
        self.logger.banner(phase, "마스터 노드 초기화")

        cmd = [
            "kubeadm", "init",
            f"--pod-network-cidr={self.config.kubernetes.pod_cidr}",
            f"--apiserver-advertise-address={advertise_address}",
        ]
        self.logger.info(phase, f"kubeadm init 실행: {' '.join(cmd)}")
        result = self.runner.run(cmd)
        if not result.ok:
            self.logger.debug(phase, result.stdout)
            raise AgentError(f"kubeadm init 실패: {result.stderr.strip()}", phase)
        self.logger.success(phase, "kubeadm init 성공")

        self.install_kubeconfig(phase)
        self.log_step("kubeadm init", "success", advertise_address)

    def install_kubeconfig(self, phase: str):
        """admin.conf 를 사용자별 ~/.kube/config 로 복사"""
        admin_conf = self.config.kubernetes.admin_conf
        for user in self.config.kubernetes.kubeconfig_users:
            home = os.path.expanduser(f"~{user}")
            if home.startswith("~") or not os.path.isdir(home):
                self.logger.warning(phase, f"{user} 홈 디렉토리를 찾을 수 없어 kubeconfig 복사를 건너뜁니다")
                continue

            kube_dir = os.path.join(home, ".kube")
            target = os.path.join(kube_dir, "config")
            try:
                os.makedirs(kube_dir, exist_ok=True)
                shutil.copyfile(admin_conf, target)
                shutil.chown(target, user=user, group=user)
                self.logger.success(phase, f"kubectl 설정 파일 복사 완료: {target}")
            except (OSError, LookupError) as e:
                self.logger.warning(phase, f"{user} kubeconfig 설정 실패: {e}")

    def await_local_api_ready(self, max_attempts: Optional[int] = None, interval: Optional[float] = None):
        """kubectl get nodes 가 성공할 때까지 제한된 재시도"""
        phase = "PHASE 5"
        max_attempts = self.config.master.api_ready_attempts if max_attempts is None else max_attempts
        interval = self.config.master.api_ready_interval if interval is None else interval
        self.logger.info(phase, f"kubectl 동작 확인 중... (최대 {max_attempts}회 x {interval}초)")

        def report(attempt, total, result, error):
            if result is not None and result.ok:
                self.logger.success(phase, f"kubectl 설정 완료 ({attempt}번째 시도에서 성공)")
            else:
                self.logger.info(phase, f"kubectl 확인 실패... ({attempt}/{total}) {interval}초 후 재시도")

        try:
            result = poll_until(
                fetch=lambda: self._kubectl("get", "nodes"),
                accept=lambda r: r.ok,
                max_attempts=max_attempts,
                interval=interval,
                sleep=self.sleep,
                on_attempt=report,
                description="local API readiness",
            )
        except RetryExhausted as e:
            raise RetryExhausted(
                f"kubectl 설정 실패 - {max_attempts}회 시도 후 포기",
                attempts=e.attempts,
                last_value=e.last_value,
                last_error=e.last_error,
                phase=phase,
            ) from e

        self.node_status = result.stdout.strip()
        self.logger.info(phase, f"현재 노드 상태:\n{self.node_status}")
        info = self._kubectl("cluster-info")
        if info.ok:
            self.cluster_info = info.stdout.strip()
            self.logger.info(phase, f"클러스터 정보:\n{self.cluster_info}")
        self.transition(InitializerState.CONTROL_PLANE_READY)
        self.log_step("API 서버 준비", "success", "완료")

    def install_network_overlay(self) -> bool:
        """CNI 매니페스트 적용 후 파드 Running 수 관찰 (실패해도 치명적이지 않음)"""
        phase = "PHASE 6"
        master = self.config.master
        self.logger.banner(phase, "Calico CNI 설치")

        result = self._kubectl("apply", "-f", master.cni_manifest)
        if not result.ok:
            self.logger.error(phase, f"CNI 매니페스트 적용 실패: {result.stderr.strip()}")
            self.log_step("CNI 설치", "failed", "매니페스트 적용 실패")
            return False

        def running_count() -> int:
            pods = self._kubectl("get", "pods", "-n", "kube-system", "--no-headers")
            return count_running_pods(pods.stdout, master.cni_pod_pattern) if pods.ok else 0

        def report(attempt, total, count, error):
            self.logger.info(phase, f"대기중... ({attempt}/{total}) Running {count or 0}개")

        try:
            count = poll_until(
                fetch=running_count,
                accept=lambda n: n >= master.cni_min_ready,
                max_attempts=master.cni_ready_attempts,
                interval=master.cni_ready_interval,
                sleep=self.sleep,
                on_attempt=report,
                description="network overlay readiness",
            )
        except RetryExhausted:
            self.logger.warning(phase, "CNI 파드 준비 확인 실패 (클러스터에서 직접 확인 필요)")
            self.log_step("CNI 설치", "failed", "준비 확인 불가")
            return False

        self.logger.success(phase, f"Calico 파드 실행 확인 ({count}개)")
        self.log_step("CNI 설치", "success", f"{count}개 Running")
        return True

    def generate_join_credential(self, ttl: str) -> JoinCredential:
        """kubeadm token create 로 조인 명령어 생성 및 문법 검증"""
        try:
            ttl_delta = parse_duration(ttl)
        except ValueError as e:
            raise CredentialError(str(e), "PHASE 7")

        result = self.runner.run(["kubeadm", "token", "create", "--print-join-command", f"--ttl={ttl}"])
        if not result.ok:
            raise CredentialError(f"조인 명령어 생성 실패: {result.stderr.strip()}", "PHASE 7")

        try:
            return parse_join_command(
                result.stdout,
                placeholder=self.config.cluster.placeholder,
                ttl=ttl_delta,
                issued_at=self.clock(),
            )
        except CredentialError as e:
            raise CredentialError(f"조인 명령어 생성 실패: {e.message}", "PHASE 7")

    def publish_join_credential(self, ttl: Optional[str] = None) -> JoinCredential:
        """조인 명령어 생성 후 조정 채널에 게시

        생성/검증 실패 시 아무것도 쓰지 않는다. 원격 쓰기 실패는 PublishError 로
        전달되며 로컬 컨트롤 플레인 상태는 유지된다.
        """
        phase = "PHASE 7"
        ttl = ttl or self.config.master.token_ttl
        self.logger.banner(phase, "조인 토큰 생성")

        credential = self.generate_join_credential(ttl)
        self.credential = credential
        self.logger.success(phase, f"조인 명령어 생성 성공 (TTL {ttl})")
        if credential.expires_at:
            self.logger.info(phase, f"토큰 만료 시각: {credential.expires_at.isoformat()}")

        command = credential.to_command()
        placeholder = self.config.cluster.placeholder
        try:
            previous = self.channel.get(self.key)
        except ChannelError as e:
            self.logger.debug(phase, f"기존 값 확인 실패: {e}")
            previous = None
        if previous and previous != command and is_valid_credential(previous, placeholder):
            self.logger.warning(phase, f"이미 게시된 조인 명령어를 덮어씁니다: {self.key}")

        try:
            self.channel.put(self.key, command)
        except ChannelError as e:
            self.transition(InitializerState.PUBLISH_FAILED)
            self.log_step("조인 명령어 게시", "failed", "Parameter Store 저장 실패")
            raise PublishError(f"Parameter Store 저장 실패: {e.message}", phase)

        self.transition(InitializerState.CREDENTIAL_PUBLISHED)
        self.logger.success(phase, f"Parameter Store 저장 성공: {self.key}")
        self.log_step("조인 명령어 게시", "success", self.key)
        return credential

    def summary_rows(self):
        rows = super().summary_rows()
        rows.append(("노드 상태", self.node_status or "-"))
        rows.append(("클러스터 정보", self.cluster_info.splitlines()[0] if self.cluster_info else "-"))
        if self.credential is not None and self.credential.expires_at:
            rows.append(("토큰 만료", self.credential.expires_at.isoformat()))
        return rows

    def run(self, skip_bootstrap: bool = False) -> InitializerState:
        """마스터 전체 시퀀스"""
        self.logger.info("MASTER", f"Kubernetes Master Init Started (cluster: {self.config.cluster.cluster_id})")
        self.prepare_channel()

        if skip_bootstrap:
            self.skip_bootstrap()
        else:
            self.bootstrap_local()

        address = self.resolve_local_ip()
        self.initialize_control_plane(address)
        self.await_local_api_ready()
        self.install_network_overlay()
        self.publish_join_credential()
        return self.state
