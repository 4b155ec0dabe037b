"""
설정 관리 모듈
YAML/JSON 기반 설정 파일 관리 및 기본값 제공
"""

import os
import yaml
import json
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict


def join_command_key(domain: str, session_id: str) -> str:
    """세션별 조인 명령어 파라미터 키"""
    domain = domain.strip("/")
    session_id = session_id.strip("/")
    return f"/{domain}/{session_id}/join-command"


@dataclass
class ClusterConfig:
    """클러스터 / 세션 설정"""
    cluster_id: str = ""
    cluster_name: str = "k8s-cluster"
    region: str = "ap-northeast-2"
    domain: str = "k8s"
    parameter_name: str = ""  # 비워두면 /<domain>/<cluster_id>/join-command
    placeholder: str = "placeholder"
    channel: str = "ssm"  # ssm 또는 memory


@dataclass
class SystemConfig:
    """시스템 기본 설정"""
    timezone: str = "Asia/Seoul"
    hostname: str = ""  # 비워두면 역할별 기본값
    update_packages: bool = True
    base_packages: list = field(default_factory=lambda: ["wget", "vim", "git"])


@dataclass
class RuntimeConfig:
    """컨테이너 런타임 설정"""
    type: str = "containerd"
    config_path: str = "/etc/containerd/config.toml"
    socket_path: str = "/run/containerd/containerd.sock"


@dataclass
class KernelConfig:
    """커널 모듈 / sysctl 설정"""
    modules: list = field(default_factory=lambda: ["overlay", "br_netfilter"])
    modules_file: str = "/etc/modules-load.d/k8s.conf"
    sysctl: dict = field(default_factory=lambda: {
        "net.bridge.bridge-nf-call-iptables": "1",
        "net.bridge.bridge-nf-call-ip6tables": "1",
        "net.ipv4.ip_forward": "1",
    })
    sysctl_file: str = "/etc/sysctl.d/k8s.conf"


@dataclass
class KubernetesConfig:
    """Kubernetes 구성요소 설정"""
    version: str = "v1.33"
    repo_file: str = "/etc/yum.repos.d/kubernetes.repo"
    packages: list = field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    pod_cidr: str = "192.168.0.0/16"
    admin_conf: str = "/etc/kubernetes/admin.conf"
    kubeconfig_users: list = field(default_factory=lambda: ["root", "ec2-user"])
    selinux_config: str = "/etc/selinux/config"


@dataclass
class MasterConfig:
    """마스터(초기화) 역할 설정"""
    api_ready_attempts: int = 24
    api_ready_interval: int = 5
    cni_manifest: str = "https://raw.githubusercontent.com/projectcalico/calico/v3.29.1/manifests/calico.yaml"
    cni_pod_pattern: str = "calico"
    cni_min_ready: int = 2
    cni_ready_attempts: int = 24
    cni_ready_interval: int = 5
    token_ttl: str = "24h"


@dataclass
class WorkerConfig:
    """워커(조인) 역할 설정"""
    index: int = 1
    max_attempts: int = 30
    poll_interval: int = 30
    backoff: float = 1.0
    settle_time: int = 10
    restart_wait: int = 5
    registration_wait: int = 30
    kubelet_conf: str = "/etc/kubernetes/kubelet.conf"
    join_timeout: int = 300


@dataclass
class AgentConfig:
    """에이전트 설정"""
    log_dir: str = "/var/log"
    log_level: str = "INFO"
    master_status_file: str = "/tmp/master-init-status"
    worker_status_file: str = "/tmp/worker-join-status"
    command_timeout: int = 600


class Config:
    """전체 설정 관리 클래스"""

    DEFAULT_CONFIG_PATHS = [
        "/etc/k8s-bootstrap-agent/config.yaml",
        "~/.k8s-bootstrap-agent/config.yaml",
        "./config.yaml",
    ]

    SECTIONS = ("cluster", "system", "runtime", "kernel", "kubernetes", "master", "worker", "agent")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.cluster = ClusterConfig()
        self.system = SystemConfig()
        self.runtime = RuntimeConfig()
        self.kernel = KernelConfig()
        self.kubernetes = KubernetesConfig()
        self.master = MasterConfig()
        self.worker = WorkerConfig()
        self.agent = AgentConfig()

        if config_path:
            self.load(config_path)
        else:
            self._load_from_default_paths()

    def _load_from_default_paths(self):
        """기본 경로에서 설정 파일 로드"""
        for path in self.DEFAULT_CONFIG_PATHS:
            expanded_path = os.path.expanduser(path)
            if os.path.exists(expanded_path):
                self.load(expanded_path)
                return

    def load(self, path: str):
        """설정 파일 로드"""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            return

        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith('.json'):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}

        self._update_from_dict(data)
        self.config_path = path

    def _update_from_dict(self, data: Dict[str, Any]):
        """딕셔너리에서 설정 업데이트"""
        for section_name in self.SECTIONS:
            values = data.get(section_name)
            if not values:
                continue
            section = getattr(self, section_name)
            for key, value in values.items():
                if hasattr(section, key):
                    setattr(section, key, value)

    @property
    def parameter_name(self) -> str:
        """조인 명령어가 저장되는 파라미터 이름"""
        if self.cluster.parameter_name:
            return self.cluster.parameter_name
        return join_command_key(self.cluster.domain, self.cluster.cluster_id)

    def hostname_for(self, role: str) -> str:
        """역할별 호스트명"""
        if self.system.hostname:
            return self.system.hostname
        if role == "master":
            return "k8s-master"
        return f"k8s-worker-{self.worker.index}"

    def validate(self) -> List[str]:
        """설정 값 검증, 문제 목록 반환"""
        problems = []
        if not self.cluster.cluster_id and not self.cluster.parameter_name:
            problems.append("cluster.cluster_id 또는 cluster.parameter_name 이 필요합니다")
        if self.cluster.channel not in ("ssm", "memory"):
            problems.append(f"지원하지 않는 채널: {self.cluster.channel}")
        if not self.cluster.placeholder:
            problems.append("cluster.placeholder 는 비어 있을 수 없습니다")
        for name in ("api_ready_attempts", "cni_ready_attempts"):
            if getattr(self.master, name) < 1:
                problems.append(f"master.{name} 는 1 이상이어야 합니다")
        if self.worker.max_attempts < 1:
            problems.append("worker.max_attempts 는 1 이상이어야 합니다")
        if self.worker.poll_interval < 0:
            problems.append("worker.poll_interval 는 0 이상이어야 합니다")
        if self.worker.backoff < 1.0:
            problems.append("worker.backoff 는 1.0 이상이어야 합니다")
        return problems

    def to_dict(self) -> Dict[str, Any]:
        """딕셔너리로 변환"""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def save(self, path: Optional[str] = None):
        """설정 파일 저장"""
        save_path = path or self.config_path or self.DEFAULT_CONFIG_PATHS[0]
        save_path = os.path.expanduser(save_path)

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.to_dict()

        with open(save_path, 'w', encoding='utf-8') as f:
            if save_path.endswith('.json'):
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, allow_unicode=True)

    def create_sample(self, output_path: str):
        """샘플 설정 파일 생성"""
        template = """# K8s Bootstrap Agent Configuration File
# 이 파일을 복사하여 config.yaml로 사용하세요

# 클러스터 / 세션 설정
cluster:
  cluster_id: "dev-01"
  cluster_name: "k8s-cluster"
  region: "ap-northeast-2"
  domain: "k8s"
  parameter_name: ""  # 비워두면 /<domain>/<cluster_id>/join-command
  placeholder: "placeholder"  # 아직 게시되지 않음을 나타내는 값
  channel: "ssm"  # ssm 또는 memory

# 시스템 기본 설정
system:
  timezone: "Asia/Seoul"
  hostname: ""  # 비워두면 k8s-master / k8s-worker-<index>
  update_packages: true
  base_packages: ["wget", "vim", "git"]

# Kubernetes 구성요소
kubernetes:
  version: "v1.33"
  pod_cidr: "192.168.0.0/16"
  kubeconfig_users: ["root", "ec2-user"]

# 마스터 노드 설정
master:
  api_ready_attempts: 24  # 24 x 5초 = 2분
  api_ready_interval: 5
  cni_min_ready: 2
  token_ttl: "24h"

# 워커 노드 설정
worker:
  index: 1
  max_attempts: 30  # 30 x 30초 = 15분
  poll_interval: 30
  settle_time: 10
  registration_wait: 30

# 에이전트 설정
agent:
  log_dir: "/var/log"
  log_level: "INFO"  # DEBUG, INFO, WARNING, ERROR
"""

        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(template)
