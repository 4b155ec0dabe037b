"""
노드 공통 로컬 부트스트랩
시스템 기본 설정, containerd, 커널 모듈/sysctl, Kubernetes 구성요소 설치
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from .config import Config
from .exceptions import BootstrapError, CommandError
from .logger import AgentLogger
from .system import CommandRunner

REPO_TEMPLATE = """[kubernetes]
name=Kubernetes
baseurl=https://pkgs.k8s.io/core:/stable:/{version}/rpm/
enabled=1
gpgcheck=1
gpgkey=https://pkgs.k8s.io/core:/stable:/{version}/rpm/repodata/repomd.xml.key
exclude=kubelet kubeadm kubectl cri-tools kubernetes-cni
"""

SYSTEMD_CGROUP_FALSE_RE = re.compile(r"SystemdCgroup\s*=\s*false")


def enable_systemd_cgroup(config_text: str) -> str:
    """containerd 설정에서 SystemdCgroup = true 로 강제

    기존 값이 false 면 true 로 바꾸고, 항목이 없으면 ShimCgroup 줄 다음에 추가한다.
    """
    if SYSTEMD_CGROUP_FALSE_RE.search(config_text):
        return SYSTEMD_CGROUP_FALSE_RE.sub("SystemdCgroup = true", config_text)
    if "SystemdCgroup" in config_text:
        return config_text

    lines = config_text.split("\n")
    for i, line in enumerate(lines):
        if line.strip().startswith("ShimCgroup"):
            indent = line[:len(line) - len(line.lstrip())]
            lines.insert(i + 1, f"{indent}SystemdCgroup = true")
            return "\n".join(lines)
    return config_text


def loaded_modules(lsmod_output: str) -> List[str]:
    """lsmod 출력에서 모듈 이름 목록 추출"""
    names = []
    for line in lsmod_output.splitlines()[1:]:
        parts = line.split()
        if parts:
            names.append(parts[0])
    return names


class NodeBootstrapper:
    """마스터/워커 공통 부트스트랩"""

    def __init__(self, config: Config, logger: AgentLogger, runner: Optional[CommandRunner] = None,
                 role: str = "worker"):
        self.config = config
        self.logger = logger
        self.runner = runner or CommandRunner(timeout=config.agent.command_timeout)
        self.role = role
        self.versions: Dict[str, str] = {}

    def _write_file(self, path: str, content: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

    def run(self) -> Dict[str, str]:
        """전체 부트스트랩, 치명적 실패 시 BootstrapError"""
        self.setup_system()
        self.install_runtime()
        self.configure_kernel()
        self.install_kubernetes()
        self.logger.success("COMPLETE", "모든 공통 설정이 완료되었습니다.")
        return self.versions

    def setup_system(self):
        """Phase 1: 시스템 기본 설정"""
        phase = "PHASE 1"
        self.logger.banner(phase, "시스템 기본 설정")
        system = self.config.system

        result = self.runner.run(["timedatectl", "set-timezone", system.timezone])
        if result.ok:
            self.logger.success(phase, f"시간대 설정 완료: {system.timezone}")
        else:
            self.logger.warning(phase, f"시간대 설정 실패: {result.stderr.strip()}")

        hostname = self.config.hostname_for(self.role)
        result = self.runner.run(["hostnamectl", "set-hostname", hostname])
        if result.ok:
            self.logger.success(phase, f"호스트명 설정 완료: {hostname}")
        else:
            self.logger.warning(phase, f"호스트명 설정 실패: {result.stderr.strip()}")

        if system.update_packages:
            self.logger.info(phase, "시스템 업데이트 중...")
            if self.runner.run(["dnf", "update", "-y"]).ok:
                self.logger.success(phase, "시스템 업데이트 완료")
            else:
                self.logger.error(phase, "시스템 업데이트 실패")

        self.runner.run(["swapoff", "-a"])
        self.logger.success(phase, "swap 비활성화 완료")

        for package in system.base_packages:
            if self.runner.which(package):
                self.logger.success(phase, f"{package}: 이미 설치됨")
                continue
            self.logger.info(phase, f"{package} 설치 중...")
            if self.runner.run(["dnf", "install", "-y", package]).ok:
                self.logger.success(phase, f"{package} 설치 완료")
            else:
                self.logger.warning(phase, f"{package} 설치 실패")

        self.logger.success(phase, "시스템 기본 설정 완료")

    def install_runtime(self):
        """Phase 2: containerd 설치 및 설정"""
        phase = "PHASE 2"
        self.logger.banner(phase, "containerd 설치")
        runtime = self.config.runtime

        if not self.runner.run(["dnf", "install", "-y", "containerd"]).ok:
            raise BootstrapError("containerd 설치 실패", phase)
        self.logger.success(phase, "containerd 설치 완료")

        result = self.runner.run(["containerd", "config", "default"])
        if not result.ok:
            raise BootstrapError("containerd 기본 설정 생성 실패", phase)
        config_text = enable_systemd_cgroup(result.stdout)
        self._write_file(runtime.config_path, config_text)
        if "SystemdCgroup = true" in config_text:
            self.logger.success(phase, "SystemdCgroup = true 설정 완료")
        else:
            self.logger.warning(phase, "SystemdCgroup 설정 위치를 찾지 못했습니다")

        try:
            self.runner.run(["systemctl", "enable", "containerd"], check=True)
            self.runner.run(["systemctl", "restart", "containerd"], check=True)
        except CommandError as e:
            raise BootstrapError(f"containerd 서비스 시작 실패: {e.message}", phase)

        if not self.runner.run(["systemctl", "is-active", "--quiet", "containerd"]).ok:
            status = self.runner.run(["systemctl", "status", "containerd", "--no-pager"])
            self.logger.debug(phase, status.stdout)
            raise BootstrapError("containerd 서비스가 실행되지 않음", phase)
        self.logger.success(phase, "containerd 서비스 실행 중")

        if not Path(runtime.socket_path).is_socket():
            raise BootstrapError(f"containerd 소켓 파일이 존재하지 않음: {runtime.socket_path}", phase)
        self.logger.success(phase, f"containerd 소켓 파일 확인: {runtime.socket_path}")

        version = self.runner.run(["containerd", "--version"]).stdout.strip()
        if version:
            self.versions["containerd"] = version
            self.logger.success(phase, f"containerd 버전: {version}")

    def configure_kernel(self):
        """Phase 3: 커널 모듈 및 sysctl 설정"""
        phase = "PHASE 3"
        self.logger.banner(phase, "네트워크 및 커널 모듈 설정")
        kernel = self.config.kernel

        self._write_file(kernel.modules_file, "\n".join(kernel.modules) + "\n")
        self.logger.success(phase, f"{kernel.modules_file} 생성 완료")

        for module in kernel.modules:
            self.logger.info(phase, f"{module} 모듈 로드...")
            self.runner.run(["modprobe", module])

        lsmod = self.runner.run(["lsmod"])
        loaded = loaded_modules(lsmod.stdout)
        for module in kernel.modules:
            if module not in loaded:
                raise BootstrapError(f"{module} 모듈 로드 실패", phase)
            self.logger.success(phase, f"{module} 모듈 로드 확인")

        lines = [f"{key} = {value}" for key, value in kernel.sysctl.items()]
        self._write_file(kernel.sysctl_file, "\n".join(lines) + "\n")
        self.logger.success(phase, f"{kernel.sysctl_file} 생성 완료")

        self.runner.run(["sysctl", "--system"])
        self.logger.success(phase, "sysctl 설정 적용 완료")

        for key, expected in kernel.sysctl.items():
            actual = self.runner.run(["sysctl", "-n", key]).stdout.strip()
            if actual != str(expected):
                raise BootstrapError(f"{key} 설정 실패 (expected {expected}, got {actual or 'none'})", phase)
            self.logger.success(phase, f"{key} = {expected} 적용 확인")

        self.logger.success(phase, "네트워크 및 커널 모듈 설정 완료")

    def _set_selinux_permissive(self, phase: str):
        current = self.runner.run(["getenforce"]).stdout.strip()
        self.logger.info(phase, f"현재 SELinux 상태: {current or 'unknown'}")
        if current in ("Permissive", "Disabled", ""):
            return

        self.runner.run(["setenforce", "0"])
        selinux_config = self.config.kubernetes.selinux_config
        if os.path.exists(selinux_config):
            with open(selinux_config, "r", encoding="utf-8") as f:
                content = f.read()
            content = re.sub(r"^SELINUX=enforcing$", "SELINUX=permissive", content, flags=re.MULTILINE)
            self._write_file(selinux_config, content)
        self.logger.success(phase, "SELinux permissive 모드 설정 완료")

    def install_kubernetes(self):
        """Phase 4: kubelet, kubeadm, kubectl 설치"""
        phase = "PHASE 4"
        self.logger.banner(phase, "Kubernetes 구성 요소 설치")
        kubernetes = self.config.kubernetes

        self._write_file(kubernetes.repo_file, REPO_TEMPLATE.format(version=kubernetes.version))
        self.logger.success(phase, "Kubernetes 리포지토리 설정 완료")

        self._set_selinux_permissive(phase)

        install = ["dnf", "install", "-y"] + list(kubernetes.packages) + ["--disableexcludes=kubernetes"]
        if not self.runner.run(install).ok:
            raise BootstrapError("Kubernetes 구성 요소 설치 실패", phase)
        self.logger.success(phase, "Kubernetes 구성 요소 설치 완료")

        if not self.runner.run(["systemctl", "enable", "kubelet"]).ok:
            raise BootstrapError("kubelet 서비스 활성화 실패", phase)
        self.logger.success(phase, "kubelet 서비스 활성화 완료")

        required = ["kubelet", "kubeadm", "kubectl"] if self.role == "master" else ["kubelet", "kubeadm"]
        for binary in required:
            if not self.runner.which(binary):
                raise BootstrapError(f"{binary} 설치 실패", phase)
            self.logger.success(phase, f"{binary} 설치 확인")

        kubeadm_version = self.runner.run(["kubeadm", "version", "-o", "short"]).stdout.strip()
        if kubeadm_version:
            self.versions["kubeadm"] = kubeadm_version
        kubelet_version = self.runner.run(["kubelet", "--version"]).stdout.strip()
        if kubelet_version:
            self.versions["kubelet"] = kubelet_version.split()[-1]
