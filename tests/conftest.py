"""
테스트 공용 픽스처 및 가짜 구성요소
"""

import pytest

from k8s_bootstrap_agent.config import Config
from k8s_bootstrap_agent.exceptions import CommandError
from k8s_bootstrap_agent.logger import AgentLogger
from k8s_bootstrap_agent.system import CommandResult


class FakeRunner:
    """명령 접두어별로 준비된 결과를 돌려주는 가짜 CommandRunner"""

    def __init__(self, binaries=()):
        self.responses = {}
        self.calls = []
        self.envs = []
        self.binaries = set(binaries)
        self.timeout = 600

    def on(self, *prefix, returncode=0, stdout="", stderr=""):
        """같은 접두어로 여러 번 등록하면 순서대로 반환, 마지막 결과는 반복"""
        self.responses.setdefault(tuple(prefix), []).append(
            CommandResult(list(prefix), returncode, stdout, stderr)
        )
        return self

    def run(self, args, check=False, timeout=None, env=None):
        args = list(args)
        self.calls.append(args)
        self.envs.append(env)
        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(args[:len(prefix)]) == prefix:
                queue = self.responses[prefix]
                result = queue.pop(0) if len(queue) > 1 else queue[0]
                result = CommandResult(args, result.returncode, result.stdout, result.stderr)
                if check and not result.ok:
                    raise CommandError(args, result.returncode, result.stderr)
                return result
        return CommandResult(args, 0, "", "")

    def which(self, name):
        return f"/usr/bin/{name}" if name in self.binaries else None

    def called(self, *prefix):
        return [c for c in self.calls if tuple(c[:len(prefix)]) == prefix]


class FakeClock:
    """sleep 호출 시 시간만 전진하는 가짜 시계"""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeMetadata:
    def __init__(self, ip="10.0.1.10"):
        self.ip = ip

    def local_ipv4(self):
        return self.ip


class NoopBootstrapper:
    def __init__(self):
        self.ran = False

    def run(self):
        self.ran = True
        return {"kubeadm": "v1.33.0"}


@pytest.fixture
def config(tmp_path):
    cfg = Config(str(tmp_path / "missing.yaml"))
    cfg.cluster.cluster_id = "test"
    cfg.cluster.channel = "memory"
    cfg.agent.log_dir = str(tmp_path / "logs")
    cfg.agent.master_status_file = str(tmp_path / "master-init-status")
    cfg.agent.worker_status_file = str(tmp_path / "worker-join-status")
    cfg.kubernetes.kubeconfig_users = []
    cfg.kubernetes.admin_conf = str(tmp_path / "admin.conf")
    cfg.worker.kubelet_conf = str(tmp_path / "kubelet.conf")
    cfg.worker.settle_time = 0
    cfg.worker.restart_wait = 0
    cfg.worker.registration_wait = 0
    return cfg


@pytest.fixture
def logger(request):
    agent_logger = AgentLogger(name=f"tests.{request.node.name}")
    yield agent_logger
    agent_logger.close()


@pytest.fixture
def runner():
    return FakeRunner(binaries=("kubelet", "kubeadm", "kubectl"))


@pytest.fixture
def clock():
    return FakeClock()
