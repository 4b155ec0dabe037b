"""
워커 조인 (Joiner 역할) 테스트
"""

import pytest

from conftest import FakeClock, FakeMetadata, FakeRunner, NoopBootstrapper
from k8s_bootstrap_agent.channel import InMemoryCoordinationChannel
from k8s_bootstrap_agent.credential import parse_join_command
from k8s_bootstrap_agent.exceptions import ChannelError, CredentialTimeout, JoinError
from k8s_bootstrap_agent.logger import AgentLogger
from k8s_bootstrap_agent.worker import JoinerState, WorkerJoiner

KEY = "/k8s/test/join-command"
CREDENTIAL = "kubeadm join 10.0.1.5:6443 --token xy.z --discovery-token-ca-cert-hash sha256:aaaa"


class ScriptedChannel(InMemoryCoordinationChannel):
    """조회할 때마다 준비된 값을 순서대로 반환"""

    def __init__(self, values):
        super().__init__()
        self.values = list(values)

    def get(self, key):
        self.reads += 1
        value = self.values[min(self.reads, len(self.values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value


class TimedChannel(InMemoryCoordinationChannel):
    """clock.now 가 publish_at 이후일 때만 조인 명령어가 보이는 채널"""

    def __init__(self, publish_at, value):
        super().__init__()
        self.publish_at = publish_at
        self.value = value
        self.clock = None

    def get(self, key):
        self.reads += 1
        if self.clock.now >= self.publish_at:
            return self.value
        return "placeholder"


def make_joiner(config, logger, channel, runner=None, clock=None):
    return WorkerJoiner(
        config, logger, channel,
        runner=runner or FakeRunner(),
        metadata=FakeMetadata(),
        bootstrapper=NoopBootstrapper(),
        sleep=(clock or FakeClock()).sleep,
    )


def test_times_out_after_exact_attempts(config, logger, clock):
    """플레이스홀더만 있으면 정확히 5회 조회 후 타임아웃"""
    channel = InMemoryCoordinationChannel({config.parameter_name: "placeholder"})
    joiner = make_joiner(config, logger, channel, clock=clock)

    with pytest.raises(CredentialTimeout) as excinfo:
        joiner.await_join_credential(max_attempts=5, interval=0)

    assert excinfo.value.attempts == 5
    assert channel.reads == 5
    assert joiner.state == JoinerState.AWAITING_CREDENTIAL


def test_stops_polling_after_valid_credential(config, logger, clock):
    """3번째 조회에서 유효하면 4, 5번째 조회는 일어나지 않음"""
    channel = ScriptedChannel(["placeholder", None, CREDENTIAL, CREDENTIAL, CREDENTIAL])
    joiner = make_joiner(config, logger, channel, clock=clock)

    credential = joiner.await_join_credential(max_attempts=5, interval=30)

    assert credential.token == "xy.z"
    assert channel.reads == 3
    assert joiner.poll_attempts == 3
    assert clock.sleeps == [30, 30]


def test_lookup_failures_count_as_not_ready(config, logger):
    channel = ScriptedChannel([ChannelError("AccessDenied"), "", CREDENTIAL])
    joiner = make_joiner(config, logger, channel)

    credential = joiner.await_join_credential(max_attempts=3, interval=0)

    assert credential.endpoint == "10.0.1.5:6443"
    assert channel.reads == 3


def test_placeholder_containing_join_never_accepted(config, logger):
    """플레이스홀더에 join 문자열이 있어도 대기 상태 유지"""
    config.cluster.placeholder = "pending: kubeadm join --token will.appear"
    channel = InMemoryCoordinationChannel({config.parameter_name: config.cluster.placeholder})
    joiner = make_joiner(config, logger, channel)

    with pytest.raises(CredentialTimeout):
        joiner.await_join_credential(max_attempts=4, interval=0)
    assert channel.reads == 4


def test_reading_does_not_mutate_channel(config, logger):
    channel = InMemoryCoordinationChannel({config.parameter_name: CREDENTIAL})
    joiner = make_joiner(config, logger, channel)

    first = joiner.await_join_credential(max_attempts=1, interval=0)
    second = joiner.await_join_credential(max_attempts=1, interval=0)

    assert first == second
    assert channel.writes == 0
    assert channel.get(config.parameter_name) == CREDENTIAL


def test_join_uses_argument_list(config, logger):
    """조인 명령어를 문자열로 실행하지 않고 인자 목록으로 전달"""
    runner = FakeRunner()
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    joiner.join(parse_join_command(CREDENTIAL))

    assert runner.called("kubeadm", "join") == [[
        "kubeadm", "join", "10.0.1.5:6443",
        "--token", "xy.z",
        "--discovery-token-ca-cert-hash", "sha256:aaaa",
    ]]
    assert joiner.state == JoinerState.JOINED


def test_join_failure_reports_credential(config, logger):
    runner = FakeRunner().on("kubeadm", "join", returncode=1, stderr="connection refused")
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    with pytest.raises(JoinError) as excinfo:
        joiner.join(parse_join_command(CREDENTIAL))

    assert CREDENTIAL in excinfo.value.message
    assert "connection refused" in excinfo.value.message
    assert joiner.state == JoinerState.JOIN_FAILED
    assert len(runner.called("kubeadm", "join")) == 1


def test_join_skipped_when_already_member(config, logger, tmp_path):
    (tmp_path / "kubelet.conf").write_text("apiVersion: v1\n")
    runner = FakeRunner()
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    joiner.join(parse_join_command(CREDENTIAL))

    assert runner.called("kubeadm") == []
    assert joiner.state == JoinerState.JOINED


def test_verify_membership_active(config, logger):
    runner = FakeRunner().on("journalctl", stdout="I0101 kubelet_node_status.go] Successfully registered node k8s-worker-1")
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    results = joiner.verify_membership()

    assert results == {"kubelet_active": True, "containerd_active": True, "restarted": False, "registered": True}
    assert runner.called("systemctl", "restart") == []


def test_verify_membership_restarts_once(config, logger):
    """kubelet 이 비활성이면 재시작은 한 번만 시도"""
    runner = FakeRunner().on("systemctl", "is-active", returncode=3)
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    results = joiner.verify_membership()

    assert results["kubelet_active"] is False
    assert results["restarted"] is True
    assert results["registered"] is False
    assert len(runner.called("systemctl", "restart", "kubelet")) == 1
    assert len(runner.called("systemctl", "is-active", "--quiet", "kubelet")) == 2
    assert results["containerd_active"] is False


def test_verify_membership_recovers_after_restart(config, logger):
    runner = (FakeRunner()
              .on("systemctl", "is-active", returncode=3)
              .on("systemctl", "is-active", returncode=0))
    joiner = make_joiner(config, logger, InMemoryCoordinationChannel(), runner=runner)

    results = joiner.verify_membership(settle_time=10)

    assert results["kubelet_active"] is True
    assert results["restarted"] is True


def test_run_transitions(config, logger):
    channel = InMemoryCoordinationChannel({config.parameter_name: CREDENTIAL})
    joiner = make_joiner(config, logger, channel)

    state = joiner.run()

    assert state == JoinerState.JOINED
    assert joiner.history == [
        JoinerState.BOOTSTRAPPING,
        JoinerState.RUNTIME_READY,
        JoinerState.AWAITING_CREDENTIAL,
        JoinerState.JOINING,
        JoinerState.JOINED,
    ]
    assert joiner.local_ip == "10.0.1.10"


def test_three_joiners_detect_publication_at_or_after_publish_time(config):
    """T-60초부터 30초 간격으로 폴링하는 워커 3대는 모두 T 이후에 조인"""
    publish_at = 1000.0
    joined = []

    for index in range(1, 4):
        clock = FakeClock(start=publish_at - 60)
        channel = TimedChannel(publish_at, "join --token xy.z --discovery-token-ca-cert-hash sha256:aaaa")
        channel.clock = clock
        runner = FakeRunner()
        worker_logger = AgentLogger(name=f"tests.e2e.worker-{index}")
        config.worker.index = index
        joiner = make_joiner(config, worker_logger, channel, runner=runner, clock=clock)

        try:
            credential = joiner.await_join_credential(max_attempts=30, interval=30)
            detected_at = clock.now
            joiner.join(credential)
        finally:
            worker_logger.close()

        assert detected_at >= publish_at
        assert channel.reads == 3
        assert joiner.state == JoinerState.JOINED
        joined.append(runner.called("kubeadm", "join")[0])

    assert joined == [["kubeadm", "join", "--token", "xy.z",
                       "--discovery-token-ca-cert-hash", "sha256:aaaa"]] * 3


def test_zero_attempts_is_rejected(config, logger):
    """명시적인 0회는 기본값으로 바뀌지 않고 거부됨"""
    channel = InMemoryCoordinationChannel({config.parameter_name: "placeholder"})
    joiner = make_joiner(config, logger, channel)

    with pytest.raises(ValueError):
        joiner.await_join_credential(max_attempts=0, interval=0)
    assert channel.reads == 0


def test_summary_rows_report_node(config, logger):
    config.worker.index = 2
    channel = InMemoryCoordinationChannel({config.parameter_name: CREDENTIAL})
    joiner = make_joiner(config, logger, channel)
    joiner.run(skip_bootstrap=True)

    rows = dict(joiner.summary_rows())
    assert rows["호스트명"] == "k8s-worker-2"
    assert rows["로컬 IP"] == "10.0.1.10"
    assert rows["최종 상태"] == "Joined"
    assert rows["kubelet"] == "active"
    assert rows["containerd"] == "active"
