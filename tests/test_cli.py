"""
CLI 및 오케스트레이터 테스트
"""

import pytest
import yaml
from click.testing import CliRunner

from conftest import FakeClock, FakeMetadata, FakeRunner
from k8s_bootstrap_agent.channel import InMemoryCoordinationChannel
from k8s_bootstrap_agent.cli import (EXIT_FATAL, EXIT_OK, EXIT_PROPAGATION, RoleOrchestrator, cli,
                                     load_config)
from k8s_bootstrap_agent.exceptions import ChannelError
from k8s_bootstrap_agent.status import read_marker

CREDENTIAL = "kubeadm join 10.0.1.10:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:0a1b"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "cluster": {"cluster_id": "cli-test", "channel": "memory"},
        "agent": {
            "log_dir": str(tmp_path / "logs"),
            "worker_status_file": str(tmp_path / "worker-join-status"),
            "master_status_file": str(tmp_path / "master-init-status"),
        },
    }))
    return str(path)


class ReadOnlyChannel(InMemoryCoordinationChannel):
    def put(self, key, value):
        raise ChannelError("AccessDeniedException")


def orchestrator(config, role, channel, runner=None):
    return RoleOrchestrator(
        config, role,
        channel=channel,
        runner=runner or FakeRunner(),
        metadata=FakeMetadata(),
        sleep=FakeClock().sleep,
    )


def test_load_config_overrides(config_file):
    cfg = load_config(config_file, cluster_id="override", region="us-west-2")
    assert cfg.cluster.cluster_id == "override"
    assert cfg.cluster.region == "us-west-2"
    assert cfg.parameter_name == "/k8s/override/join-command"


def test_worker_run_writes_marker(config):
    channel = InMemoryCoordinationChannel({config.parameter_name: CREDENTIAL})

    code = orchestrator(config, "worker", channel).run(skip_bootstrap=True)

    assert code == EXIT_OK
    assert read_marker(config.agent.worker_status_file) == "WORKER_JOIN_SUCCESS"


def test_worker_timeout_is_fatal(config):
    config.worker.max_attempts = 2
    channel = InMemoryCoordinationChannel({config.parameter_name: "placeholder"})

    code = orchestrator(config, "worker", channel).run(skip_bootstrap=True)

    assert code == EXIT_FATAL
    assert read_marker(config.agent.worker_status_file) is None


def test_master_publish_failure_exit_code(config):
    runner = (FakeRunner()
              .on("kubeadm", "token", "create", stdout=CREDENTIAL)
              .on("kubectl", "get", "pods", stdout="calico-node-a 1/1 Running 0 1m\ncalico-node-b 1/1 Running 0 1m\n"))

    code = orchestrator(config, "master", ReadOnlyChannel(), runner=runner).run(skip_bootstrap=True)

    assert code == EXIT_PROPAGATION
    assert read_marker(config.agent.master_status_file) is None


def test_master_run_writes_marker_and_logs(config):
    runner = FakeRunner().on("kubeadm", "token", "create", stdout=CREDENTIAL)
    config.master.cni_ready_attempts = 1
    channel = InMemoryCoordinationChannel()

    code = orchestrator(config, "master", channel, runner=runner).run(skip_bootstrap=True)

    assert code == EXIT_OK
    assert channel.get(config.parameter_name) == CREDENTIAL
    assert read_marker(config.agent.master_status_file) == "MASTER_INIT_SUCCESS"
    with open(f"{config.agent.log_dir}/k8s-master-test.log", encoding="utf-8") as f:
        assert "[PHASE 7]" in f.read()


def test_sample_config_command(tmp_path):
    output = str(tmp_path / "sample.yaml")
    result = CliRunner().invoke(cli, ["sample-config", output])

    assert result.exit_code == 0
    assert "cluster_id" in open(output, encoding="utf-8").read()


def test_validate_command(config_file, tmp_path):
    runner = CliRunner()
    assert runner.invoke(cli, ["validate", "-c", config_file]).exit_code == 0

    invalid = tmp_path / "invalid.yaml"
    invalid.write_text("cluster:\n  channel: redis\n")
    result = runner.invoke(cli, ["validate", "-c", str(invalid)])
    assert result.exit_code == EXIT_FATAL
    assert "redis" in result.output


def test_status_command(config_file, tmp_path):
    runner = CliRunner()
    assert runner.invoke(cli, ["status", "-c", config_file]).exit_code == EXIT_FATAL

    (tmp_path / "worker-join-status").write_text("WORKER_JOIN_SUCCESS\n")
    assert runner.invoke(cli, ["status", "-c", config_file]).exit_code == 0


def test_fetch_credential_times_out(config_file):
    result = CliRunner().invoke(cli, ["fetch-credential", "-c", config_file, "--attempts", "2", "--interval", "0"])
    assert result.exit_code == EXIT_FATAL


def test_worker_command_requires_cluster_id(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("agent:\n  log_dir: " + str(tmp_path / "logs") + "\n")

    result = CliRunner().invoke(cli, ["worker", "-c", str(path), "--channel", "memory"])
    assert result.exit_code == EXIT_FATAL


def test_fetch_credential_rejects_zero_attempts(config_file):
    result = CliRunner().invoke(cli, ["fetch-credential", "-c", config_file, "--attempts", "0", "--interval", "0"])
    assert result.exit_code == EXIT_FATAL


def test_summary_shows_node_report(config, capsys):
    channel = InMemoryCoordinationChannel({config.parameter_name: CREDENTIAL})

    orchestrator(config, "worker", channel).run(skip_bootstrap=True)

    output = capsys.readouterr().out
    assert "10.0.1.10" in output
    assert "Joined" in output
