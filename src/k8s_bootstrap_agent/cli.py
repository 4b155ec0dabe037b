"""
CLI 메인 인터페이스
Click 및 Rich 기반 마스터/워커 부트스트랩 CLI
"""

import sys
import time
import click
from typing import Callable, Optional
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from . import __version__
from .base import NodeRole
from .channel import CoordinationChannel, create_channel
from .config import Config
from .exceptions import AgentError, PublishError
from .logger import AgentLogger
from .master import ControlPlaneInitializer
from .metadata import InstanceMetadataClient
from .status import MASTER_SUCCESS, WORKER_SUCCESS, read_marker, write_marker
from .system import CommandRunner
from .worker import WorkerJoiner

console = Console()

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PROPAGATION = 2


class RoleOrchestrator:
    """역할 실행 오케스트레이터"""

    ROLES = {
        "master": ControlPlaneInitializer,
        "worker": WorkerJoiner,
    }

    def __init__(self, config: Config, role: str, debug: bool = False,
                 channel: Optional[CoordinationChannel] = None,
                 runner: Optional[CommandRunner] = None,
                 metadata: Optional[InstanceMetadataClient] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.role = role
        self.debug = debug
        cluster_id = config.cluster.cluster_id or "default"
        self.logger = AgentLogger(
            name=f"k8s_bootstrap_agent.{role}",
            log_dir=config.agent.log_dir,
            log_file_prefix=f"k8s-{role}-{cluster_id}",
            log_level=config.agent.log_level,
            debug=debug,
        )
        self.channel = channel or create_channel(config.cluster.channel, config.cluster.region)
        self.node: NodeRole = self.ROLES[role](
            config, self.logger, self.channel,
            runner=runner, metadata=metadata, sleep=sleep,
        )

    @property
    def status_file(self) -> str:
        if self.role == "master":
            return self.config.agent.master_status_file
        return self.config.agent.worker_status_file

    def show_summary(self):
        """실행 결과 요약 표시"""
        console.print("\n" + "=" * 60)
        console.print("[bold]실행 결과 요약[/bold]")
        console.print("=" * 60 + "\n")

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("단계", style="cyan", width=24)
        table.add_column("상태", width=6)
        table.add_column("메시지", width=40)

        for log in self.node.execution_log:
            status_icon = "✓" if log["status"] == "success" else "✗"
            status_color = "green" if log["status"] == "success" else "red"
            table.add_row(
                log["step"],
                f"[{status_color}]{status_icon}[/{status_color}]",
                log["message"][:40] if log["message"] else ""
            )

        console.print(table)

        info = Table(show_header=False, box=None)
        info.add_column("항목", style="cyan")
        info.add_column("값")
        for label, value in self.node.summary_rows():
            info.add_row(label, value)
        console.print(Panel(info, title="노드 정보", border_style="cyan", expand=False))

        log_files = self.logger.get_log_files()
        if log_files["main_log"]:
            console.print(f"\n[bold]로그 파일:[/bold]")
            console.print(f"  Main: {log_files['main_log']}")
            console.print(f"  Error: {log_files['error_log']}")

    def execute(self, action: Callable[[NodeRole], object]) -> int:
        """action 실행 후 종료 코드 반환"""
        try:
            action(self.node)
            return EXIT_OK

        except PublishError as e:
            self.logger.error(e.phase, e.message)
            self.logger.warning(e.phase, "컨트롤 플레인은 초기화된 상태로 유지됩니다")
            return EXIT_PROPAGATION

        except AgentError as e:
            self.logger.error(e.phase, e.message)
            self.node.log_step(e.phase, "failed", e.message)
            return EXIT_FATAL

        except KeyboardInterrupt:
            console.print("\n[yellow]사용자에 의해 중단되었습니다.[/yellow]")
            self.logger.warning(self.role.upper(), "Execution interrupted by user")
            return EXIT_FATAL

        except Exception as e:
            self.logger.exception(self.role.upper(), f"예상치 못한 오류 발생: {e}")
            self.node.log_step("예상치 못한 오류", "failed", str(e))
            return EXIT_FATAL

    def run(self, skip_bootstrap: bool = False) -> int:
        """역할 전체 시퀀스 실행"""
        title = "K8s Master Node Init" if self.role == "master" else "K8s Worker Node Join"
        console.print(Panel.fit(
            f"[bold cyan]{title}[/bold cyan]\n"
            f"Cluster: {self.config.cluster.cluster_id or '-'}  Parameter: {self.config.parameter_name}",
            border_style="cyan"
        ))

        code = self.execute(lambda node: node.run(skip_bootstrap=skip_bootstrap))

        if code == EXIT_OK:
            write_marker(self.status_file, MASTER_SUCCESS if self.role == "master" else WORKER_SUCCESS)
            self.logger.success("COMPLETE", f"완료 표시 기록: {self.status_file}")

        self.show_summary()

        console.print("\n" + "=" * 60)
        if code == EXIT_OK:
            done = "마스터 노드 초기화 완료!" if self.role == "master" else "워커 노드 조인 완료!"
            console.print(f"[bold green]✓ {done}[/bold green]")
        else:
            console.print(f"[bold red]✗ 실패 (exit {code})[/bold red]")
        console.print("=" * 60)

        self.logger.close()
        return code


def load_config(config_path: Optional[str], cluster_id: Optional[str] = None,
                parameter_name: Optional[str] = None, region: Optional[str] = None,
                channel: Optional[str] = None) -> Config:
    """설정 로드 후 CLI 옵션으로 덮어쓰기"""
    cfg = Config(config_path)
    if cluster_id:
        cfg.cluster.cluster_id = cluster_id
    if parameter_name:
        cfg.cluster.parameter_name = parameter_name
    if region:
        cfg.cluster.region = region
    if channel:
        cfg.cluster.channel = channel
    return cfg


def ensure_valid(cfg: Config):
    """설정 오류가 있으면 종료"""
    problems = cfg.validate()
    if problems:
        for problem in problems:
            console.print(f"[red]오류: {problem}[/red]")
        sys.exit(EXIT_FATAL)


def cluster_options(func):
    """공통 클러스터 옵션"""
    func = click.option('--channel', type=click.Choice(["ssm", "memory"]), help='조정 채널 종류')(func)
    func = click.option('--region', help='AWS 리전')(func)
    func = click.option('--parameter-name', help='조인 명령어 파라미터 이름')(func)
    func = click.option('--cluster-id', help='클러스터(세션) ID')(func)
    func = click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli():
    """K8s Bootstrap Agent

    kubeadm 마스터 초기화와 워커 조인을 Parameter Store 를 통해 조율합니다.
    """
    pass


@cli.command()
@cluster_options
@click.option('--skip-bootstrap', is_flag=True, help='로컬 부트스트랩 생략')
@click.option('--debug', is_flag=True, help='디버그 모드')
def master(config, cluster_id, parameter_name, region, channel, skip_bootstrap, debug):
    """마스터 노드 초기화 및 조인 명령어 게시"""
    cfg = load_config(config, cluster_id, parameter_name, region, channel)
    ensure_valid(cfg)

    orchestrator = RoleOrchestrator(cfg, "master", debug)
    sys.exit(orchestrator.run(skip_bootstrap))


@cli.command()
@cluster_options
@click.option('--index', type=int, help='워커 번호')
@click.option('--skip-bootstrap', is_flag=True, help='로컬 부트스트랩 생략')
@click.option('--debug', is_flag=True, help='디버그 모드')
def worker(config, cluster_id, parameter_name, region, channel, index, skip_bootstrap, debug):
    """조인 명령어 대기 후 워커 노드 조인"""
    cfg = load_config(config, cluster_id, parameter_name, region, channel)
    if index is not None:
        cfg.worker.index = index
    ensure_valid(cfg)

    orchestrator = RoleOrchestrator(cfg, "worker", debug)
    sys.exit(orchestrator.run(skip_bootstrap))


@cli.command()
@cluster_options
@click.option('--ttl', help='토큰 유효 기간 (예: 24h)')
@click.option('--debug', is_flag=True, help='디버그 모드')
def publish(config, cluster_id, parameter_name, region, channel, ttl, debug):
    """조인 명령어만 다시 생성하여 게시"""
    cfg = load_config(config, cluster_id, parameter_name, region, channel)
    ensure_valid(cfg)

    orchestrator = RoleOrchestrator(cfg, "master", debug)
    code = orchestrator.execute(lambda node: node.publish_join_credential(ttl))
    orchestrator.show_summary()
    orchestrator.logger.close()
    sys.exit(code)


@cli.command("fetch-credential")
@cluster_options
@click.option('--attempts', type=int, help='최대 조회 횟수')
@click.option('--interval', type=float, help='조회 간격 (초)')
@click.option('--debug', is_flag=True, help='디버그 모드')
def fetch_credential(config, cluster_id, parameter_name, region, channel, attempts, interval, debug):
    """유효한 조인 명령어가 게시될 때까지 대기 후 출력 (저장소는 변경하지 않음)"""
    cfg = load_config(config, cluster_id, parameter_name, region, channel)
    ensure_valid(cfg)

    orchestrator = RoleOrchestrator(cfg, "worker", debug)
    found = {}

    def action(node):
        found["credential"] = node.await_join_credential(attempts, interval)

    code = orchestrator.execute(action)
    orchestrator.logger.close()

    if code == EXIT_OK:
        credential = found["credential"]
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("항목", style="cyan")
        table.add_column("값")
        table.add_row("엔드포인트", credential.endpoint or "[yellow]없음[/yellow]")
        table.add_row("토큰", credential.token)
        table.add_row("CA 해시", credential.ca_cert_hash)
        console.print(table)
        click.echo(credential.to_command())
    sys.exit(code)


@cli.command("sample-config")
@click.argument('output', type=click.Path(), default='./config.yaml')
def sample_config(output):
    """샘플 설정 파일 생성"""
    cfg = Config()
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print(f"[cyan]설정 파일을 편집한 후 다음 명령어로 실행하세요:[/cyan]")
    console.print(f"[cyan]  k8s-bootstrap-agent master --config {output}[/cyan]")
    console.print(f"[cyan]  k8s-bootstrap-agent worker --config {output} --index 1[/cyan]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
def validate(config):
    """설정 파일 유효성 검사"""
    try:
        cfg = Config(config)
    except Exception as e:
        console.print(f"[red]✗ 설정 파일 오류: {str(e)}[/red]")
        sys.exit(EXIT_FATAL)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("클러스터 ID", cfg.cluster.cluster_id or "[red]미설정[/red]")
    table.add_row("파라미터", cfg.parameter_name)
    table.add_row("리전", cfg.cluster.region)
    table.add_row("채널", cfg.cluster.channel)
    table.add_row("Pod CIDR", cfg.kubernetes.pod_cidr)
    table.add_row("워커 대기", f"{cfg.worker.max_attempts}회 x {cfg.worker.poll_interval}초")
    console.print(table)

    problems = cfg.validate()
    if problems:
        for problem in problems:
            console.print(f"[red]✗ {problem}[/red]")
        sys.exit(EXIT_FATAL)
    console.print("[green]✓ 설정 파일이 유효합니다.[/green]")


@cli.command()
@click.option('--config', '-c', type=click.Path(exists=True), help='설정 파일 경로')
@click.option('--role', type=click.Choice(["master", "worker"]), default="worker", help='노드 역할')
def status(config, role):
    """완료 표시 파일 확인"""
    cfg = Config(config)
    path = cfg.agent.master_status_file if role == "master" else cfg.agent.worker_status_file
    value = read_marker(path)
    expected = MASTER_SUCCESS if role == "master" else WORKER_SUCCESS

    if value == expected:
        console.print(f"[green]✓ {role}: {value} ({path})[/green]")
        return
    console.print(f"[yellow]{role}: 완료되지 않음 ({path})[/yellow]")
    sys.exit(EXIT_FATAL)


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
