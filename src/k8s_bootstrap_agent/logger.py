"""
로깅 시스템
단계(phase) 태그와 상태(INFO/SUCCESS/ERROR) 태그를 갖는 실행 단위 로거
"""

import logging
import os
from typing import Optional
from rich.logging import RichHandler
from rich.console import Console

console = Console()

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(phase)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class PhaseFilter(logging.Filter):
    """phase 속성이 없는 레코드에 기본 태그 부여"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "phase"):
            record.phase = "-"
        return True


class AgentLogger:
    """노드 1회 실행 범위의 로깅 컨텍스트

    프로세스 전역 싱글톤이 아니라 역할 실행마다 생성되어
    각 단계 함수에 명시적으로 전달된다.
    """

    def __init__(self, name: str = "k8s_bootstrap_agent",
                 log_dir: Optional[str] = None,
                 log_file_prefix: str = "k8s-agent",
                 log_level: str = "INFO",
                 debug: bool = False):
        self.name = name
        self.log_dir = log_dir
        self.log_level = logging.DEBUG if debug else getattr(logging, log_level.upper())
        self.debug_mode = debug
        self.log_file = None
        self.error_file = None

        self.logger = logging.getLogger(name)
        self.logger.setLevel(self.log_level)

        # 기존 핸들러 제거
        self.close()

        phase_filter = PhaseFilter()
        self.logger.addFilter(phase_filter)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            self.log_file = os.path.join(log_dir, f"{log_file_prefix}.log")
            self.error_file = os.path.join(log_dir, f"{log_file_prefix}-error.log")

            file_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

            file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(file_formatter)
            file_handler.addFilter(phase_filter)
            self.logger.addHandler(file_handler)

            error_handler = logging.FileHandler(self.error_file, encoding='utf-8')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            error_handler.addFilter(phase_filter)
            self.logger.addHandler(error_handler)

        # 콘솔 핸들러 (Rich)
        rich_handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=False,
            show_path=debug
        )
        rich_handler.setLevel(self.log_level)
        rich_handler.setFormatter(logging.Formatter("[%(phase)s] %(message)s"))
        rich_handler.addFilter(phase_filter)
        self.logger.addHandler(rich_handler)

    def _log(self, level: int, phase: str, message: str, exc_info: bool = False):
        self.logger.log(level, message, extra={"phase": phase}, exc_info=exc_info)

    def debug(self, phase: str, message: str):
        """디버그 로그"""
        self._log(logging.DEBUG, phase, message)

    def info(self, phase: str, message: str):
        """정보 로그"""
        self._log(logging.INFO, phase, message)

    def success(self, phase: str, message: str):
        """성공 로그"""
        self._log(SUCCESS, phase, message)

    def warning(self, phase: str, message: str):
        """경고 로그"""
        self._log(logging.WARNING, phase, message)

    def error(self, phase: str, message: str):
        """에러 로그"""
        self._log(logging.ERROR, phase, message)

    def exception(self, phase: str, message: str):
        """예외 로그 (트레이스백 포함)"""
        self._log(logging.ERROR, phase, message, exc_info=True)

    def banner(self, phase: str, title: str):
        """단계 시작 구분선"""
        self._log(logging.INFO, phase, "=" * 43)
        self._log(logging.INFO, phase, title)
        self._log(logging.INFO, phase, "=" * 43)

    def get_log_files(self) -> dict:
        """로그 파일 경로 반환"""
        return {
            "main_log": self.log_file,
            "error_log": self.error_file,
            "log_dir": self.log_dir
        }

    def close(self):
        """핸들러 해제"""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
        for log_filter in list(self.logger.filters):
            self.logger.removeFilter(log_filter)
