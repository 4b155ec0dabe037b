"""
조인 명령어(JoinCredential) 파싱 및 문법 검증

Parameter Store 에서 읽어온 문자열은 경계에서 한 번만 파싱되어
구조화된 값(endpoint, token, ca_cert_hash)으로 kubeadm 에 전달된다.
문자열을 셸 명령으로 다시 해석(eval)하지 않는다.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from .exceptions import CredentialError

DEFAULT_PLACEHOLDER = "placeholder"

TOKEN_OPTION = "token"
HASH_OPTION = "discovery-token-ca-cert-hash"

SAFE_WORD_RE = re.compile(r"^[A-Za-z0-9._:/=@\[\]-]+$")
ENDPOINT_RE = re.compile(r"^[A-Za-z0-9.\-\[\]:]+:\d{1,5}$")
TOKEN_RE = re.compile(r"^[A-Za-z0-9]+\.[A-Za-z0-9]+$")
CA_HASH_RE = re.compile(r"^sha256:[0-9A-Fa-f]+$")
DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def parse_duration(value: str) -> timedelta:
    """Go 스타일 기간 문자열 (24h, 1h30m, 24h0m0s, 90s) 을 timedelta 로 변환"""
    text = (value or "").strip()
    if text == "0":
        return timedelta(0)
    match = DURATION_RE.match(text)
    if not text or not match or not any(match.groups()):
        raise ValueError(f"invalid duration: {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


@dataclass(frozen=True)
class JoinCredential:
    """클러스터 조인에 필요한 구조화된 자격 정보"""
    token: str
    ca_cert_hash: str
    endpoint: Optional[str] = None
    ttl: Optional[timedelta] = None
    issued_at: Optional[datetime] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.ttl is None or self.issued_at is None or not self.ttl:
            return None
        return self.issued_at + self.ttl

    def join_args(self) -> List[str]:
        """kubeadm 인자 목록 (실행 파일 이름 제외)"""
        args = ["join"]
        if self.endpoint:
            args.append(self.endpoint)
        args.extend([f"--{TOKEN_OPTION}", self.token, f"--{HASH_OPTION}", self.ca_cert_hash])
        return args

    def to_command(self) -> str:
        """Parameter Store 에 저장되는 정규화된 조인 명령어"""
        return " ".join(["kubeadm"] + self.join_args())

    def __str__(self) -> str:
        return self.to_command()


def parse_join_command(text: Optional[str],
                       placeholder: Optional[str] = DEFAULT_PLACEHOLDER,
                       ttl: Optional[timedelta] = None,
                       issued_at: Optional[datetime] = None) -> JoinCredential:
    """조인 명령어 문자열을 파싱

    허용 문법: [kubeadm] join [<host:port>] --token <t> --discovery-token-ca-cert-hash sha256:<hex>
    옵션은 ``--name value`` 또는 ``--name=value`` 형식 모두 허용한다.

    Raises:
        CredentialError: 빈 값, 플레이스홀더, 문법 오류
    """
    if not isinstance(text, str) or not text.strip():
        raise CredentialError("join command is empty")

    stripped = text.strip()
    if placeholder is not None and stripped == placeholder.strip():
        raise CredentialError("join command is still the placeholder value")

    words = stripped.split()
    for word in words:
        if not SAFE_WORD_RE.match(word):
            raise CredentialError(f"join command contains an unsafe word: {word!r}")

    if words[0] == "kubeadm":
        words = words[1:]
    if not words or words[0] != "join":
        raise CredentialError("join command must start with 'join'")

    endpoint = None
    options = {}
    rest = words[1:]
    i = 0
    while i < len(rest):
        word = rest[i]
        if word.startswith("--"):
            name, sep, value = word[2:].partition("=")
            if not sep:
                if i + 1 >= len(rest) or rest[i + 1].startswith("--"):
                    raise CredentialError(f"option --{name} has no value")
                value = rest[i + 1]
                i += 1
            if name not in (TOKEN_OPTION, HASH_OPTION):
                # --v 같은 일반 kubeadm 플래그도 거부: 게시 값은 토큰과 CA 해시만 전달
                raise CredentialError(f"unsupported option --{name}")
            if name in options:
                raise CredentialError(f"option --{name} given more than once")
            options[name] = value
        else:
            if endpoint is not None:
                raise CredentialError(f"unexpected argument {word!r}")
            if not ENDPOINT_RE.match(word):
                raise CredentialError(f"invalid endpoint {word!r}")
            endpoint = word
        i += 1

    token = options.get(TOKEN_OPTION)
    ca_cert_hash = options.get(HASH_OPTION)
    if not token:
        raise CredentialError("join command has no --token")
    if not ca_cert_hash:
        raise CredentialError("join command has no --discovery-token-ca-cert-hash")
    if not TOKEN_RE.match(token):
        raise CredentialError("token has an invalid format")
    if not CA_HASH_RE.match(ca_cert_hash):
        raise CredentialError("discovery hash must be sha256:<hex>")

    return JoinCredential(
        token=token,
        ca_cert_hash=ca_cert_hash,
        endpoint=endpoint,
        ttl=ttl,
        issued_at=issued_at,
    )


def is_valid_credential(text: Optional[str], placeholder: Optional[str] = DEFAULT_PLACEHOLDER) -> bool:
    """문법적으로 유효한 조인 명령어인지 확인"""
    try:
        parse_join_command(text, placeholder)
    except CredentialError:
        return False
    return True
