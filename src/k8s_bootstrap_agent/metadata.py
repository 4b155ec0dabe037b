"""
인스턴스 메타데이터 (IMDSv2) 클라이언트
토큰 발급 후 토큰으로 로컬 IP 를 조회하는 2단계 방식
"""

import ipaddress
from typing import Optional

import requests

from .exceptions import MetadataError

METADATA_URL = "http://169.254.169.254"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"


class InstanceMetadataClient:
    """IMDSv2 클라이언트"""

    def __init__(self, base_url: str = METADATA_URL, token_ttl: int = 21600,
                 timeout: int = 5, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.token_ttl = token_ttl
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_token(self) -> str:
        """세션 토큰 발급 (PUT)"""
        try:
            response = self.session.put(
                f"{self.base_url}/latest/api/token",
                headers={TOKEN_TTL_HEADER: str(self.token_ttl)},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise MetadataError(f"Failed to obtain metadata token: {e}")

        token = response.text.strip()
        if not token:
            raise MetadataError("Metadata service returned an empty token")
        return token

    def get(self, path: str) -> str:
        """토큰을 사용해 메타데이터 값 조회"""
        token = self.get_token()
        try:
            response = self.session.get(
                f"{self.base_url}/latest/meta-data/{path.lstrip('/')}",
                headers={TOKEN_HEADER: token},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise MetadataError(f"Failed to read metadata {path}: {e}")
        return response.text.strip()

    def local_ipv4(self) -> str:
        """인스턴스 사설 IP 조회 및 검증"""
        value = self.get("local-ipv4")
        return validate_ip(value)


def validate_ip(value: str) -> str:
    """IPv4/IPv6 주소 형식 확인"""
    try:
        return str(ipaddress.ip_address((value or "").strip()))
    except ValueError:
        raise MetadataError(f"IP 주소 확인 실패: {value!r}")
