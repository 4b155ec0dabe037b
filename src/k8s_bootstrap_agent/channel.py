"""
조정 채널 (CoordinationChannel)
마스터와 워커가 조인 명령어를 주고받는 공유 키-값 저장소
"""

import threading
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ChannelError


class CoordinationChannel:
    """공유 키-값 저장소 인터페이스

    단일 작성자(마스터) / 다중 독자(워커). 읽기는 저장소를 변경하지 않으며
    쓰기는 덮어쓰기(last-write-wins)이다.
    """

    def get(self, key: str) -> Optional[str]:
        """키 값 조회, 없으면 None"""
        raise NotImplementedError

    def put(self, key: str, value: str):
        """키 값 덮어쓰기"""
        raise NotImplementedError

    def ensure_placeholder(self, key: str, placeholder: str) -> bool:
        """키가 없을 때만 플레이스홀더 생성, 생성했으면 True"""
        raise NotImplementedError


class InMemoryCoordinationChannel(CoordinationChannel):
    """프로세스 내부 채널 (로컬 테스트/드라이런용)"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values = dict(initial or {})
        self._lock = threading.Lock()
        self.reads = 0
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            self.reads += 1
            return self._values.get(key)

    def put(self, key: str, value: str):
        with self._lock:
            self.writes += 1
            self._values[key] = value

    def ensure_placeholder(self, key: str, placeholder: str) -> bool:
        with self._lock:
            if key in self._values:
                return False
            self.writes += 1
            self._values[key] = placeholder
            return True


class SSMCoordinationChannel(CoordinationChannel):
    """AWS SSM Parameter Store 채널 (SecureString)"""

    def __init__(self, region: str, client=None, key_id: Optional[str] = None):
        self.region = region
        self.key_id = key_id
        self.ssm = client or boto3.client("ssm", region_name=region)

    def get(self, key: str) -> Optional[str]:
        try:
            response = self.ssm.get_parameter(Name=key, WithDecryption=True)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
                return None
            raise ChannelError(f"Unexpected ClientError on get_parameter({key}): {e}")
        except BotoCoreError as e:
            raise ChannelError(f"get_parameter({key}) failed: {e}")

        parameter = response.get("Parameter")
        if not parameter:
            raise ChannelError(f"get_parameter({key}) returned an empty Parameter")
        return parameter.get("Value")

    def _put(self, key: str, value: str, overwrite: bool):
        kwargs = {
            "Name": key,
            "Value": value,
            "Type": "SecureString",
            "Overwrite": overwrite,
        }
        if self.key_id:
            kwargs["KeyId"] = self.key_id
        self.ssm.put_parameter(**kwargs)

    def put(self, key: str, value: str):
        try:
            self._put(key, value, overwrite=True)
        except (ClientError, BotoCoreError) as e:
            raise ChannelError(f"put_parameter({key}) failed: {e}")

    def ensure_placeholder(self, key: str, placeholder: str) -> bool:
        try:
            self._put(key, placeholder, overwrite=False)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ParameterAlreadyExists":
                return False
            raise ChannelError(f"put_parameter({key}) failed: {e}")
        except BotoCoreError as e:
            raise ChannelError(f"put_parameter({key}) failed: {e}")
        return True


def create_channel(kind: str, region: str) -> CoordinationChannel:
    """설정 값에 따라 채널 생성"""
    if kind == "ssm":
        return SSMCoordinationChannel(region)
    if kind == "memory":
        return InMemoryCoordinationChannel()
    raise ChannelError(f"unsupported channel type: {kind}")
