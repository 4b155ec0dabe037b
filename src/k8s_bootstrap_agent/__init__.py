"""
K8s Bootstrap Agent
kubeadm 클러스터의 마스터 초기화와 워커 조인을 조율하는 노드 에이전트

Features:
- containerd / 커널 모듈 / sysctl / kubeadm 로컬 부트스트랩
- IMDSv2 기반 로컬 IP 확인
- SSM Parameter Store를 통한 조인 명령어 공유
- 제한된 재시도 폴링 및 상태 마커 파일
"""

__version__ = "1.0.0"
__author__ = "DevOps Team"
