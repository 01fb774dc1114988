"""
tenancy_kit
-----------

Azure 테넌시 부트스트랩 CLI 패키지.
관리 그룹 계층, 리소스 그룹, 서비스 주체, OIDC 페더레이션 자격 증명, 청구 역할을
.env 기반 설정으로 한 번에 준비하고, 결과 자격 증명을 Google Cloud Secret Manager 에 저장한다.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "orchestrator",
]
