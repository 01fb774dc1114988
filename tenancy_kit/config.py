from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .logging_utils import get_logger


logger = get_logger(__name__)


ENV_FILE_DEFAULT = ".env"

DEFAULT_ENVIRONMENTS = [
    "development/sandbox",
    "development/testing",
    "production/staging",
    "production/live",
]

# 관리 그룹 계층이 없는 특수 환경
SEED_STAGE = "seed"

DEFAULT_LOCATION = "uksouth"


def load_env_files(base_dir: str = ".", files: Optional[List[str]] = None) -> None:
    """
    base_dir 의 .env 파일을 로드한다. (파일이 없으면 조용히 건너뜀)
    """
    for name in files or [ENV_FILE_DEFAULT]:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


class NameValueMap:
    """
    "key=value" 항목들의 순서 있는 매핑.

    같은 키가 여러 번 나오면 첫 번째 값이 이긴다. 뒤쪽 값은 가려지므로
    duplicate_keys() 로 확인할 수 있게 해 둔다.
    """

    def __init__(self, items: Iterable[Tuple[str, str]] = ()) -> None:
        self._items: List[Tuple[str, str]] = [(k, v) for k, v in items]

    @classmethod
    def parse(cls, raw: Optional[str]) -> "NameValueMap":
        """
        "development=https://a,production=https://b" 형식 문자열을 파싱한다.
        "=" 가 없는 항목은 값이 빈 문자열인 키로 본다.
        """
        items: List[Tuple[str, str]] = []
        for part in (raw or "").split(","):
            part = part.strip()
            if not part:
                continue
            key, _, value = part.partition("=")
            items.append((key.strip(), value.strip()))
        return cls(items)

    def get(self, key: str) -> str:
        for k, v in self._items:
            if k == key:
                return v
        return ""

    def keys(self) -> List[str]:
        return [k for k, _ in self._items]

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def duplicate_keys(self) -> List[str]:
        seen: set[str] = set()
        dups: List[str] = []
        for k, _ in self._items:
            if k in seen and k not in dups:
                dups.append(k)
            seen.add(k)
        return dups

    def serialize(self) -> str:
        return ",".join(f"{k}={v}" for k, v in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"NameValueMap({self._items!r})"


def get_lifecycle_stage(env_path: str) -> str:
    """development/sandbox -> development"""
    if not env_path:
        raise ValueError("환경 이름이 필요합니다.")
    return env_path.split("/", 1)[0]


def get_name_prefix(org_domain: str) -> str:
    """example.co.uk -> example-co-uk"""
    if not org_domain:
        raise ValueError("조직 도메인이 필요합니다.")
    return org_domain.replace(".", "-")


def get_athena_project_name(org_domain: str, stage: str) -> str:
    """
    도메인 + 단계 로부터 결정적인 GCP 프로젝트 이름을 만든다.
    ("mf" + sha256 hex 앞 20자리)
    """
    if not org_domain:
        raise ValueError("조직 도메인이 필요합니다.")
    if not stage:
        raise ValueError("라이프사이클 단계가 필요합니다.")
    digest = hashlib.sha256(f"{get_name_prefix(org_domain)}{stage}".encode("utf-8")).hexdigest()
    return "mf" + digest[:20]


def build_lifecycle_stages(environments: Iterable[str]) -> List[str]:
    """
    환경 목록에서 라이프사이클 단계를 뽑아 첫 등장 순서대로 중복 제거한다.
    """
    stages: List[str] = []
    for env_path in environments:
        stage = get_lifecycle_stage(env_path)
        if stage not in stages:
            stages.append(stage)
    return stages


def write_env_var(filename: str, name: str, value: str) -> None:
    """
    .env 파일에 NAME=VALUE 를 기록한다.

    - 키가 없으면 마지막에 추가
    - 키가 있으면(주석 처리된 "# NAME=..." 포함) 첫 번째 줄을 제자리에서 교체하고
      뒤에 나오는 같은 키의 줄은 지운다.
    """
    if not filename:
        raise ValueError("파일 이름이 필요합니다.")
    if not name:
        raise ValueError("변수 이름이 필요합니다.")
    if not value:
        raise ValueError("변수 값이 필요합니다.")

    pattern = re.compile(rf"^#*[ \t]*{re.escape(name)}=.*$")
    lines: List[str] = []
    if os.path.exists(filename):
        with open(filename, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()

    out: List[str] = []
    replaced = False
    for line in lines:
        if not pattern.match(line):
            out.append(line)
        elif not replaced:
            out.append(f"{name}={value}")
            replaced = True

    if not replaced:
        out.append(f"{name}={value}")

    with open(filename, "w", encoding="utf-8") as f:
        f.write("\n".join(out) + "\n")


def _parse_optional_int(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} 는 정수여야 합니다: {raw!r}") from e


@dataclass
class TenancyConfig:
    # 필수 공통
    org_domain: str
    location: str = ""

    # 비어 있으면 'Tenant Root Group' 아래에 생성
    management_group_parent: str = ""
    environments: List[str] = field(default_factory=lambda: list(DEFAULT_ENVIRONMENTS))

    oidc_issuer_urls: NameValueMap = field(default_factory=NameValueMap)
    athena_projects: NameValueMap = field(default_factory=NameValueMap)

    billing_account_name: str = ""
    billing_profile_name: str = ""
    billing_invoice_section_name: str = ""

    # None 이면 모든 secret 버전을 보존
    secret_retain_versions: Optional[int] = None

    @property
    def name_prefix(self) -> str:
        return get_name_prefix(self.org_domain)

    @property
    def lifecycle_stages(self) -> List[str]:
        return build_lifecycle_stages(self.environments)

    @classmethod
    def from_mapping(
        cls,
        values: Mapping[str, Optional[str]],
        *,
        domain: Optional[str] = None,
        location: Optional[str] = None,
    ) -> "TenancyConfig":
        """
        .env 값(또는 os.environ) 으로부터 설정을 만든다.
        domain/location 인자는 파일 값보다 우선한다.
        """
        def get(name: str) -> str:
            return (values.get(name) or "").strip()

        environments = [e.strip() for e in get("ENVIRONMENTS").split(",") if e.strip()]

        cfg = cls(
            org_domain=domain or get("ORG_DOMAIN"),
            location=location or get("LOCATION"),
            management_group_parent=get("MANAGEMENT_GROUP_PARENT"),
            environments=environments or list(DEFAULT_ENVIRONMENTS),
            oidc_issuer_urls=NameValueMap.parse(get("OIDC_ISSUER_URLS")),
            athena_projects=NameValueMap.parse(get("ATHENA_PROJECTS")),
            billing_account_name=get("BILLING_ACCOUNT_NAME"),
            billing_profile_name=get("BILLING_PROFILE_NAME"),
            billing_invoice_section_name=get("BILLING_INVOICE_SECTION_NAME"),
            secret_retain_versions=_parse_optional_int(
                "SECRET_RETAIN_VERSIONS", values.get("SECRET_RETAIN_VERSIONS")
            ),
        )

        for env_path in cfg.environments:
            if any(not segment for segment in env_path.split("/")):
                raise ValueError(f"잘못된 환경 경로입니다: {env_path!r}")

        for map_name, mapping in (
            ("OIDC_ISSUER_URLS", cfg.oidc_issuer_urls),
            ("ATHENA_PROJECTS", cfg.athena_projects),
        ):
            for key in mapping.duplicate_keys():
                logger.warning(
                    "%s 에 '%s' 키가 중복되어 있습니다. 첫 번째 값만 사용됩니다.", map_name, key
                )

        return cfg

    @classmethod
    def from_env(cls, *, domain: Optional[str] = None, location: Optional[str] = None) -> "TenancyConfig":
        return cls.from_mapping(os.environ, domain=domain, location=location)

    def validate(self, command: str) -> None:
        """
        명령별 필수값을 확인하고, 누락된 것이 있으면 한 번에 ValueError 로 알린다.
        """
        missing: List[str] = []

        if not self.org_domain:
            missing.append("ORG_DOMAIN (--domain)")

        if command != "init":
            if not self.location:
                missing.append("LOCATION (--location)")
            if not self.oidc_issuer_urls:
                missing.append("OIDC_ISSUER_URLS")
            if command == "save-secrets" and not self.athena_projects:
                missing.append("ATHENA_PROJECTS")

        if missing:
            raise ValueError("필수 설정이 누락되었습니다: " + ", ".join(missing))

        if self.secret_retain_versions is not None and self.secret_retain_versions <= 0:
            raise ValueError("SECRET_RETAIN_VERSIONS 는 0 보다 커야 합니다.")
