import sys
from typing import Callable, Optional

import click

from .azure_cli import AzureCli
from .config import ENV_FILE_DEFAULT, TenancyConfig, load_env_files
from .gcp_secrets import SecretStore
from .logging_utils import setup_logging, get_logger
from .orchestrator import apply_all, init_env_file, output_all, save_secrets, set_billing_scope


logger = get_logger(__name__)


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help=f"{ENV_FILE_DEFAULT} 파일이 있는 작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-vv 는 google 라이브러리 로그까지)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """Azure 테넌시(관리 그룹/서비스 주체/OIDC 신뢰) 부트스트랩 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _common_options(func: Callable) -> Callable:
    func = click.option(
        "-l", "--location", "location", default=None, help="Location. 값 목록: 'az account list-locations'"
    )(func)
    func = click.option("-d", "--domain", "domain", default=None, help="조직 도메인 이름 (예: example.com)")(func)
    return func


def _fail(message: str) -> None:
    click.secho(f"[ERROR] {message}", fg="red", bold=True, err=True)
    sys.exit(1)


def _load_config(ctx: click.Context, command: str, domain: Optional[str], location: Optional[str]) -> TenancyConfig:
    base_dir: str = ctx.obj["chdir"]
    try:
        load_env_files(base_dir)
        cfg = TenancyConfig.from_env(domain=domain, location=location)
        cfg.validate(command)
    except ValueError as e:
        click.echo(ctx.get_help(), err=True)
        _fail(f"설정 확인 실패: {e}")
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _check_prerequisites(az: AzureCli) -> None:
    click.secho("사전 요구사항 확인 중...", fg="green", bold=True)
    problems = az.check_prerequisites()
    if problems:
        for p in problems:
            click.secho(f"- {p}", fg="red", err=True)
        _fail("사전 요구사항 확인 실패")
    click.secho("사전 요구사항 확인: 통과", fg="green", bold=True)


def _run(label: str, func: Callable, *args, **kwargs):  # noqa: ANN002, ANN003, ANN202
    click.secho(f"실행: {label}", fg="green", bold=True)
    try:
        return func(*args, **kwargs)
    except Exception as e:  # noqa: BLE001
        logger.exception("%s 중 오류 발생", label)
        _fail(f"{label} 실패: {e}")


@main.command()
@_common_options
@click.pass_context
def init(ctx: click.Context, domain: Optional[str], location: Optional[str]) -> None:
    """.env 초기 파일을 생성하고 청구 정보를 선택합니다."""
    cfg = _load_config(ctx, "init", domain, location)
    az = AzureCli()
    _check_prerequisites(az)
    message = _run(".env 초기 파일 생성", init_env_file, cfg, az, base_dir=ctx.obj["chdir"])
    click.echo(message)
    click.secho("초기화 완료", fg="green", bold=True)


@main.command()
@_common_options
@click.pass_context
def apply(ctx: click.Context, domain: Optional[str], location: Optional[str]) -> None:
    """seed, 관리 그룹 계층, 단계별 서비스 주체를 Azure 에 적용합니다."""
    cfg = _load_config(ctx, "apply", domain, location)
    az = AzureCli()
    _check_prerequisites(az)
    summary = _run("Azure 구성 적용", apply_all, cfg, az)
    click.echo(summary)


@main.command()
@_common_options
@click.pass_context
def output(ctx: click.Context, domain: Optional[str], location: Optional[str]) -> None:
    """서비스 주체별 ASO 자격 증명 값과 청구 범위를 출력합니다."""
    cfg = _load_config(ctx, "output", domain, location)
    az = AzureCli()
    _check_prerequisites(az)
    report = _run("출력 조회", output_all, cfg, az)
    click.echo(report)


@main.command(name="save-secrets")
@_common_options
@click.option(
    "--retain-versions",
    "retain_versions",
    type=int,
    default=None,
    help="보존할 secret 버전 수. 지정하지 않으면 SECRET_RETAIN_VERSIONS, 그것도 없으면 모두 보존.",
)
@click.pass_context
def save_secrets_cmd(
    ctx: click.Context, domain: Optional[str], location: Optional[str], retain_versions: Optional[int]
) -> None:
    """자격 증명을 Google Cloud Secret Manager 에 저장합니다."""
    cfg = _load_config(ctx, "save-secrets", domain, location)
    if retain_versions is not None and retain_versions <= 0:
        _fail("--retain-versions 는 0 보다 커야 합니다.")
    az = AzureCli()
    _check_prerequisites(az)
    summary = _run("Secret Manager 저장", save_secrets, cfg, az, SecretStore(), retain_versions)
    click.echo(summary)


@main.command(name="set-billing-scope")
@_common_options
@click.pass_context
def set_billing_scope_cmd(ctx: click.Context, domain: Optional[str], location: Optional[str]) -> None:
    """청구 계정/청구 프로필/송장 섹션 값을 다시 선택해 .env 에 기록합니다."""
    _load_config(ctx, "set-billing-scope", domain, location)
    az = AzureCli()
    _check_prerequisites(az)
    billing = _run("청구 범위 설정", set_billing_scope, az, base_dir=ctx.obj["chdir"])
    click.echo(f"billing scope: {billing.scope_id}")


if __name__ == "__main__":
    main()
