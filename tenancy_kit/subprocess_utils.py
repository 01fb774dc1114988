"""
subprocess_utils
----------------

az CLI 등 외부 명령 실행 공통 유틸.

- 항상 stdout/stderr 를 캡처하고, 실패 시 CommandError 로 요약을 전달한다.
- TTY 에서 오래 걸리는 명령(관리 그룹 생성 등)은 stderr 에 스피너를 표시한다.
"""

from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from textwrap import shorten
from typing import Sequence

from .logging_utils import get_logger


logger = get_logger(__name__)


_BRAILLE_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
_ASCII_FRAMES = ["|", "/", "-", "\\"]

_DEFAULT_IDLE_SECONDS = 2.0
_DEFAULT_INTERVAL = 0.12


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """
    외부 명령이 0 이 아닌 종료 코드로 끝났을 때 발생.

    존재 여부 probe(show/describe) 처럼 "실패 = 없음" 으로 해석해야 하는 곳에서는
    이 예외만 잡는다. 명령 미설치/timeout 은 RuntimeError 로 그대로 전파된다.
    """

    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

        detail = ""
        if stderr.strip():
            detail = "\nstderr:\n" + shorten(stderr.strip(), width=2000)
        elif stdout.strip():
            detail = "\nstdout:\n" + shorten(stdout.strip(), width=2000)
        super().__init__(f"명령 실행 실패: {' '.join(self.cmd)} (exit={returncode}){detail}")


def _is_tty(stream) -> bool:  # noqa: ANN001
    try:
        return bool(getattr(stream, "isatty") and stream.isatty())
    except Exception:  # noqa: BLE001
        return False


def _parse_env_bool(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes = int(seconds // 60)
    sec = int(seconds % 60)
    return f"{minutes}m{sec:02d}s"


class _IdleSpinner:
    """
    idle_seconds 이상 끝나지 않은 명령에 대해서만 스피너 + 경과시간을 렌더링한다.
    """

    def __init__(
        self,
        message: str,
        *,
        stream=None,  # noqa: ANN001
        style: str = "braille",
        interval: float = _DEFAULT_INTERVAL,
        idle_seconds: float = _DEFAULT_IDLE_SECONDS,
    ) -> None:
        self._message = message
        self._stream = stream if stream is not None else sys.stderr
        self._frames = _ASCII_FRAMES if style.strip().lower() == "ascii" else _BRAILLE_FRAMES
        self._interval = max(float(interval), 0.02)
        self._idle_seconds = max(float(idle_seconds), 0.0)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_len = 0

    def _render(self, idx: int, elapsed: float) -> None:
        frame = self._frames[idx % len(self._frames)]
        text = f"{frame} {self._message}  {_format_elapsed(elapsed)}"
        self._last_len = max(self._last_len, len(text))
        self._stream.write("\r" + text)
        self._stream.flush()

    def start(self) -> None:
        if self._thread is not None:
            return
        started = time.monotonic()

        def _run() -> None:
            if self._stop.wait(self._idle_seconds):
                return
            idx = 0
            while not self._stop.is_set():
                self._render(idx, time.monotonic() - started)
                idx += 1
                self._stop.wait(self._interval)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        if self._last_len > 0:
            self._stream.write("\r" + (" " * self._last_len) + "\r")
            self._stream.flush()


def run_command(
    cmd: Sequence[str],
    *,
    timeout: float | None = 900.0,
    spinner_message: str | None = None,
    show_progress: bool | None = None,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    성공 시 RunResult 를 반환하고, 종료 코드가 0 이 아니면 CommandError 를 발생시킨다.
    """
    logger.debug("명령 실행: %s", " ".join(cmd))

    env_show = _parse_env_bool("TENANCY_SHOW_PROGRESS")
    effective_show = (
        bool(show_progress)
        if show_progress is not None
        else (env_show if env_show is not None else True)
    )
    idle = _parse_env_float("TENANCY_PROGRESS_IDLE_SECONDS")

    spinner: _IdleSpinner | None = None
    if effective_show and _is_tty(sys.stderr):
        spinner = _IdleSpinner(
            spinner_message or shorten(" ".join(cmd), width=72, placeholder="…"),
            stream=sys.stderr,
            style=os.getenv("TENANCY_PROGRESS_STYLE", "braille"),
            idle_seconds=idle if idle is not None else _DEFAULT_IDLE_SECONDS,
        )
        spinner.start()

    try:
        result = subprocess.run(  # noqa: S603
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise RuntimeError(
            f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (az CLI 가 설치되어 있는지 확인하세요)"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {' '.join(cmd)}"
        ) from e
    finally:
        if spinner is not None:
            spinner.stop()

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if stdout:
        logger.debug("명령 stdout: %s", shorten(stdout.strip(), width=2000))
    if stderr:
        logger.debug("명령 stderr: %s", shorten(stderr.strip(), width=2000))

    if result.returncode != 0:
        raise CommandError(cmd, result.returncode, stdout, stderr)

    return RunResult(returncode=result.returncode, stdout=stdout, stderr=stderr)
