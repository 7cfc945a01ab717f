"""Make runner for Unikraft build invocations.

This module handles:
- Composing ``make`` commands against the Unikraft core build system
- Executing them with subprocess
- Streaming stdout/stderr to the logger and an optional log file
- Enforcing timeouts and cooperative cancellation
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from ukbuild.errors import OperationCancelledError, UkbuildError

if TYPE_CHECKING:
    from ukbuild.context import CancelToken

logger = logging.getLogger(__name__)


class MakeError(UkbuildError):
    """Raised when a make invocation fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "make_error",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


@dataclass
class MakeOptions:
    """Options applied to a single make invocation.

    Attributes:
        jobs: Value for ``-j`` (None runs make serially).
        silent: Pass ``-s`` and log output at debug level only.
        log_path: Optional file receiving the full output.
        timeout: Timeout in seconds (None = no timeout).
        env: Extra environment variables.
    """

    jobs: int | None = None
    silent: bool = False
    log_path: Path | None = None
    timeout: int | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class MakeResult:
    """Result of a successful make invocation."""

    command: str
    started_at: datetime
    finished_at: datetime
    log_path: Path | None = None


def resolve_jobs(jobs: int, fast: bool) -> int | None:
    """Resolve the parallelism handed to make.

    An explicit job count wins; otherwise ``fast`` enables one job per CPU
    and the default is a serial build.
    """
    if jobs > 0:
        return jobs
    if fast:
        return os.cpu_count() or 1
    return None


def compose_make_command(
    core_dir: Path,
    app_dir: Path,
    build_dir: Path,
    goals: Sequence[str] = (),
    libraries: Sequence[Path] = (),
    variables: dict[str, str] | None = None,
    options: MakeOptions | None = None,
) -> list[str]:
    """Compose a make command against the Unikraft core.

    Args:
        core_dir: Unikraft core source directory (``-C``).
        app_dir: Application directory (``A=``).
        build_dir: Output directory (``O=``).
        goals: Make goals, e.g. ``["prepare"]``.
        libraries: Library directories (``L=``, colon separated).
        variables: Additional ``KEY=VALUE`` make variables.
        options: Invocation options (jobs, silent).

    Returns:
        Command as list of strings suitable for subprocess.
    """
    options = options or MakeOptions()
    cmd = ["make"]

    if options.silent:
        cmd.append("-s")
    if options.jobs:
        cmd.append(f"-j{options.jobs}")

    cmd.extend(["-C", str(core_dir)])
    cmd.append(f"A={app_dir}")
    cmd.append(f"O={build_dir}")

    if libraries:
        cmd.append("L=" + ":".join(str(lib) for lib in libraries))

    for key, value in (variables or {}).items():
        cmd.append(f"{key}={value}")

    cmd.extend(goals)
    return cmd


def _pump(stream: TextIO, level: int, log_file: TextIO | None, lock: threading.Lock) -> None:
    for line in stream:
        text = line.rstrip("\n")
        logger.log(level, "%s", text)
        if log_file is not None:
            with lock:
                log_file.write(line)


def run_make(
    cmd: list[str],
    cwd: Path,
    options: MakeOptions | None = None,
    cancel: CancelToken | None = None,
) -> MakeResult:
    """Execute a make command.

    Standard output is logged at INFO (DEBUG when silent) and standard error
    at ERROR. Both are appended to ``options.log_path`` when set.

    Args:
        cmd: Command from compose_make_command().
        cwd: Working directory.
        options: Invocation options.
        cancel: Optional cancellation token; the child is terminated when set.

    Returns:
        MakeResult with execution details.

    Raises:
        MakeError: If make cannot be started, exits non-zero or times out.
        OperationCancelledError: If cancelled while running.
    """
    options = options or MakeOptions()
    cmd_str = shlex.join(cmd)
    logger.debug("Executing: %s (cwd=%s)", cmd_str, cwd)

    if cancel is not None:
        cancel.raise_if_cancelled(cmd_str)

    env: dict[str, str] | None = None
    if options.env:
        env = dict(os.environ)
        env.update(options.env)

    started_at = datetime.now(timezone.utc)
    log_file: TextIO | None = None
    if options.log_path is not None:
        options.log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = options.log_path.open("a", encoding="utf-8")
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.flush()

    try:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except OSError as e:
            raise MakeError(
                f"Failed to execute make: {e}", code="execution_error"
            ) from e

        lock = threading.Lock()
        out_level = logging.DEBUG if options.silent else logging.INFO
        pumps = [
            threading.Thread(
                target=_pump, args=(proc.stdout, out_level, log_file, lock), daemon=True
            ),
            threading.Thread(
                target=_pump, args=(proc.stderr, logging.ERROR, log_file, lock), daemon=True
            ),
        ]
        for pump in pumps:
            pump.start()

        deadline = (
            started_at.timestamp() + options.timeout if options.timeout else None
        )
        while True:
            try:
                exit_code = proc.wait(timeout=0.2)
                break
            except subprocess.TimeoutExpired:
                pass
            if cancel is not None and cancel.cancelled:
                proc.terminate()
                proc.wait()
                raise OperationCancelledError(f"cancelled: {cmd_str}")
            if deadline is not None and datetime.now(timezone.utc).timestamp() > deadline:
                proc.kill()
                proc.wait()
                raise MakeError(
                    f"make timed out after {options.timeout} seconds",
                    exit_code=-1,
                    code="make_timeout",
                )

        for pump in pumps:
            pump.join()

        finished_at = datetime.now(timezone.utc)
        if log_file is not None:
            log_file.write(f"# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")

        if exit_code != 0:
            raise MakeError(
                f"make exited with code {exit_code}: {cmd_str}",
                exit_code=exit_code,
                code="make_failed",
            )

        return MakeResult(
            command=cmd_str,
            started_at=started_at,
            finished_at=finished_at,
            log_path=options.log_path,
        )
    finally:
        if log_file is not None:
            log_file.close()


__all__ = [
    "MakeError",
    "MakeOptions",
    "MakeResult",
    "compose_make_command",
    "resolve_jobs",
    "run_make",
]
