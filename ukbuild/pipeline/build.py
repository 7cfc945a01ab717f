"""Build pipeline.

This module provides the high-level build API:
- build(): merge the template, resolve and pull dependencies, select
  targets, then run configure -> prepare -> build for every selected target
- run_stage(): stage wrapper emitting start/end/error events
- properclean(): remove all build output of a project

Setup problems (usage conflicts, resolution errors, empty selections)
abort immediately. Stage failures are attributed to their target; in
best-effort mode the loop moves on to the next target, in fail-fast mode
the first StageError propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from ukbuild.errors import EmptySelectionError, OperationCancelledError, StageError, UkbuildError
from ukbuild.pipeline.models import BuildReport, TargetResult
from ukbuild.pipeline.pull import with_template
from ukbuild.pipeline.resolve import pull_packages, resolve_components
from ukbuild.pipeline.select import check_selection, select_targets
from ukbuild.project.loader import Project, load_project
from ukbuild.project.make import MakeOptions, resolve_jobs
from ukbuild.types import AUTO_FORMAT, BatchMode, Stage, StageEvent, StageStatus

if TYPE_CHECKING:
    from ukbuild.context import Context
    from ukbuild.project.models import Target

logger = logging.getLogger(__name__)

EventCallback = Callable[[StageEvent], None]
T = TypeVar("T")


@dataclass
class BuildOptions:
    """Options of the build pipeline.

    Attributes:
        architecture: Architecture filter.
        platform: Platform filter.
        target: Explicit target name (exclusive with the two filters).
        manager: Package manager format used to resolve components.
        jobs: Explicit make job count (0 = derive).
        fast: Use one job per CPU when ``jobs`` is 0.
        no_cache: Bypass cached indexes and archives.
        no_configure: Skip the configure stage.
        no_fetch: Do not fetch remote sources during prepare.
        no_prepare: Skip the prepare stage.
        save_build_log: File receiving the build stage output.
        mode: Failure policy across targets.
    """

    architecture: str = ""
    platform: str = ""
    target: str = ""
    manager: str = AUTO_FORMAT
    jobs: int = 0
    fast: bool = False
    no_cache: bool = False
    no_configure: bool = False
    no_fetch: bool = False
    no_prepare: bool = False
    save_build_log: Path | None = None
    mode: BatchMode = BatchMode.BEST_EFFORT


def run_stage(
    ctx: Context,
    target: Target,
    stage: Stage,
    action: Callable[[], T],
    on_event: EventCallback | None = None,
) -> T:
    """Run one stage of ``target``, emitting events around it.

    Raises:
        StageError: If the stage fails.
        OperationCancelledError: If the invocation was cancelled.
    """

    def emit(status: StageStatus, error: str | None = None) -> None:
        if on_event is not None:
            on_event(StageEvent(target.name, stage, status, error))

    ctx.check(f"{stage.value} of {target.name}")
    emit(StageStatus.STARTED)
    try:
        result = action()
    except OperationCancelledError:
        emit(StageStatus.FAILED, "cancelled")
        raise
    except (UkbuildError, OSError) as e:
        emit(StageStatus.FAILED, str(e))
        raise StageError(stage, target.name, e) from e
    emit(StageStatus.SUCCEEDED)
    return result


def failed_result(error: StageError, **extra: str | None) -> TargetResult:
    cause_code = getattr(error.cause, "code", None)
    return TargetResult(
        target=error.target,
        success=False,
        failed_stage=error.stage,
        error=str(error.cause),
        error_code=cause_code if isinstance(cause_code, str) else error.code,
        **extra,
    )


def build_target(
    ctx: Context,
    project: Project,
    target: Target,
    options: BuildOptions,
    on_event: EventCallback | None = None,
) -> Path:
    """Run configure -> prepare -> build for a single target.

    Returns:
        Path of the built kernel image.

    Raises:
        StageError: On the first failing stage.
    """
    jobs = resolve_jobs(options.jobs, options.fast)
    timeout = ctx.settings.make_timeout

    if not options.no_configure:
        run_stage(
            ctx,
            target,
            Stage.CONFIGURE,
            lambda: project.configure(
                target,
                None,
                MakeOptions(silent=True, timeout=timeout),
                ctx.cancel,
            ),
            on_event,
        )

    if not options.no_prepare:
        run_stage(
            ctx,
            target,
            Stage.PREPARE,
            lambda: project.prepare(
                target,
                MakeOptions(jobs=jobs, timeout=timeout),
                ctx.cancel,
                fetch=not options.no_fetch,
            ),
            on_event,
        )

    return run_stage(
        ctx,
        target,
        Stage.BUILD,
        lambda: project.build(
            target,
            MakeOptions(jobs=jobs, log_path=options.save_build_log, timeout=timeout),
            ctx.cancel,
        ),
        on_event,
    )


def build(
    ctx: Context,
    workdir: Path,
    options: BuildOptions | None = None,
    on_event: EventCallback | None = None,
) -> BuildReport:
    """Build the selected targets of the project in ``workdir``.

    Args:
        ctx: Invocation context.
        workdir: Project directory.
        options: Build options.
        on_event: Optional callback receiving stage events.

    Returns:
        BuildReport with one result per selected target.

    Raises:
        UsageConflictError: If target and arch/plat filters are combined.
        ProjectError: If the project cannot be loaded.
        ResolutionError: If a component does not resolve to one package.
        EmptySelectionError: If no target matches.
        StageError: In fail-fast mode, on the first failing stage.
    """
    options = options or BuildOptions()
    check_selection(options.architecture, options.platform, options.target)

    manager = ctx.registry.route(options.manager)
    project = with_template(ctx, load_project(workdir), manager, no_cache=options.no_cache)

    packages = resolve_components(ctx, manager, project.components(), options.no_cache)
    pulled = pull_packages(ctx, packages, project.workdir, no_cache=options.no_cache)

    selected = select_targets(
        project.targets(), options.architecture, options.platform, options.target
    )
    if not selected:
        raise EmptySelectionError("build")

    report = BuildReport(pulled=pulled)
    for target in selected:
        try:
            kernel = build_target(ctx, project, target, options, on_event)
        except StageError as e:
            logger.error("Target %s (%s): %s", target.name, target.plat_arch_name, e)
            if options.mode is BatchMode.FAIL_FAST:
                raise
            report.results.append(failed_result(e))
            continue
        logger.info("Built %s: %s", target.name, kernel)
        report.results.append(
            TargetResult(target=target.name, success=True, output=str(kernel))
        )
    return report


def properclean(ctx: Context, workdir: Path) -> None:
    """Remove every build output of the project in ``workdir``."""
    project = load_project(workdir)
    ctx.check("properclean")
    project.properclean(MakeOptions(timeout=ctx.settings.make_timeout), ctx.cancel)


__all__ = [
    "BuildOptions",
    "EventCallback",
    "build",
    "build_target",
    "properclean",
    "run_stage",
]
