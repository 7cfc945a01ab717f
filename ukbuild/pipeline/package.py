"""Packaging pipeline.

For every selected target: resolve the package format, route to the
package manager handling it, and pack a snapshot of the target carrying
only what packaging needs (possibly under a new name).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ukbuild.errors import EmptySelectionError, StageError
from ukbuild.packmanager.base import PackOptions
from ukbuild.packmanager.router import is_auto
from ukbuild.pipeline.build import EventCallback, failed_result, run_stage
from ukbuild.pipeline.models import PackageReport, TargetResult
from ukbuild.pipeline.pull import with_template
from ukbuild.pipeline.select import check_selection, select_targets
from ukbuild.project.loader import load_project
from ukbuild.project.models import Target
from ukbuild.types import AUTO_FORMAT, UK_FULLVERSION, BatchMode, Stage

if TYPE_CHECKING:
    from ukbuild.context import Context

logger = logging.getLogger(__name__)


@dataclass
class PackageOptions:
    """Options of the packaging pipeline.

    Attributes:
        architecture: Architecture filter.
        platform: Platform filter.
        target: Explicit target name.
        format: Requested package format ("auto" defers to the target).
        name: Name given to the packaged target ("" keeps the target name).
        output: Output location handed to the package manager.
        initrd: Initrd overriding the target's.
        with_kconfig: Include the target KConfig in the package.
        dbg: Package the debug kernel image.
        mode: Failure policy across targets.
    """

    architecture: str = ""
    platform: str = ""
    target: str = ""
    format: str = AUTO_FORMAT
    name: str = ""
    output: str = ""
    initrd: str = ""
    with_kconfig: bool = False
    dbg: bool = False
    mode: BatchMode = BatchMode.FAIL_FAST


def resolve_format(requested: str, target: Target) -> str:
    """Explicit format, else the target's declared format, else "auto"."""
    if not is_auto(requested):
        return requested
    if target.format:
        return target.format
    return AUTO_FORMAT


def package_label(target: Target, fmt: str) -> str:
    label = f"packaging {target.name}"
    if not is_auto(fmt):
        label += f" ({fmt})"
    return label


def kernel_version(target: Target) -> str:
    """Full Unikraft version the target was built with ("" if unknown)."""
    value = target.kconfig.get(UK_FULLVERSION) or target.kconfig.get(
        f"CONFIG_{UK_FULLVERSION}", ""
    )
    return value.strip('"')


def pack_options(target: Target, options: PackageOptions) -> PackOptions:
    """Build the package manager options for ``target``."""
    return PackOptions(
        kconfig=options.with_kconfig,
        output=options.output,
        initrd=options.initrd,
        kernel_version=kernel_version(target),
    )


def packaging_snapshot(target: Target, options: PackageOptions) -> Target:
    """Fresh target carrying only the fields meaningful to packaging."""
    kernel = target.kernel_dbg_path if options.dbg else target.kernel
    return Target(
        name=options.name or target.name,
        architecture=target.architecture,
        platform=target.platform,
        kernel=kernel,
        kernel_debug=options.dbg or target.kernel_debug,
        kconfig=target.kconfig,
        initrd=target.initrd,
        command=target.command,
    )


def package(
    ctx: Context,
    workdir: Path,
    options: PackageOptions | None = None,
    on_event: EventCallback | None = None,
) -> PackageReport:
    """Package the selected targets of the project in ``workdir``.

    Returns:
        PackageReport with one result per selected target.

    Raises:
        UsageConflictError: If target and arch/plat filters are combined.
        EmptySelectionError: If no target matches.
        UnsupportedFormatError: If a resolved format has no backend.
        StageError: In fail-fast mode, on the first failing pack.
    """
    options = options or PackageOptions()
    check_selection(options.architecture, options.platform, options.target)

    project = with_template(ctx, load_project(workdir), ctx.registry.default)
    selected = select_targets(
        project.targets(), options.architecture, options.platform, options.target
    )
    if not selected:
        raise EmptySelectionError("package")

    report = PackageReport()
    for target in selected:
        fmt = resolve_format(options.format, target)
        label = package_label(target, fmt)
        manager = ctx.registry.route(fmt)
        logger.info("%s", label)

        snapshot = packaging_snapshot(target, options)
        popts = pack_options(target, options)
        try:
            packed = run_stage(
                ctx,
                target,
                Stage.PACK,
                lambda: manager.pack(snapshot, popts),
                on_event,
            )
        except StageError as e:
            logger.error("%s failed: %s", label, e.cause)
            if options.mode is BatchMode.FAIL_FAST:
                raise
            report.results.append(failed_result(e, label=label, format=fmt))
            continue

        path = getattr(packed, "path", None)
        report.results.append(
            TargetResult(
                target=target.name,
                success=True,
                label=label,
                format=getattr(packed, "format", fmt),
                output=str(path) if path is not None else None,
            )
        )
    return report


__all__ = [
    "PackageOptions",
    "kernel_version",
    "pack_options",
    "package",
    "package_label",
    "packaging_snapshot",
    "resolve_format",
]
