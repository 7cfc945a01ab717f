"""Pull orchestrator.

Two entry modes, chosen by the first argument:

- directory mode: the argument is a project directory; its components
  (after materializing and merging the template, if needed) are pulled;
- list mode: every argument is a locator handed to the package managers;
  locators nobody claims are skipped.

Pulling is best effort: failing queries, empty results and failing pulls
are reported as warnings and never abort the batch. Only problems with the
project itself (it cannot be loaded, its template cannot be resolved) are
fatal.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ukbuild.errors import OperationCancelledError, TemplateNotMaterializedError, UkbuildError
from ukbuild.packmanager.base import CatalogQuery, PackageManager
from ukbuild.packmanager.base import PullOptions as PackagePullOptions
from ukbuild.pipeline.models import PulledPackage, PullReport
from ukbuild.pipeline.resolve import component_query, resolve_one
from ukbuild.project.loader import Project, load_project, place_component
from ukbuild.types import AUTO_FORMAT, ComponentType

if TYPE_CHECKING:
    from ukbuild.context import Context

logger = logging.getLogger(__name__)


@dataclass
class PullOptions:
    """Options of the pull orchestrator.

    Attributes:
        manager: Package manager format ("auto" lets the registry decide).
        force_cache: Re-use cached indexes and archives.
        no_checksum: Skip archive checksum verification.
        workdir: Project directory receiving list-mode pulls
            (defaults to the current directory).
    """

    manager: str = AUTO_FORMAT
    force_cache: bool = False
    no_checksum: bool = False
    workdir: Path | None = None


@dataclass(frozen=True)
class PlannedQuery:
    """A catalog query bound to the package manager that will run it."""

    manager: PackageManager
    query: CatalogQuery


def _materialize_template(
    ctx: Context,
    project: Project,
    manager: PackageManager,
    no_cache: bool,
    checksum: bool,
) -> None:
    """Resolve and pull the project's template (exactly one match)."""
    template = project.template()
    if template is None:
        return
    query = CatalogQuery(
        name=template.name,
        types=(ComponentType.APP,),
        version=template.version,
        source=template.source,
        no_cache=no_cache,
    )
    ctx.check(f"resolving template {template.name}")
    package = resolve_one(manager, query, template.type_name_version())
    package.pull(
        PackagePullOptions(workdir=project.workdir, checksum=checksum, cache=not no_cache)
    )


def with_template(
    ctx: Context,
    project: Project,
    manager: PackageManager,
    no_cache: bool = False,
    checksum: bool = True,
) -> Project:
    """Return ``project`` merged over its template, pulling the template first.

    Projects without a template are returned unchanged.

    Raises:
        ProjectError: If the template project cannot be loaded.
        ResolutionError: If the template does not resolve to one package.
    """
    template = project.template()
    if template is None:
        return project
    try:
        project.components()
    except TemplateNotMaterializedError as e:
        logger.info("%s; pulling it first", e)
        _materialize_template(ctx, project, manager, no_cache, checksum)

    template_dir = place_component(project.workdir, template.type, template.name)
    return load_project(template_dir).merge_template(project)


def plan_directory(
    ctx: Context,
    workdir: Path,
    manager: PackageManager,
    options: PullOptions,
) -> list[PlannedQuery]:
    """Plan one query per component of the project in ``workdir``.

    Raises:
        ProjectError: If the project or its template cannot be loaded.
        ResolutionError: If the template does not resolve to one package.
    """
    project = with_template(
        ctx,
        load_project(workdir),
        manager,
        no_cache=not options.force_cache,
        checksum=not options.no_checksum,
    )
    return [
        PlannedQuery(manager, component_query(c, no_cache=not options.force_cache))
        for c in project.components()
    ]


def plan_list(
    ctx: Context,
    locators: Sequence[str],
    options: PullOptions,
    report: PullReport,
) -> list[PlannedQuery]:
    """Plan one name-only query per locator some package manager claims."""
    planned = []
    for locator in locators:
        manager, compatible = ctx.registry.probe(locator, options.manager)
        if not compatible:
            logger.warning("No package manager is compatible with %s, skipping", locator)
            report.skipped.append(locator)
            continue
        planned.append(
            PlannedQuery(
                manager,
                CatalogQuery(name=locator, no_cache=not options.force_cache),
            )
        )
    return planned


def pull(
    ctx: Context,
    args: Sequence[str] = (),
    options: PullOptions | None = None,
) -> PullReport:
    """Pull a project's dependencies or a list of packages.

    Args:
        ctx: Invocation context.
        args: A project directory, or package locators.
        options: Pull options.

    Returns:
        PullReport listing pulled packages, skipped locators and warnings.

    Raises:
        UnsupportedFormatError: If ``options.manager`` is unknown.
        ProjectError: If a project directory cannot be loaded.
        ResolutionError: If a project's template cannot be resolved.
    """
    options = options or PullOptions()
    workdir = options.workdir or Path.cwd()
    if not args:
        args = [str(workdir)]

    manager = ctx.registry.route(options.manager)
    report = PullReport()

    first = Path(args[0])
    if first.is_dir():
        workdir = first.resolve()
        planned = plan_directory(ctx, workdir, manager, options)
    else:
        planned = plan_list(ctx, args, options, report)

    pull_options = PackagePullOptions(
        workdir=workdir,
        checksum=not options.no_checksum,
        cache=options.force_cache,
    )

    for item in planned:
        report.queries += 1
        ctx.check(f"querying {item.query}")
        try:
            packages = item.manager.catalog(item.query)
        except OperationCancelledError:
            raise
        except (UkbuildError, OSError) as e:
            message = f"{item.manager.format}: {item.query.name}: {e}"
            logger.warning("%s", message)
            report.warnings.append(message)
            continue

        if not packages:
            message = f"could not find {item.query}"
            logger.warning("%s", message)
            report.warnings.append(message)
            continue

        for package in packages:
            ctx.check(f"pulling {package.name}")
            try:
                changed = package.pull(pull_options)
            except OperationCancelledError:
                raise
            except (UkbuildError, OSError) as e:
                message = f"failed to pull {package.name}: {e}"
                logger.warning("%s", message)
                report.warnings.append(message)
                continue
            report.pulled.append(
                PulledPackage(
                    name=package.name,
                    type=package.type.value,
                    version=package.version,
                    format=package.format,
                    changed=changed,
                )
            )
    return report


__all__ = [
    "PlannedQuery",
    "PullOptions",
    "plan_directory",
    "plan_list",
    "pull",
    "with_template",
]
