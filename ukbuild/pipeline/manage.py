"""Package source, update and set operations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from ukbuild.errors import DotConfigNotFoundError, InvalidOptionError
from ukbuild.project.io import DOTCONFIG
from ukbuild.project.loader import load_project, parse_assignments
from ukbuild.types import AUTO_FORMAT

if TYPE_CHECKING:
    from ukbuild.context import Context
    from ukbuild.packmanager.base import PackageManager

logger = logging.getLogger(__name__)


def add_source(ctx: Context, locator: str, manager: str = AUTO_FORMAT) -> PackageManager:
    """Register ``locator`` with the package manager that claims it.

    Returns:
        The backend the source was added to.

    Raises:
        IncompatibleSourceError: If no package manager claims the locator.
    """
    ctx.check(f"adding source {locator}")
    backend = ctx.registry.require_compatible(locator, manager)
    backend.add_source(locator)
    logger.info("Added %s source %s", backend.format, locator)
    return backend


def remove_source(ctx: Context, locator: str, manager: str = AUTO_FORMAT) -> PackageManager:
    """Unregister ``locator`` from the package manager that claims it.

    Raises:
        IncompatibleSourceError: If no package manager claims the locator.
    """
    ctx.check(f"removing source {locator}")
    backend = ctx.registry.require_compatible(locator, manager)
    backend.remove_source(locator)
    logger.info("Removed %s source %s", backend.format, locator)
    return backend


def update(ctx: Context, manager: str = AUTO_FORMAT) -> None:
    """Refresh the package indexes of ``manager`` (all backends for "auto")."""
    backend = ctx.registry.route(manager)
    ctx.check("updating package indexes")
    logger.info("Updating %s package indexes", backend.format)
    backend.update()


def set_options(ctx: Context, workdir: Path, assignments: Sequence[str]) -> dict[str, str]:
    """Write ``KEY=VALUE`` assignments into the project's ``.config``.

    Args:
        ctx: Invocation context.
        workdir: Project directory.
        assignments: ``KEY=VALUE`` strings; ``CONFIG_`` is prepended to keys
            that lack it.

    Returns:
        The parsed assignments.

    Raises:
        InvalidOptionError: If no assignment is given or one is malformed.
        DotConfigNotFoundError: If ``<workdir>/.config`` does not exist.
    """
    if not assignments:
        raise InvalidOptionError("no options to set")
    parsed = parse_assignments(assignments)

    workdir = Path(workdir).resolve()
    dotconfig = workdir / DOTCONFIG
    if not dotconfig.is_file():
        raise DotConfigNotFoundError(dotconfig)

    ctx.check("setting options")
    project = load_project(workdir, config_overrides=assignments)
    project.set()
    return parsed


__all__ = [
    "add_source",
    "remove_source",
    "set_options",
    "update",
]
