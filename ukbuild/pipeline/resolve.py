"""Component resolution against package catalogs.

Every declared component must resolve to exactly one package: no match
and several matches are both errors, so a build never silently picks a
dependency version.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from ukbuild.errors import AmbiguousComponentError, ComponentNotFoundError
from ukbuild.packmanager.base import CatalogQuery, Package, PackageManager, PullOptions

if TYPE_CHECKING:
    from ukbuild.context import Context
    from ukbuild.project.models import Component

logger = logging.getLogger(__name__)


def component_query(component: Component, no_cache: bool = False) -> CatalogQuery:
    """Build the catalog query identifying ``component``."""
    return CatalogQuery(
        name=component.name,
        types=(component.type,),
        version=component.version,
        source=component.source,
        no_cache=no_cache,
    )


def resolve_one(manager: PackageManager, query: CatalogQuery, subject: str) -> Package:
    """Run ``query`` and require exactly one result.

    Args:
        manager: Package manager to query.
        query: Catalog query.
        subject: Human readable identity used in error messages.

    Raises:
        ComponentNotFoundError: If nothing matches.
        AmbiguousComponentError: If more than one package matches.
    """
    packages = manager.catalog(query)
    if not packages:
        raise ComponentNotFoundError(subject)
    if len(packages) > 1:
        raise AmbiguousComponentError(subject, len(packages))
    return packages[0]


def resolve_components(
    ctx: Context,
    manager: PackageManager,
    components: Iterable[Component],
    no_cache: bool = False,
) -> list[Package]:
    """Resolve every component to its package.

    Returns:
        The packages to pull, in component order.
    """
    packages = []
    for component in components:
        subject = component.type_name_version()
        ctx.check(f"resolving {subject}")
        package = resolve_one(manager, component_query(component, no_cache), subject)
        logger.debug("Resolved %s", subject)
        packages.append(package)
    return packages


def pull_packages(
    ctx: Context,
    packages: Iterable[Package],
    workdir: Path,
    no_cache: bool = False,
    checksum: bool = True,
) -> int:
    """Pull resolved packages into ``workdir``; errors propagate.

    Returns:
        Number of packages that were actually materialized.
    """
    options = PullOptions(workdir=workdir, checksum=checksum, cache=not no_cache)
    pulled = 0
    for package in packages:
        ctx.check(f"pulling {package.name}")
        if package.pull(options):
            pulled += 1
    return pulled


__all__ = [
    "component_query",
    "pull_packages",
    "resolve_components",
    "resolve_one",
]
