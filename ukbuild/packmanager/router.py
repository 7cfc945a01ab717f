"""Package manager registry and routing.

The Registry maps format strings to package manager backends and knows
the default backend used for the "auto" format. It is populated once at
startup and only read afterwards, so it is safe to share between threads.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ukbuild.errors import (
    IncompatibleSourceError,
    UnsupportedFormatError,
    UnsupportedOperationError,
)
from ukbuild.packmanager.base import CatalogQuery, Package, PackageManager, PackOptions
from ukbuild.types import AUTO_FORMAT

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from ukbuild.config import Settings
    from ukbuild.project.models import Target

logger = logging.getLogger(__name__)

UMBRELLA_FORMAT = "umbrella"


def is_auto(fmt: str | None) -> bool:
    return not fmt or fmt == AUTO_FORMAT


class Registry:
    """Immutable set of package managers keyed by format."""

    def __init__(
        self,
        managers: Iterable[PackageManager],
        default: PackageManager | None = None,
    ) -> None:
        by_format: dict[str, PackageManager] = {}
        for manager in managers:
            if manager.format in by_format:
                raise ValueError(f"Duplicate package manager format: {manager.format}")
            by_format[manager.format] = manager
        if not by_format:
            raise ValueError("A registry needs at least one package manager")
        self._by_format = by_format
        self._default = default or UmbrellaManager(list(by_format.values()))

    @property
    def default(self) -> PackageManager:
        return self._default

    def formats(self) -> tuple[str, ...]:
        return tuple(self._by_format)

    def managers(self) -> tuple[PackageManager, ...]:
        return tuple(self._by_format.values())

    def from_format(self, fmt: str) -> PackageManager:
        """Return the backend registered for ``fmt``.

        Raises:
            UnsupportedFormatError: If no backend has that format.
        """
        manager = self._by_format.get(fmt)
        if manager is None:
            if fmt == self._default.format:
                return self._default
            raise UnsupportedFormatError(fmt, self.formats())
        return manager

    def route(self, fmt: str | None) -> PackageManager:
        """Return the default backend for "auto"/empty, else from_format()."""
        if is_auto(fmt):
            return self._default
        return self.from_format(fmt)  # type: ignore[arg-type]

    def probe(
        self, locator: str, manager: str | None = AUTO_FORMAT
    ) -> tuple[PackageManager, bool]:
        """Find a backend willing to claim ``locator``.

        With ``manager`` set to a concrete format only that backend is asked;
        for "auto" every registered backend is asked in registration order.

        Returns:
            ``(backend, True)`` for the first claiming backend, otherwise
            ``(routed backend, False)``.
        """
        routed = self.route(manager)
        candidates = self.managers() if routed is self._default else (routed,)
        for candidate in candidates:
            if candidate.is_compatible(locator):
                logger.debug("%s claims %s", candidate.format, locator)
                return candidate, True
        return routed, False

    def require_compatible(
        self, locator: str, manager: str | None = AUTO_FORMAT
    ) -> PackageManager:
        """Like probe() but raise IncompatibleSourceError when unclaimed."""
        backend, compatible = self.probe(locator, manager)
        if not compatible:
            raise IncompatibleSourceError(locator)
        return backend


class UmbrellaManager:
    """Default backend fanning out to a set of package managers."""

    format = UMBRELLA_FORMAT

    def __init__(self, managers: list[PackageManager]) -> None:
        self._managers = managers

    def catalog(self, query: CatalogQuery) -> list[Package]:
        results: list[Package] = []
        for manager in self._managers:
            try:
                results.extend(manager.catalog(query))
            except UnsupportedOperationError:
                continue
        return results

    def pack(self, target: Target, options: PackOptions) -> Package:
        for manager in self._managers:
            try:
                return manager.pack(target, options)
            except UnsupportedOperationError:
                continue
        raise UnsupportedOperationError(self.format, "pack")

    def _claiming(self, locator: str) -> PackageManager:
        for manager in self._managers:
            if manager.is_compatible(locator):
                return manager
        raise IncompatibleSourceError(locator)

    def add_source(self, locator: str) -> None:
        self._claiming(locator).add_source(locator)

    def remove_source(self, locator: str) -> None:
        self._claiming(locator).remove_source(locator)

    def update(self) -> None:
        for manager in self._managers:
            try:
                manager.update()
            except UnsupportedOperationError:
                continue

    def is_compatible(self, locator: str) -> bool:
        return any(manager.is_compatible(locator) for manager in self._managers)


def default_registry(
    settings: Settings,
    session_factory: sessionmaker[Session] | None = None,
) -> Registry:
    """Build the standard registry: manifest and tarball backends.

    The default backend is the umbrella over both unless
    ``settings.manager`` names a concrete format.
    """
    from ukbuild.packmanager.manifest import ManifestManager
    from ukbuild.packmanager.tarball import TarballManager

    if session_factory is None:
        from ukbuild.db import open_database

        session_factory = open_database(settings.db_url)

    managers: list[PackageManager] = [
        ManifestManager(settings, session_factory),
        TarballManager(),
    ]
    default: PackageManager | None = None
    if not is_auto(settings.manager):
        default = Registry(managers).from_format(settings.manager)
    return Registry(managers, default=default)


__all__ = [
    "Registry",
    "UMBRELLA_FORMAT",
    "UmbrellaManager",
    "default_registry",
    "is_auto",
]
