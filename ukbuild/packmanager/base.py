"""Capability interface shared by all package managers.

A package manager is any object satisfying the PackageManager protocol.
Backends are identified by their ``format`` string and registered with a
Registry (see ukbuild.packmanager.router); nothing else needs to know the
concrete set of backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ukbuild.errors import UkbuildError
from ukbuild.types import ComponentType

if TYPE_CHECKING:
    from ukbuild.project.models import Target


class PackManagerError(UkbuildError):
    """Base error for failures inside a package manager backend."""

    def __init__(self, message: str, code: str = "packmanager_error") -> None:
        super().__init__(message, code=code)


@dataclass(frozen=True)
class CatalogQuery:
    """A read-only catalog request.

    Two queries with the same (name, types, version, source) identify the
    same request; ``no_cache`` only controls whether cached indexes may be
    consulted.
    """

    name: str = ""
    types: tuple[ComponentType, ...] = ()
    version: str = ""
    source: str = ""
    no_cache: bool = False

    def identity(self) -> tuple[str, tuple[ComponentType, ...], str, str]:
        return (self.name, self.types, self.version, self.source)

    def __str__(self) -> str:
        parts = []
        if self.types:
            parts.append(",".join(t.value for t in self.types) + "/")
        parts.append(self.name or "*")
        if self.version:
            parts.append(f":{self.version}")
        if self.source:
            parts.append(f" ({self.source})")
        return "".join(parts)


@dataclass(frozen=True)
class PullOptions:
    """Options of a single package pull.

    Attributes:
        workdir: Project directory the package is materialized into.
        checksum: Verify the archive checksum.
        cache: Allow re-using a previously downloaded archive.
    """

    workdir: Path
    checksum: bool = True
    cache: bool = True


@dataclass(frozen=True)
class PackOptions:
    """Options of a pack operation.

    Attributes:
        kconfig: Include the target's KConfig in the package.
        output: Destination path ("" lets the backend choose).
        initrd: Initial ramdisk to ship (overrides the target's).
        kernel_version: Unikraft version the kernel was built with.
    """

    kconfig: bool = False
    output: str = ""
    initrd: str = ""
    kernel_version: str = ""


@runtime_checkable
class Package(Protocol):
    """A package returned by a catalog query."""

    name: str
    type: ComponentType
    version: str
    format: str

    def pull(self, options: PullOptions) -> bool:
        """Materialize the package; returns False when nothing had to be done."""
        ...


@runtime_checkable
class PackageManager(Protocol):
    """Capabilities of a package manager backend.

    Backends that do not implement a capability raise
    UnsupportedOperationError from the corresponding method.
    """

    format: str

    def catalog(self, query: CatalogQuery) -> list[Package]: ...

    def pack(self, target: Target, options: PackOptions) -> Package: ...

    def add_source(self, locator: str) -> None: ...

    def remove_source(self, locator: str) -> None: ...

    def update(self) -> None: ...

    def is_compatible(self, locator: str) -> bool: ...


__all__ = [
    "CatalogQuery",
    "PackManagerError",
    "PackOptions",
    "Package",
    "PackageManager",
    "PullOptions",
]
