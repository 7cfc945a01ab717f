"""Value types describing a loaded project.

Targets and components are created once by the project loader and are
treated as immutable for the rest of an invocation.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from ukbuild.types import ComponentType


class KConfig(Mapping[str, str]):
    """Read-only, insertion-ordered mapping of KConfig keys to values."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self._values = MappingProxyType(dict(values or {}))

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"KConfig({dict(self._values)!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return dict(self._values) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._values.items()))

    def merged(self, other: Mapping[str, str]) -> KConfig:
        """Return a new KConfig with ``other`` applied on top of this one."""
        values = dict(self._values)
        values.update(other)
        return KConfig(values)


@dataclass(frozen=True)
class ArchitectureRef:
    """Reference to a target architecture (e.g. ``x86_64``)."""

    name: str
    version: str = ""


@dataclass(frozen=True)
class PlatformRef:
    """Reference to a target platform (e.g. ``qemu``)."""

    name: str
    version: str = ""


@dataclass(frozen=True)
class Target:
    """A buildable unit of a project.

    Attributes:
        name: Target name, unique within a project.
        architecture: Architecture the target is built for.
        platform: Platform the target runs on.
        kernel: Path of the kernel image produced by the build stage.
        kernel_debug: Whether ``kernel`` is the debug (unstripped) image.
        kconfig: Target-specific KConfig values.
        initrd: Optional initial ramdisk shipped with the kernel.
        command: Default command line of the unikernel.
        format: Declared package format ("" when undeclared).
    """

    name: str
    architecture: ArchitectureRef
    platform: PlatformRef
    kernel: Path
    kernel_debug: bool = False
    kconfig: KConfig = field(default_factory=KConfig)
    initrd: Path | None = None
    command: tuple[str, ...] = ()
    format: str = ""

    @property
    def plat_arch_name(self) -> str:
        return f"{self.platform.name}-{self.architecture.name}"

    @property
    def kernel_dbg_path(self) -> Path:
        """Path of the debug variant of the kernel image."""
        return self.kernel.with_name(self.kernel.name + ".dbg")


@dataclass(frozen=True)
class Component:
    """A named, versioned dependency declared by a project."""

    name: str
    type: ComponentType
    version: str = ""
    source: str = ""

    def type_name_version(self) -> str:
        """Render the component as ``type/name:version`` for messages."""
        text = f"{self.type.value}/{self.name}"
        if self.version:
            text += f":{self.version}"
        return text


__all__ = [
    "ArchitectureRef",
    "Component",
    "KConfig",
    "PlatformRef",
    "Target",
]
