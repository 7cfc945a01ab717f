"""Shared fixtures and fake package managers for the test suite."""

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from ukbuild.config import Settings
from ukbuild.context import Context
from ukbuild.errors import UnsupportedOperationError
from ukbuild.packmanager.base import CatalogQuery, PackOptions, PullOptions
from ukbuild.packmanager.router import Registry
from ukbuild.project.loader import place_component
from ukbuild.types import ComponentType


@dataclass
class FakePackage:
    """In-memory package recording its pulls."""

    name: str
    type: ComponentType = ComponentType.LIB
    version: str = ""
    format: str = "fake"
    changed: bool = True
    error: Exception | None = None
    pulls: list[PullOptions] = field(default_factory=list)

    def pull(self, options: PullOptions) -> bool:
        self.pulls.append(options)
        if self.error is not None:
            raise self.error
        return self.changed


class FakeManager:
    """Package manager answering catalog queries from a fixed list."""

    def __init__(
        self,
        format: str = "fake",
        packages: list[FakePackage] | None = None,
        compatible: set[str] | None = None,
        catalog_error: Exception | None = None,
        can_pack: bool = True,
    ) -> None:
        self.format = format
        self.packages = packages or []
        self.compatible = compatible or set()
        self.catalog_error = catalog_error
        self.can_pack = can_pack
        self.queries: list[CatalogQuery] = []
        self.packed: list[tuple] = []
        self.sources: list[str] = []
        self.updates = 0

    def catalog(self, query: CatalogQuery) -> list[FakePackage]:
        self.queries.append(query)
        if self.catalog_error is not None:
            raise self.catalog_error
        return [
            p
            for p in self.packages
            if (not query.name or p.name == query.name)
            and (not query.types or p.type in query.types)
            and (not query.version or p.version == query.version)
        ]

    def pack(self, target, options: PackOptions) -> FakePackage:
        if not self.can_pack:
            raise UnsupportedOperationError(self.format, "pack")
        self.packed.append((target, options))
        return FakePackage(name=target.name, type=ComponentType.APP, format=self.format)

    def add_source(self, locator: str) -> None:
        self.sources.append(locator)

    def remove_source(self, locator: str) -> None:
        self.sources.remove(locator)

    def update(self) -> None:
        self.updates += 1

    def is_compatible(self, locator: str) -> bool:
        return locator in self.compatible


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated in the test's temporary directory."""
    return Settings(
        cache_dir=tmp_path / "cache",
        db_url=f"sqlite:///{tmp_path / 'sources.sqlite'}",
        offline=True,
    )


@pytest.fixture
def fake_manager() -> FakeManager:
    return FakeManager()


@pytest.fixture
def ctx(settings: Settings, fake_manager: FakeManager) -> Context:
    """Context whose "auto" format routes to ``fake_manager``."""
    return Context(
        settings=settings, registry=Registry([fake_manager], default=fake_manager)
    )


def write_kraftfile(workdir: Path, content: str) -> Path:
    """Write a Kraftfile into ``workdir`` and return its path."""
    workdir.mkdir(parents=True, exist_ok=True)
    path = workdir / "Kraftfile"
    path.write_text(content, encoding="utf-8")
    return path


HELLOWORLD_KRAFTFILE = """\
spec: v0.6
name: helloworld
unikraft:
  version: stable
libraries:
  musl: stable
targets:
  - qemu/x86_64
  - fc/x86_64
  - name: arm
    platform: qemu
    architecture: arm64
    format: raw
"""

TEMPLATE_KRAFTFILE = """\
name: nginx
unikraft: stable
libraries:
  musl: stable
targets:
  - qemu/x86_64
"""


@dataclass
class TemplatePackage(FakePackage):
    """Package whose pull materializes a template project."""

    def pull(self, options: PullOptions) -> bool:
        super().pull(options)
        dest = place_component(options.workdir, self.type, self.name)
        write_kraftfile(dest, TEMPLATE_KRAFTFILE)
        return True
