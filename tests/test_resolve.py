"""Tests for pipeline/resolve.py module."""

from pathlib import Path

import pytest
from conftest import FakeManager, FakePackage

from ukbuild.errors import (
    AmbiguousComponentError,
    ComponentNotFoundError,
    OperationCancelledError,
    ResolutionError,
)
from ukbuild.packmanager.base import CatalogQuery
from ukbuild.pipeline.resolve import (
    component_query,
    pull_packages,
    resolve_components,
    resolve_one,
)
from ukbuild.project.models import Component
from ukbuild.types import ComponentType


class TestComponentQuery:
    """Tests for component_query function."""

    def test_query_carries_identity(self):
        """The query should identify the component by name, type, version, source."""
        component = Component(
            name="musl", type=ComponentType.LIB, version="stable", source="https://x"
        )
        query = component_query(component, no_cache=True)
        assert query.name == "musl"
        assert query.types == (ComponentType.LIB,)
        assert query.version == "stable"
        assert query.source == "https://x"
        assert query.no_cache is True


class TestResolveOne:
    """Tests for resolve_one cardinality rules."""

    def test_single_match(self):
        """Exactly one match is returned."""
        package = FakePackage("musl", version="stable")
        manager = FakeManager(packages=[package])
        assert resolve_one(manager, CatalogQuery(name="musl"), "lib/musl") is package

    def test_no_match(self):
        """No match raises ComponentNotFoundError naming the component."""
        manager = FakeManager()
        with pytest.raises(ComponentNotFoundError) as exc_info:
            resolve_one(manager, CatalogQuery(name="musl"), "lib/musl:stable")
        assert "lib/musl:stable" in str(exc_info.value)
        assert exc_info.value.code == "component_not_found"

    def test_several_matches(self):
        """Several matches raise AmbiguousComponentError."""
        manager = FakeManager(
            packages=[FakePackage("musl", version="1"), FakePackage("musl", version="2")]
        )
        with pytest.raises(AmbiguousComponentError) as exc_info:
            resolve_one(manager, CatalogQuery(name="musl"), "lib/musl")
        assert isinstance(exc_info.value, ResolutionError)
        assert exc_info.value.code == "ambiguous_component"


class TestResolveComponents:
    """Tests for resolve_components and pull_packages."""

    def test_resolves_in_order(self, ctx, fake_manager):
        """Packages are returned in component order."""
        core = FakePackage("unikraft", type=ComponentType.CORE)
        musl = FakePackage("musl")
        fake_manager.packages = [musl, core]
        components = [
            Component("unikraft", ComponentType.CORE),
            Component("musl", ComponentType.LIB),
        ]
        assert resolve_components(ctx, fake_manager, components) == [core, musl]

    def test_first_failure_aborts(self, ctx, fake_manager):
        """An unresolvable component stops resolution."""
        fake_manager.packages = [FakePackage("musl")]
        components = [
            Component("lwip", ComponentType.LIB),
            Component("musl", ComponentType.LIB),
        ]
        with pytest.raises(ComponentNotFoundError):
            resolve_components(ctx, fake_manager, components)
        assert len(fake_manager.queries) == 1

    def test_cancelled_before_query(self, ctx, fake_manager):
        """A cancelled context does not query the catalog."""
        ctx.cancel.cancel()
        with pytest.raises(OperationCancelledError):
            resolve_components(ctx, fake_manager, [Component("musl", ComponentType.LIB)])
        assert fake_manager.queries == []

    def test_pull_counts_changes(self, ctx, tmp_path: Path):
        """Only packages that changed are counted."""
        packages = [FakePackage("a"), FakePackage("b", changed=False)]
        assert pull_packages(ctx, packages, tmp_path, no_cache=True) == 1
        options = packages[0].pulls[0]
        assert options.workdir == tmp_path
        assert options.cache is False
        assert options.checksum is True

    def test_pull_errors_propagate(self, ctx, tmp_path: Path):
        """Pull failures are not swallowed."""
        packages = [FakePackage("a", error=OSError("disk full"))]
        with pytest.raises(OSError):
            pull_packages(ctx, packages, tmp_path)
