"""Tests for pipeline/pull.py module."""

from pathlib import Path

import pytest
from conftest import FakePackage, TemplatePackage, write_kraftfile

from ukbuild.errors import ComponentNotFoundError, ProjectError
from ukbuild.packmanager.base import PackManagerError
from ukbuild.packmanager.fetch import DownloadError
from ukbuild.pipeline.pull import PullOptions, pull
from ukbuild.project.loader import place_component
from ukbuild.types import ComponentType


class TestListMode:
    """Pulling an explicit list of package locators."""

    def test_incompatible_locator_skipped(self, ctx, fake_manager, tmp_path: Path):
        """Of three locators, the one nobody claims is skipped with a warning."""
        fake_manager.compatible = {"musl", "lwip"}
        fake_manager.packages = [FakePackage("musl"), FakePackage("lwip")]

        report = pull(ctx, ["musl", "bogus", "lwip"], PullOptions(workdir=tmp_path))

        assert report.skipped == ["bogus"]
        assert report.queries == 2
        assert [q.name for q in fake_manager.queries] == ["musl", "lwip"]
        assert [p.name for p in report.pulled] == ["musl", "lwip"]
        assert fake_manager.packages[0].pulls[0].workdir == tmp_path

    def test_name_only_queries(self, ctx, fake_manager, tmp_path: Path):
        fake_manager.compatible = {"musl"}
        pull(ctx, ["musl"], PullOptions(workdir=tmp_path, force_cache=True))
        query = fake_manager.queries[0]
        assert query.types == ()
        assert query.version == ""
        assert query.no_cache is False

    def test_empty_result_is_warning(self, ctx, fake_manager, tmp_path: Path):
        fake_manager.compatible = {"musl"}
        report = pull(ctx, ["musl"], PullOptions(workdir=tmp_path))
        assert report.pulled == []
        assert report.warnings == ["could not find musl"]

    def test_catalog_error_is_warning(self, ctx, fake_manager, tmp_path: Path):
        fake_manager.compatible = {"musl"}
        fake_manager.catalog_error = DownloadError("offline", code="offline")
        report = pull(ctx, ["musl"], PullOptions(workdir=tmp_path))
        assert len(report.warnings) == 1
        assert "offline" in report.warnings[0]

    def test_pull_error_is_warning(self, ctx, fake_manager, tmp_path: Path):
        """A failing pull does not stop the remaining packages."""
        fake_manager.compatible = {"musl", "lwip"}
        fake_manager.packages = [
            FakePackage("musl", error=PackManagerError("checksum mismatch")),
            FakePackage("lwip"),
        ]
        report = pull(ctx, ["musl", "lwip"], PullOptions(workdir=tmp_path))
        assert [p.name for p in report.pulled] == ["lwip"]
        assert report.warnings == ["failed to pull musl: checksum mismatch"]

    def test_checksum_and_cache_flags(self, ctx, fake_manager, tmp_path: Path):
        fake_manager.compatible = {"musl"}
        fake_manager.packages = [FakePackage("musl")]
        pull(ctx, ["musl"], PullOptions(workdir=tmp_path, no_checksum=True))
        options = fake_manager.packages[0].pulls[0]
        assert options.checksum is False
        assert options.cache is False


class TestDirectoryMode:
    """Pulling the dependencies of a project directory."""

    def test_components_queried(self, ctx, fake_manager, tmp_path: Path):
        write_kraftfile(tmp_path, "name: app\nunikraft: stable\nlibraries:\n  musl: 1.2\n")
        fake_manager.packages = [
            FakePackage("unikraft", type=ComponentType.CORE, version="stable"),
            FakePackage("musl", version="1.2"),
        ]
        report = pull(ctx, [str(tmp_path)])

        assert [(q.name, q.types, q.version) for q in fake_manager.queries] == [
            ("unikraft", (ComponentType.CORE,), "stable"),
            ("musl", (ComponentType.LIB,), "1.2"),
        ]
        assert len(report.pulled) == 2
        assert fake_manager.packages[0].pulls[0].workdir == tmp_path.resolve()

    def test_no_arguments_uses_workdir(self, ctx, fake_manager, tmp_path: Path):
        write_kraftfile(tmp_path, "name: app\nlibraries:\n  musl: stable\n")
        pull(ctx, [], PullOptions(workdir=tmp_path))
        assert [q.name for q in fake_manager.queries] == ["musl"]

    def test_missing_template_fails_first(self, ctx, fake_manager, tmp_path: Path):
        """An unresolvable template fails before any component is queried."""
        write_kraftfile(
            tmp_path, "template: app-nginx:stable\nlibraries:\n  musl: stable\n"
        )
        with pytest.raises(ComponentNotFoundError, match="app/app-nginx:stable"):
            pull(ctx, [str(tmp_path)])

        assert len(fake_manager.queries) == 1
        assert fake_manager.queries[0].types == (ComponentType.APP,)

    def test_template_pulled_and_merged(self, ctx, fake_manager, tmp_path: Path):
        """The template is pulled first; its components merge with the project's."""
        write_kraftfile(
            tmp_path, "template: app-nginx:stable\nlibraries:\n  lwip: stable\n"
        )
        template = TemplatePackage("app-nginx", type=ComponentType.APP, version="stable")
        fake_manager.packages = [
            template,
            FakePackage("unikraft", type=ComponentType.CORE, version="stable"),
            FakePackage("musl", version="stable"),
            FakePackage("lwip", version="stable"),
        ]

        report = pull(ctx, [str(tmp_path)])

        assert len(template.pulls) == 1
        assert (place_component(tmp_path, ComponentType.APP, "app-nginx") / "Kraftfile").is_file()
        assert [q.name for q in fake_manager.queries] == [
            "app-nginx",
            "unikraft",
            "musl",
            "lwip",
        ]
        assert [p.name for p in report.pulled] == ["unikraft", "musl", "lwip"]

    @pytest.mark.parametrize("force_cache", [False, True])
    def test_template_pull_follows_cache_flag(
        self, ctx, fake_manager, tmp_path: Path, force_cache: bool
    ):
        """The template pull uses the same cache setting as the components."""
        write_kraftfile(tmp_path, "template: app-nginx:stable\n")
        template = TemplatePackage("app-nginx", type=ComponentType.APP, version="stable")
        fake_manager.packages = [
            template,
            FakePackage("unikraft", type=ComponentType.CORE, version="stable"),
            FakePackage("musl", version="stable"),
        ]

        pull(ctx, [str(tmp_path)], PullOptions(force_cache=force_cache))

        assert template.pulls[0].cache is force_cache
        assert fake_manager.packages[1].pulls[0].cache is force_cache

    def test_uninitialized_project(self, ctx, tmp_path: Path):
        """A directory without a Kraftfile is an error, not a list of locators."""
        with pytest.raises(ProjectError):
            pull(ctx, [str(tmp_path)])
