"""Tests for pipeline/package.py module."""

from pathlib import Path

import pytest
from conftest import HELLOWORLD_KRAFTFILE, FakeManager, write_kraftfile

from ukbuild.context import Context
from ukbuild.errors import EmptySelectionError, StageError, UnsupportedFormatError
from ukbuild.packmanager.base import PackManagerError
from ukbuild.packmanager.router import Registry
from ukbuild.pipeline.package import (
    PackageOptions,
    kernel_version,
    package,
    package_label,
    packaging_snapshot,
    resolve_format,
)
from ukbuild.project.models import ArchitectureRef, KConfig, PlatformRef, Target
from ukbuild.types import BatchMode, Stage, StageStatus


def make_target(fmt: str = "", kconfig: dict | None = None) -> Target:
    return Target(
        name="app",
        architecture=ArchitectureRef("x86_64"),
        platform=PlatformRef("qemu"),
        kernel=Path("/build/app_qemu-x86_64"),
        kconfig=KConfig(kconfig or {}),
        command=("/app", "-v"),
        format=fmt,
    )


@pytest.fixture
def raw() -> FakeManager:
    return FakeManager(format="raw")


@pytest.fixture
def qcow2() -> FakeManager:
    return FakeManager(format="qcow2")


@pytest.fixture
def default_manager() -> FakeManager:
    return FakeManager(format="default")


@pytest.fixture
def pkg_ctx(settings, raw, qcow2, default_manager) -> Context:
    return Context(
        settings=settings,
        registry=Registry([raw, qcow2], default=default_manager),
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    workdir = tmp_path / "helloworld"
    write_kraftfile(workdir, HELLOWORLD_KRAFTFILE)
    return workdir


class TestResolveFormat:
    """Tests for resolve_format function."""

    def test_target_format_used_for_auto(self):
        """A target declaring 'raw' packaged with 'auto' uses 'raw'."""
        assert resolve_format("auto", make_target("raw")) == "raw"

    def test_explicit_format_wins(self):
        assert resolve_format("qcow2", make_target("raw")) == "qcow2"

    def test_undeclared_stays_auto(self):
        assert resolve_format("", make_target()) == "auto"


class TestHelpers:
    """Tests for labels, snapshots and pack options."""

    def test_label(self):
        assert package_label(make_target(), "auto") == "packaging app"
        assert package_label(make_target(), "raw") == "packaging app (raw)"

    def test_snapshot_keeps_packaging_fields(self):
        target = make_target("raw", {"CONFIG_A": "y"})
        snapshot = packaging_snapshot(target, PackageOptions())
        assert snapshot.name == "app"
        assert snapshot.kernel == target.kernel
        assert snapshot.kconfig == {"CONFIG_A": "y"}
        assert snapshot.command == ("/app", "-v")
        assert snapshot.format == ""

    def test_snapshot_name_override(self):
        snapshot = packaging_snapshot(make_target(), PackageOptions(name="renamed"))
        assert snapshot.name == "renamed"

    def test_snapshot_debug_kernel(self):
        snapshot = packaging_snapshot(make_target(), PackageOptions(dbg=True))
        assert snapshot.kernel == Path("/build/app_qemu-x86_64.dbg")
        assert snapshot.kernel_debug is True

    @pytest.mark.parametrize(
        "kconfig", [{"UK_FULLVERSION": "0.17.0"}, {"CONFIG_UK_FULLVERSION": '"0.17.0"'}]
    )
    def test_kernel_version(self, kconfig):
        assert kernel_version(make_target(kconfig=kconfig)) == "0.17.0"

    def test_kernel_version_unknown(self):
        assert kernel_version(make_target()) == ""


class TestPackage:
    """Tests for the package function."""

    def test_routes_by_target_format(self, pkg_ctx, project_dir, raw, default_manager):
        """Targets declaring a format use it; others use the default backend."""
        report = package(pkg_ctx, project_dir)

        assert report.ok
        assert [r.label for r in report.results] == [
            "packaging qemu-x86_64",
            "packaging fc-x86_64",
            "packaging arm (raw)",
        ]
        assert [t.name for t, _ in raw.packed] == ["arm"]
        assert len(default_manager.packed) == 2

    def test_explicit_format(self, pkg_ctx, project_dir, qcow2, raw):
        report = package(pkg_ctx, project_dir, PackageOptions(target="arm", format="qcow2"))
        assert report.results[0].label == "packaging arm (qcow2)"
        assert report.results[0].format == "qcow2"
        assert len(qcow2.packed) == 1
        assert raw.packed == []

    def test_name_override_and_options(self, pkg_ctx, project_dir, raw):
        options = PackageOptions(
            target="arm", name="hello", output="/tmp/out.img", with_kconfig=True
        )
        package(pkg_ctx, project_dir, options)
        target, pack_options = raw.packed[0]
        assert target.name == "hello"
        assert pack_options.output == "/tmp/out.img"
        assert pack_options.kconfig is True

    def test_unknown_format(self, pkg_ctx, project_dir):
        with pytest.raises(UnsupportedFormatError):
            package(pkg_ctx, project_dir, PackageOptions(format="oci"))

    def test_empty_selection(self, pkg_ctx, project_dir):
        with pytest.raises(EmptySelectionError, match="package"):
            package(pkg_ctx, project_dir, PackageOptions(platform="xen"))

    def test_fail_fast_by_default(self, pkg_ctx, project_dir, default_manager):
        """Packaging errors propagate unless best-effort is requested."""
        default_manager.pack = _failing_pack
        with pytest.raises(StageError) as exc_info:
            package(pkg_ctx, project_dir)
        assert exc_info.value.stage is Stage.PACK

    def test_best_effort(self, pkg_ctx, project_dir, default_manager, raw):
        default_manager.pack = _failing_pack
        events = []
        report = package(
            pkg_ctx,
            project_dir,
            PackageOptions(mode=BatchMode.BEST_EFFORT),
            on_event=events.append,
        )
        assert report.failed == 2
        assert report.succeeded == 1
        assert report.results[0].error_code == "kernel_not_found"
        assert report.results[0].failed_stage is Stage.PACK
        assert [e.status for e in events].count(StageStatus.FAILED) == 2


def _failing_pack(target, options):
    raise PackManagerError("Kernel image not found", code="kernel_not_found")
