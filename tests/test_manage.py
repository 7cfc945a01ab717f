"""Tests for pipeline/manage.py module."""

from pathlib import Path

import pytest
from conftest import write_kraftfile

from ukbuild.errors import (
    DotConfigNotFoundError,
    IncompatibleSourceError,
    InvalidOptionError,
)
from ukbuild.pipeline.manage import add_source, remove_source, set_options, update


class TestSources:
    """Tests for add_source and remove_source."""

    def test_add_and_remove(self, ctx, fake_manager):
        fake_manager.compatible = {"https://example.com/index.yaml"}
        backend = add_source(ctx, "https://example.com/index.yaml")
        assert backend is fake_manager
        assert fake_manager.sources == ["https://example.com/index.yaml"]

        remove_source(ctx, "https://example.com/index.yaml")
        assert fake_manager.sources == []

    def test_incompatible(self, ctx, fake_manager):
        """A locator no package manager claims is rejected."""
        with pytest.raises(IncompatibleSourceError) as exc_info:
            add_source(ctx, "ftp://example.com/thing")
        assert exc_info.value.code == "incompatible_source"
        assert fake_manager.sources == []

    def test_update(self, ctx, fake_manager):
        update(ctx)
        assert fake_manager.updates == 1


class TestSetOptions:
    """Tests for set_options function."""

    def test_missing_dotconfig(self, ctx, tmp_path: Path):
        """Without a .config the error names the expected path."""
        write_kraftfile(tmp_path, "name: app\n")
        with pytest.raises(DotConfigNotFoundError) as exc_info:
            set_options(ctx, tmp_path, ["LIBPOSIX_PROCESS=y"])

        expected = tmp_path.resolve() / ".config"
        assert exc_info.value.path == expected
        assert str(expected) in str(exc_info.value)
        assert isinstance(exc_info.value, FileNotFoundError)

    def test_no_assignments(self, ctx, tmp_path: Path):
        with pytest.raises(InvalidOptionError, match="no options"):
            set_options(ctx, tmp_path, [])

    @pytest.mark.parametrize("item", ["FOO", "FOO="])
    def test_malformed(self, ctx, tmp_path: Path, item):
        """Malformed arguments are rejected before touching the project."""
        with pytest.raises(InvalidOptionError, match="malformed"):
            set_options(ctx, tmp_path, [item])

    def test_writes_dotconfig(self, ctx, tmp_path: Path):
        write_kraftfile(tmp_path, "name: app\n")
        dotconfig = tmp_path / ".config"
        dotconfig.write_text("CONFIG_LIBPOSIX_PROCESS=n\nCONFIG_OTHER=y\n")

        parsed = set_options(ctx, tmp_path, ["LIBPOSIX_PROCESS=y", "CONFIG_UK_NAME=\"x\""])

        assert parsed == {"LIBPOSIX_PROCESS": "y", "CONFIG_UK_NAME": '"x"'}
        assert dotconfig.read_text() == (
            "CONFIG_LIBPOSIX_PROCESS=y\nCONFIG_OTHER=y\nCONFIG_UK_NAME=\"x\"\n"
        )
