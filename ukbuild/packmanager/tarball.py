"""Tarball package manager.

Packs a built target into a gzip-compressed tar archive:

    kernel           the kernel image
    initrd           optional initial ramdisk
    .config          optional KConfig of the target
    metadata.json    name, architecture, platform, version, command

Existing tarballs can be catalogued by path and pulled (unpacked) into the
applications directory of a project.
"""

from __future__ import annotations

import io
import json
import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ukbuild.errors import UnsupportedOperationError
from ukbuild.packmanager.base import CatalogQuery, PackManagerError, PackOptions, PullOptions
from ukbuild.packmanager.fetch import PULL_MARKER, compute_file_sha256, extract_archive
from ukbuild.project.io import format_dotconfig
from ukbuild.project.loader import place_component
from ukbuild.types import ComponentType

if TYPE_CHECKING:
    from ukbuild.project.models import Target

logger = logging.getLogger(__name__)

TARBALL_FORMAT = "tarball"
TARBALL_SUFFIX = ".tar.gz"
METADATA_NAME = "metadata.json"


@dataclass
class TarballPackage:
    """A packed unikernel on disk."""

    name: str
    path: Path
    version: str = ""
    type: ComponentType = ComponentType.APP
    format: str = TARBALL_FORMAT

    def is_pulled(self, dest: Path, checksum: str) -> bool:
        """True if ``dest`` was unpacked from an identical archive."""
        marker = dest / PULL_MARKER
        if not marker.is_file():
            return False
        try:
            recorded = json.loads(marker.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        return recorded.get("sha256") == checksum

    def pull(self, options: PullOptions) -> bool:
        """Unpack the tarball into the project's applications directory.

        Returns:
            False if ``dest`` already holds this archive, True otherwise.
        """
        dest = place_component(options.workdir, self.type, self.name)
        checksum = compute_file_sha256(self.path)
        if self.is_pulled(dest, checksum):
            logger.debug("%s is up to date in %s", self.path, dest)
            return False

        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".pull-", dir=dest.parent))
        try:
            root = extract_archive(self.path, staging / "content")
            (root / PULL_MARKER).write_text(
                json.dumps(
                    {"name": self.name, "version": self.version, "sha256": checksum},
                    indent=2,
                ),
                encoding="utf-8",
            )
            if dest.exists():
                shutil.rmtree(dest)
            root.replace(dest)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        logger.info("Unpacked %s into %s", self.path, dest)
        return True


def read_metadata(path: Path) -> dict[str, Any] | None:
    """Return the metadata of a packed tarball, or None if it is not one."""
    try:
        with tarfile.open(path, "r:gz") as tar:
            member = tar.extractfile(METADATA_NAME)
            if member is None:
                return None
            return json.loads(member.read().decode("utf-8"))
    except (tarfile.TarError, OSError, KeyError, ValueError):
        return None


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


class TarballManager:
    """Package manager producing and reading tarball packages."""

    format = TARBALL_FORMAT

    def default_output(self, target: Target) -> Path:
        return target.kernel.parent / f"{target.name}{TARBALL_SUFFIX}"

    def pack(self, target: Target, options: PackOptions) -> TarballPackage:
        """Pack ``target`` into a tarball.

        Raises:
            PackManagerError: If the kernel or initrd is missing or the
                archive cannot be written.
        """
        kernel = target.kernel
        if not kernel.is_file():
            raise PackManagerError(
                f"Kernel image not found: {kernel} (build the target first)",
                code="kernel_not_found",
            )
        initrd = Path(options.initrd) if options.initrd else target.initrd
        if initrd is not None and not initrd.is_file():
            raise PackManagerError(f"Initrd not found: {initrd}", code="initrd_not_found")

        output = Path(options.output) if options.output else self.default_output(target)
        output.parent.mkdir(parents=True, exist_ok=True)

        metadata = {
            "name": target.name,
            "architecture": target.architecture.name,
            "platform": target.platform.name,
            "kernel_version": options.kernel_version,
            "kernel_debug": target.kernel_debug,
            "command": list(target.command),
        }

        fd, tmp_name = tempfile.mkstemp(prefix=f".{output.name}.", dir=output.parent)
        tmp_path = Path(tmp_name)
        try:
            with open(fd, "wb") as raw, tarfile.open(fileobj=raw, mode="w:gz") as tar:
                tar.add(kernel, arcname="kernel")
                if initrd is not None:
                    tar.add(initrd, arcname="initrd")
                if options.kconfig:
                    _add_bytes(tar, ".config", format_dotconfig(target.kconfig).encode())
                _add_bytes(
                    tar, METADATA_NAME, json.dumps(metadata, indent=2).encode("utf-8")
                )
            tmp_path.replace(output)
        except (OSError, tarfile.TarError) as e:
            tmp_path.unlink(missing_ok=True)
            raise PackManagerError(
                f"Failed to write {output}: {e}", code="pack_failed"
            ) from e

        logger.info("Packed %s into %s", target.name, output)
        return TarballPackage(
            name=target.name, path=output, version=options.kernel_version
        )

    def catalog(self, query: CatalogQuery) -> list[TarballPackage]:
        """Catalog a tarball given by path in ``query.name``."""
        if not query.name.endswith(TARBALL_SUFFIX):
            return []
        path = Path(query.name).expanduser()
        metadata = read_metadata(path) if path.is_file() else None
        if metadata is None:
            return []
        if query.types and ComponentType.APP not in query.types:
            return []
        version = str(metadata.get("kernel_version") or "")
        if query.version and version != query.version:
            return []
        return [
            TarballPackage(
                name=str(metadata.get("name") or path.name[: -len(TARBALL_SUFFIX)]),
                path=path,
                version=version,
            )
        ]

    def add_source(self, locator: str) -> None:
        raise UnsupportedOperationError(self.format, "sources")

    def remove_source(self, locator: str) -> None:
        raise UnsupportedOperationError(self.format, "sources")

    def update(self) -> None:
        raise UnsupportedOperationError(self.format, "update")

    def is_compatible(self, locator: str) -> bool:
        if not locator.endswith(TARBALL_SUFFIX):
            return False
        path = Path(locator).expanduser()
        return path.is_file() and read_metadata(path) is not None


__all__ = [
    "METADATA_NAME",
    "TARBALL_FORMAT",
    "TarballManager",
    "TarballPackage",
    "read_metadata",
]
