"""Manifest package manager.

Catalogs are YAML index documents listing component archives:

    packages:
      - name: musl
        type: lib
        version: stable
        source: https://github.com/unikraft/lib-musl.git
        url: lib-musl-stable.tar.gz       # relative to the index location
        sha256: 3f5a...

Index locations (http(s) URLs, local files or directories holding an
``index.yaml``) are registered as sources in the database. ``update()``
refreshes the cached copy of every index; catalog queries read the cache
unless the query asks for ``no_cache``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select

from ukbuild.db import get_session
from ukbuild.errors import UnsupportedOperationError
from ukbuild.packmanager.base import (
    CatalogQuery,
    PackManagerError,
    PackOptions,
    PullOptions,
)
from ukbuild.packmanager.fetch import (
    PULL_MARKER,
    DownloadError,
    compute_file_sha256,
    download_file,
    extract_archive,
    fetch_text,
    is_remote,
    local_path,
)
from ukbuild.packmanager.models import PackageSource
from ukbuild.project.loader import place_component
from ukbuild.types import ComponentType

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from ukbuild.config import Settings
    from ukbuild.project.models import Target

logger = logging.getLogger(__name__)

MANIFEST_FORMAT = "manifest"
INDEX_FILENAME = "index.yaml"
INDEX_SUFFIXES = (".yaml", ".yml")


class IndexEntry(BaseModel):
    """One package of an index document."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    type: ComponentType
    version: str = ""
    source: str = ""
    url: str = Field(min_length=1)
    sha256: str | None = None


class IndexDocument(BaseModel):
    """A complete index document."""

    model_config = ConfigDict(extra="ignore")

    packages: list[IndexEntry] = Field(default_factory=list)


def parse_index(text: str, location: str) -> IndexDocument:
    """Parse and validate an index document.

    Raises:
        PackManagerError: If the document is not a valid index.
    """
    try:
        data = yaml.safe_load(text) or {}
        return IndexDocument.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise PackManagerError(
            f"Invalid index at {location}: {e}", code="invalid_index"
        ) from e


def resolve_url(index_location: str, url: str) -> str:
    """Resolve an entry URL relative to the index it came from."""
    if is_remote(url) or urlparse(url).scheme == "file" or Path(url).is_absolute():
        return url
    if is_remote(index_location):
        return urljoin(index_location, url)
    return str(local_path(index_location).parent / url)


@dataclass
class ManifestPackage:
    """A package listed in a manifest index."""

    name: str
    type: ComponentType
    version: str
    url: str
    source: str = ""
    checksum: str | None = None
    format: str = MANIFEST_FORMAT
    manager: ManifestManager | None = field(default=None, repr=False, compare=False)

    def type_name_version(self) -> str:
        text = f"{self.type.value}/{self.name}"
        return f"{text}:{self.version}" if self.version else text

    def _archive_path(self, archive_dir: Path) -> Path:
        basename = Path(urlparse(self.url).path).name or f"{self.name}.tar.gz"
        prefix = (self.checksum or hashlib.sha256(self.url.encode()).hexdigest())[:16]
        return archive_dir / f"{prefix}-{basename}"

    def is_pulled(self, dest: Path) -> bool:
        """True if ``dest`` already holds this exact package."""
        marker = dest / PULL_MARKER
        if not marker.is_file():
            return False
        try:
            recorded = json.loads(marker.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        return (
            recorded.get("version") == self.version
            and recorded.get("url") == self.url
            and recorded.get("sha256") == self.checksum
        )

    def pull(self, options: PullOptions) -> bool:
        """Materialize the package into its component directory.

        Returns:
            False if the package was already present, True otherwise.

        Raises:
            DownloadError: If the archive cannot be fetched.
            VerificationError: If the archive checksum does not match.
            ExtractionError: If the archive cannot be extracted.
        """
        if self.manager is None:
            raise PackManagerError(f"{self.name} is detached from its manager")

        dest = place_component(options.workdir, self.type, self.name)
        if self.is_pulled(dest):
            logger.debug("%s is up to date in %s", self.type_name_version(), dest)
            return False

        settings = self.manager.settings
        archive = self._archive_path(settings.archive_dir)
        expected = self.checksum if options.checksum else None
        if options.checksum and not self.checksum:
            logger.warning("No checksum published for %s", self.type_name_version())

        reuse = (
            options.cache
            and archive.is_file()
            and (expected is None or compute_file_sha256(archive) == expected.lower())
        )
        if reuse:
            logger.debug("Using cached archive %s", archive)
        else:
            download_file(
                self.manager.client,
                self.url,
                archive,
                expected_checksum=expected,
                timeout=settings.download_timeout,
            )

        dest.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".pull-", dir=dest.parent))
        try:
            root = extract_archive(archive, staging / "content")
            (root / PULL_MARKER).write_text(
                json.dumps(
                    {
                        "name": self.name,
                        "type": self.type.value,
                        "version": self.version,
                        "url": self.url,
                        "sha256": self.checksum,
                    },
                    indent=2,
                ),
                encoding="utf-8",
            )
            if dest.exists():
                shutil.rmtree(dest)
            root.replace(dest)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info("Pulled %s into %s", self.type_name_version(), dest)
        return True


class ManifestManager:
    """Package manager backed by YAML index documents."""

    format = MANIFEST_FORMAT

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Session],
        client: httpx.Client | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._client = client

    @property
    def client(self) -> httpx.Client | None:
        """HTTP client, or None in offline mode."""
        if self.settings.offline:
            return None
        if self._client is None:
            self._client = httpx.Client(follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # Sources

    @staticmethod
    def normalize_location(locator: str) -> str:
        """Map a directory source onto the index file it contains."""
        if is_remote(locator):
            return locator
        path = local_path(locator)
        if path.is_dir():
            return str((path / INDEX_FILENAME).resolve())
        return str(path.resolve())

    def sources(self) -> list[str]:
        """Registered index locations, in registration order."""
        with get_session(self._session_factory) as session:
            stmt = (
                select(PackageSource.location)
                .where(PackageSource.manager == self.format)
                .order_by(PackageSource.id)
            )
            return list(session.execute(stmt).scalars().all())

    def add_source(self, locator: str) -> None:
        location = self.normalize_location(locator)
        with get_session(self._session_factory) as session:
            existing = session.execute(
                select(PackageSource).where(
                    PackageSource.manager == self.format,
                    PackageSource.location == location,
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.info("Source already registered: %s", location)
                return
            session.add(PackageSource(manager=self.format, location=location))
        logger.info("Added source %s", location)

    def remove_source(self, locator: str) -> None:
        location = self.normalize_location(locator)
        with get_session(self._session_factory) as session:
            existing = session.execute(
                select(PackageSource).where(
                    PackageSource.manager == self.format,
                    PackageSource.location == location,
                )
            ).scalar_one_or_none()
            if existing is None:
                raise PackManagerError(
                    f"Source is not registered: {location}", code="source_not_found"
                )
            session.delete(existing)
        self._cache_path(location).unlink(missing_ok=True)
        logger.info("Removed source %s", location)

    # Indexes

    def _cache_path(self, location: str) -> Path:
        digest = hashlib.sha256(location.encode("utf-8")).hexdigest()[:32]
        return self.settings.index_dir / f"{digest}.yaml"

    def _refresh(self, location: str) -> tuple[IndexDocument, str]:
        text = fetch_text(self.client, location)
        document = parse_index(text, location)
        cache_path = self._cache_path(location)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = cache_path.with_name(cache_path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(cache_path)
        return document, hashlib.sha256(text.encode("utf-8")).hexdigest()

    def update(self) -> None:
        """Refresh the cached copy of every registered index.

        Raises:
            DownloadError: If at least one source could not be refreshed;
                the other sources are still updated.
        """
        failed: list[str] = []
        for location in self.sources():
            try:
                _, checksum = self._refresh(location)
            except PackManagerError as e:
                logger.warning("Could not update %s: %s", location, e)
                failed.append(location)
                continue
            with get_session(self._session_factory) as session:
                record = session.execute(
                    select(PackageSource).where(
                        PackageSource.manager == self.format,
                        PackageSource.location == location,
                    )
                ).scalar_one()
                record.mark_updated(checksum)
            logger.info("Updated index %s", location)
        if failed:
            raise DownloadError(
                f"Failed to update {len(failed)} source(s): {', '.join(failed)}",
                code="update_failed",
            )

    def _indexes(self, no_cache: bool) -> list[tuple[str, IndexDocument]]:
        indexes = []
        for location in self.sources():
            cache_path = self._cache_path(location)
            if not no_cache and cache_path.is_file():
                document = parse_index(cache_path.read_text(encoding="utf-8"), location)
            else:
                document, _ = self._refresh(location)
            indexes.append((location, document))
        return indexes

    def _known_names(self) -> set[str]:
        names: set[str] = set()
        for location in self.sources():
            cache_path = self._cache_path(location)
            if not cache_path.is_file():
                continue
            try:
                document = parse_index(cache_path.read_text(encoding="utf-8"), location)
            except PackManagerError:
                continue
            names.update(entry.name for entry in document.packages)
        return names

    def catalog(self, query: CatalogQuery) -> list[ManifestPackage]:
        results: list[ManifestPackage] = []
        seen: set[tuple[str, ComponentType, str, str]] = set()
        for location, document in self._indexes(query.no_cache):
            for entry in document.packages:
                if query.name and entry.name != query.name:
                    continue
                if query.types and entry.type not in query.types:
                    continue
                if query.version and entry.version != query.version:
                    continue
                if query.source and entry.source != query.source:
                    continue
                url = resolve_url(location, entry.url)
                checksum = entry.sha256.lower() if entry.sha256 else None
                # Mirrors of the same archive collapse; distinct archives all surface
                key = (entry.name, entry.type, entry.version, checksum or url)
                if key in seen:
                    continue
                seen.add(key)
                results.append(
                    ManifestPackage(
                        name=entry.name,
                        type=entry.type,
                        version=entry.version,
                        url=url,
                        source=entry.source,
                        checksum=checksum,
                        manager=self,
                    )
                )
        logger.debug("Catalog %s: %d result(s)", query, len(results))
        return results

    def pack(self, target: Target, options: PackOptions) -> Any:
        raise UnsupportedOperationError(self.format, "pack")

    def is_compatible(self, locator: str) -> bool:
        """Claim index locations and package names listed in cached indexes."""
        if not locator:
            return False
        if is_remote(locator):
            return urlparse(locator).path.endswith(INDEX_SUFFIXES)
        path = local_path(locator)
        if path.is_dir():
            return (path / INDEX_FILENAME).is_file()
        if path.is_file():
            return path.suffix in INDEX_SUFFIXES
        return locator in self._known_names()


__all__ = [
    "INDEX_FILENAME",
    "IndexDocument",
    "IndexEntry",
    "MANIFEST_FORMAT",
    "ManifestManager",
    "ManifestPackage",
    "parse_index",
    "resolve_url",
]
