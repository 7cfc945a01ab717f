"""Download, checksum and extraction helpers for package archives.

This module handles:
- Fetching index documents and archives from HTTP(S) URLs or local paths
- SHA-256 verification while streaming
- Extraction of tar archives into a staging directory
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx

from ukbuild.packmanager.base import PackManagerError

logger = logging.getLogger(__name__)

# Timeout for index requests (seconds)
INDEX_TIMEOUT = 30

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Written into a pulled component directory to record what it holds
PULL_MARKER = ".ukbuild-package"


class DownloadError(PackManagerError):
    """Raised when fetching an index or archive fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message, code=code)


class VerificationError(PackManagerError):
    """Raised when checksum verification fails."""

    def __init__(self, message: str, code: str = "verification_error") -> None:
        super().__init__(message, code=code)


class ExtractionError(PackManagerError):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code=code)


@dataclass
class DownloadResult:
    """Result of an archive download."""

    archive_path: Path
    checksum: str
    size_bytes: int


def is_remote(location: str) -> bool:
    """Return True for http(s) URLs."""
    return urlparse(location).scheme in ("http", "https")


def local_path(location: str) -> Path:
    """Turn a local location (plain path or file:// URL) into a Path."""
    parsed = urlparse(location)
    if parsed.scheme == "file":
        return Path(parsed.path)
    return Path(location).expanduser()


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def fetch_text(
    client: httpx.Client | None,
    location: str,
    timeout: float = INDEX_TIMEOUT,
) -> str:
    """Fetch a small text document (an index) from a URL or a local path.

    Raises:
        DownloadError: If the document cannot be read.
    """
    if not is_remote(location):
        path = local_path(location)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise DownloadError(f"Cannot read {path}: {e}", code="io_error") from e

    if client is None:
        raise DownloadError(f"Refusing to fetch {location} in offline mode", code="offline")

    logger.debug("Fetching %s", location)
    try:
        response = client.get(location, timeout=timeout)
        response.raise_for_status()
        return response.text
    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error fetching {location}: {e.response.status_code}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout fetching {location}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error fetching {location}: {e}", code="network_error"
        ) from e


def download_file(
    client: httpx.Client | None,
    location: str,
    dest_path: Path,
    expected_checksum: str | None = None,
    timeout: float = 600,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download (or copy) an archive with optional checksum verification.

    The archive is written to a temporary name next to ``dest_path`` and only
    renamed into place once complete and verified.

    Raises:
        DownloadError: If the download fails.
        VerificationError: If checksum verification fails.
    """
    logger.info("Downloading %s to %s", location, dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    part_path = dest_path.with_name(dest_path.name + ".part")

    sha256 = hashlib.sha256()
    total_bytes = 0
    try:
        with part_path.open("wb") as f:
            if is_remote(location):
                if client is None:
                    raise DownloadError(
                        f"Refusing to download {location} in offline mode",
                        code="offline",
                    )
                with client.stream("GET", location, timeout=timeout) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes(chunk_size):
                        f.write(chunk)
                        sha256.update(chunk)
                        total_bytes += len(chunk)
            else:
                with local_path(location).open("rb") as src:
                    while chunk := src.read(chunk_size):
                        f.write(chunk)
                        sha256.update(chunk)
                        total_bytes += len(chunk)
    except httpx.HTTPStatusError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {location}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(f"Timeout downloading {location}", code="timeout") from e
    except httpx.RequestError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {location}: {e}", code="network_error"
        ) from e
    except OSError as e:
        part_path.unlink(missing_ok=True)
        raise DownloadError(f"Cannot copy {location}: {e}", code="io_error") from e
    except DownloadError:
        part_path.unlink(missing_ok=True)
        raise

    computed_checksum = sha256.hexdigest()
    if expected_checksum and computed_checksum != expected_checksum.lower():
        part_path.unlink(missing_ok=True)
        raise VerificationError(
            f"Checksum mismatch for {location}: "
            f"expected {expected_checksum}, got {computed_checksum}"
        )

    part_path.replace(dest_path)
    logger.debug(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        computed_checksum[:16] + "...",
    )
    return DownloadResult(
        archive_path=dest_path,
        checksum=computed_checksum,
        size_bytes=total_bytes,
    )


def _safe_members(tar: tarfile.TarFile, dest_dir: Path) -> list[tarfile.TarInfo]:
    """Reject members escaping ``dest_dir`` or pointing at devices."""
    root = dest_dir.resolve()
    members = []
    for member in tar.getmembers():
        target = (dest_dir / member.name).resolve()
        if target != root and root not in target.parents:
            raise ExtractionError(f"Archive member escapes destination: {member.name}")
        if member.isdev():
            raise ExtractionError(f"Archive contains device file: {member.name}")
        members.append(member)
    return members


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a tar archive and return the directory holding its content.

    Archives wrapping everything in a single top-level directory are
    unwrapped, so the returned path is always the component root.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.debug("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            tar.extractall(dest_dir, members=_safe_members(tar, dest_dir))
    except (tarfile.TarError, OSError) as e:
        shutil.rmtree(dest_dir, ignore_errors=True)
        raise ExtractionError(f"Failed to extract {archive_path}: {e}") from e

    entries = list(dest_dir.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        return entries[0]
    return dest_dir


__all__ = [
    "DownloadError",
    "DownloadResult",
    "ExtractionError",
    "PULL_MARKER",
    "VerificationError",
    "compute_file_sha256",
    "download_file",
    "extract_archive",
    "fetch_text",
    "is_remote",
    "local_path",
]
