"""Release image download and checksum verification."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import aiohttp

from release_upgrade.config.settings import UpgradeConfig
from release_upgrade.logging import get_logger
from release_upgrade.storage.exceptions import ChecksumError, FetchError, MissingFileError

log = get_logger(source="fetch", tags=["fetch", "image"])

CHUNK_SIZE = 1024 * 1024  # 1MB chunks


def is_remote(image_ref: str) -> bool:
    return urlparse(image_ref).scheme in ("http", "https")


async def _download(url: str, dest: Path, timeout_seconds: float) -> int:
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    written = 0
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise FetchError(url, f"HTTP status {resp.status}")
            with open(dest, "wb") as f:
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
    return written


def download_image(url: str, dest_dir: Path, timeout_seconds: float = 3600.0) -> Path:
    """Download ``url`` into ``dest_dir``.

    A partial download is removed before the error propagates.

    Raises:
        FetchError: On network errors, timeouts or a non-200 response
    """
    name = Path(urlparse(url).path).name
    if not name:
        raise FetchError(url, "URL has no file name")
    dest = dest_dir / name
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FetchError(url, f"cannot create {dest_dir}: {e}") from e

    log.info(f"Fetching {url} -> {dest}")
    try:
        written = asyncio.run(_download(url, dest, timeout_seconds))
    except FetchError:
        dest.unlink(missing_ok=True)
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        dest.unlink(missing_ok=True)
        raise FetchError(url, str(e) or type(e).__name__) from e
    log.info(f"Fetched {written} bytes")
    return dest


def compute_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: Path, expected: str) -> None:
    """Compare the SHA256 of ``path`` with ``expected``.

    Raises:
        ChecksumError: If the file cannot be read or the digests differ
    """
    try:
        actual = compute_sha256(path)
    except OSError as e:
        raise ChecksumError(path, expected, None, reason=str(e)) from e
    if actual.lower() != expected.strip().lower():
        raise ChecksumError(path, expected, actual)
    log.info(f"Checksum verified for {path}")


def resolve_image(
    config: UpgradeConfig,
    image_ref: str,
    expected_sha256: Optional[str] = None,
) -> Path:
    """Turn the image argument into a local, verified file.

    URLs are fetched into the cache directory. When a checksum is configured
    the local file is verified against it.

    Raises:
        FetchError: If a remote image cannot be downloaded
        MissingFileError: If a local image does not exist
        ChecksumError: If the checksum does not match
    """
    if is_remote(image_ref):
        path = download_image(image_ref, config.cache_dir, config.fetch_timeout_seconds)
    else:
        path = Path(image_ref)
        if not path.is_file():
            raise MissingFileError(path, "image file")

    expected = expected_sha256 or config.image_sha256
    if expected:
        verify_checksum(path, expected)
    return path
