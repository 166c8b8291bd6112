"""URL-keyed cache of downloaded runtime artifacts.

Each distinct URL string maps to one file, <cache_root>/<sha256(url)><ext>.
Downloads stream into a temporary file inside the cache root and are renamed
into place, so a cache entry is either complete or absent.

The key depends on the URL string only. A URL whose remote content changes
keeps serving the bytes that were first downloaded until the entry is removed
(see runharness.clean).
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import List, Optional
from urllib.parse import urlparse

import requests

from .errors import DownloadError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_EXTENSION = ".jar"
PARTIAL_SUFFIX = ".part"


def cache_key(url: str) -> str:
    """Compute the cache key for a URL.

    Args:
        url: Artifact URL.

    Returns:
        Hex-encoded SHA-256 digest of the URL's UTF-8 bytes.
    """
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def artifact_extension(url: str) -> str:
    """File extension for a cached artifact, taken from the URL path."""
    suffix = PurePosixPath(urlparse(url).path).suffix
    return suffix if suffix else DEFAULT_EXTENSION


class ArtifactCache:
    """Resolves artifact URLs to locally cached files, downloading on a miss."""

    def __init__(
        self,
        cache_root: Path,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.cache_root = Path(cache_root)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def cached_path(self, url: str) -> Path:
        """Return where url is (or would be) cached. Does no I/O."""
        return self.cache_root / f"{cache_key(url)}{artifact_extension(url)}"

    def lookup(self, url: str) -> Optional[Path]:
        """Return the cached file for url if it has been downloaded."""
        path = self.cached_path(url)
        if path.exists():
            return path
        return None

    def resolve(self, url: str) -> Path:
        """Return a local file holding the artifact at url.

        A cache hit returns immediately without touching the network.

        Raises:
            DownloadError: If the download fails. No entry is created.
        """
        cached = self.lookup(url)
        if cached is not None:
            logger.debug("Cache hit for %s: %s", url, cached)
            return cached

        return self._download(url, self.cached_path(url))

    def _download(self, url: str, destination: Path) -> Path:
        logger.info("Downloading %s", url)
        tmp_path: Optional[Path] = None
        try:
            self.cache_root.mkdir(parents=True, exist_ok=True)
            tmp = tempfile.NamedTemporaryFile(
                dir=self.cache_root,
                prefix=f".{destination.stem}.",
                suffix=PARTIAL_SUFFIX,
                delete=False,
            )
            tmp_path = Path(tmp.name)
            with tmp:
                with self.session.get(url, stream=True, timeout=self.timeout) as response:
                    response.raise_for_status()
                    size = 0
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            tmp.write(chunk)
                            size += len(chunk)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, destination)
        except (requests.RequestException, OSError) as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise DownloadError(url, e) from e
        except BaseException:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise

        logger.info("Cached %s (%d bytes) at %s", url, size, destination)
        return destination

    def entries(self) -> List[Path]:
        """List complete cache entries, skipping in-flight downloads."""
        if not self.cache_root.exists():
            return []
        return sorted(
            p for p in self.cache_root.iterdir()
            if p.is_file() and not p.name.endswith(PARTIAL_SUFFIX)
        )
