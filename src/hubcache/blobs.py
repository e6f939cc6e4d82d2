"""Content-addressed blob storage.

A blob lives at ``blobs/<integrity tag>`` whatever revision or snapshot
refers to it, so identical bytes are stored once. Blobs are never rewritten
once present.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from hubcache.errors import IntegrityFormatError, IntegrityMismatch
from hubcache.fetch import Fetcher
from hubcache.progress import PROGRESS_THRESHOLD, DownloadProgress
from hubcache.refs import is_integrity_tag

if TYPE_CHECKING:
    from hashlib import _Hash

logger = logging.getLogger(__name__)

INCOMPLETE_SUFFIX = ".incomplete"
_CHUNK_SIZE = 1024 * 1024


def hash_file(path: Path, digest: _Hash | None = None) -> _Hash:
    """Feed the content of *path* into *digest* (a new sha256 by default)."""
    digest = digest or hashlib.sha256()
    with path.open("rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            digest.update(chunk)
    return digest


def _response_length(response: httpx.Response, offset: int) -> int | None:
    value = response.headers.get("Content-Length")
    if value is None or not value.isdigit():
        return None
    return int(value) + offset


class BlobStore:
    """Blob directory of one repository cache."""

    def __init__(
        self,
        directory: str | Path,
        fetcher: Fetcher,
        *,
        verify: bool = True,
        show_progress: bool = True,
        progress_threshold: int = PROGRESS_THRESHOLD,
        log: logging.Logger | None = None,
    ) -> None:
        self.directory = Path(directory)
        self._fetcher = fetcher
        self.verify = verify
        self.show_progress = show_progress
        self.progress_threshold = progress_threshold
        self._log = log or logger

    def path_for(self, integrity_tag: str) -> Path:
        if not is_integrity_tag(integrity_tag):
            raise IntegrityFormatError(
                f"{integrity_tag!r} is not a sha256 integrity tag",
                context={"blobs": str(self.directory)},
            )
        return self.directory / integrity_tag

    def staging_path(self, integrity_tag: str) -> Path:
        return self.directory / f"{integrity_tag}{INCOMPLETE_SUFFIX}"

    def has(self, integrity_tag: str) -> bool:
        return self.path_for(integrity_tag).is_file()

    async def ensure_blob(
        self,
        url: str,
        integrity_tag: str,
        *,
        expected_size: int | None = None,
        label: str | None = None,
        progress: DownloadProgress | None = None,
    ) -> Path:
        """Return the blob path for *integrity_tag*, downloading *url* if missing.

        Bytes are streamed into ``<tag>.incomplete`` and renamed into place
        once complete (and, with ``verify``, once their sha256 matches the
        tag). A leftover staging file is resumed with a Range request when
        the expected size is known.
        """
        blob = self.path_for(integrity_tag)
        if blob.exists():
            self._log.debug("Blob %s already present", integrity_tag)
            return blob
        self.directory.mkdir(parents=True, exist_ok=True)

        if progress is None:
            with DownloadProgress(
                enabled=self.show_progress, threshold=self.progress_threshold
            ) as own:
                await self._download(url, integrity_tag, expected_size, label, own)
        else:
            await self._download(url, integrity_tag, expected_size, label, progress)
        return blob

    async def _download(
        self,
        url: str,
        integrity_tag: str,
        expected_size: int | None,
        label: str | None,
        progress: DownloadProgress,
    ) -> None:
        blob = self.path_for(integrity_tag)
        staging = self.staging_path(integrity_tag)
        digest = hashlib.sha256()

        offset = staging.stat().st_size if staging.exists() else 0
        if offset and (expected_size is None or offset > expected_size):
            offset = 0

        if offset and offset == expected_size:
            self._log.info("Staged download of %s already complete", integrity_tag)
            if self.verify:
                hash_file(staging, digest)
        else:
            headers = {}
            if offset:
                self._log.info("Resuming %s at byte %d", url, offset)
                headers["Range"] = f"bytes={offset}-"
            else:
                self._log.info("Downloading %s", url)
            async with self._fetcher.stream("GET", url, headers=headers) as response:
                if offset and response.status_code != 206:
                    # Range ignored, the body is the whole file.
                    offset = 0
                if offset and self.verify:
                    hash_file(staging, digest)
                size = expected_size
                if size is None:
                    size = _response_length(response, offset)
                tracker = progress.track(label or integrity_tag, size, completed=offset)
                try:
                    with staging.open("ab" if offset else "wb") as fh:
                        async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                            fh.write(chunk)
                            digest.update(chunk)
                            tracker.advance(len(chunk))
                finally:
                    tracker.close()

        if self.verify:
            actual = digest.hexdigest()
            if actual != integrity_tag:
                staging.unlink(missing_ok=True)
                raise IntegrityMismatch(
                    "downloaded bytes do not match the integrity tag",
                    context={"url": url, "expected": integrity_tag, "actual": actual},
                )
        try:
            os.replace(staging, blob)
        except FileNotFoundError:
            # Another writer renamed the same bytes into place first.
            if not blob.exists():
                raise
        self._log.info("Stored blob %s", integrity_tag)
