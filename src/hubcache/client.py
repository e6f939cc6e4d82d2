"""High-level client wiring the fetcher, resolver, caches and builder together."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from types import TracebackType

import httpx

from hubcache.auth import resolve_token
from hubcache.config.models import HubCacheConfig
from hubcache.fetch import Fetcher, Sleep
from hubcache.metadata import MetadataResolver, RepositoryMetadata
from hubcache.refs import (
    DEFAULT_REVISION,
    FileRef,
    RepositoryRef,
    parse_file_ref,
    parse_repo_ref,
)
from hubcache.revisions import RevisionCache
from hubcache.snapshots import SnapshotBuilder, create_binder

logger = logging.getLogger(__name__)


class HubClient:
    """Fetches files and snapshots of hub repositories into the local cache.

    The configuration is resolved by the caller (see
    :func:`hubcache.config.load_config`); the client never reads the process
    environment. Pass *http_client* to supply a custom transport; a client
    created here is closed by :meth:`aclose`.
    """

    def __init__(
        self,
        config: HubCacheConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        log: logging.Logger | None = None,
    ) -> None:
        self.config = config or HubCacheConfig()
        self._log = log or logger
        self.hub_cache_dir = self.config.cache.hub_cache_path
        self.hub_cache_dir.mkdir(parents=True, exist_ok=True)
        token = resolve_token(self.config.auth.token, self.config.token_file)

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.http.timeout),
            headers={"User-Agent": self.config.http.user_agent},
        )
        self.fetcher = Fetcher(
            self._http,
            token=token,
            max_attempts=self.config.http.max_attempts,
            sleep=sleep,
            log=self._log,
        )
        self.resolver = MetadataResolver(
            self.fetcher,
            endpoint=self.config.http.endpoint,
            strict=self.config.metadata.strict,
            log=self._log,
        )
        self.revisions = RevisionCache(self.resolver, self.hub_cache_dir, log=self._log)
        download = self.config.download
        self.snapshots = SnapshotBuilder(
            self.revisions,
            self.resolver,
            self.fetcher,
            binder=create_binder(self.config.cache.link_mode, self.hub_cache_dir),
            max_workers=download.max_workers,
            verify=download.verify,
            show_progress=download.show_progress,
            progress_threshold=download.progress_threshold,
            log=self._log,
        )

    async def __aenter__(self) -> HubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def get_model_info(
        self, repo: RepositoryRef | str, revision: str = DEFAULT_REVISION
    ) -> RepositoryMetadata:
        """Fetch repository metadata; nothing is cached."""
        if isinstance(repo, str):
            repo = parse_repo_ref(repo)
        return await self.resolver.get_repository_metadata(repo, revision)

    async def ensure_file(self, ref: FileRef | str) -> Path:
        """Return the local path of a file, downloading it when missing."""
        if isinstance(ref, str):
            ref = parse_file_ref(ref)
        return await self.snapshots.ensure_file(ref)

    async def ensure_snapshot(
        self,
        repo: RepositoryRef | str,
        revision: str = DEFAULT_REVISION,
        patterns: list[str] | None = None,
    ) -> list[Path]:
        """Return local paths of the repository files matching *patterns*."""
        if isinstance(repo, str):
            repo = parse_repo_ref(repo)
        return await self.snapshots.ensure_snapshot(repo, revision, patterns)
