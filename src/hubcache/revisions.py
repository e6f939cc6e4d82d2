"""Revision cache: revision string -> immutable commit id.

A resolved commit id is persisted as ``refs/<revision>`` and trusted verbatim
afterwards; a cached pointer is never re-validated against the hub.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from hubcache.errors import IntegrityFormatError, ParseError
from hubcache.layout import RepoCache
from hubcache.metadata import MetadataResolver, RepositoryMetadata
from hubcache.refs import COMMIT_RE, RepositoryRef, is_commit_id

logger = logging.getLogger(__name__)


class ResolvedRevision(BaseModel):
    """A revision pinned to its commit id.

    ``metadata`` is only set when resolution required a metadata lookup, so
    the caller can reuse it instead of asking again.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    repo: RepositoryRef
    revision: str
    commit_id: str = Field(pattern=COMMIT_RE.pattern)
    cache: RepoCache
    metadata: RepositoryMetadata | None = None

    @property
    def snapshot_dir(self) -> Path:
        return self.cache.snapshot_dir(self.commit_id)


class RevisionCache:
    """Owns the ref-pointer files of every repository under *hub_cache_dir*.

    TODO: take a per-ref advisory lock (fcntl/msvcrt) around the read-then-write
    in resolve_commit so concurrent processes on a cold cache do not each issue
    a metadata lookup. The write itself is idempotent.
    """

    def __init__(
        self,
        resolver: MetadataResolver,
        hub_cache_dir: str | Path,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self._resolver = resolver
        self.hub_cache_dir = Path(hub_cache_dir)
        self._log = log or logger

    def repo_cache(self, repo: RepositoryRef) -> RepoCache:
        return RepoCache.for_repo(self.hub_cache_dir, repo).prepare()

    def read_ref(self, cache: RepoCache, revision: str) -> str | None:
        """Return the cached commit id for *revision*, or None when absent."""
        path = cache.ref_path(revision)
        try:
            commit_id = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not is_commit_id(commit_id):
            raise IntegrityFormatError(
                f"ref pointer holds {commit_id!r} which is not a commit id",
                context={"path": str(path)},
            )
        return commit_id

    def write_ref(self, cache: RepoCache, revision: str, commit_id: str) -> Path:
        path = cache.ref_path(revision)
        path.parent.mkdir(parents=True, exist_ok=True)
        staging = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        staging.write_text(commit_id, encoding="utf-8")
        os.replace(staging, path)
        return path

    async def resolve_commit(self, repo: RepositoryRef, revision: str) -> ResolvedRevision:
        """Resolve *revision*, from the ref pointer when present, else the hub."""
        cache = self.repo_cache(repo)
        commit_id = self.read_ref(cache, revision)
        if commit_id is not None:
            self._log.debug("Ref %s@%s -> %s (cached)", repo.repo_id, revision, commit_id)
            return ResolvedRevision(
                repo=repo, revision=revision, commit_id=commit_id, cache=cache
            )

        metadata = await self._resolver.get_repository_metadata(repo, revision)
        if not metadata.commit_id:
            raise ParseError(
                "model info payload has no sha",
                context={"repo": repo.repo_id, "revision": revision},
            )
        if not is_commit_id(metadata.commit_id):
            raise IntegrityFormatError(
                f"{metadata.commit_id!r} is not a commit id",
                context={"repo": repo.repo_id, "revision": revision},
            )
        self.write_ref(cache, revision, metadata.commit_id)
        self._log.info("Ref %s@%s -> %s", repo.repo_id, revision, metadata.commit_id)
        return ResolvedRevision(
            repo=repo,
            revision=revision,
            commit_id=metadata.commit_id,
            cache=cache,
            metadata=metadata,
        )
