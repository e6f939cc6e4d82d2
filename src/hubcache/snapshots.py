"""Snapshot trees: per-commit directory entries bound to blobs."""

from __future__ import annotations

import json
import logging
import os
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

from hubcache.blobs import BlobStore
from hubcache.errors import InvalidPattern, NoMatch
from hubcache.fetch import Fetcher
from hubcache.layout import RepoCache
from hubcache.metadata import FileInfo, MetadataResolver
from hubcache.progress import PROGRESS_THRESHOLD, DownloadProgress
from hubcache.refs import DEFAULT_REVISION, FileRef, RepositoryRef, check_relative_path
from hubcache.revisions import ResolvedRevision, RevisionCache
from hubcache.workers import DEFAULT_CONCURRENCY, run_bounded

logger = logging.getLogger(__name__)

LinkMode = Literal["auto", "symlink", "manifest"]

MANIFEST_NAME = ".hubcache-manifest.json"


# ── Binders ─────────────────────────────────────────────────────────


@runtime_checkable
class SnapshotBinder(Protocol):
    """Binds a snapshot entry to the blob holding its bytes."""

    def lookup(self, snapshot_dir: Path, path: str) -> Path | None: ...

    def bind(self, snapshot_dir: Path, path: str, blob: Path) -> Path: ...


class SymlinkBinder:
    """Entries are relative symlinks into ``blobs/``."""

    def lookup(self, snapshot_dir: Path, path: str) -> Path | None:
        entry = snapshot_dir / path
        # exists() follows the link: a dangling entry counts as missing.
        return entry if entry.exists() else None

    def bind(self, snapshot_dir: Path, path: str, blob: Path) -> Path:
        entry = snapshot_dir / path
        entry.parent.mkdir(parents=True, exist_ok=True)
        if entry.is_symlink():
            entry.unlink()
        os.symlink(os.path.relpath(blob, entry.parent), entry)
        return entry


class ManifestBinder:
    """Entries are recorded in a JSON manifest inside the snapshot directory.

    For filesystems without symlinks. The manifest maps each entry path to
    its blob path relative to the snapshot directory; lookups return the
    blob path itself.
    """

    def _manifest(self, snapshot_dir: Path) -> Path:
        return snapshot_dir / MANIFEST_NAME

    def _load(self, snapshot_dir: Path) -> dict[str, str]:
        manifest = self._manifest(snapshot_dir)
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read manifest %s, rebinding entries: %s", manifest, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Manifest %s is not a mapping, rebinding entries", manifest)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def lookup(self, snapshot_dir: Path, path: str) -> Path | None:
        target = self._load(snapshot_dir).get(path)
        if target is None:
            return None
        blob = Path(os.path.normpath(snapshot_dir / target))
        return blob if blob.exists() else None

    def bind(self, snapshot_dir: Path, path: str, blob: Path) -> Path:
        snapshot_dir.mkdir(parents=True, exist_ok=True)
        entries = self._load(snapshot_dir)
        entries[path] = os.path.relpath(blob, snapshot_dir)
        manifest = self._manifest(snapshot_dir)
        staging = manifest.with_name(f"{MANIFEST_NAME}.{os.getpid()}.tmp")
        staging.write_text(json.dumps(entries, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(staging, manifest)
        return blob


def supports_symlinks(directory: Path) -> bool:
    """Probe whether symlinks can be created inside *directory*."""
    directory.mkdir(parents=True, exist_ok=True)
    probe = directory / f".symlink-probe-{os.getpid()}"
    try:
        os.symlink("missing-target", probe)
    except (OSError, NotImplementedError):
        return False
    probe.unlink()
    return True


def create_binder(mode: LinkMode, hub_cache_dir: Path) -> SnapshotBinder:
    if mode == "symlink":
        return SymlinkBinder()
    if mode == "manifest":
        return ManifestBinder()
    if supports_symlinks(hub_cache_dir):
        return SymlinkBinder()
    logger.info("Symlinks unsupported under %s, using snapshot manifests", hub_cache_dir)
    return ManifestBinder()


# ── File selection ──────────────────────────────────────────────────


def check_patterns(patterns: list[str]) -> None:
    """Reject absolute patterns and patterns with traversal segments."""
    for pattern in patterns:
        check_relative_path(pattern, kind="pattern", error=InvalidPattern)


def matches_pattern(path: str, pattern: str) -> bool:
    """Glob match where wildcards never cross a ``/``.

    ``*.json`` matches ``config.json`` but not ``sub/config.json``.
    """
    path_parts = path.split("/")
    pattern_parts = pattern.split("/")
    if len(path_parts) != len(pattern_parts):
        return False
    return all(fnmatchcase(p, q) for p, q in zip(path_parts, pattern_parts))


def select_files(files: list[str], patterns: list[str] | None) -> list[str]:
    """Files matching at least one pattern, in listing order; all without patterns."""
    if not patterns:
        return list(files)
    return [f for f in files if any(matches_pattern(f, p) for p in patterns)]


# ── Builder ─────────────────────────────────────────────────────────


class SnapshotBuilder:
    """Materializes files and snapshots of a repository at a resolved commit."""

    def __init__(
        self,
        revisions: RevisionCache,
        resolver: MetadataResolver,
        fetcher: Fetcher,
        *,
        binder: SnapshotBinder | None = None,
        max_workers: int = DEFAULT_CONCURRENCY,
        verify: bool = True,
        show_progress: bool = True,
        progress_threshold: int = PROGRESS_THRESHOLD,
        log: logging.Logger | None = None,
    ) -> None:
        self._revisions = revisions
        self._resolver = resolver
        self._fetcher = fetcher
        self.binder = binder or SymlinkBinder()
        self.max_workers = max_workers
        self.verify = verify
        self.show_progress = show_progress
        self.progress_threshold = progress_threshold
        self._log = log or logger

    def blob_store(self, cache: RepoCache) -> BlobStore:
        return BlobStore(
            cache.blobs,
            self._fetcher,
            verify=self.verify,
            show_progress=self.show_progress,
            progress_threshold=self.progress_threshold,
            log=self._log,
        )

    async def _materialize(
        self,
        resolved: ResolvedRevision,
        ref: FileRef,
        info: FileInfo,
    ) -> Path:
        blob = await self.blob_store(resolved.cache).ensure_blob(
            self._resolver.file_url(ref),
            info.integrity_tag,
            expected_size=info.size,
            label=ref.path,
        )
        return self.binder.bind(resolved.snapshot_dir, ref.path, blob)

    async def ensure_file(self, ref: FileRef) -> Path:
        """Return the local path of *ref*, downloading it when missing.

        A populated cache answers without any network call.
        """
        resolved = await self._revisions.resolve_commit(ref.repo, ref.revision)
        existing = self.binder.lookup(resolved.snapshot_dir, ref.path)
        if existing is not None:
            self._log.debug("Cache hit for %s", ref)
            return existing
        pinned = ref.pinned(resolved.commit_id)
        info = await self._resolver.get_file_info(pinned)
        return await self._materialize(resolved, pinned, info)

    async def ensure_snapshot(
        self,
        repo: RepositoryRef,
        revision: str = DEFAULT_REVISION,
        patterns: list[str] | None = None,
    ) -> list[Path]:
        """Return local paths of every file of *repo* matching *patterns*.

        Missing files are probed and downloaded at most ``max_workers`` at a
        time; the first failure cancels the rest and is raised. Paths follow
        the repository listing order.
        """
        patterns = list(patterns or [])
        check_patterns(patterns)

        resolved = await self._revisions.resolve_commit(repo, revision)
        metadata = resolved.metadata
        if metadata is None:
            metadata = await self._resolver.get_repository_metadata(repo, resolved.commit_id)

        desired = select_files(metadata.files, patterns)
        if not desired:
            raise NoMatch(
                "no file matches the requested patterns",
                context={"repo": repo.repo_id, "patterns": ", ".join(patterns)},
            )

        paths: list[Path | None] = []
        missing: list[tuple[int, FileRef]] = []
        for index, path in enumerate(desired):
            check_relative_path(path)
            existing = self.binder.lookup(resolved.snapshot_dir, path)
            paths.append(existing)
            if existing is None:
                ref = FileRef(
                    owner=repo.owner,
                    name=repo.name,
                    revision=resolved.commit_id,
                    path=path,
                )
                missing.append((index, ref))

        if missing:
            refs = [ref for _, ref in missing]
            infos = await run_bounded(
                refs, self._resolver.get_file_info, limit=self.max_workers
            )

            # Entries with identical bytes share one blob and one download.
            store = self.blob_store(resolved.cache)
            by_tag: dict[str, tuple[FileRef, FileInfo]] = {}
            for ref, info in zip(refs, infos):
                by_tag.setdefault(info.integrity_tag, (ref, info))
            pending = [pair for tag, pair in by_tag.items() if not store.has(tag)]
            total = sum(info.size for _, info in pending)
            self._log.info(
                "Fetching %d of %d files of %s@%s (%d blobs, %d bytes)",
                len(missing),
                len(desired),
                repo.repo_id,
                resolved.commit_id,
                len(pending),
                total,
            )
            with DownloadProgress(
                enabled=self.show_progress,
                threshold=self.progress_threshold,
                total=total,
                description=f"{repo.repo_id} ({len(pending)} files)",
            ) as progress:

                async def fetch(pair: tuple[FileRef, FileInfo]) -> Path:
                    ref, info = pair
                    return await store.ensure_blob(
                        self._resolver.file_url(ref),
                        info.integrity_tag,
                        expected_size=info.size,
                        label=ref.path,
                        progress=progress,
                    )

                await run_bounded(pending, fetch, limit=self.max_workers)

            for (index, ref), info in zip(missing, infos):
                blob = store.path_for(info.integrity_tag)
                paths[index] = self.binder.bind(resolved.snapshot_dir, ref.path, blob)

        return [p for p in paths if p is not None]
