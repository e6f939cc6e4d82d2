"""On-disk layout of the hub cache.

Structure, per repository (compatible with huggingface_hub)::

    <hub_cache_dir>/models--<owner>--<name>/
        blobs/       files named by integrity tag
        refs/        files named by revision, holding a bare commit id
        snapshots/   one directory per commit id, entries bound to blobs
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from hubcache.refs import RepositoryRef, check_relative_path

SUBDIRECTORIES = ("blobs", "refs", "snapshots")


def repo_folder_name(repo: RepositoryRef) -> str:
    return f"models--{repo.owner}--{repo.name}"


@dataclass(frozen=True)
class RepoCache:
    """Paths of one repository's cache directory."""

    root: Path

    @classmethod
    def for_repo(cls, hub_cache_dir: Path, repo: RepositoryRef) -> RepoCache:
        return cls(Path(hub_cache_dir) / repo_folder_name(repo))

    @property
    def blobs(self) -> Path:
        return self.root / "blobs"

    @property
    def refs(self) -> Path:
        return self.root / "refs"

    @property
    def snapshots(self) -> Path:
        return self.root / "snapshots"

    def prepare(self) -> RepoCache:
        """Create the three subdirectories if missing."""
        for name in SUBDIRECTORIES:
            (self.root / name).mkdir(parents=True, exist_ok=True)
        return self

    def ref_path(self, revision: str) -> Path:
        return self.refs / check_relative_path(revision, kind="revision")

    def blob_path(self, integrity_tag: str) -> Path:
        return self.blobs / integrity_tag

    def snapshot_dir(self, commit_id: str) -> Path:
        return self.snapshots / commit_id
