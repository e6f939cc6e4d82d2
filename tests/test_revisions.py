"""Tests for hubcache.revisions and hubcache.layout."""

import httpx
import pytest

from conftest import MAIN_COMMIT, OTHER_COMMIT
from hubcache.errors import IntegrityFormatError, ParseError, PathEscape
from hubcache.fetch import Fetcher
from hubcache.layout import RepoCache, repo_folder_name
from hubcache.metadata import MetadataResolver
from hubcache.revisions import RevisionCache


@pytest.fixture
def revisions(tmp_path, mock_transport, sleep_recorder):
    fetcher = Fetcher(httpx.AsyncClient(transport=mock_transport), sleep=sleep_recorder)
    resolver = MetadataResolver(fetcher, endpoint="https://hub.test")
    return RevisionCache(resolver, tmp_path / "hub")


# ── layout ──────────────────────────────────────────────────────────


class TestLayout:
    def test_folder_name(self, fake_hub):
        assert repo_folder_name(fake_hub.repo) == "models--acme--tiny-model"

    def test_prepare_creates_subdirectories(self, tmp_path, fake_hub):
        cache = RepoCache.for_repo(tmp_path, fake_hub.repo).prepare()
        assert cache.root == tmp_path / "models--acme--tiny-model"
        for sub in (cache.blobs, cache.refs, cache.snapshots):
            assert sub.is_dir()

    def test_paths(self, tmp_path, fake_hub):
        cache = RepoCache.for_repo(tmp_path, fake_hub.repo)
        assert cache.ref_path("refs/pr/1") == cache.refs / "refs" / "pr" / "1"
        assert cache.snapshot_dir(MAIN_COMMIT) == cache.snapshots / MAIN_COMMIT
        assert cache.blob_path("a" * 64) == cache.blobs / ("a" * 64)

    def test_ref_path_rejects_traversal(self, tmp_path, fake_hub):
        cache = RepoCache.for_repo(tmp_path, fake_hub.repo)
        with pytest.raises(PathEscape):
            cache.ref_path("../../escape")


# ── resolve_commit ──────────────────────────────────────────────────


class TestResolveCommit:
    async def test_cold_cache_queries_and_persists(self, revisions, fake_hub):
        resolved = await revisions.resolve_commit(fake_hub.repo, "main")

        assert resolved.commit_id == MAIN_COMMIT
        assert resolved.metadata is not None
        assert resolved.metadata.commit_id == MAIN_COMMIT
        ref_file = resolved.cache.refs / "main"
        assert ref_file.read_text() == MAIN_COMMIT
        assert len(fake_hub.calls("GET")) == 1
        assert resolved.snapshot_dir == resolved.cache.snapshots / MAIN_COMMIT

    async def test_warm_cache_skips_network(self, revisions, fake_hub):
        await revisions.resolve_commit(fake_hub.repo, "main")
        fake_hub.requests.clear()

        resolved = await revisions.resolve_commit(fake_hub.repo, "main")

        assert resolved.commit_id == MAIN_COMMIT
        assert resolved.metadata is None
        assert fake_hub.requests == []

    async def test_cached_pointer_is_trusted(self, revisions, fake_hub):
        await revisions.resolve_commit(fake_hub.repo, "main")
        # The branch moves upstream; the local pointer still wins.
        fake_hub.trees[OTHER_COMMIT] = {}
        fake_hub.revisions["main"] = OTHER_COMMIT

        resolved = await revisions.resolve_commit(fake_hub.repo, "main")
        assert resolved.commit_id == MAIN_COMMIT

    async def test_nested_revision(self, revisions, fake_hub):
        fake_hub.trees[OTHER_COMMIT] = {}
        fake_hub.revisions["refs/pr/1"] = OTHER_COMMIT

        resolved = await revisions.resolve_commit(fake_hub.repo, "refs/pr/1")

        assert resolved.commit_id == OTHER_COMMIT
        assert (resolved.cache.refs / "refs" / "pr" / "1").read_text() == OTHER_COMMIT

    async def test_corrupt_pointer_raises(self, revisions, fake_hub):
        cache = revisions.repo_cache(fake_hub.repo)
        (cache.refs / "main").write_text("not-a-commit")
        with pytest.raises(IntegrityFormatError):
            await revisions.resolve_commit(fake_hub.repo, "main")
        assert fake_hub.requests == []

    async def test_missing_sha_raises_parse_error(self, tmp_path, sleep_recorder, fake_hub):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"siblings": []}))
        fetcher = Fetcher(httpx.AsyncClient(transport=transport), sleep=sleep_recorder)
        revisions = RevisionCache(MetadataResolver(fetcher), tmp_path)
        with pytest.raises(ParseError):
            await revisions.resolve_commit(fake_hub.repo, "main")
        assert not (tmp_path / "models--acme--tiny-model" / "refs" / "main").exists()

    async def test_bad_sha_shape_raises(self, tmp_path, sleep_recorder, fake_hub):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"sha": "deadbeef"}))
        fetcher = Fetcher(httpx.AsyncClient(transport=transport), sleep=sleep_recorder)
        revisions = RevisionCache(MetadataResolver(fetcher), tmp_path)
        with pytest.raises(IntegrityFormatError):
            await revisions.resolve_commit(fake_hub.repo, "main")


class TestRefPointers:
    def test_read_missing_returns_none(self, revisions, fake_hub):
        cache = revisions.repo_cache(fake_hub.repo)
        assert revisions.read_ref(cache, "main") is None

    def test_write_then_read(self, revisions, fake_hub):
        cache = revisions.repo_cache(fake_hub.repo)
        path = revisions.write_ref(cache, "v1.0", MAIN_COMMIT)
        assert path == cache.refs / "v1.0"
        assert revisions.read_ref(cache, "v1.0") == MAIN_COMMIT
        assert [p.name for p in cache.refs.iterdir()] == ["v1.0"]

    def test_overwrite(self, revisions, fake_hub):
        cache = revisions.repo_cache(fake_hub.repo)
        revisions.write_ref(cache, "main", MAIN_COMMIT)
        revisions.write_ref(cache, "main", OTHER_COMMIT)
        assert revisions.read_ref(cache, "main") == OTHER_COMMIT
