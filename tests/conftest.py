"""Shared test fixtures for hubcache."""

import asyncio
import hashlib
import json

import httpx
import pytest

from hubcache.client import HubClient
from hubcache.config.models import CacheSettings, DownloadSettings, HubCacheConfig
from hubcache.refs import RepositoryRef

MAIN_COMMIT = "0a67737cc96d2554230f90338b163bc6380a2a85"
OTHER_COMMIT = "5fbbd5ff0c4b0c9d04ae4ab7bc65f3e1b0e8a62c"

PHI3_FILES = [
    ".gitattributes",
    "CODE_OF_CONDUCT.md",
    "LICENSE",
    "NOTICE.md",
    "README.md",
    "SECURITY.md",
    "added_tokens.json",
    "config.json",
    "configuration_phi3.py",
    "generation_config.json",
    "model-00001-of-00002.safetensors",
    "model-00002-of-00002.safetensors",
    "model.safetensors.index.json",
    "modeling_phi3.py",
    "sample_finetune.py",
    "special_tokens_map.json",
    "tokenizer.json",
    "tokenizer.model",
    "tokenizer_config.json",
]

PHI3_MODEL_INFO = {
    "lastModified": "2024-07-01T21:16:50.000Z",
    "cardData": {
        "license": "mit",
        "license_link": "https://huggingface.co/microsoft/Phi-3-mini-4k-instruct/resolve/main/LICENSE",
        "language": ["en"],
        "inference": {"parameters": {"temperature": 0}},
    },
    "siblings": [{"rfilename": name} for name in PHI3_FILES],
    "createdAt": "2024-04-22T16:18:17.000Z",
    "safetensors": {"parameters": {"BF16": 3821079552}, "total": 3821079552},
}


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class SleepRecorder:
    """Stands in for asyncio.sleep in the fetcher; records backoff delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in small chunks, yielding to the loop between them."""

    def __init__(self, content: bytes, chunk_size: int, delay: float) -> None:
        self.content = content
        self.chunk_size = chunk_size
        self.delay = delay

    async def __aiter__(self):
        for start in range(0, len(self.content), self.chunk_size):
            await asyncio.sleep(self.delay)
            yield self.content[start : start + self.chunk_size]


class FakeHub:
    """In-memory stand-in for the hub, served through httpx.MockTransport.

    ``trees`` maps commit id -> {path: content}; ``revisions`` maps revision
    names to commit ids. ``failures`` queues status codes per
    ``(method, url path)`` that are returned before the real answer.
    """

    def __init__(self, owner: str = "acme", name: str = "tiny-model") -> None:
        self.owner = owner
        self.name = name
        self.trees: dict[str, dict[str, bytes]] = {MAIN_COMMIT: {}}
        self.revisions: dict[str, str] = {"main": MAIN_COMMIT}
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], list[int]] = {}
        self.download_delay = 0.0
        self.chunk_size: int | None = None
        self.chunk_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def repo(self) -> RepositoryRef:
        return RepositoryRef(owner=self.owner, name=self.name)

    def add_file(self, path: str, content: bytes, commit: str = MAIN_COMMIT) -> str:
        self.trees.setdefault(commit, {})[path] = content
        return sha256_hex(content)

    def calls(self, method: str | None = None) -> list[httpx.Request]:
        return [r for r in self.requests if method is None or r.method == method]

    def fail(self, method: str, path: str, *statuses: int) -> None:
        self.failures.setdefault((method, path), []).extend(statuses)

    def resolve_path(self, commit: str, path: str) -> str:
        return f"/{self.owner}/{self.name}/resolve/{commit}/{path}"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        queued = self.failures.get((request.method, path))
        if queued:
            return httpx.Response(queued.pop(0))

        api_prefix = f"/api/models/{self.owner}/{self.name}/revision/"
        if path.startswith(api_prefix):
            revision = path[len(api_prefix):]
            commit = self.revisions.get(revision, revision)
            if commit not in self.trees:
                return httpx.Response(404)
            body = {
                "sha": commit,
                "siblings": [{"rfilename": p} for p in self.trees[commit]],
                "lastModified": "2024-07-01T21:16:50.000Z",
                "createdAt": "2024-04-22T16:18:17.000Z",
            }
            return httpx.Response(200, json=body)

        resolve_prefix = f"/{self.owner}/{self.name}/resolve/"
        if path.startswith(resolve_prefix):
            commit, _, file_path = path[len(resolve_prefix):].partition("/")
            content = self.trees.get(commit, {}).get(file_path)
            if content is None:
                return httpx.Response(404)
            if request.method == "HEAD":
                return httpx.Response(
                    302,
                    headers={
                        "X-Repo-Commit": commit,
                        "X-Linked-Etag": f'"{sha256_hex(content)}"',
                        "X-Linked-Size": str(len(content)),
                        "Location": f"https://cdn.example.com/{sha256_hex(content)}",
                    },
                )
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            try:
                await asyncio.sleep(self.download_delay)
            finally:
                self.in_flight -= 1
            status = 200
            range_header = request.headers.get("Range")
            if range_header:
                status = 206
                content = content[int(range_header.removeprefix("bytes=").rstrip("-")) :]
            if self.chunk_size:
                return httpx.Response(
                    status, stream=ChunkedStream(content, self.chunk_size, self.chunk_delay)
                )
            return httpx.Response(status, content=content)

        return httpx.Response(404)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def fake_hub():
    return FakeHub()


@pytest.fixture
def hub_config(tmp_path):
    return HubCacheConfig(
        cache=CacheSettings(home_dir=str(tmp_path / "hf"), link_mode="symlink"),
        download=DownloadSettings(show_progress=False),
    )


@pytest.fixture
def mock_transport(fake_hub):
    return httpx.MockTransport(fake_hub.handler)


@pytest.fixture
async def hub_client(hub_config, mock_transport, sleep_recorder):
    http = httpx.AsyncClient(transport=mock_transport)
    async with HubClient(hub_config, http_client=http, sleep=sleep_recorder) as client:
        yield client
    await http.aclose()


def model_info_bytes(payload: dict) -> bytes:
    return json.dumps(payload).encode()
