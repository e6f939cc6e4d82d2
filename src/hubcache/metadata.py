"""Metadata lookups against the hub: repository info and per-file probes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hubcache.errors import IntegrityFormatError, MissingHeader, ParseError
from hubcache.fetch import Fetcher
from hubcache.refs import (
    HUB_URL,
    FileRef,
    RepositoryRef,
    is_commit_id,
    is_integrity_tag,
)

logger = logging.getLogger(__name__)


# ── API response models ─────────────────────────────────────────────
#
# https://huggingface.co/docs/hub/api#get-apimodelsrepoid-or-apimodelsrepoidrevisionrevision
# Unknown fields land in ``model_extra``; strict decoding rejects them.


class _ApiModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Sibling(_ApiModel):
    rfilename: str


class CardData(_ApiModel):
    license: str | list[str] | None = None
    license_link: str | None = None
    base_model: str | list[str] | None = None


class SafeTensorsInfo(_ApiModel):
    parameters: dict[str, int] = Field(default_factory=dict)
    total: int = 0


class ModelInfoResponse(_ApiModel):
    """Subset of the model info payload this package relies on."""

    sha: str | None = None
    last_modified: datetime | None = Field(default=None, alias="lastModified")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    card_data: CardData | None = Field(default=None, alias="cardData")
    siblings: list[Sibling] = Field(default_factory=list)
    safetensors: SafeTensorsInfo | None = None


def _unknown_fields(model: BaseModel, prefix: str = "") -> list[str]:
    """Dotted names of every field no model declared, depth first."""
    found = [f"{prefix}{key}" for key in (model.model_extra or {})]
    for name in type(model).model_fields:
        value = getattr(model, name)
        children = value if isinstance(value, list) else [value]
        for index, child in enumerate(children):
            if not isinstance(child, BaseModel):
                continue
            label = name if not isinstance(value, list) else f"{name}[{index}]"
            found.extend(_unknown_fields(child, f"{prefix}{label}."))
    return found


def decode_model_info(
    body: bytes | str,
    *,
    strict: bool = False,
    context: dict[str, object] | None = None,
) -> ModelInfoResponse:
    """Decode a model info payload.

    With *strict*, any field the models do not declare is a :class:`ParseError`.
    """
    try:
        response = ModelInfoResponse.model_validate_json(body)
    except ValidationError as exc:
        raise ParseError(f"invalid model info payload: {exc}", context=context) from exc
    if strict:
        unknown = _unknown_fields(response)
        if unknown:
            raise ParseError(
                "unrecognized fields in model info payload",
                context={**(context or {}), "fields": ", ".join(unknown)},
            )
    return response


# ── Domain models ───────────────────────────────────────────────────


class RepositoryMetadata(BaseModel):
    """What the hub reports about a repository at one revision."""

    repo: RepositoryRef
    commit_id: str | None = None
    upstream: RepositoryRef | None = None
    tensor_type: str = ""
    num_weights: int = 0
    license: str = ""
    license_url: str = ""
    files: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    modified_at: datetime | None = None
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Top-level payload fields not modelled above"
    )


class FileInfo(BaseModel):
    """Result of a HEAD probe on a file."""

    model_config = ConfigDict(frozen=True)

    commit_id: str
    integrity_tag: str
    size: int = Field(ge=0)


def pick_tensor_type(parameters: dict[str, int]) -> tuple[str, int]:
    """Return the tensor type holding the most weights.

    Ties go to the lexicographically smallest type name.
    """
    best_type, best_count = "", 0
    for name in sorted(parameters):
        if parameters[name] > best_count:
            best_type, best_count = name, parameters[name]
    return best_type, best_count


def _upstream(base_model: str | list[str] | None) -> RepositoryRef | None:
    if isinstance(base_model, list):
        base_model = base_model[0] if len(base_model) == 1 else None
    if not base_model:
        return None
    parts = base_model.split("/")
    if len(parts) != 2 or not all(parts):
        return None
    return RepositoryRef(owner=parts[0], name=parts[1])


def build_metadata(repo: RepositoryRef, response: ModelInfoResponse) -> RepositoryMetadata:
    card = response.card_data or CardData()
    tensors = response.safetensors or SafeTensorsInfo()
    tensor_type, num_weights = pick_tensor_type(tensors.parameters)
    if num_weights == 0:
        num_weights = tensors.total
    license_name = card.license
    if isinstance(license_name, list):
        license_name = ", ".join(license_name)
    return RepositoryMetadata(
        repo=repo,
        commit_id=response.sha,
        upstream=_upstream(card.base_model),
        tensor_type=tensor_type,
        num_weights=num_weights,
        license=license_name or "",
        license_url=card.license_link or "",
        files=[s.rfilename for s in response.siblings],
        created_at=response.created_at,
        modified_at=response.last_modified,
        extra=dict(response.model_extra or {}),
    )


def normalize_etag(value: str) -> str:
    """Strip the weak-validator prefix and surrounding quotes."""
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"')


class MetadataResolver:
    """Talks to the metadata endpoint and probes individual files."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        endpoint: str = HUB_URL,
        strict: bool = False,
        log: logging.Logger | None = None,
    ) -> None:
        self._fetcher = fetcher
        self.endpoint = endpoint.rstrip("/")
        self.strict = strict
        self._log = log or logger

    def repo_url(self, repo: RepositoryRef) -> str:
        """Web URL of *repo* on the configured endpoint."""
        return f"{self.endpoint}/{repo.repo_id}"

    def metadata_url(self, repo: RepositoryRef, revision: str) -> str:
        return f"{self.endpoint}/api/models/{repo.repo_id}/revision/{quote(revision, safe='')}"

    def file_url(self, ref: FileRef) -> str:
        return (
            f"{self.endpoint}/{ref.repo_id}/resolve/{quote(ref.revision, safe='')}"
            f"/{quote(ref.path)}?download=true"
        )

    async def get_repository_metadata(
        self, repo: RepositoryRef, revision: str
    ) -> RepositoryMetadata:
        """Fetch and decode the repository listing at *revision*."""
        url = self.metadata_url(repo, revision)
        self._log.info("Looking up %s at %s", repo.repo_id, revision)
        async with self._fetcher.stream(
            "GET", url, headers={"Accept": "application/json"}
        ) as response:
            body = await response.aread()
        decoded = decode_model_info(
            body, strict=self.strict, context={"repo": repo.repo_id, "url": url}
        )
        return build_metadata(repo, decoded)

    async def get_file_info(self, ref: FileRef) -> FileInfo:
        """HEAD-probe *ref* and return its commit id, integrity tag and size.

        Redirects are not followed: the hub answers with a redirect to a CDN
        whose headers are useless here, so everything is read off the
        redirect response itself.
        """
        url = self.file_url(ref)
        async with self._fetcher.stream(
            "HEAD",
            url,
            headers={"Accept-Encoding": "identity"},
            follow_redirects=False,
        ) as response:
            headers = response.headers

        commit_id = headers.get("X-Repo-Commit")
        if not commit_id:
            raise MissingHeader("X-Repo-Commit", url=url)
        if not is_commit_id(commit_id):
            raise IntegrityFormatError(
                f"X-Repo-Commit {commit_id!r} is not a commit id", context={"url": url}
            )

        etag = headers.get("X-Linked-Etag") or headers.get("ETag")
        if not etag:
            raise MissingHeader("X-Linked-Etag", url=url)
        tag = normalize_etag(etag)
        if not is_integrity_tag(tag):
            raise IntegrityFormatError(
                f"etag {etag!r} is not a sha256 integrity tag", context={"url": url}
            )

        size_header = headers.get("X-Linked-Size") or headers.get("Content-Length")
        if size_header is None:
            raise MissingHeader("X-Linked-Size", url=url)
        try:
            size = int(size_header)
        except ValueError as exc:
            raise ParseError(
                f"invalid size header {size_header!r}", context={"url": url}
            ) from exc
        if size < 0:
            raise ParseError(f"negative size header {size_header!r}", context={"url": url})

        self._log.info(
            "File info for %s: commit=%s tag=%s size=%d", ref, commit_id, tag, size
        )
        return FileInfo(commit_id=commit_id, integrity_tag=tag, size=size)
