"""Repository and file references, and the compact ``hf:`` forms encoding them.

File form:       ``hf:<owner>/<name>/<revision>/<path...>``
Repository form: ``hf:<owner>/<name>``

The revision is a branch, a tag or a 40 hex-char commit id. ``main`` is the
default branch on the hub.
"""

from __future__ import annotations

import re
from pathlib import PureWindowsPath

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hubcache.errors import IntegrityFormatError, MalformedReference, PathEscape

SCHEME = "hf:"
HUB_URL = "https://huggingface.co"
DEFAULT_REVISION = "main"

COMMIT_RE = re.compile(r"^[a-f0-9]{40}$")
INTEGRITY_TAG_RE = re.compile(r"^[a-f0-9]{64}$")

# Owner and repository names shorter than this are rejected by the parser.
MIN_SEGMENT_LENGTH = 3


def is_commit_id(value: str) -> bool:
    return bool(COMMIT_RE.match(value))


def is_integrity_tag(value: str) -> bool:
    return bool(INTEGRITY_TAG_RE.match(value))


def check_relative_path(
    path: str,
    *,
    kind: str = "path",
    error: type[PathEscape] = PathEscape,
) -> str:
    """Return *path* unchanged if it stays inside the directory it is joined to.

    Rejects absolute paths (POSIX or Windows style), empty segments and
    ``..`` segments. *error* lets callers raise a more specific subclass.
    """
    if not path:
        raise error(f"empty {kind}")
    if path.startswith(("/", "\\")) or PureWindowsPath(path).drive:
        raise error(f"absolute {kind} {path!r} is not allowed", context={kind: path})
    segments = re.split(r"[\\/]", path)
    if ".." in segments:
        raise error(f"{kind} {path!r} contains a parent-directory segment", context={kind: path})
    if "" in segments:
        raise error(f"{kind} {path!r} contains an empty segment", context={kind: path})
    return path


class RepositoryRef(BaseModel):
    """A repository on the hub, identified by owner and name (case-sensitive)."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)

    @field_validator("owner", "name")
    @classmethod
    def validate_segment(cls, v: str) -> str:
        if "/" in v or v.strip() != v:
            raise ValueError(f"{v!r} is not a valid owner or repository name")
        return v

    @property
    def repo_id(self) -> str:
        """Canonical ``<owner>/<name>`` id."""
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        """Public web URL on huggingface.co; see ``MetadataResolver.repo_url`` for mirrors."""
        return f"{HUB_URL}/{self.repo_id}"

    def packed(self) -> str:
        return f"{SCHEME}{self.repo_id}"

    def __str__(self) -> str:
        return self.repo_id


class FileRef(RepositoryRef):
    """A single file of a repository at a revision."""

    revision: str = Field(min_length=1)
    path: str = Field(min_length=1)

    @field_validator("revision")
    @classmethod
    def validate_revision(cls, v: str) -> str:
        # The revision names a ref-pointer file on disk.
        return check_relative_path(v, kind="revision")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return check_relative_path(v)

    @property
    def repo(self) -> RepositoryRef:
        return RepositoryRef(owner=self.owner, name=self.name)

    @property
    def basename(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_pinned(self) -> bool:
        return is_commit_id(self.revision)

    def pinned(self, commit_id: str) -> FileRef:
        """Return a copy whose revision is the resolved *commit_id*."""
        if not is_commit_id(commit_id):
            raise IntegrityFormatError(
                f"{commit_id!r} is not a commit id", context={"ref": self.packed()}
            )
        return self.model_copy(update={"revision": commit_id})

    def packed(self) -> str:
        return f"{SCHEME}{self.repo_id}/{self.revision}/{self.path}"

    def __str__(self) -> str:
        return self.packed()


def _strip_scheme(value: str) -> str:
    if not value.startswith(SCHEME):
        raise MalformedReference(value, f"missing {SCHEME!r} prefix")
    return value[len(SCHEME):]


def _check_names(value: str, owner: str, name: str) -> None:
    for segment in (owner, name):
        if len(segment) < MIN_SEGMENT_LENGTH:
            raise MalformedReference(
                value,
                f"owner and name must be at least {MIN_SEGMENT_LENGTH} characters",
            )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    return str(errors[0].get("msg", exc))


def parse_repo_ref(value: str) -> RepositoryRef:
    """Parse ``hf:<owner>/<name>``."""
    parts = _strip_scheme(value).split("/")
    if len(parts) != 2:
        raise MalformedReference(value, "expected hf:<owner>/<name>")
    owner, name = parts
    _check_names(value, owner, name)
    try:
        return RepositoryRef(owner=owner, name=name)
    except ValidationError as exc:
        raise MalformedReference(value, _first_error(exc)) from exc


def parse_file_ref(value: str) -> FileRef:
    """Parse ``hf:<owner>/<name>/<revision>/<path>``; *path* may contain slashes."""
    parts = _strip_scheme(value).split("/", 3)
    if len(parts) != 4:
        raise MalformedReference(value, "expected hf:<owner>/<name>/<revision>/<path>")
    owner, name, revision, path = parts
    _check_names(value, owner, name)
    if not revision:
        raise MalformedReference(value, "revision is empty")
    if not path:
        raise MalformedReference(value, "path is empty")
    try:
        return FileRef(owner=owner, name=name, revision=revision, path=path)
    except ValidationError as exc:
        raise MalformedReference(value, _first_error(exc)) from exc
