"""hubcache - content-addressed local cache for hub repository files."""

from hubcache.client import HubClient
from hubcache.config import HubCacheConfig, load_config
from hubcache.errors import (
    AuthenticationError,
    FetchError,
    HubCacheError,
    IntegrityFormatError,
    IntegrityMismatch,
    InvalidPattern,
    InvalidToken,
    MalformedReference,
    MissingHeader,
    NoMatch,
    ParseError,
    PathEscape,
    RequestError,
    RetryableServerError,
    RetryExhausted,
)
from hubcache.metadata import FileInfo, RepositoryMetadata
from hubcache.refs import FileRef, RepositoryRef, parse_file_ref, parse_repo_ref

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "FetchError",
    "FileInfo",
    "FileRef",
    "HubCacheConfig",
    "HubCacheError",
    "HubClient",
    "IntegrityFormatError",
    "IntegrityMismatch",
    "InvalidPattern",
    "InvalidToken",
    "MalformedReference",
    "MissingHeader",
    "NoMatch",
    "ParseError",
    "PathEscape",
    "RepositoryMetadata",
    "RepositoryRef",
    "RequestError",
    "RetryExhausted",
    "RetryableServerError",
    "load_config",
    "parse_file_ref",
    "parse_repo_ref",
]
