"""Access token resolution."""

from __future__ import annotations

import logging
from pathlib import Path

from hubcache.errors import InvalidToken

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "hf_"


def validate_token(token: str) -> str:
    if not token.startswith(TOKEN_PREFIX):
        raise InvalidToken(f"token is invalid, it must have prefix {TOKEN_PREFIX!r}")
    return token


def resolve_token(token: str | None, token_file: Path) -> str | None:
    """Return the token to use, or None for anonymous access.

    An explicit *token* wins and is saved to *token_file* when that file does
    not exist yet. Otherwise the token file is read if present.
    """
    if token:
        validate_token(token)
        if not token_file.exists():
            token_file.parent.mkdir(parents=True, exist_ok=True)
            token_file.write_text(token, encoding="utf-8")
            logger.info("Saved token to %s", token_file)
        return token
    try:
        cached = token_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    if not cached:
        return None
    logger.info("Found token in %s", token_file)
    return validate_token(cached)
