"""YAML config loading with env var expansion and hub environment overrides."""

import os
import re
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import HubCacheConfig

# Environment variables honoured by the huggingface_hub tooling, mapped to
# (section, field).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "HF_HOME": ("cache", "home_dir"),
    "HF_HUB_CACHE": ("cache", "hub_cache_dir"),
    "HF_TOKEN": ("auth", "token"),
    "HF_TOKEN_PATH": ("auth", "token_path"),
    "HF_ENDPOINT": ("http", "endpoint"),
}


def load_config(
    cli_path: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> HubCacheConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults.

    Hub environment variables from *environ* (``os.environ`` by default)
    override whatever the file says.
    """
    environ = os.environ if environ is None else environ
    config_paths = [
        Path(cli_path) if cli_path else None,
        Path("./hubcache.yaml"),
        Path.home() / ".hubcache" / "config.yaml",
    ]

    raw: dict = {}
    for path in config_paths:
        if path and path.exists():
            try:
                with open(path) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            if loaded is None:
                continue
            if not isinstance(loaded, dict):
                raise ValueError(f"Invalid config in {path}: expected a mapping")
            raw = _expand_env_vars(loaded, environ)
            break

    raw = apply_environment(raw, environ)
    try:
        return HubCacheConfig(**raw)
    except ValidationError as e:
        raise ValueError(f"Invalid config: {e}") from e


def apply_environment(raw: dict, environ: Mapping[str, str]) -> dict:
    """Return a copy of *raw* with hub environment variables applied."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in raw.items()}
    for var, (section, field) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            merged.setdefault(section, {})[field] = value
    return merged


def _expand_env_vars(obj: object, environ: Mapping[str, str]) -> object:
    """Recursively expand ${VAR} references in strings.

    Raises ValueError when a referenced variable is not set.
    """
    if isinstance(obj, str):

        def _replace(m: re.Match) -> str:
            name = m.group(1)
            if name not in environ:
                raise ValueError(f"Environment variable {name} referenced in config is not set")
            return environ[name]

        return re.sub(r"\$\{(\w+)\}", _replace, obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v, environ) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v, environ) for v in obj]
    return obj

