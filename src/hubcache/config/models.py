from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

DEFAULT_HOME_DIR = "~/.cache/huggingface"


class CacheSettings(BaseModel):
    home_dir: str = DEFAULT_HOME_DIR
    hub_cache_dir: str | None = None
    link_mode: Literal["auto", "symlink", "manifest"] = "auto"

    @property
    def home_path(self) -> Path:
        return Path(self.home_dir).expanduser()

    @property
    def hub_cache_path(self) -> Path:
        if self.hub_cache_dir:
            return Path(self.hub_cache_dir).expanduser()
        return self.home_path / "hub"


class AuthSettings(BaseModel):
    token: str | None = None
    token_path: str | None = None


class HTTPSettings(BaseModel):
    endpoint: str = "https://huggingface.co"
    max_attempts: int = Field(default=10, gt=0)
    timeout: float | None = Field(default=None, gt=0)
    user_agent: str = "hubcache/0.1"


class DownloadSettings(BaseModel):
    max_workers: int = Field(default=4, gt=0)
    verify: bool = True
    show_progress: bool = True
    progress_threshold: int = Field(default=100 * 1024, ge=0)


class MetadataSettings(BaseModel):
    strict: bool = False


class HubCacheConfig(BaseModel):
    cache: CacheSettings = Field(default_factory=CacheSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    metadata: MetadataSettings = Field(default_factory=MetadataSettings)

    @property
    def token_file(self) -> Path:
        if self.auth.token_path:
            return Path(self.auth.token_path).expanduser()
        return self.cache.home_path / "token"
