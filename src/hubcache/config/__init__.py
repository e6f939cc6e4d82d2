from .loader import apply_environment, load_config
from .models import (
    AuthSettings,
    CacheSettings,
    DownloadSettings,
    HTTPSettings,
    HubCacheConfig,
    MetadataSettings,
)

__all__ = [
    "AuthSettings",
    "CacheSettings",
    "DownloadSettings",
    "HTTPSettings",
    "HubCacheConfig",
    "MetadataSettings",
    "apply_environment",
    "load_config",
]
