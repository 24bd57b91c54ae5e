"""Configuration for the catalog API.

Settings come from environment variables, optionally loaded from a .env file.
Fails fast with a clear error if the selected backend is missing credentials.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from storefront.database import (
    DEFAULT_TIMEOUT,
    JSONBIN_MAX_BYTES,
    Backend,
    FallbackBackend,
    FileBackend,
    GistBackend,
    JsonBinBackend,
    MemoryBackend,
    VercelKVBackend,
)
from storefront.errors import ConfigurationError

BACKENDS = ("memory", "file", "gist", "jsonbin", "kv")


def _require(backend: str, key: str) -> str:
    """Credential the selected storage backend cannot run without."""
    value = os.environ.get(key)
    if not value:
        raise ConfigurationError(f"CATALOG_BACKEND={backend} needs {key} to be set")
    return value


def _get_optional_env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key) or default


def _get_number_env(key: str, default, cast):
    raw = os.environ.get(key)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Environment variable '{key}' must be a number, got {raw!r}")


@dataclass(frozen=True)
class GistConfig:
    gist_id: str
    token: str
    filename: str


@dataclass(frozen=True)
class JsonBinConfig:
    bin_id: str
    master_key: str
    max_bytes: int


@dataclass(frozen=True)
class KVConfig:
    url: str
    token: str
    key: str


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration container."""
    backend: str
    file_path: str
    fallback_path: Optional[str]
    request_timeout: float
    log_level: str
    port: int
    gist: Optional[GistConfig] = None
    jsonbin: Optional[JsonBinConfig] = None
    kv: Optional[KVConfig] = None


def load_config() -> AppConfig:
    """
    Load and validate the application configuration.

    Only the credentials of the selected backend are required.

    Raises:
        ConfigurationError: If the backend is unknown or its settings are missing.
    """
    load_dotenv()

    backend = (_get_optional_env("CATALOG_BACKEND", "file")).lower()
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown CATALOG_BACKEND '{backend}'. Expected one of: {', '.join(BACKENDS)}"
        )

    gist = jsonbin = kv = None
    if backend == "gist":
        gist = GistConfig(
            gist_id=_require(backend, "GIST_ID"),
            token=_require(backend, "GITHUB_TOKEN"),
            filename=_get_optional_env("GIST_FILENAME", "products.json"),
        )
    elif backend == "jsonbin":
        jsonbin = JsonBinConfig(
            bin_id=_require(backend, "JSONBIN_BIN_ID"),
            master_key=_require(backend, "JSONBIN_MASTER_KEY"),
            max_bytes=_get_number_env("JSONBIN_MAX_BYTES", JSONBIN_MAX_BYTES, int),
        )
    elif backend == "kv":
        kv = KVConfig(
            url=_require(backend, "KV_REST_API_URL"),
            token=_require(backend, "KV_REST_API_TOKEN"),
            key=_get_optional_env("KV_KEY", "products"),
        )

    return AppConfig(
        backend=backend,
        file_path=_get_optional_env("CATALOG_FILE_PATH", "data/products.json"),
        fallback_path=_get_optional_env("CATALOG_FALLBACK_PATH"),
        request_timeout=_get_number_env("REQUEST_TIMEOUT", DEFAULT_TIMEOUT, float),
        log_level=_get_optional_env("LOG_LEVEL", "INFO").upper(),
        port=_get_number_env("PORT", 8000, int),
        gist=gist,
        jsonbin=jsonbin,
        kv=kv,
    )


def build_backend(config: AppConfig) -> Backend:
    """Construct the configured backend, wrapped in a file fallback when one is set."""
    if config.backend == "memory":
        backend: Backend = MemoryBackend()
    elif config.backend == "file":
        backend = FileBackend(config.file_path)
    elif config.backend == "gist":
        backend = GistBackend(
            config.gist.gist_id,
            config.gist.token,
            filename=config.gist.filename,
            timeout=config.request_timeout,
        )
    elif config.backend == "jsonbin":
        backend = JsonBinBackend(
            config.jsonbin.bin_id,
            config.jsonbin.master_key,
            max_bytes=config.jsonbin.max_bytes,
            timeout=config.request_timeout,
        )
    elif config.backend == "kv":
        backend = VercelKVBackend(
            config.kv.url,
            config.kv.token,
            key=config.kv.key,
            timeout=config.request_timeout,
        )
    else:
        raise ConfigurationError(f"Unknown backend '{config.backend}'")

    if config.fallback_path:
        return FallbackBackend(backend, FileBackend(config.fallback_path))
    return backend


# Module-level cache for convenience
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Lazy-load configuration on first access."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
