"""Tests for environment-driven configuration and backend selection."""

import pytest

from storefront import config as configuration
from storefront.config import build_backend, load_config
from storefront.database import (
    FallbackBackend,
    FileBackend,
    GistBackend,
    JsonBinBackend,
    MemoryBackend,
    VercelKVBackend,
)
from storefront.errors import ConfigurationError

ENV_KEYS = (
    "CATALOG_BACKEND", "CATALOG_FILE_PATH", "CATALOG_FALLBACK_PATH",
    "GIST_ID", "GITHUB_TOKEN", "GIST_FILENAME",
    "JSONBIN_BIN_ID", "JSONBIN_MASTER_KEY", "JSONBIN_MAX_BYTES",
    "KV_REST_API_URL", "KV_REST_API_TOKEN", "KV_KEY",
    "REQUEST_TIMEOUT", "LOG_LEVEL", "PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test from an empty configuration, ignoring any local .env file."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(configuration, "load_dotenv", lambda: False)
    monkeypatch.setattr(configuration, "_config", None)


class TestLoadConfig:

    def test_defaults(self):
        config = load_config()

        assert config.backend == "file"
        assert config.file_path == "data/products.json"
        assert config.fallback_path is None
        assert config.request_timeout == 10.0
        assert config.log_level == "INFO"
        assert config.port == 8000

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("CATALOG_BACKEND", "mongo")
        with pytest.raises(ConfigurationError):
            load_config()

    @pytest.mark.parametrize("backend, missing", [
        ("gist", "GIST_ID"),
        ("jsonbin", "JSONBIN_BIN_ID"),
        ("kv", "KV_REST_API_URL"),
    ])
    def test_missing_credentials(self, monkeypatch, backend, missing):
        monkeypatch.setenv("CATALOG_BACKEND", backend)

        with pytest.raises(ConfigurationError) as exc_info:
            load_config()

        assert str(exc_info.value) == f"CATALOG_BACKEND={backend} needs {missing} to be set"

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("REQUEST_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError):
            load_config()

    def test_get_config_is_cached(self):
        assert configuration.get_config() is configuration.get_config()


class TestBuildBackend:

    def test_memory(self, monkeypatch):
        monkeypatch.setenv("CATALOG_BACKEND", "memory")
        assert isinstance(build_backend(load_config()), MemoryBackend)

    def test_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CATALOG_FILE_PATH", str(tmp_path / "products.json"))

        backend = build_backend(load_config())

        assert isinstance(backend, FileBackend)
        assert backend.path == tmp_path / "products.json"

    def test_gist(self, monkeypatch):
        monkeypatch.setenv("CATALOG_BACKEND", "gist")
        monkeypatch.setenv("GIST_ID", "abc123")
        monkeypatch.setenv("GITHUB_TOKEN", "token")
        monkeypatch.setenv("REQUEST_TIMEOUT", "3")

        backend = build_backend(load_config())

        assert isinstance(backend, GistBackend)
        assert backend.filename == "products.json"
        assert backend.timeout == 3.0

    def test_jsonbin(self, monkeypatch):
        monkeypatch.setenv("CATALOG_BACKEND", "jsonbin")
        monkeypatch.setenv("JSONBIN_BIN_ID", "bin42")
        monkeypatch.setenv("JSONBIN_MASTER_KEY", "key")
        monkeypatch.setenv("JSONBIN_MAX_BYTES", "50000")

        backend = build_backend(load_config())

        assert isinstance(backend, JsonBinBackend)
        assert backend.max_bytes == 50000

    def test_kv(self, monkeypatch):
        monkeypatch.setenv("CATALOG_BACKEND", "KV")
        monkeypatch.setenv("KV_REST_API_URL", "https://kv.example.upstash.io")
        monkeypatch.setenv("KV_REST_API_TOKEN", "token")

        backend = build_backend(load_config())

        assert isinstance(backend, VercelKVBackend)
        assert backend.key == "products"

    def test_fallback_wraps_backend(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CATALOG_BACKEND", "memory")
        monkeypatch.setenv("CATALOG_FALLBACK_PATH", str(tmp_path / "fallback.json"))

        backend = build_backend(load_config())

        assert isinstance(backend, FallbackBackend)
        assert isinstance(backend.primary, MemoryBackend)
        assert isinstance(backend.secondary, FileBackend)
