"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest

from storesync.config import AppConfig
from storesync.local_cache import DEFAULT_CAPACITY


class TestAppConfig:
    def test_defaults(self):
        config = AppConfig.from_env({})

        assert config.api_url == "http://127.0.0.1:8000"
        assert config.api_key is None
        assert config.timeout == 15.0
        assert config.retry_backoff == 1.0
        assert config.cache_capacity == DEFAULT_CAPACITY
        assert config.cache_file.name == "local_cache.json"
        assert config.data_dir.name == "kv"
        assert config.admin_secret == ""

    def test_data_dir_moves_cache_and_store(self, temp_dir):
        config = AppConfig.from_env({"STORESYNC_DATA_DIR": str(temp_dir)})
        assert config.cache_file == temp_dir / "local_cache.json"
        assert config.data_dir == temp_dir / "kv"

    def test_overrides(self):
        config = AppConfig.from_env({
            "STORESYNC_API_URL": "https://store.example.com",
            "STORESYNC_API_KEY": "token",
            "STORESYNC_TIMEOUT": "2.5",
            "STORESYNC_RETRY_BACKOFF": "0",
            "STORESYNC_CACHE_FILE": "/tmp/cache.json",
            "STORESYNC_CACHE_CAPACITY": "1024",
            "STORESYNC_ADMIN_SECRET": "s3cret",
        })

        assert config.api_url == "https://store.example.com"
        assert config.api_key == "token"
        assert config.timeout == 2.5
        assert config.retry_backoff == 0
        assert config.cache_file == Path("/tmp/cache.json")
        assert config.cache_capacity == 1024
        assert config.admin_secret == "s3cret"

    def test_empty_api_key_means_none(self):
        assert AppConfig.from_env({"STORESYNC_API_KEY": ""}).api_key is None

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("STORESYNC_TIMEOUT", "7")
        assert AppConfig.from_env().timeout == 7.0

    def test_bad_number_raises(self):
        with pytest.raises(ValueError):
            AppConfig.from_env({"STORESYNC_CACHE_CAPACITY": "lots"})
