"""Tests for configuration loading and key conversion."""

import json
from pathlib import Path

from droidgram.config.loader import (
    camel_to_snake,
    convert_keys,
    convert_to_camel,
    load_config,
    save_config,
    snake_to_camel,
)
from droidgram.config.schema import Config


# ── Key conversion ──────────────────────────────────────────────────


class TestCamelToSnake:
    def test_simple(self):
        assert camel_to_snake("allowFrom") == "allow_from"

    def test_multiple_words(self):
        assert camel_to_snake("maxTimeoutSeconds") == "max_timeout_seconds"

    def test_single_word(self):
        assert camel_to_snake("enabled") == "enabled"

    def test_already_snake(self):
        assert camel_to_snake("vercel_token") == "vercel_token"

    def test_empty(self):
        assert camel_to_snake("") == ""


class TestSnakeToCamel:
    def test_simple(self):
        assert snake_to_camel("vercel_token") == "vercelToken"

    def test_multiple_words(self):
        assert snake_to_camel("max_timeout_seconds") == "maxTimeoutSeconds"

    def test_single_word(self):
        assert snake_to_camel("enabled") == "enabled"

    def test_empty(self):
        assert snake_to_camel("") == ""


class TestConvertKeys:
    def test_flat_dict(self):
        assert convert_keys({"asyncEnabled": True, "maxConcurrent": 3}) == {
            "async_enabled": True,
            "max_concurrent": 3,
        }

    def test_nested_dict(self):
        data = {"telegram": {"streamingMode": "stream"}}
        assert convert_keys(data) == {"telegram": {"streaming_mode": "stream"}}

    def test_list_of_dicts(self):
        data = {"allowFrom": [{"userId": "123"}]}
        assert convert_keys(data) == {"allow_from": [{"user_id": "123"}]}

    def test_non_dict(self):
        assert convert_keys("hello") == "hello"
        assert convert_keys(42) == 42
        assert convert_keys(None) is None


class TestConvertToCamel:
    def test_nested_dict(self):
        data = {"deploy": {"vercel_token": "t", "max_retries": 2}}
        assert convert_to_camel(data) == {"deploy": {"vercelToken": "t", "maxRetries": 2}}

    def test_roundtrip(self):
        original = {"baseTimeoutSeconds": 300, "useSpec": False, "allowFrom": ["1"]}
        assert convert_to_camel(convert_keys(original)) == original


# ── Config load/save ────────────────────────────────────────────────


class TestLoadConfig:
    def test_default_when_no_file(self, tmp_path: Path):
        config = load_config(tmp_path / "nonexistent.json")
        assert isinstance(config, Config)
        assert config.deploy.max_retries == 2

    def test_load_camel_case_json(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "telegram": {"token": "123:abc", "streamingMode": "stream", "allowFrom": ["42"]},
            "jobs": {"asyncEnabled": True, "complexityThreshold": "medium"},
            "droid": {"maxTimeoutSeconds": 1200},
        }))
        config = load_config(config_file)
        assert config.telegram.streaming_mode == "stream"
        assert config.telegram.allow_from == ["42"]
        assert config.jobs.async_enabled is True
        assert config.jobs.complexity_threshold == "medium"
        assert config.droid.max_timeout_seconds == 1200

    def test_invalid_json_returns_default(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text("not json{{{")
        config = load_config(config_file)
        assert config.jobs.async_enabled is False

    def test_invalid_value_returns_default(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"telegram": {"streamingMode": "firehose"}}))
        config = load_config(config_file)
        assert config.telegram.streaming_mode == "batch"

    def test_empty_file_returns_default(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text("")
        assert isinstance(load_config(config_file), Config)


class TestSaveConfig:
    def test_save_creates_file(self, tmp_path: Path):
        config_file = tmp_path / "subdir" / "config.json"
        save_config(Config(), config_file)
        assert config_file.exists()

    def test_save_uses_camel_case(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        save_config(Config(), config_file)

        data = json.loads(config_file.read_text())
        assert "streamingMode" in data["telegram"]
        assert "maxTimeoutSeconds" in data["droid"]
        assert "defaultAutonomy" in data

    def test_roundtrip(self, tmp_path: Path):
        original = Config()
        original.deploy.max_retries = 5
        original.telegram.token = "999:roundtrip"

        config_file = tmp_path / "config.json"
        save_config(original, config_file)
        loaded = load_config(config_file)

        assert loaded.deploy.max_retries == 5
        assert loaded.telegram.token == "999:roundtrip"
