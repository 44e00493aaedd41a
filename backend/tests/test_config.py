"""
Tests for configuration module.
"""

import os
from unittest.mock import patch

import pytest

from config import (
    AppMode,
    PipelineConfig,
    Settings,
    StorageBackendName,
    _validate_settings,
    validate_generation_settings,
)
from services.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    with patch.dict(os.environ, {}, clear=True):
        return Settings(_env_file=None, **overrides)


class TestSettings:
    def test_defaults(self):
        settings = _settings()

        assert settings.APP_MODE == AppMode.DEV
        assert settings.DEBUG is False
        assert settings.STORAGE_BACKEND == StorageBackendName.BLOB
        assert settings.OPENAI_BASE_URL == "https://api.openai.com/v1"
        assert settings.UPSTREAM_ATTEMPT_TIMEOUT_SECONDS == 55.0
        assert settings.GENERATION_DEADLINE_SECONDS == 150.0
        assert settings.TARGET_IMAGE_SIZE == 512
        assert settings.NORMALIZED_JPEG_QUALITY == 70
        assert settings.OUTPUT_SIZE == "1024x1024"
        assert settings.LOG_LEVEL == "INFO"

    def test_reads_environment(self):
        env = {
            "OPENAI_API_KEY": "sk-env-key",
            "STORAGE_BACKEND": "s3",
            "S3_BUCKET": "renders",
            "UPSTREAM_ATTEMPT_TIMEOUT_SECONDS": "30",
            "DEBUG": "true",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)

        assert settings.OPENAI_API_KEY == "sk-env-key"
        assert settings.STORAGE_BACKEND == StorageBackendName.S3
        assert settings.S3_BUCKET == "renders"
        assert settings.UPSTREAM_ATTEMPT_TIMEOUT_SECONDS == 30.0
        assert settings.LOG_LEVEL == "DEBUG"

    def test_dev_cors_origins(self):
        settings = _settings(CORS_ALLOWED_ORIGINS="https://renoview.example, ")
        assert "http://localhost:3000" in settings.CORS_ORIGINS
        assert "https://renoview.example" in settings.CORS_ORIGINS

    def test_prod_cors_origins_are_explicit_only(self):
        settings = _settings(APP_MODE="prod")
        assert settings.CORS_ORIGINS == []

    def test_debug_in_production_is_rejected(self):
        with pytest.raises(ValueError, match="DEBUG"):
            _validate_settings(_settings(APP_MODE="prod", DEBUG=True))

    @pytest.mark.parametrize(
        "overrides,expected",
        [
            ({"STORAGE_BACKEND": "blob"}, False),
            ({"STORAGE_BACKEND": "blob", "BLOB_READ_WRITE_TOKEN": "t"}, True),
            ({"STORAGE_BACKEND": "s3", "S3_BUCKET": "b"}, False),
            (
                {
                    "STORAGE_BACKEND": "s3",
                    "S3_BUCKET": "b",
                    "S3_ACCESS_KEY_ID": "k",
                    "S3_SECRET_ACCESS_KEY": "s",
                },
                True,
            ),
            ({"STORAGE_BACKEND": "local"}, True),
        ],
    )
    def test_storage_credential_present(self, overrides, expected):
        assert _settings(**overrides).storage_credential_present is expected


class TestPipelineConfig:
    def test_from_settings(self):
        settings = _settings(
            OPENAI_API_KEY="sk-key",
            OPENAI_BASE_URL="https://proxy.example/v1/",
            OPENAI_IMAGE_MODEL="gpt-image-1",
        )
        config = PipelineConfig.from_settings(settings)

        assert config.api_key == "sk-key"
        assert config.endpoint_url == "https://proxy.example/v1/images/edits"
        assert config.model == "gpt-image-1"
        assert config.attempt_timeout == 55.0
        assert config.deadline == 150.0

    def test_empty_model_means_provider_default(self):
        config = PipelineConfig.from_settings(_settings(OPENAI_API_KEY="sk-key"))
        assert config.model is None

    def test_default_budget_fits_deadline(self):
        config = PipelineConfig(api_key="sk-key", endpoint_url="https://p.test/images/edits")
        assert config.worst_case_seconds == 2 * 55.0 + 1.0 + 15.0 + 15.0
        assert config.validate() is config

    @pytest.mark.parametrize(
        "overrides,match",
        [
            ({"api_key": ""}, "OPENAI_API_KEY"),
            ({"attempt_timeout": 0}, "attempt_timeout"),
            ({"retry_backoff": -1}, "retry_backoff"),
            ({"deadline": 100.0}, "deadline"),
            ({"target_size": 8}, "TARGET_IMAGE_SIZE"),
            ({"jpeg_quality": 100}, "NORMALIZED_JPEG_QUALITY"),
        ],
    )
    def test_validate_rejects(self, overrides, match):
        values = {"api_key": "sk-key", "endpoint_url": "https://p.test/images/edits"}
        values.update(overrides)
        with pytest.raises(ConfigurationError, match=match):
            PipelineConfig(**values).validate()


class TestValidateGenerationSettings:
    def test_missing_blob_token(self):
        settings = _settings(OPENAI_API_KEY="sk-key", STORAGE_BACKEND="blob")
        with pytest.raises(ConfigurationError, match="blob"):
            validate_generation_settings(settings)

    def test_missing_api_key(self):
        settings = _settings(STORAGE_BACKEND="local")
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            validate_generation_settings(settings)

    def test_complete_configuration(self):
        settings = _settings(OPENAI_API_KEY="sk-key", BLOB_READ_WRITE_TOKEN="token")
        config = validate_generation_settings(settings)
        assert isinstance(config, PipelineConfig)
        assert config.api_key == "sk-key"
