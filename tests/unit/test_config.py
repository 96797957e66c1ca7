"""
Unit tests for configuration loading and validation.
"""

import json
from unittest.mock import Mock

import pytest
import yaml
from botocore.exceptions import ClientError

from search_sync.config import (
    AppConfig,
    ConfigLoader,
    ConfigurationError,
    DEFAULT_CONFIG_JSON,
    Environment,
    PollingConfig,
    QueueConfig,
    load_configuration,
    validate_configuration,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the loader maps so tests see only their own."""
    for name in ConfigLoader.env_mappings:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    """Test cases for the configuration dataclasses."""

    def test_defaults_are_valid(self, test_config):
        test_config.validate()

    def test_queue_enabled(self, test_config, no_queue_config):
        assert test_config.queue_enabled
        assert not no_queue_config.queue_enabled

    @pytest.mark.parametrize("section,name,value", [
        ("processor", "batch_size", 0),
        ("processor", "failure_threshold", 0),
        ("polling", "max_messages", 11),
        ("polling", "wait_time_seconds", 21),
        ("polling", "delete_success_ratio", 1.5),
        ("monitoring", "error_rate_threshold", -0.1),
    ])
    def test_out_of_range_values(self, test_config, section, name, value):
        setattr(getattr(test_config, section), name, value)

        with pytest.raises(ConfigurationError):
            test_config.validate()

    def test_access_key_requires_secret(self, test_config):
        test_config.aws.access_key_id = "AKIA"

        with pytest.raises(ConfigurationError):
            test_config.validate()

    def test_client_kwargs(self):
        queue = QueueConfig(region="eu-west-1", endpoint_url="http://localhost:4566")
        assert queue.client_kwargs() == {"region_name": "eu-west-1", "endpoint_url": "http://localhost:4566"}

        queue = QueueConfig(access_key_id="AKIA", secret_access_key="secret")
        kwargs = queue.client_kwargs()
        assert kwargs["aws_access_key_id"] == "AKIA"
        assert kwargs["aws_secret_access_key"] == "secret"

    def test_collection_names(self, test_config):
        assert test_config.processor.collection_names == {
            "software_stack": "software_stack_components",
            "claims": "claims",
            "locations": "locations",
        }

    def test_polling_from_env(self, clean_env):
        clean_env.setenv("SYNC_POLLING_INTERVAL", "250")
        clean_env.setenv("SYNC_POLLING_ENABLED", "no")

        polling = PollingConfig.from_env()

        assert polling.interval_ms == 250
        assert polling.enabled is False

    def test_app_config_from_env(self, clean_env):
        clean_env.setenv("ENVIRONMENT", "production")
        clean_env.setenv("AWS_SQS_QUEUE_URL", "")

        config = AppConfig.from_env()

        assert config.environment == Environment.PRODUCTION
        assert config.aws.queue_url is None

    def test_unknown_environment_falls_back(self, clean_env):
        clean_env.setenv("ENVIRONMENT", "qa")
        assert AppConfig.from_env().environment == Environment.DEVELOPMENT


class TestConfigLoader:
    """Test cases for file and environment loading."""

    def test_load_yaml_file(self, clean_env, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text(yaml.safe_dump({
            "environment": "staging",
            "aws": {"region": "eu-central-1", "queue_url": "https://sqs/queue"},
            "polling": {"interval_ms": 100, "delete_success_ratio": 0.5},
        }))

        config = load_configuration(path)

        assert config.environment == Environment.STAGING
        assert config.aws.region == "eu-central-1"
        assert config.aws.queue_url == "https://sqs/queue"
        assert config.polling.interval_ms == 100
        assert config.polling.delete_success_ratio == 0.5
        assert config.polling.max_messages == 10

    def test_environment_overrides_file(self, clean_env, tmp_path):
        path = tmp_path / "app.json"
        path.write_text(json.dumps({"polling": {"interval_ms": 100}, "debug": False}))
        clean_env.setenv("SYNC_POLLING_INTERVAL", "900")
        clean_env.setenv("DEBUG", "true")

        config = load_configuration(path)

        assert config.polling.interval_ms == 900
        assert config.debug is True

    def test_unknown_keys_are_ignored(self, clean_env, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text(yaml.safe_dump({"processor": {"batch_size": 5, "shards": 3}}))

        config = load_configuration(path)

        assert config.processor.batch_size == 5

    def test_missing_file(self, clean_env, tmp_path):
        config = ConfigLoader().load_config(tmp_path / "missing.yaml")

        assert config.aws.queue_url is None
        assert config.polling.interval_ms == 5000

    def test_default_templates_load(self):
        data = json.loads(DEFAULT_CONFIG_JSON)
        config = ConfigLoader().build_config(data)

        config.validate()
        assert config.processor.create_collections is True


class TestConfigValidator:
    """Test cases for startup validation."""

    async def test_no_queue_is_disabled_not_failed(self, no_queue_config):
        results = await validate_configuration(no_queue_config)

        assert results["overall_status"] == "healthy"
        assert results["queue"]["status"] == "disabled"

    async def test_reachable_queue(self, test_config, mock_sqs_client):
        results = await validate_configuration(test_config, mock_sqs_client)

        assert results["overall_status"] == "healthy"
        assert results["queue"]["approximate_messages"] == 4

    async def test_unreachable_queue(self, test_config):
        client = Mock()
        client.get_queue_attributes.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetQueueAttributes"
        )

        results = await validate_configuration(test_config, client)

        assert results["overall_status"] == "unhealthy"
        assert results["failed_components"] == ["queue"]

    async def test_invalid_settings(self, no_queue_config):
        no_queue_config.polling.max_messages = 0

        results = await validate_configuration(no_queue_config)

        assert results["overall_status"] == "unhealthy"
        assert "config" in results["failed_components"]
