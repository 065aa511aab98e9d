"""
Tests for settings resolution: topic construction, client identifiers,
endpoint composition, credentials and environment loading.
"""
import os
import re

import pytest
from pydantic import SecretStr, ValidationError

from iot_mqtt_client import BrokerSettings, ResolvedConfig, TopicPurpose, resolve_config
from iot_mqtt_client.core.config import build_endpoint

ENV_VARS = (
    "MQTT_BROKER_HOSTNAME",
    "MQTT_BROKER_PORT",
    "MQTT_USE_TLS",
    "MQTT_WEBSOCKET_PATH",
    "MQTT_CLEAN_SESSION",
    "MQTT_BROKER_USERNAME",
    "MQTT_BROKER_PASSWORD",
    "MQTT_CLIENT_ID",
    "MQTT_TOPIC_PREFIX",
    "MQTT_QOS",
    "MQTT_KEEPALIVE",
    "MQTT_CONNECT_TIMEOUT",
    "MQTT_AUTO_RECONNECT",
    "MQTT_RECONNECT_DELAY_MS",
    "MQTT_RESTORE_SUBSCRIPTIONS",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Isolate os.environ so values loaded from .env files do not leak between tests."""
    monkeypatch.setattr(os, "environ", os.environ.copy())
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def empty_env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("")
    return str(path)


# ============================================================================
# TOPICS
# ============================================================================


class TestTopics:
    def test_default_topic_set_for_prefix(self):
        config = resolve_config(namespace_prefix="X1")

        assert config.topics == {
            TopicPurpose.TELEMETRY_A: "X1/suhu",
            TopicPurpose.TELEMETRY_B: "X1/kelembaban",
            TopicPurpose.COMMAND: "X1/led",
            TopicPurpose.STATUS: "X1/status",
        }
        assert config.topic(TopicPurpose.COMMAND) == "X1/led"
        assert config.topic("telemetry-A") == "X1/suhu"

    @pytest.mark.parametrize("prefix", ["X1", "Ryan24", "lab/bench-3", "ünï"])
    def test_every_topic_starts_with_prefix_and_is_distinct(self, prefix):
        config = resolve_config(namespace_prefix=prefix)

        topics = list(config.topics.values())
        assert all(topic.startswith(f"{prefix}/") for topic in topics)
        assert len(set(topics)) == len(TopicPurpose)

    def test_suffix_overrides(self):
        config = resolve_config(namespace_prefix="X1", topic_suffixes={"command": "relay"})

        assert config.topic(TopicPurpose.COMMAND) == "X1/relay"
        assert config.topic(TopicPurpose.TELEMETRY_A) == "X1/suhu"

    def test_duplicate_suffixes_are_rejected(self):
        with pytest.raises(ValueError, match="distinct"):
            resolve_config(namespace_prefix="X1", topic_suffixes={"status": "led"})

    def test_empty_prefix_is_allowed_with_warning(self, caplog):
        with caplog.at_level("WARNING"):
            config = resolve_config(namespace_prefix="")

        assert config.topic(TopicPurpose.TELEMETRY_A) == "/suhu"
        assert "Empty topic namespace prefix" in caplog.text


# ============================================================================
# CLIENT IDENTIFIER
# ============================================================================


class TestClientIdentifier:
    def test_generated_identifier_format(self):
        config = resolve_config(namespace_prefix="X1")

        assert re.fullmatch(r"web_X1_[0-9a-f]{8}", config.client_identifier)

    def test_generated_identifiers_differ(self):
        identifiers = {resolve_config(namespace_prefix="X1").client_identifier for _ in range(20)}

        assert len(identifiers) == 20

    def test_explicit_identifier_is_kept(self):
        config = resolve_config(namespace_prefix="X1", client_identifier="dashboard-1")

        assert config.client_identifier == "dashboard-1"


# ============================================================================
# ENDPOINT, CREDENTIALS, DEFAULTS
# ============================================================================


class TestResolution:
    def test_defaults(self):
        config = resolve_config(namespace_prefix="X1")

        assert config.endpoint == "wss://broker.emqx.io:8084/mqtt"
        assert config.use_secure_transport is True
        assert config.qos == 0
        assert config.keep_alive_seconds == 60
        assert config.connect_timeout_seconds == 10
        assert config.clean_session is True
        assert config.auto_reconnect is True
        assert config.reconnect_delay_ms == 5000
        assert config.restore_subscriptions is True
        assert config.retry_failed_reconnects is False

    def test_insecure_endpoint(self):
        config = resolve_config(namespace_prefix="X1", port=8083, use_secure_transport=False)

        assert config.endpoint == "ws://broker.emqx.io:8083/mqtt"

    @pytest.mark.parametrize(
        "secure, expected",
        [(True, "wss://example.org:443/ws"), (False, "ws://example.org:443/ws")],
    )
    def test_build_endpoint(self, secure, expected):
        assert build_endpoint("example.org", 443, "/ws", secure) == expected

    def test_path_gets_leading_slash(self):
        config = resolve_config(namespace_prefix="X1", path="mqtt")

        assert config.path == "/mqtt"
        assert config.endpoint.endswith(":8084/mqtt")

    def test_credentials_absent_when_empty(self):
        config = resolve_config(namespace_prefix="X1")

        assert config.credentials is None

    def test_credentials_present(self):
        config = resolve_config(namespace_prefix="X1", username="device", password="s3cret")

        assert config.credentials.username == "device"
        assert isinstance(config.credentials.password, SecretStr)
        assert config.credentials.password.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(config)

    @pytest.mark.parametrize(
        "field, value",
        [("qos", 3), ("port", 0), ("port", 70000), ("host", "  "), ("keep_alive_seconds", 0)],
    )
    def test_invalid_settings_are_rejected(self, field, value):
        with pytest.raises(ValidationError):
            resolve_config(namespace_prefix="X1", **{field: value})

    def test_resolved_config_is_immutable(self):
        config = resolve_config(namespace_prefix="X1")

        with pytest.raises(ValidationError):
            config.qos = 2
        with pytest.raises(TypeError):
            config.topics[TopicPurpose.COMMAND] = "hijacked/led"
        assert config.topic(TopicPurpose.COMMAND) == "X1/led"

    def test_topics_do_not_share_state_with_the_input_mapping(self):
        topics = {purpose: f"X1/{purpose.value}" for purpose in TopicPurpose}
        config = resolve_config(namespace_prefix="X1")
        rebuilt = ResolvedConfig(**{**dict(config), "topics": topics})

        topics[TopicPurpose.COMMAND] = "hijacked/led"

        assert rebuilt.topic(TopicPurpose.COMMAND) == "X1/command"

    def test_dump_renders_topics_as_plain_dict(self):
        dumped = resolve_config(namespace_prefix="X1").model_dump(mode="json")

        assert dumped["topics"]["command"] == "X1/led"

    def test_resolving_a_resolved_config_returns_it(self):
        config = resolve_config(namespace_prefix="X1")

        assert resolve_config(config) is config

    def test_resolved_config_cannot_be_overridden(self):
        config = resolve_config(namespace_prefix="X1")

        with pytest.raises(ValueError):
            resolve_config(config, qos=2)

    def test_overrides_on_settings(self):
        settings = BrokerSettings(namespace_prefix="X1", qos=1)

        config = resolve_config(settings, qos=2, client_identifier="fixed")

        assert isinstance(config, ResolvedConfig)
        assert config.qos == 2
        assert config.client_identifier == "fixed"
        assert settings.qos == 1

    def test_overrides_are_validated(self):
        with pytest.raises(ValidationError):
            resolve_config(BrokerSettings(namespace_prefix="X1"), qos=5)


# ============================================================================
# ENVIRONMENT
# ============================================================================


class TestFromEnv:
    def test_unset_environment_keeps_defaults(self, clean_env, empty_env_file):
        settings = BrokerSettings.from_env(empty_env_file)

        assert settings == BrokerSettings()

    def test_reads_environment(self, clean_env, empty_env_file):
        clean_env.setenv("MQTT_BROKER_HOSTNAME", "mqtt.local")
        clean_env.setenv("MQTT_BROKER_PORT", "8083")
        clean_env.setenv("MQTT_USE_TLS", "false")
        clean_env.setenv("MQTT_WEBSOCKET_PATH", "/ws")
        clean_env.setenv("MQTT_TOPIC_PREFIX", "X1")
        clean_env.setenv("MQTT_QOS", "1")
        clean_env.setenv("MQTT_CONNECT_TIMEOUT", "2.5")
        clean_env.setenv("MQTT_AUTO_RECONNECT", "0")
        clean_env.setenv("MQTT_RECONNECT_DELAY_MS", "250")

        config = resolve_config(BrokerSettings.from_env(empty_env_file))

        assert config.endpoint == "ws://mqtt.local:8083/ws"
        assert config.topic(TopicPurpose.STATUS) == "X1/status"
        assert config.qos == 1
        assert config.connect_timeout_seconds == 2.5
        assert config.auto_reconnect is False
        assert config.reconnect_delay_ms == 250
        assert config.retry_failed_reconnects is False

    def test_reads_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "MQTT_TOPIC_PREFIX=Ryan24\n"
            "MQTT_BROKER_USERNAME=device\n"
            "MQTT_BROKER_PASSWORD=s3cret\n"
            "MQTT_CLIENT_ID=web_Ryan24_fixed\n"
        )

        config = resolve_config(BrokerSettings.from_env(str(env_file)))

        assert config.namespace_prefix == "Ryan24"
        assert config.client_identifier == "web_Ryan24_fixed"
        assert config.credentials.username == "device"

    def test_environment_wins_over_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("MQTT_TOPIC_PREFIX=from_file\n")
        clean_env.setenv("MQTT_TOPIC_PREFIX", "from_env")

        assert BrokerSettings.from_env(str(env_file)).namespace_prefix == "from_env"

    def test_keyword_overrides_win(self, clean_env, empty_env_file):
        clean_env.setenv("MQTT_TOPIC_PREFIX", "from_env")

        settings = BrokerSettings.from_env(empty_env_file, namespace_prefix="X1")

        assert settings.namespace_prefix == "X1"

    @pytest.mark.parametrize("raw, expected", [("true", True), ("YES", True), ("on", True), ("False", False), ("no", False)])
    def test_boolean_parsing(self, clean_env, empty_env_file, raw, expected):
        clean_env.setenv("MQTT_CLEAN_SESSION", raw)

        assert BrokerSettings.from_env(empty_env_file).clean_session is expected

    def test_invalid_boolean_raises(self, clean_env, empty_env_file):
        clean_env.setenv("MQTT_USE_TLS", "maybe")

        with pytest.raises(ValueError, match="MQTT_USE_TLS"):
            BrokerSettings.from_env(empty_env_file)

    def test_retry_failed_reconnects_from_env(self, clean_env, empty_env_file):
        clean_env.setenv("MQTT_RETRY_FAILED_RECONNECTS", "true")

        assert resolve_config(BrokerSettings.from_env(empty_env_file)).retry_failed_reconnects is True
