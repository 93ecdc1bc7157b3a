"""Tests for calendar sync configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from matterflow.config import (
    CONFIG_PATH_ENV,
    ConfigError,
    SyncServiceConfig,
    config_path_from_env,
    load_config,
    parse_config,
)

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[database]
name = "matterflow_prod"
schema = "Calendar"

[google]
client_id = "${TEST_GOOGLE_CLIENT_ID}"
client_secret = "${TEST_GOOGLE_CLIENT_SECRET}"
default_calendar_id = "firm@example.com"

[sync]
account_id = "smith-law"
push_batch_size = 25
full_sync_window_days = 14
request_timeout_seconds = 10
delete_orphaned_remote_events = true

[trigger]
cron_secret = "${TEST_CRON_SECRET}"

[logging]
level = "debug"
format = "JSON"
log_root = "/var/log/matterflow"
"""


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "calendar_sync.toml"
    path.write_text(content)
    return path


@pytest.fixture
def google_env(monkeypatch):
    monkeypatch.setenv("TEST_GOOGLE_CLIENT_ID", "client-123")
    monkeypatch.setenv("TEST_GOOGLE_CLIENT_SECRET", "secret-456")
    monkeypatch.setenv("TEST_CRON_SECRET", "cron-789")


# ---------------------------------------------------------------------------
# Happy-path tests
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_full_config(self, tmp_path, google_env):
        config = load_config(_write_toml(tmp_path, FULL_TOML))

        assert config.database.name == "matterflow_prod"
        assert config.database.schema == "Calendar"
        assert config.google.client_id == "client-123"
        assert config.google.client_secret == "secret-456"
        assert config.google.default_calendar_id == "firm@example.com"
        assert config.sync.account_id == "smith-law"
        assert config.sync.push_batch_size == 25
        assert config.sync.full_sync_window_days == 14
        assert config.sync.request_timeout_seconds == 10.0
        assert config.sync.delete_orphaned_remote_events is True
        assert config.trigger.cron_secret == "cron-789"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"
        assert config.logging.log_root == "/var/log/matterflow"

    def test_empty_document_uses_defaults(self):
        config = parse_config({})

        assert config == SyncServiceConfig()
        assert config.sync.push_batch_size == 50
        assert config.sync.full_sync_window_days == 30
        assert config.trigger.cron_secret is None
        assert config.google.default_calendar_id == "primary"

    def test_blank_cron_secret_is_treated_as_unset(self):
        config = parse_config({"trigger": {"cron_secret": "   "}})

        assert config.trigger.cron_secret is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path):
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(_write_toml(tmp_path, "[sync\naccount_id = "))


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class TestValidation:
    def test_unresolved_env_var_is_reported(self, monkeypatch):
        monkeypatch.delenv("TEST_CRON_SECRET", raising=False)

        with pytest.raises(ConfigError, match="TEST_CRON_SECRET"):
            parse_config({"trigger": {"cron_secret": "${TEST_CRON_SECRET}"}})

    @pytest.mark.parametrize("value", [0, -5, True, "10"])
    def test_push_batch_size_must_be_positive_int(self, value):
        with pytest.raises(ConfigError, match="push_batch_size"):
            parse_config({"sync": {"push_batch_size": value}})

    def test_full_sync_window_must_be_positive(self):
        with pytest.raises(ConfigError, match="full_sync_window_days"):
            parse_config({"sync": {"full_sync_window_days": 0}})

    def test_timeout_must_be_positive(self):
        with pytest.raises(ConfigError, match="request_timeout_seconds"):
            parse_config({"sync": {"request_timeout_seconds": 0}})

    def test_delete_orphans_must_be_boolean(self):
        with pytest.raises(ConfigError, match="delete_orphaned_remote_events"):
            parse_config({"sync": {"delete_orphaned_remote_events": "yes"}})

    def test_blank_account_id_is_rejected(self):
        with pytest.raises(ConfigError, match="account_id"):
            parse_config({"sync": {"account_id": "  "}})

    def test_invalid_schema_name(self):
        with pytest.raises(ConfigError, match="database.schema"):
            parse_config({"database": {"schema": "drop table;"}})

    def test_invalid_log_format(self):
        with pytest.raises(ConfigError, match="logging.format"):
            parse_config({"logging": {"format": "xml"}})

    def test_section_must_be_a_table(self):
        with pytest.raises(ConfigError, match=r"\[sync\] must be a table"):
            parse_config({"sync": "nope"})


class TestConfigPathFromEnv:
    def test_defaults_to_local_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        assert config_path_from_env() == Path("calendar_sync.toml")

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CONFIG_PATH_ENV, str(tmp_path / "custom.toml"))

        assert config_path_from_env() == tmp_path / "custom.toml"
