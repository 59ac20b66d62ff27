"""Tests for CLI configuration loading and validation."""

import pytest
import yaml
from pydantic import ValidationError

from fleetwire.cli.config import (
    FleetwireConfig,
    NotificationsConfig,
    SchedulerConfig,
    ServerConfig,
    load_config,
    load_effective_config,
    resolve_env_vars,
)
from fleetwire.services.notification_workflows import NotificationPolicy


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Keep the developer's own config and env out of these tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in ("FLEETWIRE_CONFIG", "SEND_TIMEOUT_SECONDS", "WHATSAPP_AUTO_INITIALIZE",
                "WHATSAPP_DEFAULT_ORGANIZATION", "FLEETWIRE_NOTIFICATIONS_BATCH_SIZE"):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    """Tests for config model defaults and validation."""

    def test_server_defaults(self):
        """Defaults suit a single-worker local deployment."""
        cfg = ServerConfig()
        assert cfg.host == "127.0.0.1"
        assert cfg.port == 8000
        assert cfg.default_organization is None
        assert cfg.send_timeout_seconds == 30.0
        assert cfg.auto_initialize is False

    def test_notification_defaults(self):
        cfg = NotificationsConfig()
        assert cfg.cooldown_days == 7
        assert cfg.batch_size == 50
        assert cfg.recipient_unavailable_terminal is True

    def test_scheduler_disabled_by_default(self):
        assert SchedulerConfig().enabled is False

    def test_batch_size_bounds(self):
        with pytest.raises(ValidationError):
            NotificationsConfig(batch_size=0)

    def test_blank_timezone_rejected(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(timezone="  ")

    def test_policy_from_config(self):
        cfg = FleetwireConfig(
            server=ServerConfig(send_timeout_seconds=12),
            notifications=NotificationsConfig(cooldown_days=3, currency_symbol="R"),
        )
        policy = NotificationPolicy.from_config(cfg)
        assert policy.cooldown_days == 3
        assert policy.currency_symbol == "R"
        assert policy.send_timeout_seconds == 12


class TestResolveEnvVars:

    def test_substitutes_variables(self, monkeypatch):
        monkeypatch.setenv("ORG", "acme")
        assert resolve_env_vars("org=${ORG}") == "org=acme"

    def test_missing_variable_is_empty(self, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        assert resolve_env_vars("x${NOT_SET_ANYWHERE}y") == "xy"


class TestLoadConfig:
    """Tests for YAML loading and env overrides."""

    def test_explicit_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DEFAULT_ORG", "acme")
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({
            "server": {"port": 9000, "default_organization": "${DEFAULT_ORG}"},
            "scheduler": {"enabled": True, "invoice_reminder_hour": 8},
        }))

        cfg = load_config(str(path))

        assert cfg.server.port == 9000
        assert cfg.server.default_organization == "acme"
        assert cfg.scheduler.enabled is True
        assert cfg.scheduler.invoice_reminder_hour == 8

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_no_config_found(self):
        assert load_config() is None

    def test_working_directory_file(self, tmp_path):
        (tmp_path / "fleetwire.yaml").write_text("notifications:\n  cooldown_days: 3\n")
        assert load_config().notifications.cooldown_days == 3

    def test_env_override_beats_yaml(self, tmp_path, monkeypatch):
        (tmp_path / "fleetwire.yaml").write_text("notifications:\n  batch_size: 20\n")
        monkeypatch.setenv("FLEETWIRE_NOTIFICATIONS_BATCH_SIZE", "75")
        assert load_config().notifications.batch_size == 75

    def test_invalid_values_rejected(self, tmp_path):
        (tmp_path / "fleetwire.yaml").write_text("scheduler:\n  daily_summary_hour: 30\n")
        with pytest.raises(ValidationError):
            load_config()


class TestLoadEffectiveConfig:

    def test_defaults_without_file(self):
        cfg = load_effective_config()
        assert cfg == FleetwireConfig()

    def test_section_env_overrides_without_file(self, monkeypatch):
        monkeypatch.setenv("FLEETWIRE_NOTIFICATIONS_BATCH_SIZE", "10")
        assert load_effective_config().notifications.batch_size == 10

    def test_plain_env_vars(self, monkeypatch):
        monkeypatch.setenv("SEND_TIMEOUT_SECONDS", "7.5")
        monkeypatch.setenv("WHATSAPP_AUTO_INITIALIZE", "true")
        monkeypatch.setenv("WHATSAPP_DEFAULT_ORGANIZATION", "acme")

        cfg = load_effective_config()

        assert cfg.server.send_timeout_seconds == 7.5
        assert cfg.server.auto_initialize is True
        assert cfg.server.default_organization == "acme"

    def test_config_env_var_points_at_file(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("server:\n  port: 9100\n")
        monkeypatch.setenv("FLEETWIRE_CONFIG", str(path))
        assert load_effective_config().server.port == 9100
