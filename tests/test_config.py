"""Tests for application settings."""

from oncall.config import Settings, settings
from oncall.schemas.coverage import EscalationPolicy


class TestSettings:
    """Tests for settings parsing."""

    def test_handled_statuses_normalized(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_HANDLED_STATUSES", '["Accepted", " RESOLVED ", ""]')

        assert Settings().escalation_handled_statuses == ["accepted", "resolved"]

    def test_handled_statuses_comma_separated(self, monkeypatch):
        monkeypatch.setenv("ESCALATION_HANDLED_STATUSES", "Accepted, resolved,escalated")

        assert Settings().escalation_handled_statuses == [
            "accepted",
            "resolved",
            "escalated",
        ]

    def test_defaults(self):
        defaults = Settings(_env_file=None)

        assert defaults.default_ack_timeout_minutes == 5
        assert defaults.default_max_attempts_per_tier == 3
        assert defaults.schedule_horizon_days == 45


class TestDefaultPolicy:
    """Tests for the fallback escalation policy."""

    def test_default_policy_from_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "default_ack_timeout_minutes", 2)
        monkeypatch.setattr(settings, "default_max_attempts_per_tier", 1)

        policy = EscalationPolicy.default()

        assert policy.ack_timeout.total_seconds() == 120
        assert policy.max_attempts_per_tier == 1
