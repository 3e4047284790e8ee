"""
Unit tests for settings validation and the config builders.
"""

import pytest
from pydantic import ValidationError

from prunarr.config import (
    Settings,
    protection_config_from_settings,
    rules_config_from_settings,
    split_csv,
)
from prunarr.services.retention.types import DeletionAction, LogicOperator


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Tests for Settings validation."""

    def test_defaults(self):
        settings = make_settings()
        assert settings.DEFAULT_GRACE_PERIOD_DAYS == 7
        assert settings.DEFAULT_DELETION_ACTION == "unmonitor_and_delete"
        assert settings.DEFAULT_CONDITION_LOGIC == "AND"
        assert settings.PROTECTED_RATING == 8.0
        assert settings.ARR_CALL_TIMEOUT_SECONDS == 60.0

    def test_logic_normalized_to_upper(self):
        assert make_settings(DEFAULT_CONDITION_LOGIC="or").DEFAULT_CONDITION_LOGIC == "OR"

    def test_invalid_logic_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(DEFAULT_CONDITION_LOGIC="XOR")

    def test_invalid_deletion_action_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(DEFAULT_DELETION_ACTION="shred")
        assert "DEFAULT_DELETION_ACTION" in str(exc_info.value)

    def test_negative_grace_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(DEFAULT_GRACE_PERIOD_DAYS=-1)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_GRACE_PERIOD_DAYS", "14")
        monkeypatch.setenv("ENABLE_DRY_RUN", "true")
        settings = make_settings()
        assert settings.DEFAULT_GRACE_PERIOD_DAYS == 14
        assert settings.ENABLE_DRY_RUN is True


class TestConfigBuilders:
    def test_split_csv(self):
        assert split_csv(" Documentary, Kids ,,") == ["Documentary", "Kids"]
        assert split_csv("") == []

    def test_rules_config(self):
        settings = make_settings(
            DEFAULT_GRACE_PERIOD_DAYS=3,
            DEFAULT_DELETION_ACTION="full_removal",
            DEFAULT_CONDITION_LOGIC="or",
            MAX_ITEMS_PER_RUN=50,
        )

        config = rules_config_from_settings(settings)

        assert config.default_grace_period_days == 3
        assert config.default_deletion_action == DeletionAction.FULL_REMOVAL
        assert config.default_condition_logic == LogicOperator.OR
        assert config.max_items_per_run == 50

    def test_protection_config(self):
        settings = make_settings(PROTECTED_GENRES="Documentary,Kids", PROTECTED_RATING=None, RECENTLY_ADDED_DAYS=14)

        config = protection_config_from_settings(settings)

        assert config.protected_genres == ["Documentary", "Kids"]
        assert config.protected_tags == []
        assert config.protected_rating is None
        assert config.recently_added_days == 14
