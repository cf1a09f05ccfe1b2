"""
Tests for preference definitions, values and the default schema
"""
from datetime import datetime, timezone

import pytest

from prefsync.preferences.preference_models import (
    DEFAULT_SELECTED_DAYS, PendingChange, PreferenceCategory, PreferenceDefinition,
    PreferenceSyncStatus, PreferenceType, PreferenceValue, create_default_preference_schema,
    parse_iso_datetime
)


@pytest.fixture
def sample_preference_definition():
    """Sample preference definition for testing"""
    return PreferenceDefinition(
        key="display_name",
        category=PreferenceCategory.PROFILE,
        preference_type=PreferenceType.STRING,
        display_name="Name",
        description="A test preference",
        default_value="",
        max_length=5,
        required=True,
        remote_field="name"
    )


class TestPreferenceDefinition:
    """Test preference definitions"""

    def test_string_validation(self, sample_preference_definition):
        assert sample_preference_definition.validate_value("Ana") is True
        assert sample_preference_definition.validate_value("Anastasia") is False
        assert sample_preference_definition.validate_value(123) is False
        assert sample_preference_definition.validate_value(None) is False

    def test_remote_field_mapping(self, sample_preference_definition):
        assert sample_preference_definition.to_remote_fields("Ana") == {"name": "Ana"}
        assert sample_preference_definition.from_remote_document({"name": "Bo"}) == "Bo"
        assert sample_preference_definition.from_remote_document({"email": "x"}) is None
        assert sample_preference_definition.from_remote_document(None) is None

    def test_integer_rejects_booleans(self, preference_schema):
        weekly_goal = preference_schema.get("weekly_goal")
        assert weekly_goal.validate_value(50) is True
        assert weekly_goal.validate_value(True) is False
        assert weekly_goal.validate_value(101) is False


class TestDefaultSchema:
    """Test the default preference schema"""

    def test_font_size_definition(self, preference_schema):
        font_size = preference_schema.get("font_size")
        assert font_size.default_value == "medium"
        assert font_size.validate_value("large") is True
        assert font_size.validate_value("huge") is False
        assert font_size.to_remote_fields("small") == {"fontSize": "small"}

    def test_offline_mode_is_local_only(self, preference_schema):
        assert preference_schema.get("offline_mode").synced is False
        assert "offline_mode" not in preference_schema.synced_definitions()

    def test_notification_bundle_defaults(self, preference_schema):
        defaults = preference_schema.get_defaults()["notification_settings"]
        assert defaults["frequency"] == "none"
        assert defaults["reminder_hour"] == 9
        assert defaults["reminder_minute"] == 0
        assert defaults["selected_days"] == DEFAULT_SELECTED_DAYS
        assert defaults["one_time_date"] is None

    def test_configured_reminder_time(self):
        schema = create_default_preference_schema(reminder_hour=20, reminder_minute=30)
        defaults = schema.get_defaults()["notification_settings"]
        assert (defaults["reminder_hour"], defaults["reminder_minute"]) == (20, 30)

    def test_notification_bundle_validation(self, preference_schema):
        definition = preference_schema.get("notification_settings")
        valid = definition.normalize_value({"frequency": "daily", "reminder_hour": 23})
        assert definition.validate_value(valid) is True

        assert definition.validate_value(definition.normalize_value({"reminder_hour": 24})) is False
        assert definition.validate_value(definition.normalize_value({"reminder_minute": 60})) is False
        assert definition.validate_value(definition.normalize_value({"selected_days": [0, 8]})) is False
        assert definition.validate_value(definition.normalize_value({"unknown": 1})) is False

    def test_bundle_remote_mapping(self, preference_schema):
        definition = preference_schema.get("notification_settings")
        value = definition.normalize_value({"frequency": "weekly", "selected_days": [2, 4]})

        fields = definition.to_remote_fields(value)
        assert fields["notificationFrequency"] == "weekly"
        assert fields["selectedDays"] == [2, 4]
        assert fields["reminderHour"] == 9
        assert "frequency" not in fields

    def test_bundle_from_partial_document_uses_defaults(self, preference_schema):
        definition = preference_schema.get("cleanup_settings")
        value = definition.from_remote_document({"autoDeleteOldExpenses": True, "name": "x"})

        assert value["auto_delete_old_expenses"] is True
        assert value["auto_delete_completed_tasks"] is True
        assert value["task_retention_hours"] == 24
        assert value["expense_retention_days"] == 30

    def test_bundle_absent_from_document(self, preference_schema):
        definition = preference_schema.get("cleanup_settings")
        assert definition.from_remote_document({"name": "x"}) is None

    def test_schema_validation_reports_unknown_keys(self, preference_schema):
        errors = preference_schema.validate_preferences({"font_size": "large", "theme": "dark"})
        assert errors == ["Unknown preference 'theme'"]

    def test_filter_by_category(self, preference_schema):
        profile = preference_schema.filter_by_category(PreferenceCategory.PROFILE)
        assert set(profile) == {"display_name", "weekly_goal", "monthly_goal"}


class TestPreferenceValue:
    """Test preference values"""

    def test_serialization(self):
        value = PreferenceValue(definition_key="font_size", value="large", user_id="user123")
        assert value.serialize_value() == '"large"'
        assert PreferenceValue.deserialize_value('"large"') == "large"
        assert PreferenceValue.deserialize_value('{"a": 1}') == {"a": 1}

    def test_bare_legacy_strings_are_accepted(self):
        assert PreferenceValue.deserialize_value("large") == "large"
        assert PreferenceValue.deserialize_value(None) is None

    def test_pending_flag(self):
        value = PreferenceValue(definition_key="font_size", value="large", user_id="user123",
                                sync_status=PreferenceSyncStatus.PENDING)
        assert value.is_pending is True
        assert value.to_dict()["sync_status"] == "pending"


def test_parse_iso_datetime_accepts_zulu():
    parsed = parse_iso_datetime("2026-01-15T12:00:00Z")
    assert parsed == datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert parse_iso_datetime("2026-01-15T12:00:00").tzinfo is not None


def test_pending_change_from_dict():
    change = PendingChange.from_dict({
        "key": "font_size", "value": "large", "sequence": "42",
        "timestamp": "2026-01-15T12:00:00+00:00"
    })
    assert change.sequence == 42
    assert change.value == "large"
    assert change.timestamp.year == 2026
