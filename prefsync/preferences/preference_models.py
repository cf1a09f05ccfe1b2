"""
User Preference Data Models
Definitions, values and pending-change records for synchronized preferences
"""
from typing import Dict, List, Optional, Any, Union
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone
import json


class PreferenceCategory(str, Enum):
    """Categories of user preferences"""
    ACCESSIBILITY = "accessibility"
    NOTIFICATIONS = "notifications"
    DATA_MANAGEMENT = "data_management"
    PROFILE = "profile"
    CONNECTIVITY = "connectivity"


class PreferenceType(str, Enum):
    """Types of preference values"""
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"
    DATETIME = "datetime"


class PreferenceSyncStatus(str, Enum):
    """Synchronization status of preferences"""
    SYNCED = "synced"
    PENDING = "pending"
    LOCAL_ONLY = "local_only"


class NotificationFrequency(str, Enum):
    """Reminder frequency classification"""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    ONCE = "once"


FONT_SCALES: Dict[str, float] = {
    "small": 0.9,
    "medium": 1.0,
    "large": 1.15,
}

# 1=Sunday .. 7=Saturday
WEEKDAYS: List[int] = [1, 2, 3, 4, 5, 6, 7]
DEFAULT_SELECTED_DAYS: List[int] = [2, 3, 4, 5, 6]


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'"""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class PreferenceDefinition:
    """Definition of a preference with validation and remote mapping"""
    key: str
    category: PreferenceCategory
    preference_type: PreferenceType
    display_name: str
    description: str
    default_value: Any
    required: bool = False
    synced: bool = True
    nullable: bool = False
    remote_field: Optional[str] = None
    fields: Dict[str, "PreferenceDefinition"] = field(default_factory=dict)
    enum_values: Optional[List[Any]] = None
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None
    max_length: Optional[int] = None

    def validate_value(self, value: Any) -> bool:
        """Value validation against type and constraints"""
        return not self.validation_errors(value)

    def validation_errors(self, value: Any) -> List[str]:
        """Return every constraint the value violates"""
        if value is None:
            if self.nullable and not self.required:
                return []
            return [f"{self.key} must not be empty"]

        errors = []

        if self.preference_type == PreferenceType.STRING:
            if not isinstance(value, str):
                return [f"{self.key} must be a string"]
            if self.max_length is not None and len(value) > self.max_length:
                errors.append(f"{self.key} is longer than {self.max_length} characters")

        elif self.preference_type == PreferenceType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                return [f"{self.key} must be an integer"]
            errors.extend(self._range_errors(value))

        elif self.preference_type == PreferenceType.BOOLEAN:
            if not isinstance(value, bool):
                errors.append(f"{self.key} must be a boolean")

        elif self.preference_type == PreferenceType.ENUM:
            if self.enum_values and value not in self.enum_values:
                errors.append(f"{self.key} must be one of {self.enum_values}")

        elif self.preference_type == PreferenceType.ARRAY:
            if not isinstance(value, list):
                return [f"{self.key} must be a list"]
            for item in value:
                if self.enum_values is not None and item not in self.enum_values:
                    errors.append(f"{self.key} contains unsupported item {item!r}")
                elif isinstance(item, (int, float)) and not isinstance(item, bool):
                    errors.extend(self._range_errors(item))
            if len(set(map(repr, value))) != len(value):
                errors.append(f"{self.key} contains duplicate items")

        elif self.preference_type == PreferenceType.DATETIME:
            if not isinstance(value, str):
                return [f"{self.key} must be an ISO-8601 timestamp"]
            try:
                parse_iso_datetime(value)
            except ValueError:
                errors.append(f"{self.key} is not a valid ISO-8601 timestamp")

        elif self.preference_type == PreferenceType.OBJECT:
            if not isinstance(value, dict):
                return [f"{self.key} must be an object"]
            for name, item in value.items():
                sub_definition = self.fields.get(name)
                if sub_definition is None:
                    errors.append(f"{self.key} has unknown field '{name}'")
                    continue
                errors.extend(sub_definition.validation_errors(item))

        return errors

    def _range_errors(self, value: Union[int, float]) -> List[str]:
        errors = []
        if self.min_value is not None and value < self.min_value:
            errors.append(f"{self.key} must be at least {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            errors.append(f"{self.key} must be at most {self.max_value}")
        return errors

    def normalize_value(self, value: Any) -> Any:
        """Fill missing bundle fields from the defaults"""
        if self.preference_type == PreferenceType.OBJECT and isinstance(value, dict):
            merged = dict(self.default_value or {})
            merged.update(value)
            return merged
        return value

    def to_remote_fields(self, value: Any) -> Dict[str, Any]:
        """Map a local value onto the remote profile document fields"""
        if self.preference_type == PreferenceType.OBJECT:
            value = value or {}
            return {
                sub.remote_field: value[name]
                for name, sub in self.fields.items()
                if sub.remote_field and name in value
            }
        if not self.remote_field:
            return {}
        return {self.remote_field: value}

    def from_remote_document(self, document: Optional[Dict[str, Any]]) -> Any:
        """Extract this preference from a remote profile document, None if absent"""
        if not document:
            return None

        if self.preference_type == PreferenceType.OBJECT:
            found = {
                name: document[sub.remote_field]
                for name, sub in self.fields.items()
                if sub.remote_field and document.get(sub.remote_field) is not None
            }
            if not found:
                return None
            return self.normalize_value(found)

        if not self.remote_field:
            return None
        return document.get(self.remote_field)


@dataclass
class PreferenceValue:
    """A preference value with metadata"""
    definition_key: str
    value: Any
    user_id: str
    source: str = "user"
    sync_status: PreferenceSyncStatus = PreferenceSyncStatus.SYNCED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_pending(self) -> bool:
        return self.sync_status == PreferenceSyncStatus.PENDING

    def serialize_value(self) -> str:
        """Serialize value for the local key-value store"""
        return json.dumps(self.value)

    @staticmethod
    def deserialize_value(serialized_value: Optional[str]) -> Any:
        """Deserialize a value read from the local key-value store"""
        if serialized_value is None:
            return None
        try:
            return json.loads(serialized_value)
        except (json.JSONDecodeError, TypeError):
            # Values cached by older builds were stored as bare strings
            return serialized_value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.definition_key,
            "value": self.value,
            "user_id": self.user_id,
            "source": self.source,
            "sync_status": self.sync_status.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


@dataclass
class PendingChange:
    """One unsynced local mutation, replayed in sequence order on reconnect"""
    key: str
    value: Any
    sequence: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingChange":
        return cls(
            key=data["key"],
            value=data.get("value"),
            sequence=int(data["sequence"]),
            timestamp=parse_iso_datetime(data["timestamp"]) if data.get("timestamp")
            else datetime.now(timezone.utc)
        )


@dataclass
class PreferenceSchema:
    """Schema definition for a set of preferences"""
    name: str
    version: str
    description: str
    definitions: Dict[str, PreferenceDefinition] = field(default_factory=dict)

    def add_definition(self, definition: PreferenceDefinition):
        """Add a preference definition to the schema"""
        self.definitions[definition.key] = definition

    def get(self, key: str) -> Optional[PreferenceDefinition]:
        return self.definitions.get(key)

    def validate_preferences(self, preferences: Dict[str, Any]) -> List[str]:
        """Validate a set of preferences against this schema"""
        errors = []

        for key, value in preferences.items():
            definition = self.definitions.get(key)
            if definition is None:
                errors.append(f"Unknown preference '{key}'")
                continue
            errors.extend(definition.validation_errors(value))

        return errors

    def get_defaults(self) -> Dict[str, Any]:
        """Get default values for all preferences"""
        return {
            key: definition.default_value
            for key, definition in self.definitions.items()
        }

    def filter_by_category(self, category: PreferenceCategory) -> Dict[str, PreferenceDefinition]:
        """Get preferences for a specific category"""
        return {
            key: definition
            for key, definition in self.definitions.items()
            if definition.category == category
        }

    def synced_definitions(self) -> Dict[str, PreferenceDefinition]:
        """Get preferences mirrored to the remote profile"""
        return {
            key: definition
            for key, definition in self.definitions.items()
            if definition.synced
        }


def _bundle_field(key: str, preference_type: PreferenceType, remote_field: str,
                  default_value: Any, **kwargs) -> PreferenceDefinition:
    return PreferenceDefinition(
        key=key,
        category=kwargs.pop("category", PreferenceCategory.NOTIFICATIONS),
        preference_type=preference_type,
        display_name=kwargs.pop("display_name", key),
        description=kwargs.pop("description", ""),
        default_value=default_value,
        remote_field=remote_field,
        **kwargs
    )


# Default preference schema for the application
def create_default_preference_schema(reminder_hour: int = 9, reminder_minute: int = 0) -> PreferenceSchema:
    """Create the default preference schema for the task and expense tracker

    ``reminder_hour`` and ``reminder_minute`` seed the default reminder time.
    """

    schema = PreferenceSchema(
        name="task_expense_tracker_preferences",
        version="1.0.0",
        description="Preferences mirrored between the device and the user's profile document"
    )

    # Accessibility Preferences
    schema.add_definition(PreferenceDefinition(
        key="font_size",
        category=PreferenceCategory.ACCESSIBILITY,
        preference_type=PreferenceType.ENUM,
        display_name="Font Size",
        description="Application font size",
        default_value="medium",
        enum_values=list(FONT_SCALES),
        required=True,
        remote_field="fontSize"
    ))

    schema.add_definition(PreferenceDefinition(
        key="offline_mode",
        category=PreferenceCategory.CONNECTIVITY,
        preference_type=PreferenceType.BOOLEAN,
        display_name="Offline Mode",
        description="Keep working offline even when the network is reachable",
        default_value=False,
        synced=False
    ))

    # Notification Preferences
    notification_fields = {
        "frequency": _bundle_field(
            "frequency", PreferenceType.ENUM, "notificationFrequency",
            NotificationFrequency.NONE.value,
            enum_values=[f.value for f in NotificationFrequency]
        ),
        "notifications_enabled": _bundle_field(
            "notifications_enabled", PreferenceType.BOOLEAN, "notificationsEnabled", False
        ),
        "reminder_hour": _bundle_field(
            "reminder_hour", PreferenceType.INTEGER, "reminderHour", reminder_hour,
            min_value=0, max_value=23
        ),
        "reminder_minute": _bundle_field(
            "reminder_minute", PreferenceType.INTEGER, "reminderMinute", reminder_minute,
            min_value=0, max_value=59
        ),
        "selected_days": _bundle_field(
            "selected_days", PreferenceType.ARRAY, "selectedDays",
            list(DEFAULT_SELECTED_DAYS), enum_values=list(WEEKDAYS)
        ),
        "one_time_date": _bundle_field(
            "one_time_date", PreferenceType.DATETIME, "oneTimeDate", None, nullable=True
        ),
    }
    schema.add_definition(PreferenceDefinition(
        key="notification_settings",
        category=PreferenceCategory.NOTIFICATIONS,
        preference_type=PreferenceType.OBJECT,
        display_name="Reminder Settings",
        description="Reminder frequency, time of day, weekdays and one-time date",
        default_value={name: f.default_value for name, f in notification_fields.items()},
        fields=notification_fields
    ))

    # Data Management Preferences
    cleanup_fields = {
        "auto_delete_completed_tasks": _bundle_field(
            "auto_delete_completed_tasks", PreferenceType.BOOLEAN, "autoDeleteCompletedTasks", True,
            category=PreferenceCategory.DATA_MANAGEMENT
        ),
        "task_retention_hours": _bundle_field(
            "task_retention_hours", PreferenceType.INTEGER, "taskRetentionHours", 24,
            category=PreferenceCategory.DATA_MANAGEMENT, min_value=1, max_value=24 * 365
        ),
        "auto_delete_old_expenses": _bundle_field(
            "auto_delete_old_expenses", PreferenceType.BOOLEAN, "autoDeleteOldExpenses", False,
            category=PreferenceCategory.DATA_MANAGEMENT
        ),
        "expense_retention_days": _bundle_field(
            "expense_retention_days", PreferenceType.INTEGER, "expenseRetentionDays", 30,
            category=PreferenceCategory.DATA_MANAGEMENT, min_value=1, max_value=3650
        ),
    }
    schema.add_definition(PreferenceDefinition(
        key="cleanup_settings",
        category=PreferenceCategory.DATA_MANAGEMENT,
        preference_type=PreferenceType.OBJECT,
        display_name="Automatic Cleanup",
        description="Retention rules for completed tasks and old expenses",
        default_value={name: f.default_value for name, f in cleanup_fields.items()},
        fields=cleanup_fields
    ))

    # Profile Preferences
    schema.add_definition(PreferenceDefinition(
        key="display_name",
        category=PreferenceCategory.PROFILE,
        preference_type=PreferenceType.STRING,
        display_name="Name",
        description="Name shown on the account screen",
        default_value="",
        max_length=100,
        remote_field="name"
    ))

    schema.add_definition(PreferenceDefinition(
        key="weekly_goal",
        category=PreferenceCategory.PROFILE,
        preference_type=PreferenceType.INTEGER,
        display_name="Weekly Goal (%)",
        description="Target share of tasks completed each week",
        default_value=80,
        min_value=0,
        max_value=100,
        remote_field="weeklyGoal"
    ))

    schema.add_definition(PreferenceDefinition(
        key="monthly_goal",
        category=PreferenceCategory.PROFILE,
        preference_type=PreferenceType.INTEGER,
        display_name="Monthly Goal (%)",
        description="Target share of tasks completed each month",
        default_value=75,
        min_value=0,
        max_value=100,
        remote_field="monthlyGoal"
    ))

    return schema
