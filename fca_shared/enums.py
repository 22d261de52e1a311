import enum


class UserRole(str, enum.Enum):
    """User roles for access control.

    Admins bypass the tenant check in the ownership guard.
    """
    ADMIN = "admin"
    USER = "user"


class AssessmentCondition(str, enum.Enum):
    """Condition rating recorded for a building component."""
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    NOT_ASSESSED = "not_assessed"


class AssessmentStatus(str, enum.Enum):
    """Assessment lifecycle stages."""
    INITIAL = "initial"
    ACTIVE = "active"
    COMPLETED = "completed"


class DeficiencySeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DeficiencyPriority(str, enum.Enum):
    """How soon a deficiency should be actioned."""
    IMMEDIATE = "immediate"
    SHORT_TERM = "short_term"
    MEDIUM_TERM = "medium_term"
    LONG_TERM = "long_term"


class DeficiencyStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DEFERRED = "deferred"


class ConflictPolicy(str, enum.Enum):
    """Conflict policies for offline assessment writes.

    SERVER_WINS discards an older offline write outright.
    FIELD_MERGE fills empty server fields from an older offline write.
    """
    SERVER_WINS = "server_wins"
    FIELD_MERGE = "field_merge"


class ConflictResolution(str, enum.Enum):
    """Outcome reported by the conflict resolver."""
    ACCEPTED = "accepted"
    MERGED = "merged"
    SERVER_WINS = "server_wins"


class EntityKind(str, enum.Enum):
    """Entity kinds handled by offline sync."""
    ASSESSMENT = "assessment"
    PHOTO = "photo"
    DEFICIENCY = "deficiency"


class ChangeType(str, enum.Enum):
    """Change history event types."""
    ASSESSMENT_CREATED = "assessment_created"
    ASSESSMENT_UPDATED = "assessment_updated"
    DEFICIENCY_CREATED = "deficiency_created"
    DEFICIENCY_UPDATED = "deficiency_updated"
