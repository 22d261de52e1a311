from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime, ForeignKey, Index, Enum, UniqueConstraint,
    CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base
from fca_shared.enums import (
    UserRole, AssessmentCondition, AssessmentStatus, DeficiencySeverity, DeficiencyPriority,
    DeficiencyStatus, ChangeType, EntityKind
)

Base = declarative_base()

# All timestamps are UTC. SQLite drops tzinfo on storage, so values read back
# are naive and must go through as_utc() before comparison.
APP_TIMEZONE = timezone.utc


def now():
    """Return current datetime in UTC (timezone-aware)."""
    return datetime.now(APP_TIMEZONE)


def as_utc(value):
    """Normalize a datetime to an aware UTC datetime.

    Naive values are assumed to already be UTC (that is how they are stored).
    Returns None for None.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=APP_TIMEZONE)
    return value.astimezone(APP_TIMEZONE)


def _enum(enum_class):
    """Store enum values (not member names) so rows read like the wire format."""
    return Enum(
        enum_class,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
    )


class TimestampMixin:
    """Mixin providing created/updated timestamps."""

    created_at = Column(DateTime, default=now)
    updated_at = Column(DateTime, default=now, onupdate=now)


class User(Base, TimestampMixin):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, nullable=False)
    name = Column(String(200), nullable=False, server_default="")
    email = Column(String(120), unique=True, nullable=False)
    company = Column(String(200), nullable=True, index=True)
    role = Column(_enum(UserRole), default=UserRole.USER, nullable=False)
    tokens = relationship('ApiToken', backref='user', lazy='select', cascade="all, delete-orphan")


class ApiToken(Base):
    __tablename__ = 'api_tokens'
    id = Column(Integer, primary_key=True, nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime, default=now)
    last_used_at = Column(DateTime)


class Project(Base, TimestampMixin):
    __tablename__ = 'projects'
    id = Column(Integer, primary_key=True, nullable=False)
    name = Column(String(200), nullable=False, server_default="")
    company = Column(String(200), nullable=True, index=True)
    owner_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    assessments = relationship('Assessment', backref='project', lazy='select', cascade="all, delete-orphan")


class Assessment(Base, TimestampMixin):
    __tablename__ = 'assessments'
    id = Column(Integer, primary_key=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    asset_id = Column(Integer, nullable=True, index=True)
    component_code = Column(String(20), nullable=True)
    condition = Column(_enum(AssessmentCondition), default=AssessmentCondition.NOT_ASSESSED, nullable=False)
    status = Column(_enum(AssessmentStatus), default=AssessmentStatus.INITIAL, nullable=False)
    condition_percentage = Column(String(20))
    component_name = Column(String(255))
    component_location = Column(String(255))
    observations = Column(Text)
    recommendations = Column(Text)
    remaining_useful_life = Column(Integer)
    expected_useful_life = Column(Integer)
    review_year = Column(Integer)
    last_time_action = Column(Integer)
    estimated_repair_cost = Column(Float)
    replacement_value = Column(Float)
    action_year = Column(Integer)
    has_validation_overrides = Column(Boolean, default=False, nullable=False)
    validation_warnings = Column(Text)
    assessed_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    # Effective timestamp of the current values; conflict resolution compares against it
    assessed_at = Column(DateTime, default=now, nullable=False)

Index('idx_assessment_natural_key', Assessment.project_id, Assessment.component_code)


class Photo(Base):
    __tablename__ = 'photos'
    id = Column(Integer, primary_key=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey('assessments.id', ondelete='SET NULL'), nullable=True, index=True)
    deficiency_id = Column(Integer, ForeignKey('deficiencies.id', ondelete='SET NULL'), nullable=True, index=True)
    asset_id = Column(Integer, nullable=True)
    file_key = Column(String(500), nullable=False)
    url = Column(Text, nullable=False)
    thumbnail_key = Column(String(500))
    thumbnail_url = Column(Text)
    file_name = Column(String(255), server_default="")
    caption = Column(Text)
    mime_type = Column(String(100))
    size_bytes = Column(Integer, server_default="0")
    hash_value = Column(String(64), index=True, server_default="")
    corrupted = Column(Boolean, default=False, server_default='0', index=True)
    latitude = Column(Float)
    longitude = Column(Float)
    altitude = Column(Float)
    location_accuracy = Column(Float)
    ocr_text = Column(Text)
    ocr_confidence = Column(Float)
    uploaded_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    # Offline capture time, not upload time
    created_at = Column(DateTime, default=now, index=True)

    __table_args__ = (
        CheckConstraint('latitude IS NULL OR (latitude >= -90.0 AND latitude <= 90.0)', name='chk_photo_latitude_range'),
        CheckConstraint('longitude IS NULL OR (longitude >= -180.0 AND longitude <= 180.0)', name='chk_photo_longitude_range'),
    )


class Deficiency(Base, TimestampMixin):
    __tablename__ = 'deficiencies'
    id = Column(Integer, primary_key=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey('assessments.id', ondelete='SET NULL'), nullable=True, index=True)
    component_code = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    location = Column(String(255))
    severity = Column(_enum(DeficiencySeverity), default=DeficiencySeverity.MEDIUM, nullable=False)
    priority = Column(_enum(DeficiencyPriority), default=DeficiencyPriority.MEDIUM_TERM, nullable=False)
    recommended_action = Column(Text)
    estimated_cost = Column(Float)
    status = Column(_enum(DeficiencyStatus), default=DeficiencyStatus.OPEN, nullable=False)
    reported_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

Index('idx_deficiency_project_component', Deficiency.project_id, Deficiency.component_code)


class ComponentHistory(Base):
    """Audit trail of assessment and deficiency changes."""
    __tablename__ = 'component_history'
    id = Column(Integer, primary_key=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    component_code = Column(String(20), nullable=True)
    component_name = Column(String(255))
    change_type = Column(_enum(ChangeType), nullable=False)
    field_name = Column(String(100))
    old_value = Column(Text)
    new_value = Column(Text)
    rich_text_content = Column(Text)
    assessment_id = Column(Integer, ForeignKey('assessments.id', ondelete='SET NULL'), nullable=True, index=True)
    deficiency_id = Column(Integer, ForeignKey('deficiencies.id', ondelete='SET NULL'), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    user_name = Column(String(200))
    summary = Column(Text, nullable=False, server_default="")
    created_at = Column(DateTime, default=now, index=True)

Index('idx_history_project_component', ComponentHistory.project_id, ComponentHistory.component_code)


class SyncReceipt(Base):
    """Short-lived record of an applied offline write, keyed by the client's offline id.

    Lets a retried Photo/Deficiency sync return the original result instead of
    inserting a duplicate row.
    """
    __tablename__ = 'sync_receipts'
    id = Column(Integer, primary_key=True, nullable=False)
    entity_kind = Column(_enum(EntityKind), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    offline_id = Column(String(200), nullable=False)
    entity_id = Column(Integer, nullable=False)
    url = Column(Text)
    created_at = Column(DateTime, default=now)
    expires_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('entity_kind', 'user_id', 'offline_id', name='uq_sync_receipt_offline_id'),
    )
