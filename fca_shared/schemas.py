"""Pydantic schemas for offline sync validation and serialization.

Wire names are camelCase (the field client is a browser app); Python
attributes are snake_case. Every request accepts either the flat envelope
``{offlineId, createdAt, projectId, ...}`` or the nested form
``{offlineId, createdAt, payload: {projectId, ...}}``.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any, ClassVar, Set
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from pydantic.alias_generators import to_camel
from fca_shared.enums import (
    AssessmentCondition, AssessmentStatus, DeficiencySeverity, DeficiencyPriority, DeficiencyStatus,
    ConflictResolution
)
from fca_shared.models import as_utc
from fca_shared.validation import sanitize_html


def coerce_optional_id(value):
    """Turn unmapped offline identifiers into None.

    A photo captured offline may point at an assessment that has not been
    synced yet, in which case the client still holds a string like
    ``offline_assessment_123`` rather than a server id.
    """
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            return None
        return int(stripped)
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OfflineEnvelope(WireModel):
    """Fields common to every offline-captured record."""
    offline_id: str = Field(..., min_length=1, max_length=200)
    created_at: datetime
    project_id: int = Field(..., gt=0)

    ENVELOPE_FIELDS: ClassVar[Set[str]] = {'offline_id', 'created_at'}
    # Columns that cannot be set to NULL; an explicit null from the client is ignored
    NON_NULLABLE_FIELDS: ClassVar[Set[str]] = set()

    @model_validator(mode='before')
    @classmethod
    def flatten_payload(cls, data):
        if isinstance(data, dict) and isinstance(data.get('payload'), dict):
            flattened = {key: value for key, value in data.items() if key != 'payload'}
            for key, value in data['payload'].items():
                flattened.setdefault(key, value)
            return flattened
        return data

    @field_validator('offline_id')
    @classmethod
    def strip_offline_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('offlineId must not be blank')
        return v

    @field_validator('created_at')
    @classmethod
    def normalize_created_at(cls, v):
        return as_utc(v)

    def entity_fields(self):
        """Entity column values the client actually sent, without envelope metadata."""
        data = self.model_dump(exclude_unset=True, exclude=self.ENVELOPE_FIELDS)
        return {
            key: value for key, value in data.items()
            if value is not None or key not in self.NON_NULLABLE_FIELDS
        }


class AssessmentSyncRequest(OfflineEnvelope):
    asset_id: Optional[int] = Field(None, gt=0)
    component_code: Optional[str] = Field(None, max_length=20)
    condition: Optional[AssessmentCondition] = None
    status: Optional[AssessmentStatus] = None
    condition_percentage: Optional[str] = Field(None, max_length=20)
    component_name: Optional[str] = Field(None, max_length=255)
    component_location: Optional[str] = Field(None, max_length=255)
    observations: Optional[str] = Field(None, max_length=20000)
    recommendations: Optional[str] = Field(None, max_length=20000)
    remaining_useful_life: Optional[int] = Field(None, ge=0)
    expected_useful_life: Optional[int] = Field(None, ge=0)
    review_year: Optional[int] = None
    last_time_action: Optional[int] = None
    estimated_repair_cost: Optional[float] = Field(None, ge=0)
    replacement_value: Optional[float] = Field(None, ge=0)
    action_year: Optional[int] = None
    has_validation_overrides: Optional[bool] = None
    validation_warnings: Optional[str] = None

    NON_NULLABLE_FIELDS: ClassVar[Set[str]] = {'condition', 'status', 'has_validation_overrides'}

    @field_validator('component_code')
    @classmethod
    def normalize_component_code(cls, v):
        if v is None:
            return v
        return v.strip() or None

    @field_validator('observations', 'recommendations', 'component_name', 'component_location')
    @classmethod
    def sanitize_text_fields(cls, v):
        if v:
            return sanitize_html(v)
        return v


class PhotoSyncRequest(OfflineEnvelope):
    assessment_id: Optional[int] = Field(None, gt=0)
    asset_id: Optional[int] = Field(None, gt=0)
    deficiency_id: Optional[int] = Field(None, gt=0)
    file_name: str = Field(..., min_length=1, max_length=255)
    caption: Optional[str] = Field(None, max_length=5000)
    photo_blob: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    altitude: Optional[float] = None
    location_accuracy: Optional[float] = Field(None, ge=0)
    ocr_text: Optional[str] = None
    ocr_confidence: Optional[float] = Field(None, ge=0, le=100)

    ENVELOPE_FIELDS: ClassVar[Set[str]] = {'offline_id', 'created_at', 'photo_blob'}

    @field_validator('assessment_id', 'deficiency_id', mode='before')
    @classmethod
    def drop_unmapped_offline_ids(cls, v):
        return coerce_optional_id(v)

    @field_validator('mime_type')
    @classmethod
    def normalize_mime_type(cls, v):
        return v.strip().lower()

    @field_validator('caption', 'ocr_text')
    @classmethod
    def sanitize_text_fields(cls, v):
        if v:
            return sanitize_html(v)
        return v


class DeficiencySyncRequest(OfflineEnvelope):
    assessment_id: Optional[int] = Field(None, gt=0)
    component_code: Optional[str] = Field(None, max_length=20)
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=20000)
    location: Optional[str] = Field(None, max_length=255)
    severity: Optional[DeficiencySeverity] = None
    priority: Optional[DeficiencyPriority] = None
    recommended_action: Optional[str] = Field(None, max_length=20000)
    estimated_cost: Optional[float] = Field(None, ge=0)
    status: Optional[DeficiencyStatus] = None

    @field_validator('assessment_id', mode='before')
    @classmethod
    def drop_unmapped_offline_ids(cls, v):
        return coerce_optional_id(v)

    @field_validator('component_code', 'title')
    @classmethod
    def strip_blank(cls, v):
        if v is None:
            return v
        return v.strip() or None

    @field_validator('description', 'recommended_action', 'location')
    @classmethod
    def sanitize_text_fields(cls, v):
        if v:
            return sanitize_html(v)
        return v


# Batch envelopes. Items stay as raw dicts so that one malformed item is
# reported as a failed result instead of rejecting the whole batch.
class BatchAssessmentsRequest(WireModel):
    assessments: List[Dict[str, Any]]


class BatchPhotosRequest(WireModel):
    photos: List[Dict[str, Any]]


class BatchDeficienciesRequest(WireModel):
    deficiencies: List[Dict[str, Any]]


# Responses
class AssessmentSyncResponse(WireModel):
    assessment_id: Optional[int] = None
    conflict: bool
    resolution: ConflictResolution
    offline_id: str
    message: str = ""
    fields_changed: List[str] = Field(default_factory=list)
    replayed: bool = False

    @property
    def entity_id(self):
        return self.assessment_id


class PhotoSyncResponse(WireModel):
    photo_id: int
    url: str
    thumbnail_url: Optional[str] = None
    offline_id: str
    replayed: bool = False

    @property
    def entity_id(self):
        return self.photo_id


class DeficiencySyncResponse(WireModel):
    deficiency_id: int
    offline_id: str
    replayed: bool = False

    @property
    def entity_id(self):
        return self.deficiency_id


class BatchItemResult(WireModel):
    offline_id: Optional[str] = None
    success: bool
    entity_id: Optional[int] = None
    resolution: Optional[ConflictResolution] = None
    url: Optional[str] = None
    replayed: Optional[bool] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: Optional[bool] = None


class BatchSyncResponse(WireModel):
    results: List[BatchItemResult] = Field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0


class SyncPolicyResponse(WireModel):
    conflict_policy: str
    max_batch_size: int
    max_photo_bytes: int
    allowed_photo_mime_types: List[str]
