"""Tests for offline sync request schemas."""
from datetime import datetime, timezone
import pytest
from pydantic import ValidationError as PydanticValidationError
from fca_shared.enums import AssessmentCondition
from fca_shared.schemas import (
    AssessmentSyncRequest, PhotoSyncRequest, DeficiencySyncRequest, BatchItemResult, coerce_optional_id
)
from fca_shared.validation import validation_error_from_pydantic


class TestEnvelope:

    def test_flat_and_nested_forms_are_equivalent(self):
        flat = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7, 'componentCode': 'B2010',
        })
        nested = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z',
            'payload': {'projectId': 7, 'componentCode': 'B2010'},
        })
        assert flat == nested

    def test_naive_created_at_is_utc(self):
        request = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T12:00:00', 'projectId': 7,
        })
        assert request.created_at == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def test_blank_offline_id_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            AssessmentSyncRequest.model_validate({'offlineId': '   ', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7})

    def test_entity_fields_only_include_sent_values(self):
        request = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7,
            'observations': 'ok', 'recommendations': None, 'condition': None,
        })

        fields = request.entity_fields()

        assert fields == {'project_id': 7, 'observations': 'ok', 'recommendations': None}

    def test_rich_text_is_sanitized(self):
        request = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7,
            'observations': '<p onclick="x()">Rust <img src=x onerror=alert(1)></p>',
        })
        assert request.observations == '<p>Rust </p>'

    def test_enum_values(self):
        request = AssessmentSyncRequest.model_validate({
            'offlineId': 'a1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7, 'condition': 'poor',
        })
        assert request.condition == AssessmentCondition.POOR


class TestPhotoRequest:

    def base(self, **overrides):
        data = {
            'offlineId': 'p1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7,
            'fileName': 'a.jpg', 'mimeType': ' IMAGE/JPEG ', 'photoBlob': 'aGVsbG8=',
        }
        data.update(overrides)
        return data

    def test_mime_type_is_normalized(self):
        assert PhotoSyncRequest.model_validate(self.base()).mime_type == 'image/jpeg'

    def test_blob_is_not_an_entity_field(self):
        fields = PhotoSyncRequest.model_validate(self.base()).entity_fields()
        assert 'photo_blob' not in fields
        assert fields['file_name'] == 'a.jpg'

    def test_offline_link_ids_are_dropped(self):
        request = PhotoSyncRequest.model_validate(self.base(assessmentId='offline_12', deficiencyId='34'))
        assert request.assessment_id is None
        assert request.deficiency_id == 34

    def test_coordinates_are_bounded(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            PhotoSyncRequest.model_validate(self.base(latitude=-91, longitude=181))
        error = validation_error_from_pydantic(exc_info.value)
        assert error.fields == ['latitude', 'longitude']


def test_deficiency_blank_title_becomes_none():
    request = DeficiencySyncRequest.model_validate({
        'offlineId': 'd1', 'createdAt': '2024-01-01T00:00:00Z', 'projectId': 7, 'title': '  ',
    })
    assert request.title is None


def test_coerce_optional_id():
    assert coerce_optional_id(' 12 ') == 12
    assert coerce_optional_id('offline_assessment_3') is None
    assert coerce_optional_id(5) == 5
    assert coerce_optional_id(None) is None


def test_batch_item_result_uses_camel_case():
    result = BatchItemResult(offline_id='a1', success=False, error='nope', error_type='access_denied')
    dumped = result.model_dump(mode='json', by_alias=True)
    assert dumped['offlineId'] == 'a1'
    assert dumped['errorType'] == 'access_denied'
