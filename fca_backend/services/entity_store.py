"""Entity upsert store for synced assessments, photos and deficiencies.

The store only flushes; the sync service owns the transaction and commits the
entity write together with its change history and sync receipt.
"""
import logging
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from fca_shared.models import Assessment, Photo, Deficiency
from fca_shared.validation import ValidationError
from .errors import StorageError

logger = logging.getLogger(__name__)

# Assessment columns a client may write through offline sync
ASSESSMENT_FIELDS = (
    'asset_id', 'component_code', 'condition', 'status', 'condition_percentage', 'component_name',
    'component_location', 'observations', 'recommendations', 'remaining_useful_life',
    'expected_useful_life', 'review_year', 'last_time_action', 'estimated_repair_cost',
    'replacement_value', 'action_year', 'has_validation_overrides', 'validation_warnings',
)


def snapshot_assessment(assessment):
    """Plain dict of an assessment's client-writable values."""
    if assessment is None:
        return {}
    return {field: getattr(assessment, field) for field in ASSESSMENT_FIELDS}


class EntityStore:
    """Persists synced entities through a SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def _flush(self, operation):
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Storage failure during {operation}: {e}", exc_info=True)
            raise StorageError(f"Failed to {operation}") from e

    def find_assessment_by_component(self, project_id, component_code):
        """Return the current assessment for a natural key, or None.

        Without a component code there is no natural key and nothing to find.
        """
        if not component_code:
            return None
        stmt = (
            select(Assessment)
            .where(Assessment.project_id == project_id, Assessment.component_code == component_code)
            .order_by(Assessment.assessed_at.desc(), Assessment.id.desc())
            .limit(1)
        )
        try:
            return self.session.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Assessment lookup failed for project_id={project_id} component={component_code}: {e}", exc_info=True)
            raise StorageError("Failed to look up existing assessment") from e

    def create_assessment(self, project_id, fields, assessed_at, user_id):
        assessment = Assessment(project_id=project_id, assessed_at=assessed_at, assessed_by=user_id)
        for field, value in fields.items():
            if field in ASSESSMENT_FIELDS:
                setattr(assessment, field, value)
        self.session.add(assessment)
        self._flush("create assessment")
        return assessment

    def overwrite_assessment(self, assessment, fields, assessed_at, user_id):
        """Apply an accepted offline write to an existing row.

        Only fields the client sent are overwritten. The row's effective
        timestamp becomes the offline capture time.
        """
        for field, value in fields.items():
            if field in ASSESSMENT_FIELDS:
                setattr(assessment, field, value)
        assessment.assessed_at = assessed_at
        assessment.assessed_by = user_id
        self._flush("update assessment")
        return assessment

    def merge_assessment_fields(self, assessment, values):
        """Fill gaps on an existing assessment; assessed_at is left alone."""
        for field, value in values.items():
            setattr(assessment, field, value)
        self._flush("merge assessment")
        return assessment

    def create_photo(self, **values):
        photo = Photo(**values)
        self.session.add(photo)
        self._flush("save photo metadata")
        return photo

    def create_deficiency(self, **values):
        deficiency = Deficiency(**values)
        self.session.add(deficiency)
        self._flush("create deficiency")
        return deficiency

    def ensure_assessment_in_project(self, assessment_id, project_id, field_name='assessmentId'):
        """Reject links to assessments outside the authorized project."""
        if assessment_id is None:
            return
        self._ensure_in_project(Assessment, assessment_id, project_id, field_name)

    def ensure_deficiency_in_project(self, deficiency_id, project_id, field_name='deficiencyId'):
        if deficiency_id is None:
            return
        self._ensure_in_project(Deficiency, deficiency_id, project_id, field_name)

    def _ensure_in_project(self, model, entity_id, project_id, field_name):
        try:
            row = self.session.get(model, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Lookup of {model.__tablename__}.id={entity_id} failed: {e}", exc_info=True)
            raise StorageError(f"Failed to look up {field_name}") from e
        if row is None or row.project_id != project_id:
            raise ValidationError(
                f"{field_name} {entity_id} does not exist in project {project_id}",
                fields=[field_name]
            )
