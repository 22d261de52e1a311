"""Component change history.

Each synced write produces one created/updated event row, plus one row per
changed field for updates or per rich-text field for creations. Rows are added
to the caller's session so they commit (or roll back) with the entity write.
"""
import enum
import logging
from sqlalchemy.exc import SQLAlchemyError
from fca_shared.enums import ChangeType
from fca_shared.models import ComponentHistory
from fca_shared.validation import sanitize_html
from .errors import StorageError

logger = logging.getLogger(__name__)

ASSESSMENT_RICH_TEXT_FIELDS = ('observations', 'recommendations')
DEFICIENCY_RICH_TEXT_FIELDS = ('description', 'recommended_action')


def detect_changes(old, new):
    """Compare two value dicts; return {field: (old, new)} for keys of ``new`` that differ."""
    changes = {}
    for key, new_value in new.items():
        old_value = old.get(key)
        if new_value is None and old_value is None:
            continue
        if new_value != old_value:
            changes[key] = (old_value, new_value)
    return changes


def _to_text(value):
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def generate_summary(change_type, component, field_name=None):
    """Human-readable summary line for a history row."""
    if change_type == ChangeType.ASSESSMENT_CREATED:
        if field_name:
            return f"Recorded {field_name} for {component}"
        return f"Created new assessment for {component}"
    if change_type == ChangeType.ASSESSMENT_UPDATED:
        if field_name:
            return f"Updated {field_name} for {component}"
        return f"Updated assessment for {component}"
    if change_type == ChangeType.DEFICIENCY_CREATED:
        if field_name:
            return f"Recorded {field_name} in deficiency for {component}"
        return f"Reported new deficiency for {component}"
    if change_type == ChangeType.DEFICIENCY_UPDATED:
        if field_name:
            return f"Updated {field_name} in deficiency for {component}"
        return f"Updated deficiency for {component}"
    return f"Updated {component}"


class ChangeHistoryLogger:
    """Appends ComponentHistory rows for synced assessments and deficiencies."""

    def __init__(self, session):
        self.session = session

    def log_assessment_change(self, caller, project_id, component_code, assessment_id, is_new,
                              component_name=None, changes=None, rich_text_fields=None):
        """Log an assessment creation or update.

        Args:
            caller (CallerIdentity): Who made the change
            changes (dict, optional): {field: (old, new)} from detect_changes()
            rich_text_fields (dict, optional): {field: html} attached to matching field rows

        Returns:
            list: The ComponentHistory rows added to the session
        """
        change_type = ChangeType.ASSESSMENT_CREATED if is_new else ChangeType.ASSESSMENT_UPDATED
        return self._log(
            caller, project_id, component_code, component_name, change_type,
            changes, rich_text_fields, assessment_id=assessment_id,
        )

    def log_deficiency_change(self, caller, project_id, component_code, deficiency_id, is_new,
                              component_name=None, changes=None, rich_text_fields=None):
        change_type = ChangeType.DEFICIENCY_CREATED if is_new else ChangeType.DEFICIENCY_UPDATED
        return self._log(
            caller, project_id, component_code, component_name, change_type,
            changes, rich_text_fields, deficiency_id=deficiency_id,
        )

    def _log(self, caller, project_id, component_code, component_name, change_type,
             changes, rich_text_fields, assessment_id=None, deficiency_id=None):
        component = component_name or component_code or 'unassigned component'
        rich_text_fields = rich_text_fields or {}
        entries = [self._entry(
            caller, project_id, component_code, component_name, change_type,
            summary=generate_summary(change_type, component),
            assessment_id=assessment_id, deficiency_id=deficiency_id,
        )]

        is_update = change_type in (ChangeType.ASSESSMENT_UPDATED, ChangeType.DEFICIENCY_UPDATED)
        if changes and is_update:
            for field_name, (old_value, new_value) in changes.items():
                rich_text = rich_text_fields.get(field_name)
                entries.append(self._entry(
                    caller, project_id, component_code, component_name, change_type,
                    summary=generate_summary(change_type, component, field_name),
                    field_name=field_name,
                    old_value=_to_text(old_value),
                    new_value=_to_text(new_value),
                    rich_text_content=sanitize_html(rich_text) if rich_text else None,
                    assessment_id=assessment_id, deficiency_id=deficiency_id,
                ))
        elif not is_update:
            # New records carry their initial rich text, one row per field
            for field_name, rich_text in rich_text_fields.items():
                if not rich_text:
                    continue
                entries.append(self._entry(
                    caller, project_id, component_code, component_name, change_type,
                    summary=generate_summary(change_type, component, field_name),
                    field_name=field_name,
                    rich_text_content=sanitize_html(rich_text),
                    assessment_id=assessment_id, deficiency_id=deficiency_id,
                ))

        try:
            self.session.add_all(entries)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write change history for project_id={project_id}: {e}", exc_info=True)
            raise StorageError("Failed to write change history") from e

        logger.debug(f"Logged {len(entries)} history entries ({change_type.value}) for project_id={project_id}")
        return entries

    @staticmethod
    def _entry(caller, project_id, component_code, component_name, change_type, summary, **values):
        return ComponentHistory(
            project_id=project_id,
            component_code=component_code,
            component_name=component_name,
            change_type=change_type,
            user_id=caller.user_id,
            user_name=caller.name,
            summary=summary,
            **values
        )
