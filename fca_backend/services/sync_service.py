"""Single-item offline sync operations.

Every operation follows the same order: validate the envelope, authorize the
caller against the project, then write. The ownership lookup, the entity
write, its change history and its sync receipt share one database
transaction, so any failure leaves the session clean for the next item.
"""
import logging
import uuid
from contextlib import contextmanager
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename
from fca_shared.enums import ConflictResolution, EntityKind, DeficiencySeverity, DeficiencyPriority, DeficiencyStatus
from fca_shared.models import Photo, now
from fca_shared.schemas import (
    AssessmentSyncRequest, PhotoSyncRequest, DeficiencySyncRequest,
    AssessmentSyncResponse, PhotoSyncResponse, DeficiencySyncResponse
)
from fca_shared.utils import decode_photo_blob, compute_photo_hash, generate_thumbnail, CorruptedImageError
from fca_shared.validation import ValidationError, validation_error_from_pydantic
from .entity_store import ASSESSMENT_FIELDS, snapshot_assessment
from .errors import StorageError
from .history import detect_changes, ASSESSMENT_RICH_TEXT_FIELDS, DEFICIENCY_RICH_TEXT_FIELDS

logger = logging.getLogger(__name__)

UNKNOWN_COMPONENT_CODE = 'UNKNOWN'
UNTITLED_DEFICIENCY = 'Untitled deficiency'

RESOLUTION_MESSAGES = {
    ConflictResolution.ACCEPTED: "Offline changes applied",
    ConflictResolution.MERGED: "Server record is newer; empty fields were filled from offline changes",
    ConflictResolution.SERVER_WINS: "Server record is newer; offline changes discarded",
}


def parse_request(model, data):
    """Validate a request dict against a pydantic model.

    Raises:
        ValidationError: Listing the offending wire fields
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise validation_error_from_pydantic(e) from e


def photo_object_key(project_id, file_name, timestamp_ms, token, thumbnail=False):
    """Blob key for a synced photo: ``project/{id}/photos/[thumbnails/]{ms}-{token}-{name}``.

    ``token`` keeps same-named photos uploaded in the same millisecond apart.
    """
    safe_name = secure_filename(file_name) or 'photo'
    folder = 'photos/thumbnails' if thumbnail else 'photos'
    return f"project/{project_id}/{folder}/{timestamp_ms}-{token}-{safe_name}"


class OfflineSyncService:
    """Applies offline-captured assessments, photos and deficiencies.

    Collaborators are injected so tests can substitute any of them:

    * guard: OwnershipGuard
    * store: EntityStore
    * blob_store: anything with put_object(key, data, mime_type) and delete_object(key)
    * history: ChangeHistoryLogger
    * receipts: SyncReceiptStore
    * resolver: ConflictResolver
    """

    def __init__(self, session, guard, store, blob_store, history, receipts, resolver, settings):
        self.session = session
        self.guard = guard
        self.store = store
        self.blob_store = blob_store
        self.history = history
        self.receipts = receipts
        self.resolver = resolver
        self.settings = settings

    @contextmanager
    def _unit_of_work(self):
        """Commit on success, roll back on any failure."""
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Database error during sync: {e}", exc_info=True)
            raise StorageError("Failed to save offline changes") from e
        except Exception:
            self.session.rollback()
            raise

    # Assessments

    def sync_assessment(self, caller, data):
        """Sync one offline assessment.

        Returns:
            AssessmentSyncResponse
        """
        request = parse_request(AssessmentSyncRequest, data)
        fields = {k: v for k, v in request.entity_fields().items() if k in ASSESSMENT_FIELDS}

        with self._unit_of_work():
            project = self.guard.authorize(caller, request.project_id)

            # Without a component code there is no natural key; replays are caught by receipt
            if not request.component_code:
                receipt = self.receipts.find(EntityKind.ASSESSMENT, caller.user_id, request.offline_id)
                if receipt is not None:
                    logger.info(f"Replayed assessment offline_id={request.offline_id} -> {receipt.entity_id}")
                    return AssessmentSyncResponse(
                        assessment_id=receipt.entity_id,
                        conflict=False,
                        resolution=ConflictResolution.ACCEPTED,
                        offline_id=request.offline_id,
                        message="Already synced",
                        replayed=True,
                    )

            existing = self.store.find_assessment_by_component(project.id, request.component_code)
            decision = self.resolver.resolve(request.created_at, fields, existing)

            if decision.resolution == ConflictResolution.ACCEPTED:
                assessment = self._apply_accepted(caller, project, request, fields, existing)
            elif decision.resolution == ConflictResolution.MERGED:
                assessment = self._apply_merge(caller, project, existing, decision)
            else:
                assessment = existing

        logger.info(
            f"Assessment sync {decision.resolution.value}: offline_id={request.offline_id} "
            f"assessment_id={assessment.id} project_id={project.id}",
            extra={'extra_fields': {
                'offline_id': request.offline_id,
                'project_id': project.id,
                'resolution': decision.resolution.value,
            }}
        )
        return AssessmentSyncResponse(
            assessment_id=assessment.id,
            conflict=decision.conflict,
            resolution=decision.resolution,
            offline_id=request.offline_id,
            message=RESOLUTION_MESSAGES[decision.resolution],
            fields_changed=list(decision.fields_changed),
        )

    def _apply_accepted(self, caller, project, request, fields, existing):
        # The offline capture time becomes the row's effective timestamp
        if existing is None:
            assessment = self.store.create_assessment(project.id, fields, request.created_at, caller.user_id)
            rich_text = {f: fields[f] for f in ASSESSMENT_RICH_TEXT_FIELDS if fields.get(f)}
            self.history.log_assessment_change(
                caller, project.id, assessment.component_code, assessment.id, is_new=True,
                component_name=assessment.component_name, rich_text_fields=rich_text,
            )
            if not request.component_code:
                self.receipts.record(EntityKind.ASSESSMENT, caller.user_id, request.offline_id, assessment.id)
            return assessment

        before = snapshot_assessment(existing)
        assessment = self.store.overwrite_assessment(existing, fields, request.created_at, caller.user_id)
        changes = detect_changes(before, {k: getattr(assessment, k) for k in fields})
        self._log_assessment_update(caller, project, assessment, changes)
        return assessment

    def _apply_merge(self, caller, project, existing, decision):
        before = snapshot_assessment(existing)
        assessment = self.store.merge_assessment_fields(existing, decision.changes)
        changes = detect_changes(before, decision.changes)
        self._log_assessment_update(caller, project, assessment, changes)
        return assessment

    def _log_assessment_update(self, caller, project, assessment, changes):
        if not changes:
            return
        rich_text = {f: changes[f][1] for f in ASSESSMENT_RICH_TEXT_FIELDS if f in changes and changes[f][1]}
        self.history.log_assessment_change(
            caller, project.id, assessment.component_code, assessment.id, is_new=False,
            component_name=assessment.component_name, changes=changes, rich_text_fields=rich_text,
        )

    # Photos

    def sync_photo(self, caller, data):
        """Sync one offline photo: upload the blob, then save its metadata.

        Blobs uploaded before a failed metadata write are deleted again.

        Returns:
            PhotoSyncResponse
        """
        request = parse_request(PhotoSyncRequest, data)

        uploaded = []
        try:
            with self._unit_of_work():
                project = self.guard.authorize(caller, request.project_id)
                response = self._ingest_photo(caller, project, request, uploaded)
        except Exception:
            self._discard_blobs(uploaded)
            raise

        if not response.replayed:
            logger.info(
                f"Photo synced: offline_id={request.offline_id} photo_id={response.photo_id} key={uploaded[0]}",
                extra={'extra_fields': {'offline_id': request.offline_id, 'project_id': project.id}}
            )
        return response

    def _ingest_photo(self, caller, project, request, uploaded):
        receipt = self.receipts.find(EntityKind.PHOTO, caller.user_id, request.offline_id)
        if receipt is not None:
            photo = self.session.get(Photo, receipt.entity_id)
            logger.info(f"Replayed photo offline_id={request.offline_id} -> {receipt.entity_id}")
            return PhotoSyncResponse(
                photo_id=receipt.entity_id,
                url=receipt.url,
                thumbnail_url=photo.thumbnail_url if photo is not None else None,
                offline_id=request.offline_id,
                replayed=True,
            )

        if request.mime_type not in self.settings.allowed_photo_mime_types:
            raise ValidationError(f"Unsupported mimeType {request.mime_type}", fields=['mimeType'])

        image_data = decode_photo_blob(request.photo_blob)
        if len(image_data) > self.settings.max_photo_bytes:
            raise ValidationError(
                f"photoBlob is {len(image_data)} bytes; the limit is {self.settings.max_photo_bytes}",
                fields=['photoBlob']
            )

        self.store.ensure_assessment_in_project(request.assessment_id, project.id)
        self.store.ensure_deficiency_in_project(request.deficiency_id, project.id)

        corrupted = False
        thumbnail = None
        try:
            thumbnail = generate_thumbnail(image_data=image_data, max_size=self.settings.thumbnail_max_size)
        except CorruptedImageError as e:
            logger.warning(f"Photo offline_id={request.offline_id} could not be decoded, storing as corrupted: {e}")
            corrupted = True

        timestamp_ms = int(now().timestamp() * 1000)
        token = uuid.uuid4().hex[:8]
        file_key = photo_object_key(project.id, request.file_name, timestamp_ms, token)
        url = self.blob_store.put_object(file_key, image_data, request.mime_type)
        uploaded.append(file_key)

        thumbnail_key = thumbnail_url = None
        if thumbnail is not None:
            thumbnail_bytes, thumbnail_mime = thumbnail
            thumbnail_key = photo_object_key(project.id, request.file_name, timestamp_ms, token, thumbnail=True)
            thumbnail_url = self.blob_store.put_object(thumbnail_key, thumbnail_bytes, thumbnail_mime)
            uploaded.append(thumbnail_key)

        metadata = request.entity_fields()
        metadata.pop('project_id', None)
        photo = self.store.create_photo(
            project_id=project.id,
            file_key=file_key,
            url=url,
            thumbnail_key=thumbnail_key,
            thumbnail_url=thumbnail_url,
            size_bytes=len(image_data),
            hash_value=compute_photo_hash(image_data),
            corrupted=corrupted,
            uploaded_by=caller.user_id,
            created_at=request.created_at,
            **metadata
        )
        self.receipts.record(EntityKind.PHOTO, caller.user_id, request.offline_id, photo.id, url=url)

        return PhotoSyncResponse(
            photo_id=photo.id,
            url=url,
            thumbnail_url=thumbnail_url,
            offline_id=request.offline_id,
        )

    def _discard_blobs(self, keys):
        for key in keys:
            try:
                self.blob_store.delete_object(key)
            except Exception as e:
                # Cleanup is best effort; the caller re-raises the original failure
                logger.error(f"Orphaned blob {key} could not be removed: {e}", exc_info=True)

    # Deficiencies

    def sync_deficiency(self, caller, data):
        """Sync one offline deficiency; always a new row unless replayed.

        Returns:
            DeficiencySyncResponse
        """
        request = parse_request(DeficiencySyncRequest, data)

        with self._unit_of_work():
            project = self.guard.authorize(caller, request.project_id)

            receipt = self.receipts.find(EntityKind.DEFICIENCY, caller.user_id, request.offline_id)
            if receipt is not None:
                logger.info(f"Replayed deficiency offline_id={request.offline_id} -> {receipt.entity_id}")
                return DeficiencySyncResponse(
                    deficiency_id=receipt.entity_id,
                    offline_id=request.offline_id,
                    replayed=True,
                )

            self.store.ensure_assessment_in_project(request.assessment_id, project.id)

            deficiency = self.store.create_deficiency(
                project_id=project.id,
                assessment_id=request.assessment_id,
                component_code=request.component_code or UNKNOWN_COMPONENT_CODE,
                title=request.title or UNTITLED_DEFICIENCY,
                description=request.description,
                location=request.location,
                severity=request.severity or DeficiencySeverity.MEDIUM,
                priority=request.priority or DeficiencyPriority.MEDIUM_TERM,
                recommended_action=request.recommended_action,
                estimated_cost=request.estimated_cost,
                status=request.status or DeficiencyStatus.OPEN,
                reported_by=caller.user_id,
                created_at=request.created_at,
            )
            rich_text = {
                f: getattr(deficiency, f) for f in DEFICIENCY_RICH_TEXT_FIELDS if getattr(deficiency, f)
            }
            self.history.log_deficiency_change(
                caller, project.id, deficiency.component_code, deficiency.id, is_new=True,
                component_name=deficiency.title, rich_text_fields=rich_text,
            )
            self.receipts.record(EntityKind.DEFICIENCY, caller.user_id, request.offline_id, deficiency.id)

        logger.info(
            f"Deficiency synced: offline_id={request.offline_id} deficiency_id={deficiency.id}",
            extra={'extra_fields': {'offline_id': request.offline_id, 'project_id': project.id}}
        )
        return DeficiencySyncResponse(deficiency_id=deficiency.id, offline_id=request.offline_id)
