"""Offline sync blueprint for Flask API."""
from flask import Blueprint, jsonify, request, g, current_app
import logging
from pydantic import ValidationError as PydanticValidationError
from ..models import db
from ..services.batch import BatchSyncOrchestrator
from ..services.cloud_storage import get_cloud_storage
from ..services.conflict_resolver import ConflictResolver
from ..services.entity_store import EntityStore
from ..services.errors import SyncError
from ..services.history import ChangeHistoryLogger
from ..services.idempotency import SyncReceiptStore
from ..services.ownership import OwnershipGuard
from ..services.sync_service import OfflineSyncService
from ..utils import api_error, handle_api_exception
from fca_shared.schemas import (
    BatchAssessmentsRequest, BatchPhotosRequest, BatchDeficienciesRequest, SyncPolicyResponse
)
from fca_shared.validation import ValidationError, validation_error_from_pydantic

logger = logging.getLogger(__name__)

bp = Blueprint('sync', __name__, url_prefix='/api/sync')


def get_settings():
    return current_app.extensions['fca_settings']


def build_sync_service(with_blob_store=False):
    """Wire the sync service for the current request's session."""
    settings = get_settings()
    session = db.session
    return OfflineSyncService(
        session=session,
        guard=OwnershipGuard(session),
        store=EntityStore(session),
        blob_store=get_cloud_storage(current_app) if with_blob_store else None,
        history=ChangeHistoryLogger(session),
        receipts=SyncReceiptStore(session, settings.sync_receipt_ttl_hours),
        resolver=ConflictResolver(settings.conflict_policy),
        settings=settings,
    )


def to_json(model):
    return jsonify(model.model_dump(mode='json', by_alias=True))


def sync_error_response(e, operation):
    """Map sync exceptions to HTTP responses."""
    if isinstance(e, ValidationError):
        return api_error(e.message, 400, fields=e.fields, errorType='validation_error')
    if isinstance(e, SyncError):
        log_level = 'error' if e.retryable else 'warning'
        return api_error(e.message, e.status_code, log_level, errorType=e.error_type, retryable=e.retryable)
    return handle_api_exception(e, operation)


def run_single(operation, name, with_blob_store=False):
    data = request.get_json(silent=True)
    if data is None:
        return api_error('Invalid JSON data', 400)
    try:
        service = build_sync_service(with_blob_store)
        return to_json(operation(service, data))
    except Exception as e:
        return sync_error_response(e, name)


def run_batch(schema, label, operation, name, with_blob_store=False):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error('Invalid JSON data', 400)
    try:
        envelope = schema.model_validate(data)
    except PydanticValidationError as e:
        error = validation_error_from_pydantic(e)
        return api_error(error.message, 400, fields=error.fields, errorType='validation_error')

    try:
        service = build_sync_service(with_blob_store)
        orchestrator = BatchSyncOrchestrator(max_batch_size=get_settings().max_batch_size)
        result = orchestrator.sync_batch(
            getattr(envelope, label), lambda item: operation(service, item), label=label
        )
        return to_json(result)
    except Exception as e:
        return sync_error_response(e, name)


@bp.route('/assessment', methods=['POST'])
def sync_assessment():
    """Sync one offline-captured assessment."""
    return run_single(lambda service, data: service.sync_assessment(g.caller, data), 'sync assessment')


@bp.route('/photo', methods=['POST'])
def sync_photo():
    """Sync one offline-captured photo."""
    return run_single(
        lambda service, data: service.sync_photo(g.caller, data), 'sync photo', with_blob_store=True
    )


@bp.route('/deficiency', methods=['POST'])
def sync_deficiency():
    """Sync one offline-captured deficiency."""
    return run_single(lambda service, data: service.sync_deficiency(g.caller, data), 'sync deficiency')


@bp.route('/assessments/batch', methods=['POST'])
def batch_sync_assessments():
    return run_batch(
        BatchAssessmentsRequest, 'assessments',
        lambda service, item: service.sync_assessment(g.caller, item), 'sync assessments'
    )


@bp.route('/photos/batch', methods=['POST'])
def batch_sync_photos():
    return run_batch(
        BatchPhotosRequest, 'photos',
        lambda service, item: service.sync_photo(g.caller, item), 'sync photos', with_blob_store=True
    )


@bp.route('/deficiencies/batch', methods=['POST'])
def batch_sync_deficiencies():
    return run_batch(
        BatchDeficienciesRequest, 'deficiencies',
        lambda service, item: service.sync_deficiency(g.caller, item), 'sync deficiencies'
    )


@bp.route('/policy', methods=['GET'])
def get_policy():
    """Report the active conflict policy and batch limits to the field client."""
    settings = get_settings()
    return to_json(SyncPolicyResponse(
        conflict_policy=settings.conflict_policy.value,
        max_batch_size=settings.max_batch_size,
        max_photo_bytes=settings.max_photo_bytes,
        allowed_photo_mime_types=settings.allowed_photo_mime_types,
    ))
