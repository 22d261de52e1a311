"""Batch sync orchestrator.

Items run one at a time in input order, so a later write to the same
assessment natural key sees the effect of an earlier one. A failing item
becomes a failed result; it never aborts the rest of the batch.
"""
import logging
from fca_shared.schemas import BatchItemResult, BatchSyncResponse
from fca_shared.validation import ValidationError
from .errors import SyncError

logger = logging.getLogger(__name__)


def item_offline_id(item):
    """Best-effort offline id of a raw batch item, for failure reporting."""
    if not isinstance(item, dict):
        return None
    offline_id = item.get('offlineId', item.get('offline_id'))
    payload = item.get('payload')
    if offline_id is None and isinstance(payload, dict):
        # Nested envelopes carry the id inside the payload
        offline_id = payload.get('offlineId', payload.get('offline_id'))
    if offline_id is None:
        return None
    return str(offline_id)


class BatchSyncOrchestrator:

    def __init__(self, max_batch_size=200):
        self.max_batch_size = max_batch_size

    def sync_batch(self, items, operation, label='items'):
        """Run ``operation`` over every item and collect one result per item.

        Args:
            items (list): Raw envelope dicts
            operation (callable): Single-item sync taking an item, returning a sync response
            label (str): Name of the batch list on the wire, used in error messages

        Returns:
            BatchSyncResponse

        Raises:
            ValidationError: If the batch itself is malformed or too large
        """
        if not isinstance(items, list):
            raise ValidationError(f"{label} must be a list", fields=[label])
        if len(items) > self.max_batch_size:
            raise ValidationError(
                f"{label} holds {len(items)} items; the limit is {self.max_batch_size}",
                fields=[label]
            )

        results = []
        for index, item in enumerate(items):
            results.append(self._run_item(index, item, operation, label))

        success_count = sum(1 for r in results if r.success)
        failure_count = len(results) - success_count
        logger.info(f"Batch sync of {label}: {success_count} succeeded, {failure_count} failed")
        return BatchSyncResponse(results=results, success_count=success_count, failure_count=failure_count)

    def _run_item(self, index, item, operation, label):
        offline_id = item_offline_id(item)
        try:
            response = operation(item)
        except ValidationError as e:
            logger.warning(f"{label}[{index}] offline_id={offline_id} rejected: {e.message}")
            return self._failure(offline_id, e.message, 'validation_error', retryable=False)
        except SyncError as e:
            if e.retryable:
                logger.error(f"{label}[{index}] offline_id={offline_id} failed: {e.message}")
            else:
                logger.warning(f"{label}[{index}] offline_id={offline_id} failed: {e.message}")
            return self._failure(offline_id, e.message, e.error_type, retryable=e.retryable)
        except Exception as e:
            logger.error(f"{label}[{index}] offline_id={offline_id} failed unexpectedly: {e}", exc_info=True)
            return self._failure(offline_id, "Internal server error", 'internal_error', retryable=True)

        return BatchItemResult(
            offline_id=response.offline_id,
            success=True,
            entity_id=response.entity_id,
            resolution=getattr(response, 'resolution', None),
            url=getattr(response, 'url', None),
            replayed=response.replayed,
        )

    @staticmethod
    def _failure(offline_id, message, error_type, retryable):
        return BatchItemResult(
            offline_id=offline_id,
            success=False,
            error=message,
            error_type=error_type,
            retryable=retryable,
        )
