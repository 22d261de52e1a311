"""Sync receipts: server-side deduplication of replayed offline writes.

Photos, deficiencies and assessments without a component code have no natural
key, so a client retrying after a lost response would otherwise insert a
duplicate row. A receipt keyed by (entity kind, user, offline id) remembers the
result of the first successful write until it expires.
"""
import logging
from datetime import timedelta
from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from fca_shared.models import SyncReceipt, now, as_utc
from .errors import StorageError

logger = logging.getLogger(__name__)


class SyncReceiptStore:

    def __init__(self, session, ttl_hours=72):
        self.session = session
        self.ttl = timedelta(hours=ttl_hours)

    def find(self, entity_kind, user_id, offline_id):
        """Return the live receipt for an offline id, or None."""
        stmt = select(SyncReceipt).where(
            SyncReceipt.entity_kind == entity_kind,
            SyncReceipt.user_id == user_id,
            SyncReceipt.offline_id == offline_id,
        )
        try:
            receipt = self.session.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"Sync receipt lookup failed for offline_id={offline_id}: {e}", exc_info=True)
            raise StorageError("Failed to look up sync receipt") from e

        if receipt is None:
            return None
        if as_utc(receipt.expires_at) <= now():
            # Expired receipts are treated as absent; the row must be gone before record() reuses the key
            try:
                self.session.delete(receipt)
                self.session.flush()
            except SQLAlchemyError as e:
                logger.error(f"Failed to drop expired sync receipt for offline_id={offline_id}: {e}", exc_info=True)
                raise StorageError("Failed to drop expired sync receipt") from e
            return None
        return receipt

    def record(self, entity_kind, user_id, offline_id, entity_id, url=None):
        created = now()
        receipt = SyncReceipt(
            entity_kind=entity_kind,
            user_id=user_id,
            offline_id=offline_id,
            entity_id=entity_id,
            url=url,
            created_at=created,
            expires_at=created + self.ttl,
        )
        try:
            self.session.add(receipt)
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record sync receipt for offline_id={offline_id}: {e}", exc_info=True)
            raise StorageError("Failed to record sync receipt") from e
        return receipt

    def purge_expired(self):
        """Delete expired receipts. Returns the number removed; the caller commits."""
        try:
            stmt = delete(SyncReceipt).where(SyncReceipt.expires_at <= now())
            result = self.session.execute(stmt.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            logger.error(f"Failed to purge sync receipts: {e}", exc_info=True)
            raise StorageError("Failed to purge sync receipts") from e
        purged = result.rowcount or 0
        logger.info(f"Purged {purged} expired sync receipts")
        return purged
