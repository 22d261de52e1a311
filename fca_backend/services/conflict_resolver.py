"""Conflict resolution for offline assessment writes.

An offline write targets an assessment by its natural key
``(project_id, component_code)``. When the server already holds a row for that
key, the row's ``assessed_at`` is compared against the offline ``created_at``:

* the server row is newer (strictly after) -> the configured policy decides
* otherwise, including equal timestamps    -> the incoming write is accepted

Under ``server_wins`` a newer server row discards the incoming write. Under
``field_merge`` empty fillable fields on the server row are filled from the
incoming write; if nothing qualifies the result is still ``server_wins``.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Tuple
from fca_shared.enums import ConflictPolicy, ConflictResolution
from fca_shared.models import as_utc
from fca_shared.utils import is_blank

logger = logging.getLogger(__name__)

# Fields the merge policy may fill; anything else on the server row is never touched
FILLABLE_FIELDS = ('observations', 'recommendations', 'estimated_repair_cost', 'replacement_value')


@dataclass(frozen=True)
class ConflictDecision:
    resolution: ConflictResolution
    fields_changed: Tuple[str, ...] = ()
    # field -> incoming value, populated for merged decisions only
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def conflict(self):
        return self.resolution != ConflictResolution.ACCEPTED


class ConflictResolver:
    """Decides accept/merge/discard for an incoming offline assessment."""

    def __init__(self, policy=ConflictPolicy.SERVER_WINS):
        self.policy = ConflictPolicy(policy)

    def resolve(self, incoming_created_at, incoming_fields, existing):
        """Resolve an incoming write against the current server row.

        Args:
            incoming_created_at (datetime): Offline capture time
            incoming_fields (dict): Assessment values the client sent
            existing: Current Assessment for the natural key, or None

        Returns:
            ConflictDecision
        """
        if existing is None or not self.server_is_newer(existing, incoming_created_at):
            return ConflictDecision(ConflictResolution.ACCEPTED)

        if self.policy == ConflictPolicy.FIELD_MERGE:
            changes = self.fillable_changes(incoming_fields, existing)
            if changes:
                logger.debug(f"Merging fields {sorted(changes)} into assessment {existing.id}")
                return ConflictDecision(
                    ConflictResolution.MERGED,
                    fields_changed=tuple(changes),
                    changes=changes,
                )

        return ConflictDecision(ConflictResolution.SERVER_WINS)

    @staticmethod
    def server_is_newer(existing, incoming_created_at):
        existing_at = as_utc(existing.assessed_at or existing.created_at)
        if existing_at is None:
            return False
        return existing_at > as_utc(incoming_created_at)

    @staticmethod
    def fillable_changes(incoming_fields, existing):
        changes = {}
        for name in FILLABLE_FIELDS:
            incoming_value = incoming_fields.get(name)
            if is_blank(incoming_value):
                continue
            if is_blank(getattr(existing, name)):
                changes[name] = incoming_value
        return changes
