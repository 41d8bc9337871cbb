import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional


GENESIS_HASH = "0" * 64


class AuditLogEntry:
    """Hash-chained record of one engine write."""

    def __init__(self, action: str, resource_id: str, actor: Optional[str],
                 data: Dict[str, Any], prev_hash: str,
                 entry_id: Optional[str] = None, recorded_at: Optional[datetime] = None):
        self.id = entry_id or str(uuid.uuid4())
        self.action = action
        self.resource_id = resource_id
        self.actor = actor
        self.data = data
        self.prev_hash = prev_hash
        self.recorded_at = recorded_at or datetime.now(timezone.utc)
        self.hash = self._compute_hash()

    def _compute_hash(self) -> str:
        h = hashlib.sha256()
        h.update(json.dumps({
            "action": self.action,
            "resource_id": self.resource_id,
            "actor": self.actor,
            "data": self.data,
            "prev_hash": self.prev_hash,
        }, sort_keys=True, default=str).encode())
        return h.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "resource_id": self.resource_id,
            "actor": self.actor,
            "data": self.data,
            "prev_hash": self.prev_hash,
            "hash": self.hash,
            "recorded_at": self.recorded_at.isoformat(),
        }
