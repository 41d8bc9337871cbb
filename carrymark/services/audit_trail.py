"""
Hash-chained audit trail of carry mark writes.
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from ..core.audit import AuditLogEntry, GENESIS_HASH
from ..core.enums import AuditAction
from ..persistence.repositories import AuditRepository


logger = logging.getLogger(__name__)


class AuditTrail:
    """Records who changed which carry mark, each entry chained to the last.

    Entries are persisted when a repository is given and kept in memory
    otherwise.
    """

    def __init__(self, repository: Optional[AuditRepository] = None):
        self._repository = repository
        self._entries: List[AuditLogEntry] = []
        self._lock = threading.RLock()
        self._last_hash = (repository.last_hash() if repository else None) or GENESIS_HASH

    def record(self, action: AuditAction, resource_id: str, actor: Optional[str],
               data: Dict[str, Any]) -> AuditLogEntry:
        with self._lock:
            entry = AuditLogEntry(
                action=action.value,
                resource_id=resource_id,
                actor=actor,
                data=data,
                prev_hash=self._last_hash
            )
            if self._repository is not None:
                self._repository.append(entry)
            else:
                self._entries.append(entry)
            self._last_hash = entry.hash
            logger.debug("Audit %s on %s by %s", action.value, resource_id, actor)
            return entry

    def entries(self, resource_id: Optional[str] = None) -> List[AuditLogEntry]:
        if self._repository is not None:
            return self._repository.find_all(resource_id)
        with self._lock:
            return [entry for entry in self._entries
                    if resource_id is None or entry.resource_id == resource_id]

    def verify(self) -> bool:
        """Check that every entry hashes correctly and links to its predecessor."""
        entries = self.entries()
        prev_hash = entries[0].prev_hash if entries else GENESIS_HASH
        for entry in entries:
            if entry.prev_hash != prev_hash or entry.hash != entry._compute_hash():
                return False
            prev_hash = entry.hash
        return True
