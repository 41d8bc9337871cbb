"""
Services module: the carry mark coordinator and its supporting components.
"""

from .concurrency_manager import ConcurrencyManager
from .audit_trail import AuditTrail
from .carry_mark_service import CarryMarkService, RecomputeResult

__all__ = [
    "ConcurrencyManager",
    "AuditTrail",
    "CarryMarkService",
    "RecomputeResult",
]
