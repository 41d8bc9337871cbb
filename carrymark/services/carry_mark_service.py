"""
Carry mark service: owns the natural-key identity of carry mark records.

``recompute`` derives every field from the record stores; ``adjust`` writes
caller-supplied values verbatim and marks them as manual overrides, which a
later ``recompute`` preserves. Every write is a versioned compare-and-set on
the natural key, retried a bounded number of times when it loses a race, so
a key never ends up with two records and a merge is never applied to a stale
copy.
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..config import EngineConfig
from ..core.entities import CompositeRecord, NaturalKey
from ..core.enums import (
    ADJUSTABLE_FIELDS, AuditAction, CompositeField, RecomputeOutcome
)
from ..core.exceptions import CarryMarkException, RecordNotFound, ValidationError
from ..core.interfaces import (
    AssessmentSource, AttendanceSource, CompositeRecordStore, SubmissionSource
)
from ..scoring.extractors import ComponentValues, extract_components
from ..scoring.reducer import ComponentScores, clamp_score, round_score
from .audit_trail import AuditTrail
from .concurrency_manager import ConcurrencyManager


logger = logging.getLogger(__name__)

_NUMERIC_FIELDS = frozenset({
    CompositeField.ASSESSMENT_AVERAGE.value,
    CompositeField.ASSIGNMENT_AVERAGE.value,
    CompositeField.ATTENDANCE_PERCENTAGE.value,
    CompositeField.FINAL_SCORE.value,
})


@dataclass
class RecomputeResult:
    """Result of a recompute: the stored record, or NO_DATA with no write."""
    outcome: RecomputeOutcome
    record: Optional[CompositeRecord] = None

    @property
    def has_record(self) -> bool:
        return self.record is not None


class CarryMarkService:
    """Recompute and adjust carry marks, one record per natural key."""

    def __init__(self, store: CompositeRecordStore, assessments: AssessmentSource,
                 submissions: SubmissionSource, attendance: AttendanceSource,
                 config: Optional[EngineConfig] = None,
                 concurrency_manager: Optional[ConcurrencyManager] = None,
                 audit_trail: Optional[AuditTrail] = None):
        self._store = store
        self._assessments = assessments
        self._submissions = submissions
        self._attendance = attendance
        self._config = config or EngineConfig()
        self._reducer = self._config.build_reducer()
        self._concurrency_manager = concurrency_manager or ConcurrencyManager()
        self._audit_trail = audit_trail
        self._lock = threading.RLock()
        self._stats = {
            'recomputed': 0,
            'no_data': 0,
            'adjusted': 0,
            'audit_failures': 0,
        }

    @property
    def config(self) -> EngineConfig:
        return self._config

    # Write operations

    def recompute(self, key: NaturalKey, actor: Optional[str] = None) -> RecomputeResult:
        """Derive the carry mark for ``key`` from the record stores and upsert it.

        Fields listed in the prior record's ``manually_adjusted_fields`` are
        kept; everything else is replaced. With no underlying data and no
        prior record nothing is written and the outcome is NO_DATA.
        """
        components = extract_components(key, self._assessments, self._submissions,
                                        self._attendance)
        scores = ComponentScores(
            assessment=components.assessment_average,
            assignment=components.assignment_average,
            attendance=components.attendance_for_reduction,
        )
        reduction = self._reducer.reduce(scores, self._config.weights)

        def merge(prior: Optional[CompositeRecord]) -> Optional[CompositeRecord]:
            if prior is None and not components.has_data:
                return None
            return self._merge_recomputed(key, prior, components, reduction.final_score)

        record = self._upsert(key, merge)
        if record is None:
            with self._lock:
                self._stats['no_data'] += 1
            logger.info("No data to compute carry mark for %s", key)
            return RecomputeResult(outcome=RecomputeOutcome.NO_DATA)

        with self._lock:
            self._stats['recomputed'] += 1
        logger.info("Recomputed carry mark for %s: final_score=%s grade=%s (version %d)",
                    key, record.final_score, record.grade, record.version)
        self._audit(AuditAction.RECOMPUTE, key, actor, {
            'final_score': record.final_score,
            'grade': record.grade,
            'preserved_fields': sorted(record.manually_adjusted_fields),
            'version': record.version,
        })
        return RecomputeResult(outcome=RecomputeOutcome.COMPUTED, record=record)

    def adjust(self, key: NaturalKey, fields: Dict[str, Any], actor: Optional[str] = None,
               create_if_missing: bool = True) -> CompositeRecord:
        """Write ``fields`` verbatim and mark them as manually adjusted.

        Never re-runs the reducer. Creates the record when none exists unless
        ``create_if_missing`` is False, in which case RecordNotFound is raised.
        """
        values = self._validate_adjustment(fields)

        def merge(prior: Optional[CompositeRecord]) -> CompositeRecord:
            if prior is None:
                if not create_if_missing:
                    raise RecordNotFound(f"No carry mark exists for {key}",
                                         details={'key': key.to_dict()})
                prior = CompositeRecord(key=key, weights=self._config.weights)
            return prior.with_fields(computed_at=_utcnow(), **values).with_adjusted(values)

        record = self._upsert(key, merge)
        with self._lock:
            self._stats['adjusted'] += 1
        logger.info("Adjusted carry mark for %s: %s (version %d)", key, sorted(values),
                    record.version)
        self._audit(AuditAction.ADJUST, key, actor, {
            'fields': values,
            'version': record.version,
        })
        return record

    def clear_adjustments(self, key: NaturalKey, fields: Optional[Iterable[str]] = None,
                          actor: Optional[str] = None) -> CompositeRecord:
        """Stop preserving manual values so the next recompute replaces them.

        Clears all adjusted fields when ``fields`` is None. Values are left
        as they are until the next recompute.
        """
        to_clear = None if fields is None else self._validate_field_names(fields)

        def merge(prior: Optional[CompositeRecord]) -> CompositeRecord:
            if prior is None:
                raise RecordNotFound(f"No carry mark exists for {key}",
                                     details={'key': key.to_dict()})
            remaining = frozenset() if to_clear is None else prior.manually_adjusted_fields - to_clear
            return prior.with_fields(manually_adjusted_fields=remaining, computed_at=_utcnow())

        record = self._upsert(key, merge)
        logger.info("Cleared adjustments on %s; still adjusted: %s", key,
                    sorted(record.manually_adjusted_fields))
        self._audit(AuditAction.CLEAR_ADJUSTMENTS, key, actor, {
            'fields': sorted(to_clear) if to_clear is not None else None,
            'version': record.version,
        })
        return record

    # Read operations

    def get(self, key: NaturalKey) -> Optional[CompositeRecord]:
        return self._store.get(key)

    def list_for_student(self, student_id: str, subject: Optional[str] = None,
                         term: Optional[str] = None,
                         academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._store.list_for_student(student_id, subject, term, academic_year)

    def list_for_class(self, class_id: str, subject: Optional[str] = None,
                       term: Optional[str] = None,
                       academic_year: Optional[str] = None) -> List[CompositeRecord]:
        return self._store.list_for_class(class_id, subject, term, academic_year)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
        stats['concurrency'] = self._concurrency_manager.get_statistics()
        return stats

    # Internals

    def _upsert(self, key: NaturalKey,
                merge: Callable[[Optional[CompositeRecord]], Optional[CompositeRecord]]
                ) -> Optional[CompositeRecord]:
        """Read the current record, merge, and write it back only if unchanged."""

        def attempt() -> Optional[CompositeRecord]:
            with self._concurrency_manager.lock(key.resource_id):
                prior = self._store.get(key)
                updated = merge(prior)
                if updated is None:
                    return None
                return self._store.compare_and_set(
                    updated, expected_version=prior.version if prior else None)

        return self._concurrency_manager.execute_with_retry(
            attempt,
            max_retries=self._config.max_retries,
            backoff_factor=self._config.retry_backoff
        )

    def _merge_recomputed(self, key: NaturalKey, prior: Optional[CompositeRecord],
                          components: ComponentValues,
                          final_score: Optional[float]) -> CompositeRecord:
        fresh = {
            CompositeField.ASSESSMENT_AVERAGE.value: components.assessment_average,
            CompositeField.ASSIGNMENT_AVERAGE.value: components.assignment_average,
            CompositeField.ATTENDANCE_PERCENTAGE.value: components.attendance_percentage,
            CompositeField.FINAL_SCORE.value: final_score,
        }
        adjusted = prior.manually_adjusted_fields if prior else frozenset()
        merged = {name: value for name, value in fresh.items() if name not in adjusted}

        # The grade follows whichever final score the record ends up holding.
        if CompositeField.GRADE.value not in adjusted:
            effective_score = (prior.final_score
                               if CompositeField.FINAL_SCORE.value in adjusted
                               else final_score)
            merged[CompositeField.GRADE.value] = self._reducer.grade_for(effective_score)

        base = prior or CompositeRecord(key=key, weights=self._config.weights)
        return base.with_fields(
            weights=self._config.weights,
            assessment_breakdown=dict(components.assessment_breakdown),
            computed_at=_utcnow(),
            **merged
        )

    def _validate_field_names(self, fields: Iterable[str]) -> frozenset:
        names = frozenset(fields)
        unknown = names - ADJUSTABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be adjusted: {sorted(unknown)}",
                                  details={'allowed': sorted(ADJUSTABLE_FIELDS)})
        return names

    def _validate_adjustment(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        if not fields:
            raise ValidationError("At least one field must be supplied")
        self._validate_field_names(fields)

        values: Dict[str, Any] = {}
        for name, value in fields.items():
            if value is None:
                values[name] = None
            elif name in _NUMERIC_FIELDS:
                if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                    raise ValidationError(f"{name} must be a number, got {value!r}")
                if clamp_score(value) != value:
                    raise ValidationError(f"{name} must be within [0, 100], got {value}")
                values[name] = float(value)
            else:
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"{name} must be a non-empty string, got {value!r}")
                values[name] = value

        if values.get(CompositeField.FINAL_SCORE.value) is not None:
            values[CompositeField.FINAL_SCORE.value] = round_score(
                values[CompositeField.FINAL_SCORE.value], self._config.rounding)
        return values

    def _audit(self, action: AuditAction, key: NaturalKey, actor: Optional[str],
               data: Dict[str, Any]) -> None:
        if self._audit_trail is None:
            return
        payload = {'key': key.to_dict()}
        payload.update(data)
        # The carry mark is already committed; an audit failure must not undo the call.
        try:
            self._audit_trail.record(action, key.resource_id, actor, payload)
        except CarryMarkException as e:
            with self._lock:
                self._stats['audit_failures'] += 1
            logger.error("Audit %s for %s failed: %s", action.value, key, e.message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
