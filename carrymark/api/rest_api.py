"""
REST API implementation for the Carry Mark platform using FastAPI.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, model_validator

from .. import __version__
from ..core.entities import AssessmentScore, Assignment, AttendanceEntry, CompositeRecord, NaturalKey
from ..core.enums import AssessmentType, AttendanceStatus
from ..core.exceptions import (
    CarryMarkException, ConcurrentUpdateConflict, ConfigurationError, DataUnavailable,
    IntegrityViolation, InvalidGradeScale, InvalidWeights, PersistenceError, RecordNotFound,
    ValidationError
)
from ..services import AuditTrail, CarryMarkService


_ASSESSMENT_TYPES = "|".join(t.value for t in AssessmentType)
_ATTENDANCE_STATUSES = "|".join(s.value for s in AttendanceStatus)


# Pydantic models for API
class NaturalKeyModel(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=255)
    class_id: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=255)
    term: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., min_length=1, max_length=20)


class RecomputeRequest(NaturalKeyModel):
    actor: Optional[str] = None


class AdjustRequest(BaseModel):
    assessment_average: Optional[float] = Field(None, ge=0, le=100)
    assignment_average: Optional[float] = Field(None, ge=0, le=100)
    attendance_percentage: Optional[float] = Field(None, ge=0, le=100)
    final_score: Optional[float] = Field(None, ge=0, le=100)
    grade: Optional[str] = Field(None, min_length=1, max_length=10)
    actor: Optional[str] = None


class ClearAdjustmentsRequest(BaseModel):
    fields: Optional[List[str]] = None
    actor: Optional[str] = None


class WeightsResponse(BaseModel):
    assessment: float
    assignment: float
    attendance: float


class CarryMarkResponse(NaturalKeyModel):
    assessment_average: Optional[float] = None
    assignment_average: Optional[float] = None
    attendance_percentage: Optional[float] = None
    weights: WeightsResponse
    final_score: Optional[float] = None
    grade: Optional[str] = None
    assessment_breakdown: Dict[str, float] = {}
    manually_adjusted_fields: List[str] = []
    computed_at: datetime
    created_at: datetime
    version: int


class RecomputeResponse(BaseModel):
    outcome: str
    record: Optional[CarryMarkResponse] = None


class AssessmentCreate(NaturalKeyModel):
    assessment_type: str = Field(..., pattern=f"^({_ASSESSMENT_TYPES})$")
    raw_score: float = Field(..., ge=0)
    max_score: float = Field(100.0, gt=0)

    @model_validator(mode="after")
    def check_raw_score(self):
        if self.raw_score > self.max_score:
            raise ValueError(f"raw_score {self.raw_score:g} exceeds max_score {self.max_score:g}")
        return self


class AssessmentResponse(AssessmentCreate):
    id: str


class AssignmentCreate(BaseModel):
    assignment_id: Optional[str] = Field(None, min_length=1, max_length=255)
    class_id: str = Field(..., min_length=1, max_length=255)
    subject: str = Field(..., min_length=1, max_length=255)
    title: str = Field(..., min_length=1, max_length=255)
    max_score: float = Field(100.0, gt=0)
    term: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., min_length=1, max_length=20)


class AssignmentResponse(AssignmentCreate):
    assignment_id: str


class SubmissionCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=255)
    raw_score: Optional[float] = Field(None, ge=0)


class AttendanceCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=255)
    class_id: str = Field(..., min_length=1, max_length=255)
    date: date
    status: str = Field(..., pattern=f"^({_ATTENDANCE_STATUSES})$")
    term: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., min_length=1, max_length=20)


class AuditEntryResponse(BaseModel):
    id: str
    action: str
    resource_id: str
    actor: Optional[str] = None
    data: Dict[str, Any]
    prev_hash: str
    hash: str
    recorded_at: datetime


class StatisticsResponse(BaseModel):
    success: bool
    message: str
    statistics: Dict[str, Any]


_STATUS_BY_ERROR = [
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ConcurrentUpdateConflict, status.HTTP_409_CONFLICT),
    (IntegrityViolation, status.HTTP_409_CONFLICT),
    (DataUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvalidWeights, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (InvalidGradeScale, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _http_error(error: CarryMarkException) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=status_code, detail={
        'error': error.__class__.__name__,
        'message': error.message,
        'error_code': error.error_code,
        'details': error.details,
    })


class CarryMarkRestAPI:
    """REST API implementation for the Carry Mark platform."""

    def __init__(self, service: CarryMarkService, record_store,
                 audit_trail: Optional[AuditTrail] = None):
        self._service = service
        self._record_store = record_store
        self._audit_trail = audit_trail

        # Create FastAPI app
        self.app = FastAPI(
            title="Carry Mark API",
            description="Composite carry mark scoring for assessments, assignments and attendance",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/", response_model=Dict[str, str])
        def root():
            """Root endpoint."""
            return {
                "message": "Carry Mark API",
                "version": __version__,
                "docs": "/docs"
            }

        @self.app.get("/health", response_model=Dict[str, str])
        def health_check():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Carry mark endpoints
        @self.app.post("/carry-marks/recompute", response_model=RecomputeResponse)
        def recompute_carry_mark(request: RecomputeRequest):
            """Recompute the carry mark for one natural key."""
            try:
                key = self._key(request)
                result = self._service.recompute(key, actor=request.actor)
                return RecomputeResponse(
                    outcome=result.outcome.value,
                    record=self._record_to_response(result.record) if result.record else None
                )
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.get("/carry-marks/{student_id}/{class_id}/{subject}/{term}/{academic_year}",
                      response_model=CarryMarkResponse)
        def get_carry_mark(student_id: str, class_id: str, subject: str, term: str,
                           academic_year: str):
            """Get the carry mark for one natural key."""
            try:
                key = NaturalKey(student_id, class_id, subject, term, academic_year)
                record = self._service.get(key)
                if record is None:
                    raise HTTPException(status_code=404, detail="Carry mark not found")
                return self._record_to_response(record)
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.patch("/carry-marks/{student_id}/{class_id}/{subject}/{term}/{academic_year}",
                        response_model=CarryMarkResponse)
        def adjust_carry_mark(student_id: str, class_id: str, subject: str, term: str,
                              academic_year: str, request: AdjustRequest, create: bool = True):
            """Manually adjust fields of a carry mark."""
            try:
                key = NaturalKey(student_id, class_id, subject, term, academic_year)
                fields = request.model_dump(exclude_unset=True)
                actor = fields.pop('actor', None)
                record = self._service.adjust(key, fields, actor=actor, create_if_missing=create)
                return self._record_to_response(record)
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.delete("/carry-marks/{student_id}/{class_id}/{subject}/{term}/{academic_year}/adjustments",
                         response_model=CarryMarkResponse)
        def clear_adjustments(student_id: str, class_id: str, subject: str, term: str,
                              academic_year: str, request: Optional[ClearAdjustmentsRequest] = None):
            """Stop preserving manual adjustments on the next recompute."""
            try:
                key = NaturalKey(student_id, class_id, subject, term, academic_year)
                request = request or ClearAdjustmentsRequest()
                record = self._service.clear_adjustments(key, request.fields, actor=request.actor)
                return self._record_to_response(record)
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.get("/students/{student_id}/carry-marks", response_model=List[CarryMarkResponse])
        def list_student_carry_marks(student_id: str, subject: Optional[str] = None,
                                     term: Optional[str] = None,
                                     academic_year: Optional[str] = None):
            """List a student's carry marks."""
            try:
                records = self._service.list_for_student(student_id, subject, term, academic_year)
                return [self._record_to_response(record) for record in records]
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.get("/classes/{class_id}/carry-marks", response_model=List[CarryMarkResponse])
        def list_class_carry_marks(class_id: str, subject: Optional[str] = None,
                                   term: Optional[str] = None,
                                   academic_year: Optional[str] = None):
            """List a class's carry marks."""
            try:
                records = self._service.list_for_class(class_id, subject, term, academic_year)
                return [self._record_to_response(record) for record in records]
            except CarryMarkException as e:
                raise _http_error(e)

        # Record ingestion endpoints
        @self.app.post("/assessments", response_model=AssessmentResponse,
                       status_code=status.HTTP_201_CREATED)
        def record_assessment(assessment_data: AssessmentCreate):
            """Record an assessment score."""
            try:
                saved = self._record_store.add_assessment(AssessmentScore(
                    student_id=assessment_data.student_id,
                    class_id=assessment_data.class_id,
                    subject=assessment_data.subject,
                    assessment_type=AssessmentType(assessment_data.assessment_type),
                    raw_score=assessment_data.raw_score,
                    term=assessment_data.term,
                    academic_year=assessment_data.academic_year,
                    max_score=assessment_data.max_score,
                    assessment_id=str(uuid.uuid4()),
                ))
                return AssessmentResponse(id=saved.assessment_id, **assessment_data.model_dump())
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.post("/assignments", response_model=AssignmentResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_assignment(assignment_data: AssignmentCreate):
            """Create an assignment."""
            try:
                assignment = Assignment(
                    assignment_id=assignment_data.assignment_id or str(uuid.uuid4()),
                    class_id=assignment_data.class_id,
                    subject=assignment_data.subject,
                    title=assignment_data.title,
                    term=assignment_data.term,
                    academic_year=assignment_data.academic_year,
                    max_score=assignment_data.max_score,
                )
                self._record_store.add_assignment(assignment)
                return AssignmentResponse(
                    assignment_id=assignment.assignment_id,
                    class_id=assignment.class_id,
                    subject=assignment.subject,
                    title=assignment.title,
                    max_score=assignment.max_score,
                    term=assignment.term,
                    academic_year=assignment.academic_year,
                )
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.post("/assignments/{assignment_id}/submissions",
                       status_code=status.HTTP_204_NO_CONTENT)
        def submit_assignment(assignment_id: str, submission_data: SubmissionCreate):
            """Record a submission; omit raw_score for a missing submission."""
            try:
                self._record_store.submit(assignment_id, submission_data.student_id,
                                          submission_data.raw_score)
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.post("/attendance", status_code=status.HTTP_204_NO_CONTENT)
        def mark_attendance(attendance_data: AttendanceCreate):
            """Mark attendance for one student, class and date."""
            try:
                self._record_store.mark_attendance(AttendanceEntry(
                    student_id=attendance_data.student_id,
                    class_id=attendance_data.class_id,
                    date=attendance_data.date,
                    status=AttendanceStatus(attendance_data.status),
                    term=attendance_data.term,
                    academic_year=attendance_data.academic_year,
                ))
            except CarryMarkException as e:
                raise _http_error(e)

        # Audit and statistics endpoints
        @self.app.get("/audit", response_model=List[AuditEntryResponse])
        def list_audit_entries(resource_id: Optional[str] = None):
            """List audit trail entries, oldest first."""
            if self._audit_trail is None:
                return []
            try:
                return [AuditEntryResponse(**entry.to_dict())
                        for entry in self._audit_trail.entries(resource_id)]
            except CarryMarkException as e:
                raise _http_error(e)

        @self.app.get("/statistics", response_model=StatisticsResponse)
        def get_statistics():
            """Get engine statistics."""
            return StatisticsResponse(
                success=True,
                message="Statistics retrieved successfully",
                statistics=self._service.get_statistics()
            )

    @staticmethod
    def _key(request: NaturalKeyModel) -> NaturalKey:
        return NaturalKey(
            student_id=request.student_id,
            class_id=request.class_id,
            subject=request.subject,
            term=request.term,
            academic_year=request.academic_year,
        )

    @staticmethod
    def _record_to_response(record: CompositeRecord) -> CarryMarkResponse:
        """Convert CompositeRecord to response model."""
        return CarryMarkResponse(**record.to_dict())
