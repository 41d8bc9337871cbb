"""
Main entry point for the Carry Mark platform.
"""

import logging
import threading
import time
from datetime import date, timedelta
from typing import Optional

import uvicorn

from .api.rest_api import CarryMarkRestAPI
from .config import engine_config_from, load_config
from .core.entities import AssessmentScore, Assignment, AttendanceEntry, NaturalKey
from .core.enums import AssessmentType, AttendanceStatus
from .persistence import (
    AuditRepository, CarryMarkRepository, DatabaseFactory, InMemoryCompositeStore,
    InMemoryRecordStore, SqlRecordStore
)
from .services import AuditTrail, CarryMarkService, ConcurrencyManager


logger = logging.getLogger(__name__)


class CarryMarkPlatform:
    """Main platform class that wires storage, services and the REST API."""

    def __init__(self, config: Optional[dict] = None):
        self._config = config or {}
        self._database = None
        self._store = None
        self._records = None
        self._concurrency_manager = None
        self._audit_trail = None
        self._service = None
        self._rest_app = None
        self._rest_thread = None
        self._running = False

        # Initialize platform
        self._initialize_platform()

    @property
    def service(self) -> CarryMarkService:
        return self._service

    @property
    def records(self):
        return self._records

    @property
    def rest_app(self) -> CarryMarkRestAPI:
        return self._rest_app

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        logger.info("Initializing Carry Mark platform...")

        engine_config = engine_config_from(self._config)

        # Initialize storage
        db_type = self._config.get('database_type', 'sqlite')
        if db_type == 'memory':
            self._store = InMemoryCompositeStore()
            self._records = InMemoryRecordStore()
            audit_repository = None
        else:
            db_config = self._config.get('database_config', {})
            self._database = DatabaseFactory.create_database(db_type, **db_config)
            self._store = CarryMarkRepository(self._database)
            self._records = SqlRecordStore(self._database)
            audit_repository = AuditRepository(self._database)
        logger.info("Storage initialized: %s", db_type)

        # Initialize services
        self._concurrency_manager = ConcurrencyManager(
            lock_timeout=self._config.get('lock_timeout', 10.0)
        )
        self._audit_trail = AuditTrail(audit_repository)
        self._service = CarryMarkService(
            store=self._store,
            assessments=self._records,
            submissions=self._records,
            attendance=self._records,
            config=engine_config,
            concurrency_manager=self._concurrency_manager,
            audit_trail=self._audit_trail
        )
        logger.info("Services initialized")

        # Initialize API
        self._rest_app = CarryMarkRestAPI(self._service, self._records, self._audit_trail)
        logger.info("Carry Mark platform initialized successfully")

    def start_rest_server(self, host: str = "0.0.0.0", port: int = 8000):
        """Start the REST server."""
        if self._running:
            logger.warning("REST server already running")
            return

        def run_server():
            uvicorn.run(
                self._rest_app.app,
                host=host,
                port=port,
                log_level="info"
            )

        # Start server in a separate thread
        self._rest_thread = threading.Thread(target=run_server, daemon=True)
        self._rest_thread.start()
        self._running = True

        logger.info("REST server started on %s:%s", host, port)
        print(f"  - REST API: http://{host}:{port}")
        print(f"  - API Docs: http://{host}:{port}/docs")

    def create_sample_data(self) -> NaturalKey:
        """Seed one student's records for the demonstration and return the key."""
        key = NaturalKey("S001", "5A", "Mathematics", "Term 1", "2024-2025")

        for assessment_type, score in ((AssessmentType.US1, 80.0), (AssessmentType.US2, 90.0)):
            self._records.add_assessment(AssessmentScore(
                student_id=key.student_id, class_id=key.class_id, subject=key.subject,
                assessment_type=assessment_type, raw_score=score, term=key.term,
                academic_year=key.academic_year,
            ))

        # 18 of 20 sessions attended, one of them late
        start = date(2024, 9, 2)
        for day in range(20):
            if day < 17:
                status = AttendanceStatus.PRESENT
            elif day == 17:
                status = AttendanceStatus.LATE
            else:
                status = AttendanceStatus.ABSENT
            self._records.mark_attendance(AttendanceEntry(
                student_id=key.student_id, class_id=key.class_id,
                date=start + timedelta(days=day), status=status,
                term=key.term, academic_year=key.academic_year,
            ))
        return key

    def run_demo(self):
        """Run a demonstration of the platform."""
        print("Running Carry Mark platform demonstration...")

        key = self.create_sample_data()

        print("\n=== Recompute ===")
        result = self._service.recompute(key, actor="demo")
        record = result.record
        print(f"Outcome: {result.outcome.value}")
        print(f"Assessment average: {record.assessment_average}")
        print(f"Assignment average: {record.assignment_average}")
        print(f"Attendance: {record.attendance_percentage}%")
        print(f"Final score: {record.final_score} ({record.grade})")

        print("\n=== Assignment added ===")
        assignment = Assignment(
            assignment_id="demo-essay", class_id=key.class_id, subject=key.subject,
            title="Essay", term=key.term, academic_year=key.academic_year,
        )
        self._records.add_assignment(assignment)
        self._records.submit(assignment.assignment_id, key.student_id, 70.0)
        record = self._service.recompute(key, actor="demo").record
        print(f"Final score: {record.final_score} ({record.grade})")

        print("\n=== Manual adjustment ===")
        record = self._service.adjust(key, {'final_score': 88.0}, actor="teacher")
        print(f"Adjusted fields: {sorted(record.manually_adjusted_fields)}")
        record = self._service.recompute(key, actor="demo").record
        print(f"After recompute: {record.final_score} ({record.grade})")

        print("\n=== Statistics ===")
        print(self._service.get_statistics())
        print(f"Audit entries: {len(self._audit_trail.entries())}, "
              f"chain valid: {self._audit_trail.verify()}")

        print("\n✓ Demo completed")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Carry Mark Composite Scoring Platform")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="REST server host")
    parser.add_argument("--rest-port", type=int, default=8000, help="REST server port")
    parser.add_argument("--demo", action="store_true", help="Run demo mode")
    parser.add_argument("--config", type=str, help="Configuration file path")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    # Load configuration
    config = load_config(args.config) if args.config else {}
    if args.demo:
        config.setdefault('database_type', 'memory')

    platform = CarryMarkPlatform(config)

    try:
        if args.demo:
            platform.run_demo()
        else:
            platform.start_rest_server(args.host, args.rest_port)

            # Keep running
            print("\nPlatform is running. Press Ctrl+C to stop.")
            while True:
                time.sleep(1)

    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
