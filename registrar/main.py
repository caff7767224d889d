"""
Main entry point for the Registrar platform.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Optional

from .core.exceptions import RegistrarException
from .core.interfaces import SystemClock
from .persistence import StoreFactory
from .services import (
    ConcurrencyManager, EnrollmentService, FeeLedgerService, GradebookService, RegistryService
)
from .api.rest_api import RegistrarRestAPI

logger = logging.getLogger(__name__)


DEFAULT_CONFIG = {
    'store_type': 'memory',
    'store_config': {},
    'lock_timeout': 5.0,
    'max_retries': 3,
    'retry_backoff': 0.01,
}


class RegistrarPlatform:
    """Main platform class that wires the store, services and API together."""

    def __init__(self, config: Optional[dict] = None):
        self._config = dict(DEFAULT_CONFIG)
        self._config.update(config or {})
        self._store = None
        self._clock = None
        self._concurrency_manager = None
        self._registry = None
        self._enrollment_service = None
        self._fee_ledger = None
        self._gradebook = None
        self._rest_api = None
        self._rest_thread = None

        # Initialize platform
        self._initialize_platform()

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        logger.info("Initializing Registrar platform...")

        store_type = self._config.get('store_type', 'memory')
        store_config = self._config.get('store_config', {})
        self._store = StoreFactory.create_store(store_type, **store_config)
        logger.info("Record store initialized: %s", store_type)

        self._clock = SystemClock()
        self._concurrency_manager = ConcurrencyManager(
            lock_timeout=self._config.get('lock_timeout', 5.0),
            max_retries=self._config.get('max_retries', 3),
            backoff_factor=self._config.get('retry_backoff', 0.01),
        )

        self._registry = RegistryService(self._store, self._concurrency_manager)
        self._enrollment_service = EnrollmentService(self._store, self._concurrency_manager)
        self._fee_ledger = FeeLedgerService(self._store, self._concurrency_manager, self._clock)
        self._gradebook = GradebookService(self._store, self._concurrency_manager, self._clock)
        logger.info("Services initialized")

        self._rest_api = RegistrarRestAPI(
            self._registry,
            self._enrollment_service,
            self._fee_ledger,
            self._gradebook,
            self._concurrency_manager
        )
        logger.info("Registrar platform initialized successfully")

    @property
    def app(self):
        return self._rest_api.app

    @property
    def registry(self) -> RegistryService:
        return self._registry

    @property
    def enrollment_service(self) -> EnrollmentService:
        return self._enrollment_service

    @property
    def fee_ledger(self) -> FeeLedgerService:
        return self._fee_ledger

    @property
    def gradebook(self) -> GradebookService:
        return self._gradebook

    def start_rest_server(self, host: str = "0.0.0.0", port: int = 8000, log_level: str = "info"):
        """Start the REST server in a background thread."""
        if self._rest_thread is not None:
            logger.warning("REST server already running")
            return

        import uvicorn

        def run_server():
            uvicorn.run(
                self._rest_api.app,
                host=host,
                port=port,
                log_level=log_level
            )

        self._rest_thread = threading.Thread(target=run_server, daemon=True)
        self._rest_thread.start()

        logger.info("REST server started on %s:%d", host, port)
        logger.info("API docs: http://localhost:%d/docs", port)

    def create_sample_data(self):
        """Create sample data for demonstration."""
        students = [
            self._registry.register_student("Alice", "Johnson", "Computer Science", 2024),
            self._registry.register_student("Bob", "Smith", "Computer Science", 2024),
            self._registry.register_student("Carol", "Davis", "Electronics", 2024),
            self._registry.register_student("Dan", "Lee", "Mechanical", 2023),
        ]
        course = self._registry.register_course("CS101", "Introduction to Programming",
                                                "Computer Science", credits=4, capacity=2)
        return students, course

    def run_demo(self):
        """Run a demonstration of the platform."""
        print("Running Registrar platform demonstration...")

        students, course = self.create_sample_data()
        for student in students:
            print(f"  registered {student.student_code}: {student.full_name}")
        print(f"  course {course.course_code} with {course.capacity} seats")

        print("\n=== Concurrent Enrollment Demo ===")

        def try_enroll(student):
            try:
                self._enrollment_service.enroll(course.id, student.id)
                return student.student_code, "enrolled"
            except RegistrarException as e:
                return student.student_code, e.error_code

        with ThreadPoolExecutor(max_workers=len(students)) as executor:
            for code, outcome in executor.map(try_enroll, students):
                print(f"  {code}: {outcome}")
        course = self._enrollment_service.get_course(course.id)
        print(f"  seats taken: {course.enrollment_count}/{course.capacity}")

        print("\n=== Fee Ledger Demo ===")
        student = students[0]
        fee = self._fee_ledger.create_obligation(
            student.id, "2024-S1", "tuition", "1000.00",
            due_date=self._clock.now() + timedelta(days=30)
        )
        fee = self._fee_ledger.add_payment(fee.id, "400.00", "upi", reference="TXN-1")
        print(f"  after 400.00: due {fee.due_amount}, status {self._fee_ledger.status_of(fee).value}")
        try:
            self._fee_ledger.add_payment(fee.id, "700.00", "cash")
        except RegistrarException as e:
            print(f"  700.00 rejected: {e.error_code}")
        fee = self._fee_ledger.add_payment(fee.id, "600.00", "card")
        print(f"  after 600.00: due {fee.due_amount}, status {self._fee_ledger.status_of(fee).value}")

        print("\n=== Gradebook Demo ===")
        entry = self._gradebook.record_mark(student.id, course.id, "2024-S1", "midterm", 42, 50)
        print(f"  recorded {entry.mark.marks_obtained}/{entry.mark.total_marks}: "
              f"{entry.mark.percentage:.1f}% ({entry.mark.grade})")
        entry = self._gradebook.record_mark(student.id, course.id, "2024-S1", "midterm", 47, 50)
        print(f"  re-entered (created={entry.created}): {entry.mark.grade}")
        mark = self._gradebook.publish(entry.mark.id)
        print(f"  published at {mark.published_at.isoformat()}")

        print("\n=== Platform Statistics ===")
        print(f"Registry: {self._registry.get_statistics()}")
        print(f"Enrollment: {self._enrollment_service.get_statistics()}")
        print(f"Gradebook: {self._gradebook.get_statistics()}")
        print(f"Concurrency: {self._concurrency_manager.get_statistics()}")

        print("\nDemo completed")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Registrar institutional records platform")
    parser.add_argument("--host", type=str, default="0.0.0.0", help="REST server host")
    parser.add_argument("--port", type=int, default=8000, help="REST server port")
    parser.add_argument("--demo", action="store_true", help="Run demo mode")
    parser.add_argument("--config", type=str, help="Configuration file path (JSON)")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    # Load configuration
    config = {}
    if args.config:
        with open(args.config, 'r') as f:
            config = json.load(f)

    platform = RegistrarPlatform(config)

    try:
        if args.demo:
            platform.run_demo()
        else:
            platform.start_rest_server(args.host, args.port, args.log_level.lower())

            print("\nPlatform is running. Press Ctrl+C to stop.")
            while True:
                time.sleep(1)

    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
