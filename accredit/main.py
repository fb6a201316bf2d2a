"""
Main entry point for the Accredit platform.
"""

import json
import logging
import secrets
import threading
import time
from typing import Any, Dict, Optional

from .config import AccreditSettings, load_settings
from .core.entities import User
from .core.enums import UserRole, ReviewAction
from .core.exceptions import AccreditException
from .persistence import DatabaseFactory, UserRepository, CourseRepository, StudentCourseRepository
from .services import InMemoryNotificationService, WorkflowService
from .api.rest_api import AccreditRestAPI


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class AccreditPlatform:
    """Wires storage, the workflow service and the REST API together."""

    def __init__(self, settings: Optional[AccreditSettings] = None):
        self._settings = settings or AccreditSettings()
        self._database = None
        self._repositories: Dict[str, Any] = {}
        self._notifications = None
        self._workflow = None
        self._rest_api = None
        self._identity_token = None
        self._rest_thread = None
        self._running = False

        self._initialize_platform()

    @property
    def settings(self) -> AccreditSettings:
        return self._settings

    @property
    def workflow(self) -> WorkflowService:
        return self._workflow

    @property
    def notifications(self) -> InMemoryNotificationService:
        return self._notifications

    @property
    def rest_api(self) -> AccreditRestAPI:
        return self._rest_api

    @property
    def identity_token(self) -> str:
        """Token the identity provider must send to ``PUT /users/{id}``."""
        return self._identity_token

    def _initialize_platform(self):
        """Initialize the platform with all services."""
        logger.info("Initializing Accredit platform")

        self._database = DatabaseFactory.create_database(
            self._settings.database_type, **self._settings.database_config)
        logger.info("Database initialized: %s", self._settings.database_type)

        self._repositories = {
            'user': UserRepository(self._database),
            'course': CourseRepository(self._database),
            'student_course': StudentCourseRepository(self._database),
        }

        self._notifications = InMemoryNotificationService()
        self._workflow = WorkflowService(
            self._repositories['user'],
            self._repositories['course'],
            self._repositories['student_course'],
            self._notifications,
            allow_student_self_revocation=self._settings.allow_student_self_revocation,
            max_note_length=self._settings.max_note_length,
        )
        self._identity_token = self._settings.identity_token
        if not self._identity_token:
            self._identity_token = secrets.token_urlsafe(32)
            logger.warning("ACCREDIT_IDENTITY_TOKEN is not set; identity sync token for this run: %s",
                           self._identity_token)
        self._rest_api = AccreditRestAPI(self._workflow, identity_token=self._identity_token)
        logger.info("Accredit platform initialized")

    def start_rest_server(self, host: Optional[str] = None, port: Optional[int] = None):
        """Start the REST server."""
        if self._rest_thread is not None:
            logger.warning("REST server already running")
            return

        import uvicorn

        host = host or self._settings.rest_host
        port = port or self._settings.rest_port

        def run_server():
            uvicorn.run(
                self._rest_api.app,
                host=host,
                port=port,
                log_level=self._settings.log_level.lower()
            )

        # Start server in a separate thread
        self._rest_thread = threading.Thread(target=run_server, daemon=True)
        self._rest_thread.start()
        self._running = True

        logger.info("REST server started on %s:%s (docs at /docs)", host, port)

    def stop_platform(self):
        if not self._running:
            return
        self._running = False
        logger.info("Accredit platform stopped")

    def create_sample_data(self) -> Dict[str, User]:
        """Create the users the demo scenario needs."""
        profiles = {
            'teacher': ("ada@state.edu", "Ada", "Lovelace", UserRole.TEACHER, "State University"),
            'admin': ("registrar@state.edu", "Grace", "Hopper", UserRole.UNIVERSITY_ADMIN, "State University"),
            'other_admin': ("registrar@tech.edu", "Alan", "Turing", UserRole.UNIVERSITY_ADMIN, "Tech Institute"),
            'student': ("sam@state.edu", "Sam", "Student", UserRole.STUDENT, "State University"),
        }
        # synced the way the identity provider does it, so reruns refresh the same users
        ready = {}
        for key, (email, first_name, last_name, role, university) in profiles.items():
            ready[key] = self._workflow.upsert_user(f"demo-{key.replace('_', '-')}", email, first_name,
                                                    last_name, role, university=university)
        logger.info("Sample users ready")
        return ready

    def run_demo(self):
        """Run the catalog and credential scenarios against the workflow service."""
        print("Running Accredit workflow demonstration...")
        users = self.create_sample_data()
        teacher, admin, other_admin, student = (
            users['teacher'], users['admin'], users['other_admin'], users['student'])
        workflow = self._workflow

        print("\n=== Catalog review ===")
        code = f"CS-{int(time.time())}"
        course = workflow.create_course(teacher, "Algorithms", code)
        print(f"{teacher.display_name} submitted {course.name} ({course.code}): {course.catalog_status.value}")

        try:
            workflow.review_catalog(other_admin, course.id, ReviewAction.APPROVE)
        except AccreditException as e:
            print(f"{other_admin.display_name} refused: {e.message}")

        course = workflow.review_catalog(admin, course.id, ReviewAction.APPROVE, "Fits the CS curriculum")
        print(f"{admin.display_name} approved: {course.catalog_status.value}")

        try:
            workflow.review_catalog(admin, course.id, ReviewAction.REJECT)
        except AccreditException as e:
            print(f"Second decision refused: {e.message}")

        print("\n=== Credential certification ===")
        claim = workflow.create_student_course(student, course_id=course.id,
                                               assigned_teacher_id=teacher.id, grade="A")
        print(f"{student.display_name} claimed {claim.course_name}: {claim.credential_status.value}")

        claim = workflow.review_credential(teacher, claim.id, ReviewAction.APPROVE, "Verified transcript")
        print(f"{teacher.display_name} validated: {claim.credential_status.value}, enrolled={claim.is_enrolled}")

        claim = workflow.revoke_credential(student, claim.id)
        print(f"{student.display_name} removed the validation: {claim.credential_status.value}")

        print("\n=== Notifications ===")
        for notification in self._notifications.sent:
            print(f"{notification.kind.value} -> {notification.user_id}")

        print("\nDemo completed")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Accredit course and credential validation workflow")
    parser.add_argument("--host", type=str, help="REST server host")
    parser.add_argument("--rest-port", type=int, help="REST server port")
    parser.add_argument("--demo", action="store_true", help="Run demo mode")
    parser.add_argument("--config", type=str, help="Configuration file path")

    args = parser.parse_args()

    # Load configuration
    config = {}
    if args.config:
        with open(args.config, 'r') as f:
            config = json.load(f)

    settings = load_settings(config)
    configure_logging(settings.log_level)

    platform = AccreditPlatform(settings)

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
        platform.stop_platform()


if __name__ == "__main__":
    main()
