import pytest
from fastapi.testclient import TestClient

from accredit.api import AccreditRestAPI
from accredit.client import WorkflowClient
from accredit.core.entities import User
from accredit.core.enums import UserRole
from accredit.persistence import SQLiteDatabase, UserRepository, CourseRepository, StudentCourseRepository
from accredit.services import InMemoryNotificationService, WorkflowService


STATE = "State University"
TECH = "Tech Institute"


def make_user(role, university=STATE, first="Test", last="User", email=None):
    email = email or f"{first.lower()}.{last.lower()}@example.edu"
    return User(email, first, last, role, university=university)


@pytest.fixture
def database(tmp_path):
    return SQLiteDatabase(str(tmp_path / "accredit.db"))


@pytest.fixture
def repositories(database):
    return {
        'user': UserRepository(database),
        'course': CourseRepository(database),
        'student_course': StudentCourseRepository(database),
    }


@pytest.fixture
def notifications():
    return InMemoryNotificationService()


@pytest.fixture
def workflow(repositories, notifications):
    return WorkflowService(
        repositories['user'],
        repositories['course'],
        repositories['student_course'],
        notifications,
    )


@pytest.fixture
def users(workflow):
    people = {
        'teacher': make_user(UserRole.TEACHER, first="Ada", last="Lovelace"),
        'teacher2': make_user(UserRole.TEACHER, first="Edsger", last="Dijkstra"),
        'admin': make_user(UserRole.UNIVERSITY_ADMIN, first="Grace", last="Hopper"),
        'other_admin': make_user(UserRole.UNIVERSITY_ADMIN, university=TECH, first="Alan", last="Turing"),
        'student': make_user(UserRole.STUDENT, first="Sam", last="Student"),
        'other_student': make_user(UserRole.STUDENT, first="Olive", last="Other"),
    }
    for user in people.values():
        workflow.register_user(user)
    return people


@pytest.fixture
def api(workflow):
    return AccreditRestAPI(workflow)


@pytest.fixture
def http(api):
    with TestClient(api.app) as client:
        yield client


@pytest.fixture
def client_for(http):
    def build(user):
        return WorkflowClient(base_url="", user_id=user.id, session=http)
    return build
