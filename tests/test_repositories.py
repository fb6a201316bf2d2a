import pytest

from accredit.core import validation_engine as engine
from accredit.core.enums import UserRole, CatalogStatus, CredentialStatus, ReviewAction
from accredit.core.exceptions import ConfigurationError, PersistenceError, ValidationError
from accredit.persistence import DatabaseFactory, SQLiteDatabase

from .conftest import make_user, STATE


@pytest.fixture
def teacher(repositories):
    user = make_user(UserRole.TEACHER, first="Ada", last="Lovelace")
    return repositories['user'].save(user)


@pytest.fixture
def student(repositories):
    user = make_user(UserRole.STUDENT, first="Sam", last="Student")
    return repositories['user'].save(user)


def test_schema_is_created(database):
    for table in ("users", "courses", "student_courses"):
        assert database.table_exists(table)


def test_factory_builds_sqlite(tmp_path):
    database = DatabaseFactory.create_database("sqlite", database_path=str(tmp_path / "f.db"))
    assert isinstance(database, SQLiteDatabase)


def test_factory_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        DatabaseFactory.create_database("oracle")


def test_user_round_trip(repositories, teacher):
    loaded = repositories['user'].find_by_id(teacher.id)
    assert loaded == teacher
    assert repositories['user'].find_by_email(teacher.email) == teacher
    assert repositories['user'].find_by_id("missing") is None


def test_course_save_and_update(repositories, teacher):
    courses = repositories['course']
    course = courses.save(engine.new_course(teacher, "Algorithms", "CS301", submit=False))
    assert courses.find_by_code("CS301") == course

    submitted = engine.submit_course_for_review(course, teacher)
    courses.save(submitted)
    loaded = courses.find_by_id(course.id)
    assert loaded.catalog_status is CatalogStatus.PENDING_REVIEW
    assert loaded.version == submitted.version


def test_course_code_is_unique(repositories, teacher):
    courses = repositories['course']
    courses.save(engine.new_course(teacher, "Algorithms", "CS301"))
    with pytest.raises(PersistenceError):
        courses.save(engine.new_course(teacher, "Algorithms II", "CS301"))


def test_pending_courses_are_scoped_to_university(repositories, teacher):
    courses = repositories['course']
    pending = courses.save(engine.new_course(teacher, "Algorithms", "CS301"))
    courses.save(engine.new_course(teacher, "Compilers", "CS401", university="Tech Institute"))
    courses.save(engine.new_course(teacher, "Drafting", "CS101", submit=False))

    assert [c.id for c in courses.find_pending_for_university(STATE)] == [pending.id]
    assert len(courses.find_by_instructor(teacher.id)) == 3


def test_compare_and_set_applies_when_status_matches(repositories, teacher):
    courses = repositories['course']
    admin = make_user(UserRole.UNIVERSITY_ADMIN)
    course = courses.save(engine.new_course(teacher, "Algorithms", "CS301"))
    approved = engine.decide_catalog_review(course, admin, ReviewAction.APPROVE)

    assert courses.compare_and_set(approved, CatalogStatus.PENDING_REVIEW.value, course.version)
    assert courses.find_by_id(course.id).catalog_status is CatalogStatus.APPROVED
    assert [c.id for c in courses.find_approved_by_instructor(teacher.id)] == [course.id]


def test_compare_and_set_loses_to_earlier_writer(repositories, student):
    claims = repositories['student_course']
    teacher = make_user(UserRole.TEACHER, first="T", last="One")
    teacher2 = make_user(UserRole.TEACHER, first="T", last="Two")
    claim = claims.save(engine.new_student_course(student, "Algorithms"))

    # both teachers read the claim while it was pending
    first = engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE)
    second = engine.decide_credential_review(claim, teacher2, ReviewAction.REJECT)

    assert claims.compare_and_set(first, CredentialStatus.PENDING.value, claim.version)
    assert not claims.compare_and_set(second, CredentialStatus.PENDING.value, claim.version)
    stored = claims.find_by_id(claim.id)
    assert stored.credential_status is CredentialStatus.VALIDATED
    assert stored.validated_by == teacher.id


def test_compare_and_set_rejects_stale_copy_after_status_returns(repositories, student, teacher):
    claims = repositories['student_course']
    claim = claims.save(engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id))
    pending, validated = CredentialStatus.PENDING.value, CredentialStatus.VALIDATED.value

    approved = engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE)
    assert claims.compare_and_set(approved, pending, claim.version)
    stale = claims.find_by_id(claim.id)

    # validated -> pending -> validated again while the stale copy is held
    revoked = engine.revoke_credential_validation(stale, student)
    assert claims.compare_and_set(revoked, validated, stale.version)
    again = engine.decide_credential_review(revoked, teacher, ReviewAction.APPROVE, "second look")
    assert claims.compare_and_set(again, pending, revoked.version)

    late_revoke = engine.revoke_credential_validation(stale, teacher)
    assert not claims.compare_and_set(late_revoke, validated, stale.version)
    stored = claims.find_by_id(claim.id)
    assert stored.credential_status is CredentialStatus.VALIDATED
    assert stored.validation_note == "second look"
    assert stored.version == again.version


def test_enrolled_claims(repositories, teacher, student):
    courses = repositories['course']
    claims = repositories['student_course']
    other = make_user(UserRole.TEACHER, first="T", last="Other")
    course = courses.save(engine.new_course(teacher, "Algorithms", "CS301"))

    by_teacher = claims.save(engine.decide_credential_review(
        engine.new_student_course(student, "Databases"), teacher, ReviewAction.APPROVE))
    on_course = claims.save(engine.decide_credential_review(
        engine.new_student_course(student, None, course=course), other, ReviewAction.APPROVE))
    claims.save(engine.decide_credential_review(
        engine.new_student_course(student, "Unrelated"), other, ReviewAction.APPROVE))
    claims.save(engine.new_student_course(student, None, course=course))

    assert {c.id for c in claims.find_enrolled_with_teacher(teacher.id, [course.id])} == \
        {by_teacher.id, on_course.id}
    assert len(claims.find_enrolled_for_user(student.id)) == 3
    assert [c.id for c in claims.find_all({"validated_by": teacher.id})] == [by_teacher.id]


def test_catalog_filters(repositories, teacher):
    courses = repositories['course']
    pending = courses.save(engine.new_course(teacher, "Algorithms", "CS301"))
    draft = courses.save(engine.new_course(teacher, "Drafting", "CS101", submit=False))
    courses.save(engine.new_course(teacher, "Compilers", "CS401", university="Tech Institute"))

    assert [c.id for c in courses.find_catalog(status=CatalogStatus.DRAFT.value)] == [draft.id]
    assert {c.id for c in courses.find_catalog(university=STATE)} == {pending.id, draft.id}
    assert len(courses.find_catalog()) == 3


def test_claims_for_teacher(repositories, teacher, student):
    courses = repositories['course']
    claims = repositories['student_course']
    other = make_user(UserRole.TEACHER, first="T", last="Other")
    course = courses.save(engine.new_course(teacher, "Algorithms", "CS301"))

    assigned = claims.save(engine.new_student_course(student, "Databases", assigned_teacher_id=teacher.id))
    on_course = claims.save(engine.new_student_course(student, None, course=course))
    claims.save(engine.new_student_course(student, None, course=course, assigned_teacher_id=other.id))
    claims.save(engine.new_student_course(student, "Unrelated"))

    found = claims.find_for_teacher(teacher.id, [course.id])
    assert {c.id for c in found} == {assigned.id, on_course.id}


def test_delete(repositories, student):
    claims = repositories['student_course']
    claim = claims.save(engine.new_student_course(student, "Algorithms"))
    assert claims.delete(claim.id)
    assert not claims.delete(claim.id)
    assert claims.find_by_user(student.id) == []


def test_unknown_filter_is_rejected(repositories):
    with pytest.raises(ValidationError):
        repositories['course'].find_all({"colour": "blue"})
