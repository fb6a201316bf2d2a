from datetime import datetime, timezone

import pytest

from accredit.core import validation_engine as engine
from accredit.core.entities import Course, StudentCourse
from accredit.core.enums import UserRole, CatalogStatus, CredentialStatus, ReviewAction
from accredit.core.exceptions import ForbiddenError, InvalidStateError, ValidationError

from .conftest import make_user, STATE, TECH


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def teacher():
    return make_user(UserRole.TEACHER, first="T", last="One")


@pytest.fixture
def teacher2():
    return make_user(UserRole.TEACHER, first="T", last="Two")


@pytest.fixture
def admin():
    return make_user(UserRole.UNIVERSITY_ADMIN, first="Admin", last="A")


@pytest.fixture
def other_admin():
    return make_user(UserRole.UNIVERSITY_ADMIN, university=TECH, first="Admin", last="B")


@pytest.fixture
def student():
    return make_user(UserRole.STUDENT, first="S", last="Student")


def pending_course(teacher):
    return engine.new_course(teacher, "Algorithms", "CS301", university=STATE, now=NOW)


def validated_claim(student, teacher):
    claim = engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id)
    return engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE, "ok", now=NOW)


class TestCatalogReview:

    def test_new_course_is_pending_review(self, teacher):
        course = pending_course(teacher)
        assert course.catalog_status is CatalogStatus.PENDING_REVIEW
        assert course.validation_requested_at == NOW
        assert course.reviewed_by is None

    def test_new_course_can_start_as_draft(self, teacher):
        course = engine.new_course(teacher, "Algorithms", "CS301", submit=False)
        assert course.catalog_status is CatalogStatus.DRAFT
        assert course.university == STATE

    def test_only_teachers_create_courses(self, student):
        with pytest.raises(ForbiddenError):
            engine.new_course(student, "Algorithms", "CS301")

    def test_approve_sets_reviewer_and_note(self, teacher, admin):
        course = pending_course(teacher)
        reviewed = engine.decide_catalog_review(course, admin, ReviewAction.APPROVE, "ok", now=NOW)
        assert reviewed.catalog_status is CatalogStatus.APPROVED
        assert reviewed.reviewed_by == admin.id
        assert reviewed.reviewed_at == NOW
        assert reviewed.university_validation_note == "ok"

    def test_reject_accepts_string_action(self, teacher, admin):
        course = pending_course(teacher)
        reviewed = engine.decide_catalog_review(course, admin, "reject", "duplicate of CS300")
        assert reviewed.catalog_status is CatalogStatus.REJECTED
        assert reviewed.reviewed_by == admin.id

    def test_input_record_is_not_mutated(self, teacher, admin):
        course = pending_course(teacher)
        before = course.to_dict()
        engine.decide_catalog_review(course, admin, ReviewAction.APPROVE)
        assert course.to_dict() == before

    @pytest.mark.parametrize("status", [CatalogStatus.DRAFT, CatalogStatus.APPROVED, CatalogStatus.REJECTED])
    def test_non_pending_course_is_invalid_state(self, teacher, admin, status):
        course = Course("Algorithms", "CS301", teacher.id, university=STATE, catalog_status=status)
        with pytest.raises(InvalidStateError):
            engine.decide_catalog_review(course, admin, ReviewAction.APPROVE)

    def test_admin_of_other_university_is_forbidden(self, teacher, other_admin):
        with pytest.raises(ForbiddenError):
            engine.decide_catalog_review(pending_course(teacher), other_admin, ReviewAction.APPROVE)

    def test_authorization_is_checked_before_status(self, teacher, admin, other_admin):
        approved = engine.decide_catalog_review(pending_course(teacher), admin, ReviewAction.APPROVE)
        with pytest.raises(ForbiddenError):
            engine.decide_catalog_review(approved, other_admin, ReviewAction.APPROVE)

    def test_teacher_cannot_review(self, teacher):
        with pytest.raises(ForbiddenError):
            engine.decide_catalog_review(pending_course(teacher), teacher, ReviewAction.APPROVE)

    def test_unknown_action_is_validation_error(self, teacher, admin):
        with pytest.raises(ValidationError):
            engine.decide_catalog_review(pending_course(teacher), admin, "maybe")

    def test_submit_draft(self, teacher):
        draft = engine.new_course(teacher, "Algorithms", "CS301", submit=False)
        submitted = engine.submit_course_for_review(draft, teacher, now=NOW)
        assert submitted.catalog_status is CatalogStatus.PENDING_REVIEW
        assert submitted.validation_requested_at == NOW

    def test_submit_requires_owner(self, teacher, teacher2):
        draft = engine.new_course(teacher, "Algorithms", "CS301", submit=False)
        with pytest.raises(ForbiddenError):
            engine.submit_course_for_review(draft, teacher2)

    def test_submit_requires_university(self):
        teacher = make_user(UserRole.TEACHER, university=None, first="No", last="Uni")
        draft = engine.new_course(teacher, "Algorithms", "CS301", submit=False)
        with pytest.raises(ValidationError):
            engine.submit_course_for_review(draft, teacher)

    def test_rejected_course_cannot_be_resubmitted(self, teacher, admin):
        rejected = engine.decide_catalog_review(pending_course(teacher), admin, ReviewAction.REJECT)
        with pytest.raises(InvalidStateError):
            engine.submit_course_for_review(rejected, teacher)


class TestCredentialReview:

    def test_new_claim_is_pending(self, student):
        claim = engine.new_student_course(student, "Algorithms")
        assert claim.credential_status is CredentialStatus.PENDING
        assert claim.user_id == student.id

    def test_claim_copies_linked_course(self, student, teacher):
        course = pending_course(teacher)
        claim = engine.new_student_course(student, None, course=course)
        assert claim.course_name == "Algorithms"
        assert claim.course_code == "CS301"
        assert claim.institution == STATE
        assert claim.course_id == course.id

    def test_only_students_create_claims(self, teacher):
        with pytest.raises(ForbiddenError):
            engine.new_student_course(teacher, "Algorithms")

    def test_assigned_claim_only_validatable_by_assignee(self, student, teacher, teacher2):
        claim = engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id)
        assert engine.can_validate_credential(claim, teacher)
        assert not engine.can_validate_credential(claim, teacher2)
        assert engine.credential_blocked_reason(claim, teacher2) == \
            "Only the assigned teacher can validate this course"

    def test_unassigned_claim_validatable_by_any_teacher(self, student, teacher, teacher2):
        claim = engine.new_student_course(student, "Algorithms")
        assert engine.can_validate_credential(claim, teacher)
        assert engine.can_validate_credential(claim, teacher2)

    def test_non_teacher_cannot_validate(self, student, admin):
        claim = engine.new_student_course(student, "Algorithms")
        assert not engine.can_validate_credential(claim, admin)
        with pytest.raises(ForbiddenError):
            engine.decide_credential_review(claim, admin, ReviewAction.APPROVE)

    def test_approve_validates_and_enrolls(self, student, teacher):
        claim = validated_claim(student, teacher)
        assert claim.credential_status is CredentialStatus.VALIDATED
        assert claim.validated_by == teacher.id
        assert claim.validated_at == NOW
        assert claim.validation_note == "ok"
        assert claim.is_enrolled
        assert claim.enrolled_at == NOW

    def test_reject_leaves_validator_unset(self, student, teacher):
        claim = engine.new_student_course(student, "Algorithms")
        rejected = engine.decide_credential_review(claim, teacher, ReviewAction.REJECT, "no transcript")
        assert rejected.credential_status is CredentialStatus.REJECTED
        assert rejected.validated_by is None
        assert rejected.validated_at is None
        assert rejected.validation_note == "no transcript"

    def test_wrong_teacher_is_forbidden(self, student, teacher, teacher2):
        claim = engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id)
        with pytest.raises(ForbiddenError):
            engine.decide_credential_review(claim, teacher2, ReviewAction.APPROVE)

    def test_repeat_decision_is_invalid_state(self, student, teacher):
        claim = validated_claim(student, teacher)
        with pytest.raises(InvalidStateError):
            engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE)

    def test_assignment_is_checked_before_status(self, student, teacher, teacher2):
        claim = validated_claim(student, teacher)
        with pytest.raises(ForbiddenError):
            engine.decide_credential_review(claim, teacher2, ReviewAction.REJECT)
        assert engine.credential_blocked_reason(claim, teacher2) == \
            "Only the assigned teacher can validate this course"

    @pytest.mark.parametrize("actor_name", ["student", "admin"])
    def test_non_teacher_on_settled_claim_is_forbidden(self, student, teacher, admin, actor_name):
        claim = validated_claim(student, teacher)
        actor = {'student': student, 'admin': admin}[actor_name]
        with pytest.raises(ForbiddenError):
            engine.decide_credential_review(claim, actor, ReviewAction.APPROVE)

    def test_settled_unassigned_claim_is_invalid_state_for_other_teacher(self, student, teacher, teacher2):
        claim = engine.new_student_course(student, "Algorithms")
        rejected = engine.decide_credential_review(claim, teacher, ReviewAction.REJECT)
        with pytest.raises(InvalidStateError):
            engine.decide_credential_review(rejected, teacher2, ReviewAction.APPROVE)
        assert engine.credential_blocked_reason(rejected, teacher2) == "Course is already rejected"

    def test_blank_note_is_stored_as_none(self, student, teacher):
        claim = engine.new_student_course(student, "Algorithms")
        decided = engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE, "   ")
        assert decided.validation_note is None


class TestRevocation:

    def test_validator_revokes(self, student, teacher):
        revoked = engine.revoke_credential_validation(validated_claim(student, teacher), teacher)
        assert revoked.credential_status is CredentialStatus.PENDING
        assert revoked.validated_by is None
        assert revoked.validated_at is None
        assert not revoked.is_enrolled
        assert revoked.enrolled_at is None

    def test_note_is_kept_as_history(self, student, teacher):
        revoked = engine.revoke_credential_validation(validated_claim(student, teacher), teacher)
        assert revoked.validation_note == "ok"

    def test_owning_student_revokes(self, student, teacher):
        revoked = engine.revoke_credential_validation(validated_claim(student, teacher), student)
        assert revoked.credential_status is CredentialStatus.PENDING

    def test_self_revocation_can_be_disabled(self, student, teacher):
        claim = validated_claim(student, teacher)
        assert not engine.can_revoke_credential(claim, student, allow_student_self_revocation=False)
        with pytest.raises(ForbiddenError):
            engine.revoke_credential_validation(claim, student, allow_student_self_revocation=False)
        assert engine.can_revoke_credential(claim, teacher, allow_student_self_revocation=False)

    @pytest.mark.parametrize("actor_name", ["teacher2", "admin", "other_student"])
    def test_anyone_else_is_forbidden(self, student, teacher, teacher2, admin, actor_name):
        actors = {
            'teacher2': teacher2,
            'admin': admin,
            'other_student': make_user(UserRole.STUDENT, first="O", last="Other"),
        }
        with pytest.raises(ForbiddenError):
            engine.revoke_credential_validation(validated_claim(student, teacher), actors[actor_name])

    def test_pending_claim_cannot_be_revoked_by_its_owner(self, student):
        claim = engine.new_student_course(student, "Algorithms")
        with pytest.raises(InvalidStateError):
            engine.revoke_credential_validation(claim, student)

    @pytest.mark.parametrize("actor_name", ["teacher", "admin", "other_student"])
    def test_stranger_revoking_pending_claim_is_forbidden(self, student, teacher, admin, actor_name):
        actors = {
            'teacher': teacher,
            'admin': admin,
            'other_student': make_user(UserRole.STUDENT, first="O", last="Other"),
        }
        claim = engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id)
        with pytest.raises(ForbiddenError):
            engine.revoke_credential_validation(claim, actors[actor_name])
        assert not engine.can_revoke_credential(claim, actors[actor_name])

    def test_previous_validator_cannot_revoke_after_revocation(self, student, teacher):
        revoked = engine.revoke_credential_validation(validated_claim(student, teacher), student)
        with pytest.raises(ForbiddenError):
            engine.revoke_credential_validation(revoked, teacher)

    def test_revoked_claim_can_be_decided_again(self, student, teacher):
        revoked = engine.revoke_credential_validation(validated_claim(student, teacher), teacher)
        assert engine.can_validate_credential(revoked, teacher)


class TestEdits:

    def test_instructor_edits_course_without_touching_status(self, teacher):
        course = pending_course(teacher)
        edited = engine.edit_course(course, teacher, {'name': " Advanced Algorithms ", 'semester': "Fall"}, now=NOW)
        assert edited.name == "Advanced Algorithms"
        assert edited.semester == "Fall"
        assert edited.catalog_status is CatalogStatus.PENDING_REVIEW
        assert edited.version == course.version + 1
        assert course.name == "Algorithms"

    def test_other_teacher_cannot_edit_course(self, teacher, teacher2):
        with pytest.raises(ForbiddenError):
            engine.edit_course(pending_course(teacher), teacher2, {'name': "Mine"})

    def test_review_fields_are_not_editable(self, teacher):
        with pytest.raises(ValidationError) as info:
            engine.edit_course(pending_course(teacher), teacher, {'catalog_status': CatalogStatus.APPROVED})
        assert info.value.details == {'fields': ['catalog_status']}

    def test_course_name_cannot_be_blanked(self, teacher):
        with pytest.raises(ValidationError):
            engine.edit_course(pending_course(teacher), teacher, {'name': "  "})

    def test_owner_edits_validated_claim_and_keeps_validation(self, student, teacher):
        claim = validated_claim(student, teacher)
        edited = engine.edit_student_course(claim, student, {'grade': "A", 'credits': "4"})
        assert edited.grade == "A"
        assert edited.credits == "4"
        assert edited.credential_status is CredentialStatus.VALIDATED
        assert edited.validated_by == teacher.id

    def test_validation_fields_are_not_editable(self, student, teacher):
        claim = validated_claim(student, teacher)
        with pytest.raises(ValidationError):
            engine.edit_student_course(claim, student, {'validated_by': student.id})
        with pytest.raises(ValidationError):
            engine.edit_student_course(claim, student, {'assigned_teacher_id': None})

    def test_only_owner_edits_claim(self, student, teacher):
        claim = engine.new_student_course(student, "Algorithms")
        with pytest.raises(ForbiddenError):
            engine.edit_student_course(claim, teacher, {'grade': "A"})

    def test_unlinking_records_deletion_date(self, student, teacher):
        claim = engine.new_student_course(student, None, course=pending_course(teacher))
        unlinked = engine.unlink_deleted_course(claim, now=NOW)
        assert unlinked.course_id is None
        assert unlinked.validation_note == "Course deleted on 2026-03-01"
        assert claim.course_id is not None


class TestScenarios:

    def test_algorithms_catalog_scenario(self, teacher, admin, other_admin):
        course = engine.new_course(teacher, "Algorithms", "ALG", university=STATE)
        assert course.catalog_status is CatalogStatus.PENDING_REVIEW

        approved = engine.decide_catalog_review(course, admin, ReviewAction.APPROVE, "ok")
        assert approved.catalog_status is CatalogStatus.APPROVED
        assert approved.reviewed_by == admin.id

        with pytest.raises(ForbiddenError):
            engine.decide_catalog_review(approved, other_admin, ReviewAction.APPROVE, "ok")

    def test_algorithms_credential_scenario(self, student, teacher, teacher2):
        claim = engine.new_student_course(student, "Algorithms", assigned_teacher_id=teacher.id)
        assert claim.credential_status is CredentialStatus.PENDING

        with pytest.raises(ForbiddenError):
            engine.decide_credential_review(claim, teacher2, ReviewAction.APPROVE)

        validated = engine.decide_credential_review(claim, teacher, ReviewAction.APPROVE, "great work")
        assert validated.credential_status is CredentialStatus.VALIDATED
        assert validated.validated_by == teacher.id

        revoked = engine.revoke_credential_validation(validated, student)
        assert revoked.credential_status is CredentialStatus.PENDING
        assert revoked.validated_by is None


def test_entities_round_trip_through_dicts(student, teacher):
    claim = validated_claim(student, teacher)
    assert StudentCourse.from_dict(claim.to_dict()) == claim
    course = pending_course(teacher)
    assert Course.from_dict(course.to_dict()) == course
