"""
Validation engine: authorization and transition rules for catalog review and
credential certification.

Every function here is pure. Inputs are never mutated; a decision returns an
updated copy of the record, and a failed precondition raises before anything
is touched, so a decision either applies completely or not at all.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .entities import Course, StudentCourse, User, utcnow
from .enums import UserRole, CatalogStatus, CredentialStatus, ReviewAction
from .exceptions import ForbiddenError, InvalidStateError, ValidationError


def _as_action(action) -> ReviewAction:
    if isinstance(action, ReviewAction):
        return action
    try:
        return ReviewAction(action)
    except ValueError:
        raise ValidationError(
            f"Invalid action '{action}'. Must be one of: {[a.value for a in ReviewAction]}",
            details={'field': 'action'},
        )


def _clean_note(note: Optional[str]) -> Optional[str]:
    if note is None:
        return None
    if not isinstance(note, str):
        raise ValidationError("Note must be text", details={'field': 'note'})
    note = note.strip()
    return note or None


def _editable_changes(changes: Dict[str, Any], editable: Iterable[str],
                      required: Iterable[str] = ()) -> Dict[str, Any]:
    unknown = sorted(set(changes) - set(editable))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}",
                              details={'fields': unknown})
    cleaned = dict(changes)
    for field in required:
        if field not in cleaned:
            continue
        value = cleaned[field]
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} is required", details={'field': field})
        cleaned[field] = value.strip()
    return cleaned


# Catalog review

def new_course(teacher: User, name: str, code: str, university: Optional[str] = None,
               description: Optional[str] = None, semester: Optional[str] = None,
               submit: bool = True, now: Optional[datetime] = None) -> Course:
    """Create a catalog entry owned by ``teacher``.

    With ``submit`` the course starts in ``pending_review``, otherwise in ``draft``.
    """
    if not teacher.has_role(UserRole.TEACHER):
        raise ForbiddenError("Only teachers can create courses")

    course = Course(
        name=name,
        code=code,
        instructor_id=teacher.id,
        university=university or teacher.university,
        description=description,
        semester=semester,
    )
    if submit:
        course = submit_course_for_review(course, teacher, now=now)
    return course


def submit_course_for_review(course: Course, teacher: User, now: Optional[datetime] = None) -> Course:
    """Move a draft course into the university review queue."""
    if not teacher.has_role(UserRole.TEACHER) or course.instructor_id != teacher.id:
        raise ForbiddenError("Only the course instructor can request validation",
                             details={'course_id': course.id})
    if course.catalog_status is not CatalogStatus.DRAFT:
        raise InvalidStateError(
            f"Course is {course.catalog_status.value}; only draft courses can be submitted for review",
            details={'course_id': course.id, 'status': course.catalog_status.value},
        )
    university = course.university or teacher.university
    if not university:
        raise ValidationError("A university must be set to request validation",
                              details={'field': 'university'})

    now = now or utcnow()
    submitted = course.copy()
    submitted.update(
        catalog_status=CatalogStatus.PENDING_REVIEW,
        university=university,
        validation_requested_at=now,
        updated_at=now,
    )
    return submitted


EDITABLE_COURSE_FIELDS = ('name', 'code', 'description', 'semester')


def ensure_course_instructor(course: Course, actor: User) -> None:
    if course.instructor_id != actor.id:
        raise ForbiddenError("Only the course instructor can change this course",
                             details={'course_id': course.id})


def edit_course(course: Course, actor: User, changes: Dict[str, Any],
                now: Optional[datetime] = None) -> Course:
    """Change the descriptive fields of a course.

    Review status and review fields are never touched here.
    """
    ensure_course_instructor(course, actor)
    changes = _editable_changes(changes, EDITABLE_COURSE_FIELDS, required=('name', 'code'))

    now = now or utcnow()
    edited = course.copy()
    edited.update(updated_at=now, **changes)
    return edited


def decide_catalog_review(course: Course, admin: User, action, note: Optional[str] = None,
                          now: Optional[datetime] = None) -> Course:
    """Approve or reject a course on behalf of its university.

    Role and university are checked before status, so an admin from another
    university is refused regardless of where the course is in its lifecycle.
    """
    action = _as_action(action)
    note = _clean_note(note)

    if not admin.has_role(UserRole.UNIVERSITY_ADMIN):
        raise ForbiddenError("Only university admins can review catalog courses",
                             details={'course_id': course.id})
    if not admin.university or admin.university != course.university:
        raise ForbiddenError("Can only review courses from your own university",
                             details={'course_id': course.id})
    if course.catalog_status is not CatalogStatus.PENDING_REVIEW:
        raise InvalidStateError(
            f"Course is {course.catalog_status.value}, not pending review",
            details={'course_id': course.id, 'status': course.catalog_status.value},
        )

    now = now or utcnow()
    status = CatalogStatus.APPROVED if action is ReviewAction.APPROVE else CatalogStatus.REJECTED
    reviewed = course.copy()
    reviewed.update(
        catalog_status=status,
        reviewed_by=admin.id,
        reviewed_at=now,
        university_validation_note=note,
        updated_at=now,
    )
    return reviewed


# Credential certification

def new_student_course(student: User, course_name: str, course: Optional[Course] = None,
                       **fields) -> StudentCourse:
    """Create a pending claim for ``student``.

    Denormalized fields fall back to the linked catalog course when one is given.
    """
    if not student.has_role(UserRole.STUDENT):
        raise ForbiddenError("Only students can add course claims")
    if course is not None:
        course_name = course_name or course.name
        fields['course_code'] = fields.get('course_code') or course.code
        fields['institution'] = fields.get('institution') or course.university
        fields['course_id'] = course.id
    return StudentCourse(user_id=student.id, course_name=course_name, **fields)


EDITABLE_STUDENT_COURSE_FIELDS = (
    'course_name', 'course_code', 'institution', 'grade', 'credits',
    'description', 'semester', 'year',
)


def edit_student_course(student_course: StudentCourse, actor: User, changes: Dict[str, Any],
                        now: Optional[datetime] = None) -> StudentCourse:
    """Change the details of a claim on the owner's request.

    Validation fields, the catalog link and the assignment are not editable.
    """
    if student_course.user_id != actor.id:
        raise ForbiddenError("Not authorized to update this course",
                             details={'student_course_id': student_course.id})
    changes = _editable_changes(changes, EDITABLE_STUDENT_COURSE_FIELDS, required=('course_name',))

    now = now or utcnow()
    edited = student_course.copy()
    edited.update(updated_at=now, **changes)
    return edited


def unlink_deleted_course(student_course: StudentCourse, now: Optional[datetime] = None) -> StudentCourse:
    """Detach a claim from a catalog course that is being deleted."""
    now = now or utcnow()
    unlinked = student_course.copy()
    unlinked.update(
        course_id=None,
        validation_note=f"Course deleted on {now.date().isoformat()}",
        updated_at=now,
    )
    return unlinked


def _reviewer_refusal(student_course: StudentCourse, teacher: User) -> Optional[str]:
    if not teacher.has_role(UserRole.TEACHER):
        return "Only teachers can validate courses"
    if student_course.assigned_teacher_id and student_course.assigned_teacher_id != teacher.id:
        return "Only the assigned teacher can validate this course"
    return None


def credential_blocked_reason(student_course: StudentCourse, teacher: User) -> Optional[str]:
    """Why ``teacher`` may not decide on this claim, or None if they may."""
    refusal = _reviewer_refusal(student_course, teacher)
    if refusal is not None:
        return refusal
    if student_course.credential_status is not CredentialStatus.PENDING:
        return f"Course is already {student_course.credential_status.value}"
    return None


def can_validate_credential(student_course: StudentCourse, teacher: User) -> bool:
    """Sole gating predicate for credential decisions."""
    return credential_blocked_reason(student_course, teacher) is None


def decide_credential_review(student_course: StudentCourse, teacher: User, action,
                             note: Optional[str] = None, now: Optional[datetime] = None) -> StudentCourse:
    """Validate or reject a student's claim.

    Role and assignment are checked before status. Only a teacher entitled to
    decide sees ``InvalidStateError`` when the claim is already settled.
    """
    action = _as_action(action)
    note = _clean_note(note)

    refusal = _reviewer_refusal(student_course, teacher)
    if refusal is not None:
        raise ForbiddenError(refusal, details={'student_course_id': student_course.id})
    if student_course.credential_status is not CredentialStatus.PENDING:
        raise InvalidStateError(
            f"Course is {student_course.credential_status.value}, not pending",
            details={'student_course_id': student_course.id,
                     'status': student_course.credential_status.value},
        )

    now = now or utcnow()
    decided = student_course.copy()
    if action is ReviewAction.APPROVE:
        decided.update(
            credential_status=CredentialStatus.VALIDATED,
            validated_by=teacher.id,
            validated_at=now,
            validation_note=note,
            is_enrolled=True,
            enrolled_at=now,
            updated_at=now,
        )
    else:
        # rejection is not validation: validatedBy/validatedAt stay unset
        decided.update(
            credential_status=CredentialStatus.REJECTED,
            validation_note=note,
            updated_at=now,
        )
    return decided


def _may_revoke(student_course: StudentCourse, actor: User, allow_student_self_revocation: bool) -> bool:
    if student_course.validated_by and student_course.validated_by == actor.id:
        return True
    return allow_student_self_revocation and student_course.user_id == actor.id


def can_revoke_credential(student_course: StudentCourse, actor: User,
                          allow_student_self_revocation: bool = True) -> bool:
    return (student_course.credential_status is CredentialStatus.VALIDATED
            and _may_revoke(student_course, actor, allow_student_self_revocation))


def revoke_credential_validation(student_course: StudentCourse, actor: User,
                                 allow_student_self_revocation: bool = True,
                                 now: Optional[datetime] = None) -> StudentCourse:
    """Return a validated claim to pending.

    Only the validator, or the owning student while self-revocation is
    allowed, gets past the actor check; everyone else is refused whatever the
    claim's status. The validation note is kept as history.
    """
    if not _may_revoke(student_course, actor, allow_student_self_revocation):
        raise ForbiddenError("Not authorized to remove validation",
                             details={'student_course_id': student_course.id})
    if student_course.credential_status is not CredentialStatus.VALIDATED:
        raise InvalidStateError(
            f"Course is {student_course.credential_status.value}, not validated",
            details={'student_course_id': student_course.id,
                     'status': student_course.credential_status.value},
        )

    now = now or utcnow()
    revoked = student_course.copy()
    revoked.update(
        credential_status=CredentialStatus.PENDING,
        validated_by=None,
        validated_at=None,
        is_enrolled=False,
        enrolled_at=None,
        updated_at=now,
    )
    return revoked
