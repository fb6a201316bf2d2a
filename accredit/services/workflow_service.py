"""
Workflow service: the catalog review and credential certification operations.

Each mutating operation loads one record, asks the validation engine for the
new state, persists it with a compare-and-set on the status and version that
were read and then emits at most one notification.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from ..core import validation_engine as engine
from ..core.entities import User, Course, StudentCourse
from ..core.enums import UserRole, NotificationKind, CatalogStatus
from ..core.exceptions import (
    AccreditException, ValidationError, ForbiddenError, InvalidStateError,
    NotFoundError, DuplicateEntityError, ConcurrencyError,
)
from ..core.interfaces import NotificationService
from ..persistence.repositories import UserRepository, CourseRepository, StudentCourseRepository


logger = logging.getLogger(__name__)


class WorkflowService:
    """Service for catalog reviews and credential decisions."""

    def __init__(self, users: UserRepository, courses: CourseRepository,
                 student_courses: StudentCourseRepository, notifications: NotificationService,
                 allow_student_self_revocation: bool = True, max_note_length: int = 2000):
        self._users = users
        self._courses = courses
        self._student_courses = student_courses
        self._notifications = notifications
        self._allow_student_self_revocation = allow_student_self_revocation
        self._max_note_length = max_note_length

    @property
    def users(self) -> UserRepository:
        return self._users

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    @contextmanager
    def _operation(self, name: str, actor: Optional[User], record_id: Optional[str] = None):
        try:
            yield
        except AccreditException as e:
            logger.warning("%s refused for actor=%s record=%s: [%s] %s", name,
                           actor.id if actor else None, record_id, e.error_code, e.message)
            raise

    def _deliver(self, user_id: Optional[str], kind: NotificationKind, payload: Dict[str, Any]) -> None:
        # the write is already committed; delivery failures are only logged
        if not user_id:
            return
        try:
            self._notifications.notify(user_id, kind, payload)
        except Exception:
            logger.exception("Failed to deliver %s notification to %s", kind.value, user_id)

    def _check_note(self, note: Optional[str]) -> None:
        if note is not None and len(note) > self._max_note_length:
            raise ValidationError(f"Note exceeds {self._max_note_length} characters",
                                  details={'field': 'note'})

    # Lookups

    def get_user(self, user_id: str) -> User:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", details={'user_id': user_id})
        return user

    def get_course(self, course_id: str) -> Course:
        course = self._courses.find_by_id(course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found", details={'course_id': course_id})
        return course

    def get_student_course(self, student_course_id: str) -> StudentCourse:
        student_course = self._student_courses.find_by_id(student_course_id)
        if student_course is None:
            raise NotFoundError(f"Student course {student_course_id} not found",
                                details={'student_course_id': student_course_id})
        return student_course

    def register_user(self, user: User) -> User:
        """Add a user to the identity mirror."""
        if self._users.find_by_email(user.email) is not None:
            raise DuplicateEntityError(f"User with email {user.email} already exists",
                                       details={'email': user.email})
        self._users.save(user)
        logger.info("Registered %s %s", user.role.value, user.id)
        return user

    def upsert_user(self, user_id: str, email: str, first_name: str, last_name: str, role: UserRole,
                    university: Optional[str] = None, display_name: Optional[str] = None) -> User:
        """Create or refresh a user's mirror entry from the identity provider."""
        with self._operation("upsert_user", None, user_id):
            if not user_id or not user_id.strip():
                raise ValidationError("User id is required", details={'field': 'id'})
            if not email or "@" not in email:
                raise ValidationError("A valid email is required", details={'field': 'email'})
            owner = self._users.find_by_email(email)
            if owner is not None and owner.id != user_id:
                raise DuplicateEntityError(f"User with email {email} already exists",
                                           details={'email': email})

            existing = self._users.find_by_id(user_id)
            if existing is None:
                user = User(email, first_name, last_name, role, university=university,
                            display_name=display_name, entity_id=user_id)
            else:
                user = existing.copy()
                user.update(email=email, first_name=first_name, last_name=last_name, role=role,
                            university=university, display_name=display_name)
            self._users.save(user)

        logger.info("%s %s user %s (%s)", "Synced" if existing else "Added", role.value, user_id, email)
        return user

    # Catalog

    def create_course(self, actor: User, name: str, code: str, university: Optional[str] = None,
                      description: Optional[str] = None, semester: Optional[str] = None,
                      submit: bool = True) -> Course:
        with self._operation("create_course", actor):
            course = engine.new_course(actor, name, code, university=university,
                                       description=description, semester=semester, submit=submit)
            if self._courses.find_by_code(course.code) is not None:
                raise DuplicateEntityError(f"Course code {course.code} already exists",
                                           details={'code': course.code})
            self._courses.save(course)
        logger.info("Course %s (%s) created by %s as %s", course.id, course.code, actor.id,
                    course.catalog_status.value)
        return course

    def submit_course(self, actor: User, course_id: str) -> Course:
        with self._operation("submit_course", actor, course_id):
            course = self.get_course(course_id)
            submitted = engine.submit_course_for_review(course, actor)
            if not self._courses.compare_and_set(submitted, course.catalog_status.value, course.version):
                raise InvalidStateError("Course changed while it was being submitted",
                                        details={'course_id': course_id})
        logger.info("Course %s submitted for review at %s by %s", course_id, submitted.university, actor.id)
        return submitted

    def update_course(self, actor: User, course_id: str, changes: Dict[str, Any]) -> Course:
        """Edit a course's descriptive fields (instructor only)."""
        with self._operation("update_course", actor, course_id):
            course = self.get_course(course_id)
            edited = engine.edit_course(course, actor, changes)
            if edited.code != course.code:
                clash = self._courses.find_by_code(edited.code)
                if clash is not None and clash.id != course_id:
                    raise DuplicateEntityError(f"Course code {edited.code} already exists",
                                               details={'code': edited.code})
            if not self._courses.compare_and_set(edited, course.catalog_status.value, course.version):
                raise ConcurrencyError("Course changed while it was being edited",
                                       details={'course_id': course_id})
        logger.info("Course %s edited by %s: %s", course_id, actor.id, sorted(changes))
        return edited

    def delete_course(self, actor: User, course_id: str) -> int:
        """Delete a course (instructor only); linked claims keep their details but lose the link.

        Returns the number of claims that were unlinked.
        """
        with self._operation("delete_course", actor, course_id):
            course = self.get_course(course_id)
            engine.ensure_course_instructor(course, actor)
            unlinked = 0
            for claim in self._student_courses.find_all({"course_id": course_id}):
                if self._unlink_claim(claim, course_id):
                    unlinked += 1
            self._courses.delete(course_id)
        logger.info("Course %s (%s) deleted by %s; %d claims unlinked", course_id, course.code,
                    actor.id, unlinked)
        return unlinked

    def _unlink_claim(self, claim: StudentCourse, course_id: str, attempts: int = 3) -> bool:
        for _ in range(attempts):
            unlinked = engine.unlink_deleted_course(claim)
            if self._student_courses.compare_and_set(unlinked, claim.credential_status.value, claim.version):
                return True
            claim = self._student_courses.find_by_id(claim.id)
            if claim is None or claim.course_id != course_id:
                return False
        raise ConcurrencyError("Claim kept changing while its course was deleted",
                               details={'student_course_id': claim.id})

    def list_courses(self, status: Optional[str] = None, university: Optional[str] = None) -> List[Course]:
        """The catalog, optionally narrowed to one status or university."""
        if status is not None:
            try:
                status = CatalogStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown catalog status '{status}'", details={'field': 'status'})
        return self._courses.find_catalog(status=status, university=university)

    def review_catalog(self, actor: User, course_id: str, action, note: Optional[str] = None) -> Course:
        with self._operation("review_catalog", actor, course_id):
            self._check_note(note)
            course = self.get_course(course_id)
            reviewed = engine.decide_catalog_review(course, actor, action, note)
            if not self._courses.compare_and_set(reviewed, course.catalog_status.value, course.version):
                raise InvalidStateError("Course was reviewed concurrently",
                                        details={'course_id': course_id})

        logger.info("Course %s %s by %s", course_id, reviewed.catalog_status.value, actor.id)
        kind = (NotificationKind.COURSE_APPROVED if reviewed.catalog_status is CatalogStatus.APPROVED
                else NotificationKind.COURSE_REJECTED)
        self._deliver(reviewed.instructor_id, kind, {
            'courseId': reviewed.id,
            'courseName': reviewed.name,
            'university': reviewed.university,
            'note': reviewed.university_validation_note,
            'reviewedBy': actor.id,
        })
        return reviewed

    def list_pending_courses(self, actor: User, university: str) -> List[Dict[str, Any]]:
        """University dashboard: pending courses with their instructor's summary."""
        with self._operation("list_pending_courses", actor):
            if not actor.has_role(UserRole.UNIVERSITY_ADMIN) or actor.university != university:
                raise ForbiddenError("Only admins of this university can view its pending courses",
                                     details={'university': university})

        entries = []
        for course in self._courses.find_pending_for_university(university):
            instructor = self._users.find_by_id(course.instructor_id)
            entry = course.to_dict()
            entry['instructor'] = instructor.summary() if instructor else None
            entries.append(entry)
        return entries

    def list_validated_courses(self, teacher_id: str) -> List[Course]:
        """Approved catalog entries taught by ``teacher_id``."""
        self.get_user(teacher_id)
        return self._courses.find_approved_by_instructor(teacher_id)

    # Credentials

    def create_student_course(self, actor: User, course_name: Optional[str] = None,
                              course_id: Optional[str] = None,
                              assigned_teacher_id: Optional[str] = None, **fields) -> StudentCourse:
        with self._operation("create_student_course", actor):
            course = self.get_course(course_id) if course_id else None
            if assigned_teacher_id:
                teacher = self.get_user(assigned_teacher_id)
                if not teacher.has_role(UserRole.TEACHER):
                    raise ValidationError("Assigned user is not a teacher",
                                          details={'field': 'assignedTeacherId'})
            if not course_name and course is None:
                raise ValidationError("Course name is required", details={'field': 'courseName'})
            student_course = engine.new_student_course(actor, course_name, course=course,
                                                       assigned_teacher_id=assigned_teacher_id, **fields)
            self._student_courses.save(student_course)

        logger.info("Student course %s added by %s", student_course.id, actor.id)
        reviewer_id = assigned_teacher_id or (course.instructor_id if course else None)
        if reviewer_id:
            self._deliver(reviewer_id, NotificationKind.CREDENTIAL_REQUESTED, {
                'studentCourseId': student_course.id,
                'courseName': student_course.course_name,
                'studentId': actor.id,
            })
        return student_course

    def delete_student_course(self, actor: User, student_course_id: str) -> bool:
        with self._operation("delete_student_course", actor, student_course_id):
            student_course = self.get_student_course(student_course_id)
            if student_course.user_id != actor.id:
                raise ForbiddenError("Only the owner can delete this course",
                                     details={'student_course_id': student_course_id})
            deleted = self._student_courses.delete(student_course_id)
        logger.info("Student course %s deleted by %s", student_course_id, actor.id)
        return deleted

    def update_student_course(self, actor: User, student_course_id: str,
                              changes: Dict[str, Any]) -> StudentCourse:
        """Edit a claim's details (owner only); the validation outcome is left as it is."""
        with self._operation("update_student_course", actor, student_course_id):
            student_course = self.get_student_course(student_course_id)
            edited = engine.edit_student_course(student_course, actor, changes)
            if not self._student_courses.compare_and_set(edited, student_course.credential_status.value,
                                                         student_course.version):
                raise ConcurrencyError("Course changed while it was being edited",
                                       details={'student_course_id': student_course_id})
        logger.info("Student course %s edited by %s: %s", student_course_id, actor.id, sorted(changes))
        return edited

    def review_credential(self, actor: User, student_course_id: str, action,
                          note: Optional[str] = None) -> StudentCourse:
        with self._operation("review_credential", actor, student_course_id):
            self._check_note(note)
            student_course = self.get_student_course(student_course_id)
            decided = engine.decide_credential_review(student_course, actor, action, note)
            if not self._student_courses.compare_and_set(decided, student_course.credential_status.value,
                                                         student_course.version):
                raise InvalidStateError("Course was reviewed concurrently",
                                        details={'student_course_id': student_course_id})

        logger.info("Student course %s %s by %s", student_course_id,
                    decided.credential_status.value, actor.id)
        kind = (NotificationKind.CREDENTIAL_VALIDATED if decided.is_validated
                else NotificationKind.CREDENTIAL_REJECTED)
        self._deliver(decided.user_id, kind, {
            'studentCourseId': decided.id,
            'courseName': decided.course_name,
            'note': decided.validation_note,
            'teacherId': actor.id,
        })
        return decided

    def revoke_credential(self, actor: User, student_course_id: str) -> StudentCourse:
        with self._operation("revoke_credential", actor, student_course_id):
            student_course = self.get_student_course(student_course_id)
            revoked = engine.revoke_credential_validation(
                student_course, actor, self._allow_student_self_revocation)
            if not self._student_courses.compare_and_set(revoked, student_course.credential_status.value,
                                                         student_course.version):
                raise InvalidStateError("Validation changed concurrently",
                                        details={'student_course_id': student_course_id})

        logger.info("Validation of student course %s revoked by %s", student_course_id, actor.id)
        validator_id = student_course.validated_by
        recipient = student_course.user_id if actor.id == validator_id else validator_id
        self._deliver(recipient, NotificationKind.CREDENTIAL_REVOKED, {
            'studentCourseId': revoked.id,
            'courseName': revoked.course_name,
            'revokedBy': actor.id,
        })
        return revoked

    def list_student_courses(self, user_id: str) -> List[StudentCourse]:
        """Profile view of a user's claims."""
        self.get_user(user_id)
        return self._student_courses.find_by_user(user_id)

    def list_teacher_courses(self, actor: User, teacher_id: str) -> List[Dict[str, Any]]:
        """Teacher dashboard: claims the teacher may decide on, annotated per record."""
        with self._operation("list_teacher_courses", actor):
            if actor.id != teacher_id or not actor.has_role(UserRole.TEACHER):
                raise ForbiddenError("Teachers can only view their own dashboard",
                                     details={'teacher_id': teacher_id})

        course_ids = [course.id for course in self._courses.find_by_instructor(teacher_id)]
        entries = []
        for student_course in self._student_courses.find_for_teacher(teacher_id, course_ids):
            student = self._users.find_by_id(student_course.user_id)
            reason = engine.credential_blocked_reason(student_course, actor)
            entry = student_course.to_dict()
            entry['student'] = student.summary() if student else None
            entry['canValidate'] = reason is None
            entry['validationBlockedReason'] = reason
            entries.append(entry)
        return entries

    def _summaries(self, user_ids) -> Dict[str, Optional[Dict[str, Any]]]:
        summaries = {}
        for user_id in user_ids:
            if user_id and user_id not in summaries:
                user = self._users.find_by_id(user_id)
                summaries[user_id] = user.summary() if user else None
        return summaries

    def list_profile_courses(self, user_id: str) -> List[Dict[str, Any]]:
        """Profile view: a user's claims, each with a summary of the teacher who validated it."""
        claims = self.list_student_courses(user_id)
        validators = self._summaries(sc.validated_by for sc in claims)
        entries = []
        for student_course in claims:
            entry = student_course.to_dict()
            entry['validator'] = validators.get(student_course.validated_by)
            entries.append(entry)
        return entries

    def list_enrolled_courses(self, actor: User) -> List[Dict[str, Any]]:
        """The caller's validated, enrolled claims with the linked course and its teacher."""
        entries = []
        for student_course in self._student_courses.find_enrolled_for_user(actor.id):
            course = self._courses.find_by_id(student_course.course_id) if student_course.course_id else None
            teacher_id = course.instructor_id if course else student_course.validated_by
            teacher = self._users.find_by_id(teacher_id) if teacher_id else None
            entry = student_course.to_dict()
            entry['course'] = course.to_dict() if course else None
            entry['teacher'] = teacher.summary() if teacher else None
            entries.append(entry)
        return entries

    def list_teacher_students(self, actor: User) -> List[Dict[str, Any]]:
        """Students enrolled through the caller: each with the courses that enrolled them."""
        with self._operation("list_teacher_students", actor):
            if not actor.has_role(UserRole.TEACHER):
                raise ForbiddenError("Only teachers can view their students")

        course_ids = [course.id for course in self._courses.find_by_instructor(actor.id)]
        claims = self._student_courses.find_enrolled_with_teacher(actor.id, course_ids)
        students = self._summaries(sc.user_id for sc in claims)

        roster: Dict[str, Dict[str, Any]] = {}
        for student_course in sorted(claims, key=lambda sc: sc.enrolled_at or sc.created_at):
            summary = students.get(student_course.user_id)
            if summary is None:
                continue
            entry = roster.setdefault(student_course.user_id, dict(summary, courses=[]))
            entry['courses'].append({
                'studentCourseId': student_course.id,
                'courseId': student_course.course_id,
                'name': student_course.course_name,
                'code': student_course.course_code,
                'enrolledAt': student_course.enrolled_at.isoformat() if student_course.enrolled_at else None,
            })
        return sorted(roster.values(), key=lambda s: (s['firstName'].lower(), s['lastName'].lower()))
