"""
Advisory permission checks on cached records.

These decide whether the UI should offer an action. They are computed on the
client from wire-format records and are never used for authorization: the
server recomputes every decision and its answer wins.
"""

from typing import Any, Dict, Optional

Record = Dict[str, Any]


def validation_blocked_reason(student_course: Record, user: Record) -> Optional[str]:
    if user.get('role') != 'teacher':
        return "Only teachers can validate courses"
    assigned = student_course.get('assignedTeacherId')
    if assigned and assigned != user.get('id'):
        return "Only the assigned teacher can validate this course"
    status = student_course.get('credentialStatus')
    if status != 'pending':
        return f"Course is already {status}"
    return None


def can_validate(student_course: Record, user: Record) -> bool:
    return validation_blocked_reason(student_course, user) is None


def can_revoke(student_course: Record, user: Record, allow_student_self_revocation: bool = True) -> bool:
    if student_course.get('credentialStatus') != 'validated':
        return False
    if student_course.get('validatedBy') and student_course.get('validatedBy') == user.get('id'):
        return True
    return allow_student_self_revocation and student_course.get('userId') == user.get('id')


def can_review_course(course: Record, user: Record) -> bool:
    return (
        user.get('role') == 'university_admin'
        and bool(user.get('university'))
        and user.get('university') == course.get('university')
        and course.get('catalogStatus') == 'pending_review'
    )


def can_request_validation(course: Record, user: Record) -> bool:
    return (
        user.get('role') == 'teacher'
        and course.get('instructorId') == user.get('id')
        and course.get('catalogStatus') == 'draft'
    )


def can_edit_student_course(student_course: Record, user: Record) -> bool:
    return bool(user.get('id')) and student_course.get('userId') == user.get('id')


def can_edit_course(course: Record, user: Record) -> bool:
    return bool(user.get('id')) and course.get('instructorId') == user.get('id')
