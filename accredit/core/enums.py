"""
Enumerations and constants for the Accredit platform.
"""

from enum import Enum
from typing import FrozenSet


class UserRole(Enum):
    """Roles a user can hold on the platform."""
    STUDENT = "student"
    TEACHER = "teacher"
    UNIVERSITY_ADMIN = "university_admin"


class CatalogStatus(Enum):
    """Lifecycle of a teacher-submitted course awaiting university approval."""
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class CredentialStatus(Enum):
    """Lifecycle of a student's claimed course completion."""
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class ReviewAction(Enum):
    """Decision taken by a reviewer."""
    APPROVE = "approve"
    REJECT = "reject"


class NotificationKind(Enum):
    """Kinds of notifications emitted by the workflow."""
    COURSE_APPROVED = "course_approved"
    COURSE_REJECTED = "course_rejected"
    CREDENTIAL_REQUESTED = "credential_requested"
    CREDENTIAL_VALIDATED = "credential_validated"
    CREDENTIAL_REJECTED = "credential_rejected"
    CREDENTIAL_REVOKED = "credential_revoked"


# Terminal catalog states: reviewedBy is set exactly for these.
REVIEWED_CATALOG_STATUSES: FrozenSet[CatalogStatus] = frozenset({
    CatalogStatus.APPROVED,
    CatalogStatus.REJECTED,
})
