"""
Core module containing the domain model, error taxonomy and validation engine.
"""

from .entities import *
from .interfaces import *
from .exceptions import *
from .enums import *
from .validation_engine import *

__all__ = [
    # Entities
    "AbstractEntity",
    "User",
    "Course",
    "StudentCourse",

    # Interfaces
    "Repository",
    "StatusGuardedRepository",
    "NotificationService",
    "Authenticator",

    # Enums
    "UserRole",
    "CatalogStatus",
    "CredentialStatus",
    "ReviewAction",
    "NotificationKind",

    # Exceptions
    "AccreditException",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "ForbiddenError",
    "InvalidStateError",
    "ResourceNotFoundError",
    "NotFoundError",
    "DuplicateEntityError",
    "ConcurrencyError",
    "PersistenceError",
    "ConfigurationError",
    "TransportError",

    # Validation engine
    "new_course",
    "submit_course_for_review",
    "ensure_course_instructor",
    "edit_course",
    "decide_catalog_review",
    "new_student_course",
    "edit_student_course",
    "unlink_deleted_course",
    "credential_blocked_reason",
    "can_validate_credential",
    "decide_credential_review",
    "can_revoke_credential",
    "revoke_credential_validation",
]
