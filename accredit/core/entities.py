"""
Core entities for the Accredit platform.

Records keep their state in underscore-prefixed attributes exposed through
read-only properties; every mutation goes through ``update`` so that
``updated_at`` and ``version`` stay consistent.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TypeVar

from .enums import UserRole, CatalogStatus, CredentialStatus, REVIEWED_CATALOG_STATUSES
from .exceptions import ValidationError


E = TypeVar('E', bound='AbstractEntity')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class AbstractEntity(ABC):
    """Base abstract entity with universal ID, timestamps, and versioning."""

    def __init__(self, entity_id: Optional[str] = None, created_at: Optional[datetime] = None,
                 updated_at: Optional[datetime] = None, version: int = 1):
        self._id = entity_id or str(uuid.uuid4())
        self._created_at = created_at or utcnow()
        self._updated_at = updated_at or self._created_at
        self._version = version

    @property
    def id(self) -> str:
        """Get the entity ID."""
        return self._id

    @property
    def created_at(self) -> datetime:
        """Get creation timestamp."""
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        """Get last update timestamp."""
        return self._updated_at

    @property
    def version(self) -> int:
        """Get current version."""
        return self._version

    def update(self, **kwargs) -> None:
        """Update entity with new data."""
        for key, value in kwargs.items():
            if not hasattr(self, f"_{key}"):
                raise AttributeError(f"{self.__class__.__name__} has no field '{key}'")
            setattr(self, f"_{key}", value)
        self._updated_at = kwargs.get("updated_at") or utcnow()
        self._version += 1

    def copy(self: E) -> E:
        """Return an independent copy of this entity."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entity to a JSON-ready dictionary."""
        return {
            'id': self._id,
            'createdAt': _format_dt(self._created_at),
            'updatedAt': _format_dt(self._updated_at),
            'version': self._version,
        }

    @staticmethod
    def _base_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'entity_id': data['id'],
            'created_at': _parse_dt(data.get('createdAt')),
            'updated_at': _parse_dt(data.get('updatedAt')),
            'version': data.get('version', 1),
        }

    @classmethod
    @abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AbstractEntity':
        """Rebuild an entity from ``to_dict`` output."""
        pass

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AbstractEntity) or type(other) is not type(self):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self._id}, version={self._version})"


class User(AbstractEntity):
    """Identity mirror of an authenticated platform user."""

    def __init__(self, email: str, first_name: str, last_name: str, role: UserRole,
                 university: Optional[str] = None, display_name: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        if not isinstance(role, UserRole):
            raise ValidationError(f"Unknown role: {role}")
        self._email = email
        self._first_name = first_name
        self._last_name = last_name
        self._role = role
        self._university = university
        self._display_name = display_name

    @property
    def email(self) -> str:
        return self._email

    @property
    def first_name(self) -> str:
        return self._first_name

    @property
    def last_name(self) -> str:
        return self._last_name

    @property
    def full_name(self) -> str:
        return f"{self._first_name} {self._last_name}".strip()

    @property
    def display_name(self) -> str:
        return self._display_name or self.full_name

    @property
    def role(self) -> UserRole:
        return self._role

    @property
    def university(self) -> Optional[str]:
        return self._university

    def has_role(self, role: UserRole) -> bool:
        return self._role is role

    def summary(self) -> Dict[str, Any]:
        """Short public profile embedded in dashboard listings."""
        return {
            'id': self._id,
            'displayName': self.display_name,
            'firstName': self._first_name,
            'lastName': self._last_name,
            'email': self._email,
            'university': self._university,
        }

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'email': self._email,
            'firstName': self._first_name,
            'lastName': self._last_name,
            'displayName': self._display_name,
            'role': self._role.value,
            'university': self._university,
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            email=data['email'],
            first_name=data.get('firstName', ''),
            last_name=data.get('lastName', ''),
            role=UserRole(data['role']),
            university=data.get('university'),
            display_name=data.get('displayName'),
            **cls._base_kwargs(data),
        )


class Course(AbstractEntity):
    """Canonical catalog entry owned by a teacher and reviewed by a university."""

    def __init__(self, name: str, code: str, instructor_id: str,
                 university: Optional[str] = None, description: Optional[str] = None,
                 semester: Optional[str] = None,
                 catalog_status: CatalogStatus = CatalogStatus.DRAFT,
                 university_validation_note: Optional[str] = None,
                 validation_requested_at: Optional[datetime] = None,
                 reviewed_at: Optional[datetime] = None,
                 reviewed_by: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        if not name or not name.strip():
            raise ValidationError("Course name is required")
        if not code or not code.strip():
            raise ValidationError("Course code is required")
        self._name = name.strip()
        self._code = code.strip()
        self._instructor_id = instructor_id
        self._university = university
        self._description = description
        self._semester = semester
        self._catalog_status = catalog_status
        self._university_validation_note = university_validation_note
        self._validation_requested_at = validation_requested_at
        self._reviewed_at = reviewed_at
        self._reviewed_by = reviewed_by

    @property
    def name(self) -> str:
        return self._name

    @property
    def code(self) -> str:
        return self._code

    @property
    def instructor_id(self) -> str:
        return self._instructor_id

    @property
    def university(self) -> Optional[str]:
        return self._university

    @property
    def description(self) -> Optional[str]:
        return self._description

    @property
    def semester(self) -> Optional[str]:
        return self._semester

    @property
    def catalog_status(self) -> CatalogStatus:
        return self._catalog_status

    @property
    def university_validation_note(self) -> Optional[str]:
        return self._university_validation_note

    @property
    def validation_requested_at(self) -> Optional[datetime]:
        return self._validation_requested_at

    @property
    def reviewed_at(self) -> Optional[datetime]:
        return self._reviewed_at

    @property
    def reviewed_by(self) -> Optional[str]:
        return self._reviewed_by

    @property
    def is_reviewed(self) -> bool:
        return self._catalog_status in REVIEWED_CATALOG_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'name': self._name,
            'code': self._code,
            'university': self._university,
            'instructorId': self._instructor_id,
            'description': self._description,
            'semester': self._semester,
            'catalogStatus': self._catalog_status.value,
            'universityValidationNote': self._university_validation_note,
            'validationRequestedAt': _format_dt(self._validation_requested_at),
            'reviewedAt': _format_dt(self._reviewed_at),
            'reviewedBy': self._reviewed_by,
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Course':
        return cls(
            name=data['name'],
            code=data['code'],
            instructor_id=data['instructorId'],
            university=data.get('university'),
            description=data.get('description'),
            semester=data.get('semester'),
            catalog_status=CatalogStatus(data.get('catalogStatus', CatalogStatus.DRAFT.value)),
            university_validation_note=data.get('universityValidationNote'),
            validation_requested_at=_parse_dt(data.get('validationRequestedAt')),
            reviewed_at=_parse_dt(data.get('reviewedAt')),
            reviewed_by=data.get('reviewedBy'),
            **cls._base_kwargs(data),
        )


class StudentCourse(AbstractEntity):
    """A student's claimed completion of a course, optionally linked to the catalog."""

    def __init__(self, user_id: str, course_name: str, course_code: Optional[str] = None,
                 institution: Optional[str] = None, course_id: Optional[str] = None,
                 assigned_teacher_id: Optional[str] = None, grade: Optional[str] = None,
                 credits: Optional[str] = None, description: Optional[str] = None,
                 semester: Optional[str] = None, year: Optional[str] = None,
                 credential_status: CredentialStatus = CredentialStatus.PENDING,
                 validated_by: Optional[str] = None, validated_at: Optional[datetime] = None,
                 validation_note: Optional[str] = None, is_enrolled: bool = False,
                 enrolled_at: Optional[datetime] = None, **kwargs):
        super().__init__(**kwargs)
        if not course_name or not course_name.strip():
            raise ValidationError("Course name is required")
        self._user_id = user_id
        self._course_name = course_name.strip()
        self._course_code = course_code
        self._institution = institution
        self._course_id = course_id
        self._assigned_teacher_id = assigned_teacher_id
        self._grade = grade
        self._credits = credits
        self._description = description
        self._semester = semester
        self._year = year
        self._credential_status = credential_status
        self._validated_by = validated_by
        self._validated_at = validated_at
        self._validation_note = validation_note
        self._is_enrolled = is_enrolled
        self._enrolled_at = enrolled_at

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def course_name(self) -> str:
        return self._course_name

    @property
    def course_code(self) -> Optional[str]:
        return self._course_code

    @property
    def institution(self) -> Optional[str]:
        return self._institution

    @property
    def course_id(self) -> Optional[str]:
        return self._course_id

    @property
    def assigned_teacher_id(self) -> Optional[str]:
        return self._assigned_teacher_id

    @property
    def grade(self) -> Optional[str]:
        return self._grade

    @property
    def credits(self) -> Optional[str]:
        return self._credits

    @property
    def description(self) -> Optional[str]:
        return self._description

    @property
    def semester(self) -> Optional[str]:
        return self._semester

    @property
    def year(self) -> Optional[str]:
        return self._year

    @property
    def credential_status(self) -> CredentialStatus:
        return self._credential_status

    @property
    def validated_by(self) -> Optional[str]:
        return self._validated_by

    @property
    def validated_at(self) -> Optional[datetime]:
        return self._validated_at

    @property
    def validation_note(self) -> Optional[str]:
        return self._validation_note

    @property
    def is_enrolled(self) -> bool:
        return self._is_enrolled

    @property
    def enrolled_at(self) -> Optional[datetime]:
        return self._enrolled_at

    @property
    def is_validated(self) -> bool:
        return self._credential_status is CredentialStatus.VALIDATED

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            'userId': self._user_id,
            'courseName': self._course_name,
            'courseCode': self._course_code,
            'institution': self._institution,
            'courseId': self._course_id,
            'assignedTeacherId': self._assigned_teacher_id,
            'grade': self._grade,
            'credits': self._credits,
            'description': self._description,
            'semester': self._semester,
            'year': self._year,
            'credentialStatus': self._credential_status.value,
            'validatedBy': self._validated_by,
            'validatedAt': _format_dt(self._validated_at),
            'validationNote': self._validation_note,
            'isEnrolled': self._is_enrolled,
            'enrolledAt': _format_dt(self._enrolled_at),
        })
        return base_dict

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StudentCourse':
        return cls(
            user_id=data['userId'],
            course_name=data['courseName'],
            course_code=data.get('courseCode'),
            institution=data.get('institution'),
            course_id=data.get('courseId'),
            assigned_teacher_id=data.get('assignedTeacherId'),
            grade=data.get('grade'),
            credits=data.get('credits'),
            description=data.get('description'),
            semester=data.get('semester'),
            year=data.get('year'),
            credential_status=CredentialStatus(data.get('credentialStatus', CredentialStatus.PENDING.value)),
            validated_by=data.get('validatedBy'),
            validated_at=_parse_dt(data.get('validatedAt')),
            validation_note=data.get('validationNote'),
            is_enrolled=bool(data.get('isEnrolled', False)),
            enrolled_at=_parse_dt(data.get('enrolledAt')),
            **cls._base_kwargs(data),
        )
