"""
Repository pattern implementations for data access.
"""

import json
import threading
from abc import abstractmethod
from typing import Any, Dict, List, Optional, Tuple, TypeVar, Generic

from ..core.entities import AbstractEntity, User, Course, StudentCourse
from ..core.enums import CatalogStatus, CredentialStatus
from ..core.interfaces import StatusGuardedRepository
from ..core.exceptions import PersistenceError, ValidationError
from .database import DatabaseManager

T = TypeVar('T', bound=AbstractEntity)


class BaseRepository(StatusGuardedRepository[T], Generic[T]):
    """Base repository storing each record as a JSON document plus indexed columns."""

    # Subclasses name the columns that ``find_all`` may filter on.
    filter_columns: Tuple[str, ...] = ()

    def __init__(self, database: DatabaseManager, table: str):
        self._database = database
        self._table = table
        self._lock = threading.RLock()

    @property
    def table(self) -> str:
        return self._table

    def _q(self, query: str) -> str:
        return self._database.format_query(query)

    def _row_values(self, entity: T) -> Dict[str, Any]:
        values = dict(self._index_columns(entity))
        values.update({
            'data': json.dumps(entity.to_dict()),
            'updated_at': entity.updated_at.isoformat(),
            'version': entity.version,
        })
        return values

    def save(self, entity: T) -> T:
        """Insert or overwrite an entity."""
        with self._lock:
            values = self._row_values(entity)
            if self.exists(entity.id):
                assignments = ", ".join(f"{column} = ?" for column in values)
                query = f"UPDATE {self._table} SET {assignments} WHERE id = ?"
                self._database.execute_update(self._q(query), tuple(values.values()) + (entity.id,))
            else:
                values['id'] = entity.id
                values['created_at'] = entity.created_at.isoformat()
                columns = ", ".join(values)
                markers = ", ".join("?" for _ in values)
                query = f"INSERT INTO {self._table} ({columns}) VALUES ({markers})"
                self._database.execute_update(self._q(query), tuple(values.values()))
            return entity

    def compare_and_set(self, entity: T, expected_status: str, expected_version: int) -> bool:
        """Overwrite the stored row only while it still has the status and version that were read."""
        with self._lock:
            values = self._row_values(entity)
            assignments = ", ".join(f"{column} = ?" for column in values)
            query = (f"UPDATE {self._table} SET {assignments} "
                     f"WHERE id = ? AND status = ? AND version = ?")
            params = tuple(values.values()) + (entity.id, expected_status, expected_version)
            return self._database.execute_update(self._q(query), params) > 0

    def exists(self, entity_id: str) -> bool:
        query = f"SELECT id FROM {self._table} WHERE id = ?"
        return len(self._database.execute_query(self._q(query), (entity_id,))) > 0

    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        query = f"SELECT data FROM {self._table} WHERE id = ?"
        results = self._database.execute_query(self._q(query), (entity_id,))
        if results:
            return self._load(results[0])
        return None

    def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        """Find all entities matching filters, oldest first."""
        query = f"SELECT data FROM {self._table}"
        params: List[Any] = []
        clauses = []

        for key, value in (filters or {}).items():
            if key not in self.filter_columns:
                raise ValidationError(f"Unsupported filter '{key}' for {self._table}")
            if value is None:
                clauses.append(f"{key} IS NULL")
            else:
                clauses.append(f"{key} = ?")
                params.append(value)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC"

        results = self._database.execute_query(self._q(query), tuple(params))
        return [self._load(row) for row in results]

    def delete(self, entity_id: str) -> bool:
        """Delete an entity by ID."""
        with self._lock:
            query = f"DELETE FROM {self._table} WHERE id = ?"
            return self._database.execute_update(self._q(query), (entity_id,)) > 0

    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return len(self.find_all(filters))

    def _load(self, row: Dict[str, Any]) -> T:
        try:
            return self._entity_from_dict(json.loads(row["data"]))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt {self._table} record: {str(e)}")

    @abstractmethod
    def _index_columns(self, entity: T) -> Dict[str, Any]:
        """Values for the indexed columns kept next to the JSON document."""
        pass

    @abstractmethod
    def _entity_from_dict(self, data: Dict[str, Any]) -> T:
        """Convert dictionary to entity instance."""
        pass


class UserRepository(BaseRepository[User]):
    """Repository for the user identity mirror."""

    filter_columns = ("role", "university", "email")

    def __init__(self, database: DatabaseManager):
        super().__init__(database, "users")

    def _index_columns(self, entity: User) -> Dict[str, Any]:
        return {
            'email': entity.email,
            'role': entity.role.value,
            'university': entity.university,
        }

    def _entity_from_dict(self, data: Dict[str, Any]) -> User:
        return User.from_dict(data)

    def compare_and_set(self, entity: User, expected_status: str, expected_version: int) -> bool:
        raise NotImplementedError("Users carry no workflow status")

    def find_by_email(self, email: str) -> Optional[User]:
        """Find user by email."""
        users = self.find_all({"email": email})
        return users[0] if users else None


class CourseRepository(BaseRepository[Course]):
    """Repository for catalog courses."""

    filter_columns = ("status", "university", "instructor_id", "code")

    def __init__(self, database: DatabaseManager):
        super().__init__(database, "courses")

    def _index_columns(self, entity: Course) -> Dict[str, Any]:
        return {
            'code': entity.code,
            'status': entity.catalog_status.value,
            'university': entity.university,
            'instructor_id': entity.instructor_id,
        }

    def _entity_from_dict(self, data: Dict[str, Any]) -> Course:
        return Course.from_dict(data)

    def find_by_code(self, code: str) -> Optional[Course]:
        """Find course by its catalog code."""
        courses = self.find_all({"code": code})
        return courses[0] if courses else None

    def find_pending_for_university(self, university: str) -> List[Course]:
        return self.find_all({"status": CatalogStatus.PENDING_REVIEW.value, "university": university})

    def find_catalog(self, status: Optional[str] = None, university: Optional[str] = None) -> List[Course]:
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = status
        if university is not None:
            filters["university"] = university
        return self.find_all(filters)

    def find_by_instructor(self, instructor_id: str) -> List[Course]:
        return self.find_all({"instructor_id": instructor_id})

    def find_approved_by_instructor(self, instructor_id: str) -> List[Course]:
        return self.find_all({"instructor_id": instructor_id, "status": CatalogStatus.APPROVED.value})


class StudentCourseRepository(BaseRepository[StudentCourse]):
    """Repository for student course claims."""

    filter_columns = ("status", "user_id", "course_id", "assigned_teacher_id", "validated_by")

    def __init__(self, database: DatabaseManager):
        super().__init__(database, "student_courses")

    def _index_columns(self, entity: StudentCourse) -> Dict[str, Any]:
        return {
            'status': entity.credential_status.value,
            'user_id': entity.user_id,
            'course_id': entity.course_id,
            'assigned_teacher_id': entity.assigned_teacher_id,
            'validated_by': entity.validated_by,
        }

    def _entity_from_dict(self, data: Dict[str, Any]) -> StudentCourse:
        return StudentCourse.from_dict(data)

    def find_by_user(self, user_id: str) -> List[StudentCourse]:
        return self.find_all({"user_id": user_id})

    def find_for_teacher(self, teacher_id: str, course_ids: List[str]) -> List[StudentCourse]:
        """Claims assigned to the teacher plus unassigned claims on their catalog courses."""
        assigned = self.find_all({"assigned_teacher_id": teacher_id})
        seen = {sc.id for sc in assigned}
        claims = list(assigned)
        for course_id in course_ids:
            for sc in self.find_all({"course_id": course_id, "assigned_teacher_id": None}):
                if sc.id not in seen:
                    seen.add(sc.id)
                    claims.append(sc)
        claims.sort(key=lambda sc: sc.created_at)
        return claims

    def find_enrolled_for_user(self, user_id: str) -> List[StudentCourse]:
        """Validated claims that enrolled ``user_id``, most recent enrollment first."""
        claims = [sc for sc in self.find_all({"user_id": user_id, "status": CredentialStatus.VALIDATED.value})
                  if sc.is_enrolled]
        claims.sort(key=lambda sc: sc.enrolled_at or sc.created_at, reverse=True)
        return claims

    def find_enrolled_with_teacher(self, teacher_id: str, course_ids: List[str]) -> List[StudentCourse]:
        """Enrolled claims validated by the teacher or linked to one of their courses."""
        validated = CredentialStatus.VALIDATED.value
        claims = {sc.id: sc for sc in self.find_all({"validated_by": teacher_id, "status": validated})}
        for course_id in course_ids:
            for sc in self.find_all({"course_id": course_id, "status": validated}):
                claims.setdefault(sc.id, sc)
        return [sc for sc in claims.values() if sc.is_enrolled]
