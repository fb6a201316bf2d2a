"""
Client synchronization: optimistic workflow mutations over the record cache.

Every mutation follows the same protocol:

1. take the record's lock, so mutations on one record run one at a time;
2. snapshot the cached record and note the views that show it;
3. apply the expected server effect to the cache;
4. send the request;
5. on success store the server's record and refetch every affected view,
   on failure put the snapshot back exactly as it was and re-raise.

Nothing is retried. A failed state-dependent action needs a refresh, not a
second attempt against the same stale context.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic.alias_generators import to_camel

from ..core.enums import ReviewAction
from ..core.exceptions import AccreditException
from . import advisory
from .api_client import WorkflowClient
from .cache import IndexView, Record, RecordStore
from .concurrency import RecordLockManager


logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ClientSync:
    """Cached, optimistically updated view of the workflow for one signed-in user."""

    def __init__(self, client: WorkflowClient, user: Dict[str, Any],
                 allow_student_self_revocation: bool = True, max_workers: int = 4):
        self._client = client
        self._user = dict(user)
        self._allow_student_self_revocation = allow_student_self_revocation
        self.courses = RecordStore("course")
        self.student_courses = RecordStore("student_course")
        self.students = RecordStore("student")
        self._views: Dict[str, IndexView] = {}
        self._teacher_course_ids: Dict[str, Set[str]] = {}
        self._locks = RecordLockManager()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._lock = threading.RLock()

    @property
    def user(self) -> Dict[str, Any]:
        return dict(self._user)

    @property
    def locks(self) -> RecordLockManager:
        return self._locks

    # Views

    def _view(self, name: str, store: RecordStore, predicate, loader, sort_key=None) -> IndexView:
        with self._lock:
            view = self._views.get(name)
            if view is None:
                view = IndexView(name, store, predicate, loader, sort_key=sort_key)
                self._views[name] = view
            return view

    def views(self) -> List[IndexView]:
        with self._lock:
            return list(self._views.values())

    def profile_view(self, user_id: Optional[str] = None) -> IndexView:
        """A user's claimed courses."""
        user_id = user_id or self._user['id']
        return self._view(
            f"profile:{user_id}",
            self.student_courses,
            lambda r: r.get('userId') == user_id,
            lambda: self._client.list_student_courses(user_id),
        )

    def teacher_dashboard(self, teacher_id: Optional[str] = None) -> IndexView:
        """Claims a teacher may decide on, as annotated by the server."""
        teacher_id = teacher_id or self._user['id']
        course_ids = self._teacher_course_ids.setdefault(teacher_id, set())

        def load() -> List[Record]:
            records = self._client.list_teacher_courses(teacher_id)
            course_ids.update(r['courseId'] for r in records
                              if r.get('courseId') and not r.get('assignedTeacherId'))
            return records

        def belongs(r: Record) -> bool:
            assigned = r.get('assignedTeacherId')
            return assigned == teacher_id or (not assigned and r.get('courseId') in course_ids)

        return self._view(f"teacher:{teacher_id}", self.student_courses, belongs, load)

    def university_dashboard(self, university: Optional[str] = None) -> IndexView:
        """Courses waiting for a university's review."""
        university = university or self._user.get('university')
        return self._view(
            f"university:{university}",
            self.courses,
            lambda r: r.get('university') == university and r.get('catalogStatus') == 'pending_review',
            lambda: self._client.list_pending_courses(university),
        )

    def validated_courses_view(self, teacher_id: Optional[str] = None) -> IndexView:
        teacher_id = teacher_id or self._user['id']
        return self._view(
            f"validated:{teacher_id}",
            self.courses,
            lambda r: r.get('instructorId') == teacher_id and r.get('catalogStatus') == 'approved',
            lambda: self._client.list_validated_courses(teacher_id),
        )

    def catalog_view(self, status: Optional[str] = None, university: Optional[str] = None) -> IndexView:
        """The course catalog, optionally narrowed by review status and university."""
        return self._view(
            f"catalog:{status or '*'}:{university or '*'}",
            self.courses,
            lambda r: ((status is None or r.get('catalogStatus') == status)
                       and (university is None or r.get('university') == university)),
            lambda: self._client.list_courses(status=status, university=university),
        )

    def enrolled_courses_view(self) -> IndexView:
        """The signed-in student's validated, enrolled claims."""
        user_id = self._user['id']
        return self._view(
            f"enrolled:{user_id}",
            self.student_courses,
            lambda r: (r.get('userId') == user_id and r.get('credentialStatus') == 'validated'
                       and bool(r.get('isEnrolled'))),
            self._client.list_enrolled_courses,
        )

    def my_students_view(self) -> IndexView:
        """Students enrolled through the signed-in teacher."""
        return self._view(f"students:{self._user['id']}", self.students, lambda r: True,
                          self._client.list_my_students,
                          sort_key=lambda r: ((r.get('firstName') or '').lower(),
                                              (r.get('lastName') or '').lower()))

    def _views_showing(self, store: RecordStore, record: Optional[Record]) -> Dict[str, IndexView]:
        if record is None:
            return {}
        return {view.name: view for view in self.views() if view.store is store and view.matches(record)}

    def _refresh(self, views: Dict[str, IndexView]) -> None:
        for view in views.values():
            try:
                view.refresh()
            except AccreditException as e:
                # the mutation itself succeeded; the view refetches on next use
                logger.warning("Could not refresh view %s: %s", view.name, e.message)
                view.invalidate()

    def _refresh_rosters(self) -> None:
        # rosters are keyed by student, so a claim change cannot be matched against them
        self._refresh({view.name: view for view in self.views() if view.store is self.students})

    # Mutation protocol

    def _mutate(self, store: RecordStore, record_id: str,
                transform: Optional[Callable[[Record], Optional[Record]]],
                send: Callable[[], Optional[Record]]) -> Optional[Record]:
        with self._locks.lock(f"{store.kind}:{record_id}", self._user['id']):
            snapshot = store.snapshot(record_id)
            affected = self._views_showing(store, snapshot)

            if snapshot is not None and transform is not None:
                speculative = transform(store.get(record_id))
                if speculative is None:
                    store.remove(record_id)
                else:
                    store.put(speculative)
                    affected.update(self._views_showing(store, speculative))

            try:
                result = send()
            except Exception:
                store.restore(record_id, snapshot)
                raise

            if result is None:
                store.remove(record_id)
            else:
                store.put(result)
                affected.update(self._views_showing(store, result))
            self._refresh(affected)
            return result

    def _create(self, store: RecordStore, placeholder: Record, send: Callable[[], Record]) -> Record:
        local_id = placeholder['id']
        with self._locks.lock(f"{store.kind}:{local_id}", self._user['id']):
            store.put(placeholder)
            affected = self._views_showing(store, placeholder)
            try:
                result = send()
            except Exception:
                store.remove(local_id)
                raise
            store.remove(local_id)
            store.put(result)
            affected.update(self._views_showing(store, result))
            self._refresh(affected)
            return result

    def submit(self, action: Callable[..., Any], *args, **kwargs) -> Future:
        """Run a mutation in the background.

        Dropping the returned future abandons the request on the client only:
        the server still completes it and the cache settles as usual.
        """
        return self._executor.submit(action, *args, **kwargs)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # Credential actions

    def join_course(self, course_name: Optional[str] = None, course_id: Optional[str] = None,
                    assigned_teacher_id: Optional[str] = None, **fields) -> Record:
        """Add a course claim to the signed-in student's profile."""
        fields.update(course_name=course_name, course_id=course_id, assigned_teacher_id=assigned_teacher_id)
        payload = {to_camel(key): value for key, value in fields.items() if value is not None}

        linked = self.courses.get(course_id) if course_id else None
        placeholder = dict(payload, id=f"{LOCAL_ID_PREFIX}{uuid.uuid4()}", userId=self._user['id'],
                           credentialStatus='pending', isEnrolled=False, createdAt=_now())
        if linked is not None:
            placeholder.setdefault('courseName', linked.get('name'))
            placeholder.setdefault('courseCode', linked.get('code'))
        return self._create(self.student_courses, placeholder,
                            lambda: self._client.create_student_course(**payload))

    def remove_course(self, student_course_id: str) -> None:
        self._mutate(self.student_courses, student_course_id, lambda r: None,
                     lambda: self._client.delete_student_course(student_course_id))

    def edit_claim(self, student_course_id: str, **changes) -> Record:
        """Change a claim's details; keyword names are snake_case, e.g. ``course_name``."""
        payload = {to_camel(key): value for key, value in changes.items()}

        def transform(r: Record) -> Record:
            r.update(payload)
            return r

        return self._mutate(self.student_courses, student_course_id, transform,
                            lambda: self._client.update_student_course(student_course_id, **payload))

    def validate(self, student_course_id: str, note: Optional[str] = None) -> Record:
        def transform(r: Record) -> Record:
            now = _now()
            r.update(credentialStatus='validated', validatedBy=self._user['id'], validatedAt=now,
                     validationNote=note, isEnrolled=True, enrolledAt=now, canValidate=False)
            return r

        result = self._mutate(self.student_courses, student_course_id, transform,
                              lambda: self._client.review_credential(student_course_id, ReviewAction.APPROVE, note))
        self._refresh_rosters()
        return result

    def reject(self, student_course_id: str, note: Optional[str] = None) -> Record:
        def transform(r: Record) -> Record:
            r.update(credentialStatus='rejected', validationNote=note, canValidate=False)
            return r

        return self._mutate(self.student_courses, student_course_id, transform,
                            lambda: self._client.review_credential(student_course_id, ReviewAction.REJECT, note))

    def revoke(self, student_course_id: str) -> Record:
        def transform(r: Record) -> Record:
            r.update(credentialStatus='pending', validatedBy=None, validatedAt=None,
                     isEnrolled=False, enrolledAt=None)
            return r

        result = self._mutate(self.student_courses, student_course_id, transform,
                              lambda: self._client.revoke_credential(student_course_id))
        self._refresh_rosters()
        return result

    # Catalog actions

    def create_course(self, name: str, code: str, university: Optional[str] = None,
                      description: Optional[str] = None, semester: Optional[str] = None,
                      submit: bool = True) -> Record:
        placeholder = {
            'id': f"{LOCAL_ID_PREFIX}{uuid.uuid4()}",
            'name': name,
            'code': code,
            'university': university or self._user.get('university'),
            'instructorId': self._user['id'],
            'description': description,
            'semester': semester,
            'catalogStatus': 'pending_review' if submit else 'draft',
            'createdAt': _now(),
        }
        return self._create(
            self.courses, placeholder,
            lambda: self._client.create_course(name, code, university=university, description=description,
                                               semester=semester, submit=submit),
        )

    def edit_course(self, course_id: str, **changes) -> Record:
        def transform(r: Record) -> Record:
            r.update(changes)
            return r

        return self._mutate(self.courses, course_id, transform,
                            lambda: self._client.update_course(course_id, **changes))

    def delete_course(self, course_id: str) -> int:
        """Delete a course; returns how many claims the server unlinked from it."""
        linked = [r for r in self.student_courses.records() if r.get('courseId') == course_id]
        affected: Dict[str, IndexView] = {}
        for record in linked:
            affected.update(self._views_showing(self.student_courses, record))
        outcome: Dict[str, Any] = {}

        def send() -> None:
            outcome.update(self._client.delete_course(course_id) or {})

        self._mutate(self.courses, course_id, lambda r: None, send)
        self._refresh(affected)
        return outcome.get('unlinkedClaims', 0)

    def request_validation(self, course_id: str) -> Record:
        def transform(r: Record) -> Record:
            r.update(catalogStatus='pending_review', validationRequestedAt=_now(),
                     university=r.get('university') or self._user.get('university'))
            return r

        return self._mutate(self.courses, course_id, transform,
                            lambda: self._client.request_validation(course_id))

    def _review_course(self, course_id: str, action: ReviewAction, note: Optional[str]) -> Record:
        status = 'approved' if action is ReviewAction.APPROVE else 'rejected'

        def transform(r: Record) -> Record:
            r.update(catalogStatus=status, reviewedBy=self._user['id'], reviewedAt=_now(),
                     universityValidationNote=note)
            return r

        return self._mutate(self.courses, course_id, transform,
                            lambda: self._client.review_course(course_id, action, note))

    def approve_course(self, course_id: str, note: Optional[str] = None) -> Record:
        return self._review_course(course_id, ReviewAction.APPROVE, note)

    def reject_course(self, course_id: str, note: Optional[str] = None) -> Record:
        return self._review_course(course_id, ReviewAction.REJECT, note)

    # Advisory checks for enabling UI actions

    def can_validate(self, student_course_id: str) -> bool:
        record = self.student_courses.get(student_course_id)
        return record is not None and advisory.can_validate(record, self._user)

    def can_revoke(self, student_course_id: str) -> bool:
        record = self.student_courses.get(student_course_id)
        return record is not None and advisory.can_revoke(record, self._user,
                                                          self._allow_student_self_revocation)

    def can_edit_claim(self, student_course_id: str) -> bool:
        record = self.student_courses.get(student_course_id)
        return record is not None and advisory.can_edit_student_course(record, self._user)

    def can_edit_course(self, course_id: str) -> bool:
        record = self.courses.get(course_id)
        return record is not None and advisory.can_edit_course(record, self._user)

    def can_review_course(self, course_id: str) -> bool:
        record = self.courses.get(course_id)
        return record is not None and advisory.can_review_course(record, self._user)
