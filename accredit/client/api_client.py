"""
HTTP client for the workflow API.

Error responses are turned back into the exceptions the server raised, so
callers handle ``ForbiddenError`` or ``InvalidStateError`` the same way on
either side of the wire. Requests are never retried.
"""

import logging
from typing import Any, Dict, List, Optional, Type

import requests

from ..core.enums import ReviewAction
from ..core.exceptions import (
    AccreditException, ValidationError, AuthenticationError, ForbiddenError,
    InvalidStateError, ResourceNotFoundError, DuplicateEntityError, ConcurrencyError,
    PersistenceError, ConfigurationError, TransportError,
)


logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
IDENTITY_TOKEN_HEADER = "X-Identity-Token"

ERRORS_BY_CODE: Dict[str, Type[AccreditException]] = {
    "validation_error": ValidationError,
    "unauthenticated": AuthenticationError,
    "forbidden": ForbiddenError,
    "invalid_state": InvalidStateError,
    "not_found": ResourceNotFoundError,
    "duplicate": DuplicateEntityError,
    "concurrency_error": ConcurrencyError,
    "persistence_error": PersistenceError,
    "configuration_error": ConfigurationError,
}

ERRORS_BY_STATUS: Dict[int, Type[AccreditException]] = {
    401: AuthenticationError,
    403: ForbiddenError,
    404: ResourceNotFoundError,
    409: InvalidStateError,
    422: ValidationError,
}


def error_from_response(response) -> AccreditException:
    """Rebuild the server's exception from an error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("code")
    message = body.get("error") or body.get("detail") or f"HTTP {response.status_code}"
    error_class = ERRORS_BY_CODE.get(code) or ERRORS_BY_STATUS.get(response.status_code, AccreditException)
    return error_class(str(message), error_code=code, details=body.get("details") or {})


def _action_value(action) -> str:
    return action.value if isinstance(action, ReviewAction) else str(action)


class WorkflowClient:
    """Thin wrapper over the REST routes, acting as one user.

    ``session`` may be any object with a requests-style ``request`` method;
    tests pass FastAPI's ``TestClient`` with an empty ``base_url``.
    """

    def __init__(self, base_url: str = "http://127.0.0.1:8000", user_id: Optional[str] = None,
                 session: Optional[Any] = None):
        self._base_url = base_url.rstrip("/")
        self._user_id = user_id
        self._session = session if session is not None else requests.Session()

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def as_user(self, user_id: str) -> "WorkflowClient":
        """Same server and session, different caller."""
        return WorkflowClient(self._base_url, user_id=user_id, session=self._session)

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Any:
        headers = dict(headers or {})
        if self._user_id:
            headers[USER_ID_HEADER] = self._user_id
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(method, url, json=payload, params=params or None, headers=headers)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {str(e)}")

        if response.status_code >= 400:
            error = error_from_response(response)
            logger.debug("%s %s -> %s %s", method, path, response.status_code, error.error_code)
            raise error
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Health

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    # Identity

    def upsert_user(self, user_id: str, identity_token: str, email: str, role: str,
                    first_name: str = "", last_name: str = "", university: Optional[str] = None,
                    display_name: Optional[str] = None) -> Dict[str, Any]:
        """Push a user from the identity provider into the server's directory."""
        payload = {"email": email, "role": role, "firstName": first_name, "lastName": last_name,
                   "university": university, "displayName": display_name}
        return self._request("PUT", f"/users/{user_id}", payload,
                             headers={IDENTITY_TOKEN_HEADER: identity_token})

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/me")

    # Catalog

    def create_course(self, name: str, code: str, university: Optional[str] = None,
                      description: Optional[str] = None, semester: Optional[str] = None,
                      submit: bool = True) -> Dict[str, Any]:
        payload = {"name": name, "code": code, "university": university,
                   "description": description, "semester": semester, "submit": submit}
        return self._request("POST", "/courses", payload)

    def list_courses(self, status: Optional[str] = None, university: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._request("GET", "/courses", params={"status": status, "university": university})

    def get_course(self, course_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/courses/{course_id}")

    def update_course(self, course_id: str, **changes) -> Dict[str, Any]:
        """Changes use the wire names: ``name``, ``code``, ``description``, ``semester``."""
        return self._request("PATCH", f"/courses/{course_id}", changes)

    def delete_course(self, course_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/courses/{course_id}")

    def request_validation(self, course_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/courses/{course_id}/request-validation")

    def review_course(self, course_id: str, action, note: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/courses/{course_id}/catalog-review",
                             {"action": _action_value(action), "note": note})

    def list_pending_courses(self, university: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/university/{university}/pending-courses")

    def list_validated_courses(self, teacher_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/teachers/{teacher_id}/validated-courses")

    # Credentials

    def create_student_course(self, **fields) -> Dict[str, Any]:
        """Fields use the wire names, e.g. ``courseName`` or ``assignedTeacherId``."""
        return self._request("POST", "/student-courses", fields)

    def delete_student_course(self, student_course_id: str) -> None:
        self._request("DELETE", f"/student-courses/{student_course_id}")

    def update_student_course(self, student_course_id: str, **changes) -> Dict[str, Any]:
        return self._request("PATCH", f"/student-courses/{student_course_id}", changes)

    def review_credential(self, student_course_id: str, action, note: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/student-courses/{student_course_id}/credential-review",
                             {"action": _action_value(action), "note": note})

    def revoke_credential(self, student_course_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/student-courses/{student_course_id}/credential-review")

    def list_student_courses(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/users/{user_id}/student-courses")

    def list_teacher_courses(self, teacher_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/teacher/{teacher_id}/courses")

    def list_enrolled_courses(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/me/enrolled-courses")

    def list_my_students(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/teacher/my-students")
