"""
REST API implementation for the Accredit workflow using FastAPI.
"""

import logging
from typing import Optional, Dict, List
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fastapi import FastAPI, Depends, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..core.entities import User
from ..core.enums import ReviewAction, UserRole
from ..core.exceptions import (
    AccreditException, ValidationError, AuthenticationError, AuthorizationError,
    InvalidStateError, ResourceNotFoundError, DuplicateEntityError, ConcurrencyError,
)
from ..core.interfaces import Authenticator
from ..services.workflow_service import WorkflowService
from .auth import HeaderAuthenticator, IdentityTokenGuard


logger = logging.getLogger(__name__)


# Pydantic models for API. Field names are snake_case in Python and camelCase on the wire.
class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CourseCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: str = Field(..., min_length=1, max_length=50)
    university: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    semester: Optional[str] = Field(None, max_length=50)
    submit: bool = True


class ReviewRequest(ApiModel):
    action: ReviewAction
    note: Optional[str] = None


class StudentCourseCreate(ApiModel):
    course_name: Optional[str] = Field(None, max_length=200)
    course_code: Optional[str] = Field(None, max_length=50)
    institution: Optional[str] = Field(None, max_length=200)
    course_id: Optional[str] = None
    assigned_teacher_id: Optional[str] = None
    grade: Optional[str] = Field(None, max_length=20)
    credits: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=5000)
    semester: Optional[str] = Field(None, max_length=50)
    year: Optional[str] = Field(None, max_length=10)


class UserUpsert(ApiModel):
    email: str = Field(..., min_length=3, max_length=255)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    role: UserRole
    university: Optional[str] = Field(None, max_length=200)
    display_name: Optional[str] = Field(None, max_length=200)


class CourseUpdate(ApiModel):
    name: Optional[str] = Field(None, max_length=200)
    code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=5000)
    semester: Optional[str] = Field(None, max_length=50)


class StudentCourseUpdate(ApiModel):
    # validation fields are not part of this model, so clients cannot set them
    course_name: Optional[str] = Field(None, max_length=200)
    course_code: Optional[str] = Field(None, max_length=50)
    institution: Optional[str] = Field(None, max_length=200)
    grade: Optional[str] = Field(None, max_length=20)
    credits: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = Field(None, max_length=5000)
    semester: Optional[str] = Field(None, max_length=50)
    year: Optional[str] = Field(None, max_length=10)


class UserSummary(ApiModel):
    id: str
    display_name: str
    first_name: str
    last_name: str
    email: str
    university: Optional[str] = None


class UserResponse(ApiModel):
    id: str
    email: str
    first_name: str
    last_name: str
    display_name: Optional[str] = None
    role: str
    university: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int


class CourseDeleted(ApiModel):
    success: bool
    unlinked_claims: int


class CourseResponse(ApiModel):
    id: str
    name: str
    code: str
    university: Optional[str] = None
    instructor_id: str
    description: Optional[str] = None
    semester: Optional[str] = None
    catalog_status: str
    university_validation_note: Optional[str] = None
    validation_requested_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int


class PendingCourseResponse(CourseResponse):
    instructor: Optional[UserSummary] = None


class StudentCourseResponse(ApiModel):
    id: str
    user_id: str
    course_name: str
    course_code: Optional[str] = None
    institution: Optional[str] = None
    course_id: Optional[str] = None
    assigned_teacher_id: Optional[str] = None
    grade: Optional[str] = None
    credits: Optional[str] = None
    description: Optional[str] = None
    semester: Optional[str] = None
    year: Optional[str] = None
    credential_status: str
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = None
    validation_note: Optional[str] = None
    is_enrolled: bool = False
    enrolled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int


class TeacherCourseResponse(StudentCourseResponse):
    student: Optional[UserSummary] = None
    can_validate: bool
    validation_blocked_reason: Optional[str] = None


class ProfileCourseResponse(StudentCourseResponse):
    validator: Optional[UserSummary] = None


class EnrolledCourseResponse(StudentCourseResponse):
    course: Optional[CourseResponse] = None
    teacher: Optional[UserSummary] = None


class RosterCourse(ApiModel):
    student_course_id: str
    course_id: Optional[str] = None
    name: str
    code: Optional[str] = None
    enrolled_at: Optional[datetime] = None


class StudentRosterEntry(UserSummary):
    courses: List[RosterCourse]


def status_code_for(error: AccreditException) -> int:
    """HTTP status for a workflow error."""
    if isinstance(error, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, AuthorizationError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, ResourceNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (InvalidStateError, DuplicateEntityError, ConcurrencyError)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, ValidationError):
        return 422
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class AccreditRestAPI:
    """REST API for the course and credential validation workflow."""

    def __init__(self, workflow_service: WorkflowService,
                 authenticator: Optional[Authenticator] = None,
                 identity_token: Optional[str] = None):
        self._workflow = workflow_service
        self._authenticator = authenticator or HeaderAuthenticator(workflow_service.users)
        self._identity_guard = IdentityTokenGuard(identity_token)

        # Create FastAPI app
        self.app = FastAPI(
            title="Accredit Workflow API",
            description="Catalog review and credential certification for the university platform",
            version=__version__,
            docs_url="/docs",
            redoc_url="/redoc"
        )

        # Add CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_exception_handlers()
        self._setup_routes()

    def _current_user(self, x_user_id: Optional[str] = Header(None)) -> User:
        return self._authenticator.authenticate(x_user_id)

    def _setup_exception_handlers(self):
        """Map workflow errors onto HTTP responses."""

        @self.app.exception_handler(AccreditException)
        async def handle_accredit_error(request: Request, exc: AccreditException):
            code = status_code_for(exc)
            if code >= 500:
                logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            return JSONResponse(status_code=code, content=exc.to_dict())

        @self.app.exception_handler(RequestValidationError)
        async def handle_request_validation(request: Request, exc: RequestValidationError):
            errors = exc.errors()
            fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in errors]
            error = ValidationError(
                "; ".join(str(err.get("msg")) for err in errors) or "Invalid request",
                details={'fields': fields},
            )
            return JSONResponse(status_code=422, content=error.to_dict())

    def _setup_routes(self):
        """Setup API routes."""
        current_user = self._current_user
        workflow = self._workflow

        @self.app.get("/health", response_model=Dict[str, str])
        def health_check():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

        # Identity mirror
        @self.app.put("/users/{user_id}", response_model=UserResponse)
        def upsert_user(user_id: str, profile: UserUpsert,
                        x_identity_token: Optional[str] = Header(None)):
            """Create or refresh a user from the identity provider."""
            self._identity_guard.verify(x_identity_token)
            user = workflow.upsert_user(
                user_id,
                email=profile.email,
                first_name=profile.first_name,
                last_name=profile.last_name,
                role=profile.role,
                university=profile.university,
                display_name=profile.display_name,
            )
            return user.to_dict()

        @self.app.get("/me", response_model=UserResponse)
        def me(actor: User = Depends(current_user)):
            return actor.to_dict()

        # Catalog endpoints
        @self.app.post("/courses", response_model=CourseResponse, status_code=status.HTTP_201_CREATED)
        def create_course(course_data: CourseCreate, actor: User = Depends(current_user)):
            """Create a catalog course, optionally submitting it for review."""
            course = workflow.create_course(
                actor,
                name=course_data.name,
                code=course_data.code,
                university=course_data.university,
                description=course_data.description,
                semester=course_data.semester,
                submit=course_data.submit,
            )
            return course.to_dict()

        @self.app.get("/courses", response_model=List[CourseResponse])
        def list_courses(status_filter: Optional[str] = Query(None, alias="status"),
                         university: Optional[str] = None, actor: User = Depends(current_user)):
            """The course catalog."""
            return [course.to_dict() for course in workflow.list_courses(status_filter, university)]

        @self.app.get("/courses/{course_id}", response_model=CourseResponse)
        def get_course(course_id: str, actor: User = Depends(current_user)):
            return workflow.get_course(course_id).to_dict()

        @self.app.patch("/courses/{course_id}", response_model=CourseResponse)
        def update_course(course_id: str, changes: CourseUpdate, actor: User = Depends(current_user)):
            """Edit a course's name, code, description or semester (instructor only)."""
            return workflow.update_course(actor, course_id, changes.model_dump(exclude_unset=True)).to_dict()

        @self.app.delete("/courses/{course_id}", response_model=CourseDeleted)
        def delete_course(course_id: str, actor: User = Depends(current_user)):
            unlinked = workflow.delete_course(actor, course_id)
            return {"success": True, "unlinkedClaims": unlinked}

        @self.app.post("/courses/{course_id}/request-validation", response_model=CourseResponse)
        def request_validation(course_id: str, actor: User = Depends(current_user)):
            """Submit a draft course to its university."""
            return workflow.submit_course(actor, course_id).to_dict()

        @self.app.post("/courses/{course_id}/catalog-review", response_model=CourseResponse)
        def review_catalog(course_id: str, review: ReviewRequest, actor: User = Depends(current_user)):
            """Approve or reject a pending course (university admins)."""
            return workflow.review_catalog(actor, course_id, review.action, review.note).to_dict()

        @self.app.get("/university/{university}/pending-courses", response_model=List[PendingCourseResponse])
        def pending_courses(university: str, actor: User = Depends(current_user)):
            return workflow.list_pending_courses(actor, university)

        @self.app.get("/teachers/{teacher_id}/validated-courses", response_model=List[CourseResponse])
        def validated_courses(teacher_id: str, actor: User = Depends(current_user)):
            return [course.to_dict() for course in workflow.list_validated_courses(teacher_id)]

        # Credential endpoints
        @self.app.post("/student-courses", response_model=StudentCourseResponse,
                       status_code=status.HTTP_201_CREATED)
        def create_student_course(claim: StudentCourseCreate, actor: User = Depends(current_user)):
            """Add a course to the caller's profile."""
            fields = claim.model_dump(exclude={'course_name', 'course_id', 'assigned_teacher_id'},
                                      exclude_none=True)
            student_course = workflow.create_student_course(
                actor,
                course_name=claim.course_name,
                course_id=claim.course_id,
                assigned_teacher_id=claim.assigned_teacher_id,
                **fields,
            )
            return student_course.to_dict()

        @self.app.delete("/student-courses/{student_course_id}", status_code=status.HTTP_204_NO_CONTENT)
        def delete_student_course(student_course_id: str, actor: User = Depends(current_user)):
            workflow.delete_student_course(actor, student_course_id)
            return Response(status_code=status.HTTP_204_NO_CONTENT)

        @self.app.patch("/student-courses/{student_course_id}", response_model=StudentCourseResponse)
        def update_student_course(student_course_id: str, changes: StudentCourseUpdate,
                                  actor: User = Depends(current_user)):
            """Edit a claim's details; its validation outcome is kept."""
            edited = workflow.update_student_course(actor, student_course_id,
                                                    changes.model_dump(exclude_unset=True))
            return edited.to_dict()

        @self.app.post("/student-courses/{student_course_id}/credential-review",
                       response_model=StudentCourseResponse)
        def review_credential(student_course_id: str, review: ReviewRequest,
                              actor: User = Depends(current_user)):
            """Validate or reject a student's claim (teachers)."""
            decided = workflow.review_credential(actor, student_course_id, review.action, review.note)
            return decided.to_dict()

        @self.app.delete("/student-courses/{student_course_id}/credential-review",
                         response_model=StudentCourseResponse)
        def revoke_credential(student_course_id: str, actor: User = Depends(current_user)):
            """Return a validated claim to pending."""
            return workflow.revoke_credential(actor, student_course_id).to_dict()

        @self.app.get("/users/{user_id}/student-courses", response_model=List[ProfileCourseResponse])
        def student_courses(user_id: str, actor: User = Depends(current_user)):
            """Profile view, with the validating teacher of each claim."""
            return workflow.list_profile_courses(user_id)

        @self.app.get("/me/enrolled-courses", response_model=List[EnrolledCourseResponse])
        def enrolled_courses(actor: User = Depends(current_user)):
            return workflow.list_enrolled_courses(actor)

        @self.app.get("/teacher/{teacher_id}/courses", response_model=List[TeacherCourseResponse])
        def teacher_courses(teacher_id: str, actor: User = Depends(current_user)):
            """Teacher dashboard with per-record ``canValidate``."""
            return workflow.list_teacher_courses(actor, teacher_id)

        @self.app.get("/teacher/my-students", response_model=List[StudentRosterEntry])
        def my_students(actor: User = Depends(current_user)):
            """Students enrolled through the calling teacher."""
            return workflow.list_teacher_students(actor)
