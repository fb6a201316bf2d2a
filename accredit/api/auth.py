"""
Caller identification for the REST API.

Sessions and credentials are owned by the platform's identity provider; by the
time a request reaches the workflow API it carries the caller's user id. The
provider keeps the local user mirror current through ``PUT /users/{id}``,
authenticated with a shared identity token.
"""

import logging
import secrets
from typing import Optional

from ..core.entities import User
from ..core.exceptions import AuthenticationError, ForbiddenError
from ..core.interfaces import Authenticator
from ..persistence.repositories import UserRepository


logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
IDENTITY_TOKEN_HEADER = "X-Identity-Token"


class HeaderAuthenticator(Authenticator):
    """Resolves the ``X-User-Id`` header against the user directory."""

    def __init__(self, users: UserRepository):
        self._users = users

    def authenticate(self, credentials: Optional[str]) -> User:
        if not credentials:
            raise AuthenticationError(f"Missing {USER_ID_HEADER} header")
        user = self._users.find_by_id(credentials.strip())
        if user is None:
            logger.warning("Rejected request from unknown user id %s", credentials)
            raise AuthenticationError("Unknown user")
        return user


class IdentityTokenGuard:
    """Checks the shared token the identity provider presents when syncing users."""

    def __init__(self, token: Optional[str]):
        self._token = token

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    def verify(self, presented: Optional[str]) -> None:
        if not self.enabled:
            raise ForbiddenError("Identity sync is not configured")
        if not presented:
            raise AuthenticationError(f"Missing {IDENTITY_TOKEN_HEADER} header")
        if not secrets.compare_digest(presented.encode(), self._token.encode()):
            logger.warning("Rejected identity sync with a bad token")
            raise AuthenticationError("Invalid identity token")
