"""
Core interfaces and abstract base classes for the Accredit platform.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TypeVar, Generic

from .entities import User
from .enums import NotificationKind


T = TypeVar('T')


class Repository(ABC, Generic[T]):
    """Abstract base class for repositories."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Save an entity."""
        pass

    @abstractmethod
    def find_by_id(self, entity_id: str) -> Optional[T]:
        """Find entity by ID."""
        pass

    @abstractmethod
    def find_all(self, filters: Optional[Dict[str, Any]] = None) -> List[T]:
        """Find all entities matching filters."""
        pass

    @abstractmethod
    def delete(self, entity_id: str) -> bool:
        """Delete an entity by ID."""
        pass


class StatusGuardedRepository(Repository[T]):
    """Repository whose records carry a workflow status column."""

    @abstractmethod
    def compare_and_set(self, entity: T, expected_status: str, expected_version: int) -> bool:
        """Persist ``entity`` only if the stored row is still the one that was read.

        The row must hold ``expected_status`` and ``expected_version``. Returns
        False when another writer got there first, even one that has since
        moved the status back to ``expected_status``.
        """
        pass


class NotificationService(ABC):
    """Outbound notification port; delivery itself is handled elsewhere."""

    @abstractmethod
    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        """Queue a notification for ``user_id``."""
        pass


class Authenticator(ABC):
    """Resolves the calling user for an incoming request."""

    @abstractmethod
    def authenticate(self, credentials: Optional[str]) -> User:
        """Return the user identified by ``credentials`` or raise AuthenticationError."""
        pass
