"""
Services module containing the workflow and notification services.
"""

from .notification_service import Notification, InMemoryNotificationService, LoggingNotificationService
from .workflow_service import WorkflowService

__all__ = [
    "Notification",
    "InMemoryNotificationService",
    "LoggingNotificationService",
    "WorkflowService",
]
