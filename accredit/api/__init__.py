"""
API module for the REST transport of the workflow.
"""

from .auth import HeaderAuthenticator, IdentityTokenGuard, USER_ID_HEADER, IDENTITY_TOKEN_HEADER
from .rest_api import AccreditRestAPI, status_code_for

__all__ = [
    "AccreditRestAPI",
    "HeaderAuthenticator",
    "IdentityTokenGuard",
    "USER_ID_HEADER",
    "IDENTITY_TOKEN_HEADER",
    "status_code_for",
]
