"""
Authz component - Cached identity to role resolution.
"""

from ._impl import (
    AuthorizationService,
    RoleBindingSourcePort,
    RoleCache,
    TimePort,
    create_authorization_service,
)

__all__ = [
    "AuthorizationService",
    "RoleBindingSourcePort",
    "RoleCache",
    "TimePort",
    "create_authorization_service",
]
