"""
Membership registry for memberdao.

Applicant verification, role assignment, membership expiry and the global
role-weight table.
"""

from .directory import (
    DEFAULT_ROLE_WEIGHTS,
    MemberRole,
    MembershipConfig,
    MembershipDirectory,
    MembershipProvider,
    MembershipRecord,
    MembershipStatus,
)

__all__ = [
    "DEFAULT_ROLE_WEIGHTS",
    "MemberRole",
    "MembershipConfig",
    "MembershipDirectory",
    "MembershipProvider",
    "MembershipRecord",
    "MembershipStatus",
]
