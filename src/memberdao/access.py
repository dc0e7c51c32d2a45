"""
Access-control policy.

The policy is injected into the engine and the membership directory at
construction. It holds the admin principals and the authorized executors and
answers the authorization predicates both components ask.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Set

from .errors.exceptions import NotAuthorizedError, ValidationError

logger = logging.getLogger(__name__)


class AccessPolicy:
    """Admin and executor registry with authorization predicates."""

    def __init__(
        self,
        admins: Iterable[str],
        executors: Optional[Iterable[str]] = None,
    ):
        self._admins: Set[str] = set(admins)
        if not self._admins:
            raise ValidationError("Access policy requires at least one admin", field="admins")
        self._executors: Set[str] = set(executors or ())

    @property
    def admins(self) -> Set[str]:
        return set(self._admins)

    @property
    def executors(self) -> Set[str]:
        return set(self._executors)

    def is_admin(self, principal: str) -> bool:
        """Check whether ``principal`` is an admin."""
        return principal in self._admins

    def is_executor(self, principal: str) -> bool:
        """Check whether ``principal`` may execute passed proposals it did not propose."""
        return principal in self._executors or principal in self._admins

    def require_admin(self, principal: str, operation: str) -> None:
        """Raise ``NotAuthorizedError`` unless ``principal`` is an admin."""
        if not self.is_admin(principal):
            raise NotAuthorizedError(
                f"{principal} is not authorized to {operation}",
                principal=principal,
            )

    def grant_admin(self, caller: str, principal: str) -> None:
        """Add an admin. Only an existing admin may do this."""
        self.require_admin(caller, "grant admin")
        self._admins.add(principal)
        logger.info(f"Admin granted to {principal} by {caller}")

    def revoke_admin(self, caller: str, principal: str) -> None:
        """Remove an admin. The last admin cannot be removed."""
        self.require_admin(caller, "revoke admin")
        if principal in self._admins and len(self._admins) == 1:
            raise ValidationError("Cannot remove the last admin", field="principal", value=principal)
        self._admins.discard(principal)
        logger.info(f"Admin revoked from {principal} by {caller}")

    def grant_executor(self, caller: str, principal: str) -> None:
        """Authorize ``principal`` to execute passed proposals."""
        self.require_admin(caller, "grant executor")
        self._executors.add(principal)
        logger.info(f"Executor granted to {principal} by {caller}")

    def revoke_executor(self, caller: str, principal: str) -> None:
        """Withdraw execution rights; idempotent."""
        self.require_admin(caller, "revoke executor")
        self._executors.discard(principal)

    def to_dict(self) -> Dict[str, Any]:
        """Convert policy to dictionary."""
        return {
            "admins": sorted(self._admins),
            "executors": sorted(self._executors),
        }
