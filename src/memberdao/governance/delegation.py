"""
Vote delegation for governance.

Each principal delegates to at most one other principal. Only one hop is
honoured when power is resolved, but the graph is still kept acyclic: a new
edge is rejected if walking the existing edges from the delegate leads back
to the delegator, or if the walk runs past the configured hop bound.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors.exceptions import DelegationCycleError, ValidationError
from .core import GovernanceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delegation:
    """A delegation edge."""

    delegator: str
    delegate: str
    created_at: int = 0
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        """Validate delegation after initialization."""
        if not self.delegator or not self.delegate:
            raise ValidationError("Delegation needs both a delegator and a delegate")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegator": self.delegator,
            "delegate": self.delegate,
            "created_at": self.created_at,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delegation":
        return cls(
            delegator=data["delegator"],
            delegate=data["delegate"],
            created_at=data.get("created_at", 0),
            timestamp=data.get("timestamp", time.time()),
        )


class CircularDelegationDetector:
    """Bounded walk over delegation edges."""

    def __init__(self, max_hops: int = 10):
        if max_hops <= 0:
            raise ValidationError("Max hops must be positive")
        self.max_hops = max_hops

    def find_cycle(
        self,
        delegator: str,
        delegate: str,
        edges: Dict[str, Delegation],
    ) -> Optional[List[str]]:
        """Return the offending path if ``delegator -> delegate`` is unsafe, else ``None``.

        The path is returned both for a real cycle and for a walk that gives
        up after ``max_hops``.
        """
        path = [delegator, delegate]
        if delegator == delegate:
            return path

        current = delegate
        for _ in range(self.max_hops):
            edge = edges.get(current)
            if edge is None:
                return None
            current = edge.delegate
            path.append(current)
            if current == delegator:
                return path

        # Still walking after max_hops: treat as unsafe.
        return path if current in edges else None


class DelegationGraph:
    """Maps each delegator to at most one delegate."""

    def __init__(self, config: GovernanceConfig):
        """Initialize delegation graph."""
        self.config = config
        self._edges: Dict[str, Delegation] = {}  # delegator -> edge
        self._delegators: Dict[str, List[str]] = {}  # delegate -> delegators, insertion ordered
        self.detector = CircularDelegationDetector(config.max_delegation_hops)

    def set_delegation(self, delegator: str, delegate: str, block_height: int = 0) -> Delegation:
        """Create or overwrite the delegation of ``delegator``."""
        path = self.detector.find_cycle(delegator, delegate, self._edges)
        if path is not None:
            logger.warning(f"Rejected delegation {delegator} -> {delegate}: {' -> '.join(path)}")
            raise DelegationCycleError(
                f"Delegation {delegator} -> {delegate} would create a cycle",
                path=path,
            )

        self._unlink(delegator)
        delegation = Delegation(delegator=delegator, delegate=delegate, created_at=block_height)
        self._edges[delegator] = delegation
        self._delegators.setdefault(delegate, []).append(delegator)
        logger.info(f"Delegation set {delegator} -> {delegate}")
        return delegation

    def remove_delegation(self, delegator: str) -> bool:
        """Remove the delegation of ``delegator``. Idempotent; returns whether one existed."""
        removed = self._unlink(delegator)
        if removed:
            logger.info(f"Delegation removed for {delegator}")
        return removed

    def get_delegation(self, delegator: str) -> Optional[Delegation]:
        return self._edges.get(delegator)

    def get_delegate(self, delegator: str) -> Optional[str]:
        edge = self._edges.get(delegator)
        return edge.delegate if edge else None

    def has_delegated(self, principal: str) -> bool:
        return principal in self._edges

    def get_delegators(self, delegate: str) -> List[str]:
        """Direct delegators of ``delegate`` only; chains are not followed."""
        return list(self._delegators.get(delegate, []))

    def all_delegations(self) -> List[Delegation]:
        return list(self._edges.values())

    def get_delegation_statistics(self) -> Dict[str, Any]:
        """Get delegation statistics."""
        return {
            "total_delegations": len(self._edges),
            "unique_delegates": len(self._delegators),
            "max_direct_delegators": max(
                (len(d) for d in self._delegators.values()), default=0
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {delegator: edge.to_dict() for delegator, edge in self._edges.items()}

    def _unlink(self, delegator: str) -> bool:
        edge = self._edges.pop(delegator, None)
        if edge is None:
            return False
        delegators = self._delegators.get(edge.delegate, [])
        if delegator in delegators:
            delegators.remove(delegator)
        if not delegators:
            self._delegators.pop(edge.delegate, None)
        return True
