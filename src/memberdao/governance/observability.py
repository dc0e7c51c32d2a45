"""
Audit trail for governance.

Every state transition, vote and delegation change is appended to a
hash-chained event log that can be re-verified later. Listeners may subscribe
to event types; the treasury outbox is one such subscriber.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..crypto.hashing import Hash, SHA256Hasher

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of governance events."""

    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_UPDATED = "proposal_updated"
    PROPOSAL_SUBMITTED = "proposal_submitted"
    PROPOSAL_SPONSORED = "proposal_sponsored"
    PROPOSAL_ACTIVATED = "proposal_activated"
    PROPOSAL_CANCELLED = "proposal_cancelled"
    PROPOSAL_FINALIZED = "proposal_finalized"
    PROPOSAL_EXECUTED = "proposal_executed"

    VIEWER_AUTHORIZED = "viewer_authorized"
    VIEWER_REVOKED = "viewer_revoked"

    VOTE_CAST = "vote_cast"

    DELEGATION_SET = "delegation_set"
    DELEGATION_REMOVED = "delegation_removed"


@dataclass
class GovernanceEvent:
    """A governance event for audit trail."""

    event_id: int
    event_type: EventType
    block_height: int
    timestamp: float = field(default_factory=time.time)

    # Event data
    proposal_id: Optional[int] = None
    principal: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Cryptographic integrity
    previous_event_hash: str = field(default_factory=lambda: Hash.zero().to_hex())
    event_hash: str = ""

    def __post_init__(self):
        """Calculate event hash after initialization."""
        if not self.event_hash:
            self.event_hash = self.calculate_hash()

    def calculate_hash(self) -> str:
        """Hash of the event content and block height, chained to the previous event.

        Wall-clock ``timestamp`` is left out so replaying the same operations
        reproduces the same chain.
        """
        event_data = {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "block_height": self.block_height,
            "proposal_id": self.proposal_id,
            "principal": self.principal,
            "metadata": self.metadata,
            "previous_event_hash": self.previous_event_hash,
        }
        return SHA256Hasher.hash_json(event_data).to_hex()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "block_height": self.block_height,
            "timestamp": self.timestamp,
            "proposal_id": self.proposal_id,
            "principal": self.principal,
            "metadata": self.metadata,
            "previous_event_hash": self.previous_event_hash,
            "event_hash": self.event_hash,
        }


class AuditTrail:
    """Append-only, hash-chained log of governance events."""

    def __init__(self):
        """Initialize audit trail."""
        self._events: List[GovernanceEvent] = []
        self._proposal_events: Dict[int, List[GovernanceEvent]] = {}
        self._principal_events: Dict[str, List[GovernanceEvent]] = {}

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> List[GovernanceEvent]:
        return list(self._events)

    def append(
        self,
        event_type: EventType,
        block_height: int,
        proposal_id: Optional[int] = None,
        principal: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GovernanceEvent:
        """Create, chain and store a new event."""
        previous_hash = self._events[-1].event_hash if self._events else Hash.zero().to_hex()
        event = GovernanceEvent(
            event_id=len(self._events) + 1,
            event_type=event_type,
            block_height=block_height,
            proposal_id=proposal_id,
            principal=principal,
            metadata=dict(metadata or {}),
            previous_event_hash=previous_hash,
        )
        self._events.append(event)

        if proposal_id is not None:
            self._proposal_events.setdefault(proposal_id, []).append(event)
        if principal is not None:
            self._principal_events.setdefault(principal, []).append(event)
        return event

    def get_event(self, event_id: int) -> Optional[GovernanceEvent]:
        """Get an event by ID."""
        if 1 <= event_id <= len(self._events):
            return self._events[event_id - 1]
        return None

    def get_proposal_events(self, proposal_id: int) -> List[GovernanceEvent]:
        """Get all events for a proposal."""
        return list(self._proposal_events.get(proposal_id, []))

    def get_principal_events(self, principal: str) -> List[GovernanceEvent]:
        """Get all events attributed to a principal."""
        return list(self._principal_events.get(principal, []))

    def get_events_by_type(self, event_type: EventType) -> List[GovernanceEvent]:
        return [event for event in self._events if event.event_type == event_type]

    def get_events_in_range(self, start_block: int, end_block: int) -> List[GovernanceEvent]:
        """Get events with ``start_block <= block_height <= end_block``."""
        return [
            event for event in self._events
            if start_block <= event.block_height <= end_block
        ]

    def verify_integrity(self) -> bool:
        """Verify the integrity of the audit trail."""
        previous_hash = Hash.zero().to_hex()
        for event in self._events:
            if event.previous_event_hash != previous_hash:
                return False
            if event.event_hash != event.calculate_hash():
                return False
            previous_hash = event.event_hash
        return True

    def get_audit_summary(self) -> Dict[str, Any]:
        """Get audit trail summary."""
        event_counts: Dict[str, int] = {}
        for event in self._events:
            event_type = event.event_type.value
            event_counts[event_type] = event_counts.get(event_type, 0) + 1

        return {
            "total_events": len(self._events),
            "event_counts": event_counts,
            "unique_proposals": len(self._proposal_events),
            "unique_principals": len(self._principal_events),
            "head_hash": self._events[-1].event_hash if self._events else None,
            "integrity_verified": self.verify_integrity(),
        }


EventListener = Callable[[GovernanceEvent], None]


class GovernanceEvents:
    """Event system for governance observability."""

    def __init__(self, audit_trail: Optional[AuditTrail] = None):
        """Initialize governance events system."""
        self.audit_trail = audit_trail or AuditTrail()
        self._listeners: Dict[EventType, List[EventListener]] = {}

    def add_event_listener(self, event_type: EventType, listener: EventListener) -> None:
        """Add an event listener."""
        self._listeners.setdefault(event_type, []).append(listener)

    def remove_event_listener(self, event_type: EventType, listener: EventListener) -> bool:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit_event(
        self,
        event_type: EventType,
        block_height: int,
        proposal_id: Optional[int] = None,
        principal: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GovernanceEvent:
        """Record a governance event and notify listeners."""
        event = self.audit_trail.append(
            event_type,
            block_height,
            proposal_id=proposal_id,
            principal=principal,
            metadata=metadata,
        )

        # A listener failure never undoes the operation that emitted the event
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Error in {event_type.value} listener: {e}", exc_info=True)

        return event

    def export_audit_trail(self, start_block: int, end_block: int) -> List[Dict[str, Any]]:
        """Export audit trail for a block range."""
        events = self.audit_trail.get_events_in_range(start_block, end_block)
        return [event.to_dict() for event in events]

    def verify_audit_integrity(self) -> bool:
        """Verify the integrity of the audit trail."""
        return self.audit_trail.verify_integrity()
