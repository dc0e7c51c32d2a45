"""
Treasury hand-off for passed proposals.

The governance core never moves funds. When a proposal with execution
parameters passes, a ``TreasuryAction`` is placed in an outbox; the treasury
controller either polls the outbox or subscribes to it and registers the
fundable action on its side.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors.exceptions import AlreadyExistsError, InvalidParameterError
from .core import Proposal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreasuryAction:
    """A fundable action produced by a passed proposal."""

    proposal_id: int
    recipient: str
    amount: int
    description: str
    payload: Dict[str, Any] = field(default_factory=dict)
    block_height: int = 0
    created_at: float = field(default_factory=time.time)

    @classmethod
    def from_proposal(cls, proposal: Proposal, block_height: int) -> Optional["TreasuryAction"]:
        """Build the action for ``proposal``; ``None`` when it carries no execution parameters."""
        params = proposal.execution_params
        if params is None:
            return None
        return cls(
            proposal_id=proposal.proposal_id,
            recipient=params.recipient,
            amount=params.amount,
            description=params.memo or proposal.title,
            payload=dict(params.payload),
            block_height=block_height,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "recipient": self.recipient,
            "amount": self.amount,
            "description": self.description,
            "payload": dict(self.payload),
            "block_height": self.block_height,
            "created_at": self.created_at,
        }


TreasurySubscriber = Callable[[TreasuryAction], None]


class TreasuryOutbox:
    """Queue of treasury actions awaiting pickup."""

    def __init__(self):
        self._pending: List[TreasuryAction] = []
        self._published: Dict[int, TreasuryAction] = {}
        self._subscribers: List[TreasurySubscriber] = []

    def publish(self, action: TreasuryAction) -> None:
        """Queue ``action`` and notify subscribers. One action per proposal."""
        if action.proposal_id in self._published:
            raise AlreadyExistsError(
                f"Treasury action for proposal {action.proposal_id} already published",
                proposal_id=action.proposal_id,
            )
        self._published[action.proposal_id] = action
        self._pending.append(action)
        logger.info(
            f"Treasury action queued for proposal {action.proposal_id}: "
            f"{action.amount} to {action.recipient}"
        )

        for subscriber in list(self._subscribers):
            try:
                subscriber(action)
            except Exception as e:
                logger.warning(f"Treasury subscriber failed for proposal {action.proposal_id}: {e}", exc_info=True)

    def poll(self, limit: Optional[int] = None) -> List[TreasuryAction]:
        """Remove and return pending actions, oldest first."""
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
            raise InvalidParameterError(
                "Poll limit must be a non-negative integer",
                field="limit",
                value=limit,
                expected=">= 0",
            )
        if limit is None or limit >= len(self._pending):
            drained, self._pending = self._pending, []
        else:
            drained, self._pending = self._pending[:limit], self._pending[limit:]
        return drained

    def pending(self) -> List[TreasuryAction]:
        """Pending actions without draining them."""
        return list(self._pending)

    def get_action(self, proposal_id: int) -> Optional[TreasuryAction]:
        """Every action ever published, pending or already polled."""
        return self._published.get(proposal_id)

    def subscribe(self, subscriber: TreasurySubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: TreasurySubscriber) -> bool:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
            return True
        return False
