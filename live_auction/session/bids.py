"""
Bid board for the open round.

Captains submit bids for the item of the open round; the board keeps the
latest bid per team and is relayed to observers through the broadcast
channel. The board is cleared whenever the round changes. Bid amounts are
not validated here.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from .models import utcnow

logger = logging.getLogger(__name__)


class BidRejected(ValueError):
    """A bid did not target the open round."""


@dataclass
class Bid:
    team: str
    item_id: str
    amount: int
    timestamp: float

    def to_dict(self) -> dict:
        return {
            'teamName': self.team,
            'playerName': self.item_id,
            'amount': self.amount,
            'timestamp': self.timestamp,
        }


class BidBoard:
    """Latest bid per team for the current round."""

    def __init__(self):
        self.item_id: Optional[str] = None
        self._bids: Dict[str, Bid] = {}
        self._lock = threading.Lock()

    def reset(self, item_id: Optional[str]) -> None:
        """Start a new round for item_id (None when nothing is up)."""
        with self._lock:
            self.item_id = item_id
            self._bids = {}

    def place(self, team: str, item_id: str, amount: int) -> Bid:
        """
        Record a bid.

        Raises:
            BidRejected: If no round is open or the bid targets another item
        """
        with self._lock:
            if self.item_id is None:
                raise BidRejected("No round is open")
            if item_id != self.item_id:
                raise BidRejected(f"Round is open for {self.item_id}, not {item_id}")
            bid = Bid(team=team, item_id=item_id, amount=int(amount),
                      timestamp=utcnow().timestamp() * 1000)
            self._bids[team] = bid

        logger.debug(f"Bid: {team} -> {item_id} ({amount})")
        return bid

    def to_dict(self) -> dict:
        """Board keyed by team name, as relayed to observers."""
        with self._lock:
            return {team: bid.to_dict() for team, bid in self._bids.items()}

    def highest(self) -> Optional[Bid]:
        with self._lock:
            if not self._bids:
                return None
            return max(self._bids.values(), key=lambda b: (b.amount, -b.timestamp))
