"""
Mirror the currently auctioned item into the durable open-round record.

Bidding clients cannot read the operator's memory; they discover the live
item through the open-round record. The protocol around every cursor move is:

    close_round()  ->  open_round(next item)  ->  (then) broadcast

so a client reacting to a broadcast always finds a matching open round, and
there is at most one open round per session.

Storage failures are logged and reported as False; they never block the
operator's transition.
"""

import logging
from typing import Dict, Optional

from .adapters import PersistenceAdapter
from .models import AuctionSession, Item, SessionPhase

logger = logging.getLogger(__name__)


class RoundController:
    """Owns the open-round record for one session."""

    def __init__(
        self,
        session_id: str,
        persistence: PersistenceAdapter,
        items: Optional[Dict[str, Item]] = None
    ):
        self.session_id = session_id
        self.persistence = persistence
        self.items: Dict[str, Item] = dict(items or {})
        self.current_item: Optional[str] = None
        self.current_round: Optional[dict] = None

    def _round_target(self, item_id: str):
        item = self.items.get(item_id)
        if item is None:
            return item_id, None
        return item.round_key, item.tier_id

    def open_round(self, item_id: str) -> bool:
        """
        Create or overwrite the open-round record for item_id.

        Returns:
            True if the record was written
        """
        round_key, tier_id = self._round_target(item_id)
        try:
            record = self.persistence.open_round(self.session_id, round_key, tier_id)
        except Exception as e:
            logger.error(f"Failed to open round for {item_id} in {self.session_id}: {e}", exc_info=True)
            self.current_item = None
            self.current_round = None
            return False

        self.current_item = item_id
        self.current_round = record
        logger.debug(f"Opened round: {item_id} (tier {tier_id})")
        return True

    def close_round(self) -> bool:
        """
        Delete the open-round record.

        Returns:
            True if the store acknowledged the close
        """
        previous = self.current_item
        self.current_item = None
        self.current_round = None
        try:
            self.persistence.close_round(self.session_id)
        except Exception as e:
            logger.error(f"Failed to close round in {self.session_id}: {e}", exc_info=True)
            return False

        if previous is not None:
            logger.debug(f"Closed round: {previous}")
        return True

    def advance(self, next_item: Optional[str]) -> bool:
        """
        Close the current round, then open one for next_item (if any).

        Returns:
            True if every step succeeded
        """
        closed = self.close_round()
        if next_item is None:
            return closed
        opened = self.open_round(next_item)
        return closed and opened

    def resume(self, session: AuctionSession) -> bool:
        """
        Recover the round record after a reload.

        A live session gets a round for its cursor item when none exists
        (or when the stored round names a different item). A session that
        is not live must not keep an open round.

        Returns:
            True if the durable record now matches the session
        """
        try:
            existing = self.persistence.get_open_round(self.session_id)
        except Exception as e:
            logger.error(f"Failed to read open round for {self.session_id}: {e}", exc_info=True)
            existing = None

        if session.phase is not SessionPhase.LIVE:
            if existing:
                logger.info(f"Closing stale round in {self.session_id} (phase {session.phase.value})")
                return self.close_round()
            return True

        item_id = session.current_item()
        round_key, _ = self._round_target(item_id)

        if existing is None:
            logger.info(f"Re-opening round for {item_id} after reload")
            return self.open_round(item_id)

        if str(existing.get('itemId')) != round_key:
            logger.warning(
                f"Stored round is for {existing.get('itemId')}, cursor is at {item_id} - re-opening"
            )
            return self.advance(item_id)

        self.current_item = item_id
        self.current_round = existing
        logger.debug(f"Open round for {item_id} already present")
        return True
