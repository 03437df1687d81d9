"""
Apply operator actions to the live auction session.

The AuctionStateMachine is responsible for:
- Generating the queue when the auction starts
- Applying Sell / MarkUnsold / Defer transitions to the current item
- Inverting the last history record on Undo
- Re-validating the session invariants after every transition, and
  leaving the session untouched when a transition would break them

It performs no I/O. Round records, persistence and broadcasting are
sequenced by the engine around each transition.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .. import config
from .models import (
    ActionType,
    AuctionSession,
    HistoryRecord,
    Item,
    SessionPhase,
    SoldEntry,
)

logger = logging.getLogger(__name__)


class AuctionError(Exception):
    """Base class for auction runtime errors."""


class InvariantViolation(AuctionError):
    """An action was rejected before touching state."""


class AuctionStateMachine:
    """Transition function over an AuctionSession."""

    def __init__(
        self,
        session: AuctionSession,
        items: Optional[Sequence[Item]] = None,
        min_teams: int = config.MIN_TEAMS
    ):
        """
        Initialize the state machine.

        Args:
            session: Session to mutate (fresh or restored from a snapshot)
            items: Item pool, used for queue generation and default prices
            min_teams: Minimum number of teams required to start
        """
        self.session = session
        self.items: Dict[str, Item] = {item.item_id: item for item in (items or [])}
        self.min_teams = min_teams

    @property
    def phase(self) -> SessionPhase:
        return self.session.phase

    def current_item(self) -> Optional[str]:
        return self.session.current_item()

    def get_item(self, item_id: str) -> Optional[Item]:
        return self.items.get(item_id)

    def default_price(self, item_id: str) -> int:
        """Tier base price of the item (0 when the item is unknown)."""
        item = self.items.get(item_id)
        return item.base_price if item else 0

    # ----- transitions -----

    def start(self, strategy, rng: Optional[np.random.Generator] = None) -> List[str]:
        """
        Generate the queue and go live.

        Args:
            strategy: ShuffleStrategy selected by the organizer
            rng: Random generator (seeded in tests and dry runs)

        Returns:
            The generated queue

        Raises:
            InvariantViolation: If already started or too few teams
        """
        if self.session.started:
            raise InvariantViolation("Auction has already started")
        if len(self.session.teams) < self.min_teams:
            raise InvariantViolation(
                f"At least {self.min_teams} teams are required to start "
                f"(found {len(self.session.teams)})"
            )

        queue = strategy.build_queue(list(self.items.values()), rng)
        if len(set(queue)) != len(queue):
            raise InvariantViolation("Shuffle produced duplicate items (a tier is listed twice)")

        backup = self.session.copy()
        self.session.queue = queue
        self.session.cursor = 0
        self.session.started = True
        self._commit(backup)

        logger.info(
            f"Started auction {self.session.session_id}: {len(queue)} items, "
            f"{len(self.session.teams)} teams, strategy={strategy.mode}"
        )
        if not queue:
            logger.info("Empty pool - auction is complete immediately")
        return queue

    def sell(self, team_ref: str, price: Optional[int] = None) -> HistoryRecord:
        """
        Sell the current item to a team.

        The budget check is advisory: a price above the team's remaining
        coins is logged but accepted.

        Args:
            team_ref: Team id or name
            price: Sale price (defaults to the item's tier base price)

        Raises:
            InvariantViolation: If not live, team unknown or price negative
        """
        item_id = self._require_live()
        team = self.session.find_team(team_ref) if team_ref else None
        if team is None:
            raise InvariantViolation(f"Unknown team: {team_ref!r}")

        if price is None:
            price = self.default_price(item_id)
        price = int(price)
        if price < 0:
            raise InvariantViolation(f"Price must not be negative (got {price})")

        backup = self.session.copy()
        if price > team.coins:
            logger.warning(
                f"{team.name} buys {item_id} for {price} with only {team.coins} coins left"
            )

        item = self.items.get(item_id)
        team.add_player(item_id, price, tier=item.tier_id if item else None)
        self.session.sold[item_id] = SoldEntry(team=team.name, price=price)
        record = HistoryRecord(item_id=item_id, team=team.name, price=price, action=ActionType.SOLD)
        self.session.history.append(record)
        self.session.cursor += 1
        self._commit(backup)

        logger.info(
            f"SOLD {item_id} -> {team.name} ({price}) | "
            f"{team.coins} coins left | cursor {self.session.cursor}/{len(self.session.queue)}"
        )
        return record

    def mark_unsold(self) -> HistoryRecord:
        """Mark the current item unsold and advance."""
        item_id = self._require_live()
        backup = self.session.copy()

        self.session.unsold.append(item_id)
        record = HistoryRecord(item_id=item_id, team='', price=0, action=ActionType.UNSOLD)
        self.session.history.append(record)
        self.session.cursor += 1
        self._commit(backup)

        logger.info(f"UNSOLD {item_id} | cursor {self.session.cursor}/{len(self.session.queue)}")
        return record

    def defer(self) -> HistoryRecord:
        """
        Move the current item to the end of the queue.

        The cursor does not move: the next item slides into the current slot.
        """
        item_id = self._require_live()
        backup = self.session.copy()
        queue = self.session.queue

        del queue[self.session.cursor]
        queue.append(item_id)
        if item_id not in self.session.deferred:
            self.session.deferred.append(item_id)
        record = HistoryRecord(item_id=item_id, team='', price=0, action=ActionType.DEFERRED)
        self.session.history.append(record)
        self._commit(backup)

        logger.info(f"DEFERRED {item_id} | now up: {self.session.current_item()}")
        return record

    def undo(self) -> Optional[HistoryRecord]:
        """
        Invert the last history record.

        Returns:
            The undone record, or None when history is empty (no-op)

        Raises:
            InvariantViolation: If the record cannot be inverted against the
                current state (corrupted snapshot)
        """
        history = self.session.history
        if not history:
            logger.debug("Undo with empty history - nothing to do")
            return None

        record = history[-1]
        backup = self.session.copy()
        if record.action in (ActionType.SOLD, ActionType.UNSOLD):
            self._undo_resolution(record)
        else:
            self._undo_defer(record)

        self._commit(backup)
        logger.info(
            f"UNDO {record.action.value} {record.item_id} | "
            f"cursor {self.session.cursor}/{len(self.session.queue)}"
        )
        return record

    # ----- inversion helpers -----

    def _undo_resolution(self, record: HistoryRecord) -> None:
        session = self.session
        if session.cursor == 0 or session.queue[session.cursor - 1] != record.item_id:
            raise InvariantViolation(f"Cannot undo {record.action.value} {record.item_id}: cursor mismatch")

        if record.action is ActionType.SOLD:
            team = session.find_team(record.team)
            if team is None or record.item_id not in session.sold:
                raise InvariantViolation(f"Cannot undo sale of {record.item_id}: no matching team or sale")
            team.remove_player(record.item_id, record.price)
            del session.sold[record.item_id]
        else:
            if record.item_id not in session.unsold:
                raise InvariantViolation(f"Cannot undo unsold {record.item_id}: not marked unsold")
            session.unsold.remove(record.item_id)

        session.history.pop()
        session.cursor -= 1

    def _undo_defer(self, record: HistoryRecord) -> None:
        session = self.session
        queue = session.queue
        if record.item_id not in queue:
            raise InvariantViolation(f"Cannot undo defer of {record.item_id}: not queued")

        # The deferred item sits at the tail; put it back at the cursor
        tail_index = len(queue) - 1 - queue[::-1].index(record.item_id)
        del queue[tail_index]
        queue.insert(session.cursor, record.item_id)

        session.history.pop()
        still_deferred = any(
            r.action is ActionType.DEFERRED and r.item_id == record.item_id
            for r in session.history
        )
        if not still_deferred and record.item_id in session.deferred:
            session.deferred.remove(record.item_id)

    # ----- internals -----

    def _require_live(self) -> str:
        phase = self.session.phase
        if phase is not SessionPhase.LIVE:
            raise InvariantViolation(f"Auction is not live (phase: {phase.value})")
        return self.session.queue[self.session.cursor]

    def _commit(self, backup: AuctionSession) -> None:
        """Keep the transition only if the session is still consistent."""
        try:
            self.session.validate()
        except ValueError as e:
            logger.error(f"Transition rejected, session left as before: {e}")
            self.session = backup
            raise InvariantViolation(f"Session is inconsistent: {e}") from e
        self.session.touch()

    # ----- reporting -----

    def team_summary(self) -> pd.DataFrame:
        """
        Get summary statistics for all teams.

        Returns:
            DataFrame with team_id, team_name, players, spent, coins, starting_budget
        """
        summary_data = []
        for team in self.session.teams:
            summary_data.append({
                'team_id': team.team_id,
                'team_name': team.name,
                'players': len(team.players),
                'spent': team.spent(),
                'coins': team.coins,
                'starting_budget': team.starting_budget,
            })

        columns = ['team_id', 'team_name', 'players', 'spent', 'coins', 'starting_budget']
        return pd.DataFrame(summary_data, columns=columns)

    def history_frame(self) -> pd.DataFrame:
        """History records as a DataFrame (one row per action, oldest first)."""
        rows = [record.to_dict() for record in self.session.history]
        return pd.DataFrame(rows, columns=['player', 'team', 'price', 'action'])
