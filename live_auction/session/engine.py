"""
Main orchestrator for a live auction session.

The AuctionEngine is the single entry point for operator actions:
- Serializes transitions behind one lock per session
- Applies each transition to the in-memory session synchronously
- Queues the side effects of each transition on a single worker so
  they run in transition order:
      close round -> open round (next item) -> save snapshot -> save teams -> publish
- Records side-effect failures for the "Not saved" indicator without
  rolling back memory
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np
import pandas as pd

from .. import config
from ..shuffle import ShuffleStrategy, strategy_from_options
from .action_log import ActionLog, create_log_filepath
from .adapters import BroadcastAdapter, ConfigSource, PersistenceAdapter
from .bids import Bid, BidBoard
from .bootstrap import BootstrapResult, bootstrap_session
from .models import AuctionConfig, HistoryRecord, SessionPhase, utcnow
from .round_controller import RoundController
from .state_machine import AuctionError, AuctionStateMachine

logger = logging.getLogger(__name__)


class SessionBusyError(AuctionError):
    """Another transition is in progress for this session."""


@dataclass
class SaveStatus:
    """Outcome of the most recent durable write."""

    saved: bool = True
    last_error: Optional[str] = None
    last_saved_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'saved': self.saved,
            'lastError': self.last_error,
            'lastSavedAt': self.last_saved_at.isoformat() if self.last_saved_at else None,
        }


class AuctionEngine:
    """Owns one auction session and sequences its side effects."""

    def __init__(
        self,
        auction_config: AuctionConfig,
        bootstrap: BootstrapResult,
        persistence: PersistenceAdapter,
        broadcaster: BroadcastAdapter,
        action_log: Optional[ActionLog] = None,
        background: bool = True,
        lock_timeout: float = config.TRANSITION_LOCK_TIMEOUT
    ):
        """
        Initialize engine. Use AuctionEngine.open() to bootstrap from stores.

        Args:
            auction_config: Static configuration (teams, pool, status)
            bootstrap: Result of Session Bootstrap
            persistence: Durable store
            broadcaster: Observer channel
            action_log: Optional audit log
            background: Run side effects on a worker thread (False runs them inline)
            lock_timeout: Seconds a concurrent caller waits before SessionBusyError
        """
        self.config = auction_config
        self.session_id = auction_config.session_id
        self.persistence = persistence
        self.broadcaster = broadcaster
        self.action_log = action_log
        self.lock_timeout = lock_timeout
        self.restored = bootstrap.restored

        self.state_machine = AuctionStateMachine(bootstrap.session, auction_config.items)
        self.rounds = RoundController(self.session_id, persistence, auction_config.items_by_id())
        self.bids = BidBoard()
        self.save_status = SaveStatus()

        self._lock = threading.Lock()
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"auction-{self.session_id}")
            if background else None
        )
        self._last_job: Optional[Future] = None
        self._published: dict = bootstrap.session.to_dict()

    @classmethod
    def open(
        cls,
        auction_config: AuctionConfig,
        persistence: PersistenceAdapter,
        broadcaster: BroadcastAdapter,
        action_log: Optional[ActionLog] = None,
        background: bool = True
    ) -> 'AuctionEngine':
        """Bootstrap the session and recover its open round."""
        result = bootstrap_session(auction_config, persistence)
        engine = cls(auction_config, result, persistence, broadcaster,
                     action_log=action_log, background=background)
        engine._resume()
        return engine

    # ----- read access -----

    @property
    def session(self):
        return self.state_machine.session

    @property
    def phase(self) -> SessionPhase:
        return self.session.phase

    def current_item(self) -> Optional[str]:
        return self.session.current_item()

    def snapshot(self) -> dict:
        with self._lock:
            return self.session.to_dict()

    def team_summary(self) -> pd.DataFrame:
        with self._lock:
            return self.state_machine.team_summary()

    def published_snapshot(self) -> dict:
        """
        The snapshot most recently handed to the broadcaster.

        Side effects run behind memory, so a new observer starts from here
        rather than from snapshot() to see transitions in order.
        """
        return self._published

    # ----- transitions -----

    def start(
        self,
        strategy: Optional[ShuffleStrategy] = None,
        rng: Optional[np.random.Generator] = None
    ) -> dict:
        """Generate the queue, go live and open the first round."""
        strategy = strategy or strategy_from_options(config.DEFAULT_SHUFFLE_STRATEGY)

        def apply():
            self.state_machine.start(strategy, rng)
            return None

        return self._transition('START', apply, status=config.STATUS_LIVE)

    def sell(self, team_ref: str, price: Optional[int] = None) -> dict:
        return self._transition('SOLD', lambda: self.state_machine.sell(team_ref, price))

    def mark_unsold(self) -> dict:
        return self._transition('UNSOLD', self.state_machine.mark_unsold)

    def defer(self) -> dict:
        return self._transition('DEFERRED', self.state_machine.defer)

    def undo(self) -> dict:
        return self._transition('UNDO', self.state_machine.undo)

    def submit_bid(self, team: str, item_id: str, amount: int) -> Bid:
        """
        Record a captain's bid for the open round and relay the board.

        Raises:
            BidRejected: If the bid does not target the current item
        """
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise SessionBusyError(f"Another action is in progress for auction {self.session_id}")
        try:
            bid = self.bids.place(team, item_id, amount)
            board = self.bids.to_dict()
            self._dispatch(lambda: self._publish_bids(board))
            return bid
        finally:
            self._lock.release()

    # ----- side effects -----

    def drain(self, timeout: float = config.SIDE_EFFECT_TIMEOUT) -> None:
        """Block until every queued side effect has run."""
        job = self._last_job
        if job is not None:
            job.result(timeout=timeout)

    def close(self) -> None:
        """Finish queued side effects and stop the worker."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _transition(self, action: str, apply: Callable, status: Optional[str] = None) -> dict:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise SessionBusyError(f"Another action is in progress for auction {self.session_id}")
        try:
            record = apply()
            if action == 'UNDO' and record is None:
                return self.session.to_dict()

            snapshot = self.session.to_dict()
            next_item = self.session.current_item()
            self._log_action(action, record)

            # Every applied transition re-opens the round, so the board starts empty
            self.bids.reset(next_item)

            self._dispatch(lambda: self._sync(snapshot, next_item, status))
            return snapshot
        finally:
            self._lock.release()

    def _dispatch(self, job: Callable[[], None]) -> None:
        if self._executor is None:
            job()
            return
        self._last_job = self._executor.submit(self._guarded, job)

    def _guarded(self, job: Callable[[], None]) -> None:
        try:
            job()
        except Exception as e:
            logger.error(f"Side effect failed for auction {self.session_id}: {e}", exc_info=True)

    def _sync(self, snapshot: dict, next_item: Optional[str], status: Optional[str]) -> None:
        """Round protocol first, then persistence, then broadcast."""
        self.rounds.advance(next_item)

        saved = True
        try:
            self.persistence.save_snapshot(self.session_id, snapshot, status=status)
        except Exception as e:
            saved = False
            self._record_failure('snapshot', e)

        try:
            self.persistence.save_teams(self.session_id, snapshot['teams'])
        except Exception as e:
            saved = False
            self._record_failure('teams', e)

        if saved:
            self.save_status = SaveStatus(saved=True, last_saved_at=utcnow())

        self._published = snapshot
        try:
            self.broadcaster.publish(self.session_id, snapshot)
            self.broadcaster.publish_bids(self.session_id, {})
        except Exception as e:
            logger.error(f"Broadcast failed for auction {self.session_id}: {e}", exc_info=True)

    def _publish_bids(self, board: dict) -> None:
        try:
            self.broadcaster.publish_bids(self.session_id, board)
        except Exception as e:
            logger.error(f"Bid broadcast failed for auction {self.session_id}: {e}", exc_info=True)

    def _record_failure(self, what: str, error: Exception) -> None:
        logger.error(f"Failed to save {what} for auction {self.session_id}: {error}", exc_info=True)
        self.save_status = SaveStatus(
            saved=False,
            last_error=f"{what}: {error}",
            last_saved_at=self.save_status.last_saved_at,
        )

    def _resume(self) -> None:
        """Recover the open round of a restored session and publish its state."""
        session_copy = self.session.copy()
        snapshot = session_copy.to_dict()
        self.bids.reset(session_copy.current_item())

        def job():
            self.rounds.resume(session_copy)
            self._published = snapshot
            try:
                self.broadcaster.publish(self.session_id, snapshot)
            except Exception as e:
                logger.error(f"Broadcast failed for auction {self.session_id}: {e}", exc_info=True)

        self._dispatch(job)

    def _log_action(self, action: str, record: Optional[HistoryRecord]) -> None:
        if self.action_log is None:
            return
        try:
            self.action_log.append(
                self.session_id,
                action,
                cursor=self.session.cursor,
                item=record.item_id if record else None,
                team=record.team if record else '',
                price=record.price if record else 0,
            )
        except OSError as e:
            logger.error(f"Failed to append to action log: {e}")


class EngineRegistry:
    """Keeps one engine per session, bootstrapping lazily."""

    def __init__(
        self,
        config_source: ConfigSource,
        persistence: PersistenceAdapter,
        broadcaster: BroadcastAdapter,
        action_log_dir: Optional[Path] = None,
        background: bool = True
    ):
        self.config_source = config_source
        self.persistence = persistence
        self.broadcaster = broadcaster
        self.action_log_dir = Path(action_log_dir) if action_log_dir else None
        self.background = background
        self._engines: Dict[str, AuctionEngine] = {}
        self._lock = threading.Lock()
        self._opening: Dict[str, threading.Lock] = {}

    def get(self, session_id: str) -> AuctionEngine:
        """
        Return the engine for session_id, opening it on first use.

        Raises:
            ConfigNotFoundError: If the auction does not exist
        """
        with self._lock:
            engine = self._engines.get(session_id)
            if engine is not None:
                return engine
            opening = self._opening.setdefault(session_id, threading.Lock())

        # Only callers for this session wait on a slow fetch or bootstrap
        with opening:
            with self._lock:
                engine = self._engines.get(session_id)
            if engine is not None:
                return engine

            engine = self._open(session_id)
            with self._lock:
                self._engines[session_id] = engine
                self._opening.pop(session_id, None)
            return engine

    def _open(self, session_id: str) -> AuctionEngine:
        auction_config = self.config_source.fetch(session_id)
        action_log = None
        if self.action_log_dir is not None:
            action_log = ActionLog(create_log_filepath(self.action_log_dir, session_id))
        engine = AuctionEngine.open(
            auction_config, self.persistence, self.broadcaster,
            action_log=action_log, background=self.background
        )
        logger.info(f"Opened engine for auction {session_id} (restored={engine.restored})")
        return engine

    def session_ids(self):
        with self._lock:
            return list(self._engines)

    def drop(self, session_id: str) -> None:
        """Close and forget an engine (the next get() re-bootstraps)."""
        with self._lock:
            engine = self._engines.pop(session_id, None)
        if engine is not None:
            engine.close()

    def close_all(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.close()
