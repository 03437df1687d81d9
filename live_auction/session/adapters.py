"""
Interfaces between the auction runtime and its external collaborators.

- PersistenceAdapter: durable snapshot, team budgets and the open-round record
- BroadcastAdapter: fan-out of snapshots and bid boards to observers
- ConfigSource: read-only auction configuration (teams, pool, status)

In-process implementations are provided for tests, dry runs and the
single-node API server.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .models import AuctionConfig, utcnow

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[dict], None]
BidsCallback = Callable[[dict], None]


class ConfigNotFoundError(LookupError):
    """The configuration source has no auction with the requested id."""


class PersistenceAdapter(ABC):
    """Durable store for runtime snapshots and round records."""

    @abstractmethod
    def save_snapshot(self, session_id: str, snapshot: dict, status: Optional[str] = None) -> None:
        """Replace the stored snapshot (and the auction status when given)."""

    @abstractmethod
    def load_snapshot(self, session_id: str) -> Optional[dict]:
        """Return the stored snapshot or None."""

    @abstractmethod
    def save_teams(self, session_id: str, teams: List[dict]) -> None:
        """Write team budgets back to the team records."""

    @abstractmethod
    def open_round(self, session_id: str, item_id: str, tier_id: Optional[str]) -> dict:
        """Create or overwrite the open-round record."""

    @abstractmethod
    def close_round(self, session_id: str) -> None:
        """Delete the open-round record (no error when none is open)."""

    @abstractmethod
    def get_open_round(self, session_id: str) -> Optional[dict]:
        """Return the open-round record or None."""

    def load_status(self, session_id: str) -> Optional[str]:
        """Return the stored auction status, if this store keeps one."""
        return None


class BroadcastAdapter(ABC):
    """Publishes state to connected observers."""

    @abstractmethod
    def publish(self, session_id: str, snapshot: dict) -> None:
        """Fire-and-forget snapshot broadcast."""

    @abstractmethod
    def publish_bids(self, session_id: str, bids: dict) -> None:
        """Fire-and-forget bid board broadcast."""

    @abstractmethod
    def subscribe(
        self,
        session_id: str,
        on_snapshot: SnapshotCallback,
        on_bid_update: Optional[BidsCallback] = None
    ) -> 'Subscription':
        """Register callbacks; returns a handle with unsubscribe()."""


class ConfigSource(ABC):
    """Read-only access to auction configuration."""

    @abstractmethod
    def fetch(self, session_id: str) -> AuctionConfig:
        """
        Raises:
            ConfigNotFoundError: If the auction does not exist
        """


def make_round_record(session_id: str, item_id: str, tier_id: Optional[str]) -> dict:
    return {
        'sessionId': session_id,
        'itemId': item_id,
        'tierId': tier_id,
        'status': 'OPEN',
        'openedAt': utcnow().isoformat(),
    }


class InMemoryStore(PersistenceAdapter):
    """Dictionary-backed persistence for tests and dry runs."""

    def __init__(self):
        self.snapshots: Dict[str, dict] = {}
        self.statuses: Dict[str, str] = {}
        self.teams: Dict[str, List[dict]] = {}
        self.rounds: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def save_snapshot(self, session_id, snapshot, status=None):
        with self._lock:
            self.snapshots[session_id] = copy.deepcopy(snapshot)
            if status:
                self.statuses[session_id] = status

    def load_snapshot(self, session_id):
        with self._lock:
            snapshot = self.snapshots.get(session_id)
            return copy.deepcopy(snapshot) if snapshot is not None else None

    def load_status(self, session_id):
        return self.statuses.get(session_id)

    def save_teams(self, session_id, teams):
        with self._lock:
            self.teams[session_id] = copy.deepcopy(teams)

    def open_round(self, session_id, item_id, tier_id):
        record = make_round_record(session_id, item_id, tier_id)
        with self._lock:
            self.rounds[session_id] = record
        return dict(record)

    def close_round(self, session_id):
        with self._lock:
            self.rounds.pop(session_id, None)

    def get_open_round(self, session_id):
        with self._lock:
            record = self.rounds.get(session_id)
            return dict(record) if record else None


class StaticConfigSource(ConfigSource):
    """
    Serves configurations held in memory.

    When a store is given, the status it recorded (LIVE after start)
    takes precedence over the configured one.
    """

    def __init__(
        self,
        configs: Optional[Dict[str, AuctionConfig]] = None,
        store: Optional[PersistenceAdapter] = None
    ):
        self.configs: Dict[str, AuctionConfig] = dict(configs or {})
        self.store = store

    def add(self, auction_config: AuctionConfig) -> None:
        self.configs[auction_config.session_id] = auction_config

    def fetch(self, session_id):
        if session_id not in self.configs:
            raise ConfigNotFoundError(f"Auction not found: {session_id}")
        auction_config = copy.deepcopy(self.configs[session_id])
        if self.store is not None:
            stored_status = self.store.load_status(session_id)
            if stored_status:
                auction_config.auction_status = stored_status
        return auction_config


class Subscription:
    """Handle returned by subscribe()."""

    def __init__(self, broadcaster: 'LocalBroadcaster', session_id: str,
                 on_snapshot: SnapshotCallback, on_bid_update: Optional[BidsCallback]):
        self.broadcaster = broadcaster
        self.session_id = session_id
        self.on_snapshot = on_snapshot
        self.on_bid_update = on_bid_update
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.broadcaster._remove(self)
            self.active = False


class LocalBroadcaster(BroadcastAdapter):
    """
    In-process broadcast channel.

    Callbacks run on the publishing thread, in subscription order. A
    failing callback is logged and does not affect other subscribers.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id, on_snapshot, on_bid_update=None):
        subscription = Subscription(self, session_id, on_snapshot, on_bid_update)
        with self._lock:
            self._subscriptions.setdefault(session_id, []).append(subscription)
        logger.debug(f"New subscriber for auction-{session_id}")
        return subscription

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(session_id, []))

    def publish(self, session_id, snapshot):
        for subscription in self._targets(session_id):
            self._deliver(subscription.on_snapshot, snapshot, session_id)

    def publish_bids(self, session_id, bids):
        for subscription in self._targets(session_id):
            if subscription.on_bid_update is not None:
                self._deliver(subscription.on_bid_update, bids, session_id)

    def _targets(self, session_id: str) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions.get(session_id, []))

    def _deliver(self, callback, payload: dict, session_id: str) -> None:
        try:
            callback(payload)
        except Exception as e:
            logger.error(f"Subscriber callback failed for auction-{session_id}: {e}", exc_info=True)

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.session_id, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
