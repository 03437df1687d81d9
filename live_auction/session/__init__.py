"""
Live auction session subsystem.

This package owns the runtime of one auction: the state machine applying
operator actions, the open-round record bidding clients read, session
bootstrap from persisted state, and the engine that serializes transitions
and orders their side effects.
"""

from .models import (
    ActionType,
    AuctionConfig,
    AuctionSession,
    HistoryRecord,
    Item,
    SessionPhase,
    TeamState,
    Tier,
)
from .state_machine import AuctionError, AuctionStateMachine, InvariantViolation
from .round_controller import RoundController
from .adapters import (
    BroadcastAdapter,
    ConfigNotFoundError,
    ConfigSource,
    InMemoryStore,
    LocalBroadcaster,
    PersistenceAdapter,
    StaticConfigSource,
)
from .file_store import JsonConfigSource, JsonFileStore
from .rest_client import AuctionApiClient
from .action_log import ActionLog
from .bootstrap import BootstrapResult, bootstrap_session
from .bids import BidBoard, BidRejected
from .engine import AuctionEngine, EngineRegistry, SaveStatus, SessionBusyError

__all__ = [
    'ActionType',
    'AuctionConfig',
    'AuctionSession',
    'HistoryRecord',
    'Item',
    'SessionPhase',
    'TeamState',
    'Tier',
    'AuctionError',
    'AuctionStateMachine',
    'InvariantViolation',
    'RoundController',
    'BroadcastAdapter',
    'ConfigNotFoundError',
    'ConfigSource',
    'InMemoryStore',
    'LocalBroadcaster',
    'PersistenceAdapter',
    'StaticConfigSource',
    'JsonConfigSource',
    'JsonFileStore',
    'AuctionApiClient',
    'ActionLog',
    'BootstrapResult',
    'bootstrap_session',
    'BidBoard',
    'BidRejected',
    'AuctionEngine',
    'EngineRegistry',
    'SaveStatus',
    'SessionBusyError',
]
