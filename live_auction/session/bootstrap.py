"""
Reconcile configuration with persisted runtime state when a session opens.

Three sources are considered: the static configuration (teams, pool), the
persisted snapshot, and the auction status flag. The snapshot wins only
when it is marked started AND the status says the auction is live; then it
is restored verbatim apart from the display name. In every other case a
fresh, not-started session is built from the configuration and any stale
snapshot is ignored.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .. import config
from .adapters import PersistenceAdapter
from .models import AuctionConfig, AuctionSession, TeamState

logger = logging.getLogger(__name__)


@dataclass
class BootstrapResult:
    session: AuctionSession
    restored: bool
    reason: str


def fresh_session(auction_config: AuctionConfig) -> AuctionSession:
    """Build a not-started session from the current team configuration."""
    teams = [
        TeamState(
            team_id=team.team_id,
            name=team.name,
            coins=team.coins,
            starting_budget=team.coins,
        )
        for team in auction_config.teams
    ]
    return AuctionSession(
        session_id=auction_config.session_id,
        name=auction_config.name,
        teams=teams,
    )


def bootstrap_session(
    auction_config: AuctionConfig,
    persistence: PersistenceAdapter,
    snapshot: Optional[dict] = None
) -> BootstrapResult:
    """
    Construct or restore the session for auction_config.

    Args:
        auction_config: Current configuration, including auction_status
        persistence: Store to read the snapshot from
        snapshot: Already-loaded snapshot (skips the store read)

    Returns:
        BootstrapResult with the session and whether it was restored

    Raises:
        Exception: If the store cannot be read at all (a live auction must
            not be silently replaced by a fresh one)
    """
    session_id = auction_config.session_id
    if snapshot is None:
        snapshot = persistence.load_snapshot(session_id)

    is_live = auction_config.auction_status == config.STATUS_LIVE
    started = bool(snapshot and snapshot.get('auctionStarted'))

    if snapshot and started and is_live:
        try:
            session = AuctionSession.from_dict(snapshot)
            session.validate()
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Persisted snapshot for {session_id} is unreadable or inconsistent, starting fresh: {e}")
            return BootstrapResult(fresh_session(auction_config), False, 'corrupt-snapshot')

        session.name = auction_config.name
        logger.info(
            f"Restored live session {session_id}: cursor {session.cursor}/{len(session.queue)}, "
            f"{len(session.history)} actions"
        )
        return BootstrapResult(session, True, 'restored')

    if started and not is_live:
        reason = 'status-not-live'
        logger.info(
            f"Discarding started snapshot for {session_id}: status is "
            f"{auction_config.auction_status}"
        )
    elif is_live and snapshot and not started:
        reason = 'snapshot-not-started'
        logger.warning(f"Auction {session_id} is LIVE but its snapshot was never started")
    elif is_live:
        reason = 'no-snapshot'
        logger.warning(f"Auction {session_id} is LIVE but has no snapshot")
    else:
        reason = 'fresh'
        logger.info(f"Starting fresh session for {session_id}")

    return BootstrapResult(fresh_session(auction_config), False, reason)
