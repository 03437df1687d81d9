"""
Seeded dry run of a complete auction against in-memory adapters.

Builds a synthetic tiered pool and drives the engine with random operator
decisions (sell, unsold, defer, undo) until the queue is exhausted. The same
seed always produces the same auction, which makes the dry run useful for
rehearsing an event and for checking invariants over long action sequences.
"""

import logging
from typing import Dict, List, Optional

import pandas as pd

from .. import config
from ..shuffle import CUSTOM_MIX, TIER_ORDERED, make_rng, strategy_from_options
from .adapters import InMemoryStore, LocalBroadcaster, StaticConfigSource
from .engine import EngineRegistry
from .models import AuctionConfig, Item, SessionPhase, TeamState, Tier

logger = logging.getLogger(__name__)

DRY_RUN_SESSION_ID = 'dry-run'


def build_synthetic_config(
    num_teams: int,
    pool_size: int,
    session_id: str = DRY_RUN_SESSION_ID,
    budget: int = config.DEFAULT_BUDGET_PER_TEAM
) -> AuctionConfig:
    """
    Create a pool of `pool_size` players spread over the dry-run tiers.

    Args:
        num_teams: Number of teams
        pool_size: Number of players in the pool
        session_id: Session id of the synthetic auction
        budget: Starting coins per team

    Returns:
        AuctionConfig in DRAFT status
    """
    tiers = [
        Tier(tier_id=tier_id, name=name, base_price=base_price, sort_order=index, color=color)
        for index, (tier_id, name, base_price, color) in enumerate(config.DRY_RUN_TIERS)
    ]

    items = []
    for i in range(pool_size):
        tier = tiers[i % len(tiers)]
        name = f"Player {i + 1:03d}"
        items.append(Item(item_id=name, name=name, tier_id=tier.tier_id, base_price=tier.base_price))

    teams = [
        TeamState(team_id=f"team-{i + 1}", name=f"Team {i + 1}", coins=budget, starting_budget=budget)
        for i in range(num_teams)
    ]

    return AuctionConfig(
        session_id=session_id,
        name='Dry Run Auction',
        teams=teams,
        items=items,
        tiers=tiers,
        budget_per_team=budget,
        auction_status=config.STATUS_DRAFT,
    )


def _strategy_options(mode: str, tiers: List[Tier]) -> dict:
    tier_ids = [tier.tier_id for tier in tiers]
    if mode == TIER_ORDERED:
        return {'tier_order': tier_ids}
    if mode == CUSTOM_MIX:
        # Top two tiers pooled together, the rest one group each
        return {'groups': [tier_ids[:2]] + [[t] for t in tier_ids[2:]]}
    return {}


def run_dry_run(
    num_teams: int = config.DRY_RUN_NUM_TEAMS,
    pool_size: int = config.DRY_RUN_POOL_SIZE,
    seed: Optional[int] = config.DRY_RUN_SEED,
    strategy: str = config.DEFAULT_SHUFFLE_STRATEGY
) -> Dict:
    """
    Run a full auction with seeded random operator decisions.

    Args:
        num_teams: Number of teams
        pool_size: Number of players
        seed: Random seed (None for a non-reproducible run)
        strategy: Shuffle strategy mode

    Returns:
        Summary dict with counts, the final snapshot and a team summary DataFrame
    """
    rng = make_rng(seed)
    auction_config = build_synthetic_config(num_teams, pool_size)

    store = InMemoryStore()
    broadcaster = LocalBroadcaster()
    source = StaticConfigSource({auction_config.session_id: auction_config}, store=store)
    registry = EngineRegistry(source, store, broadcaster, background=False)

    broadcasts = {'state': 0, 'bids': 0}

    def on_snapshot(_snapshot):
        broadcasts['state'] += 1

    def on_bids(_bids):
        broadcasts['bids'] += 1

    subscription = broadcaster.subscribe(auction_config.session_id, on_snapshot, on_bids)
    engine = registry.get(auction_config.session_id)

    shuffle = strategy_from_options(strategy, **_strategy_options(strategy, auction_config.tiers))
    engine.start(shuffle, rng)
    logger.info(f"Dry run: {num_teams} teams, {pool_size} players, seed={seed}, strategy={strategy}")

    counts = {'sold': 0, 'unsold': 0, 'deferred': 0, 'undo': 0, 'bids': 0}
    max_steps = max(pool_size, 1) * 10
    steps = 0

    while engine.phase is SessionPhase.LIVE and steps < max_steps:
        steps += 1
        roll = rng.random()

        if engine.session.history and roll < config.DRY_RUN_UNDO_RATE:
            engine.undo()
            counts['undo'] += 1
            continue

        roll -= config.DRY_RUN_UNDO_RATE
        if roll < config.DRY_RUN_DEFER_RATE:
            engine.defer()
            counts['deferred'] += 1
            continue

        roll -= config.DRY_RUN_DEFER_RATE
        item_id = engine.current_item()
        base_price = engine.state_machine.default_price(item_id)
        buyers = [team for team in engine.session.teams if team.coins >= base_price]

        if roll < config.DRY_RUN_UNSOLD_RATE or not buyers:
            engine.mark_unsold()
            counts['unsold'] += 1
            continue

        buyer = buyers[int(rng.integers(0, len(buyers)))]
        price = int(rng.integers(base_price, buyer.coins + 1))
        engine.submit_bid(buyer.name, item_id, price)
        counts['bids'] += 1
        engine.sell(buyer.team_id, price)
        counts['sold'] += 1

    if engine.phase is SessionPhase.LIVE:
        logger.warning(f"Dry run stopped after {steps} steps with the auction still live")

    engine.session.validate()
    snapshot = engine.snapshot()
    team_summary = engine.team_summary()
    subscription.unsubscribe()
    registry.close_all()

    summary = {
        'seed': seed,
        'strategy': strategy,
        'pool_size': pool_size,
        'num_teams': num_teams,
        'steps': steps,
        'complete': engine.phase is SessionPhase.COMPLETE,
        'actions': counts,
        'sold': len(snapshot['soldPlayers']),
        'unsold': len(snapshot['unsoldPlayers']),
        'broadcasts': dict(broadcasts),
        'open_round': store.get_open_round(auction_config.session_id),
        'status': store.load_status(auction_config.session_id),
        'snapshot': snapshot,
        'teams': team_summary,
    }

    logger.info(
        f"Dry run finished: {summary['sold']} sold, {summary['unsold']} unsold, "
        f"{counts['deferred']} defers, {counts['undo']} undos"
    )
    return summary


def format_summary(summary: Dict) -> str:
    """Render a dry-run summary for the console."""
    teams: pd.DataFrame = summary['teams']
    lines = [
        f"Seed: {summary['seed']}  Strategy: {summary['strategy']}",
        f"Pool: {summary['pool_size']} players, {summary['num_teams']} teams",
        f"Sold: {summary['sold']}  Unsold: {summary['unsold']}  "
        f"Defers: {summary['actions']['deferred']}  Undos: {summary['actions']['undo']}",
        f"Complete: {summary['complete']}",
        '',
        teams.to_string(index=False),
    ]
    return '\n'.join(lines)
