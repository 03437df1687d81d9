import pytest

from live_auction.shuffle import ShuffleStrategy
from live_auction.session.adapters import InMemoryStore, LocalBroadcaster, StaticConfigSource
from live_auction.session.engine import AuctionEngine
from live_auction.session.models import AuctionConfig, Item, TeamState, Tier


class FixedOrder(ShuffleStrategy):
    """Strategy returning a predetermined queue, for exact scenario tests."""

    mode = 'fixed'

    def __init__(self, order):
        self.order = list(order)

    def build_queue(self, items, rng=None):
        return list(self.order)


@pytest.fixture
def tiers():
    return [
        Tier(tier_id='gold', name='Gold', base_price=100, sort_order=0),
        Tier(tier_id='silver', name='Silver', base_price=50, sort_order=1),
        Tier(tier_id='bronze', name='Bronze', base_price=20, sort_order=2),
    ]


@pytest.fixture
def items():
    return [
        Item(item_id='A', name='A', tier_id='gold', base_price=100, record_id='101'),
        Item(item_id='B', name='B', tier_id='silver', base_price=50, record_id='102'),
        Item(item_id='C', name='C', tier_id='bronze', base_price=20, record_id='103'),
        Item(item_id='D', name='D', tier_id='gold', base_price=100, record_id='104'),
        Item(item_id='E', name='E', tier_id=None, base_price=10, record_id='105'),
    ]


def make_teams(count=2, budget=1000):
    return [
        TeamState(team_id=f"t{i + 1}", name=f"Team {i + 1}", coins=budget, starting_budget=budget)
        for i in range(count)
    ]


@pytest.fixture
def auction_config(items, tiers):
    return AuctionConfig(
        session_id='auction-1',
        name='Spring League',
        teams=make_teams(2),
        items=items,
        tiers=tiers,
        budget_per_team=1000,
        auction_status='DRAFT',
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def broadcaster():
    return LocalBroadcaster()


@pytest.fixture
def config_source(auction_config, store):
    return StaticConfigSource({auction_config.session_id: auction_config}, store=store)


@pytest.fixture
def engine(auction_config, store, broadcaster):
    """Engine running side effects inline, not started."""
    engine = AuctionEngine.open(auction_config, store, broadcaster, background=False)
    yield engine
    engine.close()


@pytest.fixture
def live_engine(engine):
    """Engine started with queue [A, B, C, D, E]."""
    engine.start(FixedOrder(['A', 'B', 'C', 'D', 'E']))
    return engine
