import copy
import threading
import time

import pytest

from conftest import FixedOrder
from live_auction.session.action_log import ActionLog
from live_auction.session.adapters import InMemoryStore, StaticConfigSource, ConfigNotFoundError
from live_auction.session.bids import BidRejected
from live_auction.session.engine import AuctionEngine, EngineRegistry, SessionBusyError
from live_auction.session.models import SessionPhase
from live_auction.session.state_machine import InvariantViolation


class RecordingStore(InMemoryStore):
    """In-memory store that logs every call into a shared event list."""

    def __init__(self, events, delay=0.0):
        super().__init__()
        self.events = events
        self.delay = delay
        self.fail = set()

    def _record(self, name, detail=None):
        if self.delay:
            time.sleep(self.delay)
        self.events.append((name, detail))
        if name in self.fail:
            raise ConnectionError(f"{name} unavailable")

    def save_snapshot(self, session_id, snapshot, status=None):
        self._record('save_snapshot', (snapshot['auctionIndex'], status))
        super().save_snapshot(session_id, snapshot, status)

    def save_teams(self, session_id, teams):
        self._record('save_teams')
        super().save_teams(session_id, teams)

    def open_round(self, session_id, item_id, tier_id):
        self._record('open_round', item_id)
        return super().open_round(session_id, item_id, tier_id)

    def close_round(self, session_id):
        self._record('close_round')
        super().close_round(session_id)


class GatedStore(InMemoryStore):
    """In-memory store whose open_round waits until the gate is open."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.gate.set()

    def open_round(self, session_id, item_id, tier_id):
        self.gate.wait(5)
        return super().open_round(session_id, item_id, tier_id)


class SlowConfigSource(StaticConfigSource):
    """Holds fetches of one auction until released."""

    def __init__(self, configs, store, slow_id):
        super().__init__(configs, store=store)
        self.slow_id = slow_id
        self.entered = threading.Event()
        self.release = threading.Event()
        self.fetches = 0

    def fetch(self, session_id):
        if session_id == self.slow_id:
            self.fetches += 1
            self.entered.set()
            self.release.wait(5)
        return super().fetch(session_id)


class BlockingOrder(FixedOrder):
    """Holds the start transition open until released."""

    def __init__(self, order):
        super().__init__(order)
        self.entered = threading.Event()
        self.release = threading.Event()

    def build_queue(self, items, rng=None):
        self.entered.set()
        self.release.wait(5)
        return super().build_queue(items, rng)


@pytest.fixture
def events():
    return []


@pytest.fixture
def recording_store(events):
    return RecordingStore(events)


def open_engine(auction_config, store, broadcaster, events=None, **kwargs):
    if events is not None:
        broadcaster.subscribe(
            auction_config.session_id,
            lambda s: events.append(('publish', s['auctionIndex'])),
            lambda b: events.append(('publish_bids', dict(b))),
        )
    kwargs.setdefault('background', False)
    return AuctionEngine.open(auction_config, store, broadcaster, **kwargs)


class TestSideEffectOrdering:

    def test_start_sequence(self, auction_config, recording_store, broadcaster, events):
        engine = open_engine(auction_config, recording_store, broadcaster, events)
        events.clear()

        engine.start(FixedOrder(['A', 'B', 'C']))

        assert events == [
            ('close_round', None),
            ('open_round', '101'),
            ('save_snapshot', (0, 'LIVE')),
            ('save_teams', None),
            ('publish', 0),
            ('publish_bids', {}),
        ]
        assert recording_store.load_status('auction-1') == 'LIVE'

    def test_sell_sequence(self, auction_config, recording_store, broadcaster, events):
        engine = open_engine(auction_config, recording_store, broadcaster, events)
        engine.start(FixedOrder(['A', 'B', 'C']))
        events.clear()

        engine.sell('t1', 120)

        names = [name for name, _ in events]
        assert names == ['close_round', 'open_round', 'save_snapshot', 'save_teams', 'publish', 'publish_bids']
        assert events[1] == ('open_round', '102')
        assert events[2] == ('save_snapshot', (1, None))

    def test_round_open_before_every_live_broadcast(self, auction_config, recording_store, broadcaster):
        seen = []

        def check(snapshot):
            round_record = recording_store.get_open_round('auction-1')
            index = snapshot['auctionIndex']
            queue = snapshot['auctionQueue']
            if snapshot['auctionStarted'] and index < len(queue):
                seen.append(round_record is not None)

        broadcaster.subscribe('auction-1', check)
        engine = open_engine(auction_config, recording_store, broadcaster)
        engine.start(FixedOrder(['A', 'B', 'C']))
        engine.sell('t1', 10)
        engine.defer()
        engine.undo()
        engine.mark_unsold()

        assert seen and all(seen)

    def test_last_resolution_closes_round(self, auction_config, recording_store, broadcaster, events):
        engine = open_engine(auction_config, recording_store, broadcaster, events)
        engine.start(FixedOrder(['A']))
        events.clear()

        engine.mark_unsold()

        assert [name for name, _ in events][:2] == ['close_round', 'save_snapshot']
        assert recording_store.get_open_round('auction-1') is None
        assert engine.phase is SessionPhase.COMPLETE

    def test_background_broadcasts_in_transition_order(self, auction_config, events, broadcaster):
        store = RecordingStore(events, delay=0.01)
        engine = open_engine(auction_config, store, broadcaster, events, background=True)
        engine.start(FixedOrder(['A', 'B', 'C', 'D', 'E']))
        engine.mark_unsold()
        engine.sell('t2', 20)
        engine.defer()
        engine.undo()
        engine.undo()

        engine.drain()
        engine.close()

        published = [detail for name, detail in events if name == 'publish']
        # initial resume publish, then one per transition
        assert published == [0, 0, 1, 2, 2, 2, 1]

    def test_transition_returns_before_side_effects(self, auction_config, events, broadcaster):
        store = RecordingStore(events, delay=0.2)
        engine = open_engine(auction_config, store, broadcaster, background=True)
        engine.drain()

        started = time.monotonic()
        snapshot = engine.start(FixedOrder(['A', 'B']))
        elapsed = time.monotonic() - started

        assert snapshot['auctionStarted'] is True
        assert elapsed < 0.2
        engine.drain()
        engine.close()
        assert store.load_status('auction-1') == 'LIVE'


class TestFailureTolerance:

    def test_failed_save_is_non_fatal(self, auction_config, recording_store, broadcaster, events):
        engine = open_engine(auction_config, recording_store, broadcaster, events)
        engine.start(FixedOrder(['A', 'B', 'C']))
        recording_store.fail.update({'save_snapshot', 'open_round', 'close_round'})
        events.clear()

        snapshot = engine.sell('t1', 50)

        assert snapshot['auctionIndex'] == 1
        assert engine.session.teams[0].coins == 950
        assert engine.save_status.saved is False
        assert 'snapshot' in engine.save_status.last_error
        assert ('publish', 1) in events

    def test_next_successful_save_clears_flag(self, auction_config, recording_store, broadcaster):
        engine = open_engine(auction_config, recording_store, broadcaster)
        engine.start(FixedOrder(['A', 'B', 'C']))
        recording_store.fail.add('save_teams')
        engine.mark_unsold()
        assert engine.save_status.saved is False

        recording_store.fail.clear()
        engine.mark_unsold()
        assert engine.save_status.saved is True
        assert engine.save_status.last_saved_at is not None
        assert recording_store.load_snapshot('auction-1')['auctionIndex'] == 2

    def test_failing_subscriber_does_not_block_others(self, auction_config, store, broadcaster):
        received = []
        broadcaster.subscribe('auction-1', lambda s: 1 / 0)
        broadcaster.subscribe('auction-1', lambda s: received.append(s['auctionIndex']))
        engine = open_engine(auction_config, store, broadcaster)

        engine.start(FixedOrder(['A', 'B']))
        assert received[-1] == 0


class TestSerialization:

    def test_concurrent_transition_rejected(self, auction_config, store, broadcaster):
        engine = open_engine(auction_config, store, broadcaster)
        engine.lock_timeout = 0.05
        strategy = BlockingOrder(['A', 'B'])

        worker = threading.Thread(target=engine.start, args=(strategy,))
        worker.start()
        assert strategy.entered.wait(5)

        with pytest.raises(SessionBusyError):
            engine.mark_unsold()

        strategy.release.set()
        worker.join(5)
        assert engine.phase is SessionPhase.LIVE
        engine.mark_unsold()
        assert engine.session.cursor == 1

    def test_bid_waits_for_transition(self, auction_config, store, broadcaster):
        engine = open_engine(auction_config, store, broadcaster)
        engine.lock_timeout = 0.05
        strategy = BlockingOrder(['A', 'B'])

        worker = threading.Thread(target=engine.start, args=(strategy,))
        worker.start()
        assert strategy.entered.wait(5)

        with pytest.raises(SessionBusyError):
            engine.submit_bid('Team 1', 'A', 120)

        strategy.release.set()
        worker.join(5)
        assert engine.submit_bid('Team 1', 'A', 120).amount == 120

    def test_rejected_action_has_no_side_effects(self, live_engine, store):
        before = store.load_snapshot('auction-1')

        with pytest.raises(InvariantViolation):
            live_engine.sell('nobody', 10)

        assert store.load_snapshot('auction-1') == before
        assert live_engine.session.history == []

    def test_inconsistent_session_rejects_without_side_effects(self, live_engine, store, broadcaster):
        published = []
        broadcaster.subscribe('auction-1', lambda s: published.append(s))
        live_engine.session.teams[0].coins = 900
        before = store.load_snapshot('auction-1')

        with pytest.raises(InvariantViolation, match='Budget mismatch'):
            live_engine.sell('t2', 50)

        assert live_engine.session.cursor == 0
        assert live_engine.session.sold == {}
        assert store.load_snapshot('auction-1') == before
        assert published == []


class TestUndoNoop:

    def test_empty_undo_publishes_nothing(self, auction_config, recording_store, broadcaster, events):
        engine = open_engine(auction_config, recording_store, broadcaster, events)
        engine.start(FixedOrder(['A', 'B']))
        events.clear()

        snapshot = engine.undo()

        assert events == []
        assert snapshot['auctionIndex'] == 0


class TestBids:

    def test_bids_relayed_and_cleared_on_advance(self, live_engine, broadcaster):
        boards = []
        broadcaster.subscribe('auction-1', lambda s: None, lambda b: boards.append(b))

        live_engine.submit_bid('Team 1', 'A', 120)
        live_engine.submit_bid('Team 2', 'A', 140)
        assert set(boards[-1]) == {'Team 1', 'Team 2'}
        assert live_engine.bids.highest().team == 'Team 2'

        live_engine.sell('t2', 140)
        assert boards[-1] == {}
        assert live_engine.bids.item_id == 'B'

    def test_bid_for_other_item_rejected(self, live_engine):
        with pytest.raises(BidRejected):
            live_engine.submit_bid('Team 1', 'B', 50)

    def test_defer_clears_board(self, live_engine):
        live_engine.submit_bid('Team 1', 'A', 120)
        live_engine.defer()
        assert live_engine.bids.to_dict() == {}
        assert live_engine.bids.item_id == 'B'

    def test_deferring_last_item_clears_board(self, live_engine, broadcaster):
        boards = []
        broadcaster.subscribe('auction-1', lambda s: None, lambda b: boards.append(b))
        for _ in range(4):
            live_engine.mark_unsold()
        assert live_engine.current_item() == 'E'

        live_engine.submit_bid('Team 1', 'E', 40)
        live_engine.defer()

        assert live_engine.current_item() == 'E'
        assert boards[-1] == {}
        assert live_engine.bids.to_dict() == {}
        assert live_engine.bids.item_id == 'E'

        live_engine.submit_bid('Team 2', 'E', 30)
        live_engine.undo()
        assert live_engine.bids.to_dict() == {}


class TestActionLog:

    def test_transitions_are_logged(self, auction_config, store, broadcaster, tmp_path):
        log = ActionLog(tmp_path / 'auction_auction-1.jsonl')
        engine = open_engine(auction_config, store, broadcaster, action_log=log)

        engine.start(FixedOrder(['A', 'B']))
        engine.sell('t1', 70)
        engine.undo()
        engine.undo()  # no-op, not logged

        entries = log.load_all()
        assert [e.action for e in entries] == ['START', 'SOLD', 'UNDO']
        assert entries[1].team == 'Team 1'
        assert entries[1].price == 70
        assert entries[2].item == 'A'
        assert entries[2].cursor == 0


class TestEngineRegistry:

    def test_one_engine_per_session(self, config_source, store, broadcaster):
        registry = EngineRegistry(config_source, store, broadcaster, background=False)

        first = registry.get('auction-1')
        assert registry.get('auction-1') is first
        assert registry.session_ids() == ['auction-1']
        registry.close_all()

    def test_unknown_session(self, config_source, store, broadcaster):
        registry = EngineRegistry(config_source, store, broadcaster, background=False)
        with pytest.raises(ConfigNotFoundError):
            registry.get('missing')

    def test_drop_and_reopen_restores_live_session(self, config_source, store, broadcaster, tmp_path):
        registry = EngineRegistry(config_source, store, broadcaster,
                                  action_log_dir=tmp_path, background=False)
        engine = registry.get('auction-1')
        engine.start(FixedOrder(['A', 'B', 'C']))
        engine.sell('t1', 100)

        registry.drop('auction-1')
        reopened = registry.get('auction-1')

        assert reopened is not engine
        assert reopened.restored is True
        assert reopened.current_item() == 'B'
        assert (tmp_path / 'auction_auction-1.jsonl').exists()

    def test_status_override_from_store(self, auction_config):
        store = InMemoryStore()
        store.statuses['auction-1'] = 'LIVE'
        source = StaticConfigSource({'auction-1': auction_config}, store=store)
        assert source.fetch('auction-1').auction_status == 'LIVE'
        assert auction_config.auction_status == 'DRAFT'

    def test_slow_open_does_not_block_other_sessions(self, auction_config, store, broadcaster):
        second = copy.deepcopy(auction_config)
        second.session_id = 'auction-2'
        source = SlowConfigSource({'auction-1': auction_config, 'auction-2': second}, store, 'auction-2')
        registry = EngineRegistry(source, store, broadcaster, background=False)

        opener = threading.Thread(target=registry.get, args=('auction-2',))
        opener.start()
        assert source.entered.wait(5)

        started = time.monotonic()
        registry.get('auction-1')
        assert time.monotonic() - started < 1
        assert registry.session_ids() == ['auction-1']

        source.release.set()
        opener.join(5)
        assert sorted(registry.session_ids()) == ['auction-1', 'auction-2']
        registry.close_all()

    def test_concurrent_open_of_one_session_shares_engine(self, auction_config, store, broadcaster):
        source = SlowConfigSource({'auction-1': auction_config}, store, 'auction-1')
        registry = EngineRegistry(source, store, broadcaster, background=False)
        opened = []

        threads = [threading.Thread(target=lambda: opened.append(registry.get('auction-1'))) for _ in range(2)]
        threads[0].start()
        assert source.entered.wait(5)
        threads[1].start()
        time.sleep(0.05)
        source.release.set()
        for thread in threads:
            thread.join(5)

        assert len(opened) == 2
        assert opened[0] is opened[1]
        assert source.fetches == 1
        registry.close_all()


class TestObservers:

    def test_new_observer_sees_transitions_in_order(self, auction_config, broadcaster):
        store = GatedStore()
        engine = AuctionEngine.open(auction_config, store, broadcaster, background=True)
        engine.start(FixedOrder(['A', 'B', 'C']))
        engine.drain()

        store.gate.clear()
        engine.sell('t1', 100)
        engine.mark_unsold()
        assert engine.snapshot()['auctionIndex'] == 2

        seen = []
        broadcaster.subscribe('auction-1', lambda s: seen.append(s['auctionIndex']))
        cursors = [engine.published_snapshot()['auctionIndex']]

        store.gate.set()
        engine.drain()
        engine.close()
        cursors.extend(seen)

        assert cursors == [0, 1, 2]
