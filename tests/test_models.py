import json

import pytest

from live_auction.session.models import (
    ActionType,
    AuctionConfig,
    AuctionSession,
    HistoryRecord,
    Item,
    SessionPhase,
    SoldEntry,
    TeamState,
    Tier,
)


# Snapshot as written by an earlier version of the web app (no team ids)
LEGACY_SNAPSHOT = {
    'id': 'auction-9',
    'name': 'Old Name',
    'teams': [
        {'name': 'Falcons', 'coins': 850, 'originalCoins': 1000,
         'players': [{'name': 'Ravi', 'price': 150, 'tier': 'gold'}]},
        {'name': 'Hawks', 'coins': 1000, 'originalCoins': 1000, 'players': []},
    ],
    'auctionQueue': ['Ravi', 'Sam', 'Kai'],
    'auctionIndex': 2,
    'auctionStarted': True,
    'soldPlayers': {'Ravi': {'team': 'Falcons', 'price': 150}},
    'unsoldPlayers': ['Sam'],
    'deferredPlayers': [],
    'auctionHistory': [
        {'player': 'Ravi', 'team': 'Falcons', 'price': 150, 'action': 'SOLD'},
        {'player': 'Sam', 'team': '', 'price': 0, 'action': 'UNSOLD'},
    ],
    'lastUpdated': '2024-03-01T18:30:00.000Z',
}


class TestItem:

    def test_from_api_player_with_nested_tier(self):
        tiers = {'7': Tier(tier_id='7', name='Gold', base_price=120)}
        item = Item.from_dict(
            {'id': 42, 'name': 'Ravi', 'tier': {'id': 7}, 'playingRole': 'Batsman, Bowler',
             'customTags': 'captain'},
            tiers,
        )

        assert item.item_id == 'Ravi'
        assert item.record_id == '42'
        assert item.round_key == '42'
        assert item.tier_id == '7'
        assert item.base_price == 120
        assert item.roles == ['Batsman', 'Bowler']
        assert item.notes == 'captain'

    def test_explicit_base_price_wins(self):
        tiers = {'g': Tier(tier_id='g', name='Gold', base_price=120)}
        item = Item.from_dict({'name': 'Sam', 'tierId': 'g', 'basePrice': 80}, tiers)
        assert item.base_price == 80

    def test_untiered_item(self):
        item = Item.from_dict({'name': 'Kai'})
        assert item.tier_id is None
        assert item.base_price == 0
        assert item.round_key == 'Kai'


class TestTeamState:

    def test_add_and_remove_player(self):
        team = TeamState(team_id='t1', name='Falcons', coins=1000, starting_budget=1000)
        team.add_player('Ravi', 150, tier='gold')
        assert team.coins == 850
        assert team.spent() == 150

        team.remove_player('Ravi', 150)
        assert team.coins == 1000
        assert team.players == []

    def test_remove_missing_player(self):
        team = TeamState(team_id='t1', name='Falcons', coins=1000, starting_budget=1000)
        with pytest.raises(ValueError):
            team.remove_player('Nobody', 10)

    def test_legacy_team_without_id(self):
        team = TeamState.from_dict({'name': 'Hawks', 'coins': 900})
        assert team.team_id == 'Hawks'
        assert team.starting_budget == 900


class TestAuctionSession:

    def test_legacy_snapshot_loads(self):
        session = AuctionSession.from_dict(LEGACY_SNAPSHOT)

        assert session.session_id == 'auction-9'
        assert session.cursor == 2
        assert session.current_item() == 'Kai'
        assert session.sold == {'Ravi': SoldEntry(team='Falcons', price=150)}
        assert session.history[1].action is ActionType.UNSOLD
        assert session.last_updated.year == 2024
        session.validate()

    def test_snapshot_schema_field_names(self):
        data = AuctionSession.from_dict(LEGACY_SNAPSHOT).to_dict()

        assert set(data) == {
            'id', 'name', 'teams', 'auctionQueue', 'auctionIndex', 'auctionStarted',
            'soldPlayers', 'unsoldPlayers', 'deferredPlayers', 'auctionHistory', 'lastUpdated',
        }
        assert data['teams'][0] == {
            'id': 'Falcons', 'name': 'Falcons', 'coins': 850, 'originalCoins': 1000,
            'players': [{'name': 'Ravi', 'price': 150, 'tier': 'gold'}],
        }
        assert data['auctionHistory'][0] == {'player': 'Ravi', 'team': 'Falcons', 'price': 150, 'action': 'SOLD'}

    def test_json_round_trip(self):
        session = AuctionSession.from_dict(LEGACY_SNAPSHOT)
        restored = AuctionSession.from_json(session.to_json())
        assert restored.to_dict() == session.to_dict()
        assert json.loads(session.to_json())['auctionIndex'] == 2

    def test_copy_is_independent(self):
        session = AuctionSession.from_dict(LEGACY_SNAPSHOT)
        clone = session.copy()
        clone.queue.append('Extra')
        clone.teams[0].coins = 0
        assert 'Extra' not in session.queue
        assert session.teams[0].coins == 850

    def test_phase(self):
        session = AuctionSession(session_id='s', name='n')
        assert session.phase is SessionPhase.NOT_STARTED

        session.started = True
        assert session.phase is SessionPhase.COMPLETE  # empty queue

        session.queue = ['A']
        assert session.phase is SessionPhase.LIVE
        assert session.remaining() == ['A']

    def test_find_team_by_id_or_name(self):
        session = AuctionSession.from_dict(LEGACY_SNAPSHOT)
        session.teams[1].team_id = 't2'
        assert session.find_team('t2').name == 'Hawks'
        assert session.find_team('Hawks').team_id == 't2'
        assert session.find_team('Nobody') is None


class TestValidate:

    def make_session(self):
        return AuctionSession.from_dict(LEGACY_SNAPSHOT)

    def test_budget_mismatch(self):
        session = self.make_session()
        session.teams[0].coins = 800
        with pytest.raises(ValueError, match='Budget mismatch'):
            session.validate()

    def test_sold_and_unsold_overlap(self):
        session = self.make_session()
        session.unsold.append('Ravi')
        with pytest.raises(ValueError, match='both sold and unsold'):
            session.validate()

    def test_history_for_unqueued_item(self):
        session = self.make_session()
        session.history.append(HistoryRecord(item_id='Ghost', team='', price=0, action=ActionType.UNSOLD))
        with pytest.raises(ValueError, match='not queued'):
            session.validate()

    def test_cursor_out_of_range(self):
        session = self.make_session()
        session.cursor = 4
        with pytest.raises(ValueError, match='Cursor'):
            session.validate()

    def test_sold_without_roster_entry(self):
        session = self.make_session()
        session.sold['Kai'] = SoldEntry(team='Hawks', price=10)
        with pytest.raises(ValueError, match='do not match'):
            session.validate()


class TestAuctionConfig:

    def test_from_api_payload(self):
        config = AuctionConfig.from_dict({
            'id': 'a1',
            'name': 'Spring League',
            'status': 'LIVE',
            'budgetPerTeam': 1000,
            'tiers': [{'id': 'g', 'name': 'Gold', 'basePrice': 100, 'sortOrder': 1}],
            'teams': [
                {'id': 1, 'name': 'Falcons', 'budgetRemaining': 700},
                {'id': 2, 'name': 'Hawks'},
            ],
            'players': [{'id': 5, 'name': 'Ravi', 'tierId': 'g'}],
        })

        assert config.auction_status == 'LIVE'
        assert [t.coins for t in config.teams] == [700, 1000]
        assert config.teams[0].starting_budget == 700
        assert config.items_by_id()['Ravi'].base_price == 100
        assert config.tiers_by_id()['g'].sort_order == 1

    def test_zero_remaining_budget_is_kept(self):
        config = AuctionConfig.from_dict({
            'id': 'a1', 'budgetPerTeam': 1000,
            'teams': [{'id': 1, 'name': 'Falcons', 'budgetRemaining': 0}],
        })
        assert config.teams[0].coins == 0

    def test_status_defaults_to_draft(self):
        config = AuctionConfig.from_dict({'id': 'a1', 'teams': [], 'players': []})
        assert config.auction_status == 'DRAFT'
