"""
Core data structures for the auction pool and the live auction session.

These dataclasses represent the static configuration of an auction (items,
tiers, teams) and the runtime aggregate that the state machine mutates.
The dictionary forms use the field names of already persisted sessions, so
snapshots written by earlier versions of the web app load unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
import json


class ActionType(str, Enum):
    """Operator actions recorded in the auction history."""
    SOLD = 'SOLD'
    UNSOLD = 'UNSOLD'
    DEFERRED = 'DEFERRED'


class SessionPhase(str, Enum):
    """Derived lifecycle phase of an auction session."""
    NOT_STARTED = 'NOT_STARTED'
    LIVE = 'LIVE'
    COMPLETE = 'COMPLETE'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    # JS clients write a trailing 'Z'
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


@dataclass
class Tier:
    """A pricing bucket for items."""

    tier_id: str
    name: str
    base_price: int = 0
    sort_order: int = 0
    color: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'id': self.tier_id,
            'name': self.name,
            'basePrice': self.base_price,
            'sortOrder': self.sort_order,
            'color': self.color,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Tier':
        return cls(
            tier_id=str(data['id']),
            name=data.get('name', str(data['id'])),
            base_price=int(data.get('basePrice', 0) or 0),
            sort_order=int(data.get('sortOrder', 0) or 0),
            color=data.get('color'),
        )


@dataclass
class Item:
    """A player in the auction pool."""

    item_id: str                    # Identifier used in the queue (player name in stored sessions)
    name: str
    tier_id: Optional[str] = None
    base_price: int = 0
    roles: List[str] = field(default_factory=list)
    notes: str = ''
    record_id: Optional[str] = None  # Database id, used for round records when present

    @property
    def round_key(self) -> str:
        """Identifier written into the durable open-round record."""
        return self.record_id or self.item_id

    def to_dict(self) -> dict:
        return {
            'itemId': self.item_id,
            'id': self.record_id,
            'name': self.name,
            'tierId': self.tier_id,
            'basePrice': self.base_price,
            'roles': list(self.roles),
            'notes': self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict, tiers: Optional[Dict[str, Tier]] = None) -> 'Item':
        """
        Create an Item from a config or web API player record.

        Accepts either a flat ``tierId`` or a nested ``tier: {id: ...}``. The
        base price falls back to the tier's base price when not given.
        """
        tier_id = data.get('tierId')
        if tier_id is None and isinstance(data.get('tier'), dict):
            tier_id = data['tier'].get('id')
        tier_id = str(tier_id) if tier_id is not None else None

        base_price = data.get('basePrice')
        if base_price is None and tiers and tier_id in tiers:
            base_price = tiers[tier_id].base_price

        roles = data.get('roles')
        if roles is None:
            roles = [r.strip() for r in (data.get('playingRole') or '').split(',') if r.strip()]

        return cls(
            item_id=str(data.get('itemId') or data['name']),
            name=data['name'],
            tier_id=tier_id,
            base_price=int(base_price or 0),
            roles=roles,
            notes=data.get('notes') or data.get('customTags') or '',
            record_id=str(data['id']) if data.get('id') is not None else None,
        )


@dataclass
class RosterEntry:
    """An item acquired by a team."""

    item_id: str
    price: int
    tier: Optional[str] = None

    def to_dict(self) -> dict:
        data = {'name': self.item_id, 'price': self.price}
        if self.tier is not None:
            data['tier'] = self.tier
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'RosterEntry':
        tier = data.get('tier')
        return cls(
            item_id=str(data['name']),
            price=int(data['price']),
            tier=str(tier) if tier is not None else None,
        )


@dataclass
class TeamState:
    """Tracks a single team's budget and roster."""

    team_id: str
    name: str
    coins: int                      # Remaining budget
    starting_budget: int
    players: List[RosterEntry] = field(default_factory=list)

    def spent(self) -> int:
        """Total paid for the current roster."""
        return sum(entry.price for entry in self.players)

    def add_player(self, item_id: str, price: int, tier: Optional[str] = None) -> None:
        self.players.append(RosterEntry(item_id=item_id, price=price, tier=tier))
        self.coins -= price

    def remove_player(self, item_id: str, price: int) -> None:
        """Refund and drop the most recent roster entry for item_id."""
        for index in range(len(self.players) - 1, -1, -1):
            if self.players[index].item_id == item_id:
                del self.players[index]
                break
        else:
            raise ValueError(f"{item_id} is not on the roster of {self.name}")
        self.coins += price

    def to_dict(self) -> dict:
        return {
            'id': self.team_id,
            'name': self.name,
            'coins': self.coins,
            'originalCoins': self.starting_budget,
            'players': [entry.to_dict() for entry in self.players],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TeamState':
        coins = int(data['coins'])
        return cls(
            team_id=str(data.get('id') or data['name']),
            name=data['name'],
            coins=coins,
            starting_budget=int(data.get('originalCoins', coins)),
            players=[RosterEntry.from_dict(p) for p in data.get('players', [])],
        )


@dataclass
class SoldEntry:
    """Winning team (by name) and price of a sold item."""

    team: str
    price: int

    def to_dict(self) -> dict:
        return {'team': self.team, 'price': self.price}


@dataclass
class HistoryRecord:
    """A single reversible operator action."""

    item_id: str
    team: str        # Buyer team name for SOLD, '' otherwise
    price: int
    action: ActionType

    def to_dict(self) -> dict:
        return {
            'player': self.item_id,
            'team': self.team,
            'price': self.price,
            'action': self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'HistoryRecord':
        return cls(
            item_id=str(data['player']),
            team=data.get('team') or '',
            price=int(data.get('price') or 0),
            action=ActionType(data.get('action') or ActionType.SOLD.value),
        )


@dataclass
class AuctionSession:
    """Complete runtime state of one auction."""

    session_id: str
    name: str
    teams: List[TeamState] = field(default_factory=list)
    queue: List[str] = field(default_factory=list)
    cursor: int = 0
    started: bool = False
    sold: Dict[str, SoldEntry] = field(default_factory=dict)
    unsold: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    history: List[HistoryRecord] = field(default_factory=list)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def phase(self) -> SessionPhase:
        if not self.started:
            return SessionPhase.NOT_STARTED
        if self.cursor >= len(self.queue):
            return SessionPhase.COMPLETE
        return SessionPhase.LIVE

    def current_item(self) -> Optional[str]:
        """Item currently up for auction, or None when not live."""
        if self.phase is not SessionPhase.LIVE:
            return None
        return self.queue[self.cursor]

    def remaining(self) -> List[str]:
        """Items still waiting, current item included."""
        return self.queue[self.cursor:]

    def find_team(self, ref: str) -> Optional[TeamState]:
        """Look a team up by id, falling back to name."""
        for team in self.teams:
            if team.team_id == ref:
                return team
        for team in self.teams:
            if team.name == ref:
                return team
        return None

    def touch(self) -> None:
        self.last_updated = utcnow()

    def validate(self) -> None:
        """
        Validate session consistency.

        Raises:
            ValueError: If state is inconsistent
        """
        if not 0 <= self.cursor <= len(self.queue):
            raise ValueError(f"Cursor {self.cursor} outside queue of length {len(self.queue)}")

        if len(set(self.queue)) != len(self.queue):
            raise ValueError("Queue contains duplicate items")

        queued = set(self.queue)
        overlap = set(self.sold) & set(self.unsold)
        if overlap:
            raise ValueError(f"Items both sold and unsold: {sorted(overlap)}")

        for record in self.history:
            if record.item_id not in queued:
                raise ValueError(f"History refers to {record.item_id}, which is not queued")

        missing_deferred = set(self.deferred) - queued
        if missing_deferred:
            raise ValueError(f"Deferred items not in queue: {sorted(missing_deferred)}")

        # Budget conservation and roster/sold agreement
        rostered = {}
        for team in self.teams:
            if team.starting_budget - team.coins != team.spent():
                raise ValueError(
                    f"Budget mismatch for {team.name}: spent {team.spent()}, "
                    f"but budget moved by {team.starting_budget - team.coins}"
                )
            for entry in team.players:
                if entry.item_id in rostered:
                    raise ValueError(f"{entry.item_id} appears on multiple rosters")
                rostered[entry.item_id] = (team.name, entry.price)

        sold = {item: (entry.team, entry.price) for item, entry in self.sold.items()}
        if rostered != sold:
            raise ValueError("Sold items do not match team rosters")

    def to_dict(self) -> dict:
        """Convert to the persisted snapshot schema."""
        return {
            'id': self.session_id,
            'name': self.name,
            'teams': [team.to_dict() for team in self.teams],
            'auctionQueue': list(self.queue),
            'auctionIndex': self.cursor,
            'auctionStarted': self.started,
            'soldPlayers': {item: entry.to_dict() for item, entry in self.sold.items()},
            'unsoldPlayers': list(self.unsold),
            'deferredPlayers': list(self.deferred),
            'auctionHistory': [record.to_dict() for record in self.history],
            'lastUpdated': self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AuctionSession':
        """Create an AuctionSession from a persisted snapshot."""
        return cls(
            session_id=str(data['id']),
            name=data.get('name', ''),
            teams=[TeamState.from_dict(t) for t in data.get('teams', [])],
            queue=[str(i) for i in data.get('auctionQueue', [])],
            cursor=int(data.get('auctionIndex', 0)),
            started=bool(data.get('auctionStarted', False)),
            sold={
                str(item): SoldEntry(team=entry['team'], price=int(entry['price']))
                for item, entry in data.get('soldPlayers', {}).items()
            },
            unsold=[str(i) for i in data.get('unsoldPlayers', [])],
            deferred=[str(i) for i in data.get('deferredPlayers', [])],
            history=[HistoryRecord.from_dict(r) for r in data.get('auctionHistory', [])],
            last_updated=_parse_timestamp(data.get('lastUpdated')),
        )

    def copy(self) -> 'AuctionSession':
        """Independent deep copy through the snapshot form."""
        return AuctionSession.from_dict(self.to_dict())

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'AuctionSession':
        return cls.from_dict(json.loads(json_str))


@dataclass
class AuctionConfig:
    """Static configuration of an auction as served by the configuration source."""

    session_id: str
    name: str
    teams: List[TeamState]
    items: List[Item]
    tiers: List[Tier] = field(default_factory=list)
    budget_per_team: int = 0
    auction_status: str = 'DRAFT'

    def items_by_id(self) -> Dict[str, Item]:
        return {item.item_id: item for item in self.items}

    def tiers_by_id(self) -> Dict[str, Tier]:
        return {tier.tier_id: tier for tier in self.tiers}

    @classmethod
    def from_dict(cls, data: dict) -> 'AuctionConfig':
        """
        Create an AuctionConfig from the web API auction payload.

        Teams start with their stored remaining budget when present,
        otherwise with the auction's budget per team. That opening balance
        is the team's starting budget for the session.
        """
        budget = int(data.get('budgetPerTeam') or 0)
        tiers = [Tier.from_dict(t) for t in data.get('tiers') or []]
        tier_map = {tier.tier_id: tier for tier in tiers}

        teams = []
        for team in data.get('teams') or []:
            coins = team.get('budgetRemaining')
            if coins is None:
                coins = team.get('coins')
            if coins is None:
                coins = budget
            teams.append(TeamState(
                team_id=str(team.get('id') or team['name']),
                name=team['name'],
                coins=int(coins),
                starting_budget=int(coins),
            ))

        return cls(
            session_id=str(data['id']),
            name=data.get('name', ''),
            teams=teams,
            items=[Item.from_dict(p, tier_map) for p in data.get('players') or []],
            tiers=tiers,
            budget_per_team=budget,
            auction_status=data.get('status') or 'DRAFT',
        )
