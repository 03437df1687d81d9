"""
Request and response models for the auction API.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..shuffle import STRATEGY_MODES
from .engine import AuctionEngine


ACTIONS = ('SOLD', 'UNSOLD', 'DEFER', 'UNDO')


# ========== Requests ==========

class StartRequest(BaseModel):
    """Request model for starting an auction."""
    strategy: str = Field('random', description=f"Shuffle strategy, one of {', '.join(STRATEGY_MODES)}")
    tier_order: Optional[List[str]] = Field(None, description="Tier ids in auction order (tier-ordered)")
    groups: Optional[List[List[str]]] = Field(None, description="Tier id groups in auction order (custom-mix)")
    seed: Optional[int] = Field(None, description="Seed for a reproducible shuffle")


class ActionRequest(BaseModel):
    """Operator action on the current item."""
    action: str = Field(..., description=f"One of {', '.join(ACTIONS)}")
    team_id: Optional[str] = Field(None, description="Buying team id or name (SOLD)")
    price: Optional[int] = Field(None, ge=0, description="Sale price; defaults to the tier base price (SOLD)")


class BidRequest(BaseModel):
    """Captain bid for the open round."""
    team: str = Field(..., description="Bidding team name")
    item_id: str = Field(..., description="Item the bid targets")
    amount: int = Field(..., ge=0, description="Bid amount in coins")


# ========== Responses ==========

class SaveStatusResponse(BaseModel):
    saved: bool
    last_error: Optional[str] = None
    last_saved_at: Optional[str] = None


class SessionStateResponse(BaseModel):
    """Snapshot of the session plus derived fields."""
    session_id: str
    phase: str
    current_item: Optional[str] = None
    remaining: int = Field(description="Items left in the queue, current one included")
    save_status: SaveStatusResponse
    runtime_state: Dict = Field(description="Snapshot in the persisted schema")


class TeamResponse(BaseModel):
    team_id: str
    team_name: str
    players: int
    spent: int
    coins: int
    starting_budget: int


class TeamsResponse(BaseModel):
    session_id: str
    teams: List[TeamResponse]


class RoundResponse(BaseModel):
    session_id: str
    item_id: Optional[str] = None
    round: Optional[Dict] = None


class BidsResponse(BaseModel):
    session_id: str
    item_id: Optional[str] = None
    bids: Dict[str, Dict] = Field(default_factory=dict)


# ========== Serializer Functions ==========

def serialize_state(engine: AuctionEngine) -> SessionStateResponse:
    """Build the state response from an engine."""
    snapshot = engine.snapshot()
    queue = snapshot['auctionQueue']
    cursor = snapshot['auctionIndex']
    status = engine.save_status

    return SessionStateResponse(
        session_id=engine.session_id,
        phase=engine.phase.value,
        current_item=queue[cursor] if snapshot['auctionStarted'] and cursor < len(queue) else None,
        remaining=max(len(queue) - cursor, 0),
        save_status=SaveStatusResponse(
            saved=status.saved,
            last_error=status.last_error,
            last_saved_at=status.last_saved_at.isoformat() if status.last_saved_at else None,
        ),
        runtime_state=snapshot,
    )


def serialize_teams(engine: AuctionEngine) -> TeamsResponse:
    """Build the team summary response from the engine's DataFrame."""
    df = engine.team_summary()
    teams = [
        TeamResponse(
            team_id=str(row['team_id']),
            team_name=str(row['team_name']),
            players=int(row['players']),
            spent=int(row['spent']),
            coins=int(row['coins']),
            starting_budget=int(row['starting_budget']),
        )
        for row in df.to_dict('records')
    ]
    return TeamsResponse(session_id=engine.session_id, teams=teams)
