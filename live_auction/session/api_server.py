"""
FastAPI server for live auction control.

Provides HTTP endpoints for the operator console (start, sell, unsold,
defer, undo), read endpoints for state, teams, the open round and bids, and
a websocket that streams snapshots and bid boards to observers.
"""

import asyncio
import logging

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from ..shuffle import CUSTOM_MIX, TierMix, make_rng, strategy_from_options
from .adapters import ConfigNotFoundError
from .api_serializers import (
    ActionRequest,
    BidRequest,
    BidsResponse,
    RoundResponse,
    SessionStateResponse,
    StartRequest,
    TeamsResponse,
    serialize_state,
    serialize_teams,
)
from .bids import BidRejected
from .engine import AuctionEngine, EngineRegistry, SessionBusyError
from .state_machine import InvariantViolation

logger = logging.getLogger(__name__)


def create_app(registry: EngineRegistry) -> FastAPI:
    """
    Create the API app around an engine registry.

    Args:
        registry: Registry providing one engine per auction

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Live Auction API",
        description="Operator and observer endpoints for live auctions",
        version="1.0.0"
    )

    # CORS middleware for web UI access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_engine(session_id: str) -> AuctionEngine:
        try:
            return registry.get(session_id)
        except ConfigNotFoundError as e:
            logger.warning(f"Unknown auction requested: {session_id}")
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok", "sessions": len(registry.session_ids())}

    @app.get("/auctions/{session_id}/state", response_model=SessionStateResponse)
    def get_state(session_id: str):
        """
        Get the current runtime state of an auction.

        Raises:
            404 Not Found: If the auction does not exist
        """
        try:
            return serialize_state(get_engine(session_id))
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to get state for {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to get state: {e}")

    @app.post("/auctions/{session_id}/start", response_model=SessionStateResponse)
    def start_auction(session_id: str, request: StartRequest):
        """
        Generate the queue and go live.

        Raises:
            400 Bad Request: Unknown strategy, bad tier groups, already started or too few teams
            404 Not Found: If the auction does not exist
            409 Conflict: If another action is in progress
        """
        try:
            engine = get_engine(session_id)
            logger.info(f"Starting auction {session_id}: strategy={request.strategy}, seed={request.seed}")

            if request.strategy == CUSTOM_MIX and request.groups:
                TierMix(request.groups)
            strategy = strategy_from_options(request.strategy, request.tier_order, request.groups)
            rng = make_rng(request.seed) if request.seed is not None else None

            engine.start(strategy, rng)
            return serialize_state(engine)

        except HTTPException:
            raise
        except (InvariantViolation, ValueError) as e:
            logger.warning(f"Cannot start auction {session_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except SessionBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            logger.error(f"Failed to start auction {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to start auction: {e}")

    @app.post("/auctions/{session_id}/actions", response_model=SessionStateResponse)
    def apply_action(session_id: str, request: ActionRequest):
        """
        Apply an operator action to the current item.

        Raises:
            400 Bad Request: Unknown action, missing team, or action not allowed now
            404 Not Found: If the auction does not exist
            409 Conflict: If another action is in progress
        """
        try:
            engine = get_engine(session_id)
            action = request.action.upper()

            if action == 'SOLD':
                if not request.team_id:
                    raise HTTPException(status_code=400, detail="team_id is required to sell")
                engine.sell(request.team_id, request.price)
            elif action == 'UNSOLD':
                engine.mark_unsold()
            elif action == 'DEFER':
                engine.defer()
            elif action == 'UNDO':
                engine.undo()
            else:
                raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")

            return serialize_state(engine)

        except HTTPException:
            raise
        except InvariantViolation as e:
            logger.warning(f"Rejected {request.action} on {session_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        except SessionBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            logger.error(f"Failed to apply {request.action} on {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to apply action: {e}")

    @app.get("/auctions/{session_id}/round", response_model=RoundResponse)
    def get_round(session_id: str):
        """Get the durable open-round record (what bidding clients see)."""
        try:
            engine = get_engine(session_id)
            record = engine.persistence.get_open_round(session_id)
            return RoundResponse(
                session_id=session_id,
                item_id=engine.current_item(),
                round=record,
            )
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to get round for {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to get round: {e}")

    @app.get("/auctions/{session_id}/bids", response_model=BidsResponse)
    def get_bids(session_id: str):
        """Get the bid board of the open round."""
        try:
            engine = get_engine(session_id)
            return BidsResponse(session_id=session_id, item_id=engine.bids.item_id, bids=engine.bids.to_dict())
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to get bids for {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to get bids: {e}")

    @app.post("/auctions/{session_id}/bids", response_model=BidsResponse)
    def place_bid(session_id: str, request: BidRequest):
        """
        Submit a captain's bid for the open round.

        Raises:
            400 Bad Request: If no round is open or the bid targets another item
            409 Conflict: If an operator action is in progress
        """
        try:
            engine = get_engine(session_id)
            engine.submit_bid(request.team, request.item_id, request.amount)
            return BidsResponse(session_id=session_id, item_id=engine.bids.item_id, bids=engine.bids.to_dict())
        except HTTPException:
            raise
        except BidRejected as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SessionBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except Exception as e:
            logger.error(f"Failed to place bid on {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to place bid: {e}")

    @app.get("/auctions/{session_id}/teams", response_model=TeamsResponse)
    def get_teams(session_id: str):
        """Get budget and roster size per team."""
        try:
            return serialize_teams(get_engine(session_id))
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Failed to get teams for {session_id}: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to get teams: {e}")

    @app.websocket("/auctions/{session_id}/ws")
    async def auction_socket(ws: WebSocket, session_id: str):
        """Stream auction-state and auction-bids events to an observer."""
        try:
            # Opening an engine may fetch config over HTTP; keep it off the event loop
            engine = await run_in_threadpool(registry.get, session_id)
        except ConfigNotFoundError:
            await ws.close(code=4404)
            return

        await ws.accept()
        loop = asyncio.get_running_loop()
        outbox: asyncio.Queue = asyncio.Queue()

        def relay(event: str):
            # Broadcasts arrive on the engine's worker thread
            def push(payload: dict):
                loop.call_soon_threadsafe(outbox.put_nowait, {'event': event, 'data': payload})
            return push

        subscription = registry.broadcaster.subscribe(
            session_id, relay('auction-state'), relay('auction-bids')
        )

        async def pump():
            while True:
                message = await outbox.get()
                await ws.send_json(message)

        # Start from what observers were last sent; later broadcasts are already queued
        await ws.send_json({'event': 'auction-state', 'data': engine.published_snapshot()})
        sender = asyncio.create_task(pump())
        try:
            while True:
                # Observers only listen; receiving detects the disconnect
                await ws.receive_text()
        except WebSocketDisconnect:
            logger.debug(f"Observer disconnected from auction-{session_id}")
        finally:
            sender.cancel()
            subscription.unsubscribe()

    @app.on_event("shutdown")
    def shutdown():
        registry.close_all()

    return app
