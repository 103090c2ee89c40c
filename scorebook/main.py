import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from scorebook.config import settings
from scorebook.engine.match_controller import MatchController
from scorebook.errors import (
    AwaitingInput,
    InningsClosed,
    NoActiveBowler,
    NothingToUndo,
    ScoringError,
)
from scorebook.models import Lineup, MatchSetup, Position

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# One match per process; requests are applied one at a time
controller = MatchController()
controller_lock = asyncio.Lock()
subscribers: list[asyncio.Queue] = []

# State errors mean "not now" rather than "bad value"
_CONFLICT_ERRORS = (AwaitingInput, InningsClosed, NoActiveBowler, NothingToUndo)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """App startup/shutdown lifecycle."""
    logger.info("Scorebook starting up")
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Scorebook",
    description="Ball-by-ball scoring for two-innings limited-overs cricket",
    lifespan=lifespan,
)


@app.exception_handler(ScoringError)
async def scoring_error_handler(request: Request, exc: ScoringError):
    status_code = 409 if isinstance(exc, _CONFLICT_ERRORS) else 422
    return JSONResponse(
        status_code=status_code,
        content={"kind": exc.kind, "message": exc.message},
    )


# --------------------------------------------------------------------------- #
#  Request bodies
# --------------------------------------------------------------------------- #


class InningsRequest(Lineup):
    overs_limit: Optional[int] = None


class BowlerRequest(BaseModel):
    name: str = ""


class RetireRequest(BaseModel):
    which: Position = Position.STRIKER
    new_batter: str = Field("", description="Replacement batter")


# --------------------------------------------------------------------------- #
#  Snapshots of the live match for clients
# --------------------------------------------------------------------------- #


def state_payload() -> dict:
    """Everything a scoring screen needs, serialized."""
    st = controller.state
    s = st.score
    return {
        "phase": st.phase.value,
        "pending": st.pending.value if st.pending else None,
        "score": s.model_dump(),
        "overs": s.overs_display,
        "crr": s.current_run_rate,
        "rrr": s.required_run_rate,
        "runs_needed": s.runs_needed,
        "balls_remaining": s.balls_remaining,
        "striker": st.striker,
        "non_striker": st.non_striker,
        "bowler": st.bowler,
        "batters": [b.model_dump() for b in controller.ordered_batters()],
        "bowlers": [b.model_dump() for b in st.bowlers.values()],
        "extras": {**st.extras.model_dump(), "total": st.extras.total},
        "current_over": [b.model_dump() for b in st.current_over],
        "partnership": st.partnership.model_dump() if st.partnership else None,
        "fall_of_wickets": [f.model_dump() for f in st.fall_of_wickets],
        "known_bowlers": list(controller.known_bowlers),
        "can_undo": len(controller.history) > 0,
        "result": st.result.model_dump() if st.result else None,
    }


async def broadcast(event_type: str, data: dict):
    """Push an SSE event to all connected subscribers."""
    event = {
        "event": event_type,
        "data": json.dumps(data, default=str),
    }
    for queue in subscribers:
        await queue.put(event)


async def _publish_update() -> dict:
    payload = state_payload()
    await broadcast("score_update", payload)
    for m in controller.last_milestones:
        await broadcast("milestone", m.model_dump())
    if controller.result is not None:
        await broadcast("match_end", controller.result.model_dump())
    return payload


# --------------------------------------------------------------------------- #
#  Endpoints
# --------------------------------------------------------------------------- #


@app.post("/api/match", status_code=201)
async def create_match(setup: MatchSetup):
    """Set up a new match. Any match in progress is discarded."""
    global controller
    async with controller_lock:
        if setup.overs_limit is None and settings.default_overs_limit:
            setup = setup.model_copy(update={"overs_limit": settings.default_overs_limit})
        controller = MatchController(setup=setup)
        logger.info(f"New match: {setup.team1} vs {setup.team2}")
        return {"setup": setup.model_dump(), "first_batting": setup.first_batting}


@app.post("/api/innings")
async def start_innings(req: InningsRequest):
    async with controller_lock:
        controller.start_innings(req, overs_limit=req.overs_limit)
        return await _publish_update()


@app.post("/api/deliveries")
async def record_delivery(payload: dict = Body(...)):
    """Score one delivery, e.g. {"type": "run", "runs": 4} or {"type": "wide", "runs": 2}."""
    async with controller_lock:
        controller.process(payload)
        return await _publish_update()


@app.post("/api/undo")
async def undo():
    async with controller_lock:
        controller.undo()
        return await _publish_update()


@app.post("/api/bowler")
async def select_bowler(req: BowlerRequest):
    async with controller_lock:
        controller.select_bowler(req.name)
        return await _publish_update()


@app.post("/api/bowler/change")
async def change_bowler():
    async with controller_lock:
        controller.request_bowler_change()
        return await _publish_update()


@app.post("/api/swap")
async def swap_strike():
    async with controller_lock:
        controller.swap_strike()
        return await _publish_update()


@app.post("/api/retire")
async def retire(req: RetireRequest):
    async with controller_lock:
        controller.retire(req.which, req.new_batter)
        return await _publish_update()


@app.post("/api/second-innings")
async def start_second_innings(lineup: Lineup):
    async with controller_lock:
        controller.start_second_innings(lineup)
        return await _publish_update()


@app.get("/api/state")
async def get_state():
    return state_payload()


@app.get("/api/summary/{innings}")
async def get_summary(innings: int):
    summary = controller.get_summary(innings)
    return {
        **summary.model_dump(),
        "overs": summary.overs_display,
        "score": summary.score_str,
        "extras_total": summary.extras.total,
    }


@app.get("/api/stream")
async def stream(request: Request):
    """SSE endpoint that streams score updates and milestones."""
    queue: asyncio.Queue = asyncio.Queue()
    subscribers.append(queue)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=settings.stream_keepalive_seconds
                    )
                    yield event
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "ping", "data": "{}"}
        finally:
            subscribers.remove(queue)

    return EventSourceResponse(event_generator())
