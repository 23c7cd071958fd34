import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from mimic.config import Settings
from mimic.engine import EngineNotReadyError, SearchSupersededError, UciClient
from mimic.game import GameManager
from mimic.learning import daily_update
from mimic.patterns import PatternStore
from mimic.review import ReviewNavigator

logger = logging.getLogger(__name__)

settings = Settings()

# --- Initialization status tracking ---

_init_status: dict[str, dict] = {
    "engine": {"state": "pending", "detail": ""},
    "patterns": {"state": "pending", "detail": ""},
}


def _set_status(task: str, state: str, detail: str = "") -> None:
    _init_status[task] = {"state": state, "detail": detail}


def _all_done() -> bool:
    return all(t["state"] in ("done", "failed") for t in _init_status.values())


# --- Service instances ---

engine = UciClient(
    settings.engine_commands,
    options={"Hash": settings.engine_hash_mb, "Threads": settings.engine_threads},
    handshake_timeout=settings.handshake_timeout,
    poll_interval=settings.handshake_poll_interval,
)
patterns = PatternStore(db_path=settings.pattern_db_path)
games = GameManager(
    engine,
    patterns=patterns,
    advice_depth=settings.advice_depth,
    advice_min_depth=settings.advice_min_depth,
)


# --- Background initialization tasks ---

async def _init_engine() -> None:
    _set_status("engine", "running", "Starting analysis engine...")
    ready = await engine.init()
    if ready:
        _set_status("engine", "done", f"{engine.engine_name or 'Engine'} ready")
    else:
        _set_status("engine", "failed", f"Engine unavailable ({engine.state.value})")


async def _init_patterns() -> None:
    _set_status("patterns", "running", "Opening pattern database...")
    try:
        await patterns.start()
        if settings.auto_learn:
            _set_status("patterns", "running", "Learning games...")
            await daily_update(patterns, settings)
        count = await patterns.count_positions()
        _set_status("patterns", "done", f"{count:,} positions learned")
    except Exception as e:
        logger.error("Pattern store init failed: %s", e)
        _set_status("patterns", "failed", str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    for task in _init_status:
        _set_status(task, "pending")
    tasks = [
        asyncio.create_task(_init_engine()),
        asyncio.create_task(_init_patterns()),
    ]
    yield
    for t in tasks:
        t.cancel()
    await patterns.close()
    await engine.quit()


app = FastAPI(title="Mimic Chess", lifespan=lifespan)


# --- Request/Response models ---

class NewGameRequest(BaseModel):
    persona: str = settings.default_persona
    play_as: str = "white"


class SessionRequest(BaseModel):
    session_id: str


class MoveRequest(BaseModel):
    session_id: str
    move: str


class SeekRequest(BaseModel):
    session_id: str
    target: str


class JumpRequest(BaseModel):
    session_id: str
    index: int


# --- Helpers ---

def _review_state(navigator: ReviewNavigator) -> dict:
    advice = navigator.advice
    return {
        "cursor": navigator.cursor,
        "label": navigator.move_label(),
        "fen": navigator.board.fen(),
        "moves": list(navigator.moves),
        "advice": asdict(advice) if advice else None,
    }


def _require_review(session_id: str) -> ReviewNavigator:
    state = games.get_game(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if state.review is None:
        raise HTTPException(status_code=400, detail="Review not started")
    return state.review


async def _call(coro):
    try:
        return await coro
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    except EngineNotReadyError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except SearchSupersededError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Endpoints ---

@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status")
async def status():
    return {
        "ready": _all_done(),
        "engine_ready": engine.is_ready,
        "tasks": _init_status,
    }


@app.post("/api/game/new")
async def new_game(req: NewGameRequest | None = None):
    req = req or NewGameRequest()
    try:
        session_id, fen, game_status = games.new_game(persona=req.persona, play_as=req.play_as)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    result = {"session_id": session_id, "fen": fen, "status": game_status}
    if req.play_as == "black":
        decision = await _call(games.opponent_move(session_id))
        result["fen"] = games.get_game(session_id).board.fen()
        result["opponent_move_uci"] = decision.uci if decision else None
    return result


@app.post("/api/game/move")
async def game_move(req: MoveRequest):
    return await _call(games.make_move(req.session_id, req.move))


@app.post("/api/game/opponent")
async def game_opponent(req: SessionRequest):
    decision = await _call(games.opponent_move(req.session_id))
    return asdict(decision) if decision else None


@app.post("/api/game/advice")
async def game_advice(req: SessionRequest):
    advice = await _call(games.advise(req.session_id))
    return asdict(advice) if advice else None


@app.post("/api/game/move-for-me")
async def game_move_for_me(req: SessionRequest):
    return await _call(games.move_for_me(req.session_id))


@app.post("/api/game/undo")
async def game_undo(req: SessionRequest):
    try:
        return games.undo(req.session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/review/start")
async def review_start(req: SessionRequest):
    navigator = await _call(games.start_review(req.session_id))
    return _review_state(navigator)


@app.post("/api/review/seek")
async def review_seek(req: SeekRequest):
    navigator = await _call(games.review_seek(req.session_id, req.target))
    return _review_state(navigator)


@app.post("/api/review/jump")
async def review_jump(req: JumpRequest):
    navigator = await _call(games.review_jump(req.session_id, req.index))
    return _review_state(navigator)


@app.get("/api/review/state")
async def review_state(session_id: str):
    return _review_state(_require_review(session_id))


@app.post("/api/review/end")
async def review_end(req: SessionRequest):
    try:
        games.end_review(req.session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "ok"}
