import json
import os
import shlex
import sys
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Run the app against the scripted engine and a throwaway pattern store
_FAKE_ENGINE = shlex.join([sys.executable, str(Path(__file__).parent / "fake_uci.py")])
os.environ.setdefault("ENGINE_COMMANDS", json.dumps([_FAKE_ENGINE]))
os.environ.setdefault("PATTERN_DB_PATH", ":memory:")
os.environ.setdefault("AUTO_LEARN", "false")

from fastapi.testclient import TestClient

from mimic import main
from mimic.engine import EngineNotReadyError, SearchSupersededError
from mimic.main import app

START_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


@pytest.fixture()
def client():
    with TestClient(app) as c:
        # Wait for background init tasks to finish (engine, patterns)
        deadline = time.monotonic() + 30
        while time.monotonic() < deadline:
            resp = c.get("/api/status")
            if resp.status_code == 200 and resp.json().get("ready"):
                break
            time.sleep(0.2)
        yield c


def _new_game(client, **body) -> str:
    response = client.post("/api/game/new", json=body or None)
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_status_reports_tasks(client):
    data = client.get("/api/status").json()
    assert data["ready"] is True
    assert data["engine_ready"] is True
    assert data["tasks"]["engine"]["state"] == "done"
    assert "FakeFish" in data["tasks"]["engine"]["detail"]
    assert data["tasks"]["patterns"]["state"] == "done"


def test_new_game(client):
    response = client.post("/api/game/new")
    assert response.status_code == 200
    data = response.json()
    assert "session_id" in data
    assert data["fen"] == START_FEN
    assert data["status"] == "playing"


def test_new_game_as_black_gets_opening_move(client):
    response = client.post("/api/game/new", json={"play_as": "black", "persona": "easy"})
    assert response.status_code == 200
    data = response.json()
    assert data["opponent_move_uci"] is not None
    assert data["fen"] != START_FEN


def test_new_game_bad_color(client):
    response = client.post("/api/game/new", json={"play_as": "purple"})
    assert response.status_code == 400


def test_move_and_reply(client):
    session_id = _new_game(client)
    response = client.post("/api/game/move", json={"session_id": session_id, "move": "e2e4"})
    assert response.status_code == 200
    data = response.json()
    assert data["player_move_san"] == "e4"
    assert data["opponent_move_san"] is not None
    assert len(data["history"]) == 2


def test_illegal_move(client):
    session_id = _new_game(client)
    response = client.post("/api/game/move", json={"session_id": session_id, "move": "e2e5"})
    assert response.status_code == 400


def test_unknown_session(client):
    response = client.post("/api/game/move", json={"session_id": "missing", "move": "e2e4"})
    assert response.status_code == 404


def test_advice(client):
    session_id = _new_game(client)
    response = client.post("/api/game/advice", json={"session_id": session_id})
    assert response.status_code == 200
    data = response.json()
    assert data["uci"] == "e2e4"
    assert data["reason"] == "Occupies the center of the board and gains space."


def test_move_for_me(client):
    session_id = _new_game(client)
    response = client.post("/api/game/move-for-me", json={"session_id": session_id})
    assert response.status_code == 200
    assert len(response.json()["history"]) == 2


def test_undo(client):
    session_id = _new_game(client)
    client.post("/api/game/move", json={"session_id": session_id, "move": "d2d4"})
    response = client.post("/api/game/undo", json={"session_id": session_id})
    assert response.status_code == 200
    assert response.json()["fen"] == START_FEN

    response = client.post("/api/game/undo", json={"session_id": session_id})
    assert response.status_code == 400


def test_engine_unavailable_is_503(client, monkeypatch):
    broken = MagicMock()
    broken.analyse = AsyncMock(side_effect=EngineNotReadyError("Engine not ready"))
    monkeypatch.setattr(main.games, "_engine", broken)
    session_id = _new_game(client)
    response = client.post("/api/game/advice", json={"session_id": session_id})
    assert response.status_code == 503


def test_superseded_search_is_409(client, monkeypatch):
    busy = MagicMock()
    busy.analyse = AsyncMock(side_effect=SearchSupersededError("Search superseded by a newer request"))
    monkeypatch.setattr(main.games, "_engine", busy)
    session_id = _new_game(client)
    response = client.post("/api/game/move", json={"session_id": session_id, "move": "e2e4"})
    assert response.status_code == 409

    # The rejected move was not kept
    monkeypatch.undo()
    response = client.post("/api/game/move", json={"session_id": session_id, "move": "e2e4"})
    assert response.status_code == 200
    assert len(response.json()["history"]) == 2


def test_review_flow(client):
    session_id = _new_game(client)
    client.post("/api/game/move", json={"session_id": session_id, "move": "e2e4"})

    response = client.post("/api/review/start", json={"session_id": session_id})
    assert response.status_code == 200
    data = response.json()
    assert data["cursor"] == 1
    assert data["label"] == "1..."
    assert data["moves"][0] == "e4"

    response = client.post("/api/review/seek", json={"session_id": session_id, "target": "start"})
    data = response.json()
    assert data["cursor"] == -1
    assert data["label"] == "Start"
    assert data["fen"] == START_FEN
    assert data["advice"]["reason"] == "Starting position."

    response = client.post("/api/review/jump", json={"session_id": session_id, "index": 0})
    assert response.json()["label"] == "1."

    response = client.get("/api/review/state", params={"session_id": session_id})
    assert response.status_code == 200
    assert response.json()["cursor"] == 0

    # Moves are refused while reviewing
    response = client.post("/api/game/move", json={"session_id": session_id, "move": "d2d4"})
    assert response.status_code == 400

    response = client.post("/api/review/seek", json={"session_id": session_id, "target": "up"})
    assert response.status_code == 400

    response = client.post("/api/review/end", json={"session_id": session_id})
    assert response.status_code == 200


def test_review_not_started(client):
    session_id = _new_game(client)
    response = client.get("/api/review/state", params={"session_id": session_id})
    assert response.status_code == 400
