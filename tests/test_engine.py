"""Tests for UciClient command handling, driven line by line."""

import asyncio
import logging

import chess
import pytest

from mimic.engine import (
    AnalysisSample,
    EngineNotReadyError,
    EngineState,
    SearchSupersededError,
    UciClient,
)

START = chess.STARTING_FEN
AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeStdin:
    def __init__(self):
        self.lines: list[str] = []

    def write(self, data: bytes) -> None:
        self.lines.extend(data.decode().splitlines())


class FakeProcess:
    """Just enough of asyncio.subprocess.Process for the client."""

    def __init__(self):
        self.stdin = FakeStdin()
        self.returncode = None

    async def wait(self) -> int:
        self.returncode = 0
        return 0

    def kill(self) -> None:
        self.returncode = -9


def make_client(state: EngineState = EngineState.READY, **kwargs) -> UciClient:
    client = UciClient(["fake"], **kwargs)
    client._process = FakeProcess()
    client._state = state
    return client


def sent(client: UciClient) -> list[str]:
    return client._process.stdin.lines


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------

def test_evaluate_before_init_fails_fast():
    client = UciClient(["fake"])
    assert client.state is EngineState.UNINITIALIZED
    with pytest.raises(EngineNotReadyError):
        client.evaluate(START, 10, lambda s: None)


def test_stop_before_init_fails_fast():
    with pytest.raises(EngineNotReadyError):
        UciClient(["fake"]).stop()


@pytest.mark.parametrize("state", [EngineState.UNAVAILABLE, EngineState.TERMINATED])
def test_evaluate_in_dead_states_fails_fast(state):
    client = make_client(state)
    with pytest.raises(EngineNotReadyError):
        client.evaluate(START, 10, lambda s: None)


def test_evaluate_rejects_invalid_fen():
    client = make_client()
    with pytest.raises(ValueError):
        client.evaluate("not a fen", 10, lambda s: None)
    assert sent(client) == []


def test_evaluate_rejects_illegal_position():
    client = make_client()
    with pytest.raises(ValueError, match="Illegal position"):
        client.evaluate("8/8/8/8/8/8/6k1/r3K3 b - - 0 1", 10, lambda s: None)


# ---------------------------------------------------------------------------
# Command queue
# ---------------------------------------------------------------------------

def test_commands_before_handshake_are_buffered_and_flushed_in_order():
    client = make_client(EngineState.AWAITING_HANDSHAKE, options={"Hash": 64})
    client.evaluate(START, 10, lambda s: None)
    assert sent(client) == []

    client._handle_line("uciok")

    assert sent(client) == [
        "setoption name Hash value 64",
        "stop",
        f"position fen {START}",
        "go depth 10",
    ]
    assert client.state is EngineState.EVALUATING
    assert client.is_ready


def test_duplicate_uciok_does_not_resend():
    client = make_client(EngineState.AWAITING_HANDSHAKE)
    client.stop()
    client._handle_line("uciok")
    client._handle_line("uciok")
    assert sent(client) == ["stop"]


def test_evaluate_when_ready_sends_stop_position_go():
    client = make_client()
    client.evaluate(AFTER_E4, 12, lambda s: None)
    assert sent(client) == ["stop", f"position fen {AFTER_E4}", "go depth 12"]
    assert client.state is EngineState.EVALUATING


def test_id_name_is_recorded():
    client = make_client(EngineState.AWAITING_HANDSHAKE)
    client._handle_line("id name Stockfish 16")
    assert client.engine_name == "Stockfish 16"


# ---------------------------------------------------------------------------
# Sample delivery
# ---------------------------------------------------------------------------

def test_samples_reach_registered_callback():
    client = make_client()
    samples: list[AnalysisSample] = []
    client.evaluate(START, 10, samples.append)
    client._handle_line("info depth 1 score cp 20 pv e2e4")
    client._handle_line("info depth 2 score cp 24 pv d2d4 d7d5")
    assert [s.depth for s in samples] == [1, 2]
    assert client.last_sample.best_move == "d2d4"


def test_unrecognized_lines_are_ignored():
    client = make_client()
    samples = []
    client.evaluate(START, 10, samples.append)
    for line in ("info string hello", "readyok", "option name Hash type spin", "garbage", ""):
        client._handle_line(line)
    assert samples == []


def test_stale_search_lines_never_reach_new_callback():
    client = make_client()
    first: list[AnalysisSample] = []
    second: list[AnalysisSample] = []

    client.evaluate(START, 20, first.append)
    client._handle_line("info depth 10 score cp 30 pv e2e4 e7e5")
    client.evaluate(AFTER_E4, 20, second.append)
    # The first search is still draining until its bestmove arrives.
    client._handle_line("info depth 11 score cp 35 pv d2d4")
    client._handle_line("bestmove d2d4")
    client._handle_line("info depth 10 score cp -20 pv e7e5")
    client._handle_line("info depth 5 score cp -10 pv c7c5")

    assert [s.depth for s in first] == [10]
    assert [s.depth for s in second] == [10, 5]
    # Last write wins, even when depth goes backwards.
    assert second[-1].best_move == "c7c5"
    assert client.last_sample.depth == 5


def test_bestmove_of_current_search_returns_to_ready():
    client = make_client()
    client.evaluate(START, 5, lambda s: None)
    client._handle_line("info depth 5 score cp 20 pv e2e4")
    client._handle_line("bestmove e2e4 ponder e7e5")
    assert client.state is EngineState.READY
    assert client.last_best_move == "e2e4"


def test_unsolicited_bestmove_is_ignored():
    client = make_client()
    client._handle_line("bestmove e2e4")
    assert client.state is EngineState.READY
    assert client.last_best_move is None


def test_callback_errors_are_logged(caplog):
    client = make_client()

    def explode(sample):
        raise RuntimeError("boom")

    client.evaluate(START, 5, explode)
    with caplog.at_level(logging.ERROR, logger="mimic.engine"):
        client._handle_line("info depth 1 score cp 20 pv e2e4")
    assert client.last_sample.depth == 1
    assert "callback failed" in caplog.text


# ---------------------------------------------------------------------------
# analyse
# ---------------------------------------------------------------------------

async def test_analyse_waits_for_min_depth():
    client = make_client()
    task = asyncio.create_task(client.analyse(START, 12, min_depth=10))
    await asyncio.sleep(0)

    client._handle_line("info depth 8 score cp 20 pv e2e4")
    await asyncio.sleep(0)
    assert not task.done()

    client._handle_line("info depth 10 score cp 25 pv d2d4 d7d5")
    sample = await task
    assert sample.depth == 10
    assert sample.best_move == "d2d4"


async def test_analyse_resolves_when_search_ends_early():
    client = make_client()
    task = asyncio.create_task(client.analyse(START, 12))
    await asyncio.sleep(0)
    client._handle_line("info depth 3 score mate 1 pv d1h5")
    client._handle_line("bestmove d1h5")
    sample = await task
    assert sample.depth == 3
    assert sample.score_mate == 1


async def test_analyse_uses_bestmove_when_no_info_arrived():
    client = make_client()
    task = asyncio.create_task(client.analyse(START, 12))
    await asyncio.sleep(0)
    client._handle_line("bestmove g1f3")
    sample = await task
    assert sample.best_move == "g1f3"
    assert sample.depth == 0


async def test_newer_request_supersedes_pending_analyse():
    client = make_client()
    task = asyncio.create_task(client.analyse(START, 12))
    await asyncio.sleep(0)
    client.evaluate(AFTER_E4, 12, lambda s: None)
    with pytest.raises(SearchSupersededError):
        await task


# ---------------------------------------------------------------------------
# quit
# ---------------------------------------------------------------------------

async def test_quit_resets_and_later_evaluate_fails_fast():
    client = make_client()
    process = client._process
    await client.quit()

    assert process.stdin.lines[-1] == "quit"
    assert client.state is EngineState.UNINITIALIZED
    with pytest.raises(EngineNotReadyError):
        client.evaluate(START, 10, lambda s: None)


async def test_quit_fails_pending_analyse():
    client = make_client()
    task = asyncio.create_task(client.analyse(START, 12))
    await asyncio.sleep(0)
    await client.quit()
    with pytest.raises(EngineNotReadyError):
        await task
