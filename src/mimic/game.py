from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field

import chess

from mimic.advisor import Advice, advise_move
from mimic.engine import AnalysisSample, UciClient
from mimic.opponent import MoveDecision, select_move
from mimic.patterns import PatternStore
from mimic.personas import MOVE_FOR_ME_DEPTH, PERSONAS, PersonaProfile, get_persona
from mimic.review import ReviewNavigator

logger = logging.getLogger(__name__)

# The opponent waits for at least this depth before committing to a move.
MIN_DECISION_DEPTH = 10


@dataclass
class GameState:
    board: chess.Board = field(default_factory=chess.Board)
    persona: PersonaProfile = field(default_factory=lambda: get_persona("normal"))
    player_color: chess.Color = chess.WHITE
    review: ReviewNavigator | None = None
    thinking: bool = False      # an engine request for this game is in flight


def _game_status(board: chess.Board) -> str:
    if board.is_checkmate():
        return "checkmate"
    if board.is_stalemate():
        return "stalemate"
    if board.is_insufficient_material() or board.can_claim_draw():
        return "draw"
    return "playing"


def _game_result(board: chess.Board) -> str | None:
    if board.is_checkmate():
        return "0-1" if board.turn == chess.WHITE else "1-0"
    if board.is_stalemate() or board.is_insufficient_material() or board.can_claim_draw():
        return "1/2-1/2"
    return None


def _san_history(board: chess.Board) -> list[str]:
    replay = board.root()
    history = []
    for move in board.move_stack:
        history.append(replay.san(move))
        replay.push(move)
    return history

class GameManager:
    def __init__(
        self,
        engine: UciClient,
        patterns: PatternStore | None = None,
        rng: random.Random | None = None,
        advice_depth: int = 12,
        advice_min_depth: int = 10,
    ):
        self._engine = engine
        self._patterns = patterns
        self._rng = rng or random.Random()
        self._advice_depth = advice_depth
        self._advice_min_depth = advice_min_depth
        self._sessions: dict[str, GameState] = {}
        # One engine serves every session; a new search would cancel the running one.
        self._engine_lock = asyncio.Lock()

    def new_game(self, persona: str = "normal", play_as: str = "white") -> tuple[str, str, str]:
        """Create a new game session. Returns (session_id, fen, status)."""
        if play_as not in ("white", "black"):
            raise ValueError(f"Invalid color: {play_as}")
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = GameState(
            persona=get_persona(persona),
            player_color=chess.WHITE if play_as == "white" else chess.BLACK,
        )
        return session_id, chess.STARTING_FEN, "playing"

    def get_game(self, session_id: str) -> GameState | None:
        return self._sessions.get(session_id)

    def _require(self, session_id: str) -> GameState:
        state = self._sessions.get(session_id)
        if state is None:
            raise KeyError(f"Session not found: {session_id}")
        return state

    def _require_idle(self, state: GameState) -> None:
        if state.review is not None:
            raise ValueError("Game is in review mode")
        if state.thinking:
            raise ValueError("Opponent is still thinking")

    async def _analyse(self, fen: str, depth: int, min_depth: int) -> AnalysisSample:
        async with self._engine_lock:
            return await self._engine.analyse(fen, depth, min_depth=min_depth)

    async def _decide(self, board: chess.Board, persona: PersonaProfile, depth: int) -> MoveDecision:
        analysis = await self._analyse(board.fen(), depth, max(MIN_DECISION_DEPTH, depth))
        return await select_move(
            board, analysis, persona, patterns=self._patterns, rng=self._rng
        )

    async def _reply(self, state: GameState, board: chess.Board) -> MoveDecision | None:
        """The persona's move for ``board``, or None if it is not its turn."""
        if board.turn == state.player_color or _game_status(board) != "playing":
            return None
        decision = await self._decide(board.copy(), state.persona, state.persona.search_depth)
        logger.info("Opponent (%s) plays %s via %s", state.persona.name, decision.san, decision.method)
        return decision

    @staticmethod
    def _commit(state: GameState, fen: str, moves: list[chess.Move]) -> None:
        """Push ``moves`` onto the live board, which must still be at ``fen``."""
        board = state.board
        if board.fen() != fen:
            raise ValueError("Board changed while the engine was thinking")
        for move in moves:
            board.push(move)

    def _snapshot(self, state: GameState, **extra) -> dict:
        board = state.board
        return {
            "fen": board.fen(),
            "status": _game_status(board),
            "result": _game_result(board),
            "history": _san_history(board),
            **extra,
        }

    async def opponent_move(self, session_id: str) -> MoveDecision | None:
        """Let the persona move if it is its turn and the game is running."""
        state = self._require(session_id)
        self._require_idle(state)
        fen = state.board.fen()
        state.thinking = True
        try:
            decision = await self._reply(state, state.board.copy())
        finally:
            state.thinking = False
        if decision is not None:
            self._commit(state, fen, [chess.Move.from_uci(decision.uci)])
        return decision

    async def make_move(self, session_id: str, move_uci: str) -> dict:
        """Apply the player's move together with the opponent's reply.

        Nothing is committed until the reply is known, so a failed engine
        request leaves the game exactly as it was.
        """
        state = self._require(session_id)
        self._require_idle(state)
        board = state.board
        if board.turn != state.player_color:
            raise ValueError("Not your turn")

        try:
            move = chess.Move.from_uci(move_uci)
        except (chess.InvalidMoveError, ValueError) as e:
            raise ValueError(f"Invalid move format: {move_uci}") from e
        if move not in board.legal_moves:
            raise ValueError(f"Illegal move: {move_uci}")

        fen = board.fen()
        player_san = board.san(move)
        after = board.copy()
        after.push(move)

        state.thinking = True
        try:
            decision = await self._reply(state, after)
        finally:
            state.thinking = False

        moves = [move]
        if decision is not None:
            moves.append(chess.Move.from_uci(decision.uci))
        self._commit(state, fen, moves)
        return self._snapshot(
            state,
            player_move_san=player_san,
            opponent_move_uci=decision.uci if decision else None,
            opponent_move_san=decision.san if decision else None,
            opponent_method=decision.method if decision else None,
        )

    async def advise(self, session_id: str) -> Advice | None:
        """Explain the engine's suggestion for the player's current position."""
        state = self._require(session_id)
        board = state.board.copy()
        analysis = await self._analyse(board.fen(), self._advice_depth, self._advice_min_depth)
        return advise_move(board, analysis)

    async def move_for_me(self, session_id: str) -> dict:
        """Play the strongest in-style move on the player's behalf."""
        state = self._require(session_id)
        self._require_idle(state)
        board = state.board
        if board.turn != state.player_color:
            raise ValueError("Not your turn")
        if _game_status(board) != "playing":
            raise ValueError("Game is over")

        fen = board.fen()
        after = board.copy()
        state.thinking = True
        try:
            decision = await self._decide(after.copy(), PERSONAS["master"], MOVE_FOR_ME_DEPTH)
            after.push(chess.Move.from_uci(decision.uci))
            reply = await self._reply(state, after)
        finally:
            state.thinking = False

        moves = [chess.Move.from_uci(decision.uci)]
        if reply is not None:
            moves.append(chess.Move.from_uci(reply.uci))
        self._commit(state, fen, moves)
        return self._snapshot(
            state,
            player_move_san=decision.san,
            opponent_move_uci=reply.uci if reply else None,
            opponent_move_san=reply.san if reply else None,
            opponent_method=reply.method if reply else None,
        )

    def undo(self, session_id: str) -> dict:
        """Take back the opponent's reply and the player's move."""
        state = self._require(session_id)
        self._require_idle(state)
        board = state.board
        if not board.move_stack:
            raise ValueError("Nothing to undo")
        board.pop()
        if board.move_stack and board.turn != state.player_color:
            board.pop()
        return self._snapshot(state)

    # -- review -------------------------------------------------------------
    # Navigation starts engine searches, so it waits for the engine like any
    # other request.

    async def start_review(self, session_id: str, on_advice=None) -> ReviewNavigator:
        state = self._require(session_id)
        self._require_idle(state)
        navigator = ReviewNavigator(
            _san_history(state.board),
            start_fen=state.board.root().fen(),
            engine=self._engine,
            on_advice=on_advice,
            depth=self._advice_depth,
            min_depth=self._advice_min_depth,
        )
        state.review = navigator
        async with self._engine_lock:
            navigator.start()
        return navigator

    def _require_review(self, session_id: str) -> ReviewNavigator:
        state = self._require(session_id)
        if state.review is None:
            raise ValueError("Review not started")
        return state.review

    async def review_seek(self, session_id: str, target: str) -> ReviewNavigator:
        navigator = self._require_review(session_id)
        async with self._engine_lock:
            navigator.seek(target)
        return navigator

    async def review_jump(self, session_id: str, index: int) -> ReviewNavigator:
        navigator = self._require_review(session_id)
        async with self._engine_lock:
            navigator.jump(index)
        return navigator

    def end_review(self, session_id: str) -> None:
        state = self._require(session_id)
        state.review = None
