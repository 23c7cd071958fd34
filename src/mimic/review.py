"""Post-game review: a cursor over a finished move list.

Every position is rebuilt by replaying the move prefix from the start
position instead of keeping undo state, so a given index always yields the
same board. Each cursor change asks the engine what it would have played one
ply earlier and turns the answer into a critique of the move that was made.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

import chess

from mimic.advisor import STARTING_POSITION_ADVICE, Advice, critique_move
from mimic.engine import AnalysisSample, EngineNotReadyError, UciClient

logger = logging.getLogger(__name__)

SEEK_TARGETS = ("start", "prev", "next", "end")

AdviceCallback = Callable[[Advice], None]


class ReviewNavigator:
    def __init__(
        self,
        moves: Sequence[str],
        start_fen: str = chess.STARTING_FEN,
        engine: UciClient | None = None,
        on_advice: AdviceCallback | None = None,
        depth: int = 12,
        min_depth: int = 10,
    ):
        self._moves: tuple[str, ...] = tuple(moves)
        self._start_fen = start_fen
        self._engine = engine
        self._on_advice = on_advice
        self._depth = depth
        self._min_depth = min_depth
        self._cursor = -1
        self._board = chess.Board(start_fen)
        self._advice: Advice | None = None
        self._analysis: AnalysisSample | None = None

    @property
    def moves(self) -> tuple[str, ...]:
        return self._moves

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def last_index(self) -> int:
        return len(self._moves) - 1

    @property
    def board(self) -> chess.Board:
        """Position after the move at the cursor (a copy)."""
        return self._board.copy()

    @property
    def advice(self) -> Advice | None:
        return self._advice

    @property
    def analysis(self) -> AnalysisSample | None:
        return self._analysis

    def board_at(self, index: int) -> chess.Board:
        """Replay moves ``0..index`` on a fresh board."""
        board = chess.Board(self._start_fen)
        for san in self._moves[: max(index, -1) + 1]:
            board.push_san(san)
        return board

    def move_label(self, index: int | None = None) -> str:
        """Move-number label for an index, e.g. ``3.`` or ``3...``."""
        index = self._cursor if index is None else index
        if index < 0:
            return "Start"
        return f"{index // 2 + 1}{'.' if index % 2 == 0 else '...'}"

    # -- navigation ---------------------------------------------------------

    def start(self) -> None:
        self._set_cursor(self.last_index)

    def seek(self, target: str) -> None:
        if target == "start":
            index = -1
        elif target == "prev":
            index = self._cursor - 1
        elif target == "next":
            index = self._cursor + 1
        elif target == "end":
            index = self.last_index
        else:
            raise ValueError(f"Unknown seek target: {target}")
        self._set_cursor(index)

    def jump(self, index: int) -> None:
        self._set_cursor(index)

    # -- internals ----------------------------------------------------------

    def _set_cursor(self, index: int) -> None:
        self._cursor = max(-1, min(self.last_index, index))
        self._board = self.board_at(self._cursor)
        self._analysis = None
        self._refresh()

    def _emit(self, advice: Advice) -> None:
        self._advice = advice
        if self._on_advice is not None:
            self._on_advice(advice)

    def _refresh(self) -> None:
        cursor = self._cursor
        if cursor == -1:
            self._emit(STARTING_POSITION_ADVICE)
            self._request(self._board.fen(), self._store_analysis)
            return

        self._advice = None
        prior = self.board_at(cursor - 1)
        played = self._moves[cursor]

        def _on_sample(sample: AnalysisSample) -> None:
            self._analysis = sample
            if sample.depth >= self._min_depth and sample.best_move:
                self._emit(critique_move(prior, played, sample))

        self._request(prior.fen(), _on_sample)

    def _store_analysis(self, sample: AnalysisSample) -> None:
        self._analysis = sample

    def _request(self, fen: str, callback: Callable[[AnalysisSample], None]) -> None:
        if self._engine is None:
            return
        try:
            self._engine.evaluate(fen, self._depth, callback)
        except EngineNotReadyError as e:
            logger.info("Review analysis skipped: %s", e)
