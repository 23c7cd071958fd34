"""Opponent move selection module.

Turns one engine analysis sample into the move the persona would play.
Rules are tried in a fixed order and the first one that commits wins:
decisive advantage, opening book, learned patterns, winning override,
easy-mode randomization, and finally the engine's own best move.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

import aiosqlite
import chess

from mimic.book import OPENING_BOOK, book_moves
from mimic.engine import AnalysisSample
from mimic.patterns import PatternStore
from mimic.personas import Difficulty, PersonaProfile

logger = logging.getLogger(__name__)

# Above this the engine move is played before any style rule is consulted.
DECISIVE_ADVANTAGE_CP = 500
# Above this style deference is suspended and the advantage is converted.
WINNING_THRESHOLD_CP = 100

# A learned move needs this share of the games, or more than
# PATTERN_MIN_COUNT occurrences, before it is trusted.
PATTERN_MIN_FREQUENCY = 0.3
PATTERN_MIN_COUNT = 2


@dataclass
class MoveDecision:
    uci: str
    san: str
    method: str                 # "decisive", "book", "pattern", "winning", "random", "engine"
    reason: str | None = None


def _legal_uci(board: chess.Board, uci: str) -> chess.Move | None:
    """Parse ``uci`` and return the move only if it is legal on ``board``."""
    try:
        move = chess.Move.from_uci(uci)
    except (chess.InvalidMoveError, ValueError):
        return None
    return move if move in board.legal_moves else None


def _legal_san(board: chess.Board, san: str) -> chess.Move | None:
    try:
        return board.parse_san(san)
    except ValueError:
        return None


def _book_move(
    board: chess.Board,
    persona: PersonaProfile,
    book: dict[str, list[str]],
    rng: random.Random,
) -> chess.Move | None:
    candidates = book_moves(board.fen(), book)
    if not candidates or rng.random() >= persona.book_adherence:
        return None
    return _legal_uci(board, rng.choice(candidates))


async def _pattern_move(
    board: chess.Board,
    analysis: AnalysisSample,
    persona: PersonaProfile,
    patterns: PatternStore,
) -> tuple[chess.Move, str] | None:
    try:
        record = await patterns.get(board.fen())
    except aiosqlite.Error as e:
        logger.warning("Pattern lookup failed: %s", e)
        return None
    if record is None or record.total <= 0:
        return None
    top = record.most_frequent()
    if top is None:
        return None

    san, count = top
    frequency = count / record.total
    if not (frequency > PATTERN_MIN_FREQUENCY or count > PATTERN_MIN_COUNT):
        return None
    move = _legal_san(board, san)
    if move is None:
        return None
    # Below MASTER a learned move is not trusted in an already lost position.
    if persona.difficulty != Difficulty.MASTER and analysis.evaluation < -persona.blunder_tolerance_cp:
        return None
    return move, f"played {san} in {count} of {record.total} games"


async def select_move(
    board: chess.Board,
    analysis: AnalysisSample,
    persona: PersonaProfile,
    patterns: PatternStore | None = None,
    book: dict[str, list[str]] | None = None,
    rng: random.Random | None = None,
) -> MoveDecision:
    """Pick the persona's move for ``board`` given one analysis sample.

    ``analysis`` must come from the engine for this exact position and carry
    a best move; a missing or illegal best move raises ``ValueError``.
    """
    if analysis.best_move is None:
        raise ValueError("Analysis has no best move")
    engine_move = _legal_uci(board, analysis.best_move)
    if engine_move is None:
        raise ValueError(f"Engine best move {analysis.best_move} is not legal in {board.fen()}")

    rng = rng or random.Random()
    book = OPENING_BOOK if book is None else book

    def _decision(move: chess.Move, method: str, reason: str | None = None) -> MoveDecision:
        logger.debug("Selected %s via %s", move.uci(), method)
        return MoveDecision(uci=move.uci(), san=board.san(move), method=method, reason=reason)

    if analysis.evaluation >= DECISIVE_ADVANTAGE_CP:
        return _decision(engine_move, "decisive")

    move = _book_move(board, persona, book, rng)
    if move is not None:
        return _decision(move, "book")

    if patterns is not None:
        found = await _pattern_move(board, analysis, persona, patterns)
        if found is not None:
            return _decision(found[0], "pattern", reason=found[1])

    if analysis.evaluation > WINNING_THRESHOLD_CP:
        return _decision(engine_move, "winning")

    if persona.difficulty == Difficulty.EASY:
        legal = list(board.legal_moves)
        if len(legal) > 1 and rng.random() < persona.random_deviation:
            return _decision(rng.choice(legal), "random")

    return _decision(engine_move, "engine")
