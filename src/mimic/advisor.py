"""Move advice and post-game critique.

Both entry points are pure functions of the board and one analysis sample.
``advise_move`` explains why the engine's best move is good by matching the
move's properties against a fixed rule table; ``critique_move`` compares a
move actually played with the engine's preference for the same position.
Neither computes a centipawn loss for the played move.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import chess

from mimic.engine import AnalysisSample


# ---------------------------------------------------------------------------
# Public types
# ---------------------------------------------------------------------------


@dataclass
class Advice:
    uci: str
    san: str
    score: float        # evaluation in pawns, side to move
    reason: str


class GamePhase(enum.Enum):
    OPENING = "opening"
    MIDDLEGAME = "middlegame"
    ENDGAME = "endgame"


PRECISE_MOVE_PRAISE = (
    "Excellent! A precise move worthy of a machine. "
    "It keeps the harmony of the pieces and the initiative."
)

STARTING_POSITION_ADVICE = Advice(uci="", san="Start", score=0.2, reason="Starting position.")

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

# Evaluation above which a non-mating best move is described as winning material.
_DECISIVE_GAIN_CP = 500

_CENTER = {chess.D4, chess.D5, chess.E4, chess.E5}

_PIECE_NAMES = {
    chess.PAWN: "pawn",
    chess.KNIGHT: "knight",
    chess.BISHOP: "bishop",
    chess.ROOK: "rook",
    chess.QUEEN: "queen",
    chess.KING: "king",
}

_MATERIAL_POINTS = {
    chess.PAWN: 1, chess.KNIGHT: 3, chess.BISHOP: 3, chess.ROOK: 5, chess.QUEEN: 9,
}

STARTING_MINORS: dict[chess.Color, list[tuple[chess.Square, chess.PieceType]]] = {
    chess.WHITE: [
        (chess.B1, chess.KNIGHT), (chess.G1, chess.KNIGHT),
        (chess.C1, chess.BISHOP), (chess.F1, chess.BISHOP),
    ],
    chess.BLACK: [
        (chess.B8, chess.KNIGHT), (chess.G8, chess.KNIGHT),
        (chess.C8, chess.BISHOP), (chess.F8, chess.BISHOP),
    ],
}


def _material(board: chess.Board, color: chess.Color) -> int:
    return sum(
        len(board.pieces(pt, color)) * points
        for pt, points in _MATERIAL_POINTS.items()
    )


def _count_developed(board: chess.Board, color: chess.Color) -> int:
    """Count how many minor pieces have left their starting squares."""
    developed = 0
    for sq, pt in STARTING_MINORS[color]:
        piece = board.piece_at(sq)
        if piece is None or piece.color != color or piece.piece_type != pt:
            developed += 1
    return developed


def detect_game_phase(board: chess.Board) -> GamePhase:
    """Detect the current game phase from board state.

    Endgame: no queens OR both sides <= 13 material points
    Opening: move <= 15 AND either side has < 3 minors developed
    Middlegame: everything else
    """
    if not board.pieces(chess.QUEEN, chess.WHITE) and not board.pieces(chess.QUEEN, chess.BLACK):
        return GamePhase.ENDGAME
    if _material(board, chess.WHITE) <= 13 and _material(board, chess.BLACK) <= 13:
        return GamePhase.ENDGAME
    if board.fullmove_number <= 15:
        if _count_developed(board, chess.WHITE) < 3 or _count_developed(board, chess.BLACK) < 3:
            return GamePhase.OPENING
    return GamePhase.MIDDLEGAME


def _captured_piece(board: chess.Board, move: chess.Move) -> chess.PieceType | None:
    if board.is_en_passant(move):
        return chess.PAWN
    return board.piece_type_at(move.to_square)


def _find_move(board: chess.Board, uci: str | None) -> chess.Move | None:
    if not uci:
        return None
    try:
        move = chess.Move.from_uci(uci)
    except ValueError:
        return None
    return move if move in board.legal_moves else None


def _san_or_uci(board: chess.Board, uci: str | None) -> str:
    move = _find_move(board, uci)
    if move is None:
        return uci or "?"
    return board.san(move)


def _piece_reason(board: chess.Board, move: chess.Move) -> str | None:
    """Positional heuristics keyed on the moving piece."""
    piece = board.piece_type_at(move.from_square)
    to = move.to_square
    rank = chess.square_rank(to)     # 0-based
    file = chess.square_file(to)

    if piece == chess.PAWN:
        if to in _CENTER:
            return "Occupies the center of the board and gains space."
        if rank in (2, 5):
            return "Reinforces the pawn structure and controls vital squares."
        if rank in (1, 6):
            return "A passed pawn marching toward promotion."
        return None

    if piece == chess.KNIGHT:
        if to in _CENTER:
            return "Centralizes the knight, where it attacks eight squares."
        if to in (chess.F3, chess.F6):
            return "Develops the knight toward the kingside and controls the center."
        if to in (chess.C3, chess.C6):
            return "Develops the knight and puts pressure on the center (d4/d5)."
        return "Improves the knight, looking for an outpost."

    if piece == chess.BISHOP:
        if board.is_capture(move):
            return "Eliminates a key defending piece."
        flank = "kingside" if file > chess.square_file(chess.D1) else "queenside"
        return f"Develops the bishop to an active diagonal aimed at the {flank}."

    if piece == chess.ROOK:
        if rank in (0, 7):
            return "Moves the rook to a (possibly) open file."
        if rank in (1, 6):
            return "Puts the rook on the seventh rank to attack the base of the pawns."
        return "Activates the rook and improves its mobility."

    if piece == chess.QUEEN:
        return "Centralizes the queen or improves her attacking activity."

    if piece == chess.KING:
        if detect_game_phase(board) == GamePhase.ENDGAME:
            return "Activates the king, a fundamental piece in the endgame."
        return "Steps the king away from a possible threat."

    return None


def _concrete_reason(board: chess.Board, move: chess.Move | None, analysis: AnalysisSample) -> str:
    if move is None:
        return "Improves the overall position."

    if analysis.score_mate:
        return f"Forced mate in {abs(analysis.score_mate)}. There is no defense."

    gives_check = board.gives_check(move)
    board.push(move)
    is_mate = board.is_checkmate()
    board.pop()
    if analysis.evaluation > _DECISIVE_GAIN_CP and not is_mate:
        return "Wins decisive material (probably a rook or the queen)."

    if board.is_capture(move):
        captured = _PIECE_NAMES.get(_captured_piece(board, move), "piece")
        last = board.peek() if board.move_stack else None
        if last is not None and last.to_square == move.to_square:
            return f"Recaptures the {captured} and keeps the material balance."
        return f"Wins an exposed {captured} or makes a favorable trade."

    if gives_check:
        return "An intermediate check that forces the king to move and breaks its coordination."

    if board.is_castling(move):
        return "Puts the king in safety and connects the rooks."

    if move.promotion:
        return "Promotes the pawn to a new queen. Decisive advantage."

    reason = _piece_reason(board, move)
    if reason is not None:
        return reason

    return "A prophylactic move: improves the position and prevents future threats."


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def advise_move(board: chess.Board, analysis: AnalysisSample) -> Advice | None:
    """Explain the engine's best move for the side to move.

    Returns None when the sample carries no best move.
    """
    if not analysis.best_move:
        return None
    move = _find_move(board, analysis.best_move)
    san = board.san(move) if move is not None else analysis.best_move
    return Advice(
        uci=analysis.best_move,
        san=san,
        score=analysis.evaluation / 100,
        reason=_concrete_reason(board, move, analysis),
    )


def critique_move(
    board_before: chess.Board,
    played_san: str,
    analysis: AnalysisSample,
) -> Advice:
    """Compare the move played from ``board_before`` with the engine's choice.

    ``analysis`` must be for ``board_before``. Only origin and destination
    are compared, so an underpromotion on the best square still counts as
    the engine's move.
    """
    try:
        played = board_before.parse_san(played_san)
    except ValueError:
        played = None
    best = _find_move(board_before, analysis.best_move)
    best_san = _san_or_uci(board_before, analysis.best_move)
    played_uci = played.uci() if played is not None else ""

    if (
        played is not None
        and best is not None
        and (played.from_square, played.to_square) == (best.from_square, best.to_square)
    ):
        reason = PRECISE_MOVE_PRAISE
    elif played is not None and board_before.is_capture(played):
        reason = f"An interesting capture, although {best_san} looked positionally stronger."
    elif played is not None and board_before.piece_type_at(played.from_square) == chess.KING:
        reason = "A somewhat passive king move. Watch your king's safety."
    elif played is not None and board_before.piece_type_at(played.from_square) == chess.PAWN:
        reason = f"A solid pawn advance, but {best_san} controlled the center better."
    else:
        reason = f"A playable alternative, although the precision of {best_san} was preferable."

    return Advice(
        uci=played_uci,
        san=played_san,
        score=analysis.evaluation / 100,
        reason=reason,
    )
