"""CLI utility for a single-position decision and advice.

Usage:
    python -m mimic.cli <fen> [--persona NAME] [--depth N]
        [--engine CMD] [--db PATH] [--seed N]

Prints JSON with the persona's chosen move, how it was chosen, the raw
engine analysis and the advice for the engine's best move.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import sys
from dataclasses import asdict

import chess

from mimic.advisor import advise_move
from mimic.config import Settings
from mimic.engine import UciClient
from mimic.opponent import select_move
from mimic.patterns import PatternStore
from mimic.personas import DEFAULT_PERSONA, PERSONAS, get_persona


async def _run(args: argparse.Namespace) -> dict:
    try:
        board = chess.Board(args.fen)
    except ValueError:
        board = None
    if board is None or not board.is_valid() or board.is_game_over():
        print("error: position is invalid or the game is over", file=sys.stderr)
        sys.exit(1)

    persona = get_persona(args.persona)
    depth = args.depth or persona.search_depth

    patterns = None
    if args.db:
        patterns = PatternStore(db_path=args.db)
        await patterns.start()

    engine = UciClient(args.engine or Settings().engine_commands)
    try:
        if not await engine.init():
            print("error: analysis engine unavailable", file=sys.stderr)
            sys.exit(2)
        analysis = await engine.analyse(board.fen(), depth)
        decision = await select_move(
            board, analysis, persona, patterns=patterns,
            rng=random.Random(args.seed),
        )
        advice = advise_move(board, analysis)
    finally:
        await engine.quit()
        if patterns is not None:
            await patterns.close()

    return {
        "fen": board.fen(),
        "persona": persona.name,
        "move": asdict(decision),
        "analysis": {
            "depth": analysis.depth,
            "score_cp": analysis.score_cp,
            "score_mate": analysis.score_mate,
            "best_move": analysis.best_move,
            "pv": analysis.pv,
        },
        "advice": asdict(advice) if advice else None,
    }


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Pick the persona's move for one position",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("fen", help="Position FEN (quote the full string)")
    parser.add_argument(
        "--persona", default=DEFAULT_PERSONA, choices=list(PERSONAS),
        help=f"Difficulty persona (default: {DEFAULT_PERSONA})",
    )
    parser.add_argument("--depth", type=int, help="Search depth (default: persona's)")
    parser.add_argument(
        "--engine", action="append",
        help="Engine command; repeat to give fallbacks in order",
    )
    parser.add_argument("--db", help="Pattern database path (omit to skip learned patterns)")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible choices")
    args = parser.parse_args()

    result = asyncio.run(_run(args))
    json.dump(result, sys.stdout, indent=2)
    print()


if __name__ == "__main__":
    main()
