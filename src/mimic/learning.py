"""Learn move patterns from PGN game archives.

Usage:
    python -m mimic.learning                        # download + learn
    python -m mimic.learning --pgn-path games.pgn   # local file
"""

from __future__ import annotations

import argparse
import asyncio
import datetime
import io
import logging
import time
from pathlib import Path

import chess.pgn
import httpx

from mimic.config import Settings
from mimic.patterns import PatternStore

logger = logging.getLogger(__name__)

# Learned instead of the remote archive when the download fails.
SAMPLE_PGN = """\
[Event "Model game: Closed Ruy Lopez"]
[Site "?"]
[Date "????.??.??"]
[White "?"]
[Black "?"]
[Result "*"]

1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 4. Ba4 Nf6 5. O-O Be7 6. Re1 b5 7. Bb3 d6
8. c3 O-O 9. h3 Na5 10. Bc2 c5 *

[Event "Model game: Queen's Gambit Declined"]
[Site "?"]
[Date "????.??.??"]
[White "?"]
[Black "?"]
[Result "*"]

1. d4 d5 2. c4 e6 3. Nc3 Nf6 4. Bg5 Be7 5. e3 O-O 6. Nf3 Nbd7 7. Rc1 c6
8. Bd3 dxc4 9. Bxc4 Nd5 10. Bxe7 Qxe7 *
"""


async def learn_game(store: PatternStore, game: chess.pgn.Game) -> int:
    """Record every move of the game's mainline. Returns plies learned."""
    board = game.board()
    plies = 0
    for move in game.mainline_moves():
        await store.record_move(board.fen(), board.san(move), commit=False)
        board.push(move)
        plies += 1
    return plies


async def learn_from_pgn(store: PatternStore, text: str) -> int:
    """Learn every readable game in ``text``. Returns the number of games learned."""
    stream = io.StringIO(text)
    learned = 0
    while True:
        game = chess.pgn.read_game(stream)
        if game is None:
            break
        if game.errors:
            logger.debug("Skipping unreadable game: %s", game.errors[0])
            continue
        if await learn_game(store, game):
            learned += 1
    await store.commit()
    return learned


async def fetch_pgn(url: str, timeout: float = 30.0) -> str:
    """Download a PGN archive. Raises on HTTP errors or a non-PGN body."""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        resp = await client.get(url, headers={"User-Agent": "mimic-chess-learner/1.0"})
        resp.raise_for_status()
        text = resp.text
    if text.lstrip().startswith("<"):
        raise ValueError("Received HTML instead of PGN")
    return text


def _read_stamp(path: str) -> str | None:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None


def _write_stamp(path: str, stamp: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(stamp, encoding="utf-8")


async def daily_update(
    store: PatternStore,
    settings: Settings,
    today: datetime.date | None = None,
) -> int | None:
    """Learn the configured archive at most once per calendar day.

    Returns the number of games learned, or None if already up to date.
    A failed download falls back to the bundled sample games; the day is
    stamped either way so failures are not retried on every start.
    """
    stamp = (today or datetime.date.today()).isoformat()
    if _read_stamp(settings.learn_stamp_path) == stamp:
        logger.info("Pattern store already updated today")
        return None

    try:
        text = await fetch_pgn(settings.pgn_url, timeout=settings.pgn_timeout)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Could not download %s (%s); learning sample games", settings.pgn_url, e)
        text = SAMPLE_PGN

    count = await learn_from_pgn(store, text)
    _write_stamp(settings.learn_stamp_path, stamp)
    logger.info("Learned %d games", count)
    return count


async def _run(args: argparse.Namespace) -> int:
    store = PatternStore(db_path=args.db_path)
    await store.start()
    try:
        if args.pgn_path:
            print(f"Learning from {args.pgn_path}...")
            text = Path(args.pgn_path).read_text(encoding="utf-8", errors="replace")
        else:
            print(f"Downloading from {args.url}...")
            text = await fetch_pgn(args.url)
        return await learn_from_pgn(store, text)
    finally:
        await store.close()


def main():
    settings = Settings()
    parser = argparse.ArgumentParser(description="Learn move patterns from PGN games")
    parser.add_argument("--pgn-path", help="Path to a local .pgn file (skip download)")
    parser.add_argument("--url", default=settings.pgn_url, help="PGN archive URL")
    parser.add_argument(
        "--db-path", default=settings.pattern_db_path,
        help=f"SQLite database path (default: {settings.pattern_db_path})",
    )
    args = parser.parse_args()

    print(f"Database: {args.db_path}")
    t0 = time.time()
    count = asyncio.run(_run(args))
    print(f"Learned {count:,} games in {time.time() - t0:.1f}s")


if __name__ == "__main__":
    main()
