"""Learned move patterns: async SQLite store of move frequencies per position.

Positions are keyed by their normalized FEN (move counters stripped) so that
transpositions reached at different move numbers share statistics.
"""

from dataclasses import dataclass, field
from pathlib import Path

import aiosqlite


SCHEMA = """
CREATE TABLE IF NOT EXISTS patterns (
    id    INTEGER PRIMARY KEY AUTOINCREMENT,
    fen   TEXT NOT NULL,
    san   TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    UNIQUE (fen, san)
);
CREATE INDEX IF NOT EXISTS idx_patterns_fen ON patterns(fen);
"""

UPSERT_SQL = """
INSERT INTO patterns (fen, san, count) VALUES (?, ?, 1)
ON CONFLICT (fen, san) DO UPDATE SET count = count + 1
"""


def normalize_fen(fen: str) -> str:
    """Keep placement, side to move, castling and en passant; drop the clocks."""
    return " ".join(fen.split()[:4])


@dataclass
class PatternRecord:
    fen: str
    moves: dict[str, int] = field(default_factory=dict)   # SAN -> count, first-seen order
    total: int = 0

    def most_frequent(self) -> tuple[str, int] | None:
        """Most played move; ties go to the move seen first."""
        best: tuple[str, int] | None = None
        for san, count in self.moves.items():
            if best is None or count > best[1]:
                best = (san, count)
        return best


class PatternStore:
    """Async pattern store backed by SQLite."""

    def __init__(self, db_path: str = "data/patterns.db"):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._available = False

    @property
    def available(self) -> bool:
        return self._available

    async def start(self) -> None:
        """Open (creating if needed) the database."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        if self._db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        self._available = True

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            self._available = False

    async def get(self, fen: str) -> PatternRecord | None:
        if not self._available or not self._db:
            return None
        key = normalize_fen(fen)
        cursor = await self._db.execute(
            "SELECT san, count FROM patterns WHERE fen = ? ORDER BY id", (key,),
        )
        rows = await cursor.fetchall()
        if not rows:
            return None
        moves = {san: count for san, count in rows}
        return PatternRecord(fen=key, moves=moves, total=sum(moves.values()))

    async def record_move(self, fen: str, san: str, commit: bool = True) -> None:
        """Count one more occurrence of ``san`` played from ``fen``."""
        if not self._available or not self._db:
            raise RuntimeError("Pattern store not started")
        await self._db.execute(UPSERT_SQL, (normalize_fen(fen), san))
        if commit:
            await self._db.commit()

    async def commit(self) -> None:
        if self._db:
            await self._db.commit()

    async def count_positions(self) -> int:
        if not self._available or not self._db:
            return 0
        cursor = await self._db.execute("SELECT COUNT(DISTINCT fen) FROM patterns")
        row = await cursor.fetchone()
        return row[0] if row else 0
