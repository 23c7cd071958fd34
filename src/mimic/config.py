"""Centralized application configuration.

All settings are read from environment variables (or a .env.mimic file).
Nothing is required; the defaults run against a Stockfish binary on PATH
and a local SQLite pattern database.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env.mimic", env_file_encoding="utf-8",
    )

    # Analysis engine. Candidate commands are tried in order until one starts.
    engine_commands: list[str] = [
        "stockfish",
        "/usr/games/stockfish",
        "/usr/local/bin/stockfish",
    ]
    engine_hash_mb: int = 64
    engine_threads: int = 1
    handshake_timeout: float = 5.0
    handshake_poll_interval: float = 0.1

    # Learned patterns
    pattern_db_path: str = "data/patterns.db"
    pgn_url: str = "https://www.pgnmentor.com/players/Capablanca.pgn"
    pgn_timeout: float = 30.0
    auto_learn: bool = True
    learn_stamp_path: str = "data/last_learn.txt"

    # Play / advice
    default_persona: str = "normal"
    advice_depth: int = 12
    advice_min_depth: int = 10
