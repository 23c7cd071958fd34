"""Difficulty-based persona profiles for the style-imitating opponent."""

import enum
from dataclasses import dataclass


class Difficulty(enum.Enum):
    EASY = "easy"
    NORMAL = "normal"
    MASTER = "master"


@dataclass(frozen=True)
class PersonaProfile:
    name: str
    difficulty: Difficulty
    search_depth: int            # engine depth for the opponent's own moves
    book_adherence: float        # chance of following an opening-book entry
    blunder_tolerance_cp: int    # how far behind a learned move may still be played
    random_deviation: float      # chance of a random legal move (EASY only)


PERSONAS: dict[str, PersonaProfile] = {
    "easy":   PersonaProfile("easy",   Difficulty.EASY,   10, 0.5, 150, 0.2),
    "normal": PersonaProfile("normal", Difficulty.NORMAL, 15, 0.8, 150, 0.0),
    "master": PersonaProfile("master", Difficulty.MASTER, 20, 0.8, 150, 0.0),
}

DEFAULT_PERSONA = "normal"

# Depth used when the engine plays a move on the human's behalf.
MOVE_FOR_ME_DEPTH = 20


def get_persona(name: str) -> PersonaProfile:
    """Look up a persona by name, falling back to the default."""
    return PERSONAS.get(name.lower(), PERSONAS[DEFAULT_PERSONA])
