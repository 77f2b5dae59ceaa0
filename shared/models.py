"""
Shared data models for the game engine and the persistence layer.
This keeps the persisted layout and the in-memory state consistent.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import string

SYMBOLS = string.ascii_uppercase
MAX_CARDS = len(SYMBOLS) * 2

# Named presets offered by the difficulty selector
DIFFICULTY_PRESETS = {
    "Easy": "4x4",
    "Medium": "4x6",
    "Hard": "6x6",
}
DEFAULT_DIFFICULTY = "4x4"


@dataclass(frozen=True)
class Difficulty:
    """Board dimensions selected by the player."""
    rows: int
    cols: int

    @property
    def size(self) -> int:
        return self.rows * self.cols

    @classmethod
    def parse(cls, text):
        """
        Parse a difficulty string such as "4x4" or a preset name such as "Easy".

        Raises:
            ValueError: if the text is not a playable board size
        """
        if not isinstance(text, str):
            raise ValueError(f"Difficulty must be a string, got {type(text).__name__}")
        text = DIFFICULTY_PRESETS.get(text, text).strip().lower()
        parts = text.split("x")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid difficulty: {text!r}")
        difficulty = cls(int(parts[0]), int(parts[1]))
        difficulty.validate()
        return difficulty

    def validate(self) -> None:
        """Check the board can be dealt with one pair per symbol."""
        if self.rows <= 0 or self.cols <= 0:
            raise ValueError("rows/cols must be positive")
        if self.size % 2 != 0:
            raise ValueError("Total number of cards must be even")
        if self.size > MAX_CARDS:
            raise ValueError(f"Not enough symbols. At most {MAX_CARDS} cards are supported.")

    def __str__(self):
        return f"{self.rows}x{self.cols}"


@dataclass
class PersistedSnapshot:
    """Durable copy of a game in progress."""
    difficulty: str
    moves: int = 0
    elapsed_seconds: int = 0
    matched: List[int] = field(default_factory=list)
    revealed: List[int] = field(default_factory=list)
    deck: Optional[List[str]] = None

    @property
    def matched_count(self) -> int:
        return len(self.matched)

    @classmethod
    def from_dict(cls, data):
        """
        Create a PersistedSnapshot from a dictionary read back from storage.

        Unlike a plain constructor call this validates every field, so a
        tampered or truncated record is rejected instead of half-loaded.

        Raises:
            ValueError: if any field is missing, of the wrong type or out of range
        """
        if not isinstance(data, dict):
            raise ValueError("Snapshot must be a JSON object")

        difficulty = data.get("difficulty")
        board = Difficulty.parse(difficulty)

        moves = _non_negative_int(data.get("moves", 0), "moves")
        elapsed = _non_negative_int(data.get("elapsed_seconds", 0), "elapsed_seconds")
        matched = _index_list(data.get("matched", []), "matched", board.size)
        revealed = _index_list(data.get("revealed", []), "revealed", board.size)

        if "matched_count" in data and data["matched_count"] != len(matched):
            raise ValueError("matched_count does not agree with matched indices")
        if len(matched) % 2 != 0:
            raise ValueError("matched count must be even")
        if len(revealed) > 2:
            raise ValueError("at most two cards can be revealed")
        if set(matched) & set(revealed):
            raise ValueError("a card cannot be both matched and revealed")

        deck = data.get("deck")
        if deck is not None:
            deck = _deck_list(deck, board.size)

        return cls(
            difficulty=str(board),
            moves=moves,
            elapsed_seconds=elapsed,
            matched=matched,
            revealed=revealed,
            deck=deck,
        )

    def to_dict(self):
        """Convert the snapshot to a JSON-serializable dictionary."""
        data = {
            "difficulty": self.difficulty,
            "moves": self.moves,
            "elapsed_seconds": self.elapsed_seconds,
            "matched_count": self.matched_count,
            "matched": list(self.matched),
            "revealed": list(self.revealed),
        }
        if self.deck is not None:
            data["deck"] = list(self.deck)
        return data


def _non_negative_int(value, name):
    # bool is an int subclass; JSON true/false is not a counter
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name} must be a non-negative integer")
    return value


def _index_list(values, name, size):
    if not isinstance(values, list):
        raise ValueError(f"{name} must be a list")
    indices = [_non_negative_int(v, name) for v in values]
    if any(i >= size for i in indices):
        raise ValueError(f"{name} contains an index outside the board")
    if len(set(indices)) != len(indices):
        raise ValueError(f"{name} contains duplicates")
    return indices


def _deck_list(values, size):
    if not isinstance(values, list) or len(values) != size:
        raise ValueError(f"deck must be a list of {size} symbols")
    for symbol in values:
        if not isinstance(symbol, str) or symbol not in SYMBOLS or len(symbol) != 1:
            raise ValueError(f"Invalid symbol in deck: {symbol!r}")
    counts = {}
    for symbol in values:
        counts[symbol] = counts.get(symbol, 0) + 1
    if any(count != 2 for count in counts.values()):
        raise ValueError("every symbol must appear exactly twice")
    return list(values)
