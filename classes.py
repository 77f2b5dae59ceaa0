import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from shared.models import SYMBOLS, DEFAULT_DIFFICULTY, Difficulty, PersistedSnapshot

MISMATCH_DELAY_MS = 1000
TICK_SECONDS = 1.0

# Engine phases
IDLE = "idle"
DEALT = "dealt"
WON = "won"

# Flip statuses
IGNORED = "ignored"
AWAITING_SECOND = "awaiting-second"
MATCH = "match"
MISMATCH = "mismatch"
HIDDEN = "hidden"


class Card:
    """
    A class representing a memory card.
    The card's identity is its position on the board for the current deal.
    """

    def __init__(self, symbol, index):
        self.symbol = symbol
        self.index = index
        self.revealed = False
        self.matched = False

    def reveal(self):
        self.revealed = True

    def hide(self):
        self.revealed = False

    def match(self):
        """Mark the card as matched. Matched cards stay face up."""
        self.matched = True
        self.revealed = True

    def __repr__(self):
        return f"Card(symbol={self.symbol}, index={self.index}, revealed={self.revealed}, matched={self.matched})"


def deal(difficulty, rng=None) -> List[Card]:
    """
    Build a shuffled deck for the given board dimensions.

    Args:
        difficulty: A Difficulty (or "RxC" string) with an even number of cells
        rng: Optional random.Random for reproducible deals

    Returns:
        List of face-down cards, one per board position
    """
    if isinstance(difficulty, str):
        difficulty = Difficulty.parse(difficulty)
    difficulty.validate()

    pairs_needed = difficulty.size // 2
    symbols = list(SYMBOLS[:pairs_needed]) * 2

    # random.shuffle is Fisher-Yates, every permutation is equally likely
    (rng or random).shuffle(symbols)
    return [Card(symbol, i) for i, symbol in enumerate(symbols)]


@dataclass
class TransitionResult:
    """What a command changed, so the renderer can update only those cards."""
    status: str
    moves: int
    revealed: List[int] = field(default_factory=list)
    matched: List[int] = field(default_factory=list)
    hidden: List[int] = field(default_factory=list)
    pending_hide: List[int] = field(default_factory=list)
    delay_ms: int = 0
    won: bool = False

    @property
    def changed(self) -> bool:
        return self.status != IGNORED


@dataclass
class GameState:
    """Authoritative state of one game, owned by a GameEngine."""
    difficulty: Difficulty
    cards: List[Card] = field(default_factory=list)
    moves: int = 0
    elapsed_seconds: int = 0
    revealed: List[int] = field(default_factory=list)
    phase: str = IDLE

    @property
    def matched_count(self) -> int:
        return sum(1 for card in self.cards if card.matched)

    @property
    def deck_size(self) -> int:
        return len(self.cards)

    def to_snapshot(self) -> PersistedSnapshot:
        return PersistedSnapshot(
            difficulty=str(self.difficulty),
            moves=self.moves,
            elapsed_seconds=self.elapsed_seconds,
            matched=[card.index for card in self.cards if card.matched],
            revealed=list(self.revealed),
            deck=[card.symbol for card in self.cards],
        )


class GameEngine:
    """
    The pure game rules: flipping, pair resolution, win detection and the clock.
    Knows nothing about timers, storage or drawing.
    """

    def __init__(self, rng=None):
        self.rng = rng
        self.state = GameState(difficulty=Difficulty.parse(DEFAULT_DIFFICULTY))
        self.mismatch_delay_ms = MISMATCH_DELAY_MS

    @property
    def won(self) -> bool:
        return self.state.phase == WON

    def new_game(self, difficulty) -> GameState:
        """Discard the current deck and deal a fresh one."""
        if isinstance(difficulty, str):
            difficulty = Difficulty.parse(difficulty)
        self.state = GameState(
            difficulty=difficulty,
            cards=deal(difficulty, self.rng),
            phase=DEALT,
        )
        return self.state

    def flip(self, index) -> TransitionResult:
        """
        Reveal the card at index and resolve the pair if it is the second one.

        Flips that the rules do not allow are ignored rather than reported
        as errors.
        """
        state = self.state
        if state.phase != DEALT or len(state.revealed) >= 2:
            return self._ignored()
        if not isinstance(index, int) or not 0 <= index < state.deck_size:
            return self._ignored()

        card = state.cards[index]
        if card.revealed or card.matched:
            return self._ignored()

        card.reveal()
        state.revealed.append(index)

        if len(state.revealed) == 1:
            return TransitionResult(AWAITING_SECOND, state.moves, revealed=[index])

        state.moves += 1
        first, second = (state.cards[i] for i in state.revealed)

        if first.symbol == second.symbol:
            first.match()
            second.match()
            pair = list(state.revealed)
            state.revealed = []
            if state.matched_count == state.deck_size:
                state.phase = WON
                return TransitionResult(WON, state.moves, revealed=[index], matched=pair, won=True)
            return TransitionResult(MATCH, state.moves, revealed=[index], matched=pair)

        return TransitionResult(
            MISMATCH,
            state.moves,
            revealed=[index],
            pending_hide=list(state.revealed),
            delay_ms=self.mismatch_delay_ms,
        )

    def resolve_mismatch(self) -> TransitionResult:
        """Turn a mismatched pair face down again once its display delay is over."""
        state = self.state
        if len(state.revealed) != 2:
            return self._ignored()

        hidden = list(state.revealed)
        for i in hidden:
            state.cards[i].hide()
        state.revealed = []
        return TransitionResult(HIDDEN, state.moves, hidden=hidden)

    def tick(self) -> int:
        """Advance the game clock by one second while a game is in progress."""
        if self.state.phase == DEALT:
            self.state.elapsed_seconds += 1
        return self.state.elapsed_seconds

    def restore(self, snapshot: PersistedSnapshot) -> bool:
        """
        Rebuild a game from a persisted snapshot, reusing its exact deck order.

        Returns:
            True if the snapshot was applied, False if it was rejected
            (in which case the current state is left untouched)
        """
        if snapshot is None or snapshot.deck is None:
            return False
        try:
            snapshot = PersistedSnapshot.from_dict(snapshot.to_dict())
        except ValueError:
            return False

        difficulty = Difficulty.parse(snapshot.difficulty)
        cards = [Card(symbol, i) for i, symbol in enumerate(snapshot.deck)]
        for i in snapshot.matched:
            cards[i].match()
        # Matched cards must come in complete pairs
        matched_symbols = [cards[i].symbol for i in snapshot.matched]
        if any(matched_symbols.count(symbol) != 2 for symbol in matched_symbols):
            return False

        revealed = list(snapshot.revealed)
        if len(revealed) == 2:
            # The pending hide did not survive the restart
            revealed = []
        for i in revealed:
            cards[i].reveal()

        phase = WON if snapshot.matched_count == len(cards) else DEALT
        self.state = GameState(
            difficulty=difficulty,
            cards=cards,
            moves=snapshot.moves,
            elapsed_seconds=snapshot.elapsed_seconds,
            revealed=revealed,
            phase=phase,
        )
        return True

    def _ignored(self) -> TransitionResult:
        return TransitionResult(IGNORED, self.state.moves)

    def __str__(self) -> str:
        """Return a string representation of the board."""
        cols = self.state.difficulty.cols
        cells = []
        for card in self.state.cards:
            if card.matched:
                cells.append("M")
            elif card.revealed:
                cells.append(card.symbol)
            else:
                cells.append("#")
        rows = [" ".join(cells[i:i + cols]) for i in range(0, len(cells), cols)]
        return "\n".join(rows)


class Game:
    """
    Main game class that drives the engine from host events.
    It owns the two timers (the 1 second clock and the mismatch delay)
    and writes a snapshot after every change.
    """

    def __init__(self, store, counter=None, clock: Callable[[], float] = time.monotonic,
                 engine: Optional[GameEngine] = None, mismatch_delay_ms=MISMATCH_DELAY_MS,
                 default_difficulty=DEFAULT_DIFFICULTY):
        """
        Initialize a game.

        Args:
            store: SnapshotStore used to persist and restore the game
            counter: Optional CrossTabCounter bumped on every completed pair
            clock: Monotonic clock in seconds, replaceable in tests
            engine: Optional preconfigured GameEngine
            mismatch_delay_ms: How long a mismatched pair stays visible
            default_difficulty: Board used when nothing was saved
        """
        self.store = store
        self.counter = counter
        self.clock = clock
        self.engine = engine or GameEngine()
        self.engine.mismatch_delay_ms = mismatch_delay_ms
        self.default_difficulty = default_difficulty
        self.last_tick = None
        self.hide_at = None

    @property
    def state(self) -> GameState:
        return self.engine.state

    @property
    def moves(self) -> int:
        return self.engine.state.moves

    @property
    def elapsed_seconds(self) -> int:
        return self.engine.state.elapsed_seconds

    @property
    def won(self) -> bool:
        return self.engine.won

    def start(self, difficulty=None) -> bool:
        """
        Resume the persisted game if there is one, otherwise deal a new game.

        Returns:
            True if a saved game was resumed
        """
        snapshot = self.store.load()
        if snapshot is not None and (difficulty is None or _same_board(snapshot.difficulty, difficulty)):
            if self.engine.restore(snapshot):
                print(f"Restored game: {snapshot.difficulty}, {snapshot.moves} moves, {snapshot.elapsed_seconds}s")
                self.hide_at = None
                self._restart_clock()
                self.store.save(self.state)
                return True
            print("Saved game is inconsistent, dealing a new one")

        if difficulty is None:
            difficulty = self.store.load_difficulty() or self.default_difficulty
        self._deal(difficulty)
        return False

    def new_game(self, difficulty=None) -> GameState:
        """Forget the saved game and deal again with the same (or a new) difficulty."""
        self.store.clear()
        self._deal(difficulty or self.state.difficulty)
        return self.state

    def change_difficulty(self, difficulty) -> GameState:
        if isinstance(difficulty, str):
            difficulty = Difficulty.parse(difficulty)
        self.store.save_difficulty(difficulty)
        return self.new_game(difficulty)

    def flip(self, index) -> TransitionResult:
        result = self.engine.flip(index)
        if not result.changed:
            return result

        if result.status in (MATCH, MISMATCH, WON) and self.counter is not None:
            self.counter.bump()
        if result.status == MISMATCH:
            self.hide_at = self.clock() + result.delay_ms / 1000.0

        self.store.save(self.state)
        return result

    def update(self, now=None) -> List:
        """
        Run whatever timers are due. Called from the host loop.

        Returns:
            List of TransitionResults (for the mismatch hide) and ints
            (elapsed seconds after each tick), in the order they happened
        """
        if now is None:
            now = self.clock()
        events = []

        if self.hide_at is not None and now >= self.hide_at:
            self.hide_at = None
            result = self.engine.resolve_mismatch()
            if result.changed:
                self.store.save(self.state)
                events.append(result)

        if self.last_tick is not None:
            while now - self.last_tick >= TICK_SECONDS:
                self.last_tick += TICK_SECONDS
                if self.engine.won:
                    self.last_tick = None
                    break
                events.append(self.engine.tick())
                self.store.save(self.state)

        return events

    def _deal(self, difficulty):
        self.engine.new_game(difficulty)
        self.hide_at = None
        self._restart_clock()
        self.store.save(self.state)

    def _restart_clock(self):
        self.last_tick = None if self.engine.won else self.clock()

    def __str__(self):
        status = "Won" if self.won else "Active"
        return f"Game Status: {status}, Moves={self.moves}, Time={self.elapsed_seconds}s\n{self.engine}"


def _same_board(saved, requested) -> bool:
    try:
        return Difficulty.parse(saved) == (
            Difficulty.parse(requested) if isinstance(requested, str) else requested
        )
    except ValueError:
        return False
