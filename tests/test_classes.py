# tests/test_classes.py
import random
from collections import Counter

import pytest

from classes import (
    AWAITING_SECOND, DEALT, HIDDEN, IDLE, IGNORED, MATCH, MISMATCH, WON,
    Card, GameEngine, deal,
)
from shared.models import Difficulty, PersistedSnapshot


def rigged_engine(symbols, difficulty="2x2"):
    """Engine dealt with a known deck order."""
    engine = GameEngine()
    engine.new_game(difficulty)
    engine.state.cards = [Card(symbol, i) for i, symbol in enumerate(symbols)]
    return engine


def first_mismatch(engine):
    cards = engine.state.cards
    for j in range(1, len(cards)):
        if cards[j].symbol != cards[0].symbol:
            return j
    raise AssertionError("deck has no mismatch")


@pytest.mark.parametrize("rows,cols", [(1, 2), (2, 2), (2, 3), (4, 4), (4, 6), (6, 6), (4, 13)])
def test_deal_pairs_every_symbol(rows, cols):
    cards = deal(Difficulty(rows, cols))
    assert len(cards) == rows * cols
    counts = Counter(card.symbol for card in cards)
    assert len(counts) == rows * cols // 2
    assert set(counts.values()) == {2}
    assert [card.index for card in cards] == list(range(rows * cols))
    assert not any(card.revealed or card.matched for card in cards)


@pytest.mark.parametrize("text", ["3x3", "1x1", "0x2", "8x8", "abc"])
def test_deal_rejects_unplayable_boards(text):
    with pytest.raises(ValueError):
        deal(text)


def test_deal_uses_first_letters():
    symbols = {card.symbol for card in deal("2x3")}
    assert symbols == {"A", "B", "C"}


def test_deal_is_reproducible_with_seeded_rng():
    first = [c.symbol for c in deal("4x4", random.Random(7))]
    second = [c.symbol for c in deal("4x4", random.Random(7))]
    assert first == second


def test_new_game_resets_counters():
    engine = GameEngine()
    assert engine.state.phase == IDLE
    engine.new_game("4x4")
    engine.flip(0)
    engine.flip(first_mismatch(engine))
    engine.tick()

    state = engine.new_game("2x2")
    assert state.phase == DEALT
    assert state.moves == 0
    assert state.elapsed_seconds == 0
    assert state.matched_count == 0
    assert state.revealed == []
    assert state.deck_size == 4


def test_flip_before_deal_is_ignored():
    engine = GameEngine()
    assert engine.flip(0).status == IGNORED


def test_first_flip_awaits_second():
    engine = rigged_engine(["A", "B", "A", "B"])
    result = engine.flip(0)
    assert result.status == AWAITING_SECOND
    assert result.revealed == [0]
    assert result.moves == 0
    assert engine.state.revealed == [0]


def test_flipping_revealed_card_is_noop():
    engine = rigged_engine(["A", "B", "A", "B"])
    engine.flip(0)
    result = engine.flip(0)
    assert result.status == IGNORED
    assert engine.state.moves == 0
    assert engine.state.revealed == [0]


def test_flipping_matched_card_is_noop():
    engine = rigged_engine(["A", "A", "B", "B"])
    engine.flip(0)
    engine.flip(1)
    assert engine.flip(0).status == IGNORED
    assert engine.flip(1).status == IGNORED
    assert engine.state.moves == 1
    assert engine.state.revealed == []


@pytest.mark.parametrize("index", [-1, 4, 100, "0", None])
def test_out_of_range_flip_is_noop(index):
    engine = rigged_engine(["A", "A", "B", "B"])
    assert engine.flip(index).status == IGNORED
    assert engine.state.revealed == []


def test_mismatch_scenario_4x4():
    engine = GameEngine()
    engine.new_game("4x4")
    assert engine.state.deck_size == 16
    other = first_mismatch(engine)

    engine.flip(0)
    result = engine.flip(other)
    assert result.status == MISMATCH
    assert result.moves == 1
    assert result.pending_hide == [0, other]
    assert result.delay_ms == 1000
    assert engine.state.cards[0].revealed and engine.state.cards[other].revealed

    # A third card is refused while the pair is pending
    third = next(i for i in range(16) if i not in (0, other))
    assert engine.flip(third).status == IGNORED
    assert engine.state.moves == 1

    hidden = engine.resolve_mismatch()
    assert hidden.status == HIDDEN
    assert hidden.hidden == [0, other]
    assert not engine.state.cards[0].revealed
    assert not engine.state.cards[other].revealed
    assert engine.state.revealed == []
    assert engine.state.matched_count == 0


def test_resolve_without_pending_pair_is_noop():
    engine = rigged_engine(["A", "B", "A", "B"])
    assert engine.resolve_mismatch().status == IGNORED
    engine.flip(0)
    assert engine.resolve_mismatch().status == IGNORED
    assert engine.state.revealed == [0]


def test_win_scenario_2x2():
    engine = rigged_engine(["A", "A", "B", "B"])
    engine.flip(0)
    result = engine.flip(1)
    assert result.status == MATCH
    assert result.matched == [0, 1]
    assert engine.state.matched_count == 2
    assert not engine.won

    engine.flip(2)
    result = engine.flip(3)
    assert result.status == WON
    assert result.won
    assert engine.state.matched_count == 4
    assert engine.state.phase == WON
    assert engine.state.moves == 2


def test_nothing_changes_after_win():
    engine = rigged_engine(["A", "A", "B", "B"])
    for i in range(4):
        engine.flip(i)
    engine.tick()
    assert engine.state.elapsed_seconds == 0
    assert engine.flip(0).status == IGNORED
    assert engine.state.moves == 2


def test_moves_count_pairs_not_flips():
    engine = GameEngine(rng=random.Random(3))
    engine.new_game("4x4")
    rng = random.Random(11)
    pairs = 0
    for _ in range(200):
        if engine.won:
            break
        if len(engine.state.revealed) == 2:
            engine.resolve_mismatch()
        result = engine.flip(rng.randrange(16))
        if result.status in (MATCH, MISMATCH, WON):
            pairs += 1
        assert engine.state.matched_count % 2 == 0
        assert engine.state.matched_count <= 16
        assert len(engine.state.revealed) <= 2
    assert engine.state.moves == pairs
    assert engine.won == (engine.state.matched_count == 16)


def test_tick_only_counts_dealt_games():
    engine = GameEngine()
    assert engine.tick() == 0
    engine.new_game("2x2")
    assert engine.tick() == 1
    assert engine.tick() == 2


def test_restore_keeps_deck_order_and_counters():
    snapshot = PersistedSnapshot(
        difficulty="2x2", moves=3, elapsed_seconds=42,
        matched=[1, 3], revealed=[0], deck=["A", "B", "A", "B"],
    )
    engine = GameEngine()
    assert engine.restore(snapshot)
    state = engine.state
    assert [c.symbol for c in state.cards] == ["A", "B", "A", "B"]
    assert state.moves == 3
    assert state.elapsed_seconds == 42
    assert state.matched_count == 2
    assert state.revealed == [0]
    assert state.cards[0].revealed
    assert state.phase == DEALT

    assert engine.flip(2).status == WON


def test_restore_hides_pending_pair():
    snapshot = PersistedSnapshot(
        difficulty="2x2", moves=1, revealed=[0, 1], deck=["A", "B", "A", "B"],
    )
    engine = GameEngine()
    assert engine.restore(snapshot)
    assert engine.state.revealed == []
    assert not any(card.revealed for card in engine.state.cards)
    assert engine.flip(0).status == AWAITING_SECOND


def test_restore_finished_game_is_won():
    snapshot = PersistedSnapshot(
        difficulty="1x2", moves=1, elapsed_seconds=5, matched=[0, 1], deck=["A", "A"],
    )
    engine = GameEngine()
    assert engine.restore(snapshot)
    assert engine.won
    assert engine.tick() == 5


@pytest.mark.parametrize("snapshot", [
    None,
    PersistedSnapshot(difficulty="2x2"),
    PersistedSnapshot(difficulty="2x2", deck=["A", "A", "A", "B"]),
    PersistedSnapshot(difficulty="2x2", deck=["A", "A", "B"]),
    PersistedSnapshot(difficulty="2x2", matched=[0, 1], deck=["A", "B", "A", "B"]),
    PersistedSnapshot(difficulty="2x2", revealed=[7], deck=["A", "B", "A", "B"]),
    PersistedSnapshot(difficulty="3x3", deck=["A"] * 9),
])
def test_restore_rejects_inconsistent_snapshots(snapshot):
    engine = GameEngine()
    engine.new_game("4x4")
    before = engine.state
    assert not engine.restore(snapshot)
    assert engine.state is before


def test_state_snapshot_matches_engine():
    engine = rigged_engine(["A", "B", "A", "B"])
    engine.flip(0)
    engine.flip(2)
    engine.flip(1)
    snapshot = engine.state.to_snapshot()
    assert snapshot.difficulty == "2x2"
    assert snapshot.moves == 1
    assert snapshot.matched == [0, 2]
    assert snapshot.matched_count == 2
    assert snapshot.revealed == [1]
    assert snapshot.deck == ["A", "B", "A", "B"]


def test_board_string():
    engine = rigged_engine(["A", "B", "A", "B"])
    engine.flip(0)
    engine.flip(2)
    engine.flip(1)
    assert str(engine) == "M B\nM #"
