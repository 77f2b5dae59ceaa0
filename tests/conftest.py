import pytest

from database import GameDatabase, SnapshotStore, CrossTabCounter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock):
    database = GameDatabase(str(tmp_path / "memory_game.db"), clock=clock)
    yield database
    database.close()


@pytest.fixture
def store(db):
    return SnapshotStore(db)


@pytest.fixture
def counter(db):
    return CrossTabCounter(db)
