import sqlite3
import os
import json
import time
import threading
from typing import Any, Callable, Dict, List, Optional

from shared.models import Difficulty, PersistedSnapshot

STATE_KEY = "memory_game_state"
DIFFICULTY_KEY = "memory_game_difficulty"
DECK_KEY = "memory_game_deck"
TOTAL_MOVES_KEY = "memory_game_total_moves"

ONE_DAY = 24 * 60 * 60


class GameDatabase:
    """
    Small key/value store on top of SQLite.

    Every record holds a JSON value and an optional expiry timestamp. The file
    can be shared by several running games; SQLite takes care of the locking.
    """

    def __init__(self, db_file="memory_game.db", clock: Callable[[], float] = time.time):
        """
        Initialize the database connection.

        Args:
            db_file: Path to the SQLite database file
            clock: Wall clock used for expiry, replaceable in tests
        """
        self.db_file = db_file
        self.clock = clock
        self.conn = None
        self.lock = threading.RLock()
        self.initialize_db()

    def initialize_db(self) -> None:
        """
        Create the database and the records table if they don't exist.

        On failure the connection stays closed and the game runs without
        persistence; every later read or write reports the error.
        """
        conn = None
        try:
            db_dir = os.path.dirname(self.db_file)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir)

            # Autocommit mode, transactions are opened explicitly where needed
            conn = sqlite3.connect(self.db_file, timeout=5, isolation_level=None,
                                   check_same_thread=False)
            conn.execute('''
                CREATE TABLE IF NOT EXISTS records (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
            ''')
            self.conn = conn
        except (sqlite3.Error, OSError) as e:
            print(f"Database initialization error: {e}")
            if conn is not None:
                conn.close()
            self.conn = None

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def get(self, key: str) -> Optional[Any]:
        """
        Read a record.

        Returns:
            The decoded value, or None if the record is missing or expired

        Raises:
            ValueError: if the stored value is not valid JSON
        """
        with self.lock:
            row = self._connection().execute(
                "SELECT value, expires_at FROM records WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self.clock():
            return None
        try:
            return json.loads(value)
        except RecursionError:
            raise ValueError(f"Record {key!r} is nested too deeply")

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """
        Write a record, replacing any previous value.

        Args:
            key: Record name
            value: JSON-serializable value
            ttl: Seconds until the record expires, None for never
        """
        payload = json.dumps(value)
        expires_at = self.clock() + ttl if ttl is not None else None
        with self.lock:
            self._connection().execute(
                "INSERT OR REPLACE INTO records (key, value, expires_at) VALUES (?, ?, ?)",
                (key, payload, expires_at),
            )

    def expire(self, key: str) -> None:
        """Overwrite a record with a marker that is already expired."""
        with self.lock:
            self._connection().execute(
                "INSERT OR REPLACE INTO records (key, value, expires_at) VALUES (?, 'null', ?)",
                (key, self.clock() - 1),
            )

    def increment(self, key: str, amount: int = 1) -> int:
        """
        Atomically add to an integer record that never expires.

        Returns:
            The new value
        """
        with self.lock:
            conn = self._connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT value FROM records WHERE key = ?", (key,)
                ).fetchone()
                current = _as_counter(row[0]) if row else 0
                new_value = current + amount
                conn.execute(
                    "INSERT OR REPLACE INTO records (key, value, expires_at) VALUES (?, ?, NULL)",
                    (key, json.dumps(new_value)),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return new_value

    def set_many(self, records: Dict[str, Any], ttl: Optional[float] = None) -> None:
        """Write several records in one transaction, all or none."""
        payloads = [(key, json.dumps(value)) for key, value in records.items()]
        expires_at = self.clock() + ttl if ttl is not None else None
        with self.lock:
            conn = self._connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(
                    "INSERT OR REPLACE INTO records (key, value, expires_at) VALUES (?, ?, ?)",
                    [(key, payload, expires_at) for key, payload in payloads],
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _connection(self) -> sqlite3.Connection:
        if not self.conn:
            self.initialize_db()
        if not self.conn:
            raise sqlite3.OperationalError(f"Database {self.db_file} is not available")
        return self.conn


def _as_counter(payload) -> int:
    try:
        value = json.loads(payload)
    except (ValueError, RecursionError):
        return 0
    return _counter_value(value)


def _counter_value(value) -> int:
    # A corrupt counter restarts from zero instead of blocking every bump
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


class SnapshotStore:
    """
    Saves and restores the game in progress.

    Writes are best effort: a failing write is reported and the game carries
    on in memory. Reads never raise, anything unusable is treated as absent.
    """

    def __init__(self, db: GameDatabase, freshness_seconds: float = ONE_DAY):
        self.db = db
        self.freshness_seconds = freshness_seconds

    def save(self, state) -> bool:
        """
        Persist a GameState (deck order included) with a 1 day freshness window.

        Returns:
            True if the snapshot was written
        """
        try:
            snapshot = state.to_snapshot()
            self.db.set_many({
                STATE_KEY: snapshot.to_dict(),
                DIFFICULTY_KEY: {"difficulty": snapshot.difficulty},
                DECK_KEY: {"deck": snapshot.deck},
            }, self.freshness_seconds)
            return True
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            print(f"Error saving snapshot: {e}")
            return False

    def load(self) -> Optional[PersistedSnapshot]:
        """
        Read the saved game.

        Returns:
            The snapshot, or None if it is missing, expired or malformed
        """
        try:
            data = self.db.get(STATE_KEY)
            if data is None:
                return None
            if isinstance(data, dict) and "deck" not in data:
                deck_record = self.db.get(DECK_KEY)
                if isinstance(deck_record, dict) and "deck" in deck_record:
                    data = dict(data, deck=deck_record["deck"])
            return PersistedSnapshot.from_dict(data)
        except (sqlite3.Error, OSError, ValueError) as e:
            print(f"Ignoring unusable snapshot: {e}")
            return None

    def clear(self) -> None:
        """Invalidate the saved game. The chosen difficulty is kept."""
        try:
            self.db.expire(STATE_KEY)
            self.db.expire(DECK_KEY)
        except (sqlite3.Error, OSError) as e:
            print(f"Error clearing snapshot: {e}")

    def save_difficulty(self, difficulty) -> bool:
        try:
            self.db.set(DIFFICULTY_KEY, {"difficulty": str(difficulty)}, self.freshness_seconds)
            return True
        except sqlite3.Error as e:
            print(f"Error saving difficulty: {e}")
            return False

    def load_difficulty(self) -> Optional[Difficulty]:
        try:
            data = self.db.get(DIFFICULTY_KEY)
            if not isinstance(data, dict):
                return None
            return Difficulty.parse(data.get("difficulty"))
        except (sqlite3.Error, ValueError) as e:
            print(f"Ignoring unusable difficulty: {e}")
            return None


class CrossTabCounter:
    """
    Total number of moves made by every game sharing the same database file.

    Other running games learn about new totals through check_for_changes(),
    either called directly or from the watcher thread started with
    start_watching(). A game is not notified about its own bumps.
    """

    def __init__(self, db: GameDatabase, key: str = TOTAL_MOVES_KEY):
        self.db = db
        self.key = key
        self.observers: List[Callable[[int], None]] = []
        self.last_seen = self.read()
        self._stop = threading.Event()
        self._thread = None

    def read(self) -> int:
        try:
            value = self.db.get(self.key)
        except (sqlite3.Error, ValueError) as e:
            print(f"Error reading move counter: {e}")
            return 0
        return _counter_value(value)

    def bump(self) -> int:
        """
        Add one move to the shared total.

        Returns:
            The new total, or the last known total if the write failed
        """
        try:
            self.last_seen = self.db.increment(self.key)
        except sqlite3.Error as e:
            print(f"Error updating move counter: {e}")
        return self.last_seen

    def observe(self, callback: Callable[[int], None]) -> None:
        """Register a callback receiving the new total when another game changes it."""
        self.observers.append(callback)

    def check_for_changes(self) -> bool:
        """
        Compare the stored total with the last one seen and notify observers.

        Returns:
            True if observers were notified
        """
        total = self.read()
        if total == self.last_seen:
            return False
        self.last_seen = total
        for callback in list(self.observers):
            callback(total)
        return True

    def start_watching(self, interval: float = 1.0) -> None:
        """Poll for changes in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._watch, args=(interval,), daemon=True)
        self._thread.start()

    def stop_watching(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _watch(self, interval):
        """Background thread that reports totals written by other games."""
        while not self._stop.wait(interval):
            try:
                self.check_for_changes()
            except Exception as e:
                print(f"Error in move counter watcher: {e}")


# Shared instance for use throughout the application
db = None

def get_database(db_file="memory_game.db") -> GameDatabase:
    """Get the database instance, opening it on first use."""
    global db
    if db is None or db.db_file != db_file:
        db = GameDatabase(db_file)
    return db
