"""
SQLite adapters for the local card store and the authority store.

Both open one connection in autocommit mode and drive transactions
explicitly, so a `with store.transaction():` block commits or rolls back
every write inside it as one unit. Nested blocks join the outer one.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from flashmark.domain.constants import MAX_CARD_ID, ORPHAN_PREVIEW_LEN
from flashmark.domain.errors import IdentityExhaustion
from flashmark.domain.models import (
    Algorithm,
    AnswerMode,
    Card,
    CardState,
    CardStatus,
    DeckSettings,
    GlobalSettings,
    MatchingMode,
    RatingScale,
    Review,
    SyncState,
    parse_timestamp,
)
from flashmark.domain.ports import CardStore
from flashmark.domain.sync.models import IdAssignment, OrphanInfo, StoredUpload
from flashmark.domain.sync.ports import AuthorityStore

logger = logging.getLogger(__name__)

LOCAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY,
    deck_path TEXT NOT NULL,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    source_file TEXT NOT NULL,
    deleted_at TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cards_deck ON cards(deck_path);

CREATE TABLE IF NOT EXISTS card_states (
    card_id INTEGER NOT NULL,
    device_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'new',
    interval_days REAL NOT NULL DEFAULT 0,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    stability REAL,
    difficulty REAL,
    lapses INTEGER NOT NULL DEFAULT 0,
    reviews_count INTEGER NOT NULL DEFAULT 0,
    due_date TEXT,
    synced INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (card_id, device_id)
);

CREATE TABLE IF NOT EXISTS pending_reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL,
    reviewed_at TEXT NOT NULL,
    rating INTEGER NOT NULL,
    rating_scale TEXT NOT NULL,
    answer_mode TEXT NOT NULL,
    typed_answer TEXT,
    was_correct INTEGER,
    time_taken_ms INTEGER,
    interval_before REAL NOT NULL,
    interval_after REAL NOT NULL,
    ease_before REAL NOT NULL,
    ease_after REAL NOT NULL,
    algorithm TEXT NOT NULL,
    state_after TEXT,
    synced INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_pending_reviews_synced ON pending_reviews(synced, id);

CREATE TABLE IF NOT EXISTS global_settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    algorithm TEXT NOT NULL,
    rating_scale TEXT NOT NULL,
    matching_mode TEXT NOT NULL,
    fuzzy_threshold REAL NOT NULL,
    new_cards_per_day INTEGER NOT NULL,
    reviews_per_day INTEGER NOT NULL,
    daily_reset_hour INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS deck_settings (
    deck_path TEXT PRIMARY KEY,
    algorithm TEXT,
    rating_scale TEXT,
    matching_mode TEXT,
    fuzzy_threshold REAL,
    new_cards_per_day INTEGER,
    reviews_per_day INTEGER
);

CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_sync_at TEXT,
    pending_changes INTEGER NOT NULL DEFAULT 0
);
"""

AUTHORITY_SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    device_id TEXT PRIMARY KEY,
    token TEXT NOT NULL UNIQUE,
    name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS id_sequence (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    last_value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY,
    device_id TEXT NOT NULL,
    deck_path TEXT NOT NULL,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    source_file TEXT NOT NULL,
    deleted_at TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cards_device ON cards(device_id, updated_at);

CREATE TABLE IF NOT EXISTS uploads (
    device_id TEXT NOT NULL,
    path TEXT NOT NULL,
    received_hash TEXT NOT NULL,
    result_content TEXT NOT NULL,
    new_ids TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (device_id, path)
);

CREATE TABLE IF NOT EXISTS reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    device_id TEXT NOT NULL,
    card_id INTEGER NOT NULL,
    reviewed_at TEXT NOT NULL,
    rating INTEGER NOT NULL,
    rating_scale TEXT NOT NULL,
    answer_mode TEXT NOT NULL,
    typed_answer TEXT,
    was_correct INTEGER,
    time_taken_ms INTEGER,
    interval_before REAL NOT NULL,
    interval_after REAL NOT NULL,
    ease_before REAL NOT NULL,
    ease_after REAL NOT NULL,
    algorithm TEXT NOT NULL,
    state_after TEXT
);
CREATE INDEX IF NOT EXISTS idx_reviews_card ON reviews(device_id, card_id);

CREATE TABLE IF NOT EXISTS card_states (
    device_id TEXT NOT NULL,
    card_id INTEGER NOT NULL,
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (device_id, card_id)
);

CREATE TABLE IF NOT EXISTS global_settings (
    device_id TEXT PRIMARY KEY,
    settings TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS deck_settings (
    device_id TEXT NOT NULL,
    deck_path TEXT NOT NULL,
    settings TEXT NOT NULL,
    PRIMARY KEY (device_id, deck_path)
);
"""


def format_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO-8601, so stored timestamps sort as strings."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _opt_ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


def _opt_bool(value) -> bool | None:
    return None if value is None else bool(value)


def _like_prefix(deck_path: str) -> str:
    escaped = deck_path.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "/%"


def connect(db_path: Path | str) -> sqlite3.Connection:
    in_memory = str(db_path) == ":memory:"
    if not in_memory:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(db_path), timeout=5, check_same_thread=False, isolation_level=None
    )
    conn.row_factory = sqlite3.Row
    if not in_memory:
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


class _SqliteBase:
    schema = ""

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = db_path
        self.conn = connect(db_path)
        self.conn.executescript(self.schema)
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self.conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self.conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if outermost:
                self.conn.execute("COMMIT")

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ---------- Row mapping ----------


def _card_from_row(row: sqlite3.Row) -> Card:
    return Card(
        id=row["id"],
        deck_path=row["deck_path"],
        question=row["question"],
        answer=row["answer"],
        source_file=row["source_file"],
        deleted_at=parse_timestamp(row["deleted_at"]),
    )


def _state_from_row(row: sqlite3.Row) -> CardState:
    return CardState(
        status=CardStatus(row["status"]),
        interval_days=row["interval_days"],
        ease_factor=row["ease_factor"],
        stability=row["stability"],
        difficulty=row["difficulty"],
        lapses=row["lapses"],
        reviews_count=row["reviews_count"],
        due_date=parse_timestamp(row["due_date"]),
    )


def _dump_state(state: CardState | None) -> str | None:
    return json.dumps(state.to_dict()) if state is not None else None


def _load_state(raw: str | None) -> CardState | None:
    return CardState.from_dict(json.loads(raw)) if raw else None


_REVIEW_COLUMNS = (
    "card_id, reviewed_at, rating, rating_scale, answer_mode, typed_answer, was_correct, "
    "time_taken_ms, interval_before, interval_after, ease_before, ease_after, algorithm, "
    "state_after"
)


def _review_values(review: Review) -> tuple:
    return (
        review.card_id,
        format_timestamp(review.reviewed_at),
        int(review.rating),
        RatingScale(review.rating_scale).value,
        AnswerMode(review.answer_mode).value,
        review.typed_answer,
        None if review.was_correct is None else int(review.was_correct),
        review.time_taken_ms,
        review.interval_before,
        review.interval_after,
        review.ease_before,
        review.ease_after,
        Algorithm(review.algorithm).value,
        _dump_state(review.state_after),
    )


def _review_from_row(row: sqlite3.Row, synced: bool) -> Review:
    return Review(
        id=row["id"],
        card_id=row["card_id"],
        reviewed_at=parse_timestamp(row["reviewed_at"]),
        rating=row["rating"],
        rating_scale=RatingScale(row["rating_scale"]),
        answer_mode=AnswerMode(row["answer_mode"]),
        typed_answer=row["typed_answer"],
        was_correct=_opt_bool(row["was_correct"]),
        time_taken_ms=row["time_taken_ms"],
        interval_before=row["interval_before"],
        interval_after=row["interval_after"],
        ease_before=row["ease_before"],
        ease_after=row["ease_after"],
        algorithm=Algorithm(row["algorithm"]),
        state_after=_load_state(row["state_after"]),
        synced=synced,
    )


def _global_to_dict(settings: GlobalSettings) -> dict:
    return {
        "algorithm": settings.algorithm.value,
        "rating_scale": settings.rating_scale.value,
        "matching_mode": settings.matching_mode.value,
        "fuzzy_threshold": settings.fuzzy_threshold,
        "new_cards_per_day": settings.new_cards_per_day,
        "reviews_per_day": settings.reviews_per_day,
        "daily_reset_hour": settings.daily_reset_hour,
    }


def _global_from_mapping(data) -> GlobalSettings:
    return GlobalSettings(
        algorithm=Algorithm(data["algorithm"]),
        rating_scale=RatingScale(data["rating_scale"]),
        matching_mode=MatchingMode(data["matching_mode"]),
        fuzzy_threshold=data["fuzzy_threshold"],
        new_cards_per_day=data["new_cards_per_day"],
        reviews_per_day=data["reviews_per_day"],
        daily_reset_hour=data["daily_reset_hour"],
    )


def _deck_to_dict(settings: DeckSettings) -> dict:
    def value(v):
        return v.value if hasattr(v, "value") else v

    return {
        "deck_path": settings.deck_path,
        "algorithm": value(settings.algorithm),
        "rating_scale": value(settings.rating_scale),
        "matching_mode": value(settings.matching_mode),
        "fuzzy_threshold": settings.fuzzy_threshold,
        "new_cards_per_day": settings.new_cards_per_day,
        "reviews_per_day": settings.reviews_per_day,
    }


def _deck_from_mapping(data) -> DeckSettings:
    def enum(cls, v):
        return cls(v) if v is not None else None

    return DeckSettings(
        deck_path=data["deck_path"],
        algorithm=enum(Algorithm, data["algorithm"]),
        rating_scale=enum(RatingScale, data["rating_scale"]),
        matching_mode=enum(MatchingMode, data["matching_mode"]),
        fuzzy_threshold=data["fuzzy_threshold"],
        new_cards_per_day=data["new_cards_per_day"],
        reviews_per_day=data["reviews_per_day"],
    )


# ---------- Local store ----------


class SqliteCardStore(_SqliteBase, CardStore):
    """Per-device store: cards, learning state, the review queue and settings."""

    schema = LOCAL_SCHEMA

    def get_card(self, card_id: int) -> Card | None:
        row = self.conn.execute("SELECT * FROM cards WHERE id = ?", (card_id,)).fetchone()
        return _card_from_row(row) if row else None

    def list_cards(self, deck_path: str | None = None, include_deleted: bool = False) -> list[Card]:
        sql = "SELECT * FROM cards WHERE 1 = 1"
        params: list = []
        if deck_path:
            sql += " AND (deck_path = ? OR deck_path LIKE ? ESCAPE '\\')"
            params += [deck_path, _like_prefix(deck_path)]
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        sql += " ORDER BY id"
        return [_card_from_row(r) for r in self.conn.execute(sql, params)]

    def upsert_cards(self, cards: list[Card]) -> int:
        if not cards:
            return 0
        now = format_timestamp(datetime.now(timezone.utc))
        with self.transaction():
            self.conn.executemany(
                """
                INSERT INTO cards (id, deck_path, question, answer, source_file, deleted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    deck_path = excluded.deck_path,
                    question = excluded.question,
                    answer = excluded.answer,
                    source_file = excluded.source_file,
                    deleted_at = excluded.deleted_at,
                    updated_at = excluded.updated_at
                """,
                [
                    (
                        c.id,
                        c.deck_path,
                        c.question,
                        c.answer,
                        c.source_file,
                        _opt_ts(c.deleted_at),
                        now,
                    )
                    for c in cards
                ],
            )
        return len(cards)

    def soft_delete(self, card_ids: list[int], at: datetime) -> int:
        if not card_ids:
            return 0
        ts = format_timestamp(at)
        changed = 0
        with self.transaction():
            for card_id in card_ids:
                cur = self.conn.execute(
                    "UPDATE cards SET deleted_at = ?, updated_at = ? "
                    "WHERE id = ? AND deleted_at IS NULL",
                    (ts, ts, card_id),
                )
                changed += cur.rowcount
        return changed

    # ---------- Learning state ----------

    def get_card_state(self, card_id: int, device: str) -> CardState | None:
        row = self.conn.execute(
            "SELECT * FROM card_states WHERE card_id = ? AND device_id = ?", (card_id, device)
        ).fetchone()
        return _state_from_row(row) if row else None

    def put_card_state(
        self, card_id: int, device: str, state: CardState, synced: bool = False
    ) -> None:
        now = format_timestamp(datetime.now(timezone.utc))
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO card_states (
                    card_id, device_id, status, interval_days, ease_factor, stability,
                    difficulty, lapses, reviews_count, due_date, synced, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(card_id, device_id) DO UPDATE SET
                    status = excluded.status,
                    interval_days = excluded.interval_days,
                    ease_factor = excluded.ease_factor,
                    stability = excluded.stability,
                    difficulty = excluded.difficulty,
                    lapses = excluded.lapses,
                    reviews_count = excluded.reviews_count,
                    due_date = excluded.due_date,
                    synced = excluded.synced,
                    updated_at = excluded.updated_at
                """,
                (
                    card_id,
                    device,
                    state.status.value,
                    state.interval_days,
                    state.ease_factor,
                    state.stability,
                    state.difficulty,
                    state.lapses,
                    state.reviews_count,
                    _opt_ts(state.due_date),
                    int(synced),
                    now,
                ),
            )

    def list_card_states(self, device: str) -> dict[int, CardState]:
        rows = self.conn.execute("SELECT * FROM card_states WHERE device_id = ?", (device,))
        return {row["card_id"]: _state_from_row(row) for row in rows}

    # ---------- Review queue ----------

    def enqueue_pending_review(self, review: Review) -> int:
        with self.transaction():
            cur = self.conn.execute(
                f"INSERT INTO pending_reviews ({_REVIEW_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _review_values(review),
            )
        return cur.lastrowid

    def drain_pending_reviews(self, up_to: int | None = None) -> list[Review]:
        sql = "SELECT * FROM pending_reviews WHERE synced = 0"
        params: list = []
        if up_to is not None:
            sql += " AND id <= ?"
            params.append(up_to)
        sql += " ORDER BY id"
        return [_review_from_row(r, synced=False) for r in self.conn.execute(sql, params)]

    def mark_reviews_synced(self, review_ids: list[int]) -> None:
        if not review_ids:
            return
        with self.transaction():
            self.conn.executemany(
                "UPDATE pending_reviews SET synced = 1 WHERE id = ?",
                [(rid,) for rid in review_ids],
            )

    def count_pending_reviews(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM pending_reviews WHERE synced = 0").fetchone()
        return row[0]

    def last_review_id(self) -> int:
        row = self.conn.execute("SELECT COALESCE(MAX(id), 0) FROM pending_reviews").fetchone()
        return row[0]

    def list_reviews(self, card_id: int) -> list[Review]:
        rows = self.conn.execute(
            "SELECT * FROM pending_reviews WHERE card_id = ? ORDER BY id", (card_id,)
        )
        return [_review_from_row(r, synced=bool(r["synced"])) for r in rows]

    # ---------- Settings ----------

    def get_settings(self) -> GlobalSettings:
        row = self.conn.execute("SELECT * FROM global_settings WHERE id = 1").fetchone()
        return _global_from_mapping(row) if row else GlobalSettings()

    def put_settings(self, settings: GlobalSettings) -> None:
        data = _global_to_dict(settings)
        with self.transaction():
            self.conn.execute(
                """
                INSERT OR REPLACE INTO global_settings (
                    id, algorithm, rating_scale, matching_mode, fuzzy_threshold,
                    new_cards_per_day, reviews_per_day, daily_reset_hour
                ) VALUES (1, :algorithm, :rating_scale, :matching_mode, :fuzzy_threshold,
                          :new_cards_per_day, :reviews_per_day, :daily_reset_hour)
                """,
                data,
            )

    def get_deck_settings(self, deck_path: str) -> DeckSettings | None:
        row = self.conn.execute(
            "SELECT * FROM deck_settings WHERE deck_path = ?", (deck_path,)
        ).fetchone()
        return _deck_from_mapping(row) if row else None

    def put_deck_settings(self, settings: DeckSettings) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT OR REPLACE INTO deck_settings (
                    deck_path, algorithm, rating_scale, matching_mode, fuzzy_threshold,
                    new_cards_per_day, reviews_per_day
                ) VALUES (:deck_path, :algorithm, :rating_scale, :matching_mode,
                          :fuzzy_threshold, :new_cards_per_day, :reviews_per_day)
                """,
                _deck_to_dict(settings),
            )

    def list_deck_settings(self) -> list[DeckSettings]:
        rows = self.conn.execute("SELECT * FROM deck_settings ORDER BY deck_path")
        return [_deck_from_mapping(r) for r in rows]

    # ---------- Sync bookkeeping ----------

    def get_sync_state(self) -> SyncState:
        row = self.conn.execute("SELECT * FROM sync_state WHERE id = 1").fetchone()
        if row is None:
            return SyncState()
        return SyncState(
            last_sync_at=parse_timestamp(row["last_sync_at"]),
            pending_changes=row["pending_changes"],
        )

    def put_sync_state(self, state: SyncState) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO sync_state (id, last_sync_at, pending_changes) "
                "VALUES (1, ?, ?)",
                (_opt_ts(state.last_sync_at), state.pending_changes),
            )


# ---------- Authority store ----------


class SqliteAuthorityStore(_SqliteBase, AuthorityStore):
    """Server-side store shared by every registered device."""

    schema = AUTHORITY_SCHEMA

    def create_device(self, device_id: str, token: str, name: str | None) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT INTO devices (device_id, token, name, created_at) VALUES (?, ?, ?, ?)",
                (device_id, token, name, format_timestamp(datetime.now(timezone.utc))),
            )

    def device_for_token(self, token: str) -> str | None:
        row = self.conn.execute(
            "SELECT device_id FROM devices WHERE token = ?", (token,)
        ).fetchone()
        return row["device_id"] if row else None

    def next_card_id(self) -> int:
        with self.transaction():
            row = self.conn.execute("SELECT last_value FROM id_sequence WHERE id = 1").fetchone()
            last = row["last_value"] if row else 0
            if last >= MAX_CARD_ID:
                raise IdentityExhaustion(f"card id sequence exhausted at {last}")
            self.conn.execute(
                "INSERT OR REPLACE INTO id_sequence (id, last_value) VALUES (1, ?)", (last + 1,)
            )
        return last + 1

    def reserve_ids_through(self, value: int) -> None:
        """Advance the sequence so ids <= `value` are never handed out."""
        with self.transaction():
            row = self.conn.execute("SELECT last_value FROM id_sequence WHERE id = 1").fetchone()
            if row is None or row["last_value"] < value:
                self.conn.execute(
                    "INSERT OR REPLACE INTO id_sequence (id, last_value) VALUES (1, ?)", (value,)
                )

    def upsert_card(self, device_id: str, card: Card, at: datetime) -> None:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO cards (id, device_id, deck_path, question, answer, source_file,
                                   deleted_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    deck_path = excluded.deck_path,
                    question = excluded.question,
                    answer = excluded.answer,
                    source_file = excluded.source_file,
                    deleted_at = excluded.deleted_at,
                    updated_at = excluded.updated_at
                """,
                (
                    card.id,
                    device_id,
                    card.deck_path,
                    card.question,
                    card.answer,
                    card.source_file,
                    _opt_ts(card.deleted_at),
                    format_timestamp(at),
                ),
            )

    def card_owner(self, card_id: int) -> str | None:
        row = self.conn.execute("SELECT device_id FROM cards WHERE id = ?", (card_id,)).fetchone()
        return row["device_id"] if row else None

    def live_cards(self, device_id: str) -> list[OrphanInfo]:
        rows = self.conn.execute(
            f"SELECT id, SUBSTR(question, 1, {ORPHAN_PREVIEW_LEN}) AS preview FROM cards "
            "WHERE device_id = ? AND deleted_at IS NULL ORDER BY id",
            (device_id,),
        )
        return [OrphanInfo(card_id=r["id"], question_preview=r["preview"]) for r in rows]

    def soft_delete_cards(self, device_id: str, card_ids: list[int], at: datetime) -> int:
        ts = format_timestamp(at)
        changed = 0
        with self.transaction():
            for card_id in card_ids:
                cur = self.conn.execute(
                    "UPDATE cards SET deleted_at = ?, updated_at = ? "
                    "WHERE id = ? AND device_id = ? AND deleted_at IS NULL",
                    (ts, ts, card_id, device_id),
                )
                changed += cur.rowcount
        return changed

    def get_upload(self, device_id: str, path: str) -> StoredUpload | None:
        row = self.conn.execute(
            "SELECT * FROM uploads WHERE device_id = ? AND path = ?", (device_id, path)
        ).fetchone()
        if row is None:
            return None
        return StoredUpload(
            received_hash=row["received_hash"],
            result_content=row["result_content"],
            new_ids=[IdAssignment(**a) for a in json.loads(row["new_ids"])],
        )

    def put_upload(self, device_id: str, path: str, upload: StoredUpload, at: datetime) -> None:
        new_ids = [{"path": a.path, "line": a.line, "id": a.id} for a in upload.new_ids]
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO uploads "
                "(device_id, path, received_hash, result_content, new_ids, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    device_id,
                    path,
                    upload.received_hash,
                    upload.result_content,
                    json.dumps(new_ids),
                    format_timestamp(at),
                ),
            )

    def insert_review(self, device_id: str, review: Review) -> None:
        with self.transaction():
            self.conn.execute(
                f"INSERT INTO reviews (device_id, {_REVIEW_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (device_id, *_review_values(review)),
            )

    def put_card_state(self, device_id: str, card_id: int, state: CardState, at: datetime) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO card_states (device_id, card_id, state, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (device_id, card_id, _dump_state(state), format_timestamp(at)),
            )

    def cards_since(self, device_id: str, since: datetime | None) -> list[Card]:
        sql = "SELECT * FROM cards WHERE device_id = ?"
        params: list = [device_id]
        if since is not None:
            sql += " AND updated_at > ?"
            params.append(format_timestamp(since))
        sql += " ORDER BY id"
        return [_card_from_row(r) for r in self.conn.execute(sql, params)]

    def card_states_since(
        self, device_id: str, since: datetime | None
    ) -> list[tuple[int, CardState]]:
        sql = "SELECT card_id, state FROM card_states WHERE device_id = ?"
        params: list = [device_id]
        if since is not None:
            sql += " AND updated_at > ?"
            params.append(format_timestamp(since))
        sql += " ORDER BY card_id"
        return [(r["card_id"], _load_state(r["state"])) for r in self.conn.execute(sql, params)]

    def list_reviews(self, device_id: str, card_id: int) -> list[Review]:
        rows = self.conn.execute(
            "SELECT * FROM reviews WHERE device_id = ? AND card_id = ? ORDER BY id",
            (device_id, card_id),
        )
        return [_review_from_row(r, synced=True) for r in rows]

    def get_global_settings(self, device_id: str) -> GlobalSettings | None:
        row = self.conn.execute(
            "SELECT settings FROM global_settings WHERE device_id = ?", (device_id,)
        ).fetchone()
        return _global_from_mapping(json.loads(row["settings"])) if row else None

    def put_global_settings(self, device_id: str, settings: GlobalSettings) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO global_settings (device_id, settings) VALUES (?, ?)",
                (device_id, json.dumps(_global_to_dict(settings))),
            )

    def list_deck_settings(self, device_id: str) -> list[DeckSettings]:
        rows = self.conn.execute(
            "SELECT settings FROM deck_settings WHERE device_id = ? ORDER BY deck_path",
            (device_id,),
        )
        return [_deck_from_mapping(json.loads(r["settings"])) for r in rows]

    def put_deck_settings(self, device_id: str, settings: DeckSettings) -> None:
        with self.transaction():
            self.conn.execute(
                "INSERT OR REPLACE INTO deck_settings (device_id, deck_path, settings) "
                "VALUES (?, ?, ?)",
                (device_id, settings.deck_path, json.dumps(_deck_to_dict(settings))),
            )
