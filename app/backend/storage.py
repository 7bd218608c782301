import os
import threading
from typing import Dict, List, Optional, Protocol, Sequence

from .errors import InvalidStatusTransition
from .models import (
    AssumptionCategory,
    AssumptionRecord,
    DeckRecord,
    DeckStatus,
    NewAssumption,
    RiskLevel,
    statuses_that_can_reach,
    utc_now,
)

try:
    import psycopg
    from psycopg import errors as pg_errors
except Exception:  # pragma: no cover - only relevant when Postgres is enabled.
    psycopg = None
    pg_errors = None


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


def _check_transition(deck_id: int, current: DeckStatus, target: DeckStatus) -> None:
    if not current.can_transition_to(target):
        raise InvalidStatusTransition(
            f"Deck {deck_id} cannot move from {current.value} to {target.value}."
        )


class DeckStore(Protocol):
    storage_name: str

    def create_deck(self, *, name: str, file_name: str, status: DeckStatus = DeckStatus.ANALYZING) -> DeckRecord:
        pass

    def get_deck(self, deck_id: int) -> Optional[DeckRecord]:
        pass

    def list_decks(self) -> List[DeckRecord]:
        pass

    def update_deck_status(
        self,
        deck_id: int,
        status: DeckStatus,
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        pass

    def delete_deck(self, deck_id: int) -> None:
        pass

    def create_assumptions(self, items: Sequence[NewAssumption]) -> List[AssumptionRecord]:
        pass

    def complete_analysis(
        self,
        deck_id: int,
        items: Sequence[NewAssumption],
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        pass

    def get_assumptions_by_deck(self, deck_id: int) -> List[AssumptionRecord]:
        pass


class InMemoryDeckStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._decks: Dict[int, DeckRecord] = {}
        self._assumptions: Dict[int, List[AssumptionRecord]] = {}
        self._next_deck_id = 1
        self._next_assumption_id = 1
        self._lock = threading.Lock()

    def create_deck(self, *, name: str, file_name: str, status: DeckStatus = DeckStatus.ANALYZING) -> DeckRecord:
        with self._lock:
            deck = DeckRecord(
                id=self._next_deck_id,
                name=name,
                file_name=file_name,
                status=DeckStatus(status),
                created_at=utc_now(),
                slide_count=None,
            )
            self._next_deck_id += 1
            self._decks[deck.id] = deck
            return _copy_deck(deck)

    def get_deck(self, deck_id: int) -> Optional[DeckRecord]:
        with self._lock:
            deck = self._decks.get(deck_id)
            return _copy_deck(deck) if deck else None

    def list_decks(self) -> List[DeckRecord]:
        with self._lock:
            decks = sorted(self._decks.values(), key=lambda d: (d.created_at, d.id), reverse=True)
            return [_copy_deck(deck) for deck in decks]

    def update_deck_status(
        self,
        deck_id: int,
        status: DeckStatus,
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        status = DeckStatus(status)
        with self._lock:
            deck = self._decks.get(deck_id)
            if deck is None:
                raise KeyError(f"Deck {deck_id} not found.")
            _check_transition(deck_id, deck.status, status)
            deck.status = status
            if slide_count is not None:
                deck.slide_count = slide_count
            return _copy_deck(deck)

    def delete_deck(self, deck_id: int) -> None:
        with self._lock:
            self._assumptions.pop(deck_id, None)
            self._decks.pop(deck_id, None)

    def create_assumptions(self, items: Sequence[NewAssumption]) -> List[AssumptionRecord]:
        if not items:
            return []
        with self._lock:
            missing = {item.deck_id for item in items if item.deck_id not in self._decks}
            if missing:
                raise KeyError(f"Deck(s) not found: {sorted(missing)}")
            return self._append_assumptions(items)

    def complete_analysis(
        self,
        deck_id: int,
        items: Sequence[NewAssumption],
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        _check_items_belong_to(deck_id, items)
        with self._lock:
            deck = self._decks.get(deck_id)
            if deck is None:
                raise KeyError(f"Deck {deck_id} not found.")
            _check_transition(deck_id, deck.status, DeckStatus.COMPLETE)
            self._append_assumptions(items)
            deck.status = DeckStatus.COMPLETE
            if slide_count is not None:
                deck.slide_count = slide_count
            return _copy_deck(deck)

    def _append_assumptions(self, items: Sequence[NewAssumption]) -> List[AssumptionRecord]:
        now = utc_now()
        created: List[AssumptionRecord] = []
        for item in items:
            record = AssumptionRecord(
                id=self._next_assumption_id,
                deck_id=item.deck_id,
                text=item.text,
                category=AssumptionCategory(item.category),
                risk_level=RiskLevel(item.risk_level),
                source_slide=item.source_slide,
                stress_question=item.stress_question,
                reasoning=item.reasoning,
                created_at=now,
            )
            self._next_assumption_id += 1
            self._assumptions.setdefault(item.deck_id, []).append(record)
            created.append(record)
        return created

    def get_assumptions_by_deck(self, deck_id: int) -> List[AssumptionRecord]:
        with self._lock:
            return list(self._assumptions.get(deck_id, []))


def _copy_deck(deck: DeckRecord) -> DeckRecord:
    return DeckRecord(
        id=deck.id,
        name=deck.name,
        file_name=deck.file_name,
        status=deck.status,
        created_at=deck.created_at,
        slide_count=deck.slide_count,
    )


_DECK_COLUMNS = "id, name, file_name, status, slide_count, created_at"
_ASSUMPTION_COLUMNS = (
    "id, deck_id, text, category, risk_level, source_slide, stress_question, reasoning, created_at"
)


def _deck_from_row(row) -> DeckRecord:
    deck_id, name, file_name, status, slide_count, created_at = row
    return DeckRecord(
        id=deck_id,
        name=name,
        file_name=file_name,
        status=DeckStatus(status),
        slide_count=slide_count,
        created_at=created_at,
    )


def _assumption_from_row(row) -> AssumptionRecord:
    (
        assumption_id,
        deck_id,
        text,
        category,
        risk_level,
        source_slide,
        stress_question,
        reasoning,
        created_at,
    ) = row
    return AssumptionRecord(
        id=assumption_id,
        deck_id=deck_id,
        text=text,
        category=AssumptionCategory(category),
        risk_level=RiskLevel(risk_level),
        source_slide=source_slide,
        stress_question=stress_question,
        reasoning=reasoning,
        created_at=created_at,
    )


def _check_items_belong_to(deck_id: int, items: Sequence[NewAssumption]) -> None:
    foreign = {item.deck_id for item in items if item.deck_id != deck_id}
    if foreign:
        raise ValueError(f"Assumptions for deck(s) {sorted(foreign)} cannot complete deck {deck_id}.")


def _guarded_status_update(cur, deck_id: int, status: DeckStatus, slide_count: Optional[int]) -> DeckRecord:
    allowed_from = [source.value for source in statuses_that_can_reach(status)]

    assignments = ["status = %s"]
    values: list = [status.value]
    if slide_count is not None:
        assignments.append("slide_count = %s")
        values.append(slide_count)
    values.extend([deck_id, allowed_from])

    cur.execute(
        f"UPDATE decks SET {', '.join(assignments)} "
        f"WHERE id = %s AND status = ANY(%s) RETURNING {_DECK_COLUMNS}",
        values,
    )
    row = cur.fetchone()
    if row is not None:
        return _deck_from_row(row)

    cur.execute("SELECT status FROM decks WHERE id = %s", (deck_id,))
    current = cur.fetchone()
    if current is None:
        raise KeyError(f"Deck {deck_id} not found.")
    _check_transition(deck_id, DeckStatus(current[0]), status)
    raise InvalidStatusTransition(f"Deck {deck_id} changed status concurrently.")


def _insert_assumption(cur, item: NewAssumption) -> AssumptionRecord:
    cur.execute(
        f"""
        INSERT INTO assumptions (
            deck_id,
            text,
            category,
            risk_level,
            source_slide,
            stress_question,
            reasoning
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {_ASSUMPTION_COLUMNS}
        """,
        (
            item.deck_id,
            item.text,
            AssumptionCategory(item.category).value,
            RiskLevel(item.risk_level).value,
            item.source_slide,
            item.stress_question,
            item.reasoning,
        ),
    )
    return _assumption_from_row(cur.fetchone())


class PostgresDeckStore:
    storage_name = "postgres"

    def __init__(self, database_url: str) -> None:
        if psycopg is None:
            raise RuntimeError("psycopg is required when DATABASE_URL is set.")
        self._database_url = normalize_database_url(database_url)
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS decks (
                        id SERIAL PRIMARY KEY,
                        name TEXT NOT NULL,
                        file_name TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending',
                        slide_count INTEGER NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_decks_created_at
                    ON decks (created_at DESC)
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS assumptions (
                        id SERIAL PRIMARY KEY,
                        deck_id INTEGER NOT NULL
                            REFERENCES decks(id)
                            ON DELETE CASCADE,
                        text TEXT NOT NULL,
                        category TEXT NOT NULL,
                        risk_level TEXT NOT NULL,
                        source_slide TEXT NOT NULL DEFAULT 'General',
                        stress_question TEXT NOT NULL,
                        reasoning TEXT NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_assumptions_deck_id
                    ON assumptions (deck_id)
                    """
                )

    def create_deck(self, *, name: str, file_name: str, status: DeckStatus = DeckStatus.ANALYZING) -> DeckRecord:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO decks (name, file_name, status)
                    VALUES (%s, %s, %s)
                    RETURNING {_DECK_COLUMNS}
                    """,
                    (name, file_name, DeckStatus(status).value),
                )
                return _deck_from_row(cur.fetchone())

    def get_deck(self, deck_id: int) -> Optional[DeckRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_DECK_COLUMNS} FROM decks WHERE id = %s", (deck_id,))
                row = cur.fetchone()
                if row is None:
                    return None
                return _deck_from_row(row)

    def list_decks(self) -> List[DeckRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_DECK_COLUMNS} FROM decks ORDER BY created_at DESC, id DESC")
                return [_deck_from_row(row) for row in cur.fetchall()]

    def update_deck_status(
        self,
        deck_id: int,
        status: DeckStatus,
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        with self._connect() as conn:
            with conn.cursor() as cur:
                return _guarded_status_update(cur, deck_id, DeckStatus(status), slide_count)

    def delete_deck(self, deck_id: int) -> None:
        with self._connect() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM assumptions WHERE deck_id = %s", (deck_id,))
                    cur.execute("DELETE FROM decks WHERE id = %s", (deck_id,))

    def create_assumptions(self, items: Sequence[NewAssumption]) -> List[AssumptionRecord]:
        if not items:
            return []

        try:
            with self._connect() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        return [_insert_assumption(cur, item) for item in items]
        except pg_errors.ForeignKeyViolation as exc:
            raise KeyError(f"Deck not found while saving assumptions: {exc}") from exc

    def complete_analysis(
        self,
        deck_id: int,
        items: Sequence[NewAssumption],
        *,
        slide_count: Optional[int] = None,
    ) -> DeckRecord:
        _check_items_belong_to(deck_id, items)
        try:
            with self._connect() as conn:
                # Status update runs first; a deck that cannot complete aborts before any insert.
                with conn.transaction():
                    with conn.cursor() as cur:
                        deck = _guarded_status_update(cur, deck_id, DeckStatus.COMPLETE, slide_count)
                        for item in items:
                            _insert_assumption(cur, item)
                        return deck
        except pg_errors.ForeignKeyViolation as exc:
            raise KeyError(f"Deck {deck_id} not found while saving assumptions: {exc}") from exc

    def get_assumptions_by_deck(self, deck_id: int) -> List[AssumptionRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_ASSUMPTION_COLUMNS} FROM assumptions WHERE deck_id = %s ORDER BY id",
                    (deck_id,),
                )
                return [_assumption_from_row(row) for row in cur.fetchall()]


def build_deck_store() -> DeckStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresDeckStore(database_url=database_url)
    return InMemoryDeckStore()
