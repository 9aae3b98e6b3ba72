"""
store.py - Submission Store (off-chain source of truth).

The ledger only ever sees a fingerprint; the full submission lives here and
is the only place where it may change after creation. Each record also
keeps its anchoring outcome (PENDING | ANCHORED | FAILED) so the display
surface can offer a re-check without asking the chain.

Two implementations share the same coroutine interface:
  InMemorySubmissionStore  - development and tests
  PostgresSubmissionStore  - asyncpg pool, selected when DATABASE_URL is set
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import asyncpg

from .schemas import AnchorStatus, SubmissionIn, SubmissionOut

log = logging.getLogger("ewaste.store")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_submission_id() -> str:
    return uuid.uuid4().hex


class InMemorySubmissionStore:
    def __init__(self):
        self._rows: dict[str, dict] = {}

    async def init(self):
        log.info("in-memory submission store ready")

    async def close(self):
        pass

    async def insert_submission(self, body: SubmissionIn) -> SubmissionOut:
        row = {
            "submission_id": new_submission_id(),
            **body.model_dump(),
            "status": "Pending",
            "created_at": utc_now(),
            "anchor_status": AnchorStatus.PENDING,
            "anchor_tx_hash": None,
            "anchor_error": None,
        }
        self._rows[row["submission_id"]] = row
        return SubmissionOut(**row)

    async def get_submission(self, submission_id: str) -> Optional[SubmissionOut]:
        row = self._rows.get(submission_id)
        return SubmissionOut(**row) if row else None

    async def _update(self, submission_id: str, **fields) -> Optional[SubmissionOut]:
        row = self._rows.get(submission_id)
        if row is None:
            return None
        row.update(fields)
        return SubmissionOut(**row)

    async def update_status(self, submission_id: str, status: str) -> Optional[SubmissionOut]:
        return await self._update(submission_id, status=status)

    async def mark_anchored(self, submission_id: str, tx_hash: str) -> Optional[SubmissionOut]:
        return await self._update(submission_id, anchor_status=AnchorStatus.ANCHORED,
                                  anchor_tx_hash=tx_hash, anchor_error=None)

    async def mark_anchor_failed(self, submission_id: str, error: str) -> Optional[SubmissionOut]:
        return await self._update(submission_id, anchor_status=AnchorStatus.FAILED,
                                  anchor_error=error)

    async def list_unanchored(self, limit: int = 100) -> list[SubmissionOut]:
        rows = [r for r in self._rows.values() if r["anchor_status"] != AnchorStatus.ANCHORED]
        rows.sort(key=lambda r: r["created_at"])
        return [SubmissionOut(**r) for r in rows[:limit]]


#  PostgreSQL

CREATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS submissions (
    submission_id   TEXT PRIMARY KEY,
    item_type       TEXT             NOT NULL,
    weight_kg       DOUBLE PRECISION NOT NULL CHECK (weight_kg >= 0),
    location        TEXT             NOT NULL,
    owner_id        TEXT             NOT NULL,
    status          TEXT             NOT NULL DEFAULT 'Pending',
    created_at      TEXT             NOT NULL,
    anchor_status   TEXT             NOT NULL DEFAULT 'PENDING',
    anchor_tx_hash  TEXT,
    anchor_error    TEXT
);

CREATE INDEX IF NOT EXISTS idx_submissions_owner  ON submissions (owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_submissions_anchor ON submissions (anchor_status);
"""


class PostgresSubmissionStore:
    def __init__(self, dsn: str):
        self._dsn = dsn
        self._pool: Optional[asyncpg.Pool] = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(self._dsn, min_size=2, max_size=10)
        return self._pool

    async def init(self):
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            await conn.execute(CREATE_SCHEMA)
        log.info("database schema initialised")

    async def close(self):
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def insert_submission(self, body: SubmissionIn) -> SubmissionOut:
        pool = await self.get_pool()
        submission_id = new_submission_id()
        created_at = utc_now()
        async with pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO submissions
                  (submission_id, item_type, weight_kg, location, owner_id,
                   status, created_at, anchor_status)
                VALUES ($1,$2,$3,$4,$5,'Pending',$6,'PENDING')
            """,
                submission_id, body.item_type, body.weight_kg, body.location,
                body.owner_id, created_at,
            )
        return SubmissionOut(submission_id=submission_id, created_at=created_at,
                             **body.model_dump())

    async def get_submission(self, submission_id: str) -> Optional[SubmissionOut]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM submissions WHERE submission_id=$1", submission_id)
        return SubmissionOut(**dict(row)) if row else None

    async def _update(self, submission_id: str, sql: str, *params) -> Optional[SubmissionOut]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(sql, submission_id, *params)
        return SubmissionOut(**dict(row)) if row else None

    async def update_status(self, submission_id: str, status: str) -> Optional[SubmissionOut]:
        return await self._update(
            submission_id,
            "UPDATE submissions SET status=$2 WHERE submission_id=$1 RETURNING *",
            status,
        )

    async def mark_anchored(self, submission_id: str, tx_hash: str) -> Optional[SubmissionOut]:
        return await self._update(
            submission_id,
            """UPDATE submissions SET anchor_status='ANCHORED', anchor_tx_hash=$2,
                 anchor_error=NULL
               WHERE submission_id=$1 RETURNING *""",
            tx_hash,
        )

    async def mark_anchor_failed(self, submission_id: str, error: str) -> Optional[SubmissionOut]:
        return await self._update(
            submission_id,
            """UPDATE submissions SET anchor_status='FAILED', anchor_error=$2
               WHERE submission_id=$1 RETURNING *""",
            error,
        )

    async def list_unanchored(self, limit: int = 100) -> list[SubmissionOut]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM submissions WHERE anchor_status <> 'ANCHORED'
                   ORDER BY created_at LIMIT $1""",
                limit,
            )
        return [SubmissionOut(**dict(r)) for r in rows]


def make_store(database_url: str):
    if database_url:
        return PostgresSubmissionStore(database_url)
    return InMemorySubmissionStore()
