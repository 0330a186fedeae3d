from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Protocol

import asyncpg

from .errors import CollaboratorFailure, InvalidArgument
from .models import StateSnapshot

LOGGER = logging.getLogger('token_liquidity.state_store')

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pool_state (
    id SMALLINT PRIMARY KEY,
    usd_per_bch NUMERIC NOT NULL,
    bch_balance NUMERIC NOT NULL,
    token_balance NUMERIC NOT NULL,
    spot_price NUMERIC,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS seen_transactions (
    seq BIGSERIAL,
    chain TEXT NOT NULL,
    txid TEXT NOT NULL,
    seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (chain, txid)
);
"""


class StateStore(Protocol):
    async def read_state(self) -> StateSnapshot: ...

    async def save_state(self, snapshot: StateSnapshot) -> None: ...

    async def load_seen(self, chain: str) -> list[str]: ...

    async def add_seen(self, chain: str, txid: str) -> None: ...

    async def close(self) -> None: ...


def _fmt(value: Decimal | None) -> str | None:
    return None if value is None else format(value, 'f')


def _parse_dec(raw, key: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except (InvalidOperation, TypeError) as exc:
        raise CollaboratorFailure('state-store', f'state key {key} is not a number: {raw!r}') from exc


class JsonStateStore:
    """
    Snapshot and seen sets in a single JSON document.

    Layout:
        {"usdPerBCH": "...", "bchBalance": "...", "tokenBalance": "...",
         "spotPrice": "...", "updatedAt": "...", "seen": {"bch": [...], "avax": [...]}}
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        # File reads and writes run in a worker thread; updates are read-modify-write.
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        return None

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with self.path.open('r', encoding='utf-8') as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            raise CollaboratorFailure('state-store', f'cannot read {self.path}: {exc}') from exc
        if not isinstance(data, dict):
            raise CollaboratorFailure('state-store', f'{self.path} does not hold an object')
        return data

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.state-', suffix='.json', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise CollaboratorFailure('state-store', f'cannot write {self.path}: {exc}') from exc

    async def read_state(self) -> StateSnapshot:
        data = await asyncio.to_thread(self._load)
        missing = [k for k in ('usdPerBCH', 'bchBalance', 'tokenBalance') if data.get(k) is None]
        if missing:
            raise CollaboratorFailure('state-store', f'no saved state in {self.path} missing={",".join(missing)}')

        updated_at = data.get('updatedAt')
        return StateSnapshot(
            usd_per_bch=_parse_dec(data['usdPerBCH'], 'usdPerBCH'),
            bch_balance=_parse_dec(data['bchBalance'], 'bchBalance'),
            token_balance=_parse_dec(data['tokenBalance'], 'tokenBalance'),
            spot_price=_parse_dec(data['spotPrice'], 'spotPrice') if data.get('spotPrice') is not None else None,
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None
        )

    async def save_state(self, snapshot: StateSnapshot) -> None:
        updated_at = snapshot.updated_at or datetime.now(timezone.utc)
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            data.update(
                {
                    'usdPerBCH': _fmt(snapshot.usd_per_bch),
                    'bchBalance': _fmt(snapshot.bch_balance),
                    'tokenBalance': _fmt(snapshot.token_balance),
                    'spotPrice': _fmt(snapshot.spot_price),
                    'updatedAt': updated_at.isoformat()
                }
            )
            await asyncio.to_thread(self._write, data)
        LOGGER.debug('state saved path=%s bch_balance=%s', self.path, snapshot.bch_balance)

    async def load_seen(self, chain: str) -> list[str]:
        seen = (await asyncio.to_thread(self._load)).get('seen', {})
        return list(seen.get(chain, []))

    async def add_seen(self, chain: str, txid: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            chain_seen = data.setdefault('seen', {}).setdefault(chain, [])
            if txid in chain_seen:
                return
            chain_seen.append(txid)
            await asyncio.to_thread(self._write, data)


class PostgresStateStore:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def close(self) -> None:
        await self.pool.close()

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def read_state(self) -> StateSnapshot:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT usd_per_bch, bch_balance, token_balance, spot_price, updated_at
                FROM pool_state
                WHERE id = 1
                """
            )
        if row is None:
            raise CollaboratorFailure('state-store', 'no saved state in pool_state')
        return StateSnapshot(
            usd_per_bch=Decimal(row['usd_per_bch']),
            bch_balance=Decimal(row['bch_balance']),
            token_balance=Decimal(row['token_balance']),
            spot_price=Decimal(row['spot_price']) if row['spot_price'] is not None else None,
            updated_at=row['updated_at']
        )

    async def save_state(self, snapshot: StateSnapshot) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO pool_state (id, usd_per_bch, bch_balance, token_balance, spot_price, updated_at)
                VALUES (1, $1, $2, $3, $4, $5)
                ON CONFLICT (id) DO UPDATE SET
                    usd_per_bch = EXCLUDED.usd_per_bch,
                    bch_balance = EXCLUDED.bch_balance,
                    token_balance = EXCLUDED.token_balance,
                    spot_price = EXCLUDED.spot_price,
                    updated_at = EXCLUDED.updated_at
                """,
                snapshot.usd_per_bch,
                snapshot.bch_balance,
                snapshot.token_balance,
                snapshot.spot_price,
                snapshot.updated_at or datetime.now(timezone.utc)
            )

    async def load_seen(self, chain: str) -> list[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT txid FROM seen_transactions WHERE chain = $1 ORDER BY seq',
                chain
            )
        return [row['txid'] for row in rows]

    async def add_seen(self, chain: str, txid: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO seen_transactions (chain, txid)
                VALUES ($1, $2)
                ON CONFLICT (chain, txid) DO NOTHING
                """,
                chain,
                txid
            )


async def open_state_store(backend: str, *, path: str = '', dsn: str = '') -> StateStore:
    if backend == 'json':
        return JsonStateStore(path)
    if backend == 'postgres':
        pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=5)
        store = PostgresStateStore(pool)
        await store.ensure_schema()
        return store
    raise InvalidArgument(f'unknown state backend: {backend}')
