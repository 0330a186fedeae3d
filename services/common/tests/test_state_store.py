import asyncio
import json
import tempfile
import threading
import unittest
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from services.common.errors import CollaboratorFailure, InvalidArgument
from services.common.models import StateSnapshot
from services.common.state_store import JsonStateStore, PostgresStateStore, open_state_store

SNAPSHOT = StateSnapshot(
    usd_per_bch=Decimal('251.37'),
    bch_balance=Decimal('12.41463259'),
    token_balance=Decimal('3000'),
    spot_price=Decimal('0.62412305'),
    updated_at=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
)


class JsonStateStoreTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / 'state' / 'state.json'
        self.store = JsonStateStore(self.path)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    async def test_missing_file_raises(self) -> None:
        with self.assertRaises(CollaboratorFailure):
            await self.store.read_state()

    async def test_save_and_read(self) -> None:
        await self.store.save_state(SNAPSHOT)
        self.assertEqual(await self.store.read_state(), SNAPSHOT)

    async def test_uses_state_file_keys(self) -> None:
        await self.store.save_state(SNAPSHOT)

        data = json.loads(self.path.read_text(encoding='utf-8'))

        self.assertEqual(data['usdPerBCH'], '251.37')
        self.assertEqual(data['bchBalance'], '12.41463259')
        self.assertEqual(data['tokenBalance'], '3000')
        self.assertEqual(data['spotPrice'], '0.62412305')

    async def test_seen_sets_are_per_chain_and_ordered(self) -> None:
        await self.store.add_seen('bch', 'tx-2')
        await self.store.add_seen('bch', 'tx-1')
        await self.store.add_seen('bch', 'tx-2')
        await self.store.add_seen('avax', 'x-1')

        self.assertEqual(await self.store.load_seen('bch'), ['tx-2', 'tx-1'])
        self.assertEqual(await self.store.load_seen('avax'), ['x-1'])

    async def test_saving_state_keeps_seen_sets(self) -> None:
        await self.store.add_seen('bch', 'tx-1')
        await self.store.save_state(SNAPSHOT)
        self.assertEqual(await self.store.load_seen('bch'), ['tx-1'])

    async def test_corrupt_file_raises(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text('{not json', encoding='utf-8')
        with self.assertRaises(CollaboratorFailure):
            await self.store.read_state()

    async def test_file_io_runs_off_the_event_loop_thread(self) -> None:
        loop_thread = threading.get_ident()
        threads = []
        load = self.store._load

        def tracking_load():
            threads.append(threading.get_ident())
            return load()

        self.store._load = tracking_load
        await self.store.add_seen('bch', 'tx-1')
        await self.store.load_seen('bch')

        self.assertEqual(len(threads), 2)
        self.assertNotIn(loop_thread, threads)

    async def test_concurrent_updates_are_all_kept(self) -> None:
        await asyncio.gather(
            self.store.add_seen('bch', 'tx-1'),
            self.store.add_seen('avax', 'x-1'),
            self.store.save_state(SNAPSHOT),
            self.store.add_seen('bch', 'tx-2')
        )

        self.assertEqual(await self.store.load_seen('bch'), ['tx-1', 'tx-2'])
        self.assertEqual(await self.store.load_seen('avax'), ['x-1'])
        self.assertEqual(await self.store.read_state(), SNAPSHOT)


class PostgresStateStoreTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.conn = AsyncMock()
        self.pool = MagicMock()
        self.pool.acquire.return_value.__aenter__.return_value = self.conn
        self.store = PostgresStateStore(self.pool)

    async def test_missing_row_raises(self) -> None:
        self.conn.fetchrow.return_value = None
        with self.assertRaises(CollaboratorFailure):
            await self.store.read_state()

    async def test_read_state(self) -> None:
        self.conn.fetchrow.return_value = {
            'usd_per_bch': Decimal('251.37'),
            'bch_balance': Decimal('12.41463259'),
            'token_balance': Decimal('3000'),
            'spot_price': None,
            'updated_at': SNAPSHOT.updated_at
        }

        snapshot = await self.store.read_state()

        self.assertEqual(snapshot.bch_balance, Decimal('12.41463259'))
        self.assertIsNone(snapshot.spot_price)

    async def test_add_seen_is_idempotent_insert(self) -> None:
        await self.store.add_seen('bch', 'tx-1')

        sql, chain, txid = self.conn.execute.await_args.args
        self.assertIn('ON CONFLICT (chain, txid) DO NOTHING', sql)
        self.assertEqual((chain, txid), ('bch', 'tx-1'))

    async def test_load_seen_in_insertion_order(self) -> None:
        self.conn.fetch.return_value = [{'txid': 'tx-2'}, {'txid': 'tx-1'}]

        self.assertEqual(await self.store.load_seen('bch'), ['tx-2', 'tx-1'])
        self.assertIn('ORDER BY seq', self.conn.fetch.await_args.args[0])

    async def test_save_state_upserts_single_row(self) -> None:
        await self.store.save_state(SNAPSHOT)

        args = self.conn.execute.await_args.args
        self.assertIn('ON CONFLICT (id) DO UPDATE', args[0])
        self.assertEqual(args[1:4], (Decimal('251.37'), Decimal('12.41463259'), Decimal('3000')))


class OpenStateStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_json_backend(self) -> None:
        store = await open_state_store('json', path='state.json')
        self.assertIsInstance(store, JsonStateStore)

    async def test_unknown_backend(self) -> None:
        with self.assertRaises(InvalidArgument):
            await open_state_store('redis')


if __name__ == '__main__':
    unittest.main()
