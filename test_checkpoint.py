"""Test the checkpoint stores."""

from __future__ import annotations

import tempfile
from pathlib import Path
from unittest import IsolatedAsyncioTestCase

from airdrop.checkpoint import InMemoryCheckpointStore
from airdrop.models import BatchReceipt
from airdrop.sqlite_store import SQLiteCheckpointStore


class CheckpointContract:
    """Behaviour every checkpoint store shares."""

    def make_store(self):
        raise NotImplementedError

    async def test_new_job_starts_at_zero(self):
        store = self.make_store()
        self.assertEqual(await store.load("job"), 0)
        self.assertEqual(await store.receipts("job"), [])

    async def test_advance(self):
        store = self.make_store()
        await store.advance("job", BatchReceipt(0, 10, "A"))
        await store.advance("job", BatchReceipt(1, 4, "B"))
        self.assertEqual(await store.load("job"), 2)
        self.assertEqual(await store.receipts("job"), [BatchReceipt(0, 10, "A"), BatchReceipt(1, 4, "B")])

    async def test_cursor_never_moves_back(self):
        store = self.make_store()
        await store.advance("job", BatchReceipt(2, 10, "C"))
        await store.advance("job", BatchReceipt(0, 10, "A"))
        self.assertEqual(await store.load("job"), 3)

    async def test_jobs_are_independent(self):
        store = self.make_store()
        await store.advance("one", BatchReceipt(0, 10, "A"))
        self.assertEqual(await store.load("two"), 0)

    async def test_clear(self):
        store = self.make_store()
        await store.advance("job", BatchReceipt(0, 10, "A"))
        await store.clear("job")
        self.assertEqual(await store.load("job"), 0)
        self.assertEqual(await store.receipts("job"), [])


class TestInMemoryCheckpointStore(CheckpointContract, IsolatedAsyncioTestCase):
    def make_store(self):
        return InMemoryCheckpointStore()


class TestSQLiteCheckpointStore(CheckpointContract, IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.db_path = Path(self.tmp.name) / "state" / "airdrop.db"

    def make_store(self):
        return SQLiteCheckpointStore(self.db_path)

    async def test_survives_reopen(self):
        await self.make_store().advance("job", BatchReceipt(0, 10, "A"))
        reopened = self.make_store()
        self.assertEqual(await reopened.load("job"), 1)
        self.assertEqual(await reopened.receipts("job"), [BatchReceipt(0, 10, "A")])
