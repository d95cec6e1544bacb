"""Cursor over confirmed batches, so an interrupted run can resume.

A job's cursor is the index of the first batch that has not been confirmed.
It only moves forward.
"""

import asyncio
from typing import Protocol

from airdrop.models import BatchReceipt


class CheckpointStore(Protocol):
    async def load(self, job_id: str) -> int: ...
    async def advance(self, job_id: str, receipt: BatchReceipt) -> None: ...
    async def receipts(self, job_id: str) -> list[BatchReceipt]: ...
    async def clear(self, job_id: str) -> None: ...


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._cursors: dict[str, int] = {}
        self._receipts: dict[str, list[BatchReceipt]] = {}

    async def load(self, job_id: str) -> int:
        async with self._lock:
            return self._cursors.get(job_id, 0)

    async def advance(self, job_id: str, receipt: BatchReceipt) -> None:
        async with self._lock:
            self._cursors[job_id] = max(self._cursors.get(job_id, 0), receipt.index + 1)
            self._receipts.setdefault(job_id, []).append(receipt)

    async def receipts(self, job_id: str) -> list[BatchReceipt]:
        async with self._lock:
            return list(self._receipts.get(job_id, []))

    async def clear(self, job_id: str) -> None:
        async with self._lock:
            self._cursors.pop(job_id, None)
            self._receipts.pop(job_id, None)
