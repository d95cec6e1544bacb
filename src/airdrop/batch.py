"""Group transfers into signed batches and submit them in recipient order.

Each group of up to ``capacity`` recipients becomes one immutable ``Batch``
which is submitted as a single atomic request. A failure to resolve any
recipient stops the distribution; submission failures are retried by the
``RetryExecutor`` and stop the distribution once retries run out.
"""

import logging
from collections.abc import Iterator, Sequence

import airdrop.constants as C
from airdrop.accounts import AccountResolver
from airdrop.checkpoint import CheckpointStore
from airdrop.errors import AirdropError, DistributionError
from airdrop.ledger import LedgerClient
from airdrop.models import (
    AccountHandle,
    Asset,
    Batch,
    BatchReceipt,
    DistributionJob,
    SourceAccount,
    SubmitOptions,
    TransferInstruction,
)
from airdrop.retry import RetryExecutor

log = logging.getLogger("airdrop.batch")


def partition(recipients: Sequence[str], capacity: int) -> Iterator[Sequence[str]]:
    """Split recipients into consecutive groups of at most ``capacity``.

    The last group holds the remainder and is never dropped.
    """
    if capacity < 1:
        raise ValueError(f"capacity must be >= 1, got {capacity}")
    for start in range(0, len(recipients), capacity):
        yield recipients[start:start + capacity]


class BatchDistributor:
    def __init__(
        self,
        ledger: LedgerClient,
        resolver: AccountResolver,
        retry: RetryExecutor,
        *,
        batch_size: int = C.BATCH_CAPACITY,
        options: SubmitOptions | None = None,
        checkpoint: CheckpointStore | None = None,
    ) -> None:
        self.ledger = ledger
        self.resolver = resolver
        self.retry = retry
        self.options = options or SubmitOptions()
        self.checkpoint = checkpoint
        self.capacity = self._effective_capacity(batch_size)

    def _effective_capacity(self, batch_size: int) -> int:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        limit = getattr(self.ledger, "max_batch_size", None)
        if limit is not None and batch_size > limit:
            log.warning("Batch size %d exceeds ledger limit %d, using %d", batch_size, limit, limit)
            return limit
        return batch_size

    def plan(self, recipients: Sequence[str]) -> list[int]:
        """Batch sizes a distribution to ``recipients`` would submit."""
        return [len(group) for group in partition(recipients, self.capacity)]

    def job_key(self, job: DistributionJob) -> str:
        # Batch indexes only line up across runs with the same capacity
        return f"{job.fingerprint()}:{self.capacity}"

    async def resume_point(self, job: DistributionJob) -> int:
        """Index of the first batch of ``job`` not yet confirmed."""
        if self.checkpoint is None:
            return 0
        return await self.checkpoint.load(self.job_key(job))

    async def remaining(self, job: DistributionJob) -> tuple[str, ...]:
        """Recipients of ``job`` outside batches already confirmed."""
        return job.recipients[await self.resume_point(job) * self.capacity:]

    async def distribute(
        self,
        asset: Asset,
        source: SourceAccount,
        recipients: Sequence[str],
        amount_per_recipient: int,
    ) -> list[BatchReceipt]:
        """Transfer ``amount_per_recipient`` of ``asset`` from ``source`` to every recipient.

        Returns one receipt per batch submitted in this call.

        Raises:
            DistributionError: wrapping the first unrecovered failure. Its
                ``completed`` receipts list the batches already paid out.
        """
        job = DistributionJob(asset, source, tuple(recipients), amount_per_recipient)
        receipts: list[BatchReceipt] = []
        try:
            await self._distribute(job, receipts)
        except AirdropError as e:
            log.error("Distribution stopped after %d batches: %s", len(receipts), e)
            raise DistributionError(str(e), cause=e, completed=receipts) from e
        return receipts

    async def _distribute(self, job: DistributionJob, receipts: list[BatchReceipt]) -> None:
        if not job.recipients:
            log.info("No recipients, nothing to distribute")
            return

        key = self.job_key(job)
        resume_from = await self.resume_point(job)
        if resume_from:
            log.info("Resuming job %s at batch %d", key[:12], resume_from)

        source_handle = await self.resolver.resolve(job.source.address, job.asset)
        groups = list(partition(job.recipients, self.capacity))

        for index, group in enumerate(groups):
            if index < resume_from:
                log.info("Skipping batch %d/%d, already confirmed", index + 1, len(groups))
                continue

            instructions = []
            for owner in group:
                destination = await self.resolver.resolve(owner, job.asset)
                instructions.append(self._instruction(source_handle, destination, job))
            batch = Batch(index=index, instructions=tuple(instructions))

            receipt = await self._submit(batch, job.source, total=len(groups))
            receipts.append(receipt)
            if self.checkpoint:
                await self.checkpoint.advance(key, receipt)

    @staticmethod
    def _instruction(source: AccountHandle, destination: AccountHandle, job: DistributionJob) -> TransferInstruction:
        return TransferInstruction(
            source=source,
            destination=destination,
            authority=job.source.address,
            amount=job.amount_per_recipient,
        )

    async def _submit(self, batch: Batch, source: SourceAccount, *, total: int) -> BatchReceipt:
        label = f"batch {batch.index + 1}/{total}"
        tx_id = await self.retry.execute(
            lambda: self.ledger.submit_signed_batch(batch.instructions, source, self.options),
            label=label,
        )
        log.info("Transaction %s: processed %s (batch size: %d)", tx_id, label, len(batch))
        return BatchReceipt(index=batch.index, size=len(batch), tx_id=tx_id)
