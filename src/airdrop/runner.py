import logging
from collections.abc import Sequence

from airdrop.accounts import AccountResolver
from airdrop.balance import BalancePreflight
from airdrop.batch import BatchDistributor
from airdrop.checkpoint import CheckpointStore
from airdrop.errors import AirdropError, DistributionError, LedgerError, is_transient
from airdrop.ledger import LedgerClient
from airdrop.models import Asset, DistributionJob, DistributionReport, SourceAccount, SubmitOptions
from airdrop.retry import RetryExecutor, RetryPolicy

log = logging.getLogger("airdrop.runner")


class DistributionRunner:
    """Preflight the source balance, then distribute.

    No retries happen at this level; the first unrecovered error is logged and
    re-raised unchanged.
    """

    def __init__(self, preflight: BalancePreflight, distributor: BatchDistributor) -> None:
        self.preflight = preflight
        self.distributor = distributor

    @classmethod
    def build(
        cls,
        ledger: LedgerClient,
        source: SourceAccount,
        *,
        batch_size: int,
        retry_policy: RetryPolicy | None = None,
        options: SubmitOptions | None = None,
        checkpoint: CheckpointStore | None = None,
    ) -> "DistributionRunner":
        resolver = AccountResolver(ledger, payer=source)
        distributor = BatchDistributor(
            ledger,
            resolver,
            RetryExecutor(retry_policy, retry_on=(LedgerError,), retry_if=is_transient),
            batch_size=batch_size,
            options=options,
            checkpoint=checkpoint,
        )
        return cls(BalancePreflight(ledger, resolver), distributor)

    async def run(
        self,
        asset: Asset,
        source: SourceAccount,
        recipients: Sequence[str],
        amount_per_recipient: int,
        *,
        dry_run: bool = False,
    ) -> DistributionReport:
        if isinstance(recipients, str):
            raise ValueError("recipients must be a sequence of addresses, not a string")
        if isinstance(amount_per_recipient, bool) or not isinstance(amount_per_recipient, int):
            raise ValueError(f"amount_per_recipient must be an integer, got {amount_per_recipient!r}")
        if amount_per_recipient <= 0:
            raise ValueError(f"amount_per_recipient must be positive, got {amount_per_recipient}")

        job = DistributionJob(asset, source, tuple(recipients), amount_per_recipient)
        log.info(
            "Airdrop of %d %s to %d recipients (%d total) from %s",
            amount_per_recipient, asset, len(job.recipients), job.required_amount, source.address,
        )

        try:
            # Batches confirmed by an earlier run are already paid for
            pending = await self.distributor.remaining(job)
            if len(pending) < len(job.recipients):
                log.info("%d of %d recipients already paid by an earlier run",
                         len(job.recipients) - len(pending), len(job.recipients))
            balance = await self.preflight.ensure_sufficient(job, required=amount_per_recipient * len(pending))
            report = DistributionReport(job=job, balance=balance, planned=self.distributor.plan(job.recipients))
            if dry_run:
                report.dry_run = True
                log.info("Dry run: would submit %d batches %s", len(report.planned), report.planned)
                return report

            report.receipts = await self.distributor.distribute(
                asset, source, job.recipients, amount_per_recipient
            )
        except DistributionError as e:
            log.error("Error during airdrop: %s (%d batches completed)", e, len(e.completed))
            raise
        except AirdropError as e:
            log.error("Airdrop aborted before any transfer: %s", e)
            raise

        paid = sum(r.size for r in report.receipts)
        submitted = {r.index for r in report.receipts}
        report.skipped = [i for i in range(len(report.planned)) if i not in submitted]
        log.info("Airdrop completed successfully: %d batches, %d recipients paid", len(report.receipts), paid)
        return report
