import logging

from airdrop.accounts import AccountResolver
from airdrop.errors import AccountResolutionError, BalanceQueryError, InsufficientBalance
from airdrop.ledger import LedgerClient
from airdrop.models import Asset, DistributionJob

log = logging.getLogger("airdrop.balance")


class BalancePreflight:
    def __init__(self, ledger: LedgerClient, resolver: AccountResolver) -> None:
        self.ledger = ledger
        self.resolver = resolver

    async def check_balance(self, asset: Asset, owner: str) -> int:
        """Current holdings of ``owner`` in smallest units of ``asset``.

        Raises:
            BalanceQueryError: the account could not be resolved or queried.
        """
        try:
            handle = await self.resolver.resolve(owner, asset)
        except AccountResolutionError as e:
            raise BalanceQueryError(f"Cannot resolve {asset} account for {owner}: {e.reason}") from e

        try:
            amount = await self.ledger.get_account_balance(handle)
        except Exception as e:
            raise BalanceQueryError(f"Balance query for {handle} failed: {e}") from e

        log.info("Source %s balance: %d", handle, amount)
        return amount

    async def ensure_sufficient(self, job: DistributionJob, required: int | None = None) -> int:
        """Check the source can cover ``required`` (default: the whole job). Returns the balance."""
        balance = await self.check_balance(job.asset, job.source.address)
        if required is None:
            required = job.required_amount
        if balance < required:
            raise InsufficientBalance(available=balance, required=required)
        log.debug("Balance %d covers required %d", balance, required)
        return balance
