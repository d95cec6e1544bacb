import logging

from airdrop.errors import AccountResolutionError
from airdrop.ledger import LedgerClient
from airdrop.models import AccountHandle, Asset, SourceAccount

log = logging.getLogger("airdrop.accounts")


class AccountResolver:
    """Find the account holding ``asset`` for an owner, creating it if absent.

    ``payer`` covers fees and reserve for anything that has to be created.
    Holds no per-owner state, so concurrent calls for different owners are
    independent. Failures are raised as ``AccountResolutionError`` and are
    not retried here.
    """

    def __init__(self, ledger: LedgerClient, payer: SourceAccount) -> None:
        self.ledger = ledger
        self.payer = payer

    async def resolve(self, owner: str, asset: Asset) -> AccountHandle:
        try:
            handle = await self.ledger.lookup_account(owner, asset)
            if handle is not None:
                return handle
            log.info("No %s account for %s, creating it (payer %s)", asset, owner, self.payer.address)
            handle = await self.ledger.create_account(owner, asset, payer=self.payer)
        except AccountResolutionError:
            raise
        except Exception as e:
            raise AccountResolutionError(owner, asset, str(e) or e.__class__.__name__) from e
        log.debug("Created %s", handle)
        return handle
