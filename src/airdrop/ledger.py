import asyncio
import hashlib
import logging
from collections.abc import Sequence
from typing import Protocol

from airdrop.errors import AccountResolutionError, LedgerError, LedgerSubmitError
from airdrop.models import AccountHandle, Asset, SourceAccount, SubmitOptions, TransferInstruction

log = logging.getLogger("airdrop.ledger")


class LedgerClient(Protocol):
    """Operations the distribution engine needs from a ledger.

    Implementations may also expose ``max_batch_size`` when the ledger caps
    how many instructions one signed request can carry.
    """

    async def lookup_account(self, owner: str, asset: Asset) -> AccountHandle | None: ...
    async def create_account(self, owner: str, asset: Asset, payer: SourceAccount) -> AccountHandle: ...
    async def get_account_balance(self, handle: AccountHandle) -> int: ...
    async def submit_signed_batch(
        self, instructions: Sequence[TransferInstruction], signer: SourceAccount, options: SubmitOptions
    ) -> str: ...


class InMemoryLedger:
    """Ledger held in process memory.

    Tracks every call so callers can assert on lookups, creations and
    submissions. ``fail_submissions`` makes that many submissions raise before
    one goes through; ``invalid_owners`` fail lookup outright.
    """

    def __init__(
        self,
        *,
        balances: dict[AccountHandle, int] | None = None,
        max_batch_size: int | None = None,
        fail_submissions: int = 0,
        invalid_owners: Sequence[str] = (),
        balance_error: bool = False,
    ) -> None:
        self._lock = asyncio.Lock()
        self.balances: dict[AccountHandle, int] = dict(balances or {})
        self.max_batch_size = max_batch_size
        self.fail_submissions = fail_submissions
        self.invalid_owners = set(invalid_owners)
        self.balance_error = balance_error

        self.lookups: list[tuple[str, Asset]] = []
        self.creations: list[tuple[str, Asset, str]] = []
        self.submission_attempts = 0
        self.submitted: list[tuple[TransferInstruction, ...]] = []
        self.options: list[SubmitOptions] = []

    def fund(self, owner: str, asset: Asset, amount: int) -> AccountHandle:
        handle = AccountHandle(owner=owner, asset=asset)
        self.balances[handle] = self.balances.get(handle, 0) + amount
        return handle

    async def lookup_account(self, owner: str, asset: Asset) -> AccountHandle | None:
        self.lookups.append((owner, asset))
        if owner in self.invalid_owners:
            raise AccountResolutionError(owner, asset, "invalid owner identifier")
        handle = AccountHandle(owner=owner, asset=asset)
        return handle if handle in self.balances else None

    async def create_account(self, owner: str, asset: Asset, payer: SourceAccount) -> AccountHandle:
        async with self._lock:
            self.creations.append((owner, asset, payer.address))
            handle = AccountHandle(owner=owner, asset=asset)
            self.balances.setdefault(handle, 0)
            return handle

    async def get_account_balance(self, handle: AccountHandle) -> int:
        if self.balance_error:
            raise LedgerError(f"balance query failed for {handle}")
        try:
            return self.balances[handle]
        except KeyError:
            raise LedgerError(f"no such account {handle}") from None

    async def submit_signed_batch(
        self, instructions: Sequence[TransferInstruction], signer: SourceAccount, options: SubmitOptions
    ) -> str:
        async with self._lock:
            self.submission_attempts += 1
            if self.fail_submissions > 0:
                self.fail_submissions -= 1
                raise LedgerSubmitError("telCAN_NOT_QUEUE", "simulated failure")
            instructions = tuple(instructions)
            for instr in instructions:
                if instr.authority != signer.address:
                    raise LedgerSubmitError("tefBAD_AUTH", f"{signer.address} cannot move funds of {instr.authority}")
            total = sum(i.amount for i in instructions)
            if self.balances.get(instructions[0].source, 0) < total:
                raise LedgerSubmitError("tecUNFUNDED_PAYMENT")
            for instr in instructions:
                self.balances[instr.source] -= instr.amount
                self.balances[instr.destination] = self.balances.get(instr.destination, 0) + instr.amount
            self.submitted.append(instructions)
            self.options.append(options)
            tx_id = hashlib.sha256(f"{len(self.submitted)}:{instructions}".encode()).hexdigest().upper()
            log.debug("Applied batch of %d as %s", len(instructions), tx_id)
            return tx_id
