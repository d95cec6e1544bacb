"""LedgerClient backed by an XRP Ledger node over JSON-RPC."""

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx
from xrpl import XRPLException
from xrpl.asyncio.account import get_next_valid_seq_number
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.asyncio.ledger import get_fee
from xrpl.asyncio.transaction import XRPLReliableSubmissionException, autofill_and_sign, submit, submit_and_wait
from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.models import Response, TransactionFlag
from xrpl.models.requests import AccountInfo, AccountLines, Request, Tx
from xrpl.models.transactions import Batch as BatchTxn, BatchFlag, Payment, Transaction

import airdrop.constants as C
from airdrop.errors import AccountResolutionError, LedgerError, LedgerSubmitError
from airdrop.models import AccountHandle, Asset, SourceAccount, SubmitOptions, TransferInstruction

log = logging.getLogger("airdrop.xrpl")

TRANSPORT_ERRORS = (XRPLException, httpx.HTTPError, TimeoutError)
# submit_and_wait reports a malformed transaction as "temXXX: message"
MALFORMED = re.compile(r"^(tem[A-Z_]+): ?(.*)$")


async def probe_rpc(url: str, *, timeout: float = C.PROBE_TIMEOUT,
                    transport: httpx.AsyncBaseTransport | None = None) -> dict:
    """Issue one ``server_info`` call; raises if the endpoint is not answering."""
    payload = {"method": "server_info", "params": [{}]}
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as http:
        r = await http.post(url, json=payload)
        r.raise_for_status()
    info = r.json().get("result", {}).get("info", {})
    log.info("RPC endpoint %s responding (server_state=%s)", url, info.get("server_state"))
    return info


@dataclass(frozen=True, slots=True)
class _SignedBatch:
    signed: Transaction
    tx_hash: str
    sequence: int
    consumed: int  # account sequences used, inner transactions included


class XrplLedger:
    """XRP Ledger implementation of ``LedgerClient``.

    Handles:
      - XRP: the account root. Missing accounts are created by a Payment of
        the base reserve from the payer.
      - Issued currencies: the holder's trust line to the issuer. Only the
        holder can sign a TrustSet, so a missing line cannot be created here.

    Two or more instructions are submitted as one all-or-nothing ``Batch``
    transaction; a single instruction goes out as a plain Payment.
    """

    max_batch_size = C.XRPL_BATCH_LIMIT

    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        rpc_timeout: float = C.RPC_TIMEOUT,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        reserve_drops: int = C.ACCOUNT_RESERVE_DROPS,
    ) -> None:
        self.client = client
        self.rpc_timeout = rpc_timeout
        self.submit_timeout = submit_timeout
        self.reserve_drops = reserve_drops
        # Next sequence per signer, counting transactions the node has queued
        self._sequences: dict[str, int] = {}
        # Signed but not yet known to be applied, keyed by their instructions
        self._unconfirmed: dict[tuple[TransferInstruction, ...], _SignedBatch] = {}

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "XrplLedger":
        return cls(AsyncJsonRpcClient(url), **kwargs)

    async def _rpc(self, req: Request, *, t: float | None = None) -> Response:
        try:
            return await asyncio.wait_for(self.client.request(req), timeout=t or self.rpc_timeout)
        except TRANSPORT_ERRORS as e:
            raise LedgerError(f"{req.method} request failed: {e!r}") from e

    async def _trust_line(self, owner: str, asset: Asset) -> dict | None:
        marker = None
        while True:
            resp = await self._rpc(
                AccountLines(account=owner, peer=asset.issuer, ledger_index="validated", marker=marker)
            )
            if not resp.is_successful():
                raise LedgerError(f"account_lines failed for {owner}: {resp.result.get('error')}", result=resp.result)
            for line in resp.result.get("lines", []):
                if line.get("currency") == asset.currency:
                    return line
            marker = resp.result.get("marker")
            if marker is None:
                return None

    async def lookup_account(self, owner: str, asset: Asset) -> AccountHandle | None:
        if not is_valid_classic_address(owner):
            raise AccountResolutionError(owner, asset, "not a valid classic address")

        info = await self._rpc(AccountInfo(account=owner, ledger_index="validated"))
        if not info.is_successful():
            if info.result.get("error") == "actNotFound":
                return None
            raise LedgerError(f"account_info failed for {owner}: {info.result.get('error')}", result=info.result)

        if asset.is_xrp:
            return AccountHandle(owner=owner, asset=asset)
        line = await self._trust_line(owner, asset)
        return AccountHandle(owner=owner, asset=asset) if line is not None else None

    async def create_account(self, owner: str, asset: Asset, payer: SourceAccount) -> AccountHandle:
        if not asset.is_xrp:
            raise AccountResolutionError(
                owner, asset, f"no trust line to {asset.issuer}; the holder must submit a TrustSet"
            )

        fund = Payment(account=payer.address, destination=owner, amount=str(self.reserve_drops))
        try:
            resp = await asyncio.wait_for(
                submit_and_wait(fund, self.client, payer.wallet), timeout=self.submit_timeout
            )
        except TRANSPORT_ERRORS as e:
            raise AccountResolutionError(owner, asset, f"funding payment failed: {e}") from e

        result = resp.result.get("meta", {}).get("TransactionResult")
        if result != "tesSUCCESS":
            raise AccountResolutionError(owner, asset, f"funding payment failed: {result}")
        log.info("Created account %s with %d drops (%s)", owner, self.reserve_drops, resp.result.get("hash"))
        return AccountHandle(owner=owner, asset=asset)

    async def get_account_balance(self, handle: AccountHandle) -> int:
        if handle.asset.is_xrp:
            info = await self._rpc(AccountInfo(account=handle.owner, ledger_index="validated"))
            if not info.is_successful():
                raise LedgerError(f"account_info failed for {handle.owner}: {info.result.get('error')}", result=info.result)
            return int(info.result["account_data"]["Balance"])

        line = await self._trust_line(handle.owner, handle.asset)
        if line is None:
            raise LedgerError(f"No trust line for {handle}")
        return handle.asset.to_units(line["balance"])

    @staticmethod
    def _payment(instr: TransferInstruction, **fields: Any) -> Payment:
        return Payment(
            account=instr.authority,
            destination=instr.destination.owner,
            amount=instr.destination.asset.to_amount(instr.amount),
            **fields,
        )

    async def _next_sequence(self, signer: SourceAccount) -> int:
        # Queued transactions are not counted by the ledger's account sequence
        fetched = await get_next_valid_seq_number(signer.address, self.client)
        return max(fetched, self._sequences.get(signer.address, 0))

    async def _batch_txn(
        self, instructions: Sequence[TransferInstruction], signer: SourceAccount, sequence: int
    ) -> BatchTxn:
        # Inner transactions take the sequences right after the outer one
        base_fee = int(await get_fee(self.client))
        raw_transactions = [
            self._payment(
                instr,
                flags=TransactionFlag.TF_INNER_BATCH_TXN,
                sequence=sequence + 1 + i,
                fee="0",
                signing_pub_key="",
            )
            for i, instr in enumerate(instructions)
        ]
        # Batch fee = 2 * base_fee + inner fees (all zero) for a single signer
        fee = base_fee * (2 + len(raw_transactions))
        log.debug(f"Batch fee: {base_fee}*(2+{len(raw_transactions)}) = {fee} drops")
        return BatchTxn(
            account=signer.address,
            flags=BatchFlag.TF_ALL_OR_NOTHING,
            raw_transactions=raw_transactions,
            sequence=sequence,
            fee=str(fee),
        )

    async def _sign(
        self, instructions: tuple[TransferInstruction, ...], signer: SourceAccount, options: SubmitOptions
    ) -> _SignedBatch:
        sequence = await self._next_sequence(signer)
        if len(instructions) < C.XRPL_BATCH_MIN:
            txn: Transaction = self._payment(instructions[0], sequence=sequence)
            consumed = 1
        else:
            txn = await self._batch_txn(instructions, signer, sequence)
            consumed = 1 + len(instructions)
        signed = await autofill_and_sign(txn, self.client, signer.wallet, check_fee=not options.skip_preflight)
        log.debug("Signed %s seq=%d as %s", txn.transaction_type, sequence, signed.get_hash())
        return _SignedBatch(signed=signed, tx_hash=signed.get_hash(), sequence=sequence, consumed=consumed)

    async def submit_signed_batch(
        self, instructions: Sequence[TransferInstruction], signer: SourceAccount, options: SubmitOptions
    ) -> str:
        """Sign ``instructions`` as one transaction and submit it.

        The transaction is signed once per distinct instruction tuple. A call
        repeating instructions that failed before resubmits the same signed
        blob, after checking whether the earlier attempt was applied, so a
        retry can never pay the same batch twice.
        """
        instructions = tuple(instructions)
        if not instructions:
            raise ValueError("Cannot submit an empty batch")
        if len(instructions) > self.max_batch_size:
            raise ValueError(f"Batch of {len(instructions)} exceeds the XRPL limit of {self.max_batch_size}")
        for instr in instructions:
            if instr.authority != signer.address:
                raise ValueError(f"Instruction authority {instr.authority} is not the signer {signer.address}")

        try:
            prepared = self._unconfirmed.get(instructions)
            if prepared is None:
                prepared = await self._sign(instructions, signer, options)
                self._unconfirmed[instructions] = prepared
                tx_id = None
            else:
                tx_id = await self._applied(prepared.tx_hash)
                if tx_id is not None:
                    log.info("Transaction %s from an earlier attempt was applied", tx_id)
            if tx_id is None:
                tx_id = await self._submit(prepared, options)
        except TRANSPORT_ERRORS as e:
            raise LedgerSubmitError(None, repr(e)) from e
        except LedgerSubmitError as e:
            if not e.retryable:
                self._unconfirmed.pop(instructions, None)
            raise

        del self._unconfirmed[instructions]
        self._sequences[signer.address] = max(
            self._sequences.get(signer.address, 0), prepared.sequence + prepared.consumed
        )
        return tx_id

    async def _applied(self, tx_hash: str) -> str | None:
        """``tx_hash`` if the ledger has it, ``None`` if it was never seen.

        Raises ``LedgerSubmitError`` when it was validated with a failure.
        """
        resp = await self._rpc(Tx(transaction=tx_hash))
        if not resp.is_successful():
            if resp.result.get("error") == "txnNotFound":
                return None
            raise LedgerError(f"tx lookup failed for {tx_hash}: {resp.result.get('error')}", result=resp.result)
        if resp.result.get("validated"):
            meta_result = resp.result.get("meta", {}).get("TransactionResult")
            if meta_result != "tesSUCCESS":
                raise LedgerSubmitError(meta_result, result=resp.result)
        return tx_hash

    async def _submit(self, prepared: _SignedBatch, options: SubmitOptions) -> str:
        if options.commitment == C.Commitment.VALIDATED:
            try:
                resp = await asyncio.wait_for(
                    submit_and_wait(prepared.signed, self.client, fail_hard=options.fail_hard),
                    timeout=self.submit_timeout,
                )
            except XRPLReliableSubmissionException as e:
                if m := MALFORMED.match(str(e)):
                    raise LedgerSubmitError(m.group(1), m.group(2)) from e
                raise
            result = resp.result
            meta_result = result.get("meta", {}).get("TransactionResult")
            if meta_result != "tesSUCCESS":
                raise LedgerSubmitError(meta_result, result=result)
            return result.get("hash") or prepared.tx_hash

        resp = await asyncio.wait_for(
            submit(prepared.signed, self.client, fail_hard=options.fail_hard), timeout=self.rpc_timeout
        )
        er = resp.result.get("engine_result")
        if er in C.ACCEPTED_ENGINE_RESULTS or er == C.ALREADY_SUBMITTED:
            return prepared.tx_hash
        if er == C.PAST_SEQUENCE and await self._applied(prepared.tx_hash) is not None:
            return prepared.tx_hash
        raise LedgerSubmitError(er, resp.result.get("engine_result_message", ""), result=resp.result)
