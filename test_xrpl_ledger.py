"""Test XrplLedger against a canned JSON-RPC client."""

from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, patch

import httpx
from xrpl import XRPLException
from xrpl.asyncio.transaction import XRPLReliableSubmissionException
from xrpl.models import TransactionFlag
from xrpl.models.requests import AccountInfo, AccountLines, Tx
from xrpl.models.response import Response, ResponseStatus
from xrpl.models.transactions import Batch as BatchTxn, BatchFlag, Payment
from xrpl.wallet import Wallet

from airdrop.constants import Commitment
from airdrop.errors import AccountResolutionError, LedgerError, LedgerSubmitError, is_transient
from airdrop.models import AccountHandle, Asset, SourceAccount, SubmitOptions, TransferInstruction
from airdrop.retry import RetryExecutor, RetryPolicy
from airdrop.xrpl_ledger import XrplLedger, probe_rpc

GENESIS_SEED = "snoPBrXtMeMyMHUVTgbuqAfg1SUTb"
ISSUER = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"


def ok(result: dict) -> Response:
    return Response(status=ResponseStatus.SUCCESS, result=result)


def err(error: str) -> Response:
    return Response(status=ResponseStatus.ERROR, result={"error": error})


class FakeClient:
    """Answers requests with ``handler(request)`` and records them."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests = []

    async def request(self, req):
        self.requests.append(req)
        return self.handler(req)


def validated(result: str = "tesSUCCESS", tx_hash: str = "ABCD") -> Response:
    return ok({"hash": tx_hash, "meta": {"TransactionResult": result}, "validated": True})


class XrplLedgerTestCase(IsolatedAsyncioTestCase):
    def setUp(self):
        self.source = SourceAccount.from_seed(GENESIS_SEED)
        self.alice = Wallet.create().classic_address
        self.bob = Wallet.create().classic_address
        self.xrp = Asset()
        self.usd = Asset("USD", ISSUER, 2)

    def ledger(self, handler=lambda req: err("unexpected")) -> XrplLedger:
        self.client = FakeClient(handler)
        return XrplLedger(self.client, rpc_timeout=1, submit_timeout=1, reserve_drops=1_000_000)

    def instructions(self, owners: list[str], amount: int = 25, asset: Asset | None = None):
        asset = asset or self.xrp
        src = AccountHandle(self.source.address, asset)
        return [TransferInstruction(src, AccountHandle(o, asset), self.source.address, amount) for o in owners]


class TestLookup(XrplLedgerTestCase):
    async def test_existing_xrp_account(self):
        ledger = self.ledger(lambda req: ok({"account_data": {"Account": self.alice, "Balance": "10"}}))
        handle = await ledger.lookup_account(self.alice, self.xrp)
        self.assertEqual(handle, AccountHandle(self.alice, self.xrp))
        self.assertIsInstance(self.client.requests[0], AccountInfo)
        self.assertEqual(self.client.requests[0].account, self.alice)

    async def test_missing_account(self):
        ledger = self.ledger(lambda req: err("actNotFound"))
        self.assertIsNone(await ledger.lookup_account(self.alice, self.xrp))

    async def test_invalid_address_not_sent(self):
        ledger = self.ledger()
        with self.assertRaises(AccountResolutionError):
            await ledger.lookup_account("not-an-address", self.xrp)
        self.assertEqual(self.client.requests, [])

    async def test_other_error(self):
        ledger = self.ledger(lambda req: err("noNetwork"))
        with self.assertRaises(LedgerError):
            await ledger.lookup_account(self.alice, self.xrp)

    async def test_transport_error(self):
        def handler(req):
            raise httpx.ConnectError("refused")

        with self.assertRaises(LedgerError):
            await self.ledger(handler).lookup_account(self.alice, self.xrp)

    async def test_trust_line_found_across_pages(self):
        def handler(req):
            if isinstance(req, AccountInfo):
                return ok({"account_data": {"Balance": "10"}})
            if req.marker is None:
                return ok({"lines": [{"currency": "EUR", "balance": "1"}], "marker": "next"})
            return ok({"lines": [{"currency": "USD", "balance": "3.5"}]})

        ledger = self.ledger(handler)
        self.assertEqual(await ledger.lookup_account(self.alice, self.usd), AccountHandle(self.alice, self.usd))
        lines = [r for r in self.client.requests if isinstance(r, AccountLines)]
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0].peer, ISSUER)

    async def test_trust_line_missing(self):
        def handler(req):
            if isinstance(req, AccountInfo):
                return ok({"account_data": {"Balance": "10"}})
            return ok({"lines": []})

        self.assertIsNone(await self.ledger(handler).lookup_account(self.alice, self.usd))


class TestCreate(XrplLedgerTestCase):
    async def test_create_xrp_account_sends_reserve(self):
        ledger = self.ledger()
        with patch("airdrop.xrpl_ledger.submit_and_wait", new_callable=AsyncMock, return_value=validated()) as saw:
            handle = await ledger.create_account(self.alice, self.xrp, payer=self.source)
        self.assertEqual(handle, AccountHandle(self.alice, self.xrp))
        payment = saw.call_args.args[0]
        self.assertIsInstance(payment, Payment)
        self.assertEqual(payment.account, self.source.address)
        self.assertEqual(payment.destination, self.alice)
        self.assertEqual(payment.amount, "1000000")

    async def test_create_failure(self):
        ledger = self.ledger()
        with patch("airdrop.xrpl_ledger.submit_and_wait", new_callable=AsyncMock,
                   return_value=validated("tecUNFUNDED_PAYMENT")):
            with self.assertRaises(AccountResolutionError) as ctx:
                await ledger.create_account(self.alice, self.xrp, payer=self.source)
        self.assertIn("tecUNFUNDED_PAYMENT", ctx.exception.reason)

    async def test_trust_line_cannot_be_created(self):
        with self.assertRaises(AccountResolutionError):
            await self.ledger().create_account(self.alice, self.usd, payer=self.source)


class TestBalance(XrplLedgerTestCase):
    async def test_xrp_balance(self):
        ledger = self.ledger(lambda req: ok({"account_data": {"Balance": "123456"}}))
        self.assertEqual(await ledger.get_account_balance(AccountHandle(self.alice, self.xrp)), 123_456)

    async def test_issued_currency_balance(self):
        ledger = self.ledger(lambda req: ok({"lines": [{"currency": "USD", "balance": "12.5"}]}))
        self.assertEqual(await ledger.get_account_balance(AccountHandle(self.alice, self.usd)), 1_250)

    async def test_balance_error(self):
        ledger = self.ledger(lambda req: err("actNotFound"))
        with self.assertRaises(LedgerError):
            await ledger.get_account_balance(AccountHandle(self.alice, self.xrp))


class Signed:
    """Stands in for a signed transaction."""

    def __init__(self, txn, tx_hash: str) -> None:
        self.txn = txn
        self.tx_hash = tx_hash

    def get_hash(self) -> str:
        return self.tx_hash


async def no_sleep(_delay: float) -> None:
    return None


class TestSubmit(XrplLedgerTestCase):
    def setUp(self):
        super().setUp()
        self.signed: list[Signed] = []
        self.seq = self.enterContext(
            patch("airdrop.xrpl_ledger.get_next_valid_seq_number", new_callable=AsyncMock, return_value=100)
        )
        self.enterContext(patch("airdrop.xrpl_ledger.get_fee", new_callable=AsyncMock, return_value="10"))
        self.sign = self.enterContext(
            patch("airdrop.xrpl_ledger.autofill_and_sign", new_callable=AsyncMock, side_effect=self.fake_sign)
        )
        self.submit_and_wait = self.enterContext(
            patch("airdrop.xrpl_ledger.submit_and_wait", new_callable=AsyncMock, return_value=validated())
        )
        self.submit = self.enterContext(
            patch("airdrop.xrpl_ledger.submit", new_callable=AsyncMock, return_value=ok({"engine_result": "tesSUCCESS"}))
        )

    async def fake_sign(self, txn, client, wallet, check_fee=True):
        signed = Signed(txn, f"HASH{len(self.signed)}")
        self.signed.append(signed)
        return signed

    def retry(self) -> RetryExecutor:
        return RetryExecutor(
            RetryPolicy(max_attempts=3, base_delay=0), retry_on=(LedgerError,), retry_if=is_transient, sleep=no_sleep
        )

    async def test_single_instruction_is_a_payment(self):
        ledger = self.ledger()
        tx_id = await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, SubmitOptions())
        self.assertEqual(tx_id, "ABCD")
        txn = self.signed[0].txn
        self.assertIsInstance(txn, Payment)
        self.assertEqual(txn.amount, "25")
        self.assertEqual(txn.sequence, 100)
        self.assertTrue(self.sign.call_args.kwargs["check_fee"])
        self.assertIs(self.submit_and_wait.call_args.args[0], self.signed[0])

    async def test_many_instructions_form_one_batch(self):
        ledger = self.ledger()
        owners = [self.alice, self.bob, Wallet.create().classic_address]
        await ledger.submit_signed_batch(self.instructions(owners), self.source, SubmitOptions())
        txn = self.signed[0].txn
        self.assertIsInstance(txn, BatchTxn)
        self.assertEqual(txn.sequence, 100)
        self.assertEqual(txn.fee, "50")
        self.assertEqual(txn.flags, BatchFlag.TF_ALL_OR_NOTHING)
        inner = txn.raw_transactions
        self.assertEqual([t.sequence for t in inner], [101, 102, 103])
        self.assertEqual([t.destination for t in inner], owners)
        self.assertTrue(all(t.fee == "0" and t.signing_pub_key == "" for t in inner))
        self.assertTrue(all(t.flags == TransactionFlag.TF_INNER_BATCH_TXN for t in inner))

    async def test_issued_currency_amounts(self):
        ledger = self.ledger()
        instructions = self.instructions([self.alice], amount=150, asset=self.usd)
        await ledger.submit_signed_batch(instructions, self.source, SubmitOptions())
        self.assertEqual(self.signed[0].txn.amount.value, "1.50")

    async def test_rejected_submission_is_final(self):
        self.submit_and_wait.return_value = validated("tecPATH_DRY")
        ledger = self.ledger()
        with self.assertRaises(LedgerSubmitError) as ctx:
            await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, SubmitOptions())
        self.assertEqual(ctx.exception.engine_result, "tecPATH_DRY")
        self.assertFalse(ctx.exception.retryable)

    async def test_transport_failure_is_retryable(self):
        self.submit_and_wait.side_effect = XRPLException("connection reset")
        ledger = self.ledger()
        with self.assertRaises(LedgerSubmitError) as ctx:
            await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, SubmitOptions())
        self.assertIsNone(ctx.exception.engine_result)
        self.assertTrue(ctx.exception.retryable)

    async def test_malformed_transaction_is_not_retried(self):
        self.submit_and_wait.side_effect = XRPLReliableSubmissionException("temBAD_AMOUNT: Malformed: Bad amount.")
        ledger = self.ledger()
        with self.assertRaises(LedgerSubmitError) as ctx:
            await self.retry().execute(
                lambda: ledger.submit_signed_batch(self.instructions([self.alice]), self.source, SubmitOptions())
            )
        self.assertEqual(ctx.exception.engine_result, "temBAD_AMOUNT")
        self.assertFalse(ctx.exception.retryable)
        self.assertEqual(self.submit_and_wait.await_count, 1)

    async def test_timed_out_but_applied_is_not_paid_twice(self):
        async def applies_then_stalls(*args, **kwargs):
            await asyncio.sleep(1)
            return validated()

        self.submit_and_wait.side_effect = applies_then_stalls
        client = FakeClient(
            lambda req: ok({"hash": req.transaction, "validated": True, "meta": {"TransactionResult": "tesSUCCESS"}})
        )
        ledger = XrplLedger(client, rpc_timeout=1, submit_timeout=0.05)
        owners = [self.alice, self.bob, Wallet.create().classic_address]

        tx_id = await self.retry().execute(
            lambda: ledger.submit_signed_batch(self.instructions(owners), self.source, SubmitOptions())
        )
        self.assertEqual(tx_id, "HASH0")
        self.assertEqual(len(self.signed), 1)
        self.assertEqual(self.submit_and_wait.await_count, 1)
        self.assertIsInstance(client.requests[0], Tx)
        self.assertEqual(client.requests[0].transaction, "HASH0")

    async def test_retry_resubmits_the_same_signed_transaction(self):
        self.submit_and_wait.side_effect = [TimeoutError(), validated(tx_hash="HASH0")]
        ledger = self.ledger(lambda req: err("txnNotFound"))

        tx_id = await self.retry().execute(
            lambda: ledger.submit_signed_batch(self.instructions([self.alice, self.bob]), self.source, SubmitOptions())
        )
        self.assertEqual(tx_id, "HASH0")
        self.assertEqual(len(self.signed), 1)
        self.assertEqual([c.args[0] for c in self.submit_and_wait.call_args_list], [self.signed[0]] * 2)

    async def test_earlier_attempt_applied_with_failure(self):
        self.submit_and_wait.side_effect = [TimeoutError()]
        ledger = self.ledger(
            lambda req: ok({"hash": req.transaction, "validated": True, "meta": {"TransactionResult": "tecUNFUNDED"}})
        )
        with self.assertRaises(LedgerSubmitError) as ctx:
            await self.retry().execute(
                lambda: ledger.submit_signed_batch(self.instructions([self.alice]), self.source, SubmitOptions())
            )
        self.assertEqual(ctx.exception.engine_result, "tecUNFUNDED")
        self.assertEqual(self.submit_and_wait.await_count, 1)

    async def test_rejection_drops_the_signed_transaction(self):
        self.submit_and_wait.return_value = validated("tecPATH_DRY")
        ledger = self.ledger()
        instructions = self.instructions([self.alice])
        with self.assertRaises(LedgerSubmitError):
            await ledger.submit_signed_batch(instructions, self.source, SubmitOptions())
        self.submit_and_wait.return_value = validated()
        await ledger.submit_signed_batch(instructions, self.source, SubmitOptions())
        self.assertEqual(len(self.signed), 2)

    async def test_submitted_commitment(self):
        self.submit.return_value = ok({"engine_result": "terQUEUED"})
        ledger = self.ledger()
        options = SubmitOptions(commitment=Commitment.SUBMITTED, skip_preflight=True)
        tx_id = await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, options)
        self.assertEqual(tx_id, "HASH0")
        self.assertFalse(self.sign.call_args.kwargs["check_fee"])
        self.assertIs(self.submit.call_args.args[0], self.signed[0])

    async def test_queued_batches_take_fresh_sequences(self):
        self.submit.return_value = ok({"engine_result": "terQUEUED"})
        ledger = self.ledger()
        options = SubmitOptions(commitment=Commitment.SUBMITTED)
        await ledger.submit_signed_batch(self.instructions([self.alice, self.bob, Wallet.create().classic_address]), self.source, options)
        await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, options)
        # the ledger still reports 100 while the first batch sits in the queue
        self.assertEqual(self.signed[0].txn.sequence, 100)
        self.assertEqual(self.signed[1].txn.sequence, 104)

    async def test_already_submitted(self):
        ledger = self.ledger(lambda req: ok({"hash": req.transaction, "validated": False}))
        options = SubmitOptions(commitment=Commitment.SUBMITTED)
        for engine_result in ("tefALREADY", "tefPAST_SEQ"):
            with self.subTest(engine_result=engine_result):
                self.submit.return_value = ok({"engine_result": engine_result})
                tx_id = await ledger.submit_signed_batch(self.instructions([self.alice]), self.source, options)
                self.assertEqual(tx_id, self.signed[-1].tx_hash)

    async def test_past_sequence_of_another_transaction(self):
        self.submit.return_value = ok({"engine_result": "tefPAST_SEQ", "engine_result_message": "too old"})
        ledger = self.ledger(lambda req: err("txnNotFound"))
        with self.assertRaises(LedgerSubmitError) as ctx:
            await ledger.submit_signed_batch(
                self.instructions([self.alice]), self.source, SubmitOptions(commitment=Commitment.SUBMITTED)
            )
        self.assertEqual(ctx.exception.engine_result, "tefPAST_SEQ")
        self.assertFalse(ctx.exception.retryable)

    async def test_rejects_bad_input(self):
        ledger = self.ledger()
        with self.assertRaises(ValueError):
            await ledger.submit_signed_batch([], self.source, SubmitOptions())
        with self.assertRaises(ValueError):
            owners = [Wallet.create().classic_address for _ in range(9)]
            await ledger.submit_signed_batch(self.instructions(owners), self.source, SubmitOptions())
        other = SourceAccount.from_wallet(Wallet.create())
        with self.assertRaises(ValueError):
            await ledger.submit_signed_batch(self.instructions([self.alice]), other, SubmitOptions())
        self.assertEqual(self.signed, [])


class TestRpcCheck(IsolatedAsyncioTestCase):
    async def test_rpc_reachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"result": {"info": {"server_state": "full"}}})

        info = await probe_rpc("http://node:5005", transport=httpx.MockTransport(handler))
        self.assertEqual(info["server_state"], "full")

    async def test_rpc_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        with self.assertRaises(httpx.HTTPStatusError):
            await probe_rpc("http://node:5005", transport=httpx.MockTransport(handler))
