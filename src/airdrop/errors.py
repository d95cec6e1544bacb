"""Error taxonomy for a distribution run.

Every error carries the process exit code the CLI reports for it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from airdrop.constants import RETRYABLE_RESULT_PREFIXES, ExitCode

if TYPE_CHECKING:
    from airdrop.models import Asset, BatchReceipt


class AirdropError(Exception):
    exit_code: ExitCode = ExitCode.ERROR


class ConfigError(AirdropError):
    exit_code = ExitCode.CONFIG


class LedgerError(AirdropError):
    """A request to the ledger failed or returned an unexpected result."""

    exit_code = ExitCode.LEDGER

    def __init__(self, message: str, *, result: dict | None = None) -> None:
        super().__init__(message)
        self.result = result or {}


class LedgerSubmitError(LedgerError):
    """The ledger refused a signed submission.

    ``engine_result`` is ``None`` when the outcome is unknown, e.g. the
    request timed out; such failures are retryable, as are ``tel``/``ter``
    results.
    """

    def __init__(self, engine_result: str | None, message: str = "", *, result: dict | None = None) -> None:
        super().__init__(f"submission failed: {engine_result} {message}".strip(), result=result)
        self.engine_result = engine_result

    @property
    def retryable(self) -> bool:
        return self.engine_result is None or self.engine_result.startswith(RETRYABLE_RESULT_PREFIXES)


class AccountResolutionError(AirdropError):
    exit_code = ExitCode.ACCOUNT_RESOLUTION

    def __init__(self, owner: str, asset: Asset | str, reason: str) -> None:
        super().__init__(f"cannot resolve {asset} account for {owner}: {reason}")
        self.owner = owner
        self.asset = asset
        self.reason = reason


class BalanceQueryError(AirdropError):
    exit_code = ExitCode.BALANCE_QUERY


class InsufficientBalance(AirdropError):
    exit_code = ExitCode.INSUFFICIENT_BALANCE

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient balance: {available} available, {required} required "
            f"(short by {required - available})"
        )
        self.available = available
        self.required = required

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class RetriesExhausted(AirdropError):
    exit_code = ExitCode.RETRIES_EXHAUSTED

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Max retries reached after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class DistributionError(AirdropError):
    """Wraps the failure that stopped a distribution part way through.

    ``completed`` holds the receipts of batches confirmed before the failure;
    those recipients have already been paid.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None,
                 completed: list[BatchReceipt] | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.completed = list(completed or [])

    @property
    def exit_code(self) -> ExitCode:  # type: ignore[override]
        if isinstance(self.cause, AirdropError):
            return self.cause.exit_code
        return ExitCode.DISTRIBUTION


def exit_code_for(exc: BaseException) -> ExitCode:
    if isinstance(exc, AirdropError):
        return exc.exit_code
    if isinstance(exc, ValueError):
        return ExitCode.USAGE
    return ExitCode.ERROR


def is_transient(exc: BaseException) -> bool:
    """Whether resubmitting after ``exc`` can succeed."""
    if isinstance(exc, LedgerSubmitError):
        return exc.retryable
    return isinstance(exc, LedgerError)
