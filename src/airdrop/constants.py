from enum import IntEnum, StrEnum
from typing import Final

# Transfer instructions grouped into one signed request
BATCH_CAPACITY: Final = 10

# XRPL Batch accepts between 2 and 8 inner transactions
XRPL_BATCH_MIN: Final = 2
XRPL_BATCH_LIMIT: Final = 8

DEFAULT_MAX_ATTEMPTS: Final = 5
DEFAULT_RETRY_DELAY: Final = 1.0  # seconds
MAX_RETRY_DELAY: Final = 30.0

# Base reserve that brings a new account root into existence
ACCOUNT_RESERVE_DROPS: Final = 1_000_000
DEFAULT_IOU_DECIMALS: Final = 6

RPC_TIMEOUT: Final = 10.0
SUBMIT_TIMEOUT: Final = 60.0
PROBE_TIMEOUT: Final = 3.0

XRP: Final = "XRP"

# Engine results that mean the batch was accepted for inclusion
ACCEPTED_ENGINE_RESULTS: Final = frozenset({"tesSUCCESS", "terQUEUED"})

# The same signed transaction is already queued or held by the node
ALREADY_SUBMITTED: Final = "tefALREADY"
# The sequence has been consumed, possibly by this very transaction
PAST_SEQUENCE: Final = "tefPAST_SEQ"

# Local (tel) and retry (ter) results may clear up on resubmission
RETRYABLE_RESULT_PREFIXES: Final = ("tel", "ter")


class Commitment(StrEnum):
    SUBMITTED = "submitted"
    VALIDATED = "validated"


class Backoff(StrEnum):
    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class ExitCode(IntEnum):
    OK                   = 0
    ERROR                = 1
    USAGE                = 2
    ACCOUNT_RESOLUTION   = 3
    RETRIES_EXHAUSTED    = 4
    BALANCE_QUERY        = 5
    INSUFFICIENT_BALANCE = 6
    DISTRIBUTION         = 7
    CONFIG               = 8
    LEDGER               = 9


__all__ = [
    "ACCEPTED_ENGINE_RESULTS",
    "ACCOUNT_RESERVE_DROPS",
    "ALREADY_SUBMITTED",
    "BATCH_CAPACITY",
    "DEFAULT_IOU_DECIMALS",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_DELAY",
    "MAX_RETRY_DELAY",
    "PAST_SEQUENCE",
    "PROBE_TIMEOUT",
    "RETRYABLE_RESULT_PREFIXES",
    "RPC_TIMEOUT",
    "SUBMIT_TIMEOUT",
    "XRP",
    "XRPL_BATCH_LIMIT",
    "XRPL_BATCH_MIN",

    ######
    "Backoff",
    "Commitment",
    "ExitCode",
]
