"""Value types shared by the distribution engine.

Everything here is immutable. Amounts are integers in the asset's smallest
unit: drops for XRP, ``10**-decimals`` of the currency for issued currencies.
"""

import hashlib
import json
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.models import IssuedCurrency
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.wallet import Wallet
from xrpl import CryptoAlgorithm

import airdrop.constants as C


@dataclass(frozen=True, slots=True)
class Asset:
    currency: str = C.XRP
    issuer: str | None = None
    decimals: int = 0

    def __post_init__(self):
        if self.currency == C.XRP:
            if self.issuer is not None:
                raise ValueError("XRP has no issuer")
            return
        if not self.issuer or not is_valid_classic_address(self.issuer):
            raise ValueError(f"Invalid issuer for {self.currency}: {self.issuer!r}")
        if not (len(self.currency) == 3 or len(self.currency) == 40):
            raise ValueError(f"Currency code must be 3 characters or 40 hex digits: {self.currency!r}")
        if self.decimals < 0:
            raise ValueError("decimals must be >= 0")

    @classmethod
    def parse(cls, text: str, decimals: int = C.DEFAULT_IOU_DECIMALS) -> "Asset":
        """Parse ``XRP`` or ``CUR.rIssuer`` (``CUR/rIssuer`` also accepted)."""
        text = text.strip()
        if text.upper() == C.XRP:
            return cls()
        for sep in (".", "/"):
            if sep in text:
                currency, issuer = text.split(sep, 1)
                return cls(currency=currency.strip(), issuer=issuer.strip(), decimals=decimals)
        raise ValueError(f"Unrecognized asset {text!r}, expected XRP or CUR.rIssuer")

    @property
    def is_xrp(self) -> bool:
        return self.currency == C.XRP

    def issued_currency(self) -> IssuedCurrency:
        if self.is_xrp:
            raise ValueError("XRP is not an issued currency")
        return IssuedCurrency(currency=self.currency, issuer=self.issuer)

    def to_amount(self, units: int) -> str | IssuedCurrencyAmount:
        """Ledger amount for ``units`` smallest units of this asset."""
        if self.is_xrp:
            return str(units)
        value = Decimal(units).scaleb(-self.decimals)
        return IssuedCurrencyAmount(currency=self.currency, issuer=self.issuer, value=format(value, "f"))

    def to_units(self, value: str | int | Decimal) -> int:
        """Convert a ledger value back into smallest units, truncating dust."""
        if self.is_xrp:
            return int(value)
        try:
            scaled = Decimal(str(value)).scaleb(self.decimals)
        except InvalidOperation as e:
            raise ValueError(f"Invalid {self.currency} value {value!r}") from e
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))

    def __str__(self):
        return self.currency if self.is_xrp else f"{self.currency}.{self.issuer}"


@dataclass(frozen=True, slots=True)
class AccountHandle:
    """The ledger entry that holds ``asset`` for ``owner``.

    For XRP this is the account root; for an issued currency it is the trust
    line between ``owner`` and the issuer.
    """

    owner: str
    asset: Asset

    def __str__(self):
        return f"{self.owner}[{self.asset}]"


@dataclass(frozen=True, slots=True)
class SourceAccount:
    wallet: Wallet = field(compare=False, repr=False)
    address: str

    @classmethod
    def from_wallet(cls, wallet: Wallet) -> "SourceAccount":
        return cls(wallet=wallet, address=wallet.classic_address)

    @classmethod
    def from_seed(cls, seed: str, algorithm: CryptoAlgorithm = CryptoAlgorithm.SECP256K1) -> "SourceAccount":
        return cls.from_wallet(Wallet.from_seed(seed, algorithm=algorithm))


@dataclass(frozen=True, slots=True)
class TransferInstruction:
    source: AccountHandle
    destination: AccountHandle
    authority: str
    amount: int


@dataclass(frozen=True, slots=True)
class Batch:
    index: int
    instructions: tuple[TransferInstruction, ...]

    def __len__(self):
        return len(self.instructions)

    @property
    def recipients(self) -> list[str]:
        return [i.destination.owner for i in self.instructions]


@dataclass(frozen=True, slots=True)
class SubmitOptions:
    commitment: C.Commitment = C.Commitment.VALIDATED
    skip_preflight: bool = False
    fail_hard: bool = False


@dataclass(frozen=True, slots=True)
class DistributionJob:
    asset: Asset
    source: SourceAccount
    recipients: tuple[str, ...]
    amount_per_recipient: int

    @property
    def required_amount(self) -> int:
        return self.amount_per_recipient * len(self.recipients)

    def fingerprint(self) -> str:
        """Stable identity of the job, used to key checkpoints."""
        payload = json.dumps(
            [str(self.asset), self.source.address, list(self.recipients), self.amount_per_recipient],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class BatchReceipt:
    index: int
    size: int
    tx_id: str


@dataclass
class DistributionReport:
    job: DistributionJob
    balance: int
    receipts: list[BatchReceipt] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    planned: list[int] = field(default_factory=list)
    dry_run: bool = False

    @property
    def transferred(self) -> int:
        return sum(r.size for r in self.receipts) * self.job.amount_per_recipient

    def summary(self) -> str:
        status = "DRY RUN" if self.dry_run else "SUCCESS"
        lines = [
            f"=== Airdrop {status} ===",
            f"Asset: {self.job.asset}",
            f"Source: {self.job.source.address}",
            f"Recipients: {len(self.job.recipients)}",
            f"Amount per recipient: {self.job.amount_per_recipient}",
            f"Source balance: {self.balance}",
        ]
        if self.dry_run:
            lines.append(f"Planned batches: {self.planned}")
        else:
            lines.append(f"Batches submitted: {len(self.receipts)}")
            lines.append(f"Total transferred: {self.transferred}")
        if self.skipped:
            lines.append(f"Skipped (already confirmed): {self.skipped}")
        for r in self.receipts:
            lines.append(f"  batch {r.index} ({r.size}): {r.tx_id}")
        return "\n".join(lines)
