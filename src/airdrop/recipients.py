import csv
import json
from pathlib import Path

from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.wallet import Wallet


def generate_random_addresses(count: int) -> list[str]:
    """Fresh throwaway addresses, for exercising a test network."""
    return [Wallet.create().classic_address for _ in range(count)]


def load_recipients(path: str | Path) -> list[str]:
    """Read recipient addresses in file order.

    ``.json`` files hold a list of addresses or of objects with an
    ``address`` key. Anything else is read as CSV/plain text taking the first
    column; blank lines, ``#`` comments and an ``address`` header are skipped.
    """
    path = Path(path)
    if path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON list of recipients")
        recipients = []
        for i, entry in enumerate(data):
            if isinstance(entry, dict):
                if "address" not in entry:
                    raise ValueError(f"{path}: entry {i} has no 'address'")
                entry = entry["address"]
            recipients.append(str(entry).strip())
        return recipients

    recipients = []
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            if not row or not row[0].strip() or row[0].lstrip().startswith("#"):
                continue
            address = row[0].strip()
            if address.lower() == "address":
                continue
            recipients.append(address)
    return recipients


def invalid_addresses(recipients: list[str]) -> list[str]:
    return [r for r in recipients if not is_valid_classic_address(r)]
