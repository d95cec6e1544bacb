"""Load the source account's signing credential."""

import json
import logging
from pathlib import Path

from xrpl import CryptoAlgorithm, XRPLException

from airdrop.errors import ConfigError
from airdrop.models import SourceAccount

log = logging.getLogger("airdrop.secrets")


def load_source_account(path: str | Path, algorithm: str | CryptoAlgorithm = CryptoAlgorithm.SECP256K1) -> SourceAccount:
    """Read a seed file and derive the source wallet.

    The file is either JSON ``{"seed": ..., "algorithm": ..., "address": ...}``
    (``algorithm`` and ``address`` optional) or just the seed. When an address
    is given it must match the derived wallet.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError(f"Cannot read secret file {path}: {e}") from e

    expected_address = None
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Secret file {path} is not valid JSON: {e}") from e
        seed = data.get("seed")
        algorithm = data.get("algorithm", algorithm)
        expected_address = data.get("address")
    else:
        seed = text

    if not seed:
        raise ConfigError(f"Secret file {path} has no seed")

    try:
        source = SourceAccount.from_seed(seed, algorithm=CryptoAlgorithm(algorithm))
    except (XRPLException, ValueError) as e:
        raise ConfigError(f"Cannot derive wallet from {path}: {e}") from e

    if expected_address and expected_address != source.address:
        raise ConfigError(
            f"Secret file {path} address {expected_address} does not match derived {source.address}"
        )
    log.debug("Loaded source account %s", source.address)
    return source
