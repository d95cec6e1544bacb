import copy
import os
import tomllib
from pathlib import Path
from typing import Any

from xrpl import CryptoAlgorithm

import airdrop.constants as C
from airdrop.errors import ConfigError
from airdrop.models import SubmitOptions
from airdrop.retry import RetryPolicy

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "RPC_URL": ("rpc", "url"),
    "AIRDROP_SECRET_FILE": ("source", "secret_file"),
    "AIRDROP_ASSET": ("asset", "code"),
}


def merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    out = copy.deepcopy(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(path: str | Path | None = None, overrides: dict | None = None,
                env: dict[str, str] | None = None) -> dict[str, Any]:
    """Packaged defaults <- optional TOML file <- environment <- ``overrides``."""
    cfg = tomllib.loads(config_file.read_text())

    if path is not None:
        path = Path(path)
        try:
            cfg = merge(cfg, tomllib.loads(path.read_text()))
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}") from None
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    env = os.environ if env is None else env
    for var, (section, key) in ENV_OVERRIDES.items():
        if env.get(var):
            cfg.setdefault(section, {})[key] = env[var]

    if overrides:
        cfg = merge(cfg, overrides)

    validate(cfg)
    return cfg


def validate(cfg: dict) -> None:
    try:
        if int(cfg["distribution"]["batch_size"]) < 1:
            raise ConfigError("distribution.batch_size must be >= 1")
        if int(cfg["retry"]["max_attempts"]) < 1:
            raise ConfigError("retry.max_attempts must be >= 1")
        if float(cfg["retry"]["base_delay"]) < 0:
            raise ConfigError("retry.base_delay must be >= 0")
        C.Backoff(cfg["retry"]["backoff"])
        C.Commitment(cfg["submit"]["commitment"])
        CryptoAlgorithm(cfg["source"]["algorithm"])
    except KeyError as e:
        raise ConfigError(f"Missing config key {e}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e


def retry_policy(cfg: dict) -> RetryPolicy:
    r = cfg["retry"]
    return RetryPolicy(
        max_attempts=int(r["max_attempts"]),
        base_delay=float(r["base_delay"]),
        backoff=C.Backoff(r["backoff"]),
        max_delay=float(r.get("max_delay", C.MAX_RETRY_DELAY)),
        jitter=bool(r.get("jitter", False)),
    )


def submit_options(cfg: dict) -> SubmitOptions:
    s = cfg["submit"]
    return SubmitOptions(
        commitment=C.Commitment(s["commitment"]),
        skip_preflight=bool(s.get("skip_preflight", False)),
        fail_hard=bool(s.get("fail_hard", False)),
    )
