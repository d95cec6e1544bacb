"""
airdrop: distribute an asset from one account to many on the XRP Ledger.

Usage:
    airdrop [--config FILE] [--asset XRP|CUR.rIssuer] run --amount N (--recipients FILE | --random N) [--dry-run]
    airdrop [--config FILE] [--asset XRP|CUR.rIssuer] balance

Exit codes:
    0 success              5 balance query failed
    1 unexpected error     6 insufficient balance
    2 bad arguments        7 distribution failed
    3 account resolution   8 configuration / secret file
    4 retries exhausted    9 ledger request failed
"""

import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

import airdrop.constants as C
from airdrop.accounts import AccountResolver
from airdrop.balance import BalancePreflight
from airdrop.config import load_config, retry_policy, submit_options
from airdrop.errors import AccountResolutionError, AirdropError, ConfigError, exit_code_for
from airdrop.logging_config import setup_logging
from airdrop.models import Asset
from airdrop.recipients import generate_random_addresses, invalid_addresses, load_recipients
from airdrop.retry import RetryExecutor, RetryPolicy
from airdrop.runner import DistributionRunner
from airdrop.secret_store import load_source_account
from airdrop.sqlite_store import SQLiteCheckpointStore
from airdrop.xrpl_ledger import XrplLedger, probe_rpc

log = logging.getLogger("airdrop.cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="airdrop",
        description="Batch-distribute an asset from a custodial account.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-c", "--config", type=Path, help="TOML file overriding the packaged defaults.")
    parser.add_argument("--rpc-url", help="JSON-RPC endpoint of the ledger node.")
    parser.add_argument("--secret-file", type=Path, help="Seed file of the source account.")
    parser.add_argument("--asset", help="XRP or CUR.rIssuer.")
    parser.add_argument("--decimals", type=int, help="Decimals of an issued currency's smallest unit.")
    parser.add_argument("--no-probe", action="store_true", help="Skip the startup RPC probe.")
    parser.add_argument("--log-level", help="Overrides LOG_LEVEL.")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Distribute to every recipient.")
    run.add_argument("-a", "--amount", type=int, required=True,
                     help="Amount per recipient, in smallest units (drops for XRP).")
    who = run.add_mutually_exclusive_group(required=True)
    who.add_argument("-r", "--recipients", type=Path, help="JSON, CSV or text file of addresses.")
    who.add_argument("--random", type=int, metavar="N", help="Send to N freshly generated addresses.")
    run.add_argument("-b", "--batch-size", type=int, help="Instructions per signed request.")
    run.add_argument("--max-attempts", type=int, help="Submission attempts per batch.")
    run.add_argument("--retry-delay", type=float, help="Base delay between attempts, seconds.")
    run.add_argument("--backoff", choices=[b.value for b in C.Backoff])
    run.add_argument("--commitment", choices=[c.value for c in C.Commitment])
    run.add_argument("--skip-preflight", action="store_true", default=None,
                     help="Skip the local fee check before submitting.")
    run.add_argument("--checkpoint", type=Path, help="SQLite file recording confirmed batches.")
    run.add_argument("--dry-run", action="store_true", help="Check the balance and print the plan only.")

    sub.add_parser("balance", help="Show the source account's holdings.")
    return parser.parse_args(argv)


def overrides(a: argparse.Namespace) -> dict:
    o: dict = {}

    def put(section: str, key: str, value):
        if value is not None:
            o.setdefault(section, {})[key] = value

    put("rpc", "url", a.rpc_url)
    put("source", "secret_file", str(a.secret_file) if a.secret_file else None)
    put("asset", "code", a.asset)
    put("asset", "decimals", a.decimals)
    if a.no_probe:
        put("rpc", "probe", False)
    put("distribution", "batch_size", getattr(a, "batch_size", None))
    put("retry", "max_attempts", getattr(a, "max_attempts", None))
    put("retry", "base_delay", getattr(a, "retry_delay", None))
    put("retry", "backoff", getattr(a, "backoff", None))
    put("submit", "commitment", getattr(a, "commitment", None))
    put("submit", "skip_preflight", getattr(a, "skip_preflight", None))
    if getattr(a, "checkpoint", None) is not None:
        put("checkpoint", "enabled", True)
        put("checkpoint", "path", str(a.checkpoint))
    return o


def parse_asset(cfg: dict) -> Asset:
    try:
        return Asset.parse(cfg["asset"]["code"], decimals=int(cfg["asset"]["decimals"]))
    except ValueError as e:
        raise ConfigError(str(e)) from e


async def run_airdrop(args: argparse.Namespace, cfg: dict) -> int:
    source = load_source_account(cfg["source"]["secret_file"], cfg["source"]["algorithm"])
    asset = parse_asset(cfg)
    rpc = cfg["rpc"]

    if rpc.get("probe", True):
        log.info("Probing RPC endpoint %s...", rpc["url"])
        probe = RetryExecutor(RetryPolicy(max_attempts=int(rpc["probe_attempts"]), base_delay=float(rpc["probe_delay"])))
        await probe.execute(lambda: probe_rpc(rpc["url"]), label="RPC probe")

    ledger = XrplLedger.from_url(
        rpc["url"],
        rpc_timeout=float(rpc["timeout"]),
        submit_timeout=float(rpc["submit_timeout"]),
        reserve_drops=int(cfg["distribution"]["reserve_drops"]),
    )

    if args.command == "balance":
        preflight = BalancePreflight(ledger, AccountResolver(ledger, payer=source))
        balance = await preflight.check_balance(asset, source.address)
        print(f"{source.address} holds {balance} {asset}")
        return C.ExitCode.OK

    if args.random is not None:
        recipients = generate_random_addresses(args.random)
    else:
        recipients = load_recipients(args.recipients)
    if bad := invalid_addresses(recipients):
        raise AccountResolutionError(bad[0], asset, f"not a valid classic address ({len(bad)} invalid in list)")

    checkpoint = None
    if cfg["checkpoint"]["enabled"]:
        checkpoint = SQLiteCheckpointStore(cfg["checkpoint"]["path"])

    runner = DistributionRunner.build(
        ledger,
        source,
        batch_size=int(cfg["distribution"]["batch_size"]),
        retry_policy=retry_policy(cfg),
        options=submit_options(cfg),
        checkpoint=checkpoint,
    )
    report = await runner.run(asset, source, recipients, args.amount, dry_run=args.dry_run)
    print(report.summary())
    return C.ExitCode.OK


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        cfg = load_config(args.config, overrides(args))
        return int(asyncio.run(run_airdrop(args, cfg)))
    except AirdropError as e:
        log.error("%s: %s", e.__class__.__name__, e)
        return int(e.exit_code)
    except (ValueError, OSError) as e:
        log.error("%s", e)
        return int(exit_code_for(e))
    except KeyboardInterrupt:
        log.warning("Interrupted")
        return 130
