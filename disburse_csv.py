#!/usr/bin/env python3
"""Pay every row of a transfer CSV in one BatchTransferAdmin call.

Usage:
  python disburse_csv.py payouts.csv [--token 0xTOKEN] [--confirmations 3]

CSV headers: toAddress,amount (fromAddress optional). Amounts are in display
units (ether / whole tokens). Settings come from .env, see batchpay.config.
"""

import argparse
import asyncio
import os
import sys

from batchpay.config import Context, load_settings
from batchpay.errors import BatchPayError
from batchpay.logging_config import setup_logging
from batchpay.models import from_base_units, is_native
from batchpay.records import load_transfers


def positive_int(raw):
    value = int(raw)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Batch-transfer native currency or tokens from a CSV")
    p.add_argument("input_csv", nargs="?", default="payouts.csv", help="transfer records (default payouts.csv)")
    p.add_argument("--token", default=None, help="token address (default TOKEN_ADDRESS or native)")
    p.add_argument("--confirmations", type=positive_int, default=None, help="blocks to wait (default CONFIRMATIONS)")
    return p.parse_args(argv)


async def run(args) -> int:
    settings = load_settings()
    ctx = Context.from_settings(settings)
    sender = ctx.funding_wallet()
    asset = args.token or settings.token_address
    confirmations = settings.confirmations if args.confirmations is None else args.confirmations

    if not os.path.exists(args.input_csv):
        raise SystemExit(f"Input CSV not found: {args.input_csv}")
    records = load_transfers(args.input_csv)
    foreign = [r for r in records if r.from_address and r.from_address.lower() != sender.address.lower()]
    if foreign:
        print(f"[warn] {len(foreign)} rows name a fromAddress other than {sender.address}; paying from the funding wallet")

    print("Using RPC:", settings.rpc_url, "(simulated)" if settings.simulate else "")
    print("From:", sender.address)
    print("Contract:", ctx.contract())
    print("Asset:", "native" if is_native(asset) else asset)
    print(f"Recipients: {len(records)}")

    receipt = await ctx.disburser.disburse_records(
        ctx.contract(), asset, records, sender, confirmations=confirmations
    )
    print(f"→ tx: {receipt.tx_hash}")
    print("   Confirmed in block:", receipt.block_number)
    print(f"   Gas used: {receipt.gas_used} | fee: {from_base_units(receipt.fee)} (native)")
    return 0


def main(argv=None):
    setup_logging()
    args = parse_args(argv)
    try:
        code = asyncio.run(run(args))
    except BatchPayError as e:
        print(f"[err] {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
