#!/usr/bin/env python3
"""Generate wallets that have never transacted and save them as address,privateKey CSV.

Usage:
  python new_wallets.py 10 wallets.csv [--max-retries 3]

The CSV holds raw private keys. Keep it out of version control.
"""

import argparse
import asyncio
import sys

from batchpay.config import Context, load_settings
from batchpay.errors import BatchPayError
from batchpay.logging_config import setup_logging
from batchpay.records import save_wallets


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Create clean wallets and write them to CSV")
    p.add_argument("count", type=int, help="number of wallets")
    p.add_argument("output_csv", nargs="?", default="wallets.csv", help="where to write (default wallets.csv)")
    p.add_argument("--max-retries", type=int, default=3, help="retries per wallet when an address is taken")
    return p.parse_args(argv)


async def run(args) -> int:
    ctx = Context.from_settings(load_settings())
    wallets = await ctx.wallets.create_clean_wallets(args.count, max_retries=args.max_retries)
    save_wallets(args.output_csv, wallets)
    for w in wallets:
        print("New account created:", w.address)
    print(f"Saved {len(wallets)} wallets to {args.output_csv}")
    return 0


def main(argv=None):
    setup_logging()
    args = parse_args(argv)
    if args.count < 1:
        print("ERROR: count must be >= 1", file=sys.stderr)
        sys.exit(2)
    try:
        code = asyncio.run(run(args))
    except BatchPayError as e:
        print(f"[err] {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
