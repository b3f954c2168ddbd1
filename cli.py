#!/usr/bin/env python3
"""
Clash exchange client: execute program transactions from the command line.

Commands:
  config [path]              render the program config and cache the token id
  init                       initialize the exchange authority (fee payer signs)
  terminate                  terminate the exchange (fee payer signs)
  exchange [sol_amount]      pay SOL from the exchanger wallet for tokens
  confirm [token_amount]     deliver tokens paid off-chain to the exchanger wallet

Configuration comes from the environment / .env (see settings.Settings).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from config_gen import update_program_config
from errors import ExchangeClientError, IndeterminateOutcome, SubmissionRejected
from exchange import confirm_token_payment, exchange_sol_for_token, initialize_exchange, terminate_exchange
from session import establish_session, load_exchanger, load_keypair
from settings import load_settings
from tx_builder import instruction_to_dict

DEFAULT_AMOUNT = "0.35"
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INDETERMINATE = 2


def amount_arg(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise argparse.ArgumentTypeError(f"amount must be a non-negative number: {value!r}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Client for the Clash token exchange program.")
    parser.add_argument("--env-file", default=None, help="Read settings from this env file instead of .env.")
    parser.add_argument("--dry-run", action="store_true", help="Print the instruction instead of submitting it.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    config = sub.add_parser("config", help="Render the program config file and cache the token id.")
    config.add_argument("path", nargs="?", default="config.json")

    sub.add_parser("init", help="Initialize the exchange authority.")
    sub.add_parser("terminate", help="Terminate the exchange.")

    exchange = sub.add_parser("exchange", help="Exchange SOL for tokens.")
    exchange.add_argument("amount", nargs="?", type=amount_arg, default=DEFAULT_AMOUNT, help="SOL to pay (default 0.35).")

    confirm = sub.add_parser("confirm", help="Confirm an off-chain payment and deliver tokens.")
    confirm.add_argument("amount", nargs="?", type=amount_arg, default=DEFAULT_AMOUNT, help="Tokens to deliver (default 0.35).")
    return parser


def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.env_file)
    if args.command == "config":
        update_program_config(args.path, token_id_path=settings.token_id_path, quote_url=settings.sol_usd_quote_url)
        return EXIT_OK

    session = establish_session(settings, fund_payer=not args.dry_run)
    if args.command == "init":
        result = initialize_exchange(session, session.fee_payer, dry_run=args.dry_run)
        print(f"Program ATA: {result.program_authority_custody}")
    elif args.command == "terminate":
        result = terminate_exchange(session, session.fee_payer, dry_run=args.dry_run)
    elif args.command == "exchange":
        exchanger = load_exchanger(settings.exchanger_keypair_path, session.mint)
        result = exchange_sol_for_token(session, exchanger.keypair, args.amount, dry_run=args.dry_run)
    elif args.command == "confirm":
        exchanger = load_exchanger(settings.exchanger_keypair_path, session.mint)
        authority = (
            load_keypair(settings.authority_keypair_path) if settings.authority_keypair_path else session.fee_payer
        )
        result = confirm_token_payment(session, authority, exchanger.wallet, args.amount, dry_run=args.dry_run)
    else:
        raise ValueError(f"Invalid command `{args.command}`.")

    if args.dry_run:
        print(json.dumps(instruction_to_dict(result.instruction), indent=2))
    else:
        print(f"Confirmed: {result.receipt.signature}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        return run(args)
    except IndeterminateOutcome as exc:
        print(f"⚠️  {exc.message}", file=sys.stderr)
        return EXIT_INDETERMINATE
    except SubmissionRejected as exc:
        print(f"Rejected: {exc.message}", file=sys.stderr)
        for line in exc.logs:
            print(f"    {line}", file=sys.stderr)
        return EXIT_FAILED
    except ExchangeClientError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
