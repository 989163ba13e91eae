# -*- encoding: utf-8 -*-
"""
AA Onboard
aa_onboard.cli module

Command-line interface for the onboarding service.

Commands:
  aa-onboard start          - Start the registry HTTP service
  aa-onboard info           - Show configuration
  aa-onboard derive         - Generate an owner key and derive its account
  aa-onboard login          - Sign in with an ID token and register the account
  aa-onboard await-receipt  - Wait for a UserOperation to be executed
"""

import argparse
import json
import logging
import sys

from aa_onboard.accounts import generate_owner
from aa_onboard.client import RegistryClient, RegistryClientError
from aa_onboard.receipts import Found, InvalidArgument
from aa_onboard.service import build_chain_components, load_config, run_service
from aa_onboard.session import (
    InvalidToken,
    LoggedIn,
    SessionStore,
    make_sync_handler,
    make_token_decoder,
)


def cmd_start(args):
    """Start the registry service."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    run_service()


def cmd_info(args):
    """Show the service configuration."""
    config = load_config()

    print(f"RPC URL:           {config['ETH_RPC_URL']}")
    print(f"EntryPoint:        {config['ENTRY_POINT_ADDRESS']}")
    print(f"Account factory:   {config['SIMPLE_ACCOUNT_FACTORY']}")
    print(f"Account salt:      {config['ACCOUNT_SALT']}")
    print(f"HTTP port:         {config['PORT']}")
    print(f"Accounts store:    {config['ACCOUNTS_DB'] or '(memory)'}")
    print(f"Receipt timeout:   {config['RECEIPT_TIMEOUT_MS']}ms")
    print(f"Poll interval:     {config['RECEIPT_POLL_INTERVAL_MS']}ms")


def cmd_derive(args):
    """Generate an owner key, derive its account, optionally register it."""
    config = load_config()
    resolver = build_chain_components(config, w3=args.w3)["resolver"]

    owner = generate_owner()
    address = resolver.get_counterfactual_address(owner.address)

    print(f"Owner address:     {owner.address}")
    print(f"Account address:   {address}")
    if args.show_key:
        print(f"Owner key:         {owner.key.hex()}")

    if args.email:
        client = RegistryClient(args.registry_url or config["REGISTRY_URL"])
        try:
            record = client.return_account(args.email, address)
        except RegistryClientError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(record, indent=2))


def cmd_login(args):
    """Decode an ID token, then register the user's account like a sign-in."""
    config = load_config()
    resolver = build_chain_components(config, w3=args.w3)["resolver"]
    decode = make_token_decoder(config["GOOGLE_CLIENT_ID"])

    try:
        user = decode(args.id_token)
    except InvalidToken as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    client = RegistryClient(args.registry_url or config["REGISTRY_URL"])
    store = SessionStore(on_login=make_sync_handler(resolver, client))
    state = store.dispatch(LoggedIn(user))
    if state.error:
        print(f"Error: {state.error}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(state.account, indent=2))


def cmd_await_receipt(args):
    """Poll for the UserOperationEvent of a UserOperation hash."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    config = load_config()
    poller = build_chain_components(config, w3=args.w3)["poller"]

    timeout_ms = args.timeout_ms
    if timeout_ms is None:
        timeout_ms = config["RECEIPT_TIMEOUT_MS"]
    interval_ms = args.interval_ms
    if interval_ms is None:
        interval_ms = config["RECEIPT_POLL_INTERVAL_MS"]
    try:
        outcome = poller.await_receipt(args.user_op_hash, timeout_ms, interval_ms)
    except InvalidArgument as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)

    if isinstance(outcome, Found):
        event = outcome.event
        print(f"Transaction:       {outcome.transaction_hash}")
        print(f"Block:             {event.block_number}")
        print(f"Sender:            {event.sender}")
        print(f"Success:           {event.success}")
        print(f"Gas cost:          {event.actual_gas_cost}")
        print(f"Gas used:          {event.actual_gas_used}")
    else:
        print(f"Timed out after {outcome.attempts} attempts")
        sys.exit(1)


def main(argv=None, w3=None):
    """Entry point for the aa-onboard CLI.

    ``w3`` replaces the Web3 connection built from ETH_RPC_URL.
    """
    parser = argparse.ArgumentParser(
        prog="aa-onboard",
        description="ERC-4337 account onboarding service",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # aa-onboard start
    start_parser = subparsers.add_parser(
        "start", help="Start the registry HTTP service"
    )
    start_parser.set_defaults(func=cmd_start)

    # aa-onboard info
    info_parser = subparsers.add_parser("info", help="Show configuration")
    info_parser.set_defaults(func=cmd_info)

    # aa-onboard derive
    derive_parser = subparsers.add_parser(
        "derive", help="Generate an owner key and derive its account address"
    )
    derive_parser.add_argument(
        "--email", help="Register the derived address for this email"
    )
    derive_parser.add_argument(
        "--registry-url", help="Registry base URL (default: REGISTRY_URL)"
    )
    derive_parser.add_argument(
        "--show-key", action="store_true", help="Print the owner private key"
    )
    derive_parser.set_defaults(func=cmd_derive)

    # aa-onboard login
    login_parser = subparsers.add_parser(
        "login", help="Sign in with an ID token and register the account"
    )
    login_parser.add_argument("id_token", help="Encoded ID token (JWT)")
    login_parser.add_argument(
        "--registry-url", help="Registry base URL (default: REGISTRY_URL)"
    )
    login_parser.set_defaults(func=cmd_login)

    # aa-onboard await-receipt
    receipt_parser = subparsers.add_parser(
        "await-receipt", help="Wait for a UserOperation to be executed"
    )
    receipt_parser.add_argument("user_op_hash", help="UserOperation hash (0x...)")
    receipt_parser.add_argument("--timeout-ms", type=int, help="Total wait budget")
    receipt_parser.add_argument("--interval-ms", type=int, help="Delay between polls")
    receipt_parser.set_defaults(func=cmd_await_receipt)

    args = parser.parse_args(argv)
    args.w3 = w3
    args.func(args)


if __name__ == "__main__":
    main()
