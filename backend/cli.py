#!/usr/bin/env python3
"""Command-line interface.

Usage:
    clerk init                      Store Plaid API credentials in the keychain
    clerk link add ITEM TOKEN       Register a linked Plaid Item
    clerk sync                      Pull new transactions for every link
    clerk print [--begin D] [--until D]
                                    Print synced transactions as Ledger records
    clerk status                    List links and their current state
    clerk accounts [balance]        List tracked accounts, or their live balances
    clerk delete ITEM               Revoke and remove a link
"""

import argparse
import logging
import sys
from datetime import date

from database import get_session_local, init_db
from integrations.exceptions import ProviderError
from logging_config import setup_logging
from services.errors import RuleError, RuleEvaluationError, StoreError, StoreErrorKind
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def _store() -> LedgerStore:
    init_db()
    return LedgerStore(get_session_local())


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def cmd_init(args: argparse.Namespace) -> int:
    """Prompt for Plaid credentials and store them in the system keychain."""
    from services.credential_manager import store_plaid_credentials

    print("Plaid API Setup")
    print("=" * 50)
    client_id = input("Enter your Plaid client_id: ").strip()
    if not client_id:
        print("Error: No client_id provided")
        return 1
    secret = input("Enter your Plaid secret: ").strip()
    if not secret:
        print("Error: No secret provided")
        return 1

    failed = store_plaid_credentials(client_id, secret)
    if failed:
        print(f"  Failed to store {', '.join(failed)}")
        return 1
    print("  Stored PLAID_CLIENT_ID and PLAID_SECRET in keychain")
    return 0


def cmd_link_add(args: argparse.Namespace) -> int:
    from services.link_service import LinkService

    link = LinkService(_store()).add_link(
        args.item_id,
        args.access_token,
        alias=args.alias or "",
        institution_id=args.institution,
    )
    print(f"Linked {link.item_id} ({link.alias or 'no alias'})")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    from services.sync_service import SyncService

    report = SyncService(_store()).sync_all()
    for tally in report.tallies:
        line = (
            f"{tally.item_id}: {tally.status.value} "
            f"added={tally.added} modified={tally.modified} "
            f"removed={tally.removed} skipped={tally.skipped}"
        )
        if tally.error:
            line += f" ({tally.error})"
        print(line)
    return 0 if report.ok else 1


def cmd_print(args: argparse.Namespace) -> int:
    from services.ledger_service import LedgerService
    from services.rule_service import RuleTransformer

    service = LedgerService(_store(), RuleTransformer.from_settings())
    output = service.render(args.begin, args.until)
    if output:
        sys.stdout.write(output)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    from services.link_service import LinkService

    rows = LinkService(_store()).check_status()
    if not rows:
        print("No links. Add one with `link add`.")
        return 0

    print(f"{'Alias':<20} {'Item ID':<40} {'Institution':<30} Status")
    for row in rows:
        status = row.status.value
        if row.reason:
            status += f" ({row.reason})"
        print(f"{row.alias:<20} {row.item_id:<40} {row.institution_name or '-':<30} {status}")
    return 0


def cmd_accounts(args: argparse.Namespace) -> int:
    from services.account_service import AccountService

    service = AccountService(_store())
    if args.accounts_command == "balance":
        return _print_balances(service)

    rows = service.tracked_accounts()
    if not rows:
        print("No accounts. Add a link with `link add`, then run `status` or `sync`.")
        return 0
    print(f"{'Alias':<20} {'Institution':<24} {'Account':<28} {'Mask':<6} {'Type':<14} Ledger account")
    for row in rows:
        print(
            f"{row.alias:<20} {row.institution_name or '-':<24} {row.name:<28} "
            f"{row.mask or '-':<6} {row.type.value:<14} {row.ledger_name}"
        )
    return 0


def _print_balances(service) -> int:
    report = service.balances()
    for title, rows in (("Assets", report.assets), ("Liabilities", report.liabilities)):
        print(title)
        print(f"  {'Name':<28} {'Available':>18} {'Current':>18}")
        for row in rows:
            available = str(row.available) if row.available is not None else "-"
            current = str(row.current) if row.current is not None else "-"
            print(f"  {row.name:<28} {available:>18} {current:>18}")
        print()
    for item_id, error in report.errors.items():
        print(f"Could not fetch balances for {item_id}: {error}")
    return 1 if report.errors else 0


def cmd_delete(args: argparse.Namespace) -> int:
    from services.link_service import LinkService

    LinkService(_store()).delete_link(args.item_id)
    print(f"Removed link {args.item_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clerk",
        description="Sync Plaid transactions into a local double-entry ledger.",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log at DEBUG level"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Store Plaid API credentials in the keychain")
    init.set_defaults(func=cmd_init)

    link = subparsers.add_parser("link", help="Manage links")
    link_sub = link.add_subparsers(dest="link_command", required=True)
    link_add = link_sub.add_parser("add", help="Register an authorized Plaid Item")
    link_add.add_argument("item_id")
    link_add.add_argument("access_token")
    link_add.add_argument("--alias", help="Short name shown by `status`")
    link_add.add_argument("--institution", help="Upstream institution id")
    link_add.set_defaults(func=cmd_link_add)

    sync = subparsers.add_parser("sync", help="Pull new transactions for every link")
    sync.set_defaults(func=cmd_sync)

    print_cmd = subparsers.add_parser("print", help="Print transactions as Ledger records")
    print_cmd.add_argument("--begin", type=_parse_date, help="First date (YYYY-MM-DD)")
    print_cmd.add_argument("--until", type=_parse_date, help="Last date (YYYY-MM-DD)")
    print_cmd.set_defaults(func=cmd_print)

    status = subparsers.add_parser("status", help="List links and their current state")
    status.set_defaults(func=cmd_status)

    accounts = subparsers.add_parser("accounts", help="List tracked accounts")
    accounts_sub = accounts.add_subparsers(dest="accounts_command")
    accounts_sub.add_parser(
        "balance", help="Fetch current balances from Plaid (slow, contacts each bank)"
    )
    accounts.set_defaults(func=cmd_accounts)

    delete = subparsers.add_parser("delete", help="Revoke and remove a link")
    delete.add_argument("item_id")
    delete.set_defaults(func=cmd_delete)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)

    try:
        return args.func(args)
    except StoreError as e:
        if e.kind is StoreErrorKind.NOT_FOUND:
            print(f"Error: {e}")
            return 1
        logger.error("Database error: %s", e)
        return 1
    except (RuleError, RuleEvaluationError) as e:
        print(f"Rule error: {e}")
        return 1
    except ProviderError as e:
        print(f"Upstream error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
