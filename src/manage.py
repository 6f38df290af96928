"""Storefront management CLI.

Usage:
    python src/manage.py setup-db              # Create all tables
    python src/manage.py drop-db               # Drop all tables
    python src/manage.py expire-reservations   # Release lapsed stock holds
"""

import argparse
import sys


def _domain():
    from storefront.domain import storefront

    storefront.init()
    return storefront


def setup_database():
    from storefront.utils.db import setup_db

    domain = _domain()
    print("Creating storefront database schema...")
    count = setup_db(domain)
    print(f"  schema ready ({count} SQL provider(s)).")


def drop_database():
    from storefront.utils.db import drop_db

    domain = _domain()
    print("Dropping storefront database schema...")
    count = drop_db(domain)
    print(f"  schema dropped ({count} SQL provider(s)).")


def expire_reservations():
    from storefront.inventory.ledger import ledger
    from storefront.utils.logging import configure_logging

    configure_logging()
    domain = _domain()
    with domain.domain_context():
        released = ledger.sweep_expired()
    print(f"Released {released} expired reservation(s).")


def main():
    parser = argparse.ArgumentParser(description="Storefront management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("expire-reservations", help="Release reservations past their expiry")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "expire-reservations":
        expire_reservations()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
