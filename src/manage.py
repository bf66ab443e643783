"""Commerce database management CLI.

Provides commands to create and drop the commerce database schema, and to
run the recurring maintenance jobs once (useful from cron).

Usage:
    python src/manage.py setup-db      # Create all tables
    python src/manage.py drop-db       # Drop all tables
    python src/manage.py maintenance   # Run due jobs and reconciliation once
"""

import argparse
import json
import sys


def _domain():
    from commerce.domain import commerce

    commerce.init()
    return commerce


def setup_database():
    from commerce.utils.db import setup_db

    print("Initializing commerce domain...")
    domain = _domain()
    print("Creating commerce database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    from commerce.utils.db import drop_db

    print("Initializing commerce domain...")
    domain = _domain()
    print("Dropping commerce database schema...")
    drop_db(domain)
    print("Done.")


def maintenance():
    from server import run_maintenance

    results = run_maintenance(_domain())
    print(json.dumps(results, indent=2, default=str))


def main():
    parser = argparse.ArgumentParser(description="Commerce database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("maintenance", help="Run recurring jobs once")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "maintenance":
        maintenance()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
