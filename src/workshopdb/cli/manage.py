#!/usr/bin/env python3
"""
WorkshopDB Administration Tool

Command-line access to the database lifecycle operations.

Usage:
    workshopdb-admin <command> [options]

Examples:
    # Create the database (or migrate an existing one)
    workshopdb-admin ready

    # Back up into the default backups directory
    workshopdb-admin backup

    # Back up to a chosen file
    workshopdb-admin backup --output ~/Desktop/workshop.db

    # Print the inventory
    workshopdb-admin items

    # Show available backups, newest first
    workshopdb-admin list

    # Restore a backup (a safety backup is taken first)
    workshopdb-admin restore data/backups/workshop-backup-2026-10-19T03-56-12-123456Z.db
"""

import argparse
import logging
import sys
from pathlib import Path

from workshopdb.core.config import load_settings
from workshopdb.core.errors import WorkshopDBError
from workshopdb.io.inventory import read_table
from workshopdb.services.lifecycle import DatabaseLifecycle
from workshopdb.storage.backups import BackupDestination


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workshopdb-admin",
        description="WorkshopDB Administration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ready
  %(prog)s backup --output ~/Desktop/workshop.db
  %(prog)s restore data/backups/<file>.db
  %(prog)s clear --yes

Set WORKSHOPDB_DATA_DIR to operate on a database outside the default location.
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed progress")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("ready", help="Create and migrate the live database")

    backup = sub.add_parser("backup", help="Create a backup")
    backup.add_argument("--output", metavar="PATH", help="File or directory to write the backup to")

    sub.add_parser("list", help="List backups, newest first")

    restore = sub.add_parser("restore", help="Restore the live database from a backup")
    restore.add_argument("path", help="Backup file to restore")

    delete = sub.add_parser("delete", help="Delete a backup file")
    delete.add_argument("path", help="Backup file to delete")

    clear = sub.add_parser("clear", help="Reset the database (a safety backup is taken first)")
    clear.add_argument("--yes", action="store_true", help="Confirm the reset")

    sub.add_parser("items", help="Print the inventory items table")

    importer = sub.add_parser("import-items", help="Import inventory items from CSV/TSV/XLSX/JSON")
    importer.add_argument("path", help="Inventory file")

    return parser


def _report(result) -> int:
    if result["success"]:
        return 0
    print(f"✗ {result['error_type']}: {result['error']}", file=sys.stderr)
    if result["fatal"]:
        print("  The database needs attention before it can be used again; run 'ready'.", file=sys.stderr)
    return 1


def main(argv=None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(message)s")

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "clear" and not args.yes:
        print("Error: clear requires --yes", file=sys.stderr)
        return 1

    lifecycle = DatabaseLifecycle(load_settings())
    try:
        path = lifecycle.ensure_database_ready()
    except WorkshopDBError as e:
        print(f"✗ Database is not usable: {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "ready":
            print(f"✓ Database ready: {path}")
            return 0

        if args.command == "backup":
            if args.output:
                output = Path(args.output).expanduser()
                result = lifecycle.create_backup(
                    BackupDestination.USER_CHOSEN, prompt=lambda suggested: output
                )
            else:
                result = lifecycle.create_backup()
            if result["success"]:
                print(f"✓ Backup written to {result['data']['path']}")
            return _report(result)

        if args.command == "list":
            result = lifecycle.list_backups()
            if result["success"]:
                if not result["data"]:
                    print("No backups found.")
                for entry in result["data"]:
                    print(
                        f"  {entry['created_at']}  {entry['size_bytes']:>10}  "
                        f"{entry['kind']:<11}  {entry['file_name']}"
                    )
            return _report(result)

        if args.command == "restore":
            result = lifecycle.restore_backup(Path(args.path).expanduser())
            if result["success"]:
                print(f"✓ {result['data']['message']}")
                if result["data"]["safety_backup"]:
                    print(f"  Previous database saved to {result['data']['safety_backup']}")
            return _report(result)

        if args.command == "delete":
            result = lifecycle.delete_backup(Path(args.path).expanduser())
            if result["success"]:
                print(f"✓ {result['data']['message']}")
            return _report(result)

        if args.command == "clear":
            result = lifecycle.clear_database()
            if result["success"]:
                print(f"✓ {result['data']['message']}")
                if result["data"]["safety_backup"]:
                    print(f"  Previous database saved to {result['data']['safety_backup']}")
            return _report(result)

        if args.command == "items":
            items = read_table(lifecycle.open_handle().conn, "items")
            if items.empty:
                print("No items found.")
            else:
                columns = ["code", "name", "category", "unitPrice", "isActive"]
                print(items[columns].to_string(index=False))
            return 0

        if args.command == "import-items":
            result = lifecycle.import_inventory(Path(args.path).expanduser())
            if result["success"]:
                data = result["data"]
                print(f"✓ Imported {data['total']} item(s): {data['inserted']} new, {data['updated']} updated")
            return _report(result)
    finally:
        lifecycle.close()

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
