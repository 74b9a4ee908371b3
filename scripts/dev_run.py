#!/usr/bin/env python3
"""Convenience launcher for local WorkshopDB development workflows."""

from __future__ import annotations

import argparse
import os

from workshopdb.app.launcher import main as launch


def main() -> int:
    parser = argparse.ArgumentParser(description="Prepare the workshop database locally.")
    parser.add_argument(
        "--data-dir",
        "-d",
        type=str,
        help="Directory holding workshop.db (defaults to <project root>/data).",
    )
    parser.add_argument(
        "--installed",
        action="store_true",
        help="Behave like an installed build (per-user data directory, bundled seed).",
    )
    parser.add_argument(
        "--seed",
        metavar="PATH",
        help="Seed database copied on first run.",
    )
    args = parser.parse_args()

    if args.data_dir:
        os.environ["WORKSHOPDB_DATA_DIR"] = args.data_dir
    if args.installed:
        os.environ["WORKSHOPDB_MODE"] = "installed"
    if args.seed:
        os.environ["WORKSHOPDB_SEED_PATH"] = args.seed

    return launch()


if __name__ == "__main__":
    raise SystemExit(main())
