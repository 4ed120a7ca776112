# branch_inventory/db/init_db.py
from __future__ import annotations

import argparse

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from branch_inventory.db.session import engine as default_engine
from branch_inventory.db.base import Base


def print_tables(bind: Engine):
    names = sorted(inspect(bind).get_table_names())
    print("Existing tables:", names)
    return set(names)


def run(fresh: bool = False, bind: Engine | None = None) -> set:
    bind = bind or default_engine
    if fresh:
        print("WARNING: Dropping ALL inventory tables (dev only) …")
        Base.metadata.drop_all(bind=bind)

    print("Creating all missing tables …")
    Base.metadata.create_all(bind=bind)

    return print_tables(bind)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize the inventory database (create missing tables).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
