"""
Database import script for the diagnostics knowledge base.

This script creates the knowledge-base tables and imports one CSV file per
collection (``<table>.csv``, header row = column names) from CSV_DIR.

Database connection can be configured using environment variables:
- DATABASE_URL: Full connection string (if provided, other DB_* variables are ignored)
- DB_USER: Database username (default: postgres)
- DB_PASSWORD: Database password
- DB_HOST: Database host (default: db)
- DB_PORT: Database port (default: 5432)
- DB_NAME: Database name (default: diagnostic_kb)
"""
import argparse
import asyncio
import csv
import json
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation

import sqlalchemy as sa
from dotenv import load_dotenv

from diagnostic_kb.services import db_operations
from diagnostic_kb.tables import metadata

load_dotenv()

CSV_DIR = os.getenv("CSV_DIR", "upload")
BATCH_SIZE = 500


def coerce_value(column: sa.Column, value: str):
    """Convert a CSV cell into the Python value for ``column``."""
    if value is None or value == "":
        return None
    column_type = column.type
    if isinstance(column_type, sa.Boolean):
        return value.strip().lower() in ("1", "true", "yes", "t")
    if isinstance(column_type, sa.Integer):
        return int(value)
    if isinstance(column_type, sa.Numeric):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise ValueError(f"Invalid number for {column.name}: {value!r}")
    if isinstance(column_type, sa.DateTime):
        return datetime.fromisoformat(value)
    if isinstance(column_type, (sa.ARRAY, sa.JSON)):
        return json.loads(value)
    return value


def read_csv_rows(table: sa.Table, csv_path: str):
    with open(csv_path, "r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        unknown = set(reader.fieldnames or []) - set(table.c.keys())
        if unknown:
            raise ValueError(f"{csv_path} has columns not in {table.name}: {', '.join(sorted(unknown))}")
        for record in reader:
            yield {name: coerce_value(table.c[name], value) for name, value in record.items()}


async def import_csv_to_table(conn, table: sa.Table, csv_path: str) -> int:
    print(f"Importing {csv_path} into {table.name}...")
    row_count = 0
    batch = []
    for row in read_csv_rows(table, csv_path):
        batch.append(row)
        if len(batch) >= BATCH_SIZE:
            await conn.execute(sa.insert(table), batch)
            row_count += len(batch)
            batch = []
    if batch:
        await conn.execute(sa.insert(table), batch)
        row_count += len(batch)
    print(f"Imported {row_count} rows into {table.name}")
    return row_count


async def truncate_tables(conn) -> None:
    print("Truncating existing tables...")
    # Children first so foreign keys never block the delete
    for table in reversed(metadata.sorted_tables):
        await conn.execute(sa.delete(table))
        print(f"Truncated {table.name}")


async def import_data(conn, csv_dir: str) -> None:
    for table in metadata.sorted_tables:
        csv_path = os.path.join(csv_dir, f"{table.name}.csv")
        if os.path.exists(csv_path):
            await import_csv_to_table(conn, table, csv_path)
        else:
            print(f"Warning: CSV file not found: {csv_path}")


async def main(csv_dir: str, truncate: bool) -> None:
    engine = db_operations.get_engine()
    try:
        await db_operations.create_schema(engine)
        async with engine.begin() as conn:
            if truncate:
                await truncate_tables(conn)
            await import_data(conn, csv_dir)
        print("Database setup completed successfully!")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the knowledge-base schema and import CSV data")
    parser.add_argument("--csv-dir", default=CSV_DIR, help="Directory holding <table>.csv files")
    parser.add_argument("--truncate", action="store_true", help="Delete existing rows before importing")
    args = parser.parse_args()
    asyncio.run(main(args.csv_dir, args.truncate))
