#!/usr/bin/env python3
"""Database overview and integrity checks for the inventory tracker."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
import models.inventory_models  # noqa: F401  registers tables on Base.metadata
from services.asset_number_service import is_valid_asset_number


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    return [
        CheckResult(f"table:{name}", name in present, "present" if name in present else "missing")
        for name in Base.metadata.tables
    ]


def _run_column_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    present = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for name, table in Base.metadata.tables.items():
        if name not in present:
            results.append(CheckResult(f"columns:{name}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(name)}
        missing = [column.name for column in table.columns if column.name not in actual]
        results.append(
            CheckResult(
                f"columns:{name}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def _count_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def _run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    checks: list[CheckResult] = []

    if "Assets" in present:
        checks.append(
            _count_check(
                engine,
                "assets:duplicate_asset_number",
                """
                SELECT COUNT(*)
                FROM (
                    SELECT AssetNumber
                    FROM Assets
                    WHERE AssetNumber IS NOT NULL
                    GROUP BY AssetNumber
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "assets:missing_asset_number",
                "SELECT COUNT(*) FROM Assets WHERE AssetNumber IS NULL OR AssetNumber = ''",
            )
        )
        numbers = [row[0] for row in _rows(engine, "SELECT AssetNumber FROM Assets WHERE AssetNumber <> ''")]
        malformed = sum(1 for number in numbers if number and not is_valid_asset_number(number))
        checks.append(CheckResult("assets:malformed_asset_number", malformed == 0, f"count={malformed}"))

    if "Assets" in present and "AssetTransactions" in present:
        checks.append(
            _count_check(
                engine,
                "assets:checked_out_without_open_transaction",
                """
                SELECT COUNT(*)
                FROM Assets a
                WHERE a.Status = 'CHECKED_OUT'
                  AND NOT EXISTS (
                      SELECT 1 FROM AssetTransactions t
                      WHERE t.AssetID = a.AssetID
                        AND t.Type = 'CHECK_OUT'
                        AND t.Status IN ('ACTIVE', 'OVERDUE')
                  )
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "transactions:multiple_open_checkouts",
                """
                SELECT COUNT(*)
                FROM (
                    SELECT AssetID
                    FROM AssetTransactions
                    WHERE Type = 'CHECK_OUT' AND Status IN ('ACTIVE', 'OVERDUE')
                    GROUP BY AssetID
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )

    if "PresetCheckoutItems" in present:
        checks.append(
            _count_check(
                engine,
                "presetcheckoutitems:asset_claimed_twice",
                """
                SELECT COUNT(*)
                FROM (
                    SELECT PresetCheckoutID, AssetID
                    FROM PresetCheckoutItems
                    WHERE AssetID IS NOT NULL
                    GROUP BY PresetCheckoutID, AssetID
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )

    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    for name in Base.metadata.tables:
        if name not in present:
            print(f"{name}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {name}")
        print(f"{name}: {int(count or 0)}")


def _print_samples(engine: Engine, sample_size: int) -> None:
    _print_section("Sample Values")
    sample_size = max(1, sample_size)
    present = set(inspect(engine).get_table_names())

    if "Assets" in present:
        rows = _rows(
            engine,
            """
            SELECT AssetID, AssetNumber, Name, Category, Status
            FROM Assets
            ORDER BY AssetID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("Assets (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")

    if "AuditLogs" in present:
        rows = _rows(
            engine,
            """
            SELECT AuditID, EntityType, Action, UserID, CreatedAt
            FROM AuditLogs
            ORDER BY AuditID DESC
            LIMIT :n
            """,
            {"n": sample_size},
        )
        print("AuditLogs (recent):")
        for row in rows:
            print(f"  - {tuple(row)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Inventory tracker DB overview")
    parser.add_argument("--db-url", default=os.environ.get("INVENTORY_DB_URL", ""))
    parser.add_argument("--samples", type=int, default=5)
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create any missing tables before running the checks.",
    )
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("INVENTORY_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except SQLAlchemyError as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    if args.create_tables:
        Base.metadata.create_all(engine)
        print("Created missing tables.")

    _print_results("Table Existence", _run_existence_checks(engine))
    _print_results("Column Checks", _run_column_checks(engine))
    _print_results("Integrity Checks", _run_integrity_checks(engine))
    _print_row_counts(engine)
    _print_samples(engine, args.samples)
    return 0


if __name__ == "__main__":
    sys.exit(main())
