#!/usr/bin/env python3
"""Rewrite malformed asset numbers into CLIENT-TYPE-NNNN form."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.inventory_models import Asset
from services.asset_number_service import AssetNumberError, is_valid_asset_number, repair_asset_number


def main() -> int:
    parser = argparse.ArgumentParser(description="Repair malformed asset numbers")
    parser.add_argument("--db-url", default=os.environ.get("INVENTORY_DB_URL", ""))
    parser.add_argument("--dry-run", action="store_true", help="Print the planned changes without saving")
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("INVENTORY_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    engine = create_engine(db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    fixed = 0
    failed = 0
    with session_factory() as db:
        assets = db.execute(
            select(Asset).where(Asset.AssetNumber.is_not(None)).where(Asset.AssetNumber != "").order_by(Asset.AssetID)
        ).scalars().all()
        broken = [asset for asset in assets if not is_valid_asset_number(asset.AssetNumber)]
        print(f"Found {len(broken)} malformed asset numbers out of {len(assets)}.")

        for asset in broken:
            old_number = asset.AssetNumber
            try:
                new_number = repair_asset_number(db, asset)
            except AssetNumberError as exc:
                failed += 1
                print(f"[FAIL] asset_id={asset.AssetID} {old_number} :: {exc}")
                continue
            print(f"[{'PLAN' if args.dry_run else 'FIX'}] asset_id={asset.AssetID} {old_number} -> {new_number}")
            if args.dry_run:
                continue
            asset.AssetNumber = new_number
            asset.UpdatedAt = datetime.now()
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                failed += 1
                print(f"[FAIL] asset_id={asset.AssetID} {old_number} :: {exc.orig}")
                continue
            fixed += 1

    print(f"Done. fixed={fixed} failed={failed} dry_run={args.dry_run}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
