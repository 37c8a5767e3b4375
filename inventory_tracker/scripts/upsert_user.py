#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.inventory_models import USER_ROLES
from services.user_service import MIN_PASSWORD_LENGTH, create_user, get_user_by_email, update_user


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one Users record directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Login email of the user")
    parser.add_argument("--name", default=None, help="Display name; required when creating")
    parser.add_argument("--role", choices=list(USER_ROLES), default=None, help="Role; defaults to USER on create")
    parser.add_argument(
        "--password",
        default=None,
        help="Password to set. Omit to keep the existing password.",
    )
    parser.add_argument("--deactivate", action="store_true", help="Mark the user inactive")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("INVENTORY_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to INVENTORY_DB_URL env var.",
    )
    return parser


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set INVENTORY_DB_URL or pass --db-url.")
    if args.password is not None and len(args.password.strip()) < MIN_PASSWORD_LENGTH:
        parser.error(f"--password must be at least {MIN_PASSWORD_LENGTH} characters.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with session_factory() as db:
        existing = get_user_by_email(db, args.email)
        try:
            if existing:
                user = update_user(
                    db,
                    existing.UserID,
                    name=args.name,
                    role=args.role,
                    password=args.password,
                    is_active=False if args.deactivate else None,
                )
                action = "updated"
            else:
                if not args.name or args.password is None:
                    parser.error("--name and --password are required to create a user.")
                user = create_user(
                    db,
                    email=args.email,
                    name=args.name,
                    password=args.password,
                    role=args.role,
                    is_active=not args.deactivate,
                )
                action = "created"
        except ValueError as exc:
            print(f"FAILED {exc}")
            return 1

        print(
            f"OK {action} user_id={user.UserID} email={user.Email} role={user.Role} "
            f"active={bool(user.IsActive)} has_password={bool(user.PasswordHash)}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
