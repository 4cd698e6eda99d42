#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
from datetime import datetime

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from rental_desk.db.base import Base
from rental_desk.models.rental_models import Warehouse
from rental_desk.services.access_policy import RIGHTS_BY_ROLE
from rental_desk.services.profile_service import (
    MIN_PASSWORD_LENGTH,
    create_profile,
    get_profile_by_email,
    set_password,
    update_role,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create/update one profile directly from terminal.",
    )
    parser.add_argument("--email", required=True, help="Login email of the profile")
    parser.add_argument("--role", choices=sorted(RIGHTS_BY_ROLE), default="manager", help="Profile role")
    parser.add_argument(
        "--password",
        default=None,
        help="Password to set. Required when the profile does not exist yet.",
    )
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument(
        "--warehouse-name",
        default=None,
        help="Assign the profile to this warehouse, creating it when missing.",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_DESK_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_DESK_DB_URL env var.",
    )
    return parser


def _ensure_warehouse(db, name: str) -> Warehouse:
    warehouse = db.execute(select(Warehouse).where(Warehouse.name == name)).scalars().first()
    if warehouse:
        return warehouse
    warehouse = Warehouse(name=name, created_at=datetime.now())
    db.add(warehouse)
    db.flush()
    return warehouse


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.db_url:
        parser.error("Missing DB URL. Set RENTAL_DESK_DB_URL or pass --db-url.")
    if args.password is not None and len(args.password.strip()) < MIN_PASSWORD_LENGTH:
        parser.error(f"--password must be at least {MIN_PASSWORD_LENGTH} characters.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    with session_factory() as db:
        warehouse_id = _ensure_warehouse(db, args.warehouse_name.strip()).id if args.warehouse_name else None
        profile = get_profile_by_email(db, args.email)
        created = profile is None
        if created:
            if args.password is None:
                parser.error("--password is required when creating a new profile.")
            try:
                profile = create_profile(
                    db,
                    email=args.email,
                    password=args.password,
                    first_name=args.first_name,
                    last_name=args.last_name,
                    warehouse_id=warehouse_id,
                    role=args.role,
                )
            except ValueError as exc:
                parser.error(str(exc))
        else:
            update_role(db, profile, args.role)
            if args.password is not None:
                set_password(profile, args.password)
            if args.first_name is not None:
                profile.first_name = args.first_name.strip() or None
            if args.last_name is not None:
                profile.last_name = args.last_name.strip() or None
            if warehouse_id:
                profile.warehouse_id = warehouse_id
        db.commit()

        print(
            f"OK email={profile.email} role={profile.role} created={created} "
            f"warehouse_id={profile.warehouse_id} id={profile.id}"
        )
    engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
