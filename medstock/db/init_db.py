# medstock/db/init_db.py
from __future__ import annotations

import argparse
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.db.session import engine
from medstock.core.rbac import ClinicPerm
from medstock.db.base import Base

# Import all models so metadata is complete
from medstock.models import (  # noqa: F401
    DocNumberSeries, Medicine, Permission, ReceivingDocument, ReceivingLine,
    Role, StockLot, StockMovement, Supplier, User)
from medstock.utils.jwt import create_access_token

MODULES = [
    # -------- Catalog ----------
    ("clinic.catalog", ["manage"]),

    # -------- Receiving ----------
    ("clinic.receiving", ["view", "manage", "verify", "post"]),

    # -------- Stock ledger ----------
    ("clinic.stock", ["view", "reserve", "adjust"]),
]

# role name -> permission codes
DEFAULT_ROLES = {
    "Clinic Pharmacist": [p.value for p in ClinicPerm],
    "Clinic Store Keeper": [
        ClinicPerm.RECEIVING_VIEW.value,
        ClinicPerm.RECEIVING_MANAGE.value,
        ClinicPerm.STOCK_VIEW.value,
    ],
    "Clinic Nurse": [
        ClinicPerm.STOCK_VIEW.value,
        ClinicPerm.STOCK_RESERVE.value,
    ],
}


def print_tables(conn):
    names = sorted(inspect(conn).get_table_names())
    print("Existing tables:", names)
    return set(names)


def seed_permissions(db: Session) -> None:
    """
    Seed ONLY missing permission codes; safe to run multiple times.
    """
    seen = set()
    for module, actions in MODULES:
        for action in actions:
            code = f"{module}.{action}"
            if code in seen:
                continue
            seen.add(code)
            exists = db.query(Permission).filter(Permission.code == code).first()
            if not exists:
                label = f"{module.replace('.', ' ').title()} - {action.title()}"
                db.add(Permission(code=code, label=label, module=module))
    db.flush()


def seed_roles(db: Session) -> None:
    """Create the default clinic roles and attach any missing permissions."""
    perms = {p.code: p for p in db.query(Permission).all()}
    for name, codes in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == name).first()
        if not role:
            role = Role(name=name, description=f"Default {name.lower()} role")
            db.add(role)
        have = {p.code for p in role.permissions}
        for code in codes:
            if code not in have and code in perms:
                role.permissions.append(perms[code])
    db.flush()


def ensure_admin(db: Session, email: str, name: Optional[str] = None) -> User:
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(name=name or email.split("@")[0], email=email, is_active=True, is_admin=True)
        db.add(user)
        db.flush()
    return user


def run(fresh: bool = False, admin_email: Optional[str] = None) -> None:
    if fresh:
        print("WARNING: Dropping ALL tables (dev only) ...")
        Base.metadata.drop_all(bind=engine)

    print("Creating all missing tables ...")
    Base.metadata.create_all(bind=engine)

    with engine.connect() as conn:
        print_tables(conn)

    try:
        with Session(engine) as db:
            seed_permissions(db)
            seed_roles(db)
            token = None
            if admin_email:
                admin = ensure_admin(db, admin_email)
                token = create_access_token(admin.id)
            db.commit()
            print("Permissions and roles seeded (missing codes inserted).")
            if token:
                print(f"Admin {admin_email} access token:\n{token}")
    except SQLAlchemyError as e:
        print("Seeding failed:", e)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed permissions and roles).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    parser.add_argument(
        "--admin-email",
        default=None,
        help="Create (if missing) an admin user and print an access token.",
    )
    args = parser.parse_args()
    run(fresh=args.fresh, admin_email=args.admin_email)
