from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from rental_desk.models.rental_models import Profile, Warehouse
from rental_desk.services.access_policy import normalize_role, rights_for, scope_profiles

MIN_PASSWORD_LENGTH = 6


def _password_hash(password: str, salt: str) -> str:
    raw = hashlib.pbkdf2_hmac(
        "sha256",
        (password or "").encode("utf-8"),
        salt.encode("utf-8"),
        120000,
    )
    return raw.hex()


def _normalize_email(raw_email: str | None) -> str:
    return (raw_email or "").strip().lower()


def set_password(profile: Profile, password: str) -> None:
    trimmed = str(password or "").strip()
    if len(trimmed) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    salt = secrets.token_hex(16)
    profile.password_salt = salt
    profile.password_hash = _password_hash(trimmed, salt)


def verify_password(profile: Profile | None, password: str) -> bool:
    if not profile or not profile.password_hash or not profile.password_salt:
        return False
    candidate = _password_hash(str(password or "").strip(), profile.password_salt)
    return hmac.compare_digest(candidate, profile.password_hash)


def get_profile(db: Session, profile_id: str | None) -> Profile | None:
    if not profile_id:
        return None
    return db.get(Profile, profile_id)


def get_profile_by_email(db: Session, email: str | None) -> Profile | None:
    normalized = _normalize_email(email)
    if not normalized:
        return None
    return db.execute(
        select(Profile).where(func.lower(Profile.email) == normalized)
    ).scalars().first()


def _resolve_warehouse_id(db: Session, raw_warehouse_id: str | None) -> str | None:
    value = (raw_warehouse_id or "").strip()
    if not value or value == "none":
        return None
    if not db.get(Warehouse, value):
        raise ValueError(f"Warehouse {value} not found.")
    return value


def create_profile(
    db: Session,
    *,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    warehouse_id: str | None = None,
    role: str | None = None,
) -> Profile:
    normalized_email = _normalize_email(email)
    if "@" not in normalized_email:
        raise ValueError("A valid email is required.")
    if get_profile_by_email(db, normalized_email):
        raise ValueError(f"A user with email {normalized_email} already exists.")

    profile = Profile(
        email=normalized_email,
        first_name=(first_name or "").strip() or None,
        last_name=(last_name or "").strip() or None,
        role=normalize_role(role),
        warehouse_id=_resolve_warehouse_id(db, warehouse_id),
        is_active=True,
        created_at=datetime.now(),
        updated_at=datetime.now(),
    )
    set_password(profile, password)
    db.add(profile)
    return profile


def update_role(db: Session, profile: Profile, role: str) -> Profile:
    profile.role = normalize_role(role)
    profile.updated_at = datetime.now()
    return profile


def list_profiles(db: Session, session: dict[str, Any]) -> list[Profile]:
    stmt = (
        select(Profile)
        .options(selectinload(Profile.warehouse))
        .order_by(Profile.last_name, Profile.first_name, Profile.email)
    )
    return db.execute(scope_profiles(stmt, session)).scalars().all()


def display_name(profile: Profile) -> str:
    full_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()
    return full_name or profile.email


def serialize_profile(profile: Profile) -> dict:
    role = normalize_role(profile.role)
    return {
        "id": profile.id,
        "email": profile.email,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
        "displayName": display_name(profile),
        "role": role,
        "rights": rights_for(role),
        "warehouseID": profile.warehouse_id,
        "warehouseName": profile.warehouse.name if profile.warehouse else None,
        "isActive": bool(profile.is_active),
    }


def build_session_payload(profile: Profile) -> dict[str, Any]:
    role = normalize_role(profile.role)
    return {
        "userID": profile.id,
        "email": profile.email,
        "displayName": display_name(profile),
        "role": role,
        "rights": rights_for(role),
        "warehouseID": profile.warehouse_id,
    }
