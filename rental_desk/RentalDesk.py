import logging
import os
import threading
import time
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

load_dotenv()

from rental_desk.db.deps import get_db
from rental_desk.models.rental_models import AuditLog, EquipmentItem, Notification
from rental_desk.schemas.equipment import EquipmentUpsert
from rental_desk.schemas.operating_hours import SaveOperatingHoursRequest
from rental_desk.schemas.orders import CreateRecurringOrdersDto, OrderStatusUpdate
from rental_desk.schemas.users import CreateUserDto, LoginRequest, RoleUpdate
from rental_desk.services.access_policy import (
    can_access_warehouse,
    can_list_users,
    can_manage_order,
    can_view_order,
    has_right,
    resolve_warehouse_scope,
)
from rental_desk.services.audit_service import log_audit, serialize_audit
from rental_desk.services.equipment_service import (
    apply_item_fields,
    list_categories,
    list_items,
    serialize_category,
    serialize_item,
)
from rental_desk.services.errors import Forbidden, NotAuthenticated, PersistenceFailure, RentalDeskError
from rental_desk.services.operating_hours_service import (
    GridState,
    apply_slot_diff,
    diff,
    load_time_slots,
    serialize_grid,
)
from rental_desk.services.order_service import (
    OWNER_CANCELLABLE,
    create_recurring_orders,
    list_orders,
    load_order,
    serialize_order,
    transition_order,
)
from rental_desk.services.profile_service import (
    build_session_payload,
    create_profile,
    get_profile,
    get_profile_by_email,
    list_profiles,
    serialize_profile,
    update_role,
    verify_password,
)
from rental_desk.services.session_service import create_session, get_session, remove_session, require_session_secret

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5173,http://localhost:5173",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware,
    secret_key=require_session_secret(),
    session_cookie="rental_desk_session",
    same_site="lax",
    https_only=str(os.environ.get("SESSION_COOKIE_SECURE", "false")).strip().lower() in {"1", "true", "yes", "on"},
)

AUTH_ATTEMPT_WINDOW_SECONDS = int(os.environ.get("AUTH_ATTEMPT_WINDOW_SECONDS") or "300")
AUTH_MAX_ATTEMPTS_PER_IP = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_IP") or "50")
AUTH_MAX_ATTEMPTS_PER_ACCOUNT = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_ACCOUNT") or "8")
AUTH_LOCKOUT_SECONDS = int(os.environ.get("AUTH_LOCKOUT_SECONDS") or "900")
AUTH_LOGGER = logging.getLogger("rental_desk.auth")
EQUIPMENT_LOGGER = logging.getLogger("rental_desk.equipment")
_AUTH_GUARD_LOCK = threading.Lock()
_AUTH_ATTEMPTS_BY_IP: dict[str, list[float]] = {}
_AUTH_ATTEMPTS_BY_ACCOUNT: dict[str, list[float]] = {}
_AUTH_LOCKOUT_UNTIL_BY_ACCOUNT: dict[str, float] = {}


@app.exception_handler(RentalDeskError)
def handle_rental_desk_error(request: Request, exc: RentalDeskError):
    body = {"error": str(exc)}
    if isinstance(exc, PersistenceFailure):
        body["batch"] = exc.batch
    return JSONResponse(status_code=exc.status_code, content=body)


def _get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    return request.client.host if request.client and request.client.host else "unknown"


def _prune_attempts(attempts: list[float], now_ts: float) -> list[float]:
    cutoff = now_ts - max(AUTH_ATTEMPT_WINDOW_SECONDS, 1)
    return [ts for ts in attempts if ts >= cutoff]


def _check_login_guard(client_ip: str, account_key: str) -> int | None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        lockout_until = _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.get(account_key)
        if lockout_until and lockout_until > now_ts:
            return max(1, int(lockout_until - now_ts))
        if lockout_until and lockout_until <= now_ts:
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)

        ip_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_IP.get(client_ip, []), now_ts)
        _AUTH_ATTEMPTS_BY_IP[client_ip] = ip_attempts
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)

        if len(ip_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_IP, 1):
            return max(1, int((ip_attempts[0] + AUTH_ATTEMPT_WINDOW_SECONDS) - now_ts))
    return None


def _record_login_failure(client_ip: str, account_key: str) -> None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        ip_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_IP.get(client_ip, []), now_ts)
        account_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
        ip_attempts.append(now_ts)
        account_attempts.append(now_ts)
        _AUTH_ATTEMPTS_BY_IP[client_ip] = ip_attempts
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = account_attempts
        if len(account_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_ACCOUNT, 1):
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT[account_key] = now_ts + max(AUTH_LOCKOUT_SECONDS, 1)


def _record_login_success(account_key: str) -> None:
    with _AUTH_GUARD_LOCK:
        _AUTH_ATTEMPTS_BY_ACCOUNT.pop(account_key, None)
        _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)


def _invalid_login_error() -> HTTPException:
    return HTTPException(status_code=401, detail="Invalid credentials.")


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_token = get_session(session_token)
    if session_from_token:
        request.session["user"] = dict(session_from_token)
        return dict(session_from_token)
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict):
        return dict(session_from_cookie)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_right_or_403(request: Request, session_token: str | None, right: str) -> dict:
    session = _require_session_or_401(request, session_token)
    if not has_right(session, right):
        raise HTTPException(status_code=403, detail="You do not have permission to perform this action.")
    return session


def _rollback_equipment_write(db: Session, action: str, exc: SQLAlchemyError) -> None:
    db.rollback()
    EQUIPMENT_LOGGER.error("Equipment %s failed error=%s", action, exc)
    raise PersistenceFailure("equipment_items", str(exc)) from exc


def _require_warehouse_scope_or_403(session: dict, requested_warehouse_id: str | None) -> str:
    warehouse_id = resolve_warehouse_scope(session, requested_warehouse_id)
    if not warehouse_id:
        if not requested_warehouse_id and not session.get("warehouseID"):
            raise HTTPException(status_code=400, detail="A warehouse must be assigned to the user to manage operating hours.")
        raise HTTPException(status_code=403, detail="You do not have access to this warehouse.")
    return warehouse_id


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/login")
def auth_login(payload: dict, request: Request, db: Session = Depends(get_db)):
    client_ip = _get_client_ip(request)
    try:
        parsed = LoginRequest.model_validate(payload)
    except ValidationError:
        AUTH_LOGGER.warning("Login rejected ip=%s reason=invalid_payload", client_ip)
        raise HTTPException(status_code=400, detail="Invalid login request.")

    email = str(parsed.email or "").strip().lower()
    if not email:
        AUTH_LOGGER.warning("Login rejected ip=%s reason=missing_identity", client_ip)
        raise HTTPException(status_code=400, detail="Invalid login request.")

    account_key = f"user:{email}"
    retry_after = _check_login_guard(client_ip, account_key)
    if retry_after is not None:
        AUTH_LOGGER.warning("Login throttled ip=%s key=%s retry_after=%s", client_ip, account_key, retry_after)
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    profile = get_profile_by_email(db, email)
    if not profile or not profile.is_active:
        _record_login_failure(client_ip, account_key)
        AUTH_LOGGER.warning("Login failed ip=%s key=%s reason=unknown_user", client_ip, account_key)
        raise _invalid_login_error()
    if not verify_password(profile, str(parsed.password or "")):
        _record_login_failure(client_ip, account_key)
        AUTH_LOGGER.warning("Login failed ip=%s key=%s reason=invalid_password", client_ip, account_key)
        raise _invalid_login_error()

    session_payload = build_session_payload(profile)
    token = create_session(session_payload)
    request.session["user"] = dict(session_payload)
    _record_login_success(account_key)
    AUTH_LOGGER.info("Login success ip=%s key=%s user_id=%s", client_ip, account_key, profile.id)
    return {"sessionToken": token, "user": session_payload}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    request.session.clear()
    remove_session(x_session_token)
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session_or_401(request, x_session_token)
    return {"user": session}


@app.post("/api/orders/recurring")
def create_orders(
    request: Request,
    payload: dict,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    # Every failure on this route answers with an {"error": ...} body.
    session = _get_active_session(request, x_session_token)
    profile = get_profile(db, session.get("userID")) if session else None
    if not profile or not profile.is_active:
        raise NotAuthenticated("Not logged in.")
    if not has_right(session, "placeOrders"):
        raise Forbidden("You do not have permission to place orders.")
    try:
        parsed = CreateRecurringOrdersDto.model_validate(payload)
    except ValidationError as exc:
        return JSONResponse(status_code=400, content={"error": f"Invalid order request: {exc.errors()[0]['msg']}"})

    orders = create_recurring_orders(db, profile, parsed)
    return {"message": "Orders created successfully", "orderIds": [order.id for order in orders]}


@app.get("/api/orders/mine")
def get_my_orders(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    return [serialize_order(order) for order in list_orders(db, session, mine_only=True)]


@app.get("/api/orders")
def get_orders(
    request: Request,
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageOrders")
    return [serialize_order(order) for order in list_orders(db, session, status=status)]


@app.get("/api/orders/{order_id}")
def get_order(
    request: Request,
    order_id: str,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    order = load_order(db, order_id)
    if not order or not can_view_order(session, order):
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_order(order)


@app.post("/api/orders/{order_id}/status")
def update_order_status(
    request: Request,
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageOrders")
    order = load_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if not can_manage_order(session, order):
        raise HTTPException(status_code=403, detail="You do not have access to this order.")
    transition_order(db, order, payload.status, session.get("userID"))
    return serialize_order(order)


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(
    request: Request,
    order_id: str,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    order = load_order(db, order_id)
    if not order or order.user_id != session.get("userID"):
        raise HTTPException(status_code=404, detail="Order not found")
    if order.status not in OWNER_CANCELLABLE:
        raise HTTPException(status_code=400, detail=f"Order in status {order.status} cannot be cancelled.")
    transition_order(db, order, "cancelled", session.get("userID"))
    return serialize_order(order)


@app.get("/api/operating-hours")
def get_operating_hours(
    request: Request,
    warehouse_id: str | None = Query(None, alias="warehouseId"),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageOperatingHours")
    target = _require_warehouse_scope_or_403(session, warehouse_id)
    rows = load_time_slots(db, target)
    grid = GridState.from_persisted(rows)
    return {"warehouseID": target, **serialize_grid(grid, rows)}


@app.put("/api/operating-hours")
def save_operating_hours(
    request: Request,
    payload: SaveOperatingHoursRequest,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageOperatingHours")
    target = _require_warehouse_scope_or_403(session, payload.warehouseID)

    persisted = load_time_slots(db, target)
    grid = GridState.from_persisted(persisted)
    try:
        for cell in payload.cells:
            grid.set_closed(cell.dayOfWeek, cell.slotStart, cell.isClosed)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    counts = apply_slot_diff(db, target, diff(persisted, grid, target), user_id=session.get("userID"))
    refreshed = load_time_slots(db, target)
    return {
        "warehouseID": target,
        "changes": counts,
        **serialize_grid(GridState.from_persisted(refreshed), refreshed),
    }


@app.get("/api/users")
def get_users(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    if not can_list_users(session):
        raise HTTPException(status_code=403, detail="Forbidden")
    return [serialize_profile(profile) for profile in list_profiles(db, session)]


@app.post("/api/users")
def create_user(
    request: Request,
    payload: CreateUserDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageUsers")
    try:
        profile = create_profile(
            db,
            email=payload.email,
            password=payload.password,
            first_name=payload.firstName,
            last_name=payload.lastName,
            warehouse_id=payload.warehouseID,
            role=payload.role,
        )
        db.flush()
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        "profiles",
        profile.id,
        "INSERT",
        user_id=session.get("userID"),
        new_data={"email": profile.email, "role": profile.role, "warehouse_id": profile.warehouse_id},
    )
    db.commit()
    db.refresh(profile)
    return {"message": "User created successfully", "user": serialize_profile(profile)}


@app.put("/api/users/{user_id}/role")
def change_user_role(
    request: Request,
    user_id: str,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageUsers")
    profile = get_profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    previous_role = profile.role
    update_role(db, profile, payload.role)
    log_audit(
        db,
        "profiles",
        profile.id,
        "UPDATE",
        user_id=session.get("userID"),
        old_data={"role": previous_role},
        new_data={"role": profile.role},
    )
    db.commit()
    return serialize_profile(profile)


@app.get("/api/categories")
def get_categories(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return [serialize_category(category) for category in list_categories(db)]


@app.get("/api/equipment")
def get_equipment(
    request: Request,
    category_id: str | None = Query(None, alias="categoryId"),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    return [serialize_item(item) for item in list_items(db, session, category_id)]


@app.post("/api/equipment")
def create_equipment(
    request: Request,
    payload: EquipmentUpsert,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageEquipment")
    values = payload.model_dump(exclude_unset=True)
    if not (values.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="name is required")
    values.setdefault("warehouseID", session.get("warehouseID"))
    if not can_access_warehouse(session, values.get("warehouseID")):
        raise HTTPException(status_code=403, detail="You do not have access to this warehouse.")

    item = EquipmentItem(equipment_status="available", is_rentable=True)
    apply_item_fields(item, values)
    item.created_at = datetime.now()
    item.updated_at = datetime.now()
    try:
        db.add(item)
        db.flush()
        log_audit(db, "equipment_items", item.id, "INSERT", user_id=session.get("userID"), new_data=values)
        db.commit()
    except SQLAlchemyError as exc:
        _rollback_equipment_write(db, "create", exc)
    db.refresh(item)
    return serialize_item(item)


@app.put("/api/equipment/{item_id}")
def update_equipment(
    request: Request,
    item_id: str,
    payload: EquipmentUpsert,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageEquipment")
    item = db.get(EquipmentItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Equipment item not found")
    values = payload.model_dump(exclude_unset=True)
    if not can_access_warehouse(session, item.warehouse_id) or (
        "warehouseID" in values and not can_access_warehouse(session, values["warehouseID"])
    ):
        raise HTTPException(status_code=403, detail="You do not have access to this warehouse.")
    if "name" in values and not (values["name"] or "").strip():
        raise HTTPException(status_code=400, detail="name is required")

    old_data = serialize_item(item)
    apply_item_fields(item, values)
    item.updated_at = datetime.now()
    try:
        log_audit(
            db,
            "equipment_items",
            item.id,
            "UPDATE",
            user_id=session.get("userID"),
            old_data={key: old_data.get(key) for key in values},
            new_data=values,
        )
        db.commit()
    except SQLAlchemyError as exc:
        _rollback_equipment_write(db, "update", exc)
    db.refresh(item)
    return serialize_item(item)


@app.delete("/api/equipment/{item_id}")
def delete_equipment(
    request: Request,
    item_id: str,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_right_or_403(request, x_session_token, "manageEquipment")
    item = db.get(EquipmentItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Equipment item not found")
    if not can_access_warehouse(session, item.warehouse_id):
        raise HTTPException(status_code=403, detail="You do not have access to this warehouse.")
    if item.order_items:
        raise HTTPException(status_code=400, detail="Equipment item is referenced by orders and cannot be deleted.")

    try:
        log_audit(db, "equipment_items", item.id, "DELETE", user_id=session.get("userID"), old_data={"name": item.name})
        db.delete(item)
        db.commit()
    except SQLAlchemyError as exc:
        _rollback_equipment_write(db, "delete", exc)
    return {"message": "Deleted"}


@app.get("/api/notifications")
def get_notifications(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    notifications = db.execute(
        select(Notification)
        .where(Notification.user_id == session.get("userID"))
        .order_by(Notification.created_at.desc())
    ).scalars().all()
    return [
        {
            "id": n.id,
            "title": n.title,
            "message": n.message,
            "link": n.link,
            "isRead": bool(n.is_read),
            "createdAt": n.created_at,
        }
        for n in notifications
    ]


@app.post("/api/notifications/{notification_id}/read")
def mark_notification_read(
    request: Request,
    notification_id: str,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    notification = db.get(Notification, notification_id)
    if not notification or notification.user_id != session.get("userID"):
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_read = True
    db.commit()
    return {"ok": True}


@app.get("/api/audit-log")
def get_audit_log(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_right_or_403(request, x_session_token, "viewAuditLog")
    entries = db.execute(
        select(AuditLog).order_by(AuditLog.logged_at.desc()).limit(limit)
    ).scalars().all()
    return [serialize_audit(entry) for entry in entries]
