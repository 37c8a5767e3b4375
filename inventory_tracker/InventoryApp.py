import os
import logging
import threading
import time
from datetime import date, datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from dotenv import load_dotenv
from starlette.middleware.sessions import SessionMiddleware

load_dotenv()

from db.deps import get_inventory_db
from models.inventory_models import AuditLog, Client
from schemas.assets import AssetBulkRequest, AssetImportRequest, AssetUpsert
from schemas.maintenance import MaintenanceCreate, MaintenanceUpdate
from schemas.presets import (
    PresetCompleteRequest,
    PresetDetectRequest,
    PresetUpsert,
    SubstitutionRequest,
)
from schemas.reference import (
    CategoryUpsert,
    ClientUpsert,
    DepartmentUpsert,
    LocationUpsert,
    NamedEntityUpsert,
    UserUpsert,
)
from schemas.transactions import BulkTransactionRequest, TransactionRequest, TransferRequest
from services.asset_number_service import (
    AssetNumberConflictError,
    AssetNumberError,
    AssetNumberExhaustedError,
    allocate_asset_number,
    assign_missing_asset_numbers,
    count_missing_asset_numbers,
)
from services.asset_service import (
    bulk_change_status,
    bulk_delete_assets,
    create_asset,
    delete_asset,
    export_assets_csv,
    get_asset,
    import_assets,
    list_assets,
    parse_import_csv,
    search_assets,
    serialize_asset,
    update_asset,
)
from services.maintenance_service import (
    create_maintenance,
    delete_maintenance,
    get_maintenance,
    list_maintenance,
    maintenance_report,
    serialize_maintenance,
    update_maintenance,
)
from services.preset_checkout_service import (
    CheckoutAbortedError,
    PresetCheckoutNotFoundError,
    PresetNotFoundError,
    detect_presets,
    list_substitution_options,
    load_checkout,
    load_preset,
    process_preset_checkout,
    reconcile_preset_checkout,
    return_preset_checkout,
    serialize_checkout,
    validate_substitutions,
)
from services.preset_service import (
    can_delete_preset,
    can_edit_preset,
    create_preset,
    delete_preset,
    list_presets,
    serialize_preset,
    update_preset,
)
from services.reference_service import (
    create_category,
    create_reference,
    delete_category,
    delete_reference,
    get_reference,
    list_categories,
    list_references,
    serialize_category,
    serialize_reference,
    update_category,
    update_reference,
)
from services.report_service import analytics_report, client_report, dashboard_stats, transaction_report
from services.transaction_service import (
    AssetNotFoundError,
    TransactionError,
    check_in_asset,
    check_out_asset,
    list_transactions,
    list_user_checkouts,
    mark_overdue_transactions,
    run_bulk_transactions,
    serialize_transaction,
    transfer_checkouts,
)
from services.user_access_service import create_session, get_session, remove_session
from services.user_service import (
    MANAGE_ROLES,
    WRITE_ROLES,
    create_user,
    delete_user,
    ensure_local_admin_user,
    list_users,
    serialize_user,
    update_user,
    verify_password,
)

app = FastAPI(title="Inventory Tracker")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
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
    secret_key=(os.environ.get("SESSION_SIGNING_SECRET") or "").strip(),
    session_cookie="inventory_tracker_session",
    same_site="lax",
    https_only=False,
)

LOCAL_ADMIN_USERNAME = "admin"
LOCAL_ADMIN_PASSWORD = (os.environ.get("LOCAL_ADMIN_PASSWORD") or "").strip()
AUTH_ATTEMPT_WINDOW_SECONDS = int(os.environ.get("AUTH_ATTEMPT_WINDOW_SECONDS") or "300")
AUTH_MAX_ATTEMPTS_PER_IP = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_IP") or "50")
AUTH_MAX_ATTEMPTS_PER_ACCOUNT = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_ACCOUNT") or "8")
AUTH_LOCKOUT_SECONDS = int(os.environ.get("AUTH_LOCKOUT_SECONDS") or "900")
AUTH_LOGGER = logging.getLogger("inventory_tracker.auth")
_AUTH_GUARD_LOCK = threading.Lock()
_AUTH_ATTEMPTS_BY_IP: dict[str, list[float]] = {}
_AUTH_ATTEMPTS_BY_ACCOUNT: dict[str, list[float]] = {}
_AUTH_LOCKOUT_UNTIL_BY_ACCOUNT: dict[str, float] = {}


class AuthLoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str | None = None
    email: str | None = None
    password: str | None = None


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            UserID=user_id,
            CreatedAt=datetime.now(),
        )
    )


def _record_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None, user_id: int | None = None) -> None:
    try:
        log_audit(db, entity_type, entity_id, action, details, user_id=user_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        AUTH_LOGGER.warning("Audit write failed entity=%s id=%s action=%s", entity_type, entity_id, action)


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
        account_attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
        _AUTH_ATTEMPTS_BY_IP[client_ip] = ip_attempts
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = account_attempts

        if len(ip_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_IP, 1):
            return max(1, int((ip_attempts[0] + AUTH_ATTEMPT_WINDOW_SECONDS) - now_ts))
        if len(account_attempts) >= max(AUTH_MAX_ATTEMPTS_PER_ACCOUNT, 1):
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT[account_key] = now_ts + max(AUTH_LOCKOUT_SECONDS, 1)
            return max(AUTH_LOCKOUT_SECONDS, 1)
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


def _reject_login(db: Session, client_ip: str, account_key: str, reason: str) -> HTTPException:
    _record_login_failure(client_ip, account_key)
    _record_audit(db, "Auth", 0, "LoginFailed", f"ip={client_ip} key={account_key} reason={reason}")
    AUTH_LOGGER.warning("Login failed ip=%s key=%s reason=%s", client_ip, account_key, reason)
    return HTTPException(status_code=401, detail="Invalid credentials.")


def _asset_number_http_error(exc: AssetNumberError) -> HTTPException:
    if isinstance(exc, (AssetNumberExhaustedError, AssetNumberConflictError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_inventory_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/login")
def auth_login(payload: dict, request: Request, db: Session = Depends(get_inventory_db)):
    client_ip = _get_client_ip(request)
    try:
        parsed = AuthLoginRequest.model_validate(payload)
    except ValidationError:
        _record_audit(db, "Auth", 0, "LoginRejected", f"ip={client_ip} reason=invalid_payload")
        raise HTTPException(status_code=400, detail="Invalid login request.")

    username = str(parsed.username or "").strip().lower()
    email = str(parsed.email or "").strip().lower()
    password = str(parsed.password or "")
    if not username and not email:
        _record_audit(db, "Auth", 0, "LoginRejected", f"ip={client_ip} reason=missing_identity")
        raise HTTPException(status_code=400, detail="Invalid login request.")

    account_key = f"user:{username}" if username else f"email:{email}"
    retry_after = _check_login_guard(client_ip, account_key)
    if retry_after is not None:
        _record_audit(db, "Auth", 0, "LoginThrottled", f"ip={client_ip} key={account_key} retry_after={retry_after}")
        AUTH_LOGGER.warning("Login throttled ip=%s key=%s retry_after=%s", client_ip, account_key, retry_after)
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    if username:
        if username != LOCAL_ADMIN_USERNAME or not LOCAL_ADMIN_PASSWORD:
            raise _reject_login(db, client_ip, account_key, "invalid_admin_identity")
        if password != LOCAL_ADMIN_PASSWORD:
            raise _reject_login(db, client_ip, account_key, "invalid_admin_password")
        user = ensure_local_admin_user(db)
        method = "admin"
    else:
        user = verify_password(db, email, password)
        if user is None:
            raise _reject_login(db, client_ip, account_key, "invalid_password")
        method = "password"

    session_payload = {
        "userID": user.UserID,
        "email": user.Email,
        "name": user.Name,
        "role": user.Role,
        "isLocalAdmin": method == "admin",
    }
    token = create_session(session_payload)
    request.session["user"] = dict(session_payload)
    _record_login_success(account_key)
    _record_audit(db, "Auth", user.UserID, "LoginSuccess", f"ip={client_ip} key={account_key} method={method}", user.UserID)
    AUTH_LOGGER.info("Login success ip=%s key=%s user_id=%s", client_ip, account_key, user.UserID)
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


@app.get("/api/admin/users")
def list_admin_users(
    request: Request,
    role: str | None = Query(None),
    active: bool | None = Query(None),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return [serialize_user(user) for user in list_users(db, role=role, active=active)]


@app.post("/api/admin/users", status_code=201)
def create_admin_user(
    request: Request,
    payload: UserUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    try:
        user = create_user(
            db,
            email=payload.email or "",
            name=payload.name or "",
            password=payload.password or "",
            role=payload.role,
            department_id=payload.departmentId,
            is_active=payload.isActive is not False,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "User", user.UserID, "Created", f"role={user.Role}", _session_user_id(session))
    return serialize_user(user)


@app.put("/api/admin/users/{user_id}")
def update_admin_user(
    request: Request,
    user_id: int,
    payload: UserUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    try:
        user = update_user(
            db,
            user_id,
            name=payload.name,
            email=payload.email,
            role=payload.role,
            department_id=payload.departmentId,
            is_active=payload.isActive,
            password=payload.password,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "User", user.UserID, "Updated", None, _session_user_id(session))
    return serialize_user(user)


@app.delete("/api/admin/users/{user_id}")
def delete_admin_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    if user_id == _session_user_id(session):
        raise HTTPException(status_code=400, detail="You cannot delete your own account.")
    try:
        outcome = delete_user(db, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "User", user_id, outcome.capitalize(), None, _session_user_id(session))
    return {"ok": True, "result": outcome}


@app.get("/api/admin/users/{user_id}/transfer")
def get_user_checkouts(
    request: Request,
    user_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    try:
        return list_user_checkouts(db, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/admin/users/{user_id}/transfer")
def transfer_user_checkouts(
    request: Request,
    user_id: int,
    payload: TransferRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    try:
        result = transfer_checkouts(db, user_id, payload.toUserId)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except TransactionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(
        db,
        "User",
        user_id,
        "TransferredCheckouts",
        f"to={payload.toUserId} count={result['transferredCount']}",
        _session_user_id(session),
    )
    return result


@app.get("/api/clients")
def get_clients(
    request: Request,
    search: str | None = Query(None),
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_references(db, "client", include_inactive=include_inactive, search=search)


@app.get("/api/clients/{client_id}")
def get_client(
    request: Request,
    client_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return _get_reference_or_404(db, "client", client_id)


@app.post("/api/clients", status_code=201)
def create_client(
    request: Request,
    payload: ClientUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _create_reference_or_400(db, "client", payload.model_dump(exclude_unset=True), session)


@app.put("/api/clients/{client_id}")
def update_client(
    request: Request,
    client_id: int,
    payload: ClientUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _update_reference_or_400(db, "client", client_id, payload.model_dump(exclude_unset=True), session)


@app.delete("/api/clients/{client_id}")
def delete_client(
    request: Request,
    client_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    return _delete_reference_or_404(db, "client", client_id, session)


@app.get("/api/locations")
def get_locations(
    request: Request,
    search: str | None = Query(None),
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_references(db, "location", include_inactive=include_inactive, search=search)


@app.get("/api/locations/{location_id}")
def get_location(
    request: Request,
    location_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return _get_reference_or_404(db, "location", location_id)


@app.post("/api/locations", status_code=201)
def create_location(
    request: Request,
    payload: LocationUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _create_reference_or_400(db, "location", payload.model_dump(exclude_unset=True), session)


@app.put("/api/locations/{location_id}")
def update_location(
    request: Request,
    location_id: int,
    payload: LocationUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _update_reference_or_400(db, "location", location_id, payload.model_dump(exclude_unset=True), session)


@app.delete("/api/locations/{location_id}")
def delete_location(
    request: Request,
    location_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    return _delete_reference_or_404(db, "location", location_id, session)


@app.get("/api/departments")
def get_departments(
    request: Request,
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_references(db, "department", include_inactive=include_inactive)


@app.post("/api/departments", status_code=201)
def create_department(
    request: Request,
    payload: DepartmentUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    return _create_reference_or_400(db, "department", payload.model_dump(exclude_unset=True), session)


@app.put("/api/departments/{department_id}")
def update_department(
    request: Request,
    department_id: int,
    payload: DepartmentUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    return _update_reference_or_400(db, "department", department_id, payload.model_dump(exclude_unset=True), session)


@app.delete("/api/departments/{department_id}")
def delete_department(
    request: Request,
    department_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    return _delete_reference_or_404(db, "department", department_id, session)


@app.get("/api/preset-categories")
def get_preset_categories(
    request: Request,
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_references(db, "presetCategory", include_inactive=include_inactive)


@app.post("/api/preset-categories", status_code=201)
def create_preset_category(
    request: Request,
    payload: NamedEntityUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _create_reference_or_400(db, "presetCategory", payload.model_dump(exclude_unset=True), session)


@app.put("/api/preset-categories/{category_id}")
def update_preset_category(
    request: Request,
    category_id: int,
    payload: NamedEntityUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _update_reference_or_400(db, "presetCategory", category_id, payload.model_dump(exclude_unset=True), session)


@app.delete("/api/preset-categories/{category_id}")
def delete_preset_category(
    request: Request,
    category_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _delete_reference_or_404(db, "presetCategory", category_id, session)


@app.get("/api/preset-departments")
def get_preset_departments(
    request: Request,
    include_inactive: bool = Query(False, alias="includeInactive"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_references(db, "presetDepartment", include_inactive=include_inactive)


@app.post("/api/preset-departments", status_code=201)
def create_preset_department(
    request: Request,
    payload: NamedEntityUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _create_reference_or_400(db, "presetDepartment", payload.model_dump(exclude_unset=True), session)


@app.put("/api/preset-departments/{department_id}")
def update_preset_department(
    request: Request,
    department_id: int,
    payload: NamedEntityUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _update_reference_or_400(db, "presetDepartment", department_id, payload.model_dump(exclude_unset=True), session)


@app.delete("/api/preset-departments/{department_id}")
def delete_preset_department(
    request: Request,
    department_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return _delete_reference_or_404(db, "presetDepartment", department_id, session)


@app.get("/api/categories")
def get_categories(
    request: Request,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_categories(db)


@app.post("/api/categories", status_code=201)
def create_custom_category(
    request: Request,
    payload: CategoryUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    try:
        category = create_category(db, payload.name or "", payload.description, _session_user_id(session))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Category", category.CategoryID, "Created", f"code={category.Code}", _session_user_id(session))
    return serialize_category(category, 0)


@app.put("/api/categories/{category_id}")
def update_custom_category(
    request: Request,
    category_id: int,
    payload: CategoryUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    try:
        category = update_category(db, category_id, payload.name, payload.description)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_category(category)


@app.delete("/api/categories/{category_id}")
def delete_custom_category(
    request: Request,
    category_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    try:
        outcome = delete_category(db, category_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    _record_audit(db, "Category", category_id, outcome.capitalize(), None, _session_user_id(session))
    if outcome == "deactivated":
        return {"message": "Category deactivated because assets still use it"}
    return {"message": "Category deleted successfully"}


@app.get("/api/assets")
def get_assets(
    request: Request,
    search: str | None = Query(None),
    category: str | None = Query(None),
    status: str | None = Query(None),
    condition: str | None = Query(None),
    client_id: int | None = Query(None, alias="clientId"),
    location_id: int | None = Query(None, alias="locationId"),
    manufacturer: str | None = Query(None),
    min_price: float | None = Query(None, alias="minPrice"),
    max_price: float | None = Query(None, alias="maxPrice"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_assets(
        db,
        search=search,
        category=category,
        status=status,
        condition=condition,
        client_id=client_id,
        location_id=location_id,
        manufacturer=manufacturer,
        min_price=min_price,
        max_price=max_price,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )


@app.get("/api/assets/search")
def search_asset_codes(
    request: Request,
    q: str = Query("", alias="q"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        return search_assets(db, q)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/assets/export")
def export_assets(
    request: Request,
    ids: str | None = Query(None),
    category: str | None = Query(None),
    status: str | None = Query(None),
    client_id: int | None = Query(None, alias="clientId"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        asset_ids = [int(part) for part in (ids or "").split(",") if part.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="ids must be a comma separated list of asset ids") from exc
    content = export_assets_csv(db, asset_ids, category=category, status=status, client_id=client_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="assets-export-{date.today().isoformat()}.csv"'},
    )


@app.get("/api/assets/{asset_id}")
def get_asset_item(
    request: Request,
    asset_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        asset = get_asset(db, asset_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    payload = serialize_asset(asset, len(asset.Transactions))
    payload["transactions"] = [serialize_transaction(row) for row in asset.Transactions[-10:]]
    payload["maintenanceRecords"] = [serialize_maintenance(record) for record in asset.MaintenanceRecords]
    return payload


@app.post("/api/assets", status_code=201)
def create_asset_item(
    request: Request,
    payload: AssetUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    user_id = _session_user_id(session)
    try:
        asset = create_asset(db, payload.model_dump(exclude_unset=True), user_id)
    except AssetNumberError as exc:
        raise _asset_number_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Asset", asset.AssetID, "Created", f"assetNumber={asset.AssetNumber}", user_id)
    return serialize_asset(asset, 0)


@app.post("/api/assets/import")
def import_asset_rows(
    request: Request,
    payload: AssetImportRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    user_id = _session_user_id(session)
    rows = payload.rows
    if rows is None and payload.csv:
        rows = parse_import_csv(payload.csv)
    try:
        result = import_assets(db, rows or [], payload.clientId, user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Asset", 0, "Imported", f"successful={result['successful']} failed={result['failed']}", user_id)
    return result


@app.post("/api/assets/bulk")
def bulk_asset_action(
    request: Request,
    payload: AssetBulkRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    roles = MANAGE_ROLES if payload.action == "delete" else WRITE_ROLES
    session = _require_role_or_403(request, x_session_token, roles)
    user_id = _session_user_id(session)
    try:
        if payload.action == "delete":
            result = bulk_delete_assets(db, payload.assetIds, user_id)
        else:
            status = payload.status or (payload.data or {}).get("status")
            result = bulk_change_status(db, payload.assetIds, status, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Asset", 0, "BulkDelete" if payload.action == "delete" else "BulkChangeStatus", f"count={result['affectedCount']}", user_id)
    return result


@app.put("/api/assets/{asset_id}")
def update_asset_item(
    request: Request,
    asset_id: int,
    payload: AssetUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    user_id = _session_user_id(session)
    try:
        asset = update_asset(db, asset_id, payload.model_dump(exclude_unset=True), user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AssetNumberError as exc:
        raise _asset_number_http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Asset", asset.AssetID, "Updated", None, user_id)
    return serialize_asset(asset)


@app.delete("/api/assets/{asset_id}")
def delete_asset_item(
    request: Request,
    asset_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    user_id = _session_user_id(session)
    try:
        outcome = delete_asset(db, asset_id, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Asset", asset_id, outcome.capitalize(), None, user_id)
    if outcome == "retired":
        return {"message": "Asset retired because it has history", "result": outcome}
    return {"message": "Asset deleted successfully", "result": outcome}


@app.get("/api/asset-numbers/next")
def preview_asset_number(
    request: Request,
    category: str = Query(...),
    client_id: int | None = Query(None, alias="clientId"),
    client_code: str | None = Query(None, alias="clientCode"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    code = client_code
    if client_id is not None:
        client = db.get(Client, client_id)
        if not client:
            raise HTTPException(status_code=404, detail="Client not found")
        code = client.Code
    if not code:
        raise HTTPException(status_code=400, detail="clientId or clientCode is required")
    try:
        return {"assetNumber": allocate_asset_number(db, code, category)}
    except AssetNumberError as exc:
        raise _asset_number_http_error(exc) from exc


@app.get("/api/admin/asset-numbers")
def get_missing_asset_numbers(
    request: Request,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin_session_or_403(request, x_session_token)
    return count_missing_asset_numbers(db)


@app.post("/api/admin/asset-numbers")
def assign_asset_numbers(
    request: Request,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_admin_session_or_403(request, x_session_token)
    result = assign_missing_asset_numbers(db, _session_user_id(session))
    _record_audit(db, "Asset", 0, "BulkAssignNumbers", f"updated={result['updated']} total={result['total']}", _session_user_id(session))
    return result


@app.get("/api/transactions")
def get_transactions(
    request: Request,
    asset_id: int | None = Query(None, alias="assetId"),
    status: str | None = Query(None),
    kind: str | None = Query(None, alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_transactions(db, asset_id=asset_id, status=status, kind=kind, page=page, limit=limit)


@app.post("/api/transactions", status_code=201)
def create_transaction(
    request: Request,
    payload: TransactionRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    user_id = _session_user_id(session)
    try:
        if payload.type == "CHECK_OUT":
            row = check_out_asset(
                db,
                payload.assetId,
                payload.assignedUserId or user_id,
                expected_return_date=payload.expectedReturnDate,
                notes=payload.notes,
                actor_id=user_id,
            )
        else:
            row = check_in_asset(db, payload.assetId, user_id, notes=payload.notes)
    except AssetNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Asset not found") from exc
    except TransactionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_transaction(row)


@app.post("/api/transactions/bulk")
def create_bulk_transactions(
    request: Request,
    payload: BulkTransactionRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        return run_bulk_transactions(
            db,
            payload.action,
            [item.model_dump() for item in payload.items],
            _session_user_id(session),
        )
    except TransactionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions/mark-overdue")
def mark_overdue(
    request: Request,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    return {"updated": mark_overdue_transactions(db)}


@app.get("/api/maintenance")
def get_maintenance_records(
    request: Request,
    status: str | None = Query(None),
    asset_id: int | None = Query(None, alias="assetId"),
    record_type: str | None = Query(None, alias="type"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    records = list_maintenance(db, status=status, asset_id=asset_id, record_type=record_type)
    return [serialize_maintenance(record) for record in records]


@app.get("/api/maintenance/{record_id}")
def get_maintenance_record(
    request: Request,
    record_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        return serialize_maintenance(get_maintenance(db, record_id))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/maintenance", status_code=201)
def create_maintenance_record(
    request: Request,
    payload: MaintenanceCreate,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        record = create_maintenance(db, payload.model_dump(), _session_user_id(session))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_maintenance(record)


@app.put("/api/maintenance/{record_id}")
def update_maintenance_record(
    request: Request,
    record_id: int,
    payload: MaintenanceUpdate,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        record = update_maintenance(db, record_id, payload.model_dump(exclude_unset=True))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Maintenance", record_id, "Updated", f"status={record.Status}", _session_user_id(session))
    return serialize_maintenance(record)


@app.delete("/api/maintenance/{record_id}")
def delete_maintenance_record(
    request: Request,
    record_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_role_or_403(request, x_session_token, MANAGE_ROLES)
    try:
        delete_maintenance(db, record_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Maintenance record deleted successfully"}


@app.get("/api/presets")
def get_presets(
    request: Request,
    search: str | None = Query(None),
    category: str | None = Query(None),
    is_active: bool | None = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return list_presets(db, search=search, category=category, is_active=is_active, page=page, limit=limit)


@app.post("/api/presets/detect")
def detect_preset_matches(
    request: Request,
    payload: PresetDetectRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    if not payload.assetIds:
        raise HTTPException(status_code=400, detail="Asset IDs array is required")
    matches = detect_presets(db, payload.assetIds)
    return {"detectedPresets": matches, "totalMatches": len(matches)}


@app.post("/api/presets", status_code=201)
def create_preset_item(
    request: Request,
    payload: PresetUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        preset = create_preset(db, payload.model_dump(exclude_unset=True), _session_user_id(session))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Preset", preset.PresetID, "Created", None, _session_user_id(session))
    return serialize_preset(preset)


@app.get("/api/presets/{preset_id}")
def get_preset_item(
    request: Request,
    preset_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        preset = load_preset(db, preset_id)
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize_preset(preset, checkout_count=len(preset.Checkouts))


@app.put("/api/presets/{preset_id}")
def update_preset_item(
    request: Request,
    preset_id: int,
    payload: PresetUpsert,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    try:
        preset = load_preset(db, preset_id)
        if not can_edit_preset(preset, _session_user_id(session), _session_role(session)):
            raise HTTPException(status_code=403, detail="Insufficient permissions to edit this preset")
        preset = update_preset(db, preset_id, payload.model_dump(exclude_unset=True))
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Preset", preset_id, "Updated", None, _session_user_id(session))
    return serialize_preset(preset)


@app.delete("/api/presets/{preset_id}")
def delete_preset_item(
    request: Request,
    preset_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_session_or_401(request, x_session_token)
    try:
        preset = load_preset(db, preset_id)
        if not can_delete_preset(preset, _session_user_id(session), _session_role(session)):
            raise HTTPException(status_code=403, detail="Insufficient permissions to delete this preset")
        outcome = delete_preset(db, preset_id)
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, "Preset", preset_id, outcome.capitalize(), None, _session_user_id(session))
    if outcome == "deactivated":
        return {"message": "Preset deactivated because it has checkout history", "result": outcome}
    return {"message": "Preset deleted successfully", "result": outcome}


@app.post("/api/presets/{preset_id}/complete", status_code=201)
def complete_preset_checkout(
    request: Request,
    preset_id: int,
    payload: PresetCompleteRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    user_id = _session_user_id(session)
    try:
        result = reconcile_preset_checkout(
            db,
            preset_id,
            payload.scannedAssetIds,
            user_id,
            expected_return_date=payload.expectedReturnDate,
        )
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CheckoutAbortedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    checkout = result["presetCheckout"]
    _record_audit(
        db,
        "PresetCheckout",
        checkout["presetCheckoutID"],
        "Created",
        f"presetId={preset_id} completion={checkout['completionPercent']}",
        user_id,
    )
    return result


@app.get("/api/presets/{preset_id}/substitutions")
def get_preset_substitutions(
    request: Request,
    preset_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        return list_substitution_options(db, preset_id)
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/presets/{preset_id}/substitutions")
def check_preset_substitutions(
    request: Request,
    preset_id: int,
    payload: SubstitutionRequest,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    if not payload.substitutions:
        raise HTTPException(status_code=400, detail="Invalid substitutions data")
    try:
        return validate_substitutions(db, preset_id, payload.substitutions)
    except PresetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/preset-checkouts/{checkout_id}")
def get_preset_checkout(
    request: Request,
    checkout_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    try:
        return serialize_checkout(load_checkout(db, checkout_id))
    except PresetCheckoutNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/preset-checkouts/{checkout_id}/process")
def process_checkout(
    request: Request,
    checkout_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        result = process_preset_checkout(db, checkout_id, _session_user_id(session))
    except PresetCheckoutNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CheckoutAbortedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    _record_audit(db, "PresetCheckout", checkout_id, "Processed", f"checkedOut={result['checkedOut']}", _session_user_id(session))
    return result


@app.post("/api/preset-checkouts/{checkout_id}/return")
def return_checkout(
    request: Request,
    checkout_id: int,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    session = _require_role_or_403(request, x_session_token, WRITE_ROLES)
    try:
        result = return_preset_checkout(db, checkout_id, _session_user_id(session))
    except PresetCheckoutNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CheckoutAbortedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    _record_audit(db, "PresetCheckout", checkout_id, "Returned", f"returned={result['returned']}", _session_user_id(session))
    return result


@app.get("/api/dashboard/stats")
def get_dashboard_stats(
    request: Request,
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return dashboard_stats(db)


@app.get("/api/reports/analytics")
def get_analytics_report(
    request: Request,
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return analytics_report(db, start_date, end_date)


@app.get("/api/reports/clients")
def get_client_report(
    request: Request,
    client_id: int | None = Query(None, alias="clientId"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return client_report(db, client_id)


@app.get("/api/reports/maintenance")
def get_maintenance_report(
    request: Request,
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    status: str | None = Query(None),
    record_type: str | None = Query(None, alias="type"),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return maintenance_report(db, status=status, record_type=record_type, start_date=start_date, end_date=end_date)


@app.get("/api/reports/transactions")
def get_transaction_report(
    request: Request,
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    kind: str | None = Query(None, alias="type"),
    status: str | None = Query(None),
    db: Session = Depends(get_inventory_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_session_or_401(request, x_session_token)
    return transaction_report(db, start_date, end_date, kind, status)


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict):
        return dict(session_from_cookie)
    session_from_token = get_session(session_token)
    if session_from_token:
        request.session["user"] = dict(session_from_token)
        return dict(session_from_token)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_role_or_403(request: Request, session_token: str | None, roles: set[str]) -> dict:
    session = _require_session_or_401(request, session_token)
    if _session_role(session) not in roles:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return session


def _require_admin_session_or_403(request: Request, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    if _session_role(session) != "ADMIN":
        raise HTTPException(status_code=403, detail="Admin role required.")
    return session


def _session_role(session: dict) -> str:
    return str(session.get("role") or "").strip().upper()


def _session_user_id(session: dict) -> int | None:
    try:
        value = int(session.get("userID") or 0)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _get_reference_or_404(db: Session, entity: str, row_id: int) -> dict:
    try:
        return serialize_reference(entity, get_reference(db, entity, row_id))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _create_reference_or_400(db: Session, entity: str, data: dict, session: dict) -> dict:
    try:
        row = create_reference(db, entity, data)
    except (ValueError, AssetNumberError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    payload = serialize_reference(entity, row, 0)
    _record_audit(db, entity, payload["id"], "Created", None, _session_user_id(session))
    return payload


def _update_reference_or_400(db: Session, entity: str, row_id: int, data: dict, session: dict) -> dict:
    try:
        row = update_reference(db, entity, row_id, data)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ValueError, AssetNumberError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _record_audit(db, entity, row_id, "Updated", None, _session_user_id(session))
    return serialize_reference(entity, row)


def _delete_reference_or_404(db: Session, entity: str, row_id: int, session: dict) -> dict:
    try:
        outcome, row = delete_reference(db, entity, row_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    _record_audit(db, entity, row_id, outcome.capitalize(), None, _session_user_id(session))
    if outcome == "deactivated":
        return {"message": "Deactivated because it is still in use", "result": outcome, "item": serialize_reference(entity, row)}
    return {"message": "Deleted successfully", "result": outcome}
