"""
main.py — FastAPI Application Entry Point
District Data Console
"""

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger

from districtdesk.allocation import AllocationService
from districtdesk.config import settings
from districtdesk.data_ingestion import delete_partition, import_spreadsheet
from districtdesk.database import DocumentStore, close_store, get_store, init_store
from districtdesk.errors import ConsoleError, NotFound, PermissionDenied, ValidationFailed
from districtdesk.hierarchy import UserService, can_manage, manageable_users
from districtdesk.messaging import MessagingService
from districtdesk.models import User
from districtdesk.models.db_models import USERS_COLLECTION
from districtdesk.utils import (
    AllocationGrantRequest, LoginRequest, MessageRequest, TokenResponse, UserCreate, UserUpdate,
    create_access_token, decode_token, paginate,
)
from districtdesk.visibility import count_records, list_districts, list_records

API = settings.API_PREFIX


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    store = await init_store()
    await UserService(store).ensure_main_admin(
        settings.MAIN_ADMIN_EMAIL, settings.MAIN_ADMIN_PASSWORD, settings.MAIN_ADMIN_NAME
    )
    yield
    await close_store()
    logger.info("Application shutdown complete.")


# ── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Hierarchical user management and date-bounded allocation of district "
        "consumer data, with bulk spreadsheet import and messaging."
    ),
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error responses ───────────────────────────────────────────────────────────
@app.exception_handler(ConsoleError)
async def console_error_handler(request, exc: ConsoleError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg')}" if where else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=422, content={"success": False, "error": message})


# ── Auth dependency ───────────────────────────────────────────────────────────
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{API}/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    store: DocumentStore = Depends(get_store),
) -> User:
    payload = decode_token(token)
    try:
        user = await UserService(store).get_user(payload.get("sub", ""))
    except NotFound:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Account no longer exists.")
    if not user.is_active:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Account is inactive.")
    return user


def require_main_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_root:
        raise PermissionDenied("Only the main admin can manage the data partition.")
    return user


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════════
@app.get("/health", tags=["System"])
async def health_check(store: DocumentStore = Depends(get_store)):
    await store.count(USERS_COLLECTION)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH & USERS
# ═══════════════════════════════════════════════════════════════════════════════
@app.post(f"{API}/auth/login", response_model=TokenResponse, tags=["Auth"])
async def login(payload: LoginRequest, store: DocumentStore = Depends(get_store)):
    user = await UserService(store).authenticate(payload.email.strip(), payload.password)
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid credentials.")
    token = create_access_token({"sub": user.id, "role": user.role.value})
    logger.info(f"{user.email} logged in.")
    return TokenResponse(access_token=token)


@app.get(f"{API}/users/me", tags=["Users"])
async def read_me(user: User = Depends(get_current_user)):
    return user.public()


@app.get(f"{API}/users", tags=["Users"])
async def list_manageable_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    users = await UserService(store).list_users()
    return paginate([u.public() for u in manageable_users(users, user)], page, page_size)


@app.post(f"{API}/users", tags=["Users"], status_code=201)
async def create_user(
    payload: UserCreate,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    created = await UserService(store).create_user(user, payload)
    return {"success": True, "user": created.public()}


@app.patch(f"{API}/users/{{user_id}}", tags=["Users"])
async def update_user(
    user_id: str,
    payload: UserUpdate,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    updated = await UserService(store).update_user(user, user_id, payload)
    return {"success": True, "user": updated.public()}


@app.delete(f"{API}/users/{{user_id}}", tags=["Users"])
async def delete_user(
    user_id: str,
    hard: bool = False,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    await UserService(store).delete_user(user, user_id, hard=hard)
    return {"success": True, "userId": user_id}


# ═══════════════════════════════════════════════════════════════════════════════
# HIERARCHY
# ═══════════════════════════════════════════════════════════════════════════════
@app.get(f"{API}/hierarchy", tags=["Hierarchy"])
async def read_hierarchy(user: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    tree = await UserService(store).hierarchy_for(user)
    return {"success": True, "hierarchy": [node.to_dict() for node in tree]}


@app.get(f"{API}/hierarchy/diagnostics", tags=["Hierarchy"])
async def read_hierarchy_diagnostics(
    user: User = Depends(require_main_admin),
    store: DocumentStore = Depends(get_store),
):
    orphans = await UserService(store).diagnostics()
    return {"success": True, "orphans": [o.to_dict() for o in orphans]}


# ═══════════════════════════════════════════════════════════════════════════════
# ALLOCATIONS
# ═══════════════════════════════════════════════════════════════════════════════
@app.post(f"{API}/allocations", tags=["Allocations"], status_code=201)
async def grant_allocation(
    payload: AllocationGrantRequest,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    if payload.granted_by and payload.granted_by != user.email:
        raise PermissionDenied("grantedBy must be the signed-in account.")
    result = await AllocationService(store).grant(payload, user)
    return result.to_dict()


@app.get(f"{API}/allocations/users/{{user_id}}", tags=["Allocations"])
async def read_user_allocations(
    user_id: str,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    service = AllocationService(store)
    if user_id != user.id:
        target = await service.users.get_user(user_id)
        if not can_manage(await service.users.list_users(), user, target):
            raise PermissionDenied(f"{user.email} cannot view allocations of {target.email}.")
    allocations = await service.list_for_user(user_id)
    return {"success": True, "allocations": [a.model_dump(by_alias=True, mode="json") for a in allocations]}


@app.delete(f"{API}/allocations/users/{{user_id}}/{{allocation_id}}", tags=["Allocations"])
async def remove_allocation(
    user_id: str,
    allocation_id: str,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    await AllocationService(store).remove(user, user_id, allocation_id)
    return {"success": True, "allocationId": allocation_id}


@app.get(f"{API}/allocations/manageable", tags=["Allocations"])
async def read_manageable_allocations(
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    service = AllocationService(store)
    by_user = await service.list_for_manageable(user)
    return {
        "success": True,
        "allocations": [
            a.model_dump(by_alias=True, mode="json")
            for allocations in by_user.values()
            for a in allocations
        ],
    }


@app.get(f"{API}/allocations/me/summary", tags=["Allocations"])
async def read_my_summary(user: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return {"success": True, **await AllocationService(store).summary(user)}


# ═══════════════════════════════════════════════════════════════════════════════
# LOCATIONS & RECORDS
# ═══════════════════════════════════════════════════════════════════════════════
@app.get(f"{API}/locations/districts", tags=["Locations"])
async def read_visible_districts(user: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return {"success": True, "districts": await AllocationService(store).visible_districts(user)}


@app.get(f"{API}/locations/districts/{{district}}/villages", tags=["Locations"])
async def read_visible_villages(
    district: str,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    villages = await AllocationService(store).visible_villages(user, district)
    return {"success": True, "district": district, "villages": villages}


@app.get(f"{API}/districts", tags=["Records"])
async def read_district_listing(user: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    visible = await AllocationService(store).visible_districts(user)
    summaries = await list_districts(store, names=visible)
    return {"success": True, "districts": [s.model_dump(by_alias=True, mode="json") for s in summaries]}


@app.get(f"{API}/records/count", tags=["Records"])
async def read_record_count(
    district: str,
    village: Optional[str] = None,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    await AllocationService(store).ensure_visible(user, district, village)
    total = await count_records(store, district, village)
    return {"success": True, "district": district, "village": village, "count": total}


@app.get(f"{API}/records", tags=["Records"])
async def read_records(
    district: str,
    village: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(100, ge=1, le=1000),
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    await AllocationService(store).ensure_visible(user, district, village)
    records = await list_records(store, district, village, limit=page * page_size)
    result = paginate(records, page, page_size)
    result["total"] = await count_records(store, district, village)
    result["pages"] = (result["total"] + page_size - 1) // page_size
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# DATA PARTITION
# ═══════════════════════════════════════════════════════════════════════════════
@app.post(f"{API}/uploads", tags=["Uploads"])
async def upload_spreadsheet(
    file: UploadFile = File(...),
    district: Optional[str] = Form(None),
    village: Optional[str] = Form(None),
    partition_by_address: bool = Form(False),
    user: User = Depends(require_main_admin),
    store: DocumentStore = Depends(get_store),
):
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise ValidationFailed(f"{file.filename} exceeds the {settings.MAX_UPLOAD_MB} MB upload limit.")

    def log_progress(percent: int, message: str) -> None:
        logger.debug(f"[{file.filename}] {percent}% {message}")

    result = await import_spreadsheet(
        store,
        content,
        file.filename or "",
        user.email,
        district=district,
        village=village,
        partition_by_address=partition_by_address,
        on_progress=log_progress,
    )
    if not result.success:
        return JSONResponse(status_code=503, content=result.to_dict())
    return result.to_dict()


@app.delete(f"{API}/districts/{{district}}", tags=["Uploads"])
async def delete_district(
    district: str,
    user: User = Depends(require_main_admin),
    store: DocumentStore = Depends(get_store),
):
    result = await delete_partition(store, district)
    if not result.success:
        return JSONResponse(status_code=503, content=result.to_dict())
    return result.to_dict()


@app.delete(f"{API}/districts/{{district}}/villages/{{village}}", tags=["Uploads"])
async def delete_village(
    district: str,
    village: str,
    user: User = Depends(require_main_admin),
    store: DocumentStore = Depends(get_store),
):
    result = await delete_partition(store, district, village)
    if not result.success:
        return JSONResponse(status_code=503, content=result.to_dict())
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGING
# ═══════════════════════════════════════════════════════════════════════════════
@app.post(f"{API}/messages", tags=["Messaging"], status_code=201)
async def send_message(
    payload: MessageRequest,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    record = await MessagingService(store).send(user, payload)
    return {"success": True, "message": record.model_dump(by_alias=True, mode="json")}


@app.get(f"{API}/messages", tags=["Messaging"])
async def read_messages(
    mine: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    service = MessagingService(store)
    messages = await service.history(user.email) if mine else await service.history_for(user)
    return paginate([m.model_dump(by_alias=True, mode="json") for m in messages], page, page_size)


@app.delete(f"{API}/messages", tags=["Messaging"])
async def clear_messages(
    everyone: bool = False,
    user: User = Depends(get_current_user),
    store: DocumentStore = Depends(get_store),
):
    deleted = await MessagingService(store).clear_history(user, everyone=everyone)
    return {"success": True, "deletedCount": deleted}
