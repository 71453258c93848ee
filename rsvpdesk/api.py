"""FastAPI application for RSVPDesk."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from urllib.parse import urlencode
import tomllib

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import (
    SESSION_COOKIE,
    create_admin_session,
    end_admin_session,
    get_admin_session,
)
from .config import settings
from .export import EXPORT_KINDS, export_filename, render_export
from .models import AdminSession
from .queries import filter_records, normalize_submission, paginate, total_guests
from .records import BACKGROUND_TYPES, LandingPageSettings, RSVPRecord
from .remote import BlobStore, RemoteStore
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .sync import SyncLayer
from .utils import format_timestamp, humanize_time

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")

MIRROR_WAIT_SECONDS = 2.0


class LoginRequired(Exception):
    """Raised when a browser request needs an admin session."""


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("rsvpdesk")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    blobs = BlobStore(settings.media_dir, base_url=settings.base_url)
    sync = SyncLayer(RemoteStore(), blobs, default_title=settings.default_title)
    sync.start()
    app.state.sync = sync
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        sync.stop()
        stop_scheduler()


app = FastAPI(title="RSVPDesk", version=APP_VERSION, lifespan=lifespan)
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
app.mount(
    "/media",
    StaticFiles(directory=str(settings.media_dir), check_dir=False),
    name="media",
)

templates.env.globals["app_version"] = APP_VERSION
templates.env.filters["relative_time"] = humanize_time


def get_sync(request: Request) -> SyncLayer:
    return request.app.state.sync


def current_admin(request: Request) -> AdminSession | None:
    return get_admin_session(request.cookies.get(SESSION_COOKIE))


def require_admin(request: Request) -> AdminSession:
    admin = current_admin(request)
    if admin is None:
        if _wants_json(request):
            raise HTTPException(status_code=401, detail="Authentication required")
        raise LoginRequired()
    return admin


async def _await_mirrors(sync: SyncLayer) -> bool:
    """Give the initial snapshots a moment to land; False while still loading."""
    if not sync.loading:
        return True
    try:
        await asyncio.wait_for(sync.wait_until_loaded(), MIRROR_WAIT_SECONDS)
    except TimeoutError:
        return False
    return True


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


def _safe_next(raw: str | None) -> str:
    if raw and raw.startswith("/") and not raw.startswith("//"):
        return raw
    return "/admin"


def _redirect_with_message(path: str, message: str, *, success: bool = True, **params):
    query = {key: value for key, value in params.items() if value not in (None, "")}
    query["message"] = message
    query["message_class"] = "alert-success" if success else "alert-error"
    return RedirectResponse(url=f"{path}?{urlencode(query)}", status_code=303)


def _render_error(request: Request, status_code: int, message: str | None):
    context = {
        "request": request,
        "status_code": status_code,
        "error_message": message or "Something went wrong.",
    }
    return templates.TemplateResponse(
        request, "error.html", context, status_code=status_code
    )


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired):
    return RedirectResponse(
        url=f"/login?{urlencode({'next': request.url.path})}", status_code=303
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


def _serialize_rsvp(record: RSVPRecord) -> dict:
    return {
        "id": record.id,
        "name": record.name,
        "affiliation": record.affiliation,
        "guests": record.guests,
        "submittedAt": format_timestamp(record.submitted_at),
    }


class RSVPCreatePayload(BaseModel):
    name: str
    affiliation: str
    guests: int | str = 1


# -- public pages -----------------------------------------------------------------


def _landing_response(
    request: Request,
    sync: SyncLayer,
    *,
    submitted: bool = False,
    form_error: str | None = None,
    form: dict | None = None,
    status_code: int = 200,
):
    return templates.TemplateResponse(
        request,
        "landing.html",
        {
            "request": request,
            "page_settings": sync.effective_settings(),
            "submitted": submitted,
            "form_error": form_error,
            "form": form or {"name": "", "affiliation": "", "guests": settings.guest_min},
            "guest_min": settings.guest_min,
            "guest_max": settings.guest_max,
        },
        status_code=status_code,
    )


@app.get("/", response_class=HTMLResponse)
async def landing_page(
    request: Request,
    submitted: bool = Query(False),
    sync: SyncLayer = Depends(get_sync),
):
    if not await _await_mirrors(sync):
        return templates.TemplateResponse(
            request, "loading.html", {"request": request}
        )
    return _landing_response(request, sync, submitted=submitted)


@app.post("/rsvp")
async def submit_rsvp(
    request: Request,
    name: str = Form(""),
    affiliation: str = Form(""),
    guests: str = Form("1"),
    sync: SyncLayer = Depends(get_sync),
):
    form = {"name": name, "affiliation": affiliation, "guests": guests}
    try:
        clean_name, clean_affiliation, guest_count = normalize_submission(
            name,
            affiliation,
            guests,
            minimum=settings.guest_min,
            maximum=settings.guest_max,
        )
    except ValueError as exc:
        return _landing_response(
            request, sync, form_error=str(exc), form=form, status_code=400
        )
    try:
        await sync.add_record(clean_name, clean_affiliation, guest_count)
    except Exception:
        return _landing_response(
            request,
            sync,
            form_error="We could not save your RSVP. Please try again.",
            form=form,
            status_code=503,
        )
    return RedirectResponse(url="/?submitted=1", status_code=303)


# -- session ----------------------------------------------------------------------


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, next: str | None = Query(None)):
    if current_admin(request) is not None:
        return RedirectResponse(url=_safe_next(next), status_code=303)
    return templates.TemplateResponse(
        request, "login.html", {"request": request, "next": next or "", "error": None}
    )


@app.post("/login")
def login(request: Request, token: str = Form(""), next: str = Form("")):
    session_id = create_admin_session(token)
    if session_id is None:
        logger.warning("Rejected admin login from %s", getattr(request.client, "host", "?"))
        return templates.TemplateResponse(
            request,
            "login.html",
            {"request": request, "next": next, "error": "That admin token is not valid."},
            status_code=401,
        )
    response = RedirectResponse(url=_safe_next(next), status_code=303)
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=int(settings.session_max_age.total_seconds()),
        httponly=True,
        samesite="lax",
    )
    return response


@app.post("/logout")
def logout(request: Request):
    end_admin_session(request.cookies.get(SESSION_COOKIE))
    response = RedirectResponse(url="/login", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


# -- admin ------------------------------------------------------------------------


@app.get("/admin", response_class=HTMLResponse)
async def admin_dashboard(
    request: Request,
    q: str | None = Query(None),
    page: int = Query(1),
    message: str | None = Query(None),
    message_class: str | None = Query(None),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    loaded = await _await_mirrors(sync)
    records = list(sync.rsvps)
    filtered = filter_records(records, q)
    pagination = paginate(filtered, page, settings.rsvps_per_page)
    return templates.TemplateResponse(
        request,
        "admin_dashboard.html",
        {
            "request": request,
            "loading": not loaded,
            "query": q or "",
            "pagination": pagination,
            "total_rsvps": len(records),
            "total_guests": total_guests(records),
            "filtered_count": len(filtered),
            "reset_page_on_search": settings.reset_page_on_search,
            "sync_error": sync.error,
            "message": message,
            "message_class": message_class or "alert-success",
        },
    )


@app.post("/admin/rsvps/delete-all")
async def delete_all_rsvps(
    confirm: str = Form(""),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    if confirm.strip().lower() != "yes":
        raise HTTPException(status_code=400, detail="Deleting every RSVP needs confirmation.")
    try:
        await sync.delete_all_records()
    except Exception:
        return _redirect_with_message("/admin", sync.error or "Delete failed.", success=False)
    return _redirect_with_message("/admin", "All RSVPs removed.")


@app.post("/admin/rsvps/{record_id}/delete")
async def delete_rsvp(
    record_id: str,
    q: str = Form(""),
    page: str = Form(""),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    try:
        await sync.delete_record(record_id)
    except Exception:
        return _redirect_with_message(
            "/admin", sync.error or "Delete failed.", success=False, q=q, page=page
        )
    return _redirect_with_message("/admin", "RSVP removed.", q=q, page=page)


@app.get("/admin/export/{kind}")
async def export_rsvps(
    kind: str,
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    if kind not in EXPORT_KINDS:
        raise HTTPException(status_code=404, detail="Unknown export format")
    await _await_mirrors(sync)
    records = list(sync.rsvps)
    title = sync.effective_settings().title or settings.default_title
    content = await run_in_threadpool(render_export, kind, records, title)
    filename = export_filename(kind)
    logger.info("Exported %d RSVPs as %s", len(records), filename)
    return Response(
        content=content,
        media_type=EXPORT_KINDS[kind],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/admin/settings", response_class=HTMLResponse)
async def settings_page(
    request: Request,
    message: str | None = Query(None),
    message_class: str | None = Query(None),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    try:
        current = await sync.fetch_settings()
    except Exception:
        current = sync.landing_page_settings
        message = sync.error
        message_class = "alert-error"
    return templates.TemplateResponse(
        request,
        "admin_settings.html",
        {
            "request": request,
            "page_settings": current or LandingPageSettings.defaults(settings.default_title),
            "background_types": BACKGROUND_TYPES,
            "max_upload_mb": settings.max_upload_mb,
            "message": message,
            "message_class": message_class or "alert-success",
        },
    )


@app.post("/admin/settings")
async def save_settings(
    title: str = Form(""),
    background_type: str = Form("image"),
    background_url: str = Form(""),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    try:
        updated = LandingPageSettings(
            title=title.strip(),
            background_type=background_type,
            background_url=background_url.strip(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        await sync.update_settings(updated)
    except Exception:
        return _redirect_with_message(
            "/admin/settings", sync.error or "Update failed.", success=False
        )
    return _redirect_with_message("/admin/settings", "Landing page updated.")


@app.post("/admin/settings/background")
async def upload_background(
    background: UploadFile = File(...),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    data = await background.read()
    if not data:
        raise HTTPException(status_code=400, detail="The uploaded file is empty.")
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Backgrounds are limited to {settings.max_upload_mb} MB.",
        )
    try:
        await sync.upload_asset(data, background.filename, background.content_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception:
        return _redirect_with_message(
            "/admin/settings", sync.error or "Upload failed.", success=False
        )
    return _redirect_with_message("/admin/settings", "Background uploaded.")


# -- JSON -------------------------------------------------------------------------


@app.get("/api/rsvps")
async def api_list_rsvps(
    q: str | None = Query(None),
    _: AdminSession = Depends(require_admin),
    sync: SyncLayer = Depends(get_sync),
):
    await _await_mirrors(sync)
    records = list(sync.rsvps)
    filtered = filter_records(records, q)
    return {
        "rsvps": [_serialize_rsvp(record) for record in filtered],
        "count": len(filtered),
        "total_guests": total_guests(records),
    }


@app.post("/api/rsvps", status_code=201)
async def api_create_rsvp(
    payload: RSVPCreatePayload, sync: SyncLayer = Depends(get_sync)
):
    try:
        name, affiliation, guests = normalize_submission(
            payload.name,
            payload.affiliation,
            payload.guests,
            minimum=settings.guest_min,
            maximum=settings.guest_max,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        record_id = await sync.add_record(name, affiliation, guests)
    except Exception:
        return JSONResponse({"detail": sync.error}, status_code=503)
    return {"id": record_id, "guests": guests}


@app.get("/api/settings")
async def api_settings(sync: SyncLayer = Depends(get_sync)):
    await _await_mirrors(sync)
    return sync.effective_settings().to_value()


@app.get("/healthz")
async def healthz(sync: SyncLayer = Depends(get_sync)):
    return {
        "status": "ok",
        "version": APP_VERSION,
        "loading": sync.loading,
        "operation_in_flight": sync.operation_in_flight,
    }
