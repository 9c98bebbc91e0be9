from __future__ import annotations
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .config import Settings
from .errors import (
    AlreadyContributed, IdentityProviderError, TidequoteError,
    Unauthenticated,
)
from .helpers import utc_now_iso
from .identity import (
    GoogleIdentityProvider, Identity, IdentityProvider,
    identity_from_session, store_identity,
)
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .model.ledger import LedgerStore, create_schema, new_store
from .quotes import QuoteFetcher

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

SITE_NAME = "Tidequote"
SESSION_COOKIE = "tidequote_session"

router = APIRouter()


# ----------------------------
# Request context
# ----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def current_identity(request: Request) -> Optional[Identity]:
    return identity_from_session(request.session)


def oauth_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def quote_fetcher(request: Request) -> QuoteFetcher:
    return request.app.state.quotes


async def ledger(request: Request) -> LedgerStore:
    state = request.app.state
    if state.settings.ledger_backend == "sql":
        async with state.sessions() as session:
            yield new_store("sql", db=session, gated=state.gated)
    else:
        yield new_store("redis", r=state.redis)


def _wants_json(request: Request) -> bool:
    path = request.url.path
    return path.startswith("/api/") or path == "/health"


# ----------------------------
# Pages
# ----------------------------
@router.get("/", response_class=HTMLResponse)
async def homepage(
    request: Request,
    error: Optional[str] = None,
    identity: Optional[Identity] = Depends(current_identity),
    quotes: QuoteFetcher = Depends(quote_fetcher),
):
    quote = await quotes.fetch_quote()
    return templates.TemplateResponse(request, "index.html", {
        "site_name": SITE_NAME,
        "quote": quote,
        "user": identity,
        "auth_error": error is not None,
    })


@router.get("/help", response_class=HTMLResponse)
async def help_page(
    request: Request,
    identity: Optional[Identity] = Depends(current_identity),
    store: LedgerStore = Depends(ledger),
):
    count = await store.count()
    has_clicked = None
    if identity is not None:
        has_clicked = await store.has_contributed(identity.id)
    return templates.TemplateResponse(request, "help.html", {
        "site_name": SITE_NAME,
        "user": identity,
        "count": count,
        "has_clicked": has_clicked,
    })


# ----------------------------
# OAuth handshake
# ----------------------------
@router.get("/auth/google")
async def auth_google(
    request: Request,
    settings: Settings = Depends(get_settings),
    provider: IdentityProvider = Depends(oauth_provider),
):
    return await provider.authorize_redirect(request, settings.callback_url)


@router.get("/auth/google/callback")
async def auth_google_callback(
    request: Request,
    provider: IdentityProvider = Depends(oauth_provider),
):
    try:
        identity = await provider.complete(request)
    except IdentityProviderError as e:
        logger.warning("login failed: %s", e)
        return RedirectResponse(url="/?error=auth_failed",
                                status_code=HTTP_303_SEE_OTHER)
    store_identity(request.session, identity)
    logger.info("login", extra={"identity_id": identity.id})
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


@router.get("/logout")
async def logout(
    request: Request,
    identity: Optional[Identity] = Depends(current_identity),
):
    if identity is not None:
        logger.info("logout", extra={"identity_id": identity.id})
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# JSON API
# ----------------------------
@router.get("/api/user")
async def api_user(identity: Optional[Identity] = Depends(current_identity)):
    if identity is None:
        return {"authenticated": False}
    return {"authenticated": True, "user": identity.to_dict()}


@router.get("/api/click-count")
async def api_click_count(store: LedgerStore = Depends(ledger)):
    return {"count": await store.count()}


@router.post("/api/click")
async def api_click(
    identity: Optional[Identity] = Depends(current_identity),
    store: LedgerStore = Depends(ledger),
):
    if identity is None:
        raise Unauthenticated()
    count = await store.contribute(identity)
    return {"success": True, "count": count}


@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "environment": settings.environment,
        "timestamp": utc_now_iso(),
    }


# ----------------------------
# Error handlers
# ----------------------------
def _error_page(request: Request, status_code: int, message: str,
                detail: Optional[str] = None):
    return templates.TemplateResponse(request, "error.html", {
        "site_name": SITE_NAME,
        "status_code": status_code,
        "message": message,
        "detail": detail,
    }, status_code=status_code)


async def _domain_error(request: Request, exc: TidequoteError):
    return ORJSONResponse({"error": exc.message},
                          status_code=exc.status_code)


async def _http_error(request: Request, exc: StarletteHTTPException):
    if _wants_json(request):
        return ORJSONResponse({"error": exc.detail},
                              status_code=exc.status_code,
                              headers=getattr(exc, "headers", None))
    message = "Page not found" if exc.status_code == 404 else exc.detail
    return _error_page(request, exc.status_code, message)


async def _internal_error(request: Request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method,
                 request.url.path, exc_info=exc)
    settings: Settings = request.app.state.settings
    detail = None if settings.is_production else repr(exc)
    if _wants_json(request):
        body = {"error": "Internal server error"}
        if detail:
            body["detail"] = detail
        return ORJSONResponse(body, status_code=500)
    return _error_page(request, 500, "Something went wrong", detail)


# ----------------------------
# App factory
# ----------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    identity_provider: Optional[IdentityProvider] = None,
    quotes: Optional[QuoteFetcher] = None,
    redis_client: Optional[redis.Redis] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    settings.validate()
    setup_logging(level=settings.effective_log_level,
                  json_format=settings.is_production)

    app = FastAPI(
        title=SITE_NAME,
        default_response_class=ORJSONResponse,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.identity_provider = identity_provider or GoogleIdentityProvider(
        settings.google_client_id, settings.google_client_secret
    )
    app.state.quotes = quotes
    app.state.http = None
    app.state.redis = redis_client

    if settings.ledger_backend == "sql":
        engine, SessionAsync, gated = make_async_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            gate_limit=settings.db_gate_limit,
        )
        app.state.engine = engine
        app.state.sessions = SessionAsync
        app.state.gated = gated

    app.mount("/static", StaticFiles(directory=str(PACKAGE_DIR / "static")),
              name="static")
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.secure_cookies,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = uuid.uuid4().hex
        t0 = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error("request failed", extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": round((time.perf_counter() - t0) * 1000, 2),
            })
            raise
        logger.info("%s %s -> %s", request.method, request.url.path,
                    response.status_code, extra={
                        "request_id": request_id,
                        "status_code": response.status_code,
                        "duration_ms": round(
                            (time.perf_counter() - t0) * 1000, 2
                        ),
                    })
        response.headers["X-Request-ID"] = request_id
        return response

    app.add_exception_handler(Unauthenticated, _domain_error)
    app.add_exception_handler(AlreadyContributed, _domain_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _internal_error)

    app.include_router(router)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        logger.info("tidequote starting", extra={
            "environment": settings.environment,
            "ledger_backend": settings.ledger_backend,
        })

    @app.on_event("startup")
    async def _ledger_init():
        if settings.ledger_backend == "sql":
            async with app.state.engine.begin() as conn:
                await create_schema(conn)
            async with app.state.sessions() as session:
                store = new_store("sql", db=session, gated=app.state.gated)
                before, after = await store.reconcile()
        else:
            if app.state.redis is None:
                app.state.redis = redis.from_url(
                    settings.redis_url,
                    decode_responses=True,
                    socket_timeout=2.0,
                    socket_connect_timeout=2.0,
                    retry_on_timeout=True,
                )
            store = new_store("redis", r=app.state.redis)
            await store.ensure_counter()
            before, after = await store.reconcile()
        if before != after:
            logger.warning("click counter drifted, reset %s -> %s",
                           before, after)

    @app.on_event("startup")
    async def _http_client_start():
        if app.state.quotes is None:
            app.state.http = httpx.AsyncClient(
                timeout=settings.quote_timeout,
                limits=httpx.Limits(max_connections=64),
            )
            app.state.quotes = QuoteFetcher(
                app.state.http, settings.quote_api_url,
                timeout=settings.quote_timeout,
            )

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = app.state.http
        if http is not None:
            await http.aclose()
            app.state.http = None
            app.state.quotes = None

    @app.on_event("shutdown")
    async def _storage_stop():
        if settings.ledger_backend == "sql":
            await app.state.engine.dispose()
        elif app.state.redis is not None and redis_client is None:
            await app.state.redis.aclose()
            app.state.redis = None

    return app
