"""FastAPI + lifespan (storage + session restore + gateway)"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ips_dashboard.config import load_config
from ips_dashboard.errors import AuthError, DashboardError, NetworkError, ServerError, ValidationError
from ips_dashboard.gateway import ApiGateway
from ips_dashboard.session import SessionGuard
from ips_dashboard.storage import ClientStorage

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()
    storage = ClientStorage(config.storage_path)
    await storage.init()
    guard = SessionGuard(storage, config)
    await guard.restore()
    api = ApiGateway(config, guard)
    app.state.config = config
    app.state.storage = storage
    app.state.guard = guard
    app.state.api = api
    app.state.shell = None  # mounted lazily by the first guarded request
    who = guard.user.username if guard.user else "(logged out)"
    logging.getLogger(__name__).info("IPS console started (backend %s, session %s)", config.api_base_url, who)
    yield
    if app.state.shell is not None:
        await app.state.shell.unmount()
    await api.close()
    await storage.close()


app = FastAPI(title="IPS Console", lifespan=lifespan)


# Error mapping
def _error_body(exc: DashboardError, **extra) -> dict:
    body = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    body.update(extra)
    return body


@app.exception_handler(AuthError)
async def auth_error(request: Request, exc: AuthError):
    guard: SessionGuard = request.app.state.guard
    decision = guard.require_auth(request.url.path)
    redirect = decision.location if not decision.allowed else None
    if redirect is None and exc.session_expired and guard.pending_redirect is not None:
        redirect = guard.pending_redirect.location
    return JSONResponse(status_code=401, content=_error_body(exc, redirect=redirect))


@app.exception_handler(ValidationError)
async def validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content=_error_body(exc, field=exc.field))


@app.exception_handler(ServerError)
async def server_error(request: Request, exc: ServerError):
    status = exc.status if 400 <= exc.status < 500 else 502
    return JSONResponse(status_code=status, content=_error_body(exc))


@app.exception_handler(NetworkError)
async def network_error(request: Request, exc: NetworkError):
    return JSONResponse(status_code=503, content=_error_body(exc, retryable=exc.retryable))


# Health
@app.get("/health")
async def health():
    return {"status": "ok"}


# API routes
from ips_dashboard.api.routes import router  # noqa: E402

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("ips_dashboard.main:app", host="0.0.0.0", port=9000)
