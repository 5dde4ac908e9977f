"""
x-fidelity config server.

Serves archetypes, rules and exemptions over HTTP for remote analysis
clients and collects their telemetry events.
"""

import hmac
import logging
import time
import uuid
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from engine.remote import REQUEST_ID_HEADER, SHARED_SECRET_HEADER, is_valid_name
from engine.schema import ENGINE_VERSION, PROTOCOL_VERSION

from .models import ErrorResponse, HealthResponse, TelemetryAck, TelemetryEvent
from .settings import settings
from .storage import ConfigStore, get_storage


logger = logging.getLogger(__name__)

app = FastAPI(title="x-fidelity config server", version=ENGINE_VERSION)

# No origins configured means localhost only
allowed_origins = settings.allowed_origins if settings.allowed_origins else [
    "http://localhost",
    "http://127.0.0.1",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", REQUEST_ID_HEADER, SHARED_SECRET_HEADER],
)


def _get_or_create_request_id(request: Request) -> str:
    """Get request ID from header or generate one."""
    return request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Echo or assign X-Request-Id on every response."""

    async def dispatch(self, request: Request, call_next):
        request_id = _get_or_create_request_id(request)
        request.state.request_id = request_id
        start_time = time.time()

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info("[%s] %s %s -> %d (%.1fms)", request_id, request.method,
                    request.url.path, response.status_code, elapsed_ms)
        return response


app.add_middleware(RequestIdMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    request_id = getattr(request.state, "request_id", None)
    body = ErrorResponse(detail=str(exc.detail), requestId=request_id)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(),
                        headers=getattr(exc, "headers", None))


def _require_name(name: str, kind: str) -> None:
    # Invalid names never reach the filesystem
    if not is_valid_name(name):
        raise HTTPException(status_code=404, detail=f"{kind} not found")


def require_shared_secret(request: Request) -> None:
    """Reject the request unless it carries the configured shared secret."""
    expected = settings.shared_secret
    if not expected:
        return
    provided = request.headers.get(SHARED_SECRET_HEADER, "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("[%s] Rejected request to %s: bad shared secret",
                       getattr(request.state, "request_id", "-"), request.url.path)
        raise HTTPException(status_code=401, detail="Invalid or missing shared secret")


@app.get("/health", response_model=HealthResponse)
def health(store: ConfigStore = Depends(get_storage)):
    return HealthResponse(
        version=ENGINE_VERSION,
        protocolVersion=PROTOCOL_VERSION,
        configSource=store.source,
        timestamp=int(time.time()),
    )


@app.get("/archetypes/{name}")
def get_archetype(name: str, store: ConfigStore = Depends(get_storage)) -> Dict[str, Any]:
    _require_name(name, "Archetype")
    config = store.get_archetype(name)
    if config is None:
        raise HTTPException(status_code=404, detail="Archetype not found")
    return config


@app.get("/archetypes/{name}/rules")
def list_rules(name: str, store: ConfigStore = Depends(get_storage)) -> List[Dict[str, Any]]:
    _require_name(name, "Archetype")
    rules = store.list_rules(name)
    if rules is None:
        raise HTTPException(status_code=404, detail="Archetype not found")
    return rules


@app.get("/archetypes/{name}/rules/{rule}")
def get_rule(name: str, rule: str, store: ConfigStore = Depends(get_storage)) -> Dict[str, Any]:
    _require_name(name, "Archetype")
    _require_name(rule, "Rule")
    payload = store.get_rule(name, rule)
    if payload is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return payload


@app.get("/archetypes/{name}/exemptions", dependencies=[Depends(require_shared_secret)])
def get_exemptions(name: str, store: ConfigStore = Depends(get_storage)) -> List[Dict[str, Any]]:
    _require_name(name, "Archetype")
    return store.get_exemptions(name)


@app.post("/telemetry", response_model=TelemetryAck, dependencies=[Depends(require_shared_secret)])
def post_telemetry(event: TelemetryEvent, request: Request,
                   store: ConfigStore = Depends(get_storage)):
    request_id = request.state.request_id
    record = event.model_dump()
    record["requestId"] = request_id
    store.record_event(record)
    logger.debug("[%s] telemetry %s", request_id, event.eventType)
    return TelemetryAck(requestId=request_id)


def cli():
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
