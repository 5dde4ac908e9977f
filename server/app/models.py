from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


# ---- Telemetry ----

class TelemetryEvent(BaseModel):
    """One event posted by an analysis client."""
    eventType: str = Field(min_length=1)
    metadata: Dict[str, Any] = {}
    timestamp: Optional[str] = None


class TelemetryAck(BaseModel):
    status: Literal["ok"] = "ok"
    requestId: str


# ---- Errors and health ----

class ErrorResponse(BaseModel):
    detail: str
    requestId: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    version: str
    protocolVersion: str
    configSource: Literal["directory", "builtin"]
    timestamp: int
