"""FastAPI bridge exposing an Analytics instance to non-Python UI code."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .analytics import Analytics

ParamInput = Union[bool, int, float, str, None]


class TrackEventPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)
    params: Dict[str, ParamInput] = Field(default_factory=dict)


class DebugModePayload(BaseModel):
    enabled: bool


class EnabledPayload(BaseModel):
    enabled: bool


class UserPropertyPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=40)
    value: ParamInput = None


class StatusResponse(BaseModel):
    state: str
    initialized: bool
    environmentValid: bool
    queueSize: int
    maxQueueSize: int
    isProcessing: bool
    batchSize: int
    droppedCount: int
    clientId: Optional[str] = None
    sessionId: Optional[str] = None
    debug: bool = False
    enabled: bool = True


class DebugLogResponse(BaseModel):
    entries: List[str]


def create_app(analytics: Analytics) -> FastAPI:
    app = FastAPI(
        title="Analytics Pipeline API",
        version="1.0.0",
        description="HTTP surface over the client telemetry pipeline.",
    )

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/events", status_code=202)
    def track_event(payload: TrackEventPayload) -> Dict[str, str]:
        if not analytics.track_event(payload.name, payload.params):
            raise HTTPException(
                status_code=422,
                detail=f"event '{payload.name}' rejected (pipeline {analytics.state.value})",
            )
        return {"status": "accepted"}

    @app.post("/flush")
    def flush() -> Dict[str, str]:
        if not analytics.flush():
            raise HTTPException(status_code=503, detail="batch not delivered")
        return {"status": "flushed"}

    @app.get("/status", response_model=StatusResponse)
    def status() -> Dict[str, Any]:
        return analytics.get_status().to_dict()

    @app.post("/debug")
    def set_debug(payload: DebugModePayload) -> Dict[str, bool]:
        analytics.set_debug_mode(payload.enabled)
        return {"debug": payload.enabled}

    @app.post("/enabled")
    def set_enabled(payload: EnabledPayload) -> Dict[str, bool]:
        analytics.set_enabled(payload.enabled)
        return {"enabled": analytics.enabled}

    @app.get("/user-properties")
    def user_properties() -> Dict[str, Any]:
        return analytics.get_user_properties()

    @app.post("/user-properties")
    def set_user_property(payload: UserPropertyPayload) -> Dict[str, Any]:
        if not analytics.set_user_property(payload.name, payload.value):
            raise HTTPException(status_code=422, detail=f"user property '{payload.name}' rejected")
        return analytics.get_user_properties()

    @app.get("/debug/logs", response_model=DebugLogResponse)
    def debug_logs() -> DebugLogResponse:
        return DebugLogResponse(entries=analytics.debug_entries())

    return app
