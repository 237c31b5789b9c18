"""Pydantic request/response schemas for the FastAPI backend."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---- Session channel (peer <-> hub) ----

class WireMessage(BaseModel):
    """Envelope of every session-channel frame."""
    type: str
    data: Any = None


class ComponentInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str = ""
    label: str = ""
    parent: Optional[str] = None
    actions: list[str] = Field(default_factory=list)
    currentState: str = "visible"
    description: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UIStatePayload(BaseModel):
    components: list[ComponentInfo] = Field(default_factory=list)
    hierarchy: dict[str, list[str]] = Field(default_factory=dict)
    currentlyVisible: list[str] = Field(default_factory=list)


class ActionRequestPayload(BaseModel):
    action: str
    params: dict[str, Any] = Field(default_factory=dict)
    requestId: str


# ---- Requests ----

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    # Emptiness is checked by the route so the client gets a 400, not a 422
    messages: list[ChatMessage] = Field(default_factory=list)
    sessionId: Optional[str] = Field(default=None, description="Client session id, used for logging only")


# ---- Responses ----

class ChatResponse(BaseModel):
    message: str
    error: Optional[str] = None


class PeerStatus(BaseModel):
    connected: bool = False
    clientCount: int = 0


class HealthStatus(BaseModel):
    status: str = "ok"
    websocket: PeerStatus = Field(default_factory=PeerStatus)
    timestamp: int = 0
    uptime_seconds: float = 0.0
    api_key_configured: bool = False


class ToolResult(BaseModel):
    success: bool
    message: str = ""
    data: Any = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
