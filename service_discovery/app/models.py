"""Request and response models for the discovery endpoint."""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class DiscoveryParams(BaseModel):
    """Capability parameters of a turn."""
    model_config = ConfigDict(extra="allow")

    query: Optional[str] = Field(None, description="Search query; defaults to the message")
    segment: Optional[str] = Field(None, description="Industry segment filter")
    industry: Optional[str] = Field(None, description="Alias of segment")
    embedding: Optional[List[float]] = Field(None, description="Precomputed query embedding")
    membership_id: Optional[str] = Field(None, description="Member to look up")
    business_name: Optional[str] = Field(None, description="Business name to look up")
    limit: Optional[int] = Field(None, description="Maximum number of results")
    offset: Optional[int] = Field(None, description="Listing offset")


class DiscoveryRequest(BaseModel):
    """One conversational turn."""
    intent: Optional[str] = Field(None, description="Explicit intent; overrides the message")
    message: Optional[str] = Field(None, description="Free-text user message")
    phone: Optional[str] = Field(None, description="Caller phone number, or 'system'")
    user_id: Optional[str] = Field(None, description="Caller user id")
    group_id: Optional[str] = Field(None, description="Business group (scope) id")
    channel: Literal["chat", "whatsapp", "api"] = Field("chat", description="Inbound channel")
    session_action: Literal["start", "continue", "end"] = Field("continue", description="Session action")
    params: DiscoveryParams = Field(default_factory=DiscoveryParams)


# Omitted from the payload when unset.
OPTIONAL_FIELDS = ("total_count", "query", "filters", "error", "template_name", "template_params")


class DiscoveryResponse(BaseModel):
    """Uniform response envelope for every turn, including failures."""
    success: bool
    intent: str
    response_type: str
    detail_level: str
    message: str
    results: List[Dict[str, Any]] = Field(default_factory=list)
    results_count: int = 0
    total_count: Optional[int] = None
    query: Optional[str] = None
    filters: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    is_new_session: bool = False
    is_member: bool = False
    group_id: str = ""
    group_name: str = ""
    channel: str = "chat"
    from_cache: bool = False
    duration_ms: int = 0
    error: Optional[str] = None
    template_name: Optional[str] = None
    template_params: Optional[List[str]] = None

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump()
        for key in OPTIONAL_FIELDS:
            if data.get(key) is None:
                data.pop(key, None)
        return data
