from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class HistoryMessage(BaseModel):
    """One prior chat turn supplied by the client."""
    role: str = "user"
    content: str = ""


class ChatMeta(BaseModel):
    """Optional client metadata sent alongside a chat message."""
    sessionId: Optional[str] = None
    buyerName: Optional[str] = None


class ChatRequest(BaseModel):
    """Request payload for the chat API."""
    message: str = ""
    history: List[HistoryMessage] = Field(default_factory=list)
    meta: ChatMeta = Field(default_factory=ChatMeta)


class NormalizedItem(BaseModel):
    """Client-facing artwork view with the turn's discount applied."""
    id: str
    title: str
    artist: str
    slug: str
    image: str = ""
    short_spec: str = ""
    price_original: float
    discount_percent: int = 0
    price_final: int
    url: str
    checkout_url: str


class ChatResponseMeta(BaseModel):
    buyerName: Optional[str] = None
    sessionId: str
    coupon: Optional[str] = None


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    reply: str
    items: List[NormalizedItem] = Field(default_factory=list)
    meta: ChatResponseMeta


class ProbeResult(BaseModel):
    """Reachability of the external model API."""
    reachable: bool
    status: Optional[int] = None
