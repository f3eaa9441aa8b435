from pydantic import Field
from typing import List, Optional, Literal

from models.vehicle import CamelModel, VehicleRecord, utc_now_iso


MAX_MESSAGE_LENGTH = 1000


class Message(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)


class ChatSession(CamelModel):
    session_id: str
    messages: List[Message] = Field(default_factory=list)
    vehicle_data: Optional[VehicleRecord] = None


class ChatRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    session_id: Optional[str] = None


class ChatResponse(CamelModel):
    session_id: str
    message: str
    timestamp: str
    vehicle_data: Optional[VehicleRecord] = None
