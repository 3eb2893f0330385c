import uuid
from datetime import datetime
from pydantic import BaseModel, Field

class DeliveryRecordOut(BaseModel):
    id: uuid.UUID
    message_id: uuid.UUID
    recipient_id: uuid.UUID
    channel: str
    address: str
    status: str
    provider_message_id: str | None = None
    error_detail: str | None = None
    sent_at: datetime
    delivered_at: datetime | None = None
    class Config: from_attributes = True

class ChatPost(BaseModel):
    event_id: str | None = Field(None, max_length=64)
    recipient_ids: list[uuid.UUID] = Field(default_factory=list)
    text: str = Field(..., min_length=1, max_length=4000)
    subject: str | None = Field(None, max_length=200)

class ChatPostOut(BaseModel):
    message_id: uuid.UUID
    records: list[DeliveryRecordOut]
    skipped: list[uuid.UUID]
    failed: int
