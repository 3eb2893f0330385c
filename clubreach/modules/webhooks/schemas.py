from pydantic import BaseModel, Field
from clubreach.core.channels import CHANNEL_PATTERN

class InboundReply(BaseModel):
    """Provider-neutral inbound reply, for gateways without a dedicated endpoint."""
    channel: str = Field(..., pattern=CHANNEL_PATTERN)
    address: str = Field(..., min_length=1, max_length=255)
    text: str = ""
    provider_token: str = Field(..., min_length=1, max_length=512)

class DeliveryStatusUpdate(BaseModel):
    provider_message_id: str = Field(..., min_length=1, max_length=128)
    status: str
    error_detail: str | None = None

class InboundResult(BaseModel):
    matched: bool
    response: str | None = None

class DeliveryStatusResult(BaseModel):
    matched: bool
    status: str | None = None
