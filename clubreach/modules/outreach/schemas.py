import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from clubreach.core.config import settings

class CampaignTemplates(BaseModel):
    initial: str = settings.OUTREACH_INITIAL_TEMPLATE
    reminder: str = settings.OUTREACH_REMINDER_TEMPLATE

class CampaignConfig(BaseModel):
    reminder_offsets_days: list[int] = Field(default_factory=lambda: list(settings.OUTREACH_REMINDER_OFFSETS_DAYS))
    handoff_after_days: int = settings.OUTREACH_HANDOFF_AFTER_DAYS
    templates: CampaignTemplates = Field(default_factory=CampaignTemplates)

class InitiateOutreach(BaseModel):
    event_id: str = Field(..., min_length=1, max_length=64)
    recipient_ids: list[uuid.UUID] = Field(..., min_length=1)
    config: CampaignConfig = Field(default_factory=CampaignConfig)
    # event fields referenced by the templates: eventName, eventDate, eventLocation, eventType, ...
    context: dict[str, str] = Field(default_factory=dict)

class DeliveryFailureOut(BaseModel):
    recipient_id: uuid.UUID
    detail: str

class InitiateOut(BaseModel):
    campaign_id: uuid.UUID
    invited: int
    skipped: list[uuid.UUID]
    sent: int
    failures: list[DeliveryFailureOut]
    partial: bool

class SubmitResponse(BaseModel):
    event_id: str
    recipient_id: uuid.UUID
    response: str = Field(..., pattern="^(accept|decline)$")
    detail: str | None = None

class AcknowledgementOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    recipient_id: uuid.UUID
    response: str
    acknowledged_at: datetime
    class Config: from_attributes = True

class InvitationStatusOut(BaseModel):
    recipient_id: uuid.UUID
    recipient_name: str
    channel: str
    channel_label: str
    state: str
    reminders_sent: int
    last_action_at: datetime
    response_detail: str | None
    failed_deliveries: int

class CampaignStatusOut(BaseModel):
    campaign_id: uuid.UUID
    event_id: str
    created_at: datetime
    closed: bool
    invitations: list[InvitationStatusOut]

class EscalateRequest(BaseModel):
    recipient_id: uuid.UUID | None = None
    reason: str | None = None

class EscalateOut(BaseModel):
    escalated: int

class TickOut(BaseModel):
    evaluated: int
    reminded: int
    escalated: int
    errors: int
    skipped: bool
