import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, Integer, TIMESTAMP, JSON, UniqueConstraint
from clubreach.core.base import Base, TimestampedTenantMixin

class InvitationState(str, Enum):
    PENDING = "pending"
    REMINDED = "reminded"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    ESCALATED = "escalated"

TERMINAL_STATES = frozenset({InvitationState.ACCEPTED, InvitationState.DECLINED, InvitationState.ESCALATED})
OPEN_STATES = (InvitationState.PENDING.value, InvitationState.REMINDED.value)

def is_terminal(state: str) -> bool:
    return InvitationState(state) in TERMINAL_STATES

class OutreachCampaign(Base, TimestampedTenantMixin):
    event_id: Mapped[str] = mapped_column(String(64), index=True)
    reminder_offsets_days: Mapped[list] = mapped_column(JSON)  # strictly increasing
    handoff_after_days: Mapped[int] = mapped_column(Integer)
    templates: Mapped[dict] = mapped_column(JSON)  # {"initial": ..., "reminder": ...}
    context: Mapped[dict] = mapped_column(JSON, default=dict)  # event fields for rendering
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    # closed is derived from invitation states, never stored

class Invitation(Base, TimestampedTenantMixin):
    __table_args__ = (UniqueConstraint("campaign_id", "recipient_id", name="uq_invitation_campaign_recipient"),)

    campaign_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("outreachcampaign.id"), index=True)
    recipient_id: Mapped[uuid.UUID] = mapped_column(index=True)
    # directory snapshot taken when the campaign was created
    recipient_name: Mapped[str] = mapped_column(String(160))
    channel: Mapped[str] = mapped_column(String(16))
    address: Mapped[str] = mapped_column(String(255), index=True)

    state: Mapped[str] = mapped_column(String(16), default=InvitationState.PENDING.value)
    reminders_sent: Mapped[int] = mapped_column(Integer, default=0)
    invited_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    last_action_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    response_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

class Acknowledgement(Base, TimestampedTenantMixin):
    # provider message ids, signed links and api tokens each name one reply
    __table_args__ = (
        UniqueConstraint("campaign_id", "recipient_id", name="uq_ack_campaign_recipient"),
        UniqueConstraint("org_id", "token", name="uq_ack_org_token"),
    )

    campaign_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("outreachcampaign.id"), index=True)
    recipient_id: Mapped[uuid.UUID] = mapped_column()
    token: Mapped[str] = mapped_column(String(512))
    response: Mapped[str] = mapped_column(String(32))  # accept | decline | unrecognized
    acknowledged_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
