import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, TIMESTAMP, UniqueConstraint
from clubreach.core.base import Base, TimestampedTenantMixin

# DeliveryRecord.status
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"

class Message(Base, TimestampedTenantMixin):
    # immutable once created; rows are only ever appended
    event_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("outreachcampaign.id"), nullable=True, index=True)
    template_id: Mapped[str] = mapped_column(String(32))  # initial | reminder | chat
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rendered_text: Mapped[str] = mapped_column(Text)

class DeliveryRecord(Base, TimestampedTenantMixin):
    __table_args__ = (UniqueConstraint("message_id", "recipient_id", name="uq_delivery_message_recipient"),)

    message_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("message.id"), index=True)
    recipient_id: Mapped[uuid.UUID] = mapped_column(index=True)
    channel: Mapped[str] = mapped_column(String(16))  # sms | email | chat
    address: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), default=STATUS_SENT)  # sent | delivered | failed
    provider_message_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
