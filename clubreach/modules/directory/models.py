from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, JSON
from clubreach.core.base import Base, TimestampedTenantMixin

class Contact(Base, TimestampedTenantMixin):
    __tablename__ = "contact"
    display_name: Mapped[str] = mapped_column(String(160), index=True)
    role: Mapped[str] = mapped_column(String(32), default="coach")  # coach | player | parent | staff
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    chat_handle: Mapped[str | None] = mapped_column(String(128), nullable=True)
    channel_preference: Mapped[str] = mapped_column(String(16), default="email")  # sms | email | chat
    active: Mapped[bool] = mapped_column(default=True)

    # coach profile used by the match scorer
    specialties: Mapped[list] = mapped_column(JSON, default=list)
    location: Mapped[str | None] = mapped_column(String(160), nullable=True)
    availability: Mapped[list] = mapped_column(JSON, default=list)  # [{"start": iso, "end": iso}]
    ratings: Mapped[list] = mapped_column(JSON, default=list)
