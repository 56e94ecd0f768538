from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON
from dental_funnel.core.base import Base, TimestampedMixin

class OutboundMessage(Base, TimestampedMixin):
    channel: Mapped[str] = mapped_column(String(16))  # whatsapp
    to: Mapped[str] = mapped_column(String(128))
    body: Mapped[str] = mapped_column(Text)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="queued")  # queued | sent | failed
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
