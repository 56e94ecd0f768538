import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, ForeignKey
from dental_funnel.core.base import Base, TimestampedMixin

class OneTimeCode(Base, TimestampedMixin):
    lead_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("funnellead.id"), index=True)
    code_hash: Mapped[str] = mapped_column(String(64))  # sha256 hex
    channel: Mapped[str] = mapped_column(String(16), default="whatsapp")
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True))
    used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    superseded: Mapped[bool] = mapped_column(default=False)
