import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, ForeignKey
from dental_funnel.core.base import Base, TimestampedMixin
from dental_funnel.modules.evaluations.enums import CheckoutStatus
from dental_funnel.modules.evaluations.models import enum_column

class CheckoutSession(Base, TimestampedMixin):
    evaluation_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("evaluation.id"), index=True)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # gateway preference id
    redirect_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(8), default="CLP")
    status: Mapped[CheckoutStatus] = enum_column(CheckoutStatus, default=CheckoutStatus.OPEN)
    # equals evaluation_id while open, NULL otherwise; unique => one open session per evaluation
    open_key: Mapped[uuid.UUID | None] = mapped_column(nullable=True, unique=True)
