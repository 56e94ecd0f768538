import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, TIMESTAMP, ForeignKey
from dental_funnel.core.base import Base, TimestampedMixin
from dental_funnel.modules.evaluations.enums import LeadStage, RouteType
from dental_funnel.modules.evaluations.models import enum_column

class FunnelLead(Base, TimestampedMixin):
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    national_id: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    route_type: Mapped[RouteType | None] = enum_column(RouteType, nullable=True)
    stage: Mapped[LeadStage] = enum_column(LeadStage, default=LeadStage.LEAD)
    evaluation_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("evaluation.id"), nullable=True, index=True)
    last_contact_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
