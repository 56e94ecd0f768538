from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON, Integer, Date, TIMESTAMP, Enum as SAEnum
from dental_funnel.core.base import Base, TimestampedMixin
from dental_funnel.modules.evaluations.enums import (
    RouteType, SuggestedRoute, PaymentStatus, EvaluationStage,
)

def enum_column(enum_cls, **kw):
    # stored as VARCHAR holding the enum value
    return mapped_column(
        SAEnum(enum_cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        **kw,
    )

class Evaluation(Base, TimestampedMixin):
    # identity
    name: Mapped[str] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(320), index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    national_id: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    route_type: Mapped[RouteType] = enum_column(RouteType)
    motive: Mapped[str | None] = mapped_column(Text, nullable=True)
    clinical_questionnaire: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    image_references: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # screening output, written together
    suggested_route: Mapped[SuggestedRoute | None] = enum_column(SuggestedRoute, nullable=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_findings: Mapped[list | None] = mapped_column(JSON, nullable=True)
    ai_source: Mapped[str | None] = mapped_column(String(16), nullable=True)  # gateway | fallback

    payment_status: Mapped[PaymentStatus | None] = enum_column(PaymentStatus, nullable=True)
    payment_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    evaluation_stage: Mapped[EvaluationStage] = enum_column(EvaluationStage, default=EvaluationStage.STARTED)

    external_patient_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    appointment_time: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    appointment_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # idempotency key of the creating request (wizard id)
    submission_key: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
