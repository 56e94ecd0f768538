import uuid
from datetime import date, datetime
from pydantic import BaseModel, Field
from dental_funnel.modules.evaluations.enums import (
    RouteType, SuggestedRoute, PaymentStatus, EvaluationStage, Severity,
)

class IdentityIn(BaseModel):
    name: str
    email: str
    phone: str | None = None
    national_id: str | None = None
    birth_date: date | None = None

class Finding(BaseModel):
    tooth_id: str
    position_x: float = Field(ge=0, le=100)
    position_y: float = Field(ge=0, le=100)
    severity: Severity
    diagnosis: str | None = None
    depth: str | None = None
    treatment: str | None = None

class EvaluationOut(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    phone: str | None = None
    national_id: str | None = None
    route_type: RouteType
    evaluation_stage: EvaluationStage
    suggested_route: SuggestedRoute | None = None
    ai_summary: str | None = None
    ai_findings: list[Finding] | None = None
    payment_status: PaymentStatus | None = None
    payment_amount: int | None = None
    external_patient_id: str | None = None
    appointment_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
