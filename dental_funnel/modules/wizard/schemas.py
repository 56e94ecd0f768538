import uuid
from datetime import date
from typing import Literal
from pydantic import BaseModel, Base64Bytes, Field
from dental_funnel.modules.evaluations.enums import RouteType

class IntakeImage(BaseModel):
    filename: str
    content_type: str = "image/jpeg"
    content: Base64Bytes

class QuestionnaireSubmission(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    national_id: str | None = None
    birth_date: date | None = None
    motive: str = ""
    questionnaire: dict = Field(default_factory=dict)
    images: list[IntakeImage] = Field(default_factory=list)

class RouteIn(BaseModel):
    route_type: RouteType

class ExistingPatientLoginIn(BaseModel):
    national_id: str
    email: str

class ExistingPatientPathIn(BaseModel):
    choice: Literal["control", "treatment"]

class TreatmentRequestIn(BaseModel):
    motive: str

class PaymentReturnIn(BaseModel):
    outcome: Literal["success", "failure", "pending"] | None = None

class ScheduleIn(BaseModel):
    date: str
    time: str

class ResumeIn(BaseModel):
    evaluation_id: uuid.UUID
    wizard_id: str | None = None
