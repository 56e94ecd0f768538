import uuid
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from dental_funnel.modules.evaluations.enums import RouteType


class WizardStage(str, Enum):
    ENTRY = "entry"
    EXISTING_PATIENT_LOGIN = "existing_patient_login"
    CONTROL_ONLY = "control_only"
    TREATMENT_REQUEST = "treatment_request"
    QUESTIONNAIRE = "questionnaire"
    AI_SCREENING = "ai_screening"
    PATH_EXPLANATION = "path_explanation"
    PREMIUM_EVALUATION = "premium_evaluation"
    COMPLETE = "complete"


class PremiumStep(str, Enum):
    CONFIRM = "confirm"
    PAYMENT = "payment"
    SCHEDULE = "schedule"


def _new_key() -> str:
    return uuid.uuid4().hex


class WizardState(BaseModel):
    """Everything needed to rebuild the orchestrator for the next request."""
    wizard_id: str = Field(default_factory=_new_key)
    # idempotency key for the evaluation this run creates; rotated by reset()
    submission_key: str = Field(default_factory=_new_key)
    stage: WizardStage = WizardStage.ENTRY
    premium_step: PremiumStep | None = None
    route_type: RouteType | None = None
    evaluation_id: uuid.UUID | None = None
    data: dict = Field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None
    error_expires_at: datetime | None = None


class WizardSnapshot(BaseModel):
    wizard_id: str
    stage: WizardStage
    premium_step: PremiumStep | None = None
    route_type: RouteType | None = None
    evaluation_id: uuid.UUID | None = None
    data: dict = Field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None
