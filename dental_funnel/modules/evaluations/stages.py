from dental_funnel.core.errors import StageTransitionError
from dental_funnel.modules.evaluations.enums import EvaluationStage, LeadStage

FORWARD_ORDER = [
    EvaluationStage.STARTED,
    EvaluationStage.QUESTIONNAIRE_DONE,
    EvaluationStage.AI_ANALYZED,
    EvaluationStage.PAYMENT_PENDING,
    EvaluationStage.PAYMENT_DONE,
    EvaluationStage.APPOINTMENT_BOOKED,
    EvaluationStage.COMPLETED,
]

TERMINAL = {EvaluationStage.COMPLETED, EvaluationStage.CANCELLED}

# lead funnel stage mirrored for each evaluation stage
LEAD_STAGE_FOR = {
    EvaluationStage.STARTED: LeadStage.LEAD,
    EvaluationStage.QUESTIONNAIRE_DONE: LeadStage.LEAD,
    EvaluationStage.AI_ANALYZED: LeadStage.IA_DONE,
    EvaluationStage.PAYMENT_PENDING: LeadStage.CHECKOUT_CREATED,
    EvaluationStage.PAYMENT_DONE: LeadStage.PAID,
    EvaluationStage.APPOINTMENT_BOOKED: LeadStage.SCHEDULED,
    EvaluationStage.COMPLETED: LeadStage.SCHEDULED,
    EvaluationStage.CANCELLED: LeadStage.CANCELLED,
}


def rank(stage: EvaluationStage) -> int:
    return FORWARD_ORDER.index(stage)


def can_advance(current: EvaluationStage, target: EvaluationStage) -> bool:
    """Forward moves (skips allowed) and cancellation from any non-terminal stage."""
    if current in TERMINAL:
        return False
    if target == EvaluationStage.CANCELLED:
        return True
    return rank(target) > rank(current)


def check_transition(current: EvaluationStage, target: EvaluationStage) -> None:
    if not can_advance(current, target):
        raise StageTransitionError(f"{current.value} -> {target.value}")
