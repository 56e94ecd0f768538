from enum import Enum


class RouteType(str, Enum):
    NEW_PATIENT = "new_patient"
    EXISTING_PATIENT = "existing_patient"
    SECOND_OPINION = "second_opinion"
    INTERNATIONAL = "international"


class SuggestedRoute(str, Enum):
    IMPLANTS = "implants"
    ORTHODONTICS = "orthodontics"
    CARIES = "caries"
    BRUXISM = "bruxism"


class Severity(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class EvaluationStage(str, Enum):
    STARTED = "started"
    QUESTIONNAIRE_DONE = "questionnaire_done"
    AI_ANALYZED = "ai_analyzed"
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_DONE = "payment_done"
    APPOINTMENT_BOOKED = "appointment_booked"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LeadStage(str, Enum):
    LEAD = "LEAD"
    IA_DONE = "IA_DONE"
    CHECKOUT_CREATED = "CHECKOUT_CREATED"
    PAID = "PAID"
    SCHEDULED = "SCHEDULED"
    CANCELLED = "CANCELLED"


class CheckoutStatus(str, Enum):
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"
