from typing import Protocol, runtime_checkable
from pydantic import BaseModel
from dental_funnel.modules.evaluations.enums import PaymentStatus

class CheckoutRequest(BaseModel):
    evaluation_id: str
    amount: int
    currency: str = "CLP"
    title: str
    description: str | None = None
    payer_email: str
    payer_name: str
    payer_phone: str | None = None

class CheckoutResult(BaseModel):
    external_id: str
    redirect_url: str

class PaymentNotification(BaseModel):
    external_payment_id: str
    status: PaymentStatus
    amount: float | None = None
    external_reference: str | None = None
    raw_status: str | None = None

@runtime_checkable
class PaymentGatewayPort(Protocol):
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult: ...
    async def fetch_payment(self, payment_id: str) -> PaymentNotification: ...
