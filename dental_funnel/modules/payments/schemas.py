from pydantic import BaseModel

class WebhookData(BaseModel):
    id: str | int | None = None

class PaymentWebhook(BaseModel):
    # Mercado Pago sends either {"type": "payment", "data": {"id": ...}} or legacy {"topic": ..., "resource": ...}
    type: str | None = None
    topic: str | None = None
    action: str | None = None
    data: WebhookData | None = None
    resource: str | None = None

    def topic_and_id(self) -> tuple[str | None, str | None]:
        topic = self.type or self.topic
        payment_id = None
        if self.data and self.data.id is not None:
            payment_id = str(self.data.id)
        elif self.resource:
            payment_id = self.resource.rstrip("/").rsplit("/", 1)[-1]
        return topic, payment_id

class WebhookAck(BaseModel):
    received: bool = True
    applied: bool = False
