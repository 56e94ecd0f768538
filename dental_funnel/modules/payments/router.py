import json
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import ValidationError

from dental_funnel.api.deps import get_catalog, get_collaborators
from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.db import get_session
from dental_funnel.core.errors import FunnelError
from dental_funnel.modules.payments.schemas import PaymentWebhook, WebhookAck
from dental_funnel.modules.payments.service import PaymentService
from dental_funnel.platform.collaborators import Collaborators

router = APIRouter()
logger = logging.getLogger(__name__)

def svc(s: AsyncSession = Depends(get_session),
        collaborators: Collaborators = Depends(get_collaborators),
        catalog: FunnelCatalog = Depends(get_catalog)) -> PaymentService:
    return PaymentService(s, collaborators, catalog)

@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(request: Request, service: PaymentService = Depends(svc)):
    """
    Mercado Pago notification. Always answers 200 so the gateway does not retry
    notifications we cannot use; failures are logged.
    """
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
        payload = PaymentWebhook.model_validate(body if isinstance(body, dict) else {})
    except (ValueError, ValidationError):
        logger.warning("Unreadable payment webhook body")
        payload = PaymentWebhook()

    topic, payment_id = payload.topic_and_id()
    # legacy notifications carry the reference in the query string
    topic = topic or request.query_params.get("type") or request.query_params.get("topic")
    payment_id = payment_id or request.query_params.get("data.id") or request.query_params.get("id")

    try:
        ev = await service.handle_gateway_event(topic, payment_id)
    except FunnelError as e:
        logger.error(f"Payment webhook for {payment_id} not applied: {e.message}")
        return WebhookAck(applied=False)
    return WebhookAck(applied=ev is not None)
