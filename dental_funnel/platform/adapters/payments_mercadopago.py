import logging
from datetime import datetime, timedelta, timezone
import httpx

from dental_funnel.core.config import settings
from dental_funnel.core.errors import AdapterFailed, ConfigurationError
from dental_funnel.modules.evaluations.enums import PaymentStatus
from dental_funnel.platform.ports.payments import (
    PaymentGatewayPort, CheckoutRequest, CheckoutResult, PaymentNotification,
)

log = logging.getLogger(__name__)

STATUS_MAP = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.REJECTED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}

def map_status(raw: str | None) -> PaymentStatus:
    return STATUS_MAP.get((raw or "").lower(), PaymentStatus.PENDING)

def _json_object(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise AdapterFailed(f"Payment gateway returned a non-JSON body ({resp.status_code})") from e
    if not isinstance(data, dict):
        raise AdapterFailed("Payment gateway returned an unexpected body")
    return data

def _split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.strip().split(" ", 1)
    return parts[0], (parts[1] if len(parts) > 1 else "")


class MercadoPagoGateway(PaymentGatewayPort):
    def __init__(self, access_token: str | None = None, api_url: str | None = None,
                 site_url: str | None = None, webhook_url: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.access_token = access_token or settings.MERCADO_PAGO_ACCESS_TOKEN
        self.api_url = (api_url or settings.MERCADO_PAGO_API_URL).rstrip("/")
        self.site_url = (site_url or settings.PUBLIC_SITE_URL).rstrip("/")
        self.webhook_url = webhook_url or settings.PAYMENT_WEBHOOK_URL
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.access_token:
            raise ConfigurationError("Payment service not configured")
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
            timeout=20.0,
            transport=self.transport,
        )

    def _back_url(self, outcome: str, evaluation_id: str) -> str:
        return f"{self.site_url}/?payment={outcome}&evaluation_id={evaluation_id}"

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        first, last = _split_name(request.payer_name)
        expires = datetime.now(timezone.utc) + timedelta(hours=settings.CHECKOUT_EXPIRATION_HOURS)
        preference = {
            "items": [{
                "id": f"eval-{request.evaluation_id}",
                "title": request.title,
                "description": request.description or request.title,
                "quantity": 1,
                "currency_id": request.currency,
                "unit_price": request.amount,
            }],
            "payer": {"name": first, "surname": last, "email": request.payer_email},
            "back_urls": {
                "success": self._back_url("success", request.evaluation_id),
                "failure": self._back_url("failure", request.evaluation_id),
                "pending": self._back_url("pending", request.evaluation_id),
            },
            "auto_return": "approved",
            "external_reference": request.evaluation_id,
            "statement_descriptor": settings.STATEMENT_DESCRIPTOR,
            "expires": True,
            "expiration_date_to": expires.isoformat(),
        }
        if self.webhook_url:
            preference["notification_url"] = self.webhook_url

        try:
            async with self._client() as client:
                resp = await client.post("/checkout/preferences", json=preference)
        except httpx.HTTPError as e:
            raise AdapterFailed(f"Payment gateway unreachable: {e}") from e
        if resp.status_code >= 400:
            log.error("Mercado Pago preference error %s: %s", resp.status_code, resp.text[:500])
            raise AdapterFailed(f"Payment gateway error {resp.status_code}")
        data = _json_object(resp)
        url = data.get("init_point") or data.get("sandbox_init_point")
        if not data.get("id") or not url:
            raise AdapterFailed("Payment gateway returned no checkout URL")
        log.info("Created Mercado Pago preference %s for evaluation %s", data["id"], request.evaluation_id)
        return CheckoutResult(external_id=str(data["id"]), redirect_url=url)

    async def fetch_payment(self, payment_id: str) -> PaymentNotification:
        try:
            async with self._client() as client:
                resp = await client.get(f"/v1/payments/{payment_id}")
        except httpx.HTTPError as e:
            raise AdapterFailed(f"Payment gateway unreachable: {e}") from e
        if resp.status_code >= 400:
            raise AdapterFailed(f"Payment lookup failed with {resp.status_code}")
        data = _json_object(resp)
        return PaymentNotification(
            external_payment_id=str(data.get("id", payment_id)),
            status=map_status(data.get("status")),
            amount=data.get("transaction_amount"),
            external_reference=data.get("external_reference"),
            raw_status=data.get("status"),
        )
