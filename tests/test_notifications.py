"""
Message templates and the recorded outbound messages.
"""
import pytest

from dental_funnel.modules.notifications.service import NotificationsService
from dental_funnel.modules.notifications.templates import REDACTED, render, render_redacted
from fakes import FakeMessaging


class TestTemplates:

    def test_render_accepts_name_variable(self):
        """Every template greets the patient by `name`."""
        text = render("appointment_booked", name="Ana", date="09/03/2026", time="10:00")
        assert text.startswith("¡Hola Ana!")
        assert "09/03/2026" in text

    def test_amount_rendered_with_currency_sign(self):
        text = render("payment_approved", name="Ana", amount="49.990", currency="CLP")
        assert "$49.990 CLP" in text

    def test_redacted_masks_only_secrets(self):
        text = render_redacted("otp_code", name="Ana", code="123456", minutes=10)
        assert "123456" not in text
        assert REDACTED in text
        assert "Ana" in text

    def test_redacted_is_plain_render_without_secrets(self):
        variables = dict(name="Ana", amount="49.990", currency="CLP")
        assert render_redacted("payment_approved", **variables) == render("payment_approved", **variables)


class TestSend:

    @pytest.mark.asyncio
    async def test_template_sent_and_recorded(self, session):
        messaging = FakeMessaging()
        m = await NotificationsService(session, messaging).send_template(
            to="+56911111111", template_name="otp_code", variables={"name": "Ana", "code": "654321", "minutes": 10},
        )
        assert "654321" in messaging.sent[0][1]
        assert "654321" not in m.body
        assert m.status == "sent"
        assert m.meta["template"] == "otp_code"
        assert m.meta["provider_message_id"] == "wamid.1"

    @pytest.mark.asyncio
    async def test_delivery_failure_recorded(self, session):
        m = await NotificationsService(session, FakeMessaging(fail=True)).send(to="+56911111111", body="hola")
        assert m.status == "failed"
        assert m.error == "whatsapp down"
