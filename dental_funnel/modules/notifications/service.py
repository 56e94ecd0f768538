import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from dental_funnel.core.detached import DetachedTaskRunner
from dental_funnel.core.errors import FunnelError
from dental_funnel.modules.notifications.models import OutboundMessage
from dental_funnel.modules.notifications.templates import render, render_redacted
from dental_funnel.platform.ports.messaging import MessagingPort

logger = logging.getLogger(__name__)

class NotificationsService:
    def __init__(self, s: AsyncSession, messaging: MessagingPort):
        self.s = s
        self.messaging = messaging

    async def send(self, *, to: str, body: str, meta: dict | None = None, stored_body: str | None = None) -> OutboundMessage:
        """Send and record the attempt. Delivery failures are recorded, not raised.

        `stored_body` replaces `body` in the recorded row when the message carries a secret.
        """
        m = OutboundMessage(channel=getattr(self.messaging, "channel", "whatsapp"), to=to, body=stored_body or body, meta=meta or {}, status="queued")
        self.s.add(m); await self.s.flush()
        try:
            provider_id = await self.messaging.send_text(to, body)
            m.status = "sent"
            if provider_id:
                m.meta = {**(m.meta or {}), "provider_message_id": provider_id}
        except FunnelError as e:
            logger.warning(f"Message to {to} failed: {e.message}")
            m.status = "failed"
            m.error = e.message
        await self.s.commit()
        return m

    async def send_template(self, *, to: str, template_name: str, variables: dict, meta: dict | None = None) -> OutboundMessage:
        return await self.send(
            to=to,
            body=render(template_name, **variables),
            stored_body=render_redacted(template_name, **variables),
            meta={"template": template_name, **(meta or {})},
        )


def dispatch_message(runner: DetachedTaskRunner, session_factory: async_sessionmaker, messaging: MessagingPort,
                     *, name: str, to: str | None, template_name: str, variables: dict, meta: dict | None = None):
    """Fire-and-forget templated message on its own DB session."""
    if not to:
        logger.info(f"Skipping {template_name} message ({name}): no phone on record")
        return None

    async def _send():
        async with session_factory() as s:
            await NotificationsService(s, messaging).send_template(
                to=to, template_name=template_name, variables=variables, meta=meta,
            )

    return runner.spawn(name, _send)
