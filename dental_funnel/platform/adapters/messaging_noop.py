import logging
from dental_funnel.platform.ports.messaging import MessagingPort

log = logging.getLogger("messaging.noop")

class NoopMessaging(MessagingPort):
    channel = "noop"

    async def send_text(self, to: str, body: str) -> str | None:
        log.info(f"[NOOP MESSAGING] to={to} body={body!r}")
        return None
