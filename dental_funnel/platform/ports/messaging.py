from typing import Protocol, runtime_checkable

@runtime_checkable
class MessagingPort(Protocol):
    channel: str

    async def send_text(self, to: str, body: str) -> str | None:
        """Send a short text; returns the provider message id when there is one."""
        ...
