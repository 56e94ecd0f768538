import asyncio
import uuid


class PaymentSignalHub:
    """
    In-process "payment settled" channel per evaluation. The webhook handler notifies,
    the payment-return check waits on it between store reads.
    """

    def __init__(self):
        self._events: dict[str, asyncio.Event] = {}
        self._waiters: dict[str, int] = {}

    def notify(self, evaluation_id: uuid.UUID | str) -> None:
        event = self._events.get(str(evaluation_id))
        if event:
            event.set()

    async def wait(self, evaluation_id: uuid.UUID | str, timeout: float) -> bool:
        key = str(evaluation_id)
        event = self._events.setdefault(key, asyncio.Event())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            await asyncio.wait_for(event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            # last waiter out drops the entry, settled or not
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                self._events.pop(key, None)


payment_signals = PaymentSignalHub()
