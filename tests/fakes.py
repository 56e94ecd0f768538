"""In-memory stand-ins for the external collaborators."""
from dental_funnel.core.errors import AdapterFailed, AdapterUnavailable
from dental_funnel.platform.ports.payments import CheckoutResult, PaymentNotification
from dental_funnel.platform.ports.scheduling import Professional, SlotDay


class FakeScreening:
    def __init__(self, output: str | None = None, error: Exception | None = None):
        self.output = output
        # no output configured behaves like an unconfigured gateway
        if output is None and error is None:
            error = AdapterUnavailable("gateway not configured")
        self.error = error
        self.calls = []

    async def analyze(self, request):
        self.calls.append(request)
        if self.error:
            raise self.error
        return self.output


class FakePayments:
    def __init__(self):
        self.created = []
        self.payments: dict[str, PaymentNotification] = {}
        self.fail_with: Exception | None = None

    async def create_checkout(self, request):
        if self.fail_with:
            raise self.fail_with
        self.created.append(request)
        n = len(self.created)
        return CheckoutResult(external_id=f"pref-{n}", redirect_url=f"https://pay.example/checkout/pref-{n}")

    async def fetch_payment(self, payment_id: str) -> PaymentNotification:
        if payment_id not in self.payments:
            raise AdapterFailed(f"payment {payment_id} not found")
        return self.payments[payment_id]


class FakeScheduling:
    def __init__(self):
        self.patients: dict[str, str] = {}  # national id or email -> patient id
        self.created = []
        self.booked = []
        self.slots: list[SlotDay] = []
        self.professionals = [Professional(id="7", name="Dra. Miró")]
        self.unavailable = False
        self.book_error: Exception | None = None

    async def find_patient(self, national_id, email):
        if self.unavailable:
            raise AdapterUnavailable("scheduling down")
        for key in (national_id, email):
            if key and key in self.patients:
                return self.patients[key]
        return None

    async def create_patient(self, identity):
        if self.unavailable:
            raise AdapterUnavailable("scheduling down")
        patient_id = str(1000 + len(self.created))
        self.created.append(identity)
        for key in (identity.national_id, identity.email):
            if key:
                self.patients[key] = patient_id
        return patient_id

    async def list_available_slots(self, start, end):
        if self.unavailable:
            raise AdapterUnavailable("scheduling down")
        return list(self.slots)

    async def list_professionals(self):
        if self.unavailable:
            raise AdapterUnavailable("scheduling down")
        return list(self.professionals)

    async def book_appointment(self, request):
        if self.book_error:
            raise self.book_error
        self.booked.append(request)
        return f"cita-{len(self.booked)}"


class FakeMessaging:
    channel = "whatsapp"

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_text(self, to, body):
        if self.fail:
            raise AdapterFailed("whatsapp down")
        self.sent.append((to, body))
        return f"wamid.{len(self.sent)}"


class InMemoryStorage:
    def __init__(self, failing: tuple[str, ...] = ()):
        self.objects: dict[str, bytes] = {}
        self.failing = failing

    def put_bytes(self, key, data, content_type):
        if any(f in key for f in self.failing):
            raise OSError(f"cannot write {key}")
        self.objects[key] = data

    def get_bytes(self, key):
        if key not in self.objects:
            raise FileNotFoundError(key)
        return self.objects[key]


class RecordingRunner:
    """Detached runner that records tasks; tests run them explicitly."""

    def __init__(self):
        self.spawned = []

    def spawn(self, name, factory):
        self.spawned.append((name, factory))
        return None

    @property
    def names(self):
        return [name for name, _ in self.spawned]

    async def run_all(self):
        while self.spawned:
            _, factory = self.spawned.pop(0)
            await factory()


class MemoryJsonStore:
    """Stands in for RedisManager's JSON helpers."""

    def __init__(self):
        self.data = {}

    async def set_json(self, key, data, ttl_seconds):
        self.data[key] = data

    async def get_json(self, key):
        return self.data.get(key)
