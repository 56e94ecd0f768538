from dental_funnel.core.config import settings
from dental_funnel.platform.ports.object_storage import ObjectStoragePort
from dental_funnel.platform.adapters.storage_local import LocalFilesystemStorage
from dental_funnel.platform.adapters.storage_s3 import S3Storage
from dental_funnel.platform.ports.event_bus import EventBusPort
from dental_funnel.platform.adapters.bus_noop import NoopEventBus
from dental_funnel.platform.adapters.bus_redis import RedisEventBus
from dental_funnel.platform.ports.screening import ScreeningPort
from dental_funnel.platform.adapters.screening_gateway import GatewayScreening
from dental_funnel.platform.ports.payments import PaymentGatewayPort
from dental_funnel.platform.adapters.payments_mercadopago import MercadoPagoGateway
from dental_funnel.platform.ports.scheduling import SchedulingPort
from dental_funnel.platform.adapters.scheduling_dentalink import DentalinkScheduling
from dental_funnel.platform.ports.messaging import MessagingPort
from dental_funnel.platform.adapters.messaging_whatsapp import WhatsAppMessaging
from dental_funnel.platform.adapters.messaging_noop import NoopMessaging

class ProviderRegistry:
    _object_storage: ObjectStoragePort | None = None
    _event_bus: EventBusPort | None = None
    _screening: ScreeningPort | None = None
    _payments: PaymentGatewayPort | None = None
    _scheduling: SchedulingPort | None = None
    _messaging: MessagingPort | None = None

    @classmethod
    def object_storage(cls) -> ObjectStoragePort:
        if cls._object_storage is None:
            if settings.OBJECT_STORAGE_PROVIDER == "s3":
                cls._object_storage = S3Storage()
            else:
                cls._object_storage = LocalFilesystemStorage(settings.LOCAL_STORAGE_ROOT)
        return cls._object_storage

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def screening(cls) -> ScreeningPort:
        # an unconfigured gateway raises AdapterUnavailable per call, which triggers the local fallback
        if cls._screening is None:
            cls._screening = GatewayScreening()
        return cls._screening

    @classmethod
    def payments(cls) -> PaymentGatewayPort:
        if cls._payments is None:
            cls._payments = MercadoPagoGateway()
        return cls._payments

    @classmethod
    def scheduling(cls) -> SchedulingPort:
        if cls._scheduling is None:
            cls._scheduling = DentalinkScheduling()
        return cls._scheduling

    @classmethod
    def messaging(cls) -> MessagingPort:
        if cls._messaging is None:
            if settings.WHATSAPP_API_TOKEN and settings.WHATSAPP_PHONE_NUMBER_ID:
                cls._messaging = WhatsAppMessaging()
            else:
                cls._messaging = NoopMessaging()
        return cls._messaging

    @classmethod
    def reset(cls) -> None:
        cls._object_storage = None
        cls._event_bus = None
        cls._screening = None
        cls._payments = None
        cls._scheduling = None
        cls._messaging = None

registry = ProviderRegistry()
