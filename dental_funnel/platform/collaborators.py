from dataclasses import dataclass
from sqlalchemy.ext.asyncio import async_sessionmaker

from dental_funnel.core.detached import DetachedTaskRunner, detached_tasks
from dental_funnel.modules.payments.signals import PaymentSignalHub, payment_signals
from dental_funnel.platform.ports.messaging import MessagingPort
from dental_funnel.platform.ports.object_storage import ObjectStoragePort
from dental_funnel.platform.ports.payments import PaymentGatewayPort
from dental_funnel.platform.ports.scheduling import SchedulingPort
from dental_funnel.platform.ports.screening import ScreeningPort
from dental_funnel.platform.provider_registry import registry


@dataclass
class Collaborators:
    """External collaborators plus the plumbing for detached side calls."""
    screening: ScreeningPort
    payments: PaymentGatewayPort
    scheduling: SchedulingPort
    messaging: MessagingPort
    storage: ObjectStoragePort
    session_factory: async_sessionmaker
    detached: DetachedTaskRunner
    payment_signals: PaymentSignalHub | None = None


def default_collaborators() -> Collaborators:
    from dental_funnel.core.db import SessionLocal
    return Collaborators(
        screening=registry.screening(),
        payments=registry.payments(),
        scheduling=registry.scheduling(),
        messaging=registry.messaging(),
        storage=registry.object_storage(),
        session_factory=SessionLocal,
        detached=detached_tasks,
        payment_signals=payment_signals,
    )
