import uuid
import logging
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.config import settings
from dental_funnel.core.errors import (
    ActionNotAllowed, AdapterFailed, AdapterUnavailable, ManualSchedulingRequired, ValidationFailed,
)
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.events.outbox import OutboxService
from dental_funnel.modules.notifications.service import dispatch_message
from dental_funnel.modules.scheduling.slots import placeholder_slots
from dental_funnel.platform.collaborators import Collaborators
from dental_funnel.platform.ports.scheduling import BookingRequest, PatientIdentity, SlotDay

logger = logging.getLogger(__name__)

SLOT_WINDOW_DAYS = 14


def parse_slot(day: str, time: str, tz: str | None = None) -> datetime:
    try:
        d = date.fromisoformat(day)
    except (TypeError, ValueError):
        raise ValidationFailed({"date": "expected YYYY-MM-DD"})
    try:
        t = datetime.strptime(time, "%H:%M").time()
    except (TypeError, ValueError):
        raise ValidationFailed({"time": "expected HH:MM"})
    return datetime.combine(d, t, tzinfo=ZoneInfo(tz or settings.CLINIC_TIMEZONE))


class SchedulingService:
    def __init__(self, session: AsyncSession, collaborators: Collaborators, catalog: FunnelCatalog):
        self.session = session
        self.c = collaborators
        self.catalog = catalog
        self.evaluations = EvaluationService(session)
        self.outbox = OutboxService(session)

    async def find_or_create_patient(self, evaluation_id: uuid.UUID) -> str | None:
        """
        Scheduling-system patient id for the evaluation. Returns the stored id when there
        is one, otherwise searches by national id then email, then creates the patient.
        Returns None when the scheduling system cannot be used right now.
        """
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        if ev.external_patient_id:
            return ev.external_patient_id
        try:
            patient_id = await self.c.scheduling.find_patient(ev.national_id, ev.email)
            if not patient_id:
                patient_id = await self.c.scheduling.create_patient(PatientIdentity(
                    name=ev.name, email=ev.email, phone=ev.phone,
                    national_id=ev.national_id, birth_date=ev.birth_date,
                ))
        except (AdapterUnavailable, AdapterFailed) as e:
            logger.warning(f"Scheduling patient for {evaluation_id} not registered: {e.message}")
            return None

        if await self.evaluations.repo.set_once(evaluation_id, "external_patient_id", patient_id):
            await self.session.commit()
            logger.info(f"Evaluation {evaluation_id} linked to scheduling patient {patient_id}")
            return patient_id
        # someone else stored an id first; keep theirs
        await self.session.rollback()
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        return ev.external_patient_id

    async def list_slots(self, start: date | None = None) -> tuple[list[SlotDay], bool]:
        """Available days and times, and whether they are placeholders."""
        start = start or datetime.now(ZoneInfo(settings.CLINIC_TIMEZONE)).date()
        try:
            slots = await self.c.scheduling.list_available_slots(start, start + timedelta(days=SLOT_WINDOW_DAYS))
        except (AdapterUnavailable, AdapterFailed) as e:
            logger.info(f"Using placeholder slots: {e.message}")
            slots = []
        if slots:
            return slots, False
        return placeholder_slots(start, self.catalog.placeholder_times, self.catalog.placeholder_business_days), True

    async def _book_external(self, ev: Evaluation, day: str, time: str, duration: int, notes: str | None) -> str:
        try:
            professionals = await self.c.scheduling.list_professionals()
        except AdapterUnavailable as e:
            raise AdapterFailed(e.message) from e
        if not professionals:
            raise ManualSchedulingRequired("no professional available for online booking")
        return await self.c.scheduling.book_appointment(BookingRequest(
            patient_id=ev.external_patient_id,
            professional_id=professionals[0].id,
            date=day,
            time=time,
            duration_minutes=duration,
            notes=notes,
        ))

    async def book(self, evaluation_id: uuid.UUID, day: str, time: str, *,
                   duration: int | None = None, notes: str | None = None) -> Evaluation:
        when = parse_slot(day, time)
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        if ev.appointment_time is not None:
            return ev
        if ev.payment_status != PaymentStatus.APPROVED:
            raise ActionNotAllowed("payment not approved")

        appointment_ref = None
        if ev.external_patient_id:
            appointment_ref = await self._book_external(
                ev, day, time, duration or settings.APPOINTMENT_DURATION_MINUTES,
                notes or f"Evaluación {ev.suggested_route.value if ev.suggested_route else ''}".strip(),
            )
        else:
            logger.info(f"Evaluation {evaluation_id} has no scheduling patient; booking recorded locally")

        if not await self.evaluations.repo.set_once(evaluation_id, "appointment_time", when):
            await self.session.rollback()
            return await self.evaluations.require(evaluation_id, fresh=True)
        ev = await self.evaluations.advance(
            evaluation_id, EvaluationStage.APPOINTMENT_BOOKED, strict=False, commit=False, appointment_ref=appointment_ref,
        )
        await self.outbox.enqueue(
            "APPOINTMENT_BOOKED", "evaluation", evaluation_id,
            {"date": day, "time": time, "appointment_ref": appointment_ref},
        )
        await self.session.commit()
        logger.info(f"Appointment booked for {evaluation_id} at {day} {time} ref={appointment_ref}")

        dispatch_message(
            self.c.detached, self.c.session_factory, self.c.messaging,
            name=f"appointment-booked-message:{evaluation_id}",
            to=ev.phone,
            template_name="appointment_booked",
            variables={"name": ev.name.split(" ")[0], "date": day, "time": time},
            meta={"evaluation_id": str(evaluation_id)},
        )
        return await self.evaluations.require(evaluation_id, fresh=True)
