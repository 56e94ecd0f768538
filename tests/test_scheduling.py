import uuid
from datetime import date

import httpx
import pytest

from dental_funnel.core.errors import (
    ActionNotAllowed, AdapterFailed, ManualSchedulingRequired, ValidationFailed,
)
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus, RouteType
from dental_funnel.modules.evaluations.schemas import IdentityIn
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.scheduling.service import SchedulingService, parse_slot
from dental_funnel.modules.scheduling.slots import next_business_days, placeholder_slots
from dental_funnel.platform.adapters.scheduling_dentalink import DentalinkScheduling
from dental_funnel.platform.ports.scheduling import SlotDay


async def _paid_evaluation(session, *, external_patient_id=None):
    service = EvaluationService(session)
    ev, _ = await service.create(
        IdentityIn(name="Ana Pérez", email="ana@example.com", phone="+56911111111", national_id="12345678-5"),
        route_type=RouteType.NEW_PATIENT, motive="caries", stage=EvaluationStage.PAYMENT_PENDING,
        external_patient_id=external_patient_id,
    )
    await service.repo.update_fields(ev.id, payment_status=PaymentStatus.APPROVED)
    await service.advance(ev.id, EvaluationStage.PAYMENT_DONE)
    return ev


class TestPlaceholderSlots:

    def test_business_days_skip_weekends(self):
        # 2026-03-06 is a Friday
        days = next_business_days(date(2026, 3, 6), 3)
        assert days == [date(2026, 3, 9), date(2026, 3, 10), date(2026, 3, 11)]

    def test_five_days_four_times(self, catalog):
        slots = placeholder_slots(date(2026, 3, 6), catalog.placeholder_times)
        assert len(slots) == 5
        assert slots[0].date == "2026-03-09"
        assert slots[0].times == ["10:00", "11:00", "15:00", "16:00"]

    def test_parse_slot(self):
        when = parse_slot("2026-03-09", "15:00", "America/Santiago")
        assert (when.hour, when.minute) == (15, 0)
        assert when.tzinfo is not None

    @pytest.mark.parametrize("day,time,field", [("09/03/2026", "15:00", "date"), ("2026-03-09", "3pm", "time")])
    def test_parse_slot_rejects_bad_input(self, day, time, field):
        with pytest.raises(ValidationFailed) as e:
            parse_slot(day, time)
        assert field in e.value.field_errors


class TestListSlots:

    @pytest.mark.asyncio
    async def test_real_slots_when_available(self, session, collaborators, catalog):
        collaborators.scheduling.slots = [SlotDay(date="2026-03-10", times=["09:30"])]
        slots, placeholder = await SchedulingService(session, collaborators, catalog).list_slots(date(2026, 3, 6))
        assert not placeholder
        assert slots[0].times == ["09:30"]

    @pytest.mark.asyncio
    async def test_placeholder_when_unavailable(self, session, collaborators, catalog):
        collaborators.scheduling.unavailable = True
        slots, placeholder = await SchedulingService(session, collaborators, catalog).list_slots(date(2026, 3, 6))
        assert placeholder
        assert len(slots) == 5

    @pytest.mark.asyncio
    async def test_placeholder_when_dentalink_answers_html(self, session, collaborators, catalog):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>maintenance</html>"))
        collaborators.scheduling = DentalinkScheduling(api_token="dl", api_url="https://dentalink.example/api/v1",
                                                      branch_id=1, transport=transport)
        slots, placeholder = await SchedulingService(session, collaborators, catalog).list_slots(date(2026, 3, 6))
        assert placeholder
        assert slots[0].date == "2026-03-09"

    @pytest.mark.asyncio
    async def test_placeholder_when_empty(self, session, collaborators, catalog):
        _, placeholder = await SchedulingService(session, collaborators, catalog).list_slots(date(2026, 3, 6))
        assert placeholder


class TestPatientRegistration:

    @pytest.mark.asyncio
    async def test_creates_patient_once(self, session, collaborators, catalog):
        ev = await _paid_evaluation(session)
        service = SchedulingService(session, collaborators, catalog)
        first = await service.find_or_create_patient(ev.id)
        second = await service.find_or_create_patient(ev.id)
        assert first == second == "1000"
        assert len(collaborators.scheduling.created) == 1

    @pytest.mark.asyncio
    async def test_finds_existing_patient_by_national_id(self, session, collaborators, catalog):
        collaborators.scheduling.patients["12345678-5"] = "555"
        ev = await _paid_evaluation(session)
        assert await SchedulingService(session, collaborators, catalog).find_or_create_patient(ev.id) == "555"
        assert collaborators.scheduling.created == []

    @pytest.mark.asyncio
    async def test_unavailable_returns_none(self, session, collaborators, catalog):
        collaborators.scheduling.unavailable = True
        ev = await _paid_evaluation(session)
        assert await SchedulingService(session, collaborators, catalog).find_or_create_patient(ev.id) is None
        fresh = await EvaluationService(session).require(ev.id, fresh=True)
        assert fresh.external_patient_id is None


class TestBooking:

    @pytest.mark.asyncio
    async def test_books_with_scheduling_system(self, session, collaborators, catalog):
        ev = await _paid_evaluation(session, external_patient_id="1000")
        ev = await SchedulingService(session, collaborators, catalog).book(ev.id, "2026-03-09", "10:00")
        assert ev.evaluation_stage == EvaluationStage.APPOINTMENT_BOOKED
        assert ev.appointment_ref == "cita-1"
        request = collaborators.scheduling.booked[0]
        assert (request.patient_id, request.professional_id, request.date, request.time) == ("1000", "7", "2026-03-09", "10:00")
        assert collaborators.detached.names == [f"appointment-booked-message:{ev.id}"]

    @pytest.mark.asyncio
    async def test_second_booking_is_noop(self, session, collaborators, catalog):
        ev = await _paid_evaluation(session, external_patient_id="1000")
        service = SchedulingService(session, collaborators, catalog)
        await service.book(ev.id, "2026-03-09", "10:00")
        await service.book(ev.id, "2026-03-10", "11:00")
        assert len(collaborators.scheduling.booked) == 1

    @pytest.mark.asyncio
    async def test_without_patient_id_books_locally(self, session, collaborators, catalog):
        ev = await _paid_evaluation(session)
        ev = await SchedulingService(session, collaborators, catalog).book(ev.id, "2026-03-09", "10:00")
        assert ev.evaluation_stage == EvaluationStage.APPOINTMENT_BOOKED
        assert ev.appointment_ref is None
        assert collaborators.scheduling.booked == []

    @pytest.mark.asyncio
    async def test_no_professionals_requires_manual_booking(self, session, collaborators, catalog):
        collaborators.scheduling.professionals = []
        ev = await _paid_evaluation(session, external_patient_id="1000")
        with pytest.raises(ManualSchedulingRequired):
            await SchedulingService(session, collaborators, catalog).book(ev.id, "2026-03-09", "10:00")

    @pytest.mark.asyncio
    async def test_booking_failure_leaves_no_appointment(self, session, collaborators, catalog):
        collaborators.scheduling.book_error = AdapterFailed("dentalink 500")
        ev = await _paid_evaluation(session, external_patient_id="1000")
        with pytest.raises(AdapterFailed):
            await SchedulingService(session, collaborators, catalog).book(ev.id, "2026-03-09", "10:00")
        fresh = await EvaluationService(session).require(ev.id, fresh=True)
        assert fresh.appointment_time is None
        assert fresh.evaluation_stage == EvaluationStage.PAYMENT_DONE

    @pytest.mark.asyncio
    async def test_unpaid_cannot_book(self, session, collaborators, catalog):
        ev, _ = await EvaluationService(session).create(
            IdentityIn(name="Ana", email="ana@example.com"), route_type=RouteType.NEW_PATIENT, motive="caries",
        )
        with pytest.raises(ActionNotAllowed):
            await SchedulingService(session, collaborators, catalog).book(ev.id, "2026-03-09", "10:00")

    @pytest.mark.asyncio
    async def test_unknown_evaluation(self, session, collaborators, catalog):
        from dental_funnel.core.errors import NotFound
        with pytest.raises(NotFound):
            await SchedulingService(session, collaborators, catalog).book(uuid.uuid4(), "2026-03-09", "10:00")
