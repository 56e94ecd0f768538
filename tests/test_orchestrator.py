"""
End-to-end wizard flows through WizardOrchestrator with fake collaborators.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from dental_funnel.core.errors import ActionNotAllowed, AdapterFailed, ConfigurationError
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus, RouteType, SuggestedRoute
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.payments.service import PaymentService
from dental_funnel.modules.wizard.orchestrator import WizardOrchestrator
from dental_funnel.modules.wizard.schemas import IntakeImage, QuestionnaireSubmission
from dental_funnel.modules.wizard.state import PremiumStep, WizardStage, WizardState
from dental_funnel.platform.ports.payments import PaymentNotification

# a Friday, so the first placeholder day is the following Monday
T0 = datetime(2026, 3, 6, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def _submission(**overrides):
    fields = dict(
        name="Ana Pérez",
        email="ana@example.com",
        phone="+56911111111",
        national_id="12.345.678-5",
        motive="Quiero evaluar una posible caries",
        questionnaire={"pain_level": "no", "last_visit": "1 año"},
    )
    fields.update(overrides)
    return QuestionnaireSubmission(**fields)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def make_wizard(session, collaborators, catalog, clock, sleep):
    def _make(state=None):
        return WizardOrchestrator(session, collaborators, catalog, state, clock=clock, sleep=sleep,
                                  poll_interval=2, poll_attempts=5, error_ttl=5)
    return _make


async def _to_payment(w):
    await w.select_route(RouteType.NEW_PATIENT)
    await w.submit_questionnaire(_submission())
    await w.run_screening()
    await w.continue_from_path()
    return await w.confirm_evaluation()


async def _notify(session, collaborators, catalog, evaluation_id, status):
    await PaymentService(session, collaborators, catalog).apply_notification(PaymentNotification(
        external_payment_id="pay-1", status=status, external_reference=str(evaluation_id),
    ))


class TestNewPatientFlow:

    @pytest.mark.asyncio
    async def test_questionnaire_then_screening(self, make_wizard, session):
        w = make_wizard()
        snap = await w.select_route(RouteType.NEW_PATIENT)
        assert snap.stage == WizardStage.QUESTIONNAIRE

        snap = await w.submit_questionnaire(_submission())
        assert snap.stage == WizardStage.AI_SCREENING
        ev = await EvaluationService(session).require(snap.evaluation_id, fresh=True)
        assert ev.evaluation_stage == EvaluationStage.QUESTIONNAIRE_DONE
        assert ev.national_id == "12345678-5"
        assert ev.clinical_questionnaire["last_visit"] == "1 año"

        snap = await w.run_screening()
        assert snap.stage == WizardStage.PATH_EXPLANATION
        assert snap.data["suggested_route"] == SuggestedRoute.CARIES.value
        assert snap.data["ai_source"] == "fallback"
        assert snap.data["booking_link"]

    @pytest.mark.asyncio
    async def test_continue_shows_price(self, make_wizard, catalog):
        w = make_wizard()
        await w.select_route(RouteType.SECOND_OPINION)
        await w.submit_questionnaire(_submission())
        await w.run_screening()
        snap = await w.continue_from_path()
        assert (snap.stage, snap.premium_step) == (WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM)
        assert snap.data["price"] == catalog.price_for(RouteType.SECOND_OPINION)

    @pytest.mark.asyncio
    async def test_confirm_opens_checkout(self, make_wizard):
        snap = await _to_payment(make_wizard())
        assert snap.premium_step == PremiumStep.PAYMENT
        assert snap.data["checkout_url"] == "https://pay.example/checkout/pref-1"

    @pytest.mark.asyncio
    async def test_double_submit_creates_one_evaluation(self, make_wizard, session):
        """Two requests racing with the same wizard state share one evaluation."""
        base = WizardState(stage=WizardStage.QUESTIONNAIRE, route_type=RouteType.NEW_PATIENT)
        first = await make_wizard(base.model_copy(deep=True)).submit_questionnaire(_submission())
        second = await make_wizard(base.model_copy(deep=True)).submit_questionnaire(_submission())
        assert first.evaluation_id == second.evaluation_id
        count = await session.scalar(select(func.count()).select_from(Evaluation))
        assert count == 1

    @pytest.mark.asyncio
    async def test_images_uploaded_and_failures_reported(self, make_wizard, collaborators):
        collaborators.storage.failing = ("broken",)
        images = [
            IntakeImage(filename="rx panorámica.png", content_type="image/png", content="iVBORw0KGgo="),
            IntakeImage(filename="broken.jpg", content="/9j/4AAQ"),
        ]
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission(images=images))
        assert snap.stage == WizardStage.AI_SCREENING
        assert snap.data["image_count"] == 1
        assert snap.data["failed_images"] == ["broken.jpg"]
        assert list(collaborators.storage.objects) == [f"intake/{snap.evaluation_id}/0-rx_panor_mica.png"]


class TestValidationAndErrors:

    @pytest.mark.asyncio
    async def test_invalid_questionnaire_stays_put(self, make_wizard, session):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission(email="no-at-sign", motive="dolor", national_id="12345678-9"))
        assert snap.stage == WizardStage.QUESTIONNAIRE
        assert snap.error_code == "validation_failed"
        assert set(snap.data["field_errors"]) == {"email", "motive", "national_id"}
        assert await session.scalar(select(func.count()).select_from(Evaluation)) == 0

    @pytest.mark.asyncio
    async def test_error_clears_after_display_time(self, make_wizard, clock):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission(phone=""))
        assert snap.error

        clock.advance(4)
        assert w.snapshot().error
        clock.advance(1)
        snap = w.snapshot()
        assert snap.error is None
        assert snap.error_code is None

    @pytest.mark.asyncio
    async def test_wrong_stage_is_rejected(self, make_wizard):
        w = make_wizard()
        with pytest.raises(ActionNotAllowed):
            await w.confirm_evaluation()
        with pytest.raises(ActionNotAllowed):
            await w.run_screening()

    @pytest.mark.asyncio
    async def test_gateway_failure_keeps_confirm_step(self, make_wizard, collaborators):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        await w.submit_questionnaire(_submission())
        await w.run_screening()
        await w.continue_from_path()
        collaborators.payments.fail_with = AdapterFailed("gateway 500")
        snap = await w.confirm_evaluation()
        assert snap.premium_step == PremiumStep.CONFIRM
        assert snap.error_code == "adapter_failed"

        collaborators.payments.fail_with = None
        snap = await w.confirm_evaluation()
        assert snap.premium_step == PremiumStep.PAYMENT
        assert snap.error is None

    @pytest.mark.asyncio
    async def test_missing_gateway_configuration_is_raised(self, make_wizard, collaborators):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        await w.submit_questionnaire(_submission())
        await w.run_screening()
        await w.continue_from_path()
        collaborators.payments.fail_with = ConfigurationError("MERCADO_PAGO_ACCESS_TOKEN not set")
        with pytest.raises(ConfigurationError):
            await w.confirm_evaluation()


class TestExistingPatientFlow:

    async def _login(self, w):
        await w.select_route(RouteType.EXISTING_PATIENT)
        return await w.login_existing_patient("12.345.678-5", "Ana@Example.com")

    @pytest.mark.asyncio
    async def test_login_looks_up_scheduling_patient(self, make_wizard, collaborators):
        collaborators.scheduling.patients["12345678-5"] = "555"
        snap = await self._login(make_wizard())
        assert snap.stage == WizardStage.EXISTING_PATIENT_LOGIN
        assert snap.data["patient_identified"]
        assert snap.data["external_patient_id"] == "555"
        assert snap.data["name"] == "Paciente Existente"

    @pytest.mark.asyncio
    async def test_login_works_while_scheduling_down(self, make_wizard, collaborators):
        collaborators.scheduling.unavailable = True
        snap = await self._login(make_wizard())
        assert snap.data["patient_identified"]
        assert snap.data["external_patient_id"] is None

    @pytest.mark.asyncio
    async def test_invalid_login(self, make_wizard):
        w = make_wizard()
        await w.select_route(RouteType.EXISTING_PATIENT)
        snap = await w.login_existing_patient("1-1", "ana")
        assert set(snap.data["field_errors"]) == {"national_id", "email"}

    @pytest.mark.asyncio
    async def test_control_only_creates_no_evaluation(self, make_wizard, session, catalog):
        w = make_wizard()
        await self._login(w)
        snap = await w.choose_existing_patient_path("control")
        assert snap.stage == WizardStage.CONTROL_ONLY
        assert snap.data["control_url"] == catalog.control_only_url
        assert snap.evaluation_id is None
        assert await session.scalar(select(func.count()).select_from(Evaluation)) == 0

    @pytest.mark.asyncio
    async def test_path_requires_login(self, make_wizard):
        w = make_wizard()
        await w.select_route(RouteType.EXISTING_PATIENT)
        with pytest.raises(ActionNotAllowed):
            await w.choose_existing_patient_path("treatment")

    @pytest.mark.asyncio
    async def test_treatment_request_goes_to_confirm(self, make_wizard, session, collaborators, catalog):
        collaborators.scheduling.patients["12345678-5"] = "555"
        w = make_wizard()
        await self._login(w)
        await w.choose_existing_patient_path("treatment")
        snap = await w.submit_treatment_request("Quiero retomar mi tratamiento de ortodoncia")
        assert (snap.stage, snap.premium_step) == (WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM)
        assert snap.data["price"] == catalog.price_for(RouteType.EXISTING_PATIENT)

        ev = await EvaluationService(session).require(snap.evaluation_id, fresh=True)
        assert ev.route_type == RouteType.EXISTING_PATIENT
        assert ev.evaluation_stage == EvaluationStage.QUESTIONNAIRE_DONE
        assert ev.external_patient_id == "555"
        assert ev.suggested_route is None


class TestPayment:

    @pytest.mark.asyncio
    async def test_pending_polls_then_reports(self, make_wizard, sleep):
        """One read on return plus poll_attempts more, with a pause before each."""
        w = make_wizard()
        await _to_payment(w)
        w.evaluations.repo.get_payment_status = AsyncMock(return_value=PaymentStatus.PENDING)

        snap = await w.check_payment_status("pending")
        assert w.evaluations.repo.get_payment_status.await_count == 6
        assert sleep.await_count == 5
        sleep.assert_awaited_with(2)
        assert snap.premium_step == PremiumStep.PAYMENT
        assert snap.error_code == "payment_pending"

    @pytest.mark.asyncio
    async def test_polling_stops_on_approval(self, make_wizard, sleep):
        w = make_wizard()
        await _to_payment(w)
        w.evaluations.repo.get_payment_status = AsyncMock(
            side_effect=[PaymentStatus.PENDING, PaymentStatus.PENDING, PaymentStatus.APPROVED],
        )
        snap = await w.check_payment_status("success")
        assert sleep.await_count == 2
        assert snap.premium_step == PremiumStep.SCHEDULE

    @pytest.mark.asyncio
    async def test_approved_moves_to_schedule(self, make_wizard, session, collaborators, catalog, sleep):
        w = make_wizard()
        snap = await _to_payment(w)
        await _notify(session, collaborators, catalog, snap.evaluation_id, PaymentStatus.APPROVED)

        snap = await w.check_payment_status("success")
        assert snap.premium_step == PremiumStep.SCHEDULE
        assert sleep.await_count == 0
        assert snap.data["slots_placeholder"] is True
        assert snap.data["slots"][0]["date"] == "2026-03-09"
        assert len(snap.data["slots"]) == 5
        assert f"scheduling-preregistration:{snap.evaluation_id}" in collaborators.detached.names

    @pytest.mark.asyncio
    async def test_rejected_allows_retry(self, make_wizard, session, collaborators, catalog):
        w = make_wizard()
        snap = await _to_payment(w)
        await _notify(session, collaborators, catalog, snap.evaluation_id, PaymentStatus.REJECTED)

        snap = await w.check_payment_status("failure")
        assert snap.premium_step == PremiumStep.PAYMENT
        assert snap.error_code == "payment_rejected"
        assert snap.data["can_retry_payment"] is True
        assert "checkout_url" not in snap.data

        snap = await w.open_checkout()
        assert snap.data["checkout_url"] == "https://pay.example/checkout/pref-2"
        assert snap.data["can_retry_payment"] is False

    @pytest.mark.asyncio
    async def test_refund_ends_payment_without_retry(self, make_wizard, session, collaborators, catalog):
        w = make_wizard()
        snap = await _to_payment(w)
        await _notify(session, collaborators, catalog, snap.evaluation_id, PaymentStatus.REFUNDED)

        snap = await w.check_payment_status("failure")
        assert snap.error_code == "payment_refunded"
        assert snap.data["can_retry_payment"] is False
        assert "checkout_url" not in snap.data

        snap = await w.open_checkout()
        assert snap.error_code == "payment_refunded"
        assert "checkout_url" not in snap.data
        assert len(collaborators.payments.created) == 1

    @pytest.mark.asyncio
    async def test_confirm_after_webhook_skips_to_schedule(self, make_wizard, session, collaborators, catalog):
        """Approval that arrived before a retried confirm goes straight to scheduling."""
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission())
        await w.run_screening()
        await w.continue_from_path()
        await _notify(session, collaborators, catalog, snap.evaluation_id, PaymentStatus.APPROVED)
        snap = await w.confirm_evaluation()
        assert snap.premium_step == PremiumStep.SCHEDULE


class TestScheduling:

    async def _paid(self, w, session, collaborators, catalog):
        snap = await _to_payment(w)
        await _notify(session, collaborators, catalog, snap.evaluation_id, PaymentStatus.APPROVED)
        await w.check_payment_status("success")
        # pre-registration and the confirmation message
        await collaborators.detached.run_all()
        return snap.evaluation_id

    @pytest.mark.asyncio
    async def test_booking_completes_wizard(self, make_wizard, session, collaborators, catalog):
        w = make_wizard()
        evaluation_id = await self._paid(w, session, collaborators, catalog)
        snap = await w.schedule_appointment("2026-03-09", "10:00")
        assert snap.stage == WizardStage.COMPLETE
        assert snap.data["appointment_ref"] == "cita-1"
        assert collaborators.scheduling.booked[0].patient_id == "1000"

        ev = await EvaluationService(session).require(evaluation_id, fresh=True)
        assert ev.evaluation_stage == EvaluationStage.APPOINTMENT_BOOKED

    @pytest.mark.asyncio
    async def test_manual_booking_link(self, make_wizard, session, collaborators, catalog):
        collaborators.scheduling.professionals = []
        w = make_wizard()
        await self._paid(w, session, collaborators, catalog)
        snap = await w.schedule_appointment("2026-03-09", "10:00")
        assert snap.premium_step == PremiumStep.SCHEDULE
        assert snap.error_code == "requires_manual_scheduling"
        assert snap.data["manual_booking_url"] == catalog.booking_link_for(SuggestedRoute.CARIES)

    @pytest.mark.asyncio
    async def test_bad_slot_is_a_field_error(self, make_wizard, session, collaborators, catalog):
        w = make_wizard()
        await self._paid(w, session, collaborators, catalog)
        snap = await w.schedule_appointment("09-03-2026", "10:00")
        assert snap.data["field_errors"] == {"date": "expected YYYY-MM-DD"}


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_reset_keeps_id_and_rotates_submission_key(self, make_wizard):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        await w.submit_questionnaire(_submission())
        wizard_id, key = w.state.wizard_id, w.state.submission_key

        snap = await w.reset()
        assert snap.stage == WizardStage.ENTRY
        assert snap.wizard_id == wizard_id
        assert snap.evaluation_id is None
        assert w.state.submission_key != key

    @pytest.mark.asyncio
    async def test_cancel_marks_evaluation_cancelled(self, make_wizard, session):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission())
        evaluation_id = snap.evaluation_id

        snap = await w.cancel()
        assert snap.stage == WizardStage.ENTRY
        ev = await EvaluationService(session).require(evaluation_id, fresh=True)
        assert ev.evaluation_stage == EvaluationStage.CANCELLED

    @pytest.mark.asyncio
    async def test_resume_after_screening(self, make_wizard):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        await w.submit_questionnaire(_submission(motive="Me falta una muela hace tiempo"))
        snap = await w.run_screening()

        resumed = await make_wizard().resume(snap.evaluation_id)
        assert resumed.stage == WizardStage.PATH_EXPLANATION
        assert resumed.data["suggested_route"] == SuggestedRoute.IMPLANTS.value
        assert resumed.route_type == RouteType.NEW_PATIENT

    @pytest.mark.asyncio
    async def test_resume_at_payment_reuses_checkout(self, make_wizard):
        snap = await _to_payment(make_wizard())
        resumed = await make_wizard().resume(snap.evaluation_id)
        assert (resumed.stage, resumed.premium_step) == (WizardStage.PREMIUM_EVALUATION, PremiumStep.PAYMENT)
        assert resumed.data["checkout_url"] == snap.data["checkout_url"]

    @pytest.mark.asyncio
    async def test_resume_cancelled_starts_over(self, make_wizard):
        w = make_wizard()
        await w.select_route(RouteType.NEW_PATIENT)
        snap = await w.submit_questionnaire(_submission())
        await w.cancel()
        resumed = await make_wizard().resume(snap.evaluation_id)
        assert resumed.stage == WizardStage.ENTRY
        assert resumed.evaluation_id is None
