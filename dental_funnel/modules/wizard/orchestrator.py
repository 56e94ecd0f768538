"""
Wizard orchestrator: drives one patient through route selection, questionnaire,
AI screening, path explanation, payment and scheduling.

Every operation returns a WizardSnapshot. Collaborator failures never move the
wizard; they become a transient error that clears itself after ERROR_DISPLAY_SECONDS.
Configuration errors and calls made from the wrong stage are raised to the caller.
"""
import asyncio
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.config import settings
from dental_funnel.core.errors import (
    ActionNotAllowed, AdapterFailed, AdapterUnavailable, EvaluationClosed, FunnelError, ManualSchedulingRequired,
    StageTransitionError, ValidationFailed,
)
from dental_funnel.modules.auth import rut
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus, RouteType
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.schemas import IdentityIn
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.payments.repository import CheckoutRepository
from dental_funnel.modules.payments.service import PaymentService
from dental_funnel.modules.scheduling.service import SchedulingService
from dental_funnel.modules.screening.service import ScreeningService
from dental_funnel.modules.wizard.schemas import QuestionnaireSubmission
from dental_funnel.modules.wizard.state import WizardStage, PremiumStep, WizardState, WizardSnapshot
from dental_funnel.platform.collaborators import Collaborators

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_MOTIVE_LENGTH = 10
EXISTING_PATIENT_NAME = "Paciente Existente"

RETRY_MESSAGE = "Error al procesar. Por favor, intenta de nuevo."
PAYMENT_PENDING_MESSAGE = "Tu pago aún no se confirma. Intenta verificar nuevamente en unos momentos."
PAYMENT_REJECTED_MESSAGE = "El pago fue rechazado. Puedes intentar nuevamente."
PAYMENT_REFUNDED_MESSAGE = "Tu pago fue reembolsado y la evaluación quedó cancelada."
MANUAL_BOOKING_MESSAGE = "No pudimos agendar en línea. Agenda tu hora con nuestro equipo."

# persisted evaluation stage -> where the wizard picks up after a reload
RESUME_STAGE = {
    EvaluationStage.STARTED: (WizardStage.QUESTIONNAIRE, None),
    EvaluationStage.QUESTIONNAIRE_DONE: (WizardStage.AI_SCREENING, None),
    EvaluationStage.AI_ANALYZED: (WizardStage.PATH_EXPLANATION, None),
    EvaluationStage.PAYMENT_PENDING: (WizardStage.PREMIUM_EVALUATION, PremiumStep.PAYMENT),
    EvaluationStage.PAYMENT_DONE: (WizardStage.PREMIUM_EVALUATION, PremiumStep.SCHEDULE),
    EvaluationStage.APPOINTMENT_BOOKED: (WizardStage.COMPLETE, None),
    EvaluationStage.COMPLETED: (WizardStage.COMPLETE, None),
    EvaluationStage.CANCELLED: (WizardStage.ENTRY, None),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_questionnaire(submission: QuestionnaireSubmission, max_images: int) -> dict[str, str]:
    errors = {}
    if not submission.name.strip():
        errors["name"] = "required"
    if not EMAIL_RE.match(submission.email.strip()):
        errors["email"] = "invalid email"
    if not submission.phone.strip():
        errors["phone"] = "required"
    if len(submission.motive.strip()) < MIN_MOTIVE_LENGTH:
        errors["motive"] = f"at least {MIN_MOTIVE_LENGTH} characters"
    if submission.national_id and not rut.is_valid(submission.national_id):
        errors["national_id"] = "invalid RUT"
    if len(submission.images) > max_images:
        errors["images"] = f"at most {max_images} images"
    return errors


class WizardOrchestrator:
    def __init__(self, session: AsyncSession, collaborators: Collaborators, catalog: FunnelCatalog,
                 state: WizardState | None = None, *,
                 clock: Callable[[], datetime] = _utcnow,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 poll_interval: float | None = None,
                 poll_attempts: int | None = None,
                 error_ttl: float | None = None):
        self.session = session
        self.c = collaborators
        self.catalog = catalog
        self.state = state or WizardState()
        self.clock = clock
        self.sleep = sleep
        self.poll_interval = settings.PAYMENT_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.poll_attempts = settings.PAYMENT_POLL_ATTEMPTS if poll_attempts is None else poll_attempts
        self.error_ttl = settings.ERROR_DISPLAY_SECONDS if error_ttl is None else error_ttl
        self.evaluations = EvaluationService(session)

    # --- state helpers ---

    def snapshot(self) -> WizardSnapshot:
        self._expire_error()
        s = self.state
        return WizardSnapshot(
            wizard_id=s.wizard_id, stage=s.stage, premium_step=s.premium_step, route_type=s.route_type,
            evaluation_id=s.evaluation_id, data=dict(s.data), error=s.error, error_code=s.error_code,
        )

    def _expire_error(self) -> None:
        expires = self.state.error_expires_at
        if expires is not None and self.clock() >= expires:
            self._clear_error()

    def _clear_error(self) -> None:
        self.state.error = None
        self.state.error_code = None
        self.state.error_expires_at = None

    def _set_error(self, code: str, message: str) -> None:
        self.state.error = message
        self.state.error_code = code
        self.state.error_expires_at = self.clock() + timedelta(seconds=self.error_ttl)

    async def _fail(self, exc: FunnelError, message: str = RETRY_MESSAGE) -> WizardSnapshot:
        # nothing from the failed action may stay half-written
        await self.session.rollback()
        logger.warning(f"Wizard {self.state.wizard_id} {self.state.stage.value}: {exc.code} ({exc.message})")
        self._set_error(exc.code, message)
        return self.snapshot()

    async def _closed(self, evaluation_id: uuid.UUID) -> WizardSnapshot:
        # no retry: a refunded or finished evaluation takes no new checkout
        status = await self.evaluations.repo.get_payment_status(evaluation_id)
        logger.info(f"Wizard {self.state.wizard_id}: evaluation {evaluation_id} closed, payment {status}")
        self.state.data["can_retry_payment"] = False
        self.state.data.pop("checkout_url", None)
        if status == PaymentStatus.REFUNDED:
            self.state.data["payment_status"] = status.value
            self._set_error("payment_refunded", PAYMENT_REFUNDED_MESSAGE)
        else:
            self._set_error(EvaluationClosed.code, RETRY_MESSAGE)
        return self.snapshot()

    async def _store_failure(self, exc: SQLAlchemyError) -> WizardSnapshot:
        await self.session.rollback()
        logger.error(f"Wizard {self.state.wizard_id} store failure in {self.state.stage.value}: {exc}")
        self._set_error("store_unavailable", RETRY_MESSAGE)
        return self.snapshot()

    def _validation_error(self, field_errors: dict[str, str]) -> WizardSnapshot:
        self.state.data["field_errors"] = field_errors
        self._set_error(ValidationFailed.code, "Revisa los campos marcados.")
        return self.snapshot()

    def _begin(self, stage: WizardStage, premium_step: PremiumStep | None = None) -> None:
        if self.state.stage != stage or (premium_step is not None and self.state.premium_step != premium_step):
            where = f"{self.state.stage.value}/{self.state.premium_step.value}" if self.state.premium_step else self.state.stage.value
            raise ActionNotAllowed(f"not allowed in {where}")
        self._clear_error()
        self.state.data.pop("field_errors", None)

    def _goto(self, stage: WizardStage, premium_step: PremiumStep | None = None) -> None:
        logger.info(f"Wizard {self.state.wizard_id}: {self.state.stage.value} -> {stage.value}"
                    + (f"/{premium_step.value}" if premium_step else ""))
        self.state.stage = stage
        self.state.premium_step = premium_step
        self._clear_error()

    def _require_evaluation(self) -> uuid.UUID:
        if self.state.evaluation_id is None:
            raise ActionNotAllowed("no evaluation in progress")
        return self.state.evaluation_id

    def _load_evaluation_data(self, ev: Evaluation) -> None:
        data = self.state.data
        data.update({"name": ev.name, "email": ev.email})
        if ev.suggested_route is not None:
            data.update({
                "suggested_route": ev.suggested_route.value,
                "ai_summary": ev.ai_summary,
                "ai_findings": ev.ai_findings or [],
                "ai_source": ev.ai_source,
                "booking_link": self.catalog.booking_link_for(ev.suggested_route),
            })

    # --- entry ---

    async def select_route(self, route_type: RouteType) -> WizardSnapshot:
        self._begin(WizardStage.ENTRY)
        route_type = RouteType(route_type)
        self.state.route_type = route_type
        self.state.data["route_type"] = route_type.value
        if route_type == RouteType.EXISTING_PATIENT:
            self._goto(WizardStage.EXISTING_PATIENT_LOGIN)
        else:
            self._goto(WizardStage.QUESTIONNAIRE)
        return self.snapshot()

    # --- existing patients ---

    async def login_existing_patient(self, national_id: str, email: str) -> WizardSnapshot:
        self._begin(WizardStage.EXISTING_PATIENT_LOGIN)
        errors = {}
        if not rut.is_valid(national_id):
            errors["national_id"] = "invalid RUT"
        if not EMAIL_RE.match((email or "").strip()):
            errors["email"] = "invalid email"
        if errors:
            return self._validation_error(errors)

        national_id = rut.normalize(national_id)
        email = email.strip().lower()
        external_id = None
        try:
            external_id = await self.c.scheduling.find_patient(national_id, email)
        except AdapterUnavailable as e:
            logger.info(f"Existing patient lookup unavailable, continuing with given identity: {e.message}")

        name, phone = EXISTING_PATIENT_NAME, None
        previous = await self.evaluations.repo.find_latest_by_national_id(national_id)
        lead = await self.evaluations.leads.lookup(national_id=national_id, email=email)
        for source in (lead, previous):
            if source is not None and source.name:
                name, phone = source.name, source.phone
                break

        self.state.data.update({
            "national_id": national_id,
            "email": email,
            "name": name,
            "phone": phone,
            "external_patient_id": external_id,
            "patient_identified": True,
        })
        return self.snapshot()

    async def choose_existing_patient_path(self, choice: str) -> WizardSnapshot:
        self._begin(WizardStage.EXISTING_PATIENT_LOGIN)
        if not self.state.data.get("patient_identified"):
            raise ActionNotAllowed("log in first")
        if choice == "control":
            self.state.data["control_url"] = self.catalog.control_only_url
            self._goto(WizardStage.CONTROL_ONLY)
        elif choice == "treatment":
            self._goto(WizardStage.TREATMENT_REQUEST)
        else:
            return self._validation_error({"choice": "control or treatment"})
        return self.snapshot()

    async def submit_treatment_request(self, motive: str) -> WizardSnapshot:
        """Existing patients skip AI screening and go straight to the paid evaluation."""
        self._begin(WizardStage.TREATMENT_REQUEST)
        motive = (motive or "").strip()
        if len(motive) < MIN_MOTIVE_LENGTH:
            return self._validation_error({"motive": f"at least {MIN_MOTIVE_LENGTH} characters"})
        data = self.state.data
        try:
            ev, _ = await self.evaluations.create(
                IdentityIn(name=data.get("name") or EXISTING_PATIENT_NAME, email=data["email"],
                           phone=data.get("phone"), national_id=data.get("national_id")),
                route_type=RouteType.EXISTING_PATIENT,
                motive=motive,
                stage=EvaluationStage.QUESTIONNAIRE_DONE,
                external_patient_id=data.get("external_patient_id"),
                submission_key=self.state.submission_key,
            )
        except SQLAlchemyError as e:
            return await self._store_failure(e)
        self.state.evaluation_id = ev.id
        data["motive"] = motive
        data["price"] = PaymentService(self.session, self.c, self.catalog).amount_for(ev)
        self._goto(WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM)
        return self.snapshot()

    # --- questionnaire and screening ---

    async def _upload_images(self, evaluation_id: uuid.UUID, submission: QuestionnaireSubmission) -> tuple[list[str], list[str]]:
        stored, failed = [], []
        for index, image in enumerate(submission.images):
            name = re.sub(r"[^A-Za-z0-9._-]", "_", image.filename) or "image"
            key = f"intake/{evaluation_id}/{index}-{name}"
            try:
                await asyncio.to_thread(self.c.storage.put_bytes, key, image.content, image.content_type)
                stored.append(key)
            except OSError as e:
                # a failed image never fails the questionnaire
                logger.warning(f"Intake image {image.filename} for {evaluation_id} not stored, skipping: {e}")
                failed.append(image.filename)
        return stored, failed

    async def submit_questionnaire(self, submission: QuestionnaireSubmission) -> WizardSnapshot:
        self._begin(WizardStage.QUESTIONNAIRE)
        errors = validate_questionnaire(submission, settings.MAX_INTAKE_IMAGES)
        if errors:
            return self._validation_error(errors)

        route_type = self.state.route_type or RouteType.NEW_PATIENT
        questionnaire = dict(submission.questionnaire)
        try:
            ev, created = await self.evaluations.create(
                IdentityIn(
                    name=submission.name.strip(), email=submission.email.strip(), phone=submission.phone.strip(),
                    national_id=rut.normalize(submission.national_id) if submission.national_id else None,
                    birth_date=submission.birth_date,
                ),
                route_type=route_type,
                motive=submission.motive.strip(),
                questionnaire=questionnaire,
                submission_key=self.state.submission_key,
            )
            self.state.evaluation_id = ev.id

            stored, failed = [], []
            if not ev.image_references:
                stored, failed = await self._upload_images(ev.id, submission)
                if stored:
                    await self.evaluations.repo.set_once(ev.id, "image_references", stored)
            if ev.clinical_questionnaire is None:
                await self.evaluations.repo.set_once(ev.id, "clinical_questionnaire", questionnaire)
            await self.evaluations.advance(ev.id, EvaluationStage.QUESTIONNAIRE_DONE, strict=False)
        except SQLAlchemyError as e:
            return await self._store_failure(e)

        if not created:
            logger.info(f"Wizard {self.state.wizard_id} re-submitted questionnaire for {ev.id}")
        self.state.data.update({
            "name": ev.name,
            "email": ev.email,
            "image_count": len(stored) or len(ev.image_references or []),
            "failed_images": failed,
        })
        self._goto(WizardStage.AI_SCREENING)
        return self.snapshot()

    async def run_screening(self) -> WizardSnapshot:
        self._begin(WizardStage.AI_SCREENING)
        evaluation_id = self._require_evaluation()
        try:
            ev = await ScreeningService(self.session, self.c, self.catalog).run(evaluation_id)
        except SQLAlchemyError as e:
            return await self._store_failure(e)
        if ev.suggested_route is None:
            # the evaluation moved on without a screening result; let the user retry
            return await self._fail(StageTransitionError(f"screening not recorded for {evaluation_id}"))
        self._load_evaluation_data(ev)
        self._goto(WizardStage.PATH_EXPLANATION)
        return self.snapshot()

    async def continue_from_path(self) -> WizardSnapshot:
        self._begin(WizardStage.PATH_EXPLANATION)
        ev = await self.evaluations.require(self._require_evaluation())
        self.state.data["price"] = PaymentService(self.session, self.c, self.catalog).amount_for(ev)
        self._goto(WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM)
        return self.snapshot()

    # --- premium evaluation: confirm / payment / schedule ---

    async def confirm_evaluation(self) -> WizardSnapshot:
        self._begin(WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM)
        evaluation_id = self._require_evaluation()
        payments = PaymentService(self.session, self.c, self.catalog)
        try:
            checkout = await payments.ensure_checkout(evaluation_id)
        except EvaluationClosed:
            return await self._closed(evaluation_id)
        except ActionNotAllowed:
            # already paid (webhook arrived first)
            return await self._after_approval(evaluation_id)
        except AdapterFailed as e:
            return await self._fail(e)
        except SQLAlchemyError as e:
            return await self._store_failure(e)
        self.state.data.update({"checkout_url": checkout.redirect_url, "price": checkout.amount, "can_retry_payment": False})
        self._goto(WizardStage.PREMIUM_EVALUATION, PremiumStep.PAYMENT)
        return self.snapshot()

    async def open_checkout(self) -> WizardSnapshot:
        """Redirect URL of the open checkout; a new session is opened when the last one was closed."""
        self._begin(WizardStage.PREMIUM_EVALUATION, PremiumStep.PAYMENT)
        evaluation_id = self._require_evaluation()
        payments = PaymentService(self.session, self.c, self.catalog)
        try:
            checkout = await payments.ensure_checkout(evaluation_id)
        except EvaluationClosed:
            return await self._closed(evaluation_id)
        except ActionNotAllowed:
            return await self._after_approval(evaluation_id)
        except AdapterFailed as e:
            return await self._fail(e)
        except SQLAlchemyError as e:
            return await self._store_failure(e)
        self.state.data.update({"checkout_url": checkout.redirect_url, "can_retry_payment": False})
        return self.snapshot()

    async def _pause(self, evaluation_id: uuid.UUID) -> None:
        if self.c.payment_signals is not None:
            await self.c.payment_signals.wait(evaluation_id, self.poll_interval)
        else:
            await self.sleep(self.poll_interval)

    async def check_payment_status(self, outcome: str | None = None) -> WizardSnapshot:
        """
        Read payment_status after the patient returns from the gateway. When not yet
        settled, read again up to poll_attempts more times, waiting poll_interval
        between reads. Only reads; the webhook owns payment_status.
        """
        self._begin(WizardStage.PREMIUM_EVALUATION, PremiumStep.PAYMENT)
        evaluation_id = self._require_evaluation()
        if outcome:
            self.state.data["payment_outcome"] = outcome

        repo = self.evaluations.repo
        status = await repo.get_payment_status(evaluation_id)
        for _ in range(self.poll_attempts):
            if status in (PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.REFUNDED):
                break
            await self._pause(evaluation_id)
            status = await repo.get_payment_status(evaluation_id)

        self.state.data["payment_status"] = status.value if status else None
        if status == PaymentStatus.APPROVED:
            return await self._after_approval(evaluation_id)
        if status == PaymentStatus.REFUNDED:
            return await self._closed(evaluation_id)
        if status == PaymentStatus.REJECTED:
            self.state.data["can_retry_payment"] = True
            self.state.data.pop("checkout_url", None)
            self._set_error("payment_rejected", PAYMENT_REJECTED_MESSAGE)
            return self.snapshot()
        self._set_error("payment_pending", PAYMENT_PENDING_MESSAGE)
        return self.snapshot()

    def _preregister_patient(self, evaluation_id: uuid.UUID) -> None:
        c, catalog = self.c, self.catalog

        async def _register():
            async with c.session_factory() as s:
                await SchedulingService(s, c, catalog).find_or_create_patient(evaluation_id)

        c.detached.spawn(f"scheduling-preregistration:{evaluation_id}", _register)

    async def _after_approval(self, evaluation_id: uuid.UUID) -> WizardSnapshot:
        self._preregister_patient(evaluation_id)
        self.state.data.update({"payment_status": PaymentStatus.APPROVED.value, "can_retry_payment": False})
        self._goto(WizardStage.PREMIUM_EVALUATION, PremiumStep.SCHEDULE)
        await self._fill_slots()
        return self.snapshot()

    async def _fill_slots(self) -> None:
        slots, placeholder = await SchedulingService(self.session, self.c, self.catalog).list_slots(self.clock().date())
        self.state.data["slots"] = [s.model_dump() for s in slots]
        self.state.data["slots_placeholder"] = placeholder

    async def load_slots(self) -> WizardSnapshot:
        self._begin(WizardStage.PREMIUM_EVALUATION, PremiumStep.SCHEDULE)
        await self._fill_slots()
        return self.snapshot()

    async def schedule_appointment(self, date: str, time: str) -> WizardSnapshot:
        self._begin(WizardStage.PREMIUM_EVALUATION, PremiumStep.SCHEDULE)
        evaluation_id = self._require_evaluation()
        try:
            ev = await SchedulingService(self.session, self.c, self.catalog).book(evaluation_id, date, time)
        except ValidationFailed as e:
            return self._validation_error(e.field_errors)
        except ManualSchedulingRequired as e:
            ev = await self.evaluations.get(evaluation_id)
            self.state.data["manual_booking_url"] = self.catalog.booking_link_for(ev.suggested_route if ev else None)
            return await self._fail(e, MANUAL_BOOKING_MESSAGE)
        except AdapterFailed as e:
            return await self._fail(e)
        except SQLAlchemyError as e:
            return await self._store_failure(e)
        self.state.data.update({
            "appointment_date": date,
            "appointment_time": time,
            "appointment_ref": ev.appointment_ref,
        })
        self.state.data.pop("manual_booking_url", None)
        self._goto(WizardStage.COMPLETE)
        return self.snapshot()

    # --- lifecycle ---

    async def reset(self) -> WizardSnapshot:
        self.state = WizardState(wizard_id=self.state.wizard_id)
        logger.info(f"Wizard {self.state.wizard_id} reset")
        return self.snapshot()

    async def cancel(self) -> WizardSnapshot:
        if self.state.evaluation_id is not None:
            try:
                await self.evaluations.cancel(self.state.evaluation_id)
            except StageTransitionError:
                raise ActionNotAllowed("evaluation already finished")
        return await self.reset()

    async def resume(self, evaluation_id: uuid.UUID) -> WizardSnapshot:
        """Rebuild the wizard from the persisted evaluation stage."""
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        stage = EvaluationStage(ev.evaluation_stage)
        route_type = RouteType(ev.route_type)
        wizard_stage, premium_step = RESUME_STAGE[stage]

        self.state = WizardState(wizard_id=self.state.wizard_id)
        if wizard_stage == WizardStage.ENTRY:
            return self.snapshot()

        self.state.route_type = route_type
        self.state.evaluation_id = ev.id
        self.state.data["route_type"] = route_type.value
        if ev.submission_key:
            self.state.submission_key = ev.submission_key
        self._load_evaluation_data(ev)

        if stage == EvaluationStage.QUESTIONNAIRE_DONE and route_type == RouteType.EXISTING_PATIENT:
            wizard_stage, premium_step = WizardStage.PREMIUM_EVALUATION, PremiumStep.CONFIRM
        if wizard_stage == WizardStage.PREMIUM_EVALUATION:
            self.state.data["price"] = PaymentService(self.session, self.c, self.catalog).amount_for(ev)
        if premium_step == PremiumStep.PAYMENT:
            checkout = await CheckoutRepository(self.session).get_open(ev.id)
            if checkout and checkout.redirect_url:
                self.state.data["checkout_url"] = checkout.redirect_url
            else:
                self.state.data["can_retry_payment"] = True
            self.state.data["payment_status"] = ev.payment_status.value if ev.payment_status else None
        self.state.stage = wizard_stage
        self.state.premium_step = premium_step
        if premium_step == PremiumStep.SCHEDULE:
            await self._fill_slots()
        if wizard_stage == WizardStage.COMPLETE and ev.appointment_time:
            self.state.data["appointment_time"] = ev.appointment_time.isoformat()
        logger.info(f"Wizard {self.state.wizard_id} resumed {ev.id} at {wizard_stage.value}")
        return self.snapshot()
