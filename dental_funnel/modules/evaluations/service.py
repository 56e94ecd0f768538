import uuid
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from dental_funnel.core.errors import NotFound
from dental_funnel.modules.evaluations.repository import EvaluationRepository
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.enums import EvaluationStage, RouteType, CheckoutStatus
from dental_funnel.modules.evaluations.schemas import IdentityIn
from dental_funnel.modules.leads.service import LeadService
from dental_funnel.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

class EvaluationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = EvaluationRepository(session)
        self.leads = LeadService(session)
        self.outbox = OutboxService(session)

    async def get(self, evaluation_id: uuid.UUID, *, fresh: bool = False) -> Evaluation | None:
        return await self.repo.get(evaluation_id, fresh=fresh)

    async def require(self, evaluation_id: uuid.UUID, *, fresh: bool = False) -> Evaluation:
        obj = await self.repo.get(evaluation_id, fresh=fresh)
        if not obj:
            raise NotFound(f"evaluation {evaluation_id} not found")
        return obj

    async def create(self, identity: IdentityIn, *, route_type: RouteType, motive: str,
                     questionnaire: dict | None = None, stage: EvaluationStage = EvaluationStage.STARTED,
                     external_patient_id: str | None = None, submission_key: str | None = None) -> tuple[Evaluation, bool]:
        """
        Create the evaluation and its linked lead. A repeated submission_key returns the
        evaluation created by the first request instead of a second one.
        """
        if submission_key:
            existing = await self.repo.get_by_submission_key(submission_key)
            if existing:
                return existing, False
        try:
            obj = await self.repo.create(
                name=identity.name.strip(),
                email=identity.email.strip().lower(),
                phone=identity.phone,
                national_id=identity.national_id,
                birth_date=identity.birth_date,
                route_type=route_type,
                motive=motive,
                clinical_questionnaire=questionnaire,
                evaluation_stage=stage,
                external_patient_id=external_patient_id,
                submission_key=submission_key,
            )
        except IntegrityError:
            await self.session.rollback()
            existing = await self.repo.get_by_submission_key(submission_key) if submission_key else None
            if existing:
                return existing, False
            raise
        lead, _ = await self.leads.lookup_or_create(
            name=obj.name, email=obj.email, national_id=obj.national_id, phone=obj.phone, route_type=route_type,
        )
        await self.leads.link_evaluation(lead, obj.id)
        await self.leads.sync_stage(obj.id, stage)
        await self.outbox.enqueue(
            "EVALUATION_CREATED", "evaluation", obj.id,
            {"route_type": route_type.value, "stage": stage.value},
        )
        await self.session.commit()
        logger.info(f"Created evaluation {obj.id} route={route_type.value} stage={stage.value}")
        return obj, True

    async def advance(self, evaluation_id: uuid.UUID, target: EvaluationStage, *, strict: bool = True, commit: bool = True, **fields) -> Evaluation:
        obj, changed = await self.repo.advance_stage(evaluation_id, target, strict=strict, **fields)
        if not obj:
            raise NotFound(f"evaluation {evaluation_id} not found")
        if changed:
            await self.leads.sync_stage(evaluation_id, target)
            await self.outbox.enqueue("EVALUATION_STAGE_CHANGED", "evaluation", evaluation_id, {"to": target.value})
        if commit:
            await self.session.commit()
        return obj

    async def complete(self, evaluation_id: uuid.UUID) -> Evaluation:
        return await self.advance(evaluation_id, EvaluationStage.COMPLETED)

    async def cancel(self, evaluation_id: uuid.UUID) -> Evaluation:
        # imported here: payments depends on this module
        from dental_funnel.modules.payments.repository import CheckoutRepository
        await CheckoutRepository(self.session).close_open(evaluation_id, CheckoutStatus.CANCELLED)
        return await self.advance(evaluation_id, EvaluationStage.CANCELLED)
