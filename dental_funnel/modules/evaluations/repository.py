import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from dental_funnel.core.errors import StageTransitionError
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus, SuggestedRoute
from dental_funnel.modules.evaluations.stages import can_advance, check_transition

# fields that may be written once and never overwritten
WRITE_ONCE = {"clinical_questionnaire", "image_references", "external_patient_id", "appointment_time"}

class EvaluationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> Evaluation:
        obj = Evaluation(**fields)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, evaluation_id: uuid.UUID, *, fresh: bool = False) -> Evaluation | None:
        q = select(Evaluation).where(Evaluation.id == evaluation_id)
        if fresh:
            q = q.execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_by_submission_key(self, key: str) -> Evaluation | None:
        res = await self.session.execute(select(Evaluation).where(Evaluation.submission_key == key))
        return res.scalar_one_or_none()

    async def find_latest_by_national_id(self, national_id: str) -> Evaluation | None:
        res = await self.session.execute(
            select(Evaluation).where(Evaluation.national_id == national_id).order_by(Evaluation.created_at.desc()).limit(1)
        )
        return res.scalar_one_or_none()

    async def get_payment_status(self, evaluation_id: uuid.UUID) -> PaymentStatus | None:
        # column select bypasses the identity map, so webhook writes from other sessions are visible
        res = await self.session.execute(select(Evaluation.payment_status).where(Evaluation.id == evaluation_id))
        return res.scalar_one_or_none()

    async def update_fields(self, evaluation_id: uuid.UUID, **fields) -> bool:
        """Partial update of the given columns only."""
        if not fields:
            return False
        res = await self.session.execute(
            update(Evaluation)
            .where(Evaluation.id == evaluation_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0

    async def set_once(self, evaluation_id: uuid.UUID, field: str, value) -> bool:
        """Write a write-once column; returns False when it already holds a value."""
        if field not in WRITE_ONCE:
            raise ValueError(f"{field} is not a write-once field")
        column = getattr(Evaluation, field)
        res = await self.session.execute(
            update(Evaluation)
            .where(Evaluation.id == evaluation_id, column.is_(None))
            .values({field: value})
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0

    async def advance_stage(self, evaluation_id: uuid.UUID, target: EvaluationStage, *, strict: bool = True, **fields) -> tuple[Evaluation | None, bool]:
        """
        Move evaluation_stage forward (or to cancelled), together with any extra fields.

        Returns (evaluation, changed). With strict=False a non-forward move is a no-op
        instead of an error, which suits replayed webhook notifications.
        """
        obj = await self.get(evaluation_id, fresh=True)
        if not obj:
            return None, False
        current = EvaluationStage(obj.evaluation_stage)
        if current == target and not strict:
            return obj, False
        if strict:
            check_transition(current, target)
        elif not can_advance(current, target):
            return obj, False
        res = await self.session.execute(
            update(Evaluation)
            .where(Evaluation.id == evaluation_id, Evaluation.evaluation_stage == current)
            .values(evaluation_stage=target, **fields)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise StageTransitionError(f"concurrent stage change on {evaluation_id}")
        return await self.get(evaluation_id, fresh=True), True

    async def record_screening(self, evaluation_id: uuid.UUID, *, route: SuggestedRoute, summary: str, findings: list[dict], source: str) -> bool:
        """
        Store route, summary and findings together with stage=ai_analyzed in one UPDATE.
        Only the first writer succeeds; returns False when a result already exists.
        """
        res = await self.session.execute(
            update(Evaluation)
            .where(
                Evaluation.id == evaluation_id,
                Evaluation.suggested_route.is_(None),
                Evaluation.evaluation_stage.in_([EvaluationStage.STARTED, EvaluationStage.QUESTIONNAIRE_DONE]),
            )
            .values(
                suggested_route=route,
                ai_summary=summary,
                ai_findings=findings,
                ai_source=source,
                evaluation_stage=EvaluationStage.AI_ANALYZED,
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0
