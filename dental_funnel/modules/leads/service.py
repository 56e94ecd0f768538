import uuid
import logging
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from dental_funnel.modules.leads.repository import LeadRepository
from dental_funnel.modules.leads.models import FunnelLead
from dental_funnel.modules.evaluations.enums import EvaluationStage, RouteType
from dental_funnel.modules.evaluations.stages import LEAD_STAGE_FOR
from dental_funnel.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

class LeadService:
    """Lead bookkeeping inside the caller's transaction; never commits on its own."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = LeadRepository(session)

    async def lookup(self, *, national_id: str | None = None, email: str | None = None) -> FunnelLead | None:
        if national_id:
            lead = await self.repo.find_by_national_id(national_id)
            if lead:
                return lead
        if email:
            return await self.repo.find_by_email(email)
        return None

    async def lookup_or_create(self, *, name: str | None, email: str | None, national_id: str | None = None,
                               phone: str | None = None, route_type: RouteType | None = None) -> tuple[FunnelLead, bool]:
        lead = await self.lookup(national_id=national_id, email=email)
        if lead:
            # fill gaps only; never overwrite what the patient told us earlier
            if national_id and not lead.national_id: lead.national_id = national_id
            if phone and not lead.phone: lead.phone = phone
            if name and not lead.name: lead.name = name
            if email and not lead.email: lead.email = email.strip().lower()
            if route_type and not lead.route_type: lead.route_type = route_type
            lead.last_contact_at = datetime.now(timezone.utc)
            await self.session.flush()
            return lead, False

        lead = await self.repo.create(
            name=name,
            email=email.strip().lower() if email else None,
            national_id=national_id,
            phone=phone,
            route_type=route_type,
        )
        await OutboxService(self.session).enqueue(
            "LEAD_CREATED", "lead", lead.id, {"route_type": route_type.value if route_type else None}
        )
        logger.info(f"Created funnel lead {lead.id}")
        return lead, True

    async def link_evaluation(self, lead: FunnelLead, evaluation_id: uuid.UUID) -> None:
        lead.evaluation_id = evaluation_id
        await self.session.flush()

    async def sync_stage(self, evaluation_id: uuid.UUID, stage: EvaluationStage) -> None:
        await self.repo.set_stage_for_evaluation(evaluation_id, LEAD_STAGE_FOR[stage])
