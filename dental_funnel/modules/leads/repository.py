import uuid
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from dental_funnel.modules.leads.models import FunnelLead
from dental_funnel.modules.evaluations.enums import LeadStage

class LeadRepository:
    def __init__(self, session: AsyncSession): self.session = session

    async def create(self, **fields) -> FunnelLead:
        obj = FunnelLead(last_contact_at=datetime.now(timezone.utc), **fields)
        self.session.add(obj); await self.session.flush(); return obj

    async def get(self, lead_id: uuid.UUID) -> FunnelLead | None:
        res = await self.session.execute(select(FunnelLead).where(FunnelLead.id == lead_id))
        return res.scalar_one_or_none()

    async def find_by_national_id(self, national_id: str) -> FunnelLead | None:
        res = await self.session.execute(
            select(FunnelLead).where(FunnelLead.national_id == national_id).order_by(FunnelLead.created_at.desc()).limit(1)
        )
        return res.scalar_one_or_none()

    async def find_by_email(self, email: str) -> FunnelLead | None:
        res = await self.session.execute(
            select(FunnelLead).where(FunnelLead.email == email.strip().lower()).order_by(FunnelLead.created_at.desc()).limit(1)
        )
        return res.scalar_one_or_none()

    async def find_by_evaluation(self, evaluation_id: uuid.UUID) -> FunnelLead | None:
        res = await self.session.execute(select(FunnelLead).where(FunnelLead.evaluation_id == evaluation_id).limit(1))
        return res.scalar_one_or_none()

    async def set_stage_for_evaluation(self, evaluation_id: uuid.UUID, stage: LeadStage) -> int:
        res = await self.session.execute(
            update(FunnelLead)
            .where(FunnelLead.evaluation_id == evaluation_id)
            .values(stage=stage, last_contact_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return res.rowcount
