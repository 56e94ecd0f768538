import uuid
from datetime import datetime
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from dental_funnel.modules.auth.models import OneTimeCode

class OneTimeCodeRepository:
    def __init__(self, session: AsyncSession): self.session = session

    async def create(self, **fields) -> OneTimeCode:
        obj = OneTimeCode(**fields)
        self.session.add(obj); await self.session.flush()
        return obj

    async def supersede_pending(self, lead_id: uuid.UUID) -> int:
        res = await self.session.execute(
            update(OneTimeCode)
            .where(OneTimeCode.lead_id == lead_id, OneTimeCode.used_at.is_(None), OneTimeCode.superseded.is_(False))
            .values(superseded=True)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    async def latest_pending(self, lead_id: uuid.UUID) -> OneTimeCode | None:
        res = await self.session.execute(
            select(OneTimeCode)
            .where(OneTimeCode.lead_id == lead_id, OneTimeCode.used_at.is_(None), OneTimeCode.superseded.is_(False))
            .order_by(OneTimeCode.expires_at.desc())
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def mark_used(self, code_id: uuid.UUID, when: datetime) -> bool:
        # conditional so a code can only be consumed once
        res = await self.session.execute(
            update(OneTimeCode)
            .where(OneTimeCode.id == code_id, OneTimeCode.used_at.is_(None))
            .values(used_at=when)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0
