import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from dental_funnel.modules.payments.models import CheckoutSession
from dental_funnel.modules.evaluations.enums import CheckoutStatus

class CheckoutRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_open(self, evaluation_id: uuid.UUID) -> CheckoutSession | None:
        res = await self.session.execute(
            select(CheckoutSession)
            .where(CheckoutSession.open_key == evaluation_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def reserve(self, evaluation_id: uuid.UUID, *, amount: int, currency: str) -> CheckoutSession:
        """Insert an open session; the unique open_key makes a second open one fail with IntegrityError."""
        obj = CheckoutSession(
            evaluation_id=evaluation_id,
            amount=amount,
            currency=currency,
            status=CheckoutStatus.OPEN,
            open_key=evaluation_id,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def close(self, obj: CheckoutSession, status: CheckoutStatus) -> CheckoutSession:
        obj.status = status
        obj.open_key = None
        await self.session.flush()
        return obj

    async def close_open(self, evaluation_id: uuid.UUID, status: CheckoutStatus) -> CheckoutSession | None:
        obj = await self.get_open(evaluation_id)
        if obj:
            await self.close(obj, status)
        return obj
