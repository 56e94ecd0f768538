import uuid
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.errors import ActionNotAllowed, AdapterFailed, ConfigurationError, EvaluationClosed
from dental_funnel.modules.evaluations.enums import EvaluationStage, PaymentStatus, CheckoutStatus, RouteType
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.evaluations.stages import TERMINAL
from dental_funnel.modules.events.outbox import OutboxService
from dental_funnel.modules.notifications.service import dispatch_message
from dental_funnel.modules.payments.models import CheckoutSession
from dental_funnel.modules.payments.repository import CheckoutRepository
from dental_funnel.platform.collaborators import Collaborators
from dental_funnel.platform.ports.payments import CheckoutRequest, PaymentNotification

logger = logging.getLogger(__name__)

class PaymentService:
    def __init__(self, session: AsyncSession, collaborators: Collaborators, catalog: FunnelCatalog):
        self.session = session
        self.c = collaborators
        self.catalog = catalog
        self.evaluations = EvaluationService(session)
        self.checkouts = CheckoutRepository(session)
        self.outbox = OutboxService(session)

    def amount_for(self, evaluation: Evaluation) -> int:
        # fixed once a checkout exists
        if evaluation.payment_amount is not None:
            return evaluation.payment_amount
        return self.catalog.price_for(evaluation.route_type)

    async def ensure_checkout(self, evaluation_id: uuid.UUID) -> CheckoutSession:
        """
        Return the open checkout session for the evaluation, creating one with the
        gateway only when none is open.
        """
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        if ev.evaluation_stage in TERMINAL:
            raise EvaluationClosed(f"evaluation is {EvaluationStage(ev.evaluation_stage).value}")
        if ev.payment_status == PaymentStatus.APPROVED:
            raise ActionNotAllowed("evaluation already paid")

        session_obj = await self.checkouts.get_open(evaluation_id)
        if session_obj and session_obj.redirect_url:
            return session_obj

        amount = self.amount_for(ev)
        if session_obj is None:
            try:
                session_obj = await self.checkouts.reserve(evaluation_id, amount=amount, currency=self.catalog.currency)
                await self.session.commit()
            except IntegrityError:
                # another request holds the open slot
                await self.session.rollback()
                existing = await self.checkouts.get_open(evaluation_id)
                if existing and existing.redirect_url:
                    return existing
                raise AdapterFailed("checkout_in_progress")

        request = CheckoutRequest(
            evaluation_id=str(evaluation_id),
            amount=session_obj.amount,
            currency=session_obj.currency,
            title=self.catalog.checkout_title_for(ev.route_type),
            description=f"Evaluación {RouteType(ev.route_type).value.replace('_', ' ')}",
            payer_email=ev.email,
            payer_name=ev.name,
            payer_phone=ev.phone,
        )
        try:
            result = await self.c.payments.create_checkout(request)
        except (AdapterFailed, ConfigurationError):
            await self.checkouts.close(session_obj, CheckoutStatus.FAILED)
            await self.session.commit()
            raise

        session_obj.external_id = result.external_id
        session_obj.redirect_url = result.redirect_url
        await self.evaluations.repo.update_fields(
            evaluation_id, payment_amount=session_obj.amount, payment_status=PaymentStatus.PENDING,
        )
        await self.evaluations.advance(evaluation_id, EvaluationStage.PAYMENT_PENDING, strict=False, commit=False)
        await self.outbox.enqueue(
            "CHECKOUT_CREATED", "evaluation", evaluation_id,
            {"amount": session_obj.amount, "currency": session_obj.currency, "preference_id": result.external_id},
        )
        await self.session.commit()
        logger.info(f"Checkout {session_obj.id} opened for evaluation {evaluation_id} amount={session_obj.amount}")
        return session_obj

    async def apply_notification(self, notification: PaymentNotification) -> Evaluation | None:
        """
        Apply a gateway notification. The gateway is authoritative for payment_status,
        but approved is never downgraded except by a refund.
        """
        try:
            evaluation_id = uuid.UUID(str(notification.external_reference))
        except (ValueError, TypeError):
            logger.warning(f"Payment {notification.external_payment_id} has no usable external reference")
            return None
        ev = await self.evaluations.get(evaluation_id, fresh=True)
        if not ev:
            logger.warning(f"Payment {notification.external_payment_id} references unknown evaluation {evaluation_id}")
            return None

        current = ev.payment_status
        status = notification.status
        logger.info(f"Payment {notification.external_payment_id} for {evaluation_id}: {current} -> {status.value}")

        if status == PaymentStatus.APPROVED:
            if current == PaymentStatus.APPROVED:
                return ev
            await self.evaluations.repo.update_fields(
                evaluation_id, payment_status=PaymentStatus.APPROVED, payment_id=notification.external_payment_id,
            )
            await self.checkouts.close_open(evaluation_id, CheckoutStatus.APPROVED)
            ev = await self.evaluations.advance(evaluation_id, EvaluationStage.PAYMENT_DONE, strict=False, commit=False)
        elif status == PaymentStatus.PENDING:
            if current is not None:
                return ev
            await self.evaluations.repo.update_fields(evaluation_id, payment_status=PaymentStatus.PENDING)
        elif status == PaymentStatus.REJECTED:
            if current in (PaymentStatus.APPROVED, PaymentStatus.REFUNDED, PaymentStatus.REJECTED):
                return ev
            await self.evaluations.repo.update_fields(
                evaluation_id, payment_status=PaymentStatus.REJECTED, payment_id=notification.external_payment_id,
            )
            await self.checkouts.close_open(evaluation_id, CheckoutStatus.REJECTED)
        elif status == PaymentStatus.REFUNDED:
            if current == PaymentStatus.REFUNDED:
                return ev
            await self.evaluations.repo.update_fields(evaluation_id, payment_status=PaymentStatus.REFUNDED)
            await self.checkouts.close_open(evaluation_id, CheckoutStatus.CANCELLED)
            ev = await self.evaluations.advance(evaluation_id, EvaluationStage.CANCELLED, strict=False, commit=False)

        await self.outbox.enqueue(
            "PAYMENT_STATUS_CHANGED", "evaluation", evaluation_id,
            {"from": current.value if current else None, "to": status.value, "payment_id": notification.external_payment_id},
        )
        await self.session.commit()
        ev = await self.evaluations.get(evaluation_id, fresh=True)

        if self.c.payment_signals:
            self.c.payment_signals.notify(evaluation_id)
        if status == PaymentStatus.APPROVED:
            dispatch_message(
                self.c.detached, self.c.session_factory, self.c.messaging,
                name=f"payment-approved-message:{evaluation_id}",
                to=ev.phone,
                template_name="payment_approved",
                variables={"name": ev.name.split(" ")[0], "amount": f"{ev.payment_amount or 0:,}".replace(",", "."), "currency": self.catalog.currency},
                meta={"evaluation_id": str(evaluation_id)},
            )
        return ev

    async def handle_gateway_event(self, topic: str | None, payment_id: str | None) -> Evaluation | None:
        """Webhook entry point: fetch the payment from the gateway and apply it."""
        if topic != "payment" or not payment_id:
            logger.info(f"Ignoring payment webhook topic={topic} id={payment_id}")
            return None
        notification = await self.c.payments.fetch_payment(payment_id)
        return await self.apply_notification(notification)
