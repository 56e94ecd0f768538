import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.core.config import settings
from dental_funnel.core.errors import CodeExpired, CodeMismatch, InvalidCode, ValidationFailed
from dental_funnel.core.security import create_session_token
from dental_funnel.modules.auth import rut
from dental_funnel.modules.auth.repository import OneTimeCodeRepository
from dental_funnel.modules.auth.schemas import AuthStep, CodeRequestOut, SessionOut
from dental_funnel.modules.evaluations.enums import RouteType
from dental_funnel.modules.evaluations.repository import EvaluationRepository
from dental_funnel.modules.leads.service import LeadService
from dental_funnel.modules.notifications.service import dispatch_message
from dental_funnel.platform.collaborators import Collaborators

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # some drivers hand back naive timestamps
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def mask_email(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    return f"***{phone[-4:]}"


def validated_rut(raw: str | None) -> str:
    if not rut.is_valid(raw):
        raise ValidationFailed({"national_id": "invalid RUT"})
    return rut.normalize(raw)


class AuthService:
    """One-time-code login for returning patients: enter_identifier -> code_sent -> verified."""

    def __init__(self, session: AsyncSession, collaborators: Collaborators, clock: Callable[[], datetime] = _utcnow):
        self.session = session
        self.c = collaborators
        self.clock = clock
        self.codes = OneTimeCodeRepository(session)
        self.leads = LeadService(session)
        self.evaluations = EvaluationRepository(session)

    async def _find_lead(self, national_id: str):
        lead = await self.leads.lookup(national_id=national_id)
        if lead:
            return lead
        ev = await self.evaluations.find_latest_by_national_id(national_id)
        if not ev:
            return None
        # patient known only through an evaluation; give them a lead to log in with
        lead, _ = await self.leads.lookup_or_create(
            name=ev.name, email=ev.email, national_id=national_id, phone=ev.phone, route_type=RouteType(ev.route_type),
        )
        if lead.evaluation_id is None:
            await self.leads.link_evaluation(lead, ev.id)
        return lead

    async def request_code(self, national_id: str, email: str | None = None) -> CodeRequestOut:
        national_id = validated_rut(national_id)
        lead = await self._find_lead(national_id)
        if not lead:
            return CodeRequestOut(
                next_step=AuthStep.SIGNUP, is_new_patient=True, national_id=national_id,
                message="No encontramos un registro con este RUT. ¿Es paciente nuevo?",
            )

        if email and not lead.email:
            lead.email = email.strip().lower()
        if not lead.email:
            raise ValidationFailed({"email": "required to receive the verification code"})

        now = self.clock()
        code = generate_code()
        await self.codes.supersede_pending(lead.id)
        await self.codes.create(
            lead_id=lead.id,
            code_hash=hash_code(code),
            channel=getattr(self.c.messaging, "channel", "whatsapp"),
            expires_at=now + timedelta(minutes=settings.OTP_TTL_MINUTES),
        )
        lead.last_contact_at = now
        await self.session.commit()
        logger.info(f"Verification code issued for lead {lead.id}")

        dispatch_message(
            self.c.detached, self.c.session_factory, self.c.messaging,
            name=f"otp-message:{lead.id}",
            to=lead.phone,
            template_name="otp_code",
            variables={"name": (lead.name or "").split(" ")[0], "code": code, "minutes": settings.OTP_TTL_MINUTES},
            meta={"lead_id": str(lead.id)},
        )
        return CodeRequestOut(
            next_step=AuthStep.CODE_SENT,
            national_id=national_id,
            email_masked=mask_email(lead.email),
            phone_masked=mask_phone(lead.phone),
            expires_in_seconds=settings.OTP_TTL_MINUTES * 60,
            message="Código de verificación enviado",
        )

    async def verify_code(self, national_id: str, code: str) -> SessionOut:
        code = (code or "").strip()
        if len(code) != CODE_LENGTH or not code.isdigit():
            raise ValidationFailed({"code": f"expected {CODE_LENGTH} digits"})
        national_id = validated_rut(national_id)

        lead = await self.leads.lookup(national_id=national_id)
        if not lead:
            raise InvalidCode("no pending code")
        otp = await self.codes.latest_pending(lead.id)
        if not otp:
            raise InvalidCode("no pending code")
        now = self.clock()
        if _as_utc(otp.expires_at) < now:
            raise CodeExpired("code expired, request a new one")
        if not hmac.compare_digest(hash_code(code), otp.code_hash):
            raise CodeMismatch("code does not match")
        if not await self.codes.mark_used(otp.id, now):
            raise InvalidCode("code already used")
        lead.last_contact_at = now
        await self.session.commit()

        token, expires_in = create_session_token(
            lead_id=lead.id, national_id=lead.national_id, email=lead.email, name=lead.name,
        )
        logger.info(f"Lead {lead.id} verified")
        return SessionOut(access_token=token, expires_in=expires_in, lead_id=lead.id, name=lead.name, email=lead.email)

    async def signup(self, *, name: str, email: str, national_id: str, phone: str | None = None) -> CodeRequestOut:
        national_id = validated_rut(national_id)
        if not (name or "").strip():
            raise ValidationFailed({"name": "required"})
        await self.leads.lookup_or_create(name=name.strip(), email=email, national_id=national_id, phone=phone)
        await self.session.commit()
        return await self.request_code(national_id, email)
