from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from dental_funnel.api.deps import get_collaborators
from dental_funnel.core.db import get_session
from dental_funnel.core.errors import CodeExpired, CodeMismatch, InvalidCode, ValidationFailed
from dental_funnel.core.security import PatientSession, get_patient_session
from dental_funnel.modules.auth.schemas import RequestCodeIn, VerifyCodeIn, SignupIn, CodeRequestOut, SessionOut
from dental_funnel.modules.auth.service import AuthService
from dental_funnel.platform.collaborators import Collaborators

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session), collaborators: Collaborators = Depends(get_collaborators)) -> AuthService:
    return AuthService(s, collaborators)

@router.post("/request-code", response_model=CodeRequestOut)
async def request_code(payload: RequestCodeIn, service: AuthService = Depends(svc)):
    try:
        return await service.request_code(payload.national_id, payload.email)
    except ValidationFailed as e:
        raise HTTPException(400, {"code": e.code, "field_errors": e.field_errors})

@router.post("/verify-code", response_model=SessionOut)
async def verify_code(payload: VerifyCodeIn, service: AuthService = Depends(svc)):
    try:
        return await service.verify_code(payload.national_id, payload.code)
    except ValidationFailed as e:
        raise HTTPException(400, {"code": e.code, "field_errors": e.field_errors})
    except (InvalidCode, CodeExpired, CodeMismatch) as e:
        raise HTTPException(401, e.code)

@router.post("/signup", response_model=CodeRequestOut)
async def signup(payload: SignupIn, service: AuthService = Depends(svc)):
    try:
        return await service.signup(name=payload.name, email=payload.email, national_id=payload.national_id, phone=payload.phone)
    except ValidationFailed as e:
        raise HTTPException(400, {"code": e.code, "field_errors": e.field_errors})

@router.get("/me", response_model=PatientSession)
async def me(patient: PatientSession = Depends(get_patient_session)):
    return patient
