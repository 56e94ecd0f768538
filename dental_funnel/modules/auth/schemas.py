import uuid
from enum import Enum
from pydantic import BaseModel, EmailStr

class AuthStep(str, Enum):
    ENTER_IDENTIFIER = "enter_identifier"
    CODE_SENT = "code_sent"
    VERIFIED = "verified"
    SIGNUP = "signup"

class RequestCodeIn(BaseModel):
    national_id: str
    email: EmailStr | None = None

class VerifyCodeIn(BaseModel):
    national_id: str
    code: str

class SignupIn(BaseModel):
    name: str
    email: EmailStr
    national_id: str
    phone: str | None = None

class CodeRequestOut(BaseModel):
    next_step: AuthStep
    is_new_patient: bool = False
    national_id: str | None = None
    email_masked: str | None = None
    phone_masked: str | None = None
    expires_in_seconds: int | None = None
    message: str | None = None

class SessionOut(BaseModel):
    next_step: AuthStep = AuthStep.VERIFIED
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    lead_id: uuid.UUID
    name: str | None = None
    email: str | None = None
