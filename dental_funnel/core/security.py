import uuid
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import BaseModel
from dental_funnel.core.config import settings

http_bearer = HTTPBearer(auto_error=False)

class Principal(BaseModel):
    user_id: uuid.UUID
    roles: list[str] = []
    scopes: list[str] = []

class PatientSession(BaseModel):
    lead_id: uuid.UUID
    national_id: str | None = None
    email: str | None = None
    name: str | None = None

def _decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG], audience=settings.REQUIRED_AUDIENCE)
        return payload
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}")

def create_session_token(*, lead_id: uuid.UUID, national_id: str | None, email: str | None, name: str | None, ttl_minutes: int | None = None) -> tuple[str, int]:
    ttl = ttl_minutes or settings.SESSION_TOKEN_TTL_MINUTES
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(lead_id),
        "kind": "patient",
        "rut": national_id,
        "email": email,
        "name": name,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG), ttl * 60

async def get_principal(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> Principal:
    # In local/dev, allow missing token
    if creds is None and settings.ENV == "local":
        return Principal(user_id=uuid.uuid4(), roles=["admin"], scopes=["*"])
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")

    data = _decode_token(creds.credentials)
    if data.get("kind") == "patient":
        raise HTTPException(status_code=403, detail="Staff token required")
    user_id = uuid.UUID(str(data.get("sub") or data.get("user_id")))
    roles = data.get("roles", [])
    scopes = data.get("scopes", [])
    return Principal(user_id=user_id, roles=roles, scopes=scopes)

async def get_patient_session(creds: HTTPAuthorizationCredentials | None = Depends(http_bearer)) -> PatientSession:
    if creds is None:
        raise HTTPException(status_code=401, detail="Missing token")
    data = _decode_token(creds.credentials)
    if data.get("kind") != "patient":
        raise HTTPException(status_code=403, detail="Patient session required")
    return PatientSession(
        lead_id=uuid.UUID(str(data["sub"])),
        national_id=data.get("rut"),
        email=data.get("email"),
        name=data.get("name"),
    )

def require_scopes(*needed: str):
    def dep(principal: Principal = Depends(get_principal)) -> Principal:
        if "*" in principal.scopes:
            return principal
        if not set(needed).issubset(set(principal.scopes)):
            raise HTTPException(status_code=403, detail="Insufficient scopes")
        return principal
    return dep
