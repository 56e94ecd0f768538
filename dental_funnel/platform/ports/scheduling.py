from datetime import date
from typing import Protocol, runtime_checkable
from pydantic import BaseModel

class PatientIdentity(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    national_id: str | None = None
    birth_date: date | None = None

class SlotDay(BaseModel):
    date: str  # YYYY-MM-DD
    times: list[str]  # HH:MM

class Professional(BaseModel):
    id: str
    name: str | None = None

class BookingRequest(BaseModel):
    patient_id: str
    professional_id: str
    date: str
    time: str
    duration_minutes: int = 60
    notes: str | None = None

@runtime_checkable
class SchedulingPort(Protocol):
    async def find_patient(self, national_id: str | None, email: str | None) -> str | None: ...
    async def create_patient(self, identity: PatientIdentity) -> str: ...
    async def list_available_slots(self, start: date, end: date) -> list[SlotDay]: ...
    async def list_professionals(self) -> list[Professional]: ...
    async def book_appointment(self, request: BookingRequest) -> str: ...
