import logging
from collections import defaultdict
from datetime import date
import httpx

from dental_funnel.core.config import settings
from dental_funnel.core.errors import AdapterUnavailable, AdapterFailed, FunnelError
from dental_funnel.platform.ports.scheduling import (
    SchedulingPort, PatientIdentity, SlotDay, Professional, BookingRequest,
)

log = logging.getLogger(__name__)


def _json(resp: httpx.Response, error: type[FunnelError]):
    try:
        return resp.json()
    except ValueError as e:
        raise error(f"Dentalink returned a non-JSON body ({resp.status_code})") from e


def _rows(payload) -> list[dict]:
    if isinstance(payload, dict):
        data = payload.get("data", [])
    else:
        data = payload
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


def _id_of(payload) -> str | None:
    if isinstance(payload, dict):
        inner = payload.get("data")
        if isinstance(inner, dict) and inner.get("id") is not None:
            return str(inner["id"])
        if payload.get("id") is not None:
            return str(payload["id"])
    return None


class DentalinkScheduling(SchedulingPort):
    def __init__(self, api_token: str | None = None, api_url: str | None = None, branch_id: int | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.api_token = api_token or settings.DENTALINK_API_TOKEN
        self.api_url = (api_url or settings.DENTALINK_API_URL).rstrip("/")
        self.branch_id = branch_id or settings.DENTALINK_BRANCH_ID
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.api_token:
            raise AdapterUnavailable("Dentalink not configured")
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Token {self.api_token}", "Content-Type": "application/json"},
            timeout=15.0,
            transport=self.transport,
        )

    async def _get(self, path: str, params: dict | None = None) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.get(path, params=params)
        except httpx.HTTPError as e:
            raise AdapterUnavailable(f"Dentalink unreachable: {e}") from e

    async def find_patient(self, national_id: str | None, email: str | None) -> str | None:
        for key, value in (("rut", national_id), ("email", email)):
            if not value:
                continue
            resp = await self._get("/pacientes", params={key: value})
            if resp.status_code == 404:
                continue
            if resp.status_code >= 400:
                raise AdapterUnavailable(f"Dentalink patient search failed with {resp.status_code}")
            rows = _rows(_json(resp, AdapterUnavailable))
            if rows and rows[0].get("id") is not None:
                return str(rows[0]["id"])
        return None

    async def create_patient(self, identity: PatientIdentity) -> str:
        parts = identity.name.strip().split(" ", 1)
        first = parts[0]
        last = parts[1] if len(parts) > 1 else first  # apellidos is mandatory upstream
        body: dict = {"nombre": first, "apellidos": last}
        if identity.email:
            body["email"] = identity.email
        if identity.phone:
            body["telefono"] = identity.phone
        if identity.national_id:
            body["rut"] = identity.national_id
        if identity.birth_date:
            body["fecha_nacimiento"] = identity.birth_date.isoformat()

        try:
            async with self._client() as client:
                resp = await client.post("/pacientes", json=body)
        except httpx.HTTPError as e:
            raise AdapterUnavailable(f"Dentalink unreachable: {e}") from e

        if resp.status_code in (400, 409):
            # most often "already exists"
            existing = await self.find_patient(identity.national_id, identity.email)
            if existing:
                return existing
            raise AdapterFailed(f"Dentalink rejected patient ({resp.status_code})")
        if resp.status_code >= 400:
            raise AdapterFailed(f"Dentalink patient create failed with {resp.status_code}")
        patient_id = _id_of(_json(resp, AdapterFailed))
        if not patient_id:
            raise AdapterFailed("Dentalink returned no patient id")
        log.info("Created Dentalink patient %s", patient_id)
        return patient_id

    async def list_available_slots(self, start: date, end: date) -> list[SlotDay]:
        resp = await self._get(
            "/agenda/disponibilidad",
            params={"fecha_inicio": start.isoformat(), "fecha_fin": end.isoformat()},
        )
        if resp.status_code >= 400:
            raise AdapterUnavailable(f"Dentalink availability failed with {resp.status_code}")
        by_day: dict[str, list[str]] = defaultdict(list)
        for row in _rows(_json(resp, AdapterUnavailable)):
            day = row.get("fecha")
            if not day:
                continue
            times = row.get("horas") or ([row["hora_inicio"]] if row.get("hora_inicio") else [])
            for t in times:
                hhmm = str(t)[:5]
                if hhmm not in by_day[day]:
                    by_day[day].append(hhmm)
        return [SlotDay(date=d, times=sorted(ts)) for d, ts in sorted(by_day.items()) if ts]

    async def list_professionals(self) -> list[Professional]:
        resp = await self._get("/dentistas")
        if resp.status_code >= 400:
            raise AdapterUnavailable(f"Dentalink professionals failed with {resp.status_code}")
        rows = _rows(_json(resp, AdapterUnavailable))
        enabled = [r for r in rows if r.get("habilitado") == 1] or rows
        return [
            Professional(id=str(r["id"]), name=" ".join(filter(None, [r.get("nombre"), r.get("apellidos")])) or None)
            for r in enabled if r.get("id") is not None
        ]

    async def book_appointment(self, request: BookingRequest) -> str:
        body = {
            "id_paciente": int(request.patient_id),
            "id_dentista": int(request.professional_id),
            "id_sucursal": int(self.branch_id),
            "fecha": request.date,
            "hora_inicio": request.time,
            "duracion": request.duration_minutes,
        }
        if request.notes:
            body["notas"] = request.notes
        try:
            async with self._client() as client:
                resp = await client.post("/citas", json=body)
        except AdapterUnavailable as e:
            raise AdapterFailed(str(e)) from e
        except httpx.HTTPError as e:
            raise AdapterFailed(f"Dentalink unreachable: {e}") from e
        if resp.status_code >= 400:
            log.error("Dentalink appointment error %s: %s", resp.status_code, resp.text[:500])
            raise AdapterFailed(f"Dentalink appointment error {resp.status_code}")
        appointment_id = _id_of(_json(resp, AdapterFailed))
        if not appointment_id:
            raise AdapterFailed("Dentalink returned no appointment id")
        return appointment_id
